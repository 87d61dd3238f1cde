import argparse
import sys
from pathlib import Path

from mkimg.__version__ import __version__
from mkimg.config import settings
from mkimg.logging import DEFAULT_LOG_DIR, LoggerFactory, setup_logging
from mkimg.storage.assembly import assemble_image
from mkimg.storage.exceptions import FatalError, ImageBuildError, ValidationError
from mkimg.storage.spec_parser import parse_partitions

EXIT_OK = 0
EXIT_BUILD_ERROR = 1
EXIT_FATAL = 2


def build_parser():
    parser = argparse.ArgumentParser(prog="mkimg", description="Make a disk image")
    parser.add_argument(
        "-p",
        "--partition",
        action="append",
        default=[],
        metavar="SPEC",
        help="partition spec, e.g. type=fs:gpt-type=efi-system:fs-type=fat32:fs-size=64",
    )
    parser.add_argument(
        "-o",
        "--name",
        "--dest",
        dest="output",
        help="path or name of destination image",
    )
    parser.add_argument(
        "--first-sector", type=int, help="sector number of the first partition"
    )
    parser.add_argument(
        "--protective-mbr",
        "--pmbr",
        action="store_true",
        default=None,
        help="write a protective MBR ahead of the GPT",
    )
    parser.add_argument("--bootsector", help="path to the bootsector to use")
    parser.add_argument("--disk-guid", help="explicit disk GUID for the partition table")
    parser.add_argument("--config", help="settings file (JSON)")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Log every copied file")
    parser.add_argument(
        "--log-dir",
        nargs="?",
        const=str(DEFAULT_LOG_DIR),
        help=f"also write logs to this directory (default: {DEFAULT_LOG_DIR})",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def load_config_file(args):
    """Load an explicitly given settings file; it must exist and parse."""
    if not args.config:
        return
    path = Path(args.config)
    try:
        settings.load_settings(path, required=True)
    except (OSError, ValueError) as error:
        raise ValidationError(f"cannot load config `{path}`: {error}") from error


def resolve_config(args):
    return settings.config_from_settings().with_overrides(
        output=Path(args.output) if args.output else None,
        first_sector=args.first_sector,
        protective_mbr=args.protective_mbr,
        bootsector=Path(args.bootsector) if args.bootsector else None,
        disk_identifier=args.disk_guid,
    )


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    config_error = None
    try:
        load_config_file(args)
    except ValidationError as error:
        config_error = error

    log_dir = args.log_dir or settings.get_setting("log_dir")
    setup_logging(
        debug=args.debug,
        trace=args.trace,
        log_dir=Path(log_dir) if log_dir else None,
    )
    log = LoggerFactory.for_system()

    try:
        if config_error is not None:
            raise config_error
        config = resolve_config(args)
        specs = parse_partitions(
            args.partition, default_name=config.default_partition_name
        )
        result = assemble_image(specs, config)
    except ImageBuildError as error:
        log.error(str(error))
        print(f"mkimg: {error}", file=sys.stderr)
        return EXIT_BUILD_ERROR
    except FatalError as error:
        log.opt(exception=error).critical(f"Fatal error: {error}")
        print(f"mkimg: fatal: {error}", file=sys.stderr)
        return EXIT_FATAL

    log.info(
        f"Done: {result.output} ({result.plan.total_size_bytes} bytes, "
        f"{len(result.plan.partitions)} partition(s))"
    )
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
