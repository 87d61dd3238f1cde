"""Tests for the command-line entry point."""

import json
from unittest.mock import patch

import pytest

from mkimg import main as cli
from mkimg.config import settings
from mkimg.logging import DEFAULT_LOG_DIR
from mkimg.storage.exceptions import FatalError, ValidationError


@pytest.fixture(autouse=True)
def default_settings(tmp_path):
    settings.load_settings(tmp_path / "no-settings.json")
    with patch("mkimg.main.setup_logging"):
        yield
    settings.load_settings(tmp_path / "no-settings.json")


def _raw_partition(blob_file):
    return f"type=file:name=blob:gpt-type=bios-boot:file={blob_file}"


class TestBuildParser:
    def test_output_aliases(self):
        """Test -o, --name and --dest all set the output."""
        parser = cli.build_parser()
        for flag in ("-o", "--name", "--dest"):
            assert parser.parse_args([flag, "disk.img"]).output == "disk.img"

    def test_partitions_accumulate(self):
        """Test repeated -p flags keep their order."""
        args = cli.build_parser().parse_args(["-p", "a", "--partition", "b"])
        assert args.partition == ["a", "b"]

    def test_protective_mbr_defaults_to_unset(self):
        """Test the flag is None unless given so settings can apply."""
        assert cli.build_parser().parse_args([]).protective_mbr is None
        assert cli.build_parser().parse_args(["--pmbr"]).protective_mbr is True


class TestResolveConfig:
    def test_flags_override_settings(self, tmp_path):
        """Test command-line values win over the settings file."""
        config_path = tmp_path / "settings.json"
        config_path.write_text(json.dumps({"first_sector": 4096, "output": "from-file.img"}))
        args = cli.build_parser().parse_args(
            ["--config", str(config_path), "--first-sector", "64", "--disk-guid", "abc"]
        )
        cli.load_config_file(args)
        config = cli.resolve_config(args)
        assert config.first_sector == 64
        assert config.output.name == "from-file.img"
        assert config.disk_identifier == "abc"

    def test_missing_config_file_is_rejected(self, tmp_path):
        """Test an explicit --config path must exist."""
        args = cli.build_parser().parse_args(["--config", str(tmp_path / "absent.json")])
        with pytest.raises(ValidationError, match="cannot load config"):
            cli.load_config_file(args)

    def test_defaults(self):
        """Test defaults apply with no flags."""
        config = cli.resolve_config(cli.build_parser().parse_args([]))
        assert config.first_sector == 2048
        assert config.protective_mbr is False
        assert config.bootsector is None


class TestMain:
    def test_successful_build(self, tmp_path, blob_file):
        """Test a raw-only build exits 0 and writes the image."""
        output = tmp_path / "disk.img"
        code = cli.main(["-p", _raw_partition(blob_file), "-o", str(output)])
        assert code == cli.EXIT_OK
        assert output.exists()

    def test_build_error_exits_one(self, tmp_path, capsys):
        """Test a recoverable build error exits 1 with a message."""
        code = cli.main(["-p", "type=file:file=x", "-o", str(tmp_path / "disk.img")])
        assert code == cli.EXIT_BUILD_ERROR
        assert "missing a gpt-type" in capsys.readouterr().err
        assert not (tmp_path / "disk.img").exists()

    def test_no_partitions_exits_one(self, tmp_path):
        """Test a build without partitions fails."""
        assert cli.main(["-o", str(tmp_path / "disk.img")]) == cli.EXIT_BUILD_ERROR

    def test_fatal_error_exits_two(self, tmp_path, blob_file, capsys):
        """Test fatal errors exit 2."""
        with patch("mkimg.main.assemble_image", side_effect=FatalError("disk on fire")):
            code = cli.main(["-p", _raw_partition(blob_file), "-o", str(tmp_path / "d.img")])
        assert code == cli.EXIT_FATAL
        assert "fatal: disk on fire" in capsys.readouterr().err

    def test_logging_flags_are_forwarded(self, tmp_path, blob_file):
        """Test debug, trace and log dir reach setup_logging."""
        with patch("mkimg.main.setup_logging") as setup, patch(
            "mkimg.main.assemble_image"
        ):
            cli.main(
                [
                    "-p",
                    _raw_partition(blob_file),
                    "--debug",
                    "--trace",
                    "--log-dir",
                    str(tmp_path / "logs"),
                ]
            )
        setup.assert_called_once_with(debug=True, trace=True, log_dir=tmp_path / "logs")

    def test_log_dir_from_config_file(self, tmp_path, blob_file):
        """Test a log_dir set in --config is used for logging."""
        config_path = tmp_path / "settings.json"
        config_path.write_text(json.dumps({"log_dir": str(tmp_path / "cfg-logs")}))
        with patch("mkimg.main.setup_logging") as setup, patch(
            "mkimg.main.assemble_image"
        ):
            cli.main(["-p", _raw_partition(blob_file), "--config", str(config_path)])
        setup.assert_called_once_with(
            debug=False, trace=False, log_dir=tmp_path / "cfg-logs"
        )

    def test_bare_log_dir_uses_default(self, blob_file):
        """Test --log-dir without a value logs to the default directory."""
        with patch("mkimg.main.setup_logging") as setup, patch(
            "mkimg.main.assemble_image"
        ):
            cli.main(["-p", _raw_partition(blob_file), "--log-dir"])
        assert setup.call_args.kwargs["log_dir"] == DEFAULT_LOG_DIR

    def test_missing_config_exits_one(self, tmp_path, blob_file, capsys):
        """Test a missing --config file fails the build instead of being ignored."""
        with patch("mkimg.main.assemble_image") as assemble:
            code = cli.main(
                [
                    "-p",
                    _raw_partition(blob_file),
                    "--config",
                    str(tmp_path / "absent.json"),
                ]
            )
        assert code == cli.EXIT_BUILD_ERROR
        assert "cannot load config" in capsys.readouterr().err
        assert not assemble.called
