"""Tests for partition string parsing."""

from pathlib import Path

import pytest

from mkimg.domain import MIB, PartitionKind, Placement, VolumeFormat
from mkimg.storage.exceptions import SizeError, SourceNotFoundError, ValidationError
from mkimg.storage.spec_parser import (
    parse_partition,
    parse_partition_kv,
    parse_partitions,
    parse_placements,
)


class TestParsePartitionKV:
    def test_parses_pairs_in_order(self):
        """Test key/value pairs keep their order."""
        kv = parse_partition_kv("type=fs:name=ESP:fs-size=32")
        assert list(kv.items()) == [("type", "fs"), ("name", "ESP"), ("fs-size", "32")]

    def test_rejects_entry_without_value(self):
        """Test an entry without '=' is rejected."""
        with pytest.raises(ValidationError, match="invalid keyvalue `type`"):
            parse_partition_kv("type:name=x")

    def test_rejects_entry_with_two_equals(self):
        """Test an entry with several '=' is rejected."""
        with pytest.raises(ValidationError, match="invalid keyvalue"):
            parse_partition_kv("name=a=b")

    def test_rejects_duplicate_keys(self):
        """Test duplicate keys are rejected."""
        with pytest.raises(ValidationError, match="duplicate partition entry `name`"):
            parse_partition_kv("name=a:name=b")


class TestParsePlacements:
    def test_source_only(self):
        """Test an item without '@' has an empty destination."""
        assert parse_placements("/tmp/foo/bar.bin") == (
            Placement(Path("/tmp/foo/bar.bin"), ""),
        )

    def test_source_and_destination(self):
        """Test 'src@dst' items and '#' separators."""
        placements = parse_placements("a.txt#kernel.elf@boot/kernel")
        assert placements == (
            Placement(Path("a.txt"), ""),
            Placement(Path("kernel.elf"), "boot/kernel"),
        )

    def test_repeated_source_takes_last_destination(self):
        """Test a repeated source keeps its position but the last destination."""
        placements = parse_placements("a@x#b#a@y")
        assert placements == (Placement(Path("a"), "y"), Placement(Path("b"), ""))

    def test_rejects_multiple_at_signs(self):
        """Test items with more than one '@' are rejected."""
        with pytest.raises(ValidationError, match="invalid fs-files entry"):
            parse_placements("a@b@c")

    def test_empty_value(self):
        """Test an empty value yields no placements."""
        assert parse_placements("") == ()


class TestParsePartition:
    def test_raw_blob_partition(self, blob_file):
        """Test a file partition takes its size from the source."""
        spec = parse_partition(
            f"type=file:name=stage2:gpt-type=bios-boot:file={blob_file}", 1
        )
        assert spec.kind is PartitionKind.RAW_BLOB
        assert spec.name == "stage2"
        assert spec.size_bytes == 1000
        assert spec.table_type_tag == "bios-boot"
        assert spec.content.source == blob_file

    def test_volume_partition(self, source_tree):
        """Test an fs partition converts its size from MiB."""
        spec = parse_partition(
            "type=fs:name=ESP:gpt-type=efi-system:fs-type=fat32:fs-size=32"
            f":fs-root={source_tree}:fs-files=a.bin@boot/a.bin",
            1,
        )
        assert spec.kind is PartitionKind.VOLUME
        assert spec.size_bytes == 32 * MIB
        assert spec.content.volume_format is VolumeFormat.FAT32
        assert spec.content.tree_root == source_tree
        assert spec.content.placements == (Placement(Path("a.bin"), "boot/a.bin"),)

    def test_default_name(self, blob_file):
        """Test a missing name falls back to the default."""
        spec = parse_partition(f"type=file:gpt-type=bios-boot:file={blob_file}")
        assert spec.name == "Unnamed Partition"

    def test_configured_default_name(self, blob_file):
        """Test the default name can be configured."""
        spec = parse_partition(
            f"type=file:gpt-type=bios-boot:file={blob_file}", default_name="blob"
        )
        assert spec.name == "blob"

    def test_gpt_uuid(self, blob_file):
        """Test an explicit partition GUID is kept."""
        guid = "6A2A5C61-4D4E-4BDB-8F55-6C0E1A3F5B11"
        spec = parse_partition(
            f"type=file:gpt-type=bios-boot:gpt-uuid={guid}:file={blob_file}"
        )
        assert spec.table_identifier == guid

    def test_missing_type(self):
        """Test a partition without type is rejected."""
        with pytest.raises(ValidationError, match="missing a type"):
            parse_partition("name=x:gpt-type=efi-system", 1)

    def test_unknown_type(self):
        """Test an unknown partition type is rejected."""
        with pytest.raises(ValidationError, match="unknown partition type `lvm`"):
            parse_partition("type=lvm:gpt-type=efi-system")

    def test_missing_gpt_type(self, blob_file):
        """Test a partition without gpt-type is rejected."""
        with pytest.raises(ValidationError, match="missing a gpt-type"):
            parse_partition(f"type=file:file={blob_file}", 2)

    def test_unknown_key_for_kind(self, blob_file):
        """Test fs keys are rejected on file partitions."""
        with pytest.raises(ValidationError, match="unknown partition entry `fs-size`"):
            parse_partition(f"type=file:gpt-type=bios-boot:file={blob_file}:fs-size=3")

    def test_missing_file(self):
        """Test a file partition must name its source."""
        with pytest.raises(ValidationError, match="missing a file"):
            parse_partition("type=file:gpt-type=bios-boot")

    def test_nonexistent_file(self, tmp_path):
        """Test a missing source file is reported."""
        with pytest.raises(SourceNotFoundError):
            parse_partition(f"type=file:gpt-type=bios-boot:file={tmp_path / 'nope'}")

    def test_unknown_fs_type(self):
        """Test unsupported filesystem formats are rejected."""
        with pytest.raises(ValidationError, match="unknown fs-type `ext4`"):
            parse_partition("type=fs:gpt-type=efi-system:fs-type=ext4:fs-size=8")

    def test_invalid_fs_size(self):
        """Test a non-numeric size is rejected."""
        with pytest.raises(ValidationError, match="not a valid number"):
            parse_partition("type=fs:gpt-type=efi-system:fs-type=fat32:fs-size=big")

    def test_missing_fs_size(self):
        """Test a volume without a size fails with SizeError."""
        with pytest.raises(SizeError):
            parse_partition("type=fs:gpt-type=efi-system:fs-type=fat32")

    def test_zero_fs_size(self):
        """Test a zero size fails with SizeError."""
        with pytest.raises(SizeError):
            parse_partition("type=fs:gpt-type=efi-system:fs-type=fat32:fs-size=0")


class TestParsePartitions:
    def test_indexes_errors_from_one(self, blob_file):
        """Test errors report the 1-based position of the bad spec."""
        with pytest.raises(ValidationError) as excinfo:
            parse_partitions(
                [
                    f"type=file:gpt-type=bios-boot:file={blob_file}",
                    "type=fs:fs-type=fat32:fs-size=8",
                ]
            )
        assert excinfo.value.spec_index == 2

    def test_keeps_order(self, blob_file):
        """Test specs come back in input order."""
        specs = parse_partitions(
            [
                f"type=file:name=one:gpt-type=bios-boot:file={blob_file}",
                "type=fs:name=two:gpt-type=efi-system:fs-type=fat32:fs-size=1",
            ]
        )
        assert [spec.name for spec in specs] == ["one", "two"]
