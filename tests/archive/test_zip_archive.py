#!/usr/bin/env python3
"""Tests for the ZIP container."""

import os
import zipfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from unittest.mock import patch

import pytest

from layerstore.archive import ZipArchive
from layerstore.core.constants import ArchiveState
from layerstore.core.errors import (
    CorruptArchiveError,
    ImmutableLayerError,
    IOFailure,
    NotFoundError,
)


def tree_contents(root: Path) -> dict:
    """Map relative POSIX paths to bytes (None for directories)."""
    contents = {}
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root).as_posix()
        contents[relative] = None if path.is_dir() else path.read_bytes()
    return contents


@pytest.fixture
def archive(temp_dir):
    return ZipArchive(temp_dir / "layers" / "00000001.zip")


@pytest.fixture
def packed(archive, staging_tree):
    archive.pack(staging_tree)
    return archive


class TestZipArchivePack:
    """Tests for ZipArchive.pack()."""

    def test_state_transition(self, archive, staging_tree):
        assert archive.state is ArchiveState.LOOSE
        assert archive.pack(staging_tree) is ArchiveState.PACKED
        assert archive.state is ArchiveState.PACKED
        assert archive.location.is_file()

    def test_entry_order(self, packed):
        """Test depth-first lexicographic order with directory entries."""
        assert packed.list_entries() == [
            "data.bin",
            "empty/",
            "file1",
            "path/",
            "path/to/",
            "path/to/file2",
            "path/to/file3",
        ]

    def test_deterministic(self, temp_dir, staging_tree):
        """Test packing the same tree twice yields identical bytes."""
        first = ZipArchive(temp_dir / "a.zip")
        second = ZipArchive(temp_dir / "b.zip")
        first.pack(staging_tree)
        os.utime(staging_tree / "file1", (0, 0))
        second.pack(staging_tree)
        assert first.location.read_bytes() == second.location.read_bytes()

    def test_fixed_metadata(self, packed):
        with zipfile.ZipFile(packed.location) as zf:
            for info in zf.infolist():
                assert info.date_time == (1980, 1, 1, 0, 0, 0)

    def test_stored_compression(self, temp_dir, staging_tree):
        archive = ZipArchive(temp_dir / "stored.zip", compression="stored")
        archive.pack(staging_tree)
        with zipfile.ZipFile(archive.location) as zf:
            assert all(info.compress_type == zipfile.ZIP_STORED for info in zf.infolist())

    def test_invalid_compression(self, temp_dir):
        with pytest.raises(ValueError, match="compression"):
            ZipArchive(temp_dir / "x.zip", compression="bzip2")

    def test_empty_tree(self, archive, temp_dir):
        empty = temp_dir / "empty-tree"
        empty.mkdir()
        archive.pack(empty)
        assert archive.list_entries() == []

    def test_pack_twice_rejected(self, packed, staging_tree):
        """Test a packed container is never rewritten."""
        before = packed.location.read_bytes()
        with pytest.raises(ImmutableLayerError):
            packed.pack(staging_tree)
        assert packed.location.read_bytes() == before

    def test_missing_source(self, archive, temp_dir):
        """Test a missing source directory is an I/O failure."""
        with pytest.raises(IOFailure, match="Source directory does not exist"):
            archive.pack(temp_dir / "missing")
        assert archive.state is ArchiveState.LOOSE

    def test_source_is_file(self, archive, temp_dir):
        source = temp_dir / "plain-file"
        source.write_bytes(b"not a directory")
        with pytest.raises(IOFailure):
            archive.pack(source)
        assert archive.state is ArchiveState.LOOSE

    def test_symlink_skipped(self, archive, staging_tree):
        (staging_tree / "link").symlink_to(staging_tree / "file1")
        archive.pack(staging_tree)
        assert "link" not in archive.list_entries()

    def test_failure_publishes_nothing(self, archive, staging_tree):
        """Test an I/O error mid-pack leaves no container and no temp file."""
        real_open = open
        calls = []

        def failing_open(path, *args, **kwargs):
            calls.append(path)
            if Path(path).name == "file2":
                raise OSError(5, "Input/output error")
            return real_open(path, *args, **kwargs)

        with patch("builtins.open", side_effect=failing_open):
            with pytest.raises(IOFailure) as exc_info:
                archive.pack(staging_tree)

        assert isinstance(exc_info.value.__cause__, OSError)
        assert archive.state is ArchiveState.LOOSE
        assert list(archive.location.parent.iterdir()) == []

    def test_interrupt_publishes_nothing(self, archive, staging_tree):
        """Test interruption during packing removes the temporary file."""
        with patch.object(ZipArchive, "_write_entries", side_effect=KeyboardInterrupt):
            with pytest.raises(KeyboardInterrupt):
                archive.pack(staging_tree)

        assert archive.state is ArchiveState.LOOSE
        assert list(archive.location.parent.iterdir()) == []

    def test_rename_failure(self, archive, staging_tree):
        with patch("layerstore.archive.zip_archive.os.replace", side_effect=OSError(28, "No space")):
            with pytest.raises(IOFailure, match="Packing failed"):
                archive.pack(staging_tree)

        assert archive.state is ArchiveState.LOOSE
        assert list(archive.location.parent.iterdir()) == []


class TestZipArchiveUnpack:
    """Tests for ZipArchive.unpack()."""

    def test_round_trip(self, packed, staging_tree, temp_dir):
        dest = temp_dir / "out"
        packed.unpack(dest)
        assert tree_contents(dest) == tree_contents(staging_tree)
        assert packed.state is ArchiveState.PACKED

    def test_unpack_loose(self, archive, temp_dir):
        with pytest.raises(IOFailure, match="not packed"):
            archive.unpack(temp_dir / "out")

    def test_truncated_container(self, packed, temp_dir):
        data = packed.location.read_bytes()
        packed.location.write_bytes(data[: len(data) // 2])
        with pytest.raises(CorruptArchiveError):
            packed.unpack(temp_dir / "out")

    def test_not_a_zip(self, archive, temp_dir):
        archive.location.parent.mkdir(parents=True)
        archive.location.write_bytes(b"definitely not a zip file")
        with pytest.raises(CorruptArchiveError):
            archive.unpack(temp_dir / "out")

    def test_bad_crc(self, temp_dir):
        """Test damaged entry data is reported as corruption."""
        location = temp_dir / "crc.zip"
        payload = b"A" * 4096
        with zipfile.ZipFile(location, "w", compression=zipfile.ZIP_STORED) as zf:
            zf.writestr("file1", payload)

        data = bytearray(location.read_bytes())
        offset = data.find(payload)
        data[offset] = ord("B")
        location.write_bytes(bytes(data))

        with pytest.raises(CorruptArchiveError):
            ZipArchive(location).unpack(temp_dir / "out")

    def test_unsafe_entry_name(self, temp_dir):
        location = temp_dir / "evil.zip"
        with zipfile.ZipFile(location, "w") as zf:
            zf.writestr("../evil", b"x")

        with pytest.raises(CorruptArchiveError, match="Unsafe entry name"):
            ZipArchive(location).unpack(temp_dir / "out")
        assert not (temp_dir / "evil").exists()

    def test_destination_failure(self, packed, temp_dir):
        blocker = temp_dir / "blocker"
        blocker.write_bytes(b"a file where the destination should be")
        with pytest.raises(IOFailure):
            packed.unpack(blocker)


class TestZipArchiveRead:
    """Tests for read_entry() and entry_exists()."""

    def test_read_entry(self, packed, staging_tree):
        with packed.read_entry("path/to/file2") as stream:
            assert stream.read() == (staging_tree / "path" / "to" / "file2").read_bytes()

    def test_read_binary(self, packed, staging_tree):
        with packed.read_entry("data.bin") as stream:
            assert stream.read() == (staging_tree / "data.bin").read_bytes()

    def test_read_missing(self, packed):
        with pytest.raises(NotFoundError):
            packed.read_entry("nope")

    def test_exact_match_only(self, packed):
        """Test directory names and prefixes do not match files."""
        with pytest.raises(NotFoundError):
            packed.read_entry("path/to")
        with pytest.raises(NotFoundError):
            packed.read_entry("path/to/file")

    def test_entry_exists(self, packed):
        """Test existence for every packed entry and nothing else."""
        assert packed.entry_exists("file1")
        assert packed.entry_exists("path/to/file2")
        assert packed.entry_exists("path/to/file3")
        assert packed.entry_exists("path/to/")
        assert not packed.entry_exists("path/to")
        assert not packed.entry_exists("file4")

    def test_entry_exists_matches_read_entry(self, packed):
        for name in packed.list_entries() + ["missing", "path"]:
            if packed.entry_exists(name):
                packed.read_entry(name).close()
            else:
                with pytest.raises(NotFoundError):
                    packed.read_entry(name)

    def test_entry_exists_loose(self, archive):
        """Test a missing container is an error, not absence."""
        with pytest.raises(IOFailure):
            archive.entry_exists("file1")

    def test_entry_exists_corrupt(self, archive):
        archive.location.parent.mkdir(parents=True)
        archive.location.write_bytes(b"garbage")
        with pytest.raises(CorruptArchiveError):
            archive.entry_exists("file1")

    def test_stream_closes_once(self, packed):
        """Test closing releases the container handle exactly once."""
        stream = packed.read_entry("file1")
        container = stream._container
        with patch.object(container, "close", wraps=container.close) as spy:
            assert stream.read(4) == b"cont"
            stream.close()
            stream.close()

        assert spy.call_count == 1
        assert stream.closed
        with pytest.raises(ValueError):
            stream.read()

    def test_stream_readinto(self, packed):
        buffer = bytearray(7)
        with packed.read_entry("file1") as stream:
            assert stream.readinto(buffer) == 7
        assert bytes(buffer) == b"content"

    def test_stream_corrupt_data(self, temp_dir):
        location = temp_dir / "crc.zip"
        payload = b"Z" * 1024
        with zipfile.ZipFile(location, "w", compression=zipfile.ZIP_STORED) as zf:
            zf.writestr("file1", payload)
        data = bytearray(location.read_bytes())
        data[data.find(payload)] = ord("Y")
        location.write_bytes(bytes(data))

        with ZipArchive(location).read_entry("file1") as stream:
            with pytest.raises(CorruptArchiveError):
                stream.read()

    def test_concurrent_reads(self, packed, staging_tree):
        """Test concurrent readers each get the right content."""
        names = ["file1", "path/to/file2", "path/to/file3", "data.bin"]
        expected = {name: (staging_tree / name).read_bytes() for name in names}

        def read(name):
            with packed.read_entry(name) as stream:
                return name, stream.read()

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(read, names * 25))

        assert len(results) == 100
        for name, data in results:
            assert data == expected[name]
