#!/usr/bin/env python3
"""ZIP container for sealed layers.

This module packs a staging directory into a ZIP file and reads it back:
- Deterministic output (sorted walk, fixed timestamps and permissions)
- Atomic publish through a temporary file and os.replace()
- Single-entry streaming reads with their own file handle
- Whole-container extraction with entry name checks

Example:
    >>> archive = ZipArchive("layers/00000001.zip")
    >>> archive.pack("staging/1")
    <ArchiveState.PACKED: 'packed'>
    >>> with archive.read_entry("path/to/file2") as stream:
    ...     data = stream.read()
"""

import io
import os
import shutil
import stat
import tempfile
import zipfile
import zlib
from pathlib import Path
from typing import IO, Iterator, List, Optional, Tuple

from layerstore.archive.base import Archive, PathLike
from layerstore.core.constants import ArchiveState, Layout, Limits
from layerstore.core.errors import (
    CorruptArchiveError,
    ImmutableLayerError,
    InvalidPathError,
    IOFailure,
    NotFoundError,
)
from layerstore.core.validators import normalize_path
from layerstore.infrastructure.logger import get_logger

logger = get_logger("layerstore.archive")

COMPRESSION = {
    "deflated": zipfile.ZIP_DEFLATED,
    "stored": zipfile.ZIP_STORED,
}

# Fixed entry metadata so identical trees pack to identical bytes
_ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)
_UNIX_SYSTEM = 3
_FILE_ATTR = (stat.S_IFREG | 0o644) << 16
_DIR_ATTR = ((stat.S_IFDIR | 0o755) << 16) | 0x10  # 0x10: MS-DOS directory flag

# Errors raised by zipfile/zlib while decoding entry data
_DECODE_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError)


def _entry_info(name: str, is_dir: bool, compress_type: int, size: int = 0) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(filename=name, date_time=_ENTRY_DATE_TIME)
    info.create_system = _UNIX_SYSTEM
    if is_dir:
        info.external_attr = _DIR_ATTR
        info.compress_type = zipfile.ZIP_STORED
    else:
        info.external_attr = _FILE_ATTR
        info.compress_type = compress_type
        info.file_size = size
    return info


def _find_entry(container: zipfile.ZipFile, name: str) -> Optional[zipfile.ZipInfo]:
    try:
        return container.getinfo(name)
    except KeyError:
        return None


class EntryStream(io.BufferedIOBase):
    """
    Read-only stream over one container entry.

    Owns both the entry stream and the container handle it was opened from;
    close() releases them exactly once. Decoding failures surface as
    CorruptArchiveError, other I/O failures as IOFailure.
    """

    def __init__(self, container: zipfile.ZipFile, member: IO[bytes], name: str):
        super().__init__()
        self._container = container
        self._member = member
        self.name = name

    def readable(self) -> bool:
        return True

    def _guarded(self, reader, size: int) -> bytes:
        if self.closed:
            raise ValueError("I/O operation on closed entry stream")
        try:
            return reader(size)
        except _DECODE_ERRORS as e:
            raise CorruptArchiveError(
                f"Entry data is corrupt: {e}", path=self.name, operation="read_entry"
            ) from e
        except OSError as e:
            raise IOFailure(f"Read failed: {e}", path=self.name, operation="read_entry") from e

    def read(self, size: Optional[int] = -1) -> bytes:
        return self._guarded(self._member.read, -1 if size is None else size)

    def read1(self, size: int = -1) -> bytes:
        return self._guarded(self._member.read1, size)

    def readinto(self, buffer) -> int:
        data = self.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._member.close()
        finally:
            try:
                self._container.close()
            finally:
                super().close()


class ZipArchive(Archive):
    """
    Archive backed by a single ZIP file.

    Entry names are POSIX relative paths; directories are stored as
    zero-length entries whose names end with "/".
    """

    def __init__(self, location: PathLike, compression: str = "deflated"):
        """
        Initialize archive.

        Args:
            location: Container file path (need not exist yet)
            compression: "deflated" or "stored"

        Raises:
            ValueError: If compression is unknown
        """
        super().__init__(location)
        if compression not in COMPRESSION:
            raise ValueError(
                f"Invalid compression: {compression}. Must be one of {sorted(COMPRESSION)}"
            )
        self.compression = compression
        self._compress_type = COMPRESSION[compression]

    # =========================================================================
    # Packing
    # =========================================================================

    def _walk(self, directory: Path, prefix: str = "") -> Iterator[Tuple[str, Path, bool]]:
        """Yield (entry name, source path, is_dir) depth-first in sorted order."""
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda entry: entry.name)

        for entry in entries:
            name = prefix + entry.name
            if entry.is_dir(follow_symlinks=False):
                yield name + "/", Path(entry.path), True
                yield from self._walk(Path(entry.path), name + "/")
            elif entry.is_file(follow_symlinks=False):
                yield name, Path(entry.path), False
            else:
                logger.warning("skipping non-regular entry", path=name, container=str(self.location))

    def _write_entries(self, container: zipfile.ZipFile, source: Path) -> int:
        count = 0
        for name, path, is_dir in self._walk(source):
            if is_dir:
                container.writestr(_entry_info(name, True, self._compress_type), b"")
            else:
                info = _entry_info(name, False, self._compress_type, size=path.stat().st_size)
                with open(path, "rb") as src, container.open(info, "w") as dst:
                    shutil.copyfileobj(src, dst, Limits.COPY_BUFFER_SIZE)
            count += 1
        return count

    def pack(self, source_dir: PathLike) -> ArchiveState:
        """
        Pack source_dir into the container.

        The container is written to a temporary file next to its final
        location and renamed into place only after every entry has been
        written and flushed. On any failure, interruption included, the
        temporary file is removed and nothing is published.

        Args:
            source_dir: Directory to pack

        Returns:
            ArchiveState.PACKED

        Raises:
            ImmutableLayerError: If the container already exists
            IOFailure: If source_dir is not a directory, or on read or write errors
        """
        source = Path(source_dir)

        if self.state is ArchiveState.PACKED:
            raise ImmutableLayerError(
                "Container is already packed", path=str(self.location), operation="pack"
            )

        if not source.is_dir():
            raise IOFailure("Source directory does not exist", path=str(source), operation="pack")

        try:
            self.location.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(
                prefix=f".{self.location.name}.",
                suffix=Layout.TEMP_SUFFIX,
                dir=str(self.location.parent),
            )
        except OSError as e:
            raise IOFailure(
                f"Cannot create temporary container: {e}", path=str(self.location), operation="pack"
            ) from e

        temp_path = Path(temp_name)
        published = False
        try:
            with os.fdopen(fd, "wb") as raw:
                with zipfile.ZipFile(raw, "w") as container:
                    count = self._write_entries(container, source)
                raw.flush()
                os.fsync(raw.fileno())
            os.replace(temp_path, self.location)
            published = True
        except OSError as e:
            raise IOFailure(f"Packing failed: {e}", path=str(source), operation="pack") from e
        finally:
            if not published:
                self._discard_temp(temp_path)

        logger.info("archive packed", container=str(self.location), entries=count)
        return ArchiveState.PACKED

    def _discard_temp(self, temp_path: Path) -> None:
        try:
            temp_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("failed to remove temporary container", path=str(temp_path), error=str(e))

    # =========================================================================
    # Reading
    # =========================================================================

    def _open(self, operation: str) -> zipfile.ZipFile:
        try:
            return zipfile.ZipFile(self.location, "r")
        except FileNotFoundError as e:
            raise IOFailure("Container is not packed", path=str(self.location), operation=operation) from e
        except zipfile.BadZipFile as e:
            raise CorruptArchiveError(
                f"Cannot parse container: {e}", path=str(self.location), operation=operation
            ) from e
        except OSError as e:
            raise IOFailure(
                f"Cannot open container: {e}", path=str(self.location), operation=operation
            ) from e

    def read_entry(self, path: str) -> EntryStream:
        """
        Open a stream over one entry.

        Only an exact name match counts; "dir" does not match "dir/" and a
        prefix never matches.

        Args:
            path: Entry name

        Returns:
            EntryStream owning its own container handle

        Raises:
            NotFoundError: If no entry has this exact name
            CorruptArchiveError: If the container or entry header is corrupt
            IOFailure: If the container cannot be opened
        """
        container = self._open("read_entry")
        try:
            info = _find_entry(container, path)
            if info is None:
                raise NotFoundError("No such entry in container", path=path, operation="read_entry")
            member = container.open(info)
        except zipfile.BadZipFile as e:
            container.close()
            raise CorruptArchiveError(
                f"Entry header is corrupt: {e}", path=path, operation="read_entry"
            ) from e
        except BaseException:
            container.close()
            raise

        return EntryStream(container, member, path)

    def entry_exists(self, path: str) -> bool:
        """
        Check for an entry by exact name using the central directory.

        Raises:
            CorruptArchiveError: If the container cannot be parsed
            IOFailure: If the container cannot be opened
        """
        with self._open("entry_exists") as container:
            return _find_entry(container, path) is not None

    def list_entries(self) -> List[str]:
        """Return entry names in container order."""
        with self._open("list_entries") as container:
            return container.namelist()

    # =========================================================================
    # Extraction
    # =========================================================================

    def _target_path(self, dest: Path, name: str) -> Path:
        try:
            relative = normalize_path(name.rstrip("/"))
        except InvalidPathError as e:
            raise CorruptArchiveError(
                f"Unsafe entry name: {e.message}", path=name, operation="unpack"
            ) from e
        return dest.joinpath(*relative.split("/"))

    def unpack(self, dest_dir: PathLike) -> None:
        """
        Extract all entries into dest_dir in container order.

        A failed extraction is not rolled back; the destination must be
        discarded by the caller.

        Args:
            dest_dir: Destination directory, created when missing

        Raises:
            CorruptArchiveError: If the container, an entry or an entry name is invalid
            IOFailure: On destination write errors
        """
        dest = Path(dest_dir)
        count = 0

        with self._open("unpack") as container:
            for info in container.infolist():
                target = self._target_path(dest, info.filename)
                try:
                    if info.is_dir():
                        target.mkdir(parents=True, exist_ok=True)
                    else:
                        target.parent.mkdir(parents=True, exist_ok=True)
                        with container.open(info) as src, open(target, "wb") as dst:
                            shutil.copyfileobj(src, dst, Limits.COPY_BUFFER_SIZE)
                except _DECODE_ERRORS as e:
                    raise CorruptArchiveError(
                        f"Entry data is corrupt: {e}", path=info.filename, operation="unpack"
                    ) from e
                except OSError as e:
                    raise IOFailure(
                        f"Cannot write entry: {e}", path=str(target), operation="unpack"
                    ) from e
                count += 1

        logger.info("archive unpacked", container=str(self.location), dest=str(dest), entries=count)
