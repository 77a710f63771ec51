"""
LayerStore Layers: Base classes.

A layer is one generation of the store's file tree:
- StagingLayer: the single mutable layer, backed by a loose directory and
  a file of pending tombstones
- SealedLayer: an immutable layer, backed by an Archive and the index
  records written when it was sealed

Both answer the same read questions; only the staging layer accepts writes.
"""

import json
import os
import shutil
import stat
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, List, Optional, Set, Union

from layerstore.archive.base import Archive
from layerstore.core.constants import ItemType, LayerState, Layout, Limits
from layerstore.core.errors import (
    ImmutableLayerError,
    IOFailure,
    NotFoundError,
    PathConflictError,
)
from layerstore.index.base import Item, ItemIndex
from layerstore.infrastructure.logger import get_logger

logger = get_logger("layerstore.layers")

Content = Union[bytes, bytearray, memoryview, BinaryIO]


class Layer(ABC):
    """
    Abstract base class for layers.

    Attributes:
        layer_id: Position of the layer in the store, assigned at creation
    """

    def __init__(self, layer_id: int):
        self.layer_id = layer_id

    @property
    @abstractmethod
    def state(self) -> LayerState:
        """STAGING or SEALED."""

    @abstractmethod
    def read_file(self, path: str) -> BinaryIO:
        """
        Open a file of this layer for reading.

        Raises:
            NotFoundError: If the layer holds no file at path
        """

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        """True if this layer physically holds a file at path."""

    @abstractmethod
    def write_file(self, path: str, content: Content) -> None:
        """
        Write a file into this layer.

        Raises:
            ImmutableLayerError: If the layer is sealed
        """

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(layer_id={self.layer_id})"


class StagingLayer(Layer):
    """
    The mutable layer.

    Files live under ``directory`` using their store paths; pending
    tombstones are kept in ``tombstones_file`` as a JSON list so they
    survive a restart until the layer is sealed.
    """

    def __init__(self, layer_id: int, directory: Union[str, Path], tombstones_file: Union[str, Path, None] = None):
        """
        Initialize the staging layer, creating its directory.

        Args:
            layer_id: Layer id
            directory: Loose directory holding the layer's files
            tombstones_file: JSON file for pending tombstones
                (default: ``<directory>.tombstones``)

        Raises:
            IOFailure: If the directory cannot be created or tombstones cannot be read
        """
        super().__init__(layer_id)
        self.directory = Path(directory)
        if tombstones_file is None:
            tombstones_file = self.directory.with_name(self.directory.name + Layout.TOMBSTONES_SUFFIX)
        self.tombstones_file = Path(tombstones_file)

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailure(
                f"Cannot create staging directory: {e}", path=str(self.directory), operation="create"
            ) from e

        self._tombstones: Set[str] = self._load_tombstones()

    @property
    def state(self) -> LayerState:
        return LayerState.STAGING

    def local_path(self, path: str) -> Path:
        """Filesystem path of a normalized store path inside this layer."""
        return self.directory.joinpath(*path.split("/"))

    # =========================================================================
    # Pending tombstones
    # =========================================================================

    def _load_tombstones(self) -> Set[str]:
        try:
            with open(self.tombstones_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return set()
        except (OSError, ValueError) as e:
            raise IOFailure(
                f"Cannot read pending tombstones: {e}", path=str(self.tombstones_file), operation="load"
            ) from e

        if not isinstance(data, list) or not all(isinstance(p, str) for p in data):
            raise IOFailure(
                "Pending tombstones must be a list of paths",
                path=str(self.tombstones_file),
                operation="load",
            )
        return set(data)

    def _save_tombstones(self) -> None:
        try:
            if not self._tombstones:
                self.tombstones_file.unlink(missing_ok=True)
                return

            fd, temp_name = tempfile.mkstemp(
                prefix=f".{self.tombstones_file.name}.",
                suffix=Layout.TEMP_SUFFIX,
                dir=str(self.tombstones_file.parent),
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(sorted(self._tombstones), f, indent=2)
                os.replace(temp_name, self.tombstones_file)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise IOFailure(
                f"Cannot save pending tombstones: {e}", path=str(self.tombstones_file), operation="save"
            ) from e

    @property
    def tombstones(self) -> List[str]:
        """Pending tombstones in lexicographic order."""
        return sorted(self._tombstones)

    def is_tombstoned(self, path: str) -> bool:
        return path in self._tombstones

    def add_tombstones(self, paths: Iterable[str]) -> None:
        """Record paths as deleted as of this layer."""
        new = set(paths) - self._tombstones
        if new:
            self._tombstones |= new
            self._save_tombstones()

    def clear_tombstones(self, paths: Iterable[str]) -> None:
        """Forget pending tombstones for paths that are live again."""
        cleared = self._tombstones & set(paths)
        if cleared:
            self._tombstones -= cleared
            self._save_tombstones()

    # =========================================================================
    # Queries
    # =========================================================================

    def item_for(self, path: str) -> Optional[Item]:
        """
        Return this layer's record for path, or None.

        A pending tombstone yields a TOMBSTONE item; a directory or regular
        file under the layer directory yields a DIRECTORY or FILE item.
        """
        if path in self._tombstones:
            return Item(path, ItemType.TOMBSTONE, self.layer_id)

        try:
            mode = os.lstat(self.local_path(path)).st_mode
        except (FileNotFoundError, NotADirectoryError):
            return None
        except OSError as e:
            raise IOFailure(f"Cannot stat staged path: {e}", path=path, operation="resolve") from e

        if stat.S_ISDIR(mode):
            return Item(path, ItemType.DIRECTORY, self.layer_id)
        if stat.S_ISREG(mode):
            return Item(path, ItemType.FILE, self.layer_id)
        return None

    def _walk(self, directory: Path, prefix: str = "") -> Iterator[Item]:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda entry: entry.name)

        for entry in entries:
            path = prefix + entry.name
            if entry.is_dir(follow_symlinks=False):
                yield Item(path, ItemType.DIRECTORY, self.layer_id)
                yield from self._walk(Path(entry.path), path + "/")
            elif entry.is_file(follow_symlinks=False):
                yield Item(path, ItemType.FILE, self.layer_id)

    def items(self) -> List[Item]:
        """
        Every record of this layer ordered by path.

        Directories and regular files come from walking the layer directory;
        pending tombstones are added as TOMBSTONE items. Other file types
        are left out, matching what the archive packs.

        Raises:
            IOFailure: If the directory cannot be walked
        """
        try:
            items = list(self._walk(self.directory))
        except OSError as e:
            raise IOFailure(
                f"Cannot walk staging directory: {e}", path=str(self.directory), operation="walk"
            ) from e

        items.extend(Item(path, ItemType.TOMBSTONE, self.layer_id) for path in self._tombstones)
        return sorted(items, key=lambda item: item.path)

    def file_exists(self, path: str) -> bool:
        item = self.item_for(path)
        return item is not None and item.type is ItemType.FILE

    def read_file(self, path: str) -> BinaryIO:
        """
        Open a staged file.

        Writes replace files by rename and removals unlink them, so an open
        stream keeps the content it was opened with.
        """
        if not self.file_exists(path):
            raise NotFoundError("No file in staging layer", path=path, operation="read_file")

        try:
            return open(self.local_path(path), "rb")
        except (FileNotFoundError, IsADirectoryError) as e:
            raise NotFoundError("No file in staging layer", path=path, operation="read_file") from e
        except OSError as e:
            raise IOFailure(f"Cannot read staged file: {e}", path=path, operation="read_file") from e

    # =========================================================================
    # Mutations
    # =========================================================================

    def _make_parents(self, path: str, operation: str) -> Path:
        target = self.local_path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except (FileExistsError, NotADirectoryError) as e:
            raise PathConflictError("A parent of the path is a file", path=path, operation=operation) from e
        except OSError as e:
            raise IOFailure(f"Cannot create parent directories: {e}", path=path, operation=operation) from e
        return target

    def write_file(self, path: str, content: Content) -> None:
        """
        Write content to path, creating parent directories.

        The bytes are written to a temporary file beside the layer directory
        and renamed into place, so a failed write leaves any previous
        content untouched.

        Args:
            path: Normalized store path
            content: Bytes or a readable binary file object

        Raises:
            PathConflictError: If path is a directory or a parent is a file
            IOFailure: On write errors
            TypeError: If content is neither bytes-like nor readable
        """
        if not isinstance(content, (bytes, bytearray, memoryview)) and not hasattr(content, "read"):
            raise TypeError(f"Content must be bytes or a binary file object, got {type(content).__name__}")

        target = self._make_parents(path, "write")
        if target.is_dir():
            raise PathConflictError("Path is a directory", path=path, operation="write")

        try:
            fd, temp_name = tempfile.mkstemp(
                prefix=f".{self.layer_id}.", suffix=Layout.TEMP_SUFFIX, dir=str(self.directory.parent)
            )
            try:
                with os.fdopen(fd, "wb") as dst:
                    if isinstance(content, (bytes, bytearray, memoryview)):
                        dst.write(content)
                    else:
                        shutil.copyfileobj(content, dst, Limits.COPY_BUFFER_SIZE)
                os.replace(temp_name, target)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise IOFailure(f"Cannot write staged file: {e}", path=path, operation="write") from e

    def create_directory(self, path: str) -> None:
        """Create a directory and its parents in this layer."""
        target = self._make_parents(path, "create_directory")
        try:
            target.mkdir(exist_ok=True)
        except (FileExistsError, NotADirectoryError) as e:
            raise PathConflictError("Path is a file", path=path, operation="create_directory") from e
        except OSError as e:
            raise IOFailure(f"Cannot create directory: {e}", path=path, operation="create_directory") from e

    def remove(self, path: str) -> None:
        """Remove a staged file or directory tree."""
        target = self.local_path(path)
        try:
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            else:
                target.unlink()
        except FileNotFoundError as e:
            raise NotFoundError("No such path in staging layer", path=path, operation="delete") from e
        except OSError as e:
            raise IOFailure(f"Cannot remove staged path: {e}", path=path, operation="delete") from e

    def discard(self) -> None:
        """Delete the layer directory and its tombstone file."""
        try:
            if self.directory.exists():
                shutil.rmtree(self.directory)
            self.tombstones_file.unlink(missing_ok=True)
        except OSError as e:
            raise IOFailure(
                f"Cannot discard staging layer: {e}", path=str(self.directory), operation="discard"
            ) from e
        self._tombstones = set()
        logger.info("staging discarded", layer=self.layer_id, directory=str(self.directory))


class SealedLayer(Layer):
    """
    An immutable layer backed by an archive.

    Attributes:
        archive: Container holding the layer's files
        index: Item index holding the layer's records
    """

    def __init__(self, layer_id: int, archive: Archive, index: ItemIndex):
        super().__init__(layer_id)
        self.archive = archive
        self.index = index

    @property
    def state(self) -> LayerState:
        return LayerState.SEALED

    def items(self) -> List[Item]:
        """Records written for this layer when it was sealed."""
        return self.index.query_by_layer(self.layer_id)

    def read_file(self, path: str) -> BinaryIO:
        return self.archive.read_entry(path)

    def file_exists(self, path: str) -> bool:
        return self.archive.entry_exists(path)

    def write_file(self, path: str, content: Content) -> None:
        raise ImmutableLayerError("Layer is sealed", path=path, operation="write")

    def __repr__(self) -> str:
        return f"SealedLayer(layer_id={self.layer_id}, archive={self.archive!r})"
