"""
LayerStore Layers: Store.

This module provides the LayerStore, the coordinator for the ordered
sequence of layers under one root directory.

The store:
- Routes every write to the single staging layer
- Resolves reads from the newest layer backward (staging, then the index)
- Records tombstones so deletions shadow older sealed copies
- Seals the staging layer into an archive and opens the next one
- Validates containers against the index when opened
"""

from pathlib import Path
from typing import BinaryIO, Dict, Iterable, List, Optional, Tuple, Union

from layerstore.archive.zip_archive import ZipArchive
from layerstore.core.constants import ItemType, Layout, Limits
from layerstore.core.errors import (
    IndexInconsistencyError,
    IOFailure,
    LayerStoreError,
    NotFoundError,
    PathConflictError,
)
from layerstore.core.validators import (
    is_within,
    normalize_directory_path,
    normalize_path,
    parent_paths,
    validate_layer_id,
)
from layerstore.index import ItemIndex, SqliteItemIndex, create_index
from layerstore.index.base import Item
from layerstore.infrastructure.config_manager import ConfigError, StoreSettings
from layerstore.infrastructure.locks import ReadWriteLock
from layerstore.infrastructure.logger import get_logger
from layerstore.layers.base import Content, Layer, SealedLayer, StagingLayer

logger = get_logger("layerstore.store")


def _winners(items: Iterable[Item]) -> Dict[str, Item]:
    """Keep the first record per path from items ordered by layer id descending."""
    result: Dict[str, Item] = {}
    for item in items:
        result.setdefault(item.path, item)
    return result


class LayerStore:
    """
    Ordered sequence of layers under one root directory.

    Layer ids are contiguous from ``origin``; every layer except the newest
    is sealed. One LayerStore instance owns a root at a time.

    Attributes:
        root: Store root directory
        index: Item index holding the records of sealed layers
        origin: Id of the first layer
        compression: Container compression ("deflated" or "stored")
    """

    def __init__(
        self,
        root: Union[str, Path],
        index: ItemIndex,
        origin: int = Limits.DEFAULT_ORIGIN,
        compression: str = "deflated",
    ):
        """
        Open the store at root, creating it when empty.

        Existing containers are checked against the index (see verify())
        and the staging layer is reattached or created.

        Args:
            root: Store root directory
            index: Item index backend
            origin: Id of the first layer
            compression: Container compression for new seals

        Raises:
            IndexInconsistencyError: If containers and index disagree
            IOFailure: If the layout cannot be created or read
        """
        validate_layer_id(origin)
        self.root = Path(root)
        self.index = index
        self.origin = origin
        self.compression = compression
        self.layers_dir = self.root / Layout.LAYERS_DIR
        self.staging_dir = self.root / Layout.STAGING_DIR

        self._lock = ReadWriteLock()
        self._sealed: Dict[int, SealedLayer] = {}
        self._closed = False
        self._failure: Optional[str] = None

        try:
            self.layers_dir.mkdir(parents=True, exist_ok=True)
            self.staging_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailure(f"Cannot create store layout: {e}", path=str(self.root), operation="open") from e

        self._remove_temp_files()
        sealed_ids = self._check_consistency(recover=True)
        self._sealed = {layer_id: self._sealed_layer(layer_id) for layer_id in sealed_ids}

        next_id = sealed_ids[-1] + 1 if sealed_ids else origin
        self._discard_stale_staging(next_id)
        self._staging = self._staging_layer(next_id)

        logger.info(
            "store opened",
            root=str(self.root),
            sealed=len(sealed_ids),
            staging=next_id,
        )

    @classmethod
    def open(
        cls,
        root: Union[str, Path],
        index: Optional[ItemIndex] = None,
        origin: int = Limits.DEFAULT_ORIGIN,
        compression: str = "deflated",
    ) -> "LayerStore":
        """
        Open a store, defaulting to an SQLite index at ``<root>/index.db``.

        Example:
            >>> with LayerStore.open("/data/store") as store:
            ...     store.write("file1", b"content")
            ...     store.seal()
        """
        owned = index is None
        if index is None:
            index = SqliteItemIndex(Path(root) / Layout.INDEX_FILE)
        try:
            return cls(root, index, origin=origin, compression=compression)
        except BaseException:
            if owned:
                index.close()
            raise

    @classmethod
    def from_settings(cls, settings: StoreSettings) -> "LayerStore":
        """
        Open the store described by resolved configuration.

        Raises:
            ConfigError: If the memory index is chosen for a root that
                already holds sealed layers
        """
        layers_dir = Path(settings.root) / Layout.LAYERS_DIR
        if settings.index_backend == "memory" and any(layers_dir.glob(f"*{Layout.CONTAINER_SUFFIX}")):
            raise ConfigError(
                "The memory index keeps no records between runs and cannot open a store "
                "with sealed layers; use the sqlite index backend",
                path=str(settings.root),
                operation="open",
            )

        index = create_index(settings)
        try:
            return cls(settings.root, index, origin=settings.origin, compression=settings.compression)
        except BaseException:
            index.close()
            raise

    # =========================================================================
    # Layout helpers
    # =========================================================================

    def _container_path(self, layer_id: int) -> Path:
        name = f"{layer_id:0{Limits.LAYER_ID_WIDTH}d}{Layout.CONTAINER_SUFFIX}"
        return self.layers_dir / name

    def _sealed_layer(self, layer_id: int) -> SealedLayer:
        archive = ZipArchive(self._container_path(layer_id), compression=self.compression)
        return SealedLayer(layer_id, archive, self.index)

    def _staging_layer(self, layer_id: int) -> StagingLayer:
        return StagingLayer(
            layer_id,
            self.staging_dir / str(layer_id),
            self.staging_dir / f"{layer_id}{Layout.TOMBSTONES_SUFFIX}",
        )

    def _container_ids(self) -> List[int]:
        ids = []
        for entry in sorted(self.layers_dir.iterdir()):
            if entry.suffix == Layout.CONTAINER_SUFFIX and entry.stem.isdigit() and entry.is_file():
                ids.append(int(entry.stem))
            else:
                logger.warning("ignoring unexpected file in layers directory", path=str(entry))
        return sorted(ids)

    def _staging_ids(self) -> List[int]:
        ids = set()
        for entry in self.staging_dir.iterdir():
            stem = entry.name
            if stem.endswith(Layout.TOMBSTONES_SUFFIX):
                stem = stem[: -len(Layout.TOMBSTONES_SUFFIX)]
            if stem.isdigit():
                ids.add(int(stem))
        return sorted(ids)

    def _remove_temp_files(self) -> None:
        """Remove temporary files left by an interrupted pack or write."""
        for directory in (self.layers_dir, self.staging_dir):
            for entry in directory.glob(f".*{Layout.TEMP_SUFFIX}"):
                try:
                    entry.unlink()
                except OSError as e:
                    raise IOFailure(
                        f"Cannot remove temporary file: {e}", path=str(entry), operation="open"
                    ) from e
                logger.warning("removed temporary file", path=str(entry))

    # =========================================================================
    # Consistency
    # =========================================================================

    def _check_consistency(self, recover: bool = False) -> List[int]:
        """
        Compare containers with index records and return the sealed ids.

        With recover=True, index records of the highest id that has neither
        a container nor a sealed successor but still has its staging
        directory are rolled back: they are what an interrupted seal leaves.

        Raises:
            IndexInconsistencyError: On any other disagreement
        """
        try:
            container_ids = set(self._container_ids())
            staging_ids = set(self._staging_ids())
        except OSError as e:
            raise IOFailure(f"Cannot read store layout: {e}", path=str(self.root), operation="verify") from e

        index_ids = set(self.index.layer_ids())

        for layer_id in sorted(index_ids - container_ids):
            interrupted = (
                recover
                and layer_id == max(index_ids)
                and (not container_ids or layer_id > max(container_ids))
                and layer_id in staging_ids
            )
            if not interrupted:
                raise IndexInconsistencyError(
                    f"Layer {layer_id} has index records but no container",
                    path=str(self._container_path(layer_id)),
                    operation="verify",
                )
            removed = self.index.delete_layer(layer_id)
            index_ids.discard(layer_id)
            logger.warning("seal rolled back", layer=layer_id, records=removed, reason="interrupted seal")

        for layer_id in sorted(container_ids - index_ids):
            if self._sealed_layer(layer_id).archive.list_entries():
                raise IndexInconsistencyError(
                    f"Container of layer {layer_id} has entries but no index records",
                    path=str(self._container_path(layer_id)),
                    operation="verify",
                )

        sealed_ids = sorted(container_ids)
        expected = list(range(self.origin, self.origin + len(sealed_ids)))
        if sealed_ids != expected:
            raise IndexInconsistencyError(
                f"Sealed layer ids {sealed_ids} are not contiguous from {self.origin}",
                path=str(self.layers_dir),
                operation="verify",
            )

        return sealed_ids

    def _is_empty_staging(self, layer_id: int) -> bool:
        directory = self.staging_dir / str(layer_id)
        tombstones = self.staging_dir / f"{layer_id}{Layout.TOMBSTONES_SUFFIX}"
        if tombstones.exists():
            return False
        return not directory.is_dir() or not any(directory.iterdir())

    def _discard_stale_staging(self, next_id: int) -> None:
        for layer_id in self._staging_ids():
            if layer_id == next_id:
                continue
            if layer_id == next_id + 1 and self._is_empty_staging(layer_id):
                # Created by a seal that did not publish its container
                logger.warning("discarding empty staging layer of an unfinished seal", layer=layer_id)
                self._staging_layer(layer_id).discard()
                continue
            if layer_id > next_id:
                raise IndexInconsistencyError(
                    f"Staging layer {layer_id} is ahead of the next layer id {next_id}",
                    path=str(self.staging_dir),
                    operation="open",
                )
            logger.warning("discarding staging layer of an already sealed id", layer=layer_id)
            self._staging_layer(layer_id).discard()

    def verify(self) -> List[int]:
        """
        Re-run the consistency check against the open store.

        Returns:
            Sealed layer ids, ascending

        Raises:
            IndexInconsistencyError: If containers, index and open layers disagree
        """
        with self._lock.read_locked():
            self._check_open()
            sealed_ids = self._check_consistency()
            if sealed_ids != sorted(self._sealed):
                raise IndexInconsistencyError(
                    f"Sealed layers on disk {sealed_ids} differ from open layers {sorted(self._sealed)}",
                    path=str(self.root),
                    operation="verify",
                )
            return sealed_ids

    # =========================================================================
    # Resolution
    # =========================================================================

    def _check_open(self) -> None:
        if self._closed:
            raise LayerStoreError("Store is closed", path=str(self.root))
        if self._failure is not None:
            raise IndexInconsistencyError(
                f"{self._failure}; reopen the store to recover", path=str(self.root)
            )

    def _resolve(self, path: str) -> Tuple[Layer, Item]:
        item = self._staging.item_for(path)
        if item is not None:
            return self._staging, item

        for item in self.index.query_by_path(path):
            return self._sealed[item.layer_id], item

        raise NotFoundError("No layer has a record for path", path=path, operation="resolve")

    def _live_item(self, path: str) -> Optional[Item]:
        try:
            _, item = self._resolve(path)
        except NotFoundError:
            return None
        return item if item.is_live else None

    def _visible(self, prefix: str) -> Dict[str, Item]:
        """Newest record per path at or beneath prefix, staging included."""
        records = _winners(self.index.query_by_prefix(prefix))
        for item in self._staging.items():
            if is_within(item.path, prefix):
                records[item.path] = item
        return records

    def resolve(self, path: str) -> Tuple[Layer, Item]:
        """
        Find the authoritative record for a path.

        Staging (pending tombstones, then loose files) is checked first,
        then sealed layers from the highest id down.

        Returns:
            (layer, item); item may be a TOMBSTONE

        Raises:
            NotFoundError: If no layer has a record for path
            InvalidPathError: If path fails validation
        """
        path = normalize_path(path)
        with self._lock.read_locked():
            self._check_open()
            return self._resolve(path)

    def read_file(self, path: str) -> BinaryIO:
        """
        Open the current content of a file.

        Staged files are copied into memory; sealed files are streamed
        from their container. Close the returned stream when done.

        Raises:
            NotFoundError: If path is absent, deleted or a directory
        """
        path = normalize_path(path)
        with self._lock.read_locked():
            self._check_open()
            layer, item = self._resolve(path)
            if item.type is not ItemType.FILE:
                raise NotFoundError(f"Path is a {item.type.value}", path=path, operation="read_file")
            return layer.read_file(path)

    def file_exists(self, path: str) -> bool:
        """True when path resolves to a live file."""
        try:
            _, item = self.resolve(path)
        except NotFoundError:
            return False
        return item.type is ItemType.FILE

    def list_paths(self) -> List[str]:
        """Every live path across all layers, lexicographic."""
        with self._lock.read_locked():
            self._check_open()
            records = self._visible("")
        return sorted(path for path, item in records.items() if item.is_live)

    def list_directory(self, path: str = "") -> List[str]:
        """
        Names of the live direct children of a directory.

        Args:
            path: Directory path; "" is the store root

        Raises:
            NotFoundError: If the directory is absent or deleted
            PathConflictError: If path is a file
        """
        directory = normalize_directory_path(path)
        with self._lock.read_locked():
            self._check_open()
            if directory:
                item = self._live_item(directory)
                if item is None:
                    raise NotFoundError("No such directory", path=directory, operation="list_directory")
                if item.type is not ItemType.DIRECTORY:
                    raise PathConflictError("Path is a file", path=directory, operation="list_directory")
            records = self._visible(directory)

        start = len(directory) + 1 if directory else 0
        return sorted(
            record_path[start:]
            for record_path, item in records.items()
            if item.is_live and record_path != directory and "/" not in record_path[start:]
        )

    # =========================================================================
    # Mutations
    # =========================================================================

    def _check_parents(self, path: str, operation: str) -> None:
        for parent in parent_paths(path):
            item = self._live_item(parent)
            if item is not None and item.type is ItemType.FILE:
                raise PathConflictError(f"Parent '{parent}' is a file", path=path, operation=operation)

    def write(self, path: str, content: Content) -> None:
        """
        Write a file into the staging layer.

        Args:
            path: Store path
            content: Bytes or a readable binary file object

        Raises:
            PathConflictError: If path is a live directory or lies beneath a live file
            IOFailure: On write errors
        """
        path = normalize_path(path)
        with self._lock.write_locked():
            self._check_open()
            item = self._live_item(path)
            if item is not None and item.type is ItemType.DIRECTORY:
                raise PathConflictError("Path is a directory", path=path, operation="write")
            self._check_parents(path, "write")

            self._staging.write_file(path, content)
            self._staging.clear_tombstones([path, *parent_paths(path)])

        logger.debug("file written", path=path, layer=self._staging.layer_id)

    def create_directory(self, path: str) -> None:
        """
        Create a directory (and its parents) in the staging layer.

        Creating a directory that is already live is a no-op.

        Raises:
            PathConflictError: If path or one of its parents is a live file
        """
        path = normalize_path(path)
        with self._lock.write_locked():
            self._check_open()
            item = self._live_item(path)
            if item is not None:
                if item.type is ItemType.FILE:
                    raise PathConflictError("Path is a file", path=path, operation="create_directory")
                return
            self._check_parents(path, "create_directory")

            self._staging.create_directory(path)
            self._staging.clear_tombstones([path, *parent_paths(path)])

        logger.debug("directory created", path=path, layer=self._staging.layer_id)

    def delete(self, path: str) -> None:
        """
        Make a path absent as of the staging layer.

        A staged copy is removed. Every live record a sealed layer holds for
        path, or for anything beneath it, gets a pending tombstone that the
        next seal writes to the index.

        Raises:
            NotFoundError: If path is not live
        """
        path = normalize_path(path)
        with self._lock.write_locked():
            self._check_open()
            if self._live_item(path) is None:
                raise NotFoundError("No such path", path=path, operation="delete")

            staged = self._staging.item_for(path)
            if staged is not None and staged.is_live:
                self._staging.remove(path)

            shadowed = [
                item.path
                for item in _winners(self.index.query_by_prefix(path)).values()
                if item.is_live
            ]
            self._staging.add_tombstones(shadowed)

        logger.debug("path deleted", path=path, layer=self._staging.layer_id, tombstones=len(shadowed))

    def _rollback_seal(self, layer_id: int, inserted: bool, next_staging: StagingLayer) -> None:
        """Undo a seal that did not publish its container."""
        if inserted:
            try:
                self.index.delete_layer(layer_id)
            except Exception as e:
                self._failure = f"Rollback of layer {layer_id} left index records without a container"
                logger.error("seal rollback failed", layer=layer_id, error=str(e))

        try:
            next_staging.discard()
        except IOFailure as e:
            # Reopening the store discards it again
            logger.warning("empty staging layer left behind", layer=next_staging.layer_id, error=str(e))

        logger.warning("seal rolled back", layer=layer_id)

    def seal(self) -> int:
        """
        Seal the staging layer and open the next one.

        The next staging layer is created first. Then the staging records
        are written to the index and the staging directory is packed into
        the layer's container. Only when both succeed does the new staging
        layer replace the sealed one. If any step fails the index records
        are removed again and the staging layer stays writable.

        Returns:
            Id of the new staging layer; its predecessor is the sealed layer

        Raises:
            IOFailure: If the next staging layer or the container cannot be written
            IndexInconsistencyError: If the index rejects the records, or a
                failed rollback left the store unusable until it is reopened
        """
        with self._lock.write_locked():
            self._check_open()
            staging = self._staging
            layer_id = staging.layer_id
            items = staging.items()

            sealed = self._sealed_layer(layer_id)
            next_staging = self._staging_layer(layer_id + 1)
            inserted = False
            try:
                self.index.insert(items)
                inserted = True
                sealed.archive.pack(staging.directory)
            except BaseException:
                self._rollback_seal(layer_id, inserted, next_staging)
                raise

            self._sealed[layer_id] = sealed
            self._staging = next_staging
            try:
                staging.discard()
            except IOFailure as e:
                # Reopening the store discards it again
                logger.warning("stale staging layer left behind", layer=layer_id, error=str(e))

        logger.info("layer sealed", layer=layer_id, items=len(items))
        return next_staging.layer_id

    # =========================================================================
    # Layers
    # =========================================================================

    @property
    def staging_layer(self) -> StagingLayer:
        """The current mutable layer."""
        return self._staging

    def get_layer(self, layer_id: int) -> Layer:
        """
        Get a layer by id.

        Raises:
            NotFoundError: If no layer has this id
        """
        with self._lock.read_locked():
            if layer_id == self._staging.layer_id:
                return self._staging
            layer = self._sealed.get(layer_id)
        if layer is None:
            raise NotFoundError(f"No layer with id {layer_id}", operation="get_layer")
        return layer

    def list_layer_ids(self) -> List[int]:
        """All layer ids ascending; the last one is the staging layer."""
        with self._lock.read_locked():
            return sorted(self._sealed) + [self._staging.layer_id]

    def unpack_layer(self, layer_id: int, dest_dir: Union[str, Path]) -> None:
        """
        Extract the container of a sealed layer.

        Raises:
            NotFoundError: If no sealed layer has this id
            CorruptArchiveError: If the container cannot be parsed
            IOFailure: On destination write errors
        """
        with self._lock.read_locked():
            layer = self._sealed.get(layer_id)
        if layer is None:
            raise NotFoundError(f"No sealed layer with id {layer_id}", operation="unpack_layer")
        layer.archive.unpack(dest_dir)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Close the index. Further operations raise LayerStoreError."""
        with self._lock.write_locked():
            if self._closed:
                return
            self._closed = True
            self.index.close()
        logger.debug("store closed", root=str(self.root))

    def __enter__(self) -> "LayerStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"LayerStore(root='{self.root}', layers={len(self._sealed) + 1})"
