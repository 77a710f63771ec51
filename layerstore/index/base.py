"""
LayerStore Index: Base types.

The item index records, per sealed layer, which paths exist and what they
are. It is the authority for deciding which layer's copy of a path wins.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List

from layerstore.core.constants import ItemType


@dataclass(frozen=True)
class Item:
    """
    Per-path, per-layer record.

    Attributes:
        path: Normalized relative path (forward slashes, no trailing slash)
        type: FILE, DIRECTORY or TOMBSTONE
        layer_id: Layer the record belongs to
    """

    path: str
    type: ItemType
    layer_id: int

    @property
    def is_live(self) -> bool:
        """True unless this record is a tombstone."""
        return self.type is not ItemType.TOMBSTONE


class ItemIndex(ABC):
    """
    Abstract base class for item index backends.

    Within one layer a path has at most one record. Backends must be safe
    to call from several threads.
    """

    @abstractmethod
    def insert(self, items: Iterable[Item]) -> None:
        """
        Insert a batch of items.

        All-or-nothing: if any item duplicates a (layer_id, path) pair
        already stored or repeated within the batch, nothing is inserted.

        Raises:
            IndexInconsistencyError: On a duplicate (layer_id, path)
            IOFailure: If the backend cannot be written
        """

    @abstractmethod
    def query_by_path(self, path: str) -> List[Item]:
        """Return every record for path, highest layer id first."""

    @abstractmethod
    def query_by_layer(self, layer_id: int) -> List[Item]:
        """Return every record of one layer ordered by path."""

    @abstractmethod
    def query_by_prefix(self, prefix: str) -> List[Item]:
        """
        Return records whose path is prefix or lies beneath it.

        Ordered by path, then layer id descending. An empty prefix matches
        everything.
        """

    @abstractmethod
    def all_items(self) -> List[Item]:
        """Return every record ordered by path, then layer id descending."""

    @abstractmethod
    def layer_ids(self) -> List[int]:
        """Return the distinct layer ids with at least one record, ascending."""

    @abstractmethod
    def delete_layer(self, layer_id: int) -> int:
        """
        Remove every record of a layer.

        Only used to roll back a seal whose archive could not be published.

        Returns:
            Number of records removed
        """

    def close(self) -> None:
        """Release backend resources."""

    def __enter__(self) -> "ItemIndex":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

