"""
LayerStore Index - Per-layer records of paths and their types.

Public API:
-----------

    Item: Frozen (path, type, layer_id) record
    ItemIndex: Abstract base class for backends
    MemoryItemIndex: Dict-backed index for tests and ephemeral stores
    SqliteItemIndex: SQLite-backed durable index
    create_index: Build the backend named in StoreSettings
"""

from layerstore.core.constants import INDEX_BACKENDS
from layerstore.index.base import Item, ItemIndex
from layerstore.index.memory import MemoryItemIndex
from layerstore.index.sqlite import SqliteItemIndex


def create_index(settings) -> ItemIndex:
    """
    Create the item index configured in settings.

    Args:
        settings: StoreSettings with index_backend and index_path

    Returns:
        ItemIndex instance

    Raises:
        ValueError: If the backend name is unknown
    """
    if settings.index_backend == "memory":
        return MemoryItemIndex()
    if settings.index_backend == "sqlite":
        return SqliteItemIndex(settings.index_path)
    raise ValueError(f"Unknown index backend: {settings.index_backend}. Must be one of {INDEX_BACKENDS}")


__all__ = [
    "Item",
    "ItemIndex",
    "MemoryItemIndex",
    "SqliteItemIndex",
    "create_index",
]
