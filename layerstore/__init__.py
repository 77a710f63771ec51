"""
LayerStore - Layered file store with immutable archived layers.

The newest layer accepts writes as loose files; sealing packs it into a
ZIP container and opens the next layer. Reads resolve each path from the
newest layer backward, so overwrites and deletions shadow older copies.
"""

from layerstore.archive import Archive, ZipArchive
from layerstore.core.constants import LAYERSTORE_VERSION, ArchiveState, ItemType, LayerState
from layerstore.core.errors import (
    CorruptArchiveError,
    ImmutableLayerError,
    IndexInconsistencyError,
    InvalidPathError,
    IOFailure,
    LayerStoreError,
    NotFoundError,
    PathConflictError,
)
from layerstore.index import Item, ItemIndex, MemoryItemIndex, SqliteItemIndex
from layerstore.layers import Layer, LayerStore, SealedLayer, StagingLayer

__version__ = LAYERSTORE_VERSION

__all__ = [
    "Archive",
    "ZipArchive",
    "ArchiveState",
    "ItemType",
    "LayerState",
    "LayerStoreError",
    "NotFoundError",
    "IOFailure",
    "CorruptArchiveError",
    "ImmutableLayerError",
    "IndexInconsistencyError",
    "PathConflictError",
    "InvalidPathError",
    "Item",
    "ItemIndex",
    "MemoryItemIndex",
    "SqliteItemIndex",
    "Layer",
    "LayerStore",
    "SealedLayer",
    "StagingLayer",
]
