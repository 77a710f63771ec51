"""
LayerStore Layers - Generations of the store's file tree.

Public API:
-----------

Base Classes:
    Layer: Abstract base class for all layers
    StagingLayer: The mutable layer backed by loose files
    SealedLayer: An immutable layer backed by an archive

Store:
    LayerStore: Coordinator for the ordered sequence of layers

Usage Example:
--------------

    from layerstore.layers import LayerStore

    with LayerStore.open("/data/store") as store:
        store.write("file1", b"first")
        store.seal()
        store.write("file1", b"second")

        with store.read_file("file1") as stream:
            assert stream.read() == b"second"
"""

from layerstore.layers.base import Layer, SealedLayer, StagingLayer
from layerstore.layers.store import LayerStore

__all__ = [
    "Layer",
    "SealedLayer",
    "StagingLayer",
    "LayerStore",
]
