"""
LayerStore Archives - Immutable containers for sealed layers.

Public API:
-----------

    Archive: Abstract base class for containers
    ZipArchive: ZIP-backed container
    EntryStream: Stream returned by ZipArchive.read_entry()

Usage Example:
--------------

    from layerstore.archive import ZipArchive

    archive = ZipArchive("layers/00000001.zip")
    archive.pack("staging/1")

    if archive.entry_exists("file1"):
        with archive.read_entry("file1") as stream:
            data = stream.read()
"""

from layerstore.archive.base import Archive
from layerstore.archive.zip_archive import COMPRESSION, EntryStream, ZipArchive

__all__ = [
    "Archive",
    "COMPRESSION",
    "EntryStream",
    "ZipArchive",
]
