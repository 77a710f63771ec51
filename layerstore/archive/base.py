"""
LayerStore Archives: Base interface.

An archive packs one directory tree into a single immutable container and
serves whole extraction and single-entry reads from it. Implementations
must be safe for concurrent readers: every read opens its own handle.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, List, Union

from layerstore.core.constants import ArchiveState

PathLike = Union[str, Path]


class Archive(ABC):
    """
    Abstract base class for layer containers.

    Lifecycle: an archive starts LOOSE (its content exists only as a
    directory tree) and becomes PACKED once pack() publishes the container.
    A packed container is never modified; unpack() copies content out and
    leaves the container PACKED.

    Attributes:
        location: Path of the container file
    """

    def __init__(self, location: PathLike):
        self.location = Path(location)

    @property
    def state(self) -> ArchiveState:
        """PACKED when the container is published, LOOSE otherwise."""
        return ArchiveState.PACKED if self.location.is_file() else ArchiveState.LOOSE

    @abstractmethod
    def pack(self, source_dir: PathLike) -> ArchiveState:
        """
        Pack a directory tree into the container.

        Args:
            source_dir: Directory whose content becomes the container

        Returns:
            ArchiveState.PACKED

        Raises:
            ImmutableLayerError: If the container already exists
            IOFailure: On any I/O error; no container is published
        """

    @abstractmethod
    def unpack(self, dest_dir: PathLike) -> None:
        """
        Extract every entry into a destination directory.

        Raises:
            CorruptArchiveError: If the container cannot be parsed
            IOFailure: On destination write errors
        """

    @abstractmethod
    def read_entry(self, path: str) -> BinaryIO:
        """
        Open a stream over one entry's bytes.

        The returned stream owns its own container handle and releases it on
        close(); use it as a context manager.

        Raises:
            NotFoundError: If no entry matches path exactly
        """

    @abstractmethod
    def entry_exists(self, path: str) -> bool:
        """Return True iff read_entry(path) would succeed."""

    @abstractmethod
    def list_entries(self) -> List[str]:
        """Return entry names in container order."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(location='{self.location}')"
