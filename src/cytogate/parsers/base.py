"""
Abstract Sample Reader Interface

Every file format that can produce an EventTable implements SampleReader.
The rest of the engine only depends on ``read(path) -> EventTable`` and on
readers rejecting corrupt input with FormatError instead of returning
partial data.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from cytogate.events.table import EventTable
from cytogate.parsers.types import ReaderMetadata


class ReaderDetectionResult:
    """Result of reader detection."""

    def __init__(
        self,
        detected: bool,
        confidence: float = 1.0,
        message: str = "",
        metadata: dict[str, Any] | None = None,
    ):
        self.detected = detected
        self.confidence = confidence  # 0.0 to 1.0
        self.message = message
        self.metadata = metadata or {}


class SampleReader(ABC):
    """
    Abstract base class for all sample readers.

    Usage Example:
        class CSVReader(SampleReader):
            def detect(self, path):
                return ReaderDetectionResult(path.suffix == ".csv")

            def read(self, path):
                return EventTable(...)
    """

    def __init__(self) -> None:
        self._metadata = self.get_metadata()

    @abstractmethod
    def get_metadata(self) -> ReaderMetadata:
        """Return metadata about this reader."""
        pass

    @abstractmethod
    def detect(self, path: Path) -> ReaderDetectionResult:
        """
        Detect if this reader can handle the file at the given path.

        Should be cheap: check the extension and, at most, a few header bytes.
        """
        pass

    @abstractmethod
    def read(self, path: Path) -> EventTable:
        """
        Read one sample.

        Args:
            path: Path to the sample file

        Returns:
            EventTable with channel metadata and source keywords

        Raises:
            FormatError: If the file is malformed, truncated or unreadable
        """
        pass

    def _extension_match(self, path: Path) -> bool:
        return Path(path).suffix.lower() in self._metadata.extensions

    @property
    def metadata(self) -> ReaderMetadata:
        """Get reader metadata."""
        return self._metadata

    @property
    def reader_id(self) -> str:
        """Get unique reader identifier."""
        return self._metadata.reader_id

    def __str__(self) -> str:
        return f"{self.reader_id} (v{self._metadata.reader_version}): {self._metadata.description}"

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} id={self.reader_id}>"
