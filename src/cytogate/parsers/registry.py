"""
Reader Registry

Central registry of sample readers. Selects a reader for a file by
detection confidence and exposes ``read_sample(path)``.
"""

import logging

from pathlib import Path

from cytogate.events.table import EventTable
from cytogate.exceptions import FormatError
from cytogate.parsers.base import ReaderDetectionResult, SampleReader

logger = logging.getLogger(__name__)


class ReaderRegistry:
    """
    Registry for sample readers.

    Usage:
        registry.register(FCSReader())
        reader = registry.detect_reader(Path("A01.fcs"))
        table = reader.read(Path("A01.fcs"))
    """

    def __init__(self) -> None:
        self._readers: list[SampleReader] = []
        self._readers_by_id: dict[str, SampleReader] = {}

    def register(self, reader: SampleReader) -> None:
        """
        Register a new reader.

        Raises:
            ValueError: If the reader ID is already registered
        """
        reader_id = reader.reader_id

        if reader_id in self._readers_by_id:
            existing = self._readers_by_id[reader_id]
            raise ValueError(
                f"Reader ID '{reader_id}' already registered by {existing.__class__.__name__}"
            )

        self._readers.append(reader)
        self._readers_by_id[reader_id] = reader

        logger.debug(f"Registered reader: {reader}")

    def unregister(self, reader_id: str) -> bool:
        """
        Unregister a reader by ID.

        Returns:
            True if the reader was removed, False if not found
        """
        reader = self._readers_by_id.pop(reader_id, None)
        if reader is None:
            return False
        self._readers.remove(reader)
        return True

    def get_reader(self, reader_id: str) -> SampleReader | None:
        return self._readers_by_id.get(reader_id)

    def list_readers(self) -> list[SampleReader]:
        return list(self._readers)

    def detect_reader(self, path: Path) -> SampleReader | None:
        """
        Select the reader with the highest detection confidence.

        Returns:
            Matching reader, or None if no reader accepts the file
        """
        path = Path(path)
        best_match: tuple[SampleReader, ReaderDetectionResult] | None = None

        for reader in self._readers:
            try:
                result = reader.detect(path)
            except Exception as e:
                logger.warning(f"Reader {reader.reader_id} detection failed: {e}")
                continue

            if not result.detected:
                continue
            if best_match is None or result.confidence > best_match[1].confidence:
                best_match = (reader, result)
            if result.confidence >= 1.0:
                break

        if best_match:
            logger.debug(
                f"Selected reader {best_match[0].reader_id} for {path.name} "
                f"(confidence: {best_match[1].confidence})"
            )
            return best_match[0]

        return None

    def read_sample(self, path: Path | str) -> EventTable:
        """
        Read a sample with the best matching reader.

        Raises:
            FormatError: If no reader accepts the file or the file is corrupt
        """
        path = Path(path)
        reader = self.detect_reader(path)
        if reader is None:
            raise FormatError(f"No reader available for {path.name}", path=path)
        return reader.read(path)


reader_registry = ReaderRegistry()


def read_sample(path: Path | str) -> EventTable:
    """
    Read one sample file into an EventTable using the global registry.

    Registers the built-in readers on first use.
    """
    if not reader_registry.list_readers():
        from cytogate.parsers.register_all import register_all_readers

        register_all_readers()
    return reader_registry.read_sample(path)
