"""Sample readers: file formats that produce EventTables."""

from cytogate.parsers.base import ReaderDetectionResult, SampleReader
from cytogate.parsers.registry import ReaderRegistry, read_sample, reader_registry

__all__ = [
    "ReaderDetectionResult",
    "ReaderRegistry",
    "SampleReader",
    "read_sample",
    "reader_registry",
]
