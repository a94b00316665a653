"""
Delimited-text reader for exported event tables (CSV/TSV with a header row).

This is the inverse of the "fcs to tsv" export most FACS pipelines produce:
one header row of channel names, then one row per event.
"""

import csv
import logging

from pathlib import Path

import numpy as np

from cytogate.events.table import EventTable
from cytogate.exceptions import FormatError, SchemaMismatchError
from cytogate.parsers.base import ReaderDetectionResult, SampleReader
from cytogate.parsers.types import ReaderMetadata

logger = logging.getLogger(__name__)

DELIMITERS = {".csv": ",", ".tsv": "\t", ".txt": "\t"}


class DelimitedReader(SampleReader):
    """Reader for CSV/TSV event tables."""

    def get_metadata(self) -> ReaderMetadata:
        return ReaderMetadata(
            reader_id="delimited",
            reader_version="1.0.0",
            supported_formats=["CSV", "TSV"],
            extensions=list(DELIMITERS),
            description="Delimited text event tables with a channel header row",
            requires_libraries=["numpy"],
        )

    def detect(self, path: Path) -> ReaderDetectionResult:
        path = Path(path)
        if path.is_file() and self._extension_match(path):
            return ReaderDetectionResult(detected=True, confidence=0.9)
        return ReaderDetectionResult(detected=False)

    def read(self, path: Path) -> EventTable:
        """
        Read a delimited event table.

        Raises:
            FormatError: On a missing file or header, ragged rows, or
                non-numeric values
        """
        path = Path(path)
        if not path.is_file():
            raise FormatError(f"File not found: {path}", path=path)

        delimiter = DELIMITERS.get(path.suffix.lower(), ",")

        try:
            with open(path, newline="", encoding="utf-8") as f:
                rows = list(csv.reader(f, delimiter=delimiter))
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            raise FormatError(f"Cannot read {path.name}: {e}", path=path) from e

        if not rows or not any(cell.strip() for cell in rows[0]):
            raise FormatError(f"{path.name} has no header row", path=path)

        header = [cell.strip() for cell in rows[0]]
        body = [row for row in rows[1:] if row]

        for line_no, row in enumerate(body, start=2):
            if len(row) != len(header):
                raise FormatError(
                    f"{path.name} line {line_no}: expected {len(header)} "
                    f"value(s), found {len(row)}",
                    path=path,
                )

        try:
            data = np.array(body, dtype=np.float64).reshape(len(body), len(header))
        except ValueError as e:
            raise FormatError(
                f"{path.name} contains non-numeric values: {e}", path=path
            ) from e

        try:
            table = EventTable(data, header, keywords={"fil": path.name})
        except SchemaMismatchError as e:
            raise FormatError(str(e), path=path) from e

        logger.debug(f"Read {path.name}: {table.n_events} events")
        return table
