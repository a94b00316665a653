"""
Spillover compensation.

Compensation removes fluorescence spectral overlap by multiplying the
fluorescence channels by the inverse of the spillover matrix. Solving the
spillover matrix from single-stain controls is out of scope; matrices come
from the acquisition software ($SPILLOVER keyword) or a CSV file.
"""

import csv
import logging

from collections.abc import Mapping, Sequence
from pathlib import Path

import numpy as np

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cytogate.events.table import EventTable
from cytogate.exceptions import FormatError, SchemaMismatchError

logger = logging.getLogger(__name__)

SPILLOVER_KEYWORDS = ("spillover", "spill", "$spillover", "$spill")


class SpilloverMatrix(BaseModel):
    """
    Square spillover matrix over named channels.

    ``matrix[i][j]`` is the fraction of channel i's signal detected in
    channel j.
    """

    model_config = ConfigDict(frozen=True)

    channels: tuple[str, ...] = Field(description="Fluorescence channel names")
    matrix: tuple[tuple[float, ...], ...] = Field(description="Spillover values")

    @model_validator(mode="after")
    def _check_shape(self) -> "SpilloverMatrix":
        n = len(self.channels)
        if n == 0:
            raise ValueError("Spillover matrix needs at least one channel")
        if len(set(self.channels)) != n:
            raise ValueError(f"Duplicate channels in spillover matrix: {self.channels}")
        if len(self.matrix) != n or any(len(row) != n for row in self.matrix):
            raise ValueError(f"Spillover matrix must be {n} x {n}")
        return self

    @classmethod
    def from_array(
        cls, channels: Sequence[str], matrix: np.ndarray
    ) -> "SpilloverMatrix":
        array = np.asarray(matrix, dtype=np.float64)
        return cls(
            channels=tuple(channels),
            matrix=tuple(tuple(float(v) for v in row) for row in array),
        )

    def as_array(self) -> np.ndarray:
        return np.array(self.matrix, dtype=np.float64)

    def inverse(self) -> np.ndarray:
        """
        Compensation matrix (inverse of the spillover matrix).

        Raises:
            FormatError: If the matrix is singular
        """
        try:
            return np.linalg.inv(self.as_array())
        except np.linalg.LinAlgError as e:
            raise FormatError(f"Spillover matrix is singular: {e}") from e


def parse_spillover(value: str) -> SpilloverMatrix:
    """
    Parse an FCS $SPILLOVER keyword value.

    Format: ``n,ch_1,...,ch_n,v_11,v_12,...,v_nn`` (row-major).

    Raises:
        FormatError: If the value is malformed
    """
    parts = [p.strip() for p in str(value).split(",")]
    try:
        n = int(parts[0])
    except (ValueError, IndexError):
        raise FormatError(
            f"Spillover value must start with a channel count: {value!r}"
        ) from None

    expected = 1 + n + n * n
    if n <= 0 or len(parts) != expected:
        raise FormatError(
            f"Spillover value has {len(parts)} field(s), expected {expected} for n={n}"
        )

    channels = parts[1 : n + 1]
    try:
        values = np.array([float(v) for v in parts[n + 1 :]]).reshape(n, n)
    except ValueError as e:
        raise FormatError(f"Spillover value contains non-numeric entries: {e}") from e

    try:
        return SpilloverMatrix.from_array(channels, values)
    except ValueError as e:
        raise FormatError(f"Invalid spillover matrix: {e}") from e


def spillover_from_keywords(keywords: Mapping[str, str]) -> SpilloverMatrix | None:
    """Find and parse the spillover keyword of a sample, if any."""
    lowered = {k.lower(): v for k, v in keywords.items()}
    for key in SPILLOVER_KEYWORDS:
        if lowered.get(key):
            return parse_spillover(lowered[key])
    return None


def load_spillover_csv(path: Path | str) -> SpilloverMatrix:
    """
    Load a spillover matrix from CSV: a header row of channel names followed
    by one row of values per channel (an optional leading row-label column
    is ignored).

    Raises:
        FormatError: If the file is malformed
    """
    path = Path(path)
    try:
        with open(path, newline="", encoding="utf-8") as f:
            rows = [row for row in csv.reader(f) if row]
    except OSError as e:
        raise FormatError(f"Cannot read spillover file {path}: {e}", path=path) from e

    if len(rows) < 2:
        raise FormatError(f"Spillover file {path.name} is empty", path=path)

    header = [h.strip() for h in rows[0] if h.strip()]
    body = rows[1:]
    if body and len(body[0]) == len(header) + 1:
        body = [row[1:] for row in body]

    try:
        values = np.array(body, dtype=np.float64)
        return SpilloverMatrix.from_array(header, values)
    except ValueError as e:
        raise FormatError(f"Invalid spillover file {path.name}: {e}", path=path) from e


def compensate(table: EventTable, spillover: SpilloverMatrix) -> EventTable:
    """
    Return a compensated copy of an event table.

    Args:
        table: Source events (unchanged)
        spillover: Spillover matrix over channels present in the table

    Raises:
        SchemaMismatchError: If a spillover channel is missing from the table
        FormatError: If the spillover matrix is singular
    """
    missing = [ch for ch in spillover.channels if ch not in table]
    if missing:
        raise SchemaMismatchError(f"Spillover channel(s) not in sample: {missing}")

    channels = list(spillover.channels)
    compensated = table.columns(channels) @ spillover.inverse()

    logger.debug(f"Compensated {len(channels)} channel(s) over {table.n_events} events")
    return table.with_values(
        {name: compensated[:, i] for i, name in enumerate(channels)}
    )
