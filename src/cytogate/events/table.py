"""
Event table: the per-sample matrix of channel readings.

An EventTable is immutable. Every transformation (subsetting, renaming,
compensation, scaling) returns a new table and leaves the source untouched,
so the raw acquisition is always available for audit.
"""

import logging

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import numpy as np

from pydantic import BaseModel, ConfigDict, Field

from cytogate.exceptions import SchemaMismatchError

logger = logging.getLogger(__name__)


class ChannelInfo(BaseModel):
    """Typed metadata for one measured channel."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Channel name, unique within a table (e.g. 'FSC.A')")
    label: str | None = Field(
        default=None, description="Marker/stain display name (e.g. 'CD4')"
    )
    range: float | None = Field(
        default=None, ge=0, description="Instrument range ($PnR) if known"
    )

    @property
    def display_name(self) -> str:
        """Label if present, else channel name."""
        return self.label or self.name

    def renamed(self, name: str) -> "ChannelInfo":
        """Return a copy of this channel with a new name."""
        return self.model_copy(update={"name": name})


def _as_channel_infos(channels: Iterable[str | ChannelInfo]) -> tuple[ChannelInfo, ...]:
    infos = tuple(
        ch if isinstance(ch, ChannelInfo) else ChannelInfo(name=str(ch))
        for ch in channels
    )
    names = [c.name for c in infos]
    if len(set(names)) != len(names):
        duplicates = sorted({n for n in names if names.count(n) > 1})
        raise SchemaMismatchError(f"Duplicate channel names: {duplicates}")
    return infos


class EventTable:
    """
    Immutable table of events (rows) by channels (columns).

    Attributes:
        data: Read-only float64 array of shape (n_events, n_channels)
        channels: Channel metadata, in column order
        keywords: Source keywords (e.g. the FCS TEXT segment)

    Example:
        >>> table = EventTable(np.zeros((10, 2)), ["FSC.A", "SSC.A"])
        >>> table.n_events
        10
        >>> table.column("FSC.A").shape
        (10,)
    """

    __slots__ = ("_data", "_channels", "_index", "_keywords")

    def __init__(
        self,
        data: Any,
        channels: Sequence[str | ChannelInfo],
        keywords: Mapping[str, str] | None = None,
    ):
        infos = _as_channel_infos(channels)
        array = np.array(data, dtype=np.float64, copy=True)

        if array.ndim == 1 and array.size == 0:
            array = array.reshape(0, len(infos))
        if array.ndim != 2:
            raise SchemaMismatchError(
                f"Event data must be two-dimensional, got {array.ndim} dimension(s)"
            )
        if array.shape[1] != len(infos):
            raise SchemaMismatchError(
                f"Event data has {array.shape[1]} column(s) but "
                f"{len(infos)} channel(s) were declared"
            )

        array.setflags(write=False)
        self._data = array
        self._channels = infos
        self._index = {c.name: i for i, c in enumerate(infos)}
        self._keywords = dict(keywords or {})

    @classmethod
    def from_columns(
        cls,
        columns: Mapping[str, Sequence[float] | np.ndarray],
        keywords: Mapping[str, str] | None = None,
    ) -> "EventTable":
        """
        Build a table from a mapping of channel name to column values.

        Raises:
            SchemaMismatchError: If the columns differ in length
        """
        names = list(columns)
        if not names:
            return cls(np.empty((0, 0)), [], keywords)
        arrays = [np.asarray(columns[n], dtype=np.float64) for n in names]
        lengths = {len(a) for a in arrays}
        if len(lengths) > 1:
            raise SchemaMismatchError(
                f"Columns have differing lengths: {sorted(lengths)}"
            )
        return cls(np.column_stack(arrays), names, keywords)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def data(self) -> np.ndarray:
        return self._data

    @property
    def channels(self) -> tuple[ChannelInfo, ...]:
        return self._channels

    @property
    def channel_names(self) -> list[str]:
        return [c.name for c in self._channels]

    @property
    def keywords(self) -> dict[str, str]:
        return dict(self._keywords)

    @property
    def n_events(self) -> int:
        return int(self._data.shape[0])

    @property
    def n_channels(self) -> int:
        return len(self._channels)

    def __len__(self) -> int:
        return self.n_events

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def has_channels(self, names: Iterable[str]) -> bool:
        return all(n in self._index for n in names)

    def channel(self, name: str) -> ChannelInfo:
        """Get channel metadata by name."""
        return self._channels[self._channel_index(name)]

    def column(self, name: str) -> np.ndarray:
        """Get a read-only view of one channel's values."""
        return self._data[:, self._channel_index(name)]

    def columns(self, names: Sequence[str]) -> np.ndarray:
        """Get an (n_events, len(names)) array of the requested channels."""
        idx = [self._channel_index(n) for n in names]
        return self._data[:, idx]

    def _channel_index(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise SchemaMismatchError(
                f"Channel '{name}' not found. Available: {self.channel_names}"
            ) from None

    # ------------------------------------------------------------------
    # Pure transformations
    # ------------------------------------------------------------------

    def subset(self, mask: np.ndarray) -> "EventTable":
        """
        Return a new table with the rows selected by a boolean mask.

        Raises:
            ValueError: If the mask length does not match the event count
        """
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (self.n_events,):
            raise ValueError(
                f"Mask of shape {mask.shape} does not match {self.n_events} events"
            )
        return EventTable(self._data[mask], self._channels, self._keywords)

    def select_channels(self, names: Sequence[str]) -> "EventTable":
        """Return a new table restricted to the named channels, in that order."""
        idx = [self._channel_index(n) for n in names]
        return EventTable(
            self._data[:, idx], [self._channels[i] for i in idx], self._keywords
        )

    def rename_channels(self, mapping: Mapping[str, str]) -> "EventTable":
        """
        Return a new table with channels renamed by an explicit mapping.

        Names absent from the mapping are kept. Unknown source names are an
        error so that typos in a rename map do not pass silently.

        Raises:
            SchemaMismatchError: On unknown source names or resulting duplicates
        """
        unknown = sorted(set(mapping) - set(self._index))
        if unknown:
            raise SchemaMismatchError(f"Cannot rename unknown channel(s): {unknown}")
        renamed = [
            c.renamed(mapping[c.name]) if c.name in mapping else c
            for c in self._channels
        ]
        return EventTable(self._data, renamed, self._keywords)

    def with_values(self, values: Mapping[str, np.ndarray]) -> "EventTable":
        """
        Return a new table with the given channel columns replaced.

        Raises:
            SchemaMismatchError: If a channel is unknown
            ValueError: If a column length does not match the event count
        """
        data = np.array(self._data, copy=True)
        for name, column in values.items():
            column = np.asarray(column, dtype=np.float64)
            if column.shape != (self.n_events,):
                raise ValueError(
                    f"Column '{name}' has shape {column.shape}, expected ({self.n_events},)"
                )
            data[:, self._channel_index(name)] = column
        return EventTable(data, self._channels, self._keywords)

    def with_channels(self, channels: Sequence[ChannelInfo]) -> "EventTable":
        """Return a new table with replaced channel metadata (same column count)."""
        return EventTable(self._data, channels, self._keywords)

    # ------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EventTable):
            return NotImplemented
        return (
            self.channel_names == other.channel_names
            and self._data.shape == other._data.shape
            and bool(np.array_equal(self._data, other._data, equal_nan=True))
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"<EventTable events={self.n_events} channels={self.channel_names}>"
