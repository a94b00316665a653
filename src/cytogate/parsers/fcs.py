"""
FCS reader.

Reads FCS 2.0/3.0/3.1 files with flowio and converts them into EventTables.
flowio handles the HEADER/TEXT/DATA segment decoding; this module validates
the result against the TEXT keywords ($PAR, $TOT) so that truncated or
inconsistent files are rejected instead of yielding partial data.

flowio exposes TEXT keywords lower-cased with the leading "$" removed
("$PAR" -> "par"); EventTable.keywords keeps that convention.
"""

import logging

from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import flowio
import numpy as np

from cytogate.events.table import ChannelInfo, EventTable
from cytogate.exceptions import FormatError, SchemaMismatchError
from cytogate.parsers.base import ReaderDetectionResult, SampleReader
from cytogate.parsers.types import ReaderMetadata

logger = logging.getLogger(__name__)

FCS_MAGIC = b"FCS"
SUPPORTED_VERSIONS = ("FCS2.0", "FCS3.0", "FCS3.1")


def _required_int(text: Mapping[str, str], key: str, path: Path) -> int:
    value = text.get(key)
    if value is None:
        raise FormatError(
            f"The ${key.upper()} keyword is missing; check the FCS file is complete",
            path=path,
        )
    try:
        return int(str(value).strip())
    except ValueError:
        raise FormatError(
            f"The ${key.upper()} keyword is not an integer: {value!r}", path=path
        ) from None


def _channel_infos(
    fd: Any,
    par: int,
    name_field: Literal["pnn", "pns"],
    path: Path,
) -> list[ChannelInfo]:
    if len(fd.channels) != par:
        raise FormatError(
            f"$PAR declares {par} parameter(s) but {len(fd.channels)} were described",
            path=path,
        )

    infos = []
    for key in sorted(fd.channels, key=lambda k: int(k)):
        meta = fd.channels[key]
        pnn = str(meta.get("pnn") or f"P{key}").strip()
        pns = str(meta.get("pns") or "").strip() or None
        if pns == pnn:
            pns = None

        if name_field == "pns" and pns:
            name, label = pns, pnn
        else:
            name, label = pnn, pns

        range_value = fd.text.get(f"p{key}r")
        try:
            channel_range = float(range_value) if range_value else None
        except ValueError:
            channel_range = None

        infos.append(ChannelInfo(name=name, label=label, range=channel_range))
    return infos


class FCSReader(SampleReader):
    """
    Reader for Flow Cytometry Standard files.

    Args:
        name_field: Use $PnN ("pnn", default) or $PnS ("pns") as channel names
        preprocess: Apply $PnE/$PnG scaling to produce linear values
        ignore_offset_error: Tolerate the common off-by-one DATA offset
    """

    def __init__(
        self,
        name_field: Literal["pnn", "pns"] = "pnn",
        preprocess: bool = True,
        ignore_offset_error: bool = False,
    ) -> None:
        self.name_field = name_field
        self.preprocess = preprocess
        self.ignore_offset_error = ignore_offset_error
        super().__init__()

    def get_metadata(self) -> ReaderMetadata:
        return ReaderMetadata(
            reader_id="fcs",
            reader_version="1.0.0",
            supported_formats=list(SUPPORTED_VERSIONS),
            extensions=[".fcs", ".lmd"],
            description="Flow Cytometry Standard reader backed by flowio",
            requires_libraries=["flowio", "numpy"],
        )

    def detect(self, path: Path) -> ReaderDetectionResult:
        path = Path(path)
        if not path.is_file():
            return ReaderDetectionResult(detected=False, message="Not a file")

        try:
            with open(path, "rb") as f:
                magic = f.read(6)
        except OSError as e:
            return ReaderDetectionResult(detected=False, message=str(e))

        if magic.startswith(FCS_MAGIC):
            return ReaderDetectionResult(
                detected=True,
                confidence=1.0,
                message=f"Found {magic.decode(errors='replace')} header",
            )
        if self._extension_match(path):
            # Let read() report the malformed header as a FormatError
            return ReaderDetectionResult(
                detected=True,
                confidence=0.5,
                message="FCS extension without FCS header",
            )
        return ReaderDetectionResult(detected=False)

    def read(self, path: Path) -> EventTable:
        """
        Read an FCS file.

        Raises:
            FormatError: On a missing file, an unparseable header/TEXT/DATA
                segment, missing $PAR/$TOT, or an event buffer that does not
                match $PAR x $TOT
        """
        path = Path(path)
        if not path.is_file():
            raise FormatError(f"File not found: {path}", path=path)

        try:
            fd = flowio.FlowData(
                str(path), ignore_offset_error=self.ignore_offset_error
            )
        except Exception as e:
            raise FormatError(
                f"Malformed FCS file {path.name}: {e}", path=path
            ) from e

        text: dict[str, str] = dict(fd.text)
        par = _required_int(text, "par", path)
        tot = _required_int(text, "tot", path)

        try:
            events = np.asarray(
                fd.as_array(preprocess=self.preprocess), dtype=np.float64
            )
        except Exception as e:
            raise FormatError(
                f"Could not decode DATA segment of {path.name}: {e}", path=path
            ) from e

        if events.size != par * tot:
            raise FormatError(
                f"DATA segment holds {events.size} value(s), expected "
                f"$PAR x $TOT = {par} x {tot}; the file may be truncated",
                path=path,
            )
        events = events.reshape(tot, par)

        channels = _channel_infos(fd, par, self.name_field, path)

        try:
            table = EventTable(events, channels, keywords=text)
        except SchemaMismatchError as e:
            raise FormatError(
                f"Invalid channel layout in {path.name}: {e}", path=path
            ) from e

        logger.debug(
            f"Read {path.name}: {table.n_events} events x {table.n_channels} channels"
        )
        return table


def write_fcs(
    path: Path | str,
    table: EventTable,
    metadata: Mapping[str, str] | None = None,
) -> Path:
    """
    Write an EventTable as an FCS 3.1 file (float32 DATA segment).

    Channel labels are written as $PnS; unlabelled channels repeat their
    name, which the reader maps back to no label.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    labels = [c.label or c.name for c in table.channels]
    has_labels = any(c.label for c in table.channels)
    with open(path, "wb") as f:
        flowio.create_fcs(
            f,
            table.data.flatten().tolist(),
            table.channel_names,
            opt_channel_names=labels if has_labels else None,
            metadata_dict=dict(metadata) if metadata else None,
        )
    return path
