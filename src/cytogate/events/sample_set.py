"""
Sample sets: one experiment's worth of event tables plus per-sample metadata.

Loading has partial-failure semantics: a malformed file is excluded from the
set with its reason recorded in ``SampleSet.failures`` instead of aborting
the batch.
"""

import logging
import re

from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from cytogate.constants import DEFAULT_WELL_PATTERN
from cytogate.events.table import EventTable
from cytogate.exceptions import FormatError, SchemaMismatchError

if TYPE_CHECKING:
    from cytogate.parsers.base import SampleReader

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetadataLookup:
    """
    Result of a metadata extraction.

    ``found=False`` means the field is absent; ``found=True`` with an empty
    ``value`` means the field is present but empty.
    """

    found: bool
    value: str = ""

    @classmethod
    def missing(cls) -> "MetadataLookup":
        return cls(found=False)


def extract_field(text: str, pattern: str) -> MetadataLookup:
    """
    Extract a metadata field from a string with a regular expression.

    The first participating capture group is returned, or the whole match if
    the pattern has no groups. Absence is reported, never raised.

    Args:
        text: Source string (typically a file name or keyword value)
        pattern: Regular expression

    Returns:
        MetadataLookup describing the result
    """
    match = re.search(pattern, text)
    if match is None:
        return MetadataLookup.missing()

    if match.re.groups:
        for group in match.groups():
            if group is not None:
                return MetadataLookup(found=True, value=group)
        return MetadataLookup(found=True, value="")

    return MetadataLookup(found=True, value=match.group(0))


def extract_well(filename: str, pattern: str = DEFAULT_WELL_PATTERN) -> MetadataLookup:
    """
    Extract a plate well identifier (e.g. "B07") from a file name.

    Example:
        >>> extract_well("Specimen_001_B07_B07_007.fcs").value
        'B07'
    """
    return extract_field(Path(filename).name, pattern)


class SampleSet:
    """
    Ordered collection of event tables keyed by sample id.

    Attributes:
        metadata: sample id -> {field: value}
        failures: sample id -> reason, for samples excluded while loading
    """

    def __init__(
        self,
        samples: Mapping[str, EventTable],
        metadata: Mapping[str, Mapping[str, str]] | None = None,
        failures: Mapping[str, str] | None = None,
    ):
        self._samples: dict[str, EventTable] = dict(samples)
        metadata = metadata or {}
        self._metadata: dict[str, dict[str, str]] = {
            sid: dict(metadata.get(sid, {})) for sid in self._samples
        }
        self._failures: dict[str, str] = dict(failures or {})

    @property
    def sample_ids(self) -> list[str]:
        return list(self._samples)

    @property
    def failures(self) -> dict[str, str]:
        return dict(self._failures)

    def __getitem__(self, sample_id: str) -> EventTable:
        return self._samples[sample_id]

    def __contains__(self, sample_id: object) -> bool:
        return sample_id in self._samples

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[str]:
        return iter(self._samples)

    def items(self) -> Iterator[tuple[str, EventTable]]:
        return iter(self._samples.items())

    def metadata_for(self, sample_id: str) -> dict[str, str]:
        if sample_id not in self._samples:
            raise KeyError(sample_id)
        return dict(self._metadata[sample_id])

    @property
    def channel_names(self) -> list[str]:
        """Channel names of the first sample (shared by all once harmonized)."""
        if not self._samples:
            return []
        return next(iter(self._samples.values())).channel_names

    @property
    def is_harmonized(self) -> bool:
        """True if every sample has the same channel set."""
        sets = {frozenset(t.channel_names) for t in self._samples.values()}
        return len(sets) <= 1

    def with_metadata(self, sample_id: str, **fields: str) -> "SampleSet":
        """Return a new set with metadata fields added for one sample."""
        if sample_id not in self._samples:
            raise KeyError(sample_id)
        metadata = {sid: dict(m) for sid, m in self._metadata.items()}
        metadata[sample_id].update(fields)
        return SampleSet(self._samples, metadata, self._failures)

    def with_failure(self, sample_id: str, reason: str) -> "SampleSet":
        """Return a new set with a sample excluded and its reason recorded."""
        samples = {sid: t for sid, t in self._samples.items() if sid != sample_id}
        failures = {**self._failures, sample_id: reason}
        return SampleSet(samples, self._metadata, failures)

    def map_tables(self, fn: Callable[[EventTable], EventTable]) -> "SampleSet":
        """Apply a pure table transformation to every sample."""
        return SampleSet(
            {sid: fn(table) for sid, table in self._samples.items()},
            self._metadata,
            self._failures,
        )

    def subset(self, sample_ids: Iterable[str]) -> "SampleSet":
        """Return a new set restricted to the given samples, in that order."""
        ids = list(sample_ids)
        missing = [sid for sid in ids if sid not in self._samples]
        if missing:
            raise KeyError(f"Unknown sample id(s): {missing}")
        return SampleSet(
            {sid: self._samples[sid] for sid in ids}, self._metadata, self._failures
        )

    def __repr__(self) -> str:
        return f"<SampleSet samples={len(self)} failures={len(self._failures)}>"


def harmonize_channels(
    sample_set: SampleSet,
    rename: Mapping[str, str] | None = None,
    required: Sequence[str] | None = None,
) -> SampleSet:
    """
    Reconcile channel sets across a sample set by name.

    Each table is first renamed with the entries of ``rename`` that apply to
    it, then restricted to the channels common to every sample, in the first
    sample's order.

    Args:
        sample_set: Source samples (unchanged)
        rename: Optional old name -> new name map, applied where present
        required: Channels that must survive harmonization; samples lacking
            one are excluded with the reason recorded in ``failures``

    Returns:
        New SampleSet whose tables share one channel set

    Raises:
        SchemaMismatchError: If no channel is shared, or no sample has every
            required channel
    """
    if len(sample_set) == 0:
        return sample_set

    rename = dict(rename or {})

    def _rename(table: EventTable) -> EventTable:
        applicable = {old: new for old, new in rename.items() if old in table}
        return table.rename_channels(applicable) if applicable else table

    renamed = sample_set.map_tables(_rename)

    if required:
        for sid, table in list(renamed.items()):
            missing = [ch for ch in required if ch not in table]
            if missing:
                reason = f"Missing required channel(s): {missing}"
                logger.warning(f"Excluding sample '{sid}': {reason}")
                renamed = renamed.with_failure(sid, reason)
        if len(renamed) == 0:
            raise SchemaMismatchError(
                f"No sample has every required channel {list(required)}"
            )

    first = renamed[renamed.sample_ids[0]]
    common = [
        name
        for name in first.channel_names
        if all(name in table for _, table in renamed.items())
    ]
    if not common:
        raise SchemaMismatchError("Samples share no channel names")

    for sid, table in renamed.items():
        dropped = sorted(set(table.channel_names) - set(common))
        if dropped:
            logger.info(f"Harmonization drops {dropped} from sample '{sid}'")

    return renamed.map_tables(lambda table: table.select_channels(common))


def load_sample_set(
    paths: Iterable[Path | str],
    reader: "SampleReader | None" = None,
    metadata_patterns: Mapping[str, str] | None = None,
    well_pattern: str | None = DEFAULT_WELL_PATTERN,
) -> SampleSet:
    """
    Read a batch of sample files into a SampleSet.

    A file that fails with FormatError or SchemaMismatchError (or cannot be
    opened) is excluded and its reason recorded in ``failures``; the rest of
    the batch still loads.

    Args:
        paths: Sample files; the sample id is the file stem
        reader: Reader to use for every file (default: auto-detect)
        metadata_patterns: field name -> regex applied to the file name
        well_pattern: Regex for the "well" field, or None to skip it

    Returns:
        SampleSet with "file" metadata plus any extracted fields
    """
    from cytogate.parsers.registry import read_sample

    samples: dict[str, EventTable] = {}
    metadata: dict[str, dict[str, str]] = {}
    failures: dict[str, str] = {}

    patterns = dict(metadata_patterns or {})
    if well_pattern is not None:
        patterns.setdefault("well", well_pattern)

    for path in paths:
        path = Path(path)
        sample_id = path.stem

        if sample_id in samples or sample_id in failures:
            failures[path.name] = f"Duplicate sample id '{sample_id}'"
            logger.warning(f"Skipping {path}: duplicate sample id '{sample_id}'")
            continue

        try:
            table = reader.read(path) if reader is not None else read_sample(path)
        except (FormatError, SchemaMismatchError, OSError) as e:
            failures[sample_id] = str(e)
            logger.warning(f"Excluding sample '{sample_id}': {e}")
            continue

        fields = {"file": path.name}
        for field, pattern in patterns.items():
            lookup = extract_field(path.name, pattern)
            if lookup.found:
                fields[field] = lookup.value
            else:
                logger.debug(f"Field '{field}' not found in {path.name}")

        samples[sample_id] = table
        metadata[sample_id] = fields

    logger.info(f"Loaded {len(samples)} sample(s), excluded {len(failures)}")
    return SampleSet(samples, metadata, failures)
