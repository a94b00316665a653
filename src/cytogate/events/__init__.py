"""Event tables and sample sets."""

from cytogate.events.sample_set import (
    MetadataLookup,
    SampleSet,
    extract_field,
    extract_well,
    harmonize_channels,
    load_sample_set,
)
from cytogate.events.table import ChannelInfo, EventTable

__all__ = [
    "ChannelInfo",
    "EventTable",
    "MetadataLookup",
    "SampleSet",
    "extract_field",
    "extract_well",
    "harmonize_channels",
    "load_sample_set",
]
