"""
SpeedWave: fast raw waveform extraction for spike-sorted units.

Public API:
    RawWaveformExtractor     pipeline class
    extract_raw_waveforms    functional shortcut
    ExtractionConfiguration  all tunable parameters
    RawWaveformResults       output container with persistence and consumer views
    UnitWaveforms            mean waveform + peak channel of one unit
"""

from speedwave.config import ExtractionConfiguration, RecordingFormat
from speedwave.types import (
    BatchDecodeFailure,
    RawWaveformResults,
    RecordingLayout,
    UnitSnippetSet,
    UnitWaveforms,
)
from speedwave.io import ChannelCountMismatchError, load_spike_sorting
from speedwave.accessor import (
    BatchedDecodeAccessor,
    MtscompDecoder,
    RawRecordingAccessor,
)
from speedwave.sampling import sample_spike_indices
from speedwave.aggregation import aggregate_unit, peak_channel
from speedwave.cache import ResultCache
from speedwave.core import RawWaveformExtractor, extract_raw_waveforms

__all__ = [
    "RawWaveformExtractor",
    "extract_raw_waveforms",
    "ExtractionConfiguration",
    "RecordingFormat",
    "RawWaveformResults",
    "UnitWaveforms",
    "UnitSnippetSet",
    "RecordingLayout",
    "BatchDecodeFailure",
    "ChannelCountMismatchError",
    "load_spike_sorting",
    "RawRecordingAccessor",
    "BatchedDecodeAccessor",
    "MtscompDecoder",
    "sample_spike_indices",
    "aggregate_unit",
    "peak_channel",
    "ResultCache",
]
