"""Data containers: RecordingLayout, UnitWaveforms and RawWaveformResults."""

from __future__ import annotations

import logging
import os
import pickle
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import pandas as pd

from speedwave.config import SYNC_CHANNEL_COUNT

logger = logging.getLogger("speedwave")


@dataclass(frozen=True)
class RecordingLayout:
    """Fixed geometry of an interleaved binary recording."""
    n_channels: int                          # Channels per frame, including sync
    sample_width: int                        # Bytes per sample
    file_size: int                           # Bytes (uncompressed size for .cbin)

    @property
    def frame_size(self) -> int:
        return self.n_channels * self.sample_width

    @property
    def n_samples(self) -> int:
        return self.file_size // self.frame_size

    @property
    def n_signal_channels(self) -> int:
        """Channels kept in snippets: the sync channel is dropped on 385-channel probes."""
        if self.n_channels == SYNC_CHANNEL_COUNT:
            return self.n_channels - 1
        return self.n_channels

    def byte_offset(self, start_sample: int) -> int:
        # Python ints never overflow, unlike int32 sample indices times 385 channels
        return int(start_sample) * self.n_channels * self.sample_width


@dataclass
class BatchDecodeFailure:
    """A compressed batch that could not be decoded; its snippets stay missing."""
    batch_start: int
    batch_stop: int
    message: str


@dataclass
class UnitSnippetSet:
    """Raw snippets of one unit, before aggregation. Missing slots are NaN."""
    unit_id: int
    spike_indices: np.ndarray                # Deduplicated spike samples, one per filled-or-missing slot
    snippets: np.ndarray                     # Shape: (n_channels, spike_width, n_spikes_to_extract)
    n_extracted: int = 0


@dataclass
class UnitWaveforms:
    """Raw waveform result for one unit."""
    unit_id: int
    mean_waveform: np.ndarray                # Shape: (n_channels, spike_width), baseline corrected
    peak_channel: Optional[int]              # None when no snippet could be extracted
    spike_indices: np.ndarray                # Deduplicated sampled spike samples
    n_extracted: int = 0                     # Snippets actually read
    snippets: Optional[np.ndarray] = None    # Shape: (n_channels, spike_width, n_spikes_to_extract)

    @property
    def has_peak(self) -> bool:
        return self.peak_channel is not None

    def peak_waveform(self) -> np.ndarray:
        """Mean waveform on the unit's own peak channel (1-D, spike_width samples)."""
        if self.peak_channel is None:
            raise ValueError(f"Unit {self.unit_id} has no extracted snippets, peak channel is undefined")
        return self.mean_waveform[self.peak_channel, :]


@dataclass
class RawWaveformResults:
    """Ordered per-unit results of one extraction run."""
    units: List[UnitWaveforms]
    layout: RecordingLayout
    spike_width: int
    n_spikes_to_extract: int
    execution_time: float = 0.0
    decode_failures: List[BatchDecodeFailure] = field(default_factory=list)

    def __post_init__(self):
        self._index = {unit.unit_id: i for i, unit in enumerate(self.units)}

    def __len__(self) -> int:
        return len(self.units)

    def __iter__(self):
        return iter(self.units)

    def __getitem__(self, unit_id: int) -> UnitWaveforms:
        try:
            return self.units[self._index[unit_id]]
        except KeyError:
            raise KeyError(f"Unit {unit_id} not found") from None

    def __contains__(self, unit_id) -> bool:
        return unit_id in self._index

    @property
    def unit_ids(self) -> np.ndarray:
        return np.array([unit.unit_id for unit in self.units], dtype=np.int64)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, filename: Union[str, Path]) -> None:
        """Save results to disk, replacing any previous file in one step."""
        path = Path(filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=path.name, suffix='.tmp')
        try:
            with os.fdopen(fd, 'wb') as f:
                pickle.dump(self, f, protocol=pickle.HIGHEST_PROTOCOL)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise

    @classmethod
    def load(cls, filename: Union[str, Path]) -> "RawWaveformResults":
        """Load results from disk."""
        with open(filename, 'rb') as f:
            results = pickle.load(f)
        if not isinstance(results, cls):
            raise TypeError(f"{filename} does not contain {cls.__name__} (found {type(results).__name__})")
        return results

    # ------------------------------------------------------------------
    # Consumer views
    # ------------------------------------------------------------------

    def peak_waveform(self, unit_id: int) -> np.ndarray:
        """``mean_waveform[peak_channel, :]`` for one unit."""
        return self[unit_id].peak_waveform()

    def mean_waveforms(self) -> np.ndarray:
        """Stack of mean waveforms, shape (n_units, n_channels, spike_width)."""
        if not self.units:
            return np.empty((0, self.layout.n_signal_channels, self.spike_width), dtype=np.float32)
        return np.stack([unit.mean_waveform for unit in self.units])

    def peak_channels(self) -> np.ndarray:
        """Peak channel per unit, -1 where undefined."""
        return np.array(
            [unit.peak_channel if unit.has_peak else -1 for unit in self.units], dtype=np.int64
        )

    def to_dataframe(self) -> pd.DataFrame:
        """One row per unit: id, peak channel, extracted snippet count, peak-to-trough amplitude."""
        data = []
        for unit in self.units:
            if unit.has_peak:
                wf = unit.peak_waveform()
                amplitude = float(np.max(wf) - np.min(wf))
            else:
                amplitude = np.nan
            data.append({
                'unit_id': unit.unit_id,
                'peak_channel': unit.peak_channel if unit.has_peak else pd.NA,
                'n_sampled': len(unit.spike_indices),
                'n_extracted': unit.n_extracted,
                'peak_amplitude': amplitude,
            })
        return pd.DataFrame(data, columns=['unit_id', 'peak_channel', 'n_sampled', 'n_extracted', 'peak_amplitude'])

    def summary(self) -> Dict[str, Any]:
        """Generate a summary of the results."""
        return {
            'total_units': len(self.units),
            'units_without_peak': sum(1 for unit in self.units if not unit.has_peak),
            'total_snippets': sum(unit.n_extracted for unit in self.units),
            'n_channels': self.layout.n_signal_channels,
            'spike_width': self.spike_width,
            'failed_batches': len(self.decode_failures),
            'execution_time': self.execution_time,
        }
