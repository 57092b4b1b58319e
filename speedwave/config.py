"""Enums and configuration dataclass for raw waveform extraction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger("speedwave")

# ---------------------------------------------------------------------------
# Optional dependency flags
# ---------------------------------------------------------------------------
_HAS_MTSCOMP = False

try:
    import mtscomp
    _HAS_MTSCOMP = True
except ImportError:
    logger.info("mtscomp not available - compressed (.cbin) recordings need a custom decoder")


# Hardware default for Neuropixels probes: 384 signal channels + 1 sync channel
SYNC_CHANNEL_COUNT = 385

CACHE_FILENAME = 'raw_waveforms.pkl'


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RecordingFormat(str, Enum):
    """Supported on-disk recording formats."""
    RAW = 'raw'                 # interleaved int16 .bin / .dat
    COMPRESSED = 'compressed'   # mtscomp .cbin + .ch
    AUTO = 'auto'


# ---------------------------------------------------------------------------
# Configuration dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExtractionConfiguration:
    """Complete, immutable configuration for one raw waveform extraction run."""
    # Recording layout
    n_channels: int = SYNC_CHANNEL_COUNT      # Channels in the file, including any sync channel
    sample_dtype: str = 'int16'               # On-disk sample type
    recording_format: RecordingFormat = RecordingFormat.AUTO
    sampling_rate: Optional[float] = None     # Hz, only needed for compressed batching without .meta

    # Extraction settings
    n_spikes_to_extract: int = 100            # Sampled spikes per unit (with replacement)
    spike_width: int = 83                     # Window width in samples
    baseline_samples: int = 10                # Leading samples treated as pre-spike baseline
    smoothing_window: int = 5                 # Gaussian window used for peak channel detection, odd
    random_seed: Optional[int] = None         # Seed for the spike sampler
    n_jobs: int = 1                           # Worker threads for raw extraction

    # Output settings
    results_dir: Optional[Union[str, Path]] = None  # Cache folder, None disables caching
    re_extract: bool = False                  # Ignore and overwrite an existing cache
    keep_snippets: bool = True                # Keep per-spike snippets in the results
    verbose: bool = True                      # Progress logging

    def __post_init__(self):
        if self.n_channels < 1:
            raise ValueError(f"n_channels must be positive, got {self.n_channels}")
        if self.n_spikes_to_extract < 1:
            raise ValueError(f"n_spikes_to_extract must be positive, got {self.n_spikes_to_extract}")
        if self.spike_width < 1:
            raise ValueError(f"spike_width must be positive, got {self.spike_width}")
        if not 1 <= self.baseline_samples <= self.spike_width:
            raise ValueError(
                f"baseline_samples must lie in [1, spike_width={self.spike_width}], got {self.baseline_samples}"
            )
        if self.smoothing_window < 1 or self.smoothing_window % 2 == 0:
            raise ValueError(f"smoothing_window must be a positive odd number, got {self.smoothing_window}")
        if self.n_jobs < 1:
            raise ValueError(f"n_jobs must be positive, got {self.n_jobs}")
        if self.sampling_rate is not None and self.sampling_rate <= 0:
            raise ValueError(f"sampling_rate must be positive, got {self.sampling_rate}")
        # str values from the CLI become enum members
        object.__setattr__(self, 'recording_format', RecordingFormat(self.recording_format))

    @property
    def half_width(self) -> int:
        """Samples on each side of the spike sample: floor(spike_width / 2)."""
        return self.spike_width // 2

    @property
    def cache_path(self) -> Optional[Path]:
        if self.results_dir is None:
            return None
        return Path(self.results_dir) / CACHE_FILENAME
