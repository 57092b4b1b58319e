"""Recording layout, format detection and spike sorting output loading."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np

from speedwave.config import RecordingFormat
from speedwave.types import RecordingLayout

logger = logging.getLogger("speedwave")


class ChannelCountMismatchError(ValueError):
    """The declared channel count does not evenly divide the recording."""


def read_recording_layout(
    recording_path: Union[str, Path],
    n_channels: int,
    sample_dtype: str = 'int16',
) -> RecordingLayout:
    """Build and validate the layout of a raw interleaved recording.

    Raises:
        FileNotFoundError: if the recording does not exist.
        ChannelCountMismatchError: if the file size is not a whole number of frames.
    """
    recording_path = Path(recording_path)
    if not recording_path.is_file():
        raise FileNotFoundError(f"Recording file not found: {recording_path}")

    layout = RecordingLayout(
        n_channels=n_channels,
        sample_width=np.dtype(sample_dtype).itemsize,
        file_size=recording_path.stat().st_size,
    )
    validate_layout(layout, recording_path)
    return layout


def validate_layout(layout: RecordingLayout, source: Any = None) -> None:
    """Raise ChannelCountMismatchError unless file_size is a multiple of the frame size."""
    if layout.file_size % layout.frame_size != 0:
        raise ChannelCountMismatchError(
            f"{source or 'Recording'}: {layout.file_size} bytes is not a multiple of "
            f"{layout.n_channels} channels x {layout.sample_width} bytes"
        )


def detect_recording_format(filepath: Path) -> RecordingFormat:
    """Guess recording format from file extension (.cbin → COMPRESSED, .bin/.dat → RAW)."""
    suffix = Path(filepath).suffix.lower()

    if suffix == '.cbin':
        return RecordingFormat.COMPRESSED
    elif suffix in ('.bin', '.dat'):
        return RecordingFormat.RAW

    logger.warning(f"Could not detect format for {filepath}, assuming raw binary")
    return RecordingFormat.RAW


# ---------------------------------------------------------------------------
# SpikeGLX metadata
# ---------------------------------------------------------------------------

def find_meta_file(recording_path: Path) -> Optional[Path]:
    """Return the SpikeGLX .meta file sitting next to a recording, if any."""
    recording_path = Path(recording_path)
    meta_path = recording_path.with_suffix('.meta')
    return meta_path if meta_path.is_file() else None


def read_spikeglx_meta(meta_path: Union[str, Path]) -> Dict[str, str]:
    """Parse a SpikeGLX ``key=value`` .meta file. ``~`` prefixes are stripped from keys."""
    meta: Dict[str, str] = {}
    with open(meta_path, 'r') as f:
        for line in f:
            line = line.strip()
            if not line or '=' not in line:
                continue
            key, value = line.split('=', 1)
            meta[key.lstrip('~')] = value
    return meta


def meta_sampling_rate(meta: Dict[str, str]) -> Optional[float]:
    """Sampling rate in Hz from ``imSampRate`` (imec) or ``niSampRate`` (NI-DAQ)."""
    for key in ('imSampRate', 'niSampRate'):
        if key in meta:
            return float(meta[key])
    return None


def meta_file_size(meta: Dict[str, str]) -> Optional[int]:
    """Size in bytes of the uncompressed recording."""
    if 'fileSizeBytes' in meta:
        return int(meta['fileSizeBytes'])
    return None


# ---------------------------------------------------------------------------
# Spike sorting output
# ---------------------------------------------------------------------------

def load_spike_sorting(folder: Union[str, Path]) -> Tuple[np.ndarray, np.ndarray]:
    """Load spike sample indices and unit ids from a Kilosort / Phy output folder.

    Returns:
        (spike_times as int64 samples, spike_clusters as int64 unit ids)
    """
    folder = Path(folder)
    times_path = folder / 'spike_times.npy'
    if not times_path.exists():
        raise FileNotFoundError(f"spike_times.npy not found in {folder}")

    clusters_path = folder / 'spike_clusters.npy'
    if not clusters_path.exists():
        clusters_path = folder / 'spike_templates.npy'
        if not clusters_path.exists():
            raise FileNotFoundError(f"Neither spike_clusters.npy nor spike_templates.npy found in {folder}")
        logger.info("spike_clusters.npy not found, using spike_templates.npy")

    spike_times = np.load(times_path).astype(np.int64).ravel()
    spike_clusters = np.load(clusters_path).astype(np.int64).ravel()
    if len(spike_times) != len(spike_clusters):
        raise ValueError(
            f"{times_path.name} has {len(spike_times)} spikes but {clusters_path.name} has {len(spike_clusters)}"
        )
    return spike_times, spike_clusters
