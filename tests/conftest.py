"""
Pytest configuration and shared fixtures for SpeedWave tests.

This module provides:
    - Synthetic int16 recordings written to a temporary folder
    - An in-memory batch decoder standing in for a compressed reader
"""

import numpy as np
import pytest

# Trough shape added around each synthetic spike
SPIKE_SHAPE = np.array([0.3, 0.7, 1.0, 0.7, 0.3])


def add_spikes(data, spike_times, channel, amplitude=-400.0):
    """Add a short trough on ``channel`` at every spike sample (in place)."""
    half = len(SPIKE_SHAPE) // 2
    for t in spike_times:
        segment = (amplitude * SPIKE_SHAPE).astype(np.int16)
        data[t - half:t + half + 1, channel] += segment
    return data


@pytest.fixture
def make_recording(tmp_path):
    """Factory writing a (n_samples, n_channels) int16 recording to disk.

    ``spikes`` maps channel -> spike samples that get a synthetic trough.
    Returns (path, data).
    """
    def _make(n_samples=6000, n_channels=8, spikes=None, seed=0, name='recording.ap.bin'):
        rng = np.random.default_rng(seed)
        data = rng.integers(-20, 20, size=(n_samples, n_channels), dtype=np.int16)
        for channel, times in (spikes or {}).items():
            add_spikes(data, times, channel)
        path = tmp_path / name
        data.tofile(path)
        return path, data
    return _make


class ArrayDecoder:
    """BatchDecoder over an in-memory array; raises for chosen batch starts."""

    def __init__(self, data, sample_rate=1000.0, fail_starts=()):
        self.data = data
        self.sample_rate = sample_rate
        self.fail_starts = set(fail_starts)
        self.calls = []
        self.closed = False

    @property
    def n_samples(self):
        return self.data.shape[0]

    @property
    def n_channels(self):
        return self.data.shape[1]

    def __call__(self, start, stop):
        self.calls.append((start, stop))
        if start in self.fail_starts:
            raise RuntimeError(f"corrupt chunk at {start}")
        return self.data[start:stop]

    def close(self):
        self.closed = True


@pytest.fixture
def array_decoder():
    """Factory for ArrayDecoder instances."""
    return ArrayDecoder


@pytest.fixture
def spike_train():
    """Two units on channels 2 and 5, away from the recording edges."""
    unit_a = np.arange(200, 5800, 97)
    unit_b = np.arange(250, 5800, 131)
    spike_times = np.concatenate([unit_a, unit_b])
    spike_clusters = np.concatenate([np.full(len(unit_a), 3), np.full(len(unit_b), 7)])
    order = np.argsort(spike_times)
    return {
        'channels': {2: unit_a, 5: unit_b},
        'spike_times': spike_times[order],
        'spike_clusters': spike_clusters[order],
    }
