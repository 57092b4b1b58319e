"""Spike index sampling: a fixed-size random subset of each unit's spikes."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Union

import numpy as np

logger = logging.getLogger("speedwave")


def sample_spike_indices(
    spike_times: np.ndarray,
    spike_clusters: np.ndarray,
    n_spikes_to_extract: int,
    rng: Optional[Union[np.random.Generator, int]] = None,
) -> Dict[int, np.ndarray]:
    """Draw ``n_spikes_to_extract`` spike samples per unit, with replacement, sorted.

    Sampling is always with replacement. Units with fewer spikes than requested
    therefore get repeated indices; this approximation is kept on purpose and
    biases the subset towards the repeated spikes. Extraction reads each
    distinct index once (see ``unique_indices``).

    Returns:
        {unit_id: int64 array of length n_spikes_to_extract}, ordered by unit id.
    """
    spike_times = np.asarray(spike_times).astype(np.int64).ravel()
    spike_clusters = np.asarray(spike_clusters).ravel()
    if len(spike_times) != len(spike_clusters):
        raise ValueError(
            f"spike_times ({len(spike_times)}) and spike_clusters ({len(spike_clusters)}) differ in length"
        )
    if n_spikes_to_extract < 1:
        raise ValueError(f"n_spikes_to_extract must be positive, got {n_spikes_to_extract}")

    rng = np.random.default_rng(rng)
    unit_ids, counts = np.unique(spike_clusters, return_counts=True)
    sampled: Dict[int, np.ndarray] = {}

    for unit_id in unit_ids:
        unit_times = spike_times[spike_clusters == unit_id]
        draws = rng.choice(unit_times, size=n_spikes_to_extract, replace=True)
        sampled[int(unit_id)] = np.sort(draws)

    n_small = int(np.sum(counts < n_spikes_to_extract))
    if n_small:
        logger.info(
            f"{n_small}/{len(unit_ids)} units have fewer than {n_spikes_to_extract} spikes, "
            f"their samples contain repeats"
        )
    return sampled


def unique_indices(sampled: np.ndarray) -> np.ndarray:
    """Collapse repeated draws so each spike is read once."""
    return np.unique(sampled)
