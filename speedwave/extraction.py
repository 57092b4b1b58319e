"""Waveform extraction: read the sampled spike windows of every unit into snippet sets."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List

import numpy as np

from speedwave.accessor import RecordingAccessor
from speedwave.config import ExtractionConfiguration
from speedwave.sampling import unique_indices
from speedwave.types import UnitSnippetSet

logger = logging.getLogger("speedwave")

# Progress is logged every this many units
_LOG_EVERY_UNITS = 20


def allocate_snippet_set(
    unit_id: int,
    sampled: np.ndarray,
    n_channels: int,
    config: ExtractionConfiguration,
) -> UnitSnippetSet:
    """NaN-filled snippet set for one unit; slot i belongs to the i-th distinct sampled spike."""
    snippets = np.full(
        (n_channels, config.spike_width, config.n_spikes_to_extract), np.nan, dtype=np.float32
    )
    return UnitSnippetSet(unit_id=unit_id, spike_indices=unique_indices(sampled), snippets=snippets)


def extract_unit_snippets(
    accessor: RecordingAccessor,
    snippet_set: UnitSnippetSet,
    config: ExtractionConfiguration,
) -> UnitSnippetSet:
    """Fill one unit's snippet set in place. Windows the accessor cannot serve stay NaN."""
    half_width = config.half_width
    for slot, spike_sample in enumerate(snippet_set.spike_indices):
        window = accessor.read_window(int(spike_sample) - half_width, config.spike_width)
        if window is None:
            continue
        snippet_set.snippets[:, :, slot] = window
        snippet_set.n_extracted += 1
    return snippet_set


def extract_waveforms(
    accessor: RecordingAccessor,
    sampled: Dict[int, np.ndarray],
    config: ExtractionConfiguration,
) -> List[UnitSnippetSet]:
    """Extract the snippets of every unit. Returns snippet sets in the order of ``sampled``.

    Sequential accessors (compressed recordings) are visited in ascending sample
    order across all units so every batch is decoded at most once. Raw
    accessors are visited unit by unit, on ``config.n_jobs`` threads if > 1.
    """
    snippet_sets = [
        allocate_snippet_set(unit_id, unit_samples, accessor.n_channels, config)
        for unit_id, unit_samples in sampled.items()
    ]
    if not snippet_sets:
        return snippet_sets

    start = time.time()
    if accessor.sequential:
        _extract_in_sample_order(accessor, snippet_sets, config)
    elif config.n_jobs > 1 and accessor.supports_parallel:
        _extract_parallel(accessor, snippet_sets, config)
    else:
        n_units = len(snippet_sets)
        for i, snippet_set in enumerate(snippet_sets, start=1):
            extract_unit_snippets(accessor, snippet_set, config)
            if config.verbose and (i % _LOG_EVERY_UNITS == 0 or i == n_units):
                logger.info(f"Extracted {i}/{n_units} raw waveforms")

    n_read = sum(s.n_extracted for s in snippet_sets)
    n_wanted = sum(len(s.spike_indices) for s in snippet_sets)
    logger.info(f"Read {n_read}/{n_wanted} snippets in {time.time() - start:.2f} seconds")
    return snippet_sets


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _extract_in_sample_order(
    accessor: RecordingAccessor,
    snippet_sets: List[UnitSnippetSet],
    config: ExtractionConfiguration,
) -> None:
    half_width = config.half_width
    spike_samples = np.concatenate([s.spike_indices for s in snippet_sets]).astype(np.int64)
    unit_pos = np.concatenate(
        [np.full(len(s.spike_indices), i, dtype=np.int64) for i, s in enumerate(snippet_sets)]
    )
    slots = np.concatenate([np.arange(len(s.spike_indices)) for s in snippet_sets])

    for k in np.argsort(spike_samples, kind='stable'):
        window = accessor.read_window(int(spike_samples[k]) - half_width, config.spike_width)
        if window is None:
            continue
        snippet_set = snippet_sets[unit_pos[k]]
        snippet_set.snippets[:, :, slots[k]] = window
        snippet_set.n_extracted += 1


def _extract_parallel(
    accessor: RecordingAccessor,
    snippet_sets: List[UnitSnippetSet],
    config: ExtractionConfiguration,
) -> None:
    """Split units across threads; each thread reads through its own file handle."""
    n_units = len(snippet_sets)
    n_jobs = min(config.n_jobs, n_units)
    chunks = [snippet_sets[i::n_jobs] for i in range(n_jobs)]
    progress = {'done': 0}
    progress_lock = threading.Lock()

    def _work(chunk: List[UnitSnippetSet]) -> int:
        with accessor.reopen() as worker_accessor:
            for snippet_set in chunk:
                extract_unit_snippets(worker_accessor, snippet_set, config)
                with progress_lock:
                    progress['done'] += 1
                    done = progress['done']
                if config.verbose and (done % _LOG_EVERY_UNITS == 0 or done == n_units):
                    logger.info(f"Extracted {done}/{n_units} raw waveforms")
            return worker_accessor.n_reads

    logger.info(f"Extracting {len(snippet_sets)} units on {n_jobs} threads")
    with ThreadPoolExecutor(max_workers=n_jobs) as executor:
        for n_reads in executor.map(_work, chunks):
            accessor.n_reads += n_reads
