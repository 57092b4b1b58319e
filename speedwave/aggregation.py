"""Aggregation: mean waveform, baseline correction, smoothing and peak channel selection."""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np
from scipy import ndimage, signal

from speedwave.config import ExtractionConfiguration
from speedwave.types import UnitSnippetSet, UnitWaveforms

logger = logging.getLogger("speedwave")


def mean_waveform(snippets: np.ndarray) -> Tuple[np.ndarray, int]:
    """Average over the snippet axis, ignoring missing (all-NaN) slots.

    Args:
        snippets: (n_channels, n_samples, n_slots)

    Returns:
        (mean of shape (n_channels, n_samples), number of slots used). The mean
        is all NaN when no slot holds data.
    """
    valid = ~np.isnan(snippets).all(axis=(0, 1))
    n_valid = int(valid.sum())
    if n_valid == 0:
        return np.full(snippets.shape[:2], np.nan, dtype=np.float32), 0
    mean = snippets[:, :, valid].mean(axis=2, dtype=np.float64)
    return mean.astype(np.float32), n_valid


def subtract_baseline(data: np.ndarray, n_baseline: int, axis: int = 1) -> np.ndarray:
    """Subtract the mean of the first ``n_baseline`` samples along ``axis``."""
    leading = np.take(data, np.arange(n_baseline), axis=axis).astype(np.float64)
    corrected = data.astype(np.float64) - leading.mean(axis=axis, keepdims=True)
    return corrected.astype(data.dtype)


def gaussian_smooth(data: np.ndarray, window: int = 5, axis: int = -1) -> np.ndarray:
    """Gaussian-weighted moving average (std = window / 5) along ``axis``.

    Near the edges and around NaNs the weights are renormalised over the
    samples that fall inside the window. ``window`` must be odd so the kernel
    is centred on each sample.
    """
    if window % 2 == 0:
        raise ValueError(f"Smoothing window must be odd, got {window}")
    if window <= 1:
        return data.astype(np.float64)
    kernel = signal.windows.gaussian(window, std=window / 5.0)

    missing = np.isnan(data)
    values = np.where(missing, 0.0, data).astype(np.float64)
    weights = (~missing).astype(np.float64)
    num = ndimage.convolve1d(values, kernel, axis=axis, mode='constant', cval=0.0)
    den = ndimage.convolve1d(weights, kernel, axis=axis, mode='constant', cval=0.0)

    smoothed = np.full(values.shape, np.nan)
    np.divide(num, den, out=smoothed, where=den > 0)
    return smoothed


def peak_channel(mean: np.ndarray, window: int = 5) -> Optional[int]:
    """Channel with the largest smoothed absolute amplitude, first channel on ties.

    Unreliable for low-amplitude or multi-peaked units; kept as the reference
    criterion. Returns None when ``mean`` holds no data.
    """
    if mean.size == 0 or np.isnan(mean).all():
        return None
    smoothed = np.abs(gaussian_smooth(mean, window, axis=1))
    amplitude = np.max(np.where(np.isnan(smoothed), -np.inf, smoothed), axis=1)
    return int(np.argmax(amplitude))


def aggregate_unit(snippet_set: UnitSnippetSet, config: ExtractionConfiguration) -> UnitWaveforms:
    """Reduce one unit's snippet set to its baseline-corrected mean waveform and peak channel."""
    mean, n_valid = mean_waveform(snippet_set.snippets)
    mean = subtract_baseline(mean, config.baseline_samples, axis=1)

    peak = peak_channel(mean, config.smoothing_window)
    if peak is None:
        logger.warning(f"Unit {snippet_set.unit_id}: no snippet could be extracted, peak channel undefined")

    snippets = None
    if config.keep_snippets:
        snippets = subtract_baseline(snippet_set.snippets, config.baseline_samples, axis=1)

    return UnitWaveforms(
        unit_id=snippet_set.unit_id,
        mean_waveform=mean,
        peak_channel=peak,
        spike_indices=snippet_set.spike_indices,
        n_extracted=n_valid,
        snippets=snippets,
    )
