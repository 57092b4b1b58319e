"""
Unit tests for ExtractionConfiguration.
"""

import dataclasses
from pathlib import Path

import pytest

from speedwave.config import CACHE_FILENAME, ExtractionConfiguration, RecordingFormat


class TestExtractionConfiguration:
    """Tests for defaults, validation and derived values."""

    def test_defaults(self):
        config = ExtractionConfiguration()

        assert config.n_channels == 385
        assert config.n_spikes_to_extract == 100
        assert config.spike_width == 83
        assert config.half_width == 41
        assert config.baseline_samples == 10
        assert config.recording_format == RecordingFormat.AUTO
        assert config.re_extract is False
        assert config.cache_path is None

    def test_is_immutable(self):
        config = ExtractionConfiguration()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.n_channels = 64

    def test_cache_path(self, tmp_path):
        config = ExtractionConfiguration(results_dir=str(tmp_path))
        assert config.cache_path == Path(tmp_path) / CACHE_FILENAME

    def test_string_format_is_coerced(self):
        config = ExtractionConfiguration(recording_format='compressed')
        assert config.recording_format is RecordingFormat.COMPRESSED

    @pytest.mark.parametrize("kwargs", [
        {"n_channels": 0},
        {"n_spikes_to_extract": 0},
        {"spike_width": 0},
        {"baseline_samples": 0},
        {"baseline_samples": 100, "spike_width": 83},
        {"n_jobs": 0},
        {"smoothing_window": 0},
        {"smoothing_window": 4},
        {"sampling_rate": -1.0},
        {"recording_format": "tetrode"},
    ])
    def test_invalid_values_raise(self, kwargs):
        with pytest.raises(ValueError):
            ExtractionConfiguration(**kwargs)
