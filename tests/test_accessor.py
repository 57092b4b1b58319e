"""
Unit tests for the raw and batched-decode recording accessors.
"""

import numpy as np
import pytest

from speedwave.accessor import BatchedDecodeAccessor, RawRecordingAccessor, compressed_layout
from speedwave.io import ChannelCountMismatchError
from speedwave.types import RecordingLayout


class TestRecordingLayout:
    """Tests for layout arithmetic."""

    def test_derived_sizes(self):
        layout = RecordingLayout(n_channels=385, sample_width=2, file_size=385 * 2 * 1000)

        assert layout.n_samples == 1000
        assert layout.n_signal_channels == 384

    def test_all_channels_kept_without_sync(self):
        layout = RecordingLayout(n_channels=64, sample_width=2, file_size=64 * 2 * 10)
        assert layout.n_signal_channels == 64

    def test_byte_offset_does_not_overflow(self):
        layout = RecordingLayout(n_channels=385, sample_width=2, file_size=0)

        # Two hours at 30 kHz: far beyond what fits in int32 once multiplied out
        start = np.uint32(2 * 3600 * 30000)
        offset = layout.byte_offset(start)

        assert offset == 2 * 3600 * 30000 * 385 * 2
        assert offset > np.iinfo(np.int32).max


class TestRawRecordingAccessor:
    """Tests for seek-and-read window access."""

    def test_window_matches_file_contents(self, make_recording):
        path, data = make_recording(n_samples=1000, n_channels=8)

        with RawRecordingAccessor(path, n_channels=8) as accessor:
            window = accessor.read_window(100, 83)

        assert window.shape == (8, 83)
        np.testing.assert_array_equal(window, data[100:183].T)

    def test_handle_is_rewound_after_read(self, make_recording):
        path, _ = make_recording(n_samples=1000, n_channels=8)

        with RawRecordingAccessor(path, n_channels=8) as accessor:
            accessor.read_window(500, 83)
            assert accessor._fid.tell() == 0
            assert accessor.n_reads == 1

    @pytest.mark.parametrize("start", [-1, -41, 1000 - 82, 5000])
    def test_out_of_bounds_returns_none(self, make_recording, start):
        path, _ = make_recording(n_samples=1000, n_channels=8)

        with RawRecordingAccessor(path, n_channels=8) as accessor:
            assert accessor.read_window(start, 83) is None
            assert accessor.n_reads == 0

    def test_last_full_window_is_served(self, make_recording):
        path, data = make_recording(n_samples=1000, n_channels=8)

        with RawRecordingAccessor(path, n_channels=8) as accessor:
            window = accessor.read_window(1000 - 83, 83)

        np.testing.assert_array_equal(window, data[-83:].T)

    def test_sync_channel_is_dropped(self, make_recording):
        path, data = make_recording(n_samples=200, n_channels=385)

        with RawRecordingAccessor(path, n_channels=385) as accessor:
            window = accessor.read_window(10, 83)

        assert accessor.n_channels == 384
        assert window.shape == (384, 83)
        np.testing.assert_array_equal(window, data[10:93, :384].T)

    def test_channel_count_mismatch(self, make_recording):
        path, _ = make_recording(n_samples=1000, n_channels=8)

        # 16000 bytes is not a whole number of 6-channel int16 frames
        with pytest.raises(ChannelCountMismatchError):
            RawRecordingAccessor(path, n_channels=6)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            RawRecordingAccessor(tmp_path / "missing.bin", n_channels=8)

    def test_reopen_uses_own_handle(self, make_recording):
        path, data = make_recording(n_samples=1000, n_channels=8)

        with RawRecordingAccessor(path, n_channels=8) as accessor:
            with accessor.reopen() as other:
                assert other._fid is not accessor._fid
                np.testing.assert_array_equal(other.read_window(0, 10), data[:10].T)
            assert other._fid.closed
            assert not accessor._fid.closed
        assert accessor._fid.closed


class TestBatchedDecodeAccessor:
    """Tests for one-batch-at-a-time decoding."""

    def _accessor(self, decoder, data, batch_size=1000, overlap=83):
        layout = compressed_layout(data.shape[1], 'int16', n_samples=data.shape[0])
        return BatchedDecodeAccessor(decoder, layout, batch_size=batch_size, overlap=overlap, verbose=False)

    def test_windows_match_raw_data(self, array_decoder):
        data = np.arange(5000 * 4, dtype=np.int16).reshape(5000, 4)
        decoder = array_decoder(data)
        accessor = self._accessor(decoder, data)

        for start in (0, 990, 1500, 4917):
            np.testing.assert_array_equal(accessor.read_window(start, 83), data[start:start + 83].T)

    def test_each_batch_decoded_once(self, array_decoder):
        data = np.zeros((5000, 4), dtype=np.int16)
        decoder = array_decoder(data)
        accessor = self._accessor(decoder, data)

        for start in (10, 20, 950, 3100, 3200):
            accessor.read_window(start, 83)

        assert decoder.calls == [(0, 1083), (3000, 4083)]
        assert accessor.n_decodes == 2

    def test_last_batch_is_clipped_to_recording(self, array_decoder):
        data = np.zeros((5000, 4), dtype=np.int16)
        decoder = array_decoder(data)
        accessor = self._accessor(decoder, data)

        assert accessor.read_window(4950, 83) is None
        accessor.read_window(4900, 83)
        assert decoder.calls == [(4000, 5000)]

    def test_decode_failure_is_recorded_and_skipped(self, array_decoder):
        data = np.ones((5000, 4), dtype=np.int16)
        decoder = array_decoder(data, fail_starts={2000})
        accessor = self._accessor(decoder, data)

        assert accessor.read_window(2100, 83) is None
        assert accessor.read_window(2200, 83) is None
        assert accessor.read_window(3100, 83) is not None

        assert len(accessor.failures) == 1
        failure = accessor.failures[0]
        assert (failure.batch_start, failure.batch_stop) == (2000, 3083)
        assert "corrupt chunk" in failure.message
        # the failed batch is not retried
        assert [call[0] for call in decoder.calls] == [2000, 3000]

    def test_wrong_decoder_shape_counts_as_failure(self):
        data = np.zeros((3000, 4), dtype=np.int16)
        accessor = self._accessor(lambda start, stop: data[start:start + 5], data)

        assert accessor.read_window(100, 83) is None
        assert len(accessor.failures) == 1

    def test_decoder_closed_only_when_owned(self, array_decoder):
        data = np.zeros((3000, 4), dtype=np.int16)
        decoder = array_decoder(data)
        layout = compressed_layout(4, 'int16', n_samples=3000)

        BatchedDecodeAccessor(decoder, layout, batch_size=1000).close()
        assert not decoder.closed

        BatchedDecodeAccessor(decoder, layout, batch_size=1000, close_decoder=True).close()
        assert decoder.closed

    def test_compressed_layout_prefers_meta_size(self):
        layout = compressed_layout(385, 'int16', n_samples=10, file_size=385 * 2 * 30000)
        assert layout.n_samples == 30000

        with pytest.raises(ChannelCountMismatchError):
            compressed_layout(385, 'int16', file_size=385 * 2 * 10 + 1)
        with pytest.raises(ValueError):
            compressed_layout(385, 'int16')
