"""Recording accessors: direct reads from raw binaries, batched decoding of compressed ones.

Both accessors expose the same ``read_window(start_sample, width)`` call, which
returns a ``(n_signal_channels, width)`` array or ``None`` when the window cannot
be served (out of bounds, or its batch failed to decode).
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, List, Optional, Union

import numpy as np

from speedwave.config import _HAS_MTSCOMP
from speedwave.io import ChannelCountMismatchError, read_recording_layout, validate_layout
from speedwave.types import BatchDecodeFailure, RecordingLayout

logger = logging.getLogger("speedwave")

# (start_sample, stop_sample) -> array of shape (stop - start, n_channels)
BatchDecoder = Callable[[int, int], np.ndarray]


class RecordingAccessor:
    """Common interface of the raw and compressed accessors."""

    # Windows must be requested in ascending start order for efficient access
    sequential = False
    # Independent copies can be opened for worker threads
    supports_parallel = False

    def __init__(self, layout: RecordingLayout, sample_dtype: str = 'int16'):
        self.layout = layout
        self.dtype = np.dtype(sample_dtype)
        self.n_reads = 0

    @property
    def n_samples(self) -> int:
        return self.layout.n_samples

    @property
    def n_channels(self) -> int:
        """Channels returned per window (sync channel excluded)."""
        return self.layout.n_signal_channels

    def in_bounds(self, start_sample: int, width: int) -> bool:
        return start_sample >= 0 and start_sample + width <= self.layout.n_samples

    def read_window(self, start_sample: int, width: int) -> Optional[np.ndarray]:
        raise NotImplementedError

    def reopen(self) -> "RecordingAccessor":
        raise NotImplementedError(f"{type(self).__name__} cannot be shared across workers")

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


# ---------------------------------------------------------------------------
# Raw interleaved binary
# ---------------------------------------------------------------------------

class RawRecordingAccessor(RecordingAccessor):
    """Seek-and-read access to an uncompressed .bin / .dat recording."""

    supports_parallel = True

    def __init__(
        self,
        recording_path: Union[str, Path],
        n_channels: int,
        sample_dtype: str = 'int16',
        layout: Optional[RecordingLayout] = None,
    ):
        self.path = Path(recording_path)
        if layout is None:
            layout = read_recording_layout(self.path, n_channels, sample_dtype)
        super().__init__(layout, sample_dtype)
        self._fid = open(self.path, 'rb')

    def read_window(self, start_sample: int, width: int) -> Optional[np.ndarray]:
        """Read ``width`` frames starting at ``start_sample``. Returns None if out of bounds."""
        start_sample = int(start_sample)
        if not self.in_bounds(start_sample, width):
            return None

        n_values = width * self.layout.n_channels
        self._fid.seek(self.layout.byte_offset(start_sample), 0)
        try:
            data = np.fromfile(self._fid, dtype=self.dtype, count=n_values)
        finally:
            self._fid.seek(0, 0)
        self.n_reads += 1

        if data.size != n_values:
            logger.warning(f"Short read at sample {start_sample}: {data.size}/{n_values} values")
            return None
        # Frames are time-major on disk: (width, n_channels) → (n_channels, width)
        return data.reshape(width, self.layout.n_channels).T[:self.n_channels]

    def reopen(self) -> "RawRecordingAccessor":
        """Independent accessor on the same file, with its own handle."""
        return RawRecordingAccessor(self.path, self.layout.n_channels, self.dtype.name, layout=self.layout)

    def close(self) -> None:
        if not self._fid.closed:
            self._fid.close()


# ---------------------------------------------------------------------------
# Compressed recordings, decoded one batch at a time
# ---------------------------------------------------------------------------

class BatchedDecodeAccessor(RecordingAccessor):
    """Serve windows out of decoded one-second batches of a compressed recording.

    The recording is split into batches of ``batch_size`` samples. A window is
    served from the batch its first sample falls in; each batch is decoded with
    ``overlap`` extra trailing samples so windows starting near a batch end fit.
    Only the most recent batch is held in memory, so windows must be requested
    in ascending order. A batch whose decode raises is recorded in ``failures``
    and never retried; its windows come back as None.
    """

    sequential = True

    def __init__(
        self,
        decoder: BatchDecoder,
        layout: RecordingLayout,
        batch_size: int,
        overlap: int = 0,
        sample_dtype: str = 'int16',
        verbose: bool = True,
        close_decoder: bool = False,
    ):
        super().__init__(layout, sample_dtype)
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.decoder = decoder
        self.batch_size = int(batch_size)
        self.overlap = int(overlap)
        self.verbose = verbose
        self.close_decoder = close_decoder
        self.failures: List[BatchDecodeFailure] = []
        self.n_decodes = 0

        self._batch_index: Optional[int] = None
        self._buffer: Optional[np.ndarray] = None
        self._failed_batches = set()
        self._started = time.time()

    @property
    def n_batches(self) -> int:
        return -(-self.layout.n_samples // self.batch_size)

    def batch_bounds(self, batch_index: int):
        """Decoded sample range of a batch, including trailing overlap."""
        start = batch_index * self.batch_size
        stop = min(start + self.batch_size + self.overlap, self.layout.n_samples)
        return start, stop

    def _load_batch(self, batch_index: int) -> Optional[np.ndarray]:
        if batch_index == self._batch_index:
            return self._buffer
        if batch_index in self._failed_batches:
            return None

        # Release the previous buffer before decoding the next one
        self._batch_index, self._buffer = None, None
        start, stop = self.batch_bounds(batch_index)
        try:
            decoded = np.asarray(self.decoder(start, stop))
            if decoded.ndim != 2 or decoded.shape[0] != stop - start:
                raise ValueError(
                    f"decoder returned shape {decoded.shape}, expected ({stop - start}, n_channels)"
                )
            if decoded.shape[1] < self.n_channels:
                raise ChannelCountMismatchError(
                    f"decoder returned {decoded.shape[1]} channels, expected at least {self.n_channels}"
                )
        except Exception as e:
            logger.warning(f"Failed to decode samples {start}-{stop}: {e}. Skipping batch")
            self.failures.append(BatchDecodeFailure(batch_start=start, batch_stop=stop, message=str(e)))
            self._failed_batches.add(batch_index)
            return None

        self.n_decodes += 1
        if self.verbose and (self.n_decodes % 100 == 0):
            elapsed = (time.time() - self._started) / 60
            logger.info(
                f"Decoded {self.n_decodes} batches (up to {100 * (batch_index + 1) / self.n_batches:.1f}% "
                f"of the recording), elapsed time {elapsed:.2f} minutes"
            )
        self._batch_index = batch_index
        self._buffer = decoded[:, :self.n_channels]
        return self._buffer

    def read_window(self, start_sample: int, width: int) -> Optional[np.ndarray]:
        start_sample = int(start_sample)
        if not self.in_bounds(start_sample, width):
            return None

        batch_index = start_sample // self.batch_size
        buffer = self._load_batch(batch_index)
        if buffer is None:
            return None

        offset = start_sample - batch_index * self.batch_size
        if offset + width > buffer.shape[0]:
            return None
        self.n_reads += 1
        return buffer[offset:offset + width].T

    def close(self) -> None:
        self._batch_index, self._buffer = None, None
        closer = getattr(self.decoder, 'close', None)
        if self.close_decoder and closer is not None:
            closer()


class MtscompDecoder:
    """BatchDecoder backed by ``mtscomp.Reader`` for .cbin / .ch recordings."""

    def __init__(self, cbin_path: Union[str, Path], ch_path: Optional[Union[str, Path]] = None):
        if not _HAS_MTSCOMP:
            raise ImportError("mtscomp is required for compressed recordings: pip install mtscomp")
        from mtscomp import Reader

        cbin_path = Path(cbin_path)
        if not cbin_path.is_file():
            raise FileNotFoundError(f"Recording file not found: {cbin_path}")
        ch_path = Path(ch_path) if ch_path is not None else cbin_path.with_suffix('.ch')
        if not ch_path.is_file():
            raise FileNotFoundError(f"Compression metadata not found: {ch_path}")

        self._reader = Reader()
        self._reader.open(cbin_path, ch_path)

    @property
    def n_samples(self) -> int:
        return int(self._reader.n_samples)

    @property
    def n_channels(self) -> int:
        return int(self._reader.n_channels)

    @property
    def sample_rate(self) -> float:
        return float(self._reader.sample_rate)

    def __call__(self, start: int, stop: int) -> np.ndarray:
        return self._reader[start:stop]

    def close(self) -> None:
        self._reader.close()


def compressed_layout(
    n_channels: int,
    sample_dtype: str,
    n_samples: Optional[int] = None,
    file_size: Optional[int] = None,
) -> RecordingLayout:
    """Layout of the uncompressed data behind a compressed recording.

    ``file_size`` (from SpikeGLX ``fileSizeBytes``) wins over ``n_samples`` from the decoder.
    """
    sample_width = np.dtype(sample_dtype).itemsize
    if file_size is None:
        if n_samples is None:
            raise ValueError("Either n_samples or file_size is needed for a compressed recording")
        file_size = int(n_samples) * n_channels * sample_width
    layout = RecordingLayout(n_channels=n_channels, sample_width=sample_width, file_size=int(file_size))
    validate_layout(layout, 'Compressed recording')
    return layout
