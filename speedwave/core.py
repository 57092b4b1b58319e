"""RawWaveformExtractor: thin orchestrator that calls the individual modules."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional, Union

import numpy as np

from speedwave.accessor import (
    BatchDecoder,
    BatchedDecodeAccessor,
    MtscompDecoder,
    RawRecordingAccessor,
    RecordingAccessor,
    compressed_layout,
)
from speedwave.aggregation import aggregate_unit
from speedwave.cache import ResultCache
from speedwave.config import ExtractionConfiguration, RecordingFormat
from speedwave.extraction import extract_waveforms
from speedwave.io import (
    ChannelCountMismatchError,
    detect_recording_format,
    find_meta_file,
    meta_file_size,
    meta_sampling_rate,
    read_spikeglx_meta,
)
from speedwave.sampling import sample_spike_indices
from speedwave.types import RawWaveformResults

logger = logging.getLogger("speedwave")


class RawWaveformExtractor:
    """Runs raw waveform extraction for every unit of a spike-sorted recording:
    cache check → sample spikes → read windows → mean / baseline / peak channel → cache.
    """

    def __init__(
        self,
        config: Optional[ExtractionConfiguration] = None,
        decoder: Optional[BatchDecoder] = None,
    ):
        """Initialize with an ExtractionConfiguration (uses defaults if None).

        ``decoder`` replaces the default mtscomp decoder for compressed recordings.
        """
        self.config = config or ExtractionConfiguration()
        self.decoder = decoder
        self.results: Optional[RawWaveformResults] = None
        self.n_reads = 0

    # ------------------------------------------------------------------
    # Accessor setup
    # ------------------------------------------------------------------

    def resolve_format(self, recording_path: Path) -> RecordingFormat:
        if self.config.recording_format == RecordingFormat.AUTO:
            return detect_recording_format(recording_path)
        return self.config.recording_format

    def open_accessor(self, recording_path: Union[str, Path]) -> RecordingAccessor:
        """Open the accessor matching the recording format. Validates the layout first."""
        recording_path = Path(recording_path)
        if self.resolve_format(recording_path) == RecordingFormat.COMPRESSED:
            return self._open_compressed(recording_path)
        return RawRecordingAccessor(recording_path, self.config.n_channels, self.config.sample_dtype)

    def _open_compressed(self, recording_path: Path) -> BatchedDecodeAccessor:
        owns_decoder = self.decoder is None
        decoder = MtscompDecoder(recording_path) if owns_decoder else self.decoder
        try:
            meta_path = find_meta_file(recording_path)
            meta = read_spikeglx_meta(meta_path) if meta_path is not None else {}

            sampling_rate = (
                self.config.sampling_rate
                or meta_sampling_rate(meta)
                or getattr(decoder, 'sample_rate', None)
            )
            if not sampling_rate:
                raise ValueError(
                    "Sampling rate must be provided in config or in a .meta file for compressed recordings"
                )

            decoder_channels = getattr(decoder, 'n_channels', None)
            if decoder_channels is not None and decoder_channels != self.config.n_channels:
                raise ChannelCountMismatchError(
                    f"{recording_path} has {decoder_channels} channels, configuration says {self.config.n_channels}"
                )

            layout = compressed_layout(
                self.config.n_channels,
                self.config.sample_dtype,
                n_samples=getattr(decoder, 'n_samples', None),
                file_size=meta_file_size(meta),
            )
        except Exception:
            if owns_decoder:
                decoder.close()
            raise

        batch_size = int(round(sampling_rate))
        logger.info(
            f"Compressed recording: {layout.n_samples} samples in batches of {batch_size} samples"
        )
        return BatchedDecodeAccessor(
            decoder,
            layout,
            batch_size=batch_size,
            overlap=self.config.spike_width,
            sample_dtype=self.config.sample_dtype,
            verbose=self.config.verbose,
            close_decoder=owns_decoder,
        )

    # ------------------------------------------------------------------
    # Main pipeline
    # ------------------------------------------------------------------

    def run(
        self,
        recording_path: Union[str, Path],
        spike_times: np.ndarray,
        spike_clusters: np.ndarray,
    ) -> RawWaveformResults:
        """Extract mean raw waveforms and peak channels for every unit in ``spike_clusters``.

        Args:
            recording_path: .bin / .dat recording, or .cbin for compressed data.
            spike_times: spike sample indices (not seconds).
            spike_clusters: unit id of each spike.

        Returns:
            RawWaveformResults, one entry per unit id, in ascending id order.
        """
        config = self.config
        self.n_reads = 0

        # Step 1: Reuse a previous extraction
        cache = ResultCache(config.results_dir) if config.results_dir is not None else None
        if cache is not None and not config.re_extract:
            cached = cache.load()
            if cached is not None:
                self.results = cached
                return cached

        start = time.time()
        spike_times = np.asarray(spike_times)
        spike_clusters = np.asarray(spike_clusters)
        if spike_times.shape != spike_clusters.shape:
            raise ValueError(
                f"spike_times {spike_times.shape} and spike_clusters {spike_clusters.shape} differ in shape"
            )

        # Step 2: Open the recording (fails on bad paths or channel counts before any read)
        with self.open_accessor(recording_path) as accessor:
            logger.info(
                f"Recording {recording_path}: {accessor.n_samples} samples x "
                f"{accessor.layout.n_channels} channels ({accessor.n_channels} kept)"
            )

            # Step 3: Sample spikes per unit
            sampled = sample_spike_indices(
                spike_times, spike_clusters, config.n_spikes_to_extract, rng=config.random_seed
            )

            # Step 4: Read snippets
            logger.info(f"Extracting raw waveforms for {len(sampled)} units...")
            snippet_sets = extract_waveforms(accessor, sampled, config)
            failures = list(getattr(accessor, 'failures', []))
            layout = accessor.layout
            self.n_reads = accessor.n_reads

        if failures:
            logger.warning(f"{len(failures)} compressed batches could not be decoded, their snippets are missing")

        # Step 5: Aggregate
        units = []
        for i, snippet_set in enumerate(snippet_sets):
            units.append(aggregate_unit(snippet_set, config))
            snippet_sets[i] = None  # free raw snippets as soon as the unit is reduced

        execution_time = time.time() - start
        self.results = RawWaveformResults(
            units=units,
            layout=layout,
            spike_width=config.spike_width,
            n_spikes_to_extract=config.n_spikes_to_extract,
            execution_time=execution_time,
            decode_failures=failures,
        )
        logger.info(f"Raw waveform extraction completed in {execution_time:.2f} seconds")

        # Step 6: Persist
        if cache is not None:
            cache.save(self.results)

        return self.results


def extract_raw_waveforms(
    recording_path: Union[str, Path],
    spike_times: np.ndarray,
    spike_clusters: np.ndarray,
    config: Optional[ExtractionConfiguration] = None,
    decoder: Optional[BatchDecoder] = None,
) -> RawWaveformResults:
    """Functional shortcut for ``RawWaveformExtractor(config, decoder).run(...)``."""
    return RawWaveformExtractor(config, decoder).run(recording_path, spike_times, spike_clusters)
