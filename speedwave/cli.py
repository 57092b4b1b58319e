"""Command line entry point: ``speedwave-extract``."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from speedwave.config import ExtractionConfiguration, RecordingFormat
from speedwave.core import RawWaveformExtractor
from speedwave.io import load_spike_sorting

logger = logging.getLogger("speedwave")


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Extract mean raw waveforms and peak channels for spike-sorted units.'
    )

    # Input data arguments
    parser.add_argument('recording', type=str, help='Path to the .bin / .dat / .cbin recording')
    parser.add_argument('--sorting', type=str, default=None,
                        help='Kilosort/Phy folder with spike_times.npy and spike_clusters.npy '
                             '(default: folder of the recording)')
    parser.add_argument('--format', type=str, choices=[f.value for f in RecordingFormat],
                        default='auto', help='Recording format (default: auto)')
    parser.add_argument('--n-channels', type=int, default=385,
                        help='Channels in the file, including sync (default: 385)')
    parser.add_argument('--sampling-rate', type=float, default=None,
                        help='Sampling rate in Hz, for compressed data without a .meta file')

    # Extraction settings
    parser.add_argument('--n-spikes', type=int, default=100,
                        help='Spikes to extract per unit (default: 100)')
    parser.add_argument('--spike-width', type=int, default=83,
                        help='Window width in samples (default: 83)')
    parser.add_argument('--jobs', type=int, default=1,
                        help='Worker threads for raw extraction (default: 1)')
    parser.add_argument('--seed', type=int, default=None, help='Random seed for spike sampling')

    # Output settings
    parser.add_argument('--results-dir', type=str, default=None,
                        help='Cache folder (default: the sorting folder)')
    parser.add_argument('--re-extract', action='store_true', help='Ignore an existing cache')
    parser.add_argument('--no-snippets', action='store_true',
                        help='Only keep mean waveforms, not per-spike snippets')
    parser.add_argument('--quiet', action='store_true', help='Only log warnings and errors')

    args = parser.parse_args(argv)

    if not os.path.exists(args.recording):
        parser.error(f"Recording file not found: {args.recording}")

    return args


def create_config_from_args(args: argparse.Namespace) -> ExtractionConfiguration:
    """Create ExtractionConfiguration from command line arguments."""
    sorting_dir = Path(args.sorting) if args.sorting else Path(args.recording).parent
    return ExtractionConfiguration(
        n_channels=args.n_channels,
        recording_format=RecordingFormat(args.format),
        sampling_rate=args.sampling_rate,
        n_spikes_to_extract=args.n_spikes,
        spike_width=args.spike_width,
        n_jobs=max(1, args.jobs),
        random_seed=args.seed,
        results_dir=args.results_dir or sorting_dir,
        re_extract=args.re_extract,
        keep_snippets=not args.no_snippets,
        verbose=not args.quiet,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)
    logging.basicConfig(
        level=logging.WARNING if args.quiet else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    config = create_config_from_args(args)
    sorting_dir = Path(args.sorting) if args.sorting else Path(args.recording).parent

    try:
        spike_times, spike_clusters = load_spike_sorting(sorting_dir)
        results = RawWaveformExtractor(config).run(args.recording, spike_times, spike_clusters)
    except (OSError, ValueError, ImportError) as e:
        logger.error(f"Raw waveform extraction failed: {e}")
        return 1

    summary = results.summary()
    print("\nRaw Waveform Summary:")
    print(f"Units: {summary['total_units']} ({summary['units_without_peak']} without snippets)")
    print(f"Snippets read: {summary['total_snippets']}")
    print(f"Channels: {summary['n_channels']}, window: {summary['spike_width']} samples")
    if summary['failed_batches']:
        print(f"Batches that failed to decode: {summary['failed_batches']}")
    print(f"Execution time: {summary['execution_time']:.2f} seconds")
    return 0


if __name__ == "__main__":
    sys.exit(main())
