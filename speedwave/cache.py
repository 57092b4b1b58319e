"""Result cache: reuse a previous extraction unless re-extraction is forced."""

from __future__ import annotations

import logging
import pickle
from pathlib import Path
from typing import Optional, Union

from speedwave.config import CACHE_FILENAME
from speedwave.types import RawWaveformResults

logger = logging.getLogger("speedwave")


class ResultCache:
    """Pickled ``RawWaveformResults`` stored as ``<results_dir>/raw_waveforms.pkl``."""

    def __init__(self, results_dir: Union[str, Path], filename: str = CACHE_FILENAME):
        self.path = Path(results_dir) / filename

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Optional[RawWaveformResults]:
        """Return the cached results, or None if there is no usable cache."""
        if not self.exists():
            return None
        try:
            results = RawWaveformResults.load(self.path)
        except (pickle.UnpicklingError, EOFError, TypeError, ValueError, AttributeError,
                ImportError, KeyError, IndexError, MemoryError) as e:
            logger.warning(f"Ignoring unreadable waveform cache {self.path}: {e}")
            return None
        logger.info(f"Loaded raw waveforms for {len(results)} units from {self.path}")
        return results

    def save(self, results: RawWaveformResults) -> Path:
        results.save(self.path)
        logger.info(f"Saved raw waveforms for {len(results)} units to {self.path}")
        return self.path

    def clear(self) -> None:
        if self.exists():
            self.path.unlink()
