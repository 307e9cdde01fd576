"""
Segmented-trend memory leak heuristic.

A history is a leak candidate when its segment means rise strictly from
segment to segment AND the last segment sits more than the growth
threshold above the first. Either condition alone is not enough: steady
growth also happens during warm-up, and a single spike can produce large
growth.
"""

import logging
from typing import Optional, Sequence, Union

import numpy as np

from .config import LEAK_DETECTION
from .models import MemorySample

logger = logging.getLogger(__name__)


class LeakDetector:
    """Flags memory histories consistent with a leak.

    The flag is recomputed from scratch on every call; there is no
    debouncing or memory of previous verdicts.
    """

    def __init__(
        self,
        segments: Optional[int] = None,
        growth_threshold_pct: Optional[float] = None,
        min_samples: Optional[int] = None,
    ):
        self.segments = segments or LEAK_DETECTION["segments"]
        self.growth_threshold_pct = (
            LEAK_DETECTION["growth_threshold_pct"]
            if growth_threshold_pct is None
            else growth_threshold_pct
        )
        self.min_samples = LEAK_DETECTION["min_samples"] if min_samples is None else min_samples

        if self.segments < 2:
            raise ValueError("segments must be at least 2")

    def segment_means(self, history: Sequence[Union[float, MemorySample]]) -> np.ndarray:
        """
        Means of ``segments`` contiguous equal-size segments.

        Segment size is ``len(history) // segments``; trailing samples that
        do not fill a segment are ignored.
        """
        values = np.asarray(
            [h.used if isinstance(h, MemorySample) else h for h in history],
            dtype=float,
        )
        size = len(values) // self.segments
        if size == 0:
            return np.empty(0)
        return values[: size * self.segments].reshape(self.segments, size).mean(axis=1)

    def is_leak_candidate(self, history: Sequence[Union[float, MemorySample]]) -> bool:
        """Apply the two-condition heuristic to a chronological history."""
        means = self.segment_means(history)
        if means.size < self.segments:
            return False

        consistent_increase = bool(np.all(np.diff(means) > 0))
        if not consistent_increase:
            return False

        first, last = float(means[0]), float(means[-1])
        if first <= 0:
            # Growth from nothing; monotonic rise already established
            return last > first
        growth_pct = (last - first) / first * 100
        return growth_pct > self.growth_threshold_pct

    def evaluate(self, history: Sequence[Union[float, MemorySample]]) -> bool:
        """Like :meth:`is_leak_candidate` but False below ``min_samples``."""
        if len(history) < self.min_samples:
            return False
        leak = self.is_leak_candidate(history)
        if leak:
            logger.warning(
                f"Potential memory leak: heap grew across {self.segments} segments "
                f"over {len(history)} samples"
            )
        return leak
