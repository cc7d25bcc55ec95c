"""Metrics Store: time-bounded health samples per feature."""

from __future__ import annotations

import bisect
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from staged_launch.core.launch.models import LaunchMetrics, utcnow

DEFAULT_RETENTION = timedelta(hours=24)


def _timestamp(sample: LaunchMetrics) -> datetime:
    return sample.timestamp


class MetricsStore:
    """Append-only sample log, kept sorted by timestamp.

    Samples older than the retention period are purged on every insert and
    never returned from queries.
    """

    def __init__(
        self,
        retention: timedelta = DEFAULT_RETENTION,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.retention = retention
        self._clock = clock or utcnow
        self._samples: Dict[str, List[LaunchMetrics]] = {}
        self._lock = threading.Lock()

    def now(self) -> datetime:
        return self._clock()

    def record(self, feature_key: str, sample: LaunchMetrics) -> None:
        """Insert a sample in timestamp order and prune expired ones."""
        with self._lock:
            samples = self._samples.setdefault(feature_key, [])
            bisect.insort(samples, sample, key=_timestamp)
            self._prune(samples)

    def _prune(self, samples: List[LaunchMetrics]) -> None:
        cutoff = self.now() - self.retention
        index = bisect.bisect_left(samples, cutoff, key=_timestamp)
        if index:
            del samples[:index]

    def windowed(self, feature_key: str, minutes: float) -> List[LaunchMetrics]:
        """Samples with timestamp >= now - minutes, oldest first.

        Returns an empty list when nothing falls in the window.
        """
        now = self.now()
        start = max(now - timedelta(minutes=minutes), now - self.retention)
        with self._lock:
            samples = self._samples.get(feature_key, [])
            index = bisect.bisect_left(samples, start, key=_timestamp)
            return samples[index:]

    def recent(self, feature_key: str, limit: Optional[int] = None) -> List[LaunchMetrics]:
        """Retained samples, oldest first, optionally only the last `limit`."""
        cutoff = self.now() - self.retention
        with self._lock:
            samples = [s for s in self._samples.get(feature_key, []) if s.timestamp >= cutoff]
        if limit is not None:
            return samples[-limit:] if limit > 0 else []
        return samples

    def reset(self, feature_key: str) -> None:
        with self._lock:
            self._samples[feature_key] = []

    def discard(self, feature_key: str) -> None:
        with self._lock:
            self._samples.pop(feature_key, None)
