"""Thread-safe sample collection and derived statistics."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from fractions import Fraction
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

DEFAULT_PERCENTILES: Tuple[float, ...] = (50.0, 90.0, 95.0, 99.0)


@dataclass(frozen=True)
class Sample:
    """One recorded request execution. ``elapsed_ms`` is wall time around the executor call."""

    request_name: str
    started_at: float
    elapsed_ms: float
    success: bool
    label: str
    error: Optional[str] = None
    worker_id: int = 0
    iteration: int = 0
    raised: bool = False


@dataclass(frozen=True)
class MetricsSnapshot:
    count: int
    success_count: int
    failure_count: int
    error_count: int
    min_ms: float
    mean_ms: float
    max_ms: float
    percentiles: Dict[float, float] = field(default_factory=dict)
    success_rate: float = 0.0
    duration_seconds: float = 0.0
    throughput_per_second: float = 0.0

    def percentile(self, p: float) -> Optional[float]:
        return self.percentiles.get(float(p))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "error_count": self.error_count,
            "min_ms": self.min_ms,
            "mean_ms": self.mean_ms,
            "max_ms": self.max_ms,
            "percentiles": {f"p{p:g}": value for p, value in sorted(self.percentiles.items())},
            "success_rate": self.success_rate,
            "duration_seconds": self.duration_seconds,
            "throughput_per_second": self.throughput_per_second,
        }


def nearest_rank(sorted_values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile over an already sorted, non-empty sequence."""
    if not 0 <= p <= 100:
        raise ValueError("Percentile must be between 0 and 100")
    count = len(sorted_values)
    if count == 0:
        raise ValueError("Cannot take a percentile of an empty sample set")
    # exact arithmetic: float p / 100 * count can land just above an integer rank
    index = math.ceil(Fraction(str(p)) * count / 100) - 1
    index = min(max(index, 0), count - 1)
    return sorted_values[index]


def summarize(
    samples: Sequence[Sample],
    percentiles: Iterable[float] = DEFAULT_PERCENTILES,
    duration_seconds: float = 0.0,
) -> MetricsSnapshot:
    count = len(samples)
    success_count = sum(1 for sample in samples if sample.success)
    error_count = sum(1 for sample in samples if sample.raised)
    throughput = count / duration_seconds if duration_seconds > 0 else 0.0

    if count == 0:
        return MetricsSnapshot(
            count=0,
            success_count=0,
            failure_count=0,
            error_count=0,
            min_ms=0.0,
            mean_ms=0.0,
            max_ms=0.0,
            percentiles={},
            success_rate=0.0,
            duration_seconds=duration_seconds,
            throughput_per_second=0.0,
        )

    durations = sorted(sample.elapsed_ms for sample in samples)
    return MetricsSnapshot(
        count=count,
        success_count=success_count,
        failure_count=count - success_count,
        error_count=error_count,
        min_ms=durations[0],
        mean_ms=sum(durations) / count,
        max_ms=durations[-1],
        percentiles={float(p): nearest_rank(durations, p) for p in percentiles},
        success_rate=success_count / count * 100.0,
        duration_seconds=duration_seconds,
        throughput_per_second=throughput,
    )


class MetricsCollector:
    """Append-only sample store shared by all workers of one scenario.

    Appends are serialized by a lock; readers get a copy taken under the same
    lock, so statistics can be computed mid-run without blocking writers for
    long.
    """

    def __init__(self, percentiles: Iterable[float] = DEFAULT_PERCENTILES) -> None:
        self._lock = Lock()
        self._samples: List[Sample] = []
        self._percentiles = tuple(float(p) for p in percentiles)
        self._started: Optional[float] = None
        self._finished: Optional[float] = None

    def start(self) -> None:
        with self._lock:
            if self._started is None:
                self._started = time.monotonic()

    def finish(self) -> None:
        with self._lock:
            if self._finished is None:
                self._finished = time.monotonic()

    def append(self, sample: Sample) -> None:
        with self._lock:
            self._samples.append(sample)

    def samples(self) -> List[Sample]:
        with self._lock:
            return list(self._samples)

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    @property
    def count(self) -> int:
        return len(self)

    @property
    def success_count(self) -> int:
        return sum(1 for sample in self.samples() if sample.success)

    @property
    def success_rate(self) -> float:
        samples = self.samples()
        if not samples:
            return 0.0
        return sum(1 for sample in samples if sample.success) / len(samples) * 100.0

    def percentile(self, p: float) -> Optional[float]:
        durations = sorted(sample.elapsed_ms for sample in self.samples())
        if not durations:
            return None
        return nearest_rank(durations, p)

    def duration_seconds(self) -> float:
        with self._lock:
            if self._started is None:
                return 0.0
            end = self._finished if self._finished is not None else time.monotonic()
            return max(end - self._started, 0.0)

    def snapshot(self) -> MetricsSnapshot:
        return summarize(self.samples(), self._percentiles, self.duration_seconds())

    def snapshot_by_request(self) -> Dict[str, MetricsSnapshot]:
        grouped: Dict[str, List[Sample]] = {}
        for sample in self.samples():
            grouped.setdefault(sample.request_name, []).append(sample)
        duration = self.duration_seconds()
        return {name: summarize(items, self._percentiles, duration) for name, items in grouped.items()}
