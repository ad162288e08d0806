"""
Network measurement statistics.

Pure functions and lightweight dataclasses -- no I/O, no side effects.
Everything here is deterministic and easy to unit-test.

The weighted aggregator folds ``(bytes, duration)`` transfer samples into a
duration-weighted mean and variance of the per-chunk rate::

    B  = sum(b_x)               T = sum(t_x)
    d_x = b_x / t_x             (rate of chunk x)
    mu = sum(t_x * d_x) / T  == B / T
    var = sum(t_x * (d_x - mu) ** 2) / T
"""
from __future__ import annotations

import logging
import statistics
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from .errors import NoDataError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Sample types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransferSample:
    """Bytes moved by one chunk and the wall-clock time it took."""

    bytes: int
    duration: float

    @property
    def rate(self) -> float:
        """Bytes per second of this chunk; only defined for ``duration > 0``."""
        return self.bytes / self.duration


@dataclass(frozen=True)
class AggregateResult:
    """Duration-weighted summary of one transfer direction."""

    total_bytes: int
    total_duration: float
    mean: float
    variance: float
    count: int
    quantiles: Tuple[Tuple[float, float], ...] = ()

    @property
    def rate(self) -> float:
        return self.total_bytes / self.total_duration


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

class WeightedAggregator:
    """
    Collects transfer samples and computes an :class:`AggregateResult`.

    Samples with a non-positive duration carry no timing information and are
    rejected instead of being divided by.  The mean is taken as ``B / T``
    directly, which keeps it independent of summation order and equal to the
    overall rate by construction.
    """

    def __init__(self) -> None:
        self._samples: List[TransferSample] = []
        self.total_bytes = 0
        self.total_duration = 0.0
        self.rejected = 0

    def __len__(self) -> int:
        return len(self._samples)

    @property
    def samples(self) -> Tuple[TransferSample, ...]:
        return tuple(self._samples)

    def add(self, sample: TransferSample) -> bool:
        """Admit *sample*.  Returns ``False`` when it was rejected."""
        if sample.bytes < 0:
            raise ValueError(f"negative byte count in transfer sample: {sample.bytes}")
        if not sample.duration > 0:
            self.rejected += 1
            logger.debug("Rejected zero-duration sample of %d bytes", sample.bytes)
            return False

        self._samples.append(sample)
        self.total_bytes += sample.bytes
        self.total_duration += sample.duration
        return True

    def extend(self, samples: Iterable[TransferSample]) -> None:
        for sample in samples:
            self.add(sample)

    def result(self, quantiles: Sequence[float] = ()) -> AggregateResult:
        """Freeze the collected samples into a result.

        Raises :class:`NoDataError` when no sample was admitted.
        """
        samples = tuple(self._samples)
        if not samples:
            raise NoDataError()

        total_bytes = self.total_bytes
        total_duration = self.total_duration
        mean = total_bytes / total_duration

        weighted = sum(s.duration * (s.rate - mean) ** 2 for s in samples)
        variance = max(weighted / total_duration, 0.0)

        rates = [s.rate for s in samples]
        return AggregateResult(
            total_bytes=total_bytes,
            total_duration=total_duration,
            mean=mean,
            variance=variance,
            count=len(samples),
            quantiles=tuple((q, calculate_quantile(rates, q)) for q in quantiles),
        )


def aggregate(
    samples: Iterable[TransferSample],
    quantiles: Sequence[float] = (),
) -> AggregateResult:
    """One-shot helper around :class:`WeightedAggregator`."""
    aggregator = WeightedAggregator()
    aggregator.extend(samples)
    return aggregator.result(quantiles)


# ---------------------------------------------------------------------------
# Latency summary
# ---------------------------------------------------------------------------

@dataclass
class LatencyStats:
    """Aggregated latency statistics computed from a list of RTTs (seconds)."""

    samples: List[float] = field(default_factory=list)
    mean: float = 0.0
    stddev: float = 0.0
    quantiles: List[Tuple[float, float]] = field(default_factory=list)

    def calculate(self, quantiles: Sequence[float] = ()) -> None:
        if not self.samples:
            return
        self.mean = statistics.mean(self.samples)
        self.stddev = statistics.pstdev(self.samples)
        self.quantiles = [(q, calculate_quantile(self.samples, q)) for q in quantiles]


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------

def calculate_percentile(samples: Sequence[float], percentile: float) -> float:
    """Linear-interpolation percentile."""
    if not samples:
        return 0.0

    ordered = sorted(samples)
    n = len(ordered)
    idx = (percentile / 100) * (n - 1)
    lower = int(idx)
    upper = min(lower + 1, n - 1)
    weight = idx - lower
    return ordered[lower] * (1 - weight) + ordered[upper] * weight


def calculate_quantile(samples: Sequence[float], quantile: float) -> float:
    """Same as :func:`calculate_percentile` with *quantile* in ``[0, 1]``."""
    return calculate_percentile(samples, quantile * 100)


def format_rate(bytes_per_second: Optional[float]) -> str:
    """Human-readable throughput in Mbps, used in log lines."""
    if bytes_per_second is None:
        return "n/a"
    mbps = bytes_per_second * 8 / 1_000_000
    if mbps >= 1000:
        return f"{mbps / 1000:.2f} Gbps"
    return f"{mbps:.2f} Mbps"


def format_latency(seconds: float) -> str:
    """Human-readable latency string."""
    if seconds >= 1:
        return f"{seconds:.2f} s"
    return f"{seconds * 1000:.1f} ms"
