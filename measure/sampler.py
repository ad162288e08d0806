"""
Chunked speed sampler.

The sampler drives one transfer direction against an HTTP endpoint and
slices it into timed chunks.  Each chunk becomes a
:class:`~measure.stats.TransferSample`; connection setup happens outside the
timed window.  The run ends when the duration or byte budget is spent, the
transfer ends, or the transport fails.  A failure after at least one chunk
yields a *partial* result instead of throwing the progress away.

Subclasses only provide the transport (:class:`Transfer`); the budget loop,
partial-result bookkeeping and cancellation live here.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence

import aiohttp

from exposition.metrics import MetricKind

from .chunking import ChunkPolicy
from .constants import COMMON_HEADERS, DEFAULT_CHUNK_TIMEOUT
from .errors import ConfigError, MeasurementError, NoDataError
from .stats import AggregateResult, TransferSample, WeightedAggregator, format_rate

if TYPE_CHECKING:
    from exposition.metrics import MetricsBuilder

logger = logging.getLogger(__name__)

# Errors that end a transfer early but keep the samples collected so far
TRANSPORT_ERRORS = (aiohttp.ClientError, OSError, MeasurementError)


# ---------------------------------------------------------------------------
# Budget and result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SpeedBudget:
    """Upper bounds for one transfer direction; at least one must be set."""

    duration: Optional[float] = None
    max_bytes: Optional[int] = None

    def validate(self) -> None:
        if self.duration is None and self.max_bytes is None:
            raise ConfigError("a speedtest needs a duration or a byte budget")
        if self.duration is not None and self.duration <= 0:
            raise ConfigError(f"speedtest duration must be positive, got {self.duration}")
        if self.max_bytes is not None and self.max_bytes <= 0:
            raise ConfigError(f"speedtest byte budget must be positive, got {self.max_bytes}")


@dataclass(frozen=True)
class SpeedtestResult:
    """Outcome of one direction: an aggregate, a partial aggregate, or an error."""

    direction: str
    aggregate: Optional[AggregateResult] = None
    partial: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.aggregate is not None

    def write_metrics(self, builder: MetricsBuilder) -> None:
        with builder.with_labels(direction=self.direction):
            if self.aggregate is None:
                builder.add(
                    "speedtest_failure",
                    MetricKind.GAUGE,
                    "speedtest direction failed without collecting any sample",
                    1,
                    error=self.error or "unknown",
                )
                return

            agg = self.aggregate
            builder.add(
                "speedtest_bytes_total",
                MetricKind.COUNTER,
                "bytes transferred during the speedtest",
                agg.total_bytes,
            )
            builder.add(
                "speedtest_duration_seconds_total",
                MetricKind.COUNTER,
                "time spent transferring chunks, excluding connection setup",
                agg.total_duration,
            )
            builder.add(
                "speedtest_chunks_total",
                MetricKind.COUNTER,
                "number of timed chunks",
                agg.count,
            )
            builder.add(
                "speedtest_rate_bytes_per_second",
                MetricKind.GAUGE,
                "overall transfer rate in bytes per second",
                agg.rate,
            )
            builder.add(
                "speedtest_mean_bytes_per_second",
                MetricKind.GAUGE,
                "duration-weighted mean of the per-chunk rate in bytes per second",
                agg.mean,
            )
            builder.add(
                "speedtest_variance_bytes_per_second_squared",
                MetricKind.GAUGE,
                "duration-weighted variance of the per-chunk rate",
                agg.variance,
            )
            for quantile, value in agg.quantiles:
                builder.add(
                    "speedtest_chunk_rate_bytes_per_second",
                    MetricKind.GAUGE,
                    "quantiles of the per-chunk rate in bytes per second",
                    value,
                    quantile=quantile,
                )
            builder.add(
                "speedtest_partial",
                MetricKind.GAUGE,
                "1 if the transfer ended early on a transport failure",
                1 if self.partial else 0,
            )


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class Transfer:
    """
    One open transfer.  ``open`` and ``prepare`` run outside the timed
    window; only ``chunk`` is timed.

    ``in_flight`` counts bytes of the current chunk as they arrive, so a
    chunk cut short by the deadline can still be recorded.
    A transfer that runs out of data between chunks sets ``reopen`` and
    returns ``0``; the loop then calls ``prepare`` again instead of stopping.
    """

    def __init__(self, session: aiohttp.ClientSession, url: str) -> None:
        self.session = session
        self.url = url
        self.in_flight = 0
        self.reopen = False

    async def __aenter__(self) -> Transfer:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        await self.close()

    async def open(self) -> None:
        pass

    async def prepare(self, size: int) -> None:
        pass

    async def chunk(self, size: int) -> int:
        """Move *size* bytes; returns the bytes moved (``0`` at end of transfer)."""
        raise NotImplementedError

    async def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Sampler
# ---------------------------------------------------------------------------

class SpeedSampler:
    """Budget loop shared by download and upload samplers."""

    direction = ""

    def __init__(
        self,
        url: str,
        budget: SpeedBudget,
        policy: ChunkPolicy,
        chunk_timeout: float = DEFAULT_CHUNK_TIMEOUT,
        quantiles: Sequence[float] = (),
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        budget.validate()
        if chunk_timeout <= 0:
            raise ConfigError(f"chunk timeout must be positive, got {chunk_timeout}")
        self.url = url
        self.budget = budget
        self.policy = policy
        if budget.max_bytes is not None:
            policy.max_bytes = budget.max_bytes
        self.chunk_timeout = chunk_timeout
        self.quantiles = tuple(quantiles)
        self.session = session

    def create_transfer(self, session: aiohttp.ClientSession) -> Transfer:
        raise NotImplementedError

    @staticmethod
    def create_session() -> aiohttp.ClientSession:
        connector = aiohttp.TCPConnector(limit=1, force_close=False, enable_cleanup_closed=True)
        timeout = aiohttp.ClientTimeout(total=None, connect=5, sock_read=None)
        return aiohttp.ClientSession(
            headers=COMMON_HEADERS,
            connector=connector,
            timeout=timeout,
            auto_decompress=False,
        )

    async def run(self) -> SpeedtestResult:
        """Run the transfer and aggregate whatever it produced."""
        if self.session is not None:
            return await self._run(self.session)
        async with self.create_session() as session:
            return await self._run(session)

    async def _run(self, session: aiohttp.ClientSession) -> SpeedtestResult:
        aggregator = WeightedAggregator()
        error: Optional[str] = None

        start = time.perf_counter()
        deadline = start + self.budget.duration if self.budget.duration is not None else None

        def time_left() -> Optional[float]:
            if deadline is None:
                return None
            return deadline - time.perf_counter()

        # Each wait is bounded by the chunk timeout or the time left, whichever
        # is smaller; a timeout under the smaller bound means the deadline.
        limit = self.chunk_timeout

        def bounded() -> float:
            nonlocal limit
            left = time_left()
            limit = self.chunk_timeout if left is None else max(min(self.chunk_timeout, left), 0.0)
            return limit

        def deadline_reached() -> bool:
            return limit < self.chunk_timeout

        try:
            async with self.create_transfer(session) as transfer:
                await asyncio.wait_for(transfer.open(), timeout=bounded())
                while True:
                    size = self.policy.next_size(time.perf_counter() - start, aggregator.total_bytes)
                    if size <= 0:
                        break
                    left = time_left()
                    if left is not None and left <= 0:
                        break

                    await asyncio.wait_for(transfer.prepare(size), timeout=bounded())

                    transfer.in_flight = 0
                    transfer.reopen = False
                    t0 = time.perf_counter()
                    try:
                        moved = await asyncio.wait_for(transfer.chunk(size), timeout=bounded())
                    except asyncio.TimeoutError:
                        if not deadline_reached():
                            raise
                        # Deadline hit mid-chunk: keep what already arrived
                        moved = transfer.in_flight
                        if moved > 0:
                            aggregator.add(TransferSample(moved, time.perf_counter() - t0))
                        break
                    elapsed = time.perf_counter() - t0

                    if moved <= 0:
                        if transfer.reopen:
                            continue
                        break
                    aggregator.add(TransferSample(moved, elapsed))
                    self.policy.observe(moved, elapsed)
                    logger.debug(
                        "%s chunk: %d bytes in %.4fs", self.direction, moved, elapsed
                    )
        except asyncio.TimeoutError:
            if deadline_reached():
                pass  # the budget ran out while setting up a chunk
            else:
                error = f"{self.direction} chunk timed out after {self.chunk_timeout:g}s"
        except TRANSPORT_ERRORS as exc:
            error = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
        except asyncio.CancelledError:
            logger.info("%s test cancelled after %d chunks", self.direction, len(aggregator))
            raise

        return self._finish(aggregator, error)

    def _finish(self, aggregator: WeightedAggregator, error: Optional[str]) -> SpeedtestResult:
        try:
            result = aggregator.result(self.quantiles)
        except NoDataError as exc:
            reason = error or str(exc)
            logger.warning("%s test failed: %s", self.direction, reason)
            return SpeedtestResult(direction=self.direction, error=reason)

        if error is not None:
            logger.warning(
                "%s test ended early after %d chunks: %s", self.direction, result.count, error
            )
        else:
            logger.info(
                "%s test finished: %d bytes in %.2fs (%s)",
                self.direction,
                result.total_bytes,
                result.total_duration,
                format_rate(result.rate),
            )
        return SpeedtestResult(
            direction=self.direction,
            aggregate=result,
            partial=error is not None,
            error=error,
        )
