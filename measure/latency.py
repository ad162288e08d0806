"""
Concurrent latency probing.

Every configured target is probed by its own task; a slow or dead target
only ever costs its own timeout.  Two probe methods exist:

* TCP connect (default): the time to complete a TCP handshake with
  ``address:port``.  Works unprivileged, unlike ICMP.
* WebSocket PING/PONG (targets given as ``ws://`` or ``wss://`` URLs),
  following the Ookla Speedtest protocol::

      1. Connect to  wss://{hostname}:{port}/ws
      2. Receive     HELLO / YOURIP / CAPABILITIES (ignored)
      3. Send        PING {timestamp_ms}
      4. Receive     PONG {server_timestamp}
      5. Repeat 3-4 for the desired number of samples.
"""
from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
import time
from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

import websockets
import websockets.exceptions

from exposition.metrics import MetricKind

from .constants import (
    COMMON_HEADERS,
    DEFAULT_PING_DELAY,
    DEFAULT_PING_PORT,
    DEFAULT_PING_SAMPLES,
    DEFAULT_PING_TIMEOUT,
    DEFAULT_RESOLVE_TIMEOUT,
)
from .errors import ConfigError
from .stats import LatencyStats, format_latency

if TYPE_CHECKING:
    from exposition.metrics import MetricsBuilder

logger = logging.getLogger(__name__)

TIMEOUT = "timeout"
UNREACHABLE = "unreachable"
REFUSED = "refused"
RESOLUTION = "resolution"
PROTOCOL = "protocol"


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PingTarget:
    """A configured ping target, as written in the configuration."""

    text: str
    host: str
    port: int
    url: Optional[str] = None

    @property
    def method(self) -> str:
        return "websocket" if self.url else "tcp"

    @classmethod
    def parse(cls, text: str, default_port: int = DEFAULT_PING_PORT) -> PingTarget:
        """Accepts ``ip``, ``host``, ``host:port``, ``[v6]:port`` or a ws(s) URL."""
        raw = text.strip()
        if not raw or any(ch.isspace() for ch in raw):
            raise ConfigError(f"invalid ping target: {text!r}")

        if "://" in raw:
            parsed = urlparse(raw)
            if parsed.scheme not in ("ws", "wss") or not parsed.hostname:
                raise ConfigError(f"ping target URLs must use ws:// or wss://: {text!r}")
            try:
                port = parsed.port or (443 if parsed.scheme == "wss" else 80)
            except ValueError as exc:
                raise ConfigError(f"invalid port in ping target {text!r}") from exc
            _check_hostname(parsed.hostname, text)
            return cls(text=raw, host=parsed.hostname, port=port, url=raw)

        if raw.startswith("["):
            host, sep, rest = raw[1:].partition("]")
            if not sep or (rest and not rest.startswith(":")):
                raise ConfigError(f"invalid ping target: {text!r}")
            _check_ip(host, text)
            port = _parse_port(rest[1:], text) if rest else default_port
            return cls(text=raw, host=host, port=port)

        try:
            ipaddress.ip_address(raw)
        except ValueError:
            pass
        else:
            return cls(text=raw, host=raw, port=default_port)

        host, sep, port_text = raw.partition(":")
        if not host or ":" in port_text:
            raise ConfigError(f"invalid ping target: {text!r}")
        _check_hostname(host, text)
        port = _parse_port(port_text, text) if sep else default_port
        return cls(text=raw, host=host, port=port)

    def __str__(self) -> str:
        return self.text


def _check_ip(host: str, text: str) -> None:
    try:
        ipaddress.ip_address(host)
    except ValueError as exc:
        raise ConfigError(f"invalid address in ping target {text!r}") from exc


def _check_hostname(host: str, text: str) -> None:
    # Names the resolver would refuse to encode, e.g. empty labels in "a..b"
    try:
        host.encode("idna")
    except UnicodeError as exc:
        raise ConfigError(f"invalid host name in ping target {text!r}") from exc


def _parse_port(port_text: str, text: str) -> int:
    try:
        port = int(port_text)
    except ValueError as exc:
        raise ConfigError(f"invalid port in ping target {text!r}") from exc
    if not 0 < port < 65536:
        raise ConfigError(f"port out of range in ping target {text!r}")
    return port


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LatencySample:
    """One probe: a round-trip time in seconds, or a failure reason."""

    address: str
    rtt: Optional[float] = None
    failure: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.rtt is not None


@dataclass(frozen=True)
class PingResult:
    """All probes sent to one target."""

    target: PingTarget
    address: Optional[str] = None
    samples: Tuple[LatencySample, ...] = ()
    error: Optional[str] = None
    quantiles: Tuple[float, ...] = ()

    @property
    def rtts(self) -> List[float]:
        return [s.rtt for s in self.samples if s.rtt is not None]

    @property
    def rtt(self) -> Optional[float]:
        """Mean round-trip time of the successful probes."""
        rtts = self.rtts
        return sum(rtts) / len(rtts) if rtts else None

    @property
    def error_counts(self) -> Dict[str, int]:
        return dict(Counter(s.failure for s in self.samples if s.failure is not None))

    @property
    def failure(self) -> Optional[str]:
        """Reason the target is considered down, ``None`` if any probe succeeded."""
        if self.address is None:
            return RESOLUTION
        if self.rtts:
            return None
        counts = self.error_counts
        if not counts:
            return TIMEOUT
        return max(sorted(counts), key=counts.__getitem__)

    @property
    def loss(self) -> float:
        if not self.samples:
            return 1.0
        return 1 - len(self.rtts) / len(self.samples)

    def stats(self) -> LatencyStats:
        stats = LatencyStats(samples=self.rtts)
        stats.calculate(self.quantiles)
        return stats

    def write_metrics(self, builder: MetricsBuilder) -> None:
        labels = {"target": self.target.text}
        if self.address is not None:
            labels["address"] = self.address

        with builder.with_labels(**labels):
            if self.rtts:
                stats = self.stats()
                builder.add(
                    "ping_rtt_seconds",
                    MetricKind.GAUGE,
                    "mean round-trip time to the target",
                    stats.mean,
                )
                builder.add(
                    "ping_rtt_stddev_seconds",
                    MetricKind.GAUGE,
                    "standard deviation of the round-trip time",
                    stats.stddev,
                )
                for quantile, value in stats.quantiles:
                    builder.add(
                        "ping_rtt_quantile_seconds",
                        MetricKind.GAUGE,
                        "quantiles of the round-trip time",
                        value,
                        quantile=quantile,
                    )

            if self.samples:
                builder.add(
                    "ping_probes_total",
                    MetricKind.COUNTER,
                    "number of probes sent",
                    len(self.samples),
                )
                builder.add(
                    "ping_packet_loss_ratio",
                    MetricKind.GAUGE,
                    "fraction of probes without an answer (0 to 1)",
                    self.loss,
                )
                for reason, count in sorted(self.error_counts.items()):
                    builder.add(
                        "ping_errors_total",
                        MetricKind.COUNTER,
                        "number of failed probes by reason",
                        count,
                        reason=reason,
                    )

            failure = self.failure
            if failure is not None:
                builder.add(
                    "ping_failure",
                    MetricKind.GAUGE,
                    "1 if no probe to the target succeeded",
                    1,
                    reason=failure,
                )


# ---------------------------------------------------------------------------
# Prober
# ---------------------------------------------------------------------------

class PingProber:
    """Probe many targets concurrently, each under its own timeouts."""

    def __init__(
        self,
        samples: int = DEFAULT_PING_SAMPLES,
        delay: float = DEFAULT_PING_DELAY,
        timeout: float = DEFAULT_PING_TIMEOUT,
        resolve_timeout: float = DEFAULT_RESOLVE_TIMEOUT,
        quantiles: Sequence[float] = (),
    ) -> None:
        if samples < 1:
            raise ConfigError(f"ping samples must be at least 1, got {samples}")
        if timeout <= 0 or resolve_timeout <= 0:
            raise ConfigError("ping timeouts must be positive")
        if delay < 0:
            raise ConfigError("ping delay must not be negative")
        self.samples = samples
        self.delay = delay
        self.timeout = timeout
        self.resolve_timeout = resolve_timeout
        self.quantiles = tuple(quantiles)

    # -- Multiple targets ---------------------------------------------------

    async def probe_all(self, targets: Sequence[PingTarget]) -> List[PingResult]:
        """Probe every target concurrently; results follow the input order.

        An unexpected error while probing one target is reported as that
        target's failure and never reaches the other probes.
        """
        tasks = [asyncio.create_task(self.probe_target(t)) for t in targets]
        try:
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            for task in tasks:
                task.cancel()

        results: List[PingResult] = []
        for target, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error("Ping to %s raised an unexpected error", target, exc_info=outcome)
                error = f"{type(outcome).__name__}: {outcome}" if str(outcome) else type(outcome).__name__
                outcome = self._failed(target, [], UNREACHABLE, error)
            results.append(outcome)

        for result in results:
            if result.failure is not None:
                logger.warning(
                    "Ping to %s failed: %s%s",
                    result.target,
                    result.failure,
                    f" ({result.error})" if result.error else "",
                )
            else:
                logger.debug("Ping to %s: %s", result.target, format_latency(result.rtt or 0.0))
        return results

    # -- Single target ------------------------------------------------------

    async def probe_target(self, target: PingTarget) -> PingResult:
        if target.url is not None:
            return await self._probe_websocket(target)

        try:
            address = await self.resolve(target.host)
        except asyncio.TimeoutError:
            return self._result(target, None, error="name resolution timed out")
        except (OSError, UnicodeError) as exc:
            return self._result(target, None, error=str(exc) or type(exc).__name__)

        samples = await self._spaced(lambda: self._tcp_once(address, target.port))
        return self._result(target, address, samples)

    async def resolve(self, host: str) -> str:
        """Return the first address for *host*; IP literals pass through."""
        try:
            ipaddress.ip_address(host)
        except ValueError:
            pass
        else:
            return host

        loop = asyncio.get_running_loop()
        infos = await asyncio.wait_for(
            loop.getaddrinfo(host, None, type=socket.SOCK_STREAM),
            timeout=self.resolve_timeout,
        )
        if not infos:
            raise OSError(f"no IP address found for {host}")
        return infos[0][4][0]

    def _result(
        self,
        target: PingTarget,
        address: Optional[str],
        samples: Sequence[LatencySample] = (),
        error: Optional[str] = None,
    ) -> PingResult:
        return PingResult(
            target=target,
            address=address,
            samples=tuple(samples),
            error=error,
            quantiles=self.quantiles,
        )

    async def _spaced(
        self, probe: Callable[[], Awaitable[LatencySample]]
    ) -> Tuple[LatencySample, ...]:
        """Start one probe every ``delay`` seconds without waiting for answers."""

        async def _delayed(index: int) -> LatencySample:
            if index:
                await asyncio.sleep(index * self.delay)
            return await probe()

        return tuple(await asyncio.gather(*[_delayed(i) for i in range(self.samples)]))

    # -- TCP ----------------------------------------------------------------

    async def _tcp_once(self, address: str, port: int) -> LatencySample:
        start = time.perf_counter()
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(address, port),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            return LatencySample(address, failure=TIMEOUT)
        except ConnectionRefusedError:
            return LatencySample(address, failure=REFUSED)
        except OSError as exc:
            logger.debug("TCP probe to %s:%d failed: %s", address, port, exc)
            return LatencySample(address, failure=UNREACHABLE)

        rtt = time.perf_counter() - start
        writer.close()
        return LatencySample(address, rtt=rtt)

    # -- WebSocket ----------------------------------------------------------

    async def _probe_websocket(self, target: PingTarget) -> PingResult:
        address = target.host
        samples: List[LatencySample] = []
        try:
            async with websockets.connect(
                target.url,
                additional_headers=COMMON_HEADERS,
                ping_interval=None,
                close_timeout=1,
                open_timeout=self.timeout,
            ) as ws:
                for index in range(self.samples):
                    if index:
                        await asyncio.sleep(self.delay)
                    samples.append(await self._ws_ping_once(ws, address))
        except asyncio.TimeoutError:
            return self._failed(target, samples, TIMEOUT, "connection timeout")
        except socket.gaierror as exc:
            return self._result(target, None, error=str(exc))
        except ConnectionRefusedError as exc:
            return self._failed(target, samples, REFUSED, str(exc))
        except OSError as exc:
            return self._failed(target, samples, UNREACHABLE, str(exc))
        except websockets.exceptions.WebSocketException as exc:
            return self._failed(target, samples, PROTOCOL, str(exc))

        return self._result(target, address, samples)

    def _failed(
        self,
        target: PingTarget,
        samples: List[LatencySample],
        reason: str,
        error: str,
    ) -> PingResult:
        """Probes that never got to run count as failed with *reason*."""
        missing = self.samples - len(samples)
        filled = samples + [LatencySample(target.host, failure=reason)] * missing
        return self._result(target, target.host, filled, error=error)

    async def _ws_ping_once(self, ws, address: str) -> LatencySample:  # noqa: ANN001
        """Send PING, wait for PONG, measure RTT."""
        send_time = time.perf_counter()
        await ws.send(f"PING {int(send_time * 1000)}")

        async def _pong() -> str:
            while True:
                msg = await ws.recv()
                if isinstance(msg, str) and msg.startswith("PONG"):
                    return msg

        try:
            await asyncio.wait_for(_pong(), timeout=self.timeout)
        except asyncio.TimeoutError:
            return LatencySample(address, failure=TIMEOUT)
        return LatencySample(address, rtt=time.perf_counter() - send_time)
