"""
Measurement runs built from the configuration.

One call per scrape: :func:`run_speedtest` drives the configured directions
one after another, :func:`run_ping` probes every target concurrently.
"""
from __future__ import annotations

import logging
from typing import List, Optional

import aiohttp

from .config import Config
from .download import DownloadSampler
from .errors import ConfigError
from .latency import PingProber, PingResult
from .sampler import SpeedSampler, SpeedtestResult
from .upload import UploadSampler

logger = logging.getLogger(__name__)

_SAMPLERS = {
    "download": DownloadSampler,
    "upload": UploadSampler,
}


def build_sampler(
    direction: str,
    config: Config,
    session: Optional[aiohttp.ClientSession] = None,
) -> SpeedSampler:
    try:
        sampler_cls = _SAMPLERS[direction]
    except KeyError:
        raise ConfigError(f"unknown speedtest direction: {direction!r}") from None
    st = config.speedtest
    return sampler_cls(
        st.url(direction),
        st.budget(direction),
        st.chunk_policy(),
        chunk_timeout=st.chunk_timeout,
        quantiles=st.quantiles,
        session=session,
    )


async def run_speedtest(
    config: Config,
    session: Optional[aiohttp.ClientSession] = None,
) -> List[SpeedtestResult]:
    """Run each configured direction in turn; one result per direction."""
    results: List[SpeedtestResult] = []
    for direction in config.speedtest.directions:
        logger.info("Starting %s test against %s", direction, config.speedtest.url(direction))
        sampler = build_sampler(direction, config, session)
        results.append(await sampler.run())
    return results


def build_prober(config: Config) -> PingProber:
    ping = config.ping
    return PingProber(
        samples=ping.samples,
        delay=ping.delay,
        timeout=ping.timeout,
        resolve_timeout=ping.resolve_timeout,
        quantiles=ping.quantiles,
    )


async def run_ping(config: Config) -> List[PingResult]:
    targets = config.ping.parsed_targets()
    logger.info("Pinging %d target(s)", len(targets))
    return await build_prober(config).probe_all(targets)
