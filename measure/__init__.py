"""Measurement library -- speed sampling, latency probing, statistics and configuration."""

from .chunking import AdaptiveChunkPolicy, ChunkPolicy, FixedChunkPolicy
from .config import Config, load_config
from .download import DownloadSampler
from .errors import ConfigError, ExporterError, MeasurementError, NoDataError
from .latency import LatencySample, PingProber, PingResult, PingTarget
from .sampler import SpeedBudget, SpeedSampler, SpeedtestResult
from .speedtest import build_prober, build_sampler, run_ping, run_speedtest
from .stats import (
    AggregateResult,
    LatencyStats,
    TransferSample,
    WeightedAggregator,
    aggregate,
    calculate_percentile,
    format_latency,
    format_rate,
)
from .upload import UploadSampler

__all__ = [
    "AdaptiveChunkPolicy",
    "AggregateResult",
    "ChunkPolicy",
    "Config",
    "ConfigError",
    "DownloadSampler",
    "ExporterError",
    "FixedChunkPolicy",
    "LatencySample",
    "LatencyStats",
    "MeasurementError",
    "NoDataError",
    "PingProber",
    "PingResult",
    "PingTarget",
    "SpeedBudget",
    "SpeedSampler",
    "SpeedtestResult",
    "TransferSample",
    "UploadSampler",
    "WeightedAggregator",
    "aggregate",
    "build_prober",
    "build_sampler",
    "calculate_percentile",
    "format_latency",
    "format_rate",
    "load_config",
    "run_ping",
    "run_speedtest",
]
