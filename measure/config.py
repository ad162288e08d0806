"""
Exporter configuration.

Reads a TOML (``tomllib``) or JSON file into dataclasses; every key is
optional and falls back to the defaults below, unknown keys are rejected.

Supported keys::

    [server]
    address = "0.0.0.0"
    port = 9090

    [ping]
    targets = ["8.8.8.8", "google.com:443", "wss://host:8080/ws"]
    port = 443                 # default TCP port for targets without one
    timeout = "2s"
    resolve_timeout = "2s"
    samples = 3
    delay = "200ms"
    quantiles = [0.0, 0.5, 1.0]

    [speedtest]
    download_url = "https://..."
    upload_url = "https://..."
    directions = ["download", "upload"]
    download_duration = "10s"  # "0" disables the deadline
    upload_duration = "10s"
    download_bytes = 0         # 0 disables the byte budget
    upload_bytes = 0
    chunk_size = 0             # 0 selects the adaptive chunk policy
    min_chunk_size = 16384
    max_chunk_size = 16777216
    target_chunk_duration = "100ms"
    chunk_timeout = "5s"
    quantiles = [0.0, 0.5, 1.0]

    [logging]
    level = "INFO"

Durations are numbers of seconds or strings with an ``ms``, ``s``, ``m`` or
``h`` suffix.
"""
from __future__ import annotations

import dataclasses
import ipaddress
import json
import os
import re
import tomllib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from .chunking import AdaptiveChunkPolicy, ChunkPolicy, FixedChunkPolicy
from .constants import (
    DEFAULT_ADDRESS,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CHUNK_TIMEOUT,
    DEFAULT_DOWNLOAD_URL,
    DEFAULT_DURATION,
    DEFAULT_PING_DELAY,
    DEFAULT_PING_PORT,
    DEFAULT_PING_SAMPLES,
    DEFAULT_PING_TARGETS,
    DEFAULT_PING_TIMEOUT,
    DEFAULT_PORT,
    DEFAULT_QUANTILES,
    DEFAULT_RESOLVE_TIMEOUT,
    DEFAULT_UPLOAD_URL,
    DIRECTIONS,
    INITIAL_CHUNK_SIZE,
    MAX_CHUNK_SIZE,
    MAX_DURATION,
    MAX_PING_SAMPLES,
    MIN_CHUNK_SIZE,
    MIN_DURATION,
    MIN_PING_SAMPLES,
    TARGET_CHUNK_DURATION,
)
from .errors import ConfigError
from .latency import PingTarget
from .sampler import SpeedBudget

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


# ---------------------------------------------------------------------------
# Durations
# ---------------------------------------------------------------------------

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


def parse_duration(value: Union[str, int, float]) -> float:
    """``"250ms"`` → 0.25, ``"2m"`` → 120.0, ``3`` → 3.0."""
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ConfigError(f"durations must not be negative: {value!r}")
        return float(value)
    match = _DURATION_RE.match(str(value))
    if match is None:
        raise ConfigError(f"invalid duration: {value!r}")
    return float(match.group(1)) * _UNITS[match.group(2)]


def format_duration(seconds: float) -> str:
    if seconds and seconds < 1:
        return f"{seconds * 1000:g}ms"
    return f"{seconds:g}s"


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

@dataclass
class ServerConfig:
    address: str = DEFAULT_ADDRESS
    port: int = DEFAULT_PORT

    def validate(self) -> None:
        try:
            ipaddress.ip_address(self.address)
        except ValueError as exc:
            raise ConfigError(f"server.address is not an IP address: {self.address!r}") from exc
        if not 0 < self.port < 65536:
            raise ConfigError(f"server.port out of range: {self.port}")


@dataclass
class PingConfig:
    targets: List[str] = field(default_factory=lambda: list(DEFAULT_PING_TARGETS))
    port: int = DEFAULT_PING_PORT
    timeout: float = DEFAULT_PING_TIMEOUT
    resolve_timeout: float = DEFAULT_RESOLVE_TIMEOUT
    samples: int = DEFAULT_PING_SAMPLES
    delay: float = DEFAULT_PING_DELAY
    quantiles: List[float] = field(default_factory=lambda: list(DEFAULT_QUANTILES))

    _durations = ("timeout", "resolve_timeout", "delay")

    def parsed_targets(self) -> List[PingTarget]:
        return [PingTarget.parse(t, self.port) for t in self.targets]

    def validate(self) -> None:
        targets = self.parsed_targets()
        seen = set()
        for target in targets:
            if target.text in seen:
                raise ConfigError(f"duplicate ping target: {target.text!r}")
            seen.add(target.text)
        if not 0 < self.port < 65536:
            raise ConfigError(f"ping.port out of range: {self.port}")
        if self.timeout <= 0 or self.resolve_timeout <= 0:
            raise ConfigError("ping timeouts must be positive")
        if not MIN_PING_SAMPLES <= self.samples <= MAX_PING_SAMPLES:
            raise ConfigError(
                f"ping.samples must be between {MIN_PING_SAMPLES} and {MAX_PING_SAMPLES}"
            )
        self.quantiles = _check_quantiles(self.quantiles, "ping.quantiles")


@dataclass
class SpeedtestConfig:
    download_url: str = DEFAULT_DOWNLOAD_URL
    upload_url: str = DEFAULT_UPLOAD_URL
    directions: List[str] = field(default_factory=lambda: list(DIRECTIONS))
    download_duration: float = DEFAULT_DURATION
    upload_duration: float = DEFAULT_DURATION
    download_bytes: int = 0
    upload_bytes: int = 0
    chunk_size: int = DEFAULT_CHUNK_SIZE
    min_chunk_size: int = MIN_CHUNK_SIZE
    max_chunk_size: int = MAX_CHUNK_SIZE
    target_chunk_duration: float = TARGET_CHUNK_DURATION
    chunk_timeout: float = DEFAULT_CHUNK_TIMEOUT
    quantiles: List[float] = field(default_factory=lambda: list(DEFAULT_QUANTILES))

    _durations = ("download_duration", "upload_duration", "target_chunk_duration", "chunk_timeout")

    def url(self, direction: str) -> str:
        return self.download_url if direction == "download" else self.upload_url

    def budget(self, direction: str) -> SpeedBudget:
        """Zero means "not limited" in the file; at least one limit must remain."""
        duration = self.download_duration if direction == "download" else self.upload_duration
        max_bytes = self.download_bytes if direction == "download" else self.upload_bytes
        return SpeedBudget(
            duration=duration or None,
            max_bytes=max_bytes or None,
        )

    def chunk_policy(self) -> ChunkPolicy:
        """A fresh policy per run; policies carry state."""
        if self.chunk_size:
            return FixedChunkPolicy(self.chunk_size)
        return AdaptiveChunkPolicy(
            initial=INITIAL_CHUNK_SIZE,
            minimum=self.min_chunk_size,
            maximum=self.max_chunk_size,
            target_duration=self.target_chunk_duration,
        )

    def validate(self) -> None:
        if not self.directions:
            raise ConfigError("speedtest.directions must name at least one direction")
        for direction in self.directions:
            if direction not in DIRECTIONS:
                raise ConfigError(f"unknown speedtest direction: {direction!r}")
        if len(set(self.directions)) != len(self.directions):
            raise ConfigError("speedtest.directions contains duplicates")
        for direction in self.directions:
            url = self.url(direction)
            if not url.startswith(("http://", "https://")):
                raise ConfigError(f"{direction} URL must be http(s): {url!r}")
            duration = self.download_duration if direction == "download" else self.upload_duration
            if duration and not MIN_DURATION <= duration <= MAX_DURATION:
                raise ConfigError(
                    f"{direction} duration must lie between {MIN_DURATION:g}s and {MAX_DURATION:g}s"
                )
            self.budget(direction).validate()
        if self.download_bytes < 0 or self.upload_bytes < 0:
            raise ConfigError("speedtest byte budgets must not be negative")
        if self.chunk_size < 0:
            raise ConfigError("speedtest.chunk_size must not be negative")
        if self.chunk_timeout <= 0:
            raise ConfigError("speedtest.chunk_timeout must be positive")
        self.chunk_policy()
        self.quantiles = _check_quantiles(self.quantiles, "speedtest.quantiles")


@dataclass
class LoggingConfig:
    level: str = "INFO"

    def validate(self) -> None:
        self.level = self.level.upper()
        if self.level not in _LOG_LEVELS:
            raise ConfigError(f"logging.level must be one of {', '.join(_LOG_LEVELS)}")


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    ping: PingConfig = field(default_factory=PingConfig)
    speedtest: SpeedtestConfig = field(default_factory=SpeedtestConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> Config:
        """Raise :class:`ConfigError` on the first invalid value."""
        self.server.validate()
        self.ping.validate()
        self.speedtest.validate()
        self.logging.validate()
        return self

    def to_dict(self) -> Dict[str, Any]:
        result = dataclasses.asdict(self)
        for section_name in ("ping", "speedtest"):
            section = getattr(self, section_name)
            for key in section._durations:
                result[section_name][key] = format_duration(getattr(section, key))
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Config:
        if not isinstance(data, Mapping):
            raise ConfigError("configuration root must be a table")
        sections = {f.name: f for f in dataclasses.fields(cls)}
        unknown = set(data) - set(sections)
        if unknown:
            raise ConfigError(f"unknown configuration section(s): {', '.join(sorted(unknown))}")

        kwargs = {}
        for name, value in data.items():
            section_cls = sections[name].default_factory  # type: ignore[misc]
            kwargs[name] = _load_section(section_cls, value, name)
        return cls(**kwargs)


def _load_section(section_cls: Any, data: Any, name: str) -> Any:
    if not isinstance(data, Mapping):
        raise ConfigError(f"[{name}] must be a table")
    known = {f.name: f for f in dataclasses.fields(section_cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ConfigError(f"unknown key(s) in [{name}]: {', '.join(sorted(unknown))}")

    durations = getattr(section_cls, "_durations", ())
    defaults = section_cls()
    kwargs: Dict[str, Any] = {}
    for key, value in data.items():
        if key in durations:
            kwargs[key] = parse_duration(value)
            continue
        expected = getattr(defaults, key)
        kwargs[key] = _coerce(value, expected, f"{name}.{key}")
    return section_cls(**kwargs)


def _coerce(value: Any, default: Any, key: str) -> Any:
    """Check *value* against the type of its default."""
    if isinstance(default, bool):
        ok = isinstance(value, bool)
    elif isinstance(default, int):
        ok = isinstance(value, int) and not isinstance(value, bool)
    elif isinstance(default, float):
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        value = float(value) if ok else value
    elif isinstance(default, str):
        ok = isinstance(value, str)
    elif isinstance(default, list):
        ok = isinstance(value, list)
        if ok and default:
            item_type = type(default[0])
            if item_type is float:
                ok = all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in value)
                value = [float(v) for v in value] if ok else value
            else:
                ok = all(isinstance(v, item_type) for v in value)
    else:
        ok = True
    if not ok:
        raise ConfigError(f"{key} has the wrong type: {value!r}")
    return value


def _check_quantiles(quantiles: List[float], key: str) -> List[float]:
    for q in quantiles:
        if not 0.0 <= q <= 1.0:
            raise ConfigError(f"{key} must lie within [0, 1], got {q}")
    return sorted(set(quantiles))


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> Config:
    """Load and validate the configuration at *path*, or the defaults."""
    if path is None:
        return Config().validate()

    if not os.path.isfile(path):
        raise ConfigError(f"configuration file not found: {path}")

    try:
        if path.endswith(".json"):
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
        else:
            with open(path, "rb") as fh:
                data = tomllib.load(fh)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"cannot parse {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"cannot read {path}: {exc}") from exc

    return Config.from_dict(data).validate()


def default_config_dict() -> Dict[str, Any]:
    """The default configuration, for ``--print-default-config``."""
    return Config().to_dict()
