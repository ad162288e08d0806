"""
Chunk-size policies for the speed sampler.

A policy is a small state machine decoupled from any transport: the sampler
asks it for the next chunk size given the elapsed time and bytes moved so
far, then reports back how long the chunk took.  That keeps the sizing
logic testable without sockets.
"""
from __future__ import annotations

from typing import Optional

from .constants import (
    INITIAL_CHUNK_SIZE,
    MAX_CHUNK_SIZE,
    MIN_CHUNK_SIZE,
    TARGET_CHUNK_DURATION,
)
from .errors import ConfigError


class ChunkPolicy:
    """Base policy: a fixed size, clamped to the remaining byte budget."""

    def __init__(self, size: int, max_bytes: Optional[int] = None) -> None:
        if size <= 0:
            raise ConfigError(f"chunk size must be positive, got {size}")
        self.size = size
        self.max_bytes = max_bytes

    def next_size(self, elapsed: float, bytes_so_far: int) -> int:
        """Size of the next chunk; ``0`` means the byte budget is spent."""
        size = self.size
        if self.max_bytes is not None:
            size = min(size, max(self.max_bytes - bytes_so_far, 0))
        return size

    def observe(self, chunk_bytes: int, chunk_duration: float) -> None:
        """Feed back the outcome of the last chunk."""


class FixedChunkPolicy(ChunkPolicy):
    """Every chunk has the configured size."""


class AdaptiveChunkPolicy(ChunkPolicy):
    """
    Grow the chunk while chunks finish well under *target_duration*, shrink
    it when they take much longer.

    Small chunks keep timing resolution high on slow links; large chunks keep
    per-chunk overhead low on fast ones.  The size doubles when a full chunk
    took less than half the target and halves when it took more than twice
    the target, always within ``[minimum, maximum]``.
    """

    def __init__(
        self,
        initial: int = INITIAL_CHUNK_SIZE,
        minimum: int = MIN_CHUNK_SIZE,
        maximum: int = MAX_CHUNK_SIZE,
        target_duration: float = TARGET_CHUNK_DURATION,
        max_bytes: Optional[int] = None,
    ) -> None:
        if not 0 < minimum <= maximum:
            raise ConfigError(
                f"chunk size bounds must satisfy 0 < minimum <= maximum, got {minimum}..{maximum}"
            )
        if target_duration <= 0:
            raise ConfigError("target chunk duration must be positive")
        super().__init__(min(max(initial, minimum), maximum), max_bytes)
        self.minimum = minimum
        self.maximum = maximum
        self.target_duration = target_duration

    def observe(self, chunk_bytes: int, chunk_duration: float) -> None:
        # A short trailing chunk says nothing about the link
        if chunk_bytes < self.size:
            return
        if chunk_duration < self.target_duration / 2:
            self.size = min(self.size * 2, self.maximum)
        elif chunk_duration > self.target_duration * 2:
            self.size = max(self.size // 2, self.minimum)
