"""
Upload speed test module.

Each chunk is one HTTP POST carrying ``size`` bytes taken from a
pre-generated random buffer.  An empty POST primes the keep-alive
connection first so that connection setup stays out of the timed chunks.
"""
from __future__ import annotations

import logging
import os

import aiohttp

from .constants import UPLOAD_BUFFER_SIZE
from .sampler import SpeedSampler, Transfer

logger = logging.getLogger(__name__)

_UPLOAD_HEADERS = {"Content-Type": "application/octet-stream"}


class UploadTransfer(Transfer):
    """Posts chunks of random data to the upload endpoint."""

    def __init__(self, session: aiohttp.ClientSession, url: str, buffer: bytes) -> None:
        super().__init__(session, url)
        self._buffer = buffer
        self._buffer_pos = 0
        self._payload = b""

    async def open(self) -> None:
        await self._post(b"")
        logger.debug("Upload connection primed: %s", self.url)

    async def prepare(self, size: int) -> None:
        # Built outside the timed window; slicing a large buffer is not free
        self._payload = self._take(size)

    async def chunk(self, size: int) -> int:
        payload = self._payload
        await self._post(payload)
        return len(payload)

    def _take(self, size: int) -> bytes:
        """Cycle through the buffer, wrapping around as needed."""
        buffer = self._buffer
        buffer_size = len(buffer)
        parts = []
        needed = size
        while needed > 0:
            end = min(self._buffer_pos + needed, buffer_size)
            parts.append(buffer[self._buffer_pos:end])
            needed -= end - self._buffer_pos
            self._buffer_pos = end % buffer_size
        return b"".join(parts)

    async def _post(self, payload: bytes) -> None:
        async with self.session.post(self.url, data=payload, headers=_UPLOAD_HEADERS) as resp:
            resp.raise_for_status()
            await resp.read()


class UploadSampler(SpeedSampler):
    """Upload direction of the speed sampler."""

    direction = "upload"

    def __init__(self, *args, **kwargs) -> None:  # noqa: ANN002, ANN003
        super().__init__(*args, **kwargs)
        self._data_buffer = os.urandom(UPLOAD_BUFFER_SIZE)

    def create_transfer(self, session: aiohttp.ClientSession) -> Transfer:
        return UploadTransfer(session, self.url, self._data_buffer)
