"""
Download speed test module.

Streams a large file over HTTP GET and cuts the body into timed chunks.
When the body ends before the budget is spent, a fresh request is issued;
the time to get its response headers is not part of any chunk.
"""
from __future__ import annotations

import logging
from typing import Optional

import aiohttp

from .constants import READ_SIZE
from .errors import MeasurementError
from .sampler import SpeedSampler, Transfer

logger = logging.getLogger(__name__)


class DownloadTransfer(Transfer):
    """Reads chunks from a streaming GET response."""

    def __init__(self, session: aiohttp.ClientSession, url: str) -> None:
        super().__init__(session, url)
        self._response: Optional[aiohttp.ClientResponse] = None
        self._fresh = False

    async def open(self) -> None:
        await self._request()

    async def _request(self) -> None:
        response = await self.session.get(self.url)
        try:
            response.raise_for_status()
        except aiohttp.ClientResponseError:
            response.release()
            raise
        self._response = response
        self._fresh = True
        logger.debug("Download stream opened: %s (%s)", self.url, response.status)

    async def prepare(self, size: int) -> None:
        if self._response is not None and self._response.content.at_eof():
            self._response.release()
            self._response = None
        if self._response is None:
            await self._request()

    async def chunk(self, size: int) -> int:
        response = self._response
        if response is None:
            return 0

        while self.in_flight < size:
            data = await response.content.read(min(READ_SIZE, size - self.in_flight))
            if not data:
                response.release()
                self._response = None
                if self.in_flight == 0:
                    if self._fresh:
                        raise MeasurementError(f"download endpoint returned an empty body: {self.url}")
                    # Body ended on a chunk boundary; the next GET goes out in prepare()
                    self.reopen = True
                break
            self._fresh = False
            self.in_flight += len(data)
        return self.in_flight

    async def close(self) -> None:
        if self._response is not None:
            self._response.close()
            self._response = None


class DownloadSampler(SpeedSampler):
    """Download direction of the speed sampler."""

    direction = "download"

    def create_transfer(self, session: aiohttp.ClientSession) -> Transfer:
        return DownloadTransfer(session, self.url)
