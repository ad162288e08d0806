"""
HTTP routing shell.

``GET /ping`` and ``GET /speedtest`` run a measurement per request and
answer in the Prometheus text format or JSON, whichever the client's
``Accept`` header prefers (``?format=json|prometheus`` overrides it).
``GET /`` is a short index, plain text for terminals and HTML otherwise.
"""
from __future__ import annotations

import asyncio
import logging
import secrets
import time
from typing import Awaitable, Callable, Iterable, Optional

from aiohttp import web

from exposition import MetricEntry, MetricsBuilder, encode_json, encode_prometheus
from exposition import output as json_output
from exposition import prometheus
from measure.config import Config
from measure.errors import ExporterError
from measure.speedtest import run_ping, run_speedtest

from .negotiation import negotiate

logger = logging.getLogger(__name__)

CONFIG_KEY = web.AppKey("config", Config)

_HTML = "text/html"
_PLAIN = "text/plain"
_JSON = "application/json"

_FORMATS = {
    "prometheus": _PLAIN,
    "text": _PLAIN,
    "json": _JSON,
}

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------

INDEX_TEXT = """\
speedtest-exporter

Endpoints:
  /ping       latency to the configured targets
  /speedtest  download and upload throughput

Both answer in the Prometheus text format by default; send
"Accept: application/json" or add "?format=json" for JSON.
"""

INDEX_HTML = """\
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>speedtest-exporter</title></head>
<body>
<h1>speedtest-exporter</h1>
<ul>
<li><a href="ping">/ping</a>: latency to the configured targets</li>
<li><a href="speedtest">/speedtest</a>: download and upload throughput</li>
</ul>
<p>Both answer in the Prometheus text format by default; send
<code>Accept: application/json</code> or add <code>?format=json</code> for JSON.</p>
</body>
</html>
"""


def _is_terminal(request: web.Request) -> bool:
    agent = request.headers.get("User-Agent", "")
    return agent.startswith(("curl/", "Wget/"))


async def handle_index(request: web.Request) -> web.Response:
    # Terminals get plain text unless they explicitly ask for HTML
    offers = [_PLAIN, _HTML] if _is_terminal(request) else [_HTML, _PLAIN]
    chosen = negotiate(request.headers.get("Accept"), offers)
    if chosen is None:
        raise web.HTTPNotAcceptable(text="supported: text/plain, text/html")
    if chosen == _HTML:
        return web.Response(text=INDEX_HTML, content_type=_HTML, charset="utf-8")
    return web.Response(text=INDEX_TEXT, content_type=_PLAIN, charset="utf-8")


# ---------------------------------------------------------------------------
# Metrics endpoints
# ---------------------------------------------------------------------------

def choose_format(request: web.Request) -> str:
    """Return the response media type or raise 406."""
    requested = request.query.get("format")
    if requested is not None:
        try:
            return _FORMATS[requested.lower()]
        except KeyError:
            raise web.HTTPNotAcceptable(
                text=f"unsupported format {requested!r}; use json or prometheus"
            ) from None

    chosen = negotiate(request.headers.get("Accept"), [_PLAIN, _JSON])
    if chosen is None:
        raise web.HTTPNotAcceptable(text="supported: text/plain, application/json")
    return chosen


def metrics_response(entries: Iterable[MetricEntry], media_type: str) -> web.Response:
    if media_type == _JSON:
        return web.Response(
            body=encode_json(entries),
            headers={"Content-Type": f"{json_output.CONTENT_TYPE}; charset=utf-8"},
        )
    return web.Response(
        body=encode_prometheus(entries),
        headers={"Content-Type": prometheus.CONTENT_TYPE},
    )


def error_response(message: str) -> web.Response:
    return web.Response(status=500, text=message, content_type=_PLAIN, charset="utf-8")


async def handle_ping(request: web.Request) -> web.Response:
    media_type = choose_format(request)
    config = request.app[CONFIG_KEY]

    try:
        results = await run_ping(config)
    except ExporterError as exc:
        logger.error("Ping failed: %s", exc)
        return error_response(str(exc))

    builder = MetricsBuilder()
    for result in results:
        result.write_metrics(builder)
    return metrics_response(builder.entries(), media_type)


async def handle_speedtest(request: web.Request) -> web.Response:
    media_type = choose_format(request)
    config = request.app[CONFIG_KEY]

    try:
        results = await run_speedtest(config)
    except ExporterError as exc:
        logger.error("Speedtest failed: %s", exc)
        return error_response(str(exc))

    if results and not any(r.ok for r in results):
        message = "; ".join(f"{r.direction}: {r.error}" for r in results)
        logger.error("Speedtest failed in every direction: %s", message)
        return error_response(message)

    builder = MetricsBuilder()
    for result in results:
        result.write_metrics(builder)
    return metrics_response(builder.entries(), media_type)


# ---------------------------------------------------------------------------
# Traffic logging
# ---------------------------------------------------------------------------

def format_latency(seconds: float) -> str:
    if seconds < 1:
        return f"{seconds * 1000:.3f}ms"
    return f"{seconds:.3f}s"


@web.middleware
async def log_traffic(request: web.Request, handler: Handler) -> web.StreamResponse:
    # Measurements take seconds; the id ties a response line to its request
    request_id = f"{secrets.randbits(32):08X}"
    peer: Optional[str] = request.remote
    logger.info("Request %s %s %s from %s", request_id, request.method, request.path, peer)

    start = time.perf_counter()
    try:
        response = await handler(request)
    except asyncio.CancelledError:
        logger.info("Request %s cancelled by the client", request_id)
        raise
    except web.HTTPException as exc:
        logger.info(
            "Response %s status=%d latency=%s",
            request_id,
            exc.status,
            format_latency(time.perf_counter() - start),
        )
        raise
    logger.info(
        "Response %s status=%d latency=%s",
        request_id,
        response.status,
        format_latency(time.perf_counter() - start),
    )
    return response


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

def create_app(config: Config) -> web.Application:
    app = web.Application(middlewares=[log_traffic])
    app[CONFIG_KEY] = config
    app.router.add_get("/", handle_index)
    app.router.add_get("/ping", handle_ping)
    app.router.add_get("/speedtest", handle_speedtest)
    return app
