"""Tests for the HTTP shell -- routing, content negotiation and error mapping."""

import json
import unittest
from unittest import mock

from aiohttp.test_utils import AioHTTPTestCase

from exposition import parse_json, parse_prometheus
from measure.config import Config
from measure.errors import ConfigError
from measure.latency import LatencySample, PingResult, PingTarget
from measure.sampler import SpeedtestResult
from measure.stats import TransferSample, aggregate
from web.app import create_app
from web.negotiation import negotiate

PROMETHEUS_ACCEPT = (
    "application/openmetrics-text;version=1.0.0,application/openmetrics-text;version=0.0.1;q=0.75,"
    "text/plain;version=0.0.4;q=0.5,*/*;q=0.1"
)


def _speedtest_results():
    agg = aggregate([TransferSample(1000, 1.0), TransferSample(2000, 1.0), TransferSample(3000, 2.0)])
    return [
        SpeedtestResult("download", agg),
        SpeedtestResult("upload", agg, partial=True, error="ClientPayloadError"),
    ]


def _ping_results():
    return [
        PingResult(
            target=PingTarget.parse("10.0.0.1"),
            address="10.0.0.1",
            samples=(LatencySample("10.0.0.1", rtt=0.005),),
        ),
        PingResult(
            target=PingTarget.parse("10.0.0.2"),
            address="10.0.0.2",
            samples=(LatencySample("10.0.0.2", failure="timeout"),),
        ),
    ]


class TestNegotiate(unittest.TestCase):
    offers = ["text/plain", "application/json"]

    def test_missing_header(self):
        self.assertEqual(negotiate(None, self.offers), "text/plain")
        self.assertEqual(negotiate("", self.offers), "text/plain")

    def test_exact(self):
        self.assertEqual(negotiate("application/json", self.offers), "application/json")
        self.assertEqual(negotiate("text/plain; version=0.0.4", self.offers), "text/plain")

    def test_quality(self):
        self.assertEqual(
            negotiate("text/plain;q=0.2, application/json;q=0.9", self.offers),
            "application/json",
        )
        self.assertEqual(negotiate(PROMETHEUS_ACCEPT, self.offers), "text/plain")

    def test_wildcards(self):
        self.assertEqual(negotiate("*/*", self.offers), "text/plain")
        self.assertEqual(negotiate("application/*", self.offers), "application/json")
        self.assertEqual(negotiate("*", self.offers), "text/plain")

    def test_first_listed_wins_ties(self):
        self.assertEqual(negotiate("application/json, text/plain", self.offers), "application/json")

    def test_not_acceptable(self):
        self.assertIsNone(negotiate("image/png", self.offers))
        self.assertIsNone(negotiate("text/plain;q=0, application/json;q=0", self.offers))


class TestExporterApp(AioHTTPTestCase):
    async def get_application(self):
        return create_app(Config())

    # -- index ---------------------------------------------------------------

    async def test_index_html_for_browsers(self):
        resp = await self.client.get("/", headers={"Accept": "text/html,*/*;q=0.8"})
        self.assertEqual(resp.status, 200)
        self.assertEqual(resp.content_type, "text/html")
        self.assertIn("/speedtest", await resp.text())

    async def test_index_plain_for_curl(self):
        resp = await self.client.get("/", headers={"User-Agent": "curl/8.5.0", "Accept": "*/*"})
        self.assertEqual(resp.content_type, "text/plain")
        self.assertIn("/ping", await resp.text())

    async def test_index_not_acceptable(self):
        resp = await self.client.get("/", headers={"Accept": "image/png"})
        self.assertEqual(resp.status, 406)

    # -- /speedtest ------------------------------------------------------------

    async def test_speedtest_prometheus(self):
        with mock.patch("web.app.run_speedtest", mock.AsyncMock(return_value=_speedtest_results())):
            resp = await self.client.get("/speedtest", headers={"Accept": PROMETHEUS_ACCEPT})
            self.assertEqual(resp.status, 200)
            self.assertEqual(resp.headers["Content-Type"], "text/plain; version=0.0.4; charset=utf-8")
            triples = parse_prometheus(await resp.text())

        self.assertIn(("speedtest_bytes_total", frozenset({("direction", "download")}), 6000.0), triples)
        self.assertIn(("speedtest_partial", frozenset({("direction", "upload")}), 1.0), triples)

    async def test_speedtest_json_matches_text(self):
        with mock.patch("web.app.run_speedtest", mock.AsyncMock(return_value=_speedtest_results())):
            text = await (await self.client.get("/speedtest")).text()
            resp = await self.client.get("/speedtest", headers={"Accept": "application/json"})
            self.assertEqual(resp.status, 200)
            self.assertEqual(resp.content_type, "application/json")
            body = await resp.text()

        self.assertEqual(parse_prometheus(text), parse_json(body))

    async def test_format_query_overrides_accept(self):
        with mock.patch("web.app.run_speedtest", mock.AsyncMock(return_value=_speedtest_results())):
            resp = await self.client.get("/speedtest?format=json", headers={"Accept": "text/plain"})
            self.assertEqual(resp.content_type, "application/json")
            json.loads(await resp.text())

            resp = await self.client.get("/speedtest?format=prometheus", headers={"Accept": "application/json"})
            self.assertEqual(resp.content_type, "text/plain")

    async def test_unsupported_format(self):
        run = mock.AsyncMock(return_value=_speedtest_results())
        with mock.patch("web.app.run_speedtest", run):
            resp = await self.client.get("/speedtest?format=xml")
            self.assertEqual(resp.status, 406)
            resp = await self.client.get("/speedtest", headers={"Accept": "image/png"})
            self.assertEqual(resp.status, 406)
        # Nothing is measured for a request that cannot be answered
        run.assert_not_awaited()

    async def test_speedtest_total_failure_is_500(self):
        results = [
            SpeedtestResult("download", error="ClientConnectorError: refused"),
            SpeedtestResult("upload", error="ClientConnectorError: refused"),
        ]
        with mock.patch("web.app.run_speedtest", mock.AsyncMock(return_value=results)):
            resp = await self.client.get("/speedtest")
            self.assertEqual(resp.status, 500)
            self.assertIn("download: ClientConnectorError: refused", await resp.text())

    async def test_speedtest_one_direction_failed_is_200(self):
        agg = aggregate([TransferSample(1000, 1.0)])
        results = [
            SpeedtestResult("download", agg),
            SpeedtestResult("upload", error="refused"),
        ]
        with mock.patch("web.app.run_speedtest", mock.AsyncMock(return_value=results)):
            resp = await self.client.get("/speedtest")
            self.assertEqual(resp.status, 200)
            triples = parse_prometheus(await resp.text())
        self.assertIn(
            ("speedtest_failure", frozenset({("direction", "upload"), ("error", "refused")}), 1.0),
            triples,
        )

    async def test_configuration_error_is_500(self):
        with mock.patch("web.app.run_speedtest", mock.AsyncMock(side_effect=ConfigError("bad budget"))):
            resp = await self.client.get("/speedtest")
            self.assertEqual(resp.status, 500)
            self.assertEqual(await resp.text(), "bad budget")

    # -- /ping -----------------------------------------------------------------

    async def test_ping(self):
        with mock.patch("web.app.run_ping", mock.AsyncMock(return_value=_ping_results())):
            resp = await self.client.get("/ping")
            self.assertEqual(resp.status, 200)
            triples = parse_prometheus(await resp.text())

        up = frozenset({("target", "10.0.0.1"), ("address", "10.0.0.1")})
        down = frozenset({("target", "10.0.0.2"), ("address", "10.0.0.2")})
        self.assertIn(("ping_rtt_seconds", up, 0.005), triples)
        self.assertIn(("ping_failure", down | {("reason", "timeout")}, 1.0), triples)
        self.assertNotIn("ping_rtt_seconds", {n for n, labels, _ in triples if labels >= down})

    async def test_ping_json(self):
        with mock.patch("web.app.run_ping", mock.AsyncMock(return_value=_ping_results())):
            resp = await self.client.get("/ping", headers={"Accept": "application/json"})
            data = json.loads(await resp.text())
        self.assertIn("ping_rtt_seconds", data)
        self.assertEqual(data["ping_rtt_seconds"][0]["labels"]["target"], "10.0.0.1")

    async def test_unknown_route(self):
        resp = await self.client.get("/metrics")
        self.assertEqual(resp.status, 404)


if __name__ == "__main__":
    unittest.main()
