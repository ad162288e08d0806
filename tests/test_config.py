"""Tests for measure.config -- loading, durations and validation."""

import json
import os
import tempfile
import unittest

from measure.chunking import AdaptiveChunkPolicy, FixedChunkPolicy
from measure.config import (
    Config,
    default_config_dict,
    format_duration,
    load_config,
    parse_duration,
)
from measure.errors import ConfigError


class TestParseDuration(unittest.TestCase):
    def test_suffixes(self):
        self.assertAlmostEqual(parse_duration("250ms"), 0.25)
        self.assertAlmostEqual(parse_duration("30s"), 30.0)
        self.assertAlmostEqual(parse_duration("2m"), 120.0)
        self.assertAlmostEqual(parse_duration("1h"), 3600.0)
        self.assertAlmostEqual(parse_duration("1.5s"), 1.5)
        self.assertAlmostEqual(parse_duration("10"), 10.0)

    def test_numbers(self):
        self.assertEqual(parse_duration(3), 3.0)
        self.assertEqual(parse_duration(0.2), 0.2)

    def test_invalid(self):
        for value in ("", "fast", "10 parsecs", "-1s", -1, True):
            with self.subTest(value=value):
                with self.assertRaises(ConfigError):
                    parse_duration(value)

    def test_format(self):
        self.assertEqual(format_duration(0.2), "200ms")
        self.assertEqual(format_duration(10.0), "10s")
        self.assertEqual(format_duration(0), "0s")


class TestDefaults(unittest.TestCase):
    def test_defaults_valid(self):
        cfg = load_config()
        self.assertEqual(cfg.server.address, "0.0.0.0")
        self.assertEqual(cfg.server.port, 9090)
        self.assertEqual(cfg.ping.targets, ["8.8.8.8", "9.9.9.9", "1.1.1.1", "google.com"])
        self.assertEqual(cfg.speedtest.directions, ["download", "upload"])
        self.assertEqual(cfg.logging.level, "INFO")

    def test_default_dict_is_json(self):
        d = default_config_dict()
        self.assertEqual(set(d), {"server", "ping", "speedtest", "logging"})
        self.assertEqual(d["ping"]["timeout"], "2s")
        self.assertEqual(d["ping"]["delay"], "200ms")
        json.dumps(d)

    def test_dump_reloads(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "config.json")
            with open(path, "w", encoding="utf-8") as fh:
                json.dump(default_config_dict(), fh)
            cfg = load_config(path)
        self.assertAlmostEqual(cfg.ping.delay, 0.2)
        self.assertAlmostEqual(cfg.speedtest.target_chunk_duration, 0.1)
        self.assertEqual(cfg.ping.targets, Config().ping.targets)


class TestLoadConfig(unittest.TestCase):
    def _write(self, tmpdir, name, text):
        path = os.path.join(tmpdir, name)
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(text)
        return path

    def test_toml(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = self._write(tmpdir, "exporter.toml", """
[server]
port = 9100

[ping]
targets = ["10.0.0.1", "example.org:80"]
timeout = "500ms"
samples = 5
quantiles = [0.9, 0.5]

[speedtest]
directions = ["download"]
download_duration = "5s"
chunk_size = 65536
""")
            cfg = load_config(path)
        self.assertEqual(cfg.server.port, 9100)
        self.assertEqual(cfg.server.address, "0.0.0.0")
        self.assertEqual(cfg.ping.targets, ["10.0.0.1", "example.org:80"])
        self.assertAlmostEqual(cfg.ping.timeout, 0.5)
        self.assertEqual(cfg.ping.samples, 5)
        self.assertEqual(cfg.ping.quantiles, [0.5, 0.9])
        self.assertEqual(cfg.speedtest.directions, ["download"])
        self.assertEqual(cfg.speedtest.download_duration, 5.0)
        self.assertIsInstance(cfg.speedtest.chunk_policy(), FixedChunkPolicy)

    def test_json(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = self._write(tmpdir, "exporter.json", json.dumps({
                "logging": {"level": "debug"},
                "speedtest": {"upload_bytes": 1000000, "upload_duration": 0},
            }))
            cfg = load_config(path)
        self.assertEqual(cfg.logging.level, "DEBUG")
        budget = cfg.speedtest.budget("upload")
        self.assertIsNone(budget.duration)
        self.assertEqual(budget.max_bytes, 1_000_000)
        self.assertIsInstance(cfg.speedtest.chunk_policy(), AdaptiveChunkPolicy)

    def test_missing_file(self):
        with self.assertRaises(ConfigError):
            load_config("/nonexistent/exporter.toml")

    def test_corrupt_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = self._write(tmpdir, "exporter.toml", "this is [not toml")
            with self.assertRaises(ConfigError):
                load_config(path)
            path = self._write(tmpdir, "exporter.json", "NOT JSON")
            with self.assertRaises(ConfigError):
                load_config(path)

    def test_unknown_keys(self):
        for data in ({"metrics": {}}, {"ping": {"count": 3}}, {"server": []}):
            with self.subTest(data=data):
                with self.assertRaises(ConfigError):
                    Config.from_dict(data)

    def test_wrong_types(self):
        for data in (
            {"server": {"port": "9090"}},
            {"ping": {"targets": "8.8.8.8"}},
            {"ping": {"samples": True}},
            {"ping": {"quantiles": ["0.5"]}},
        ):
            with self.subTest(data=data):
                with self.assertRaises(ConfigError):
                    Config.from_dict(data)


class TestValidate(unittest.TestCase):
    def _invalid(self, data):
        with self.assertRaises(ConfigError):
            Config.from_dict(data).validate()

    def test_server(self):
        self._invalid({"server": {"address": "not-an-ip"}})
        self._invalid({"server": {"port": 0}})
        self._invalid({"server": {"port": 70000}})

    def test_ping(self):
        self._invalid({"ping": {"targets": ["bad target"]}})
        self._invalid({"ping": {"targets": ["1.1.1.1", "1.1.1.1"]}})
        self._invalid({"ping": {"targets": ["127.0.0.1:9", "bad..example.com"]}})
        self._invalid({"ping": {"timeout": 0}})
        self._invalid({"ping": {"samples": 0}})
        self._invalid({"ping": {"quantiles": [1.5]}})

    def test_speedtest(self):
        self._invalid({"speedtest": {"directions": []}})
        self._invalid({"speedtest": {"directions": ["sideways"]}})
        self._invalid({"speedtest": {"directions": ["upload", "upload"]}})
        self._invalid({"speedtest": {"download_url": "ftp://example.org/file"}})
        self._invalid({"speedtest": {"download_duration": 0}})
        self._invalid({"speedtest": {"download_duration": "1h"}})
        self._invalid({"speedtest": {"chunk_size": -1}})
        self._invalid({"speedtest": {"chunk_timeout": 0}})
        self._invalid({"speedtest": {"min_chunk_size": 0}})
        self._invalid({"speedtest": {"quantiles": [-0.1]}})

    def test_unused_direction_not_checked(self):
        cfg = Config.from_dict({
            "speedtest": {"directions": ["download"], "upload_url": "ftp://x/"},
        }).validate()
        self.assertEqual(cfg.speedtest.directions, ["download"])

    def test_logging(self):
        self._invalid({"logging": {"level": "LOUD"}})


if __name__ == "__main__":
    unittest.main()
