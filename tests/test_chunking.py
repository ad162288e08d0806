"""Unit tests for measure.chunking -- chunk-size policies."""

import unittest

from measure.chunking import AdaptiveChunkPolicy, FixedChunkPolicy
from measure.errors import ConfigError


class TestFixedChunkPolicy(unittest.TestCase):
    def test_constant_size(self):
        p = FixedChunkPolicy(1000)
        self.assertEqual(p.next_size(0.0, 0), 1000)
        p.observe(1000, 10.0)
        self.assertEqual(p.next_size(1.0, 1000), 1000)

    def test_clamped_to_budget(self):
        p = FixedChunkPolicy(1000, max_bytes=2500)
        self.assertEqual(p.next_size(0.0, 2000), 500)
        self.assertEqual(p.next_size(0.0, 2500), 0)
        self.assertEqual(p.next_size(0.0, 3000), 0)

    def test_invalid_size(self):
        with self.assertRaises(ConfigError):
            FixedChunkPolicy(0)


class TestAdaptiveChunkPolicy(unittest.TestCase):
    def _policy(self, **kwargs):
        defaults = dict(initial=1024, minimum=256, maximum=8192, target_duration=0.1)
        defaults.update(kwargs)
        return AdaptiveChunkPolicy(**defaults)

    def test_grows_on_fast_chunks(self):
        p = self._policy()
        p.observe(1024, 0.01)
        self.assertEqual(p.size, 2048)
        p.observe(2048, 0.01)
        self.assertEqual(p.size, 4096)

    def test_shrinks_on_slow_chunks(self):
        p = self._policy()
        p.observe(1024, 0.5)
        self.assertEqual(p.size, 512)

    def test_steady_inside_band(self):
        p = self._policy()
        p.observe(1024, 0.1)
        self.assertEqual(p.size, 1024)

    def test_bounds(self):
        p = self._policy(initial=8192)
        p.observe(8192, 0.001)
        self.assertEqual(p.size, 8192)
        p = self._policy(initial=256)
        p.observe(256, 10.0)
        self.assertEqual(p.size, 256)

    def test_initial_clamped(self):
        self.assertEqual(self._policy(initial=1).size, 256)
        self.assertEqual(self._policy(initial=1 << 30).size, 8192)

    def test_short_chunk_ignored(self):
        p = self._policy()
        p.observe(100, 0.001)
        self.assertEqual(p.size, 1024)

    def test_budget(self):
        p = self._policy(max_bytes=1500)
        self.assertEqual(p.next_size(0.0, 1000), 500)

    def test_invalid_bounds(self):
        with self.assertRaises(ConfigError):
            self._policy(minimum=0)
        with self.assertRaises(ConfigError):
            self._policy(minimum=4096, maximum=1024)
        with self.assertRaises(ConfigError):
            self._policy(target_duration=0)


if __name__ == "__main__":
    unittest.main()
