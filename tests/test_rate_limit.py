"""
Sliding window rate limiter tests, driven by a fake clock.
"""

import unittest

from xraycryst.service.rate_limit import RateLimiter


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class TestRateLimiter(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.limiter = RateLimiter(2, window_seconds=60, clock=self.clock)

    def test_limit_per_key(self):
        self.assertTrue(self.limiter.allow("a"))
        self.assertTrue(self.limiter.allow("a"))
        result = self.limiter.check("a")
        self.assertFalse(result.allowed)
        self.assertEqual(result.retry_after, 60)
        self.assertTrue(self.limiter.allow("b"))

    def test_window_slides(self):
        self.limiter.check("a")
        self.clock.now = 30
        self.limiter.check("a")
        self.clock.now = 61
        self.assertTrue(self.limiter.allow("a"))
        self.assertFalse(self.limiter.allow("a"))

    def test_idle_keys_are_dropped(self):
        for i in range(5000):
            self.limiter.check(f"ip:10.0.{i // 256}.{i % 256}")
        self.assertEqual(self.limiter.tracked_keys(), 5000)

        self.clock.now = 10000
        self.limiter.check("wallet:0xabc")
        self.assertEqual(self.limiter.tracked_keys(), 1)

    def test_cleanup_keeps_active_keys(self):
        self.limiter.check("old")
        self.clock.now = 50
        self.limiter.check("recent")
        self.clock.now = 70
        self.assertEqual(self.limiter.cleanup_expired(), 1)
        self.assertEqual(self.limiter.tracked_keys(), 1)
        self.assertTrue(self.limiter.allow("recent"))

    def test_reset(self):
        self.limiter.check("a")
        self.limiter.check("a")
        self.limiter.reset("a")
        self.assertTrue(self.limiter.allow("a"))
        self.limiter.reset()
        self.assertEqual(self.limiter.tracked_keys(), 0)


if __name__ == "__main__":
    unittest.main()
