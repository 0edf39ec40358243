from __future__ import annotations

import pytest

from radar.ratelimit import RateLimiter, client_key


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def clock():
    return FakeClock()


class TestRateLimiter:
    def test_limit_within_window(self, clock):
        limiter = RateLimiter(window_seconds=10, max_requests=3, clock=clock)
        assert [limiter.check("1.2.3.4") for _ in range(4)] == [True, True, True, False]

    def test_window_resets(self, clock):
        limiter = RateLimiter(window_seconds=10, max_requests=1, clock=clock)
        assert limiter.check("a")
        assert not limiter.check("a")
        clock.now += 10
        assert limiter.check("a")

    def test_keys_are_independent(self, clock):
        limiter = RateLimiter(window_seconds=10, max_requests=1, clock=clock)
        assert limiter.check("a")
        assert limiter.check("b")
        assert not limiter.check("a")

    def test_prune_drops_expired(self, clock):
        limiter = RateLimiter(window_seconds=10, max_requests=5, clock=clock)
        limiter.check("old")
        clock.now += 6
        limiter.check("new")
        clock.now += 5
        assert limiter.prune() == 1
        assert len(limiter) == 1

    def test_distinct_keys_stay_bounded(self, clock):
        limiter = RateLimiter(window_seconds=10, max_requests=5, clock=clock)
        per_tick = 20
        sizes = []
        for tick in range(100):
            for i in range(per_tick):
                assert limiter.check(f"10.0.{tick}.{i}")
            sizes.append(len(limiter))
            clock.now += 1
        assert max(sizes) <= 2 * 10 * per_tick + per_tick
        assert len(limiter) < 100 * per_tick

    def test_reset(self, clock):
        limiter = RateLimiter(window_seconds=10, max_requests=1, clock=clock)
        limiter.check("a")
        limiter.reset()
        assert len(limiter) == 0
        assert limiter.check("a")

    def test_env_defaults(self, monkeypatch):
        monkeypatch.setenv("RADAR_RATE_LIMIT_WINDOW", "30")
        monkeypatch.setenv("RADAR_RATE_LIMIT_MAX", "7")
        limiter = RateLimiter()
        assert limiter.window_seconds == 30.0
        assert limiter.max_requests == 7

    def test_builtin_defaults(self, monkeypatch):
        monkeypatch.delenv("RADAR_RATE_LIMIT_WINDOW", raising=False)
        monkeypatch.delenv("RADAR_RATE_LIMIT_MAX", raising=False)
        limiter = RateLimiter()
        assert (limiter.window_seconds, limiter.max_requests) == (10.0, 20)


class TestClientKey:
    def test_first_forwarded_hop(self):
        assert client_key("10.0.0.1, 172.16.0.1", "192.168.0.1", "127.0.0.1") == "10.0.0.1"

    def test_real_ip_fallback(self):
        assert client_key(None, "192.168.0.1", "127.0.0.1") == "192.168.0.1"
        assert client_key(" , 1.1.1.1", "192.168.0.1") == "192.168.0.1"

    def test_peer_then_unknown(self):
        assert client_key(None, None, "127.0.0.1") == "127.0.0.1"
        assert client_key(None, None) == "unknown"
