"""Tests for the fixed-window rate limiter."""
import logging

import fakeredis
import pytest
import redis

from clipforge.services.rate_limit import RateLimiter, bucket_options


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def set(self, key, value, px=None, nx=False):
        self.ops.append(("set", key, value, px, nx))

    def incr(self, key):
        self.ops.append(("incr", key))

    def pexpire(self, key, ms, nx=False):
        self.ops.append(("pexpire", key, ms, nx))

    def pttl(self, key):
        self.ops.append(("pttl", key))

    def execute(self):
        self.client.round_trips += 1
        return [self.client.apply(op) for op in self.ops]


class FakeRedis:
    """SET PX NX / INCR / PTTL on a fake clock, with Redis 6 command rules (no PEXPIRE NX)."""

    def __init__(self, clock):
        self.clock = clock
        self.values = {}
        self.expires = {}
        self.round_trips = 0

    def _now_ms(self):
        return int(self.clock() * 1000)

    def _expire_due(self, key):
        if key in self.expires and self.expires[key] <= self._now_ms():
            self.values.pop(key, None)
            self.expires.pop(key, None)

    def apply(self, op):
        name, key = op[0], op[1]
        self._expire_due(key)
        if name == "set":
            _, _, value, px, nx = op
            if nx and key in self.values:
                return None
            self.values[key] = int(value)
            self.expires.pop(key, None)
            if px is not None:
                self.expires[key] = self._now_ms() + px
            return True
        if name == "incr":
            self.values[key] = self.values.get(key, 0) + 1
            return self.values[key]
        if name == "pexpire":
            if op[3]:
                raise redis.ResponseError("wrong number of arguments for 'pexpire' command")
            self.expires[key] = self._now_ms() + op[2]
            return True
        if key not in self.values:
            return -2
        if key not in self.expires:
            return -1
        return self.expires[key] - self._now_ms()

    def pipeline(self, transaction=True):
        return FakePipeline(self)


class BrokenRedis:
    def pipeline(self, transaction=True):
        raise redis.ConnectionError("connection refused")


@pytest.fixture(autouse=True)
def reset_fallback_flag(monkeypatch):
    monkeypatch.setattr(RateLimiter, "_fallback_logged", False)


def _run_window_scenario(limiter, clock):
    key = limiter.key_for("jobs-create", "10.0.0.1")
    results = [limiter.check(key, 5, 1000) for _ in range(6)]

    assert [r.ok for r in results] == [True] * 5 + [False]
    assert [r.remaining for r in results] == [4, 3, 2, 1, 0, 0]
    assert all(r.limit == 5 for r in results)

    clock.now = results[-1].reset_at / 1000 + 0.001
    fresh = limiter.check(key, 5, 1000)
    assert fresh.ok
    assert fresh.remaining == 4
    assert fresh.reset_at > results[0].reset_at


class TestInMemory:
    def test_window_reject_reset(self):
        clock = FakeClock()
        _run_window_scenario(RateLimiter(clock=clock), clock)

    def test_keys_are_independent(self):
        limiter = RateLimiter(clock=FakeClock())
        for _ in range(3):
            limiter.check("a", 3, 1000)
        assert not limiter.check("a", 3, 1000).ok
        assert limiter.check("b", 3, 1000).ok

    def test_reset_at_is_window_end(self):
        clock = FakeClock(now=50.0)
        result = RateLimiter(clock=clock).check("k", 5, 2000)
        assert result.reset_at == 52_000

    def test_expired_buckets_pruned(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        limiter.check("a", 3, 1000)
        limiter.check("b", 3, 5000)
        clock.advance(2)
        limiter.check("c", 3, 1000)
        assert sorted(limiter._buckets) == ["b", "c"]


class TestRedis:
    def test_window_reject_reset(self):
        clock = FakeClock()
        _run_window_scenario(RateLimiter(FakeRedis(clock), clock=clock), clock)

    def test_single_round_trip_per_check(self):
        clock = FakeClock()
        client = FakeRedis(clock)
        limiter = RateLimiter(client, clock=clock)
        limiter.check("k", 5, 1000)
        limiter.check("k", 5, 1000)
        assert client.round_trips == 2

    def test_expiry_only_set_on_first_hit(self):
        clock = FakeClock()
        client = FakeRedis(clock)
        limiter = RateLimiter(client, clock=clock)
        first = limiter.check("k", 5, 1000)
        clock.advance(0.5)
        second = limiter.check("k", 5, 1000)
        assert second.reset_at == first.reset_at

    def test_shared_budget_on_redis6_commands(self):
        clock = FakeClock()
        client = FakeRedis(clock)
        first = RateLimiter(client, clock=clock)
        second = RateLimiter(client, clock=clock)

        results = [limiter.check("k", 5, 1000).ok for _ in range(5) for limiter in (first, second)]

        assert results == [True] * 5 + [False] * 5
        assert RateLimiter._fallback_logged is False

    def test_fakeredis_server_v6(self):
        server = fakeredis.FakeServer(version=(6,))
        first = RateLimiter(fakeredis.FakeRedis(server=server))
        second = RateLimiter(fakeredis.FakeRedis(server=server))

        results = [limiter.check("shared", 5, 60_000) for _ in range(5) for limiter in (first, second)]

        assert [r.ok for r in results] == [True] * 5 + [False] * 5
        assert [r.remaining for r in results[:5]] == [4, 3, 2, 1, 0]
        assert RateLimiter._fallback_logged is False


class TestFallback:
    def test_redis_error_falls_back(self):
        clock = FakeClock()
        limiter = RateLimiter(BrokenRedis(), clock=clock)
        _run_window_scenario(limiter, clock)

    def test_warning_logged_once_per_process(self, caplog):
        caplog.set_level(logging.WARNING, logger="clipforge.services.rate_limit")
        first = RateLimiter(BrokenRedis(), clock=FakeClock())
        second = RateLimiter(BrokenRedis(), clock=FakeClock())
        for _ in range(3):
            first.check("k", 5, 1000)
            second.check("k", 5, 1000)

        warnings = [r for r in caplog.records if "in-memory" in r.getMessage()]
        assert len(warnings) == 1


class TestHelpers:
    def test_key_for(self):
        limiter = RateLimiter(prefix="clipforge:rl")
        assert limiter.key_for("jobs-create", "1.2.3.4") == "clipforge:rl:jobs-create:1.2.3.4"
        assert limiter.key_for("jobs-create", "") == "clipforge:rl:jobs-create:anonymous"

    def test_bucket_defaults(self):
        opts = bucket_options("clips")
        assert (opts.max_requests, opts.window_ms) == (30, 60_000)
        assert bucket_options("jobs-create", max_requests=20).max_requests == 20

    def test_check_bucket(self):
        limiter = RateLimiter(clock=FakeClock())
        result = limiter.check_bucket(bucket_options("jobs-create", max_requests=2), "client")
        assert result.remaining == 1


class TestCliAdmission:
    def test_rejects_after_bucket_exhausted(self, capsys):
        from clipforge.cli import admit

        limiter = RateLimiter(clock=FakeClock())
        assert all(admit(limiter, "clip", "alice") for _ in range(20))
        assert admit(limiter, "clip", "alice") is False
        assert "rate limit exceeded for alice" in capsys.readouterr().err
        # separate bucket per command and per client
        assert admit(limiter, "run-job", "alice")
        assert admit(limiter, "clip", "bob")

    def test_no_limiter_admits(self):
        from clipforge.cli import admit

        assert admit(None, "run-job", "cli")
