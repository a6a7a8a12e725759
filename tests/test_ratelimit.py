"""Tests for request admission: memory and Upstash backends, client identity."""

import json
import threading

import httpx
import pytest

from content_gates.config import Settings
from content_gates.ratelimit import MemoryBackend, RateLimiter, UpstashBackend, client_key


def _memory(clock, **kwargs):
    kwargs.setdefault("eviction_probability", 0.0)
    return MemoryBackend(limit=10, window_s=60, clock=clock, **kwargs)


class FakeUpstash:
    """Just enough of the Upstash pipeline endpoint for INCR/PEXPIRE/PTTL/GET."""

    def __init__(self, clock):
        self.clock = clock
        self.counts = {}
        self.expires = {}
        self.requests = []

    def _expire(self, key):
        if key in self.expires and self.expires[key] <= self.clock() * 1000:
            self.counts.pop(key, None)
            self.expires.pop(key, None)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        replies = []
        for command in json.loads(request.content):
            name, key = command[0], command[1]
            self._expire(key)
            if name == "INCR":
                self.counts[key] = self.counts.get(key, 0) + 1
                replies.append({"result": self.counts[key]})
            elif name == "PEXPIRE":
                if key not in self.expires:
                    self.expires[key] = self.clock() * 1000 + int(command[2])
                    replies.append({"result": 1})
                else:
                    replies.append({"result": 0})
            elif name == "PTTL":
                if key not in self.expires:
                    replies.append({"result": -2})
                else:
                    replies.append({"result": int(self.expires[key] - self.clock() * 1000)})
            elif name == "GET":
                value = self.counts.get(key)
                replies.append({"result": None if value is None else str(value)})
        return httpx.Response(200, json=replies)


def _upstash(clock, handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return UpstashBackend(
        url="https://example.upstash.io/",
        token="tok",
        limit=10,
        window_s=60,
        client=client,
        clock=clock,
    )


class TestMemoryBackend:
    def test_admits_exactly_limit_then_denies(self, clock):
        limiter = RateLimiter(_memory(clock))
        decisions = [limiter.admit("1.2.3.4") for _ in range(11)]
        assert decisions == [True] * 10 + [False]

    def test_window_resets_after_expiry(self, clock):
        limiter = RateLimiter(_memory(clock))
        for _ in range(11):
            limiter.admit("k")
        clock.advance(60)
        assert limiter.admit("k") is True
        assert limiter.info("k").remaining == 9

    def test_keys_are_independent(self, clock):
        limiter = RateLimiter(_memory(clock))
        for _ in range(10):
            limiter.admit("a")
        assert limiter.admit("a") is False
        assert limiter.admit("b") is True

    def test_info_does_not_count(self, clock):
        limiter = RateLimiter(_memory(clock))
        limiter.admit("k")
        limiter.info("k")
        limiter.info("k")
        assert limiter.info("k").remaining == 9

    def test_retry_after_is_whole_seconds_until_reset(self, clock):
        limiter = RateLimiter(_memory(clock))
        limiter.admit("k")
        clock.advance(20.5)
        assert limiter.retry_after("k") == 40

    def test_same_key_never_over_admits_under_contention(self, clock):
        limiter = RateLimiter(_memory(clock))
        admitted = []
        barrier = threading.Barrier(40)

        def hit():
            barrier.wait()
            admitted.append(limiter.admit("shared"))

        threads = [threading.Thread(target=hit) for _ in range(40)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert admitted.count(True) == 10

    def test_eviction_drops_expired_then_oldest(self, clock):
        backend = _memory(clock, max_entries=3)
        backend.hit("expired")
        clock.advance(61)
        for key in ("k1", "k2", "k3", "k4"):
            backend.hit(key)
            clock.advance(1)

        backend.evict()

        assert len(backend) == 3
        assert backend.peek("k1").remaining == 10  # evicted, fresh window
        assert backend.peek("k4").remaining == 9

    def test_eviction_runs_opportunistically(self, clock):
        backend = _memory(clock, max_entries=1, eviction_probability=1.0)
        backend.hit("a")
        backend.hit("b")
        backend.hit("c")
        assert len(backend) <= 2


class TestUpstashBackend:
    def test_same_decisions_as_memory(self, clock):
        limiter = RateLimiter(_upstash(clock, FakeUpstash(clock)))
        decisions = [limiter.admit("1.2.3.4") for _ in range(11)]
        assert decisions == [True] * 10 + [False]

    def test_window_resets_after_expiry(self, clock):
        limiter = RateLimiter(_upstash(clock, FakeUpstash(clock)))
        for _ in range(11):
            limiter.admit("k")
        clock.advance(60)
        assert limiter.admit("k") is True

    def test_pipeline_request_shape(self, clock):
        fake = FakeUpstash(clock)
        RateLimiter(_upstash(clock, fake)).admit("k")

        request = fake.requests[0]
        assert request.url == httpx.URL("https://example.upstash.io/pipeline")
        assert request.headers["authorization"] == "Bearer tok"

    def test_reset_at_follows_store_ttl(self, clock):
        limiter = RateLimiter(_upstash(clock, FakeUpstash(clock)))
        limiter.admit("k")
        clock.advance(15)
        _, info = limiter.check("k")
        assert info.reset_at == pytest.approx(clock() + 45)
        assert info.remaining == 8

    def test_store_outage_fails_open(self, clock, caplog):
        limiter = RateLimiter(_upstash(clock, lambda request: httpx.Response(503)))
        assert all(limiter.admit("k") for _ in range(20))
        assert "rate limit store unavailable" in caplog.text

    def test_error_reply_fails_open(self, clock):
        handler = lambda request: httpx.Response(200, json=[{"error": "WRONGTYPE"}] * 3)  # noqa: E731
        assert RateLimiter(_upstash(clock, handler)).admit("k") is True


class TestFromSettings:
    def test_memory_without_credentials(self):
        limiter = RateLimiter.from_settings(Settings(rate_limit_max=3))
        assert isinstance(limiter.backend, MemoryBackend)
        assert limiter.backend.limit == 3

    def test_upstash_with_credentials(self):
        settings = Settings(upstash_redis_rest_url="https://x.upstash.io", upstash_redis_rest_token="t")
        assert isinstance(RateLimiter.from_settings(settings).backend, UpstashBackend)


class TestClientKey:
    def test_first_forwarded_entry_wins(self):
        headers = {"x-forwarded-for": " 9.9.9.9 , 10.0.0.1", "x-real-ip": "8.8.8.8"}
        assert client_key(headers, "127.0.0.1") == "9.9.9.9"

    def test_real_ip_next(self):
        assert client_key({"x-real-ip": "8.8.8.8"}, "127.0.0.1") == "8.8.8.8"

    def test_connection_address_next(self):
        assert client_key({}, "127.0.0.1") == "127.0.0.1"

    def test_unknown_last(self):
        assert client_key({"x-forwarded-for": ""}) == "unknown"


class TestClose:
    def test_owned_client_is_closed(self, clock):
        backend = UpstashBackend(url="https://example.upstash.io", token="tok", clock=clock)
        backend.close()
        assert backend._client.is_closed

    def test_injected_client_is_left_open(self, clock):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[])))
        UpstashBackend(url="https://example.upstash.io", token="tok", client=client, clock=clock).close()
        assert not client.is_closed
        client.close()

    def test_limiter_closes_its_backend(self):
        settings = Settings(upstash_redis_rest_url="https://x.upstash.io", upstash_redis_rest_token="t")
        limiter = RateLimiter.from_settings(settings)
        limiter.close()
        assert limiter.backend._client.is_closed

    def test_memory_backend_close_is_harmless(self, clock):
        limiter = RateLimiter(_memory(clock))
        limiter.close()
        assert limiter.admit("k") is True
