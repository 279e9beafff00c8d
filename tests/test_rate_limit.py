"""
Tests for the auth rate limiter.

Covers:
- In-memory sliding window with injected time
- Pruning of idle keys and thread safety
- Composite keys (purpose, origin, identity)
- Redis backend and fallback on Redis errors
"""
import threading
from unittest.mock import MagicMock

import pytest
import redis

from branchgate.auth.rate_limit import RateLimiter, DEFAULT_LIMITS, PRUNE_INTERVAL


class FakeTime:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now


@pytest.fixture
def fake_time():
    return FakeTime()


class TestMemoryBackend:
    """Test the in-memory sliding window."""

    def test_login_allows_five_then_blocks(self, fake_time):
        limiter = RateLimiter(time_source=fake_time)
        decisions = [limiter.hit("login", "10.0.0.1", "branch@client.com") for _ in range(6)]

        assert [d.allowed for d in decisions] == [True] * 5 + [False]
        assert decisions[-1].retry_after == 900

    def test_window_slides(self, fake_time):
        limiter = RateLimiter(limits={"login": (2, 60)}, time_source=fake_time)
        limiter.hit("login", "10.0.0.1", "a@client.com")
        fake_time.now += 30
        limiter.hit("login", "10.0.0.1", "a@client.com")

        blocked = limiter.hit("login", "10.0.0.1", "a@client.com")
        assert blocked.allowed is False
        assert blocked.retry_after == 30

        fake_time.now += 30
        assert limiter.hit("login", "10.0.0.1", "a@client.com").allowed is True

    def test_keys_are_composite(self, fake_time):
        limiter = RateLimiter(limits={"login": (1, 60)}, time_source=fake_time)
        assert limiter.hit("login", "10.0.0.1", "a@client.com").allowed
        assert not limiter.hit("login", "10.0.0.1", "A@client.com ").allowed

        assert limiter.hit("login", "10.0.0.2", "a@client.com").allowed
        assert limiter.hit("login", "10.0.0.1", "b@client.com").allowed
        assert limiter.hit("password-reset", "10.0.0.1", "a@client.com").allowed

    def test_reset_clears_key(self, fake_time):
        limiter = RateLimiter(limits={"login": (1, 60)}, time_source=fake_time)
        limiter.hit("login", "10.0.0.1", "a@client.com")
        limiter.reset("login", "10.0.0.1", "a@client.com")
        assert limiter.hit("login", "10.0.0.1", "a@client.com").allowed

    def test_unknown_purpose(self):
        with pytest.raises(ValueError):
            RateLimiter().hit("nope", "10.0.0.1", "a@client.com")

    def test_disabled_by_environment(self, fake_time, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
        limiter = RateLimiter(limits={"login": (1, 60)}, time_source=fake_time)
        assert all(limiter.hit("login", "10.0.0.1", "a@client.com").allowed for _ in range(5))

    def test_default_limits(self):
        assert DEFAULT_LIMITS["login"] == (5, 900)
        assert DEFAULT_LIMITS["password-reset"][0] == 3

    def test_idle_keys_are_pruned(self, fake_time):
        limiter = RateLimiter(limits={"login": (5, 60)}, time_source=fake_time)
        for n in range(200):
            limiter.hit("login", "10.0.0.1", f"branch{n}@client.com")
        assert len(limiter._memory_store) == 200

        fake_time.now += PRUNE_INTERVAL + 1
        limiter.hit("login", "10.0.0.1", "late@client.com")

        assert list(limiter._memory_store) == ["login:10.0.0.1:late@client.com"]

    def test_prune_keeps_keys_inside_their_window(self, fake_time):
        limiter = RateLimiter(limits={"login": (5, 60)}, time_source=fake_time)
        limiter.hit("password-reset", "10.0.0.1", "a@client.com")
        limiter.hit("login", "10.0.0.1", "a@client.com")

        fake_time.now += PRUNE_INTERVAL + 1
        limiter.hit("login", "10.0.0.2", "b@client.com")

        # password-reset keeps its hour-long window
        assert "password-reset:10.0.0.1:a@client.com" in limiter._memory_store
        assert "login:10.0.0.1:a@client.com" not in limiter._memory_store

    def test_concurrent_hits_are_not_lost(self):
        limiter = RateLimiter(limits={"login": (5, 900)})
        barrier = threading.Barrier(20)
        results = []

        def attempt():
            barrier.wait()
            results.append(limiter.hit("login", "10.0.0.1", "a@client.com").allowed)

        threads = [threading.Thread(target=attempt) for _ in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 5
        assert len(limiter._memory_store["login:10.0.0.1:a@client.com"]) == 5


class TestRedisBackend:
    """Test the Redis backend."""

    def test_counts_in_redis_with_ttl(self, mock_redis_client):
        limiter = RateLimiter(redis_client=mock_redis_client, limits={"login": (2, 900)})

        first = limiter.hit("login", "10.0.0.1", "a@client.com")
        second = limiter.hit("login", "10.0.0.1", "a@client.com")
        third = limiter.hit("login", "10.0.0.1", "a@client.com")

        key = "branchgate:auth_ratelimit:login:10.0.0.1:a@client.com"
        assert mock_redis_client.store[key] == 2
        assert mock_redis_client.expiry[key] == 900
        assert (first.allowed, second.allowed, third.allowed) == (True, True, False)
        assert third.retry_after == 900

    def test_reset_deletes_redis_key(self, mock_redis_client):
        limiter = RateLimiter(redis_client=mock_redis_client, limits={"login": (1, 900)})
        limiter.hit("login", "10.0.0.1", "a@client.com")
        limiter.reset("login", "10.0.0.1", "a@client.com")
        assert mock_redis_client.store == {}

    def test_falls_back_to_memory_on_redis_error(self, fake_time):
        broken = MagicMock()
        broken.get.side_effect = redis.ConnectionError("down")
        limiter = RateLimiter(redis_client=broken, limits={"login": (1, 60)}, time_source=fake_time)

        assert limiter.hit("login", "10.0.0.1", "a@client.com").allowed is True
        assert limiter.hit("login", "10.0.0.1", "a@client.com").allowed is False
