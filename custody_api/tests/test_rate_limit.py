# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for proposal rate limiting.
"""

import pytest
import redis
from datetime import timedelta
from unittest.mock import Mock

from custody_api.services.rate_limit import InMemoryRateLimiter, RedisRateLimiter
from custody_api.services.store import InfrastructureError
from custody_api.tests.conftest import PARENT_A, PARENT_B, T0

HOUR = timedelta(hours=1)


class TestInMemoryRateLimiter:
    """Test the process-local sliding window."""

    def test_counts_only_inside_window(self):
        limiter = InMemoryRateLimiter()
        limiter.record_proposal(PARENT_A, T0 - HOUR)
        limiter.record_proposal(PARENT_A, T0 - timedelta(minutes=30))
        limiter.record_proposal(PARENT_A, T0)
        limiter.record_proposal(PARENT_A, T0 + timedelta(minutes=1))

        assert limiter.count_recent_proposals(PARENT_A, HOUR, T0) == 2

    def test_counts_per_proposer(self):
        limiter = InMemoryRateLimiter()
        limiter.record_proposal(PARENT_A, T0)

        assert limiter.count_recent_proposals(PARENT_B, HOUR, T0) == 0

    def test_acquire_stops_at_limit(self):
        limiter = InMemoryRateLimiter()
        limiter.record_proposal(PARENT_A, T0 - timedelta(minutes=10))

        assert limiter.acquire(PARENT_A, HOUR, 2, T0) is not None
        assert limiter.acquire(PARENT_A, HOUR, 2, T0) is None
        assert limiter.count_recent_proposals(PARENT_A, HOUR, T0) == 2

    def test_release_frees_the_slot(self):
        limiter = InMemoryRateLimiter()
        token = limiter.acquire(PARENT_A, HOUR, 1, T0)

        limiter.release(PARENT_A, token)

        assert limiter.count_recent_proposals(PARENT_A, HOUR, T0) == 0
        assert limiter.acquire(PARENT_A, HOUR, 1, T0) is not None


class TestRedisRateLimiter:
    """Test the Redis sorted-set rate limiter with a mocked client."""

    @pytest.fixture
    def client(self):
        client = Mock()
        client.pipeline.return_value = Mock()
        return client

    def test_count_uses_exclusive_lower_bound(self, client):
        """Test the window query on the proposer's key."""
        client.zcount.return_value = 4
        limiter = RedisRateLimiter(client=client)

        assert limiter.count_recent_proposals(PARENT_A, HOUR, T0) == 4
        client.zcount.assert_called_once_with(
            "proposal_rate:parent-a",
            f"({(T0 - HOUR).timestamp()}",
            T0.timestamp()
        )

    def test_record_trims_and_expires(self, client):
        """Test recording adds an entry, trims old ones and refreshes the TTL."""
        pipe = client.pipeline.return_value
        limiter = RedisRateLimiter(client=client, retention=timedelta(hours=2))

        limiter.record_proposal(PARENT_A, T0)

        key = "proposal_rate:parent-a"
        member_score = pipe.zadd.call_args.args[1]
        assert list(member_score.values()) == [T0.timestamp()]
        pipe.zremrangebyscore.assert_called_once_with(key, "-inf", T0.timestamp() - 7200)
        pipe.expire.assert_called_once_with(key, 7200)
        pipe.execute.assert_called_once()

    def test_redis_errors_raise_infrastructure_error(self, client):
        client.zcount.side_effect = redis.ConnectionError("Connection refused")
        limiter = RedisRateLimiter(client=client)

        with pytest.raises(InfrastructureError) as exc_info:
            limiter.count_recent_proposals(PARENT_A, HOUR, T0)

        assert isinstance(exc_info.value.original, redis.ConnectionError)

    def test_record_errors_raise_infrastructure_error(self, client):
        client.pipeline.return_value.execute.side_effect = redis.TimeoutError("Timeout")
        limiter = RedisRateLimiter(client=client)

        with pytest.raises(InfrastructureError):
            limiter.record_proposal(PARENT_A, T0)

    def test_acquire_counts_inside_transaction(self, client):
        """Test the slot is added and counted in one MULTI block."""
        pipe = client.pipeline.return_value
        pipe.execute.return_value = [1, 0, 3, True]
        limiter = RedisRateLimiter(client=client)

        token = limiter.acquire(PARENT_A, HOUR, 10, T0)

        key = "proposal_rate:parent-a"
        client.pipeline.assert_called_once_with(transaction=True)
        pipe.zadd.assert_called_once_with(key, {token: T0.timestamp()})
        pipe.zcount.assert_called_once_with(key, f"({(T0 - HOUR).timestamp()}", T0.timestamp())
        client.zrem.assert_not_called()

    def test_acquire_over_limit_removes_entry(self, client):
        pipe = client.pipeline.return_value
        pipe.execute.return_value = [1, 0, 11, True]
        limiter = RedisRateLimiter(client=client)

        assert limiter.acquire(PARENT_A, HOUR, 10, T0) is None

        token = list(pipe.zadd.call_args.args[1])[0]
        client.zrem.assert_called_once_with("proposal_rate:parent-a", token)

    def test_acquire_errors_raise_infrastructure_error(self, client):
        client.pipeline.return_value.execute.side_effect = redis.ConnectionError("Connection refused")
        limiter = RedisRateLimiter(client=client)

        with pytest.raises(InfrastructureError):
            limiter.acquire(PARENT_A, HOUR, 10, T0)

    def test_release_removes_entry(self, client):
        RedisRateLimiter(client=client).release(PARENT_A, "slot-1")

        client.zrem.assert_called_once_with("proposal_rate:parent-a", "slot-1")
