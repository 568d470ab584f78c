# SPDX-License-Identifier: Apache-2.0

"""
Per-proposer rate limiting for proposal creation.

The Redis implementation keeps one sorted set per proposer, scored by
creation time, and counts the members inside the sliding window.
"""

import logging
import os
import threading
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import redis
from opentelemetry import trace

from ..models.base import generate_object_id, utc_now
from .store import InfrastructureError

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

KEY_PREFIX = "proposal_rate"


class RateLimiter:
    """Counts recent proposals per proposer."""

    def count_recent_proposals(self, proposer_id: str, window: timedelta, now: Optional[datetime] = None) -> int:
        raise NotImplementedError

    def record_proposal(self, proposer_id: str, at: datetime) -> None:
        raise NotImplementedError

    def acquire(self, proposer_id: str, window: timedelta, limit: int, at: datetime) -> Optional[str]:
        """
        Record a proposal only if the proposer is under the limit.

        The check and the write are atomic. Returns a token that release()
        takes back, or None when the limit is reached.
        """
        raise NotImplementedError

    def release(self, proposer_id: str, token: str) -> None:
        """Undo an acquire() whose proposal was never stored."""
        raise NotImplementedError


class InMemoryRateLimiter(RateLimiter):
    """Process-local rate limiter for tests and single-process runs."""

    def __init__(self):
        self._lock = threading.Lock()
        self._events: Dict[str, List[Tuple[str, datetime]]] = defaultdict(list)

    def count_recent_proposals(self, proposer_id: str, window: timedelta, now: Optional[datetime] = None) -> int:
        now = now or utc_now()
        with self._lock:
            return self._count(proposer_id, now - window, now)

    def _count(self, proposer_id: str, since: datetime, now: datetime) -> int:
        return sum(1 for _, at in self._events[proposer_id] if since < at <= now)

    def record_proposal(self, proposer_id: str, at: datetime) -> None:
        with self._lock:
            self._events[proposer_id].append((generate_object_id(), at))

    def acquire(self, proposer_id: str, window: timedelta, limit: int, at: datetime) -> Optional[str]:
        with self._lock:
            if self._count(proposer_id, at - window, at) >= limit:
                return None
            token = generate_object_id()
            self._events[proposer_id].append((token, at))
            return token

    def release(self, proposer_id: str, token: str) -> None:
        with self._lock:
            self._events[proposer_id] = [event for event in self._events[proposer_id] if event[0] != token]


class RedisRateLimiter(RateLimiter):
    """
    Sliding-window rate limiter on Redis sorted sets.

    Entries older than the retention period are trimmed on every write, and
    the key expires on its own once a proposer goes quiet.
    """

    def __init__(self, client=None, redis_url: Optional[str] = None, retention: timedelta = timedelta(hours=1)):
        """
        Initialize the rate limiter.

        Args:
            client: Existing redis-py client (tests pass a mock)
            redis_url: Redis connection URL (redis://host:port), used when no client is given
            retention: How long entries are kept; at least the longest window queried
        """
        if client is None:
            redis_url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379")
            client = redis.from_url(redis_url, decode_responses=True)
            logger.info(f"Redis rate limiter initialized at {redis_url}")
        self.client = client
        self.retention = retention

    @staticmethod
    def _key(proposer_id: str) -> str:
        return f"{KEY_PREFIX}:{proposer_id}"

    def count_recent_proposals(self, proposer_id: str, window: timedelta, now: Optional[datetime] = None) -> int:
        now = now or utc_now()
        key = self._key(proposer_id)

        with tracer.start_as_current_span("redis.rate_limit.count") as span:
            span.set_attributes({
                "redis.key": key,
                "rate_limit.window_seconds": int(window.total_seconds())
            })

            try:
                # Exclusive lower bound: an entry exactly one window old has aged out
                count = self.client.zcount(key, f"({(now - window).timestamp()}", now.timestamp())
            except redis.RedisError as e:
                span.set_attribute("redis.result", "error")
                logger.error(f"Redis rate limit count failed for key {key}: {str(e)}")
                raise InfrastructureError(f"Rate limit lookup failed for {proposer_id}", e) from e

            span.set_attribute("rate_limit.count", int(count))
            return int(count)

    def record_proposal(self, proposer_id: str, at: datetime) -> None:
        key = self._key(proposer_id)
        score = at.timestamp()

        with tracer.start_as_current_span("redis.rate_limit.record") as span:
            span.set_attribute("redis.key", key)

            try:
                pipe = self.client.pipeline()
                pipe.zadd(key, {generate_object_id(): score})
                pipe.zremrangebyscore(key, "-inf", score - self.retention.total_seconds())
                pipe.expire(key, int(self.retention.total_seconds()))
                pipe.execute()
            except redis.RedisError as e:
                span.set_attribute("redis.result", "error")
                logger.error(f"Redis rate limit record failed for key {key}: {str(e)}")
                raise InfrastructureError(f"Rate limit update failed for {proposer_id}", e) from e

            span.set_attribute("redis.result", "success")

    def acquire(self, proposer_id: str, window: timedelta, limit: int, at: datetime) -> Optional[str]:
        key = self._key(proposer_id)
        score = at.timestamp()
        token = generate_object_id()

        with tracer.start_as_current_span("redis.rate_limit.acquire") as span:
            span.set_attributes({
                "redis.key": key,
                "rate_limit.limit": limit
            })

            try:
                # Add first and count inside one MULTI so concurrent callers see each other
                pipe = self.client.pipeline(transaction=True)
                pipe.zadd(key, {token: score})
                pipe.zremrangebyscore(key, "-inf", score - self.retention.total_seconds())
                pipe.zcount(key, f"({(at - window).timestamp()}", score)
                pipe.expire(key, int(self.retention.total_seconds()))
                _, _, count, _ = pipe.execute()

                span.set_attribute("rate_limit.count", int(count))
                if int(count) > limit:
                    self.client.zrem(key, token)
                    span.set_attribute("redis.result", "limited")
                    return None
            except redis.RedisError as e:
                span.set_attribute("redis.result", "error")
                logger.error(f"Redis rate limit acquire failed for key {key}: {str(e)}")
                raise InfrastructureError(f"Rate limit update failed for {proposer_id}", e) from e

            span.set_attribute("redis.result", "success")
            return token

    def release(self, proposer_id: str, token: str) -> None:
        key = self._key(proposer_id)
        try:
            self.client.zrem(key, token)
        except redis.RedisError as e:
            logger.error(f"Redis rate limit release failed for key {key}: {str(e)}")
            raise InfrastructureError(f"Rate limit release failed for {proposer_id}", e) from e
