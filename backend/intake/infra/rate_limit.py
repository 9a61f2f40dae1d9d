"""Redis-backed sliding-window store for the feedback rate limiter."""

from __future__ import annotations

import logging

import redis.asyncio as redis
import ulid
from redis.exceptions import WatchError

from intake.feedback.domain.exceptions import ConsistencyError
from intake.infra.redis import RedisProxy

logger = logging.getLogger(__name__)


class RedisRateLimitStore:
	"""One sorted set per key, scored by epoch seconds.

	``append_if_below`` counts and appends inside a WATCH/MULTI transaction and
	retries when another instance touched the key in between.
	"""

	def __init__(self, client: redis.Redis | RedisProxy, *, max_retries: int = 5) -> None:
		self._redis = client
		self._max_retries = max(1, max_retries)

	async def timestamps(self, key: str, *, now: float, window_seconds: int) -> list[float]:
		members = await self._redis.zrangebyscore(key, f"({now - window_seconds}", "+inf", withscores=True)
		return [float(score) for _, score in members]

	async def append_if_below(
		self, key: str, *, now: float, window_seconds: int, limit: int
	) -> tuple[bool, list[float]]:
		floor = now - window_seconds
		for _ in range(self._max_retries):
			async with self._redis.pipeline(transaction=True) as pipe:
				try:
					await pipe.watch(key)
					members = await pipe.zrangebyscore(key, f"({floor}", "+inf", withscores=True)
					stamps = [float(score) for _, score in members]
					if len(stamps) >= limit:
						return False, stamps
					pipe.multi()
					pipe.zremrangebyscore(key, "-inf", floor)
					pipe.zadd(key, {f"{now}:{ulid.new().str}": now})
					pipe.expire(key, int(window_seconds) + 1)
					await pipe.execute()
					return True, stamps + [now]
				except WatchError:
					logger.debug("rate limit key contended; retrying", extra={"key": key})
					continue
		raise ConsistencyError("rate_limit_contention")
