"""Sliding-window rate limiting over an injected timestamp store."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional, Protocol, Sequence

from intake.feedback.domain.exceptions import RateLimitExceeded
from intake.feedback.domain.models import ActionKind, RateLimitDecision


@dataclass(slots=True, frozen=True)
class RateLimitWindow:
    """Trailing window configuration for one action kind."""

    limit: int
    seconds: int


DEFAULT_WINDOWS: Mapping[ActionKind, RateLimitWindow] = {
    ActionKind.FEEDBACK_SUBMIT: RateLimitWindow(limit=10, seconds=86400),
    ActionKind.UPLOAD: RateLimitWindow(limit=10, seconds=60),
}


class RateLimitStore(Protocol):
    """Keyed timestamp log.

    ``timestamps`` is a pure read. ``append_if_below`` must be atomic per key:
    the count and the append happen under one lock or one optimistic transaction.
    """

    async def timestamps(self, key: str, *, now: float, window_seconds: int) -> list[float]:
        ...

    async def append_if_below(
        self, key: str, *, now: float, window_seconds: int, limit: int
    ) -> tuple[bool, list[float]]:
        ...


class InMemoryRateLimitStore:
    """Process-local store guarded by one ``asyncio.Lock`` per key."""

    def __init__(self) -> None:
        self._log: dict[str, list[float]] = defaultdict(list)
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def timestamps(self, key: str, *, now: float, window_seconds: int) -> list[float]:
        floor = now - window_seconds
        return [stamp for stamp in self._log.get(key, ()) if stamp > floor]

    async def append_if_below(
        self, key: str, *, now: float, window_seconds: int, limit: int
    ) -> tuple[bool, list[float]]:
        async with self._locks[key]:
            floor = now - window_seconds
            live = [stamp for stamp in self._log[key] if stamp > floor]
            if len(live) >= limit:
                self._log[key] = live
                return False, live
            live.append(now)
            self._log[key] = live
            return True, list(live)

    def clear(self) -> None:
        self._log.clear()
        self._locks.clear()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:
    """Per-user, per-action sliding window limiter.

    ``check`` never mutates. ``record`` reserves a slot atomically and raises
    ``RateLimitExceeded`` when a concurrent caller took the last one.
    """

    def __init__(
        self,
        store: RateLimitStore,
        windows: Optional[Mapping[ActionKind, RateLimitWindow]] = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        namespace: str = "rl:feedback",
    ) -> None:
        self._store = store
        self._windows = dict(windows or DEFAULT_WINDOWS)
        self._clock = clock
        self._namespace = namespace

    def window_for(self, action: ActionKind) -> RateLimitWindow:
        return self._windows[action]

    def _key(self, user_id: str, action: ActionKind) -> str:
        return f"{self._namespace}:{action.value}:{user_id}"

    def _decision(self, stamps: Sequence[float], window: RateLimitWindow, now: datetime, *, allowed: bool) -> RateLimitDecision:
        if stamps:
            reset_at = datetime.fromtimestamp(min(stamps), tz=timezone.utc) + timedelta(seconds=window.seconds)
        else:
            reset_at = now + timedelta(seconds=window.seconds)
        return RateLimitDecision(
            allowed=allowed,
            remaining=max(window.limit - len(stamps), 0),
            reset_at=reset_at,
            limit=window.limit,
        )

    async def check(self, user_id: str, action: ActionKind, *, now: Optional[datetime] = None) -> RateLimitDecision:
        moment = now or self._clock()
        window = self.window_for(action)
        stamps = await self._store.timestamps(
            self._key(user_id, action), now=moment.timestamp(), window_seconds=window.seconds
        )
        return self._decision(stamps, window, moment, allowed=len(stamps) < window.limit)

    async def record(self, user_id: str, action: ActionKind, *, now: Optional[datetime] = None) -> RateLimitDecision:
        moment = now or self._clock()
        window = self.window_for(action)
        appended, stamps = await self._store.append_if_below(
            self._key(user_id, action),
            now=moment.timestamp(),
            window_seconds=window.seconds,
            limit=window.limit,
        )
        decision = self._decision(stamps, window, moment, allowed=appended)
        if not appended:
            raise RateLimitExceeded(decision.reset_at, limit=window.limit)
        return decision
