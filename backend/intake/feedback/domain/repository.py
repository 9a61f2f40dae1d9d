"""Storage contracts for feedback items and votes, plus an in-process reference store."""

from __future__ import annotations

import asyncio
import copy
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Iterable, Protocol, Sequence

from intake.feedback.domain.exceptions import AlreadyMerged, AlreadyVoted, DeleteBlocked, NotFound
from intake.feedback.domain.models import FeedbackItem, FeedbackState, ProductArea, Vote


class FeedbackTransaction(Protocol):
    """Unit of work holding row locks until it exits; any exception rolls it back."""

    async def lock_feedback(self, feedback_ids: Sequence[str]) -> dict[str, FeedbackItem]:
        ...

    async def get_feedback(self, feedback_id: str) -> FeedbackItem | None:
        ...

    async def list_votes(self, feedback_ids: Sequence[str]) -> list[Vote]:
        ...

    async def repoint_vote(self, vote_id: str, feedback_id: str) -> None:
        ...

    async def delete_vote(self, vote_id: str) -> None:
        ...

    async def update_feedback(self, item: FeedbackItem) -> FeedbackItem:
        ...


class FeedbackRepository(Protocol):
    """Datastore contract.

    ``insert_vote`` relies on the store's uniqueness guarantee for
    ``(feedback_id, user_id)`` and raises ``AlreadyVoted`` on conflict. It also
    refuses merged or missing items while holding a share lock on the row.
    ``delete_feedback`` raises ``DeleteBlocked`` while merged duplicates still
    point at the item.
    """

    async def get_feedback(self, feedback_id: str) -> FeedbackItem | None:
        ...

    async def insert_feedback(self, item: FeedbackItem) -> FeedbackItem:
        ...

    async def update_feedback(self, item: FeedbackItem) -> FeedbackItem:
        ...

    async def delete_feedback(self, feedback_id: str) -> bool:
        ...

    async def list_feedback(
        self,
        *,
        state: FeedbackState | None = None,
        product_area: ProductArea | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[FeedbackItem]:
        ...

    async def list_duplicate_candidates(self, *, exclude_id: str | None, limit: int) -> list[FeedbackItem]:
        ...

    async def insert_vote(self, vote: Vote) -> Vote:
        ...

    async def delete_vote(self, feedback_id: str, user_id: str) -> Vote | None:
        ...

    async def get_vote(self, feedback_id: str, user_id: str) -> Vote | None:
        ...

    async def list_votes(self, feedback_ids: Sequence[str]) -> list[Vote]:
        ...

    def transaction(self) -> AsyncContextManager[FeedbackTransaction]:
        ...


def _newest_first(items: Iterable[FeedbackItem]) -> list[FeedbackItem]:
    return sorted(items, key=lambda item: (item.created_at, item.id), reverse=True)


class _InMemoryTransaction:
    def __init__(self, store: "InMemoryFeedbackRepository") -> None:
        self._store = store

    async def lock_feedback(self, feedback_ids: Sequence[str]) -> dict[str, FeedbackItem]:
        return {fid: self._store.items[fid] for fid in sorted(set(feedback_ids)) if fid in self._store.items}

    async def get_feedback(self, feedback_id: str) -> FeedbackItem | None:
        return self._store.items.get(feedback_id)

    async def list_votes(self, feedback_ids: Sequence[str]) -> list[Vote]:
        wanted = set(feedback_ids)
        return [vote for vote in self._store.votes.values() if vote.feedback_id in wanted]

    async def repoint_vote(self, vote_id: str, feedback_id: str) -> None:
        vote = self._store.votes[vote_id]
        self._store.votes[vote_id] = vote.model_copy(update={"feedback_id": feedback_id})

    async def delete_vote(self, vote_id: str) -> None:
        del self._store.votes[vote_id]

    async def update_feedback(self, item: FeedbackItem) -> FeedbackItem:
        if item.id not in self._store.items:
            raise NotFound("feedback_not_found")
        self._store.items[item.id] = item
        return item


class InMemoryFeedbackRepository:
    """Single-process store; one lock serialises writers the way row locks would."""

    def __init__(self) -> None:
        self.items: dict[str, FeedbackItem] = {}
        self.votes: dict[str, Vote] = {}
        self._lock = asyncio.Lock()

    async def get_feedback(self, feedback_id: str) -> FeedbackItem | None:
        return self.items.get(feedback_id)

    async def insert_feedback(self, item: FeedbackItem) -> FeedbackItem:
        async with self._lock:
            self.items[item.id] = item
            return item

    async def update_feedback(self, item: FeedbackItem) -> FeedbackItem:
        async with self._lock:
            if item.id not in self.items:
                raise NotFound("feedback_not_found")
            self.items[item.id] = item
            return item

    async def delete_feedback(self, feedback_id: str) -> bool:
        async with self._lock:
            if feedback_id not in self.items:
                return False
            if any(item.duplicate_of_id == feedback_id for item in self.items.values()):
                raise DeleteBlocked()
            del self.items[feedback_id]
            for vote_id in [vid for vid, vote in self.votes.items() if vote.feedback_id == feedback_id]:
                del self.votes[vote_id]
            return True

    async def list_feedback(
        self,
        *,
        state: FeedbackState | None = None,
        product_area: ProductArea | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[FeedbackItem]:
        selected = [
            item
            for item in self.items.values()
            if (state is None or item.state is state) and (product_area is None or item.product_area is product_area)
        ]
        return _newest_first(selected)[offset : offset + limit]

    async def list_duplicate_candidates(self, *, exclude_id: str | None, limit: int) -> list[FeedbackItem]:
        selected = [item for item in self.items.values() if not item.is_merged and item.id != exclude_id]
        return _newest_first(selected)[:limit]

    async def insert_vote(self, vote: Vote) -> Vote:
        async with self._lock:
            item = self.items.get(vote.feedback_id)
            if item is None:
                raise NotFound("feedback_not_found")
            if item.is_merged:
                raise AlreadyMerged()
            if any(v.feedback_id == vote.feedback_id and v.user_id == vote.user_id for v in self.votes.values()):
                raise AlreadyVoted()
            self.votes[vote.id] = vote
            return vote

    async def delete_vote(self, feedback_id: str, user_id: str) -> Vote | None:
        async with self._lock:
            for vote_id, vote in self.votes.items():
                if vote.feedback_id == feedback_id and vote.user_id == user_id:
                    del self.votes[vote_id]
                    return vote
            return None

    async def get_vote(self, feedback_id: str, user_id: str) -> Vote | None:
        for vote in self.votes.values():
            if vote.feedback_id == feedback_id and vote.user_id == user_id:
                return vote
        return None

    async def list_votes(self, feedback_ids: Sequence[str]) -> list[Vote]:
        wanted = set(feedback_ids)
        return [vote for vote in self.votes.values() if vote.feedback_id in wanted]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_InMemoryTransaction]:
        async with self._lock:
            items_snapshot = dict(self.items)
            votes_snapshot = copy.copy(self.votes)
            try:
                yield _InMemoryTransaction(self)
            except BaseException:
                self.items = items_snapshot
                self.votes = votes_snapshot
                raise
