"""Atomic consolidation of a duplicate feedback item into its canonical target."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from intake.feedback.domain.exceptions import (
    AlreadyMerged,
    CircularMergeError,
    FeedbackError,
    Forbidden,
    MergeFailed,
    NotFound,
)
from intake.feedback.domain.models import MERGE_ROLES, FeedbackItem, FeedbackState, MergeResult, RoleContext
from intake.feedback.domain.repository import FeedbackRepository, FeedbackTransaction

logger = logging.getLogger(__name__)


class MergeEngine:
    """Moves votes from ``source`` to ``target`` and marks ``source`` merged, all or nothing.

    Every precondition is evaluated inside the transaction after both rows are
    locked and before the first write, so a refused merge changes nothing.
    """

    def __init__(self, repository: FeedbackRepository) -> None:
        self._repository = repository

    async def merge(
        self,
        source_id: str,
        target_id: str,
        actor: RoleContext,
        *,
        now: Optional[datetime] = None,
    ) -> MergeResult:
        if not actor.has_any(MERGE_ROLES):
            raise Forbidden("merge_forbidden")
        timestamp = now or datetime.now(timezone.utc)
        try:
            async with self._repository.transaction() as tx:
                locked = await tx.lock_feedback([source_id, target_id])
                source = locked.get(source_id)
                target = locked.get(target_id)
                if source is None or target is None:
                    raise NotFound("feedback_not_found")
                if source_id == target_id:
                    raise CircularMergeError()
                if source.is_merged:
                    raise AlreadyMerged()
                if await self._descends_from(tx, target, source_id):
                    raise CircularMergeError()
                if target.is_merged:
                    raise AlreadyMerged("target_already_merged")
                migrated, consolidated = await self._consolidate_votes(tx, source_id, target_id)
                await tx.update_feedback(
                    source.model_copy(
                        update={
                            "state": FeedbackState.MERGED,
                            "duplicate_of_id": target_id,
                            "updated_at": timestamp,
                        }
                    )
                )
        except FeedbackError:
            raise
        except Exception as exc:
            logger.exception("feedback merge aborted", extra={"source_id": source_id, "target_id": target_id})
            raise MergeFailed() from exc
        return MergeResult(
            source_id=source_id,
            target_id=target_id,
            votes_migrated=migrated,
            votes_consolidated=consolidated,
        )

    async def _descends_from(self, tx: FeedbackTransaction, start: FeedbackItem, ancestor_id: str) -> bool:
        """Walk ``duplicate_of_id`` links from ``start``; a revisited node counts as a cycle."""

        visited = {start.id}
        current: Optional[FeedbackItem] = start
        while current is not None and current.duplicate_of_id:
            parent_id = current.duplicate_of_id
            if parent_id == ancestor_id or parent_id in visited:
                return True
            visited.add(parent_id)
            current = await tx.get_feedback(parent_id)
        return False

    async def _consolidate_votes(self, tx: FeedbackTransaction, source_id: str, target_id: str) -> tuple[int, int]:
        votes = await tx.list_votes([source_id, target_id])
        on_target = {vote.user_id: vote for vote in votes if vote.feedback_id == target_id}
        migrated = 0
        consolidated = 0
        for vote in sorted((v for v in votes if v.feedback_id == source_id), key=lambda v: v.id):
            existing = on_target.get(vote.user_id)
            if existing is None:
                await tx.repoint_vote(vote.id, target_id)
                migrated += 1
                continue
            consolidated += 1
            # ties keep the target's vote
            if vote.base_weight > existing.base_weight:
                await tx.delete_vote(existing.id)
                await tx.repoint_vote(vote.id, target_id)
            else:
                await tx.delete_vote(vote.id)
        return migrated, consolidated
