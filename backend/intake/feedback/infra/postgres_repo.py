"""PostgreSQL-backed repository for feedback items and votes."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Sequence

import asyncpg

from intake.feedback.domain.exceptions import AlreadyMerged, AlreadyVoted, DeleteBlocked, NotFound
from intake.feedback.domain.models import (
    FeedbackItem,
    FeedbackState,
    ModerationSignal,
    ModerationStatus,
    ProductArea,
    Vote,
)

_FEEDBACK_COLUMNS = """
    id, author_id, title, body, state, moderation_status, moderation_signals, duplicate_of_id,
    product_area, village_id, toxicity_score, spam_score, off_topic_score, has_pii,
    created_at, updated_at, edit_window_ends_at
"""

_VOTE_COLUMNS = "id, feedback_id, user_id, base_weight, cast_at"


def _row_to_feedback(row: asyncpg.Record) -> FeedbackItem:
    return FeedbackItem(
        id=str(row["id"]),
        author_id=str(row["author_id"]),
        title=row["title"],
        body=row["body"],
        state=FeedbackState(row["state"]),
        moderation_status=ModerationStatus(row["moderation_status"]),
        moderation_signals=frozenset(ModerationSignal(value) for value in row["moderation_signals"] or ()),
        duplicate_of_id=row["duplicate_of_id"],
        product_area=ProductArea(row["product_area"]) if row["product_area"] else None,
        village_id=row["village_id"],
        toxicity_score=float(row["toxicity_score"]),
        spam_score=float(row["spam_score"]),
        off_topic_score=float(row["off_topic_score"]),
        has_pii=bool(row["has_pii"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        edit_window_ends_at=row["edit_window_ends_at"],
    )


def _row_to_vote(row: asyncpg.Record) -> Vote:
    return Vote(
        id=str(row["id"]),
        feedback_id=str(row["feedback_id"]),
        user_id=str(row["user_id"]),
        base_weight=float(row["base_weight"]),
        cast_at=row["cast_at"],
    )


def _feedback_args(item: FeedbackItem) -> tuple:
    return (
        item.id,
        item.author_id,
        item.title,
        item.body,
        item.state.value,
        item.moderation_status.value,
        sorted(signal.value for signal in item.moderation_signals),
        item.duplicate_of_id,
        item.product_area.value if item.product_area else None,
        item.village_id,
        item.toxicity_score,
        item.spam_score,
        item.off_topic_score,
        item.has_pii,
        item.created_at,
        item.updated_at,
        item.edit_window_ends_at,
    )


_UPDATE_FEEDBACK_SQL = f"""
    UPDATE feedback
    SET title = $2, body = $3, state = $4, moderation_status = $5, moderation_signals = $6,
        duplicate_of_id = $7, toxicity_score = $8, spam_score = $9, off_topic_score = $10,
        has_pii = $11, updated_at = $12
    WHERE id = $1
    RETURNING {_FEEDBACK_COLUMNS}
"""


async def _update_feedback(conn: asyncpg.Connection | asyncpg.Pool, item: FeedbackItem) -> FeedbackItem:
    row = await conn.fetchrow(
        _UPDATE_FEEDBACK_SQL,
        item.id,
        item.title,
        item.body,
        item.state.value,
        item.moderation_status.value,
        sorted(signal.value for signal in item.moderation_signals),
        item.duplicate_of_id,
        item.toxicity_score,
        item.spam_score,
        item.off_topic_score,
        item.has_pii,
        item.updated_at,
    )
    if row is None:
        raise NotFound("feedback_not_found")
    return _row_to_feedback(row)


class _PostgresTransaction:
    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def lock_feedback(self, feedback_ids: Sequence[str]) -> dict[str, FeedbackItem]:
        rows = await self._conn.fetch(
            f"SELECT {_FEEDBACK_COLUMNS} FROM feedback WHERE id = ANY($1::text[]) ORDER BY id FOR UPDATE",
            sorted(set(feedback_ids)),
        )
        return {str(row["id"]): _row_to_feedback(row) for row in rows}

    async def get_feedback(self, feedback_id: str) -> FeedbackItem | None:
        row = await self._conn.fetchrow(f"SELECT {_FEEDBACK_COLUMNS} FROM feedback WHERE id = $1", feedback_id)
        return _row_to_feedback(row) if row else None

    async def list_votes(self, feedback_ids: Sequence[str]) -> list[Vote]:
        rows = await self._conn.fetch(
            f"SELECT {_VOTE_COLUMNS} FROM feedback_votes WHERE feedback_id = ANY($1::text[]) FOR UPDATE",
            list(feedback_ids),
        )
        return [_row_to_vote(row) for row in rows]

    async def repoint_vote(self, vote_id: str, feedback_id: str) -> None:
        await self._conn.execute("UPDATE feedback_votes SET feedback_id = $2 WHERE id = $1", vote_id, feedback_id)

    async def delete_vote(self, vote_id: str) -> None:
        await self._conn.execute("DELETE FROM feedback_votes WHERE id = $1", vote_id)

    async def update_feedback(self, item: FeedbackItem) -> FeedbackItem:
        return await _update_feedback(self._conn, item)


class PostgresFeedbackRepository:
    """Persists feedback and votes using asyncpg; constraints live in the schema."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get_feedback(self, feedback_id: str) -> FeedbackItem | None:
        row = await self._pool.fetchrow(f"SELECT {_FEEDBACK_COLUMNS} FROM feedback WHERE id = $1", feedback_id)
        return _row_to_feedback(row) if row else None

    async def insert_feedback(self, item: FeedbackItem) -> FeedbackItem:
        row = await self._pool.fetchrow(
            f"""
            INSERT INTO feedback ({_FEEDBACK_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17)
            RETURNING {_FEEDBACK_COLUMNS}
            """,
            *_feedback_args(item),
        )
        if row is None:  # pragma: no cover - asyncpg always returns a row for RETURNING
            raise RuntimeError("Failed to insert feedback")
        return _row_to_feedback(row)

    async def update_feedback(self, item: FeedbackItem) -> FeedbackItem:
        return await _update_feedback(self._pool, item)

    async def delete_feedback(self, feedback_id: str) -> bool:
        try:
            status = await self._pool.execute("DELETE FROM feedback WHERE id = $1", feedback_id)
        except asyncpg.ForeignKeyViolationError as exc:  # type: ignore[attr-defined]
            raise DeleteBlocked() from exc
        return status.endswith(" 1")

    async def list_feedback(
        self,
        *,
        state: FeedbackState | None = None,
        product_area: ProductArea | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[FeedbackItem]:
        rows = await self._pool.fetch(
            f"""
            SELECT {_FEEDBACK_COLUMNS}
            FROM feedback
            WHERE ($1::text IS NULL OR state = $1) AND ($2::text IS NULL OR product_area = $2)
            ORDER BY created_at DESC, id DESC
            LIMIT $3 OFFSET $4
            """,
            state.value if state else None,
            product_area.value if product_area else None,
            limit,
            offset,
        )
        return [_row_to_feedback(row) for row in rows]

    async def list_duplicate_candidates(self, *, exclude_id: str | None, limit: int) -> list[FeedbackItem]:
        rows = await self._pool.fetch(
            f"""
            SELECT {_FEEDBACK_COLUMNS}
            FROM feedback
            WHERE state <> 'merged' AND ($1::text IS NULL OR id <> $1)
            ORDER BY created_at DESC, id DESC
            LIMIT $2
            """,
            exclude_id,
            limit,
        )
        return [_row_to_feedback(row) for row in rows]

    async def insert_vote(self, vote: Vote) -> Vote:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                state = await conn.fetchval("SELECT state FROM feedback WHERE id = $1 FOR SHARE", vote.feedback_id)
                if state is None:
                    raise NotFound("feedback_not_found")
                if state == FeedbackState.MERGED.value:
                    raise AlreadyMerged()
                try:
                    row = await conn.fetchrow(
                        f"""
                        INSERT INTO feedback_votes ({_VOTE_COLUMNS})
                        VALUES ($1, $2, $3, $4, $5)
                        RETURNING {_VOTE_COLUMNS}
                        """,
                        vote.id,
                        vote.feedback_id,
                        vote.user_id,
                        vote.base_weight,
                        vote.cast_at,
                    )
                except asyncpg.UniqueViolationError as exc:  # type: ignore[attr-defined]
                    raise AlreadyVoted() from exc
        return _row_to_vote(row)

    async def delete_vote(self, feedback_id: str, user_id: str) -> Vote | None:
        row = await self._pool.fetchrow(
            f"DELETE FROM feedback_votes WHERE feedback_id = $1 AND user_id = $2 RETURNING {_VOTE_COLUMNS}",
            feedback_id,
            user_id,
        )
        return _row_to_vote(row) if row else None

    async def get_vote(self, feedback_id: str, user_id: str) -> Vote | None:
        row = await self._pool.fetchrow(
            f"SELECT {_VOTE_COLUMNS} FROM feedback_votes WHERE feedback_id = $1 AND user_id = $2",
            feedback_id,
            user_id,
        )
        return _row_to_vote(row) if row else None

    async def list_votes(self, feedback_ids: Sequence[str]) -> list[Vote]:
        rows = await self._pool.fetch(
            f"SELECT {_VOTE_COLUMNS} FROM feedback_votes WHERE feedback_id = ANY($1::text[])",
            list(feedback_ids),
        )
        return [_row_to_vote(row) for row in rows]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_PostgresTransaction]:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                yield _PostgresTransaction(conn)
