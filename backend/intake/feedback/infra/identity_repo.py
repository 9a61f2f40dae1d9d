"""PostgreSQL identity lookups: stored role, active panel areas and current village."""

from __future__ import annotations

from typing import Optional

import asyncpg

from intake.feedback.domain.models import ProductArea, Role, RoleContext


class PostgresIdentityContext:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def resolve(self, user_id: str, claimed_role: Optional[Role] = None) -> RoleContext:
        async with self._pool.acquire() as conn:
            user = await conn.fetchrow(
                "SELECT role, current_village_id FROM feedback_users WHERE id = $1",
                user_id,
            )
            rows = await conn.fetch(
                """
                SELECT DISTINCT p.product_area
                FROM panel_memberships m
                JOIN research_panels p ON p.id = m.panel_id
                WHERE m.user_id = $1 AND m.active AND p.active
                """,
                user_id,
            )
        areas: set[ProductArea] = set()
        for row in rows:
            try:
                areas.add(ProductArea(row["product_area"]))
            except ValueError:
                continue
        if user is None:
            return RoleContext(user_id=user_id, role=claimed_role or Role.USER, panel_areas=frozenset(areas))
        return RoleContext(
            user_id=user_id,
            role=Role.parse(user["role"]),
            panel_areas=frozenset(areas),
            village_id=user["current_village_id"],
        )
