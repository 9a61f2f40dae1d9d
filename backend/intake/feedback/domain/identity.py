"""Resolution of the acting user's role, panel memberships and village."""

from __future__ import annotations

from typing import Iterable, Mapping, Optional, Protocol

from intake.feedback.domain.models import ProductArea, Role, RoleContext


class IdentityContext(Protocol):
    """Resolves a caller at call time. The stored role wins over the claimed one."""

    async def resolve(self, user_id: str, claimed_role: Optional[Role] = None) -> RoleContext:
        ...


class StaticIdentityContext:
    """Identity directory held in memory, keyed by user id."""

    def __init__(self, profiles: Optional[Mapping[str, RoleContext]] = None) -> None:
        self._profiles: dict[str, RoleContext] = dict(profiles or {})

    def register(
        self,
        user_id: str,
        role: Role = Role.USER,
        *,
        panel_areas: Iterable[ProductArea] = (),
        village_id: Optional[str] = None,
    ) -> RoleContext:
        context = RoleContext(user_id=user_id, role=role, panel_areas=frozenset(panel_areas), village_id=village_id)
        self._profiles[user_id] = context
        return context

    async def resolve(self, user_id: str, claimed_role: Optional[Role] = None) -> RoleContext:
        profile = self._profiles.get(user_id)
        if profile is not None:
            return profile
        return RoleContext(user_id=user_id, role=claimed_role or Role.USER)
