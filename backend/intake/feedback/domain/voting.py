"""Vote weighting, lazy decay and the ledger that records votes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Sequence

import ulid

from intake.feedback.domain.exceptions import NotFound
from intake.feedback.domain.models import FeedbackItem, ProductArea, Role, RoleContext, Vote, VoteStats
from intake.feedback.domain.repository import FeedbackRepository

SECONDS_PER_DAY = 86400.0
DEFAULT_HALF_LIFE_DAYS = 180.0
DEFAULT_PANEL_BOOST = 0.5

DEFAULT_ROLE_WEIGHTS: Mapping[Role, float] = {
    Role.USER: 1.0,
    Role.PM: 2.0,
    Role.PO: 2.5,
    Role.RESEARCHER: 1.5,
    Role.MODERATOR: 1.0,
    Role.ADMIN: 1.0,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def decayed_weight(
    base_weight: float,
    cast_at: datetime,
    now: datetime,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> float:
    """``base * 0.5 ** (age_days / half_life)``; votes from the future count at full weight."""

    age_days = max((now - cast_at).total_seconds(), 0.0) / SECONDS_PER_DAY
    return base_weight * 0.5 ** (age_days / half_life_days)


@dataclass(frozen=True)
class VotePolicy:
    role_weights: Mapping[Role, float] = field(default_factory=lambda: dict(DEFAULT_ROLE_WEIGHTS))
    panel_boost: float = DEFAULT_PANEL_BOOST
    village_multipliers: Mapping[str, float] = field(default_factory=dict)
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS

    @staticmethod
    def from_mapping(config: Mapping[str, Any], *, base: Optional["VotePolicy"] = None) -> "VotePolicy":
        base = base or VotePolicy()
        weights = dict(base.role_weights)
        raw_weights = config.get("role_weights", {})
        if isinstance(raw_weights, Mapping):
            for key, value in raw_weights.items():
                try:
                    weights[Role(str(key).upper())] = float(value)
                except (TypeError, ValueError):
                    continue
        villages = dict(base.village_multipliers)
        raw_villages = config.get("village_multipliers", {})
        if isinstance(raw_villages, Mapping):
            for key, value in raw_villages.items():
                try:
                    villages[str(key)] = float(value)
                except (TypeError, ValueError):
                    continue
        half_life = float(config.get("half_life_days", base.half_life_days))
        if half_life <= 0:
            raise ValueError("half_life_days must be positive")
        return VotePolicy(
            role_weights=weights,
            panel_boost=float(config.get("panel_boost", base.panel_boost)),
            village_multipliers=villages,
            half_life_days=half_life,
        )

    def village_multiplier(self, village_id: Optional[str]) -> float:
        if not village_id:
            return 1.0
        return self.village_multipliers.get(village_id, 1.0)

    def weight_for(
        self,
        context: RoleContext,
        *,
        product_area: Optional[ProductArea] = None,
        village_id: Optional[str] = None,
    ) -> float:
        """Role weight, plus the panel boost, scaled by the village multiplier."""

        weight = self.role_weights.get(context.role, 1.0)
        if product_area is not None and product_area in context.panel_areas:
            weight += self.panel_boost
        return weight * self.village_multiplier(village_id or context.village_id)

    def decay(self, vote: Vote, now: datetime) -> float:
        return decayed_weight(vote.base_weight, vote.cast_at, now, self.half_life_days)


def aggregate(votes: Sequence[Vote], feedback_ids: Sequence[str], policy: VotePolicy, now: datetime) -> dict[str, VoteStats]:
    """Fold an already-fetched batch of votes into per-item stats in one pass."""

    stats = {feedback_id: VoteStats(feedback_id=feedback_id) for feedback_id in feedback_ids}
    for vote in votes:
        current = stats.get(vote.feedback_id)
        if current is None:
            continue
        current.count += 1
        current.total_weight += vote.base_weight
        current.total_decayed_weight += policy.decay(vote, now)
    return stats


class VoteLedger:
    """Records votes through the repository's uniqueness guarantee."""

    def __init__(
        self,
        repository: FeedbackRepository,
        policy: Optional[VotePolicy] = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self.policy = policy or VotePolicy()
        self._clock = clock

    async def cast(self, feedback: FeedbackItem, context: RoleContext, *, now: Optional[datetime] = None) -> Vote:
        weight = self.policy.weight_for(context, product_area=feedback.product_area, village_id=feedback.village_id)
        vote = Vote(
            id=ulid.new().str,
            feedback_id=feedback.id,
            user_id=context.user_id,
            base_weight=weight,
            cast_at=now or self._clock(),
        )
        return await self._repository.insert_vote(vote)

    async def unvote(self, feedback_id: str, user_id: str) -> Vote:
        removed = await self._repository.delete_vote(feedback_id, user_id)
        if removed is None:
            raise NotFound("vote_not_found")
        return removed

    async def stats_for(self, feedback_ids: Sequence[str], now: Optional[datetime] = None) -> dict[str, VoteStats]:
        ids = list(dict.fromkeys(feedback_ids))
        if not ids:
            return {}
        votes = await self._repository.list_votes(ids)
        return aggregate(votes, ids, self.policy, now or self._clock())

    async def vote_status(
        self, feedback_id: str, user_id: str, now: Optional[datetime] = None
    ) -> Optional[tuple[Vote, float]]:
        vote = await self._repository.get_vote(feedback_id, user_id)
        if vote is None:
            return None
        return vote, self.policy.decay(vote, now or self._clock())
