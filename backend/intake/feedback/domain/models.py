"""Domain models for feedback intake entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional

from pydantic import BaseModel, ConfigDict


class FeedbackState(str, Enum):
	"""Lifecycle states of a feedback item."""

	NEW = "new"
	TRIAGED = "triaged"
	MERGED = "merged"
	IN_ROADMAP = "in_roadmap"
	CLOSED = "closed"


class ModerationStatus(str, Enum):
	AUTO_PENDING = "auto_pending"
	APPROVED = "approved"
	REJECTED = "rejected"
	NEEDS_INFO = "needs_info"


class ModerationSignal(str, Enum):
	TOXICITY = "toxicity"
	SPAM = "spam"
	PII = "pii"
	OFF_TOPIC = "off_topic"


class Role(str, Enum):
	USER = "USER"
	PM = "PM"
	PO = "PO"
	RESEARCHER = "RESEARCHER"
	MODERATOR = "MODERATOR"
	ADMIN = "ADMIN"

	@classmethod
	def parse(cls, value: object) -> "Role":
		"""Map a loosely formatted role claim onto the closed role set."""
		text = str(value or "").strip().upper()
		try:
			return cls(text)
		except ValueError:
			return cls.USER


class ActionKind(str, Enum):
	"""Rate-limited action families."""

	FEEDBACK_SUBMIT = "feedback_submit"
	UPLOAD = "upload"


class ProductArea(str, Enum):
	RESERVATIONS = "reservations"
	CHECK_IN = "check_in"
	PAYMENTS = "payments"
	HOUSEKEEPING = "housekeeping"
	BACKOFFICE = "backoffice"


MERGE_ROLES: FrozenSet[Role] = frozenset({Role.PM, Role.PO, Role.ADMIN})
TRIAGE_ROLES: FrozenSet[Role] = frozenset({Role.PM, Role.PO, Role.ADMIN})
REVIEW_ROLES: FrozenSet[Role] = frozenset({Role.MODERATOR, Role.ADMIN, Role.PM, Role.PO})

# new -> triaged | closed, triaged -> in_roadmap | closed | new, ...; merged is terminal.
STATE_TRANSITIONS: dict[FeedbackState, FrozenSet[FeedbackState]] = {
	FeedbackState.NEW: frozenset({FeedbackState.TRIAGED, FeedbackState.CLOSED}),
	FeedbackState.TRIAGED: frozenset({FeedbackState.IN_ROADMAP, FeedbackState.CLOSED, FeedbackState.NEW}),
	FeedbackState.IN_ROADMAP: frozenset({FeedbackState.CLOSED, FeedbackState.TRIAGED}),
	FeedbackState.CLOSED: frozenset({FeedbackState.TRIAGED}),
	FeedbackState.MERGED: frozenset(),
}


class FeedbackItem(BaseModel):
	"""A single piece of submitted feedback."""

	id: str
	author_id: str
	title: str
	body: str
	state: FeedbackState = FeedbackState.NEW
	moderation_status: ModerationStatus
	moderation_signals: FrozenSet[ModerationSignal] = frozenset()
	duplicate_of_id: Optional[str] = None
	product_area: Optional[ProductArea] = None
	village_id: Optional[str] = None
	toxicity_score: float = 0.0
	spam_score: float = 0.0
	off_topic_score: float = 0.0
	has_pii: bool = False
	created_at: datetime
	updated_at: datetime
	edit_window_ends_at: datetime

	model_config = ConfigDict(from_attributes=True, frozen=True)

	@property
	def is_merged(self) -> bool:
		return self.state is FeedbackState.MERGED


class Vote(BaseModel):
	"""A vote cast by a user on a feedback item."""

	id: str
	feedback_id: str
	user_id: str
	base_weight: float
	cast_at: datetime

	model_config = ConfigDict(from_attributes=True, frozen=True)


class VoteStats(BaseModel):
	feedback_id: str
	count: int = 0
	total_weight: float = 0.0
	total_decayed_weight: float = 0.0


@dataclass(slots=True, frozen=True)
class RoleContext:
	"""Acting user's resolved identity: role, panel memberships and home village."""

	user_id: str
	role: Role = Role.USER
	panel_areas: FrozenSet[ProductArea] = field(default_factory=frozenset)
	village_id: Optional[str] = None

	def has_any(self, roles: FrozenSet[Role]) -> bool:
		return self.role in roles


@dataclass(slots=True, frozen=True)
class RateLimitDecision:
	"""Typed outcome of a rate-limit check; ``allowed=False`` is not an error."""

	allowed: bool
	remaining: int
	reset_at: datetime
	limit: int


@dataclass(slots=True, frozen=True)
class DuplicateMatch:
	item: FeedbackItem
	similarity: float
	vote_count: int = 0


@dataclass(slots=True, frozen=True)
class MergeResult:
	source_id: str
	target_id: str
	votes_migrated: int
	votes_consolidated: int
