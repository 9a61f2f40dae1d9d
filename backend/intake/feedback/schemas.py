"""Pydantic schemas for the feedback API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from intake.feedback.domain.models import (
	ActionKind,
	DuplicateMatch,
	FeedbackItem,
	FeedbackState,
	MergeResult,
	ModerationSignal,
	ModerationStatus,
	ProductArea,
	RateLimitDecision,
	Vote,
	VoteStats,
)


class FeedbackCreateRequest(BaseModel):
	title: str
	body: str
	product_area: Optional[str] = None
	village_id: Optional[str] = Field(default=None, max_length=64)


class FeedbackUpdateRequest(BaseModel):
	title: Optional[str] = None
	body: Optional[str] = None


class StateChangeRequest(BaseModel):
	state: FeedbackState


class ReviewRequest(BaseModel):
	moderation_status: ModerationStatus


class MergeRequest(BaseModel):
	target_id: str = Field(..., min_length=1)


class DuplicateSearchRequest(BaseModel):
	title: str = Field(..., min_length=1, max_length=500)


class VoteStatsResponse(BaseModel):
	count: int
	total_weight: float
	total_decayed_weight: float

	@classmethod
	def from_domain(cls, stats: VoteStats) -> "VoteStatsResponse":
		return cls(
			count=stats.count,
			total_weight=round(stats.total_weight, 4),
			total_decayed_weight=round(stats.total_decayed_weight, 4),
		)


class FeedbackResponse(BaseModel):
	id: str
	author_id: str
	title: str
	body: str
	state: FeedbackState
	moderation_status: ModerationStatus
	moderation_signals: List[ModerationSignal]
	duplicate_of_id: Optional[str] = None
	product_area: Optional[ProductArea] = None
	village_id: Optional[str] = None
	has_pii: bool
	toxicity_score: float
	spam_score: float
	off_topic_score: float
	created_at: datetime
	updated_at: datetime
	edit_window_ends_at: datetime
	votes: Optional[VoteStatsResponse] = None

	@classmethod
	def from_domain(cls, item: FeedbackItem, stats: Optional[VoteStats] = None) -> "FeedbackResponse":
		return cls(
			id=item.id,
			author_id=item.author_id,
			title=item.title,
			body=item.body,
			state=item.state,
			moderation_status=item.moderation_status,
			moderation_signals=sorted(item.moderation_signals, key=lambda signal: signal.value),
			duplicate_of_id=item.duplicate_of_id,
			product_area=item.product_area,
			village_id=item.village_id,
			has_pii=item.has_pii,
			toxicity_score=item.toxicity_score,
			spam_score=item.spam_score,
			off_topic_score=item.off_topic_score,
			created_at=item.created_at,
			updated_at=item.updated_at,
			edit_window_ends_at=item.edit_window_ends_at,
			votes=VoteStatsResponse.from_domain(stats) if stats is not None else None,
		)


class FeedbackListResponse(BaseModel):
	items: List[FeedbackResponse]
	limit: int
	offset: int


class VoteResponse(BaseModel):
	id: str
	feedback_id: str
	user_id: str
	base_weight: float
	cast_at: datetime
	decayed_weight: Optional[float] = None

	@classmethod
	def from_domain(cls, vote: Vote, decayed_weight: Optional[float] = None) -> "VoteResponse":
		return cls(
			id=vote.id,
			feedback_id=vote.feedback_id,
			user_id=vote.user_id,
			base_weight=vote.base_weight,
			cast_at=vote.cast_at,
			decayed_weight=round(decayed_weight, 4) if decayed_weight is not None else None,
		)


class VoteCastResponse(BaseModel):
	vote: VoteResponse
	stats: VoteStatsResponse


class VoteStatusResponse(BaseModel):
	has_voted: bool
	vote: Optional[VoteResponse] = None


class DuplicateMatchResponse(BaseModel):
	feedback: FeedbackResponse
	similarity: float
	vote_count: int

	@classmethod
	def from_domain(cls, match: DuplicateMatch) -> "DuplicateMatchResponse":
		return cls(
			feedback=FeedbackResponse.from_domain(match.item),
			similarity=round(match.similarity, 4),
			vote_count=match.vote_count,
		)


class DuplicateListResponse(BaseModel):
	items: List[DuplicateMatchResponse]


class MergeResponse(BaseModel):
	source_id: str
	target_id: str
	votes_migrated: int
	votes_consolidated: int

	@classmethod
	def from_domain(cls, result: MergeResult) -> "MergeResponse":
		return cls(
			source_id=result.source_id,
			target_id=result.target_id,
			votes_migrated=result.votes_migrated,
			votes_consolidated=result.votes_consolidated,
		)


class RateLimitResponse(BaseModel):
	action: ActionKind
	allowed: bool
	remaining: int
	limit: int
	reset_at: datetime

	@classmethod
	def from_domain(cls, action: ActionKind, decision: RateLimitDecision) -> "RateLimitResponse":
		return cls(
			action=action,
			allowed=decision.allowed,
			remaining=decision.remaining,
			limit=decision.limit,
			reset_at=decision.reset_at,
		)
