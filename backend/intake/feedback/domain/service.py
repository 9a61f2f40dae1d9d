"""Service layer orchestrating the feedback intake pipeline."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import ulid

from intake.feedback.domain import events
from intake.feedback.domain.events import EventSink
from intake.feedback.domain.exceptions import (
	AlreadyMerged,
	FeedbackError,
	Forbidden,
	EditWindowClosed,
	InvalidTransition,
	NotFound,
	RateLimitExceeded,
	ValidationError,
)
from intake.feedback.domain.merge import MergeEngine
from intake.feedback.domain.models import (
	REVIEW_ROLES,
	STATE_TRANSITIONS,
	TRIAGE_ROLES,
	ActionKind,
	DuplicateMatch,
	FeedbackItem,
	FeedbackState,
	MergeResult,
	ModerationStatus,
	ProductArea,
	RateLimitDecision,
	Role,
	RoleContext,
	Vote,
	VoteStats,
)
from intake.feedback.domain.rate_limiter import RateLimiter
from intake.feedback.domain.redaction import PiiRedactor
from intake.feedback.domain.repository import FeedbackRepository
from intake.feedback.domain.scoring import HeuristicScorer, ModerationScorer, ModerationThresholds
from intake.feedback.domain.similarity import DuplicateDetector
from intake.feedback.domain.voting import VoteLedger
from intake.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

TITLE_MIN, TITLE_MAX = 8, 120
BODY_MIN, BODY_MAX = 20, 5000
LIST_MAX = 100

REVIEW_OUTCOMES = frozenset({ModerationStatus.APPROVED, ModerationStatus.REJECTED, ModerationStatus.NEEDS_INFO})
_AUTOMATIC_STATUSES = frozenset({ModerationStatus.AUTO_PENDING, ModerationStatus.APPROVED})


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


def _check_length(errors: list[dict[str, str]], field: str, value: Any, minimum: int, maximum: int) -> str:
	if not isinstance(value, str) or not value.strip():
		errors.append({"field": field, "message": "required"})
		return ""
	text = value.strip()
	if len(text) < minimum:
		errors.append({"field": field, "message": f"must be at least {minimum} characters"})
	elif len(text) > maximum:
		errors.append({"field": field, "message": f"must be at most {maximum} characters"})
	return text


@dataclass(slots=True, frozen=True)
class Screening:
	title: str
	body: str
	has_pii: bool
	toxicity: float
	spam: float
	off_topic: float
	status: ModerationStatus
	signals: frozenset


class FeedbackService:
	"""Implements submission, voting, duplicate search and merge on top of injected collaborators."""

	def __init__(
		self,
		repository: FeedbackRepository,
		rate_limiter: RateLimiter,
		events_sink: EventSink,
		*,
		scorer: Optional[ModerationScorer] = None,
		thresholds: Optional[ModerationThresholds] = None,
		ledger: Optional[VoteLedger] = None,
		detector: Optional[DuplicateDetector] = None,
		redactor: Optional[PiiRedactor] = None,
		edit_window: timedelta = timedelta(minutes=15),
		duplicate_scan_limit: int = 500,
		clock: Callable[[], datetime] = _utcnow,
	) -> None:
		self.repo = repository
		self.rate_limiter = rate_limiter
		self.events = events_sink
		self.scorer = scorer or HeuristicScorer()
		self.thresholds = thresholds or ModerationThresholds()
		self.ledger = ledger or VoteLedger(repository, clock=clock)
		self.detector = detector or DuplicateDetector()
		self.redactor = redactor or PiiRedactor()
		self.merge_engine = MergeEngine(repository)
		self.edit_window = edit_window
		self.duplicate_scan_limit = duplicate_scan_limit
		self._clock = clock

	# ------------------------------------------------------------------
	# Helpers

	def _emit(self, event: str, payload: dict[str, Any]) -> None:
		try:
			self.events.emit(event, payload)
		except Exception:
			obs_metrics.inc_event_dropped(event)
			logger.exception("feedback event emit failed", extra={"event": event})

	def _screen(self, title: str, body: str, *, carried_pii: bool = False) -> Screening:
		redacted_title = self.redactor.redact(title)
		redacted_body = self.redactor.redact(body)
		# masked text no longer matches, so a kept field carries its earlier PII finding
		has_pii = carried_pii or redacted_title.has_pii or redacted_body.has_pii
		score = self.scorer.score(f"{redacted_title.text} {redacted_body.text}")
		decision = self.thresholds.decide(score, has_pii=has_pii)
		return Screening(
			title=redacted_title.text,
			body=redacted_body.text,
			has_pii=has_pii,
			toxicity=score.toxicity,
			spam=score.spam,
			off_topic=score.off_topic,
			status=decision.status,
			signals=decision.signals,
		)

	async def _require(self, feedback_id: str) -> FeedbackItem:
		item = await self.repo.get_feedback(feedback_id)
		if item is None:
			raise NotFound("feedback_not_found")
		return item

	@staticmethod
	def _parse_area(value: Any) -> Optional[ProductArea]:
		if value in (None, ""):
			return None
		if isinstance(value, ProductArea):
			return value
		try:
			return ProductArea(str(value).strip().lower())
		except ValueError:
			raise ValidationError([{"field": "product_area", "message": "unknown product area"}]) from None

	# ------------------------------------------------------------------
	# Submission

	async def submit(
		self,
		author: RoleContext,
		title: Any,
		body: Any,
		*,
		product_area: Any = None,
		village_id: Optional[str] = None,
		now: Optional[datetime] = None,
	) -> FeedbackItem:
		errors: list[dict[str, str]] = []
		clean_title = _check_length(errors, "title", title, TITLE_MIN, TITLE_MAX)
		clean_body = _check_length(errors, "body", body, BODY_MIN, BODY_MAX)
		if errors:
			raise ValidationError(errors)
		area = self._parse_area(product_area)
		moment = now or self._clock()

		decision = await self.rate_limiter.check(author.user_id, ActionKind.FEEDBACK_SUBMIT, now=moment)
		if not decision.allowed:
			obs_metrics.inc_rate_limited(ActionKind.FEEDBACK_SUBMIT.value)
			raise RateLimitExceeded(decision.reset_at, limit=decision.limit)

		screening = self._screen(clean_title, clean_body)

		try:
			await self.rate_limiter.record(author.user_id, ActionKind.FEEDBACK_SUBMIT, now=moment)
		except RateLimitExceeded:
			obs_metrics.inc_rate_limited(ActionKind.FEEDBACK_SUBMIT.value)
			raise

		item = FeedbackItem(
			id=ulid.new().str,
			author_id=author.user_id,
			title=screening.title,
			body=screening.body,
			state=FeedbackState.NEW,
			moderation_status=screening.status,
			moderation_signals=screening.signals,
			product_area=area,
			village_id=village_id or author.village_id,
			toxicity_score=screening.toxicity,
			spam_score=screening.spam,
			off_topic_score=screening.off_topic,
			has_pii=screening.has_pii,
			created_at=moment,
			updated_at=moment,
			edit_window_ends_at=moment + self.edit_window,
		)
		stored = await self.repo.insert_feedback(item)
		obs_metrics.inc_feedback_submitted(stored.moderation_status.value)
		self._emit(
			events.FEEDBACK_CREATED,
			{
				"feedback_id": stored.id,
				"author_id": stored.author_id,
				"moderation_status": stored.moderation_status.value,
				"signals": sorted(signal.value for signal in stored.moderation_signals),
			},
		)
		return stored

	# ------------------------------------------------------------------
	# Reads

	async def get(self, feedback_id: str, *, now: Optional[datetime] = None) -> tuple[FeedbackItem, VoteStats]:
		item = await self._require(feedback_id)
		stats = await self.ledger.stats_for([item.id], now=now)
		return item, stats[item.id]

	async def list_feedback(
		self,
		*,
		state: Optional[FeedbackState] = None,
		product_area: Any = None,
		limit: int = 20,
		offset: int = 0,
		now: Optional[datetime] = None,
	) -> list[tuple[FeedbackItem, VoteStats]]:
		errors: list[dict[str, str]] = []
		if not 1 <= limit <= LIST_MAX:
			errors.append({"field": "limit", "message": f"must be between 1 and {LIST_MAX}"})
		if offset < 0:
			errors.append({"field": "offset", "message": "must not be negative"})
		if errors:
			raise ValidationError(errors)
		area = self._parse_area(product_area)
		items = await self.repo.list_feedback(state=state, product_area=area, limit=limit, offset=offset)
		stats = await self.ledger.stats_for([item.id for item in items], now=now)
		return [(item, stats[item.id]) for item in items]

	# ------------------------------------------------------------------
	# Author edits and deletion

	async def edit(
		self,
		feedback_id: str,
		actor: RoleContext,
		*,
		title: Any = None,
		body: Any = None,
		now: Optional[datetime] = None,
	) -> FeedbackItem:
		if title is None and body is None:
			raise ValidationError([{"field": "title", "message": "title or body required"}])
		errors: list[dict[str, str]] = []
		clean_title = _check_length(errors, "title", title, TITLE_MIN, TITLE_MAX) if title is not None else None
		clean_body = _check_length(errors, "body", body, BODY_MIN, BODY_MAX) if body is not None else None
		if errors:
			raise ValidationError(errors)
		moment = now or self._clock()
		async with self.repo.transaction() as tx:
			locked = await tx.lock_feedback([feedback_id])
			item = locked.get(feedback_id)
			if item is None:
				raise NotFound("feedback_not_found")
			if item.is_merged:
				raise AlreadyMerged()
			if item.author_id != actor.user_id:
				raise Forbidden("not_author")
			if moment > item.edit_window_ends_at:
				raise EditWindowClosed()
			keeps_stored_text = clean_title is None or clean_body is None
			screening = self._screen(
				clean_title or item.title,
				clean_body or item.body,
				carried_pii=item.has_pii and keeps_stored_text,
			)
			status = screening.status if item.moderation_status in _AUTOMATIC_STATUSES else item.moderation_status
			updated = item.model_copy(
				update={
					"title": screening.title,
					"body": screening.body,
					"has_pii": screening.has_pii,
					"toxicity_score": screening.toxicity,
					"spam_score": screening.spam,
					"off_topic_score": screening.off_topic,
					"moderation_status": status,
					"moderation_signals": screening.signals,
					"updated_at": moment,
				}
			)
			await tx.update_feedback(updated)
		self._emit(
			events.FEEDBACK_UPDATED,
			{"feedback_id": updated.id, "actor_id": actor.user_id, "moderation_status": updated.moderation_status.value},
		)
		return updated

	async def delete(self, feedback_id: str, actor: RoleContext) -> None:
		item = await self._require(feedback_id)
		if item.author_id != actor.user_id and actor.role is not Role.ADMIN:
			raise Forbidden("delete_forbidden")
		if not await self.repo.delete_feedback(feedback_id):
			raise NotFound("feedback_not_found")
		self._emit(events.FEEDBACK_DELETED, {"feedback_id": feedback_id, "actor_id": actor.user_id})

	# ------------------------------------------------------------------
	# Privileged lifecycle

	async def transition(
		self,
		feedback_id: str,
		actor: RoleContext,
		state: FeedbackState,
		*,
		now: Optional[datetime] = None,
	) -> FeedbackItem:
		if not actor.has_any(TRIAGE_ROLES):
			raise Forbidden("triage_forbidden")
		if state is FeedbackState.MERGED:
			raise InvalidTransition("merge_required")
		moment = now or self._clock()
		async with self.repo.transaction() as tx:
			locked = await tx.lock_feedback([feedback_id])
			item = locked.get(feedback_id)
			if item is None:
				raise NotFound("feedback_not_found")
			if item.is_merged:
				raise AlreadyMerged()
			if state not in STATE_TRANSITIONS[item.state]:
				raise InvalidTransition()
			previous = item.state
			updated = item.model_copy(update={"state": state, "updated_at": moment})
			await tx.update_feedback(updated)
		self._emit(
			events.FEEDBACK_STATE_CHANGED,
			{"feedback_id": feedback_id, "actor_id": actor.user_id, "from": previous.value, "to": state.value},
		)
		return updated

	async def review(
		self,
		feedback_id: str,
		actor: RoleContext,
		status: ModerationStatus,
		*,
		now: Optional[datetime] = None,
	) -> FeedbackItem:
		if not actor.has_any(REVIEW_ROLES):
			raise Forbidden("review_forbidden")
		if status not in REVIEW_OUTCOMES:
			raise ValidationError([{"field": "moderation_status", "message": "must be approved, rejected or needs_info"}])
		moment = now or self._clock()
		async with self.repo.transaction() as tx:
			locked = await tx.lock_feedback([feedback_id])
			item = locked.get(feedback_id)
			if item is None:
				raise NotFound("feedback_not_found")
			updated = item.model_copy(update={"moderation_status": status, "updated_at": moment})
			await tx.update_feedback(updated)
		self._emit(
			events.FEEDBACK_REVIEWED,
			{"feedback_id": feedback_id, "actor_id": actor.user_id, "moderation_status": status.value},
		)
		return updated

	# ------------------------------------------------------------------
	# Votes

	async def vote(
		self,
		feedback_id: str,
		voter: RoleContext,
		*,
		now: Optional[datetime] = None,
	) -> tuple[Vote, VoteStats]:
		item = await self._require(feedback_id)
		moment = now or self._clock()
		vote = await self.ledger.cast(item, voter, now=moment)
		obs_metrics.inc_vote("cast")
		stats = await self.ledger.stats_for([feedback_id], now=moment)
		self._emit(
			events.VOTE_CAST,
			{"feedback_id": feedback_id, "user_id": voter.user_id, "base_weight": vote.base_weight},
		)
		return vote, stats[feedback_id]

	async def unvote(self, feedback_id: str, user_id: str) -> None:
		await self._require(feedback_id)
		await self.ledger.unvote(feedback_id, user_id)
		obs_metrics.inc_vote("removed")
		self._emit(events.VOTE_REMOVED, {"feedback_id": feedback_id, "user_id": user_id})

	async def vote_status(
		self, feedback_id: str, user_id: str, *, now: Optional[datetime] = None
	) -> Optional[tuple[Vote, float]]:
		await self._require(feedback_id)
		return await self.ledger.vote_status(feedback_id, user_id, now=now)

	# ------------------------------------------------------------------
	# Duplicates and merge

	async def find_duplicates(
		self,
		*,
		feedback_id: Optional[str] = None,
		title: Optional[str] = None,
	) -> list[DuplicateMatch]:
		exclude_id: Optional[str] = None
		if feedback_id is not None:
			item = await self._require(feedback_id)
			candidate_title = item.title
			exclude_id = item.id
		elif isinstance(title, str) and title.strip():
			candidate_title = title
		else:
			raise ValidationError([{"field": "title", "message": "feedback id or title required"}])
		started = time.perf_counter()
		corpus = await self.repo.list_duplicate_candidates(exclude_id=exclude_id, limit=self.duplicate_scan_limit)
		stats = await self.ledger.stats_for([entry.id for entry in corpus])
		counts = {entry_id: entry_stats.count for entry_id, entry_stats in stats.items()}
		matches = self.detector.find(candidate_title, corpus, exclude_id=exclude_id, vote_counts=counts)
		obs_metrics.observe_duplicate_search(time.perf_counter() - started)
		return matches

	async def merge(
		self,
		source_id: str,
		target_id: str,
		actor: RoleContext,
		*,
		now: Optional[datetime] = None,
	) -> MergeResult:
		try:
			result = await self.merge_engine.merge(source_id, target_id, actor, now=now or self._clock())
		except FeedbackError as exc:
			obs_metrics.inc_merge(exc.detail)
			raise
		obs_metrics.inc_merge("ok", result.votes_migrated)
		self._emit(
			events.FEEDBACK_MERGED,
			{
				"source_id": result.source_id,
				"target_id": result.target_id,
				"actor_id": actor.user_id,
				"votes_migrated": result.votes_migrated,
				"votes_consolidated": result.votes_consolidated,
			},
		)
		return result

	# ------------------------------------------------------------------
	# Rate limits

	async def rate_limit_status(self, user_id: str, action: ActionKind) -> RateLimitDecision:
		return await self.rate_limiter.check(user_id, action)
