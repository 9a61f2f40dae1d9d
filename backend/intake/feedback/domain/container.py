"""Lightweight service container shared by the feedback modules."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

import asyncpg
from redis.asyncio import Redis

from intake.feedback.domain.events import EventSink
from intake.feedback.domain.identity import IdentityContext, StaticIdentityContext
from intake.feedback.domain.models import ActionKind
from intake.feedback.domain.policy import FeedbackPolicy, load_policy
from intake.feedback.domain.rate_limiter import InMemoryRateLimitStore, RateLimiter, RateLimitStore, RateLimitWindow
from intake.feedback.domain.repository import FeedbackRepository, InMemoryFeedbackRepository
from intake.feedback.domain.service import FeedbackService
from intake.feedback.domain.similarity import DuplicateDetector
from intake.feedback.domain.voting import VoteLedger
from intake.feedback.infra.event_sink import PostgresEventSink
from intake.feedback.infra.identity_repo import PostgresIdentityContext
from intake.feedback.infra.postgres_repo import PostgresFeedbackRepository
from intake.infra.rate_limit import RedisRateLimitStore
from intake.infra.redis import RedisProxy
from intake.obs.audit import LoggingEventSink
from intake.settings import settings

DEFAULT_POLICY_PATH = Path(__file__).resolve().parents[3] / "config" / "feedback_policy.yml"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_repository: FeedbackRepository = InMemoryFeedbackRepository()
_identity: IdentityContext = StaticIdentityContext()
_events: EventSink = LoggingEventSink()
_rate_limit_store: RateLimitStore = InMemoryRateLimitStore()
_policy: Optional[FeedbackPolicy] = None
_clock: Callable[[], datetime] = _utcnow
_service: Optional[FeedbackService] = None


def rate_limit_windows() -> dict[ActionKind, RateLimitWindow]:
    return {
        ActionKind.FEEDBACK_SUBMIT: RateLimitWindow(
            limit=settings.feedback_submit_limit,
            seconds=settings.feedback_submit_window_seconds,
        ),
        ActionKind.UPLOAD: RateLimitWindow(
            limit=settings.feedback_upload_limit,
            seconds=settings.feedback_upload_window_seconds,
        ),
    }


def load_default_policy() -> FeedbackPolicy:
    """Policy file first, then any vote knobs explicitly set in the environment."""

    policy = load_policy(settings.feedback_policy_path or DEFAULT_POLICY_PATH)
    explicit = settings.model_fields_set
    votes = policy.votes
    if "vote_panel_boost" in explicit:
        votes = replace(votes, panel_boost=settings.vote_panel_boost)
    if "vote_half_life_days" in explicit:
        votes = replace(votes, half_life_days=settings.vote_half_life_days)
    if settings.village_priority_multipliers:
        villages = dict(votes.village_multipliers)
        villages.update(settings.village_priority_multipliers)
        votes = replace(votes, village_multipliers=villages)
    return replace(policy, votes=votes)


def _build_service() -> FeedbackService:
    policy = _policy or load_default_policy()
    return FeedbackService(
        repository=_repository,
        rate_limiter=RateLimiter(_rate_limit_store, rate_limit_windows(), clock=_clock),
        events_sink=_events,
        thresholds=policy.thresholds,
        ledger=VoteLedger(_repository, policy.votes, clock=_clock),
        detector=DuplicateDetector(settings.duplicate_threshold),
        edit_window=timedelta(minutes=settings.feedback_edit_window_minutes),
        duplicate_scan_limit=settings.duplicate_scan_limit,
        clock=_clock,
    )


def configure(
    *,
    repository: Optional[FeedbackRepository] = None,
    identity: Optional[IdentityContext] = None,
    events_sink: Optional[EventSink] = None,
    rate_limit_store: Optional[RateLimitStore] = None,
    policy: Optional[FeedbackPolicy] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FeedbackService:
    """Swap collaborators and rebuild the service around them."""

    global _repository, _identity, _events, _rate_limit_store, _policy, _clock, _service
    if repository is not None:
        _repository = repository
    if identity is not None:
        _identity = identity
    if events_sink is not None:
        _events = events_sink
    if rate_limit_store is not None:
        _rate_limit_store = rate_limit_store
    if policy is not None:
        _policy = policy
    if clock is not None:
        _clock = clock
    _service = _build_service()
    return _service


def configure_postgres(pool: asyncpg.Pool, *, redis_conn: Redis | RedisProxy | None = None) -> FeedbackService:
    store: Optional[RateLimitStore] = None
    if redis_conn is not None:
        store = RedisRateLimitStore(redis_conn)
    return configure(
        repository=PostgresFeedbackRepository(pool),
        identity=PostgresIdentityContext(pool),
        events_sink=PostgresEventSink(pool),
        rate_limit_store=store,
    )


def reset() -> FeedbackService:
    """Return to fresh in-process collaborators."""

    global _policy, _clock
    _policy = None
    _clock = _utcnow
    return configure(
        repository=InMemoryFeedbackRepository(),
        identity=StaticIdentityContext(),
        events_sink=LoggingEventSink(),
        rate_limit_store=InMemoryRateLimitStore(),
    )


def get_service() -> FeedbackService:
    global _service
    if _service is None:
        _service = _build_service()
    return _service


def get_identity() -> IdentityContext:
    return _identity


def get_repository() -> FeedbackRepository:
    return _repository
