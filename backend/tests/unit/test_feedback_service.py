"""Unit tests for the feedback service orchestration."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from intake.feedback.domain import events
from intake.feedback.domain.events import InMemoryEventSink
from intake.feedback.domain.exceptions import (
    AlreadyMerged,
    DeleteBlocked,
    EditWindowClosed,
    Forbidden,
    InvalidTransition,
    NotFound,
    RateLimitExceeded,
    ValidationError,
)
from intake.feedback.domain.models import (
    ActionKind,
    FeedbackState,
    ModerationSignal,
    ModerationStatus,
    ProductArea,
    Role,
    RoleContext,
)
from intake.feedback.domain.rate_limiter import InMemoryRateLimitStore, RateLimiter
from intake.feedback.domain.repository import InMemoryFeedbackRepository
from intake.feedback.domain.service import FeedbackService

START = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)
GUEST = RoleContext(user_id="guest-1", village_id="cancun")
OTHER_GUEST = RoleContext(user_id="guest-2")
PM = RoleContext(user_id="pm-1", role=Role.PM)
MODERATOR = RoleContext(user_id="mod-1", role=Role.MODERATOR)
ADMIN = RoleContext(user_id="admin-1", role=Role.ADMIN)

TITLE = "Add passport scan at kiosk"
BODY = "Scanning my passport at the check-in kiosk would save a lot of time."


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> Clock:
    return Clock(START)


@pytest.fixture
def sink() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def repo() -> InMemoryFeedbackRepository:
    return InMemoryFeedbackRepository()


@pytest.fixture
def service(repo, sink, clock) -> FeedbackService:
    return FeedbackService(repo, RateLimiter(InMemoryRateLimitStore(), clock=clock), sink, clock=clock)


@pytest.mark.asyncio
async def test_submit_redacts_scores_and_emits(service, repo, sink) -> None:
    item = await service.submit(GUEST, f"  {TITLE}  ", "Please call me at 555-867-5309 about the kiosk.")

    assert item.title == TITLE
    assert item.body == "Please call me at ***09 about the kiosk."
    assert item.has_pii is True
    assert item.moderation_status is ModerationStatus.AUTO_PENDING
    assert ModerationSignal.PII in item.moderation_signals
    assert item.state is FeedbackState.NEW
    assert item.village_id == "cancun"
    assert item.edit_window_ends_at == START + timedelta(minutes=15)
    assert repo.items[item.id] == item
    assert sink.names() == [events.FEEDBACK_CREATED]
    assert sink.events[0].payload["signals"] == ["pii"]


@pytest.mark.asyncio
async def test_clean_submission_is_approved(service) -> None:
    item = await service.submit(GUEST, TITLE, BODY, product_area="check_in")

    assert item.moderation_status is ModerationStatus.APPROVED
    assert item.moderation_signals == frozenset()
    assert item.product_area is ProductArea.CHECK_IN


@pytest.mark.asyncio
async def test_submit_validation_reports_every_field(service, repo) -> None:
    with pytest.raises(ValidationError) as excinfo:
        await service.submit(GUEST, "short", "   ")

    fields = {error["field"] for error in excinfo.value.errors}
    assert fields == {"title", "body"}
    assert repo.items == {}


@pytest.mark.asyncio
async def test_submit_rejects_unknown_area(service) -> None:
    with pytest.raises(ValidationError):
        await service.submit(GUEST, TITLE, BODY, product_area="spa")


@pytest.mark.asyncio
async def test_eleventh_submission_is_rate_limited(service, repo, clock) -> None:
    for index in range(10):
        await service.submit(GUEST, f"{TITLE} {index}", BODY)
        clock.advance(minutes=1)

    with pytest.raises(RateLimitExceeded) as excinfo:
        await service.submit(GUEST, TITLE, BODY)

    assert excinfo.value.reset_at == START + timedelta(hours=24)
    assert len(repo.items) == 10
    status = await service.rate_limit_status(GUEST.user_id, ActionKind.FEEDBACK_SUBMIT)
    assert status.allowed is False
    other = await service.rate_limit_status(OTHER_GUEST.user_id, ActionKind.FEEDBACK_SUBMIT)
    assert other.remaining == 10


@pytest.mark.asyncio
async def test_invalid_submission_does_not_consume_quota(service) -> None:
    with pytest.raises(ValidationError):
        await service.submit(GUEST, "bad", "bad")

    status = await service.rate_limit_status(GUEST.user_id, ActionKind.FEEDBACK_SUBMIT)
    assert status.remaining == 10


@pytest.mark.asyncio
async def test_get_and_list_include_vote_stats(service) -> None:
    first = await service.submit(GUEST, TITLE, BODY, product_area="check_in")
    second = await service.submit(GUEST, "Faster wifi in the lobby", BODY, product_area="payments")
    await service.vote(first.id, PM)
    await service.vote(first.id, OTHER_GUEST)

    item, stats = await service.get(first.id)
    assert item.id == first.id
    assert stats.count == 2
    assert stats.total_weight == pytest.approx(3.0)

    rows = await service.list_feedback(limit=10)
    assert [row[0].id for row in rows] == sorted([first.id, second.id], reverse=True)
    filtered = await service.list_feedback(product_area="payments")
    assert [row[0].id for row in filtered] == [second.id]
    with pytest.raises(ValidationError):
        await service.list_feedback(limit=0)
    with pytest.raises(NotFound):
        await service.get("missing")


@pytest.mark.asyncio
async def test_author_edit_within_window_rescreens(service, clock, sink) -> None:
    item = await service.submit(GUEST, TITLE, BODY)
    clock.advance(minutes=5)

    edited = await service.edit(item.id, GUEST, body="Reach me at guest@example.com about the kiosk scanner.")

    assert edited.title == TITLE
    assert edited.body == "Reach me at ***.com about the kiosk scanner."
    assert edited.has_pii is True
    assert edited.moderation_status is ModerationStatus.AUTO_PENDING
    assert edited.updated_at == START + timedelta(minutes=5)
    assert sink.names()[-1] == events.FEEDBACK_UPDATED


@pytest.mark.asyncio
async def test_title_edit_keeps_item_held_for_body_pii(service) -> None:
    item = await service.submit(GUEST, "Kiosk scanner broken", "Please call me at 555-867-5309 about the kiosk.")
    assert item.moderation_status is ModerationStatus.AUTO_PENDING
    assert ModerationSignal.PII in item.moderation_signals

    edited = await service.edit(item.id, GUEST, title="Kiosk scanner is broken")

    assert edited.title == "Kiosk scanner is broken"
    assert edited.body == item.body
    assert edited.has_pii is True
    assert ModerationSignal.PII in edited.moderation_signals
    assert edited.moderation_status is ModerationStatus.AUTO_PENDING

    replaced = await service.edit(item.id, GUEST, title=TITLE, body=BODY)

    assert replaced.has_pii is False
    assert replaced.moderation_status is ModerationStatus.APPROVED


@pytest.mark.asyncio
async def test_edit_guards(service, clock) -> None:
    item = await service.submit(GUEST, TITLE, BODY)

    with pytest.raises(Forbidden):
        await service.edit(item.id, OTHER_GUEST, title="Another title here")
    with pytest.raises(ValidationError):
        await service.edit(item.id, GUEST)
    clock.advance(minutes=16)
    with pytest.raises(EditWindowClosed):
        await service.edit(item.id, GUEST, title="Another title here")


@pytest.mark.asyncio
async def test_edit_keeps_human_review_outcome(service) -> None:
    item = await service.submit(GUEST, TITLE, BODY)
    await service.review(item.id, MODERATOR, ModerationStatus.NEEDS_INFO)

    edited = await service.edit(item.id, GUEST, body="More detail: the kiosk rejects every passport I try.")

    assert edited.moderation_status is ModerationStatus.NEEDS_INFO


@pytest.mark.asyncio
async def test_transition_rules(service, sink) -> None:
    item = await service.submit(GUEST, TITLE, BODY)

    with pytest.raises(Forbidden):
        await service.transition(item.id, GUEST, FeedbackState.TRIAGED)
    with pytest.raises(InvalidTransition):
        await service.transition(item.id, PM, FeedbackState.IN_ROADMAP)
    with pytest.raises(InvalidTransition) as excinfo:
        await service.transition(item.id, PM, FeedbackState.MERGED)
    assert excinfo.value.detail == "merge_required"

    triaged = await service.transition(item.id, PM, FeedbackState.TRIAGED)
    roadmap = await service.transition(item.id, PM, FeedbackState.IN_ROADMAP)

    assert triaged.state is FeedbackState.TRIAGED
    assert roadmap.state is FeedbackState.IN_ROADMAP
    assert sink.events[-1].payload == {
        "feedback_id": item.id,
        "actor_id": PM.user_id,
        "from": "triaged",
        "to": "in_roadmap",
    }


@pytest.mark.asyncio
async def test_review_requires_privilege_and_final_outcome(service) -> None:
    item = await service.submit(GUEST, TITLE, BODY)

    with pytest.raises(Forbidden):
        await service.review(item.id, GUEST, ModerationStatus.APPROVED)
    with pytest.raises(ValidationError):
        await service.review(item.id, MODERATOR, ModerationStatus.AUTO_PENDING)

    reviewed = await service.review(item.id, MODERATOR, ModerationStatus.REJECTED)
    assert reviewed.moderation_status is ModerationStatus.REJECTED


@pytest.mark.asyncio
async def test_vote_lifecycle(service, sink) -> None:
    item = await service.submit(GUEST, TITLE, BODY)

    vote, stats = await service.vote(item.id, PM)
    assert vote.base_weight == 2.0
    assert stats.count == 1
    status = await service.vote_status(item.id, PM.user_id)
    assert status is not None and status[0].id == vote.id

    await service.unvote(item.id, PM.user_id)
    assert await service.vote_status(item.id, PM.user_id) is None
    with pytest.raises(NotFound):
        await service.unvote(item.id, PM.user_id)
    assert sink.names()[-2:] == [events.VOTE_CAST, events.VOTE_REMOVED]


@pytest.mark.asyncio
async def test_concurrent_votes_from_one_user_count_once(service, repo) -> None:
    item = await service.submit(GUEST, TITLE, BODY)

    results = await asyncio.gather(service.vote(item.id, PM), service.vote(item.id, PM), return_exceptions=True)

    assert sorted(type(result).__name__ for result in results) == ["AlreadyVoted", "tuple"]
    assert len(await repo.list_votes([item.id])) == 1


@pytest.mark.asyncio
async def test_duplicates_and_merge(service, sink) -> None:
    original = await service.submit(GUEST, TITLE, BODY)
    duplicate = await service.submit(OTHER_GUEST, "Add passport scanning to kiosks", BODY)
    await service.submit(OTHER_GUEST, "Faster wifi in the lobby", BODY)
    await service.vote(duplicate.id, OTHER_GUEST)

    by_id = await service.find_duplicates(feedback_id=original.id)
    assert [match.item.id for match in by_id] == [duplicate.id]
    assert by_id[0].vote_count == 1
    by_title = await service.find_duplicates(title="add passport scans at the kiosk")
    assert {match.item.id for match in by_title} == {original.id, duplicate.id}
    with pytest.raises(ValidationError):
        await service.find_duplicates()

    result = await service.merge(duplicate.id, original.id, PM)

    assert result.votes_migrated == 1
    assert sink.names()[-1] == events.FEEDBACK_MERGED
    _, stats = await service.get(original.id)
    assert stats.count == 1
    assert await service.find_duplicates(feedback_id=original.id) == []
    with pytest.raises(AlreadyMerged):
        await service.vote(duplicate.id, PM)
    with pytest.raises(AlreadyMerged):
        await service.transition(duplicate.id, PM, FeedbackState.CLOSED)


@pytest.mark.asyncio
async def test_delete_rules(service, repo) -> None:
    target = await service.submit(GUEST, TITLE, BODY)
    source = await service.submit(OTHER_GUEST, "Add passport scanning to kiosks", BODY)
    await service.merge(source.id, target.id, PM)

    with pytest.raises(Forbidden):
        await service.delete(target.id, OTHER_GUEST)
    with pytest.raises(DeleteBlocked):
        await service.delete(target.id, GUEST)

    await service.delete(source.id, ADMIN)
    await service.delete(target.id, GUEST)
    assert repo.items == {}
    with pytest.raises(NotFound):
        await service.delete(target.id, GUEST)


class BrokenSink:
    def emit(self, event, payload) -> None:
        raise RuntimeError("sink offline")


@pytest.mark.asyncio
async def test_sink_failure_does_not_fail_the_operation(repo, clock) -> None:
    service = FeedbackService(repo, RateLimiter(InMemoryRateLimitStore(), clock=clock), BrokenSink(), clock=clock)

    item = await service.submit(GUEST, TITLE, BODY)

    assert item.id in repo.items
