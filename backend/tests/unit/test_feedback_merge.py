"""Unit tests for the merge engine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from intake.feedback.domain.exceptions import AlreadyMerged, CircularMergeError, Forbidden, MergeFailed, NotFound
from intake.feedback.domain.merge import MergeEngine
from intake.feedback.domain.models import FeedbackItem, FeedbackState, ModerationStatus, Role, RoleContext, Vote
from intake.feedback.domain.repository import InMemoryFeedbackRepository

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)
PM = RoleContext(user_id="pm-1", role=Role.PM)


def _item(item_id: str) -> FeedbackItem:
    return FeedbackItem(
        id=item_id,
        author_id="author",
        title=f"Feedback {item_id}",
        body="A body that is long enough to be accepted.",
        moderation_status=ModerationStatus.APPROVED,
        created_at=NOW,
        updated_at=NOW,
        edit_window_ends_at=NOW + timedelta(minutes=15),
    )


def _vote(vote_id: str, feedback_id: str, user_id: str, weight: float = 1.0) -> Vote:
    return Vote(id=vote_id, feedback_id=feedback_id, user_id=user_id, base_weight=weight, cast_at=NOW)


async def _repo_with(*item_ids: str, votes: tuple[Vote, ...] = ()) -> InMemoryFeedbackRepository:
    repo = InMemoryFeedbackRepository()
    for item_id in item_ids:
        await repo.insert_feedback(_item(item_id))
    for vote in votes:
        await repo.insert_vote(vote)
    return repo


@pytest.mark.asyncio
async def test_merge_moves_votes_and_consolidates_overlap() -> None:
    repo = await _repo_with(
        "src",
        "dst",
        votes=(
            _vote("v1", "src", "alice"),
            _vote("v2", "src", "bob", 2.5),
            _vote("v3", "src", "carol", 1.0),
            _vote("v4", "dst", "bob", 1.0),
            _vote("v5", "dst", "carol", 2.0),
            _vote("v6", "dst", "dave"),
        ),
    )

    result = await MergeEngine(repo).merge("src", "dst", PM, now=NOW)

    assert result.votes_migrated == 1
    assert result.votes_consolidated == 2
    on_target = {vote.user_id: vote for vote in await repo.list_votes(["dst"])}
    # N + M - K: 3 + 3 - 2 overlapping voters
    assert len(on_target) == 4
    assert on_target["bob"].base_weight == 2.5
    assert on_target["carol"].base_weight == 2.0
    assert await repo.list_votes(["src"]) == []
    source = repo.items["src"]
    assert source.state is FeedbackState.MERGED
    assert source.duplicate_of_id == "dst"


@pytest.mark.asyncio
async def test_equal_weights_keep_target_vote() -> None:
    repo = await _repo_with("src", "dst", votes=(_vote("vs", "src", "erin"), _vote("vt", "dst", "erin")))

    await MergeEngine(repo).merge("src", "dst", PM, now=NOW)

    assert [vote.id for vote in await repo.list_votes(["dst"])] == ["vt"]


@pytest.mark.asyncio
async def test_merge_back_is_circular() -> None:
    repo = await _repo_with("a", "b")
    engine = MergeEngine(repo)
    await engine.merge("b", "a", PM, now=NOW)

    with pytest.raises(CircularMergeError):
        await engine.merge("a", "b", PM, now=NOW)
    assert repo.items["a"].state is FeedbackState.NEW


@pytest.mark.asyncio
async def test_transitive_chain_is_circular() -> None:
    repo = await _repo_with("a", "b", "c")
    engine = MergeEngine(repo)
    await engine.merge("c", "b", PM, now=NOW)
    await engine.merge("b", "a", PM, now=NOW)

    with pytest.raises(CircularMergeError):
        await engine.merge("a", "c", PM, now=NOW)


@pytest.mark.asyncio
async def test_self_merge_is_circular() -> None:
    repo = await _repo_with("a")

    with pytest.raises(CircularMergeError):
        await MergeEngine(repo).merge("a", "a", PM, now=NOW)
    with pytest.raises(NotFound):
        await MergeEngine(repo).merge("ghost", "ghost", PM, now=NOW)


@pytest.mark.asyncio
async def test_preconditions() -> None:
    repo = await _repo_with("a", "b", "c")
    engine = MergeEngine(repo)

    with pytest.raises(Forbidden):
        await engine.merge("a", "b", RoleContext(user_id="u", role=Role.USER), now=NOW)
    with pytest.raises(NotFound):
        await engine.merge("a", "missing", PM, now=NOW)

    await engine.merge("a", "b", PM, now=NOW)
    with pytest.raises(AlreadyMerged):
        await engine.merge("a", "c", PM, now=NOW)
    with pytest.raises(AlreadyMerged) as excinfo:
        await engine.merge("c", "a", PM, now=NOW)
    assert excinfo.value.detail == "target_already_merged"


class ExplodingRepository(InMemoryFeedbackRepository):
    """Fails part-way through vote migration."""

    def transaction(self):
        inner = super().transaction()

        class _Wrapper:
            async def __aenter__(self):
                tx = await inner.__aenter__()
                original = tx.repoint_vote
                calls = {"n": 0}

                async def flaky(vote_id: str, feedback_id: str) -> None:
                    calls["n"] += 1
                    if calls["n"] == 2:
                        raise RuntimeError("connection reset")
                    await original(vote_id, feedback_id)

                tx.repoint_vote = flaky
                return tx

            async def __aexit__(self, *exc_info):
                return await inner.__aexit__(*exc_info)

        return _Wrapper()


@pytest.mark.asyncio
async def test_failure_mid_merge_rolls_back_everything() -> None:
    repo = ExplodingRepository()
    await repo.insert_feedback(_item("src"))
    await repo.insert_feedback(_item("dst"))
    for index, user in enumerate(("u1", "u2", "u3")):
        await repo.insert_vote(_vote(f"v{index}", "src", user))

    with pytest.raises(MergeFailed):
        await MergeEngine(repo).merge("src", "dst", PM, now=NOW)

    assert len(await repo.list_votes(["src"])) == 3
    assert await repo.list_votes(["dst"]) == []
    assert repo.items["src"].state is FeedbackState.NEW
