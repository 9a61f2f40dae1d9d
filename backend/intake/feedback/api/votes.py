"""Vote routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from intake.feedback import schemas as dto
from intake.feedback.api._errors import to_http_error
from intake.feedback.api.deps import get_feedback_service, get_role_context
from intake.feedback.domain.exceptions import FeedbackError
from intake.feedback.domain.models import RoleContext
from intake.feedback.domain.service import FeedbackService

router = APIRouter(tags=["feedback:votes"])


@router.post("/feedback/{feedback_id}/vote", response_model=dto.VoteCastResponse, status_code=201)
async def cast_vote_endpoint(
	feedback_id: str,
	actor: RoleContext = Depends(get_role_context),
	service: FeedbackService = Depends(get_feedback_service),
) -> dto.VoteCastResponse:
	try:
		vote, stats = await service.vote(feedback_id, actor)
	except FeedbackError as exc:
		raise to_http_error(exc) from exc
	return dto.VoteCastResponse(vote=dto.VoteResponse.from_domain(vote), stats=dto.VoteStatsResponse.from_domain(stats))


@router.delete(
	"/feedback/{feedback_id}/vote",
	status_code=204,
	response_class=Response,
	response_model=None,
)
async def remove_vote_endpoint(
	feedback_id: str,
	actor: RoleContext = Depends(get_role_context),
	service: FeedbackService = Depends(get_feedback_service),
) -> None:
	try:
		await service.unvote(feedback_id, actor.user_id)
	except FeedbackError as exc:
		raise to_http_error(exc) from exc
	return None


@router.get("/feedback/{feedback_id}/vote", response_model=dto.VoteStatusResponse)
async def vote_status_endpoint(
	feedback_id: str,
	actor: RoleContext = Depends(get_role_context),
	service: FeedbackService = Depends(get_feedback_service),
) -> dto.VoteStatusResponse:
	try:
		found = await service.vote_status(feedback_id, actor.user_id)
	except FeedbackError as exc:
		raise to_http_error(exc) from exc
	if found is None:
		return dto.VoteStatusResponse(has_voted=False)
	vote, decayed = found
	return dto.VoteStatusResponse(has_voted=True, vote=dto.VoteResponse.from_domain(vote, decayed))
