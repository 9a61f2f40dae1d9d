"""Feedback item routes: submission, reads, author edits and privileged lifecycle."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from intake.feedback import schemas as dto
from intake.feedback.api._errors import to_http_error
from intake.feedback.api.deps import get_feedback_service, get_role_context
from intake.feedback.domain.exceptions import FeedbackError
from intake.feedback.domain.models import FeedbackState, RoleContext
from intake.feedback.domain.service import FeedbackService

router = APIRouter(tags=["feedback:items"])


@router.post("/feedback", response_model=dto.FeedbackResponse, status_code=201)
async def submit_feedback_endpoint(
	payload: dto.FeedbackCreateRequest,
	actor: RoleContext = Depends(get_role_context),
	service: FeedbackService = Depends(get_feedback_service),
) -> dto.FeedbackResponse:
	try:
		item = await service.submit(
			actor,
			payload.title,
			payload.body,
			product_area=payload.product_area,
			village_id=payload.village_id,
		)
	except FeedbackError as exc:
		raise to_http_error(exc) from exc
	return dto.FeedbackResponse.from_domain(item)


@router.get("/feedback", response_model=dto.FeedbackListResponse)
async def list_feedback_endpoint(
	state: Optional[FeedbackState] = None,
	product_area: Optional[str] = None,
	limit: int = Query(default=20),
	offset: int = Query(default=0),
	actor: RoleContext = Depends(get_role_context),
	service: FeedbackService = Depends(get_feedback_service),
) -> dto.FeedbackListResponse:
	try:
		rows = await service.list_feedback(state=state, product_area=product_area, limit=limit, offset=offset)
	except FeedbackError as exc:
		raise to_http_error(exc) from exc
	return dto.FeedbackListResponse(
		items=[dto.FeedbackResponse.from_domain(item, stats) for item, stats in rows],
		limit=limit,
		offset=offset,
	)


@router.get("/feedback/{feedback_id}", response_model=dto.FeedbackResponse)
async def get_feedback_endpoint(
	feedback_id: str,
	actor: RoleContext = Depends(get_role_context),
	service: FeedbackService = Depends(get_feedback_service),
) -> dto.FeedbackResponse:
	try:
		item, stats = await service.get(feedback_id)
	except FeedbackError as exc:
		raise to_http_error(exc) from exc
	return dto.FeedbackResponse.from_domain(item, stats)


@router.patch("/feedback/{feedback_id}", response_model=dto.FeedbackResponse)
async def edit_feedback_endpoint(
	feedback_id: str,
	payload: dto.FeedbackUpdateRequest,
	actor: RoleContext = Depends(get_role_context),
	service: FeedbackService = Depends(get_feedback_service),
) -> dto.FeedbackResponse:
	try:
		item = await service.edit(feedback_id, actor, title=payload.title, body=payload.body)
	except FeedbackError as exc:
		raise to_http_error(exc) from exc
	return dto.FeedbackResponse.from_domain(item)


@router.delete(
	"/feedback/{feedback_id}",
	status_code=204,
	response_class=Response,
	response_model=None,
)
async def delete_feedback_endpoint(
	feedback_id: str,
	actor: RoleContext = Depends(get_role_context),
	service: FeedbackService = Depends(get_feedback_service),
) -> None:
	try:
		await service.delete(feedback_id, actor)
	except FeedbackError as exc:
		raise to_http_error(exc) from exc
	return None


@router.post("/feedback/{feedback_id}/state", response_model=dto.FeedbackResponse)
async def change_state_endpoint(
	feedback_id: str,
	payload: dto.StateChangeRequest,
	actor: RoleContext = Depends(get_role_context),
	service: FeedbackService = Depends(get_feedback_service),
) -> dto.FeedbackResponse:
	try:
		item = await service.transition(feedback_id, actor, payload.state)
	except FeedbackError as exc:
		raise to_http_error(exc) from exc
	return dto.FeedbackResponse.from_domain(item)


@router.post("/feedback/{feedback_id}/review", response_model=dto.FeedbackResponse)
async def review_feedback_endpoint(
	feedback_id: str,
	payload: dto.ReviewRequest,
	actor: RoleContext = Depends(get_role_context),
	service: FeedbackService = Depends(get_feedback_service),
) -> dto.FeedbackResponse:
	try:
		item = await service.review(feedback_id, actor, payload.moderation_status)
	except FeedbackError as exc:
		raise to_http_error(exc) from exc
	return dto.FeedbackResponse.from_domain(item)
