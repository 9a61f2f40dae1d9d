"""Duplicate search and merge routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from intake.feedback import schemas as dto
from intake.feedback.api._errors import to_http_error
from intake.feedback.api.deps import get_feedback_service, get_role_context
from intake.feedback.domain.exceptions import FeedbackError
from intake.feedback.domain.models import RoleContext
from intake.feedback.domain.service import FeedbackService

router = APIRouter(tags=["feedback:duplicates"])


@router.post("/feedback/duplicates/search", response_model=dto.DuplicateListResponse)
async def search_duplicates_endpoint(
	payload: dto.DuplicateSearchRequest,
	actor: RoleContext = Depends(get_role_context),
	service: FeedbackService = Depends(get_feedback_service),
) -> dto.DuplicateListResponse:
	try:
		matches = await service.find_duplicates(title=payload.title)
	except FeedbackError as exc:
		raise to_http_error(exc) from exc
	return dto.DuplicateListResponse(items=[dto.DuplicateMatchResponse.from_domain(match) for match in matches])


@router.get("/feedback/{feedback_id}/duplicates", response_model=dto.DuplicateListResponse)
async def list_duplicates_endpoint(
	feedback_id: str,
	actor: RoleContext = Depends(get_role_context),
	service: FeedbackService = Depends(get_feedback_service),
) -> dto.DuplicateListResponse:
	try:
		matches = await service.find_duplicates(feedback_id=feedback_id)
	except FeedbackError as exc:
		raise to_http_error(exc) from exc
	return dto.DuplicateListResponse(items=[dto.DuplicateMatchResponse.from_domain(match) for match in matches])


@router.post("/feedback/{feedback_id}/merge", response_model=dto.MergeResponse)
async def merge_feedback_endpoint(
	feedback_id: str,
	payload: dto.MergeRequest,
	actor: RoleContext = Depends(get_role_context),
	service: FeedbackService = Depends(get_feedback_service),
) -> dto.MergeResponse:
	try:
		result = await service.merge(feedback_id, payload.target_id, actor)
	except FeedbackError as exc:
		raise to_http_error(exc) from exc
	return dto.MergeResponse.from_domain(result)
