"""Rate-limit status route."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from intake.feedback import schemas as dto
from intake.feedback.api.deps import get_feedback_service, get_role_context
from intake.feedback.domain.models import ActionKind, RoleContext
from intake.feedback.domain.service import FeedbackService

router = APIRouter(tags=["feedback:limits"])


@router.get("/feedback/rate-limit", response_model=dto.RateLimitResponse)
async def rate_limit_status_endpoint(
	action: ActionKind = ActionKind.FEEDBACK_SUBMIT,
	actor: RoleContext = Depends(get_role_context),
	service: FeedbackService = Depends(get_feedback_service),
) -> dto.RateLimitResponse:
	decision = await service.rate_limit_status(actor.user_id, action)
	return dto.RateLimitResponse.from_domain(action, decision)
