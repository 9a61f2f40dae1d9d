"""Request dependencies shared by the feedback routers."""

from __future__ import annotations

from fastapi import Depends

from intake.feedback.domain import container
from intake.feedback.domain.models import Role, RoleContext
from intake.feedback.domain.service import FeedbackService
from intake.infra.auth import AuthenticatedUser, get_current_user

# Highest first; a token carrying several roles acts with the strongest one.
_ROLE_PRIORITY = (Role.ADMIN, Role.PO, Role.PM, Role.MODERATOR, Role.RESEARCHER, Role.USER)


def claimed_role(user: AuthenticatedUser) -> Role:
	for role in _ROLE_PRIORITY:
		if user.has_role(role.value):
			return role
	return Role.USER


async def get_role_context(user: AuthenticatedUser = Depends(get_current_user)) -> RoleContext:
	return await container.get_identity().resolve(user.id, claimed_role(user))


def get_feedback_service() -> FeedbackService:
	return container.get_service()
