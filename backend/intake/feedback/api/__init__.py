"""FastAPI routers for the feedback domain."""

from __future__ import annotations

from fastapi import APIRouter

from intake.feedback.api import duplicates, items, limits, votes

router = APIRouter()

# fixed paths before /feedback/{feedback_id}
router.include_router(limits.router)
router.include_router(duplicates.router)
router.include_router(items.router)
router.include_router(votes.router)

__all__ = ["router"]
