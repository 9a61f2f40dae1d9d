"""Error translation helpers for the feedback API."""

from __future__ import annotations

import math
from datetime import datetime, timezone

from fastapi import HTTPException, status
from fastapi.exceptions import RequestValidationError

from intake.feedback.domain import exceptions


def rate_limit_headers(exc: exceptions.RateLimitExceeded, *, now: datetime | None = None) -> dict[str, str]:
	moment = now or datetime.now(timezone.utc)
	retry_after = max(math.ceil((exc.reset_at - moment).total_seconds()), 0)
	return {
		"Retry-After": str(retry_after),
		"X-RateLimit-Limit": str(exc.limit),
		"X-RateLimit-Remaining": "0",
		"X-RateLimit-Reset": str(int(exc.reset_at.timestamp())),
	}


def to_http_error(exc: exceptions.FeedbackError) -> Exception:
	"""Translate domain exceptions to FastAPI errors."""
	if isinstance(exc, exceptions.ValidationError):
		return RequestValidationError(
			[
				{"loc": ["body", error.get("field", "")], "msg": error.get("message", ""), "type": "value_error"}
				for error in exc.errors
			]
			or [{"loc": ["body"], "msg": exc.detail, "type": "value_error"}]
		)
	if isinstance(exc, exceptions.RateLimitExceeded):
		return HTTPException(status_code=exc.status_code, detail=exc.detail, headers=rate_limit_headers(exc))
	if isinstance(exc, exceptions.FeedbackError):
		return HTTPException(status_code=exc.status_code, detail=exc.detail)
	return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
