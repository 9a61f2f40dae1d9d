"""Categorised exceptions raised by the feedback pipeline."""

from __future__ import annotations

from datetime import datetime
from typing import Mapping, Sequence

from fastapi import status


class FeedbackError(Exception):
	"""Base class for feedback pipeline errors."""

	status_code: int = status.HTTP_400_BAD_REQUEST
	detail: str = "feedback_error"
	category: str = "error"

	def __init__(self, detail: str | None = None) -> None:
		super().__init__(detail or self.detail)
		if detail:
			self.detail = detail


# --- Validation -------------------------------------------------------------


class ValidationError(FeedbackError):
	"""Malformed input; never partially applied."""

	status_code = 422
	detail = "validation_error"
	category = "validation"

	def __init__(self, errors: Sequence[Mapping[str, str]] | None = None, detail: str | None = None) -> None:
		super().__init__(detail)
		self.errors: list[dict[str, str]] = [dict(error) for error in errors or ()]


# --- Policy -----------------------------------------------------------------


class PolicyError(FeedbackError):
	"""A business rule refused the operation; state is left untouched."""

	status_code = status.HTTP_409_CONFLICT
	detail = "policy_violation"
	category = "policy"


class RateLimitExceeded(PolicyError):
	status_code = status.HTTP_429_TOO_MANY_REQUESTS
	detail = "rate_limited"

	def __init__(self, reset_at: datetime, *, limit: int = 0, detail: str | None = None) -> None:
		super().__init__(detail)
		self.reset_at = reset_at
		self.limit = limit


class AlreadyVoted(PolicyError):
	detail = "already_voted"


class AlreadyMerged(PolicyError):
	detail = "already_merged"


class CircularMergeError(PolicyError):
	detail = "circular_merge"


class InvalidTransition(PolicyError):
	detail = "invalid_transition"


class DeleteBlocked(PolicyError):
	detail = "has_merged_duplicates"


class Forbidden(PolicyError):
	status_code = status.HTTP_403_FORBIDDEN
	detail = "forbidden"


class EditWindowClosed(Forbidden):
	detail = "edit_window_closed"


# --- Lookup -----------------------------------------------------------------


class NotFound(FeedbackError):
	status_code = status.HTTP_404_NOT_FOUND
	detail = "not_found"
	category = "not_found"


# --- Consistency ------------------------------------------------------------


class ConsistencyError(FeedbackError):
	status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
	detail = "consistency_error"
	category = "consistency"


class MergeFailed(ConsistencyError):
	"""Opaque failure for an aborted merge transaction; nothing was applied."""

	detail = "merge_failed"
