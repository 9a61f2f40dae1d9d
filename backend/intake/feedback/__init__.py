"""Feedback intake package: screening, votes, duplicates and merges."""

from __future__ import annotations

from intake.feedback.api import router

__all__ = ["router"]
