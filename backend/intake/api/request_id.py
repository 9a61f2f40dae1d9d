"""Request ID helper for endpoints and error handlers."""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from intake.obs import logging as obs_logging

REQUEST_ID_ATTR = "request_id"


def get_request_id(request: Optional[Request] = None, default: str = "unknown") -> str:
    """Return the id bound by middleware, else the one on ``request.state``, else ``default``."""
    rid: Optional[str] = obs_logging._REQUEST_ID.get()
    if not rid and request is not None:
        rid = getattr(request.state, REQUEST_ID_ATTR, None)
    return rid or default
