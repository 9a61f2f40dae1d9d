from __future__ import annotations

from typing import Any, Mapping

from intake.obs import metrics
from intake.obs.logging import get_logger

audit_logger = get_logger("audit.feedback")


class LoggingEventSink:
	"""Writes pipeline events to the audit log channel."""

	def emit(self, event: str, payload: Mapping[str, Any]) -> None:
		filtered = {key: value for key, value in payload.items() if value is not None}
		try:
			audit_logger.info(event, extra={"event": event, **filtered})
		except Exception:
			metrics.inc_event_dropped(event)
			audit_logger.exception("audit_emit_failed", extra={"event": event})
