"""Event sink that appends pipeline events to the ``feedback_events`` table."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping

import asyncpg

from intake.obs import metrics as obs_metrics
from intake.obs.audit import LoggingEventSink

logger = logging.getLogger(__name__)


class PostgresEventSink:
	"""Schedules the insert on the running loop and returns immediately.

	Every event is also written to the audit log, so a failed insert is logged,
	counted and still recoverable from the log stream.
	"""

	def __init__(self, pool: asyncpg.Pool) -> None:
		self._pool = pool
		self._audit = LoggingEventSink()
		self._pending: set[asyncio.Task] = set()

	def emit(self, event: str, payload: Mapping[str, Any]) -> None:
		self._audit.emit(event, payload)
		try:
			task = asyncio.get_running_loop().create_task(self._persist(event, dict(payload)))
		except RuntimeError:
			obs_metrics.inc_event_dropped(event)
			logger.error("feedback event emitted outside an event loop", extra={"event": event})
			return
		self._pending.add(task)
		task.add_done_callback(self._pending.discard)

	async def _persist(self, event: str, payload: dict[str, Any]) -> None:
		try:
			await self._pool.execute(
				"INSERT INTO feedback_events (event, payload) VALUES ($1, $2::jsonb)",
				event,
				json.dumps(payload, default=str),
			)
		except Exception:
			obs_metrics.inc_event_dropped(event)
			logger.exception("feedback event persist failed", extra={"event": event})

	async def drain(self) -> None:
		if self._pending:
			await asyncio.gather(*self._pending, return_exceptions=True)
