"""Central registry for Prometheus metrics used across the service."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNTER = Counter(
	"intake_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"intake_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

FEEDBACK_SUBMITTED = Counter(
	"feedback_submitted_total",
	"Feedback items accepted, by initial moderation status",
	["moderation_status"],
)

FEEDBACK_RATE_LIMITED = Counter(
	"feedback_rate_limited_total",
	"Requests refused by the sliding-window limiter",
	["action"],
)

FEEDBACK_VOTES = Counter(
	"feedback_votes_total",
	"Vote ledger writes",
	["action"],
)

FEEDBACK_MERGES = Counter(
	"feedback_merges_total",
	"Merge attempts by outcome",
	["result"],
)

FEEDBACK_VOTES_MIGRATED = Counter(
	"feedback_votes_migrated_total",
	"Votes re-pointed onto a canonical item during merges",
)

FEEDBACK_DUPLICATE_SEARCHES = Counter(
	"feedback_duplicate_searches_total",
	"Duplicate searches executed",
)

FEEDBACK_DUPLICATE_SCAN = Histogram(
	"feedback_duplicate_scan_seconds",
	"Time spent ranking a duplicate corpus",
	buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5),
)

FEEDBACK_EVENTS_DROPPED = Counter(
	"feedback_events_dropped_total",
	"Events the sink failed to persist",
	["event"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_feedback_submitted(moderation_status: str) -> None:
	FEEDBACK_SUBMITTED.labels(moderation_status=moderation_status).inc()


def inc_rate_limited(action: str) -> None:
	FEEDBACK_RATE_LIMITED.labels(action=action).inc()


def inc_vote(action: str) -> None:
	FEEDBACK_VOTES.labels(action=action).inc()


def inc_merge(result: str, migrated: int = 0) -> None:
	FEEDBACK_MERGES.labels(result=result).inc()
	if migrated:
		FEEDBACK_VOTES_MIGRATED.inc(migrated)


def observe_duplicate_search(elapsed_seconds: float) -> None:
	FEEDBACK_DUPLICATE_SEARCHES.inc()
	FEEDBACK_DUPLICATE_SCAN.observe(elapsed_seconds)


def inc_event_dropped(event: str) -> None:
	FEEDBACK_EVENTS_DROPPED.labels(event=event).inc()
