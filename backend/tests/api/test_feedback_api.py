"""API tests for the feedback routes."""

from __future__ import annotations

import pytest

from intake.feedback.domain.models import ProductArea, Role
from intake.settings import settings

TITLE = "Add passport scan at kiosk"
BODY = "Scanning my passport at the check-in kiosk would save a lot of time."


def _headers(user_id: str, roles: str = "") -> dict[str, str]:
	headers = {"X-User-Id": user_id}
	if roles:
		headers["X-User-Roles"] = roles
	return headers


GUEST = _headers("guest-1")
OTHER = _headers("guest-2")
PM = _headers("pm-1", "PM")


async def _submit(client, headers=GUEST, title=TITLE, body=BODY, **extra) -> dict:
	resp = await client.post("/feedback", json={"title": title, "body": body, **extra}, headers=headers)
	assert resp.status_code == 201, resp.text
	return resp.json()


@pytest.mark.asyncio
async def test_submit_and_fetch(api_client) -> None:
	created = await _submit(api_client, body="Call me at 555-867-5309 about the kiosk please.", product_area="check_in")

	assert created["body"] == "Call me at ***09 about the kiosk please."
	assert created["moderation_status"] == "auto_pending"
	assert created["moderation_signals"] == ["pii"]
	assert created["product_area"] == "check_in"

	resp = await api_client.get(f"/feedback/{created['id']}", headers=OTHER)
	assert resp.status_code == 200
	assert resp.json()["votes"] == {"count": 0, "total_weight": 0.0, "total_decayed_weight": 0.0}


@pytest.mark.asyncio
async def test_requires_identity(api_client) -> None:
	resp = await api_client.post("/feedback", json={"title": TITLE, "body": BODY})

	assert resp.status_code == 401


@pytest.mark.asyncio
async def test_dev_headers_ignored_outside_dev(api_client, monkeypatch) -> None:
	monkeypatch.setattr(settings, "environment", "production")

	resp = await api_client.get("/feedback", headers=GUEST)

	assert resp.status_code == 401


@pytest.mark.asyncio
async def test_validation_errors_are_field_level(api_client) -> None:
	resp = await api_client.post("/feedback", json={"title": "short", "body": BODY}, headers=GUEST)

	assert resp.status_code == 422
	payload = resp.json()
	assert payload["detail"] == "validation_error"
	assert payload["errors"][0]["loc"] == ["body", "title"]


@pytest.mark.asyncio
async def test_rate_limit_headers(api_client) -> None:
	for index in range(10):
		await _submit(api_client, title=f"{TITLE} {index}")

	resp = await api_client.post("/feedback", json={"title": TITLE, "body": BODY}, headers=GUEST)

	assert resp.status_code == 429
	assert resp.json()["detail"] == "rate_limited"
	assert resp.headers["X-RateLimit-Limit"] == "10"
	assert resp.headers["X-RateLimit-Remaining"] == "0"
	assert int(resp.headers["Retry-After"]) > 0

	status = await api_client.get("/feedback/rate-limit", headers=GUEST)
	assert status.status_code == 200
	assert status.json()["allowed"] is False
	assert status.json()["remaining"] == 0


@pytest.mark.asyncio
async def test_list_filters_and_bounds(api_client) -> None:
	await _submit(api_client, product_area="payments")
	await _submit(api_client, title="Faster wifi in the lobby", product_area="check_in")

	resp = await api_client.get("/feedback", params={"product_area": "payments"}, headers=GUEST)
	assert resp.status_code == 200
	assert [item["product_area"] for item in resp.json()["items"]] == ["payments"]

	too_many = await api_client.get("/feedback", params={"limit": 500}, headers=GUEST)
	assert too_many.status_code == 422


@pytest.mark.asyncio
async def test_vote_flow(api_client) -> None:
	created = await _submit(api_client)
	url = f"/feedback/{created['id']}/vote"

	first = await api_client.post(url, headers=PM)
	assert first.status_code == 201
	assert first.json()["vote"]["base_weight"] == 2.0
	assert first.json()["stats"]["count"] == 1

	again = await api_client.post(url, headers=PM)
	assert again.status_code == 409
	assert again.json()["detail"] == "already_voted"

	status = await api_client.get(url, headers=PM)
	assert status.json()["has_voted"] is True

	removed = await api_client.delete(url, headers=PM)
	assert removed.status_code == 204
	missing = await api_client.delete(url, headers=PM)
	assert missing.status_code == 404
	assert missing.json()["detail"] == "vote_not_found"


@pytest.mark.asyncio
async def test_stored_identity_outranks_claimed_role(api_client, identity) -> None:
	identity.register("researcher-1", Role.RESEARCHER, panel_areas=[ProductArea.CHECK_IN])
	created = await _submit(api_client, product_area="check_in")

	resp = await api_client.post(f"/feedback/{created['id']}/vote", headers=_headers("researcher-1", "ADMIN"))

	assert resp.status_code == 201
	assert resp.json()["vote"]["base_weight"] == 2.0


@pytest.mark.asyncio
async def test_duplicate_search_and_merge(api_client) -> None:
	original = await _submit(api_client)
	duplicate = await _submit(api_client, headers=OTHER, title="Add passport scanning to kiosks")

	search = await api_client.post("/feedback/duplicates/search", json={"title": TITLE}, headers=GUEST)
	assert search.status_code == 200
	assert {match["feedback"]["id"] for match in search.json()["items"]} == {original["id"], duplicate["id"]}

	listed = await api_client.get(f"/feedback/{original['id']}/duplicates", headers=GUEST)
	assert [match["feedback"]["id"] for match in listed.json()["items"]] == [duplicate["id"]]

	forbidden = await api_client.post(
		f"/feedback/{duplicate['id']}/merge", json={"target_id": original["id"]}, headers=GUEST
	)
	assert forbidden.status_code == 403

	merged = await api_client.post(f"/feedback/{duplicate['id']}/merge", json={"target_id": original["id"]}, headers=PM)
	assert merged.status_code == 200
	assert merged.json()["source_id"] == duplicate["id"]

	back = await api_client.post(f"/feedback/{original['id']}/merge", json={"target_id": duplicate["id"]}, headers=PM)
	assert back.status_code == 409
	assert back.json()["detail"] == "circular_merge"

	fetched = await api_client.get(f"/feedback/{duplicate['id']}", headers=GUEST)
	assert fetched.json()["state"] == "merged"
	assert fetched.json()["duplicate_of_id"] == original["id"]


@pytest.mark.asyncio
async def test_edit_state_review_and_delete(api_client) -> None:
	created = await _submit(api_client)
	item_url = f"/feedback/{created['id']}"

	edited = await api_client.patch(item_url, json={"title": "Add passport scanning at the kiosk"}, headers=GUEST)
	assert edited.status_code == 200
	assert edited.json()["title"] == "Add passport scanning at the kiosk"

	not_author = await api_client.patch(item_url, json={"title": "Hijacked title here"}, headers=OTHER)
	assert not_author.status_code == 403

	triaged = await api_client.post(f"{item_url}/state", json={"state": "triaged"}, headers=PM)
	assert triaged.json()["state"] == "triaged"
	bad = await api_client.post(f"{item_url}/state", json={"state": "merged"}, headers=PM)
	assert bad.status_code == 409

	reviewed = await api_client.post(
		f"{item_url}/review", json={"moderation_status": "needs_info"}, headers=_headers("mod-1", "MODERATOR")
	)
	assert reviewed.json()["moderation_status"] == "needs_info"

	deleted = await api_client.delete(item_url, headers=GUEST)
	assert deleted.status_code == 204
	gone = await api_client.get(item_url, headers=GUEST)
	assert gone.status_code == 404


@pytest.mark.asyncio
async def test_health_and_metrics(api_client, monkeypatch) -> None:
	live = await api_client.get("/health/live")
	assert live.json() == {"status": "ok"}

	monkeypatch.setattr(settings, "obs_metrics_public", False)
	monkeypatch.setattr(settings, "obs_admin_token", None)
	closed = await api_client.get("/metrics")
	assert closed.status_code == 403

	monkeypatch.setattr(settings, "obs_metrics_public", True)
	await _submit(api_client)
	opened = await api_client.get("/metrics")
	assert opened.status_code == 200
	assert "feedback_submitted_total" in opened.text
