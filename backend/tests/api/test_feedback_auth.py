"""Bearer-token authentication for the feedback routes."""

from __future__ import annotations

import pytest

from intake.infra import jwt as jwt_helper
from intake.settings import settings


def _bearer(token: str) -> dict[str, str]:
	return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_bearer_token_accepted_outside_dev(api_client, monkeypatch) -> None:
	monkeypatch.setattr(settings, "environment", "production")
	token = jwt_helper.encode_access({"sub": "po-1", "roles": ["PO"]})
	created = await api_client.post(
		"/feedback",
		json={"title": "Mobile keys for every room", "body": "Guests keep losing plastic key cards at the pool."},
		headers=_bearer(token),
	)
	assert created.status_code == 201

	vote = await api_client.post(f"/feedback/{created.json()['id']}/vote", headers=_bearer(token))

	assert vote.status_code == 201
	assert vote.json()["vote"]["base_weight"] == 2.5


@pytest.mark.asyncio
async def test_expired_or_forged_tokens_rejected(api_client) -> None:
	expired = jwt_helper.encode_access({"sub": "u-1"}, ttl_seconds=-60)
	forged = jwt_helper.encode_access({"sub": "u-1"}) + "x"

	for token in (expired, forged, "not-a-jwt"):
		resp = await api_client.get("/feedback", headers=_bearer(token))
		assert resp.status_code == 401
		assert resp.json()["detail"] == "invalid_token"


@pytest.mark.asyncio
async def test_token_without_subject_rejected(api_client) -> None:
	token = jwt_helper.encode_access({"roles": "ADMIN"})

	resp = await api_client.get("/feedback", headers=_bearer(token))

	assert resp.status_code == 401
