import uuid

import pytest
from fastapi import APIRouter
from jose import jwt

from conftest import JWT_SECRET, auth, make_token


@pytest.mark.asyncio
async def test_health(client):
    res = await client.get("/health")
    assert res.json() == {"ok": True}


@pytest.mark.asyncio
async def test_missing_or_bad_token_is_unauthorized(client):
    res = await client.get("/api/patients")
    assert (res.status_code, res.json()) == (401, {"message": "invalid_token"})

    res = await client.get(
        "/api/patients", headers={"Authorization": f"Bearer {make_token(uuid.uuid4(), secret='wrong')}"}
    )
    assert res.status_code == 401

    res = await client.get(
        "/api/patients", headers={"Authorization": f"Bearer {make_token('not-a-uuid')}"}
    )
    assert (res.status_code, res.json()["message"]) == (401, "invalid_token")


@pytest.mark.asyncio
async def test_user_id_claim_is_accepted(client, therapist_a):
    token = jwt.encode({"user_id": str(therapist_a), "aud": "authenticated"}, JWT_SECRET, algorithm="HS256")
    res = await client.get("/api/profile", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 200


@pytest.mark.asyncio
async def test_malformed_ids_are_bad_request(client, therapist_a):
    res = await client.get("/api/visits/not-a-uuid", headers=auth(therapist_a))
    assert res.status_code == 400
    body = res.json()
    assert body["message"] == "invalid_request"
    assert body["errors"]


@pytest.mark.asyncio
async def test_correlation_id_is_generated_or_echoed(client):
    res = await client.get("/health")
    assert len(res.headers["X-Correlation-Id"]) == 32

    res = await client.get("/health", headers={"X-Correlation-Id": "abc-123"})
    assert res.headers["X-Correlation-Id"] == "abc-123"

    res = await client.get("/health", headers={"X-Correlation-Id": "x" * 129})
    assert res.headers["X-Correlation-Id"] != "x" * 129


@pytest.mark.asyncio
async def test_unexpected_errors_are_masked(app, client):
    router = APIRouter()

    @router.get("/boom")
    async def boom():
        raise RuntimeError("secret detail")

    app.include_router(router)

    res = await client.get("/boom")
    assert res.status_code == 500
    assert res.json() == {"message": "internal_error"}
    assert "X-Correlation-Id" in res.headers
