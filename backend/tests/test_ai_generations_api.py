import dataclasses
import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from conftest import add_profile, auth, create_patient, create_visit
from physio.db import Base
from physio.errors import ApiError
from physio.main import create_app
from physio.models import VisitAiGeneration

DESCRIPTION_60 = "Right knee swelling, flexion 100 deg, quads weak, gait antal"


async def generate(client, therapist_id, visit_id, body=None, **headers):
    return await client.post(
        f"/api/visits/{visit_id}/ai-generation", json=body or {}, headers=auth(therapist_id, **headers)
    )


@pytest.mark.asyncio
async def test_end_to_end_generation_and_acceptance(app, client, therapist_a, provider):
    assert len(DESCRIPTION_60) == 60
    patient = await create_patient(client, therapist_a, "Jan", "Nowak")
    visit = await create_visit(client, therapist_a, patient["id"], interview=None, description=DESCRIPTION_60)

    res = await generate(client, therapist_a, visit["id"])
    assert res.status_code == 201
    created = res.json()
    assert created["status"] == "completed"
    assert created["aiResponse"]
    assert created["model"] == "openai/gpt-4o-mini"
    assert created["temperature"] == 0.7
    assert "Clinical Description:" in created["prompt"]
    assert "\n" not in created["recommendationsPreview"]
    assert res.headers["Location"].endswith(created["generationId"])

    async with app.state.sessionmaker() as session:
        count = (await session.execute(select(func.count(VisitAiGeneration.id)))).scalar_one()
    assert count == 1

    # 생성만으로는 방문이 바뀌지 않는다
    unchanged = (await client.get(f"/api/visits/{visit['id']}", headers=auth(therapist_a))).json()
    assert unchanged["etag"] == visit["etag"]
    assert unchanged["aiGenerationCount"] == 1
    assert unchanged["latestAiGenerationId"] == created["generationId"]

    res = await client.put(
        f"/api/visits/{visit['id']}/recommendations",
        json={
            "recommendations": created["aiResponse"],
            "aiGenerated": True,
            "sourceGenerationId": created["generationId"],
        },
        headers=auth(therapist_a, **{"If-Match": visit["etag"]}),
    )
    assert res.status_code == 200
    state = res.json()
    assert state["recommendationsGeneratedByAi"] is True
    assert state["recommendationsGeneratedAt"] is not None
    assert state["etag"] != visit["etag"]


@pytest.mark.asyncio
async def test_generation_request_options_reach_provider(client, therapist_a, provider):
    patient = await create_patient(client, therapist_a)
    visit = await create_visit(client, therapist_a, patient["id"])

    res = await generate(
        client,
        therapist_a,
        visit["id"],
        {
            "model": " anthropic/claude-3-haiku ",
            "temperature": 3.0,
            "promptOverrides": {"focus": "return to running", "blank": " "},
        },
        **{"X-Correlation-Id": "trace-42"},
    )
    assert res.status_code == 201
    assert res.headers["X-Correlation-Id"] == "trace-42"

    call = provider.calls[-1]
    assert call["model"] == "anthropic/claude-3-haiku"
    assert call["temperature"] == 1.2
    assert call["correlation_id"] == "trace-42"
    assert "- focus: return to running" in call["prompt"]
    assert "blank" not in call["prompt"]


@pytest.mark.asyncio
async def test_insufficient_context_does_not_call_provider(client, therapist_a, provider):
    patient = await create_patient(client, therapist_a)
    visit = await create_visit(client, therapist_a, patient["id"], interview="Sore.", description="Ok.")

    res = await generate(client, therapist_a, visit["id"])
    assert (res.status_code, res.json()["message"]) == (422, "insufficient_visit_context")
    assert provider.calls == []


@pytest.mark.asyncio
async def test_provider_failure_is_not_persisted(app, client, therapist_a, provider):
    patient = await create_patient(client, therapist_a)
    visit = await create_visit(client, therapist_a, patient["id"])
    provider.error = ApiError(429, "ai_rate_limited")

    res = await generate(client, therapist_a, visit["id"])
    assert (res.status_code, res.json()) == (429, {"message": "ai_rate_limited"})

    async with app.state.sessionmaker() as session:
        count = (await session.execute(select(func.count(VisitAiGeneration.id)))).scalar_one()
    assert count == 0


@pytest.mark.asyncio
async def test_generation_ownership(client, therapist_a, therapist_b, provider):
    patient = await create_patient(client, therapist_a)
    visit = await create_visit(client, therapist_a, patient["id"])
    created = (await generate(client, therapist_a, visit["id"])).json()

    res = await generate(client, therapist_b, visit["id"])
    assert (res.status_code, res.json()["message"]) == (403, "visit_not_owned")

    res = await client.get(f"/api/visits/{visit['id']}/ai-generations", headers=auth(therapist_b))
    assert res.status_code == 403

    res = await client.get(
        f"/api/visits/{visit['id']}/ai-generations/{created['generationId']}", headers=auth(therapist_b)
    )
    assert res.status_code == 403

    res = await generate(client, therapist_a, uuid.uuid4())
    assert (res.status_code, res.json()["message"]) == (404, "visit_missing")
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_regeneration_source_is_checked(client, therapist_a):
    patient = await create_patient(client, therapist_a)
    visit = await create_visit(client, therapist_a, patient["id"])
    first = (await generate(client, therapist_a, visit["id"])).json()

    res = await generate(client, therapist_a, visit["id"], {"regenerateFromGenerationId": first["generationId"]})
    assert res.status_code == 201
    assert res.json()["generationId"] != first["generationId"]

    res = await generate(client, therapist_a, visit["id"], {"regenerateFromGenerationId": str(uuid.uuid4())})
    assert (res.status_code, res.json()["message"]) == (404, "ai_generation_missing")

    res = await generate(
        client, therapist_a, visit["id"], {"regenerateFromGenerationId": str(uuid.UUID(int=0))}
    )
    assert (res.status_code, res.json()["message"]) == (400, "invalid_generation_id")


@pytest.mark.asyncio
async def test_generation_list_pagination(client, therapist_a):
    patient = await create_patient(client, therapist_a)
    visit = await create_visit(client, therapist_a, patient["id"])
    created_ids = []
    for _ in range(15):
        res = await generate(client, therapist_a, visit["id"])
        created_ids.append(res.json()["generationId"])

    url = f"/api/visits/{visit['id']}/ai-generations"
    page1 = (await client.get(url, params={"page": 1, "pageSize": 10}, headers=auth(therapist_a))).json()
    page2 = (await client.get(url, params={"page": 2, "pageSize": 10}, headers=auth(therapist_a))).json()

    assert len(page1["items"]) == 10
    assert len(page2["items"]) == 5
    assert page1["totalItems"] == 15
    assert page1["totalPages"] == 2
    ids1 = {item["id"] for item in page1["items"]}
    ids2 = {item["id"] for item in page2["items"]}
    assert ids1.isdisjoint(ids2)
    assert ids1 | ids2 == set(created_ids)

    stamps = [item["createdAt"] for item in page1["items"]]
    assert stamps == sorted(stamps, reverse=True)

    # 오름차순은 생성 순서 그대로
    asc = []
    for page in (1, 2):
        body = (
            await client.get(
                url, params={"page": page, "pageSize": 10, "order": "asc"}, headers=auth(therapist_a)
            )
        ).json()
        asc.extend(item["id"] for item in body["items"])
    assert asc == created_ids

    # 모르는 값은 desc
    fallback = (
        await client.get(url, params={"pageSize": 50, "order": "sideways"}, headers=auth(therapist_a))
    ).json()
    assert [item["id"] for item in fallback["items"]] == list(reversed(created_ids))

    capped = (await client.get(url, params={"pageSize": 500}, headers=auth(therapist_a))).json()
    assert capped["pageSize"] == 50

    res = await client.get(url, params={"page": 0}, headers=auth(therapist_a))
    assert (res.status_code, res.json()["message"]) == (400, "invalid_pagination")


@pytest.mark.asyncio
async def test_generation_detail(client, therapist_a):
    patient = await create_patient(client, therapist_a)
    visit = await create_visit(client, therapist_a, patient["id"])
    created = (await generate(client, therapist_a, visit["id"])).json()

    res = await client.get(
        f"/api/visits/{visit['id']}/ai-generations/{created['generationId']}", headers=auth(therapist_a)
    )
    assert res.status_code == 200
    detail = res.json()
    assert detail["visitId"] == visit["id"]
    assert detail["therapistId"] == str(therapist_a)
    assert detail["aiResponse"] == created["aiResponse"]


@pytest.mark.asyncio
async def test_accepting_a_second_generation_with_same_text(client, therapist_a, provider):
    patient = await create_patient(client, therapist_a)
    visit = await create_visit(client, therapist_a, patient["id"])
    first = (await generate(client, therapist_a, visit["id"])).json()
    second = (await generate(client, therapist_a, visit["id"])).json()
    assert first["aiResponse"] == second["aiResponse"]

    url = f"/api/visits/{visit['id']}/recommendations"
    res = await client.put(
        url,
        json={"recommendations": first["aiResponse"], "aiGenerated": True, "sourceGenerationId": first["generationId"]},
        headers=auth(therapist_a, **{"If-Match": visit["etag"]}),
    )
    assert res.status_code == 200
    accepted = res.json()

    res = await client.put(
        url,
        json={"recommendations": second["aiResponse"], "aiGenerated": True, "sourceGenerationId": second["generationId"]},
        headers=auth(therapist_a, **{"If-Match": accepted["etag"]}),
    )
    assert res.status_code == 200
    again = res.json()
    assert again["etag"] != accepted["etag"]
    assert again["recommendationsGeneratedAt"] != accepted["recommendationsGeneratedAt"]


@pytest.mark.asyncio
async def test_missing_api_key_still_checks_ownership_first(settings):
    app = create_app(dataclasses.replace(settings, ai_api_key=None))
    async with app.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    owner, stranger = uuid.uuid4(), uuid.uuid4()
    await add_profile(app, owner)
    await add_profile(app, stranger, "Piotr", "Zielinski")

    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            patient = await create_patient(client, owner)
            visit = await create_visit(client, owner, patient["id"])

            res = await generate(client, stranger, visit["id"])
            assert (res.status_code, res.json()["message"]) == (403, "visit_not_owned")

            res = await generate(client, owner, uuid.uuid4())
            assert (res.status_code, res.json()["message"]) == (404, "visit_missing")

            res = await generate(client, owner, visit["id"])
            assert (res.status_code, res.json()["message"]) == (500, "generation_configuration_invalid")
    finally:
        await app.state.engine.dispose()
