import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt

from physio.api.deps import get_provider
from physio.config import Settings
from physio.db import Base
from physio.errors import ApiError
from physio.main import create_app
from physio.models import Profile

JWT_SECRET = "test-jwt-secret"


class FakeProvider:
    """실제 모델 대신 고정 응답을 돌려주는 provider."""

    def __init__(self):
        self.reply = "1. Heel slides 3x10 daily.\n2. Quadriceps sets, hold 5 s.\nMonitor swelling."
        self.error: ApiError | None = None
        self.calls = []

    async def invoke(self, prompt, model, temperature, correlation_id):
        self.calls.append(
            {"prompt": prompt, "model": model, "temperature": temperature, "correlation_id": correlation_id}
        )
        if self.error is not None:
            raise self.error
        return self.reply


def make_token(therapist_id, secret=JWT_SECRET, **claims):
    payload = {
        "sub": str(therapist_id),
        "aud": "authenticated",
        "exp": datetime.now(timezone.utc) + timedelta(minutes=10),
    }
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def auth(therapist_id, **extra_headers):
    headers = {"Authorization": f"Bearer {make_token(therapist_id)}"}
    headers.update(extra_headers)
    return headers


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'physio-test.db'}",
        jwt_secret=JWT_SECRET,
        ai_api_key="test-key",
        ai_default_model="openai/gpt-4o-mini",
        ai_min_context_length=40,
        cors_origins=("http://test",),
    )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest_asyncio.fixture
async def app(settings, provider):
    app = create_app(settings)
    async with app.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    app.dependency_overrides[get_provider] = lambda: provider
    yield app
    await app.state.engine.dispose()


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


async def add_profile(app, therapist_id, first_name="Anna", last_name="Kowalska"):
    async with app.state.sessionmaker() as session:
        session.add(Profile(id=therapist_id, first_name=first_name, last_name=last_name))
        await session.commit()


@pytest_asyncio.fixture
async def therapist_a(app):
    therapist_id = uuid.uuid4()
    await add_profile(app, therapist_id)
    return therapist_id


@pytest_asyncio.fixture
async def therapist_b(app):
    therapist_id = uuid.uuid4()
    await add_profile(app, therapist_id, "Piotr", "Zielinski")
    return therapist_id


async def create_patient(client, therapist_id, first_name="Jan", last_name="Nowak", **extra):
    body = {"firstName": first_name, "lastName": last_name, **extra}
    res = await client.post("/api/patients", json=body, headers=auth(therapist_id))
    assert res.status_code == 201, res.text
    return res.json()


async def create_visit(client, therapist_id, patient_id, **body):
    body.setdefault(
        "interview", "Knee pain after running, worse on stairs for two weeks."
    )
    body.setdefault(
        "description", "Mild effusion, flexion limited to 110 degrees, no instability."
    )
    res = await client.post(f"/api/patients/{patient_id}/visits", json=body, headers=auth(therapist_id))
    assert res.status_code == 201, res.text
    return res.json()
