from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from main import create_app
from scout_config import Settings
from scout_context import build_context

REGISTRATION_CODE = "COACH2024"


class FakeClock:
    def __init__(self, start: datetime = datetime(2024, 6, 20, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        environment="test",
        data_dir=str(tmp_path),
        db_file=str(tmp_path / "scoutpro.db"),
        upload_dir=str(tmp_path / "uploads"),
        jwt_secret="test-secret",
        registration_code=REGISTRATION_CODE,
        bcrypt_rounds=4,
    )


@pytest.fixture()
def ctx(settings, clock):
    context = build_context(settings, clock=clock)
    context.start()
    try:
        yield context
    finally:
        context.close()


@pytest.fixture()
def client(settings, clock):
    app = create_app(settings, clock=clock)
    with TestClient(app) as test_client:
        yield test_client


def register(client, email="coach@example.com", password="password123", code=REGISTRATION_CODE):
    return client.post(
        "/api/auth/register",
        json={"email": email, "password": password, "registrationCode": code},
    )


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_headers(client):
    resp = register(client)
    assert resp.status_code == 201
    return bearer(resp.json()["token"])
