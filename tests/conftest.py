import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ENABLE_OPTIONAL_RATE_LIMITING", "false")
os.environ.setdefault("METRICS_ENABLED", "false")

from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from teamdock import database, models, utils
from teamdock.config import settings
from teamdock.discord import DiscordClient, get_discord_client
from teamdock.main import app
from teamdock.profile_store import ProfileStore

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

DEFAULT_DISCORD_USER = {
    "id": "999",
    "username": "nova",
    "discriminator": "0",
    "avatar": None,
    "email": "a@x.com",
    "verified": True,
}


class FakeDiscordAPI:
    """In-process stand-in for the Discord token and user endpoints.

    Authorization codes are single use, like the real provider.
    """

    def __init__(self) -> None:
        self.valid_codes: set[str] = {"good-code"}
        self.used_codes: set[str] = set()
        self.user: dict[str, Any] = dict(DEFAULT_DISCORD_USER)
        self.token_status = 200
        self.user_status = 200
        self.fail_with: Exception | None = None
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        if request.url.path.endswith("/oauth2/token"):
            form = parse_qs(request.content.decode("utf-8"))
            code = form.get("code", [""])[0]
            if self.token_status >= 400:
                return httpx.Response(self.token_status, json={"error": "server_error"})
            if code not in self.valid_codes or code in self.used_codes:
                return httpx.Response(
                    400,
                    json={"error": "invalid_grant", "error_description": "Invalid code"},
                )
            self.used_codes.add(code)
            return httpx.Response(
                200,
                json={
                    "access_token": f"access-{code}",
                    "token_type": "Bearer",
                    "expires_in": 604800,
                    "refresh_token": "refresh",
                    "scope": "identify email",
                },
            )
        if request.url.path.endswith("/users/@me"):
            if self.user_status >= 400:
                return httpx.Response(self.user_status, json={"message": "401: Unauthorized"})
            return httpx.Response(200, json=self.user)
        return httpx.Response(404, json={"message": "Unknown"})


@pytest.fixture
def discord_api() -> FakeDiscordAPI:
    return FakeDiscordAPI()


@pytest.fixture
def discord_client(discord_api):
    with httpx.Client(transport=httpx.MockTransport(discord_api.handler)) as http:
        yield DiscordClient(
            http,
            client_id="discord-client-id",
            client_secret="discord-client-secret",
        )


@pytest.fixture
def session():
    database.Base.metadata.drop_all(bind=engine)
    database.Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def store(session) -> ProfileStore:
    return ProfileStore(session)


@pytest.fixture
def sql_statements(session):
    statements: list[str] = []

    def _record(_conn, _cursor, statement, _parameters, _context, _executemany):
        statements.append(statement.strip().split(None, 1)[0].upper())

    event.listen(engine, "before_cursor_execute", _record)
    try:
        yield statements
    finally:
        event.remove(engine, "before_cursor_execute", _record)


@pytest.fixture
def client(session, discord_client, monkeypatch):
    monkeypatch.setattr(settings, "discord_client_id", "discord-client-id")
    monkeypatch.setattr(settings, "discord_client_secret", "discord-client-secret")
    monkeypatch.setattr(settings, "public_base_url", None)

    def override_get_db():
        yield session

    def override_get_discord_client():
        yield discord_client

    app.dependency_overrides[database.get_db] = override_get_db
    app.dependency_overrides[get_discord_client] = override_get_discord_client
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_profile(session):
    def _make_profile(**overrides: Any) -> models.Profile:
        secret_code = overrides.pop("secret_code", "123456")
        fields: dict[str, Any] = {
            "name": "Existing Hacker",
            "email": "existing@example.com",
            "secret_code_hash": utils.hash(secret_code),
            "proficiencies": ["Backend"],
        }
        fields.update(overrides)
        profile = models.Profile(**fields)
        session.add(profile)
        session.commit()
        session.refresh(profile)
        return profile

    return _make_profile
