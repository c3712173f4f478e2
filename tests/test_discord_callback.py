from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from teamdock import models, utils
from teamdock.config import settings

pytestmark = pytest.mark.integration


def _query(location: str) -> dict[str, list[str]]:
    return parse_qs(urlparse(location).query)


def _callback(client, **params):
    return client.get("/auth/callback", params=params, follow_redirects=False)


def test_initiate_redirects_to_discord(client):
    response = client.get("/auth/initiate", follow_redirects=False)

    assert response.status_code == 302
    location = urlparse(response.headers["location"])
    assert f"{location.scheme}://{location.netloc}{location.path}" == (
        "https://discord.com/api/oauth2/authorize"
    )
    params = parse_qs(location.query)
    assert params["client_id"] == ["discord-client-id"]
    assert params["redirect_uri"] == ["http://testserver/auth/callback"]
    assert params["response_type"] == ["code"]
    assert params["scope"] == ["identify email"]


def test_initiate_without_client_id_returns_problem(client, monkeypatch):
    monkeypatch.setattr(settings, "discord_client_id", None)
    client.app.dependency_overrides.clear()

    response = client.get("/auth/initiate", follow_redirects=False)

    assert response.status_code == 500
    assert response.json()["error_code"] == "discord_oauth_not_configured"


def test_provider_error_redirects_without_network_or_store_calls(
    client, discord_api, sql_statements
):
    response = _callback(client, error="access_denied")

    assert response.status_code == 302
    assert response.headers["location"] == "http://testserver/?error=discord_auth_failed"
    assert discord_api.requests == []
    assert sql_statements == []
    assert "set-cookie" not in response.headers


def test_provider_error_wins_over_code(client, discord_api):
    response = _callback(client, error="access_denied", code="good-code")

    assert response.headers["location"] == "http://testserver/?error=discord_auth_failed"
    assert discord_api.requests == []


def test_missing_code_redirects_without_network_or_store_calls(
    client, discord_api, sql_statements
):
    response = _callback(client)

    assert response.status_code == 302
    assert response.headers["location"] == "http://testserver/?error=no_code"
    assert discord_api.requests == []
    assert sql_statements == []


def test_new_identity_creates_profile(client, session, sql_statements):
    response = _callback(client, code="good-code")

    assert response.status_code == 302
    profiles = session.query(models.Profile).all()
    assert len(profiles) == 1
    profile = profiles[0]
    assert profile.discord_id == "999"
    assert profile.email == "a@x.com"
    assert profile.name == "nova"
    assert profile.secret_code_hash
    assert profile.discord_avatar.startswith("https://cdn.discordapp.com/embed/avatars/")
    assert sql_statements.count("INSERT") == 1
    assert sql_statements.count("UPDATE") == 0

    assert response.headers["location"] == (
        f"http://testserver/?discord_auth=success&profile_id={profile.id}"
        "&username=nova&is_new_user=true"
    )


def test_success_sets_session_cookie(client, session):
    response = _callback(client, code="good-code")

    profile = session.query(models.Profile).one()
    cookie = response.headers["set-cookie"]
    assert cookie.startswith(f"discord_session={profile.id};")
    lowered = cookie.lower()
    assert "httponly" in lowered
    assert "samesite=lax" in lowered
    assert "max-age=2592000" in lowered
    assert "secure" not in lowered


def test_session_cookie_is_secure_outside_local_environments(client, monkeypatch):
    monkeypatch.setattr(settings, "environment", "production")

    response = _callback(client, code="good-code")

    assert "secure" in response.headers["set-cookie"].lower()


def test_linked_identity_only_refreshes_presence(
    client, session, make_profile, sql_statements
):
    existing = make_profile(name="Old Name", email="a@x.com", discord_id="999")
    previous_active = existing.last_active_at
    sql_statements.clear()

    response = _callback(client, code="good-code")

    assert sql_statements.count("INSERT") == 0
    assert sql_statements.count("UPDATE") == 1
    params = _query(response.headers["location"])
    assert params == {
        "discord_auth": ["success"],
        "profile_id": [existing.id],
        "username": ["Old Name"],
    }
    assert "username=Old+Name" in response.headers["location"]

    session.expire_all()
    refreshed = session.query(models.Profile).one()
    assert refreshed.name == "Old Name"
    assert refreshed.discord_avatar is not None
    assert refreshed.last_active_at >= previous_active


def test_email_match_links_existing_profile(client, session, make_profile, sql_statements):
    existing = make_profile(name="Email Person", email="A@X.com", discord_id=None)
    sql_statements.clear()

    response = _callback(client, code="good-code")

    assert sql_statements.count("INSERT") == 0
    assert sql_statements.count("UPDATE") == 1
    params = _query(response.headers["location"])
    assert params["profile_id"] == [existing.id]
    assert params["username"] == ["Email Person"]
    assert "is_new_user" not in params

    session.expire_all()
    profiles = session.query(models.Profile).all()
    assert len(profiles) == 1
    assert profiles[0].discord_id == "999"
    assert profiles[0].discord_username == "nova"
    assert profiles[0].discord_email == "a@x.com"
    assert profiles[0].name == "Email Person"


def test_external_id_match_preferred_over_distinct_email_match(
    client, session, make_profile
):
    by_email = make_profile(name="Email Owner", email="a@x.com", discord_id=None)
    linked = make_profile(name="Linked Owner", email="other@example.com", discord_id="999")

    response = _callback(client, code="good-code")

    params = _query(response.headers["location"])
    assert params["profile_id"] == [linked.id]
    session.expire_all()
    assert session.get(models.Profile, by_email.id).discord_id is None


def test_replayed_code_fails_and_creates_nothing(client, session):
    first = _callback(client, code="good-code")
    assert "discord_auth=success" in first.headers["location"]

    second = _callback(client, code="good-code")

    assert second.headers["location"] == "http://testserver/?error=discord_callback_failed"
    assert "set-cookie" not in second.headers
    assert session.query(models.Profile).count() == 1


def test_token_exchange_failure_touches_no_profile(client, discord_api, sql_statements):
    discord_api.token_status = 500

    response = _callback(client, code="good-code")

    assert response.headers["location"] == "http://testserver/?error=discord_callback_failed"
    assert sql_statements == []


def test_identity_fetch_failure_redirects_with_callback_failed(client, discord_api, session):
    discord_api.user_status = 401

    response = _callback(client, code="good-code")

    assert response.headers["location"] == "http://testserver/?error=discord_callback_failed"
    assert session.query(models.Profile).count() == 0


def test_network_error_redirects_with_callback_failed(client, discord_api):
    discord_api.fail_with = httpx.ConnectError("connection refused")

    response = _callback(client, code="good-code")

    assert response.headers["location"] == "http://testserver/?error=discord_callback_failed"


def test_unexpected_error_still_redirects(client, monkeypatch):
    from teamdock import identity

    def _boom(*_args, **_kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(identity, "reconcile_identity", _boom)

    response = _callback(client, code="good-code")

    assert response.status_code == 302
    assert response.headers["location"] == "http://testserver/?error=discord_callback_failed"


def test_public_base_url_drives_redirects(client, monkeypatch, discord_api):
    monkeypatch.setattr(settings, "public_base_url", "https://teamdock.example")

    response = _callback(client, code="good-code")

    assert response.headers["location"].startswith(
        "https://teamdock.example/?discord_auth=success"
    )
    token_request = discord_api.requests[0]
    form = parse_qs(token_request.content.decode("utf-8"))
    assert form["redirect_uri"] == ["https://teamdock.example/auth/callback"]


def test_callback_session_grants_api_access(client):
    _callback(client, code="good-code")

    response = client.get("/api/v1/auth/session")

    assert response.status_code == 200
    assert response.json()["name"] == "nova"


def test_new_profile_bootstrap_secret_is_hashed(client, session):
    _callback(client, code="good-code")

    profile = session.query(models.Profile).one()
    assert not utils.verify("", profile.secret_code_hash)
    assert profile.secret_code_hash.startswith("$2")
