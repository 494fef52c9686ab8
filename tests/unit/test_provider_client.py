"""Tests for the provider HTTP client and the identity admin operations."""
from unittest.mock import MagicMock

import pytest
import requests

from fleet_identity.core.supabase import (
    IdentityConflictError,
    IdentityService,
    InvalidCallerTokenError,
    ProviderAPIError,
    ProviderClient,
    ProviderUnavailableError,
    extract_error_message,
)


def _response(status_code=200, payload=None, text=None):
    resp = MagicMock()
    resp.status_code = status_code
    if payload is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = payload
    resp.text = text if text is not None else ("" if payload is None else str(payload))
    return resp


@pytest.fixture()
def client():
    return ProviderClient("https://project.example.test/", "service-key", timeout=5)


def test_request_sends_service_key_and_timeout(monkeypatch, client):
    captured = {}

    def fake_get(url, **kwargs):
        captured["url"] = url
        captured.update(kwargs)
        return _response(200, {"users": []})

    monkeypatch.setattr(requests, "get", fake_get)

    client.get("/auth/v1/admin/users", params={"page": 1, "per_page": 10})

    assert captured["url"] == "https://project.example.test/auth/v1/admin/users"
    assert captured["headers"]["apikey"] == "service-key"
    assert captured["headers"]["Authorization"] == "Bearer service-key"
    assert captured["timeout"] == 5
    assert captured["params"] == {"page": 1, "per_page": 10}


def test_request_uses_caller_token_when_given(monkeypatch, client):
    captured = {}

    def fake_get(url, **kwargs):
        captured.update(kwargs)
        return _response(200, {"id": "u1"})

    monkeypatch.setattr(requests, "get", fake_get)

    client.get("/auth/v1/user", bearer="caller-token", api_key="anon-key")

    assert captured["headers"]["Authorization"] == "Bearer caller-token"
    assert captured["headers"]["apikey"] == "anon-key"


def test_http_error_becomes_provider_api_error(monkeypatch, client):
    monkeypatch.setattr(requests, "put", lambda url, **kw: _response(400, {"msg": "weak password"}))

    with pytest.raises(ProviderAPIError) as exc_info:
        client.put("/auth/v1/admin/users/u1", json={"password": "x"})

    assert exc_info.value.status_code == 400
    assert exc_info.value.message == "weak password"
    assert exc_info.value.endpoint == "/auth/v1/admin/users/u1"


def test_timeout_becomes_unavailable(monkeypatch, client):
    def fake_get(url, **kwargs):
        raise requests.Timeout("slow")

    monkeypatch.setattr(requests, "get", fake_get)

    with pytest.raises(ProviderUnavailableError, match="timed out"):
        client.get("/auth/v1/admin/users")


def test_connection_error_becomes_unavailable(monkeypatch, client):
    def fake_post(url, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(requests, "post", fake_post)

    with pytest.raises(ProviderUnavailableError, match="refused"):
        client.post("/auth/v1/admin/users", json={})


@pytest.mark.parametrize(
    "payload,text,expected",
    [
        ({"msg": "gotrue message"}, None, "gotrue message"),
        ({"message": "postgrest message"}, None, "postgrest message"),
        ({"error_description": "described"}, None, "described"),
        (None, "plain body", "plain body"),
        (None, "", "HTTP 502"),
    ],
)
def test_extract_error_message(payload, text, expected):
    assert extract_error_message(_response(502, payload, text)) == expected


# ─────────────────────────────────────────────────────────────────────────────
# IdentityService
# ─────────────────────────────────────────────────────────────────────────────
def test_list_users_parses_users_page():
    client = MagicMock()
    client.get.return_value = _response(200, {"users": [
        {"id": "u1", "email": "a@x.com", "email_confirmed_at": "2024-01-01T00:00:00Z"},
        {"id": "u2", "email": "b@x.com"},
    ]})

    users = IdentityService(client).list_users(page=2, per_page=2)

    client.get.assert_called_once_with("/auth/v1/admin/users", params={"page": 2, "per_page": 2})
    assert [u.id for u in users] == ["u1", "u2"]
    assert users[0].email_confirmed is True
    assert users[1].email_confirmed is False


def test_create_user_sends_confirmed_email_and_requested_id():
    client = MagicMock()
    client.post.return_value = _response(200, {"id": "p1", "email": "a@x.com"})

    identity = IdentityService(client).create_user("a@x.com", "Secret123!", identity_id="p1")

    client.post.assert_called_once_with(
        "/auth/v1/admin/users",
        json={"email": "a@x.com", "password": "Secret123!", "email_confirm": True, "id": "p1"},
    )
    assert identity.id == "p1"


@pytest.mark.parametrize(
    "status,message",
    [
        (422, "A user with this email address has already been registered"),
        (409, "conflict"),
        (400, "duplicate key value violates unique constraint"),
        (422, "Email exists"),
    ],
)
def test_create_user_maps_duplicates_to_conflict(status, message):
    client = MagicMock()
    client.post.side_effect = ProviderAPIError(status, message, "/auth/v1/admin/users")

    with pytest.raises(IdentityConflictError):
        IdentityService(client).create_user("a@x.com", "Secret123!")


def test_create_user_keeps_other_errors():
    client = MagicMock()
    client.post.side_effect = ProviderAPIError(422, "Password should be at least 6 characters", "/auth/v1/admin/users")

    with pytest.raises(ProviderAPIError) as exc_info:
        IdentityService(client).create_user("a@x.com", "short")

    assert not isinstance(exc_info.value, IdentityConflictError)


def test_update_password_puts_new_credential():
    client = MagicMock()
    client.put.return_value = _response(200, {"id": "u1", "email": "a@x.com"})

    IdentityService(client).update_password("u1", "NewSecret123!")

    client.put.assert_called_once_with("/auth/v1/admin/users/u1", json={"password": "NewSecret123!"})


def test_get_user_returns_none_on_404():
    client = MagicMock()
    client.get.side_effect = ProviderAPIError(404, "User not found", "/auth/v1/admin/users/u9")

    assert IdentityService(client).get_user("u9") is None


def test_get_user_for_token_rejects_invalid_token():
    client = MagicMock()
    client.get.side_effect = ProviderAPIError(401, "invalid JWT", "/auth/v1/user")

    with pytest.raises(InvalidCallerTokenError):
        IdentityService(client).get_user_for_token("bad-token", api_key="anon")


def test_get_user_for_token_requires_token():
    with pytest.raises(InvalidCallerTokenError):
        IdentityService(MagicMock()).get_user_for_token("")
