"""Tests for the two-tier authorization gate."""
import logging
import time

import jwt
import pytest

from fleet_identity.core.authorization import AuthorizationGate, credential_fingerprint
from fleet_identity.core.errors import Forbidden, Unauthorized, UpstreamFailure
from fleet_identity.core.supabase import ProviderUnavailableError

from tests.conftest import ADMIN_SECRET, FakeIdentityService, FakeProfileStore, make_config

JWT_SECRET = "local-jwt-secret-with-enough-length-for-hs256"


@pytest.fixture()
def store():
    store = FakeProfileStore()
    store.add("admin-1", "boss@x.com", role="admin")
    store.add("driver-1", "driver@x.com", role="driver")
    return store


@pytest.fixture()
def identities():
    service = FakeIdentityService()
    service.tokens["admin-token"] = "admin-1"
    service.tokens["driver-token"] = "driver-1"
    service.tokens["ghost-token"] = "ghost"
    return service


def _gate(identities, store, **overrides):
    return AuthorizationGate(make_config(**overrides), identities, store)


def _token(sub, secret=JWT_SECRET, exp_offset=300, aud="authenticated"):
    return jwt.encode({"sub": sub, "aud": aud, "exp": int(time.time()) + exp_offset}, secret, algorithm="HS256")


def test_shared_secret_grants_without_role_lookup(identities, store):
    store.get_error = AssertionError("profile store must not be read")

    ctx = _gate(identities, store).authorize(ADMIN_SECRET, None)

    assert ctx.method == "secret"
    assert ctx.actor_id is None
    assert ctx.is_trusted_caller


def test_rotation_fallback_secret_is_accepted(identities, store):
    gate = _gate(identities, store, admin_shared_secret="new", admin_shared_secret_fallbacks=["old"])

    assert gate.authorize("old", None).method == "secret"


def test_disabled_secret_path_rejects_valid_secret(identities, store):
    gate = _gate(identities, store, admin_secret_auth_enabled=False)

    with pytest.raises(Unauthorized):
        gate.authorize(ADMIN_SECRET, None)


def test_wrong_secret_without_token_is_unauthorized(identities, store):
    with pytest.raises(Unauthorized):
        _gate(identities, store).authorize("wrong", None)


def test_wrong_secret_falls_through_to_token(identities, store):
    ctx = _gate(identities, store).authorize("wrong", "admin-token")

    assert ctx.method == "token"
    assert ctx.actor_id == "admin-1"


def test_admin_token_resolved_by_provider(identities, store):
    ctx = _gate(identities, store).authorize(None, "admin-token")

    assert ctx.method == "token"
    assert ctx.actor_role == "admin"
    assert ctx.organization_id == "org-1"


def test_invalid_token_is_unauthorized(identities, store):
    with pytest.raises(Unauthorized):
        _gate(identities, store).authorize(None, "forged-token")


def test_non_admin_role_is_forbidden(identities, store):
    with pytest.raises(Forbidden):
        _gate(identities, store).authorize(None, "driver-token")


def test_caller_without_profile_is_forbidden(identities, store):
    with pytest.raises(Forbidden, match="profile"):
        _gate(identities, store).authorize(None, "ghost-token")


def test_store_failure_is_upstream_failure(identities, store):
    store.get_error = ProviderUnavailableError("/rest/v1/profiles", "timed out after 10s")

    with pytest.raises(UpstreamFailure):
        _gate(identities, store).authorize(None, "admin-token")


def test_provider_outage_while_resolving_token(identities, store, mocker):
    mocker.patch.object(
        identities, "get_user_for_token",
        side_effect=ProviderUnavailableError("/auth/v1/user", "connection refused"),
    )

    with pytest.raises(UpstreamFailure):
        _gate(identities, store).authorize(None, "admin-token")


def test_local_jwt_verification(identities, store, mocker):
    spy = mocker.spy(identities, "get_user_for_token")
    gate = _gate(identities, store, supabase_jwt_secret=JWT_SECRET)

    ctx = gate.authorize(None, _token("admin-1"))

    assert ctx.actor_id == "admin-1"
    spy.assert_not_called()


@pytest.mark.parametrize(
    "token",
    [
        _token("admin-1", exp_offset=-60),
        _token("admin-1", secret="another-secret-of-sufficient-length-abc"),
        _token("admin-1", aud="anon"),
        "not-a-jwt",
    ],
)
def test_local_jwt_rejections(identities, store, token):
    gate = _gate(identities, store, supabase_jwt_secret=JWT_SECRET)

    with pytest.raises(Unauthorized):
        gate.authorize(None, token)


@pytest.mark.critical
def test_denied_attempt_logs_hash_not_credential(identities, store, caplog):
    caplog.set_level(logging.WARNING, logger="fleet_identity.core.authorization")

    with pytest.raises(Unauthorized):
        _gate(identities, store).authorize("leaked-secret-value", "forged-token")

    assert "leaked-secret-value" not in caplog.text
    assert "forged-token" not in caplog.text
    assert credential_fingerprint("forged-token") in caplog.text


def test_gate_has_no_side_effects(identities, store):
    _gate(identities, store).authorize(None, "admin-token")

    assert identities.create_calls == 0
    assert identities.update_calls == 0
    assert store.flag_updates == []
