"""Pytest shared fixtures: configuration, in-memory provider/store fakes, Flask client."""
import os
import pathlib
import sys
import threading
from typing import Optional

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Configure test environment BEFORE any app imports
os.environ.setdefault("DEMO_MODE", "true")

import pytest
import requests

from fleet_identity.config.settings import AppConfig
from fleet_identity.core.audit import OperationAuditor
from fleet_identity.core.models import Identity, Profile, AuthorizationContext, AUTH_METHOD_SECRET, AUTH_METHOD_TOKEN
from fleet_identity.core.registry import build_services
from fleet_identity.core.supabase.exceptions import (
    IdentityConflictError,
    InvalidCallerTokenError,
    ProviderAPIError,
)
from fleet_identity.flask_app import create_app

ADMIN_SECRET = "test-admin-secret-value"
ORG_ID = "org-1"


def make_config(**overrides) -> AppConfig:
    base = dict(
        demo_mode=False,
        supabase_url="https://project.example.test",
        supabase_service_role_key="service-role-key",
        supabase_anon_key="anon-key",
        supabase_jwt_secret="",
        admin_shared_secret=ADMIN_SECRET,
        admin_shared_secret_fallbacks=[],
        admin_secret_auth_enabled=True,
        identity_lookup_page_size=1000,
        identity_lookup_max_pages=50,
        audit_log_dir=".runtime/test-audit",
        audit_log_signing_key="test-signing-key",
        trusted_proxy_ips="127.0.0.1/32,::1/128",
    )
    base.update(overrides)
    return AppConfig(**base)


# ─────────────────────────────────────────────────────────────────────────────
# In-memory identity provider
# ─────────────────────────────────────────────────────────────────────────────
class FakeIdentityService:
    """Identity provider admin API with a unique-email constraint.

    ``create_user`` is atomic under a lock, like the provider's own constraint.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.users: list[Identity] = []
        self.passwords: dict[str, str] = {}
        self.tokens: dict[str, str] = {}
        self.list_calls: list[tuple[int, int]] = []
        self.create_calls = 0
        self.update_calls = 0
        self.get_calls = 0
        self.list_error: Optional[Exception] = None
        self.create_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None
        self.get_error: Optional[Exception] = None

    def add(self, email: str, identity_id: Optional[str] = None, password: str = "existing-password") -> Identity:
        identity = Identity(id=identity_id or f"id-{len(self.users) + 1}", email=email, email_confirmed=True)
        self.users.append(identity)
        self.passwords[identity.id] = password
        return identity

    def count(self, email: str) -> int:
        return sum(1 for user in self.users if user.email.lower() == email.lower())

    def list_users(self, page: int, per_page: int) -> list[Identity]:
        self.list_calls.append((page, per_page))
        if self.list_error:
            raise self.list_error
        start = (page - 1) * per_page
        return list(self.users[start:start + per_page])

    def get_user(self, identity_id: str) -> Optional[Identity]:
        self.get_calls += 1
        if self.get_error:
            raise self.get_error
        return next((user for user in self.users if user.id == identity_id), None)

    def create_user(self, email, password, *, identity_id=None, email_confirm=True, user_metadata=None):
        self.create_calls += 1
        if self.create_error:
            raise self.create_error
        with self._lock:
            if self.count(email):
                raise IdentityConflictError(email, "A user with this email address has already been registered")
            if identity_id and any(user.id == identity_id for user in self.users):
                raise ProviderAPIError(422, "identity id already in use", "/auth/v1/admin/users")
            return self.add(email, identity_id, password)

    def update_password(self, identity_id: str, password: str) -> Identity:
        self.update_calls += 1
        if self.update_error:
            raise self.update_error
        self.passwords[identity_id] = password
        return next(user for user in self.users if user.id == identity_id)

    def get_user_for_token(self, access_token: str, api_key: Optional[str] = None) -> Identity:
        identity_id = self.tokens.get(access_token)
        if identity_id is None:
            raise InvalidCallerTokenError("invalid JWT")
        return Identity(id=identity_id, email="")


# ─────────────────────────────────────────────────────────────────────────────
# In-memory profile store
# ─────────────────────────────────────────────────────────────────────────────
class FakeProfileStore:
    def __init__(self):
        self.rows: dict[str, Profile] = {}
        self.flag_updates: list[tuple] = []
        self.deleted: list[str] = []
        self.get_error: Optional[Exception] = None
        self.insert_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        self.flag_error: Optional[Exception] = None

    def add(self, profile_id: str, email: str, role: str = "driver", organization_id: str = ORG_ID,
            must_change_password: bool = False) -> Profile:
        profile = Profile(id=profile_id, email=email, role=role, organization_id=organization_id,
                          must_change_password=must_change_password)
        self.rows[profile_id] = profile
        return profile

    def get(self, profile_id):
        if self.get_error:
            raise self.get_error
        return self.rows.get(profile_id)

    def get_by_email(self, email):
        if self.get_error:
            raise self.get_error
        return next((p for p in self.rows.values() if p.email.lower() == (email or "").lower()), None)

    def insert(self, profile: Profile) -> Profile:
        if self.insert_error:
            raise self.insert_error
        self.rows[profile.id] = profile
        return profile

    def delete(self, profile_id: str) -> None:
        if self.delete_error:
            raise self.delete_error
        self.deleted.append(profile_id)
        self.rows.pop(profile_id, None)

    def set_must_change_password(self, value, *, profile_id=None, email=None) -> int:
        if self.flag_error:
            raise self.flag_error
        self.flag_updates.append((value, profile_id, email))
        matched = [
            p for p in self.rows.values()
            if (profile_id and p.id == profile_id) or (not profile_id and email and p.email.lower() == email.lower())
        ]
        for profile in matched:
            profile.must_change_password = value
        return len(matched)

    def iter_profiles(self):
        if self.get_error:
            raise self.get_error
        yield from list(self.rows.values())


# ─────────────────────────────────────────────────────────────────────────────
# In-memory attempt limiter
# ─────────────────────────────────────────────────────────────────────────────
class FakeAttemptLimiter:
    """Counts attempts per identifier, with no time window."""

    def __init__(self, max_attempts: int = 3, window_minutes: int = 15):
        self.max_attempts = max_attempts
        self.window_minutes = window_minutes
        self.calls: list[str] = []
        self.error: Optional[Exception] = None

    def allow(self, identifier: str) -> bool:
        if self.error:
            raise self.error
        self.calls.append(identifier)
        return self.calls.count(identifier) <= self.max_attempts


def secret_context() -> AuthorizationContext:
    return AuthorizationContext(method=AUTH_METHOD_SECRET)


def token_context(actor_id: str, role: str = "admin", organization_id: str = ORG_ID) -> AuthorizationContext:
    return AuthorizationContext(method=AUTH_METHOD_TOKEN, actor_id=actor_id, actor_role=role,
                                organization_id=organization_id)


def provider_error(status_code: int = 500, message: str = "boom", endpoint: str = "/auth/v1/admin/users"):
    return ProviderAPIError(status_code, message, endpoint)


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """
    Prevent unit tests from reaching a live provider.

    Integration tests are explicitly marked with @pytest.mark.integration and
    are allowed to perform real HTTP calls by skipping this fixture.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _refuse(method):
        def _stub(url, *args, **kwargs):
            raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")
        return _stub

    for method in ("get", "post", "put", "patch", "delete"):
        monkeypatch.setattr(requests, method, _refuse(method.upper()))


# ─────────────────────────────────────────────────────────────────────────────
# Service fixtures
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def cfg(tmp_path):
    return make_config(audit_log_dir=str(tmp_path / "audit"))


@pytest.fixture()
def identity_service():
    return FakeIdentityService()


@pytest.fixture()
def profile_store():
    return FakeProfileStore()


@pytest.fixture()
def auditor(cfg):
    return OperationAuditor(cfg.audit_log_dir, cfg.audit_log_signing_key)


@pytest.fixture()
def rate_limiter():
    return FakeAttemptLimiter()


@pytest.fixture()
def services(cfg, identity_service, profile_store, auditor, rate_limiter):
    return build_services(cfg, identities=identity_service, profiles=profile_store, auditor=auditor,
                          rate_limiter=rate_limiter)


# ─────────────────────────────────────────────────────────────────────────────
# Flask Test Client
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def app(cfg, services):
    flask_app = create_app(cfg, services)
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture()
def client(app):
    with app.test_client() as client:
        yield client


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires running stack)"
    )
    config.addinivalue_line(
        "markers", "critical: marks tests as critical security tests (P0 priority)"
    )
