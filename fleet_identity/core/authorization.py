"""Authorization gate for administrative operations.

Two tiers:
    1. Shared administrative secret (trusted server-to-server callers), compared
       in constant time against the current value and any rotation fallbacks.
    2. Caller bearer token, resolved to a profile whose role must be in the
       administrative allow-list.

The gate has no side effects: it reads the provider and the profile store and
returns an ``AuthorizationContext`` or raises.
"""
from __future__ import annotations
import hashlib
import hmac
import logging
from typing import Optional

import jwt
from jwt.exceptions import InvalidTokenError

from ..config.settings import AppConfig
from .errors import Forbidden, Unauthorized, UpstreamFailure
from .models import AUTH_METHOD_SECRET, AUTH_METHOD_TOKEN, AuthorizationContext
from .supabase import IdentityService, ProfileStore, ProviderError, InvalidCallerTokenError

logger = logging.getLogger(__name__)

JWT_ALGORITHMS = ["HS256"]
JWT_AUDIENCE = "authenticated"


def credential_fingerprint(credential: str) -> str:
    """SHA-256 of a credential truncated to 12 hex chars, safe to log."""
    return hashlib.sha256((credential or "").encode()).hexdigest()[:12]


def _log_auth_attempt(auth_method: str, credential: Optional[str], success: bool, reason: str = "") -> None:
    """Log an authorization attempt without leaking the credential."""
    fingerprint = credential_fingerprint(credential) if credential else "none"
    if success:
        logger.info("[authz] granted | method=%s | credential_hash=%s", auth_method, fingerprint)
    else:
        logger.warning(
            "[authz] denied | method=%s | credential_hash=%s | reason=%s",
            auth_method,
            fingerprint,
            reason,
        )


class AuthorizationGate:
    """Decide whether a caller may perform administrative operations."""

    def __init__(self, cfg: AppConfig, identities: IdentityService, profiles: ProfileStore):
        self.cfg = cfg
        self.identities = identities
        self.profiles = profiles

    def _secret_matches(self, admin_secret: Optional[str]) -> bool:
        if not admin_secret:
            return False
        matched = False
        # no early exit
        for expected in self.cfg.accepted_admin_secrets:
            if hmac.compare_digest(admin_secret.encode(), expected.encode()):
                matched = True
        return matched

    def _resolve_caller_id(self, bearer_token: str) -> str:
        """Return the caller's identity id for a bearer token.

        Raises:
            Unauthorized: Token missing, malformed, expired or rejected
            UpstreamFailure: Provider unreachable while resolving the token
        """
        if self.cfg.supabase_jwt_secret:
            try:
                claims = jwt.decode(
                    bearer_token,
                    self.cfg.supabase_jwt_secret,
                    algorithms=JWT_ALGORITHMS,
                    audience=JWT_AUDIENCE,
                    options={"require": ["exp", "sub"]},
                )
            except InvalidTokenError as exc:
                raise Unauthorized(f"Invalid token: {exc}") from exc
            return str(claims["sub"])

        try:
            identity = self.identities.get_user_for_token(bearer_token, api_key=self.cfg.caller_api_key)
        except InvalidCallerTokenError as exc:
            raise Unauthorized("Invalid token") from exc
        except ProviderError as exc:
            raise UpstreamFailure(f"Failed to resolve caller: {exc}") from exc
        return identity.id

    def authorize(self, admin_secret: Optional[str], bearer_token: Optional[str]) -> AuthorizationContext:
        """Authorize a caller by shared secret or by bearer token and role.

        Args:
            admin_secret: ``adminSecret`` value from the request body, if any
            bearer_token: Token from the ``Authorization: Bearer`` header, if any

        Returns:
            AuthorizationContext describing the caller

        Raises:
            Unauthorized: No valid credential
            Forbidden: Caller has no profile or a non-administrative role
            UpstreamFailure: Provider or store failed while checking the caller
        """
        if self._secret_matches(admin_secret):
            _log_auth_attempt(AUTH_METHOD_SECRET, admin_secret, success=True)
            return AuthorizationContext(method=AUTH_METHOD_SECRET)
        if admin_secret:
            _log_auth_attempt(AUTH_METHOD_SECRET, admin_secret, success=False, reason="secret mismatch")

        if not bearer_token:
            _log_auth_attempt(AUTH_METHOD_TOKEN, None, success=False, reason="missing authorization")
            raise Unauthorized("Missing authorization")

        try:
            caller_id = self._resolve_caller_id(bearer_token)
        except Unauthorized as exc:
            _log_auth_attempt(AUTH_METHOD_TOKEN, bearer_token, success=False, reason=exc.detail)
            raise

        try:
            profile = self.profiles.get(caller_id)
        except ProviderError as exc:
            raise UpstreamFailure(f"Failed to load caller profile: {exc}") from exc

        if profile is None:
            _log_auth_attempt(AUTH_METHOD_TOKEN, bearer_token, success=False, reason="no profile")
            raise Forbidden("Caller profile not found")
        if profile.role not in self.cfg.admin_roles:
            _log_auth_attempt(AUTH_METHOD_TOKEN, bearer_token, success=False, reason=f"role={profile.role}")
            raise Forbidden("Insufficient permissions")

        _log_auth_attempt(AUTH_METHOD_TOKEN, bearer_token, success=True)
        return AuthorizationContext(
            method=AUTH_METHOD_TOKEN,
            actor_id=profile.id,
            actor_role=profile.role,
            organization_id=profile.organization_id,
        )
