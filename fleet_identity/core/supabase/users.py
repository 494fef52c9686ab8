"""Identity provider user operations (admin API)."""
from __future__ import annotations
import logging
from typing import Optional, List

from ..models import Identity
from .client import ProviderClient
from .exceptions import ProviderAPIError, IdentityConflictError, InvalidCallerTokenError

logger = logging.getLogger(__name__)

ADMIN_USERS_PATH = "/auth/v1/admin/users"
CALLER_PATH = "/auth/v1/user"

# Message fragments the provider uses when an email is already registered.
DUPLICATE_MARKERS = ("already", "duplicate", "exists")


def is_duplicate_error(exc: ProviderAPIError) -> bool:
    """Return True when a create failure means another identity owns the email."""
    message = (exc.message or "").lower()
    if any(marker in message for marker in DUPLICATE_MARKERS):
        return True
    return exc.status_code == 409


class IdentityService:
    """Service for managing provider identities."""

    def __init__(self, client: ProviderClient):
        """Initialize identity service.

        Args:
            client: Provider client authenticated with the service role key
        """
        self.client = client

    def list_users(self, page: int, per_page: int) -> List[Identity]:
        """Return one page of identities (1-based page numbers).

        The admin API offers no email filter; callers scan pages.
        """
        resp = self.client.get(ADMIN_USERS_PATH, params={"page": page, "per_page": per_page})
        body = resp.json() or {}
        users = body.get("users", []) if isinstance(body, dict) else body
        return [Identity.from_api(user) for user in users or []]

    def get_user(self, identity_id: str) -> Optional[Identity]:
        """Return the identity with this id, or None when the provider does not know it."""
        try:
            resp = self.client.get(f"{ADMIN_USERS_PATH}/{identity_id}")
        except ProviderAPIError as exc:
            if exc.status_code == 404:
                return None
            raise
        return Identity.from_api(resp.json() or {})

    def create_user(
        self,
        email: str,
        password: str,
        *,
        identity_id: Optional[str] = None,
        email_confirm: bool = True,
        user_metadata: Optional[dict] = None,
    ) -> Identity:
        """Create an identity with a pre-confirmed email.

        Args:
            email: Email address
            password: Initial password
            identity_id: Requested identity id (aligns the identity with its profile)
            email_confirm: Mark the email as verified (administrative provisioning)
            user_metadata: Optional metadata stored on the identity

        Returns:
            The created identity

        Raises:
            IdentityConflictError: Email already registered (possibly by a concurrent call)
            ProviderAPIError: Any other rejection
        """
        payload = {
            "email": email,
            "password": password,
            "email_confirm": email_confirm,
        }
        if identity_id:
            payload["id"] = identity_id
        if user_metadata:
            payload["user_metadata"] = user_metadata

        try:
            resp = self.client.post(ADMIN_USERS_PATH, json=payload)
        except ProviderAPIError as exc:
            if is_duplicate_error(exc):
                raise IdentityConflictError(email, exc.message) from exc
            raise

        identity = Identity.from_api(resp.json() or {})
        logger.info("[identity] Identity created for %s (id=%s)", email, identity.id)
        return identity

    def update_password(self, identity_id: str, password: str) -> Identity:
        """Replace the credential of an existing identity."""
        resp = self.client.put(f"{ADMIN_USERS_PATH}/{identity_id}", json={"password": password})
        logger.info("[identity] Credential updated for identity %s", identity_id)
        return Identity.from_api(resp.json() or {})

    def get_user_for_token(self, access_token: str, api_key: Optional[str] = None) -> Identity:
        """Resolve the caller identity behind a bearer token.

        Raises:
            InvalidCallerTokenError: Token rejected by the provider
        """
        if not access_token:
            raise InvalidCallerTokenError("Missing bearer token")
        try:
            resp = self.client.get(CALLER_PATH, bearer=access_token, api_key=api_key)
        except ProviderAPIError as exc:
            if exc.status_code in (401, 403):
                raise InvalidCallerTokenError(exc.message) from exc
            raise
        identity = Identity.from_api(resp.json() or {})
        if not identity.id:
            raise InvalidCallerTokenError("Token does not resolve to a user")
        return identity
