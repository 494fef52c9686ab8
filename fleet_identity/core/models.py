"""Records exchanged between the identity provider, the profile store and the services."""
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Any, Optional

AUTH_METHOD_SECRET = "secret"
AUTH_METHOD_TOKEN = "token"
SECRET_ACTOR_ID = "admin-secret"


@dataclass(frozen=True)
class Identity:
    """Authentication identity owned by the external provider."""
    id: str
    email: str
    email_confirmed: bool = False

    @classmethod
    def from_api(cls, payload: dict) -> "Identity":
        return cls(
            id=str(payload.get("id") or ""),
            email=(payload.get("email") or ""),
            email_confirmed=bool(payload.get("email_confirmed_at") or payload.get("confirmed_at")),
        )


@dataclass
class Profile:
    """Application-owned user record in the primary store."""
    id: str
    email: str
    role: str = ""
    organization_id: Optional[str] = None
    must_change_password: bool = False
    first_name: str = ""
    last_name: str = ""

    @classmethod
    def from_row(cls, row: dict) -> "Profile":
        return cls(
            id=str(row.get("id") or ""),
            email=row.get("email") or "",
            role=(row.get("role") or "").lower(),
            organization_id=row.get("organization_id") or row.get("default_organization_id"),
            must_change_password=bool(row.get("must_change_password")),
            first_name=row.get("first_name") or "",
            last_name=row.get("last_name") or "",
        )

    def to_row(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class AuthorizationContext:
    """Request-scoped result of the authorization gate. Never persisted."""
    method: str
    actor_id: Optional[str] = None
    actor_role: Optional[str] = None
    organization_id: Optional[str] = None

    @property
    def audit_actor(self) -> str:
        return self.actor_id or SECRET_ACTOR_ID

    @property
    def is_trusted_caller(self) -> bool:
        return self.method == AUTH_METHOD_SECRET


@dataclass(frozen=True)
class AdminOperationLogEntry:
    """Append-only record of one administrative action."""
    id: str
    actor_id: str
    action: str
    target_id: Optional[str]
    created_at: str
    outcome: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)
