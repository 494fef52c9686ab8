"""
Provisioning service layer: identity provisioning and the create-user saga

Keeps a profile (primary store) and its authentication identity (provider)
consistent without a shared transaction.

Architecture:
    Admin API (/admin/*) ──┐
                           ├──> provisioning_service.py ──> core.supabase ──> provider / store
    CLI (scripts/admin_ops) ┘

Features:
    - Idempotent identity provisioning (lookup, create, duplicate re-lookup)
    - Safe under concurrent invocation for the same email
    - Create-user saga with a compensating profile delete
    - Every invocation audited, success or failure
"""

from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from .audit import OperationAuditor
from .errors import Forbidden, NotFound, ReconciliationError, UpstreamFailure, ValidationError
from .models import AuthorizationContext, Profile
from .supabase import (
    IdentityConflictError,
    IdentityDirectory,
    IdentityService,
    ProfileStore,
    ProviderError,
)
from .validators import (
    generate_temp_password,
    validate_email,
    validate_name,
    validate_password,
    validate_profile_id,
    validate_role,
)

logger = logging.getLogger(__name__)


def _outcome_for(exc: ReconciliationError) -> str:
    """Audit outcome for a failed request: refused by policy or broken downstream."""
    return "failure" if isinstance(exc, UpstreamFailure) else "rejected"


@dataclass(frozen=True)
class ProvisionResult:
    created: bool
    identity_id: str
    message: str
    temporary_password: Optional[str] = None
    flag_error: Optional[str] = None

    def to_response(self) -> dict:
        body: dict[str, Any] = {
            "success": True,
            "userId": self.identity_id,
            "created": self.created,
            "message": self.message,
        }
        if self.flag_error:
            body["mustChangePasswordSet"] = False
        if self.temporary_password:
            body["temporaryPassword"] = self.temporary_password
        return body


@dataclass(frozen=True)
class CreateUserResult:
    profile_id: str
    identity_id: str
    created_identity: bool
    temporary_password: Optional[str] = None

    def to_response(self) -> dict:
        body: dict[str, Any] = {
            "success": True,
            "profileId": self.profile_id,
            "userId": self.identity_id,
            "createdIdentity": self.created_identity,
        }
        if self.temporary_password:
            body["temporaryPassword"] = self.temporary_password
        return body


# ─────────────────────────────────────────────────────────────────────────────
# Identity Provisioner
# ─────────────────────────────────────────────────────────────────────────────

class IdentityProvisioner:
    """Ensure an identity exists for an email, exactly once.

    Concurrent calls for the same email may both miss the lookup and both try to
    create; the provider's uniqueness constraint rejects the loser, which then
    re-runs the lookup and reports the winner's identity as its own success.
    """

    def __init__(
        self,
        directory: IdentityDirectory,
        identities: IdentityService,
        profiles: ProfileStore,
        temp_password_length: int = 16,
        password_min_length: int = 8,
    ):
        self.directory = directory
        self.identities = identities
        self.profiles = profiles
        self.temp_password_length = temp_password_length
        self.password_min_length = password_min_length

    def _lookup(self, email: str):
        try:
            return self.directory.find_by_email(email)
        except ProviderError as exc:
            raise UpstreamFailure(f"Identity lookup failed: {exc}") from exc

    def _mark_must_change(self, email: str, profile_id: Optional[str]) -> None:
        try:
            self.profiles.set_must_change_password(True, profile_id=profile_id, email=None if profile_id else email)
        except ProviderError as exc:
            raise UpstreamFailure(f"Failed to flag profile for password change: {exc}") from exc

    def ensure_identity(
        self,
        email: str,
        profile_id: Optional[str] = None,
        password: Optional[str] = None,
        *,
        mark_profile: bool = True,
    ) -> ProvisionResult:
        """Make sure an identity exists for ``email``.

        Args:
            email: Email the identity must be registered under
            profile_id: Profile the identity belongs to; used as the identity id on creation
            password: Initial password; a temporary one is generated when omitted
            mark_profile: Set ``must_change_password`` on the profile afterwards

        Returns:
            ProvisionResult; ``temporary_password`` is set only when it was generated here.
            A new identity whose profile flag could not be set is still returned, with
            ``flag_error`` describing the store failure.

        Raises:
            ValidationError: Invalid email or a supplied password below the policy
            UpstreamFailure: Provider or store failure (safe to retry)
        """
        email = validate_email(email)
        validate_password(password, self.password_min_length)

        existing = self._lookup(email)
        if existing is not None:
            logger.info("[provisioning] Identity already exists for %s (id=%s)", email, existing.id)
            if mark_profile:
                self._mark_must_change(email, profile_id)
            return ProvisionResult(created=False, identity_id=existing.id, message="Identity already exists")

        generated = password is None
        initial_password = generate_temp_password(self.temp_password_length) if generated else password

        try:
            identity = self.identities.create_user(email, initial_password, identity_id=profile_id)
        except IdentityConflictError as exc:
            logger.info("[provisioning] Duplicate reported for %s, re-running lookup", email)
            winner = self._lookup(email)
            if winner is None:
                raise UpstreamFailure(
                    f"Provider reported a duplicate for {email} but no identity was found: {exc.message}"
                ) from exc
            if mark_profile:
                self._mark_must_change(email, profile_id)
            return ProvisionResult(
                created=False,
                identity_id=winner.id,
                message="Identity created concurrently",
            )
        except ProviderError as exc:
            raise UpstreamFailure(f"Failed to create identity: {exc}") from exc

        flag_error = None
        if mark_profile:
            # identity exists; the generated password is returned even if the flag fails
            try:
                self._mark_must_change(email, profile_id)
            except UpstreamFailure as exc:
                logger.error("[provisioning] Identity %s created but not flagged: %s", identity.id, exc.detail)
                flag_error = exc.detail
        return ProvisionResult(
            created=True,
            identity_id=identity.id,
            message="Identity created" if flag_error is None else "Identity created; password change flag not set",
            temporary_password=initial_password if generated else None,
            flag_error=flag_error,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Provisioning Service (audited entry points)
# ─────────────────────────────────────────────────────────────────────────────

class ProvisioningService:
    """Audited administrative operations built on the provisioner."""

    def __init__(
        self,
        provisioner: IdentityProvisioner,
        profiles: ProfileStore,
        auditor: OperationAuditor,
        *,
        default_role: str = "driver",
        protected_roles: Optional[list[str]] = None,
        super_admin_role: str = "super_admin",
    ):
        self.provisioner = provisioner
        self.profiles = profiles
        self.auditor = auditor
        self.default_role = default_role
        self.protected_roles = list(protected_roles or [])
        self.super_admin_role = super_admin_role

    def provision_identity(
        self,
        ctx: AuthorizationContext,
        *,
        email: Optional[str] = None,
        profile_id: Optional[str] = None,
        password: Optional[str] = None,
    ) -> ProvisionResult:
        """Provision the missing identity for an existing profile.

        The email is taken from the profile when only ``profile_id`` is given.

        Raises:
            ValidationError: Neither email nor profile id supplied
            NotFound: ``profile_id`` does not exist
            UpstreamFailure: Provider or store failure
        """
        target = email or profile_id
        try:
            if not email and not profile_id:
                raise ValidationError("email or profileId is required")
            if profile_id:
                profile_id = validate_profile_id(profile_id)

            if not email:
                try:
                    profile = self.profiles.get(profile_id)
                except ProviderError as exc:
                    raise UpstreamFailure(f"Failed to load profile: {exc}") from exc
                if profile is None:
                    raise NotFound(f"Profile {profile_id} not found")
                if not profile.email:
                    raise ValidationError(f"Profile {profile_id} has no email")
                email = profile.email
                target = email

            result = self.provisioner.ensure_identity(email, profile_id, password)
        except ReconciliationError as exc:
            self.auditor.record(
                ctx.audit_actor,
                "provision_identity",
                target,
                {"email": email, "profile_id": profile_id, "auth_method": ctx.method, "error": exc.detail},
                outcome=_outcome_for(exc),
            )
            raise

        self.auditor.record(
            ctx.audit_actor,
            "provision_identity",
            result.identity_id,
            {
                "email": email,
                "profile_id": profile_id,
                "auth_method": ctx.method,
                "created": result.created,
                "message": result.message,
                "flag_error": result.flag_error,
            },
        )
        logger.info("[provisioning] %s for %s (identity=%s)", result.message, email, result.identity_id)
        return result

    def create_user(
        self,
        ctx: AuthorizationContext,
        email: str,
        role: Optional[str] = None,
        first_name: str = "",
        last_name: str = "",
        password: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> CreateUserResult:
        """Create a profile and its identity as one unit.

        Steps:
            1. Insert the profile (new uuid, ``must_change_password`` set)
            2. Provision the identity with the profile id
            3. On failure in step 2, delete the profile and re-raise

        Raises:
            ValidationError: Invalid input or email already has a profile
            Forbidden: Token caller creating a protected role without super admin rights
            UpstreamFailure: Provider or store failure (profile removed again)
        """
        requested_email = email
        try:
            email = validate_email(email)
            role = validate_role(role, self.default_role)
            first_name = validate_name(first_name, "firstName")
            last_name = validate_name(last_name, "lastName")
            validate_password(password, self.provisioner.password_min_length)

            if (role in self.protected_roles and not ctx.is_trusted_caller
                    and ctx.actor_role != self.super_admin_role):
                raise Forbidden(f"Only {self.super_admin_role} may create users with role {role}")

            try:
                existing = self.profiles.get_by_email(email)
            except ProviderError as exc:
                raise UpstreamFailure(f"Failed to check existing profiles: {exc}") from exc
            if existing is not None:
                raise ValidationError(f"A profile already exists for {email}", code="profile_exists")
        except ReconciliationError as exc:
            self.auditor.record(
                ctx.audit_actor, "create_user", requested_email,
                {"email": requested_email, "role": role, "stage": "validation", "code": exc.code,
                 "error": exc.detail},
                outcome=_outcome_for(exc),
            )
            raise

        profile = Profile(
            id=str(uuid.uuid4()),
            email=email,
            role=role,
            organization_id=organization_id or ctx.organization_id,
            must_change_password=True,
            first_name=first_name,
            last_name=last_name,
        )
        try:
            self.profiles.insert(profile)
        except ProviderError as exc:
            self.auditor.record(
                ctx.audit_actor, "create_user", email,
                {"email": email, "stage": "profile", "error": str(exc)}, outcome="failure",
            )
            raise UpstreamFailure(f"Failed to create profile: {exc}") from exc

        try:
            result = self.provisioner.ensure_identity(email, profile.id, password, mark_profile=False)
        except Exception as exc:
            metadata = {"email": email, "profile_id": profile.id, "stage": "identity", "error": str(exc)}
            metadata.update(self._compensate(profile.id))
            self.auditor.record(ctx.audit_actor, "create_user", profile.id, metadata, outcome="failure")
            raise

        if result.identity_id != profile.id:
            logger.warning(
                "[provisioning] Profile %s linked to pre-existing identity %s (ids differ)",
                profile.id,
                result.identity_id,
            )

        self.auditor.record(
            ctx.audit_actor,
            "create_user",
            profile.id,
            {
                "email": email,
                "role": role,
                "organization_id": profile.organization_id,
                "identity_id": result.identity_id,
                "created_identity": result.created,
                "id_mismatch": result.identity_id != profile.id,
            },
        )
        return CreateUserResult(
            profile_id=profile.id,
            identity_id=result.identity_id,
            created_identity=result.created,
            temporary_password=result.temporary_password,
        )

    def _compensate(self, profile_id: str) -> dict:
        """Delete the profile inserted by a failed saga. Never raises."""
        try:
            self.profiles.delete(profile_id)
        except ProviderError as exc:
            logger.error(
                "[provisioning] Compensation failed: profile %s left without identity: %s",
                profile_id,
                exc,
            )
            return {"compensated": False, "compensation_error": str(exc)}
        logger.info("[provisioning] Compensation: profile %s deleted", profile_id)
        return {"compensated": True}
