"""Two-phase administrative password reset.

``prepare`` is a read-only check against the primary store (target exists,
same organization, role restrictions, password policy). ``execute`` changes
the credential at the provider and then sets the forced-change flag. A
rejected prepare never reaches the provider.

Each reset runs through its own ``PasswordReset`` instance:

    REQUESTED -> PREPARED -> EXECUTED
    REQUESTED -> REJECTED
"""
from __future__ import annotations
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .audit import OperationAuditor
from .errors import NotFound, PrepareRejected, RateLimited, ReconciliationError, UpstreamFailure, ValidationError
from .models import AuthorizationContext, Identity, Profile
from .provisioning_service import IdentityProvisioner
from .supabase import AttemptLimiter, IdentityDirectory, IdentityService, ProfileStore, ProviderError
from .validators import check_password_policy, generate_temp_password, validate_email

logger = logging.getLogger(__name__)

TARGET_NOT_FOUND = "target_not_found"


class ResetState(enum.Enum):
    REQUESTED = "requested"
    PREPARED = "prepared"
    EXECUTED = "executed"
    REJECTED = "rejected"


ALLOWED_TRANSITIONS = {
    ResetState.REQUESTED: {ResetState.PREPARED, ResetState.REJECTED},
    ResetState.PREPARED: {ResetState.EXECUTED},
    ResetState.EXECUTED: set(),
    ResetState.REJECTED: set(),
}


class IllegalResetTransition(RuntimeError):
    """A reset was driven out of order (e.g. executed without a successful prepare)."""

    def __init__(self, current: ResetState, requested: ResetState):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move password reset from {current.value} to {requested.value}")


@dataclass(frozen=True)
class PrepResult:
    success: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    target: Optional[Profile] = None


@dataclass(frozen=True)
class ExecResult:
    identity_id: str
    target_email: str
    created_identity: bool = False
    temporary_password: Optional[str] = None

    def to_response(self) -> dict:
        body: dict[str, Any] = {"success": True, "targetEmail": self.target_email}
        if self.temporary_password:
            body["temporaryPassword"] = self.temporary_password
        return body


@dataclass
class PasswordReset:
    """State of a single reset request."""
    target_user_id: str
    new_password: Optional[str] = None
    force_must_change: bool = True
    state: ResetState = ResetState.REQUESTED
    prep: Optional[PrepResult] = None
    result: Optional[ExecResult] = None
    history: list = field(default_factory=list)

    def _transition(self, new_state: ResetState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise IllegalResetTransition(self.state, new_state)
        self.history.append((self.state, new_state))
        self.state = new_state

    def prepared(self, prep: PrepResult) -> None:
        if not prep.success:
            raise ValueError("prepared() requires a successful PrepResult")
        self._transition(ResetState.PREPARED)
        self.prep = prep

    def rejected(self, prep: PrepResult) -> None:
        self._transition(ResetState.REJECTED)
        self.prep = prep

    def executed(self, result: ExecResult) -> None:
        self._transition(ResetState.EXECUTED)
        self.result = result


class PasswordResetOrchestrator:
    """Prepare and execute administrative password resets."""

    def __init__(
        self,
        directory: IdentityDirectory,
        identities: IdentityService,
        profiles: ProfileStore,
        provisioner: IdentityProvisioner,
        auditor: OperationAuditor,
        *,
        protected_roles: Optional[list[str]] = None,
        super_admin_role: str = "super_admin",
        temp_password_length: int = 16,
        password_min_length: int = 8,
        rate_limiter: Optional[AttemptLimiter] = None,
    ):
        self.directory = directory
        self.identities = identities
        self.profiles = profiles
        self.provisioner = provisioner
        self.auditor = auditor
        self.protected_roles = list(protected_roles or [])
        self.super_admin_role = super_admin_role
        self.temp_password_length = temp_password_length
        self.password_min_length = password_min_length
        self.rate_limiter = rate_limiter

    def _load_profile(self, profile_id: Optional[str]) -> Optional[Profile]:
        try:
            return self.profiles.get(profile_id)
        except ProviderError as exc:
            raise UpstreamFailure(f"Failed to load profile: {exc}") from exc

    # ─────────────────────────────────────────────────────────────────────
    # Phase 1: prepare (read-only)
    # ─────────────────────────────────────────────────────────────────────

    def prepare(self, target_user_id: str, actor: AuthorizationContext,
                new_password: Optional[str] = None) -> PrepResult:
        """Check whether ``actor`` may reset ``target_user_id``. Never mutates anything.

        Raises:
            UpstreamFailure: Store could not be read
        """
        violation = check_password_policy(new_password, self.password_min_length)
        if violation:
            return PrepResult(False, violation, "weak_password")

        target = self._load_profile(target_user_id)
        if target is None:
            return PrepResult(False, "Target user not found", TARGET_NOT_FOUND)
        if not target.email:
            return PrepResult(False, "Target user has no email", "target_without_email", target)

        if actor.is_trusted_caller:
            return PrepResult(True, target=target)

        actor_profile = self._load_profile(actor.actor_id)
        if actor_profile is None:
            return PrepResult(False, "Caller profile not found", "actor_not_found", target)
        if not actor_profile.organization_id or actor_profile.organization_id != target.organization_id:
            return PrepResult(False, "Target user belongs to a different organization", "organization_mismatch", target)
        if target.role in self.protected_roles and actor_profile.role != self.super_admin_role:
            return PrepResult(
                False,
                f"Only {self.super_admin_role} may reset passwords for role {target.role}",
                "protected_target",
                target,
            )
        return PrepResult(True, target=target)

    # ─────────────────────────────────────────────────────────────────────
    # Phase 2: execute
    # ─────────────────────────────────────────────────────────────────────

    def _find_identity(self, target_user_id: str, target_email: str) -> Optional[Identity]:
        """Identity sharing the profile id, else the one registered under ``target_email``."""
        try:
            identity = self.identities.get_user(target_user_id)
            if identity is not None:
                if (identity.email or "").lower() != target_email.lower():
                    logger.warning(
                        "[reset] Identity %s is registered as %s, profile email is %s",
                        identity.id,
                        identity.email,
                        target_email,
                    )
                return identity
            return self.directory.find_by_email(target_email)
        except ProviderError as exc:
            raise UpstreamFailure(f"Identity lookup failed: {exc}") from exc

    def execute(self, target_user_id: str, target_email: str, new_password: Optional[str] = None,
                force_must_change: bool = True) -> ExecResult:
        """Apply the new credential, then set the forced-change flag.

        A target without an identity gets one provisioned with the new password.
        No retry and no rollback: a credential already applied stays applied.

        Raises:
            UpstreamFailure: Provider or store failure
        """
        generated = new_password is None
        password = generate_temp_password(self.temp_password_length) if generated else new_password

        identity = self._find_identity(target_user_id, target_email)
        if identity is not None:
            try:
                self.identities.update_password(identity.id, password)
            except ProviderError as exc:
                raise UpstreamFailure(f"Failed to update password: {exc}") from exc
            identity_id, created = identity.id, False
        else:
            logger.warning("[reset] No identity for %s; provisioning one", target_email)
            provisioned = self.provisioner.ensure_identity(
                target_email, target_user_id, password, mark_profile=False
            )
            identity_id, created = provisioned.identity_id, provisioned.created
            if not provisioned.created:
                # created concurrently by another caller; apply our password
                try:
                    self.identities.update_password(identity_id, password)
                except ProviderError as exc:
                    raise UpstreamFailure(f"Failed to update password: {exc}") from exc

        try:
            self.profiles.set_must_change_password(force_must_change, profile_id=target_user_id)
        except ProviderError as exc:
            raise UpstreamFailure(f"Password updated but the profile flag was not: {exc}") from exc

        return ExecResult(
            identity_id=identity_id,
            target_email=target_email,
            created_identity=created,
            temporary_password=password if generated else None,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Audited entry points
    # ─────────────────────────────────────────────────────────────────────

    def _check_rate_limit(self, ctx: AuthorizationContext, target_user_id: Optional[str],
                          target_email: Optional[str]) -> None:
        if self.rate_limiter is None:
            return
        identifier = (target_email or target_user_id or "").strip().lower()
        if not identifier:
            return
        try:
            allowed = self.rate_limiter.allow(identifier)
        except ProviderError as exc:
            raise UpstreamFailure(f"Rate limit check failed: {exc}") from exc
        if allowed:
            return

        logger.warning(
            "[reset] rate_limit_exceeded | target=%s | actor=%s | limit=%d/%dmin",
            identifier,
            ctx.audit_actor,
            self.rate_limiter.max_attempts,
            self.rate_limiter.window_minutes,
        )
        self.auditor.record(
            ctx.audit_actor,
            "password_reset",
            target_user_id or identifier,
            {"auth_method": ctx.method, "phase": "rate_limit", "event": "rate_limit_exceeded",
             "identifier": identifier},
            outcome="rejected",
        )
        raise RateLimited("Rate limit exceeded. Please try again later.")

    def _resolve_target_id(self, target_user_id: Optional[str], target_email: Optional[str]) -> str:
        if target_user_id and target_email:
            raise ValidationError("Provide exactly one of targetUserId or targetEmail")
        if target_user_id:
            return target_user_id
        if not target_email:
            raise ValidationError("targetUserId or targetEmail is required")
        email = validate_email(target_email)
        try:
            profile = self.profiles.get_by_email(email)
        except ProviderError as exc:
            raise UpstreamFailure(f"Failed to load profile: {exc}") from exc
        if profile is None:
            raise NotFound(f"No profile for {email}")
        return profile.id

    def reset_password(
        self,
        ctx: AuthorizationContext,
        *,
        target_user_id: Optional[str] = None,
        target_email: Optional[str] = None,
        new_password: Optional[str] = None,
        force_must_change: bool = True,
    ) -> ExecResult:
        """Run prepare then execute for one target and audit the outcome.

        Raises:
            ValidationError: Bad target selection
            NotFound: Target profile does not exist
            PrepareRejected: Prepare refused the reset
            RateLimited: Too many resets for this target in the current window
            UpstreamFailure: Provider or store failure
        """
        self._check_rate_limit(ctx, target_user_id, target_email)
        target_id = self._resolve_target_id(target_user_id, target_email)
        reset = PasswordReset(target_id, new_password, force_must_change)
        metadata: dict[str, Any] = {"auth_method": ctx.method, "force_must_change": force_must_change}

        try:
            prep = self.prepare(target_id, ctx, new_password)
        except ReconciliationError as exc:
            self.auditor.record(ctx.audit_actor, "password_reset", target_id,
                                {**metadata, "phase": "prepare", "error": exc.detail}, outcome="failure")
            raise

        if not prep.success:
            reset.rejected(prep)
            self.auditor.record(ctx.audit_actor, "password_reset", target_id,
                                {**metadata, "phase": "prepare", "reason": prep.reason, "code": prep.code},
                                outcome="rejected")
            logger.info("[reset] Prepare rejected for %s: %s", target_id, prep.code)
            if prep.code == TARGET_NOT_FOUND:
                raise NotFound(prep.reason, code=TARGET_NOT_FOUND)
            if prep.code == "weak_password":
                raise ValidationError(prep.reason, code="weak_password")
            raise PrepareRejected(prep.reason, reason_code=prep.code)

        reset.prepared(prep)
        try:
            result = self.execute(target_id, prep.target.email, new_password, force_must_change)
        except ReconciliationError as exc:
            self.auditor.record(ctx.audit_actor, "password_reset", target_id,
                                {**metadata, "phase": "execute", "target_email": prep.target.email,
                                 "error": exc.detail}, outcome="failure")
            raise

        reset.executed(result)
        self.auditor.record(
            ctx.audit_actor,
            "password_reset",
            target_id,
            {
                **metadata,
                "phase": "execute",
                "target_email": result.target_email,
                "identity_id": result.identity_id,
                "created_new_identity": result.created_identity,
            },
        )
        logger.info("[reset] Password reset for %s (identity=%s)", result.target_email, result.identity_id)
        return result

    def reset_passwords_bulk(
        self,
        ctx: AuthorizationContext,
        target_ids: list[str],
        new_password: Optional[str] = None,
        force_must_change: bool = True,
    ) -> dict:
        """Reset several targets independently; one failure does not stop the rest."""
        if not target_ids or not isinstance(target_ids, list):
            raise ValidationError("targetUserIds must be a non-empty list")

        results = []
        errors = []
        for target_id in target_ids:
            try:
                result = self.reset_password(
                    ctx,
                    target_user_id=str(target_id),
                    new_password=new_password,
                    force_must_change=force_must_change,
                )
            except ReconciliationError as exc:
                errors.append({"userId": target_id, "error": exc.detail, "code": exc.code})
                continue
            entry = {"userId": target_id, "success": True, "targetEmail": result.target_email}
            if result.temporary_password:
                entry["temporaryPassword"] = result.temporary_password
            results.append(entry)

        return {
            "success": not errors,
            "message": f"Reset {len(results)} of {len(target_ids)} password(s)",
            "results": results,
            "errors": errors,
        }
