"""Drift detection between profiles and identities.

Both sides are walked with their bounded scans and matched by lower-cased
email. With ``repair=True`` every profile without an identity goes through the
provisioner, so repairs are as duplicate-safe as a regular provision call.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field, asdict

from .audit import OperationAuditor
from .errors import ReconciliationError, UpstreamFailure
from .models import AuthorizationContext
from .provisioning_service import IdentityProvisioner
from .supabase import IdentityDirectory, ProfileStore, ProviderError

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    profiles_without_identity: list = field(default_factory=list)
    identities_without_profile: list = field(default_factory=list)
    id_mismatches: list = field(default_factory=list)
    repaired: list = field(default_factory=list)
    repair_failures: list = field(default_factory=list)
    scanned_identities: int = 0
    scanned_profiles: int = 0

    @property
    def in_sync(self) -> bool:
        return not (self.profiles_without_identity or self.identities_without_profile or self.id_mismatches)

    def to_dict(self) -> dict:
        body = asdict(self)
        body["in_sync"] = self.in_sync
        return body


class SyncAuditor:
    """Compare profiles against identities and optionally provision the missing ones."""

    def __init__(self, directory: IdentityDirectory, profiles: ProfileStore,
                 provisioner: IdentityProvisioner, auditor: OperationAuditor):
        self.directory = directory
        self.profiles = profiles
        self.provisioner = provisioner
        self.auditor = auditor

    def audit(self, ctx: AuthorizationContext, repair: bool = False) -> SyncReport:
        """Scan both sides and report drift.

        Raises:
            UpstreamFailure: A scan page could not be read
        """
        report = SyncReport()
        try:
            identities = {}
            for identity in self.directory.iter_identities():
                report.scanned_identities += 1
                if identity.email:
                    identities[identity.email.lower()] = identity
            profiles = list(self.profiles.iter_profiles())
        except ProviderError as exc:
            self.auditor.record(ctx.audit_actor, "sync_audit", None,
                                {"repair": repair, "error": str(exc)}, outcome="failure")
            raise UpstreamFailure(f"Sync audit scan failed: {exc}") from exc

        report.scanned_profiles = len(profiles)
        profile_emails = set()
        for profile in profiles:
            if not profile.email:
                continue
            email = profile.email.lower()
            profile_emails.add(email)
            identity = identities.get(email)
            if identity is None:
                report.profiles_without_identity.append({"profile_id": profile.id, "email": email})
            elif identity.id != profile.id:
                report.id_mismatches.append(
                    {"profile_id": profile.id, "identity_id": identity.id, "email": email}
                )

        for email, identity in identities.items():
            if email not in profile_emails:
                report.identities_without_profile.append({"identity_id": identity.id, "email": email})

        if repair:
            for missing in report.profiles_without_identity:
                try:
                    result = self.provisioner.ensure_identity(missing["email"], missing["profile_id"])
                except ReconciliationError as exc:
                    logger.warning("[sync] Repair failed for %s: %s", missing["email"], exc.detail)
                    report.repair_failures.append({**missing, "error": exc.detail})
                    continue
                # temporary passwords stay out of the report
                repaired = {**missing, "identity_id": result.identity_id, "created": result.created}
                if result.flag_error:
                    repaired["flag_error"] = result.flag_error
                report.repaired.append(repaired)

        logger.info(
            "[sync] Scanned %d profiles / %d identities: %d missing identities, %d orphan identities, "
            "%d id mismatches, %d repaired",
            report.scanned_profiles,
            report.scanned_identities,
            len(report.profiles_without_identity),
            len(report.identities_without_profile),
            len(report.id_mismatches),
            len(report.repaired),
        )
        self.auditor.record(
            ctx.audit_actor,
            "sync_audit",
            None,
            {
                "repair": repair,
                "auth_method": ctx.method,
                "profiles_without_identity": len(report.profiles_without_identity),
                "identities_without_profile": len(report.identities_without_profile),
                "id_mismatches": len(report.id_mismatches),
                "repaired": len(report.repaired),
                "repair_failures": len(report.repair_failures),
            },
            outcome="success" if not report.repair_failures else "failure",
        )
        return report
