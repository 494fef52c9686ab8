"""Service wiring from an AppConfig."""
from __future__ import annotations
from dataclasses import dataclass

from ..config.settings import AppConfig
from .audit import OperationAuditor
from .authorization import AuthorizationGate
from .password_reset import PasswordResetOrchestrator
from .provisioning_service import IdentityProvisioner, ProvisioningService
from .supabase import AttemptLimiter, IdentityService, PagedIdentityDirectory, ProfileStore, ProviderClient
from .sync_audit import SyncAuditor


@dataclass
class Services:
    """Container of the services one process shares across requests."""
    gate: AuthorizationGate
    provisioning: ProvisioningService
    resets: PasswordResetOrchestrator
    sync: SyncAuditor
    auditor: OperationAuditor


def build_services(
    cfg: AppConfig,
    *,
    client: ProviderClient | None = None,
    identities: IdentityService | None = None,
    profiles: ProfileStore | None = None,
    auditor: OperationAuditor | None = None,
    rate_limiter: AttemptLimiter | None = None,
) -> Services:
    """Build every service from configuration. Collaborators can be injected for tests."""
    client = client or ProviderClient(cfg.supabase_url, cfg.supabase_service_role_key, timeout=cfg.request_timeout)
    identities = identities or IdentityService(client)
    profiles = profiles or ProfileStore(client, cfg.profile_scan_page_size, cfg.profile_scan_max_pages)
    auditor = auditor or OperationAuditor(cfg.audit_log_dir, cfg.audit_log_signing_key)
    directory = PagedIdentityDirectory(identities, cfg.identity_lookup_page_size, cfg.identity_lookup_max_pages)
    if rate_limiter is None and cfg.reset_rate_limit_enabled:
        rate_limiter = AttemptLimiter(client, cfg.reset_rate_limit_attempts, cfg.reset_rate_limit_window_minutes)

    provisioner = IdentityProvisioner(
        directory,
        identities,
        profiles,
        temp_password_length=cfg.temp_password_length,
        password_min_length=cfg.password_min_length,
    )
    return Services(
        gate=AuthorizationGate(cfg, identities, profiles),
        provisioning=ProvisioningService(
            provisioner,
            profiles,
            auditor,
            default_role=cfg.default_profile_role,
            protected_roles=cfg.protected_target_roles,
            super_admin_role=cfg.super_admin_role,
        ),
        resets=PasswordResetOrchestrator(
            directory,
            identities,
            profiles,
            provisioner,
            auditor,
            protected_roles=cfg.protected_target_roles,
            super_admin_role=cfg.super_admin_role,
            temp_password_length=cfg.temp_password_length,
            password_min_length=cfg.password_min_length,
            rate_limiter=rate_limiter,
        ),
        sync=SyncAuditor(directory, profiles, provisioner, auditor),
        auditor=auditor,
    )
