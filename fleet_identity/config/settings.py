"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import logging
import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_ROLES = ["admin", "council", "super_admin", "compliance_officer"]


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                logger.info("[settings] Loaded %s from /run/secrets", secret_name)
                return secret_value
        except OSError as exc:
            logger.warning("[settings] Failed to read /run/secrets/%s: %s", secret_name, exc)

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            logger.info("[settings] Loaded %s from environment (fallback)", env_var)
            return secret_value

    return None


def _split_csv(raw: str | None, default: list[str]) -> list[str]:
    """Split a comma separated env value into lower-cased, non-empty entries."""
    if raw is None:
        return list(default)
    values = [item.strip().lower() for item in raw.split(",") if item.strip()]
    return values or list(default)


def _env_int(var_name: str, default: int, minimum: int = 1) -> int:
    raw = os.environ.get(var_name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {var_name} must be an integer (got {raw!r}).")
    return max(minimum, value)


def _env_bool(var_name: str, default: bool) -> bool:
    raw = os.environ.get(var_name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool

    # Identity provider / primary store (same project host)
    supabase_url: str
    supabase_service_role_key: str
    supabase_anon_key: str = ""
    supabase_jwt_secret: str = ""

    # Shared administrative secret (trusted server-to-server callers)
    admin_shared_secret: str = ""
    admin_shared_secret_fallbacks: list[str] = field(default_factory=list)
    admin_secret_auth_enabled: bool = True

    # Roles
    admin_roles: list[str] = field(default_factory=lambda: list(DEFAULT_ADMIN_ROLES))
    protected_target_roles: list[str] = field(default_factory=lambda: list(DEFAULT_ADMIN_ROLES))
    super_admin_role: str = "super_admin"
    default_profile_role: str = "driver"

    # Identity lookup (paged scan; the provider has no find-by-email query)
    identity_lookup_page_size: int = 1000
    identity_lookup_max_pages: int = 50
    profile_scan_page_size: int = 1000
    profile_scan_max_pages: int = 50

    # Outbound HTTP
    request_timeout: int = 10

    # Passwords
    temp_password_length: int = 16
    password_min_length: int = 8

    # Password reset attempt limit (per target, counted in the store)
    reset_rate_limit_enabled: bool = True
    reset_rate_limit_attempts: int = 3
    reset_rate_limit_window_minutes: int = 15

    # Audit
    audit_log_dir: str = ".runtime/audit"
    audit_log_signing_key: str = ""

    # Proxy
    trusted_proxy_ips: str = "127.0.0.1/32,::1/128"

    @property
    def accepted_admin_secrets(self) -> list[str]:
        """Secrets currently accepted by the shared-secret path (current + rotation fallbacks).

        Returns an empty list when the path is switched off, so a leaked value can be
        neutralised by configuration alone.
        """
        if not self.admin_secret_auth_enabled:
            return []
        candidates = [self.admin_shared_secret, *self.admin_shared_secret_fallbacks]
        return [value for value in candidates if value]

    @property
    def caller_api_key(self) -> str:
        """API key sent alongside caller tokens when resolving them at the provider."""
        return self.supabase_anon_key or self.supabase_service_role_key


def _get_or_generate(var_name: str, demo_default: Optional[str] = None, required: bool = True, demo_mode: bool = False) -> str:
    """Get environment variable or use demo default."""
    value = os.environ.get(var_name)
    if value:
        return value

    if demo_mode and demo_default is not None:
        logger.info("[demo-mode] Using default for %s", var_name)
        os.environ[var_name] = demo_default
        return demo_default

    if not required:
        return ""

    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    demo_mode = _env_bool("DEMO_MODE", False)

    supabase_url = _get_or_generate(
        "SUPABASE_URL",
        demo_default="http://127.0.0.1:54321",
        demo_mode=demo_mode,
    ).rstrip("/")

    # Service role key
    service_role_key = _load_secret_from_file("supabase_service_role_key", "SUPABASE_SERVICE_ROLE_KEY")
    if not service_role_key:
        if demo_mode:
            service_role_key = "demo-service-role-key"
            logger.info("[demo-mode] Using placeholder SUPABASE_SERVICE_ROLE_KEY")
        else:
            raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY not found in /run/secrets or environment")

    anon_key = os.environ.get("SUPABASE_ANON_KEY", "")
    jwt_secret = _load_secret_from_file("supabase_jwt_secret", "SUPABASE_JWT_SECRET") or ""

    # Shared administrative secret
    admin_secret = _load_secret_from_file("admin_reset_secret", "ADMIN_RESET_SECRET") or ""
    if not admin_secret and demo_mode:
        admin_secret = secrets.token_urlsafe(32)
        os.environ["ADMIN_RESET_SECRET"] = admin_secret
        logger.info("[demo-mode] Generated temporary ADMIN_RESET_SECRET")
    admin_secret_fallbacks = [
        value.strip()
        for value in os.environ.get("ADMIN_RESET_SECRET_FALLBACKS", "").split(",")
        if value.strip()
    ]
    admin_secret_auth_enabled = _env_bool("ADMIN_SECRET_AUTH_ENABLED", True)

    # Roles
    admin_roles = _split_csv(os.environ.get("ADMIN_ROLES"), DEFAULT_ADMIN_ROLES)
    protected_target_roles = _split_csv(os.environ.get("PROTECTED_TARGET_ROLES"), admin_roles)
    super_admin_role = os.environ.get("SUPER_ADMIN_ROLE", "super_admin").strip().lower()
    default_profile_role = os.environ.get("DEFAULT_PROFILE_ROLE", "driver").strip().lower()

    # Audit
    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY")
    if not audit_log_signing_key and demo_mode:
        audit_log_signing_key = os.environ.get(
            "AUDIT_LOG_SIGNING_KEY_DEMO", "demo-audit-signing-key-change-in-production"
        )
        logger.info("[demo-mode] Using demo AUDIT_LOG_SIGNING_KEY")

    # Trusted proxies
    trusted_proxy_ips = os.environ.get("TRUSTED_PROXY_IPS")
    if not trusted_proxy_ips:
        is_testing = os.environ.get("PYTEST_CURRENT_TEST") is not None
        if demo_mode or is_testing:
            trusted_proxy_ips = "127.0.0.1/32,::1/128"
        else:
            raise RuntimeError("TRUSTED_PROXY_IPS is required when DEMO_MODE is false.")

    cfg = AppConfig(
        demo_mode=demo_mode,
        supabase_url=supabase_url,
        supabase_service_role_key=service_role_key,
        supabase_anon_key=anon_key,
        supabase_jwt_secret=jwt_secret,
        admin_shared_secret=admin_secret,
        admin_shared_secret_fallbacks=admin_secret_fallbacks,
        admin_secret_auth_enabled=admin_secret_auth_enabled,
        admin_roles=admin_roles,
        protected_target_roles=protected_target_roles,
        super_admin_role=super_admin_role,
        default_profile_role=default_profile_role,
        identity_lookup_page_size=_env_int("IDENTITY_LOOKUP_PAGE_SIZE", 1000),
        identity_lookup_max_pages=_env_int("IDENTITY_LOOKUP_MAX_PAGES", 50),
        profile_scan_page_size=_env_int("PROFILE_SCAN_PAGE_SIZE", 1000),
        profile_scan_max_pages=_env_int("PROFILE_SCAN_MAX_PAGES", 50),
        request_timeout=_env_int("REQUEST_TIMEOUT", 10),
        temp_password_length=max(16, _env_int("TEMP_PASSWORD_LENGTH", 16)),
        password_min_length=_env_int("PASSWORD_MIN_LENGTH", 8),
        reset_rate_limit_enabled=_env_bool("RESET_RATE_LIMIT_ENABLED", True),
        reset_rate_limit_attempts=_env_int("RESET_RATE_LIMIT_ATTEMPTS", 3),
        reset_rate_limit_window_minutes=_env_int("RESET_RATE_LIMIT_WINDOW_MINUTES", 15),
        audit_log_dir=os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"),
        audit_log_signing_key=audit_log_signing_key or "",
        trusted_proxy_ips=trusted_proxy_ips,
    )

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    logger.info(
        "[settings] Mode=%s; provider=%s; admin_roles=%s; secret_path=%s",
        mode_label,
        supabase_url,
        ",".join(admin_roles),
        "enabled" if cfg.accepted_admin_secrets else "disabled",
    )
    if demo_mode:
        logger.warning("[settings] Demo credentials in use. Do not deploy with these defaults.")

    return cfg
