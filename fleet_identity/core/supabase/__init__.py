"""Identity provider and primary store client library.

Architecture:
- client.py: HTTP client with service-key authentication and timeouts
- users.py: Identity admin operations (list, create, update password, resolve caller)
- directory.py: Identity lookup by email (bounded paged scan)
- profiles.py: Profile rows in the primary store
- rate_limit.py: Store-backed attempt limiting
- exceptions.py: Typed exceptions for error handling

Usage:
    from fleet_identity.core.supabase import ProviderClient, IdentityService, PagedIdentityDirectory

    client = ProviderClient("https://project.supabase.co", service_role_key)
    directory = PagedIdentityDirectory(IdentityService(client))
    identity = directory.find_by_email("driver@example.com")
"""
from .client import ProviderClient, REQUEST_TIMEOUT, extract_error_message
from .exceptions import (
    ProviderError,
    ProviderAPIError,
    ProviderUnavailableError,
    IdentityConflictError,
    InvalidCallerTokenError,
)
from .users import IdentityService, is_duplicate_error
from .directory import IdentityDirectory, PagedIdentityDirectory
from .profiles import ProfileStore
from .rate_limit import AttemptLimiter

__all__ = [
    # Client
    "ProviderClient",
    "REQUEST_TIMEOUT",
    "extract_error_message",

    # Exceptions
    "ProviderError",
    "ProviderAPIError",
    "ProviderUnavailableError",
    "IdentityConflictError",
    "InvalidCallerTokenError",

    # Services
    "IdentityService",
    "IdentityDirectory",
    "PagedIdentityDirectory",
    "ProfileStore",
    "AttemptLimiter",
    "is_duplicate_error",
]
