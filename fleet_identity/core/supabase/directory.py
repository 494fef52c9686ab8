"""Identity lookup by email.

The provider admin API has no find-by-email query, so the lookup lists users
page by page and filters locally. The walk is linear in the number of
identities and capped by configuration; swap in another ``IdentityDirectory``
once the provider offers an indexed query.
"""
from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from typing import Iterator, Optional

from ..models import Identity
from .users import IdentityService

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000
DEFAULT_MAX_PAGES = 50


class IdentityDirectory(ABC):
    """Read-only view of the provider's identities."""

    @abstractmethod
    def find_by_email(self, email: str) -> Optional[Identity]:
        """Return the identity registered for ``email`` (case-insensitive) or None."""

    @abstractmethod
    def iter_identities(self) -> Iterator[Identity]:
        """Yield every identity reachable by this directory."""


class PagedIdentityDirectory(IdentityDirectory):
    """Bounded page-by-page scan over ``GET /auth/v1/admin/users``.

    Stops at the first match, on an empty or short page, or after ``max_pages``.
    Page failures propagate as provider exceptions; an outage is never reported
    as "not found".
    """

    def __init__(self, identities: IdentityService, page_size: int = DEFAULT_PAGE_SIZE,
                 max_pages: int = DEFAULT_MAX_PAGES):
        if page_size < 1 or max_pages < 1:
            raise ValueError("page_size and max_pages must be positive")
        self.identities = identities
        self.page_size = page_size
        self.max_pages = max_pages

    def iter_identities(self) -> Iterator[Identity]:
        for page in range(1, self.max_pages + 1):
            users = self.identities.list_users(page=page, per_page=self.page_size)
            yield from users
            if len(users) < self.page_size:
                return
        logger.warning(
            "[directory] Scan stopped at page cap (%d pages of %d); later identities were not examined",
            self.max_pages,
            self.page_size,
        )

    def find_by_email(self, email: str) -> Optional[Identity]:
        wanted = (email or "").strip().lower()
        if not wanted:
            return None
        for identity in self.iter_identities():
            if identity.email.lower() == wanted:
                return identity
        return None
