"""Profile records in the primary store (PostgREST ``/rest/v1/profiles``)."""
from __future__ import annotations
import logging
from typing import Iterator, Optional

from ..models import Profile
from .client import ProviderClient

logger = logging.getLogger(__name__)

PROFILES_PATH = "/rest/v1/profiles"
PROFILE_COLUMNS = "id,email,role,organization_id,must_change_password,first_name,last_name"
RETURN_REPRESENTATION = {"Prefer": "return=representation"}


class ProfileStore:
    """Service for reading and writing profile rows."""

    def __init__(self, client: ProviderClient, page_size: int = 1000, max_pages: int = 50):
        self.client = client
        self.page_size = page_size
        self.max_pages = max_pages

    def _select_one(self, column: str, value: str) -> Optional[Profile]:
        resp = self.client.get(
            PROFILES_PATH,
            params={"select": PROFILE_COLUMNS, column: f"eq.{value}", "limit": 1},
        )
        rows = resp.json() or []
        return Profile.from_row(rows[0]) if rows else None

    def get(self, profile_id: str) -> Optional[Profile]:
        """Return the profile with this id, or None."""
        if not profile_id:
            return None
        return self._select_one("id", profile_id)

    def get_by_email(self, email: str) -> Optional[Profile]:
        """Return the profile registered for ``email``, or None.

        Emails are stored lower-cased; the match is exact (no pattern characters).
        """
        if not email:
            return None
        return self._select_one("email", email.strip().lower())

    def insert(self, profile: Profile) -> Profile:
        resp = self.client.post(PROFILES_PATH, json=profile.to_row(), headers=RETURN_REPRESENTATION)
        rows = resp.json() or []
        logger.info("[profiles] Profile %s inserted", profile.id)
        return Profile.from_row(rows[0]) if rows else profile

    def delete(self, profile_id: str) -> None:
        self.client.delete(PROFILES_PATH, params={"id": f"eq.{profile_id}"})
        logger.info("[profiles] Profile %s deleted", profile_id)

    def set_must_change_password(self, value: bool, *, profile_id: Optional[str] = None,
                                 email: Optional[str] = None) -> int:
        """Set the forced-change flag by id, or by email when the id is unknown.

        Returns:
            Number of rows updated
        """
        if profile_id:
            params = {"id": f"eq.{profile_id}"}
        elif email:
            params = {"email": f"eq.{email.strip().lower()}"}
        else:
            raise ValueError("profile_id or email is required")

        resp = self.client.patch(
            PROFILES_PATH,
            json={"must_change_password": value},
            params=params,
            headers=RETURN_REPRESENTATION,
        )
        rows = resp.json() or []
        if not rows:
            logger.warning("[profiles] must_change_password update matched no profile (%s)", params)
        return len(rows)

    def iter_profiles(self) -> Iterator[Profile]:
        """Yield every profile, ``page_size`` rows at a time, for at most ``max_pages`` pages."""
        for page in range(self.max_pages):
            resp = self.client.get(
                PROFILES_PATH,
                params={
                    "select": PROFILE_COLUMNS,
                    "order": "id.asc",
                    "limit": self.page_size,
                    "offset": page * self.page_size,
                },
            )
            rows = resp.json() or []
            for row in rows:
                yield Profile.from_row(row)
            if len(rows) < self.page_size:
                return
        logger.warning("[profiles] Profile scan stopped at page cap (%d pages)", self.max_pages)
