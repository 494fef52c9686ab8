"""Attempt limiting backed by the primary store.

The store function ``check_auth_rate_limit`` records the attempt and answers
whether the identifier is still under its limit, so counting survives restarts
and is shared by every worker.
"""
from __future__ import annotations
import logging

from .client import ProviderClient

logger = logging.getLogger(__name__)

RATE_LIMIT_RPC_PATH = "/rest/v1/rpc/check_auth_rate_limit"


class AttemptLimiter:
    """Per-identifier attempt counter (``max_attempts`` per ``window_minutes``)."""

    def __init__(self, client: ProviderClient, max_attempts: int = 3, window_minutes: int = 15):
        if max_attempts < 1 or window_minutes < 1:
            raise ValueError("max_attempts and window_minutes must be >= 1")
        self.client = client
        self.max_attempts = max_attempts
        self.window_minutes = window_minutes

    def allow(self, identifier: str) -> bool:
        """Record an attempt for ``identifier`` and return False once it is over the limit.

        Raises:
            ProviderError: The store could not be asked
        """
        resp = self.client.post(
            RATE_LIMIT_RPC_PATH,
            json={
                "user_identifier": identifier,
                "max_attempts": self.max_attempts,
                "window_minutes": self.window_minutes,
            },
        )
        allowed = resp.json() is True
        if not allowed:
            logger.debug("[rate-limit] %s over %d attempts / %d min", identifier, self.max_attempts,
                         self.window_minutes)
        return allowed
