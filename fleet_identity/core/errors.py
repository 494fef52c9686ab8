"""Error taxonomy for administrative operations.

Every failure that leaves a service carries an HTTP status, a human-readable
detail and a short machine code. The API layer renders them with ``to_dict()``.
"""
from __future__ import annotations
from typing import Optional


class ReconciliationError(Exception):
    """Administrative operation failure with HTTP status and error code."""

    status = 500
    code = "internal_error"
    title = "Internal Server Error"

    def __init__(self, detail: str, *, status: Optional[int] = None, code: Optional[str] = None):
        self.detail = detail
        if status is not None:
            self.status = status
        if code is not None:
            self.code = code
        super().__init__(detail)

    def to_dict(self) -> dict:
        """Convert to JSON error response format."""
        return {
            "error": self.title,
            "details": self.detail,
            "code": self.code,
        }


class ValidationError(ReconciliationError):
    status = 400
    code = "invalid_request"
    title = "Bad Request"


class Unauthorized(ReconciliationError):
    status = 401
    code = "unauthorized"
    title = "Unauthorized"


class Forbidden(ReconciliationError):
    status = 403
    code = "forbidden"
    title = "Forbidden"


class NotFound(ReconciliationError):
    status = 404
    code = "not_found"
    title = "Not Found"


class Conflict(ReconciliationError):
    """Taxonomy placeholder for an existing identity; never raised.

    Provider duplicates are absorbed by the provisioner, which re-runs the lookup
    and reports the existing identity as success.
    """
    status = 409
    code = "conflict"
    title = "Conflict"


class PrepareRejected(ReconciliationError):
    """Password reset refused by the read-only prepare phase."""
    status = 403
    code = "prepare_rejected"
    title = "Prepare rejected"

    def __init__(self, reason: str, *, reason_code: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.reason_code = reason_code

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["reason"] = self.reason
        if self.reason_code:
            body["reasonCode"] = self.reason_code
        return body


class UpstreamFailure(ReconciliationError):
    """Identity provider or primary store failed or timed out. Callers may retry."""
    status = 500
    code = "upstream_failure"
    title = "Upstream failure"


class RateLimited(ReconciliationError):
    """Too many attempts for one target inside the limit window."""
    status = 429
    code = "rate_limited"
    title = "Too Many Requests"
