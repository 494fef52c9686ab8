"""
Flask decorators for administrative authorization.

Every administrative endpoint accepts either the shared administrative secret
(``adminSecret`` in the JSON body) or a caller bearer token in the
``Authorization`` header. The decision itself is made by the
``AuthorizationGate``; this module only extracts the credentials and stores
the resulting context on ``flask.g``.
"""

import logging
from functools import wraps
from typing import Optional

from flask import request, current_app, g

from fleet_identity.core.errors import ValidationError

logger = logging.getLogger(__name__)

JSON_MAX_SIZE_BYTES = 65536  # 64 KB


def get_services():
    return current_app.config["SERVICES"]


def extract_bearer_token() -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[len("Bearer "):].strip()
    return token or None


def get_json_body() -> dict:
    """Return the JSON object body (empty dict for bodiless GET requests).

    Raises:
        ValidationError: Body is too large, not JSON, or not an object
    """
    if request.content_length and request.content_length > JSON_MAX_SIZE_BYTES:
        raise ValidationError("Request payload too large", code="payload_too_large")
    if not request.data:
        return {}
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object", code="invalid_json")
    return payload


def require_admin(func):
    """
    Decorator enforcing the administrative authorization gate.

    On success sets:
        g.auth_context: AuthorizationContext of the caller
        g.json_body: Parsed request body

    Errors raised by the gate (Unauthorized, Forbidden, UpstreamFailure) are
    rendered by the registered error handlers.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        body = get_json_body()
        admin_secret = body.get("adminSecret")
        if admin_secret is not None and not isinstance(admin_secret, str):
            raise ValidationError("adminSecret must be a string")

        g.json_body = body
        g.auth_context = get_services().gate.authorize(admin_secret, extract_bearer_token())
        return func(*args, **kwargs)

    return wrapper
