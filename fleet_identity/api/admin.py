"""Administrative identity and credential routes."""
from __future__ import annotations
import logging

from flask import Blueprint, jsonify, request, g

from fleet_identity.api.decorators import get_services, require_admin
from fleet_identity.core.audit import DEFAULT_RECENT_LIMIT
from fleet_identity.core.errors import ValidationError

logger = logging.getLogger(__name__)

bp = Blueprint("admin", __name__)

MAX_LOG_LIMIT = 500


def _optional_str(body: dict, key: str):
    value = body.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value


def _optional_bool(body: dict, key: str, default: bool) -> bool:
    value = body.get(key, default)
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be a boolean")
    return value


# ─────────────────────────────────────────────────────────────────────────────
# Provision identity
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/identities/provision", methods=["POST"])
@require_admin
def provision_identity():
    """Ensure the identity behind a profile exists."""
    body = g.json_body
    result = get_services().provisioning.provision_identity(
        g.auth_context,
        email=_optional_str(body, "email"),
        profile_id=_optional_str(body, "profileId"),
        password=_optional_str(body, "password"),
    )
    return jsonify(result.to_response()), 200


# ─────────────────────────────────────────────────────────────────────────────
# Reset password
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/passwords/reset", methods=["POST"])
@require_admin
def reset_password():
    """Two-phase reset for one target, or for ``targetUserIds`` in bulk."""
    body = g.json_body
    resets = get_services().resets
    new_password = _optional_str(body, "newPassword")
    force_must_change = _optional_bool(body, "forceMustChange", True)

    if "targetUserIds" in body:
        summary = resets.reset_passwords_bulk(
            g.auth_context,
            body.get("targetUserIds"),
            new_password=new_password,
            force_must_change=force_must_change,
        )
        return jsonify(summary), 200

    result = resets.reset_password(
        g.auth_context,
        target_user_id=_optional_str(body, "targetUserId"),
        target_email=_optional_str(body, "targetEmail"),
        new_password=new_password,
        force_must_change=force_must_change,
    )
    return jsonify(result.to_response()), 200


# ─────────────────────────────────────────────────────────────────────────────
# Create user (profile + identity)
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/users", methods=["POST"])
@require_admin
def create_user():
    body = g.json_body
    result = get_services().provisioning.create_user(
        g.auth_context,
        email=_optional_str(body, "email"),
        role=_optional_str(body, "role"),
        first_name=_optional_str(body, "firstName") or "",
        last_name=_optional_str(body, "lastName") or "",
        password=_optional_str(body, "password"),
        organization_id=_optional_str(body, "organizationId"),
    )
    return jsonify(result.to_response()), 201


# ─────────────────────────────────────────────────────────────────────────────
# Drift audit and operation log
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/sync-audit", methods=["GET", "POST"])
@require_admin
def sync_audit():
    """Report profile/identity drift; ``repair`` provisions missing identities (POST only)."""
    repair = False
    if request.method == "POST":
        repair = _optional_bool(g.json_body, "repair", False)
    report = get_services().sync.audit(g.auth_context, repair=repair)
    return jsonify({"success": True, **report.to_dict()}), 200


@bp.route("/operation-logs", methods=["GET"])
@require_admin
def operation_logs():
    raw_limit = request.args.get("limit", str(DEFAULT_RECENT_LIMIT))
    try:
        limit = int(raw_limit)
    except ValueError:
        raise ValidationError("limit must be an integer")
    if limit < 1 or limit > MAX_LOG_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_LOG_LIMIT}")
    entries = get_services().auditor.recent(limit)
    return jsonify({"success": True, "count": len(entries), "entries": entries}), 200
