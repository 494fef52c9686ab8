"""Input validation helpers for administrative payloads."""
from __future__ import annotations
import re
import secrets
import string
from typing import Optional

from .errors import ValidationError

EMAIL_MAX_LENGTH = 254
NAME_MAX_LENGTH = 128
PASSWORD_MAX_LENGTH = 72
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PROFILE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

TEMP_PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*"


def validate_email(email: Optional[str]) -> str:
    """Validate email address.

    Args:
        email: Email address to validate

    Returns:
        Trimmed, lower-cased email address

    Raises:
        ValidationError: If email is invalid
    """
    email = (email or "").strip().lower()
    if not email:
        raise ValidationError("email is required")
    if len(email) > EMAIL_MAX_LENGTH:
        raise ValidationError(f"email must not exceed {EMAIL_MAX_LENGTH} characters")
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("email format is invalid")
    return email


def validate_profile_id(profile_id: Optional[str], field: str = "profileId") -> str:
    profile_id = (profile_id or "").strip()
    if not profile_id:
        raise ValidationError(f"{field} is required")
    if not PROFILE_ID_PATTERN.match(profile_id):
        raise ValidationError(f"{field} format is invalid")
    return profile_id


def validate_name(name: Optional[str], field: str, required: bool = False) -> str:
    """Validate first/last name fields.

    Raises:
        ValidationError: If name is invalid
    """
    name = (name or "").strip()
    if not name:
        if required:
            raise ValidationError(f"{field} is required")
        return ""
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(f"{field} exceeds maximum length")
    if any(char in name for char in "<>\"'`;&|$"):
        raise ValidationError(f"{field} contains invalid characters")
    return name


def validate_role(role: Optional[str], default: str) -> str:
    role = (role or default).strip().lower()
    if not re.match(r"^[a-z_]{2,64}$", role):
        raise ValidationError("role must be 2-64 lowercase letters or underscores")
    return role


def check_password_policy(password: Optional[str], min_length: int) -> Optional[str]:
    """Return the policy violation for ``password``, or None when it is acceptable."""
    if password is None:
        return None
    if len(password) < min_length:
        return f"Password must be at least {min_length} characters"
    if len(password) > PASSWORD_MAX_LENGTH:
        return f"Password must not exceed {PASSWORD_MAX_LENGTH} characters"
    if password != password.strip():
        return "Password must not start or end with whitespace"
    return None


def validate_password(password: Optional[str], min_length: int) -> Optional[str]:
    """Raise ValidationError when a caller-supplied password breaks the policy."""
    violation = check_password_policy(password, min_length)
    if violation:
        raise ValidationError(violation, code="weak_password")
    return password


def generate_temp_password(length: int = 16) -> str:
    """
    Generate a secure temporary password.

    Args:
        length: Password length (default: 16)

    Returns:
        Random password with at least one uppercase, lowercase, digit and special char
    """
    while True:
        password = "".join(secrets.choice(TEMP_PASSWORD_ALPHABET) for _ in range(length))
        if (any(c.islower() for c in password)
                and any(c.isupper() for c in password)
                and any(c.isdigit() for c in password)
                and any(c in "!@#$%^&*" for c in password)):
            return password
