"""
auth/validation.py -- Credential validation for sign-in and registration.

Checks run field by field in a fixed order (email first, then password, then
confirmation) and every failure is reported, so a client submitting an empty
login form learns about both missing fields at once. Each failure is a
FieldError(field, message); the route layer turns a non-empty list into a 422
validation_error envelope.

Layer rule: pure functions, no imports from api/, library/, or cache/.
"""

from __future__ import annotations

import re
from typing import NamedTuple

MIN_PASSWORD_LENGTH = 8

# Deliberately loose: one "@", something on each side, a dot in the domain.
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class FieldError(NamedTuple):
    field: str
    message: str


def validate_login(email: str, password: str) -> list[FieldError]:
    """Return the ordered list of problems with a sign-in form."""
    errors: list[FieldError] = []
    if not email or not email.strip():
        errors.append(FieldError("email", "Email is required"))
    if not password:
        errors.append(FieldError("password", "Password is required"))
    return errors


def validate_registration(email: str, password: str, confirm_password: str) -> list[FieldError]:
    """Return the ordered list of problems with a registration form."""
    errors: list[FieldError] = []

    if not email or not email.strip():
        errors.append(FieldError("email", "Email is required"))
    elif not _EMAIL_RE.match(email.strip()):
        errors.append(FieldError("email", "Email address is invalid"))

    if not password:
        errors.append(FieldError("password", "Password is required"))
    elif len(password) < MIN_PASSWORD_LENGTH:
        errors.append(FieldError("password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters"))

    if password != confirm_password:
        errors.append(FieldError("confirm_password", "Passwords do not match"))

    return errors


def password_strength(password: str) -> str:
    """Rate a password as "weak", "medium" or "strong".

    Anything under the minimum length is weak. Beyond that, one point each
    for 12+ characters, mixed case, a digit, and a symbol: 0-1 points is
    weak, 2-3 medium, 4 strong.
    """
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        return "weak"
    score = 0
    if len(password) >= 12:
        score += 1
    if re.search(r"[a-z]", password) and re.search(r"[A-Z]", password):
        score += 1
    if re.search(r"\d", password):
        score += 1
    if re.search(r"[^A-Za-z0-9]", password):
        score += 1
    if score >= 4:
        return "strong"
    if score >= 2:
        return "medium"
    return "weak"
