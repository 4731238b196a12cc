# Overview: Service-layer operations for auth; password hashing, login and user records.

"""
Authentication Service

WHY: Every order and stock change must be attributable to a staff login.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS)
- Minimum 8 characters, at least one letter and one digit
- Session tokens managed separately (see session_service.py)
"""

from __future__ import annotations

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import ROLES, User
from cafepos.time_utils import utcnow


class PasswordValidationError(ValueError):
    """Raised when password doesn't meet strength requirements."""
    code = "VALIDATION_ERROR"
    status = 400


class UserExistsError(ValueError):
    code = "DUPLICATE_USERNAME"
    status = 409


class InactiveUserError(Exception):
    """Credentials matched a deactivated account."""


def _username_key():
    return db.func.lower(User.username)


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one letter
    - At least one digit
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Validate strength, then bcrypt with the configured cost factor."""
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe via bcrypt.checkpw(); malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    *,
    username: str,
    password: str,
    role: str = "staff",
    full_name: str | None = None,
) -> User:
    """
    Create a user. Raises ValueError on unknown role, UserExistsError on a
    taken username, PasswordValidationError on a weak password.
    """
    username = (username or "").strip()
    if not username:
        raise ValueError("username is required")
    if role not in ROLES:
        raise ValueError(f"role must be one of: {', '.join(ROLES)}")

    existing = db.session.query(User).filter(_username_key() == username.lower()).first()
    if existing:
        raise UserExistsError(f"Username {username!r} already exists")

    user = User(
        username=username,
        full_name=full_name,
        password_hash=hash_password(password),
        role=role,
        is_active=True,
        created_at=utcnow(),
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Returns the User when the credentials match, else None.
    Raises InactiveUserError when they match a deactivated account.
    Updates last_login_at on success.
    """
    user = find_user(username)
    if not user:
        return None

    if verify_password(password, user.password_hash):
        if not user.is_active:
            raise InactiveUserError(user.username)
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def find_user(username: str) -> User | None:
    return db.session.query(User).filter(
        _username_key() == (username or "").strip().lower()
    ).first()
