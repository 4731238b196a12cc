"""
Login Throttling Service

Keyed rate limiter over a sliding window: failed logins per identity are
counted from the security_events table, so the limit survives restarts and
holds across several app processes sharing one database.

- LOGIN_MAX_FAILED_ATTEMPTS failures within LOGIN_LOCKOUT_WINDOW_MINUTES
  lock the identity
- the lock lasts LOGIN_LOCKOUT_DURATION_MINUTES after the latest failure
- a successful login does not erase history; it simply stops adding failures
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SecurityEvent
from cafepos.time_utils import utcnow
from .auth_service import find_user

LOGIN_RESOURCE = "/auth/login"


def max_failed_attempts() -> int:
    return current_app.config.get("LOGIN_MAX_FAILED_ATTEMPTS", 5)


def _window() -> timedelta:
    return timedelta(minutes=current_app.config.get("LOGIN_LOCKOUT_WINDOW_MINUTES", 10))


def _duration() -> timedelta:
    return timedelta(minutes=current_app.config.get("LOGIN_LOCKOUT_DURATION_MINUTES", 10))


def _identity(identifier: str) -> str:
    return (identifier or "").strip().lower()


def get_recent_failed_attempts(identifier: str) -> int:
    """Count LOGIN_FAILED events for the identity inside the window."""
    cutoff = utcnow() - _window()
    return db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == "LOGIN_FAILED",
        SecurityEvent.action == _identity(identifier),
        SecurityEvent.occurred_at >= cutoff,
    ).count()


def is_account_locked(identifier: str) -> tuple[bool, int | None]:
    """
    Returns:
    - (True, seconds_remaining) if locked
    - (False, None) if not locked
    """
    if get_recent_failed_attempts(identifier) < max_failed_attempts():
        return False, None

    most_recent = db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == "LOGIN_FAILED",
        SecurityEvent.action == _identity(identifier),
    ).order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc()).first()

    if most_recent:
        lockout_end = most_recent.occurred_at + _duration()
        now = utcnow()
        if now < lockout_end:
            return True, int((lockout_end - now).total_seconds())

    return False, None


def record_failed_attempt(
    identifier: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
    reason: str = "Invalid credentials",
) -> int:
    """Record a failure; returns the number of recent failures including this one."""
    user = find_user(identifier)
    db.session.add(SecurityEvent(
        user_id=user.id if user else None,
        event_type="LOGIN_FAILED",
        resource=LOGIN_RESOURCE,
        action=_identity(identifier),
        success=False,
        reason=reason,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
        occurred_at=utcnow(),
    ))
    db.session.commit()

    count = get_recent_failed_attempts(identifier)
    current_app.logger.warning(
        "Failed login for %r from %s (%d recent failures)", _identity(identifier), ip_address, count
    )
    return count


def record_successful_login(
    user_id: int,
    identifier: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    db.session.add(SecurityEvent(
        user_id=user_id,
        event_type="LOGIN_SUCCESS",
        resource=LOGIN_RESOURCE,
        action=_identity(identifier),
        success=True,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
        occurred_at=utcnow(),
    ))
    db.session.commit()
