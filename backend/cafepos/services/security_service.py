# Overview: Append-only security audit trail (permission denials, logouts).

from __future__ import annotations

from ..extensions import db
from ..models import SecurityEvent
from cafepos.time_utils import utcnow


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SecurityEvent:
    """
    Commit one SecurityEvent row.

    event_type examples:
    - LOGIN_FAILED / LOGIN_SUCCESS (written by login_throttle_service)
    - PERMISSION_DENIED
    - LOGOUT
    - USER_CREATED
    """
    event = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    db.session.commit()
    return event
