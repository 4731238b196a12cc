# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/cafepos/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Login throttling to prevent brute-force attacks
- Account lockout after repeated failed attempts
- Session management with token-based auth
- No self-registration; accounts come from `flask users create`
"""

from flask import Blueprint, g, request

from ..decorators import bearer_token, require_auth
from ..errors import fail, internal_error, json_body, ok
from ..services import auth_service, login_throttle_service, session_service
from ..services.auth_service import InactiveUserError
from ..services.security_service import log_security_event

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Body: {username, password}
    Returns {token, user}. The token goes in `Authorization: Bearer <token>`.

    SECURITY:
    - Checks for account lockout before attempting authentication
    - Records failed attempts for throttling
    - Records successful logins for audit trail
    """
    data = json_body()
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    if not username or not password:
        return fail("VALIDATION_ERROR", 400, "username and password required")

    user_agent = request.headers.get("User-Agent")
    ip_address = request.remote_addr

    try:
        is_locked, seconds_remaining = login_throttle_service.is_account_locked(username)
        if is_locked:
            return fail(
                "ACCOUNT_LOCKED", 429,
                "Account temporarily locked due to too many failed login attempts",
                {"retry_after_seconds": seconds_remaining},
            )

        try:
            user = auth_service.authenticate(username, password)
        except InactiveUserError:
            login_throttle_service.record_failed_attempt(
                identifier=username, ip_address=ip_address, user_agent=user_agent,
                reason="Inactive account",
            )
            return fail("INACTIVE", 403, "Account is deactivated")

        if not user:
            failed_count = login_throttle_service.record_failed_attempt(
                identifier=username, ip_address=ip_address, user_agent=user_agent,
            )
            remaining = login_throttle_service.max_failed_attempts() - failed_count
            if remaining <= 0:
                return fail(
                    "ACCOUNT_LOCKED", 429,
                    "Account locked due to too many failed login attempts",
                )
            details = {"attempts_remaining": remaining} if remaining <= 3 else None
            return fail("UNAUTHORIZED", 401, "Invalid credentials", details)

        login_throttle_service.record_successful_login(
            user_id=user.id, identifier=username, ip_address=ip_address, user_agent=user_agent,
        )
        _, token = session_service.create_session(
            user, user_agent=user_agent, ip_address=ip_address
        )
    except Exception:
        return internal_error("login user")

    return ok({"token": token, "user": user.to_dict()})


@auth_bp.get("/me")
@require_auth
def me_route():
    return ok(g.current_user.to_dict())


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the presented session token."""
    try:
        session_service.revoke_session(bearer_token(), reason="User logout")
        log_security_event(
            user_id=g.current_user.id,
            event_type="LOGOUT",
            success=True,
            resource=request.path,
            action=request.method,
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
    except Exception:
        return internal_error("logout user")
    return ok({"logged_out": True})
