# Overview: Request authentication and role decorators for API routes.

from functools import wraps

from flask import current_app, g, request

from .errors import fail
from .services import session_service
from .services.security_service import log_security_event


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def require_auth(f):
    """
    Require a valid bearer session.

    Sets g.current_user to the authenticated User.

    SECURITY: Returns 401 if:
    - No Authorization header (UNAUTHORIZED)
    - Invalid, expired, idle or revoked token (INVALID_TOKEN)
    - User account deactivated (INVALID_TOKEN)
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if token is None:
            return fail("UNAUTHORIZED", 401, "Authentication required")

        user = session_service.validate_session(token)
        if user is None:
            return fail("INVALID_TOKEN", 401, "Invalid or expired token")

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require the authenticated user to hold one of `roles`.

    Must be stacked under @require_auth. Denials are written to the
    security audit trail.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return fail("UNAUTHORIZED", 401, "Authentication required")

            if user.role not in roles:
                log_security_event(
                    user_id=user.id,
                    event_type="PERMISSION_DENIED",
                    success=False,
                    resource=request.path,
                    action=request.method,
                    reason=f"Requires one of: {', '.join(roles)}",
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                )
                current_app.logger.warning(
                    "Permission denied: user=%s role=%s %s %s",
                    user.username, user.role, request.method, request.path,
                )
                return fail("FORBIDDEN", 403, f"Requires one of: {', '.join(roles)}")

            return f(*args, **kwargs)

        return decorated_function
    return decorator


# Role groups used by the blueprints
MANAGERS = ("admin", "manager")
ADMINS = ("admin",)
