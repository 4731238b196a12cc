# Overview: Base service exception and the JSON envelope every route answers with.

from __future__ import annotations

from flask import current_app, jsonify, request

from .extensions import db
from .validation import ConflictError, ValidationError, parse_pagination


class ServiceError(Exception):
    """
    Business failure raised by a service.

    code is the machine-readable error string sent to clients; status is the
    HTTP status the route should answer with.
    """
    code = "INTERNAL_ERROR"
    status = 400

    def __init__(self, message: str, *, code: str | None = None, status: int | None = None,
                 details: dict | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status
        self.details = details or {}


# Exceptions whose message and code are safe to show the client
CLIENT_ERRORS = (ServiceError, ValidationError, ConflictError)


def ok(data=None, status: int = 200, meta: dict | None = None):
    body = {"ok": True, "data": data}
    if meta is not None:
        body["meta"] = meta
    return jsonify(body), status


def fail(code: str, status: int, message: str | None = None, details: dict | None = None):
    body = {"ok": False, "error": code}
    if message:
        body["message"] = message
    if details:
        body["details"] = details
    return jsonify(body), status


def error_response(exc: Exception):
    """Map a ServiceError or validation error onto the failure envelope."""
    db.session.rollback()
    return fail(
        getattr(exc, "code", "VALIDATION_ERROR"),
        getattr(exc, "status", 400),
        str(exc),
        getattr(exc, "details", None),
    )


def internal_error(what: str):
    """Roll back, log the traceback server-side and answer a bare 500."""
    db.session.rollback()
    current_app.logger.exception("Failed to %s", what)
    return fail("INTERNAL_ERROR", 500)


def page_args(args) -> tuple[int, int]:
    return parse_pagination(
        args,
        default_size=current_app.config.get("DEFAULT_PAGE_SIZE", 20),
        max_size=current_app.config.get("MAX_PAGE_SIZE", 100),
    )


def json_body() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}
