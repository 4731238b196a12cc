# Overview: Flask API routes for the dashboard; thin wrappers over reporting_service.

from flask import Blueprint, request

from ..decorators import require_auth
from ..errors import CLIENT_ERRORS, error_response, internal_error, ok
from ..services import reporting_service

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/dashboard")


@dashboard_bp.get("/summary")
@require_auth
def summary_route():
    """Query params: from, to (YYYY-MM-DD, default today UTC)."""
    try:
        return ok(reporting_service.summary(
            date_from=request.args.get("from"),
            date_to=request.args.get("to"),
        ))
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("build dashboard summary")


@dashboard_bp.get("/trend")
@require_auth
def trend_route():
    """Query params: days (default 7, max 90)."""
    try:
        return ok(reporting_service.trend(days=request.args.get("days")))
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("build sales trend")


@dashboard_bp.get("/top-products")
@require_auth
def top_products_route():
    """Query params: days (default 7, max 90), limit (default 5, max 50)."""
    try:
        return ok(reporting_service.top_products(
            days=request.args.get("days"),
            limit=request.args.get("limit"),
        ))
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("build top products")
