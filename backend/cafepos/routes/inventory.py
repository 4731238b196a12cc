# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

# backend/cafepos/routes/inventory.py
from flask import Blueprint, g, request

from ..decorators import MANAGERS, require_auth, require_role
from ..errors import CLIENT_ERRORS, error_response, internal_error, json_body, ok, page_args
from ..services import inventory_service

inventory_bp = Blueprint("inventory", __name__, url_prefix="/inventory")


@inventory_bp.post("/receive")
@require_auth
@require_role(*MANAGERS)
def receive_route():
    """
    Book a delivery.

    Body: {items: [{ingredient_id, qty, price_per_unit?}], supplier_id?, received_at?, note?}
    """
    payload = json_body()
    try:
        result = inventory_service.receive_stock(
            items=payload.get("items"),
            supplier_id=payload.get("supplier_id") or None,
            received_at=payload.get("received_at"),
            note=payload.get("note"),
            user_id=g.current_user.id,
        )
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("receive stock")
    return ok(result, 201)


@inventory_bp.post("/adjust")
@require_auth
@require_role(*MANAGERS)
def adjust_route():
    """Body: {items: [{ingredient_id, qty (signed)}], reason?}"""
    payload = json_body()
    try:
        result = inventory_service.adjust_stock(
            items=payload.get("items"),
            reason=payload.get("reason"),
            user_id=g.current_user.id,
        )
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("adjust stock")
    return ok(result, 201)


@inventory_bp.get("/movements")
@require_auth
def movements_route():
    """Query params: ingredient_id, type, page, page_size. Newest first."""
    page, page_size = page_args(request.args)
    try:
        rows, meta = inventory_service.list_movements(
            ingredient_id=request.args.get("ingredient_id", type=int),
            movement_type=request.args.get("type") or None,
            page=page,
            page_size=page_size,
        )
    except Exception:
        return internal_error("list stock movements")
    return ok(rows, meta=meta)
