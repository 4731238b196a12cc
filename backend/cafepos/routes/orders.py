# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order routes.

POST /orders is the settlement engine's HTTP face:
- 201 {ok, data: {id, total, ...}} on a new order
- 200 with the existing order when the Idempotency-Key was seen before
- 400 EMPTY_CART / INVALID_ITEM / PRODUCT_NOT_FOUND / INVALID_STATUS /
  INSUFFICIENT_STOCK
- 500 INTERNAL_ERROR (details only in the server log)

SECURITY: All routes require authentication; deleting requires admin.
"""

from flask import Blueprint, g, request

from ..decorators import ADMINS, require_auth, require_role
from ..errors import CLIENT_ERRORS, error_response, internal_error, json_body, ok, page_args
from ..services import order_service

orders_bp = Blueprint("orders", __name__, url_prefix="/orders")


@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Settle a cart.

    Body: {items: [{product_id, qty, options?}], pay_method?, discount_code?,
           note?, customer?, status?, idempotency_key?}
    Header: Idempotency-Key (optional, wins over the body field)
    """
    payload = request.get_json(silent=True)
    try:
        settlement = order_service.parse_settlement_request(
            payload if payload is not None else {},
            idempotency_key=request.headers.get("Idempotency-Key"),
            user_id=g.current_user.id,
        )
        result = order_service.settle_order(settlement)
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("settle order")

    return ok(result.to_dict(), 201 if result.created else 200)


@orders_bp.get("")
@require_auth
def list_orders_route():
    """
    Query params: status, q (order id or customer), page, page_size
    """
    page, page_size = page_args(request.args)
    try:
        rows, meta = order_service.list_orders(
            status=request.args.get("status") or None,
            q=request.args.get("q") or None,
            page=page,
            page_size=page_size,
        )
    except Exception:
        return internal_error("list orders")
    return ok(rows, meta=meta)


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        return ok(order_service.order_detail(order_id))
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("load order")


@orders_bp.put("/<int:order_id>/status")
@orders_bp.put("/<int:order_id>")
@require_auth
def update_order_status_route(order_id: int):
    """Body: {status}. Stock is not touched by status changes."""
    status = json_body().get("status")
    try:
        order = order_service.update_order_status(order_id=order_id, status=status)
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("update order status")
    return ok(order)


@orders_bp.delete("/<int:order_id>")
@require_auth
@require_role(*ADMINS)
def delete_order_route(order_id: int):
    try:
        order_service.delete_order(order_id=order_id)
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("delete order")
    return ok({"id": order_id, "deleted": True})
