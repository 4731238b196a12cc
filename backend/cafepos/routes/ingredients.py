# Overview: Flask API routes for ingredients; parses input and returns JSON responses.

"""
Ingredient routes.

stock_qty can be given once, on create (booked as an "initial stock"
movement). Afterwards it only moves through /inventory/receive,
/inventory/adjust, /ingredients/<id>/adjust and order settlement.

SECURITY: reads need any role; writes need admin or manager.
"""

from flask import Blueprint, g, request

from ..decorators import MANAGERS, require_auth, require_role
from ..errors import CLIENT_ERRORS, error_response, internal_error, json_body, ok, page_args
from ..models import Ingredient
from ..services import inventory_service
from ..validation import ModelValidationPolicy, enforce_rules_ingredient, validate_payload

INGREDIENT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "unit", "stock_qty", "reorder_point", "cost_per_unit_cents", "supplier_id"},
    required_on_create={"name", "unit"},
)

INGREDIENT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "unit", "reorder_point", "cost_per_unit_cents", "supplier_id"},
)

ingredients_bp = Blueprint("ingredients", __name__, url_prefix="/ingredients")


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@ingredients_bp.get("")
@require_auth
def list_ingredients_route():
    """
    Query params: q, low_only, supplier_id, page, page_size
    """
    page, page_size = page_args(request.args)
    try:
        rows, meta = inventory_service.list_ingredients(
            q=request.args.get("q") or None,
            low_only=_truthy(request.args.get("low_only")),
            supplier_id=request.args.get("supplier_id", type=int),
            page=page,
            page_size=page_size,
        )
    except Exception:
        return internal_error("list ingredients")
    return ok(rows, meta=meta)


@ingredients_bp.post("")
@require_auth
@require_role(*MANAGERS)
def create_ingredient_route():
    try:
        patch = validate_payload(
            model=Ingredient, payload=json_body(), policy=INGREDIENT_CREATE_POLICY, partial=False
        )
        enforce_rules_ingredient(patch)
        created = inventory_service.create_ingredient(patch=patch, user_id=g.current_user.id)
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("create ingredient")
    return ok(created, 201)


@ingredients_bp.get("/<int:ingredient_id>")
@require_auth
def get_ingredient_route(ingredient_id: int):
    try:
        return ok(inventory_service.get_ingredient(ingredient_id).to_dict())
    except CLIENT_ERRORS as e:
        return error_response(e)


@ingredients_bp.put("/<int:ingredient_id>")
@require_auth
@require_role(*MANAGERS)
def update_ingredient_route(ingredient_id: int):
    try:
        patch = validate_payload(
            model=Ingredient, payload=json_body(), policy=INGREDIENT_UPDATE_POLICY, partial=True
        )
        enforce_rules_ingredient(patch)
        updated = inventory_service.update_ingredient(ingredient_id=ingredient_id, patch=patch)
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("update ingredient")
    return ok(updated)


@ingredients_bp.delete("/<int:ingredient_id>")
@require_auth
@require_role(*MANAGERS)
def delete_ingredient_route(ingredient_id: int):
    try:
        inventory_service.delete_ingredient(ingredient_id=ingredient_id)
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("delete ingredient")
    return ok({"id": ingredient_id, "deleted": True})


@ingredients_bp.post("/<int:ingredient_id>/adjust")
@require_auth
@require_role(*MANAGERS)
def adjust_ingredient_route(ingredient_id: int):
    """Body: {adjustment_type: increase|decrease|set, amount, reason?}"""
    payload = json_body()
    try:
        result = inventory_service.adjust_ingredient(
            ingredient_id=ingredient_id,
            adjustment_type=payload.get("adjustment_type"),
            amount=payload.get("amount"),
            reason=payload.get("reason"),
            user_id=g.current_user.id,
        )
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("adjust ingredient")
    return ok(result)
