# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/cafepos/routes/products.py
"""
Product and recipe routes.

SECURITY: All routes require authentication.
- Read operations: any role
- Write operations: admin or manager
"""
from flask import Blueprint, request

from ..decorators import MANAGERS, require_auth, require_role
from ..errors import CLIENT_ERRORS, error_response, internal_error, json_body, ok, page_args
from ..models import Product
from ..services import products_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "category", "price_cents", "status", "description"},
    required_on_create={"name", "price_cents"},
    choices={"status": ("active", "inactive")},
)

products_bp = Blueprint("products", __name__, url_prefix="/products")


@products_bp.get("")
@require_auth
def list_products():
    """
    Query params:
    - q: substring of name or category
    - category, status: exact filters
    - page, page_size: pagination (page_size capped at MAX_PAGE_SIZE)
    """
    page, page_size = page_args(request.args)
    try:
        rows, meta = products_service.list_products(
            q=request.args.get("q") or None,
            category=request.args.get("category") or None,
            status=request.args.get("status") or None,
            page=page,
            page_size=page_size,
        )
    except Exception:
        return internal_error("list products")
    return ok(rows, meta=meta)


@products_bp.post("")
@require_auth
@require_role(*MANAGERS)
def create_product_route():
    try:
        patch = validate_payload(model=Product, payload=json_body(), policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        created = products_service.create_product(patch=patch)
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("create product")
    return ok(created, 201)


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    """Product with its recipe."""
    try:
        return ok(products_service.product_detail(product_id))
    except CLIENT_ERRORS as e:
        return error_response(e)


@products_bp.put("/<int:product_id>")
@require_auth
@require_role(*MANAGERS)
def update_product_route(product_id: int):
    try:
        patch = validate_payload(model=Product, payload=json_body(), policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = products_service.update_product(product_id=product_id, patch=patch)
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("update product")
    return ok(updated)


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(*MANAGERS)
def delete_product_route(product_id: int):
    """Soft delete; past order lines keep their snapshot."""
    try:
        products_service.delete_product(product_id=product_id)
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("delete product")
    return ok({"id": product_id, "deleted": True})


@products_bp.get("/<int:product_id>/recipe")
@require_auth
def get_recipe_route(product_id: int):
    try:
        return ok(products_service.get_recipe(product_id))
    except CLIENT_ERRORS as e:
        return error_response(e)


@products_bp.put("/<int:product_id>/recipe")
@require_auth
@require_role(*MANAGERS)
def set_recipe_route(product_id: int):
    """Body: {items: [{ingredient_id, qty}]}; replaces the whole recipe."""
    try:
        recipe = products_service.set_recipe(product_id=product_id, items=json_body().get("items"))
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("replace recipe")
    return ok(recipe)
