from __future__ import annotations

from flask import Blueprint, request

from ..decorators import MANAGERS, require_auth, require_role
from ..errors import CLIENT_ERRORS, error_response, internal_error, json_body, ok, page_args
from ..models import Promotion
from ..services import promotions_service
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    coerce_int,
    enforce_rules_promotion,
    normalize_promotion_type,
    validate_payload,
)

PROMOTION_POLICY = ModelValidationPolicy(
    writable_fields={"code", "type", "value", "min_spend_cents", "start_at", "end_at", "status"},
    required_on_create={"code", "type", "value"},
    choices={"type": ("percent", "fixed"), "status": ("active", "inactive")},
)

STATUS_POLICY = ModelValidationPolicy(
    writable_fields={"status"},
    required_on_create={"status"},
    choices={"status": ("active", "inactive")},
)

promotions_bp = Blueprint("promotions", __name__, url_prefix="/promotions")


def _promotion_patch(payload: dict, *, partial: bool, current: Promotion | None = None) -> dict:
    payload = dict(payload)
    if payload.get("type") not in (None, ""):
        payload["type"] = normalize_promotion_type(payload["type"])
    patch = validate_payload(model=Promotion, payload=payload, policy=PROMOTION_POLICY, partial=partial)
    enforce_rules_promotion(
        patch,
        current_type=current.type if current else None,
        current_start=current.start_at if current else None,
        current_end=current.end_at if current else None,
    )
    return patch


@promotions_bp.route("", methods=["GET"])
@require_auth
def list_promotions():
    page, page_size = page_args(request.args)
    try:
        rows, meta = promotions_service.list_promotions(
            q=request.args.get("q") or None, page=page, page_size=page_size
        )
    except Exception:
        return internal_error("list promotions")
    return ok(rows, meta=meta)


@promotions_bp.route("/check", methods=["GET"])
@require_auth
def check_promotion():
    """Preview: ?code=&subtotal_cents= -> the discount settlement would grant now."""
    try:
        raw = request.args.get("subtotal_cents", "0")
        subtotal = coerce_int(raw, "subtotal_cents")
        if subtotal < 0:
            raise ValidationError("subtotal_cents must be >= 0")
        return ok(promotions_service.check_code(request.args.get("code"), subtotal))
    except CLIENT_ERRORS as e:
        return error_response(e)


@promotions_bp.route("", methods=["POST"])
@require_auth
@require_role(*MANAGERS)
def create_promotion():
    try:
        patch = _promotion_patch(json_body(), partial=False)
        created = promotions_service.create_promotion(patch=patch)
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("create promotion")
    return ok(created, 201)


@promotions_bp.route("/<int:promo_id>", methods=["GET"])
@require_auth
def get_promotion(promo_id: int):
    try:
        return ok(promotions_service.get_promotion(promo_id).to_dict())
    except CLIENT_ERRORS as e:
        return error_response(e)


@promotions_bp.route("/<int:promo_id>", methods=["PUT"])
@require_auth
@require_role(*MANAGERS)
def update_promotion(promo_id: int):
    try:
        current = promotions_service.get_promotion(promo_id)
        patch = _promotion_patch(json_body(), partial=True, current=current)
        updated = promotions_service.update_promotion(promo_id=promo_id, patch=patch)
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("update promotion")
    return ok(updated)


@promotions_bp.route("/<int:promo_id>/status", methods=["PUT"])
@require_auth
@require_role(*MANAGERS)
def update_promotion_status(promo_id: int):
    try:
        patch = validate_payload(model=Promotion, payload=json_body(), policy=STATUS_POLICY, partial=False)
        updated = promotions_service.set_status(promo_id=promo_id, status=patch["status"])
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("update promotion status")
    return ok(updated)


@promotions_bp.route("/<int:promo_id>", methods=["DELETE"])
@require_auth
@require_role(*MANAGERS)
def delete_promotion(promo_id: int):
    try:
        promotions_service.delete_promotion(promo_id=promo_id)
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("delete promotion")
    return ok({"id": promo_id, "deleted": True})
