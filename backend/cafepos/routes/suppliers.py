# Overview: Flask API routes for suppliers; parses input and returns JSON responses.

"""
Supplier routes.

SECURITY: reads need any role; writes need admin or manager.
"""

from flask import Blueprint, request

from ..decorators import MANAGERS, require_auth, require_role
from ..errors import CLIENT_ERRORS, error_response, internal_error, json_body, ok, page_args
from ..models import Supplier
from ..services import suppliers_service
from ..validation import ModelValidationPolicy, validate_payload

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "contact_name", "phone", "email", "address", "status"},
    required_on_create={"name"},
    choices={"status": ("active", "inactive")},
)

STATUS_POLICY = ModelValidationPolicy(
    writable_fields={"status"},
    required_on_create={"status"},
    choices={"status": ("active", "inactive")},
)

suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/suppliers")


@suppliers_bp.get("")
@require_auth
def list_suppliers_route():
    """Query params: q (name, contact or email), page, page_size"""
    page, page_size = page_args(request.args)
    try:
        rows, meta = suppliers_service.list_suppliers(
            q=request.args.get("q") or None, page=page, page_size=page_size
        )
    except Exception:
        return internal_error("list suppliers")
    return ok(rows, meta=meta)


@suppliers_bp.post("")
@require_auth
@require_role(*MANAGERS)
def create_supplier_route():
    try:
        patch = validate_payload(model=Supplier, payload=json_body(), policy=SUPPLIER_POLICY, partial=False)
        created = suppliers_service.create_supplier(patch=patch)
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("create supplier")
    return ok(created, 201)


@suppliers_bp.get("/<int:supplier_id>")
@require_auth
def get_supplier_route(supplier_id: int):
    try:
        return ok(suppliers_service.get_supplier(supplier_id).to_dict())
    except CLIENT_ERRORS as e:
        return error_response(e)


@suppliers_bp.put("/<int:supplier_id>")
@require_auth
@require_role(*MANAGERS)
def update_supplier_route(supplier_id: int):
    try:
        patch = validate_payload(model=Supplier, payload=json_body(), policy=SUPPLIER_POLICY, partial=True)
        updated = suppliers_service.update_supplier(supplier_id=supplier_id, patch=patch)
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("update supplier")
    return ok(updated)


@suppliers_bp.put("/<int:supplier_id>/status")
@require_auth
@require_role(*MANAGERS)
def update_supplier_status_route(supplier_id: int):
    """Body: {status: active|inactive}"""
    try:
        patch = validate_payload(model=Supplier, payload=json_body(), policy=STATUS_POLICY, partial=False)
        updated = suppliers_service.update_supplier(supplier_id=supplier_id, patch=patch)
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("update supplier status")
    return ok(updated)


@suppliers_bp.delete("/<int:supplier_id>")
@require_auth
@require_role(*MANAGERS)
def delete_supplier_route(supplier_id: int):
    try:
        suppliers_service.delete_supplier(supplier_id=supplier_id)
    except CLIENT_ERRORS as e:
        return error_response(e)
    except Exception:
        return internal_error("delete supplier")
    return ok({"id": supplier_id, "deleted": True})
