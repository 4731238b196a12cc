# Overview: Service-layer operations for suppliers; encapsulates business logic and database work.

"""
Supplier Service

Suppliers are referenced by ingredients (default source) and by receive
movements (ref.supplier_id). Deleting is soft so that history keeps
resolving.
"""

from __future__ import annotations

from ..errors import ServiceError
from ..extensions import db
from ..models import Supplier
from cafepos.time_utils import utcnow
from .concurrency import run_with_retry
from .pagination import paginate

SUPPLIER_MUTABLE_FIELDS = {"name", "contact_name", "phone", "email", "address", "status"}


class SupplierError(ServiceError):
    """Raised when a supplier is missing or invalid."""
    code = "SUPPLIER_NOT_FOUND"
    status = 404


def _live_query():
    return db.session.query(Supplier).filter(Supplier.deleted_at.is_(None))


def list_suppliers(*, q: str | None = None, page: int = 1, page_size: int = 20) -> tuple[list[dict], dict]:
    query = _live_query()
    if q:
        like = f"%{q.strip()}%"
        query = query.filter(
            Supplier.name.ilike(like)
            | Supplier.contact_name.ilike(like)
            | Supplier.email.ilike(like)
        )
    query = query.order_by(Supplier.name.asc(), Supplier.id.asc())
    rows, meta = paginate(query, page=page, page_size=page_size)
    return [s.to_dict() for s in rows], meta


def get_supplier(supplier_id: int) -> Supplier:
    supplier = _live_query().filter(Supplier.id == supplier_id).first()
    if supplier is None:
        raise SupplierError("Supplier not found", details={"supplier_id": supplier_id})
    return supplier


def create_supplier(*, patch: dict) -> dict:
    now = utcnow()
    supplier = Supplier(status="active", created_at=now, updated_at=now)
    for k, v in patch.items():
        if k in SUPPLIER_MUTABLE_FIELDS:
            setattr(supplier, k, v)
    db.session.add(supplier)
    db.session.commit()
    return supplier.to_dict()


def update_supplier(*, supplier_id: int, patch: dict) -> dict:
    def _op():
        supplier = get_supplier(supplier_id)
        for k, v in patch.items():
            if k in SUPPLIER_MUTABLE_FIELDS:
                setattr(supplier, k, v)
        supplier.updated_at = utcnow()
        db.session.commit()
        return supplier.to_dict()

    return run_with_retry(_op)


def delete_supplier(*, supplier_id: int) -> None:
    supplier = get_supplier(supplier_id)
    supplier.deleted_at = utcnow()
    db.session.commit()
