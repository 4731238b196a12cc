from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..errors import ServiceError
from ..extensions import db
from ..models import Promotion
from ..money import apply_basis_points, cents_to_decimal
from ..validation import ConflictError
from cafepos.time_utils import utcnow
from .concurrency import run_with_retry
from .pagination import paginate

PROMOTION_MUTABLE_FIELDS = {"code", "type", "value", "min_spend_cents", "start_at", "end_at", "status"}


class PromotionError(ServiceError):
    code = "PROMOTION_NOT_FOUND"
    status = 404


def _live_query():
    return db.session.query(Promotion).filter(Promotion.deleted_at.is_(None))


def _ensure_code_free(code: str, exclude_id: int | None = None) -> None:
    q = _live_query().filter(func.lower(Promotion.code) == code.strip().lower())
    if exclude_id is not None:
        q = q.filter(Promotion.id != exclude_id)
    if q.first() is not None:
        raise ConflictError(f"Promotion code {code!r} already exists")


def list_promotions(*, q: str | None = None, page: int = 1, page_size: int = 20) -> tuple[list[dict], dict]:
    query = _live_query()
    if q:
        query = query.filter(Promotion.code.ilike(f"%{q.strip()}%"))
    query = query.order_by(Promotion.start_at.desc(), Promotion.code.asc())
    rows, meta = paginate(query, page=page, page_size=page_size)
    return [p.to_dict() for p in rows], meta


def get_promotion(promo_id: int) -> Promotion:
    promo = _live_query().filter(Promotion.id == promo_id).first()
    if promo is None:
        raise PromotionError("Promotion not found", details={"promotion_id": promo_id})
    return promo


def create_promotion(*, patch: dict) -> dict:
    _ensure_code_free(patch["code"])
    now = utcnow()
    promo = Promotion(status="active", created_at=now, updated_at=now)
    for k, v in patch.items():
        if k in PROMOTION_MUTABLE_FIELDS:
            setattr(promo, k, v)
    db.session.add(promo)
    db.session.commit()
    return promo.to_dict()


def update_promotion(*, promo_id: int, patch: dict) -> dict:
    def _op():
        promo = get_promotion(promo_id)
        if "code" in patch:
            _ensure_code_free(patch["code"], exclude_id=promo.id)
        for k, v in patch.items():
            if k in PROMOTION_MUTABLE_FIELDS:
                setattr(promo, k, v)
        promo.updated_at = utcnow()
        db.session.commit()
        return promo.to_dict()

    return run_with_retry(_op)


def set_status(*, promo_id: int, status: str) -> dict:
    return update_promotion(promo_id=promo_id, patch={"status": status})


def delete_promotion(*, promo_id: int) -> None:
    promo = get_promotion(promo_id)
    promo.deleted_at = utcnow()
    db.session.commit()


def evaluate_discount(promo: Promotion, sub_total_cents: int) -> int:
    """
    Discount in cents for a subtotal, never more than the subtotal.

    percent: value is basis points, rounded half-up to the cent.
    fixed:   value is cents.
    """
    if sub_total_cents <= 0:
        return 0
    if promo.type == "percent":
        discount = apply_basis_points(sub_total_cents, promo.value)
    else:
        discount = promo.value
    return max(0, min(discount, sub_total_cents))


def resolve_promotion(
    code: str | None,
    sub_total_cents: int,
    *,
    now: datetime | None = None,
) -> tuple[Promotion | None, str | None]:
    """
    Find the promotion a code grants right now.

    Returns (promotion, None) when it applies, else (None, reason) with reason
    one of NO_CODE, NOT_FOUND (unknown, inactive or outside its window) or
    BELOW_MIN_SPEND. Matching is case-insensitive on the trimmed code.
    """
    if code is None or not str(code).strip():
        return None, "NO_CODE"

    now = now or utcnow()
    promo = (
        _live_query()
        .filter(
            func.lower(Promotion.code) == str(code).strip().lower(),
            Promotion.status == "active",
            (Promotion.start_at.is_(None)) | (Promotion.start_at <= now),
            (Promotion.end_at.is_(None)) | (Promotion.end_at >= now),
        )
        .order_by(Promotion.id.desc())
        .first()
    )
    if promo is None:
        return None, "NOT_FOUND"
    if promo.min_spend_cents is not None and sub_total_cents < promo.min_spend_cents:
        return None, "BELOW_MIN_SPEND"
    return promo, None


def check_code(code: str | None, sub_total_cents: int) -> dict:
    """Preview of what settlement would grant for this code and subtotal."""
    promo, reason = resolve_promotion(code, sub_total_cents)
    discount = evaluate_discount(promo, sub_total_cents) if promo else 0
    return {
        "code": promo.code if promo else code,
        "applied": promo is not None,
        "reason": reason,
        "promotion": promo.to_dict() if promo else None,
        "sub_total_cents": sub_total_cents,
        "discount_cents": discount,
        "total_cents": sub_total_cents - discount,
        "discount": cents_to_decimal(discount),
        "total": cents_to_decimal(sub_total_cents - discount),
    }
