# Overview: Service-layer operations for ingredients and the stock movement ledger.

"""
Inventory invariants (authoritative)

Stock model:
- Ingredient.stock_qty is a running balance kept next to an append-only
  StockMovement ledger. SUM(movements.qty) == stock_qty for every ingredient.
- The balance is ONLY changed through apply_stock_delta(), which performs a
  single atomic UPDATE (stock_qty = stock_qty + delta) and appends exactly one
  movement in the caller's transaction.

Movement types and sign convention:
- consume: sale-driven deduction, negative qty, ref = {order_id, product_id}
- receive: goods in, positive qty, ref = {supplier_id, price_per_unit}
- adjust:  manual correction, signed qty

Negative stock:
- A negative delta is compare-and-swapped (WHERE stock_qty >= required) unless
  ALLOW_NEGATIVE_STOCK is set, so two concurrent writers can never both pass a
  stale balance check.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import update

from ..errors import ServiceError
from ..extensions import db
from ..models import Ingredient, StockMovement, Supplier
from ..money import decimal_to_cents
from ..validation import ValidationError, coerce_decimal, coerce_int
from cafepos.time_utils import parse_iso_datetime, to_utc_z, utcnow
from .concurrency import begin_write, run_with_retry
from .pagination import paginate


MOVEMENT_TYPES = ("consume", "receive", "adjust")
ADJUSTMENT_TYPES = ("increase", "decrease", "set")

INGREDIENT_MUTABLE_FIELDS = {"name", "unit", "reorder_point", "cost_per_unit_cents", "supplier_id"}


class InventoryError(ServiceError):
    """Raised for stock and ingredient failures."""
    code = "INVENTORY_ERROR"


def _not_found(ingredient_id) -> InventoryError:
    return InventoryError(
        "Ingredient not found",
        code="INGREDIENT_NOT_FOUND",
        status=404,
        details={"ingredient_id": ingredient_id},
    )


def _live_ingredient_query():
    return db.session.query(Ingredient).filter(Ingredient.deleted_at.is_(None))


def _require_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.query(Supplier).filter(
        Supplier.id == supplier_id,
        Supplier.deleted_at.is_(None),
    ).first()
    if supplier is None:
        raise InventoryError(
            "Supplier not found",
            code="SUPPLIER_NOT_FOUND",
            status=404,
            details={"supplier_id": supplier_id},
        )
    return supplier


def apply_stock_delta(
    *,
    ingredient_id: int,
    delta: Decimal,
    movement_type: str,
    reason: str | None = None,
    ref: dict | None = None,
    user_id: int | None = None,
    allow_negative: bool | None = None,
) -> StockMovement:
    """
    Atomically change one ingredient's stock and append its movement.

    Does NOT commit: the caller owns the transaction, so a failure later in
    the same unit of work rolls this change back too.

    Raises InventoryError INGREDIENT_NOT_FOUND (404) or INSUFFICIENT_STOCK (400).
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValueError(f"unknown movement type {movement_type!r}")
    if delta == 0:
        raise InventoryError("Stock movement quantity must be non-zero", code="INVALID_ITEM")

    if allow_negative is None:
        allow_negative = current_app.config.get("ALLOW_NEGATIVE_STOCK", False)

    stmt = (
        update(Ingredient)
        .where(Ingredient.id == ingredient_id, Ingredient.deleted_at.is_(None))
        .values(stock_qty=Ingredient.stock_qty + delta, updated_at=utcnow())
    )
    if delta < 0 and not allow_negative:
        stmt = stmt.where(Ingredient.stock_qty >= -delta)

    result = db.session.execute(stmt.execution_options(synchronize_session=False))

    if result.rowcount == 0:
        exists = _live_ingredient_query().filter(Ingredient.id == ingredient_id).with_entities(Ingredient.id).first()
        if exists is None:
            raise _not_found(ingredient_id)
        raise InventoryError(
            "Insufficient stock",
            code="INSUFFICIENT_STOCK",
            details={"ingredient_id": ingredient_id, "required": -delta},
        )

    # The UPDATE bypassed the identity map; drop any cached balance.
    cached = db.session.identity_map.get(db.session.identity_key(Ingredient, ingredient_id))
    if cached is not None:
        db.session.expire(cached, ["stock_qty", "updated_at"])

    movement = StockMovement(
        ingredient_id=ingredient_id,
        type=movement_type,
        qty=delta,
        reason=reason,
        ref=ref,
        created_by_user_id=user_id,
        created_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def list_ingredients(
    *,
    q: str | None = None,
    low_only: bool = False,
    supplier_id: int | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[dict], dict]:
    query = _live_ingredient_query()
    if q:
        query = query.filter(Ingredient.name.ilike(f"%{q.strip()}%"))
    if supplier_id is not None:
        query = query.filter(Ingredient.supplier_id == supplier_id)
    if low_only:
        query = query.filter(Ingredient.stock_qty <= Ingredient.reorder_point)
    query = query.order_by(Ingredient.name.asc(), Ingredient.id.asc())

    rows, meta = paginate(query, page=page, page_size=page_size)
    return [i.to_dict() for i in rows], meta


def get_ingredient(ingredient_id: int) -> Ingredient:
    ingredient = _live_ingredient_query().filter(Ingredient.id == ingredient_id).first()
    if ingredient is None:
        raise _not_found(ingredient_id)
    return ingredient


def create_ingredient(*, patch: dict, user_id: int | None = None) -> dict:
    """
    Create an ingredient. A non-zero opening stock_qty is booked as an
    "adjust" movement so the ledger sums to the balance from day one.
    """
    opening = patch.pop("stock_qty", None) or Decimal("0")
    if opening < 0:
        raise ValidationError("stock_qty must be >= 0")

    def _op():
        if patch.get("supplier_id") is not None:
            _require_supplier(patch["supplier_id"])

        now = utcnow()
        ingredient = Ingredient(stock_qty=Decimal("0"), created_at=now, updated_at=now)
        for k, v in patch.items():
            if k in INGREDIENT_MUTABLE_FIELDS:
                setattr(ingredient, k, v)
        db.session.add(ingredient)
        db.session.flush()

        if opening != 0:
            apply_stock_delta(
                ingredient_id=ingredient.id,
                delta=opening,
                movement_type="adjust",
                reason="initial stock",
                user_id=user_id,
            )

        db.session.commit()
        return ingredient.to_dict()

    return run_with_retry(_op)


def update_ingredient(*, ingredient_id: int, patch: dict) -> dict:
    """stock_qty is never writable here; use receive/adjust."""
    def _op():
        ingredient = get_ingredient(ingredient_id)
        if patch.get("supplier_id") is not None:
            _require_supplier(patch["supplier_id"])
        for k, v in patch.items():
            if k in INGREDIENT_MUTABLE_FIELDS:
                setattr(ingredient, k, v)
        ingredient.updated_at = utcnow()
        db.session.commit()
        return ingredient.to_dict()

    return run_with_retry(_op)


def delete_ingredient(*, ingredient_id: int) -> None:
    """Soft delete; the movement history stays."""
    ingredient = get_ingredient(ingredient_id)
    ingredient.deleted_at = utcnow()
    db.session.commit()


def _parse_lines(items, *, require_positive: bool) -> list[dict]:
    """Validate every line up front; one bad line rejects the whole request."""
    if not isinstance(items, list) or not items:
        raise InventoryError("At least one item is required", code="NO_ITEMS")

    lines = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise InventoryError("Item must be an object", code="INVALID_ITEM", details={"index": index})
        try:
            ingredient_id = coerce_int(raw.get("ingredient_id", raw.get("item_id")), "ingredient_id")
            qty = coerce_decimal(raw.get("qty", raw.get("quantity")), "qty")
            price = raw.get("price_per_unit")
            price_cents = None
            price_dec = None
            if price not in (None, ""):
                price_dec = coerce_decimal(price, "price_per_unit", scale=2)
                if price_dec < 0:
                    raise ValidationError("price_per_unit must be >= 0")
                price_cents = decimal_to_cents(price_dec)
        except ValidationError as e:
            raise InventoryError(str(e), code="INVALID_ITEM", details={"index": index})

        if ingredient_id <= 0:
            raise InventoryError("ingredient_id must be positive", code="INVALID_ITEM", details={"index": index})
        if qty == 0 or (require_positive and qty < 0):
            raise InventoryError(
                "qty must be positive" if require_positive else "qty must be non-zero",
                code="INVALID_ITEM",
                details={"index": index},
            )
        lines.append({
            "ingredient_id": ingredient_id,
            "qty": qty,
            "price": price_dec,
            "price_cents": price_cents,
        })
    return lines


def receive_stock(
    *,
    items,
    supplier_id: int | None = None,
    received_at: str | None = None,
    note: str | None = None,
    user_id: int | None = None,
) -> dict:
    """
    Book a delivery: one positive "receive" movement per line.

    price_per_unit (currency) updates the ingredient's cost; supplier_id,
    when given, must exist and becomes the ingredient's supplier.
    """
    lines = _parse_lines(items, require_positive=True)
    if supplier_id is not None:
        supplier_id = coerce_int(supplier_id, "supplier_id")
    try:
        received_dt = parse_iso_datetime(received_at) if received_at else None
    except ValueError:
        raise InventoryError("received_at must be an ISO-8601 datetime", code="VALIDATION_ERROR")

    def _op():
        begin_write()
        if supplier_id is not None:
            _require_supplier(supplier_id)

        movements = []
        for line in lines:
            ref = {
                "supplier_id": supplier_id,
                "price_per_unit": str(line["price"]) if line["price"] is not None else None,
            }
            if received_dt is not None:
                ref["received_at"] = to_utc_z(received_dt)
            movement = apply_stock_delta(
                ingredient_id=line["ingredient_id"],
                delta=line["qty"],
                movement_type="receive",
                reason=note or "receive",
                ref=ref,
                user_id=user_id,
            )
            ingredient = db.session.get(Ingredient, line["ingredient_id"])
            if line["price_cents"] is not None:
                ingredient.cost_per_unit_cents = line["price_cents"]
            if supplier_id is not None:
                ingredient.supplier_id = supplier_id
            movements.append(movement)

        db.session.commit()
        return {"received": len(movements), "movements": [m.to_dict() for m in movements]}

    result = run_with_retry(_op)
    current_app.logger.info(
        "Stock received: %d line(s) supplier_id=%s", result["received"], supplier_id
    )
    return result


def adjust_stock(*, items, reason: str | None = None, user_id: int | None = None) -> dict:
    """Batch manual correction with signed deltas; a decrease may not overdraw stock."""
    lines = _parse_lines(items, require_positive=False)

    def _op():
        begin_write()
        movements = [
            apply_stock_delta(
                ingredient_id=line["ingredient_id"],
                delta=line["qty"],
                movement_type="adjust",
                reason=reason or "Manual adjustment",
                user_id=user_id,
                allow_negative=False,
            )
            for line in lines
        ]
        db.session.commit()
        return {"adjusted": len(movements), "movements": [m.to_dict() for m in movements]}

    result = run_with_retry(_op)
    current_app.logger.info("Stock adjusted: %d line(s) reason=%r", result["adjusted"], reason)
    return result


def adjust_ingredient(
    *,
    ingredient_id: int,
    adjustment_type: str,
    amount,
    reason: str | None = None,
    user_id: int | None = None,
) -> dict:
    """
    Single-ingredient adjustment from the stock screen.

    increase/decrease move by amount; set moves to amount, recording
    (target - current) as the delta. A set that changes nothing writes
    no movement.
    """
    if adjustment_type not in ADJUSTMENT_TYPES:
        raise InventoryError(
            f"adjustment_type must be one of: {', '.join(ADJUSTMENT_TYPES)}",
            code="INVALID_ADJUSTMENT_TYPE",
        )
    if amount in (None, ""):
        raise InventoryError("amount is required", code="MISSING_AMOUNT")
    try:
        value = coerce_decimal(amount, "amount")
    except ValidationError as e:
        raise InventoryError(str(e), code="MISSING_AMOUNT")
    if value < 0 or (value == 0 and adjustment_type != "set"):
        raise InventoryError("amount must be positive", code="MISSING_AMOUNT")

    def _op():
        begin_write()
        ingredient = get_ingredient(ingredient_id)

        if adjustment_type == "increase":
            delta = value
        elif adjustment_type == "decrease":
            delta = -value
        else:
            delta = value - ingredient.stock_qty

        movement = None
        if delta != 0:
            movement = apply_stock_delta(
                ingredient_id=ingredient_id,
                delta=delta,
                movement_type="adjust",
                reason=reason or f"Manual {adjustment_type}",
                ref={"adjustment_type": adjustment_type, "amount": str(value)},
                user_id=user_id,
                allow_negative=False,
            )
        db.session.commit()
        return {
            "ingredient": get_ingredient(ingredient_id).to_dict(),
            "movement": movement.to_dict() if movement else None,
        }

    return run_with_retry(_op)


def list_movements(
    *,
    ingredient_id: int | None = None,
    movement_type: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[dict], dict]:
    query = db.session.query(StockMovement)
    if ingredient_id is not None:
        query = query.filter(StockMovement.ingredient_id == ingredient_id)
    if movement_type:
        query = query.filter(StockMovement.type == movement_type)
    query = query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())

    rows, meta = paginate(query, page=page, page_size=page_size)
    return [m.to_dict() for m in rows], meta

