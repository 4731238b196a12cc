# Overview: Order settlement engine plus order lookup and status lifecycle.

"""
Order Service

settle_order() turns a cart into a persisted sale in ONE transaction:

  1. validate every cart line (no database access)
  2. resolve products (price + name snapshot) and their recipes
  3. subtotal = sum(unit_price_cents * qty)
  4. resolve the promotion code -> discount (0 when absent/inapplicable)
  5. insert the Order header and its OrderItem rows
  6. for every recipe entry of every line: atomic stock UPDATE + one
     "consume" StockMovement with qty = -(recipe_qty * line_qty)
  7. commit

Any failure rolls back all of 5-6: no Order, OrderItem or StockMovement
survives a failed settlement.

INVARIANTS:
- total_cents = sub_total_cents - discount_cents
- 0 <= discount_cents <= sub_total_cents
- one movement per (order line, recipe entry), never combined
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy import String, cast, func
from sqlalchemy.exc import IntegrityError

from ..errors import ServiceError
from ..extensions import db
from ..models import ORDER_STATUSES, Order, OrderItem, Product, ProductRecipe, Promotion
from ..money import cents_to_decimal
from ..validation import ValidationError, coerce_int
from cafepos.time_utils import utcnow
from .concurrency import begin_write, lock_for_update, run_with_retry
from .inventory_service import apply_stock_delta
from .pagination import paginate
from .promotions_service import evaluate_discount, resolve_promotion

MAX_IDEMPOTENCY_KEY_LENGTH = 64

# Per-line quantity cap; keeps price_cents * qty inside a 64-bit column
MAX_LINE_QTY = 10_000

# Largest id a BIGINT primary key can hold
MAX_ROW_ID = 2**63 - 1

# from-status -> statuses it may move to; cancel and refund are terminal
ALLOWED_TRANSITIONS = {
    "open": {"paid", "cancel"},
    "paid": {"refund", "cancel"},
    "cancel": set(),
    "refund": set(),
}


class SettlementError(ServiceError):
    """Raised when an order cannot be settled or changed."""
    code = "VALIDATION_ERROR"
    status = 400


@dataclass
class CartLine:
    product_id: int
    qty: int
    options: object = None


@dataclass
class SettlementRequest:
    """Validated settlement input. Build with parse_settlement_request()."""
    lines: list[CartLine]
    pay_method: str = "cash"
    discount_code: str | None = None
    note: str | None = None
    customer: str | None = None
    status: str = "paid"
    idempotency_key: str | None = None
    user_id: int | None = None


@dataclass
class SettlementResult:
    order: Order
    created: bool
    movements: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.order.id,
            "total": cents_to_decimal(self.order.total_cents),
            "total_cents": self.order.total_cents,
            "sub_total_cents": self.order.sub_total_cents,
            "discount_cents": self.order.discount_cents,
            "discount_code": self.order.discount_code,
            "status": self.order.status,
        }


def _positive_qty(raw) -> int:
    try:
        qty = coerce_int(raw, "qty")
    except ValidationError:
        raise SettlementError("qty must be a positive integer", code="INVALID_ITEM")
    if qty <= 0:
        raise SettlementError("qty must be a positive integer", code="INVALID_ITEM")
    if qty > MAX_LINE_QTY:
        raise SettlementError(f"qty must be at most {MAX_LINE_QTY}", code="INVALID_ITEM")
    return qty


def _optional_text(value, name: str, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length is not None and len(text) > max_length:
        raise SettlementError(f"{name} exceeds max length {max_length}", code="VALIDATION_ERROR")
    return text


def parse_settlement_request(payload: dict, *, idempotency_key: str | None = None,
                             user_id: int | None = None) -> SettlementRequest:
    """
    Validate the POST /orders body before any database work.

    Raises SettlementError EMPTY_CART, INVALID_ITEM or INVALID_STATUS.
    """
    if not isinstance(payload, dict):
        raise SettlementError("Invalid JSON payload", code="VALIDATION_ERROR")

    items = payload.get("items")
    if items is None or (isinstance(items, list) and not items):
        raise SettlementError("Cart is empty", code="EMPTY_CART")
    if not isinstance(items, list):
        raise SettlementError("items must be a list", code="INVALID_ITEM")

    lines = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict) or raw.get("product_id") in (None, "", 0):
            raise SettlementError(
                "Each item needs a product_id and a positive qty",
                code="INVALID_ITEM",
                details={"index": index},
            )
        try:
            product_id = coerce_int(raw["product_id"], "product_id")
        except ValidationError:
            raise SettlementError("product_id must be an integer", code="INVALID_ITEM", details={"index": index})
        if not 1 <= product_id <= MAX_ROW_ID:
            raise SettlementError("product_id out of range", code="INVALID_ITEM", details={"index": index})
        try:
            qty = _positive_qty(raw.get("qty"))
        except SettlementError as e:
            e.details = {"index": index}
            raise
        lines.append(CartLine(product_id=product_id, qty=qty, options=raw.get("options")))

    status = payload.get("status") or "paid"
    if status not in ORDER_STATUSES:
        raise SettlementError(
            f"status must be one of: {', '.join(ORDER_STATUSES)}",
            code="INVALID_STATUS",
        )

    key = idempotency_key or payload.get("idempotency_key")
    key = _optional_text(key, "idempotency_key", MAX_IDEMPOTENCY_KEY_LENGTH)

    return SettlementRequest(
        lines=lines,
        pay_method=_optional_text(payload.get("pay_method"), "pay_method", 32) or "cash",
        discount_code=_optional_text(payload.get("discount_code"), "discount_code", 64),
        note=_optional_text(payload.get("note"), "note"),
        customer=_optional_text(payload.get("customer"), "customer", 255),
        status=status,
        idempotency_key=key,
        user_id=user_id,
    )


def _find_by_idempotency_key(key: str | None) -> Order | None:
    if not key:
        return None
    return db.session.query(Order).filter(Order.idempotency_key == key).first()


def _load_products(lines: list[CartLine]) -> dict[int, Product]:
    wanted = {line.product_id for line in lines}
    products = {
        p.id: p
        for p in db.session.query(Product).filter(
            Product.id.in_(wanted),
            Product.deleted_at.is_(None),
            Product.status == "active",
        )
    }
    for line in lines:
        if line.product_id not in products:
            raise SettlementError(
                f"Product {line.product_id} not found",
                code="PRODUCT_NOT_FOUND",
                details={"product_id": line.product_id},
            )
    return products


def _load_recipes(product_ids) -> dict[int, list[ProductRecipe]]:
    recipes: dict[int, list[ProductRecipe]] = {pid: [] for pid in product_ids}
    rows = (
        db.session.query(ProductRecipe)
        .filter(ProductRecipe.product_id.in_(list(product_ids)))
        .order_by(ProductRecipe.product_id.asc(), ProductRecipe.id.asc())
        .all()
    )
    for row in rows:
        recipes[row.product_id].append(row)
    return recipes


def settle_order(request: SettlementRequest) -> SettlementResult:
    """
    Atomically settle a cart. See module docstring for the step order.

    A repeated idempotency key returns the existing order (created=False)
    and writes nothing. Lock conflicts retry the whole unit of work.
    """
    existing = _find_by_idempotency_key(request.idempotency_key)
    if existing is not None:
        return SettlementResult(order=existing, created=False)

    def _op():
        begin_write()

        # Re-check under the write lock: a concurrent retry may have won.
        existing = _find_by_idempotency_key(request.idempotency_key)
        if existing is not None:
            db.session.commit()
            return SettlementResult(order=existing, created=False)

        products = _load_products(request.lines)

        sub_total = 0
        for line in request.lines:
            sub_total += products[line.product_id].price_cents * line.qty

        promo, reason = resolve_promotion(request.discount_code, sub_total)
        discount = evaluate_discount(promo, sub_total) if promo else 0
        if request.discount_code and promo is None:
            current_app.logger.info(
                "Promotion code %r not applied (%s); settling without discount",
                request.discount_code, reason,
            )

        now = utcnow()
        order = Order(
            status=request.status,
            pay_method=request.pay_method,
            sub_total_cents=sub_total,
            discount_cents=discount,
            total_cents=sub_total - discount,
            note=request.note,
            customer=request.customer,
            discount_code=promo.code if promo else None,
            idempotency_key=request.idempotency_key,
            created_by_user_id=request.user_id,
            created_at=now,
            updated_at=now,
        )
        db.session.add(order)
        db.session.flush()

        for line in request.lines:
            product = products[line.product_id]
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=product.id,
                product_name=product.name,
                qty=line.qty,
                unit_price_cents=product.price_cents,
                line_total_cents=product.price_cents * line.qty,
                options_json=line.options,
                created_at=now,
            ))

        recipes = _load_recipes(products.keys())
        movements = []
        for line in request.lines:
            for entry in recipes[line.product_id]:
                consumed = Decimal(entry.qty) * line.qty
                movements.append(apply_stock_delta(
                    ingredient_id=entry.ingredient_id,
                    delta=-consumed,
                    movement_type="consume",
                    reason="sale",
                    ref={"order_id": order.id, "product_id": line.product_id},
                    user_id=request.user_id,
                ))

        db.session.commit()
        return SettlementResult(order=order, created=True, movements=movements)

    try:
        result = run_with_retry(_op)
    except IntegrityError:
        # Backends without BEGIN IMMEDIATE can race two inserts of one key.
        if not request.idempotency_key:
            raise
        db.session.rollback()
        existing = _find_by_idempotency_key(request.idempotency_key)
        if existing is None:
            raise
        return SettlementResult(order=existing, created=False)

    if result.created:
        current_app.logger.info(
            "Order %s settled: total_cents=%s discount_cents=%s movements=%d",
            result.order.id, result.order.total_cents, result.order.discount_cents, len(result.movements),
        )
    return result


def _live_query():
    return db.session.query(Order).filter(Order.deleted_at.is_(None))


def list_orders(
    *,
    status: str | None = None,
    q: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[dict], dict]:
    """Newest first; q matches the order id or the customer label."""
    items_count = (
        db.session.query(func.count(OrderItem.id))
        .filter(OrderItem.order_id == Order.id)
        .correlate(Order)
        .scalar_subquery()
    )
    query = _live_query()
    if status:
        query = query.filter(Order.status == status)
    if q:
        like = f"%{q.strip()}%"
        query = query.filter(
            cast(Order.id, String).like(like) | Order.customer.ilike(like)
        )
    query = query.add_columns(items_count.label("items_count")).order_by(Order.id.desc())

    rows, meta = paginate(query, page=page, page_size=page_size)
    data = []
    for order, count in rows:
        row = order.to_dict()
        row["items_count"] = count
        data.append(row)
    return data, meta


def get_order(order_id: int) -> Order:
    order = _live_query().filter(Order.id == order_id).first()
    if order is None:
        raise SettlementError(
            "Order not found",
            code="ORDER_NOT_FOUND",
            status=404,
            details={"order_id": order_id},
        )
    return order


def order_detail(order_id: int) -> dict:
    order = get_order(order_id)
    data = order.to_dict()
    data["items"] = [item.to_dict() for item in order.items]

    promotion = None
    if order.discount_code:
        promo = (
            db.session.query(Promotion)
            .filter(
                func.lower(Promotion.code) == order.discount_code.lower(),
                Promotion.deleted_at.is_(None),
            )
            .order_by(Promotion.id.desc())
            .first()
        )
        if promo is not None:
            promotion = {
                "id": promo.id,
                "code": promo.code,
                "type": promo.type,
                "value": promo.value,
                "min_spend_cents": promo.min_spend_cents,
            }
    data["promotion"] = promotion
    return data


def update_order_status(*, order_id: int, status: str) -> dict:
    """
    Move an order along its lifecycle. Stock is not touched.

    Same-status is a no-op; anything outside ALLOWED_TRANSITIONS is
    INVALID_TRANSITION (409).
    """
    if status not in ORDER_STATUSES:
        raise SettlementError(
            f"status must be one of: {', '.join(ORDER_STATUSES)}",
            code="INVALID_STATUS",
        )

    def _op():
        order = lock_for_update(_live_query().filter(Order.id == order_id)).first()
        if order is None:
            raise SettlementError("Order not found", code="ORDER_NOT_FOUND", status=404,
                                  details={"order_id": order_id})

        if order.status == status:
            db.session.commit()
            return order.to_dict()

        if status not in ALLOWED_TRANSITIONS[order.status]:
            raise SettlementError(
                f"Cannot change order from {order.status} to {status}",
                code="INVALID_TRANSITION",
                status=409,
                details={"from": order.status, "to": status},
            )

        previous = order.status
        order.status = status
        order.updated_at = utcnow()
        db.session.commit()
        current_app.logger.info("Order %s status %s -> %s", order.id, previous, status)
        return order.to_dict()

    return run_with_retry(_op)


def delete_order(*, order_id: int) -> None:
    order = get_order(order_id)
    order.deleted_at = utcnow()
    db.session.commit()
    current_app.logger.info("Order %s soft-deleted", order_id)
