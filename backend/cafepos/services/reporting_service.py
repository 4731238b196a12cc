# Overview: Dashboard aggregates over orders, order lines and ingredient stock.

from __future__ import annotations

from datetime import date, datetime, timedelta

from sqlalchemy import case, func

from ..errors import ServiceError
from ..extensions import db
from ..models import Ingredient, Order, OrderItem
from ..money import cents_to_decimal
from cafepos.time_utils import day_bounds, parse_iso_date, to_utc_z, utcnow

MAX_TREND_DAYS = 90
MAX_TOP_LIMIT = 50
LOW_STOCK_LIMIT = 10


class ReportError(ServiceError):
    """Raised when report parameters are invalid."""
    code = "VALIDATION_ERROR"
    status = 400


def _parse_day(value: str | None, name: str) -> date | None:
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ReportError(f"{name} must be a date (YYYY-MM-DD)")


def _clamp(value, *, default: int, maximum: int, name: str) -> int:
    if value in (None, ""):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ReportError(f"{name} must be an integer")
    return min(max(number, 1), maximum)


def _window(days: int, today: date | None = None) -> tuple[date, datetime, datetime]:
    """First day, start and exclusive end of the last `days` UTC days ending today."""
    today = today or utcnow().date()
    first = today - timedelta(days=days - 1)
    start, _ = day_bounds(first)
    _, end = day_bounds(today)
    return first, start, end


def _live_orders():
    return db.session.query(Order).filter(Order.deleted_at.is_(None))


def summary(*, date_from: str | None = None, date_to: str | None = None) -> dict:
    """
    Sales and order counts for a date range (default: today, UTC) plus the
    ingredients furthest below their reorder point.
    """
    today = utcnow().date()
    first = _parse_day(date_from, "from") or today
    last = _parse_day(date_to, "to") or today
    if last < first:
        raise ReportError("to must not be before from")
    start, _ = day_bounds(first)
    _, end = day_bounds(last)

    row = (
        _live_orders()
        .filter(Order.created_at >= start, Order.created_at < end)
        .with_entities(
            func.coalesce(func.sum(case((Order.status == "paid", Order.total_cents), else_=0)), 0),
            func.coalesce(func.sum(case((Order.status == "open", 1), else_=0)), 0),
            func.coalesce(func.sum(case((Order.status == "paid", 1), else_=0)), 0),
            func.coalesce(func.sum(case((Order.status == "cancel", 1), else_=0)), 0),
        )
        .one()
    )
    sales_total, orders_open, orders_paid, orders_cancel = (int(v or 0) for v in row)

    low = (
        db.session.query(Ingredient)
        .filter(
            Ingredient.deleted_at.is_(None),
            Ingredient.stock_qty < Ingredient.reorder_point,
        )
        .order_by((Ingredient.reorder_point - Ingredient.stock_qty).desc(), Ingredient.id.asc())
        .limit(LOW_STOCK_LIMIT)
        .all()
    )

    return {
        "range": {"from": to_utc_z(start), "to": to_utc_z(end)},
        "sales_total_cents": sales_total,
        "sales_total": cents_to_decimal(sales_total),
        "orders_open": orders_open,
        "orders_paid": orders_paid,
        "orders_cancel": orders_cancel,
        "low_stock": [
            {
                "id": i.id,
                "name": i.name,
                "unit": i.unit,
                "stock_qty": i.stock_qty,
                "reorder_point": i.reorder_point,
            }
            for i in low
        ],
    }


def trend(*, days=None) -> list[dict]:
    """One zero-filled row per day, oldest first."""
    days = _clamp(days, default=7, maximum=MAX_TREND_DAYS, name="days")
    first, start, end = _window(days)

    rows = (
        _live_orders()
        .filter(Order.created_at >= start, Order.created_at < end)
        .with_entities(Order.created_at, Order.status, Order.total_cents)
        .all()
    )

    buckets = {
        first + timedelta(days=i): {"sales_total_cents": 0, "orders_all": 0, "orders_paid": 0}
        for i in range(days)
    }
    for created_at, status, total_cents in rows:
        bucket = buckets.get(created_at.date())
        if bucket is None:
            continue
        bucket["orders_all"] += 1
        if status == "paid":
            bucket["orders_paid"] += 1
            bucket["sales_total_cents"] += total_cents

    return [
        {
            "date": day.isoformat(),
            "sales_total_cents": b["sales_total_cents"],
            "sales_total": cents_to_decimal(b["sales_total_cents"]),
            "orders_all": b["orders_all"],
            "orders_paid": b["orders_paid"],
        }
        for day, b in sorted(buckets.items())
    ]


def top_products(*, days=None, limit=None) -> list[dict]:
    """Best sellers by quantity across paid orders."""
    days = _clamp(days, default=7, maximum=MAX_TREND_DAYS, name="days")
    limit = _clamp(limit, default=5, maximum=MAX_TOP_LIMIT, name="limit")
    _, start, end = _window(days)

    qty = func.sum(OrderItem.qty).label("qty")
    amount = func.sum(OrderItem.line_total_cents).label("amount_cents")
    rows = (
        db.session.query(OrderItem.product_id, OrderItem.product_name, qty, amount)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(
            Order.deleted_at.is_(None),
            Order.status == "paid",
            Order.created_at >= start,
            Order.created_at < end,
        )
        .group_by(OrderItem.product_id, OrderItem.product_name)
        .order_by(qty.desc(), OrderItem.product_id.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "product_id": r.product_id,
            "product_name": r.product_name,
            "qty": int(r.qty or 0),
            "amount_cents": int(r.amount_cents or 0),
            "amount": cents_to_decimal(int(r.amount_cents or 0)),
        }
        for r in rows
    ]
