from __future__ import annotations

from ..extensions import db
from cafepos.money import cents_to_decimal
from cafepos.time_utils import to_utc_z


ORDER_STATUSES = ("open", "paid", "cancel", "refund")


class Order(db.Model):
    """
    Order header (one sale).

    Created atomically with its lines and the stock movements they imply;
    afterwards only the status changes. All amounts are integer cents.

    INVARIANTS (enforced by CHECK constraints as well as the service):
    - total_cents = sub_total_cents - discount_cents
    - 0 <= discount_cents <= sub_total_cents
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.CheckConstraint("discount_cents >= 0", name="ck_orders_discount_non_negative"),
        db.CheckConstraint("discount_cents <= sub_total_cents", name="ck_orders_discount_le_subtotal"),
        db.CheckConstraint("total_cents = sub_total_cents - discount_cents", name="ck_orders_total"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # open | paid | cancel | refund
    status = db.Column(db.String(16), nullable=False, default="paid", index=True)
    pay_method = db.Column(db.String(32), nullable=False, default="cash")

    sub_total_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    note = db.Column(db.Text, nullable=True)
    customer = db.Column(db.String(255), nullable=True)

    # Canonical code of the promotion that was applied (NULL when none applied)
    discount_code = db.Column(db.String(64), nullable=True)

    # Client-supplied token so a blind retry does not settle the same cart twice
    idempotency_key = db.Column(db.String(64), nullable=True, unique=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status} total_cents={self.total_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "pay_method": self.pay_method,
            "sub_total_cents": self.sub_total_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "sub_total": cents_to_decimal(self.sub_total_cents),
            "discount": cents_to_decimal(self.discount_cents),
            "total": cents_to_decimal(self.total_cents),
            "note": self.note,
            "customer": self.customer,
            "discount_code": self.discount_code,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderItem(db.Model):
    """Order line. product_name and unit_price_cents are snapshots taken at sale time."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("qty > 0", name="ck_order_items_qty_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    qty = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    options_json = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("items", lazy=True, order_by="OrderItem.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "qty": self.qty,
            "unit_price_cents": self.unit_price_cents,
            "unit_price": cents_to_decimal(self.unit_price_cents),
            "line_total_cents": self.line_total_cents,
            "options": self.options_json,
        }
