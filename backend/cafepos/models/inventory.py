from __future__ import annotations

from ..extensions import db
from cafepos.money import cents_to_decimal
from cafepos.time_utils import to_utc_z


class Supplier(db.Model):
    """Ingredient supplier. Referenced by ingredients and by receive movements."""
    __tablename__ = "suppliers"
    __table_args__ = (
        db.Index("ix_suppliers_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    contact_name = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.Text, nullable=True)

    # active | inactive
    status = db.Column(db.String(16), nullable=False, default="active")

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Supplier id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact_name": self.contact_name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Ingredient(db.Model):
    """
    Stockable raw material (beans, milk, cups...).

    stock_qty is a running balance. It is only ever changed through
    inventory_service.apply_stock_delta, which pairs every change with exactly
    one StockMovement row in the same transaction.
    """
    __tablename__ = "ingredients"
    __table_args__ = (
        db.Index("ix_ingredients_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(32), nullable=False, default="unit")

    stock_qty = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    reorder_point = db.Column(db.Numeric(12, 3), nullable=False, default=0)

    cost_per_unit_cents = db.Column(db.Integer, nullable=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    supplier = db.relationship("Supplier", backref=db.backref("ingredients", lazy=True))

    @property
    def stock_status(self) -> str:
        if self.stock_qty is None or self.stock_qty <= 0:
            return "out_of_stock"
        if self.stock_qty <= self.reorder_point:
            return "low"
        return "good"

    def __repr__(self) -> str:
        return f"<Ingredient id={self.id} name={self.name!r} stock_qty={self.stock_qty}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "unit": self.unit,
            "stock_qty": self.stock_qty,
            "reorder_point": self.reorder_point,
            "stock_status": self.stock_status,
            "cost_per_unit_cents": self.cost_per_unit_cents,
            "cost_per_unit": cents_to_decimal(self.cost_per_unit_cents),
            "supplier_id": self.supplier_id,
            "supplier": self.supplier.name if self.supplier else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only ledger of ingredient stock changes.

    TYPES:
    - consume: sale-driven deduction (qty < 0), ref = {order_id, product_id}
    - receive: goods in from a supplier (qty > 0), ref = {supplier_id, price_per_unit}
    - adjust: manual correction, signed qty

    Sign convention: negative qty leaves stock, positive qty enters stock.
    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_ingredient_created", "ingredient_id", "created_at"),
        db.CheckConstraint("qty <> 0", name="ck_stock_movements_qty_non_zero"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    ingredient_id = db.Column(db.Integer, db.ForeignKey("ingredients.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    qty = db.Column(db.Numeric(12, 3), nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    ref = db.Column(db.JSON, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    ingredient = db.relationship("Ingredient", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ingredient_id": self.ingredient_id,
            "type": self.type,
            "qty": self.qty,
            "reason": self.reason,
            "ref": self.ref,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
