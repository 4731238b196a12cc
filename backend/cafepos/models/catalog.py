from __future__ import annotations

from ..extensions import db
from cafepos.money import cents_to_decimal
from cafepos.time_utils import to_utc_z


class Product(db.Model):
    """
    Sellable menu item.

    Price is stored in cents; the settlement engine snapshots price_cents and
    name onto each order line, so later edits never rewrite historical orders.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_category_status", "category", "status"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    category = db.Column(db.String(64), nullable=True)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    # active | inactive
    status = db.Column(db.String(16), nullable=False, default="active")
    description = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} price_cents={self.price_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "price": cents_to_decimal(self.price_cents),
            "status": self.status,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductRecipe(db.Model):
    """One ingredient consumed per unit of a product sold."""
    __tablename__ = "product_recipes"
    __table_args__ = (
        db.UniqueConstraint("product_id", "ingredient_id", name="uq_product_recipes_product_ingredient"),
        db.CheckConstraint("qty > 0", name="ck_product_recipes_qty_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    ingredient_id = db.Column(db.Integer, db.ForeignKey("ingredients.id"), nullable=False, index=True)

    # Quantity in the ingredient's unit per one product unit
    qty = db.Column(db.Numeric(12, 3), nullable=False)

    product = db.relationship(
        "Product",
        backref=db.backref("recipe", lazy=True, cascade="all, delete-orphan", order_by="ProductRecipe.id"),
    )
    ingredient = db.relationship("Ingredient")

    def to_dict(self) -> dict:
        return {
            "ingredient_id": self.ingredient_id,
            "ingredient_name": self.ingredient.name if self.ingredient else None,
            "unit": self.ingredient.unit if self.ingredient else None,
            "qty": self.qty,
        }
