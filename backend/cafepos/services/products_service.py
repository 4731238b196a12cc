# backend/cafepos/services/products_service.py
"""
Products Service

Menu items and their recipes. The settlement engine only reads from here;
price_cents and name are snapshotted onto order lines at sale time, so edits
made here never rewrite historical orders.

Deletes are soft (deleted_at): order lines keep their product_id reference.
"""
from __future__ import annotations

from ..errors import ServiceError
from ..extensions import db
from ..models import Ingredient, Product, ProductRecipe
from ..validation import ValidationError, coerce_decimal, coerce_int
from cafepos.time_utils import utcnow
from .concurrency import run_with_retry
from .pagination import paginate

PRODUCT_MUTABLE_FIELDS = {"name", "category", "price_cents", "status", "description"}


class CatalogError(ServiceError):
    """Raised for product and recipe failures."""
    code = "PRODUCT_NOT_FOUND"
    status = 404


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _live_query():
    return db.session.query(Product).filter(Product.deleted_at.is_(None))


def list_products(
    *,
    q: str | None = None,
    category: str | None = None,
    status: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[dict], dict]:
    """
    Product listing for the POS grid and the back office.

    q matches name or category (substring, case-insensitive).
    """
    query = _live_query()
    if q:
        like = f"%{q.strip()}%"
        query = query.filter(Product.name.ilike(like) | Product.category.ilike(like))
    if category:
        query = query.filter(Product.category == category)
    if status:
        query = query.filter(Product.status == status)
    query = query.order_by(Product.category.asc(), Product.name.asc(), Product.id.asc())

    rows, meta = paginate(query, page=page, page_size=page_size)
    return [p.to_dict() for p in rows], meta


def get_product(product_id: int) -> Product:
    p = _live_query().filter(Product.id == product_id).first()
    if p is None:
        raise CatalogError("Product not found", details={"product_id": product_id})
    return p


def product_detail(product_id: int) -> dict:
    p = get_product(product_id)
    data = p.to_dict()
    data["recipe"] = [r.to_dict() for r in p.recipe]
    return data


def create_product(*, patch: dict) -> dict:
    now = utcnow()
    p = Product(status="active", created_at=now, updated_at=now)
    apply_product_patch(p, patch)
    db.session.add(p)
    db.session.commit()
    return p.to_dict()


def update_product(*, product_id: int, patch: dict) -> dict:
    def _op():
        p = get_product(product_id)
        apply_product_patch(p, patch)
        p.updated_at = utcnow()
        db.session.commit()
        return p.to_dict()

    return run_with_retry(_op)


def delete_product(*, product_id: int) -> None:
    p = get_product(product_id)
    p.deleted_at = utcnow()
    db.session.commit()


def get_recipe(product_id: int) -> list[dict]:
    return [r.to_dict() for r in get_product(product_id).recipe]


def _parse_recipe_items(items) -> list[tuple[int, object]]:
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    parsed = []
    seen: set[int] = set()
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        ingredient_id = coerce_int(raw.get("ingredient_id"), f"items[{index}].ingredient_id")
        qty = coerce_decimal(raw.get("qty"), f"items[{index}].qty")
        if qty <= 0:
            raise ValidationError(f"items[{index}].qty must be > 0")
        if ingredient_id in seen:
            raise ValidationError(f"ingredient {ingredient_id} appears more than once")
        seen.add(ingredient_id)
        parsed.append((ingredient_id, qty))
    return parsed


def set_recipe(*, product_id: int, items) -> list[dict]:
    """
    Replace a product's recipe in one transaction.

    An empty list clears the recipe. Unknown or deleted ingredients reject
    the whole replacement.
    """
    parsed = _parse_recipe_items(items)

    def _op():
        p = get_product(product_id)

        wanted = {ingredient_id for ingredient_id, _ in parsed}
        if wanted:
            found = {
                row.id
                for row in db.session.query(Ingredient.id).filter(
                    Ingredient.id.in_(wanted),
                    Ingredient.deleted_at.is_(None),
                )
            }
            missing = sorted(wanted - found)
            if missing:
                raise CatalogError(
                    "Ingredient not found",
                    code="INGREDIENT_NOT_FOUND",
                    details={"ingredient_ids": missing},
                )

        # delete-orphan cascade removes the old rows on flush
        p.recipe.clear()
        db.session.flush()
        for ingredient_id, qty in parsed:
            p.recipe.append(ProductRecipe(ingredient_id=ingredient_id, qty=qty))

        p.updated_at = utcnow()
        db.session.commit()
        return [r.to_dict() for r in p.recipe]

    return run_with_retry(_op)
