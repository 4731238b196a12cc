"""
Pytest fixtures for cafe POS backend tests.

Provides the in-memory test database, per-role users and auth headers,
and small catalogue builders (ingredients, products with recipes, promotions).
"""

from decimal import Decimal

import pytest

from cafepos import create_app
from cafepos.extensions import db
from cafepos.models import Ingredient, Product, ProductRecipe, Promotion
from cafepos.services import session_service
from cafepos.services.auth_service import create_user
from cafepos.time_utils import utcnow

TEST_PASSWORD = "Password123"

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite://',
    'BCRYPT_ROUNDS': 4,
    'ALLOW_NEGATIVE_STOCK': False,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Fresh data for each test; the schema is kept."""
    app.config['ALLOW_NEGATIVE_STOCK'] = False
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


# =============================================================================
# USERS AND AUTH HEADERS
# =============================================================================

@pytest.fixture
def admin_user(db_session):
    return create_user(username="admin", password=TEST_PASSWORD, role="admin", full_name="Admin")


@pytest.fixture
def manager_user(db_session):
    return create_user(username="manager", password=TEST_PASSWORD, role="manager")


@pytest.fixture
def staff_user(db_session):
    return create_user(username="barista", password=TEST_PASSWORD, role="staff")


def auth_headers(user) -> dict:
    """Open a session for `user` and return the Authorization header."""
    _, token = session_service.create_session(user)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture
def manager_headers(manager_user):
    return auth_headers(manager_user)


@pytest.fixture
def staff_headers(staff_user):
    return auth_headers(staff_user)


# =============================================================================
# CATALOGUE BUILDERS
# =============================================================================

def make_ingredient(name: str, stock, reorder_point="0", unit: str = "g") -> Ingredient:
    """Insert an ingredient with a raw opening balance (no movement)."""
    now = utcnow()
    ingredient = Ingredient(
        name=name,
        unit=unit,
        stock_qty=Decimal(str(stock)),
        reorder_point=Decimal(str(reorder_point)),
        created_at=now,
        updated_at=now,
    )
    db.session.add(ingredient)
    db.session.commit()
    return ingredient


def make_product(name: str, price_cents: int, recipe=(), status: str = "active") -> Product:
    """recipe: iterable of (ingredient, qty per unit sold)."""
    now = utcnow()
    product = Product(name=name, category="coffee", price_cents=price_cents, status=status,
                      created_at=now, updated_at=now)
    db.session.add(product)
    db.session.flush()
    for ingredient, qty in recipe:
        db.session.add(ProductRecipe(product_id=product.id, ingredient_id=ingredient.id,
                                     qty=Decimal(str(qty))))
    db.session.commit()
    return product


def make_promotion(code: str, type_: str, value: int, min_spend_cents=None,
                   start_at=None, end_at=None, status: str = "active") -> Promotion:
    now = utcnow()
    promo = Promotion(code=code, type=type_, value=value, min_spend_cents=min_spend_cents,
                      start_at=start_at, end_at=end_at, status=status,
                      created_at=now, updated_at=now)
    db.session.add(promo)
    db.session.commit()
    return promo


@pytest.fixture
def beans(db_session):
    return make_ingredient("Espresso beans", "100", reorder_point="20")


@pytest.fixture
def milk(db_session):
    return make_ingredient("Whole milk", "1000", reorder_point="200", unit="ml")


@pytest.fixture
def espresso(beans):
    """10.00 each, 2 g of beans per cup."""
    return make_product("Espresso", 1000, recipe=[(beans, "2")])


@pytest.fixture
def latte(beans, milk):
    """25.00 each, 2 g of beans and 150 ml of milk per cup."""
    return make_product("Latte", 2500, recipe=[(beans, "2"), (milk, "150")])
