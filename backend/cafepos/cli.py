# Overview: Flask CLI command groups for bootstrap, inspection, and demo data.

# backend/cafepos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default admin, manager and staff users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Load a small demo menu: suppliers, ingredients with stock, products with recipes, a promotion.
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with role and active status.
# - python -m flask users create --username barista --password "Password123" --role staff
#   Create a user (prompts if options are omitted).

from decimal import Decimal

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import ROLES, Product, User
from .services import inventory_service, products_service, promotions_service, suppliers_service
from .services.auth_service import PasswordValidationError, UserExistsError, create_user

DEFAULT_PASSWORD = "Password123"

DEFAULT_USERS = [
    ("admin", "Administrator", "admin"),
    ("manager", "Shift Manager", "manager"),
    ("staff", "Barista", "staff"),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create the schema (if missing) and the default users.

    Users: admin, manager, staff. All passwords default to "Password123".

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing cafe POS...")
    db.create_all()
    click.echo("PASS Schema ready")

    click.echo("\nUSERS Creating default users...")
    for username, full_name, role in DEFAULT_USERS:
        try:
            create_user(username=username, password=DEFAULT_PASSWORD, role=role, full_name=full_name)
            click.echo(f"PASS Created user: {username} with role '{role}'")
        except UserExistsError:
            click.echo(f"WARN  User '{username}' already exists, skipping...")
        except PasswordValidationError as e:
            click.echo(f"FAIL Password validation failed for '{username}': {e}")

    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    for username, _, _ in DEFAULT_USERS:
        click.echo(f"   {username:<8} / {DEFAULT_PASSWORD}")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


DEMO_INGREDIENTS = [
    # name, unit, opening stock, reorder point, cost per unit (cents)
    ("Espresso beans", "g", "5000", "1000", 3),
    ("Whole milk", "ml", "20000", "4000", 1),
    ("Cup 12oz", "pcs", "500", "100", 12),
    ("Chocolate syrup", "ml", "2000", "500", 2),
]

DEMO_PRODUCTS = [
    # name, category, price (cents), recipe [(ingredient, qty)]
    ("Espresso", "coffee", 250, [("Espresso beans", "18"), ("Cup 12oz", "1")]),
    ("Latte", "coffee", 420, [("Espresso beans", "18"), ("Whole milk", "200"), ("Cup 12oz", "1")]),
    ("Mocha", "coffee", 480, [
        ("Espresso beans", "18"), ("Whole milk", "180"), ("Chocolate syrup", "30"), ("Cup 12oz", "1"),
    ]),
]


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Load a demo menu. Skips when products already exist."""
    if db.session.query(Product).filter(Product.deleted_at.is_(None)).count():
        click.echo("WARN  Products already exist, skipping demo seed")
        return

    supplier = suppliers_service.create_supplier(patch={
        "name": "Bean & Dairy Co.", "contact_name": "Sam", "phone": "555-0100",
    })
    click.echo(f"PASS Created supplier: {supplier['name']} (ID: {supplier['id']})")

    ingredient_ids = {}
    for name, unit, stock, reorder, cost in DEMO_INGREDIENTS:
        created = inventory_service.create_ingredient(patch={
            "name": name,
            "unit": unit,
            "stock_qty": Decimal(stock),
            "reorder_point": Decimal(reorder),
            "cost_per_unit_cents": cost,
            "supplier_id": supplier["id"],
        })
        ingredient_ids[name] = created["id"]
        click.echo(f"PASS Created ingredient: {name} ({stock} {unit})")

    for name, category, price_cents, recipe in DEMO_PRODUCTS:
        product = products_service.create_product(patch={
            "name": name, "category": category, "price_cents": price_cents,
        })
        products_service.set_recipe(
            product_id=product["id"],
            items=[{"ingredient_id": ingredient_ids[i], "qty": qty} for i, qty in recipe],
        )
        click.echo(f"PASS Created product: {name} with {len(recipe)} recipe line(s)")

    promotions_service.create_promotion(patch={"code": "WELCOME10", "type": "percent", "value": 1000})
    click.echo("PASS Created promotion: WELCOME10 (10% off)")
    click.echo("\nDONE Demo data loaded")


# =============================================================================
# USER COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), prompt=True, help='Role')
@click.option('--full-name', default=None, help='Display name')
@with_appcontext
def create_user_cli(username, password, role, full_name):
    """
    Create a new user.

    Password must be at least 8 characters with one letter and one digit.
    """
    try:
        user = create_user(username=username, password=password, role=role, full_name=full_name)
    except (PasswordValidationError, UserExistsError, ValueError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 70)
    click.echo(f"{'ID':<5} {'Username':<20} {'Role':<10} {'Active':<8} {'Full name'}")
    click.echo("=" * 70)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.role:<10} {active_str:<8} {user.full_name or '-'}")
    click.echo("=" * 70 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
