"""
Settlement engine tests.

Verifies:
- subtotal / discount / total arithmetic in integer cents
- full rollback when any line fails
- promotion evaluation (percent, fixed cap, min spend, window, case)
- one consume movement per (line, recipe entry) with the right sign and ref
- negative-stock guard and idempotency keys
- no lost update under concurrent settlement
"""

import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from cafepos import create_app
from cafepos.errors import ServiceError
from cafepos.extensions import db
from cafepos.models import Ingredient, Order, OrderItem, StockMovement
from cafepos.services import order_service
from cafepos.services.order_service import (
    MAX_LINE_QTY,
    SettlementError,
    parse_settlement_request,
    settle_order,
)
from cafepos.time_utils import utcnow

from conftest import TEST_CONFIG, make_ingredient, make_product, make_promotion


def settle(items, **extra):
    payload = {"items": items}
    payload.update(extra)
    return settle_order(parse_settlement_request(payload))


def counts():
    return (
        db.session.query(Order).count(),
        db.session.query(OrderItem).count(),
        db.session.query(StockMovement).count(),
    )


def stock_of(ingredient_id):
    return db.session.get(Ingredient, ingredient_id, populate_existing=True).stock_qty


# =============================================================================
# TOTALS
# =============================================================================


class TestTotals:

    def test_subtotal_is_sum_of_price_times_qty(self, espresso, latte):
        result = settle([
            {"product_id": espresso.id, "qty": 3},
            {"product_id": latte.id, "qty": 2},
        ])
        order = result.order
        assert result.created is True
        assert order.sub_total_cents == 3 * 1000 + 2 * 2500
        assert order.discount_cents == 0
        assert order.total_cents == order.sub_total_cents
        assert order.status == "paid"
        assert order.pay_method == "cash"

    def test_lines_snapshot_name_and_price(self, espresso):
        result = settle([{"product_id": espresso.id, "qty": 2, "options": {"size": "L"}}])
        espresso.price_cents = 9999
        espresso.name = "Renamed"
        db.session.commit()

        item = db.session.query(OrderItem).filter_by(order_id=result.order.id).one()
        assert item.product_name == "Espresso"
        assert item.unit_price_cents == 1000
        assert item.line_total_cents == 2000
        assert item.options_json == {"size": "L"}

    def test_result_dict_renders_total_as_decimal(self, espresso):
        data = settle([{"product_id": espresso.id, "qty": 1}]).to_dict()
        assert data["total"] == Decimal("10.00")
        assert data["total_cents"] == 1000

    def test_optional_fields_are_stored(self, espresso):
        order = settle(
            [{"product_id": espresso.id, "qty": 1}],
            pay_method="card", note="no sugar", customer="Table 4", status="open",
        ).order
        assert order.pay_method == "card"
        assert order.note == "no sugar"
        assert order.customer == "Table 4"
        assert order.status == "open"


# =============================================================================
# VALIDATION AND ROLLBACK
# =============================================================================


class TestValidation:

    def test_empty_cart_rejected(self, espresso):
        with pytest.raises(SettlementError) as exc:
            settle([])
        assert exc.value.code == "EMPTY_CART"
        assert counts() == (0, 0, 0)

    def test_missing_items_is_empty_cart(self):
        with pytest.raises(SettlementError) as exc:
            parse_settlement_request({})
        assert exc.value.code == "EMPTY_CART"

    @pytest.mark.parametrize("line", [
        {"qty": 1},
        {"product_id": 1, "qty": 0},
        {"product_id": 1, "qty": -2},
        {"product_id": 1, "qty": 1.5},
        {"product_id": 1, "qty": True},
        {"product_id": 1, "qty": "two"},
        {"product_id": "abc", "qty": 1},
        {"product_id": 1, "qty": 10_001},
        {"product_id": 1, "qty": 10**19},
        {"product_id": 2**70, "qty": 1},
        {"product_id": -3, "qty": 1},
        "not-an-object",
    ])
    def test_invalid_line_rejects_whole_request(self, espresso, line):
        with pytest.raises(SettlementError) as exc:
            settle([{"product_id": espresso.id, "qty": 1}, line])
        assert exc.value.code == "INVALID_ITEM"
        assert exc.value.details == {"index": 1}
        assert counts() == (0, 0, 0)

    def test_line_qty_cap_is_inclusive(self):
        request = parse_settlement_request({"items": [{"product_id": 1, "qty": MAX_LINE_QTY}]})
        assert request.lines[0].qty == MAX_LINE_QTY

    def test_error_code_defaults_to_validation(self):
        assert SettlementError("bad input").code == "VALIDATION_ERROR"
        assert SettlementError("bad input").status == 400

    def test_unknown_status_rejected(self, espresso):
        with pytest.raises(SettlementError) as exc:
            settle([{"product_id": espresso.id, "qty": 1}], status="void")
        assert exc.value.code == "INVALID_STATUS"

    def test_unknown_product_rolls_back_everything(self, espresso, beans):
        with pytest.raises(SettlementError) as exc:
            settle([
                {"product_id": espresso.id, "qty": 1},
                {"product_id": 999999, "qty": 1},
            ])
        assert exc.value.code == "PRODUCT_NOT_FOUND"
        assert exc.value.details == {"product_id": 999999}
        assert counts() == (0, 0, 0)
        assert stock_of(beans.id) == Decimal("100")

    def test_inactive_product_is_not_found(self, beans):
        retired = make_product("Retired", 500, recipe=[(beans, "1")], status="inactive")
        with pytest.raises(SettlementError) as exc:
            settle([{"product_id": retired.id, "qty": 1}])
        assert exc.value.code == "PRODUCT_NOT_FOUND"

    def test_soft_deleted_product_is_not_found(self, espresso):
        espresso.deleted_at = utcnow()
        db.session.commit()
        with pytest.raises(SettlementError) as exc:
            settle([{"product_id": espresso.id, "qty": 1}])
        assert exc.value.code == "PRODUCT_NOT_FOUND"


# =============================================================================
# PROMOTIONS
# =============================================================================


class TestPromotions:

    @pytest.fixture
    def ten_dollar_item(self, db_session):
        return make_product("Beans 1kg", 10000)

    def test_percent_ten_on_hundred(self, ten_dollar_item):
        make_promotion("TEN", "percent", 1000)
        order = settle([{"product_id": ten_dollar_item.id, "qty": 1}], discount_code="TEN").order
        assert order.sub_total_cents == 10000
        assert order.discount_cents == 1000
        assert order.total_cents == 9000
        assert order.discount_code == "TEN"

    def test_fixed_discount_capped_at_subtotal(self, db_session):
        item = make_product("Cake", 8000)
        make_promotion("FIVE", "fixed", 50000)
        order = settle([{"product_id": item.id, "qty": 1}], discount_code="FIVE").order
        assert order.sub_total_cents == 8000
        assert order.discount_cents == 8000
        assert order.total_cents == 0

    def test_min_spend_not_met_gives_no_discount(self, db_session):
        item = make_product("Cake", 15000)
        make_promotion("BIG", "percent", 1000, min_spend_cents=20000)
        order = settle([{"product_id": item.id, "qty": 1}], discount_code="BIG").order
        assert order.discount_cents == 0
        assert order.total_cents == 15000
        assert order.discount_code is None

    def test_min_spend_met_exactly_applies(self, db_session):
        item = make_product("Cake", 20000)
        make_promotion("BIG", "fixed", 500, min_spend_cents=20000)
        order = settle([{"product_id": item.id, "qty": 1}], discount_code="BIG").order
        assert order.discount_cents == 500

    def test_code_matched_case_insensitively(self, ten_dollar_item):
        make_promotion("Welcome10", "percent", 1000)
        order = settle([{"product_id": ten_dollar_item.id, "qty": 1}], discount_code="  welcome10 ").order
        assert order.discount_cents == 1000
        assert order.discount_code == "Welcome10"

    def test_unknown_code_settles_without_discount(self, ten_dollar_item):
        order = settle([{"product_id": ten_dollar_item.id, "qty": 1}], discount_code="NOPE").order
        assert order.discount_cents == 0
        assert order.total_cents == 10000

    def test_inactive_and_out_of_window_codes_ignored(self, ten_dollar_item):
        now = utcnow()
        make_promotion("OFF", "percent", 1000, status="inactive")
        make_promotion("LATER", "percent", 1000, start_at=now + timedelta(days=1))
        make_promotion("OVER", "percent", 1000, end_at=now - timedelta(days=1))
        for code in ("OFF", "LATER", "OVER"):
            order = settle([{"product_id": ten_dollar_item.id, "qty": 1}], discount_code=code).order
            assert order.discount_cents == 0, code

    def test_open_ended_window_applies(self, ten_dollar_item):
        make_promotion("NOW", "fixed", 250, start_at=utcnow() - timedelta(hours=1))
        order = settle([{"product_id": ten_dollar_item.id, "qty": 1}], discount_code="NOW").order
        assert order.discount_cents == 250

    def test_percent_rounds_half_up_to_the_cent(self, db_session):
        item = make_product("Odd", 1005)
        make_promotion("HALF", "percent", 500)
        order = settle([{"product_id": item.id, "qty": 1}], discount_code="HALF").order
        # 5% of 10.05 = 0.5025 -> 0.50; of 10.10 would be 0.505 -> 0.51
        assert order.discount_cents == 50
        item2 = make_product("Odd2", 1010)
        order2 = settle([{"product_id": item2.id, "qty": 1}], discount_code="HALF").order
        assert order2.discount_cents == 51
        assert order2.total_cents == 1010 - 51


# =============================================================================
# STOCK DEDUCTION
# =============================================================================


class TestStockDeduction:

    def test_recipe_consumption_writes_one_movement(self, db_session):
        x = make_ingredient("X", "50")
        product = make_product("Double", 400, recipe=[(x, "2")])

        order = settle([{"product_id": product.id, "qty": 3}]).order

        assert stock_of(x.id) == Decimal("44")
        movements = db.session.query(StockMovement).filter_by(ingredient_id=x.id).all()
        assert len(movements) == 1
        movement = movements[0]
        assert movement.type == "consume"
        assert movement.qty == Decimal("-6")
        assert movement.reason == "sale"
        assert movement.ref == {"order_id": order.id, "product_id": product.id}

    def test_multi_ingredient_recipe_one_movement_each(self, latte, beans, milk):
        order = settle([{"product_id": latte.id, "qty": 2}]).order

        movements = (
            db.session.query(StockMovement)
            .filter(StockMovement.type == "consume")
            .order_by(StockMovement.ingredient_id)
            .all()
        )
        assert [(m.ingredient_id, m.qty) for m in movements] == [
            (beans.id, Decimal("-4")),
            (milk.id, Decimal("-300")),
        ]
        assert all(m.ref["order_id"] == order.id for m in movements)
        assert stock_of(beans.id) == Decimal("96")
        assert stock_of(milk.id) == Decimal("700")

    def test_same_product_on_two_lines_gets_separate_movements(self, espresso, beans):
        settle([
            {"product_id": espresso.id, "qty": 1},
            {"product_id": espresso.id, "qty": 2},
        ])
        qtys = sorted(m.qty for m in db.session.query(StockMovement).all())
        assert qtys == [Decimal("-4"), Decimal("-2")]
        assert stock_of(beans.id) == Decimal("94")

    def test_product_without_recipe_writes_no_movements(self, db_session):
        item = make_product("Gift card", 5000)
        settle([{"product_id": item.id, "qty": 1}])
        assert counts() == (1, 1, 0)

    def test_fractional_recipe_quantities(self, db_session):
        syrup = make_ingredient("Syrup", "10")
        product = make_product("Mocha", 480, recipe=[(syrup, "0.25")])
        settle([{"product_id": product.id, "qty": 3}])
        assert stock_of(syrup.id) == Decimal("9.25")

    def test_insufficient_stock_rolls_back(self, db_session):
        low = make_ingredient("Low", "5")
        product = make_product("Greedy", 100, recipe=[(low, "3")])

        with pytest.raises(ServiceError) as exc:
            settle([{"product_id": product.id, "qty": 2}])

        assert exc.value.code == "INSUFFICIENT_STOCK"
        assert exc.value.details["ingredient_id"] == low.id
        assert counts() == (0, 0, 0)
        assert stock_of(low.id) == Decimal("5")

    def test_negative_stock_allowed_when_configured(self, app, db_session):
        app.config["ALLOW_NEGATIVE_STOCK"] = True
        low = make_ingredient("Low", "5")
        product = make_product("Greedy", 100, recipe=[(low, "3")])

        settle([{"product_id": product.id, "qty": 2}])
        assert stock_of(low.id) == Decimal("-1")

    def test_stock_equals_sum_of_movements(self, client, manager_headers, latte, beans):
        client.post("/inventory/receive", headers=manager_headers,
                    json={"items": [{"ingredient_id": beans.id, "qty": 10}]})
        settle([{"product_id": latte.id, "qty": 3}])
        # beans started at 100 outside the ledger
        ledger = sum(m.qty for m in db.session.query(StockMovement).filter_by(ingredient_id=beans.id))
        assert stock_of(beans.id) == Decimal("100") + ledger


# =============================================================================
# IDEMPOTENCY
# =============================================================================


class TestIdempotency:

    def test_repeated_key_returns_existing_order(self, espresso, beans):
        first = settle_order(parse_settlement_request(
            {"items": [{"product_id": espresso.id, "qty": 1}]}, idempotency_key="abc-1"
        ))
        second = settle_order(parse_settlement_request(
            {"items": [{"product_id": espresso.id, "qty": 5}]}, idempotency_key="abc-1"
        ))
        assert first.created is True
        assert second.created is False
        assert second.order.id == first.order.id
        assert counts() == (1, 1, 1)
        assert stock_of(beans.id) == Decimal("98")

    def test_body_key_used_when_no_header(self, espresso):
        settle([{"product_id": espresso.id, "qty": 1}], idempotency_key="body-key")
        again = settle([{"product_id": espresso.id, "qty": 1}], idempotency_key="body-key")
        assert again.created is False

    def test_key_collision_on_insert_returns_existing_order(self, espresso, beans, monkeypatch):
        first = settle([{"product_id": espresso.id, "qty": 1}], idempotency_key="race-1")

        # Both lookups miss, as for a concurrent request without a write lock
        real_lookup = order_service._find_by_idempotency_key
        calls = []

        def stale_lookup(key):
            calls.append(key)
            return None if len(calls) <= 2 else real_lookup(key)

        monkeypatch.setattr(order_service, "_find_by_idempotency_key", stale_lookup)

        again = settle([{"product_id": espresso.id, "qty": 1}], idempotency_key="race-1")

        assert again.created is False
        assert again.order.id == first.order.id
        assert counts() == (1, 1, 1)
        assert stock_of(beans.id) == Decimal("98")

    def test_overlong_key_rejected(self, espresso):
        with pytest.raises(SettlementError) as exc:
            parse_settlement_request(
                {"items": [{"product_id": espresso.id, "qty": 1}]}, idempotency_key="k" * 65
            )
        assert exc.value.code == "VALIDATION_ERROR"


# =============================================================================
# CONCURRENCY
# =============================================================================


@pytest.fixture
def file_app(tmp_path):
    """Separate app on a file-backed SQLite database shared by threads."""
    config = dict(TEST_CONFIG)
    config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{tmp_path / 'concurrency.sqlite3'}"
    concurrent_app = create_app(config)
    with concurrent_app.app_context():
        db.create_all()
    yield concurrent_app
    with concurrent_app.app_context():
        db.drop_all()
        db.engine.dispose()


def _run_parallel(app, product_id, qty, workers=2):
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            barrier.wait()
            try:
                result = settle([{"product_id": product_id, "qty": qty}])
                outcome = ("ok", result.order.id)
            except ServiceError as e:
                outcome = ("error", e.code)
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return outcomes


class TestConcurrentSettlement:

    def test_no_lost_update(self, file_app):
        with file_app.app_context():
            x = make_ingredient("Shared", "20")
            product = make_product("Shot", 300, recipe=[(x, "3")])
            ingredient_id, product_id = x.id, product.id

        outcomes = _run_parallel(file_app, product_id, qty=2)

        assert [o[0] for o in outcomes] == ["ok", "ok"]
        with file_app.app_context():
            assert db.session.get(Ingredient, ingredient_id).stock_qty == Decimal("8")
            assert db.session.query(StockMovement).count() == 2

    def test_low_stock_only_one_sale_wins(self, file_app):
        with file_app.app_context():
            x = make_ingredient("Scarce", "5")
            product = make_product("Shot", 300, recipe=[(x, "3")])
            ingredient_id, product_id = x.id, product.id

        outcomes = _run_parallel(file_app, product_id, qty=1)

        assert sorted(o[0] for o in outcomes) == ["error", "ok"]
        assert ("error", "INSUFFICIENT_STOCK") in outcomes
        with file_app.app_context():
            assert db.session.get(Ingredient, ingredient_id).stock_qty == Decimal("2")
            assert db.session.query(Order).count() == 1
