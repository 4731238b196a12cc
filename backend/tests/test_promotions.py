"""Promotion routes and the discount preview."""

from datetime import timedelta

from cafepos.services.promotions_service import evaluate_discount, resolve_promotion
from cafepos.time_utils import utcnow

from conftest import make_promotion


class TestPromotionCrud:

    def test_create_normalizes_type_alias(self, client, manager_headers):
        resp = client.post("/promotions", headers=manager_headers, json={
            "code": "SUMMER", "type": "percentage", "value": 1500,
            "start_at": "2026-06-01T00:00:00Z", "end_at": "2026-08-31T23:59:59Z",
        })
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["type"] == "percent"
        assert data["start_at"] == "2026-06-01T00:00:00Z"

    def test_amount_alias_is_fixed(self, client, manager_headers):
        resp = client.post("/promotions", headers=manager_headers,
                           json={"code": "FIVER", "type": "amount", "value": 500})
        assert resp.get_json()["data"]["type"] == "fixed"

    def test_duplicate_code_case_insensitive(self, client, manager_headers):
        make_promotion("WELCOME", "fixed", 100)
        resp = client.post("/promotions", headers=manager_headers,
                           json={"code": "welcome", "type": "fixed", "value": 200})
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "DUPLICATE_CODE"

    def test_percent_over_100_rejected(self, client, manager_headers):
        resp = client.post("/promotions", headers=manager_headers,
                           json={"code": "TOO", "type": "percent", "value": 10001})
        assert resp.status_code == 400

    def test_inverted_window_rejected(self, client, manager_headers):
        resp = client.post("/promotions", headers=manager_headers, json={
            "code": "BACK", "type": "fixed", "value": 1,
            "start_at": "2026-02-01T00:00:00Z", "end_at": "2026-01-01T00:00:00Z",
        })
        assert resp.status_code == 400

    def test_update_and_status(self, client, manager_headers):
        promo = make_promotion("EDIT", "fixed", 100)
        resp = client.put(f"/promotions/{promo.id}", headers=manager_headers, json={"value": 300})
        assert resp.get_json()["data"]["value"] == 300

        resp = client.put(f"/promotions/{promo.id}/status", headers=manager_headers, json={"status": "inactive"})
        assert resp.status_code == 200
        assert resp.get_json()["data"]["status"] == "inactive"

    def test_rename_to_taken_code_conflicts(self, client, manager_headers):
        make_promotion("ONE", "fixed", 100)
        two = make_promotion("TWO", "fixed", 100)
        resp = client.put(f"/promotions/{two.id}", headers=manager_headers, json={"code": "one"})
        assert resp.status_code == 409

    def test_delete_frees_code(self, client, manager_headers):
        promo = make_promotion("GONE", "fixed", 100)
        assert client.delete(f"/promotions/{promo.id}", headers=manager_headers).status_code == 200
        assert client.get(f"/promotions/{promo.id}", headers=manager_headers).status_code == 404
        resp = client.post("/promotions", headers=manager_headers,
                           json={"code": "GONE", "type": "fixed", "value": 1})
        assert resp.status_code == 201

    def test_staff_cannot_create(self, client, staff_headers):
        resp = client.post("/promotions", headers=staff_headers,
                           json={"code": "X", "type": "fixed", "value": 1})
        assert resp.status_code == 403


class TestPreview:

    def test_check_applies(self, client, staff_headers):
        make_promotion("TEN", "percent", 1000)
        data = client.get("/promotions/check?code=ten&subtotal_cents=10000",
                          headers=staff_headers).get_json()["data"]
        assert data["applied"] is True
        assert data["discount_cents"] == 1000
        assert data["total"] == "90.00"

    def test_check_below_min_spend(self, client, staff_headers):
        make_promotion("BIG", "fixed", 500, min_spend_cents=20000)
        data = client.get("/promotions/check?code=BIG&subtotal_cents=15000",
                          headers=staff_headers).get_json()["data"]
        assert data["applied"] is False
        assert data["reason"] == "BELOW_MIN_SPEND"
        assert data["total_cents"] == 15000

    def test_check_unknown_code(self, client, staff_headers):
        data = client.get("/promotions/check?code=NOPE&subtotal_cents=100",
                          headers=staff_headers).get_json()["data"]
        assert data["reason"] == "NOT_FOUND"

    def test_check_bad_subtotal(self, client, staff_headers):
        resp = client.get("/promotions/check?code=X&subtotal_cents=abc", headers=staff_headers)
        assert resp.status_code == 400


class TestEvaluation:

    def test_fixed_never_exceeds_subtotal(self, db_session):
        promo = make_promotion("BIG", "fixed", 50000)
        assert evaluate_discount(promo, 8000) == 8000
        assert evaluate_discount(promo, 0) == 0

    def test_full_percent(self, db_session):
        promo = make_promotion("FREE", "percent", 10000)
        assert evaluate_discount(promo, 1234) == 1234

    def test_resolve_respects_window_at_given_time(self, db_session):
        now = utcnow()
        make_promotion("WIN", "fixed", 100, start_at=now, end_at=now + timedelta(days=1))
        assert resolve_promotion("WIN", 1000, now=now + timedelta(hours=1))[0] is not None
        assert resolve_promotion("WIN", 1000, now=now + timedelta(days=2)) == (None, "NOT_FOUND")
        assert resolve_promotion("", 1000) == (None, "NO_CODE")
