from datetime import timedelta

import pytest

from database import utcnow
from errors import NotFoundError, PricingError
from pricing import compute_totals, evaluate_coupon, price_items, quote, record_coupon_use, release_coupon_use


class TestComputeTotals:
    def test_free_shipping_above_threshold(self):
        totals = compute_totals(600)
        assert totals.shipping_fee == 0
        assert totals.tax_amount == 0
        assert totals.total_amount == 600

    def test_flat_fee_and_tax_below_threshold(self):
        totals = compute_totals(400, tax_enabled=True, tax_percentage=18)
        assert totals.shipping_fee == 50
        assert totals.tax_amount == 72
        assert totals.total_amount == 522

    def test_threshold_itself_pays_shipping(self):
        assert compute_totals(500).shipping_fee == 50

    def test_discount_can_cost_free_shipping(self):
        totals = compute_totals(600, discount=150)
        assert totals.discount_amount == 150
        assert totals.shipping_fee == 50
        assert totals.total_amount == 500

    def test_tax_applies_to_discounted_subtotal(self):
        totals = compute_totals(1000, discount=100, tax_enabled=True, tax_percentage=5)
        assert totals.tax_amount == 45
        assert totals.total_amount == 945

    def test_tax_ignored_when_disabled(self):
        assert compute_totals(400, tax_enabled=False, tax_percentage=18).tax_amount == 0

    def test_discount_clamped_to_subtotal(self):
        totals = compute_totals(200, discount=1000)
        assert totals.discount_amount == 200
        assert totals.total_amount == 50

    def test_total_formula_holds(self):
        for subtotal, discount, pct in [(123.45, 10, 12), (999.99, 0, 18), (50, 5, 0)]:
            t = compute_totals(subtotal, discount, tax_enabled=True, tax_percentage=pct)
            expected = t.subtotal - t.discount_amount + t.shipping_fee + t.tax_amount
            assert t.total_amount == pytest.approx(expected, abs=0.01)

    def test_amount_minor_in_paise(self):
        assert compute_totals(333.33).amount_minor == 38333
        assert compute_totals(600).amount_minor == 60000


class TestPriceItems:
    def test_uses_catalogue_prices(self, products):
        priced, subtotal = price_items([
            {"product_id": products["ashwagandha-capsules"], "quantity": 2},
            {"product_id": products["triphala-churna"], "quantity": 1},
        ])
        assert subtotal == 750
        assert priced[0]["price"] == 300
        assert priced[0]["sku"] == "ASH-60"

    def test_unknown_product(self, products):
        with pytest.raises(PricingError):
            price_items([{"product_id": "64b7f0c2a1b2c3d4e5f60718", "quantity": 1}])

    def test_inactive_product(self, db, products):
        db["product"].update_many({}, {"$set": {"is_active": False}})
        with pytest.raises(PricingError):
            price_items([{"product_id": products["triphala-churna"], "quantity": 1}])

    def test_empty_cart(self, db):
        with pytest.raises(PricingError, match="Cart is empty"):
            price_items([])


@pytest.fixture
def coupons(db):
    now = utcnow()

    def add(code, **fields):
        doc = {
            "code": code,
            "description": code.title(),
            "discount_amount": 10,
            "discount_type": "percentage",
            "minimum_cart_value": 0,
            "max_uses": -1,
            "used_count": 0,
            "start_date": now - timedelta(days=1),
            "end_date": now + timedelta(days=30),
            "is_active": True,
        }
        doc.update(fields)
        db["coupon"].insert_one(doc)
        return doc
    return add


class TestCoupons:
    def test_percentage(self, coupons):
        coupons("WELLNESS10")
        assert evaluate_coupon("wellness10", 600).discount_value == 60

    def test_fixed_capped_at_cart_value(self, coupons):
        coupons("FLAT500", discount_type="fixed", discount_amount=500)
        assert evaluate_coupon("FLAT500", 300).discount_value == 300

    def test_unknown_code(self, coupons):
        with pytest.raises(NotFoundError):
            evaluate_coupon("NOPE", 600)

    def test_inactive(self, coupons):
        coupons("OLD", is_active=False)
        with pytest.raises(PricingError, match="inactive"):
            evaluate_coupon("OLD", 600)

    def test_expired(self, coupons):
        coupons("GONE", end_date=utcnow() - timedelta(hours=1))
        with pytest.raises(PricingError, match="expired"):
            evaluate_coupon("GONE", 600)

    def test_usage_limit(self, coupons):
        coupons("ONCE", max_uses=1, used_count=1)
        with pytest.raises(PricingError, match="usage limit"):
            evaluate_coupon("ONCE", 600)

    def test_minimum_cart_value(self, coupons):
        coupons("BIG", minimum_cart_value=1000)
        with pytest.raises(PricingError, match="Minimum cart value of 1000"):
            evaluate_coupon("BIG", 600)

    def test_record_use(self, db, coupons):
        coupons("WELLNESS10")
        assert record_coupon_use("wellness10") is True
        assert db["coupon"].find_one({"code": "WELLNESS10"})["used_count"] == 1

    def test_record_use_stops_at_limit(self, db, coupons):
        coupons("TWICE", max_uses=2, used_count=1)
        assert record_coupon_use("TWICE") is True
        assert record_coupon_use("TWICE") is False
        assert db["coupon"].find_one({"code": "TWICE"})["used_count"] == 2

    def test_record_use_unlimited(self, db, coupons):
        coupons("ALWAYS", used_count=41)
        assert record_coupon_use("ALWAYS") is True
        assert db["coupon"].find_one({"code": "ALWAYS"})["used_count"] == 42

    def test_release_use(self, db, coupons):
        coupons("ONCE", max_uses=1, used_count=1)
        release_coupon_use("once")
        release_coupon_use("once")
        assert db["coupon"].find_one({"code": "ONCE"})["used_count"] == 0


class TestQuote:
    def test_quote_with_coupon_and_tax(self, products, coupons):
        coupons("WELLNESS10")
        result = quote(
            [{"product_id": products["ashwagandha-capsules"], "quantity": 2}],
            "wellness10",
            {"tax_enabled": True, "tax_percentage": 18},
        )
        totals = result["totals"]
        assert result["coupon_code"] == "WELLNESS10"
        assert totals.subtotal == 600
        assert totals.discount_amount == 60
        assert totals.shipping_fee == 0
        assert totals.tax_amount == 97.2
        assert totals.total_amount == 637.2

    def test_quote_without_settings(self, products):
        result = quote([{"product_id": products["triphala-churna"], "quantity": 1}], None, None)
        assert result["totals"].total_amount == 200
