"""Tests for discount eligibility and amounts."""

from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from checkout_pricing.pricing import discounts as codes
from checkout_pricing.pricing.discounts import DiscountEvaluator, is_usage_limit_reached, remaining_uses
from checkout_pricing.pricing.errors import CurrencyMismatchError
from checkout_pricing.pricing.models import Discount, DiscountScope, DiscountType, OrderContext, ProductLine


@pytest.fixture
def evaluator():
    return DiscountEvaluator()


def percent(discount_id="d", value=10, **kwargs):
    return Discount(discount_id, name=f"{value}% off", type=DiscountType.PERCENTAGE, value=value, **kwargs)


def fixed(discount_id="d", value=10, **kwargs):
    return Discount(discount_id, name=f"{value} off", type=DiscountType.FIXED_AMOUNT, value=value, **kwargs)


class TestValidity:
    """Activity, dates and the global usage cap."""

    def test_inactive(self, evaluator, order_context, now):
        result = evaluator.check_eligibility(percent(is_active=False), order_context, now)
        assert result.success is False
        assert result.error_code == codes.INACTIVE

    def test_date_window(self, evaluator, order_context, now):
        upcoming = percent(start_date=now + timedelta(hours=1))
        expired = percent(end_date=now - timedelta(hours=1))
        running = percent(start_date=now - timedelta(days=1), end_date=now)

        assert evaluator.check_eligibility(upcoming, order_context, now).error_code == codes.NOT_STARTED
        assert evaluator.check_eligibility(expired, order_context, now).error_code == codes.EXPIRED
        assert evaluator.is_valid(running, now) is True

    def test_usage_limit(self, evaluator, order_context, now):
        exhausted = percent(total_usage_limit=100, usage_count=100)
        assert is_usage_limit_reached(exhausted) is True
        assert remaining_uses(exhausted) == 0
        assert remaining_uses(percent(total_usage_limit=5, usage_count=2)) == 3
        assert remaining_uses(percent()) is None
        assert evaluator.check_eligibility(exhausted, order_context, now).error_code == codes.USAGE_LIMIT_REACHED

    def test_naive_now_is_read_as_utc(self, evaluator, order_context):
        running = percent(start_date=datetime(2024, 1, 1), end_date=datetime(2024, 12, 31))

        assert evaluator.is_valid(running, datetime(2024, 6, 1)) is True
        assert evaluator.check_eligibility(running, order_context, datetime(2025, 1, 1)).error_code == codes.EXPIRED
        assert evaluator.apply_discounts([running], order_context, datetime(2024, 6, 1)).order_discount == Decimal("6")


class TestEligibility:
    """Customer and order conditions."""

    def test_eligible(self, evaluator, order_context, now):
        assert evaluator.check_eligibility(percent(), order_context, now).success is True

    def test_per_customer_limit(self, evaluator, order_context, now):
        discount = percent("once", per_customer_limit=1)
        used = replace(order_context, discount_usage={"once": 1})
        guest = replace(used, customer_id=None)

        assert evaluator.check_eligibility(discount, used, now).error_code == codes.CUSTOMER_USAGE_LIMIT
        assert evaluator.check_eligibility(discount, guest, now).success is True
        assert evaluator.check_eligibility(discount, order_context, now).success is True

    def test_customer_tier_or_id(self, evaluator, order_context, now):
        discount = percent(eligible_customer_tiers={"gold"}, eligible_customer_ids={"vip-1"})
        silver = replace(order_context, customer_group="silver")
        gold = replace(order_context, customer_group="gold")
        vip = replace(order_context, customer_id="vip-1")

        assert evaluator.check_eligibility(discount, silver, now).error_code == codes.CUSTOMER_NOT_ELIGIBLE
        assert evaluator.is_eligible(discount, gold, now) is True
        assert evaluator.is_eligible(discount, vip, now) is True

    def test_first_order_only(self, evaluator, order_context, now):
        discount = percent(first_time_customer_only=True)
        returning = replace(order_context, completed_order_count=2)
        assert evaluator.check_eligibility(discount, returning, now).error_code == codes.FIRST_ORDER_ONLY
        assert evaluator.is_eligible(discount, order_context, now) is True

    def test_minimum_order_amount(self, evaluator, order_context, now):
        result = evaluator.check_eligibility(percent(minimum_order_amount=100), order_context, now)
        assert result.error_code == codes.MINIMUM_NOT_MET
        assert result.message == "Minimum order amount of 100.00 required."
        assert evaluator.is_eligible(percent(minimum_order_amount=60), order_context, now) is True

    def test_minimum_quantity(self, evaluator, order_context, now):
        result = evaluator.check_eligibility(percent(minimum_quantity=5), order_context, now)
        assert result.error_code == codes.MINIMUM_QUANTITY_NOT_MET
        assert evaluator.is_eligible(percent(minimum_quantity=3), order_context, now) is True

    def test_not_applicable_to_cart(self, evaluator, order_context, now):
        discount = percent(scope=DiscountScope.PRODUCT, applicable_product_ids={"other"})
        assert evaluator.check_eligibility(discount, order_context, now).error_code == codes.NOT_APPLICABLE

    def test_every_line_excluded(self, evaluator, order_context, now):
        discount = percent(excluded_category_ids={"cat-a", "cat-b"})
        assert evaluator.check_eligibility(discount, order_context, now).error_code == codes.NOT_APPLICABLE

    def test_fixed_amount_in_other_currency_raises(self, evaluator, order_context, now):
        with pytest.raises(CurrencyMismatchError):
            evaluator.check_eligibility(fixed(currency="EUR"), order_context, now)

    def test_percentage_ignores_discount_currency(self, evaluator, order_context, now):
        assert evaluator.is_eligible(percent(currency="EUR"), order_context, now) is True


class TestAmounts:
    """Discount amounts and allocations."""

    def test_percentage_capped(self, evaluator):
        context = OrderContext(currency="USD", subtotal=100)
        assert evaluator.compute_amount(percent(value=20, max_discount_amount=15), context) == Decimal("15.00")
        assert evaluator.compute_amount(percent(value=20), context) == Decimal("20.00")

    def test_fixed_amount_never_exceeds_base(self, evaluator, order_context):
        assert evaluator.compute_amount(fixed(value=80), order_context) == Decimal("60.00")
        assert evaluator.compute_amount(fixed(value=15, currency="USD"), order_context) == Decimal("15.00")

    def test_allocation_is_proportional(self, evaluator, order_context):
        calculation = evaluator.calculate(percent(value=10), order_context)
        assert calculation.amount == Decimal("6.00")
        assert [(a.product_id, a.amount) for a in calculation.allocations] == [
            ("p1", Decimal("4.00")),
            ("p2", Decimal("2.00")),
        ]

    def test_allocation_remainder_goes_to_last_line(self, evaluator):
        context = OrderContext(
            subtotal=30,
            product_lines=(
                ProductLine("a", line_amount=10),
                ProductLine("b", line_amount=10),
                ProductLine("c", line_amount=10),
            ),
        )
        allocations = evaluator.calculate(fixed(value=10), context).allocations
        assert [a.amount for a in allocations] == [Decimal("3.33"), Decimal("3.33"), Decimal("3.34")]

    def test_category_scope_limits_base(self, evaluator, order_context):
        discount = percent(value=50, scope=DiscountScope.CATEGORY, applicable_category_ids={"cat-a"})
        calculation = evaluator.calculate(discount, order_context)
        assert calculation.amount == Decimal("20.00")
        assert [a.product_id for a in calculation.allocations] == ["p1"]

    def test_excluded_and_sale_lines_leave_the_base(self, evaluator, order_context):
        assert evaluator.compute_amount(percent(excluded_product_ids={"p2"}), order_context) == Decimal("4.00")

        on_sale = replace(
            order_context,
            product_lines=(
                ProductLine("p1", quantity=2, line_amount=40),
                ProductLine("p2", quantity=1, line_amount=20, is_on_sale=True),
            ),
        )
        assert evaluator.compute_amount(percent(exclude_sale_items=True), on_sale) == Decimal("4.00")
        assert evaluator.compute_amount(percent(), on_sale) == Decimal("6.00")

    def test_free_shipping_reports_flag_only(self, evaluator, order_context):
        calculation = evaluator.calculate(Discount("ship", type=DiscountType.FREE_SHIPPING), order_context)
        assert calculation.free_shipping is True
        assert calculation.amount == Decimal("0")

    def test_shipping_scope_uses_shipping_total(self, evaluator, order_context):
        context = replace(order_context, shipping_total=Decimal("8"))
        calculation = evaluator.calculate(percent(value=50, scope=DiscountScope.SHIPPING), context)
        assert calculation.applies_to_shipping is True
        assert calculation.amount == Decimal("4.00")
        assert calculation.allocations == []


class TestBuyXGetY:
    """Bundle rewards."""

    def bxgy(self, **kwargs):
        return Discount("bogo", type=DiscountType.BUY_X_GET_Y, buy_quantity=2, get_quantity=1, **kwargs)

    def test_same_product_bundles(self, evaluator):
        context = OrderContext(subtotal=50, product_lines=(ProductLine("tee", quantity=5, line_amount=50),))
        # 5 units hold one full bundle of 3
        assert evaluator.compute_amount(self.bxgy(), context) == Decimal("10.00")

        six = OrderContext(subtotal=60, product_lines=(ProductLine("tee", quantity=6, line_amount=60),))
        assert evaluator.compute_amount(self.bxgy(), six) == Decimal("20.00")

    def test_partial_bundle_earns_nothing(self, evaluator):
        context = OrderContext(subtotal=20, product_lines=(ProductLine("tee", quantity=2, line_amount=20),))
        assert evaluator.compute_amount(self.bxgy(), context) == Decimal("0")

    def test_reward_products(self, evaluator, order_context):
        discount = self.bxgy(get_product_ids={"p2"})
        calculation = evaluator.calculate(discount, order_context)
        assert calculation.amount == Decimal("20.00")
        assert [(a.product_id, a.amount) for a in calculation.allocations] == [("p2", Decimal("20.00"))]

    def test_reward_percentage(self, evaluator, order_context):
        discount = self.bxgy(get_product_ids={"p2"}, get_discount_percent=50)
        assert evaluator.compute_amount(discount, order_context) == Decimal("10.00")


class TestCombining:
    """Stacking rules across several discounts."""

    def test_non_combinable_picks_highest_priority(self, evaluator, order_context, now):
        small = percent("small", value=10, priority=1)
        large = fixed("large", value=20, priority=0)
        selected = evaluator.select_applicable([large, small], order_context, now)
        assert [c.discount_id for c in selected] == ["small"]

    def test_amount_breaks_priority_ties(self, evaluator, order_context, now):
        selected = evaluator.select_applicable([percent("small"), fixed("large", value=20)], order_context, now)
        assert [c.discount_id for c in selected] == ["large"]

    def test_combinable_discounts_stack(self, evaluator, order_context, now):
        cart = evaluator.apply_discounts(
            [percent("a", can_combine=True), fixed("b", value=20, can_combine=True)], order_context, now
        )
        assert cart.order_discount == Decimal("26.00")
        assert len(cart.applied) == 2

    def test_order_discount_capped_at_subtotal(self, evaluator, order_context, now):
        cart = evaluator.apply_discounts(
            [fixed("a", value=50, can_combine=True), fixed("b", value=50, can_combine=True)], order_context, now
        )
        assert cart.order_discount == Decimal("60")

    def test_shipping_discount_and_free_shipping(self, evaluator, order_context, now):
        context = replace(order_context, shipping_total=Decimal("8"))
        cart = evaluator.apply_discounts(
            [
                Discount("ship", type=DiscountType.FREE_SHIPPING, can_combine=True),
                fixed("ship-off", value=10, scope=DiscountScope.SHIPPING, can_combine=True),
            ],
            context,
            now,
        )
        assert cart.free_shipping is True
        assert cart.shipping_discount == Decimal("8")
        assert cart.order_discount == Decimal("0")
        assert cart.total_discount == Decimal("8")

    def test_ineligible_discounts_are_ignored(self, evaluator, order_context, now):
        cart = evaluator.apply_discounts([percent(is_active=False)], order_context, now)
        assert cart.applied == []
        assert cart.order_discount == Decimal("0")


def test_validate_discount():
    assert DiscountEvaluator.validate_discount(percent()) == []
    broken = Discount("x", type=DiscountType.BUY_X_GET_Y, buy_quantity=0)
    properties = {error.property_name for error in DiscountEvaluator.validate_discount(broken)}
    assert properties == {"name", "buy_quantity", "get_quantity"}
