"""Reference checkout orchestration over the pricing components."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from ..utils.logging import get_logger
from .discounts import CartDiscountCalculation, CouponValidationResult, DiscountCalculation, DiscountEvaluator
from .geo import GeoMatcher
from .models import OrderContext, TaxableItem, utc_now
from .money import ZERO, Money
from .payments import PaymentFeeCalculator
from .shipping import ShippingCostResult, ShippingRateCalculator
from .snapshot import PricingSnapshot
from .tax import TaxCalculator, TaxSummary

logger = get_logger(__name__)

INVALID_CODE = "INVALID_CODE"


@dataclass
class CheckoutQuote:
    """Order totals; ``total = subtotal - discount + shipping + tax + payment_fee``."""

    subtotal: Money
    discount: Money
    shipping: Money
    tax: Money
    payment_fee: Money
    total: Money
    applied_discounts: List[DiscountCalculation] = field(default_factory=list)
    shipping_result: Optional[ShippingCostResult] = None
    tax_summary: Optional[TaxSummary] = None
    coupon: Optional[CouponValidationResult] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def currency(self) -> str:
        return self.total.currency


class CheckoutQuoteService:
    """Combines shipping, discounts, tax and payment fees for one order.

    Discounts are computed on the subtotal, free-shipping and shipping-scoped
    discounts reduce the shipping cost, tax is charged on the discounted
    lines plus shipping, and the payment fee is charged on everything else.
    """

    def __init__(self, snapshot: PricingSnapshot, geo_matcher: Optional[GeoMatcher] = None) -> None:
        self.snapshot = snapshot
        self.geo = geo_matcher or GeoMatcher()
        self.taxes = TaxCalculator(self.geo)
        self.shipping = ShippingRateCalculator(self.geo)
        self.discounts = DiscountEvaluator()
        self.payments = PaymentFeeCalculator()

    def quote(
        self,
        context: OrderContext,
        shipping_method_id: Optional[str] = None,
        payment_method_code: Optional[str] = None,
        coupon_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CheckoutQuote:
        now = utc_now(now)
        currency = context.currency
        snapshot = self.snapshot
        warnings: List[str] = []

        subtotal = Money(context.subtotal, currency)

        shipping = Money.zero(currency)
        shipping_result = None
        if shipping_method_id:
            shipping_result = self.shipping.quote_method(
                shipping_method_id,
                context.address,
                snapshot.shipping_zones,
                snapshot.shipping_rates,
                context.subtotal,
                context.weight,
                context.total_quantity,
            )
            if shipping_result.success:
                shipping = Money(shipping_result.cost, currency)
            else:
                warnings.append(shipping_result.error_message)

        priced = replace(context, shipping_total=shipping.amount)

        candidates = list(snapshot.automatic_discounts())
        coupon_result = None
        if coupon_code:
            coupon = snapshot.discount_by_code(coupon_code)
            if coupon is None:
                coupon_result = CouponValidationResult.failure(INVALID_CODE, "Coupon code not found.")
            else:
                coupon_result = self.discounts.check_eligibility(coupon, priced, now)
                if coupon_result.success:
                    candidates.append(coupon)
            if not coupon_result.success:
                warnings.append(coupon_result.message)

        cart = self.discounts.apply_discounts(candidates, priced, now)
        if coupon_result is not None and coupon_result.success:
            if coupon.id not in {applied.discount_id for applied in cart.applied}:
                warnings.append(f"Coupon {coupon_code} was not applied because a better offer is already in use.")

        discount = Money(cart.order_discount, currency)
        shipping_discount = shipping if cart.free_shipping else Money(cart.shipping_discount, currency)
        shipping = (shipping - shipping_discount).non_negative()

        tax_summary = self.taxes.calculate_order_tax(
            context.address,
            self._taxable_items(context, cart),
            snapshot.tax_zones,
            snapshot.tax_categories,
            snapshot.tax_rates,
            shipping_amount=shipping.amount,
            now=now,
        )
        tax = Money(tax_summary.total_tax, currency)

        before_fee = (subtotal - discount + shipping + tax).non_negative()
        payment_fee = Money.zero(currency)
        if payment_method_code:
            method = snapshot.payment_method_by_code(payment_method_code)
            if method is None:
                warnings.append(f"Payment method {payment_method_code} not found.")
            elif not self.payments.is_available_for(method, context, before_fee.amount):
                warnings.append(f"Payment method {payment_method_code} is not available for this order.")
            else:
                payment_fee = Money(self.payments.calculate_fee(method, before_fee.amount), currency)

        total = before_fee + payment_fee
        logger.debug("Quote for %s: %s", context.customer_id or "guest", total)

        return CheckoutQuote(
            subtotal=subtotal.rounded(),
            discount=discount.rounded(),
            shipping=shipping.rounded(),
            tax=tax.rounded(),
            payment_fee=payment_fee.rounded(),
            total=total.rounded(),
            applied_discounts=cart.applied,
            shipping_result=shipping_result,
            tax_summary=tax_summary,
            coupon=coupon_result,
            warnings=warnings,
        )

    @staticmethod
    def _taxable_items(context: OrderContext, cart: CartDiscountCalculation) -> List[TaxableItem]:
        """Order lines net of the order discount they received.

        Line allocations of the applied discounts are charged to the lines
        of their product. Discounts without allocations are spread over all
        lines in proportion to their amounts.
        """
        order_discount = cart.order_discount
        if not context.product_lines:
            return [TaxableItem("order", max(context.subtotal - order_discount, ZERO))]

        by_product: Dict[str, Decimal] = {}
        unallocated = ZERO
        for calculation in cart.applied:
            if calculation.applies_to_shipping:
                continue
            if calculation.allocations:
                for allocation in calculation.allocations:
                    by_product[allocation.product_id] = by_product.get(allocation.product_id, ZERO) + allocation.amount
            else:
                unallocated += calculation.amount

        # apply_discounts caps the order discount at the subtotal
        claimed = sum(by_product.values(), ZERO) + unallocated
        scale = order_discount / claimed if claimed > order_discount else Decimal(1)

        gross = sum((line.line_amount for line in context.product_lines), ZERO)
        product_gross: Dict[str, Decimal] = {}
        for line in context.product_lines:
            product_gross[line.product_id] = product_gross.get(line.product_id, ZERO) + line.line_amount

        items = []
        for index, line in enumerate(context.product_lines):
            share = ZERO
            if gross > 0:
                share += unallocated * line.line_amount / gross
            if product_gross[line.product_id] > 0:
                share += by_product.get(line.product_id, ZERO) * line.line_amount / product_gross[line.product_id]
            net = max(line.line_amount - share * scale, ZERO)
            quantity = max(line.quantity, 1)
            items.append(
                TaxableItem(
                    item_id=f"{line.product_id}#{index}",
                    amount=net / quantity,
                    quantity=quantity,
                    tax_class=line.tax_class,
                    is_tax_exempt=line.is_tax_exempt,
                )
            )
        return items
