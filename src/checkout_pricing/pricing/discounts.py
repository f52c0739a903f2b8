"""Discount validity, eligibility and amount calculation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from ..utils.logging import get_logger
from .errors import CurrencyMismatchError
from .models import Discount, DiscountScope, DiscountType, OrderContext, ProductLine, ValidationError, utc_now
from .money import HUNDRED, ZERO, round_money

logger = get_logger(__name__)

# Failure codes reported by ``check_eligibility``
INACTIVE = "INACTIVE"
NOT_STARTED = "NOT_STARTED"
EXPIRED = "EXPIRED"
USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"
CUSTOMER_USAGE_LIMIT = "CUSTOMER_USAGE_LIMIT"
CUSTOMER_NOT_ELIGIBLE = "CUSTOMER_NOT_ELIGIBLE"
FIRST_ORDER_ONLY = "FIRST_ORDER_ONLY"
MINIMUM_NOT_MET = "MINIMUM_NOT_MET"
MINIMUM_QUANTITY_NOT_MET = "MINIMUM_QUANTITY_NOT_MET"
NOT_APPLICABLE = "NOT_APPLICABLE"


@dataclass(frozen=True)
class CouponValidationResult:
    success: bool
    error_code: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls) -> "CouponValidationResult":
        return cls(True)

    @classmethod
    def failure(cls, code: str, message: str) -> "CouponValidationResult":
        return cls(False, code, message)


@dataclass
class LineAllocation:
    product_id: str
    amount: Decimal


@dataclass
class DiscountCalculation:
    discount_id: str
    name: str
    type: DiscountType
    currency: str
    amount: Decimal = ZERO
    free_shipping: bool = False
    applies_to_shipping: bool = False
    allocations: List[LineAllocation] = field(default_factory=list)


@dataclass
class CartDiscountCalculation:
    currency: str
    subtotal: Decimal = ZERO
    order_discount: Decimal = ZERO
    shipping_discount: Decimal = ZERO
    free_shipping: bool = False
    applied: List[DiscountCalculation] = field(default_factory=list)

    @property
    def total_discount(self) -> Decimal:
        return self.order_discount + self.shipping_discount


def is_usage_limit_reached(discount: Discount) -> bool:
    return discount.total_usage_limit is not None and discount.usage_count >= discount.total_usage_limit


def remaining_uses(discount: Discount) -> Optional[int]:
    if discount.total_usage_limit is None:
        return None
    return max(discount.total_usage_limit - discount.usage_count, 0)


def _allocate(amount: Decimal, weights: Sequence[Tuple[str, Decimal]]) -> List[LineAllocation]:
    """Split ``amount`` over lines in proportion to their weights.

    Every share is rounded to cents; the last line absorbs the rounding
    remainder so the allocations always sum to ``amount``.
    """
    total_weight = sum((w for _, w in weights), ZERO)
    if amount <= 0 or total_weight <= 0:
        return []
    allocations = []
    remaining = amount
    for index, (product_id, weight) in enumerate(weights):
        if index == len(weights) - 1:
            share = remaining
        else:
            share = round_money(amount * weight / total_weight)
            remaining -= share
        allocations.append(LineAllocation(product_id, share))
    return allocations


class DiscountEvaluator:
    """Evaluates administrator-defined discounts against an order.

    Validity (active, in date, under the global usage cap) depends only on
    the discount and the clock. Eligibility layers the order and customer
    conditions on top of validity.
    """

    # ------------------------------------------------------------------
    # Validity
    # ------------------------------------------------------------------

    def _validity_failure(self, discount: Discount, now: datetime) -> Optional[CouponValidationResult]:
        if not discount.is_active:
            return CouponValidationResult.failure(INACTIVE, "This coupon is no longer active.")
        if discount.start_date is not None and now < discount.start_date:
            return CouponValidationResult.failure(NOT_STARTED, "This coupon is not yet valid.")
        if discount.end_date is not None and now > discount.end_date:
            return CouponValidationResult.failure(EXPIRED, "This coupon has expired.")
        if is_usage_limit_reached(discount):
            return CouponValidationResult.failure(USAGE_LIMIT_REACHED, "This coupon has reached its usage limit.")
        return None

    def is_valid(self, discount: Discount, now: Optional[datetime] = None) -> bool:
        return self._validity_failure(discount, utc_now(now)) is None

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    @staticmethod
    def _check_currency(discount: Discount, context: OrderContext) -> None:
        if discount.type is DiscountType.FIXED_AMOUNT and discount.currency and discount.currency != context.currency:
            raise CurrencyMismatchError(discount.currency, context.currency)

    @staticmethod
    def _has_product_restrictions(discount: Discount) -> bool:
        return bool(discount.applicable_product_ids or discount.applicable_category_ids)

    @staticmethod
    def _matches_applicable(discount: Discount, line: ProductLine) -> bool:
        return line.product_id in discount.applicable_product_ids or bool(
            line.category_ids & discount.applicable_category_ids
        )

    @staticmethod
    def _is_excluded(discount: Discount, line: ProductLine) -> bool:
        if line.product_id in discount.excluded_product_ids:
            return True
        if line.category_ids & discount.excluded_category_ids:
            return True
        return discount.exclude_sale_items and line.is_on_sale

    def _included_lines(self, discount: Discount, context: OrderContext) -> List[ProductLine]:
        return [line for line in context.product_lines if not self._is_excluded(discount, line)]

    def discountable_lines(self, discount: Discount, context: OrderContext) -> List[ProductLine]:
        """Lines whose amounts form the discount base.

        Excluded lines never count. Product and category scoped discounts
        further restrict the base to the lines they apply to.
        """
        lines = self._included_lines(discount, context)
        if discount.scope in (DiscountScope.PRODUCT, DiscountScope.CATEGORY) and self._has_product_restrictions(
            discount
        ):
            lines = [line for line in lines if self._matches_applicable(discount, line)]
        return lines

    def discountable_base(self, discount: Discount, context: OrderContext) -> Decimal:
        if discount.scope is DiscountScope.SHIPPING:
            return context.shipping_total
        if not context.product_lines:
            return context.subtotal
        return sum((line.line_amount for line in self.discountable_lines(discount, context)), ZERO)

    def check_eligibility(
        self,
        discount: Discount,
        context: OrderContext,
        now: Optional[datetime] = None,
    ) -> CouponValidationResult:
        """Validate a discount for an order, reporting the first failed condition.

        Raises:
            CurrencyMismatchError: a fixed-amount discount is denominated in
                another currency than the order.
        """
        now = utc_now(now)
        failure = self._validity_failure(discount, now)
        if failure is not None:
            return failure

        self._check_currency(discount, context)

        if context.customer_id and discount.per_customer_limit is not None:
            used = context.discount_usage.get(discount.id, 0)
            if used >= discount.per_customer_limit:
                return CouponValidationResult.failure(
                    CUSTOMER_USAGE_LIMIT, "You have already used this coupon the maximum number of times."
                )

        if discount.eligible_customer_ids or discount.eligible_customer_tiers:
            by_id = context.customer_id is not None and context.customer_id in discount.eligible_customer_ids
            by_tier = context.customer_group is not None and context.customer_group in discount.eligible_customer_tiers
            if not (by_id or by_tier):
                return CouponValidationResult.failure(
                    CUSTOMER_NOT_ELIGIBLE, "This coupon is not available for your account."
                )

        if discount.first_time_customer_only and context.completed_order_count > 0:
            return CouponValidationResult.failure(FIRST_ORDER_ONLY, "This coupon is only valid on a first order.")

        if discount.minimum_order_amount is not None and context.subtotal < discount.minimum_order_amount:
            return CouponValidationResult.failure(
                MINIMUM_NOT_MET, f"Minimum order amount of {discount.minimum_order_amount:.2f} required."
            )

        if discount.minimum_quantity is not None and context.total_quantity < discount.minimum_quantity:
            return CouponValidationResult.failure(
                MINIMUM_QUANTITY_NOT_MET, f"At least {discount.minimum_quantity} items are required."
            )

        if not self._applies_to_order(discount, context):
            return CouponValidationResult.failure(NOT_APPLICABLE, "This coupon is not applicable to your cart.")

        return CouponValidationResult.ok()

    def _applies_to_order(self, discount: Discount, context: OrderContext) -> bool:
        if discount.type is DiscountType.FREE_SHIPPING or discount.scope is DiscountScope.SHIPPING:
            return True
        included = self._included_lines(discount, context)
        if self._has_product_restrictions(discount):
            return any(self._matches_applicable(discount, line) for line in included)
        if context.product_lines and not included:
            return False
        return True

    def is_eligible(self, discount: Discount, context: OrderContext, now: Optional[datetime] = None) -> bool:
        return self.check_eligibility(discount, context, now).success

    # ------------------------------------------------------------------
    # Amounts
    # ------------------------------------------------------------------

    def calculate(self, discount: Discount, context: OrderContext) -> DiscountCalculation:
        """Discount amount with its per-line allocation.

        ``FreeShipping`` discounts report ``free_shipping`` and no amount;
        zeroing the shipping total is up to the caller.
        """
        self._check_currency(discount, context)
        result = DiscountCalculation(
            discount_id=discount.id,
            name=discount.name,
            type=discount.type,
            currency=context.currency,
            applies_to_shipping=discount.scope is DiscountScope.SHIPPING,
        )

        if discount.type is DiscountType.FREE_SHIPPING:
            result.free_shipping = True
            return result

        base = self.discountable_base(discount, context)
        lines = self.discountable_lines(discount, context)
        weights = [(line.product_id, line.line_amount) for line in lines]

        if discount.type is DiscountType.PERCENTAGE:
            amount = base * discount.value / HUNDRED
        elif discount.type is DiscountType.FIXED_AMOUNT:
            amount = min(discount.value, base)
        elif discount.type is DiscountType.BUY_X_GET_Y:
            weights = self._buy_x_get_y(discount, context, lines)
            amount = sum((w for _, w in weights), ZERO)
        else:
            raise ValueError(f"Unsupported discount type: {discount.type!r}")

        if discount.max_discount_amount is not None and amount > discount.max_discount_amount:
            amount = discount.max_discount_amount

        result.amount = round_money(max(amount, ZERO))
        if not result.applies_to_shipping:
            result.allocations = _allocate(result.amount, weights)
        return result

    def compute_amount(self, discount: Discount, context: OrderContext) -> Decimal:
        return self.calculate(discount, context).amount

    def _buy_x_get_y(
        self,
        discount: Discount,
        context: OrderContext,
        lines: Sequence[ProductLine],
    ) -> List[Tuple[str, Decimal]]:
        """Reward per line for buy-X-get-Y offers.

        Without ``get_product_ids`` each line is split into bundles of
        ``buy + get`` units of the same product and ``get`` units of every
        full bundle are rewarded. With ``get_product_ids`` every ``buy`` units
        of the other eligible lines earn ``get`` units of the reward
        products, cheapest first. Partial bundles earn nothing. Rewarded
        units are discounted by ``get_discount_percent`` (100 = free).
        """
        buy = max(discount.buy_quantity or 1, 1)
        get = max(discount.get_quantity or 1, 1)
        share = discount.get_discount_percent / HUNDRED
        rewards = []

        if not discount.get_product_ids:
            for line in lines:
                free_units = (line.quantity // (buy + get)) * get
                if free_units:
                    rewards.append((line.product_id, line.unit_price * free_units * share))
            return rewards

        qualifying = sum(line.quantity for line in lines if line.product_id not in discount.get_product_ids)
        free_units = (qualifying // buy) * get
        reward_lines = sorted(
            (line for line in self._included_lines(discount, context) if line.product_id in discount.get_product_ids),
            key=lambda line: line.unit_price,
        )
        for line in reward_lines:
            if free_units <= 0:
                break
            units = min(line.quantity, free_units)
            rewards.append((line.product_id, line.unit_price * units * share))
            free_units -= units
        return rewards

    # ------------------------------------------------------------------
    # Several discounts
    # ------------------------------------------------------------------

    def select_applicable(
        self,
        discounts: Iterable[Discount],
        context: OrderContext,
        now: Optional[datetime] = None,
    ) -> List[DiscountCalculation]:
        """Discounts to apply together.

        All valid, eligible discounts with an effect are returned when every
        one of them can be combined; otherwise only the highest priority one,
        the larger amount breaking ties.
        """
        now = utc_now(now)
        candidates = []
        for discount in discounts:
            if not self.is_eligible(discount, context, now):
                continue
            calculation = self.calculate(discount, context)
            if calculation.amount > 0 or calculation.free_shipping:
                candidates.append((discount, calculation))

        if not candidates:
            return []
        if all(discount.can_combine for discount, _ in candidates):
            candidates.sort(key=lambda pair: pair[0].priority, reverse=True)
            return [calculation for _, calculation in candidates]

        best = max(candidates, key=lambda pair: (pair[0].priority, pair[1].amount))
        logger.debug("Discount %s selected over %d non-combinable candidate(s)", best[0].id, len(candidates) - 1)
        return [best[1]]

    def apply_discounts(
        self,
        discounts: Iterable[Discount],
        context: OrderContext,
        now: Optional[datetime] = None,
    ) -> CartDiscountCalculation:
        """Combined effect of the selected discounts on an order.

        Order discounts never exceed the subtotal and shipping discounts never
        exceed the shipping total.
        """
        cart = CartDiscountCalculation(currency=context.currency, subtotal=context.subtotal)
        for calculation in self.select_applicable(discounts, context, now):
            cart.applied.append(calculation)
            cart.free_shipping = cart.free_shipping or calculation.free_shipping
            if calculation.applies_to_shipping:
                cart.shipping_discount += calculation.amount
            else:
                cart.order_discount += calculation.amount

        cart.order_discount = min(cart.order_discount, context.subtotal)
        cart.shipping_discount = min(cart.shipping_discount, context.shipping_total)
        return cart

    # ------------------------------------------------------------------
    # Configuration checks
    # ------------------------------------------------------------------

    @staticmethod
    def validate_discount(discount: Discount) -> List[ValidationError]:
        errors = []
        if not discount.name.strip():
            errors.append(ValidationError("name", "Discount name is required."))
        if discount.type is DiscountType.PERCENTAGE and not 0 < discount.value <= 100:
            errors.append(ValidationError("value", "Percentage must be between 0 and 100."))
        if discount.type is DiscountType.FIXED_AMOUNT and discount.value <= 0:
            errors.append(ValidationError("value", "Discount amount must be greater than 0."))
        if discount.type is DiscountType.BUY_X_GET_Y:
            if not discount.buy_quantity or discount.buy_quantity < 1:
                errors.append(ValidationError("buy_quantity", "Buy quantity must be at least 1."))
            if not discount.get_quantity or discount.get_quantity < 1:
                errors.append(ValidationError("get_quantity", "Get quantity must be at least 1."))
            if not 0 < discount.get_discount_percent <= 100:
                errors.append(ValidationError("get_discount_percent", "Reward percentage must be between 0 and 100."))
        if discount.max_discount_amount is not None and discount.max_discount_amount < 0:
            errors.append(ValidationError("max_discount_amount", "Maximum discount cannot be negative."))
        if discount.start_date and discount.end_date and discount.start_date > discount.end_date:
            errors.append(ValidationError("end_date", "End date must be after start date."))
        return errors
