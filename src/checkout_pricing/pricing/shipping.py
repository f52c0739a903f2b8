"""Shipping cost calculation and shipping option listing."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ..utils.logging import get_logger
from .geo import GeoMatcher
from .models import (
    Address,
    ShippingCalculationType,
    ShippingMethod,
    ShippingRate,
    ShippingZone,
    ValidationError,
)
from .money import HUNDRED, ZERO, Number, clamp, round_money, to_decimal

logger = get_logger(__name__)

CalcType = ShippingCalculationType


@dataclass(frozen=True)
class OrderMetrics:
    total: Decimal
    weight: Decimal
    item_count: int


@dataclass
class ShippingOption:
    method_id: str
    method_code: str
    name: str
    cost: Decimal
    description: Optional[str] = None
    estimated_days_min: Optional[int] = None
    estimated_days_max: Optional[int] = None
    delivery_estimate_text: Optional[str] = None
    carrier_name: Optional[str] = None
    sort_order: int = 0


@dataclass
class ShippingCostResult:
    success: bool
    cost: Decimal = ZERO
    is_free: bool = False
    free_shipping_reason: Optional[str] = None
    delivery_estimate_text: Optional[str] = None
    error_message: Optional[str] = None


# --------------------------------------------------------------------------
# Override resolution
#
# A rate may override any numeric parameter of its method. Each field is
# resolved rate value -> method value -> zero (or None for thresholds):
#
#   base rate        rate.base_rate -> method base for the type
#                    (flat_rate, or weight_base_rate for WeightBased) -> 0
#   per weight unit  rate.per_weight_rate -> method.weight_per_unit_rate -> 0
#   percentage       rate.percentage_rate -> method.price_percentage -> 0
#   per item         rate.per_item_rate -> method.per_item_rate -> 0
#   handling fee     rate.handling_fee -> method.handling_fee -> 0
#   free threshold   rate.free_shipping_threshold
#                    -> method.free_shipping_threshold -> no threshold
# --------------------------------------------------------------------------


def resolve(rate_value: Optional[Decimal], method_value: Optional[Decimal], default: Optional[Decimal] = ZERO):
    """Three-level override: rate, then method, then ``default``."""
    if rate_value is not None:
        return rate_value
    if method_value is not None:
        return method_value
    return default


def base_rate(rate: ShippingRate, method: ShippingMethod) -> Decimal:
    if method.calculation_type is CalcType.WEIGHT_BASED:
        method_base = method.weight_base_rate
    else:
        method_base = method.flat_rate
    return resolve(rate.base_rate, method_base)


def free_shipping_threshold(rate: ShippingRate, method: Optional[ShippingMethod]) -> Optional[Decimal]:
    method_value = method.free_shipping_threshold if method is not None else None
    return resolve(rate.free_shipping_threshold, method_value, default=None)


def _flat_rate(rate: ShippingRate, method: ShippingMethod, order: OrderMetrics) -> Decimal:
    return base_rate(rate, method)


def _free_shipping(rate: ShippingRate, method: ShippingMethod, order: OrderMetrics) -> Decimal:
    return ZERO


def _weight_based(rate: ShippingRate, method: ShippingMethod, order: OrderMetrics) -> Decimal:
    per_weight = resolve(rate.per_weight_rate, method.weight_per_unit_rate)
    return base_rate(rate, method) + order.weight * per_weight


def _price_based(rate: ShippingRate, method: ShippingMethod, order: OrderMetrics) -> Decimal:
    percentage = resolve(rate.percentage_rate, method.price_percentage)
    cost = order.total * percentage / HUNDRED
    return clamp(cost, method.minimum_cost, method.maximum_cost)


def _per_item(rate: ShippingRate, method: ShippingMethod, order: OrderMetrics) -> Decimal:
    per_item = resolve(rate.per_item_rate, method.per_item_rate)
    return base_rate(rate, method) + order.item_count * per_item


def _carrier_calculated(rate: ShippingRate, method: ShippingMethod, order: OrderMetrics) -> Decimal:
    # Live carrier quotes are fetched by the caller; the stored base is the fallback
    return base_rate(rate, method)


COST_STRATEGIES: Dict[CalcType, Callable[[ShippingRate, ShippingMethod, OrderMetrics], Decimal]] = {
    CalcType.FLAT_RATE: _flat_rate,
    CalcType.FREE_SHIPPING: _free_shipping,
    CalcType.WEIGHT_BASED: _weight_based,
    CalcType.PRICE_BASED: _price_based,
    CalcType.PER_ITEM: _per_item,
    CalcType.CARRIER_CALCULATED: _carrier_calculated,
}

_missing = set(CalcType) - set(COST_STRATEGIES)
if _missing:
    raise RuntimeError(f"No shipping cost strategy for {sorted(t.value for t in _missing)}")


def _within(value: Decimal, minimum: Optional[Decimal], maximum: Optional[Decimal]) -> bool:
    if minimum is not None and value < minimum:
        return False
    if maximum is not None and value > maximum:
        return False
    return True


class ShippingRateCalculator:
    """Costs a shipping rate for an order and lists the options for an address."""

    def __init__(self, geo_matcher: Optional[GeoMatcher] = None) -> None:
        self.geo = geo_matcher or GeoMatcher()

    def calculate_cost(
        self,
        rate: ShippingRate,
        order_total: Number,
        order_weight: Number,
        item_count: int,
    ) -> Decimal:
        """Shipping cost for ``rate``; never negative, rounded to 2 decimals.

        The free-shipping threshold is checked before the method's
        calculation type is consulted.
        """
        method = rate.method
        if method is None:
            logger.debug("Shipping rate %s has no method attached; using its base rate", rate.id)
            return round_money(max(rate.base_rate or ZERO, ZERO))

        order = OrderMetrics(to_decimal(order_total), to_decimal(order_weight), item_count)

        threshold = free_shipping_threshold(rate, method)
        if threshold is not None and order.total >= threshold:
            return ZERO

        cost = COST_STRATEGIES[method.calculation_type](rate, method, order)
        cost += resolve(rate.handling_fee, method.handling_fee)

        if cost < 0:
            logger.debug("Shipping cost %s for rate %s clamped to zero", cost, rate.id)
            cost = ZERO
        return round_money(cost)

    @staticmethod
    def meets_requirements(rate: ShippingRate, order_total: Number, order_weight: Number) -> bool:
        """Rate-level weight and amount bounds; absent bounds impose nothing."""
        return _within(to_decimal(order_weight), rate.min_weight, rate.max_weight) and _within(
            to_decimal(order_total), rate.min_order_amount, rate.max_order_amount
        )

    @staticmethod
    def method_allows(method: ShippingMethod, order_total: Number, order_weight: Number) -> bool:
        """Method-level weight and amount bounds."""
        return _within(to_decimal(order_weight), method.min_weight, method.max_weight) and _within(
            to_decimal(order_total), method.min_order_amount, method.max_order_amount
        )

    @staticmethod
    def delivery_estimate_text(rate: ShippingRate) -> Optional[str]:
        method = rate.method
        low = rate.estimated_days_min
        high = rate.estimated_days_max
        if low is None and method is not None:
            low = method.estimated_days_min
        if high is None and method is not None:
            high = method.estimated_days_max

        if low is not None and high is not None:
            if low == high:
                return f"{low} business day{'' if low == 1 else 's'}"
            return f"{low}-{high} business days"
        if low is not None:
            return f"{low}+ business days"
        if high is not None:
            return f"Up to {high} business days"
        return method.delivery_estimate_text if method is not None else None

    def shipping_options(
        self,
        address: Optional[Address],
        zones: Iterable[ShippingZone],
        rates: Iterable[ShippingRate],
        order_total: Number,
        order_weight: Number,
        item_count: int,
    ) -> List[ShippingOption]:
        """Every shipping method usable for the order, cheapest first within a sort order."""
        zone = self.geo.resolve_shipping_zone(zones, address)
        if zone is None:
            logger.debug("No shipping zone for address %s", address)
            return []

        options = []
        for rate in rates:
            method = rate.method
            if rate.zone_id != zone.id or not rate.is_active or method is None or not method.is_active:
                continue
            if not self.meets_requirements(rate, order_total, order_weight):
                continue
            if not self.method_allows(method, order_total, order_weight):
                continue
            options.append(
                ShippingOption(
                    method_id=method.id,
                    method_code=method.code,
                    name=method.name,
                    description=method.description,
                    cost=self.calculate_cost(rate, order_total, order_weight, item_count),
                    estimated_days_min=rate.estimated_days_min if rate.estimated_days_min is not None else method.estimated_days_min,
                    estimated_days_max=rate.estimated_days_max if rate.estimated_days_max is not None else method.estimated_days_max,
                    delivery_estimate_text=self.delivery_estimate_text(rate),
                    carrier_name=method.carrier_provider_id,
                    sort_order=method.sort_order,
                )
            )
        return sorted(options, key=lambda o: (o.sort_order, o.cost))

    def quote_method(
        self,
        method_id: str,
        address: Optional[Address],
        zones: Sequence[ShippingZone],
        rates: Sequence[ShippingRate],
        order_total: Number,
        order_weight: Number,
        item_count: int,
    ) -> ShippingCostResult:
        """Cost of one chosen method, with a reason when it cannot be used."""
        rate_for_method = [r for r in rates if r.method_id == method_id and r.method is not None]
        if not rate_for_method:
            return ShippingCostResult(False, error_message="Shipping method not found.")
        method = rate_for_method[0].method
        if not method.is_active:
            return ShippingCostResult(False, error_message="Shipping method is not available.")

        zone = self.geo.resolve_shipping_zone(zones, address)
        if zone is None:
            return ShippingCostResult(False, error_message="Shipping is not available to this address.")

        rate = next((r for r in rate_for_method if r.zone_id == zone.id), None)
        if rate is None or not rate.is_active:
            return ShippingCostResult(False, error_message="Shipping rate not available for this zone.")

        if not self.meets_requirements(rate, order_total, order_weight):
            return ShippingCostResult(False, error_message="Order does not meet shipping requirements.")

        cost = self.calculate_cost(rate, order_total, order_weight, item_count)
        reason = None
        if cost == 0:
            total = to_decimal(order_total)
            if method.calculation_type is CalcType.FREE_SHIPPING:
                reason = "Free shipping method"
            elif rate.free_shipping_threshold is not None and total >= rate.free_shipping_threshold:
                reason = f"Order qualifies for free shipping (over {rate.free_shipping_threshold:.2f})"
            elif method.free_shipping_threshold is not None and total >= method.free_shipping_threshold:
                reason = f"Order qualifies for free shipping (over {method.free_shipping_threshold:.2f})"

        return ShippingCostResult(
            True,
            cost=cost,
            is_free=cost == 0,
            free_shipping_reason=reason,
            delivery_estimate_text=self.delivery_estimate_text(rate),
        )

    @staticmethod
    def validate_method(method: ShippingMethod) -> List[ValidationError]:
        """Configuration problems an administrator should fix."""
        errors = []
        if not method.name.strip():
            errors.append(ValidationError("name", "Method name is required."))
        if not method.code.strip():
            errors.append(ValidationError("code", "Method code is required."))

        kind = method.calculation_type
        if kind is CalcType.FLAT_RATE and (method.flat_rate is None or method.flat_rate < 0):
            errors.append(ValidationError("flat_rate", "Flat rate must be specified and non-negative."))
        elif kind is CalcType.WEIGHT_BASED and (
            method.weight_per_unit_rate is None or method.weight_per_unit_rate < 0
        ):
            errors.append(ValidationError("weight_per_unit_rate", "Weight rate must be specified and non-negative."))
        elif kind is CalcType.PRICE_BASED and (
            method.price_percentage is None or not 0 <= method.price_percentage <= 100
        ):
            errors.append(ValidationError("price_percentage", "Percentage must be between 0 and 100."))
        elif kind is CalcType.PER_ITEM and (method.per_item_rate is None or method.per_item_rate < 0):
            errors.append(ValidationError("per_item_rate", "Per item rate must be specified and non-negative."))

        if (
            method.minimum_cost is not None
            and method.maximum_cost is not None
            and method.minimum_cost > method.maximum_cost
        ):
            errors.append(ValidationError("maximum_cost", "Maximum cost must not be below minimum cost."))
        return errors
