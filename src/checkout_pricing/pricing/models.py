"""Read-only records consumed by the pricing engine.

All records are frozen dataclasses. Collections are normalised to tuples or
frozensets and numeric fields to ``Decimal`` on construction, so a record
built from JSON, from MongoDB or by hand behaves the same way.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Tuple

from .money import ZERO, optional_decimal, to_decimal


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Interpret naive datetimes as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now(now: Optional[datetime] = None) -> datetime:
    """``now`` as an aware UTC datetime, reading the clock when it is omitted."""
    if now is None:
        return datetime.now(timezone.utc)
    return as_utc(now)


def _set(obj: Any, name: str, value: Any) -> None:
    object.__setattr__(obj, name, value)


def _normalise(
    obj: Any,
    decimals: Iterable[str] = (),
    optional_decimals: Iterable[str] = (),
    tuples: Iterable[str] = (),
    sets: Iterable[str] = (),
    datetimes: Iterable[str] = (),
) -> None:
    for name in decimals:
        _set(obj, name, to_decimal(getattr(obj, name)))
    for name in optional_decimals:
        _set(obj, name, optional_decimal(getattr(obj, name)))
    for name in tuples:
        _set(obj, name, tuple(getattr(obj, name) or ()))
    for name in sets:
        _set(obj, name, frozenset(str(v) for v in (getattr(obj, name) or ())))
    for name in datetimes:
        _set(obj, name, as_utc(getattr(obj, name)))


# --------------------------------------------------------------------------
# Geography
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class Address:
    country_code: Optional[str] = None
    state_code: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None

    @property
    def state_key(self) -> str:
        """Key used by zone state lists, e.g. ``US-CA``."""
        return f"{self.country_code or ''}-{self.state_code or ''}"


@dataclass(frozen=True)
class GeoZone:
    """Inclusion and exclusion rules shared by shipping and tax zones."""

    id: str
    name: str = ""
    code: str = ""
    is_active: bool = True
    is_default: bool = False
    sort_order: int = 0
    countries: Tuple[str, ...] = ()
    states: Tuple[str, ...] = ()
    postal_code_patterns: Tuple[str, ...] = ()
    cities: Tuple[str, ...] = ()
    excluded_countries: Tuple[str, ...] = ()
    excluded_states: Tuple[str, ...] = ()
    excluded_postal_codes: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _normalise(
            self,
            tuples=(
                "countries",
                "states",
                "postal_code_patterns",
                "cities",
                "excluded_countries",
                "excluded_states",
                "excluded_postal_codes",
            ),
        )

    @property
    def has_restrictions(self) -> bool:
        return bool(self.countries or self.states or self.postal_code_patterns or self.cities)


@dataclass(frozen=True)
class ShippingZone(GeoZone):
    pass


@dataclass(frozen=True)
class TaxZone(GeoZone):
    priority: int = 0


# --------------------------------------------------------------------------
# Shipping
# --------------------------------------------------------------------------


class ShippingCalculationType(Enum):
    FLAT_RATE = "FlatRate"
    FREE_SHIPPING = "FreeShipping"
    WEIGHT_BASED = "WeightBased"
    PRICE_BASED = "PriceBased"
    PER_ITEM = "PerItem"
    CARRIER_CALCULATED = "CarrierCalculated"


@dataclass(frozen=True)
class ShippingMethod:
    id: str
    name: str = ""
    code: str = ""
    description: Optional[str] = None
    calculation_type: ShippingCalculationType = ShippingCalculationType.FLAT_RATE
    is_active: bool = True
    sort_order: int = 0
    flat_rate: Optional[Decimal] = None
    weight_base_rate: Optional[Decimal] = None
    weight_per_unit_rate: Optional[Decimal] = None
    weight_unit: str = "kg"
    price_percentage: Optional[Decimal] = None
    minimum_cost: Optional[Decimal] = None
    maximum_cost: Optional[Decimal] = None
    per_item_rate: Optional[Decimal] = None
    handling_fee: Optional[Decimal] = None
    free_shipping_threshold: Optional[Decimal] = None
    min_weight: Optional[Decimal] = None
    max_weight: Optional[Decimal] = None
    min_order_amount: Optional[Decimal] = None
    max_order_amount: Optional[Decimal] = None
    estimated_days_min: Optional[int] = None
    estimated_days_max: Optional[int] = None
    delivery_estimate_text: Optional[str] = None
    carrier_provider_id: Optional[str] = None

    def __post_init__(self) -> None:
        _normalise(
            self,
            optional_decimals=(
                "flat_rate",
                "weight_base_rate",
                "weight_per_unit_rate",
                "price_percentage",
                "minimum_cost",
                "maximum_cost",
                "per_item_rate",
                "handling_fee",
                "free_shipping_threshold",
                "min_weight",
                "max_weight",
                "min_order_amount",
                "max_order_amount",
            ),
        )


@dataclass(frozen=True)
class ShippingRate:
    """Binds a zone to a method; ``None`` fields fall back to the method."""

    id: str
    zone_id: str = ""
    method_id: str = ""
    method: Optional[ShippingMethod] = None
    is_active: bool = True
    sort_order: int = 0
    base_rate: Optional[Decimal] = None
    per_weight_rate: Optional[Decimal] = None
    per_item_rate: Optional[Decimal] = None
    percentage_rate: Optional[Decimal] = None
    handling_fee: Optional[Decimal] = None
    min_weight: Optional[Decimal] = None
    max_weight: Optional[Decimal] = None
    min_order_amount: Optional[Decimal] = None
    max_order_amount: Optional[Decimal] = None
    free_shipping_threshold: Optional[Decimal] = None
    estimated_days_min: Optional[int] = None
    estimated_days_max: Optional[int] = None

    def __post_init__(self) -> None:
        _normalise(
            self,
            optional_decimals=(
                "base_rate",
                "per_weight_rate",
                "per_item_rate",
                "percentage_rate",
                "handling_fee",
                "min_weight",
                "max_weight",
                "min_order_amount",
                "max_order_amount",
                "free_shipping_threshold",
            ),
        )
        if self.method is not None and not self.method_id:
            _set(self, "method_id", self.method.id)


# --------------------------------------------------------------------------
# Tax
# --------------------------------------------------------------------------


class TaxRateType(Enum):
    PERCENTAGE = "Percentage"
    FLAT_RATE = "FlatRate"
    PER_UNIT = "PerUnit"


@dataclass(frozen=True)
class TaxCategory:
    id: str
    name: str = ""
    code: str = ""
    is_active: bool = True
    is_default: bool = False
    is_tax_exempt: bool = False


@dataclass(frozen=True)
class TaxRate:
    id: str
    name: str = ""
    zone_id: Optional[str] = None
    category_id: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0
    priority: int = 0
    rate_type: TaxRateType = TaxRateType.PERCENTAGE
    rate: Decimal = ZERO
    flat_amount: Optional[Decimal] = None
    is_compound: bool = False
    tax_shipping: bool = False
    minimum_amount: Optional[Decimal] = None
    maximum_amount: Optional[Decimal] = None
    maximum_tax: Optional[Decimal] = None
    jurisdiction_type: Optional[str] = None
    jurisdiction_name: Optional[str] = None
    jurisdiction_code: Optional[str] = None
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None

    def __post_init__(self) -> None:
        _normalise(
            self,
            decimals=("rate",),
            optional_decimals=("flat_amount", "minimum_amount", "maximum_amount", "maximum_tax"),
            datetimes=("effective_from", "effective_to"),
        )


@dataclass(frozen=True)
class TaxableItem:
    item_id: str
    amount: Decimal = ZERO
    quantity: int = 1
    tax_class: Optional[str] = None
    is_tax_exempt: bool = False

    def __post_init__(self) -> None:
        _normalise(self, decimals=("amount",))

    @property
    def line_amount(self) -> Decimal:
        return self.amount * self.quantity


# --------------------------------------------------------------------------
# Discounts
# --------------------------------------------------------------------------


class DiscountType(Enum):
    PERCENTAGE = "Percentage"
    FIXED_AMOUNT = "FixedAmount"
    FREE_SHIPPING = "FreeShipping"
    BUY_X_GET_Y = "BuyXGetY"


class DiscountScope(Enum):
    ORDER = "Order"
    PRODUCT = "Product"
    CATEGORY = "Category"
    SHIPPING = "Shipping"


@dataclass(frozen=True)
class Discount:
    id: str
    name: str = ""
    code: Optional[str] = None
    type: DiscountType = DiscountType.PERCENTAGE
    scope: DiscountScope = DiscountScope.ORDER
    value: Decimal = ZERO
    currency: Optional[str] = None
    max_discount_amount: Optional[Decimal] = None
    # Conditions
    minimum_order_amount: Optional[Decimal] = None
    minimum_quantity: Optional[int] = None
    applicable_product_ids: FrozenSet[str] = frozenset()
    applicable_category_ids: FrozenSet[str] = frozenset()
    excluded_product_ids: FrozenSet[str] = frozenset()
    excluded_category_ids: FrozenSet[str] = frozenset()
    eligible_customer_ids: FrozenSet[str] = frozenset()
    eligible_customer_tiers: FrozenSet[str] = frozenset()
    first_time_customer_only: bool = False
    exclude_sale_items: bool = False
    # Buy X get Y
    buy_quantity: Optional[int] = None
    get_quantity: Optional[int] = None
    get_product_ids: FrozenSet[str] = frozenset()
    get_discount_percent: Decimal = Decimal("100")
    # Usage
    total_usage_limit: Optional[int] = None
    per_customer_limit: Optional[int] = None
    usage_count: int = 0
    # Validity
    is_active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    # Stacking
    can_combine: bool = False
    priority: int = 0

    def __post_init__(self) -> None:
        _normalise(
            self,
            decimals=("value", "get_discount_percent"),
            optional_decimals=("max_discount_amount", "minimum_order_amount"),
            sets=(
                "applicable_product_ids",
                "applicable_category_ids",
                "excluded_product_ids",
                "excluded_category_ids",
                "eligible_customer_ids",
                "eligible_customer_tiers",
                "get_product_ids",
            ),
            datetimes=("start_date", "end_date"),
        )
        if self.currency:
            _set(self, "currency", self.currency.upper())

    @property
    def is_coupon(self) -> bool:
        return bool(self.code and self.code.strip())


# --------------------------------------------------------------------------
# Payment methods
# --------------------------------------------------------------------------


class PaymentFeeType(Enum):
    NONE = "None"
    FLAT_FEE = "FlatFee"
    PERCENTAGE = "Percentage"
    FLAT_PLUS_PERCENTAGE = "FlatPlusPercentage"


@dataclass(frozen=True)
class PaymentMethodConfig:
    id: str
    name: str = ""
    code: str = ""
    is_active: bool = True
    is_default: bool = False
    sort_order: int = 0
    fee_type: PaymentFeeType = PaymentFeeType.NONE
    flat_fee: Optional[Decimal] = None
    percentage_fee: Optional[Decimal] = None
    max_fee: Optional[Decimal] = None
    min_order_amount: Optional[Decimal] = None
    max_order_amount: Optional[Decimal] = None
    allowed_countries: Tuple[str, ...] = ()
    excluded_countries: Tuple[str, ...] = ()
    allowed_currencies: Tuple[str, ...] = ()
    allowed_customer_groups: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _normalise(
            self,
            optional_decimals=("flat_fee", "percentage_fee", "max_fee", "min_order_amount", "max_order_amount"),
            tuples=("allowed_countries", "excluded_countries", "allowed_currencies", "allowed_customer_groups"),
        )


# --------------------------------------------------------------------------
# Order context
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class ProductLine:
    product_id: str
    quantity: int = 1
    line_amount: Decimal = ZERO
    category_ids: FrozenSet[str] = frozenset()
    is_on_sale: bool = False
    tax_class: Optional[str] = None
    is_tax_exempt: bool = False

    def __post_init__(self) -> None:
        _normalise(self, decimals=("line_amount",), sets=("category_ids",))
        _set(self, "product_id", str(self.product_id))

    @property
    def unit_price(self) -> Decimal:
        if self.quantity <= 0:
            return ZERO
        return self.line_amount / self.quantity


@dataclass(frozen=True)
class OrderContext:
    """Snapshot of the order being priced.

    ``discount_usage`` maps discount ids to how many times this customer has
    already redeemed them. ``completed_order_count`` is the customer's number
    of prior completed orders.
    """

    currency: str = "USD"
    subtotal: Decimal = ZERO
    weight: Decimal = ZERO
    item_count: int = 0
    address: Optional[Address] = None
    customer_id: Optional[str] = None
    customer_group: Optional[str] = None
    product_lines: Tuple[ProductLine, ...] = ()
    shipping_total: Decimal = ZERO
    completed_order_count: int = 0
    discount_usage: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _normalise(self, decimals=("subtotal", "weight", "shipping_total"), tuples=("product_lines",))
        _set(self, "currency", self.currency.upper())
        _set(self, "discount_usage", dict(self.discount_usage or {}))

    @property
    def country(self) -> str:
        if self.address is None:
            return ""
        return self.address.country_code or ""

    @property
    def total_quantity(self) -> int:
        if self.product_lines:
            return sum(line.quantity for line in self.product_lines)
        return self.item_count


@dataclass(frozen=True)
class ValidationError:
    """A configuration problem found on an administrator-authored record."""

    property_name: str
    message: str
