"""Immutable configuration snapshot and parsing of configuration documents.

Documents use camelCase keys, as stored in MongoDB or exported as JSON.
Identifiers may be ``_id`` or ``id`` and may be ObjectIds; they are turned
into strings. Enum values may be given by name (``"WeightBased"``) or by
their ordinal.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from decimal import InvalidOperation
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Type, TypeVar

from ..utils.logging import get_logger
from .errors import SnapshotError
from .models import (
    Address,
    Discount,
    DiscountScope,
    DiscountType,
    OrderContext,
    PaymentFeeType,
    PaymentMethodConfig,
    ProductLine,
    ShippingCalculationType,
    ShippingMethod,
    ShippingRate,
    ShippingZone,
    TaxCategory,
    TaxRate,
    TaxRateType,
    TaxZone,
)

logger = get_logger(__name__)

RecordT = TypeVar("RecordT")

ENUM_FIELDS: Dict[str, Type[Enum]] = {
    "calculation_type": ShippingCalculationType,
    "rate_type": TaxRateType,
    "type": DiscountType,
    "scope": DiscountScope,
    "fee_type": PaymentFeeType,
}
DATE_FIELDS = {"effective_from", "effective_to", "start_date", "end_date"}
ID_FIELDS = {"zone_id", "method_id", "category_id"}
SKIPPED_FIELDS = {"id", "method"}

COLLECTIONS = {
    "shipping_zones": "shippingZones",
    "shipping_methods": "shippingMethods",
    "shipping_rates": "shippingRates",
    "tax_zones": "taxZones",
    "tax_categories": "taxCategories",
    "tax_rates": "taxRates",
    "discounts": "discounts",
    "payment_methods": "paymentMethods",
}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def normalize_id(obj_id: Any) -> Optional[str]:
    """Turn ObjectIds, ``{"$oid": ...}`` dicts and numbers into strings."""
    if obj_id is None:
        return None
    if isinstance(obj_id, Mapping) and "$oid" in obj_id:
        return str(obj_id["$oid"])
    return str(obj_id)


def parse_enum(enum_cls: Type[Enum], value: Any) -> Enum:
    if isinstance(value, enum_cls):
        return value
    members = list(enum_cls)
    if isinstance(value, int) and not isinstance(value, bool):
        if 0 <= value < len(members):
            return members[value]
    elif isinstance(value, str):
        wanted = value.replace("_", "").casefold()
        for member in members:
            if wanted in (member.value.casefold(), member.name.replace("_", "").casefold()):
                return member
    raise SnapshotError(f"Unknown {enum_cls.__name__} value: {value!r}")


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, Mapping) and "$date" in value:
        value = value["$date"]
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError as exc:
            raise SnapshotError(f"Invalid date: {value!r}") from exc
    raise SnapshotError(f"Invalid date: {value!r}")


def parse_record(cls: Type[RecordT], doc: Mapping[str, Any], **overrides: Any) -> RecordT:
    """Build one model record from a camelCase document."""
    if not isinstance(doc, Mapping):
        raise SnapshotError(f"{cls.__name__} document must be an object, got {type(doc).__name__}")

    record_id = normalize_id(doc.get("_id", doc.get("id")))
    if record_id is None:
        raise SnapshotError(f"{cls.__name__} document has no id")

    kwargs: Dict[str, Any] = {"id": record_id}
    for f in fields(cls):
        if f.name in SKIPPED_FIELDS:
            continue
        key = _camel(f.name)
        if key not in doc or doc[key] is None:
            continue
        value = doc[key]
        if f.name in ENUM_FIELDS:
            value = parse_enum(ENUM_FIELDS[f.name], value)
        elif f.name in DATE_FIELDS:
            value = parse_datetime(value)
        elif f.name in ID_FIELDS:
            value = normalize_id(value)
        kwargs[f.name] = value
    kwargs.update(overrides)

    try:
        return cls(**kwargs)
    except (TypeError, ValueError, InvalidOperation) as exc:
        raise SnapshotError(f"Invalid {cls.__name__} document {record_id}: {exc}") from exc


def parse_address(doc: Optional[Mapping[str, Any]]) -> Optional[Address]:
    if not doc:
        return None
    return Address(
        country_code=doc.get("countryCode"),
        state_code=doc.get("stateCode", doc.get("stateProvinceCode")),
        postal_code=doc.get("postalCode"),
        city=doc.get("city"),
    )


def parse_order_context(doc: Mapping[str, Any], default_currency: str = "USD") -> OrderContext:
    """Build an :class:`OrderContext` from a camelCase document."""
    lines = tuple(
        ProductLine(
            product_id=normalize_id(line.get("productId")) or "",
            quantity=int(line.get("quantity", 1)),
            line_amount=line.get("lineAmount", 0),
            category_ids=[normalize_id(c) for c in line.get("categoryIds", ())],
            is_on_sale=bool(line.get("isOnSale", False)),
            tax_class=line.get("taxClass"),
            is_tax_exempt=bool(line.get("isTaxExempt", False)),
        )
        for line in doc.get("productLines", ())
    )
    subtotal = doc.get("subtotal")
    if subtotal is None:
        subtotal = sum((line.line_amount for line in lines), 0)
    try:
        return OrderContext(
            currency=doc.get("currency") or default_currency,
            subtotal=subtotal,
            weight=doc.get("weight", 0),
            item_count=int(doc.get("itemCount", sum(line.quantity for line in lines))),
            address=parse_address(doc.get("address")),
            customer_id=normalize_id(doc.get("customerId")),
            customer_group=doc.get("customerGroup"),
            product_lines=lines,
            shipping_total=doc.get("shippingTotal", 0),
            completed_order_count=int(doc.get("completedOrderCount", 0)),
            discount_usage={str(k): int(v) for k, v in (doc.get("discountUsage") or {}).items()},
        )
    except (TypeError, ValueError, InvalidOperation) as exc:
        raise SnapshotError(f"Invalid order context: {exc}") from exc


@dataclass(frozen=True)
class PricingSnapshot:
    """Configuration records valid for one pricing invocation."""

    shipping_zones: Tuple[ShippingZone, ...] = ()
    shipping_methods: Tuple[ShippingMethod, ...] = ()
    shipping_rates: Tuple[ShippingRate, ...] = ()
    tax_zones: Tuple[TaxZone, ...] = ()
    tax_categories: Tuple[TaxCategory, ...] = ()
    tax_rates: Tuple[TaxRate, ...] = ()
    discounts: Tuple[Discount, ...] = ()
    payment_methods: Tuple[PaymentMethodConfig, ...] = ()

    @classmethod
    def from_documents(cls, documents: Mapping[str, Iterable[Mapping[str, Any]]]) -> "PricingSnapshot":
        """Parse a mapping of collection name to documents.

        Collection names may be camelCase (``shippingZones``) or snake_case
        (``shipping_zones``). Each shipping rate is linked to its method.
        """

        def docs(name: str) -> Iterable[Mapping[str, Any]]:
            return documents.get(COLLECTIONS[name]) or documents.get(name) or ()

        methods = tuple(parse_record(ShippingMethod, d) for d in docs("shipping_methods"))
        methods_by_id = {m.id: m for m in methods}

        rates = []
        for doc in docs("shipping_rates"):
            method_id = normalize_id(doc.get("shippingMethodId", doc.get("methodId")))
            zone_id = normalize_id(doc.get("shippingZoneId", doc.get("zoneId")))
            method = methods_by_id.get(method_id)
            if method is None:
                logger.debug("Shipping rate %s references unknown method %s", doc.get("_id", doc.get("id")), method_id)
            rates.append(
                parse_record(ShippingRate, doc, method=method, method_id=method_id or "", zone_id=zone_id or "")
            )

        tax_rates = []
        for doc in docs("tax_rates"):
            tax_rates.append(
                parse_record(
                    TaxRate,
                    doc,
                    zone_id=normalize_id(doc.get("taxZoneId", doc.get("zoneId"))),
                    category_id=normalize_id(doc.get("taxCategoryId", doc.get("categoryId"))),
                )
            )

        snapshot = cls(
            shipping_zones=tuple(parse_record(ShippingZone, d) for d in docs("shipping_zones")),
            shipping_methods=methods,
            shipping_rates=tuple(rates),
            tax_zones=tuple(parse_record(TaxZone, d) for d in docs("tax_zones")),
            tax_categories=tuple(parse_record(TaxCategory, d) for d in docs("tax_categories")),
            tax_rates=tuple(tax_rates),
            discounts=tuple(parse_record(Discount, d) for d in docs("discounts")),
            payment_methods=tuple(parse_record(PaymentMethodConfig, d) for d in docs("payment_methods")),
        )
        logger.debug(
            "Snapshot: %d zone(s), %d rate(s), %d tax rate(s), %d discount(s), %d payment method(s)",
            len(snapshot.shipping_zones),
            len(snapshot.shipping_rates),
            len(snapshot.tax_rates),
            len(snapshot.discounts),
            len(snapshot.payment_methods),
        )
        return snapshot

    def discount_by_code(self, code: str) -> Optional[Discount]:
        wanted = code.strip().casefold()
        return next((d for d in self.discounts if d.code and d.code.strip().casefold() == wanted), None)

    def payment_method_by_code(self, code: str) -> Optional[PaymentMethodConfig]:
        wanted = code.strip().casefold()
        return next((m for m in self.payment_methods if m.code.casefold() == wanted), None)

    def automatic_discounts(self) -> Tuple[Discount, ...]:
        """Discounts applied without a coupon code."""
        return tuple(d for d in self.discounts if not d.is_coupon)
