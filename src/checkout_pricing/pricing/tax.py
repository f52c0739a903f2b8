"""Tax computation for single rates, layered rates and whole orders."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..utils.logging import get_logger
from .geo import GeoMatcher
from .models import Address, TaxableItem, TaxCategory, TaxRate, TaxRateType, TaxZone, utc_now
from .money import HUNDRED, ZERO, Number, round_money, to_decimal

logger = get_logger(__name__)


@dataclass
class TaxLine:
    """One rate's contribution to a tax result."""

    rate_id: str
    jurisdiction_type: str
    jurisdiction_name: str
    rate: Decimal
    amount: Decimal
    is_compound: bool = False


@dataclass
class TaxCalculationResult:
    taxable_amount: Decimal = ZERO
    tax_amount: Decimal = ZERO
    effective_rate: Decimal = ZERO
    lines: List[TaxLine] = field(default_factory=list)
    is_exempt: bool = False
    exemption_reason: Optional[str] = None


@dataclass
class TaxItemResult:
    item_id: str
    taxable_amount: Decimal
    tax_amount: Decimal
    effective_rate: Decimal
    is_exempt: bool = False


@dataclass
class TaxSummary:
    """Order-level tax: per item results plus jurisdiction totals."""

    total_taxable: Decimal = ZERO
    total_exempt: Decimal = ZERO
    total_tax: Decimal = ZERO
    shipping_tax: Decimal = ZERO
    items: List[TaxItemResult] = field(default_factory=list)
    jurisdictions: List[TaxLine] = field(default_factory=list)


def effective_rate(tax: Decimal, taxable_amount: Decimal) -> Decimal:
    if taxable_amount <= 0:
        return ZERO
    return round_money(tax / taxable_amount * HUNDRED, 4)


class TaxCalculator:
    """Applies tax rates to taxable amounts.

    Every method that depends on the clock takes ``now``; when omitted the
    current UTC time is read once at the public entry point.
    """

    def __init__(self, geo_matcher: Optional[GeoMatcher] = None) -> None:
        self.geo = geo_matcher or GeoMatcher()

    # ------------------------------------------------------------------
    # Single rate
    # ------------------------------------------------------------------

    @staticmethod
    def is_currently_effective(rate: TaxRate, now: datetime) -> bool:
        """True when ``now`` lies inside the rate's inclusive effective window."""
        now = utc_now(now)
        if rate.effective_from is not None and now < rate.effective_from:
            return False
        if rate.effective_to is not None and now > rate.effective_to:
            return False
        return True

    def applies_to(self, rate: TaxRate, amount: Number, now: Optional[datetime] = None) -> bool:
        now = utc_now(now)
        if not rate.is_active or not self.is_currently_effective(rate, now):
            return False
        if rate.minimum_amount is not None and to_decimal(amount) < rate.minimum_amount:
            return False
        return True

    def calculate_tax(
        self,
        rate: TaxRate,
        taxable_amount: Number,
        previous_tax: Number = ZERO,
        now: Optional[datetime] = None,
        quantity: Optional[int] = None,
    ) -> Decimal:
        """Tax contributed by one rate.

        Args:
            rate: The rate to apply.
            taxable_amount: Amount before tax.
            previous_tax: Tax already accumulated by earlier rates; only added
                to the base when the rate is compound.
            now: Evaluation time for the effective window.
            quantity: Unit count for ``PerUnit`` rates. Without it a per-unit
                rate returns its flat amount once.

        Returns:
            The tax rounded to 2 decimals.
        """
        now = utc_now(now)
        amount = to_decimal(taxable_amount)

        if not rate.is_active or not self.is_currently_effective(rate, now):
            return ZERO

        # All-or-nothing floor
        if rate.minimum_amount is not None and amount < rate.minimum_amount:
            return ZERO

        base = amount
        if rate.maximum_amount is not None and base > rate.maximum_amount:
            base = rate.maximum_amount

        if rate.is_compound:
            base += to_decimal(previous_tax)

        if rate.rate_type is TaxRateType.PERCENTAGE:
            tax = base * rate.rate / HUNDRED
        elif rate.rate_type is TaxRateType.FLAT_RATE:
            tax = rate.flat_amount or ZERO
        elif rate.rate_type is TaxRateType.PER_UNIT:
            tax = rate.flat_amount or ZERO
            if quantity is None:
                logger.debug("Per-unit tax rate %s applied without a quantity; using flat amount", rate.id)
            else:
                tax *= quantity
        else:
            raise ValueError(f"Unsupported tax rate type: {rate.rate_type!r}")

        if rate.maximum_tax is not None and tax > rate.maximum_tax:
            tax = rate.maximum_tax

        return round_money(tax)

    # ------------------------------------------------------------------
    # Layered rates
    # ------------------------------------------------------------------

    @staticmethod
    def order_rates(rates: Iterable[TaxRate]) -> List[TaxRate]:
        """Rates in compounding order: priority, then sort order."""
        return sorted(rates, key=lambda r: (r.priority, r.sort_order))

    def breakdown(
        self,
        rates: Iterable[TaxRate],
        taxable_amount: Number,
        prior_tax: Number = ZERO,
        now: Optional[datetime] = None,
        quantity: Optional[int] = None,
        jurisdiction_type: str = "",
    ) -> TaxCalculationResult:
        """Apply ``rates`` in priority order, feeding cumulative tax forward."""
        now = utc_now(now)
        amount = to_decimal(taxable_amount)
        cumulative = to_decimal(prior_tax)
        result = TaxCalculationResult(taxable_amount=amount)

        for rate in self.order_rates(rates):
            tax = self.calculate_tax(rate, amount, cumulative, now=now, quantity=quantity)
            if tax <= 0:
                continue
            cumulative += tax
            result.tax_amount += tax
            result.lines.append(
                TaxLine(
                    rate_id=rate.id,
                    jurisdiction_type=rate.jurisdiction_type or jurisdiction_type,
                    jurisdiction_name=rate.jurisdiction_name or rate.name,
                    rate=rate.rate,
                    amount=tax,
                    is_compound=rate.is_compound,
                )
            )

        result.tax_amount = round_money(result.tax_amount)
        result.effective_rate = effective_rate(result.tax_amount, amount)
        return result

    def calculate(
        self,
        rates: Iterable[TaxRate],
        taxable_amount: Number,
        prior_tax: Number = ZERO,
        now: Optional[datetime] = None,
    ) -> Decimal:
        """Total tax for ``rates`` applied to ``taxable_amount``."""
        return self.breakdown(rates, taxable_amount, prior_tax, now=now).tax_amount

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def calculate_order_tax(
        self,
        address: Optional[Address],
        items: Sequence[TaxableItem],
        zones: Sequence[TaxZone],
        categories: Sequence[TaxCategory],
        rates: Sequence[TaxRate],
        shipping_amount: Number = ZERO,
        now: Optional[datetime] = None,
    ) -> TaxSummary:
        """Tax for every item of an order plus shipping.

        Items resolve their category by ``tax_class`` (matched against the
        category code) or fall back to the default category. Rates are those
        of the zones matching ``address``; when a category is known, rates
        bound to another category are skipped. Rates flagged ``tax_shipping``
        also tax the shipping amount.
        """
        now = utc_now(now)
        summary = TaxSummary()
        matched_zones = self.geo.matching_tax_zones(zones, address)
        zone_ids = {zone.id for zone in matched_zones}
        zone_names = {zone.id: zone.name for zone in matched_zones}
        zone_rates = [r for r in rates if r.zone_id in zone_ids and r.is_active]
        jurisdictions: Dict[Tuple[str, str], TaxLine] = {}

        for item in items:
            line_amount = item.line_amount
            category = self._category_for(item.tax_class, categories)

            if item.is_tax_exempt or (category is not None and category.is_tax_exempt):
                summary.items.append(TaxItemResult(item.item_id, line_amount, ZERO, ZERO, is_exempt=True))
                summary.total_exempt += line_amount
                continue

            item_rates = zone_rates
            if category is not None:
                item_rates = [r for r in zone_rates if r.category_id in (None, category.id)]

            item_tax = ZERO
            for zone in matched_zones:
                result = self.breakdown(
                    [r for r in item_rates if r.zone_id == zone.id],
                    line_amount,
                    prior_tax=item_tax,
                    now=now,
                    quantity=item.quantity,
                    jurisdiction_type=zone_names[zone.id],
                )
                item_tax += result.tax_amount
                for line in result.lines:
                    key = (line.jurisdiction_type, line.jurisdiction_name)
                    if key in jurisdictions:
                        jurisdictions[key].amount += line.amount
                    else:
                        jurisdictions[key] = TaxLine(
                            rate_id=line.rate_id,
                            jurisdiction_type=line.jurisdiction_type,
                            jurisdiction_name=line.jurisdiction_name,
                            rate=line.rate,
                            amount=line.amount,
                            is_compound=line.is_compound,
                        )

            summary.items.append(
                TaxItemResult(item.item_id, line_amount, item_tax, effective_rate(item_tax, line_amount))
            )
            summary.total_taxable += line_amount
            summary.total_tax += item_tax

        shipping = to_decimal(shipping_amount)
        if shipping > 0:
            for rate in zone_rates:
                if rate.tax_shipping:
                    summary.shipping_tax += self.calculate_tax(rate, shipping, now=now)
            summary.total_tax += summary.shipping_tax

        summary.total_tax = round_money(summary.total_tax)
        summary.jurisdictions = list(jurisdictions.values())
        logger.debug(
            "Order tax: %s taxable, %s exempt, %s tax across %d zone(s)",
            summary.total_taxable,
            summary.total_exempt,
            summary.total_tax,
            len(matched_zones),
        )
        return summary

    @staticmethod
    def _category_for(tax_class: Optional[str], categories: Sequence[TaxCategory]) -> Optional[TaxCategory]:
        active = [c for c in categories if c.is_active]
        if tax_class:
            for category in active:
                if category.code.casefold() == tax_class.casefold():
                    return category
        return next((c for c in active if c.is_default), None)
