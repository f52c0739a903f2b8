"""Pricing engine entry point."""

from .discounts import CouponValidationResult, DiscountCalculation, DiscountEvaluator
from .errors import CurrencyMismatchError, PricingError, SnapshotError
from .geo import GeoMatcher, matches_postal_pattern
from .money import Money, round_money
from .payments import PaymentFeeCalculator
from .quote import CheckoutQuote, CheckoutQuoteService
from .repository import SnapshotRepository
from .shipping import ShippingRateCalculator
from .snapshot import PricingSnapshot, parse_order_context
from .tax import TaxCalculator

__all__ = [
    "CheckoutQuote",
    "CheckoutQuoteService",
    "CouponValidationResult",
    "CurrencyMismatchError",
    "DiscountCalculation",
    "DiscountEvaluator",
    "GeoMatcher",
    "Money",
    "PaymentFeeCalculator",
    "PricingError",
    "PricingSnapshot",
    "ShippingRateCalculator",
    "SnapshotError",
    "SnapshotRepository",
    "TaxCalculator",
    "matches_postal_pattern",
    "parse_order_context",
    "round_money",
]
