"""
Command-line interface for the checkout pricing engine.
"""

import argparse
import json
import sys
from dataclasses import replace
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from . import __version__
from .pricing.geo import GeoMatcher
from .pricing.models import Address, OrderContext
from .pricing.money import round_money
from .pricing.payments import PaymentFeeCalculator
from .pricing.quote import CheckoutQuote, CheckoutQuoteService
from .pricing.repository import SnapshotRepository
from .pricing.shipping import ShippingRateCalculator
from .pricing.snapshot import PricingSnapshot, parse_order_context
from .utils.config import Config
from .utils.logging import setup_logging


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        description="Checkout Pricing - shipping, tax, discount and payment fee calculator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  checkout-pricing --version
  checkout-pricing quote --snapshot config.json --context order.json --shipping-method std
  checkout-pricing quote --from-db --context order.json --coupon WELCOME10 --payment-method card
  checkout-pricing shipping-options --snapshot config.json --context order.json
  checkout-pricing match-zone --snapshot config.json --country US --state CA --postal 90210
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Checkout Pricing {__version__}",
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    parser.add_argument(
        "--log-file",
        help="Log file path",
    )

    parser.add_argument(
        "--env-file",
        default=".env",
        help="Environment file with database settings (default: .env)",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands",
    )

    def add_snapshot_source(sub: argparse.ArgumentParser) -> None:
        source = sub.add_mutually_exclusive_group(required=True)
        source.add_argument("--snapshot", help="JSON file with pricing configuration documents")
        source.add_argument(
            "--from-db",
            action="store_true",
            help="Load pricing configuration from MongoDB (DB_CONNECTION_URL, DB_NAME)",
        )

    quote_parser = subparsers.add_parser(
        "quote",
        help="Price an order: discounts, shipping, tax and payment fee",
    )
    add_snapshot_source(quote_parser)
    quote_parser.add_argument("--context", required=True, help="JSON file describing the order")
    quote_parser.add_argument("--shipping-method", help="Shipping method id")
    quote_parser.add_argument("--payment-method", help="Payment method code")
    quote_parser.add_argument("--coupon", help="Coupon code")
    quote_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the quote as JSON instead of a table",
    )

    options_parser = subparsers.add_parser(
        "shipping-options",
        help="List shipping and payment methods available for an order",
    )
    add_snapshot_source(options_parser)
    options_parser.add_argument("--context", required=True, help="JSON file describing the order")

    zone_parser = subparsers.add_parser(
        "match-zone",
        help="Show which shipping and tax zones an address falls in",
    )
    add_snapshot_source(zone_parser)
    zone_parser.add_argument("--country", help="Country code, e.g. US")
    zone_parser.add_argument("--state", help="State or province code, e.g. CA")
    zone_parser.add_argument("--postal", help="Postal code")
    zone_parser.add_argument("--city", help="City name")

    return parser


def read_json(path: str) -> Any:
    """Read a JSON file keeping numbers exact."""
    with Path(path).open(encoding="utf-8") as handle:
        return json.load(handle, parse_float=Decimal)


def load_snapshot(snapshot_path: Optional[str], from_db: bool, config: Config) -> PricingSnapshot:
    if from_db:
        with SnapshotRepository(config=config) as repo:
            return repo.load_snapshot()
    return PricingSnapshot.from_documents(read_json(snapshot_path))


def _fmt_money(value: Any) -> str:
    return f"{round_money(value):,.2f}"


def quote_to_dict(quote: CheckoutQuote) -> Dict[str, Any]:
    """Plain representation of a quote, amounts as strings."""
    return {
        "currency": quote.currency,
        "subtotal": str(quote.subtotal.amount),
        "discount": str(quote.discount.amount),
        "shipping": str(quote.shipping.amount),
        "tax": str(quote.tax.amount),
        "paymentFee": str(quote.payment_fee.amount),
        "total": str(quote.total.amount),
        "appliedDiscounts": [
            {
                "discountId": d.discount_id,
                "name": d.name,
                "type": d.type.value,
                "amount": str(d.amount),
                "freeShipping": d.free_shipping,
            }
            for d in quote.applied_discounts
        ],
        "coupon": None
        if quote.coupon is None
        else {"success": quote.coupon.success, "errorCode": quote.coupon.error_code, "message": quote.coupon.message},
        "warnings": list(quote.warnings),
    }


def print_quote(quote: CheckoutQuote) -> None:
    print("\nCHECKOUT QUOTE")
    print("=" * 60)
    rows = [
        ("Subtotal", quote.subtotal.amount),
        ("Discount", quote.discount.amount),
        ("Shipping", quote.shipping.amount),
        ("Tax", quote.tax.amount),
        ("Payment fee", quote.payment_fee.amount),
    ]
    for label, amount in rows:
        print(f"   {label:<20} {_fmt_money(amount):>15} {quote.currency}")
    print("-" * 60)
    print(f"   {'Total':<20} {_fmt_money(quote.total.amount):>15} {quote.currency}")

    if quote.applied_discounts:
        print("\n   Applied discounts:")
        for applied in quote.applied_discounts:
            suffix = " (free shipping)" if applied.free_shipping else ""
            print(f"      - {applied.name or applied.discount_id}: {_fmt_money(applied.amount)}{suffix}")

    if quote.tax_summary is not None and quote.tax_summary.jurisdictions:
        print("\n   Tax by jurisdiction:")
        for line in quote.tax_summary.jurisdictions:
            label = " / ".join(part for part in (line.jurisdiction_type, line.jurisdiction_name) if part)
            print(f"      - {label}: {_fmt_money(line.amount)}")

    if quote.shipping_result is not None and quote.shipping_result.free_shipping_reason:
        print(f"\n   {quote.shipping_result.free_shipping_reason}")

    for warning in quote.warnings:
        print(f"\n   Warning: {warning}")


def merge_usage(context: OrderContext, stored: Dict[str, int]) -> OrderContext:
    """Add stored redemption counts to the ones the order carries, keeping the larger."""
    usage = dict(context.discount_usage)
    for discount_id, count in stored.items():
        usage[discount_id] = max(usage.get(discount_id, 0), count)
    return replace(context, discount_usage=usage)


def run_quote(parsed_args: argparse.Namespace, config: Config) -> int:
    context = parse_order_context(read_json(parsed_args.context), config.get("default_currency", "USD"))
    if parsed_args.from_db:
        with SnapshotRepository(config=config) as repo:
            snapshot = repo.load_snapshot()
            if context.customer_id:
                context = merge_usage(context, repo.get_customer_usage(context.customer_id))
    else:
        snapshot = load_snapshot(parsed_args.snapshot, False, config)

    quote = CheckoutQuoteService(snapshot).quote(
        context,
        shipping_method_id=parsed_args.shipping_method,
        payment_method_code=parsed_args.payment_method,
        coupon_code=parsed_args.coupon,
    )
    if parsed_args.json:
        print(json.dumps(quote_to_dict(quote), indent=2))
    else:
        print_quote(quote)
    return 0


def run_shipping_options(parsed_args: argparse.Namespace, config: Config) -> int:
    snapshot = load_snapshot(parsed_args.snapshot, parsed_args.from_db, config)
    context = parse_order_context(read_json(parsed_args.context), config.get("default_currency", "USD"))

    options = ShippingRateCalculator().shipping_options(
        context.address,
        snapshot.shipping_zones,
        snapshot.shipping_rates,
        context.subtotal,
        context.weight,
        context.total_quantity,
    )
    print("\nSHIPPING OPTIONS")
    print("=" * 60)
    if not options:
        print("   No shipping methods available for this address.")
    for option in options:
        estimate = f" ({option.delivery_estimate_text})" if option.delivery_estimate_text else ""
        print(f"   {option.method_id:<12} {option.name:<25} {_fmt_money(option.cost):>10} {context.currency}{estimate}")

    methods = PaymentFeeCalculator().available_methods(snapshot.payment_methods, context)
    print("\nPAYMENT METHODS")
    print("=" * 60)
    if not methods:
        print("   No payment methods available for this order.")
    for method, fee in methods:
        print(f"   {method.code:<12} {method.name:<25} fee {_fmt_money(fee):>10} {context.currency}")
    return 0


def run_match_zone(parsed_args: argparse.Namespace, config: Config) -> int:
    snapshot = load_snapshot(parsed_args.snapshot, parsed_args.from_db, config)
    address = Address(
        country_code=parsed_args.country,
        state_code=parsed_args.state,
        postal_code=parsed_args.postal,
        city=parsed_args.city,
    )
    geo = GeoMatcher()
    shipping_zone = geo.resolve_shipping_zone(snapshot.shipping_zones, address)
    tax_zones = geo.matching_tax_zones(snapshot.tax_zones, address)

    print("\nZONE MATCH")
    print("=" * 60)
    if shipping_zone is None:
        print("   Shipping zone: none (shipping not available)")
    else:
        print(f"   Shipping zone: {shipping_zone.name or shipping_zone.id} [{shipping_zone.code}]")
    if not tax_zones:
        print("   Tax zones:     none")
    for zone in tax_zones:
        print(f"   Tax zone:      {zone.name or zone.id} [{zone.code}]")
    return 0 if shipping_zone is not None else 2


COMMANDS = {
    "quote": run_quote,
    "shipping-options": run_shipping_options,
    "match-zone": run_match_zone,
}


def main(args: Optional[list] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        args: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    config = Config(parsed_args.env_file)
    log_level = "DEBUG" if parsed_args.verbose else config.get("log_level", "INFO")
    logger = setup_logging(level=log_level, log_file=parsed_args.log_file)

    if not parsed_args.command:
        parser.print_help()
        return 1

    try:
        return COMMANDS[parsed_args.command](parsed_args, config)
    except Exception as e:
        logger.error(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
