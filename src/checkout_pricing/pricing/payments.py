"""Payment method fees and availability."""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from .models import OrderContext, PaymentFeeType, PaymentMethodConfig
from .money import HUNDRED, ZERO, Number, round_money, to_decimal


def _contains(values: Sequence[str], wanted: Optional[str]) -> bool:
    if not wanted:
        return False
    wanted = wanted.casefold()
    return any(value.casefold() == wanted for value in values)


class PaymentFeeCalculator:
    """Processing fees and checkout restrictions of payment methods."""

    @staticmethod
    def calculate_fee(method: PaymentMethodConfig, order_amount: Number) -> Decimal:
        """Fee charged for paying ``order_amount`` with ``method``.

        Missing fee parameters count as zero. The fee is capped at
        ``max_fee`` and rounded to 2 decimals.
        """
        amount = to_decimal(order_amount)
        flat = method.flat_fee or ZERO
        percentage = amount * (method.percentage_fee or ZERO) / HUNDRED

        if method.fee_type is PaymentFeeType.NONE:
            return ZERO
        if method.fee_type is PaymentFeeType.FLAT_FEE:
            fee = flat
        elif method.fee_type is PaymentFeeType.PERCENTAGE:
            fee = percentage
        elif method.fee_type is PaymentFeeType.FLAT_PLUS_PERCENTAGE:
            fee = flat + percentage
        else:
            raise ValueError(f"Unsupported fee type: {method.fee_type!r}")

        if method.max_fee is not None and fee > method.max_fee:
            fee = method.max_fee
        return round_money(fee)

    @staticmethod
    def is_available_for(
        method: PaymentMethodConfig,
        context: OrderContext,
        order_amount: Optional[Number] = None,
    ) -> bool:
        """Whether the method may be offered for this order.

        ``order_amount`` defaults to the context subtotal. Country, currency
        and customer group comparisons ignore case. The customer group list
        only restricts orders that carry a group.
        """
        amount = context.subtotal if order_amount is None else to_decimal(order_amount)
        country = context.country

        if not method.is_active:
            return False
        if method.min_order_amount is not None and amount < method.min_order_amount:
            return False
        if method.max_order_amount is not None and amount > method.max_order_amount:
            return False
        if method.allowed_countries and not _contains(method.allowed_countries, country):
            return False
        if _contains(method.excluded_countries, country):
            return False
        if method.allowed_currencies and not _contains(method.allowed_currencies, context.currency):
            return False
        if (
            method.allowed_customer_groups
            and context.customer_group
            and not _contains(method.allowed_customer_groups, context.customer_group)
        ):
            return False
        return True

    def available_methods(
        self,
        methods: Iterable[PaymentMethodConfig],
        context: OrderContext,
        order_amount: Optional[Number] = None,
    ) -> List[Tuple[PaymentMethodConfig, Decimal]]:
        """Available methods with their fee, in display order."""
        amount = context.subtotal if order_amount is None else to_decimal(order_amount)
        available = [m for m in methods if self.is_available_for(m, context, amount)]
        available.sort(key=lambda m: (m.sort_order, m.name))
        return [(method, self.calculate_fee(method, amount)) for method in available]
