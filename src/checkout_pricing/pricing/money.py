"""Decimal helpers and a currency-aware money value."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Union

from .errors import CurrencyMismatchError

Number = Union[Decimal, int, float, str]

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def to_decimal(value: Optional[Number]) -> Decimal:
    """Convert a number to Decimal without inheriting float noise.

    Floats go through ``str`` so ``0.1`` becomes ``Decimal("0.1")`` rather
    than its binary expansion. ``None`` becomes zero.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def optional_decimal(value: Optional[Number]) -> Optional[Decimal]:
    if value is None:
        return None
    return to_decimal(value)


def round_money(value: Number, places: int = 2) -> Decimal:
    """Round half away from zero to ``places`` decimals."""
    exponent = Decimal(1).scaleb(-places)
    return to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def clamp(value: Decimal, minimum: Optional[Decimal] = None, maximum: Optional[Decimal] = None) -> Decimal:
    """Restrict ``value`` into ``[minimum, maximum]``; missing bounds are open."""
    if minimum is not None and value < minimum:
        value = minimum
    if maximum is not None and value > maximum:
        value = maximum
    return value


@dataclass(frozen=True)
class Money:
    """An amount tied to an ISO currency code."""

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(ZERO, currency)

    def _check(self, other: "Money") -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot combine Money with {type(other).__name__}")
        if other.currency != self.currency:
            raise CurrencyMismatchError(self.currency, other.currency)

    def __add__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.amount - other.amount, self.currency)

    def __lt__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount < other.amount

    def __le__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount <= other.amount

    def rounded(self) -> "Money":
        return Money(round_money(self.amount), self.currency)

    def non_negative(self) -> "Money":
        return Money(max(self.amount, ZERO), self.currency)

    def __str__(self) -> str:
        return f"{round_money(self.amount):,.2f} {self.currency}"


def sum_money(values: Iterable[Money], currency: str) -> Money:
    """Sum money values, failing on the first one in another currency."""
    total = Money.zero(currency)
    for value in values:
        total = total + value
    return total
