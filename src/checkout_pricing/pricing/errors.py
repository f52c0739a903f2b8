"""Exceptions raised by the pricing engine."""


class PricingError(Exception):
    """Base class for pricing engine errors."""


class CurrencyMismatchError(PricingError):
    """Raised when amounts in different currencies are combined."""

    def __init__(self, left: str, right: str) -> None:
        super().__init__(f"Currency mismatch: {left} vs {right}")
        self.left = left
        self.right = right


class SnapshotError(PricingError):
    """Raised when a configuration document cannot be turned into a record."""
