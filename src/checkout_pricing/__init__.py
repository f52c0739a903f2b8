"""
Checkout Pricing - shipping, tax, discount and payment fee engine

Deterministic calculation rules for checkout: zone matching, compound tax,
threshold-bounded shipping costs, discount eligibility and payment fees.
"""

__version__ = "0.1.0"

from . import pricing
from . import utils

__all__ = ["pricing", "utils"]
