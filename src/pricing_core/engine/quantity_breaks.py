"""
Quantity Break Resolver - picks the price tier for an ordered quantity.

Two methods are supported:

- ``all_units``: every unit is charged at the tier the total quantity falls in
- ``incremental``: unit n is charged at the tier covering n, so a 25-unit
  order on tiers 1-9 / 10-19 / 20+ pays three different prices
"""
from dataclasses import dataclass
from typing import Optional, Sequence

from ..enums import QuantityBreakMethod
from ..errors import ValidationError
from .models import QuantityBreak


@dataclass
class BreakResolution:
    unit_price: float
    extended_price: float
    applied_break: Optional[QuantityBreak] = None


def validate_breaks(breaks: Sequence[QuantityBreak]):
    """Raise ``ValidationError`` unless breaks are sorted and non-overlapping."""
    previous = None
    for index, tier in enumerate(breaks):
        if tier.min_quantity is None or tier.min_quantity < 0:
            raise ValidationError(f"quantity break {index}: min_quantity must be >= 0")
        if tier.max_quantity is not None and tier.max_quantity < tier.min_quantity:
            raise ValidationError(f"quantity break {index}: max_quantity is below min_quantity")
        if tier.price is None and tier.discount_percent is None:
            raise ValidationError(f"quantity break {index}: price or discount_percent is required")
        if tier.price is not None and tier.price < 0:
            raise ValidationError(f"quantity break {index}: price must not be negative")
        if tier.discount_percent is not None and not 0 <= tier.discount_percent <= 100:
            raise ValidationError(f"quantity break {index}: discount_percent must be within 0-100")
        if previous is not None:
            if tier.min_quantity <= previous.min_quantity:
                raise ValidationError("quantity breaks must be sorted by ascending min_quantity")
            if previous.max_quantity is not None and previous.max_quantity >= tier.min_quantity:
                raise ValidationError(
                    f"quantity break {index - 1} (max {previous.max_quantity}) overlaps "
                    f"break {index} (min {tier.min_quantity})"
                )
        previous = tier


class QuantityBreakResolver:
    """Resolve unit and extended price for a quantity against a break table."""

    def find_tier(self, breaks: Sequence[QuantityBreak], quantity: float) -> Optional[QuantityBreak]:
        """Tier with the greatest ``min_quantity <= quantity`` that also covers it."""
        best = None
        for tier in breaks:
            if tier.covers(quantity) and (best is None or tier.min_quantity > best.min_quantity):
                best = tier
        return best

    def resolve(
        self,
        breaks: Sequence[QuantityBreak],
        quantity: int,
        list_price: float,
        method: QuantityBreakMethod = QuantityBreakMethod.ALL_UNITS,
    ) -> BreakResolution:
        if not breaks:
            return BreakResolution(list_price, list_price * quantity)

        if method == QuantityBreakMethod.INCREMENTAL:
            return self._resolve_incremental(breaks, quantity, list_price)

        tier = self.find_tier(breaks, quantity)
        if tier is None:
            return BreakResolution(list_price, list_price * quantity)
        unit_price = tier.tier_price(list_price)
        return BreakResolution(unit_price, unit_price * quantity, tier)

    def _resolve_incremental(
        self, breaks: Sequence[QuantityBreak], quantity: int, list_price: float
    ) -> BreakResolution:
        ordered = sorted(breaks, key=lambda b: b.min_quantity)
        extended = 0.0
        counted = 0
        highest = None

        # Walk the segments [1..first.min-1] at list price, then each tier's span
        for tier in ordered:
            if counted >= quantity:
                break
            start = max(tier.min_quantity, 1)
            if start > counted + 1:
                gap_end = min(start - 1, quantity)
                extended += (gap_end - counted) * list_price
                counted = gap_end
                if counted >= quantity:
                    break
            end = quantity if tier.max_quantity is None else min(tier.max_quantity, quantity)
            if end > counted:
                extended += (end - counted) * tier.tier_price(list_price)
                counted = end
                highest = tier

        if counted < quantity:
            extended += (quantity - counted) * list_price

        return BreakResolution(extended / quantity, extended, highest)
