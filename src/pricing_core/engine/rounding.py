"""
Price rounding rules.

Rounding goes through ``Decimal`` on the float's shortest repr so that
values like 2.675 round the way a person reading them expects.
"""
import math
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP

from ..enums import RoundingRule


def _quantize(price: float, precision: int, mode: str) -> float:
    step = Decimal(1).scaleb(-precision)
    return float(Decimal(repr(price)).quantize(step, rounding=mode))


def apply_rounding(price: float, rule: RoundingRule, precision: int = 2) -> float:
    """
    Round ``price`` according to ``rule``.

    - NONE: unchanged
    - UP / DOWN: ceiling / floor at ``precision`` decimals
    - NEAREST: half away from zero at ``precision`` decimals
    - NEAREST_05: nearest multiple of 0.05
    - NEAREST_09: whole units + .09 (charm pricing), e.g. 12.40 → 12.09
    - NEAREST_99: whole units + .99, e.g. 12.40 → 12.99
    """
    if price is None or rule == RoundingRule.NONE:
        return price
    precision = max(0, int(precision))

    if rule == RoundingRule.UP:
        return _quantize(price, precision, ROUND_CEILING)
    if rule == RoundingRule.DOWN:
        return _quantize(price, precision, ROUND_FLOOR)
    if rule == RoundingRule.NEAREST:
        return _quantize(price, precision, ROUND_HALF_UP)
    if rule == RoundingRule.NEAREST_05:
        twentieths = Decimal(repr(price)) * 20
        return float(twentieths.quantize(Decimal(1), rounding=ROUND_HALF_UP) / 20)
    if rule == RoundingRule.NEAREST_09:
        return math.floor(price) + 0.09
    if rule == RoundingRule.NEAREST_99:
        return math.floor(price) + 0.99
    return _quantize(price, precision, ROUND_HALF_UP)
