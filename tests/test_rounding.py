import pytest

from pricing_core.engine.rounding import apply_rounding
from pricing_core.enums import RoundingRule


@pytest.mark.parametrize("rule,price,precision,expected", [
    (RoundingRule.NONE, 12.3456, 2, 12.3456),
    (RoundingRule.NEAREST, 12.345, 2, 12.35),
    (RoundingRule.NEAREST, 2.675, 2, 2.68),
    (RoundingRule.NEAREST, 12.344, 2, 12.34),
    (RoundingRule.NEAREST, -1.005, 2, -1.01),
    (RoundingRule.NEAREST, 12.5, 0, 13.0),
    (RoundingRule.UP, 12.341, 2, 12.35),
    (RoundingRule.DOWN, 12.349, 2, 12.34),
    (RoundingRule.NEAREST_05, 12.37, 2, 12.35),
    (RoundingRule.NEAREST_05, 12.38, 2, 12.40),
    (RoundingRule.NEAREST_09, 12.40, 2, 12.09),
    (RoundingRule.NEAREST_99, 12.40, 2, 12.99),
])
def test_rounding_rules(rule, price, precision, expected):
    assert apply_rounding(price, rule, precision) == pytest.approx(expected)


def test_nearest_is_half_away_from_zero():
    assert apply_rounding(0.125, RoundingRule.NEAREST, 2) == 0.13
    assert apply_rounding(-0.125, RoundingRule.NEAREST, 2) == -0.13


def test_none_price_passes_through():
    assert apply_rounding(None, RoundingRule.NEAREST, 2) is None
