import pytest

from pricing_core.engine.models import QuantityBreak
from pricing_core.engine.quantity_breaks import QuantityBreakResolver, validate_breaks
from pricing_core.enums import QuantityBreakMethod
from pricing_core.errors import ValidationError


TIERS = [
    QuantityBreak(min_quantity=1, max_quantity=9, price=10.0),
    QuantityBreak(min_quantity=10, max_quantity=19, price=9.0),
    QuantityBreak(min_quantity=20, price=8.0),
]


@pytest.fixture
def resolver():
    return QuantityBreakResolver()


@pytest.mark.parametrize("quantity,expected_min", [(1, 1), (9, 1), (10, 10), (19, 10), (20, 20), (500, 20)])
def test_selects_greatest_min_quantity_not_above_quantity(resolver, quantity, expected_min):
    resolution = resolver.resolve(TIERS, quantity, 12.0)
    assert resolution.applied_break.min_quantity == expected_min


def test_all_units_prices_every_unit_at_matched_tier(resolver):
    resolution = resolver.resolve(TIERS, 12, 12.0, QuantityBreakMethod.ALL_UNITS)
    assert resolution.unit_price == 9.0
    assert resolution.extended_price == 108.0


def test_below_first_tier_uses_list_price(resolver):
    breaks = [QuantityBreak(min_quantity=10, price=45.0)]
    resolution = resolver.resolve(breaks, 3, 50.0)
    assert resolution.unit_price == 50.0
    assert resolution.extended_price == 150.0
    assert resolution.applied_break is None


def test_empty_breaks_use_list_price(resolver):
    resolution = resolver.resolve([], 4, 25.0)
    assert resolution.unit_price == 25.0
    assert resolution.extended_price == 100.0


def test_gap_between_tiers_falls_back_to_list_price(resolver):
    breaks = [
        QuantityBreak(min_quantity=1, max_quantity=5, price=10.0),
        QuantityBreak(min_quantity=10, price=8.0),
    ]
    resolution = resolver.resolve(breaks, 7, 12.0)
    assert resolution.unit_price == 12.0
    assert resolution.applied_break is None


def test_discount_percent_applies_when_price_absent(resolver):
    breaks = [QuantityBreak(min_quantity=5, discount_percent=10.0)]
    resolution = resolver.resolve(breaks, 5, 200.0)
    assert resolution.unit_price == pytest.approx(180.0)


def test_explicit_price_wins_over_discount_percent(resolver):
    breaks = [QuantityBreak(min_quantity=5, price=150.0, discount_percent=10.0)]
    resolution = resolver.resolve(breaks, 5, 200.0)
    assert resolution.unit_price == 150.0


def test_incremental_prices_each_unit_at_its_own_tier(resolver):
    resolution = resolver.resolve(TIERS, 25, 12.0, QuantityBreakMethod.INCREMENTAL)
    # 9 x 10 + 10 x 9 + 6 x 8
    assert resolution.extended_price == pytest.approx(228.0)
    assert resolution.unit_price == pytest.approx(228.0 / 25)
    assert resolution.applied_break.min_quantity == 20


def test_incremental_units_below_first_tier_at_list_price(resolver):
    breaks = [QuantityBreak(min_quantity=10, price=45.0)]
    resolution = resolver.resolve(breaks, 12, 50.0, QuantityBreakMethod.INCREMENTAL)
    assert resolution.extended_price == pytest.approx(9 * 50.0 + 3 * 45.0)


def test_incremental_without_reaching_any_tier(resolver):
    breaks = [QuantityBreak(min_quantity=10, price=45.0)]
    resolution = resolver.resolve(breaks, 4, 50.0, QuantityBreakMethod.INCREMENTAL)
    assert resolution.extended_price == pytest.approx(200.0)
    assert resolution.applied_break is None


def test_validate_accepts_sorted_tiers():
    validate_breaks(TIERS)


def test_validate_rejects_unsorted_tiers():
    with pytest.raises(ValidationError):
        validate_breaks([QuantityBreak(min_quantity=10, price=9.0), QuantityBreak(min_quantity=1, price=10.0)])


def test_validate_rejects_overlapping_tiers():
    with pytest.raises(ValidationError, match="overlaps"):
        validate_breaks([
            QuantityBreak(min_quantity=1, max_quantity=10, price=10.0),
            QuantityBreak(min_quantity=10, price=9.0),
        ])


def test_validate_requires_price_or_discount():
    with pytest.raises(ValidationError):
        validate_breaks([QuantityBreak(min_quantity=1)])


def test_validate_rejects_discount_out_of_range():
    with pytest.raises(ValidationError):
        validate_breaks([QuantityBreak(min_quantity=1, discount_percent=120.0)])
