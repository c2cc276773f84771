from datetime import datetime, timezone
from decimal import Decimal

import pytest

from utils.clock import add_months, period_of, period_start, seconds_until_next_period
from utils.units import COIN, format_units, mul_div, to_units, units_value


def test_to_units_parses_strings_and_decimals():
    assert to_units("15") == 15 * COIN
    assert to_units("0.00000001") == 1
    assert to_units(Decimal("2.5")) == 250_000_000


@pytest.mark.parametrize("bad", ["abc", "NaN", "Infinity", ""])
def test_to_units_rejects_invalid_input(bad):
    with pytest.raises(ValueError):
        to_units(bad)


def test_format_units_uses_eight_places():
    assert format_units(15 * COIN) == "15.00000000"
    assert format_units(1) == "0.00000001"


def test_mul_div_rounds_half_up():
    assert mul_div(50 * COIN, Decimal("30"), Decimal("100")) == 15 * COIN
    assert mul_div(1, Decimal("1"), Decimal("2")) == 1
    assert mul_div(1, Decimal("1"), Decimal("3")) == 0
    with pytest.raises(ZeroDivisionError):
        mul_div(1, Decimal("1"), Decimal("0"))


def test_units_value_is_exact():
    assert units_value(to_units("0.5"), Decimal("98000.00")) == Decimal("49000")


def test_daily_periods_align_to_utc_midnight():
    before = datetime(2025, 3, 1, 23, 59, 59, tzinfo=timezone.utc)
    after = datetime(2025, 3, 2, 0, 0, tzinfo=timezone.utc)
    assert period_of(after, 86400) == period_of(before, 86400) + 1
    assert period_start(period_of(after, 86400), 86400) == after
    assert seconds_until_next_period(before, 86400) == 1


def test_add_months_clamps_to_month_end():
    opened = datetime(2025, 1, 31, 10, 0, tzinfo=timezone.utc)
    assert add_months(opened, 1) == datetime(2025, 2, 28, 10, 0, tzinfo=timezone.utc)
    assert add_months(opened, 12) == datetime(2026, 1, 31, 10, 0, tzinfo=timezone.utc)
    assert add_months(opened, 13) == datetime(2026, 2, 28, 10, 0, tzinfo=timezone.utc)
