"""금액 변환/반올림 유틸 테스트."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from dividend_robot.utils.money import (
    floor_div,
    format_timestamp,
    parse_timestamp,
    quotation_to_decimal,
    round_half_down,
    round_half_up,
    round_up,
)


@pytest.mark.parametrize("quotation, expected", [
    ({"units": "12", "nano": 500000000}, Decimal("12.5")),
    ({"units": "-1", "nano": -250000000}, Decimal("-1.25")),
    ({"units": "3"}, Decimal("3")),
    (None, Decimal("0")),
])
def test_quotation_to_decimal(quotation, expected):
    assert quotation_to_decimal(quotation) == expected


def test_parse_timestamp():
    assert parse_timestamp("2024-07-10T00:00:00Z") == datetime(2024, 7, 10, tzinfo=timezone.utc)
    assert parse_timestamp("2024-07-10T03:00:00+03:00") == datetime(2024, 7, 10, tzinfo=timezone.utc)
    assert parse_timestamp("1970-01-01T00:00:00Z") is None
    assert parse_timestamp("") is None


def test_format_timestamp_converts_to_utc():
    moscow = timezone(timedelta(hours=3))
    assert format_timestamp(datetime(2024, 1, 1, 3, 0, tzinfo=moscow)) == "2024-01-01T00:00:00Z"


def test_rounding():
    assert round_half_up(Decimal("0.0499995")) == Decimal("0.050000")
    assert round_half_down(Decimal("0.0499995")) == Decimal("0.049999")
    assert round_up(Decimal("1.001")) == Decimal("1.01")
    assert floor_div(Decimal("999.99"), Decimal("100")) == 9
