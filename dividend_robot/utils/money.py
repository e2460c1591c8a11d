"""
금액/수량 변환 유틸.

[ 역할 ]
    증권사 API의 Quotation({units, nano}) / MoneyValue({currency, units, nano}) 형식과
    Decimal 사이의 변환, 그리고 전략 계산에 쓰는 반올림 규칙을 한 곳에 모은다.

[ 호출하는 곳 ]
    - brokers/invest_api.py, brokers/invest_broker.py, brokers/history.py
    - strategies/pre_dividends_strategy.py (수익률 반올림)
    - backtest/engine.py (최종 수익률 올림)
"""

from datetime import datetime, timezone
from decimal import ROUND_CEILING, ROUND_DOWN, ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal
from typing import Any, Optional

import pandas as pd

NANO = Decimal("1000000000")
YIELD_PRECISION = Decimal("0.000001")   # 배당수익률 비교 정밀도 (소수 6자리)
PRICE_PRECISION = Decimal("0.000000001")  # Quotation nano 정밀도
PERCENT_PRECISION = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """float/int/str을 Decimal로. float은 문자열을 거쳐 이진 오차를 피한다."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quotation_to_decimal(quotation: Optional[dict[str, Any]]) -> Decimal:
    """{"units": "12", "nano": 500000000} → Decimal("12.5"). 값이 없으면 0."""
    if not quotation:
        return Decimal(0)
    units = Decimal(str(quotation.get("units", 0) or 0))
    nano = Decimal(int(quotation.get("nano", 0) or 0))
    return units + nano / NANO


def money_currency(money: Optional[dict[str, Any]]) -> str:
    """MoneyValue의 통화 코드 (소문자)."""
    if not money:
        return ""
    return str(money.get("currency", "")).lower()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """RFC3339 문자열 → tz-aware UTC datetime. protobuf 기본값(1970-01-01)은 None 취급."""
    if not value:
        return None
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    ts = ts.tz_convert("UTC")
    if ts.value <= 0:
        return None
    return ts.to_pydatetime()


def format_timestamp(value: datetime) -> str:
    """datetime → API 요청용 RFC3339 문자열 (UTC, Z 접미사)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def round_half_up(value: Decimal, precision: Decimal = YIELD_PRECISION) -> Decimal:
    return value.quantize(precision, rounding=ROUND_HALF_UP)


def round_half_down(value: Decimal, precision: Decimal = YIELD_PRECISION) -> Decimal:
    return value.quantize(precision, rounding=ROUND_HALF_DOWN)


def round_up(value: Decimal, precision: Decimal = PERCENT_PRECISION) -> Decimal:
    return value.quantize(precision, rounding=ROUND_CEILING)


def floor_div(amount: Decimal, unit: Decimal) -> int:
    """amount // unit (0 방향 버림). 로트 수 계산용."""
    return int((amount / unit).to_integral_value(rounding=ROUND_DOWN))
