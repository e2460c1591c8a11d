"""
전략 파라미터 (런타임).

[ 역할 ]
    utils/config.py::StrategyConfig(파일 설정)에서 생성되어 프로세스 수명 동안 유지되는
    변경 가능한 전략 파라미터. 외부(CLI -p 옵션 등)에서 스텝 실행과 동시에 바뀔 수 있으므로
    필드 단위로 락을 잡고, 전략은 스텝 시작 시 snapshot()으로 고정된 값을 읽는다.

[ 파라미터 ]
    min_dividend_yield:      최소 배당수익률 (%) ≥ 0
    sufficient_profit:       청산 기준 수익률 (%) ≥ 0
    max_position_percentage: 종목당 최대 비중 (%) 0~100
    allowed_instrument_ids:  매매 대상 FIGI 목록 (순서 유지, 중복 제거)
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Iterable

from dividend_robot.core.market_access import MarketAccess
from dividend_robot.utils.config import StrategyConfig

logger = logging.getLogger("dividend_robot.strategy")


@dataclass(frozen=True)
class StrategyParams:
    """스텝 한 번 동안 사용하는 파라미터 스냅샷."""
    min_dividend_yield: float
    sufficient_profit: float
    max_position_percentage: float
    allowed_instrument_ids: tuple[str, ...]


def _parse_ids(value: str | Iterable[str]) -> tuple[str, ...]:
    """공백 구분 문자열 또는 목록 → 중복 없는 튜플 (첫 등장 순서 유지)."""
    if isinstance(value, str):
        value = value.split()
    return tuple(dict.fromkeys(v.strip() for v in value if v and v.strip()))


class StrategyConfiguration:
    """검증된 setter로만 변경되는 전략 파라미터."""

    # 필드 이름 → (표시 이름, 검증 함수)
    VALIDATORS = {
        "min_dividend_yield": ("minimal dividend yield", lambda v: v >= 0),
        "sufficient_profit": ("sufficient profit", lambda v: v >= 0),
        "max_position_percentage": ("max position percentage", lambda v: 0 <= v <= 100),
    }

    def __init__(
        self,
        min_dividend_yield: float = 5.0,
        sufficient_profit: float = 3.0,
        max_position_percentage: float = 20.0,
        allowed_instrument_ids: str | Iterable[str] = (),
    ):
        self._lock = threading.Lock()
        self._values: dict[str, Any] = {}
        self.min_dividend_yield = min_dividend_yield
        self.sufficient_profit = sufficient_profit
        self.max_position_percentage = max_position_percentage
        self.allowed_instrument_ids = allowed_instrument_ids

    @classmethod
    def from_config(cls, config: StrategyConfig) -> "StrategyConfiguration":
        return cls(
            min_dividend_yield=config.min_dividend_yield,
            sufficient_profit=config.sufficient_profit,
            max_position_percentage=config.max_position_percentage,
            allowed_instrument_ids=config.allowed_figis,
        )

    def _get(self, name: str) -> Any:
        with self._lock:
            return self._values[name]

    def _set_number(self, name: str, value: float) -> None:
        label, check = self.VALIDATORS[name]
        value = float(value)
        if not check(value):
            raise ValueError(f"Value for {label} is not valid: {value}")
        with self._lock:
            self._values[name] = value

    @property
    def min_dividend_yield(self) -> float:
        return self._get("min_dividend_yield")

    @min_dividend_yield.setter
    def min_dividend_yield(self, value: float) -> None:
        self._set_number("min_dividend_yield", value)

    @property
    def sufficient_profit(self) -> float:
        return self._get("sufficient_profit")

    @sufficient_profit.setter
    def sufficient_profit(self, value: float) -> None:
        self._set_number("sufficient_profit", value)

    @property
    def max_position_percentage(self) -> float:
        return self._get("max_position_percentage")

    @max_position_percentage.setter
    def max_position_percentage(self, value: float) -> None:
        self._set_number("max_position_percentage", value)

    @property
    def allowed_instrument_ids(self) -> tuple[str, ...]:
        return self._get("allowed_instrument_ids")

    @allowed_instrument_ids.setter
    def allowed_instrument_ids(self, value: str | Iterable[str]) -> None:
        ids = _parse_ids(value)
        with self._lock:
            self._values["allowed_instrument_ids"] = ids

    def snapshot(self) -> StrategyParams:
        with self._lock:
            return StrategyParams(**self._values)

    def update_from_strings(self, values: dict[str, str | None]) -> list[str]:
        """문자열 값으로 숫자 파라미터 일괄 변경. 필드별로 독립 적용하고 오류 메시지 목록 반환.

        빈 값/None은 무시한다. 종목 목록은 거래소 검증이 필요하므로
        apply_instrument_ids()를 사용한다.
        """
        errors = []
        for name, raw in values.items():
            if name not in self.VALIDATORS:
                errors.append(f"Unknown parameter: {name}")
                continue
            if raw is None or str(raw).strip() == "":
                continue
            label, _ = self.VALIDATORS[name]
            try:
                number = float(raw)
            except (TypeError, ValueError):
                errors.append(f"Could not parse value for {label}")
                continue
            try:
                self._set_number(name, number)
            except ValueError:
                errors.append(f"Value for {label} is not valid")
        return errors

    def apply_instrument_ids(
        self,
        value: str | Iterable[str],
        market: MarketAccess,
        exchange: str = "MOEX",
    ) -> list[str]:
        """종목 목록을 거래소 기준으로 검증 후 적용. 유효한 종목이 하나라도 있으면 교체한다."""
        ids = _parse_ids(value)
        if not ids:
            return []
        error = market.validate_credentials()
        if error is not None:
            return [f"Cannot validate figis because validation of API token returned error: {error}"]

        valid, invalid = [], []
        for instrument_id in ids:
            try:
                instrument = market.get_instrument(instrument_id)
            except Exception:
                logger.info(f"Could not find share for figi={instrument_id}")
                invalid.append(instrument_id)
                continue
            if instrument.exchange == exchange:
                valid.append(instrument_id)
            else:
                logger.info(f"{instrument_id}: 거래소 {instrument.exchange} != {exchange}")
                invalid.append(instrument_id)

        if valid:
            self.allowed_instrument_ids = valid
        if invalid:
            return [f"Skipped some figis because could not find them in {exchange}: {' '.join(invalid)}"]
        return []

    def to_dict(self) -> dict[str, Any]:
        params = self.snapshot()
        return {
            "allowed_instrument_ids": " ".join(params.allowed_instrument_ids),
            "min_dividend_yield": params.min_dividend_yield,
            "sufficient_profit": params.sufficient_profit,
            "max_position_percentage": params.max_position_percentage,
        }
