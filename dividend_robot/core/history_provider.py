"""
과거 시세/배당 데이터 제공 추상 클래스 정의.

[ 역할 ]
    백테스트 재생에 필요한 일봉(캔들), 배당 이력, 종목 정보를 제공하는 인터페이스.
    데이터 소스(증권사 API, 메모리 DataFrame 등)에 독립적으로 재생 시장에 데이터 공급.

[ 구현체 ]
    - brokers/history.py::InvestApiHistoryProvider (증권사 API 조회)
    - brokers/history.py::FrameHistoryProvider     (DataFrame 기반, 테스트/샘플용)

[ 호출하는 곳 ]
    - data/market_data.py::MarketDataManager가 이 인터페이스를 통해 조회 후 캐싱
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import pandas as pd

from dividend_robot.core.market_access import Dividend, Instrument

CANDLE_COLUMNS = ["time", "open", "high", "low", "close", "volume"]


class HistoryProvider(ABC):
    """과거 데이터 제공 추상 클래스."""

    @abstractmethod
    def get_candles(
        self,
        instrument_id: str,
        start: datetime,
        end: datetime,
    ) -> pd.DataFrame:
        """일봉 데이터 조회.

        Args:
            instrument_id: 종목 ID (FIGI)
            start: 시작 시각
            end: 종료 시각

        Returns:
            DataFrame with columns: [time, open, high, low, close, volume]
            (time은 tz-aware UTC, 오름차순)
        """
        ...

    @abstractmethod
    def get_dividends(
        self,
        instrument_id: str,
        start: datetime,
        end: datetime,
    ) -> list[Dividend]:
        """기간 내 배당 이력 조회."""
        ...

    @abstractmethod
    def get_instrument(self, instrument_id: str) -> Instrument:
        """종목 정보 조회."""
        ...

    def validate(self) -> Optional[str]:
        """데이터 소스 접근 검증. 정상이면 None."""
        return None
