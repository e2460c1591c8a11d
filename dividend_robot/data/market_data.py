"""
과거 데이터 캐싱 모듈.

[ 역할 ]
    HistoryProvider를 감싸서 종목별 캐싱 제공.
    백테스트는 하루씩 시각을 옮기며 같은 종목을 수백 번 조회하므로,
    종목별 일봉/배당/종목정보를 첫 조회 시 한 번만 가져오고 실행 동안 재사용한다.

[ 의존성 ]
    - core/history_provider.py::HistoryProvider (데이터 소스 추상화)

[ 호출하는 곳 ]
    - brokers/backtest_broker.py::ReplayMarketAccess
"""

import logging
import threading
from datetime import datetime, timedelta
from decimal import ROUND_HALF_DOWN, Decimal
from typing import Optional

import pandas as pd

from dividend_robot.core.history_provider import HistoryProvider
from dividend_robot.core.market_access import Dividend, Instrument
from dividend_robot.utils.money import PRICE_PRECISION, to_decimal

logger = logging.getLogger("dividend_robot.backtest")

ONE_DAY = timedelta(days=1)


class MarketDataManager:
    """HistoryProvider 위에 종목별 캐싱 레이어를 추가한 매니저.

    사용 예:
        manager = MarketDataManager(provider)
        manager.set_window(start, end)     # 재생 구간 (캐시 조회 범위)
        price = manager.get_mid_price("BBG004730RP0", now)
    """

    def __init__(self, provider: HistoryProvider):
        self.provider = provider
        self._start: Optional[datetime] = None
        self._end: Optional[datetime] = None
        self._candles: dict[str, pd.DataFrame] = {}
        self._dividends: dict[str, list[Dividend]] = {}
        self._instruments: dict[str, Instrument] = {}
        self._lock = threading.Lock()

    def set_window(self, start: datetime, end: datetime) -> None:
        """조회 구간 설정. 구간이 바뀌면 캐시를 비운다."""
        if (start, end) != (self._start, self._end):
            self.clear_cache()
        self._start = start
        self._end = end

    def _window(self) -> tuple[datetime, datetime]:
        if self._start is None or self._end is None:
            raise ValueError("Replay window is not set")
        return self._start, self._end

    def get_candles(self, instrument_id: str) -> pd.DataFrame:
        with self._lock:
            if instrument_id not in self._candles:
                start, end = self._window()
                # 첫 재생일의 봉은 start보다 앞서 시작할 수 있다
                self._candles[instrument_id] = self.provider.get_candles(instrument_id, start - ONE_DAY, end)
            return self._candles[instrument_id]

    def get_dividends(self, instrument_id: str) -> list[Dividend]:
        with self._lock:
            if instrument_id not in self._dividends:
                start, end = self._window()
                self._dividends[instrument_id] = self.provider.get_dividends(instrument_id, start, end)
            return self._dividends[instrument_id]

    def get_instrument(self, instrument_id: str) -> Instrument:
        with self._lock:
            if instrument_id not in self._instruments:
                self._instruments[instrument_id] = self.provider.get_instrument(instrument_id)
            return self._instruments[instrument_id]

    def get_mid_price(self, instrument_id: str, now: datetime) -> Optional[Decimal]:
        """now 기준 하루 이내(0 <= now - 봉시각 < 1일)에 시작한 일봉의 (고가+저가)/2."""
        df = self.get_candles(instrument_id)
        if df.empty:
            return None
        age = pd.Timestamp(now) - df["time"]
        today = df[(age >= pd.Timedelta(0)) & (age < pd.Timedelta(ONE_DAY))]
        if today.empty:
            return None
        row = today.iloc[0]
        mid = (to_decimal(float(row["high"])) + to_decimal(float(row["low"]))) / 2
        return mid.quantize(PRICE_PRECISION, rounding=ROUND_HALF_DOWN)

    def clear_cache(self) -> None:
        """캐시 초기화."""
        with self._lock:
            self._candles.clear()
            self._dividends.clear()
            self._instruments.clear()
