"""
과거 데이터 제공자 구현.

[ 포함 클래스 ]
    InvestApiHistoryProvider - core/history_provider.py::HistoryProvider 구현체
                               증권사 API에서 일봉/배당/종목 정보를 조회
    FrameHistoryProvider     - 미리 로드된 DataFrame/목록에서 데이터 제공
                               (테스트, 샘플 데이터 백테스트용)

[ 호출하는 곳 ]
    - data/market_data.py::MarketDataManager가 감싸서 종목별로 캐싱
    - run_robot.py --source invest | sample
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

import pandas as pd

from dividend_robot.brokers.invest_api import InvestApiClient
from dividend_robot.brokers.invest_broker import parse_dividend, parse_instrument
from dividend_robot.core.history_provider import CANDLE_COLUMNS, HistoryProvider
from dividend_robot.core.market_access import Dividend, Instrument, InvestApiError
from dividend_robot.utils.money import parse_timestamp, quotation_to_decimal

logger = logging.getLogger("dividend_robot.broker")

# 일봉 조회 1회당 최대 기간 (API 제한)
MAX_CANDLE_WINDOW = timedelta(days=365)


def _empty_candles() -> pd.DataFrame:
    return pd.DataFrame(columns=CANDLE_COLUMNS)


# ─── 증권사 API ─────────────────────────────────────────────────────────────

class InvestApiHistoryProvider(HistoryProvider):
    """증권사 API 기반 과거 데이터 제공자."""

    def __init__(self, client: InvestApiClient):
        self.client = client

    def get_candles(self, instrument_id: str, start: datetime, end: datetime) -> pd.DataFrame:
        """기간을 MAX_CANDLE_WINDOW 단위로 나눠 조회 후 합친다."""
        rows = []
        chunk_start = start
        while chunk_start < end:
            chunk_end = min(chunk_start + MAX_CANDLE_WINDOW, end)
            for candle in self.client.get_daily_candles(instrument_id, chunk_start, chunk_end):
                rows.append({
                    "time": parse_timestamp(candle.get("time")),
                    "open": float(quotation_to_decimal(candle.get("open"))),
                    "high": float(quotation_to_decimal(candle.get("high"))),
                    "low": float(quotation_to_decimal(candle.get("low"))),
                    "close": float(quotation_to_decimal(candle.get("close"))),
                    "volume": int(candle.get("volume", 0) or 0),
                })
            chunk_start = chunk_end

        if not rows:
            logger.info(f"{instrument_id}: {start} ~ {end} 일봉 없음")
            return _empty_candles()
        df = pd.DataFrame(rows, columns=CANDLE_COLUMNS)
        df["time"] = pd.to_datetime(df["time"], utc=True)
        return df.drop_duplicates("time").sort_values("time").reset_index(drop=True)

    def get_dividends(self, instrument_id: str, start: datetime, end: datetime) -> list[Dividend]:
        return [parse_dividend(d) for d in self.client.get_dividends(instrument_id, start, end)]

    def get_instrument(self, instrument_id: str) -> Instrument:
        return parse_instrument(self.client.share_by_figi(instrument_id))

    def validate(self) -> Optional[str]:
        if not self.client.token:
            return "Token is not configured. Please, configure it in config.yaml"
        try:
            self.client.get_accounts()
        except InvestApiError as e:
            logger.info(f"Could not access history API for backtest: {e}")
            return "Token is not valid"
        return None


# ─── DataFrame 기반 ─────────────────────────────────────────────────────────

class FrameHistoryProvider(HistoryProvider):
    """DataFrame 기반 과거 데이터 제공자.

    사용법:
        provider = FrameHistoryProvider()
        provider.add_instrument(Instrument("FIGI", "TICK", 10, "rub", "MOEX"))
        provider.load_candles("FIGI", candles_df)       # columns: time, open, high, low, close, volume
        provider.load_dividends("FIGI", [Dividend(...)])
    """

    def __init__(self):
        self._candles: dict[str, pd.DataFrame] = {}        # instrument_id → 일봉 DataFrame
        self._dividends: dict[str, list[Dividend]] = {}    # instrument_id → 배당 이력
        self._instruments: dict[str, Instrument] = {}
        self.calls: dict[str, int] = {}                     # 메서드별 호출 횟수 (캐싱 확인용)

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    def add_instrument(self, instrument: Instrument) -> None:
        self._instruments[instrument.instrument_id] = instrument

    def load_candles(self, instrument_id: str, df: pd.DataFrame) -> None:
        df = df.copy()
        df["time"] = pd.to_datetime(df["time"], utc=True)
        self._candles[instrument_id] = df.sort_values("time").reset_index(drop=True)

    def load_dividends(self, instrument_id: str, dividends: list[Dividend]) -> None:
        self._dividends[instrument_id] = list(dividends)

    def get_candles(self, instrument_id: str, start: datetime, end: datetime) -> pd.DataFrame:
        self._count("get_candles")
        if instrument_id not in self._candles:
            return _empty_candles()
        df = self._candles[instrument_id]
        mask = (df["time"] >= pd.Timestamp(start)) & (df["time"] <= pd.Timestamp(end))
        return df[mask].copy().reset_index(drop=True)

    def get_dividends(self, instrument_id: str, start: datetime, end: datetime) -> list[Dividend]:
        self._count("get_dividends")
        return [
            d for d in self._dividends.get(instrument_id, [])
            if d.last_buy_date is None or d.last_buy_date >= start
        ]

    def get_instrument(self, instrument_id: str) -> Instrument:
        self._count("get_instrument")
        if instrument_id not in self._instruments:
            raise KeyError(f"Unknown instrument: {instrument_id}")
        return self._instruments[instrument_id]
