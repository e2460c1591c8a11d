"""테스트 공용 픽스처. 메모리 위에서 동작하는 FakeMarketAccess."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pandas as pd
import pytest

from dividend_robot.brokers.history import FrameHistoryProvider
from dividend_robot.core.market_access import (
    Dividend,
    Instrument,
    MarketAccess,
    Order,
    PortfolioPosition,
    PortfolioSnapshot,
)
from dividend_robot.strategies import PreDividendsStrategy, StrategyConfiguration

NOW = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)


class FakeMarketAccess(MarketAccess):
    """주문을 기록만 하는 시장. 테스트마다 가격/배당/포트폴리오를 직접 채운다."""

    mode_name = "fake"

    def __init__(self, now: datetime = NOW):
        self._now = now
        self.working_hours = True
        self.credentials_error: Optional[str] = None
        self.portfolio = PortfolioSnapshot(total_cash=Decimal(0), total_shares=Decimal(0))
        self.instruments: dict[str, Instrument] = {}
        self.dividends: dict[str, list[Dividend]] = {}
        self.prices: dict[str, Decimal] = {}
        self.open_orders: list[Order] = []

        self.buys: list[tuple[str, int]] = []
        self.sells: list[tuple[str, int]] = []
        self.cancelled: list[str] = []
        self.portfolio_calls = 0

        self.buy_error: Optional[Exception] = None
        self.sell_errors: dict[str, Exception] = {}
        self.dividend_errors: dict[str, Exception] = {}

    def add_instrument(
        self,
        instrument_id: str,
        price: Optional[str] = None,
        lot_size: int = 10,
        currency: str = "rub",
        exchange: str = "MOEX",
        dividend: Optional[str] = None,
        last_buy: Optional[datetime] = None,
        dividend_currency: Optional[str] = None,
    ) -> None:
        self.instruments[instrument_id] = Instrument(
            instrument_id, instrument_id.lower(), lot_size, currency, exchange,
        )
        if price is not None:
            self.prices[instrument_id] = Decimal(price)
        if dividend is not None:
            self.dividends[instrument_id] = [Dividend(
                last_buy_date=last_buy or self._now + timedelta(days=1),
                net_amount=Decimal(dividend),
                currency=dividend_currency or currency,
            )]

    def hold(self, instrument_id: str, lots: int, expected_yield: str, lot_size: int = 10) -> None:
        self.portfolio.positions.append(PortfolioPosition(
            instrument_id=instrument_id,
            quantity=lots * lot_size,
            quantity_lots=lots,
            expected_yield=Decimal(expected_yield),
        ))

    def get_portfolio(self) -> PortfolioSnapshot:
        self.portfolio_calls += 1
        return self.portfolio

    def is_working_hours(self) -> bool:
        return self.working_hours

    def get_instrument(self, instrument_id: str) -> Instrument:
        if instrument_id not in self.instruments:
            raise KeyError(instrument_id)
        return self.instruments[instrument_id]

    def get_dividends(self, instrument_id: str) -> list[Dividend]:
        if instrument_id in self.dividend_errors:
            raise self.dividend_errors[instrument_id]
        return self.dividends.get(instrument_id, [])

    def get_last_price(self, instrument_id: str) -> Optional[Decimal]:
        return self.prices.get(instrument_id)

    def now(self) -> datetime:
        return self._now

    def buy_market(self, instrument_id: str, lots: int) -> str:
        if self.buy_error is not None:
            raise self.buy_error
        self.buys.append((instrument_id, lots))
        return f"buy-{len(self.buys)}"

    def sell_market(self, instrument_id: str, lots: int) -> str:
        if instrument_id in self.sell_errors:
            raise self.sell_errors[instrument_id]
        self.sells.append((instrument_id, lots))
        return f"sell-{len(self.sells)}"

    def get_open_orders(self) -> list[Order]:
        return list(self.open_orders)

    def cancel_order(self, order_id: str) -> None:
        self.cancelled.append(order_id)

    def validate_credentials(self) -> Optional[str]:
        return self.credentials_error


@pytest.fixture
def market() -> FakeMarketAccess:
    return FakeMarketAccess()


@pytest.fixture
def configuration() -> StrategyConfiguration:
    return StrategyConfiguration(
        min_dividend_yield=5,
        sufficient_profit=3,
        max_position_percentage=20,
        allowed_instrument_ids=["X"],
    )


@pytest.fixture
def strategy(configuration, market) -> PreDividendsStrategy:
    return PreDividendsStrategy(configuration, market)


def daily_candles(start: str, end: str, price: float, hour: int = 7) -> pd.DataFrame:
    """고가=저가=price인 매일 봉 (중간가가 정확히 price)."""
    times = pd.date_range(start, end, freq="D", tz="UTC") + pd.Timedelta(hours=hour)
    return pd.DataFrame({
        "time": times,
        "open": price,
        "high": price,
        "low": price,
        "close": price,
        "volume": 1000,
    })


@pytest.fixture
def frame_provider() -> FrameHistoryProvider:
    """CTRL(거래일 기준 종목)만 들어 있는 과거 데이터."""
    provider = FrameHistoryProvider()
    provider.add_instrument(Instrument("CTRL", "ctrl", 1, "rub", "MOEX"))
    provider.load_candles("CTRL", daily_candles("2024-01-01", "2024-02-28", 50.0))
    return provider
