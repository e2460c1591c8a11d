"""
백테스트용 재생(Replay) 시장 접근 구현.

[ 역할 ]
    실제 주문 없이 과거 일봉/배당 데이터 위에서 매매를 시뮬레이션.
    시뮬레이션 시각(now)은 backtest/engine.py가 하루씩 옮긴다.

[ 시뮬레이션 규칙 ]
    최근가:    now 기준 하루 이내에 시작한 일봉의 (고가+저가)/2
    거래 시간: 기준 종목(control_figi)의 최근가가 있으면 거래일
    배당:      공시일 < now < 마지막 매수일 인 배당만 보인다
    주문:      즉시 전량 체결 (미체결 주문 없음), 수수료/슬리피지 없음

[ 호출하는 곳 ]
    - backtest/engine.py::BacktestEngine.run_backtest()
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from dividend_robot.core.history_provider import HistoryProvider
from dividend_robot.core.market_access import (
    Dividend,
    Instrument,
    MarketAccess,
    MarketAccessError,
    NoSuchPositionError,
    Order,
    PortfolioPosition,
    PortfolioSnapshot,
)
from dividend_robot.data.market_data import MarketDataManager
from dividend_robot.data.portfolio import Portfolio

logger = logging.getLogger("dividend_robot.backtest")


class ReplayMarketAccess(MarketAccess):
    """재생 시장. 가상 잔고로 매매하고 과거 데이터는 종목별로 캐싱한다."""

    mode_name = "backtest"

    def __init__(
        self,
        provider: HistoryProvider,
        initial_cash: float = 100_000,
        control_figi: str = "BBG004730RP0",
        wall_clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.provider = provider
        self.data = MarketDataManager(provider)
        self.portfolio = Portfolio(Decimal(str(initial_cash)))
        self.control_figi = control_figi
        self._wall_clock = wall_clock
        self._now: Optional[datetime] = None
        self._order_seq = 0

    @property
    def trade_history(self):
        return self.portfolio.trade_history

    def reset(self, start: datetime) -> None:
        """페이퍼 상태 초기화. 캐시 구간은 [start, 실제 현재 시각]."""
        self.portfolio.reset()
        self.data.set_window(start, self._wall_clock())
        self.data.clear_cache()
        self._now = start
        self._order_seq = 0

    def set_now(self, now: datetime) -> None:
        """시뮬레이션 시각 설정."""
        self._now = now

    def now(self) -> datetime:
        if self._now is None:
            raise MarketAccessError("Simulated time is not set. Call reset() first")
        return self._now

    def get_portfolio(self) -> PortfolioSnapshot:
        """보유 종목은 현재 재생 가격으로 평가 (가격이 없는 날은 매입가)."""
        total_shares = Decimal(0)
        positions = []
        for position in self.portfolio.positions.values():
            price = self.get_last_price(position.instrument_id)
            if price is None:
                price = position.avg_price
            total_shares += price * position.quantity
            expected_yield = (
                (price - position.avg_price) / position.avg_price * 100
                if position.avg_price > 0 else Decimal(0)
            )
            positions.append(PortfolioPosition(
                instrument_id=position.instrument_id,
                quantity=position.quantity,
                quantity_lots=position.quantity_lots,
                instrument_type="share",
                expected_yield=expected_yield,
            ))
        return PortfolioSnapshot(
            total_cash=self.portfolio.cash,
            total_shares=total_shares,
            positions=positions,
        )

    def is_working_hours(self) -> bool:
        return self.get_last_price(self.control_figi) is not None

    def get_instrument(self, instrument_id: str) -> Instrument:
        return self.data.get_instrument(instrument_id)

    def get_dividends(self, instrument_id: str) -> list[Dividend]:
        now = self.now()
        return [
            d for d in self.data.get_dividends(instrument_id)
            if d.declared_date is not None and d.last_buy_date is not None
            and d.declared_date < now < d.last_buy_date
        ]

    def get_last_price(self, instrument_id: str) -> Optional[Decimal]:
        return self.data.get_mid_price(instrument_id, self.now())

    def _price_for_order(self, instrument_id: str) -> Decimal:
        price = self.get_last_price(instrument_id)
        if price is None:
            raise MarketAccessError(f"No price for {instrument_id} at {self.now()}")
        return price

    def _next_order_id(self, side: str) -> str:
        self._order_seq += 1
        return f"backtest-{side}-{self._order_seq}"

    def buy_market(self, instrument_id: str, lots: int) -> str:
        price = self._price_for_order(instrument_id)
        instrument = self.get_instrument(instrument_id)
        logger.info(f"Buy {instrument_id} lots={lots} price={price}")
        self.portfolio.execute_buy(instrument_id, lots, instrument.lot_size, price, self.now())
        return self._next_order_id("buy")

    def sell_market(self, instrument_id: str, lots: int) -> str:
        if instrument_id not in self.portfolio.positions:
            raise NoSuchPositionError(f"Shorts are not allowed: {instrument_id}")
        price = self._price_for_order(instrument_id)
        instrument = self.get_instrument(instrument_id)
        logger.info(f"Sell {instrument_id} lots={lots} price={price}")
        self.portfolio.execute_sell(instrument_id, lots, instrument.lot_size, price, self.now())
        return self._next_order_id("sell")

    def get_open_orders(self) -> list[Order]:
        return []

    def cancel_order(self, order_id: str) -> None:
        pass

    def validate_credentials(self) -> Optional[str]:
        return self.provider.validate()
