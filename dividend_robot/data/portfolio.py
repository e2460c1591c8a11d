"""
가상(페이퍼) 포트폴리오 관리 모듈.

[ 역할 ]
    백테스트 재생 시장의 현금, 보유 종목(Position), 거래 기록(TradeRecord)을 관리.
    한 종목에는 포지션을 하나만 둔다 (추가 매수 불가, 공매도 불가).

[ 주요 클래스 ]
    Position    - 개별 종목의 주 수/로트 수/평균 매입가
    TradeRecord - 개별 거래 내역 (매수/매도, 매도 시 손익 포함)
    Portfolio   - 전체 포트폴리오 (현금 + 포지션들 + 거래내역)

[ 호출하는 곳 ]
    - brokers/backtest_broker.py::ReplayMarketAccess.buy_market/sell_market()
    - backtest/metrics.py에서 portfolio.trade_history로 거래 통계 계산
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from dividend_robot.core.market_access import (
    DuplicatePositionError,
    InsufficientFundsError,
    NoSuchPositionError,
)


@dataclass
class Position:
    """개별 종목 포지션."""
    instrument_id: str
    quantity: int               # 보유 주 수
    quantity_lots: int          # 보유 로트 수
    avg_price: Decimal          # 1주당 매입가


@dataclass
class TradeRecord:
    """개별 거래 기록. metrics.py에서 승률/수익 계산에 사용됨."""
    time: datetime
    instrument_id: str
    side: str           # "buy" or "sell"
    lots: int
    quantity: int
    price: Decimal      # 1주당 체결가
    profit: Decimal = Decimal(0)       # 실현 손익 (매도 시에만)
    profit_rate: Decimal = Decimal(0)  # 수익률 % (매도 시에만)


class Portfolio:
    """포트폴리오 관리 클래스. ReplayMarketAccess가 소유한다."""

    def __init__(self, initial_cash: Decimal):
        self.initial_cash = Decimal(initial_cash)
        self.cash = self.initial_cash
        self.positions: dict[str, Position] = {}    # instrument_id → Position
        self.trade_history: list[TradeRecord] = []

    def reset(self) -> None:
        """초기 자금, 빈 포지션으로 되돌린다."""
        self.cash = self.initial_cash
        self.positions.clear()
        self.trade_history.clear()

    def execute_buy(
        self,
        instrument_id: str,
        lots: int,
        lot_size: int,
        price: Decimal,
        time: datetime,
    ) -> None:
        """매수 실행.

        Raises:
            InsufficientFundsError: 매수 금액 > 현금
            DuplicatePositionError: 이미 보유 중
        """
        quantity = lots * lot_size
        total_cost = price * quantity
        if total_cost > self.cash:
            raise InsufficientFundsError(
                f"Not enough cash for {instrument_id}: {total_cost} > {self.cash}"
            )
        if instrument_id in self.positions:
            raise DuplicatePositionError(f"Cannot buy new shares to existing position {instrument_id}")

        self.cash -= total_cost
        self.positions[instrument_id] = Position(
            instrument_id=instrument_id,
            quantity=quantity,
            quantity_lots=lots,
            avg_price=price,
        )
        self.trade_history.append(TradeRecord(
            time=time,
            instrument_id=instrument_id,
            side="buy",
            lots=lots,
            quantity=quantity,
            price=price,
        ))

    def execute_sell(
        self,
        instrument_id: str,
        lots: int,
        lot_size: int,
        price: Decimal,
        time: datetime,
    ) -> None:
        """매도 실행. 보유 로트 이상은 팔 수 없다.

        Raises:
            NoSuchPositionError: 보유하지 않은 종목 (Shorts are not allowed)
        """
        position = self.positions.get(instrument_id)
        if position is None:
            raise NoSuchPositionError(f"Shorts are not allowed: {instrument_id}")

        lots = min(lots, position.quantity_lots)
        quantity = lots * lot_size
        self.cash += price * quantity

        profit = (price - position.avg_price) * quantity
        profit_rate = (
            (price - position.avg_price) / position.avg_price * 100
            if position.avg_price > 0 else Decimal(0)
        )

        position.quantity_lots -= lots
        position.quantity -= quantity
        if position.quantity_lots <= 0:
            del self.positions[instrument_id]

        self.trade_history.append(TradeRecord(
            time=time,
            instrument_id=instrument_id,
            side="sell",
            lots=lots,
            quantity=quantity,
            price=price,
            profit=profit,
            profit_rate=profit_rate,
        ))

    def get_summary(self) -> dict[str, Any]:
        """포트폴리오 요약."""
        return {
            "initial_cash": self.initial_cash,
            "current_cash": self.cash,
            "num_holdings": len(self.positions),
            "num_trades": len(self.trade_history),
        }
