"""
배당 전 매수(Pre-Dividends) 전략 구현.

[ 역할 ]
    "배당 기준일 전에 배당수익률이 충분한 종목을 사고, 충분히 오르거나
    마지막 매수일이 지나면 판다" 전략. 하루 한 번 step()이 호출된다.

[ 전략 흐름 ] step()
    1. 거래 시간이 아니면 아무것도 하지 않고 성공 반환
    2. 포트폴리오 조회
    3. find_dividend_ideas() → 매력적인 종목 집합
    4. 미체결 주문 전부 취소
    5. _close_outdated_positions(): 매력 종목이 아닌 보유 주식 청산
         ├── 기대수익률 <= sufficient_profit 이고 마지막 매수일 전이면 → 보유 유지
         └── 그 외 → 전량 시장가 매도 (종목별 오류는 로그 후 건너뜀)
    6. _open_new_positions(): 보유하지 않은 매력 종목 매수
         └── 오류 발생 시 스텝 전체 실패

[ 호출하는 곳 ]
    - runner/robot_runner.py::RobotRunner (실계좌/샌드박스, 하루 1회 + 재시도)
    - backtest/engine.py::BacktestEngine (과거 데이터 재생, 매일 1회)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from dividend_robot.core.market_access import (
    MarketAccess,
    MarketAccessError,
    PortfolioSnapshot,
)
from dividend_robot.strategies.configuration import StrategyConfiguration, StrategyParams
from dividend_robot.utils.money import floor_div, round_half_down, round_half_up, to_decimal

logger = logging.getLogger("dividend_robot.strategy")

# 한 종목 매수에 쓸 수 있는 가용 현금 비율 상한 (가격 변동/수수료 여유분)
CASH_SAFETY_RATIO = Decimal("0.95")


@dataclass
class DividendIdea:
    """find_dividend_ideas()의 결과. 한 스텝 안에서만 사용된다."""
    instrument_id: str
    ticker: str
    dividend_yield: Decimal   # 비율 (0.07 = 7%)
    current_price: Decimal
    dividend_net: Decimal


class PreDividendsStrategy:
    """배당 전 매수 전략. market에 바인딩된 시장에 대해 step()을 실행한다."""

    def __init__(
        self,
        configuration: StrategyConfiguration,
        market: Optional[MarketAccess] = None,
    ):
        self.configuration = configuration
        self.market = market
        self.last_error: Optional[str] = None   # 마지막 실패 스텝의 오류 메시지

    def step(self) -> bool:
        """전략 한 사이클 실행.

        Returns:
            성공하면 True, 어떤 오류든 발생하면 False (예외를 밖으로 던지지 않는다)
        """
        try:
            if self.market is None:
                raise MarketAccessError("Market is not bound")
            if not self.market.is_working_hours():
                logger.info("Out of working hours")
                return True

            params = self.configuration.snapshot()
            portfolio = self.market.get_portfolio()
            ideas = self.find_dividend_ideas(params)
            idea_ids = [idea.instrument_id for idea in ideas]

            self._close_pending_orders()
            self._close_outdated_positions(portfolio, set(idea_ids), params)
            self._open_new_positions(portfolio, idea_ids, params)
            self.last_error = None
            return True
        except Exception as e:
            logger.exception(f"스텝 실패: {e}")
            self.last_error = str(e) or type(e).__name__
            return False

    def find_dividend_ideas(self, params: Optional[StrategyParams] = None) -> list[DividendIdea]:
        """허용 종목 중 배당수익률이 min_dividend_yield 이상인 종목 목록 (설정 순서 유지)."""
        params = params or self.configuration.snapshot()
        now = self.market.now()
        min_yield = round_half_down(to_decimal(params.min_dividend_yield) / 100)

        ideas = []
        for instrument_id in params.allowed_instrument_ids:
            try:
                idea = self._evaluate(instrument_id, now, min_yield)
            except Exception:
                logger.exception(f"Failed to calculate idea for figi={instrument_id}")
                continue
            if idea is not None:
                ideas.append(idea)
        return ideas

    def _evaluate(self, instrument_id: str, now: datetime, min_yield: Decimal) -> Optional[DividendIdea]:
        """종목 하나의 배당 아이디어 판단. 조건 미충족이면 None."""
        dividends = self.market.get_dividends(instrument_id)
        if not dividends:
            logger.debug(f"{instrument_id}: 예정된 배당 없음")
            return None

        dividend = dividends[0]
        if dividend.last_buy_date is None:
            logger.debug(f"{instrument_id}: 마지막 매수일 없음")
            return None
        if dividend.last_buy_date < now:
            logger.debug(f"{instrument_id}: 마지막 매수일 경과 ({dividend.last_buy_date})")
            return None

        instrument = self.market.get_instrument(instrument_id)
        if dividend.currency.lower() != instrument.currency.lower():
            logger.debug(f"{instrument_id}: 배당 통화({dividend.currency}) != 거래 통화({instrument.currency})")
            return None

        price = self.market.get_last_price(instrument_id)
        if price is None:
            logger.info(f"Could not get last price for {instrument_id}")
            return None

        dividend_yield = round_half_up(dividend.net_amount / price)
        if dividend_yield < min_yield:
            logger.debug(f"{instrument_id}: 배당수익률 부족 ({dividend_yield} < {min_yield})")
            return None

        logger.info(f"배당 아이디어: {instrument.ticker} ({instrument_id}) 수익률 {dividend_yield}")
        return DividendIdea(
            instrument_id=instrument_id,
            ticker=instrument.ticker,
            dividend_yield=dividend_yield,
            current_price=price,
            dividend_net=dividend.net_amount,
        )

    def total_amount_of_funds(self, portfolio: PortfolioSnapshot) -> Decimal:
        """총 자산 = 현금 + 보유종목 평가액."""
        total = portfolio.total_funds
        logger.info(f"total: {total}")
        return total

    def has_time_before_last_buy_date(self, instrument_id: str) -> bool:
        """가장 가까운 배당의 마지막 매수일(일 단위 절사)이 아직 오지 않았는지."""
        dividends = self.market.get_dividends(instrument_id)
        if not dividends or dividends[0].last_buy_date is None:
            return False
        last_buy = dividends[0].last_buy_date.astimezone(timezone.utc)
        last_buy_day = last_buy.replace(hour=0, minute=0, second=0, microsecond=0)
        return last_buy_day > self.market.now()

    def _close_pending_orders(self) -> None:
        """미체결/부분체결 주문은 다음 스텝까지 남기지 않는다."""
        for order in self.market.get_open_orders():
            if not order.is_unfilled:
                continue
            logger.info(f"Cancel order for {order.instrument_id}")
            self.market.cancel_order(order.order_id)

    def _close_outdated_positions(
        self,
        portfolio: PortfolioSnapshot,
        idea_ids: set[str],
        params: StrategyParams,
    ) -> None:
        """매력 종목이 아닌 보유 주식 청산. 종목별 실패는 다른 종목 처리에 영향 없음."""
        sufficient_profit = to_decimal(params.sufficient_profit)
        for position in portfolio.positions:
            if position.instrument_type != "share":
                continue
            if position.instrument_id in idea_ids:
                continue
            try:
                if (position.expected_yield <= sufficient_profit
                        and self.has_time_before_last_buy_date(position.instrument_id)):
                    continue
                logger.info(
                    f"청산: {position.instrument_id} {position.quantity_lots}로트 "
                    f"(기대수익률 {position.expected_yield}%)"
                )
                self.market.sell_market(position.instrument_id, position.quantity_lots)
            except Exception as e:
                logger.info(f"Failed to process {position.instrument_id}, error: {e}")

    def _open_new_positions(
        self,
        portfolio: PortfolioSnapshot,
        idea_ids: list[str],
        params: StrategyParams,
    ) -> None:
        """보유하지 않은 아이디어 종목 매수.

        종목당 최대 금액 = 총 자산 * max_position_percentage / 100
        로트 수 = 최대 금액 // 로트 가격 (버림)
        한 종목에 가용 현금의 95% 이상은 쓰지 않으며, 매수할 때마다
        가용 현금을 차감하므로 아이디어 순서가 배분 결과에 영향을 준다.
        """
        held = portfolio.held_ids()
        to_open = [i for i in idea_ids if i not in held]
        if not to_open:
            return

        total_funds = self.total_amount_of_funds(portfolio)
        max_amount = total_funds * to_decimal(params.max_position_percentage) / 100
        available_cash = portfolio.total_cash

        for instrument_id in to_open:
            instrument = self.market.get_instrument(instrument_id)
            price = self.market.get_last_price(instrument_id)
            if price is None:
                raise MarketAccessError(f"No last price for {instrument_id}")
            lot_price = price * instrument.lot_size
            if lot_price <= 0:
                raise MarketAccessError(f"Invalid lot price for {instrument_id}: {lot_price}")

            lots = self.calculate_lots(max_amount, lot_price, available_cash)
            if lots <= 0:
                logger.debug(f"{instrument_id}: 1로트 매수 자금 부족")
                continue

            self.market.buy_market(instrument_id, lots)
            available_cash -= lot_price * lots

    @staticmethod
    def calculate_lots(max_amount: Decimal, lot_price: Decimal, available_cash: Decimal) -> int:
        """매수 로트 수. 최대 금액 기준 버림 후, 가용 현금의 95% 미만이 될 때까지 줄인다."""
        lots = floor_div(max_amount, lot_price)
        while lots > 0 and lot_price * lots >= available_cash * CASH_SAFETY_RATIO:
            lots -= 1
        return max(lots, 0)
