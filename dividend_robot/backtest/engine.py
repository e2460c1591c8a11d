"""
백테스트 재생 엔진 모듈.

[ 역할 ]
    실계좌와 같은 전략 코드(PreDividendsStrategy.step)를 과거 데이터 위에서
    하루씩 재생하여 성과를 측정. 스케줄러를 거치지 않고 동기식으로 돈다.

[ 실행 흐름 ]
    run_backtest() 호출 시:
        1. 재생 시장 검증(validate_credentials) 후 전략을 재생 시장에 바인딩
        2. 재생 시장 초기화 (초기 자금, 빈 포지션, 캐시 비움)
        3. days일 동안: 시뮬레이션 시각 설정 → step() → 총 자산 기록 → 하루 전진
        4. 스텝 실패/예외 시 남은 날은 건너뛰고 오류와 중간 결과를 함께 반환
        5. metrics.calculate_metrics()로 성과 지표 계산

[ 의존성 ]
    - strategies/pre_dividends_strategy.py::PreDividendsStrategy
    - brokers/backtest_broker.py::ReplayMarketAccess
    - backtest/metrics.py::calculate_metrics()

[ 호출하는 곳 ]
    - run_robot.py --mode backtest
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from dividend_robot.backtest.metrics import BacktestMetrics, calculate_metrics
from dividend_robot.brokers.backtest_broker import ReplayMarketAccess
from dividend_robot.strategies.pre_dividends_strategy import PreDividendsStrategy
from dividend_robot.utils.money import round_up

logger = logging.getLogger("dividend_robot.backtest")

ONE_DAY = timedelta(days=1)


@dataclass
class BacktestResult:
    """run_backtest()의 반환값. error가 있으면 중단된 결과(부분 결과)다."""
    days: int
    start: datetime
    initial_funds: Decimal
    final_funds: Optional[Decimal] = None
    yield_percent: Optional[Decimal] = None
    days_completed: int = 0
    error: Optional[str] = None
    daily_values: list[float] = field(default_factory=list)
    metrics: BacktestMetrics = field(default_factory=BacktestMetrics)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def summary(self) -> str:
        lines = [
            "=" * 50,
            "백테스트 결과",
            "=" * 50,
            f"Backtest is started with initial funds {self.initial_funds} "
            f"on historical data for the last {self.days} days",
        ]
        if self.error is not None:
            lines.append(
                f"Backtest failed on day {self.days_completed + 1}/{self.days} with error: {self.error}"
            )
            if self.final_funds is not None:
                lines.append(f"Funds at abort: {self.final_funds} (yield so far: {self.yield_percent}%)")
        else:
            lines.append(f"Final result: {self.final_funds}")
            lines.append(f"Yield: {self.yield_percent}%")
        lines.append("-" * 50)
        lines.append(self.metrics.summary())
        lines.append("=" * 50)
        return "\n".join(lines)


def yield_percent(initial: Decimal, final: Decimal) -> Decimal:
    """(final - initial) / initial * 100, 소수 둘째 자리 올림."""
    if initial == 0:
        return Decimal(0)
    return round_up((final - initial) / initial * 100)


def default_start(days: int, utc_offset_hours: int = 3) -> datetime:
    """지금으로부터 days일 전 (지정 UTC 오프셋 기준)."""
    tz = timezone(timedelta(hours=utc_offset_hours))
    return datetime.now(tz) - timedelta(days=days)


class BacktestEngine:
    """백테스트 재생 엔진. run_backtest()로 실행."""

    def __init__(self, strategy: PreDividendsStrategy, market: ReplayMarketAccess):
        self.strategy = strategy
        self.market = market

    def run_backtest(self, days: int, start: Optional[datetime] = None) -> BacktestResult:
        """백테스트 실행.

        Args:
            days: 재생 일수 (0이면 초기 자금 그대로 반환)
            start: 재생 시작 시각 (기본: 지금으로부터 days일 전, UTC+3)
        """
        if days < 0:
            raise ValueError(f"days must be >= 0: {days}")
        start = start or default_start(days)

        error = self.market.validate_credentials()
        if error is not None:
            return BacktestResult(days=days, start=start, initial_funds=Decimal(0), error=error)

        self.market.reset(start)
        self.strategy.market = self.market
        initial = self.strategy.total_amount_of_funds(self.market.get_portfolio())
        result = BacktestResult(days=days, start=start, initial_funds=initial)
        logger.info(f"백테스트 시작: {start} 부터 {days}일, 초기 자금 {initial}")

        now = start
        try:
            for day in range(days):
                self.market.set_now(now)
                if not self.strategy.step():
                    raise RuntimeError(self.strategy.last_error or "step failed")
                funds = self.market.get_portfolio().total_funds
                result.daily_values.append(float(funds))
                result.days_completed = day + 1
                now += ONE_DAY
        except Exception as e:
            logger.exception(f"백테스트 중단 ({result.days_completed}/{days}일 완료): {e}")
            result.error = str(e) or type(e).__name__

        self._finish(result)
        return result

    def _finish(self, result: BacktestResult) -> None:
        """최종(또는 중단 시점) 자산과 지표 계산."""
        try:
            final = self.strategy.total_amount_of_funds(self.market.get_portfolio())
        except Exception as e:
            logger.exception(f"최종 자산 계산 실패: {e}")
            if result.error is None:
                result.error = str(e)
            return

        result.final_funds = final
        result.yield_percent = yield_percent(result.initial_funds, final)
        result.metrics = calculate_metrics(
            trade_history=self.market.trade_history,
            daily_values=result.daily_values,
            initial_funds=float(result.initial_funds),
        )
        if result.error is None:
            logger.info(f"백테스트 완료. 최종 자산 {final}, 수익률 {result.yield_percent}%")

    def generate_report(self, result: BacktestResult) -> dict[str, Any]:
        """백테스트 리포트 (dict)."""
        return {
            "initial_funds": str(result.initial_funds),
            "final_funds": None if result.final_funds is None else str(result.final_funds),
            "yield_percent": None if result.yield_percent is None else str(result.yield_percent),
            "days_completed": result.days_completed,
            "error": result.error,
            "metrics": result.metrics.to_dict(),
            "portfolio_summary": self.market.portfolio.get_summary(),
            "trades": [
                {
                    "time": t.time.isoformat(),
                    "instrument_id": t.instrument_id,
                    "side": t.side,
                    "lots": t.lots,
                    "price": str(t.price),
                    "profit": str(t.profit),
                }
                for t in self.market.trade_history
            ],
        }
