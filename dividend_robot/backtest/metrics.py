"""
백테스트 성과 지표 계산 모듈.

[ 역할 ]
    재생 결과(거래기록 + 일별 총자산)를 받아 성과 지표를 계산.
    calculate_metrics() 함수가 핵심.

[ 계산하는 지표 ]
    - 총 수익률 / 연환산 수익률
    - 샤프 비율 (위험 대비 수익)
    - MDD (최대 낙폭)
    - 승률, 평균 수익/손실, 수익 팩터

[ 입력 데이터 ]
    - trade_history: data/portfolio.py::Portfolio.trade_history (매도 거래만 분석)
    - daily_values: engine.py가 매 스텝 후 기록한 총 자산 리스트
      (재생은 달력일 단위로 진행되므로 연환산 기준도 365일)
"""

from dataclasses import dataclass
from typing import Any

import numpy as np

from dividend_robot.data.portfolio import TradeRecord

PERIODS_PER_YEAR = 365


@dataclass
class BacktestMetrics:
    """백테스트 성과 지표."""
    total_return: float = 0.0       # 총 수익률 (%)
    annual_return: float = 0.0      # 연환산 수익률 (%)
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0       # 최대 낙폭 MDD (%)
    win_rate: float = 0.0           # 승률 (%)
    avg_profit: float = 0.0         # 수익 거래 평균 이익
    avg_loss: float = 0.0           # 손실 거래 평균 손실
    profit_factor: float = 0.0      # 총이익 / 총손실
    total_trades: int = 0           # 매도 거래 횟수
    winning_trades: int = 0
    losing_trades: int = 0

    def to_dict(self) -> dict[str, Any]:
        from dataclasses import asdict
        return asdict(self)

    def summary(self) -> str:
        lines = [
            f"총 수익률:       {self.total_return:>10.2f}%",
            f"연환산 수익률:    {self.annual_return:>10.2f}%",
            f"샤프 비율:       {self.sharpe_ratio:>10.2f}",
            f"최대 낙폭(MDD):  {self.max_drawdown:>10.2f}%",
            "-" * 50,
            f"매도 거래 횟수:  {self.total_trades:>10d}",
            f"승률:            {self.win_rate:>10.2f}%",
            f"평균 수익:       {self.avg_profit:>10,.2f}",
            f"평균 손실:       {self.avg_loss:>10,.2f}",
            f"수익 팩터:       {self.profit_factor:>10.2f}",
        ]
        return "\n".join(lines)


def max_drawdown(values: np.ndarray) -> float:
    """고점 대비 최대 하락폭 (%)."""
    if values.size == 0:
        return 0.0
    peaks = np.maximum.accumulate(values)
    drawdowns = np.where(peaks > 0, (peaks - values) / peaks * 100, 0.0)
    return float(drawdowns.max())


def calculate_metrics(
    trade_history: list[TradeRecord],
    daily_values: list[float],
    initial_funds: float,
) -> BacktestMetrics:
    """성과 지표 계산. engine.py에서 재생 완료(또는 중단) 후 호출됨."""
    metrics = BacktestMetrics()

    if not daily_values or initial_funds <= 0:
        return metrics

    values = np.asarray(daily_values, dtype=float)
    final_value = values[-1]
    metrics.total_return = (final_value - initial_funds) / initial_funds * 100

    years = len(values) / PERIODS_PER_YEAR
    if years > 0 and final_value > 0:
        metrics.annual_return = ((final_value / initial_funds) ** (1 / years) - 1) * 100

    # 샤프 = 평균 일수익률 / 표준편차 * sqrt(365)
    series = np.concatenate([[initial_funds], values])
    returns = np.diff(series) / series[:-1]
    if returns.size > 1 and np.std(returns) > 0:
        metrics.sharpe_ratio = float(np.mean(returns) / np.std(returns) * np.sqrt(PERIODS_PER_YEAR))

    metrics.max_drawdown = max_drawdown(series)

    # 실현 손익은 매도에서만 발생
    sell_trades = [t for t in trade_history if t.side == "sell"]
    metrics.total_trades = len(sell_trades)
    if sell_trades:
        profits = [float(t.profit) for t in sell_trades]
        winners = [p for p in profits if p > 0]
        losers = [p for p in profits if p <= 0]

        metrics.winning_trades = len(winners)
        metrics.losing_trades = len(losers)
        metrics.win_rate = len(winners) / len(sell_trades) * 100
        if winners:
            metrics.avg_profit = sum(winners) / len(winners)
        if losers:
            metrics.avg_loss = sum(losers) / len(losers)

        total_loss = abs(sum(losers))
        metrics.profit_factor = sum(winners) / total_loss if total_loss > 0 else float("inf")

    return metrics
