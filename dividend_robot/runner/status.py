"""
계좌 상태 리포트.

[ 역할 ]
    바인딩된 시장(실계좌/샌드박스)의 현재 상태를 사람이 읽는 텍스트로 만든다.
    현재 총 자산과 기대수익률, 가용 현금, 보유 종목별 기대수익률, 전략 파라미터.

[ 호출하는 곳 ]
    - run_robot.py --mode status
    - run_robot.py 시작 전 확인(preflight_warnings)
"""

from decimal import Decimal
from typing import Optional

from dividend_robot.core.market_access import MarketAccess, PortfolioSnapshot
from dividend_robot.strategies.configuration import StrategyConfiguration
from dividend_robot.utils.money import PERCENT_PRECISION

# 실계좌 시작 전 경고 기준 총 자산
MIN_START_FUNDS = Decimal(10000)


def _fmt(value: Optional[Decimal]) -> str:
    if value is None:
        return "-"
    return f"{value.quantize(PERCENT_PRECISION)}"


def format_status(
    market: MarketAccess,
    configuration: Optional[StrategyConfiguration] = None,
    runner_status: Optional[dict] = None,
) -> str:
    portfolio = market.get_portfolio()
    lines = [
        f"[{market.mode_name or 'market'}]",
        f"Current result: {_fmt(portfolio.total_funds)} (expected yield {_fmt(portfolio.expected_yield)}%)",
        f"Free money: {_fmt(portfolio.total_cash)}",
    ]

    shares = [p for p in portfolio.positions if p.instrument_type == "share"]
    if shares:
        lines.append("Positions:")
        for p in shares:
            lines.append(
                f"  {p.instrument_id}  lots={p.quantity_lots}  qty={p.quantity}  "
                f"expected yield {_fmt(p.expected_yield)}%"
            )
    else:
        lines.append("Positions: none")

    if configuration is not None:
        params = configuration.to_dict()
        lines.append("Strategy:")
        for key, value in params.items():
            lines.append(f"  {key}: {value}")

    if runner_status is not None:
        lines.append(
            f"Runner: {runner_status['state']}, next run {runner_status['next_run']}, "
            f"retry {runner_status['retry_attempt']}"
        )
    return "\n".join(lines)


def preflight_warnings(portfolio: PortfolioSnapshot) -> list[str]:
    """실계좌 시작 전 확인. 경고가 있으면 --force 없이 시작하지 않는다."""
    warnings = []
    if portfolio.positions:
        warnings.append(
            "There are open positions in the account. The robot may sell them. Use --force to start anyway"
        )
    if portfolio.total_funds < MIN_START_FUNDS:
        warnings.append(
            f"Total funds {portfolio.total_funds} are below {MIN_START_FUNDS}. Use --force to start anyway"
        )
    return warnings
