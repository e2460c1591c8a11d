"""상태 리포트 / 시작 전 확인 테스트."""

from decimal import Decimal

from dividend_robot.core.market_access import PortfolioSnapshot
from dividend_robot.runner.status import format_status, preflight_warnings
from dividend_robot.strategies import StrategyConfiguration


def test_format_status(market):
    market.portfolio.total_cash = Decimal("5000")
    market.portfolio.total_shares = Decimal("7000")
    market.hold("X", lots=3, expected_yield="4.5")

    text = format_status(market, StrategyConfiguration(allowed_instrument_ids=["X"]))

    assert "Current result: 12000.00" in text
    assert "Free money: 5000.00" in text
    assert "X  lots=3  qty=30  expected yield 4.50%" in text
    assert "allowed_instrument_ids: X" in text


def test_format_status_without_positions(market):
    assert "Positions: none" in format_status(market)


def test_preflight_ok():
    portfolio = PortfolioSnapshot(total_cash=Decimal("50000"), total_shares=Decimal(0))
    assert preflight_warnings(portfolio) == []


def test_preflight_warns_on_positions_and_small_account(market):
    market.portfolio.total_cash = Decimal("500")
    market.hold("X", lots=1, expected_yield="0")

    warnings = preflight_warnings(market.get_portfolio())
    assert len(warnings) == 2
    assert "open positions" in warnings[0]
