"""BacktestEngine 테스트: 하루 단위 재생, 수익률, 중단 처리."""

from datetime import datetime, timezone
from decimal import Decimal

import pandas as pd
import pytest

from dividend_robot.backtest.engine import BacktestEngine, default_start, yield_percent
from dividend_robot.brokers.backtest_broker import ReplayMarketAccess
from dividend_robot.core.market_access import Dividend, Instrument
from dividend_robot.strategies import PreDividendsStrategy, StrategyConfiguration

from conftest import daily_candles

START = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def replay(frame_provider):
    """X: 1/12까지 100, 1/13부터 110. 배당 10 (공시 1/5, 마지막 매수일 1/15 12:00)."""
    frame_provider.add_instrument(Instrument("X", "x", 10, "rub", "MOEX"))
    frame_provider.load_candles("X", pd.concat([
        daily_candles("2024-01-01", "2024-01-12", 100.0),
        daily_candles("2024-01-13", "2024-02-28", 110.0),
    ]))
    frame_provider.load_dividends("X", [Dividend(
        last_buy_date=utc(2024, 1, 15, 12),
        net_amount=Decimal("10"),
        currency="rub",
        declared_date=utc(2024, 1, 5),
    )])
    return ReplayMarketAccess(
        frame_provider,
        initial_cash=100_000,
        control_figi="CTRL",
        wall_clock=lambda: utc(2024, 3, 1),
    )


@pytest.fixture
def engine(replay):
    configuration = StrategyConfiguration(allowed_instrument_ids=["X"])
    return BacktestEngine(PreDividendsStrategy(configuration), replay)


class TestRunBacktest:

    def test_zero_days_returns_initial_funds(self, engine):
        result = engine.run_backtest(0, start=START)
        assert result.succeeded
        assert result.initial_funds == Decimal(100000)
        assert result.final_funds == Decimal(100000)
        assert result.yield_percent == Decimal("0.00")
        assert result.daily_values == []

    def test_buy_before_dividend_and_sell_after(self, engine, replay):
        result = engine.run_backtest(10, start=START)

        assert result.succeeded
        assert result.days_completed == 10
        assert len(result.daily_values) == 10

        trades = replay.trade_history
        assert [(t.side, t.lots, t.price) for t in trades] == [
            ("buy", 20, Decimal("100")),
            ("sell", 20, Decimal("110")),
        ]
        assert trades[0].time == START
        assert trades[1].time == utc(2024, 1, 15, 12)

        assert result.final_funds == Decimal("102000")
        assert result.yield_percent == Decimal("2.00")
        assert result.metrics.total_trades == 1
        assert result.metrics.win_rate == 100.0

    def test_failed_step_aborts_replay(self, replay):
        class FailsOnThirdDay(PreDividendsStrategy):
            calls = 0

            def step(self):
                self.calls += 1
                if self.calls == 3:
                    self.last_error = "boom"
                    return False
                return super().step()

        strategy = FailsOnThirdDay(StrategyConfiguration(allowed_instrument_ids=["X"]))
        result = BacktestEngine(strategy, replay).run_backtest(10, start=START)

        assert not result.succeeded
        assert result.error == "boom"
        assert result.days_completed == 2
        assert strategy.calls == 3
        assert result.final_funds == Decimal(100000)

    def test_validation_error_returned(self, frame_provider, replay):
        frame_provider.validate = lambda: "Token is not valid"
        engine = BacktestEngine(PreDividendsStrategy(StrategyConfiguration()), replay)

        result = engine.run_backtest(5, start=START)
        assert result.error == "Token is not valid"
        assert result.days_completed == 0

    def test_negative_days_rejected(self, engine):
        with pytest.raises(ValueError):
            engine.run_backtest(-1)

    def test_rerun_starts_from_clean_state(self, engine, replay):
        engine.run_backtest(10, start=START)
        result = engine.run_backtest(10, start=START)
        assert result.initial_funds == Decimal(100000)
        assert len(replay.trade_history) == 2

    def test_report(self, engine):
        result = engine.run_backtest(10, start=START)
        report = engine.generate_report(result)
        assert report["yield_percent"] == "2.00"
        assert [t["side"] for t in report["trades"]] == ["buy", "sell"]
        assert "Yield: 2.00%" in result.summary()


class TestHelpers:

    @pytest.mark.parametrize("initial, final, expected", [
        ("100000", "102000", "2.00"),
        ("100000", "100001", "0.01"),   # 올림
        ("100000", "99999", "-0.00"),
        ("100000", "90000", "-10.00"),
    ])
    def test_yield_percent(self, initial, final, expected):
        assert yield_percent(Decimal(initial), Decimal(final)) == Decimal(expected)

    def test_default_start(self):
        start = default_start(30)
        assert start.utcoffset().total_seconds() == 3 * 3600
        assert (datetime.now(timezone.utc) - start).days == 30
