"""
배당 로봇 실행 스크립트 (시스템 진입점).

[ 사용법 ]
    # 샘플 데이터로 백테스트 (기본 365일)
    python run_robot.py --mode backtest
    python run_robot.py --mode backtest --days 180

    # 증권사 API 과거 데이터로 백테스트 (config.yaml에 토큰 필요)
    python run_robot.py --mode backtest --source invest

    # 파라미터 오버라이드
    python run_robot.py --mode backtest -p min_dividend_yield=7 -p max_position_percentage=30
    python run_robot.py --mode backtest -p allowed_figis="BBG004730N88 BBG004730RP0"

    # 샌드박스 / 실계좌 (Ctrl+C로 중지)
    python run_robot.py --mode sandbox
    python run_robot.py --mode live
    python run_robot.py --mode live --force     # 보유 종목/소액 계좌 경고 무시

    # 계좌 상태 확인
    python run_robot.py --mode status
    python run_robot.py --mode status --market sandbox
"""

import argparse
import time
import zlib
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import numpy as np
import pandas as pd

from dividend_robot.backtest.engine import BacktestEngine, default_start
from dividend_robot.brokers.backtest_broker import ReplayMarketAccess
from dividend_robot.brokers.history import FrameHistoryProvider, InvestApiHistoryProvider
from dividend_robot.brokers.invest_api import InvestApiClient
from dividend_robot.brokers.invest_broker import LiveMarketAccess, SandboxMarketAccess
from dividend_robot.core.history_provider import HistoryProvider
from dividend_robot.core.market_access import Dividend, Instrument, MarketAccess
from dividend_robot.runner.robot_runner import RobotRunner
from dividend_robot.runner.status import format_status, preflight_warnings
from dividend_robot.strategies import PreDividendsStrategy, StrategyConfiguration
from dividend_robot.utils.config import Config
from dividend_robot.utils.logger import setup_logger

# 샘플 데이터용 종목: FIGI → (티커, 로트 크기, 시작 가격)
SAMPLE_INSTRUMENTS = {
    "BBG004730N88": ("SBER", 10, 250.0),
    "BBG004730RP0": ("GAZP", 10, 170.0),
    "BBG004731032": ("LKOH", 1, 6500.0),
    "BBG004S681W1": ("MTSS", 10, 280.0),
}

# -p 로 받을 수 있는 종목 목록 키
FIGI_KEYS = ("allowed_figis", "allowed_instrument_ids")


def generate_sample_candles(
    instrument_id: str,
    start: datetime,
    end: datetime,
    initial_price: float = 100.0,
    volatility: float = 0.02,
) -> pd.DataFrame:
    """백테스트용 샘플 일봉 생성 (영업일, 07:00 UTC 시작 봉)."""
    rng = np.random.default_rng(zlib.crc32(instrument_id.encode()))

    dates = pd.bdate_range(start=start.date() - timedelta(days=5), end=end.date(), tz="UTC")
    n = len(dates)

    returns = rng.normal(0.0002, volatility, n)
    closes = initial_price * np.cumprod(1 + returns)
    highs = closes * (1 + np.abs(rng.normal(0, 0.01, n)))
    lows = closes * (1 - np.abs(rng.normal(0, 0.01, n)))
    opens = closes * (1 + rng.normal(0, 0.005, n))

    return pd.DataFrame({
        "time": dates + pd.Timedelta(hours=7),
        "open": np.round(opens, 2),
        "high": np.round(highs, 2),
        "low": np.round(lows, 2),
        "close": np.round(closes, 2),
        "volume": rng.lognormal(12, 1, n).astype(int),
    })


def generate_sample_dividends(
    instrument_id: str,
    candles: pd.DataFrame,
    every_days: int = 180,
    record_gap_days: int = 30,
) -> list[Dividend]:
    """샘플 배당 생성. every_days마다 공시, 공시 후 record_gap_days일이 마지막 매수일."""
    rng = np.random.default_rng(zlib.crc32(instrument_id.encode()) + 1)
    dividends = []
    if candles.empty:
        return dividends

    first = candles["time"].iloc[0]
    last = candles["time"].iloc[-1]
    declared = first + pd.Timedelta(days=int(rng.integers(5, every_days)))
    while declared < last:
        idx = candles["time"].searchsorted(declared)
        close = float(candles["close"].iloc[min(idx, len(candles) - 1)])
        net = round(close * rng.uniform(0.03, 0.12), 2)
        dividends.append(Dividend(
            last_buy_date=(declared + pd.Timedelta(days=record_gap_days)).to_pydatetime(),
            net_amount=Decimal(str(net)),
            currency="rub",
            declared_date=declared.to_pydatetime(),
        ))
        declared += pd.Timedelta(days=every_days)
    return dividends


def build_sample_provider(instrument_ids: list[str], start: datetime, end: datetime) -> FrameHistoryProvider:
    """종목별 샘플 일봉/배당을 채운 FrameHistoryProvider."""
    provider = FrameHistoryProvider()
    for instrument_id in instrument_ids:
        ticker, lot, price = SAMPLE_INSTRUMENTS.get(instrument_id, (instrument_id[-4:], 1, 100.0))
        provider.add_instrument(Instrument(instrument_id, ticker, lot, "rub", "MOEX", name=ticker))
        candles = generate_sample_candles(instrument_id, start, end, initial_price=price)
        provider.load_candles(instrument_id, candles)
        provider.load_dividends(instrument_id, generate_sample_dividends(instrument_id, candles))
        print(f"  {ticker} ({instrument_id}): {len(candles)}일 데이터")
    return provider


def parse_param(param_str: str) -> tuple[str, str]:
    """'key=value' 문자열을 (key, value)로. 값 검증은 StrategyConfiguration이 한다."""
    key, _, value = param_str.partition("=")
    return key.strip(), value.strip().strip("\"'")


def split_params(params: list[str]) -> tuple[dict[str, str], str | None]:
    """숫자 파라미터와 종목 목록 오버라이드를 분리."""
    numbers: dict[str, str] = {}
    figis = None
    for p in params:
        key, value = parse_param(p)
        if key in FIGI_KEYS:
            figis = value
        else:
            numbers[key] = value
    return numbers, figis


def apply_overrides(
    configuration: StrategyConfiguration,
    numbers: dict[str, str],
    figis: str | None,
    market: MarketAccess,
    exchange: str,
) -> bool:
    """오버라이드 적용. 오류 메시지를 출력하고, 오류가 없었는지 반환."""
    errors = configuration.update_from_strings(numbers) if numbers else []
    if figis is not None:
        errors += configuration.apply_instrument_ids(figis, market, exchange)
    for error in errors:
        print(f"  [WARN] {error}")
    return not errors


def build_market(config: Config, sandbox: bool) -> MarketAccess:
    client = InvestApiClient.from_config(config.broker, sandbox=sandbox)
    if sandbox:
        return SandboxMarketAccess(client, config.broker.sandbox_account, config.broker.exchange)
    return LiveMarketAccess(client, config.broker.market_account, config.broker.exchange)


def run_backtest(config: Config, args: argparse.Namespace) -> int:
    numbers, figis = split_params(args.param)
    configuration = StrategyConfiguration.from_config(config.strategy)
    days = args.days if args.days is not None else config.backtest.days
    start = default_start(days, config.backtest.utc_offset_hours)
    end = datetime.now(timezone.utc)

    instrument_ids = list(configuration.allowed_instrument_ids)
    if figis is not None:
        instrument_ids = figis.split()

    provider: HistoryProvider
    if args.source == "sample":
        print("샘플 데이터 생성 중...")
        ids = list(dict.fromkeys(instrument_ids + [config.backtest.control_figi]))
        provider = build_sample_provider(ids, start, end)
    else:
        print("증권사 API에서 과거 데이터를 조회합니다 (종목별 첫 조회 시)")
        provider = InvestApiHistoryProvider(InvestApiClient.from_config(config.broker, sandbox=False))

    market = ReplayMarketAccess(
        provider,
        initial_cash=config.backtest.initial_cash,
        control_figi=config.backtest.control_figi,
    )
    apply_overrides(configuration, numbers, figis, market, config.broker.exchange)
    print(f"\n파라미터: {configuration.to_dict()}")

    strategy = PreDividendsStrategy(configuration)
    engine = BacktestEngine(strategy, market)
    result = engine.run_backtest(days, start=start)
    print()
    print(result.summary())

    trades = engine.generate_report(result)["trades"]
    if trades:
        print("\n최근 거래 (최대 5건):")
        for t in trades[-5:]:
            print(f"  [{t['time'][:10]}] {t['side']:>4} {t['instrument_id']} {t['lots']}로트 @ {t['price']}")
    return 0 if result.succeeded else 1


def run_scheduled(config: Config, args: argparse.Namespace) -> int:
    sandbox = args.mode == "sandbox"
    market = build_market(config, sandbox=sandbox)
    configuration = StrategyConfiguration.from_config(config.strategy)
    numbers, figis = split_params(args.param)
    if not apply_overrides(configuration, numbers, figis, market, config.broker.exchange):
        print("파라미터 오류가 있어 일부 값은 적용되지 않았습니다")

    if not sandbox and not args.force:
        error = market.validate_credentials()
        if error is not None:
            print(f"시작 실패: {error}")
            return 1
        warnings = preflight_warnings(market.get_portfolio())
        if warnings:
            for warning in warnings:
                print(f"  [WARN] {warning}")
            return 1

    strategy = PreDividendsStrategy(configuration)
    runner = RobotRunner.from_config(strategy, config.scheduler)
    ok, message = runner.start(market)
    print(message)
    if not ok:
        return 1

    print(f"다음 실행: {runner.status()['next_run']} (Ctrl+C로 중지)")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\n중지 중... (실행 중인 스텝이 있으면 끝날 때까지 대기)")
        runner.stop()
    return 0


def run_status(config: Config, args: argparse.Namespace) -> int:
    market = build_market(config, sandbox=args.market == "sandbox")
    error = market.validate_credentials()
    if error is not None:
        print(f"오류: {error}")
        return 1
    configuration = StrategyConfiguration.from_config(config.strategy)
    print(format_status(market, configuration))
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="배당 전 매수 로봇")
    parser.add_argument("--config", type=str, default="config.yaml", help="설정 파일 경로")
    parser.add_argument(
        "--mode", type=str, default="backtest",
        choices=["backtest", "sandbox", "live", "status"], help="실행 모드",
    )
    parser.add_argument("--days", type=int, default=None, help="백테스트 일수 (기본: config.yaml)")
    parser.add_argument("--source", type=str, default="sample", choices=["sample", "invest"], help="백테스트 데이터 소스")
    parser.add_argument("-p", "--param", action="append", default=[], help="파라미터 오버라이드 (예: -p min_dividend_yield=7)")
    parser.add_argument("--force", action="store_true", help="실계좌 시작 전 경고 무시")
    parser.add_argument("--market", type=str, default="live", choices=["live", "sandbox"], help="status 모드에서 조회할 계좌")
    args = parser.parse_args()

    # 설정 로드
    config_path = Path(args.config)
    if config_path.exists():
        config = Config.from_yaml(config_path)
    else:
        print(f"설정 파일 없음: {config_path}, 기본값 사용")
        config = Config()

    setup_logger(level=config.log_level, log_dir=config.log_dir, mode=args.mode)

    if args.mode == "backtest":
        return run_backtest(config, args)
    if args.mode == "status":
        return run_status(config, args)
    return run_scheduled(config, args)


if __name__ == "__main__":
    raise SystemExit(main())
