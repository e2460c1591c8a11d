"""
설정 관리 모듈.

[ 역할 ]
    config.yaml (또는 .json) 파일을 파싱하여 Config 객체로 변환.
    전략 파라미터, 증권사 접속 정보, 스케줄러, 백테스트, 로깅 설정을 통합 관리.

[ 설정 파일 구조 (config.yaml) ]
    strategy:         → StrategyConfig (전략 파라미터 초기값)
    broker:           → BrokerConfig (토큰, 계좌, API 주소)
    scheduler:        → SchedulerConfig (실행 시각, 재시도)
    backtest:         → BacktestConfig (재생 기간, 초기 자금)
    log_level:        → "INFO" / "DEBUG"
    log_dir:          → 로그 디렉토리 경로

[ 호출하는 곳 ]
    - run_robot.py에서 Config.from_yaml()로 로드
    - strategies/configuration.py::StrategyConfiguration.from_config()
    - brokers/invest_api.py::InvestApiClient.from_config()
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class StrategyConfig:
    """전략 설정. config.yaml의 strategy 섹션에 대응.

    allowed_figis는 목록 또는 공백으로 구분된 문자열 모두 허용.
    """
    min_dividend_yield: float = 5.0       # 최소 배당수익률 (%)
    sufficient_profit: float = 3.0        # 청산 기준 수익률 (%)
    max_position_percentage: float = 20.0  # 종목당 최대 비중 (%)
    allowed_figis: list[str] = field(default_factory=lambda: [
        "BBG004730N88",  # SBER
        "BBG004730RP0",  # GAZP
        "BBG004731032",  # LKOH
        "BBG004S681W1",  # MTSS
    ])


@dataclass
class BrokerConfig:
    """증권사 API 설정. config.yaml의 broker 섹션에 대응."""
    token: str = ""
    app_name: str = "dividend-robot"
    market_account: str = ""
    sandbox_account: str = ""   # 비어 있으면 샌드박스 계좌를 새로 연다
    exchange: str = "MOEX"
    request_timeout: float = 10.0  # 초
    live_url: str = "https://invest-public-api.tinkoff.ru/rest/"
    sandbox_url: str = "https://sandbox-invest-public-api.tinkoff.ru/rest/"


@dataclass
class SchedulerConfig:
    """스케줄러 설정. 첫 실행은 (오늘 0시 + anchor_hours), 이후 period_hours마다."""
    timezone: str = "Europe/Moscow"
    anchor_hours: int = 36
    period_hours: int = 24
    retry_delay_minutes: float = 30
    max_retries: int = 8


@dataclass
class BacktestConfig:
    """백테스트 설정. config.yaml의 backtest 섹션에 대응."""
    days: int = 365
    initial_cash: float = 100_000
    control_figi: str = "BBG004730RP0"  # 거래일 판단 기준 종목 (GAZP)
    utc_offset_hours: int = 3           # 시뮬레이션 시작 시각의 UTC 오프셋


@dataclass
class Config:
    """전체 설정. from_yaml() 또는 from_json()으로 파일에서 로드."""
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    broker: BrokerConfig = field(default_factory=BrokerConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    backtest: BacktestConfig = field(default_factory=BacktestConfig)
    log_level: str = "INFO"
    log_dir: str = "logs"

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """YAML 파일에서 설정 로드."""
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return cls._from_dict(data or {})

    @classmethod
    def from_json(cls, path: str | Path) -> "Config":
        """JSON 파일에서 설정 로드."""
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Config":
        """딕셔너리에서 Config 생성. 각 섹션에서 모르는 키는 무시."""
        strategy_data = dict(data.get("strategy", {}) or {})
        figis = strategy_data.get("allowed_figis")
        if isinstance(figis, str):
            strategy_data["allowed_figis"] = figis.split()

        return cls(
            strategy=_section(StrategyConfig, strategy_data),
            broker=_section(BrokerConfig, data.get("broker", {})),
            scheduler=_section(SchedulerConfig, data.get("scheduler", {})),
            backtest=_section(BacktestConfig, data.get("backtest", {})),
            log_level=data.get("log_level", "INFO"),
            log_dir=data.get("log_dir", "logs"),
        )

    def to_dict(self) -> dict[str, Any]:
        """딕셔너리로 변환."""
        from dataclasses import asdict
        return asdict(self)

    def save_yaml(self, path: str | Path) -> None:
        """YAML 파일로 저장."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(self.to_dict(), f, allow_unicode=True, default_flow_style=False)


def _section(section_cls, values: dict[str, Any] | None):
    values = values or {}
    return section_cls(**{
        k: v for k, v in values.items()
        if k in section_cls.__dataclass_fields__
    })
