"""
시장 접근(Market Access) 추상 클래스 정의.

[ 역할 ]
    증권사/시뮬레이터와의 통신을 추상화하는 인터페이스 정의.
    전략(strategies/pre_dividends_strategy.py)은 이 인터페이스에만 의존하고,
    실계좌/샌드박스/백테스트 중 어떤 구현체가 주입되었는지 알지 못한다.

[ 구현체 ]
    - brokers/invest_broker.py::LiveMarketAccess     (실계좌)
    - brokers/invest_broker.py::SandboxMarketAccess  (샌드박스 계좌)
    - brokers/backtest_broker.py::ReplayMarketAccess (과거 데이터 재생, 백테스트용)

[ 호출하는 곳 ]
    - strategies/pre_dividends_strategy.py::PreDividendsStrategy.step()
    - runner/robot_runner.py에서 start() 시 validate_credentials() 호출
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional


# ─── 예외 ───────────────────────────────────────────────────────────────────

class MarketAccessError(Exception):
    """시장 접근 계층의 모든 오류의 부모 클래스."""


class InsufficientFundsError(MarketAccessError):
    """매수 금액이 가용 현금을 초과."""


class DuplicatePositionError(MarketAccessError):
    """이미 보유 중인 종목에 추가 매수 시도."""


class NoSuchPositionError(MarketAccessError):
    """보유하지 않은 종목 매도 시도 (공매도 불가)."""


class CredentialsError(MarketAccessError):
    """토큰/계좌 설정 오류."""


class InvestApiError(MarketAccessError):
    """증권사 API 호출 실패. HTTP 상태 코드와 API 오류 코드를 함께 보관."""

    def __init__(self, message: str, status_code: int = 0, code: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


# ─── 데이터 클래스 ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Instrument:
    """get_instrument()의 반환값. 종목 기본 정보."""
    instrument_id: str      # FIGI
    ticker: str
    lot_size: int           # 1로트당 주식 수
    currency: str
    exchange: str
    name: str = ""


@dataclass(frozen=True)
class Dividend:
    """get_dividends()의 반환값 원소. 가까운 배당부터 정렬되어 반환된다."""
    last_buy_date: Optional[datetime]   # 배당을 받기 위한 마지막 매수일
    net_amount: Decimal                 # 1주당 배당금
    currency: str
    declared_date: Optional[datetime] = None


@dataclass
class PortfolioPosition:
    """보유 종목. 수량은 주 단위(quantity)와 로트 단위(quantity_lots) 모두 보관."""
    instrument_id: str
    quantity: int
    quantity_lots: int
    instrument_type: str = "share"
    expected_yield: Decimal = Decimal(0)   # 현재까지의 기대 수익률 (%)


@dataclass
class PortfolioSnapshot:
    """get_portfolio()의 반환값. 한 스텝 안에서는 변경하지 않는다."""
    total_cash: Decimal
    total_shares: Decimal
    positions: list[PortfolioPosition] = field(default_factory=list)
    expected_yield: Optional[Decimal] = None

    @property
    def total_funds(self) -> Decimal:
        """총 자산 (현금 + 보유종목 평가)."""
        return self.total_cash + self.total_shares

    def held_ids(self) -> set[str]:
        return {p.instrument_id for p in self.positions}


@dataclass
class Order:
    """get_open_orders()의 반환값 원소."""
    order_id: str
    instrument_id: str
    lots_requested: int
    lots_executed: int = 0

    @property
    def is_unfilled(self) -> bool:
        return self.lots_executed < self.lots_requested


# ─── 추상 클래스 ────────────────────────────────────────────────────────────

class MarketAccess(ABC):
    """시장 접근 추상 클래스.

    모든 구현체는 이 클래스를 상속받아 아래 메서드를 구현해야 한다.
    모든 호출은 동기식이며 네트워크 호출은 자체 타임아웃을 가진다.
    """

    #: status 리포트에서 실행 모드를 표시할 때 사용
    mode_name: str = ""

    @abstractmethod
    def get_portfolio(self) -> PortfolioSnapshot:
        """포트폴리오 조회."""
        ...

    @abstractmethod
    def is_working_hours(self) -> bool:
        """현재 거래 가능 시간인지 여부."""
        ...

    @abstractmethod
    def get_instrument(self, instrument_id: str) -> Instrument:
        """종목 정보 조회."""
        ...

    @abstractmethod
    def get_dividends(self, instrument_id: str) -> list[Dividend]:
        """예정된 배당 목록 조회 (가까운 순)."""
        ...

    @abstractmethod
    def get_last_price(self, instrument_id: str) -> Optional[Decimal]:
        """최근 체결가 조회. 가격이 없으면 None."""
        ...

    @abstractmethod
    def now(self) -> datetime:
        """현재 시각 (백테스트에서는 시뮬레이션 시각)."""
        ...

    @abstractmethod
    def buy_market(self, instrument_id: str, lots: int) -> str:
        """시장가 매수. 주문 ID 반환.

        Raises:
            InsufficientFundsError: 가용 현금 부족
            DuplicatePositionError: 이미 보유 중인 종목
        """
        ...

    @abstractmethod
    def sell_market(self, instrument_id: str, lots: int) -> str:
        """시장가 매도. 주문 ID 반환.

        Raises:
            NoSuchPositionError: 보유하지 않은 종목
        """
        ...

    @abstractmethod
    def get_open_orders(self) -> list[Order]:
        """미체결 주문 목록."""
        ...

    @abstractmethod
    def cancel_order(self, order_id: str) -> None:
        """주문 취소."""
        ...

    @abstractmethod
    def validate_credentials(self) -> Optional[str]:
        """토큰/계좌 검증. 문제가 있으면 오류 메시지, 정상이면 None."""
        ...
