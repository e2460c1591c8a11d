"""
증권사 API 기반 시장 접근 구현 (실계좌 / 샌드박스).

[ 포함 클래스 ]
    InvestMarketBase     - 공통 부분: 종목 정보, 배당(30일), 최근가, 토큰 검증
    LiveMarketAccess     - 실계좌. 거래소 거래 일정으로 거래 시간 판단
    SandboxMarketAccess  - 샌드박스 계좌. 항상 거래 시간, 계좌가 없으면 새로 연다

[ 호출하는 곳 ]
    - run_robot.py에서 모드에 따라 생성하여 runner/robot_runner.py::RobotRunner.start()에 전달
"""

import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from dividend_robot.brokers.invest_api import InvestApiClient
from dividend_robot.core.market_access import (
    CredentialsError,
    Dividend,
    Instrument,
    InvestApiError,
    MarketAccess,
    Order,
    PortfolioPosition,
    PortfolioSnapshot,
)
from dividend_robot.utils.money import (
    money_currency,
    parse_timestamp,
    quotation_to_decimal,
)

logger = logging.getLogger("dividend_robot.broker")

DIVIDEND_LOOKAHEAD = timedelta(days=30)
FULL_ACCESS = "ACCOUNT_ACCESS_LEVEL_FULL_ACCESS"


# ─── 응답 변환 ──────────────────────────────────────────────────────────────

def parse_instrument(data: dict[str, Any]) -> Instrument:
    return Instrument(
        instrument_id=data.get("figi", ""),
        ticker=data.get("ticker", ""),
        lot_size=int(data.get("lot", 1) or 1),
        currency=str(data.get("currency", "")).lower(),
        exchange=data.get("exchange", ""),
        name=data.get("name", ""),
    )


def parse_dividend(data: dict[str, Any]) -> Dividend:
    net = data.get("dividendNet")
    return Dividend(
        last_buy_date=parse_timestamp(data.get("lastBuyDate")),
        net_amount=quotation_to_decimal(net),
        currency=money_currency(net),
        declared_date=parse_timestamp(data.get("declaredDate")),
    )


def parse_position(data: dict[str, Any]) -> PortfolioPosition:
    """포지션 변환. API의 expectedYield는 금액이므로 매입원가 대비 %로 환산한다."""
    quantity = quotation_to_decimal(data.get("quantity"))
    average_price = quotation_to_decimal(data.get("averagePositionPrice"))
    expected_amount = quotation_to_decimal(data.get("expectedYield"))
    cost = average_price * quantity
    expected_yield = expected_amount / cost * 100 if cost > 0 else Decimal(0)
    return PortfolioPosition(
        instrument_id=data.get("figi", ""),
        quantity=int(quantity),
        quantity_lots=int(quotation_to_decimal(data.get("quantityLots"))),
        instrument_type=data.get("instrumentType", ""),
        expected_yield=expected_yield,
    )


def parse_portfolio(data: dict[str, Any]) -> PortfolioSnapshot:
    expected = data.get("expectedYield")
    return PortfolioSnapshot(
        total_cash=quotation_to_decimal(data.get("totalAmountCurrencies")),
        total_shares=quotation_to_decimal(data.get("totalAmountShares")),
        positions=[parse_position(p) for p in data.get("positions", [])],
        expected_yield=quotation_to_decimal(expected) if expected else None,
    )


def parse_order(data: dict[str, Any]) -> Order:
    return Order(
        order_id=data.get("orderId", ""),
        instrument_id=data.get("figi", ""),
        lots_requested=int(data.get("lotsRequested", 0) or 0),
        lots_executed=int(data.get("lotsExecuted", 0) or 0),
    )


# ─── 공통 베이스 ────────────────────────────────────────────────────────────

class InvestMarketBase(MarketAccess):
    """실계좌/샌드박스 공통 구현. 계좌별 호출(포트폴리오/주문)은 하위 클래스가 구현."""

    def __init__(self, client: InvestApiClient, exchange: str = "MOEX"):
        self.client = client
        self.exchange = exchange

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def get_instrument(self, instrument_id: str) -> Instrument:
        return parse_instrument(self.client.share_by_figi(instrument_id))

    def get_dividends(self, instrument_id: str) -> list[Dividend]:
        start = self.now()
        items = self.client.get_dividends(instrument_id, start, start + DIVIDEND_LOOKAHEAD)
        dividends = [parse_dividend(d) for d in items]
        far_future = datetime.max.replace(tzinfo=timezone.utc)
        return sorted(dividends, key=lambda d: d.last_buy_date or far_future)

    def get_last_price(self, instrument_id: str) -> Optional[Decimal]:
        prices = self.client.get_last_prices([instrument_id])
        if not prices or "price" not in prices[0]:
            logger.info(f"Could not get last prices for {instrument_id}")
            return None
        return quotation_to_decimal(prices[0]["price"])

    def validate_credentials(self) -> Optional[str]:
        if not self.client.token:
            return "Token is not configured. Please, configure it in config.yaml"
        try:
            self.client.get_accounts()
        except InvestApiError as e:
            logger.info(f"토큰 검증 실패: {e}")
            return "Token is not valid"
        return None

    def _new_order_payload(self, instrument_id: str, lots: int, direction: str) -> dict[str, Any]:
        return {
            "figi": instrument_id,
            "quantity": str(lots),
            "direction": direction,
            "orderType": "ORDER_TYPE_MARKET",
            "orderId": str(uuid.uuid4()),
        }


# ─── 실계좌 ─────────────────────────────────────────────────────────────────

class LiveMarketAccess(InvestMarketBase):
    """실계좌 시장 접근."""

    mode_name = "live"

    def __init__(self, client: InvestApiClient, account_id: str, exchange: str = "MOEX"):
        super().__init__(client, exchange)
        self.account_id = account_id

    def get_portfolio(self) -> PortfolioSnapshot:
        data = self.client.call("OperationsService", "GetPortfolio", {"accountId": self.account_id})
        return parse_portfolio(data)

    def is_working_hours(self) -> bool:
        """거래소 일정에서 현재 시각이 속한 거래일을 찾아 판단."""
        now = self.now()
        exchanges = self.client.trading_schedules(self.exchange, now, now + timedelta(minutes=1))
        for schedule in exchanges:
            for day in schedule.get("days", []):
                start = parse_timestamp(day.get("startTime"))
                end = parse_timestamp(day.get("endTime"))
                if start is not None and start > now:
                    return False
                if end is not None and now < end:
                    return bool(day.get("isTradingDay", False))
        return False

    def buy_market(self, instrument_id: str, lots: int) -> str:
        logger.info(f"buy {instrument_id} lots={lots}")
        return self._post_order(instrument_id, lots, "ORDER_DIRECTION_BUY")

    def sell_market(self, instrument_id: str, lots: int) -> str:
        logger.info(f"sell {instrument_id} lots={lots}")
        return self._post_order(instrument_id, lots, "ORDER_DIRECTION_SELL")

    def _post_order(self, instrument_id: str, lots: int, direction: str) -> str:
        payload = self._new_order_payload(instrument_id, lots, direction)
        payload["accountId"] = self.account_id
        self.client.call("OrdersService", "PostOrder", payload)
        return payload["orderId"]

    def get_open_orders(self) -> list[Order]:
        data = self.client.call("OrdersService", "GetOrders", {"accountId": self.account_id})
        return [parse_order(o) for o in data.get("orders", [])]

    def cancel_order(self, order_id: str) -> None:
        self.client.call("OrdersService", "CancelOrder", {
            "accountId": self.account_id,
            "orderId": order_id,
        })

    def validate_credentials(self) -> Optional[str]:
        error = super().validate_credentials()
        if error is not None:
            return error
        if not self.account_id:
            return "Market account is not configured. Please, set broker.market_account in config.yaml"
        try:
            accounts = self.client.get_accounts()
        except InvestApiError:
            return "Token is not valid"
        account = next((a for a in accounts if a.get("id") == self.account_id), None)
        if account is None:
            return f"Account {self.account_id} is not available for this token"
        if account.get("accessLevel") != FULL_ACCESS:
            return "Token is not valid for real market. It is readonly."
        return None


# ─── 샌드박스 ───────────────────────────────────────────────────────────────

class SandboxMarketAccess(InvestMarketBase):
    """샌드박스 계좌 시장 접근. 샌드박스는 항상 주문 가능하다고 본다."""

    mode_name = "sandbox"

    def __init__(self, client: InvestApiClient, account_id: str = "", exchange: str = "MOEX"):
        super().__init__(client, exchange)
        self._account_id = account_id
        self._account_lock = threading.Lock()

    @property
    def account_id(self) -> str:
        """설정된 계좌가 없으면 새 샌드박스 계좌를 열어 사용."""
        with self._account_lock:
            if not self._account_id:
                logger.info("no sandbox account was set. creating a new one")
                data = self.client.call("SandboxService", "OpenSandboxAccount")
                account_id = data.get("accountId")
                if not account_id:
                    raise CredentialsError("Could not open sandbox account")
                self._account_id = account_id
                logger.info(f"new sandbox account: {account_id}")
            return self._account_id

    def get_portfolio(self) -> PortfolioSnapshot:
        data = self.client.call("SandboxService", "GetSandboxPortfolio", {"accountId": self.account_id})
        return parse_portfolio(data)

    def is_working_hours(self) -> bool:
        return True

    def buy_market(self, instrument_id: str, lots: int) -> str:
        logger.info(f"buy {instrument_id} lots={lots}")
        return self._post_order(instrument_id, lots, "ORDER_DIRECTION_BUY")

    def sell_market(self, instrument_id: str, lots: int) -> str:
        logger.info(f"sell {instrument_id} lots={lots}")
        return self._post_order(instrument_id, lots, "ORDER_DIRECTION_SELL")

    def _post_order(self, instrument_id: str, lots: int, direction: str) -> str:
        payload = self._new_order_payload(instrument_id, lots, direction)
        payload["accountId"] = self.account_id
        self.client.call("SandboxService", "PostSandboxOrder", payload)
        return payload["orderId"]

    def get_open_orders(self) -> list[Order]:
        data = self.client.call("SandboxService", "GetSandboxOrders", {"accountId": self.account_id})
        return [parse_order(o) for o in data.get("orders", [])]

    def cancel_order(self, order_id: str) -> None:
        self.client.call("SandboxService", "CancelSandboxOrder", {
            "accountId": self.account_id,
            "orderId": order_id,
        })
