"""
증권사(Tinkoff Invest) REST 게이트웨이 클라이언트.

[ 역할 ]
    gRPC 서비스의 REST 프록시(/rest/tinkoff.public.invest.api.contract.v1.<Service>/<Method>)를
    requests로 호출하는 얇은 클라이언트. 모든 호출은 POST + JSON + Bearer 토큰이며,
    요청마다 타임아웃을 건다.

[ 호출하는 곳 ]
    - brokers/invest_broker.py::LiveMarketAccess / SandboxMarketAccess
    - brokers/history.py::InvestApiHistoryProvider (백테스트 과거 데이터)

[ 오류 처리 ]
    HTTP 오류/네트워크 오류는 모두 core.market_access.InvestApiError로 변환.
    응답 본문의 {"code", "message", "description"}를 메시지에 포함한다.
"""

import logging
from datetime import datetime
from typing import Any, Optional

import requests

from dividend_robot.core.market_access import InvestApiError
from dividend_robot.utils.config import BrokerConfig
from dividend_robot.utils.money import format_timestamp

logger = logging.getLogger("dividend_robot.broker")

CONTRACT_PREFIX = "tinkoff.public.invest.api.contract.v1"


class InvestApiClient:
    """REST 게이트웨이 클라이언트.

    사용 예:
        client = InvestApiClient(token, base_url="https://sandbox-invest-public-api.tinkoff.ru/rest/")
        share = client.share_by_figi("BBG004730RP0")
    """

    def __init__(
        self,
        token: str,
        base_url: str,
        app_name: str = "dividend-robot",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/") + "/"
        self.app_name = app_name
        self.timeout = timeout
        self._session = session or requests.Session()

    @classmethod
    def from_config(cls, config: BrokerConfig, sandbox: bool) -> "InvestApiClient":
        return cls(
            token=config.token,
            base_url=config.sandbox_url if sandbox else config.live_url,
            app_name=config.app_name,
            timeout=config.request_timeout,
        )

    def call(self, service: str, method: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """서비스 메서드 호출. 응답 JSON(dict) 반환."""
        if not self.token:
            raise InvestApiError("Token is not configured")

        url = f"{self.base_url}{CONTRACT_PREFIX}.{service}/{method}"
        headers = {
            "Authorization": f"Bearer {self.token}",
            "x-app-name": self.app_name,
            "Content-Type": "application/json",
        }
        try:
            response = self._session.post(url, json=payload or {}, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise InvestApiError(f"{service}/{method} request failed: {e}") from e

        if response.status_code != 200:
            try:
                body = response.json()
            except ValueError:
                body = {}
            code = str(body.get("code", ""))
            message = body.get("message") or body.get("description") or response.text
            raise InvestApiError(
                f"{service}/{method} failed ({response.status_code}, code={code}): {message}",
                status_code=response.status_code,
                code=code,
            )
        return response.json()

    # ─── InstrumentsService ─────────────────────────────────────────────

    def share_by_figi(self, figi: str) -> dict[str, Any]:
        data = self.call("InstrumentsService", "ShareBy", {
            "idType": "INSTRUMENT_ID_TYPE_FIGI",
            "id": figi,
        })
        return data.get("instrument", {})

    def get_dividends(self, figi: str, start: datetime, end: datetime) -> list[dict[str, Any]]:
        data = self.call("InstrumentsService", "GetDividends", {
            "figi": figi,
            "from": format_timestamp(start),
            "to": format_timestamp(end),
        })
        return data.get("dividends", [])

    def trading_schedules(self, exchange: str, start: datetime, end: datetime) -> list[dict[str, Any]]:
        data = self.call("InstrumentsService", "TradingSchedules", {
            "exchange": exchange,
            "from": format_timestamp(start),
            "to": format_timestamp(end),
        })
        return data.get("exchanges", [])

    # ─── MarketDataService ──────────────────────────────────────────────

    def get_last_prices(self, figis: list[str]) -> list[dict[str, Any]]:
        data = self.call("MarketDataService", "GetLastPrices", {"figi": figis})
        return data.get("lastPrices", [])

    def get_daily_candles(self, figi: str, start: datetime, end: datetime) -> list[dict[str, Any]]:
        data = self.call("MarketDataService", "GetCandles", {
            "figi": figi,
            "from": format_timestamp(start),
            "to": format_timestamp(end),
            "interval": "CANDLE_INTERVAL_DAY",
        })
        return data.get("candles", [])

    # ─── UsersService ───────────────────────────────────────────────────

    def get_accounts(self) -> list[dict[str, Any]]:
        data = self.call("UsersService", "GetAccounts")
        return data.get("accounts", [])
