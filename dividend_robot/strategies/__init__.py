"""
전략 모듈.

[ 구성 ]
    configuration.py          - 런타임 전략 파라미터 (검증된 setter, 스냅샷)
    pre_dividends_strategy.py - 배당 전 매수 전략 (step 한 번 = 하루치 판단)

    전략은 하나뿐이며 실계좌/샌드박스/백테스트 모두 같은 클래스를 사용한다.
    어느 시장에서 돌지는 strategy.market에 주입된 MarketAccess 구현체가 결정한다.
"""

from dividend_robot.strategies.configuration import StrategyConfiguration, StrategyParams
from dividend_robot.strategies.pre_dividends_strategy import (
    CASH_SAFETY_RATIO,
    DividendIdea,
    PreDividendsStrategy,
)

__all__ = [
    "CASH_SAFETY_RATIO",
    "DividendIdea",
    "PreDividendsStrategy",
    "StrategyConfiguration",
    "StrategyParams",
]
