"""
=============================================================================
배당 전 매수 자동매매 로봇 (Dividend Robot)
=============================================================================

[ 시스템 전체 구조 ]

    run_robot.py (진입점)
         │
         ├── utils/config.py        ← config.yaml 설정 로드
         ├── utils/logger.py        ← 로깅
         │
         ├── strategies/            ← 배당 전 매수 전략 (의사결정)
         │     ├── configuration.py         (런타임 파라미터)
         │     └── pre_dividends_strategy.py
         │
         ├── runner/robot_runner.py ← 실계좌/샌드박스: 하루 1회 실행 + 재시도
         │
         └── backtest/engine.py     ← 백테스트: 과거 데이터를 하루씩 재생
               │
               ├── brokers/backtest_broker.py  ← 재생 시장 (가상 체결)
               ├── data/portfolio.py           ← 가상 포지션/거래기록
               └── backtest/metrics.py         ← 성과 지표 계산


[ 핵심 추상 클래스 (core/) - 모든 구현체의 부모 ]

    core/market_access.py    → brokers/invest_broker.py::LiveMarketAccess    (실계좌)
                             → brokers/invest_broker.py::SandboxMarketAccess (샌드박스)
                             → brokers/backtest_broker.py::ReplayMarketAccess (백테스트)

    core/history_provider.py → brokers/history.py::InvestApiHistoryProvider (증권사 API)
                             → brokers/history.py::FrameHistoryProvider     (DataFrame)


[ 데이터 흐름 ]

    1. config.yaml에서 전략 파라미터 / 토큰 / 스케줄 로드
    2. 실행 모드에 맞는 MarketAccess 구현체 생성
    3. PreDividendsStrategy.step()이 배당 아이디어를 찾고 포지션을 정리/매수
    4. 실계좌/샌드박스는 RobotRunner가, 백테스트는 BacktestEngine이 step()을 호출
    5. 백테스트는 metrics.py가 일별 총 자산과 거래 결과로 성과 지표 계산
"""

__version__ = "0.1.0"
