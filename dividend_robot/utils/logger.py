"""
로깅 모듈.

[ 역할 ]
    실행 모드별 로그 파일 + 콘솔 로거를 설정. 스텝 실행, 주문, 재시도, 에러 등을 기록.
    실계좌/샌드박스/백테스트 기록이 한 파일에 섞이지 않도록 파일 이름에 모드를 넣는다.
    스텝은 스케줄러 워커 스레드에서도 실행되므로 포맷에 스레드 이름을 포함한다.

[ 로그 파일 위치 ]
    {log_dir}/{name}_{mode}_{YYYYMMDD}.log (예: logs/dividend_robot_live_20240601.log)
    mode가 없으면 {log_dir}/{name}_{YYYYMMDD}.log

[ 호출하는 곳 ]
    - run_robot.py에서 setup_logger(mode=args.mode) 호출
    - 각 모듈은 logging.getLogger("dividend_robot.xxx")로 하위 로거 사용
      (strategy / runner / backtest / broker)
"""

import logging
import sys
from datetime import date
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# 증권사 REST 호출마다 남는 연결 로그는 WARNING 이상만
NOISY_LOGGERS = ("urllib3", "requests")


def log_file_path(log_dir: str, name: str, mode: str | None = None, day: date | None = None) -> Path:
    """모드/날짜별 로그 파일 경로."""
    stamp = (day or date.today()).strftime("%Y%m%d")
    stem = f"{name}_{mode}" if mode else name
    return Path(log_dir) / f"{stem}_{stamp}.log"


def setup_logger(
    name: str = "dividend_robot",
    level: str = "INFO",
    log_dir: str | None = "logs",
    mode: str | None = None,
    console: bool = True,
) -> logging.Logger:
    """패키지 루트 로거 설정.

    Args:
        level: "INFO" / "DEBUG" 등
        log_dir: 로그 디렉토리. None이면 파일 핸들러 없음
        mode: "live" / "sandbox" / "backtest" / "status". 파일 이름에 들어간다
        console: 콘솔 핸들러 등록 여부
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if log_dir:
        path = log_file_path(log_dir, name, mode)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger
