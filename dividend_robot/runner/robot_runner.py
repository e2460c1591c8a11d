"""
전략 실행 스케줄러.

[ 역할 ]
    PreDividendsStrategy.step()을 하루 한 번 실행하고, 실패하면 30분 간격으로
    최대 8번 재시도한다. 스텝은 절대 겹쳐 실행되지 않으며, stop()은 실행 중인
    스텝이 끝날 때까지 기다린 뒤 반환한다.

[ 상태 ]
    IDLE ──start()──▶ STARTING ──첫 스텝 완료──▶ SCHEDULED ──stop()──▶ STOPPING ──▶ IDLE

[ 동작 방식 ]
    - 락 하나 + Condition 하나로 상태(_state), 실행 중 여부(_executing),
      다음 정기 실행 시각(_next_regular), 재시도 상태(_retry)를 보호
    - 워커 스레드 하나가 "정기 실행"과 "재시도" 중 더 이른 시각까지 기다렸다가 실행
      → 정기 실행과 재시도가 같은 스레드에서 돌기 때문에 동시에 실행될 수 없음
    - 정기 실행이 먼저 오면 남아 있던 재시도 체인은 버리고 0부터 다시 센다
    - stop()은 세대(_generation)를 올려 예약을 모두 무효화한 뒤 실행 중 스텝을 기다린다
    - 스텝이 실행 중이면 STOPPING 에서 IDLE 로 넘기는 것은 그 스텝을 실행한 스레드다
      → 스텝 안에서 stop()을 불러도 자기 자신을 기다리지 않고, 스텝이 끝나기 전에는
        새 start()가 받아들여지지 않는다

[ 호출하는 곳 ]
    - run_robot.py --mode live | sandbox
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

from dividend_robot.core.market_access import MarketAccess
from dividend_robot.strategies.pre_dividends_strategy import PreDividendsStrategy
from dividend_robot.utils.config import SchedulerConfig

logger = logging.getLogger("dividend_robot.runner")


class RunnerState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    SCHEDULED = "scheduled"
    STOPPING = "stopping"


@dataclass
class RetryState:
    """현재 실패 체인의 재시도 상태."""
    attempt: int = 0                      # 이미 예약한 재시도 횟수
    deadline: Optional[datetime] = None   # 다음 재시도 시각 (없으면 None)


class RobotRunner:
    """하루 1회 스텝 실행 + 실패 시 제한된 재시도."""

    def __init__(
        self,
        strategy: PreDividendsStrategy,
        timezone: str = "Europe/Moscow",
        anchor_offset: timedelta = timedelta(hours=36),
        period: timedelta = timedelta(hours=24),
        retry_delay: timedelta = timedelta(minutes=30),
        max_retries: int = 8,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.strategy = strategy
        self.tz = ZoneInfo(timezone)
        self.anchor_offset = anchor_offset
        self.period = period
        self.retry_delay = retry_delay
        self.max_retries = max_retries
        self._clock = clock or (lambda: datetime.now(self.tz))

        self._condition = threading.Condition(threading.Lock())
        self._state = RunnerState.IDLE
        self._executing = False
        self._executing_thread: Optional[threading.Thread] = None
        self._generation = 0
        self._next_regular: Optional[datetime] = None
        self._retry = RetryState()
        self._worker: Optional[threading.Thread] = None
        self.steps_executed = 0

    @classmethod
    def from_config(cls, strategy: PreDividendsStrategy, config: SchedulerConfig) -> "RobotRunner":
        return cls(
            strategy=strategy,
            timezone=config.timezone,
            anchor_offset=timedelta(hours=config.anchor_hours),
            period=timedelta(hours=config.period_hours),
            retry_delay=timedelta(minutes=config.retry_delay_minutes),
            max_retries=config.max_retries,
        )

    @property
    def state(self) -> RunnerState:
        with self._condition:
            return self._state

    @property
    def is_executing(self) -> bool:
        with self._condition:
            return self._executing

    def first_trigger_time(self, now: datetime) -> datetime:
        """첫 정기 실행 시각: 오늘 0시(설정 시간대) + anchor_offset (기본 내일 정오)."""
        midnight = now.astimezone(self.tz).replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight + self.anchor_offset

    def start(self, market: MarketAccess) -> tuple[bool, str]:
        """검증 → 바인딩 → 즉시 1회 실행 → 정기 실행 예약.

        Returns:
            (시작 여부, 메시지)
        """
        with self._condition:
            busy = self._check_idle()
        if busy is not None:
            return False, busy

        error = market.validate_credentials()
        if error is not None:
            logger.warning(f"시작 실패 (검증 오류): {error}")
            return False, error

        with self._condition:
            # 검증하는 동안 다른 start()가 먼저 들어왔을 수 있다
            busy = self._check_idle()
            if busy is not None:
                return False, busy
            self._state = RunnerState.STARTING
            self._generation += 1
            generation = self._generation
            self._retry = RetryState()
            self.strategy.market = market
            self._begin_step()

        ok = self._execute_step()

        with self._condition:
            if not self._finish_step(generation):
                logger.info("첫 스텝 실행 중 중지됨")
                return False, "Robot was stopped during the first step"
            self._after_step(ok)
            self._next_regular = self.first_trigger_time(self._clock())
            self._state = RunnerState.SCHEDULED
            self._worker = threading.Thread(
                target=self._run,
                args=(generation,),
                name="robot-runner",
                daemon=True,
            )
            self._worker.start()
            logger.info(f"정기 실행 예약: {self._next_regular} 부터 {self.period} 간격")

        suffix = f" in {market.mode_name}" if market.mode_name and market.mode_name != "live" else ""
        return True, f"Robot is started{suffix}"

    def stop(self) -> bool:
        """예약 해제 후 실행 중인 스텝이 끝날 때까지 대기. 실행 중이 아니었으면 False.

        스텝 안에서 호출되면 기다리지 않고 바로 반환한다. 이때 러너는 그 스텝이
        끝날 때까지 STOPPING에 머문다.
        """
        current = threading.current_thread()
        with self._condition:
            if self._state == RunnerState.IDLE:
                return False
            if self._state != RunnerState.STOPPING:
                self._state = RunnerState.STOPPING
                self._generation += 1
                self._next_regular = None
                self._retry = RetryState()
                self._condition.notify_all()
                if not self._executing:
                    self._state = RunnerState.IDLE
            worker, self._worker = self._worker, None

            if current is self._executing_thread:
                logger.info("스텝 안에서 중지 요청, 스텝이 끝나면 중지됨")
                return True
            while self._state == RunnerState.STOPPING:
                self._condition.wait()

        if worker is not None and worker is not current:
            worker.join()
        logger.info("Robot is stopped")
        return True

    def status(self) -> dict[str, Any]:
        with self._condition:
            return {
                "state": self._state.value,
                "executing": self._executing,
                "next_run": self._next_regular,
                "retry_attempt": self._retry.attempt,
                "retry_at": self._retry.deadline,
                "steps_executed": self.steps_executed,
            }

    # ─── 내부 ───────────────────────────────────────────────────────────

    def _check_idle(self) -> Optional[str]:
        """IDLE이 아니면 거절 메시지를 반환. 중지 중이면 끝날 때까지 기다린다. 락을 잡은 상태에서 호출."""
        current = threading.current_thread()
        while self._state == RunnerState.STOPPING and current is not self._executing_thread:
            self._condition.wait()
        if self._state != RunnerState.IDLE:
            logger.info(f"이미 실행 중 ({self._state.value})")
            return "Robot is already running. Stop it first"
        return None

    def _begin_step(self) -> None:
        self._executing = True
        self._executing_thread = threading.current_thread()

    def _finish_step(self, generation: int) -> bool:
        """스텝 종료 표시. 그 사이 stop()이 불렸으면 IDLE로 넘기고 False. 락을 잡은 상태에서 호출."""
        self._executing = False
        self._executing_thread = None
        stopped = generation != self._generation
        if stopped:
            self._state = RunnerState.IDLE
        self._condition.notify_all()
        return not stopped

    def _execute_step(self) -> bool:
        try:
            ok = self.strategy.step()
        except Exception:
            logger.exception("step()에서 예외 발생")
            ok = False
        self.steps_executed += 1
        return ok

    def _next_due(self) -> tuple[datetime, bool]:
        """(다음 실행 시각, 재시도 여부). 재시도가 정기 실행보다 빠를 때만 재시도."""
        retry_at = self._retry.deadline
        if retry_at is not None and retry_at < self._next_regular:
            return retry_at, True
        return self._next_regular, False

    def _after_step(self, ok: bool) -> None:
        """스텝 결과에 따라 재시도 상태 갱신. 락을 잡은 상태에서 호출."""
        if ok:
            if self._retry.attempt:
                logger.info(f"재시도 {self._retry.attempt}회 만에 스텝 성공")
            self._retry = RetryState()
            return
        if self._retry.attempt >= self.max_retries:
            logger.info("Failed to execute next step. Stop rescheduling, wait for next day")
            self._retry = RetryState()
            return
        self._retry.attempt += 1
        self._retry.deadline = self._clock() + self.retry_delay
        logger.info(
            f"Failed to execute next step. Try again in {self.retry_delay} "
            f"(retry {self._retry.attempt}/{self.max_retries})"
        )

    def _run(self, generation: int) -> None:
        """워커 스레드 루프. 세대가 바뀌면(stop) 종료."""
        while True:
            with self._condition:
                while True:
                    if generation != self._generation:
                        return
                    due, is_retry = self._next_due()
                    delay = (due - self._clock()).total_seconds()
                    if delay <= 0:
                        break
                    self._condition.wait(timeout=delay)

                if is_retry:
                    self._retry.deadline = None
                else:
                    if self._retry.deadline is not None:
                        logger.info("정기 실행 시각 도달, 남은 재시도 체인 취소")
                    self._retry = RetryState()
                    now = self._clock()
                    while self._next_regular <= now:
                        self._next_regular += self.period
                self._begin_step()

            ok = self._execute_step()

            with self._condition:
                if not self._finish_step(generation):
                    return
                self._after_step(ok)
