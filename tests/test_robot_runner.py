"""RobotRunner 테스트: 시작/중지, 단일 실행 보장, 재시도 한도."""

import threading
import time
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from dividend_robot.runner.robot_runner import RobotRunner, RunnerState

MOSCOW = ZoneInfo("Europe/Moscow")


class ScriptedStrategy:
    """step() 결과를 지정할 수 있는 전략 대역."""

    def __init__(self, result: bool = True, duration: float = 0.0):
        self.market = None
        self.result = result
        self.duration = duration
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def step(self) -> bool:
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        if self.duration:
            time.sleep(self.duration)
        with self._lock:
            self.active -= 1
        return self.result


class SelfStoppingStrategy(ScriptedStrategy):
    """stop_on_call 번째 step() 안에서 runner.stop()을 호출하는 전략 대역."""

    def __init__(self, stop_on_call: int, release: threading.Event | None = None):
        super().__init__()
        self.runner = None
        self.stop_on_call = stop_on_call
        self.release = release
        self.stop_result = None
        self.stopped_inside = threading.Event()

    def step(self) -> bool:
        with self._lock:
            self.calls += 1
            call = self.calls
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if call == self.stop_on_call:
                self.stop_result = self.runner.stop()
                self.stopped_inside.set()
                if self.release is not None:
                    self.release.wait(5)
            return True
        finally:
            with self._lock:
                self.active -= 1


def start_in_thread(runner, market):
    """start()를 별도 스레드에서 호출. (스레드, 결과 리스트)"""
    result = []
    thread = threading.Thread(target=lambda: result.append(runner.start(market)), daemon=True)
    thread.start()
    return thread, result


class FastRunner(RobotRunner):
    """첫 정기 실행을 바로 직후로 당긴 러너."""

    def __init__(self, strategy, first_delay=timedelta(milliseconds=20), **kwargs):
        super().__init__(strategy, **kwargs)
        self.first_delay = first_delay

    def first_trigger_time(self, now):
        return now + self.first_delay


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestFirstTrigger:

    def test_next_day_noon_in_moscow(self):
        runner = RobotRunner(ScriptedStrategy())
        now = datetime(2024, 6, 3, 23, 30, tzinfo=MOSCOW)
        assert runner.first_trigger_time(now) == datetime(2024, 6, 4, 12, 0, tzinfo=MOSCOW)

    def test_converts_to_configured_timezone(self):
        runner = RobotRunner(ScriptedStrategy())
        now = datetime(2024, 6, 3, 22, 0, tzinfo=ZoneInfo("UTC"))  # 모스크바 6/4 01:00
        assert runner.first_trigger_time(now) == datetime(2024, 6, 5, 12, 0, tzinfo=MOSCOW)


class TestStartStop:

    def test_start_runs_first_step_and_schedules(self, market):
        strategy = ScriptedStrategy()
        runner = RobotRunner(strategy)

        ok, message = runner.start(market)
        try:
            assert ok is True
            assert message == "Robot is started in fake"
            assert strategy.calls == 1
            assert strategy.market is market
            assert runner.state == RunnerState.SCHEDULED
            assert runner.status()["next_run"] > datetime.now(MOSCOW)
        finally:
            runner.stop()
        assert runner.state == RunnerState.IDLE

    def test_credentials_error_prevents_start(self, market):
        market.credentials_error = "Token is not valid"
        strategy = ScriptedStrategy()
        runner = RobotRunner(strategy)

        assert runner.start(market) == (False, "Token is not valid")
        assert strategy.calls == 0
        assert runner.state == RunnerState.IDLE

    def test_second_start_fails_while_running(self, market):
        runner = RobotRunner(ScriptedStrategy())
        assert runner.start(market)[0] is True
        try:
            ok, message = runner.start(market)
            assert ok is False
            assert "already running" in message
        finally:
            runner.stop()

    def test_running_check_comes_before_credentials(self, market):
        runner = RobotRunner(ScriptedStrategy())
        assert runner.start(market)[0] is True
        try:
            market.credentials_error = "Token is not valid"
            assert runner.start(market) == (False, "Robot is already running. Stop it first")
        finally:
            runner.stop()

    def test_stop_when_idle_returns_false(self):
        assert RobotRunner(ScriptedStrategy()).stop() is False

    def test_restart_after_stop(self, market):
        strategy = ScriptedStrategy()
        runner = RobotRunner(strategy)
        runner.start(market)
        runner.stop()
        ok, _ = runner.start(market)
        runner.stop()
        assert ok is True
        assert strategy.calls == 2


class TestScheduling:

    def test_regular_trigger_repeats(self, market):
        strategy = ScriptedStrategy()
        runner = FastRunner(strategy, period=timedelta(milliseconds=20))
        runner.start(market)
        try:
            assert wait_for(lambda: strategy.calls >= 4)
        finally:
            runner.stop()

    def test_steps_never_overlap(self, market):
        strategy = ScriptedStrategy(duration=0.03)
        runner = FastRunner(
            strategy,
            period=timedelta(milliseconds=5),
            retry_delay=timedelta(milliseconds=5),
        )
        runner.start(market)
        try:
            assert wait_for(lambda: strategy.calls >= 5)
        finally:
            runner.stop()
        assert strategy.max_active == 1

    def test_stop_waits_for_running_step(self, market):
        entered = threading.Event()
        release = threading.Event()
        finished = threading.Event()

        class BlockingStrategy(ScriptedStrategy):
            def step(self):
                self.calls += 1
                if self.calls == 1:
                    return True
                entered.set()
                release.wait(5)
                finished.set()
                return True

        strategy = BlockingStrategy()
        runner = FastRunner(strategy)
        runner.start(market)
        assert entered.wait(5)

        stopper = threading.Thread(target=runner.stop)
        stopper.start()
        time.sleep(0.1)
        assert stopper.is_alive()
        assert runner.state == RunnerState.STOPPING

        release.set()
        stopper.join(5)
        assert not stopper.is_alive()
        assert finished.is_set()
        assert runner.state == RunnerState.IDLE
        assert runner.is_executing is False

    def test_stop_inside_first_step(self, market):
        strategy = SelfStoppingStrategy(stop_on_call=1)
        runner = RobotRunner(strategy)
        strategy.runner = runner

        starter, result = start_in_thread(runner, market)
        starter.join(5)

        assert not starter.is_alive()
        assert result == [(False, "Robot was stopped during the first step")]
        assert strategy.stop_result is True
        assert runner.state == RunnerState.IDLE
        assert runner.is_executing is False

    def test_stop_inside_scheduled_step_holds_off_restart(self, market):
        release = threading.Event()
        strategy = SelfStoppingStrategy(stop_on_call=2, release=release)
        runner = FastRunner(strategy)
        strategy.runner = runner
        runner.start(market)
        assert strategy.stopped_inside.wait(5)

        # 스텝이 끝나기 전까지는 중지가 끝난 것이 아니다
        assert strategy.stop_result is True
        assert runner.state == RunnerState.STOPPING
        assert runner.is_executing is True

        starter, result = start_in_thread(runner, market)
        time.sleep(0.1)
        assert starter.is_alive()
        assert strategy.calls == 2

        release.set()
        starter.join(5)
        try:
            assert not starter.is_alive()
            assert result[0][0] is True
            assert strategy.calls >= 3
        finally:
            runner.stop()
        assert strategy.max_active == 1
        assert runner.state == RunnerState.IDLE

    def test_no_steps_after_stop(self, market):
        strategy = ScriptedStrategy()
        runner = FastRunner(strategy, period=timedelta(milliseconds=10))
        runner.start(market)
        assert wait_for(lambda: strategy.calls >= 2)
        runner.stop()
        calls = strategy.calls
        time.sleep(0.1)
        assert strategy.calls == calls


class TestRetries:

    def test_gives_up_after_max_retries(self, market):
        """처음 1회 + 재시도 8회 실패 후에는 다음 정기 실행까지 재시도하지 않는다."""
        strategy = ScriptedStrategy(result=False)
        runner = RobotRunner(strategy, retry_delay=timedelta(milliseconds=10))
        runner.start(market)
        try:
            assert wait_for(lambda: strategy.calls >= 9)
            time.sleep(0.2)
            assert strategy.calls == 9
            status = runner.status()
            assert status["retry_attempt"] == 0
            assert status["retry_at"] is None
        finally:
            runner.stop()

    def test_success_resets_retry_chain(self, market):
        strategy = ScriptedStrategy(result=False)
        runner = RobotRunner(strategy, retry_delay=timedelta(milliseconds=10))
        runner.start(market)
        try:
            assert wait_for(lambda: strategy.calls >= 3)
            strategy.result = True
            assert wait_for(lambda: runner.status()["retry_at"] is None)
            time.sleep(0.1)
            calls = strategy.calls
            time.sleep(0.1)
            assert strategy.calls == calls
            assert runner.status()["retry_attempt"] == 0
        finally:
            runner.stop()

    def test_regular_trigger_supersedes_pending_retry(self, market):
        strategy = ScriptedStrategy(result=False)
        runner = FastRunner(
            strategy,
            period=timedelta(milliseconds=20),
            retry_delay=timedelta(hours=1),
        )
        runner.start(market)
        try:
            assert wait_for(lambda: strategy.calls >= 4)
            # 정기 실행마다 체인이 새로 시작되므로 재시도 횟수는 1을 넘지 않는다
            assert runner.status()["retry_attempt"] <= 1
        finally:
            runner.stop()

    def test_step_exception_counts_as_failure(self, market):
        class RaisingStrategy(ScriptedStrategy):
            def step(self):
                self.calls += 1
                raise RuntimeError("boom")

        strategy = RaisingStrategy()
        runner = RobotRunner(strategy, retry_delay=timedelta(hours=1))
        ok, _ = runner.start(market)
        try:
            assert ok is True
            assert runner.status()["retry_attempt"] == 1
            assert runner.is_executing is False
        finally:
            runner.stop()


@pytest.mark.parametrize("hours, minutes", [(24, 30), (12, 5)])
def test_from_config(hours, minutes):
    from dividend_robot.utils.config import SchedulerConfig

    runner = RobotRunner.from_config(
        ScriptedStrategy(),
        SchedulerConfig(period_hours=hours, retry_delay_minutes=minutes, max_retries=3),
    )
    assert runner.period == timedelta(hours=hours)
    assert runner.retry_delay == timedelta(minutes=minutes)
    assert runner.max_retries == 3
