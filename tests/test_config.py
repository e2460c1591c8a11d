"""Config 로드/저장 테스트."""

import json

from dividend_robot.utils.config import Config


def test_defaults():
    config = Config()
    assert config.strategy.min_dividend_yield == 5.0
    assert config.scheduler.max_retries == 8
    assert config.scheduler.retry_delay_minutes == 30
    assert config.backtest.control_figi == "BBG004730RP0"
    assert config.broker.exchange == "MOEX"


def test_from_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "strategy:\n"
        "  min_dividend_yield: 7\n"
        "  allowed_figis: \"A B C\"\n"
        "broker:\n"
        "  token: secret\n"
        "  unknown_key: 1\n"
        "scheduler:\n"
        "  max_retries: 3\n"
        "log_level: DEBUG\n",
        encoding="utf-8",
    )
    config = Config.from_yaml(path)

    assert config.strategy.min_dividend_yield == 7
    assert config.strategy.allowed_figis == ["A", "B", "C"]
    assert config.strategy.sufficient_profit == 3.0
    assert config.broker.token == "secret"
    assert config.scheduler.max_retries == 3
    assert config.log_level == "DEBUG"


def test_empty_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("", encoding="utf-8")
    assert Config.from_yaml(path) == Config()


def test_from_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"backtest": {"days": 30, "initial_cash": 5000}}), encoding="utf-8")
    config = Config.from_json(path)
    assert config.backtest.days == 30
    assert config.backtest.initial_cash == 5000


def test_save_and_reload(tmp_path):
    config = Config()
    config.strategy.allowed_figis = ["X", "Y"]
    config.backtest.days = 10
    path = tmp_path / "nested" / "config.yaml"

    config.save_yaml(path)
    assert Config.from_yaml(path) == config
