# tests/test_config.py
import json
from pathlib import Path

import pytest

from actionbet.config import (
    BandThresholds,
    SessionConfig,
    TimingConfig,
    load_environment_config,
    load_session_config,
    parse_session_config,
)

DEFAULT_CONFIG = Path(__file__).resolve().parents[1] / "configs" / "session.default.yaml"


def test_parse_session_config_defaults():
    config = parse_session_config({})

    assert config.timing.opportunity_duration_ms == 10000
    assert config.timing.pause_timeout_ms == 15000
    assert config.timing.resume_countdown_seconds == 3
    assert config.timing.queue_staleness_ms == 30000
    assert config.timing.dequeue_delay_ms == 0
    assert config.thresholds == BandThresholds(warning=0.5, urgent=0.25)
    assert config.priorities == {}
    assert config.default_stake == 25.0
    assert config.pause_reason == "BETTING_OPPORTUNITY"


def test_parse_none_returns_defaults():
    assert parse_session_config(None) == SessionConfig()


def test_parse_session_config_overrides():
    payload = {
        "timing": {
            "opportunity_duration_ms": 8000,
            "pause_timeout_ms": 20000,
            "queue_staleness_ms": None,
            "dequeue_delay_ms": 500,
        },
        "thresholds": {"warning": 0.6, "urgent": 0.2},
        "priorities": {"next_goal_bet": 4},
        "default_stake": 10,
        "max_stake": 100,
        "pause_reason": "VAR_CHECK",
    }
    config = parse_session_config(payload)

    assert config.timing.opportunity_duration_ms == 8000
    assert config.timing.pause_timeout_ms == 20000
    assert config.timing.queue_staleness_ms is None
    assert config.timing.dequeue_delay_ms == 500
    assert config.thresholds.warning == 0.6
    assert config.priorities == {"NEXT_GOAL_BET": 4}
    assert config.max_stake == 100
    assert config.pause_reason == "VAR_CHECK"


@pytest.mark.parametrize("payload", [
    {"timing": {"opportunity_duration_ms": 0}},
    {"timing": {"pause_timeout_ms": -1}},
    {"timing": {"countdown_tick_ms": 250}},
    {"thresholds": {"warning": 0.2, "urgent": 0.5}},
    {"priorities": ["CORNER_BET"]},
    {"default_stake": 0},
    {"default_stake": 50, "max_stake": 10},
    {"pause_reason": "  "},
])
def test_parse_session_config_rejects_invalid(payload):
    with pytest.raises(ValueError):
        parse_session_config(payload)


def test_parse_rejects_non_mapping():
    with pytest.raises(ValueError):
        parse_session_config(["timing"])


def test_timing_config_validation():
    with pytest.raises(ValueError):
        TimingConfig(match_tick_ms=0)
    with pytest.raises(ValueError):
        TimingConfig(resume_countdown_seconds=-1)


def test_load_default_yaml():
    config = load_session_config(DEFAULT_CONFIG)
    assert config == SessionConfig()


def test_load_json(tmp_path):
    path = tmp_path / "session.json"
    path.write_text(json.dumps({"timing": {"pause_timeout_ms": 5000}}), encoding="utf-8")

    config = load_session_config(path)
    assert config.timing.pause_timeout_ms == 5000


def test_load_yaml(tmp_path):
    path = tmp_path / "session.yml"
    path.write_text("priorities:\n  corner_bet: 12\ndefault_stake: 5\n", encoding="utf-8")

    config = load_session_config(path)
    assert config.priorities == {"CORNER_BET": 12}
    assert config.default_stake == 5


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_session_config(tmp_path / "missing.yaml")


def _isolate_env(monkeypatch, *names):
    # setenv 先記錄原值，確保測試後還原
    for name in names:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def test_load_environment_config_from_dotenv(tmp_path, monkeypatch):
    _isolate_env(monkeypatch, "LOG_LEVEL", "ACTIONBET_CONFIG", "ACTIONBET_TIMELINE", "ACTIONBET_REALTIME")
    env_file = tmp_path / ".env"
    env_file.write_text(
        "LOG_LEVEL=DEBUG\nACTIONBET_TIMELINE=match.ndjson\nACTIONBET_REALTIME=0\n", encoding="utf-8"
    )

    env = load_environment_config(env_file)

    assert env["log_level"] == "DEBUG"
    assert env["timeline_file"] == "match.ndjson"
    assert env["config_file"] == ""
    assert env["realtime"] is False


def test_environment_wins_over_dotenv(tmp_path, monkeypatch):
    _isolate_env(monkeypatch, "ACTIONBET_REALTIME")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    env_file = tmp_path / ".env"
    env_file.write_text("LOG_LEVEL=DEBUG\n", encoding="utf-8")

    env = load_environment_config(env_file)

    assert env["log_level"] == "WARNING"
    assert env["realtime"] is True
