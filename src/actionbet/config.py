# src/actionbet/config.py
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv


@dataclass(frozen=True)
class TimingConfig:
    opportunity_duration_ms: float = 10_000.0
    pause_timeout_ms: float = 15_000.0
    max_pause_timeout_ms: float = 300_000.0
    resume_countdown_seconds: int = 3
    max_resume_countdown_seconds: int = 10
    countdown_tick_ms: float = 100.0
    queue_staleness_ms: Optional[float] = 30_000.0  # None 表示不丟棄過期機會
    dequeue_delay_ms: float = 0.0
    match_tick_ms: float = 500.0
    match_length_minutes: int = 90

    def __post_init__(self) -> None:
        if self.opportunity_duration_ms <= 0:
            raise ValueError("timing.opportunity_duration_ms must be positive")
        if self.pause_timeout_ms < 0:
            raise ValueError("timing.pause_timeout_ms must not be negative")
        if not 0 < self.countdown_tick_ms <= 100:
            raise ValueError("timing.countdown_tick_ms must be within (0, 100]")
        if self.resume_countdown_seconds < 0:
            raise ValueError("timing.resume_countdown_seconds must not be negative")
        if self.match_tick_ms <= 0:
            raise ValueError("timing.match_tick_ms must be positive")


@dataclass(frozen=True)
class BandThresholds:
    warning: float = 0.5
    urgent: float = 0.25

    def __post_init__(self) -> None:
        if not 0 <= self.urgent < self.warning <= 1:
            raise ValueError("thresholds must satisfy 0 <= urgent < warning <= 1")


@dataclass(frozen=True)
class SessionConfig:
    timing: TimingConfig = TimingConfig()
    thresholds: BandThresholds = BandThresholds()
    priorities: Dict[str, int] = field(default_factory=dict)  # 覆寫預設優先級表
    default_stake: float = 25.0
    max_stake: float = 10_000.0
    pause_reason: str = "BETTING_OPPORTUNITY"


def _parse_timing(cfg: Optional[Dict[str, Any]]) -> TimingConfig:
    if not cfg:
        return TimingConfig()
    defaults = TimingConfig()
    staleness_raw = cfg.get("queue_staleness_ms", defaults.queue_staleness_ms)
    return TimingConfig(
        opportunity_duration_ms=float(cfg.get("opportunity_duration_ms", defaults.opportunity_duration_ms)),
        pause_timeout_ms=float(cfg.get("pause_timeout_ms", defaults.pause_timeout_ms)),
        max_pause_timeout_ms=float(cfg.get("max_pause_timeout_ms", defaults.max_pause_timeout_ms)),
        resume_countdown_seconds=int(cfg.get("resume_countdown_seconds", defaults.resume_countdown_seconds)),
        max_resume_countdown_seconds=int(
            cfg.get("max_resume_countdown_seconds", defaults.max_resume_countdown_seconds)
        ),
        countdown_tick_ms=float(cfg.get("countdown_tick_ms", defaults.countdown_tick_ms)),
        queue_staleness_ms=float(staleness_raw) if staleness_raw is not None else None,
        dequeue_delay_ms=float(cfg.get("dequeue_delay_ms", defaults.dequeue_delay_ms)),
        match_tick_ms=float(cfg.get("match_tick_ms", defaults.match_tick_ms)),
        match_length_minutes=int(cfg.get("match_length_minutes", defaults.match_length_minutes)),
    )


def _parse_thresholds(cfg: Optional[Dict[str, Any]]) -> BandThresholds:
    if not cfg:
        return BandThresholds()
    return BandThresholds(
        warning=float(cfg.get("warning", BandThresholds.warning)),
        urgent=float(cfg.get("urgent", BandThresholds.urgent)),
    )


def _parse_priorities(cfg: Optional[Dict[str, Any]]) -> Dict[str, int]:
    if not cfg:
        return {}
    if not isinstance(cfg, dict):
        raise ValueError("priorities must be a mapping of event type to rank")
    return {str(key).upper(): int(value) for key, value in cfg.items()}


def parse_session_config(data: Optional[Dict[str, Any]], context: str = "<dict>") -> SessionConfig:
    if data is None:
        return SessionConfig()
    if not isinstance(data, dict):
        raise ValueError(f"Session config must be a mapping in {context}")
    default_stake = float(data.get("default_stake", SessionConfig.default_stake))
    max_stake = float(data.get("max_stake", SessionConfig.max_stake))
    if default_stake <= 0 or max_stake < default_stake:
        raise ValueError(f"Invalid stake bounds in {context}: default={default_stake} max={max_stake}")
    pause_reason = str(data.get("pause_reason", SessionConfig.pause_reason)).strip()
    if not pause_reason:
        raise ValueError(f"pause_reason must not be empty in {context}")
    return SessionConfig(
        timing=_parse_timing(data.get("timing")),
        thresholds=_parse_thresholds(data.get("thresholds")),
        priorities=_parse_priorities(data.get("priorities")),
        default_stake=default_stake,
        max_stake=max_stake,
        pause_reason=pause_reason,
    )


def load_session_config(source: Path) -> SessionConfig:
    source = Path(source)
    if not source.exists():
        raise FileNotFoundError(f"Session config not found: {source}")
    with source.open("r", encoding="utf-8") as fp:
        if source.suffix.lower() in (".yaml", ".yml"):
            raw = yaml.safe_load(fp)
        else:
            raw = json.load(fp)
    return parse_session_config(raw, context=str(source))


def load_environment_config(env_path: Optional[Path] = None) -> Dict[str, Any]:
    """載入環境配置（.env 不覆蓋已存在的環境變數）"""
    load_dotenv(dotenv_path=env_path, override=False)

    return {
        'log_level': os.getenv('LOG_LEVEL', 'INFO'),
        'config_file': os.getenv('ACTIONBET_CONFIG', ''),
        'timeline_file': os.getenv('ACTIONBET_TIMELINE', ''),
        'realtime': os.getenv('ACTIONBET_REALTIME', '1') == '1',
    }
