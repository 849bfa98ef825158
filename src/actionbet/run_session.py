#!/usr/bin/env python3
"""
動作投注場次主入口 - 讀取配置、回放比賽時間軸
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import SessionConfig, load_environment_config, load_session_config
from .core.event_bus import Event, EventBus, EventType
from .core.scheduler import QtScheduler, Scheduler, TimerHandle, VirtualScheduler
from .indicator import TextIndicator
from .io_events import load_timeline
from .match_clock import MatchClock
from .orchestrator import BettingOrchestrator

AUTO_DECISIONS = ("none", "skip", "first")


def setup_logging(log_level: str = "INFO"):
    """設置日誌"""
    os.makedirs('data/logs', exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler('data/logs/actionbet.log', encoding='utf-8')
        ]
    )


class AutoDecider:
    """
    自動決策（無人值守回放用）

    - none: 不做決策，機會以逾時結束
    - skip: 延遲後跳過
    - first: 延遲後以預設金額下注第一個選項
    """

    def __init__(self, orchestrator: BettingOrchestrator, mode: str = "none", delay_ms: float = 2000.0):
        if mode not in AUTO_DECISIONS:
            raise ValueError(f"auto decision must be one of {AUTO_DECISIONS}, got {mode!r}")
        self.orchestrator = orchestrator
        self.mode = mode
        self.delay_ms = delay_ms
        self._handles: List[TimerHandle] = []
        if mode != "none":
            orchestrator.bus.subscribe(EventType.OPPORTUNITY_ACTIVATED, self._on_activated)

    def _on_activated(self, event: Event) -> None:
        opportunity_id = event.correlation_id
        handle = self.orchestrator.scheduler.call_later(
            self.delay_ms, lambda: self._decide(opportunity_id), label=f"auto-{self.mode}"
        )
        self._handles = [h for h in self._handles if h.active]
        self._handles.append(handle)

    def _decide(self, opportunity_id: Optional[str]) -> None:
        if self.mode == "skip":
            self.orchestrator.skip(opportunity_id)
        elif self.mode == "first":
            self.orchestrator.place_bet(opportunity_id, 0)

    def cancel(self) -> None:
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        if self.mode != "none":
            self.orchestrator.bus.unsubscribe(EventType.OPPORTUNITY_ACTIVATED, self._on_activated)


def build_session(
    config: SessionConfig,
    scheduler: Scheduler,
    timeline: List[Dict[str, Any]],
    *,
    auto_decision: str = "none",
    decision_delay_ms: float = 2000.0,
):
    """建立協調器、比賽時鐘與自動決策"""
    bus = EventBus()
    orchestrator = BettingOrchestrator(config, scheduler, bus, indicator=TextIndicator())
    clock = MatchClock(
        scheduler,
        bus,
        orchestrator.pause,
        orchestrator.handle_match_event,
        timeline=timeline,
        tick_ms=config.timing.match_tick_ms,
        length_minutes=config.timing.match_length_minutes,
    )
    decider = AutoDecider(orchestrator, auto_decision, decision_delay_ms)

    def _on_match_ended(event: Event) -> None:
        decider.cancel()
        orchestrator.shutdown()

    bus.subscribe_once(EventType.MATCH_ENDED, _on_match_ended)
    return orchestrator, clock, decider


def summarize(orchestrator: BettingOrchestrator, clock: MatchClock) -> Dict[str, Any]:
    status = orchestrator.status()
    return {
        "minute": clock.minute,
        "score": dict(clock.score),
        "paused_ticks": clock.paused_ticks,
        "events_delivered": clock.delivered,
        "bets": status["bets"],
        "resolutions": status["resolutions"],
    }


def run_fast(config: SessionConfig, timeline: List[Dict[str, Any]], auto_decision: str,
             decision_delay_ms: float) -> Dict[str, Any]:
    """以虛擬時間回放（不等待真實時間）"""
    scheduler = VirtualScheduler()
    orchestrator, clock, _ = build_session(
        config, scheduler, timeline, auto_decision=auto_decision, decision_delay_ms=decision_delay_ms
    )
    clock.start()
    scheduler.run_until_idle(max_ms=24 * 3_600_000.0)
    return summarize(orchestrator, clock)


def run_realtime(config: SessionConfig, timeline: List[Dict[str, Any]], auto_decision: str,
                 decision_delay_ms: float) -> Dict[str, Any]:
    """在 Qt 事件循環上即時回放"""
    from PySide6.QtCore import QCoreApplication

    app = QCoreApplication.instance() or QCoreApplication(sys.argv)
    scheduler = QtScheduler()
    orchestrator, clock, _ = build_session(
        config, scheduler, timeline, auto_decision=auto_decision, decision_delay_ms=decision_delay_ms
    )
    orchestrator.bus.subscribe(EventType.MATCH_ENDED, lambda e: app.quit())
    clock.start()
    app.exec()
    scheduler.cancel_all()
    return summarize(orchestrator, clock)


def main(argv: Optional[List[str]] = None) -> int:
    """主函數"""
    parser = argparse.ArgumentParser(description="動作投注場次回放")
    parser.add_argument('--timeline', default=None, help='比賽時間軸 NDJSON 檔案')
    parser.add_argument('--config', default=None, help='場次配置檔案 (.json / .yaml)')
    parser.add_argument('--fast', action='store_true', help='以虛擬時間快速回放')
    parser.add_argument('--auto-decision', choices=AUTO_DECISIONS, default='none', help='自動決策模式')
    parser.add_argument('--decision-delay-ms', type=float, default=2000.0, help='自動決策延遲（毫秒）')

    args = parser.parse_args(argv)

    # 載入環境配置（CLI 參數覆蓋環境變數）
    env_config = load_environment_config()
    timeline_file = args.timeline or env_config['timeline_file']
    config_file = args.config or env_config['config_file']
    fast = args.fast or not env_config['realtime']

    setup_logging(env_config['log_level'])
    logger = logging.getLogger(__name__)

    if not timeline_file:
        logger.error("未指定時間軸檔案 (--timeline 或 ACTIONBET_TIMELINE)")
        return 2

    try:
        config = load_session_config(Path(config_file)) if config_file else SessionConfig()
        timeline = load_timeline(timeline_file)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"載入失敗: {e}")
        return 1

    logger.info("動作投注場次啟動")
    logger.info(f"模式: {'快速回放' if fast else '即時'} | 自動決策: {args.auto_decision}")

    try:
        runner = run_fast if fast else run_realtime
        summary = runner(config, timeline, args.auto_decision, args.decision_delay_ms)
    except KeyboardInterrupt:
        logger.info("用戶中斷，程式結束")
        return 0
    except Exception as e:
        logger.error(f"程式錯誤: {e}", exc_info=True)
        return 1

    logger.info(f"📊 場次摘要: {summary}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
