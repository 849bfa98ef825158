# src/actionbet/match_clock.py
"""
模擬比賽時鐘

每個 tick（預設 500ms）前進 1 分鐘並派發該分鐘的時間軸事件；
暫停協調器處於暫停狀態時，tick 照常排程但不前進。
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from .core.event_bus import EventBus, EventType
from .core.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

MatchEventHandler = Callable[[Dict[str, Any]], Any]


class MatchClock:
    """比賽時鐘"""

    def __init__(
        self,
        scheduler: Scheduler,
        bus: EventBus,
        pause: Any,
        on_event: Optional[MatchEventHandler] = None,
        *,
        timeline: Optional[List[Dict[str, Any]]] = None,
        tick_ms: float = 500.0,
        length_minutes: int = 90,
    ) -> None:
        self.scheduler = scheduler
        self.bus = bus
        self.pause = pause
        self.on_event = on_event
        self.tick_ms = tick_ms
        self.length_minutes = length_minutes

        self.minute = 0
        self.score = {"home": 0, "away": 0}
        self.paused_ticks = 0
        self.delivered = 0

        self._events_by_minute: Dict[int, List[Dict[str, Any]]] = defaultdict(list)
        self._handle: Optional[TimerHandle] = None
        self._running = False
        self._finished = False

        for event in timeline or []:
            self.add_event(event)

    def add_event(self, event: Dict[str, Any]) -> bool:
        """加入時間軸事件（需要整數 time 欄位）"""
        minute = event.get("time") if isinstance(event, dict) else None
        if isinstance(minute, bool) or not isinstance(minute, int):
            logger.warning(f"⚠️ 時間軸事件缺少有效的 time 欄位，忽略: {event!r}")
            return False
        self._events_by_minute[minute].append(event)
        return True

    def start(self) -> bool:
        if self._running or self._finished:
            return False
        self._running = True
        logger.info(f"⚽ 比賽開始 ({self.length_minutes} 分鐘, tick={self.tick_ms:.0f}ms)")
        self._schedule()
        return True

    def stop(self) -> None:
        self._running = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def is_running(self) -> bool:
        return self._running

    def is_finished(self) -> bool:
        return self._finished

    def _schedule(self) -> None:
        self._handle = self.scheduler.call_later(self.tick_ms, self._on_tick, label="match-tick")

    def _on_tick(self) -> None:
        self._handle = None
        if not self._running:
            return

        if self.pause.is_paused():
            self.paused_ticks += 1
            self._schedule()
            return

        self.minute += 1
        for event in self._events_by_minute.get(self.minute, []):
            self._deliver(event)

        self.bus.emit(
            EventType.MATCH_TICK,
            source="match_clock",
            data={"minute": self.minute, "score": dict(self.score)},
        )

        if self.minute >= self.length_minutes:
            self._finish()
            return

        # 事件處理中可能已經停止時鐘
        if self._running:
            self._schedule()

    def _deliver(self, event: Dict[str, Any]) -> None:
        if str(event.get("type", "")).upper() == "GOAL":
            team = event.get("team")
            if team in self.score:
                self.score[team] += 1

        self.delivered += 1
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception as e:
            logger.error(f"❌ 比賽事件處理錯誤: minute={self.minute} event={event.get('type')} | {e}", exc_info=True)

    def _finish(self) -> None:
        self._running = False
        self._finished = True
        logger.info(f"🏁 比賽結束: {self.score['home']} - {self.score['away']} (暫停 tick={self.paused_ticks})")
        self.bus.emit(
            EventType.MATCH_ENDED,
            source="match_clock",
            data={"minute": self.minute, "score": dict(self.score), "paused_ticks": self.paused_ticks},
        )
