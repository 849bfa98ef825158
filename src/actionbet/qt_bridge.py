# src/actionbet/qt_bridge.py
"""
Qt 信號橋接

把場次事件總線上的事件轉發為 Qt Signal，渲染層只需要連接信號，
不需要直接訂閱 EventBus。
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Tuple

from PySide6.QtCore import QObject, Signal

from .core.event_bus import Event, EventBus, EventType

logger = logging.getLogger(__name__)


class SessionSignals(QObject):
    """場次事件 → Qt 信號"""

    # 暫停
    paused = Signal(str, float)                 # reason, timeout_ms
    resumed = Signal(bool)                      # timed_out
    timeout_warning = Signal(str)               # message
    resume_countdown = Signal(int)              # 剩餘秒數（開始時為總秒數）

    # 倒數
    countdown_updated = Signal(str, float, float, str)  # opportunity_id, remaining, duration, band
    countdown_expired = Signal(str)

    # 投注機會
    opportunity_activated = Signal(str, dict)   # opportunity_id, data
    opportunity_queued = Signal(str, int)       # opportunity_id, queue_length
    opportunity_resolved = Signal(str, str)     # opportunity_id, resolution
    modal_minimized = Signal(str)
    modal_restored = Signal(str)

    # 下注
    bet_placed = Signal(str, dict)
    bet_rejected = Signal(str, str)             # opportunity_id, reason

    # 比賽
    match_tick = Signal(int, dict)              # minute, score
    match_ended = Signal(dict)

    def __init__(self, bus: EventBus, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self.bus = bus
        self._subscriptions: List[Tuple[EventType, Callable[[Event], None]]] = []

        handlers: Dict[EventType, Callable[[Event], None]] = {
            EventType.PAUSED: lambda e: self.paused.emit(
                str(e.data.get("reason", "")), float(e.data.get("timeout_ms") or 0.0)
            ),
            EventType.RESUMED: lambda e: self.resumed.emit(bool(e.data.get("timed_out"))),
            EventType.PAUSE_TIMEOUT_WARNING: lambda e: self.timeout_warning.emit(str(e.data.get("message", ""))),
            EventType.RESUME_COUNTDOWN_STARTED: lambda e: self.resume_countdown.emit(int(e.data.get("seconds", 0))),
            EventType.RESUME_COUNTDOWN_TICK: lambda e: self.resume_countdown.emit(
                int(e.data.get("remaining_seconds", 0))
            ),
            EventType.COUNTDOWN_UPDATE: lambda e: self.countdown_updated.emit(
                e.correlation_id or "",
                float(e.data.get("remaining", 0.0)),
                float(e.data.get("duration", 0.0)),
                str(e.data.get("band", "")),
            ),
            EventType.COUNTDOWN_EXPIRED: lambda e: self.countdown_expired.emit(e.correlation_id or ""),
            EventType.OPPORTUNITY_ACTIVATED: lambda e: self.opportunity_activated.emit(
                e.correlation_id or "", dict(e.data)
            ),
            EventType.OPPORTUNITY_QUEUED: lambda e: self.opportunity_queued.emit(
                e.correlation_id or "", int(e.data.get("queue_length", 0))
            ),
            EventType.OPPORTUNITY_RESOLVED: lambda e: self.opportunity_resolved.emit(
                e.correlation_id or "", str(e.data.get("resolution", ""))
            ),
            EventType.MODAL_MINIMIZED: lambda e: self.modal_minimized.emit(e.correlation_id or ""),
            EventType.MODAL_RESTORED: lambda e: self.modal_restored.emit(e.correlation_id or ""),
            EventType.BET_PLACED: lambda e: self.bet_placed.emit(e.correlation_id or "", dict(e.data)),
            EventType.BET_REJECTED: lambda e: self.bet_rejected.emit(
                e.correlation_id or "", str(e.data.get("reason", ""))
            ),
            EventType.MATCH_TICK: lambda e: self.match_tick.emit(
                int(e.data.get("minute", 0)), dict(e.data.get("score", {}))
            ),
            EventType.MATCH_ENDED: lambda e: self.match_ended.emit(dict(e.data)),
        }

        for event_type, handler in handlers.items():
            bus.subscribe(event_type, handler)
            self._subscriptions.append((event_type, handler))

        logger.debug(f"SessionSignals 已連接 {len(self._subscriptions)} 種事件")

    def disconnect_bus(self) -> None:
        """解除所有事件總線訂閱"""
        for event_type, handler in self._subscriptions:
            self.bus.unsubscribe(event_type, handler)
        self._subscriptions.clear()
