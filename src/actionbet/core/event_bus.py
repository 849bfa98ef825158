# src/actionbet/core/event_bus.py
"""
事件總線 - 單一場次內的事件分發機制

解決問題：
1. 回調註冊散落在各組件（timeout warning / countdown / expired）
2. 組件被拆除後，殘留的回調仍然改動狀態
3. 通知順序不固定，難以測試

設計原則：
- 每個場次一個實例（不使用全局單例）
- 訂閱順序即分發順序（FIFO）
- 明確的取消訂閱
- 回調失敗只記錄，不阻斷發布者
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from collections import defaultdict

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """事件類型"""
    # 暫停協調
    PAUSED = "paused"
    RESUMED = "resumed"
    PAUSE_TIMEOUT_WARNING = "pause_timeout_warning"
    RESUME_COUNTDOWN_STARTED = "resume_countdown_started"
    RESUME_COUNTDOWN_TICK = "resume_countdown_tick"
    RESUME_COUNTDOWN_CANCELLED = "resume_countdown_cancelled"

    # 倒數計時
    COUNTDOWN_UPDATE = "countdown_update"
    COUNTDOWN_EXPIRED = "countdown_expired"

    # 投注機會生命週期
    OPPORTUNITY_ACTIVATED = "opportunity_activated"
    OPPORTUNITY_QUEUED = "opportunity_queued"
    OPPORTUNITY_REPLACED = "opportunity_replaced"
    OPPORTUNITY_RESOLVED = "opportunity_resolved"
    OPPORTUNITY_DISCARDED = "opportunity_discarded"

    # 面板狀態
    MODAL_MINIMIZED = "modal_minimized"
    MODAL_RESTORED = "modal_restored"

    # 下注
    BET_PLACED = "bet_placed"
    BET_REJECTED = "bet_rejected"

    # 比賽時鐘
    MATCH_TICK = "match_tick"
    MATCH_ENDED = "match_ended"


@dataclass
class Event:
    """事件基類"""
    type: EventType
    timestamp: float
    source: str  # 事件來源組件
    data: Dict[str, Any] = field(default_factory=dict)

    # 元數據
    event_id: Optional[str] = None
    correlation_id: Optional[str] = None  # 投注機會 ID，用於辨識過期回調


class EventBus:
    """
    事件總線 - 場次內的事件分發

    功能：
    - subscribe / subscribe_once / unsubscribe
    - 事件歷史（有上限）
    - 性能監控（可選）
    - 循環檢測：防止事件在回調中無限遞迴發布
    """

    def __init__(self, enable_performance_tracking: bool = False, max_history: int = 1000):
        # 訂閱者: {EventType: [callback, ...]}，順序即分發順序
        self._subscribers: Dict[EventType, List[Callable[[Event], None]]] = {}
        self._once_subscribers: Dict[EventType, List[Callable[[Event], None]]] = {}

        self._event_history: List[Event] = []
        self._max_history = max_history
        self._sequence = 0

        self._enable_performance_tracking = enable_performance_tracking
        self._performance_stats: Dict[str, Dict[str, Any]] = defaultdict(lambda: {
            "count": 0,
            "total_time": 0.0,
            "max_time": 0.0,
            "min_time": float('inf'),
        })

        self._processing_stack: List[EventType] = []
        self._max_depth = 10

        logger.debug("EventBus 初始化完成 (performance_tracking=%s)", enable_performance_tracking)

    def subscribe(self, event_type: EventType, callback: Callable[[Event], None]) -> None:
        """
        訂閱事件

        Args:
            event_type: 事件類型
            callback: 回調函數，接收 Event 參數
        """
        subscribers = self._subscribers.setdefault(event_type, [])
        if callback in subscribers:
            logger.warning(f"⚠️ 重複訂閱: {_callback_name(callback)} → {event_type.value}")
            return
        subscribers.append(callback)
        logger.debug(f"📌 訂閱: {_callback_name(callback)} → {event_type.value}")

    def subscribe_once(self, event_type: EventType, callback: Callable[[Event], None]) -> None:
        """訂閱一次性事件（回調執行一次後自動取消訂閱）"""
        subscribers = self._once_subscribers.setdefault(event_type, [])
        if callback not in subscribers:
            subscribers.append(callback)
            logger.debug(f"📌 一次性訂閱: {_callback_name(callback)} → {event_type.value}")

    def unsubscribe(self, event_type: EventType, callback: Callable[[Event], None]) -> bool:
        """
        取消訂閱事件

        Returns:
            是否成功取消訂閱
        """
        removed = False

        if callback in self._subscribers.get(event_type, []):
            self._subscribers[event_type].remove(callback)
            removed = True

        if callback in self._once_subscribers.get(event_type, []):
            self._once_subscribers[event_type].remove(callback)
            removed = True

        if removed:
            logger.debug(f"✂️ 取消訂閱: {_callback_name(callback)} → {event_type.value}")
        else:
            logger.warning(f"⚠️ 未找到訂閱: {_callback_name(callback)} → {event_type.value}")
        return removed

    def emit(
        self,
        event_type: EventType,
        source: str,
        data: Optional[Dict[str, Any]] = None,
        *,
        correlation_id: Optional[str] = None,
        timestamp: Optional[float] = None,
    ) -> Event:
        """建立並發布事件（組件內部最常用的捷徑）"""
        event = Event(
            type=event_type,
            timestamp=timestamp if timestamp is not None else time.time() * 1000,
            source=source,
            data=data or {},
            correlation_id=correlation_id,
        )
        self.publish(event)
        return event

    def publish(self, event: Event) -> None:
        """
        發布事件

        Args:
            event: 事件對象
        """
        if len(self._processing_stack) >= self._max_depth:
            logger.error(
                f"❌ 事件循環檢測: 嵌套深度超過 {self._max_depth} | "
                f"stack={[e.value for e in self._processing_stack]}"
            )
            return

        self._sequence += 1
        if not event.event_id:
            event.event_id = f"{event.type.value}-{self._sequence}"

        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history:]

        logger.debug(
            f"📤 發布事件: {event.type.value} | source={event.source} | "
            f"correlation={event.correlation_id}"
        )

        self._processing_stack.append(event.type)
        try:
            # 複製列表：回調內可能取消訂閱
            for callback in list(self._subscribers.get(event.type, [])):
                self._dispatch_to_callback(event, callback)

            once_subscribers = self._once_subscribers.get(event.type, [])
            if once_subscribers:
                for callback in once_subscribers.copy():
                    if callback in self._once_subscribers.get(event.type, []):
                        self._once_subscribers[event.type].remove(callback)
                    self._dispatch_to_callback(event, callback)
        finally:
            self._processing_stack.pop()

    def _dispatch_to_callback(self, event: Event, callback: Callable[[Event], None]) -> None:
        """分發事件到單個回調函數，失敗只記錄"""
        start_time = time.perf_counter() if self._enable_performance_tracking else None

        try:
            callback(event)
        except Exception as e:
            logger.error(
                f"❌ 事件處理錯誤: {_callback_name(callback)} | "
                f"event={event.type.value} | error={e}",
                exc_info=True
            )
            return

        if start_time is not None:
            elapsed = time.perf_counter() - start_time
            key = f"{event.type.value}::{_callback_name(callback)}"
            stats = self._performance_stats[key]
            stats["count"] += 1
            stats["total_time"] += elapsed
            stats["max_time"] = max(stats["max_time"], elapsed)
            stats["min_time"] = min(stats["min_time"], elapsed)

    def get_history(
        self,
        event_type: Optional[EventType] = None,
        limit: int = 100
    ) -> List[Event]:
        """
        獲取事件歷史

        Returns:
            事件列表（最新的在前）
        """
        history = self._event_history[::-1]
        if event_type:
            history = [e for e in history if e.type == event_type]
        return history[:limit]

    def clear_history(self) -> None:
        """清空事件歷史"""
        self._event_history.clear()

    def get_performance_stats(self) -> Dict[str, Dict[str, Any]]:
        """獲取性能統計"""
        if not self._enable_performance_tracking:
            logger.warning("⚠️ 性能追蹤未啟用")
            return {}

        result = {}
        for key, stats in self._performance_stats.items():
            result[key] = {
                "count": stats["count"],
                "total_time": stats["total_time"],
                "avg_time": stats["total_time"] / stats["count"] if stats["count"] > 0 else 0.0,
                "max_time": stats["max_time"],
                "min_time": stats["min_time"] if stats["min_time"] != float('inf') else 0.0,
            }
        return result

    def reset_performance_stats(self) -> None:
        """重置性能統計"""
        self._performance_stats.clear()

    def get_subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        """獲取訂閱者數量（不指定類型則返回總數）"""
        if event_type:
            return (
                len(self._subscribers.get(event_type, []))
                + len(self._once_subscribers.get(event_type, []))
            )
        total = sum(len(subs) for subs in self._subscribers.values())
        total += sum(len(subs) for subs in self._once_subscribers.values())
        return total

    def clear(self) -> None:
        """移除所有訂閱（場次結束時呼叫）"""
        self._subscribers.clear()
        self._once_subscribers.clear()


def _callback_name(callback: Callable) -> str:
    return getattr(callback, "__qualname__", None) or getattr(callback, "__name__", repr(callback))
