# src/actionbet/core/scheduler.py
"""
計時器來源 - 場次內唯一的時間與排程抽象

所有背景工作（倒數 tick、暫停自動恢復、恢復倒數、比賽時鐘）
都經由 Scheduler 排程，並返回可取消的 TimerHandle。

實現：
- VirtualScheduler: 虛擬時間，測試與快速回放用，advance() 決定性推進
- QtScheduler: 以 QTimer 為基礎，跑在 Qt 事件循環上
"""
from __future__ import annotations

import heapq
import itertools
import logging
import time
from typing import Callable, List, Optional, Set, Tuple

from PySide6.QtCore import QObject, QTimer

logger = logging.getLogger(__name__)


class TimerHandle:
    """可取消的排程句柄"""

    def __init__(self, due_at: float, callback: Callable[[], None], label: str = "") -> None:
        self.due_at = due_at
        self.callback = callback
        self.label = label
        self._cancelled = False
        self._fired = False
        self._on_cancel: Optional[Callable[[], None]] = None

    @property
    def active(self) -> bool:
        return not (self._cancelled or self._fired)

    def cancel(self) -> bool:
        """取消排程；已觸發或已取消時返回 False"""
        if not self.active:
            return False
        self._cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()
        return True

    def _fire(self) -> None:
        if not self.active:
            return
        self._fired = True
        try:
            self.callback()
        except Exception as e:
            logger.error(f"❌ 排程回調錯誤: label={self.label} | error={e}", exc_info=True)

    def __repr__(self) -> str:
        state = "active" if self.active else ("cancelled" if self._cancelled else "fired")
        return f"TimerHandle(label={self.label!r}, due_at={self.due_at:.1f}, {state})"


class Scheduler:
    """排程器介面（時間單位：毫秒）"""

    def now(self) -> float:
        raise NotImplementedError

    def call_later(self, delay_ms: float, callback: Callable[[], None], label: str = "") -> TimerHandle:
        raise NotImplementedError

    def pending_count(self) -> int:
        raise NotImplementedError

    def cancel_all(self) -> int:
        raise NotImplementedError


class VirtualScheduler(Scheduler):
    """
    虛擬時間排程器

    - now() 只在 advance() / run_until_idle() 時前進
    - 同一時間到期的回調依排程順序執行
    - 回調中新排的計時器，只要在推進範圍內也會執行
    """

    def __init__(self, start_ms: float = 0.0) -> None:
        self._now = float(start_ms)
        self._queue: List[Tuple[float, int, TimerHandle]] = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay_ms: float, callback: Callable[[], None], label: str = "") -> TimerHandle:
        delay = max(0.0, float(delay_ms))
        handle = TimerHandle(self._now + delay, callback, label)
        heapq.heappush(self._queue, (handle.due_at, next(self._counter), handle))
        return handle

    def advance(self, ms: float) -> int:
        """
        推進虛擬時間

        Args:
            ms: 推進的毫秒數

        Returns:
            執行的回調數量
        """
        target = self._now + max(0.0, float(ms))
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due_at, _, handle = heapq.heappop(self._queue)
            if not handle.active:
                continue
            self._now = max(self._now, due_at)
            handle._fire()
            fired += 1
        self._now = target
        return fired

    def run_until_idle(self, max_ms: float = 3_600_000.0) -> int:
        """持續推進直到沒有待執行計時器（或超過 max_ms）"""
        limit = self._now + max_ms
        fired = 0
        while True:
            self._drop_inactive()
            if not self._queue:
                break
            next_due = self._queue[0][0]
            if next_due > limit:
                self._now = limit
                break
            fired += self.advance(max(0.0, next_due - self._now))
        return fired

    def pending_count(self) -> int:
        return sum(1 for _, _, handle in self._queue if handle.active)

    def cancel_all(self) -> int:
        cancelled = 0
        for _, _, handle in self._queue:
            if handle.cancel():
                cancelled += 1
        self._queue.clear()
        return cancelled

    def _drop_inactive(self) -> None:
        while self._queue and not self._queue[0][2].active:
            heapq.heappop(self._queue)


class QtScheduler(Scheduler):
    """
    QTimer 排程器

    每個 call_later 建立一個 single-shot QTimer，
    句柄取消時停止 QTimer。需要 QCoreApplication 事件循環。
    """

    def __init__(self, parent: Optional[QObject] = None) -> None:
        self._parent = parent
        self._origin = time.monotonic()
        self._timers: Set[QTimer] = set()
        self._handles: Set[TimerHandle] = set()

    def now(self) -> float:
        return (time.monotonic() - self._origin) * 1000.0

    def call_later(self, delay_ms: float, callback: Callable[[], None], label: str = "") -> TimerHandle:
        delay = max(0, int(round(float(delay_ms))))
        handle = TimerHandle(self.now() + delay, callback, label)

        timer = QTimer(self._parent)
        timer.setSingleShot(True)

        def _on_timeout() -> None:
            self._release(timer, handle)
            handle._fire()

        def _on_cancel() -> None:
            timer.stop()
            self._release(timer, handle)

        timer.timeout.connect(_on_timeout)
        handle._on_cancel = _on_cancel
        self._timers.add(timer)
        self._handles.add(handle)
        timer.start(delay)
        return handle

    def _release(self, timer: QTimer, handle: TimerHandle) -> None:
        self._timers.discard(timer)
        self._handles.discard(handle)
        timer.deleteLater()

    def pending_count(self) -> int:
        return sum(1 for handle in self._handles if handle.active)

    def cancel_all(self) -> int:
        cancelled = 0
        for handle in list(self._handles):
            if handle.cancel():
                cancelled += 1
        return cancelled
