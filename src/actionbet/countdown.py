# src/actionbet/countdown.py
"""
倒數計時器 - 投注機會的時間預算

職責：
1. 以固定間隔（≤100ms）推送 update(remaining, duration)
2. 每次更新都只用 remaining/duration 重新推導緊迫程度（band），
   不依賴累計 tick 次數，所以外部 resync（例如恢復面板）不會漂移
3. 到期時停止並恰好觸發一次 COUNTDOWN_EXPIRED

輸入容錯：負數 / NaN 夾到 0；非數值輸入忽略並記錄警告。
"""
from __future__ import annotations

import logging
import math
from enum import Enum
from numbers import Real
from typing import Optional

from .config import BandThresholds
from .core.event_bus import EventBus, EventType
from .core.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class CountdownBand(str, Enum):
    """剩餘時間的緊迫程度"""
    NORMAL = "normal"    # > 50%
    WARNING = "warning"  # 25% ~ 50%
    URGENT = "urgent"    # <= 25%


def classify_band(remaining: float, duration: float, thresholds: BandThresholds = BandThresholds()) -> CountdownBand:
    """只由 remaining/duration 推導 band"""
    if not duration or duration <= 0:
        return CountdownBand.URGENT
    ratio = max(0.0, remaining) / duration
    if ratio <= thresholds.urgent:
        return CountdownBand.URGENT
    if ratio <= thresholds.warning:
        return CountdownBand.WARNING
    return CountdownBand.NORMAL


def sanitize_ms(value) -> Optional[float]:
    """
    把外部輸入轉成毫秒數

    Returns:
        None 表示輸入不是數值（應忽略）；負數 / NaN 夾到 0
    """
    if isinstance(value, bool) or not isinstance(value, Real):
        return None
    value = float(value)
    if math.isnan(value) or value < 0:
        return 0.0
    if math.isinf(value):
        return None
    return value


class CountdownTimer:
    """
    倒數計時器

    事件（經由 EventBus，correlation_id = owner_id）：
    - COUNTDOWN_UPDATE: {"remaining", "duration", "band", "progress"}
    - COUNTDOWN_EXPIRED: {"duration"}
    """

    def __init__(
        self,
        scheduler: Scheduler,
        bus: Optional[EventBus] = None,
        *,
        owner_id: Optional[str] = None,
        tick_ms: float = 100.0,
        thresholds: BandThresholds = BandThresholds(),
    ) -> None:
        self.scheduler = scheduler
        self.bus = bus if bus is not None else EventBus()
        self.owner_id = owner_id
        self.tick_ms = min(100.0, max(1.0, float(tick_ms)))
        self.thresholds = thresholds

        self.duration = 0.0
        self.remaining = 0.0
        self.band = CountdownBand.NORMAL
        self._running = False
        self._expired = False
        self._started_at: Optional[float] = None
        self._tick_handle: Optional[TimerHandle] = None

    def start(self, duration) -> bool:
        """
        開始倒數

        Args:
            duration: 毫秒；非數值或 <=0 時不啟動

        Returns:
            是否成功啟動
        """
        value = sanitize_ms(duration)
        if value is None or value <= 0:
            logger.warning(f"⚠️ 倒數時長無效，不啟動: duration={duration!r} owner={self.owner_id}")
            return False

        self._cancel_tick()
        self.duration = value
        self.remaining = value
        self._running = True
        self._expired = False
        self._started_at = self.scheduler.now()

        self.update(value, value)
        self._schedule_tick()
        return True

    def update(self, remaining, total=None) -> None:
        """
        推送剩餘時間（內部 tick 與外部 resync 共用）

        Args:
            remaining: 剩餘毫秒
            total: 總時長毫秒（省略則沿用目前 duration）
        """
        if not self._running:
            return

        value = sanitize_ms(remaining)
        if value is None:
            logger.warning(f"⚠️ 倒數更新參數無效，忽略: remaining={remaining!r} owner={self.owner_id}")
            return

        if total is not None:
            new_total = sanitize_ms(total)
            if new_total is None or new_total <= 0:
                logger.warning(f"⚠️ 倒數總時長無效，沿用原值: total={total!r} owner={self.owner_id}")
            else:
                self.duration = new_total

        # 運行中只減不增，且限制在 [0, duration]
        self.remaining = max(0.0, min(value, self.remaining, self.duration))
        self.band = classify_band(self.remaining, self.duration, self.thresholds)

        self.bus.emit(
            EventType.COUNTDOWN_UPDATE,
            source="countdown",
            data={
                "remaining": self.remaining,
                "duration": self.duration,
                "band": self.band.value,
                "progress": self.progress(),
            },
            correlation_id=self.owner_id,
        )

        if self.remaining <= 0:
            self._handle_expiration()

    def resync(self) -> None:
        """依開始時間重新計算剩餘時間並推送"""
        if not self._running or self._started_at is None:
            return
        elapsed = self.scheduler.now() - self._started_at
        self.update(self.duration - elapsed, self.duration)

    def stop(self) -> None:
        """停止倒數，不觸發到期"""
        self._running = False
        self._cancel_tick()

    def destroy(self) -> None:
        self.stop()
        self._started_at = None

    def is_running(self) -> bool:
        return self._running

    def is_expired(self) -> bool:
        return self._expired

    def get_remaining(self) -> float:
        return self.remaining

    def get_band(self) -> CountdownBand:
        return self.band

    def progress(self) -> float:
        if self.duration <= 0:
            return 0.0
        return self.remaining / self.duration

    def _schedule_tick(self) -> None:
        if not self._running:
            return
        self._tick_handle = self.scheduler.call_later(
            self.tick_ms, self._on_tick, label=f"countdown:{self.owner_id}"
        )

    def _on_tick(self) -> None:
        self._tick_handle = None
        if not self._running:
            return
        self.resync()
        self._schedule_tick()

    def _cancel_tick(self) -> None:
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None

    def _handle_expiration(self) -> None:
        self.stop()
        if self._expired:
            return
        self._expired = True
        logger.info(f"⏰ 倒數結束: owner={self.owner_id} duration={self.duration:.0f}ms")
        self.bus.emit(
            EventType.COUNTDOWN_EXPIRED,
            source="countdown",
            data={"duration": self.duration},
            correlation_id=self.owner_id,
        )
