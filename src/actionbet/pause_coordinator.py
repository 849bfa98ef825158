# src/actionbet/pause_coordinator.py
"""
暫停協調器 - 模擬比賽時鐘是否前進的唯一真相來源

職責：
1. pause_game: 記錄原因與絕對到期時間，排程無條件的自動恢復
2. resume_game: 取消自動恢復，可選 1 秒粒度、可取消的恢復倒數
3. clear_timeout / rearm_timeout: 移交控制權（例如投注機會被替換）

狀態機：
    RUNNING --pause_game--> PAUSED --resume/自動到期--> RESUMING(倒數?) --> RUNNING
    RESUMING 期間再 pause_game 會取消倒數並回到 PAUSED，不會留下中間狀態

容錯：
- 重入的 pause_game 返回 False，不改動原因與到期時間
- 回調失敗只記錄，不阻斷暫停/恢復（fail-open）
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from numbers import Real
from typing import Any, Callable, Dict, Optional

from .core.event_bus import EventBus, EventType
from .core.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

TIMEOUT_WARNING_MESSAGE = "Timeout - Resuming Game"


class PausePhase(str, Enum):
    """時鐘階段"""
    RUNNING = "running"
    PAUSED = "paused"
    RESUMING = "resuming"


@dataclass
class PauseState:
    """暫停狀態"""
    active: bool = False
    reason: Optional[str] = None
    started_at: Optional[float] = None
    timeout_at: Optional[float] = None
    timeout_handle: Optional[TimerHandle] = None
    phase: PausePhase = PausePhase.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active": self.active,
            "reason": self.reason,
            "started_at": self.started_at,
            "timeout_at": self.timeout_at,
            "has_timeout": self.timeout_handle is not None and self.timeout_handle.active,
            "phase": self.phase.value,
        }


class PauseCoordinator:
    """暫停協調器"""

    def __init__(
        self,
        scheduler: Scheduler,
        bus: Optional[EventBus] = None,
        *,
        default_timeout_ms: float = 15_000.0,
        max_timeout_ms: float = 300_000.0,
        default_countdown_seconds: int = 3,
        max_countdown_seconds: int = 10,
    ) -> None:
        self.scheduler = scheduler
        self.bus = bus if bus is not None else EventBus()
        self.default_timeout_ms = default_timeout_ms
        self.max_timeout_ms = max_timeout_ms
        self.default_countdown_seconds = default_countdown_seconds
        self.max_countdown_seconds = max_countdown_seconds

        self._state = PauseState()
        self._countdown_handle: Optional[TimerHandle] = None
        self._countdown_remaining = 0

        self._on_timeout_warning: Optional[Callable[[str], None]] = None
        self._on_countdown_start: Optional[Callable[[int], None]] = None
        self._on_countdown_tick: Optional[Callable[[int], None]] = None

    # ------------------------------------------------------------------
    # 暫停
    # ------------------------------------------------------------------
    def pause_game(self, reason: str, timeout_ms: Optional[float] = None) -> bool:
        """
        暫停比賽時鐘

        Args:
            reason: 暫停原因（例如 'BETTING_OPPORTUNITY'）
            timeout_ms: 自動恢復時間；None 用預設值，0 表示不自動恢復

        Returns:
            是否成功暫停（已暫停時返回 False）
        """
        if not isinstance(reason, str) or not reason.strip():
            logger.error(f"❌ 暫停原因無效: reason={reason!r}")
            return False

        timeout = self._validate_timeout(timeout_ms)
        if timeout is None:
            return False

        if self._state.phase == PausePhase.PAUSED:
            logger.warning(
                f"⚠️ 已處於暫停狀態，忽略重入暫停 | current={self._state.reason} new={reason}"
            )
            return False

        if self._state.phase == PausePhase.RESUMING:
            self._cancel_resume_countdown(reason=f"paused:{reason}")

        now = self.scheduler.now()
        self._state = PauseState(
            active=True,
            reason=reason,
            started_at=now,
            phase=PausePhase.PAUSED,
        )
        if timeout > 0:
            self._arm_timeout(timeout)

        logger.info(f"⏸️ 比賽暫停: {reason} (timeout: {timeout:.0f}ms)")
        self.bus.emit(
            EventType.PAUSED,
            source="pause_coordinator",
            data={"reason": reason, "timeout_ms": timeout, "timeout_at": self._state.timeout_at},
        )
        return True

    def _validate_timeout(self, timeout_ms: Optional[float]) -> Optional[float]:
        if timeout_ms is None:
            timeout_ms = self.default_timeout_ms
        if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, Real) \
                or math.isnan(timeout_ms) or timeout_ms < 0:
            logger.error(f"❌ 暫停逾時參數無效: timeout={timeout_ms!r}")
            return None
        if timeout_ms > self.max_timeout_ms:
            logger.warning(f"⚠️ 暫停逾時過長，限制為 {self.max_timeout_ms:.0f}ms (requested={timeout_ms})")
            return float(self.max_timeout_ms)
        return float(timeout_ms)

    def _arm_timeout(self, timeout: float) -> None:
        self._state.timeout_at = self.scheduler.now() + timeout
        self._state.timeout_handle = self.scheduler.call_later(
            timeout, self._on_pause_timeout, label=f"pause-timeout:{self._state.reason}"
        )

    def _on_pause_timeout(self) -> None:
        """自動恢復：先發出逾時警告，再不倒數直接恢復"""
        self._state.timeout_handle = None
        if self._state.phase != PausePhase.PAUSED:
            return

        reason = self._state.reason
        logger.warning(f"⏰ 暫停逾時，自動恢復比賽 | reason={reason}")

        if self._on_timeout_warning is not None:
            try:
                self._on_timeout_warning(TIMEOUT_WARNING_MESSAGE)
            except Exception as e:
                logger.error(f"❌ 逾時警告回調錯誤: {e}", exc_info=True)

        self.bus.emit(
            EventType.PAUSE_TIMEOUT_WARNING,
            source="pause_coordinator",
            data={"message": TIMEOUT_WARNING_MESSAGE, "reason": reason},
        )
        self._complete_resume(timed_out=True)

    # ------------------------------------------------------------------
    # 恢復
    # ------------------------------------------------------------------
    def resume_game(self, with_countdown: bool = True, countdown_seconds: Optional[int] = None) -> bool:
        """
        恢復比賽時鐘

        Args:
            with_countdown: 是否先跑恢復倒數
            countdown_seconds: 倒數秒數（None 用預設值，上限 max_countdown_seconds）

        Returns:
            True 表示已恢復或恢復倒數已開始
        """
        if not isinstance(with_countdown, bool):
            logger.warning(f"⚠️ with_countdown 參數無效，預設為 True: {with_countdown!r}")
            with_countdown = True

        seconds = self._validate_countdown(countdown_seconds)

        if self._state.phase == PausePhase.RUNNING:
            logger.debug("比賽未暫停，無需恢復")
            return True

        if self._state.phase == PausePhase.RESUMING:
            if with_countdown:
                logger.debug("恢復倒數進行中，忽略重複恢復")
                return True
            self._complete_resume(timed_out=False)
            return True

        self.clear_timeout()

        if not with_countdown or seconds <= 0:
            self._complete_resume(timed_out=False)
            return True

        return self._start_resume_countdown(seconds)

    def _validate_countdown(self, countdown_seconds: Optional[int]) -> int:
        if countdown_seconds is None:
            return int(self.default_countdown_seconds)
        if isinstance(countdown_seconds, bool) or not isinstance(countdown_seconds, Real) \
                or math.isnan(countdown_seconds) or countdown_seconds < 0:
            logger.warning(
                f"⚠️ 倒數秒數無效，預設為 {self.default_countdown_seconds}: {countdown_seconds!r}"
            )
            return int(self.default_countdown_seconds)
        if countdown_seconds > self.max_countdown_seconds:
            logger.warning(f"⚠️ 倒數過長，限制為 {self.max_countdown_seconds} 秒")
            return int(self.max_countdown_seconds)
        return int(countdown_seconds)

    def _start_resume_countdown(self, seconds: int) -> bool:
        self._state.phase = PausePhase.RESUMING
        self._countdown_remaining = seconds
        logger.info(f"▶️ 開始 {seconds} 秒恢復倒數")

        if self._on_countdown_start is not None:
            try:
                self._on_countdown_start(seconds)
            except Exception as e:
                logger.error(f"❌ 倒數回調錯誤，直接恢復: {e}", exc_info=True)
                self._complete_resume(timed_out=False)
                return True

        self.bus.emit(
            EventType.RESUME_COUNTDOWN_STARTED,
            source="pause_coordinator",
            data={"seconds": seconds, "reason": self._state.reason},
        )
        # 訂閱者可能在回調中重新暫停
        if self._state.phase != PausePhase.RESUMING:
            return True

        try:
            self._countdown_handle = self.scheduler.call_later(
                1000, self._on_countdown_tick_fired, label="resume-countdown"
            )
        except Exception as e:
            logger.error(f"❌ 無法排程恢復倒數，直接恢復: {e}", exc_info=True)
            self._complete_resume(timed_out=False)
        return True

    def _on_countdown_tick_fired(self) -> None:
        self._countdown_handle = None
        if self._state.phase != PausePhase.RESUMING:
            return

        self._countdown_remaining -= 1
        remaining = self._countdown_remaining

        if self._on_countdown_tick is not None:
            try:
                self._on_countdown_tick(remaining)
            except Exception as e:
                logger.error(f"❌ 倒數 tick 回調錯誤: {e}", exc_info=True)

        self.bus.emit(
            EventType.RESUME_COUNTDOWN_TICK,
            source="pause_coordinator",
            data={"remaining_seconds": remaining},
        )
        if self._state.phase != PausePhase.RESUMING:
            return

        if remaining <= 0:
            self._complete_resume(timed_out=False)
            return

        try:
            self._countdown_handle = self.scheduler.call_later(
                1000, self._on_countdown_tick_fired, label="resume-countdown"
            )
        except Exception as e:
            logger.error(f"❌ 無法排程恢復倒數，直接恢復: {e}", exc_info=True)
            self._complete_resume(timed_out=False)

    def _cancel_resume_countdown(self, reason: str) -> None:
        if self._countdown_handle is not None:
            self._countdown_handle.cancel()
            self._countdown_handle = None
        logger.info(f"⏹️ 取消恢復倒數 ({reason})")
        self.bus.emit(
            EventType.RESUME_COUNTDOWN_CANCELLED,
            source="pause_coordinator",
            data={"cancelled_by": reason, "remaining_seconds": self._countdown_remaining},
        )
        self._countdown_remaining = 0

    def _complete_resume(self, timed_out: bool) -> None:
        if self._countdown_handle is not None:
            self._countdown_handle.cancel()
            self._countdown_handle = None
        if self._state.timeout_handle is not None:
            self._state.timeout_handle.cancel()

        previous = self._state
        duration = self.scheduler.now() - previous.started_at if previous.started_at is not None else 0.0
        self._state = PauseState()
        self._countdown_remaining = 0

        resume_type = "自動恢復（逾時）" if timed_out else "手動恢復"
        logger.info(f"▶️ 比賽{resume_type} | reason={previous.reason} paused={duration:.0f}ms")
        self.bus.emit(
            EventType.RESUMED,
            source="pause_coordinator",
            data={"reason": previous.reason, "timed_out": timed_out, "pause_duration": duration},
        )

    # ------------------------------------------------------------------
    # 控制權移交
    # ------------------------------------------------------------------
    def clear_timeout(self) -> bool:
        """
        取消自動恢復但不恢復比賽

        Returns:
            是否有被取消的自動恢復
        """
        handle = self._state.timeout_handle
        self._state.timeout_handle = None
        self._state.timeout_at = None
        if handle is not None and handle.cancel():
            logger.debug("暫停自動恢復已取消")
            return True
        return False

    def rearm_timeout(self, timeout_ms: Optional[float] = None) -> bool:
        """
        為已暫停、且沒有自動恢復的狀態重新設定到期時間

        只在 clear_timeout() 之後有效，避免一個機會的暫停窗口
        被另一個機會悄悄延長。
        """
        if self._state.phase != PausePhase.PAUSED:
            logger.warning("⚠️ 未處於暫停狀態，無法重設逾時")
            return False
        if self.has_active_timeout():
            logger.warning("⚠️ 自動恢復仍在排程中，拒絕重設逾時")
            return False
        timeout = self._validate_timeout(timeout_ms)
        if timeout is None:
            return False
        if timeout > 0:
            self._arm_timeout(timeout)
        logger.debug(f"暫停逾時已重設: {timeout:.0f}ms")
        return True

    # ------------------------------------------------------------------
    # 查詢
    # ------------------------------------------------------------------
    def is_paused(self) -> bool:
        return self._state.phase != PausePhase.RUNNING

    def is_resuming(self) -> bool:
        return self._state.phase == PausePhase.RESUMING

    @property
    def phase(self) -> PausePhase:
        return self._state.phase

    @property
    def state(self) -> PauseState:
        """目前狀態的副本"""
        return replace(self._state)

    def get_pause_info(self) -> Dict[str, Any]:
        return self._state.to_dict()

    def get_pause_duration(self) -> float:
        if not self._state.active or self._state.started_at is None:
            return 0.0
        return self.scheduler.now() - self._state.started_at

    def has_active_timeout(self) -> bool:
        handle = self._state.timeout_handle
        return handle is not None and handle.active

    # ------------------------------------------------------------------
    # 回調註冊
    # ------------------------------------------------------------------
    def set_timeout_warning_callback(self, callback: Callable[[str], None]) -> None:
        if callable(callback):
            self._on_timeout_warning = callback
        else:
            logger.warning("⚠️ 逾時警告回調無效，忽略")

    def clear_timeout_warning_callback(self) -> None:
        self._on_timeout_warning = None

    def set_countdown_callback(self, callback: Callable[[int], None]) -> None:
        if callable(callback):
            self._on_countdown_start = callback
        else:
            logger.warning("⚠️ 倒數回調無效，忽略")

    def clear_countdown_callback(self) -> None:
        self._on_countdown_start = None

    def set_countdown_tick_callback(self, callback: Callable[[int], None]) -> None:
        if callable(callback):
            self._on_countdown_tick = callback
        else:
            logger.warning("⚠️ 倒數 tick 回調無效，忽略")

    def clear_countdown_tick_callback(self) -> None:
        self._on_countdown_tick = None

    def shutdown(self) -> None:
        """取消所有排程（場次結束）"""
        if self._countdown_handle is not None:
            self._countdown_handle.cancel()
            self._countdown_handle = None
        self.clear_timeout()
