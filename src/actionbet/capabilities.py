# src/actionbet/capabilities.py
"""
能力偵測層

在場次建立時一次性決定各協作者是否可用：
- 暫停協調器不可用 → NullPauseCoordinator（比賽不暫停，機會仍會逾時結束）
- 指示器缺失或不完整 → TextIndicator（文字指示器）

其他組件不需要各自判斷「降級模式」。
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import TimingConfig
from .core.event_bus import EventBus
from .core.scheduler import Scheduler
from .indicator import MinimizedIndicator, TextIndicator
from .pause_coordinator import PauseCoordinator

logger = logging.getLogger(__name__)

PAUSE_COORDINATOR_METHODS = (
    "pause_game",
    "resume_game",
    "is_paused",
    "clear_timeout",
    "rearm_timeout",
    "has_active_timeout",
    "shutdown",
)
INDICATOR_METHODS = ("show", "update", "hide", "is_showing")


class CapabilityStatus(str, Enum):
    """協作者狀態"""
    AVAILABLE = "available"      # 正常
    DEGRADED = "degraded"        # 以替代實現運行
    UNAVAILABLE = "unavailable"  # 沒有替代實現


@dataclass
class CapabilityReport:
    """單一協作者的偵測結果"""
    component: str
    status: CapabilityStatus
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component": self.component,
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp,
        }


class NullPauseCoordinator:
    """
    不暫停的協調器

    介面與 PauseCoordinator 相同；pause_game 永遠返回 False，
    比賽時鐘持續前進。
    """

    def pause_game(self, reason: str, timeout_ms: Optional[float] = None) -> bool:
        logger.debug(f"暫停不可用，忽略暫停請求: {reason}")
        return False

    def resume_game(self, with_countdown: bool = True, countdown_seconds: Optional[int] = None) -> bool:
        return True

    def is_paused(self) -> bool:
        return False

    def is_resuming(self) -> bool:
        return False

    def clear_timeout(self) -> bool:
        return False

    def rearm_timeout(self, timeout_ms: Optional[float] = None) -> bool:
        return False

    def has_active_timeout(self) -> bool:
        return False

    def get_pause_info(self) -> Dict[str, Any]:
        return {"active": False, "reason": None, "started_at": None, "timeout_at": None,
                "has_timeout": False, "phase": "running"}

    def get_pause_duration(self) -> float:
        return 0.0

    def set_timeout_warning_callback(self, callback: Callable[[str], None]) -> None:
        pass

    def clear_timeout_warning_callback(self) -> None:
        pass

    def set_countdown_callback(self, callback: Callable[[int], None]) -> None:
        pass

    def clear_countdown_callback(self) -> None:
        pass

    def set_countdown_tick_callback(self, callback: Callable[[int], None]) -> None:
        pass

    def clear_countdown_tick_callback(self) -> None:
        pass

    def shutdown(self) -> None:
        pass


def _missing_methods(obj: Any, names: Tuple[str, ...]) -> List[str]:
    return [name for name in names if not callable(getattr(obj, name, None))]


def resolve_pause_coordinator(
    scheduler: Scheduler,
    bus: EventBus,
    timing: TimingConfig,
    *,
    enabled: bool = True,
    factory: Optional[Callable[[], Any]] = None,
) -> Tuple[Any, CapabilityReport]:
    """
    建立暫停協調器，失敗時以 NullPauseCoordinator 替代

    Args:
        enabled: False 時直接使用 NullPauseCoordinator
        factory: 自訂建構函數（測試或外部實現）

    Returns:
        (coordinator, report)
    """
    if not enabled:
        logger.warning("⚠️ 暫停功能已停用，比賽將不會暫停")
        return NullPauseCoordinator(), CapabilityReport(
            component="pause_coordinator",
            status=CapabilityStatus.DEGRADED,
            message="暫停功能已停用",
        )

    try:
        if factory is not None:
            coordinator = factory()
        else:
            coordinator = PauseCoordinator(
                scheduler,
                bus,
                default_timeout_ms=timing.pause_timeout_ms,
                max_timeout_ms=timing.max_pause_timeout_ms,
                default_countdown_seconds=timing.resume_countdown_seconds,
                max_countdown_seconds=timing.max_resume_countdown_seconds,
            )
    except Exception as e:
        logger.error(f"❌ 暫停協調器建立失敗，改用不暫停模式: {e}", exc_info=True)
        return NullPauseCoordinator(), CapabilityReport(
            component="pause_coordinator",
            status=CapabilityStatus.DEGRADED,
            message=f"建立失敗: {e}",
        )

    missing = _missing_methods(coordinator, PAUSE_COORDINATOR_METHODS)
    if missing:
        logger.error(f"❌ 暫停協調器介面不完整，改用不暫停模式: 缺少 {missing}")
        return NullPauseCoordinator(), CapabilityReport(
            component="pause_coordinator",
            status=CapabilityStatus.DEGRADED,
            message="介面不完整",
            details={"missing": missing},
        )

    return coordinator, CapabilityReport(
        component="pause_coordinator",
        status=CapabilityStatus.AVAILABLE,
        message="暫停協調器可用",
        details={"type": type(coordinator).__name__},
    )


def resolve_indicator(indicator: Optional[Any]) -> Tuple[MinimizedIndicator, CapabilityReport]:
    """檢查渲染層提供的指示器，缺失或不完整時使用 TextIndicator"""
    if indicator is None:
        return TextIndicator(), CapabilityReport(
            component="indicator",
            status=CapabilityStatus.DEGRADED,
            message="未提供指示器",
        )

    missing = _missing_methods(indicator, INDICATOR_METHODS)
    if missing:
        logger.warning(f"⚠️ 指示器介面不完整，改用文字指示器: 缺少 {missing}")
        return TextIndicator(), CapabilityReport(
            component="indicator",
            status=CapabilityStatus.DEGRADED,
            message="介面不完整",
            details={"missing": missing},
        )

    return indicator, CapabilityReport(
        component="indicator",
        status=CapabilityStatus.AVAILABLE,
        message="指示器可用",
        details={"type": type(indicator).__name__},
    )
