# src/actionbet/indicator.py
"""
最小化指示器協作者

面板最小化時，由指示器顯示「事件類型 + 剩餘秒數 + 緊迫程度」。
渲染層可提供自己的實現；失敗時降級為純文字指示器，計時與狀態不受影響。
"""
from __future__ import annotations

import logging
import math
from typing import List, Optional

from .countdown import CountdownBand

logger = logging.getLogger(__name__)

_EVENT_LABELS = {
    "CORNER_OUTCOME": "Corner Kick",
    "GOAL_ATTEMPT": "Goal Attempt",
    "PENALTY": "Penalty",
    "FREE_KICK": "Free Kick",
    "YELLOW_CARD": "Yellow Card",
    "RED_CARD": "Red Card",
    "SUBSTITUTION": "Substitution",
    "OFFSIDE": "Offside",
    "FOUL": "Foul",
}


def format_event_type(event_type: Optional[str]) -> str:
    """'FOUL_OUTCOME' → 'Foul Outcome'"""
    if not event_type:
        return "Bet"
    if event_type in _EVENT_LABELS:
        return _EVENT_LABELS[event_type]
    return event_type.replace("_", " ").lower().title()


def format_seconds(remaining_ms: float) -> int:
    """毫秒 → 顯示用秒數（無條件進位）"""
    return max(0, int(math.ceil(max(0.0, remaining_ms) / 1000.0)))


class MinimizedIndicator:
    """指示器介面"""

    def show(self, event_type: str, remaining_seconds: int, band: CountdownBand) -> None:
        raise NotImplementedError

    def update(self, remaining_seconds: int, band: CountdownBand) -> None:
        raise NotImplementedError

    def hide(self) -> None:
        raise NotImplementedError

    def is_showing(self) -> bool:
        raise NotImplementedError


class TextIndicator(MinimizedIndicator):
    """純文字指示器，保留最近的顯示文字"""

    def __init__(self, max_lines: int = 50) -> None:
        self.text = ""
        self.lines: List[str] = []
        self._max_lines = max_lines
        self._visible = False
        self._label = "Bet"

    def show(self, event_type: str, remaining_seconds: int, band: CountdownBand) -> None:
        self._label = format_event_type(event_type)
        self._visible = True
        self._render(remaining_seconds, band)

    def update(self, remaining_seconds: int, band: CountdownBand) -> None:
        if not self._visible:
            return
        self._render(remaining_seconds, band)

    def hide(self) -> None:
        self._visible = False
        self.text = ""

    def is_showing(self) -> bool:
        return self._visible

    def _render(self, remaining_seconds: int, band: CountdownBand) -> None:
        suffix = " - URGENT" if band == CountdownBand.URGENT else ""
        self.text = f"{self._label}: {remaining_seconds}s{suffix}"
        self.lines.append(self.text)
        if len(self.lines) > self._max_lines:
            self.lines = self.lines[-self._max_lines:]
        logger.debug(f"📟 {self.text}")


class FallbackIndicator(MinimizedIndicator):
    """
    包裝渲染層指示器

    主指示器任何一次呼叫失敗後，永久切換到 TextIndicator，
    並把當前狀態重播到備援指示器上。
    """

    def __init__(self, primary: MinimizedIndicator, fallback: Optional[MinimizedIndicator] = None) -> None:
        self.primary = primary
        self.fallback = fallback if fallback is not None else TextIndicator()
        self.degraded = False
        self._event_type = ""

    @property
    def active(self) -> MinimizedIndicator:
        return self.fallback if self.degraded else self.primary

    def show(self, event_type: str, remaining_seconds: int, band: CountdownBand) -> None:
        self._event_type = event_type
        if not self.degraded:
            try:
                self.primary.show(event_type, remaining_seconds, band)
                return
            except Exception as e:
                self._degrade("show", e)
        self.fallback.show(event_type, remaining_seconds, band)

    def update(self, remaining_seconds: int, band: CountdownBand) -> None:
        if not self.degraded:
            try:
                self.primary.update(remaining_seconds, band)
                return
            except Exception as e:
                self._degrade("update", e)
                self.fallback.show(self._event_type, remaining_seconds, band)
                return
        self.fallback.update(remaining_seconds, band)

    def hide(self) -> None:
        if not self.degraded:
            try:
                self.primary.hide()
                return
            except Exception as e:
                self._degrade("hide", e)
        self.fallback.hide()

    def is_showing(self) -> bool:
        if self.degraded:
            return self.fallback.is_showing()
        try:
            return bool(self.primary.is_showing())
        except Exception as e:
            self._degrade("is_showing", e)
            return self.fallback.is_showing()

    def _degrade(self, operation: str, error: Exception) -> None:
        self.degraded = True
        logger.error(f"❌ 指示器 {operation} 失敗，改用文字指示器: {error}", exc_info=True)
