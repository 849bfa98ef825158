# src/actionbet/modal_state.py
"""
投注面板狀態機 - 單一投注機會的呈現與計時

狀態：
    CLOSED --initialize--> VISIBLE --minimize--> MINIMIZED --restore--> VISIBLE
    VISIBLE / MINIMIZED --close--> CLOSED

要點：
- 面板最小化時倒數照常進行，指示器顯示同一個剩餘時間與 band
- 恢復時以 duration - (now - start_time) 重新計算剩餘時間，
  不讀取指示器的快取值
- 無效狀態的呼叫（沒有機會時最小化、重複最小化……）只記錄，不改變狀態
"""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import BandThresholds
from .core.event_bus import Event, EventBus, EventType
from .core.scheduler import Scheduler
from .countdown import CountdownBand, CountdownTimer, classify_band, sanitize_ms
from .indicator import FallbackIndicator, MinimizedIndicator, TextIndicator, format_seconds
from .opportunity import DEFAULT_TITLE, parse_choice

logger = logging.getLogger(__name__)

_owner_counter = itertools.count(1)


class ModalPhase:
    CLOSED = "closed"
    VISIBLE = "visible"
    MINIMIZED = "minimized"


@dataclass
class ModalState:
    """面板狀態（visible 與 minimized 互斥，兩者皆 False 代表已關閉）"""
    visible: bool = False
    minimized: bool = False
    start_time: Optional[float] = None
    duration: float = 0.0
    content: Optional[Dict[str, Any]] = None
    timer: Optional[CountdownTimer] = None

    @property
    def phase(self) -> str:
        if self.visible:
            return ModalPhase.VISIBLE
        if self.minimized:
            return ModalPhase.MINIMIZED
        return ModalPhase.CLOSED


def default_content() -> Dict[str, Any]:
    return {"title": DEFAULT_TITLE, "description": "", "choices": []}


def normalize_content(content: Any) -> Dict[str, Any]:
    """格式錯誤的內容降級為最小預設內容"""
    result = default_content()
    if not isinstance(content, dict):
        if content is not None:
            logger.warning(f"⚠️ 面板內容格式無效，使用預設內容: {type(content).__name__}")
        return result

    for key, value in content.items():
        if key == "choices":
            continue
        result[key] = value

    if not isinstance(result.get("title"), str) or not result["title"].strip():
        result["title"] = DEFAULT_TITLE
    if not isinstance(result.get("description"), str):
        result["description"] = ""

    raw_choices = content.get("choices")
    if not isinstance(raw_choices, list):
        raw_choices = []

    choices: List[Dict[str, Any]] = []
    for raw in raw_choices:
        choice = parse_choice(raw)
        if choice is None:
            logger.warning(f"⚠️ 面板選項無效，已略過: {raw!r}")
            continue
        choices.append({"text": choice.text, "odds": choice.odds})
    result["choices"] = choices
    return result


def validate_update(payload: Any) -> Optional[str]:
    """
    檢查內容更新

    整筆更新要嘛全部套用、要嘛全部拒絕，不做逐欄位的降級。

    Returns:
        None 表示可套用，否則為拒絕原因
    """
    if not isinstance(payload, dict) or not payload:
        return "payload must be a non-empty mapping"
    if "title" in payload:
        title = payload["title"]
        if not isinstance(title, str) or not title.strip():
            return "title must be a non-empty string"
    if "description" in payload and not isinstance(payload["description"], str):
        return "description must be a string"
    if "choices" in payload:
        choices = payload["choices"]
        if not isinstance(choices, list) or not choices:
            return "choices must be a non-empty list"
        if any(parse_choice(raw) is None for raw in choices):
            return "every choice needs text and positive odds"
    return None


class OpportunityStateMachine:
    """投注面板狀態機（同一時間只持有一個投注機會）"""

    def __init__(
        self,
        scheduler: Scheduler,
        bus: Optional[EventBus] = None,
        *,
        indicator: Optional[MinimizedIndicator] = None,
        default_duration_ms: float = 10_000.0,
        tick_ms: float = 100.0,
        thresholds: BandThresholds = BandThresholds(),
    ) -> None:
        self.scheduler = scheduler
        self.bus = bus if bus is not None else EventBus()
        self.indicator = FallbackIndicator(indicator if indicator is not None else TextIndicator())
        self.default_duration_ms = default_duration_ms
        self.tick_ms = tick_ms
        self.thresholds = thresholds

        self._state = ModalState()
        self._owner_id: Optional[str] = None

        self.bus.subscribe(EventType.COUNTDOWN_UPDATE, self._on_countdown_update)

    # ------------------------------------------------------------------
    # 生命週期
    # ------------------------------------------------------------------
    def initialize(self, content: Any, duration: Any = None, opportunity_id: Optional[str] = None) -> bool:
        """
        開啟面板並開始倒數

        Args:
            content: 面板內容（title / description / choices）
            duration: 倒數毫秒，無效時使用 default_duration_ms
            opportunity_id: 投注機會 ID（倒數事件的 correlation_id）

        Returns:
            倒數是否成功啟動
        """
        if self.is_active():
            logger.warning(f"⚠️ 面板已開啟 ({self._owner_id})，先關閉再初始化")
            self.close()

        value = sanitize_ms(duration)
        if value is None or value <= 0:
            if duration is not None:
                logger.warning(f"⚠️ 倒數時長無效，使用預設值 {self.default_duration_ms:.0f}ms: {duration!r}")
            value = float(self.default_duration_ms)

        self._owner_id = opportunity_id or f"modal-{next(_owner_counter)}"
        timer = CountdownTimer(
            self.scheduler,
            self.bus,
            owner_id=self._owner_id,
            tick_ms=self.tick_ms,
            thresholds=self.thresholds,
        )
        self._state = ModalState(
            visible=True,
            minimized=False,
            start_time=self.scheduler.now(),
            duration=value,
            content=normalize_content(content),
            timer=timer,
        )
        logger.info(f"🎯 面板開啟: {self._state.content['title']} ({value:.0f}ms) id={self._owner_id}")
        return timer.start(value)

    def minimize(self) -> bool:
        """面板 → 最小化指示器，倒數不受影響"""
        if not self._state.visible:
            if self._state.minimized:
                logger.warning("⚠️ 面板已最小化，忽略")
            else:
                logger.warning("⚠️ 沒有進行中的投注機會，無法最小化")
            return False

        self._state.visible = False
        self._state.minimized = True

        remaining = self.get_remaining_time()
        band = classify_band(remaining, self._state.duration, self.thresholds)
        self.indicator.show(self._indicator_label(), format_seconds(remaining), band)

        logger.info(f"🔽 面板最小化: id={self._owner_id} remaining={remaining:.0f}ms")
        self.bus.emit(
            EventType.MODAL_MINIMIZED,
            source="modal_state",
            data={"remaining": remaining, "band": band.value},
            correlation_id=self._owner_id,
        )
        return True

    def restore(self) -> bool:
        """
        最小化 → 面板

        Returns:
            恢復後投注機會仍然有效；已過期時倒數直接到期並返回 False
        """
        if not self._state.minimized:
            if self._state.visible:
                logger.warning("⚠️ 面板已顯示，忽略恢復")
            else:
                logger.warning("⚠️ 沒有進行中的投注機會，無法恢復")
            return False

        owner_id = self._owner_id
        self._state.minimized = False
        self._state.visible = True
        self.indicator.hide()

        remaining = self.get_remaining_time()
        logger.info(f"🔼 面板恢復: id={owner_id} remaining={remaining:.0f}ms")
        self.bus.emit(
            EventType.MODAL_RESTORED,
            source="modal_state",
            data={"remaining": remaining},
            correlation_id=owner_id,
        )

        timer = self._state.timer
        if timer is not None:
            timer.update(remaining, self._state.duration)

        return self._owner_id == owner_id and self._state.visible and remaining > 0

    def close(self) -> None:
        """關閉面板，停止倒數並隱藏指示器"""
        if self._state.timer is not None:
            self._state.timer.destroy()
        if self._state.minimized:
            self.indicator.hide()
        if self.is_active():
            logger.info(f"✖️ 面板關閉: id={self._owner_id}")
        self._state = ModalState()
        self._owner_id = None

    def update_content(self, payload: Any) -> bool:
        """合併新的面板內容；格式錯誤或沒有機會時不變"""
        if not self.is_active():
            logger.warning("⚠️ 沒有進行中的投注機會，忽略內容更新")
            return False
        problem = validate_update(payload)
        if problem is not None:
            logger.warning(f"⚠️ 內容更新格式無效，忽略: {problem} | {payload!r}")
            return False

        merged = dict(self._state.content or default_content())
        merged.update(payload)
        self._state.content = normalize_content(merged)
        return True

    def dispose(self) -> None:
        self.close()
        self.bus.unsubscribe(EventType.COUNTDOWN_UPDATE, self._on_countdown_update)

    # ------------------------------------------------------------------
    # 查詢
    # ------------------------------------------------------------------
    def is_active(self) -> bool:
        return self._state.visible or self._state.minimized

    def is_visible(self) -> bool:
        return self._state.visible

    def is_minimized(self) -> bool:
        return self._state.minimized

    def is_expired(self) -> bool:
        if not self.is_active() or self._state.start_time is None:
            return False
        return self.scheduler.now() - self._state.start_time >= self._state.duration

    def get_remaining_time(self) -> float:
        if not self.is_active() or self._state.start_time is None:
            return 0.0
        elapsed = self.scheduler.now() - self._state.start_time
        return max(0.0, self._state.duration - elapsed)

    @property
    def opportunity_id(self) -> Optional[str]:
        return self._owner_id

    @property
    def state(self) -> ModalState:
        return self._state

    @property
    def content(self) -> Optional[Dict[str, Any]]:
        return self._state.content

    # ------------------------------------------------------------------
    # 內部
    # ------------------------------------------------------------------
    def _indicator_label(self) -> str:
        content = self._state.content or {}
        return content.get("event_type") or content.get("bet_type") or content.get("title") or ""

    def _on_countdown_update(self, event: Event) -> None:
        if not self._state.minimized or event.correlation_id != self._owner_id:
            return
        remaining = event.data.get("remaining", 0.0)
        band = CountdownBand(event.data.get("band", CountdownBand.NORMAL.value))
        self.indicator.update(format_seconds(remaining), band)
