# src/actionbet/orchestrator.py
"""
BettingOrchestrator - 投注機會協調器

職責：
1. 分類比賽事件，正規化為投注機會
2. 協調暫停協調器、面板狀態機、機會佇列（唯一可跨組件呼叫者）
3. 處理決策（下注 / 跳過 / 逾時 / 錯誤）與對應的恢復方式
4. 以機會 ID 過濾過期回調

恢復語義：
- 明確決策（下注 / 跳過）→ resume_game(with_countdown=True)
- 逾時 / 錯誤 → resume_game(with_countdown=False)

所有場次狀態集中在 SessionContext，不使用模組層級的全局狀態。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .bet_slip import BetRecorder, BetSlip, InvalidChoiceError, InvalidStakeError, validate_stake
from .capabilities import CapabilityReport, resolve_indicator, resolve_pause_coordinator
from .config import SessionConfig
from .core.event_bus import Event, EventBus, EventType
from .core.scheduler import Scheduler, TimerHandle, VirtualScheduler
from .indicator import MinimizedIndicator
from .modal_state import OpportunityStateMachine
from .opportunity import Choice, Opportunity, is_betting_event, opportunity_from_event, parse_choice
from .opportunity_queue import DiscardReason, OpportunityQueue

logger = logging.getLogger(__name__)


class EventOutcome(str, Enum):
    """handle_match_event 的處理結果"""
    IGNORED = "ignored"      # 非投注事件 / 重複
    INVALID = "invalid"      # 投注事件但沒有任何有效選項
    ACTIVATED = "activated"  # 成為進行中的機會
    QUEUED = "queued"        # 進入佇列
    REPLACED = "replaced"    # 替換了進行中的機會


class Resolution(str, Enum):
    """機會結束方式"""
    PLACED = "placed"
    SKIPPED = "skipped"
    TIMEOUT = "timeout"
    ERROR = "error"


EXPLICIT_DECISIONS = (Resolution.PLACED, Resolution.SKIPPED)


@dataclass
class SessionContext:
    """單一場次的全部狀態"""
    config: SessionConfig
    scheduler: Scheduler
    bus: EventBus
    pause: Any
    modal: OpportunityStateMachine
    queue: OpportunityQueue
    active: Optional[Opportunity] = None
    capabilities: List[CapabilityReport] = field(default_factory=list)
    bets: List[BetSlip] = field(default_factory=list)
    resolutions: Dict[str, int] = field(default_factory=dict)
    pause_owner: Optional[str] = None
    closed: bool = False


class BettingOrchestrator:
    """投注機會協調器"""

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        scheduler: Optional[Scheduler] = None,
        bus: Optional[EventBus] = None,
        *,
        indicator: Optional[MinimizedIndicator] = None,
        pause_enabled: bool = True,
        pause_factory: Optional[Callable[[], Any]] = None,
        bet_recorder: Optional[BetRecorder] = None,
    ) -> None:
        """
        Args:
            config: 場次配置（None 使用預設值）
            scheduler: 排程器（None 使用 VirtualScheduler）
            bus: 事件總線（None 建立新的）
            indicator: 渲染層的最小化指示器
            pause_enabled: False 時不暫停比賽
            pause_factory: 自訂暫停協調器建構函數
            bet_recorder: 下注記帳回調，只在金額驗證通過後呼叫
        """
        config = config or SessionConfig()
        scheduler = scheduler or VirtualScheduler()
        bus = bus or EventBus()
        timing = config.timing

        pause, pause_report = resolve_pause_coordinator(
            scheduler, bus, timing, enabled=pause_enabled, factory=pause_factory
        )
        resolved_indicator, indicator_report = resolve_indicator(indicator)

        modal = OpportunityStateMachine(
            scheduler,
            bus,
            indicator=resolved_indicator,
            default_duration_ms=timing.opportunity_duration_ms,
            tick_ms=timing.countdown_tick_ms,
            thresholds=config.thresholds,
        )

        self.ctx = SessionContext(
            config=config,
            scheduler=scheduler,
            bus=bus,
            pause=pause,
            modal=modal,
            queue=OpportunityQueue(staleness_ms=timing.queue_staleness_ms),
            capabilities=[pause_report, indicator_report],
        )
        self._bet_recorder = bet_recorder
        self._dequeue_handle: Optional[TimerHandle] = None

        bus.subscribe(EventType.COUNTDOWN_EXPIRED, self._on_countdown_expired)
        bus.subscribe(EventType.RESUMED, self._on_resumed)

        logger.info(
            f"🎮 BettingOrchestrator 初始化 | window={timing.opportunity_duration_ms:.0f}ms "
            f"pause_timeout={timing.pause_timeout_ms:.0f}ms "
            f"pause={pause_report.status.value} indicator={indicator_report.status.value}"
        )

    # ------------------------------------------------------------------
    # 比賽事件
    # ------------------------------------------------------------------
    def handle_match_event(self, event: Any) -> EventOutcome:
        """
        處理一個比賽事件

        Returns:
            EventOutcome
        """
        ctx = self.ctx
        if ctx.closed:
            logger.debug("場次已結束，忽略比賽事件")
            return EventOutcome.IGNORED

        if not is_betting_event(event):
            return EventOutcome.IGNORED

        now = ctx.scheduler.now()
        opportunity = opportunity_from_event(event, now=now, priorities=ctx.config.priorities)
        if opportunity is None:
            return EventOutcome.INVALID
        if isinstance(event.get("choices"), list) and event["choices"] and not opportunity.choices:
            logger.warning(f"⚠️ 投注事件沒有任何有效選項，忽略: {opportunity.id}")
            return EventOutcome.INVALID

        current = ctx.active
        if current is None:
            self._activate(opportunity)
            return EventOutcome.ACTIVATED

        if opportunity.id == current.id:
            logger.info(f"⏭️ 機會已在進行中，忽略重複事件: {opportunity.id}")
            return EventOutcome.IGNORED

        if ctx.queue.should_replace(current, opportunity):
            self._replace(current, opportunity)
            return EventOutcome.REPLACED

        if not ctx.queue.enqueue(opportunity, now):
            ctx.bus.emit(
                EventType.OPPORTUNITY_DISCARDED,
                source="orchestrator",
                data={"reason": DiscardReason.DUPLICATE.value},
                correlation_id=opportunity.id,
            )
            return EventOutcome.IGNORED

        ctx.bus.emit(
            EventType.OPPORTUNITY_QUEUED,
            source="orchestrator",
            data={
                "event_type": opportunity.event_type,
                "priority": opportunity.priority,
                "queue_length": len(ctx.queue),
            },
            correlation_id=opportunity.id,
        )
        return EventOutcome.QUEUED

    def _activate(self, opportunity: Opportunity, *, reuse_pause: bool = False) -> None:
        ctx = self.ctx
        timing = ctx.config.timing
        ctx.active = opportunity

        paused = False
        try:
            if reuse_pause and ctx.pause.is_paused():
                paused = ctx.pause.rearm_timeout(timing.pause_timeout_ms)
            else:
                paused = ctx.pause.pause_game(ctx.config.pause_reason, timing.pause_timeout_ms)
        except Exception as e:
            logger.error(f"❌ 暫停比賽失敗，機會將以逾時結束: {e}", exc_info=True)

        ctx.pause_owner = opportunity.id if paused else None
        if not paused:
            logger.warning(f"⚠️ 比賽未暫停（paused={ctx.pause.is_paused()}），機會照常計時: {opportunity.id}")

        logger.info(
            f"🎯 機會啟動: {opportunity.id} ({opportunity.event_type}, priority={opportunity.priority})"
        )
        ctx.bus.emit(
            EventType.OPPORTUNITY_ACTIVATED,
            source="orchestrator",
            data={
                "event_type": opportunity.event_type,
                "priority": opportunity.priority,
                "description": opportunity.description,
                "choices": [{"text": c.text, "odds": c.odds} for c in opportunity.choices],
                "paused": paused,
            },
            correlation_id=opportunity.id,
        )
        ctx.modal.initialize(opportunity.to_content(), timing.opportunity_duration_ms, opportunity_id=opportunity.id)

    def _replace(self, current: Opportunity, incoming: Opportunity) -> None:
        ctx = self.ctx
        logger.info(
            f"🔀 高優先級機會替換: {current.id}(p={current.priority}) → {incoming.id}(p={incoming.priority})"
        )
        # 只有持有暫停的機會才能交出暫停窗口
        owns_pause = ctx.pause_owner == current.id
        ctx.modal.close()
        if owns_pause:
            ctx.pause.clear_timeout()
        ctx.active = None
        ctx.pause_owner = None
        ctx.bus.emit(
            EventType.OPPORTUNITY_REPLACED,
            source="orchestrator",
            data={"replaced_by": incoming.id, "priority": current.priority, "incoming_priority": incoming.priority},
            correlation_id=current.id,
        )
        self._activate(incoming, reuse_pause=owns_pause)

    # ------------------------------------------------------------------
    # 決策
    # ------------------------------------------------------------------
    def place_bet(self, opportunity_id: str, choice_index: int, stake: Optional[float] = None) -> bool:
        """
        下注

        Args:
            opportunity_id: 投注機會 ID（必須是進行中的機會）
            choice_index: 選項索引
            stake: 金額（None 使用 default_stake）

        Returns:
            是否成功下注；驗證失敗時機會保持進行中
        """
        ctx = self.ctx
        if not self._is_current(opportunity_id, "place_bet"):
            return False

        opportunity = ctx.active
        if stake is None:
            stake = ctx.config.default_stake
        try:
            amount = validate_stake(stake, ctx.config.max_stake)
            choice = self._choice_at(opportunity, choice_index)
        except (InvalidStakeError, InvalidChoiceError) as e:
            logger.warning(f"🚫 下注被拒絕: {opportunity_id} | {e}")
            ctx.bus.emit(
                EventType.BET_REJECTED,
                source="orchestrator",
                data={"reason": str(e), "stake": stake, "choice_index": choice_index},
                correlation_id=opportunity_id,
            )
            return False

        slip = BetSlip(
            opportunity_id=opportunity.id,
            choice_text=choice.text,
            odds=choice.odds,
            stake=amount,
            bet_type=opportunity.bet_type,
            placed_at=ctx.scheduler.now(),
        )

        if self._bet_recorder is not None:
            try:
                self._bet_recorder(slip)
            except Exception as e:
                logger.error(f"❌ 下注記帳失敗，取消下注: {e}", exc_info=True)
                ctx.bus.emit(
                    EventType.BET_REJECTED,
                    source="orchestrator",
                    data={"reason": f"recorder failed: {e}", "stake": amount, "choice_index": choice_index},
                    correlation_id=opportunity_id,
                )
                return False

        ctx.bets.append(slip)
        logger.info(f"💰 下注成功: {slip.choice_text} @{slip.odds} x {slip.stake:.2f} ({opportunity_id})")
        ctx.bus.emit(
            EventType.BET_PLACED,
            source="orchestrator",
            data={
                "choice": slip.choice_text,
                "odds": slip.odds,
                "stake": slip.stake,
                "bet_type": slip.bet_type,
                "potential_return": slip.potential_return,
            },
            correlation_id=opportunity_id,
        )
        self._resolve(Resolution.PLACED, {"choice": slip.choice_text, "stake": slip.stake})
        return True

    def skip(self, opportunity_id: str) -> bool:
        """跳過進行中的機會"""
        if not self._is_current(opportunity_id, "skip"):
            return False
        self._resolve(Resolution.SKIPPED)
        return True

    def fail(self, opportunity_id: str, error: Any = None) -> bool:
        """以錯誤結束進行中的機會（立即恢復，不倒數）"""
        if not self._is_current(opportunity_id, "fail"):
            return False
        logger.error(f"❌ 投注機會錯誤: {opportunity_id} | {error}")
        self._resolve(Resolution.ERROR, {"error": str(error) if error is not None else None})
        return True

    def minimize(self, opportunity_id: str) -> bool:
        if not self._is_current(opportunity_id, "minimize"):
            return False
        return self.ctx.modal.minimize()

    def restore(self, opportunity_id: str) -> bool:
        """恢復面板；已過期時以逾時結束並返回 False"""
        if not self._is_current(opportunity_id, "restore"):
            return False
        return self.ctx.modal.restore()

    def update_content(self, opportunity_id: str, payload: Any) -> bool:
        """
        更新面板內容

        選項更新會同步到進行中的機會，place_bet 以面板上顯示的選項為準。
        """
        ctx = self.ctx
        if not self._is_current(opportunity_id, "update_content"):
            return False
        if not ctx.modal.update_content(payload):
            return False

        if "choices" in payload:
            shown = [parse_choice(raw) for raw in (ctx.modal.content or {}).get("choices", [])]
            ctx.active.choices = [choice for choice in shown if choice is not None]
            logger.info(f"🔄 機會選項已更新: {opportunity_id} ({len(ctx.active.choices)} choices)")
        return True

    @staticmethod
    def _choice_at(opportunity: Opportunity, choice_index: Any) -> Choice:
        if isinstance(choice_index, bool) or not isinstance(choice_index, int):
            raise InvalidChoiceError(f"choice index must be an int, got {choice_index!r}")
        if not 0 <= choice_index < len(opportunity.choices):
            raise InvalidChoiceError(
                f"choice index {choice_index} out of range (0..{len(opportunity.choices) - 1})"
            )
        return opportunity.choices[choice_index]

    def _is_current(self, opportunity_id: Optional[str], action: str) -> bool:
        active = self.ctx.active
        if active is None or active.id != opportunity_id:
            logger.warning(
                f"⚠️ 忽略過期操作: {action} id={opportunity_id} "
                f"(active={active.id if active else None})"
            )
            return False
        return True

    # ------------------------------------------------------------------
    # 結束與出隊
    # ------------------------------------------------------------------
    def _resolve(self, resolution: Resolution, details: Optional[Dict[str, Any]] = None) -> None:
        ctx = self.ctx
        opportunity = ctx.active
        if opportunity is None:
            return

        owns_pause = ctx.pause_owner == opportunity.id
        ctx.modal.close()
        ctx.active = None
        ctx.pause_owner = None
        ctx.resolutions[resolution.value] = ctx.resolutions.get(resolution.value, 0) + 1

        logger.info(f"🏁 機會結束: {opportunity.id} → {resolution.value}")
        data = {"resolution": resolution.value, "event_type": opportunity.event_type}
        data.update(details or {})
        ctx.bus.emit(
            EventType.OPPORTUNITY_RESOLVED,
            source="orchestrator",
            data=data,
            correlation_id=opportunity.id,
        )

        if owns_pause:
            try:
                if resolution in EXPLICIT_DECISIONS:
                    ctx.pause.resume_game(True, ctx.config.timing.resume_countdown_seconds)
                else:
                    ctx.pause.resume_game(False)
            except Exception as e:
                logger.error(f"❌ 恢復比賽失敗: {e}", exc_info=True)
        else:
            logger.debug(f"暫停不屬於 {opportunity.id}，不恢復比賽")

        self._schedule_next()

    def _schedule_next(self) -> None:
        ctx = self.ctx
        if ctx.closed or not len(ctx.queue):
            return
        delay = ctx.config.timing.dequeue_delay_ms
        if delay <= 0:
            self._activate_next()
            return
        if self._dequeue_handle is not None and self._dequeue_handle.active:
            return
        self._dequeue_handle = ctx.scheduler.call_later(delay, self._activate_next, label="dequeue")

    def _activate_next(self) -> None:
        ctx = self.ctx
        self._dequeue_handle = None
        if ctx.closed or ctx.active is not None:
            return

        result = ctx.queue.dequeue(ctx.scheduler.now())
        for opportunity, reason in result.discarded:
            ctx.bus.emit(
                EventType.OPPORTUNITY_DISCARDED,
                source="orchestrator",
                data={"reason": reason.value},
                correlation_id=opportunity.id,
            )
        if result.opportunity is not None:
            self._activate(result.opportunity)

    # ------------------------------------------------------------------
    # 事件總線回調
    # ------------------------------------------------------------------
    def _on_countdown_expired(self, event: Event) -> None:
        active = self.ctx.active
        if active is None or event.correlation_id != active.id:
            logger.debug(f"忽略過期倒數回調: {event.correlation_id}")
            return
        logger.info(f"⏰ 投注時間結束: {active.id}")
        self._resolve(Resolution.TIMEOUT, {"cause": "countdown"})

    def _on_resumed(self, event: Event) -> None:
        ctx = self.ctx
        if not event.data.get("timed_out"):
            return
        active = ctx.active
        if active is None or ctx.pause_owner != active.id:
            return
        logger.warning(f"⏰ 暫停逾時，機會以逾時結束: {active.id}")
        self._resolve(Resolution.TIMEOUT, {"cause": "pause_timeout"})

    # ------------------------------------------------------------------
    # 場次
    # ------------------------------------------------------------------
    def shutdown(self) -> None:
        """結束場次：取消所有計時器並解除訂閱"""
        ctx = self.ctx
        if ctx.closed:
            return
        ctx.closed = True

        if self._dequeue_handle is not None:
            self._dequeue_handle.cancel()
            self._dequeue_handle = None

        ctx.modal.dispose()
        ctx.pause.shutdown()
        for opportunity in ctx.queue.clear():
            ctx.bus.emit(
                EventType.OPPORTUNITY_DISCARDED,
                source="orchestrator",
                data={"reason": DiscardReason.CLEARED.value},
                correlation_id=opportunity.id,
            )
        ctx.active = None
        ctx.pause_owner = None

        ctx.bus.unsubscribe(EventType.COUNTDOWN_EXPIRED, self._on_countdown_expired)
        ctx.bus.unsubscribe(EventType.RESUMED, self._on_resumed)
        logger.info("🛑 場次結束，所有計時器已取消")

    # ------------------------------------------------------------------
    # 查詢
    # ------------------------------------------------------------------
    @property
    def active_opportunity(self) -> Optional[Opportunity]:
        return self.ctx.active

    @property
    def queue(self) -> OpportunityQueue:
        return self.ctx.queue

    @property
    def pause(self) -> Any:
        return self.ctx.pause

    @property
    def modal(self) -> OpportunityStateMachine:
        return self.ctx.modal

    @property
    def bus(self) -> EventBus:
        return self.ctx.bus

    @property
    def scheduler(self) -> Scheduler:
        return self.ctx.scheduler

    @property
    def bets(self) -> List[BetSlip]:
        return list(self.ctx.bets)

    def is_paused(self) -> bool:
        return self.ctx.pause.is_paused()

    def get_remaining_time(self) -> float:
        return self.ctx.modal.get_remaining_time()

    def status(self) -> Dict[str, Any]:
        ctx = self.ctx
        active = ctx.active
        return {
            "active": active.id if active else None,
            "active_event_type": active.event_type if active else None,
            "modal_phase": ctx.modal.state.phase,
            "remaining_ms": ctx.modal.get_remaining_time(),
            "paused": ctx.pause.is_paused(),
            "pause": ctx.pause.get_pause_info(),
            "queue": ctx.queue.snapshot(),
            "bets": len(ctx.bets),
            "resolutions": dict(ctx.resolutions),
            "capabilities": [report.to_dict() for report in ctx.capabilities],
            "closed": ctx.closed,
        }
