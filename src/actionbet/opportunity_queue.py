# src/actionbet/opportunity_queue.py
"""
投注機會佇列

排序規則：
1. 優先級較高者先出
2. 平手取先到先出（到達時間，再以入隊序號決勝）
3. 入隊超過 staleness_ms 的機會在出隊時丟棄（投注窗口已失效）

同一 ID 重複入隊：新優先級較高時原地替換，否則忽略。
"""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .opportunity import Opportunity

logger = logging.getLogger(__name__)


class DiscardReason(str, Enum):
    """丟棄原因"""
    STALE = "stale"          # 超過有效時間
    DUPLICATE = "duplicate"  # 同 ID 且優先級不更高
    CLEARED = "cleared"      # 場次結束清空


@dataclass
class DequeueResult:
    """出隊結果"""
    opportunity: Optional[Opportunity]
    discarded: List[Tuple[Opportunity, DiscardReason]] = field(default_factory=list)


def should_replace(current: Opportunity, incoming: Opportunity) -> bool:
    """只有嚴格更高的優先級才替換進行中的機會"""
    return incoming.priority > current.priority


class OpportunityQueue:
    """投注機會佇列"""

    def __init__(self, staleness_ms: Optional[float] = 30_000.0) -> None:
        """
        Args:
            staleness_ms: 機會在佇列中的最長有效時間，None 表示不丟棄
        """
        self.staleness_ms = staleness_ms
        self._items: List[Tuple[int, Opportunity]] = []
        self._sequence = itertools.count()

    def enqueue(self, opportunity: Opportunity, now: Optional[float] = None) -> bool:
        """
        入隊

        Args:
            opportunity: 投注機會
            now: 到達時間（毫秒）；省略時沿用 opportunity.queued_at

        Returns:
            是否入隊（或升級替換）成功
        """
        if now is not None:
            opportunity.queued_at = now

        for index, (seq, existing) in enumerate(self._items):
            if existing.id != opportunity.id:
                continue
            if opportunity.priority > existing.priority:
                # 原地替換，保留原本的到達時間與順位
                opportunity.queued_at = existing.queued_at
                self._items[index] = (seq, opportunity)
                logger.info(
                    f"⬆️ 佇列中機會升級: {opportunity.id} "
                    f"priority {existing.priority} → {opportunity.priority}"
                )
                return True
            logger.info(f"⏭️ 重複機會已在佇列中，忽略: {opportunity.id}")
            return False

        self._items.append((next(self._sequence), opportunity))
        logger.info(
            f"📥 機會入隊: {opportunity.id} ({opportunity.event_type}, priority={opportunity.priority}) "
            f"| 佇列長度={len(self._items)}"
        )
        return True

    def should_replace(self, current: Opportunity, incoming: Opportunity) -> bool:
        return should_replace(current, incoming)

    def dequeue(self, now: Optional[float] = None) -> DequeueResult:
        """
        取出下一個機會

        Args:
            now: 目前時間（毫秒）；提供時才檢查過期

        Returns:
            DequeueResult: 下一個機會（可能為 None）與被丟棄的機會
        """
        discarded: List[Tuple[Opportunity, DiscardReason]] = []

        if now is not None and self.staleness_ms is not None:
            fresh: List[Tuple[int, Opportunity]] = []
            for seq, opportunity in self._items:
                queued_at = opportunity.queued_at if opportunity.queued_at is not None else now
                age = now - queued_at
                if age > self.staleness_ms:
                    logger.info(f"🗑️ 丟棄過期機會: {opportunity.id} (age={age:.0f}ms)")
                    discarded.append((opportunity, DiscardReason.STALE))
                else:
                    fresh.append((seq, opportunity))
            self._items = fresh

        if not self._items:
            return DequeueResult(opportunity=None, discarded=discarded)

        best_index = min(range(len(self._items)), key=lambda i: self._sort_key(self._items[i]))
        _, opportunity = self._items.pop(best_index)
        logger.info(f"📤 機會出隊: {opportunity.id} | 剩餘={len(self._items)}")
        return DequeueResult(opportunity=opportunity, discarded=discarded)

    @staticmethod
    def _sort_key(item: Tuple[int, Opportunity]) -> Tuple[int, float, int]:
        seq, opportunity = item
        queued_at = opportunity.queued_at if opportunity.queued_at is not None else float("inf")
        return (-opportunity.priority, queued_at, seq)

    def peek(self) -> Optional[Opportunity]:
        if not self._items:
            return None
        return min(self._items, key=self._sort_key)[1]

    def remove(self, opportunity_id: str) -> Optional[Opportunity]:
        for index, (_, opportunity) in enumerate(self._items):
            if opportunity.id == opportunity_id:
                del self._items[index]
                return opportunity
        return None

    def clear(self) -> List[Opportunity]:
        """清空佇列，返回被清除的機會"""
        removed = [opportunity for _, opportunity in self._items]
        self._items.clear()
        if removed:
            logger.info(f"🧹 佇列已清空: {len(removed)} 個機會")
        return removed

    def snapshot(self) -> List[Dict[str, Any]]:
        """依出隊順序列出佇列內容"""
        ordered = sorted(self._items, key=self._sort_key)
        return [
            {
                "id": opportunity.id,
                "event_type": opportunity.event_type,
                "priority": opportunity.priority,
                "queued_at": opportunity.queued_at,
            }
            for _, opportunity in ordered
        ]

    def ids(self) -> List[str]:
        return [entry["id"] for entry in self.snapshot()]

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, opportunity_id: object) -> bool:
        return any(opportunity.id == opportunity_id for _, opportunity in self._items)
