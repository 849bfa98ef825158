# src/actionbet/opportunity.py
"""
投注機會模型與比賽事件分類

- is_betting_event: 判斷比賽事件是否為投注機會（分類規則見 EVENT_CLASSIFICATIONS）
- priority_for: 事件類型 → 優先級（明確的全序，未知類型為 0）
- opportunity_from_event: 把原始事件正規化為 Opportunity
"""
from __future__ import annotations

import itertools
import logging
import math
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

EVENT_CLASSIFICATIONS: Dict[str, frozenset] = {
    "BETTING": frozenset({
        "MULTI_CHOICE_ACTION_BET",
        "PENALTY_BET",
        "CORNER_BET",
        "CARD_BET",
        "SUBSTITUTION_BET",
        "FREE_KICK_BET",
        "OFFSIDE_BET",
        "INJURY_TIME_BET",
        "PLAYER_PERFORMANCE_BET",
        "NEXT_GOAL_BET",
        "HALF_TIME_SCORE_BET",
    }),
    "INFORMATIONAL": frozenset({
        "GOAL",
        "COMMENTARY",
        "KICK_OFF",
        "HALF_TIME",
        "FULL_TIME",
        "SUBSTITUTION",
        "INJURY",
    }),
    "RESOLUTION": frozenset({"RESOLUTION"}),
    # 只有帶投注欄位時才算投注機會
    "POTENTIAL_BETTING": frozenset({
        "YELLOW_CARD",
        "RED_CARD",
        "PENALTY_AWARDED",
        "CORNER_KICK",
        "FREE_KICK",
        "OFFSIDE",
        "VAR_REVIEW",
    }),
}

# 數字越大優先級越高；相同優先級不替換，出隊時先到先出
DEFAULT_PRIORITIES: Dict[str, int] = {
    "PENALTY_BET": 10,
    "PENALTY_AWARDED": 10,
    "CARD_BET": 9,
    "RED_CARD": 9,
    "YELLOW_CARD": 9,
    "CORNER_BET": 8,
    "CORNER_KICK": 8,
    "FREE_KICK_BET": 7,
    "FREE_KICK": 7,
    "MULTI_CHOICE_ACTION_BET": 6,
    "SUBSTITUTION_BET": 5,
    "OFFSIDE_BET": 4,
    "OFFSIDE": 4,
    "INJURY_TIME_BET": 3,
    "PLAYER_PERFORMANCE_BET": 2,
    "NEXT_GOAL_BET": 1,
    "HALF_TIME_SCORE_BET": 1,
}

UNKNOWN_PRIORITY = 0
DEFAULT_TITLE = "Betting Opportunity"

_BETTING_FLAGS = ("showBettingModal", "requiresPause", "bettingOpportunity")
_id_counter = itertools.count(1)


@dataclass(frozen=True)
class Choice:
    """投注選項"""
    text: str
    odds: float


@dataclass
class Opportunity:
    """投注機會"""
    id: str
    event_type: str
    description: str
    choices: List[Choice] = field(default_factory=list)
    priority: int = UNKNOWN_PRIORITY
    queued_at: Optional[float] = None
    bet_type: Optional[str] = None
    title: str = DEFAULT_TITLE
    raw: Dict[str, Any] = field(default_factory=dict)

    def to_content(self) -> Dict[str, Any]:
        """面板內容"""
        return {
            "title": self.title,
            "description": self.description,
            "choices": [{"text": c.text, "odds": c.odds} for c in self.choices],
            "bet_type": self.bet_type,
            "event_type": self.event_type,
        }


def _event_type(event: Mapping[str, Any]) -> str:
    value = event.get("type")
    return value.upper() if isinstance(value, str) else ""


def parse_choice(raw: Any) -> Optional[Choice]:
    """選項需要非空 text 與正數 odds，否則返回 None"""
    if not isinstance(raw, Mapping):
        return None
    text = raw.get("text")
    odds = raw.get("odds")
    if not isinstance(text, str) or not text.strip():
        return None
    if isinstance(odds, bool) or not isinstance(odds, Real):
        return None
    odds = float(odds)
    if math.isnan(odds) or math.isinf(odds) or odds <= 0:
        return None
    return Choice(text=text, odds=odds)


def has_valid_choices(event: Mapping[str, Any]) -> bool:
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices:
        return False
    return all(parse_choice(c) is not None for c in choices)


def _has_betting_fields(event: Mapping[str, Any]) -> bool:
    return (
        event.get("choices") is not None
        or event.get("betType") is not None
        or event.get("bettingOptions") is not None
    )


def is_betting_event(event: Any) -> bool:
    """
    判斷比賽事件是否應觸發投注機會

    判斷順序：
    1. RESOLUTION → False
    2. 資訊類事件 → 只有帶投注欄位時為 True
    3. 投注類事件 → True
    4. 潛在投注事件且帶投注欄位 → True
    5. 合法 choices / 字串 betType / bettingOptions / 投注 UI 標記 → True
    6. 其他 → False
    """
    if not isinstance(event, Mapping):
        return False

    event_type = _event_type(event)

    if event_type in EVENT_CLASSIFICATIONS["RESOLUTION"]:
        return False

    if event_type in EVENT_CLASSIFICATIONS["INFORMATIONAL"]:
        return _has_betting_fields(event)

    if event_type in EVENT_CLASSIFICATIONS["BETTING"]:
        return True

    if event_type in EVENT_CLASSIFICATIONS["POTENTIAL_BETTING"] and _has_betting_fields(event):
        return True

    if has_valid_choices(event):
        return True

    if isinstance(event.get("betType"), str):
        return True

    if isinstance(event.get("bettingOptions"), (list, dict)):
        return True

    return any(bool(event.get(flag)) for flag in _BETTING_FLAGS)


def priority_for(event_type: Optional[str], overrides: Optional[Mapping[str, int]] = None) -> int:
    """事件類型的優先級；overrides 優先於預設表，未知類型返回 0"""
    if not event_type:
        return UNKNOWN_PRIORITY
    key = event_type.upper()
    if overrides and key in overrides:
        return int(overrides[key])
    return DEFAULT_PRIORITIES.get(key, UNKNOWN_PRIORITY)


def opportunity_from_event(
    event: Any,
    *,
    now: Optional[float] = None,
    priorities: Optional[Mapping[str, int]] = None,
) -> Optional[Opportunity]:
    """
    把比賽事件正規化為 Opportunity

    不合法的 choice 會被丟棄並記錄；缺少的描述以事件類型補上。

    Returns:
        Opportunity，事件不是 mapping 時返回 None
    """
    if not isinstance(event, Mapping):
        logger.warning(f"⚠️ 比賽事件格式無效: {type(event).__name__}")
        return None

    event_type = _event_type(event) or "UNKNOWN"

    choices: List[Choice] = []
    raw_choices = event.get("choices")
    if isinstance(raw_choices, list):
        for raw in raw_choices:
            choice = parse_choice(raw)
            if choice is None:
                logger.warning(f"⚠️ 丟棄無效選項: {raw!r} (event={event_type})")
                continue
            choices.append(choice)

    description = event.get("description")
    if not isinstance(description, str) or not description.strip():
        description = event_type.replace("_", " ").title()

    raw_id = event.get("id")
    if isinstance(raw_id, (str, int)) and not isinstance(raw_id, bool) and str(raw_id):
        opportunity_id = str(raw_id)
    else:
        opportunity_id = f"{event_type}-{event.get('time', 'x')}-{next(_id_counter)}"

    bet_type = event.get("betType")
    title = event.get("title")

    return Opportunity(
        id=opportunity_id,
        event_type=event_type,
        description=description,
        choices=choices,
        priority=priority_for(event_type, priorities),
        queued_at=now,
        bet_type=bet_type if isinstance(bet_type, str) else None,
        title=title if isinstance(title, str) and title.strip() else DEFAULT_TITLE,
        raw=dict(event),
    )
