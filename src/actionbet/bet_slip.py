# src/actionbet/bet_slip.py
"""
下注單驗證

任何影響金額的操作都必須先通過 validate_stake（fail-closed）。
實際記帳由外部注入的 BetRecorder 完成。
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from numbers import Real
from typing import Any, Callable, Optional


class ActionBetError(Exception):
    """本套件的基礎例外"""


class InvalidStakeError(ActionBetError, ValueError):
    """下注金額無效"""


class InvalidChoiceError(ActionBetError, ValueError):
    """選項不存在"""


@dataclass(frozen=True)
class BetSlip:
    """已驗證的下注單"""
    opportunity_id: str
    choice_text: str
    odds: float
    stake: float
    bet_type: Optional[str] = None
    placed_at: Optional[float] = None

    @property
    def potential_return(self) -> float:
        return self.stake * self.odds


BetRecorder = Callable[[BetSlip], Any]


def validate_stake(stake: Any, max_stake: float = 10_000.0) -> float:
    """
    驗證下注金額

    Args:
        stake: 金額
        max_stake: 上限

    Returns:
        float 金額

    Raises:
        InvalidStakeError: 非數值、非有限值、<=0 或超過上限
    """
    if isinstance(stake, bool) or not isinstance(stake, Real):
        raise InvalidStakeError(f"stake must be a number, got {type(stake).__name__}")
    value = float(stake)
    if math.isnan(value) or math.isinf(value):
        raise InvalidStakeError(f"stake must be finite, got {value}")
    if value <= 0:
        raise InvalidStakeError(f"stake must be positive, got {value}")
    if value > max_stake:
        raise InvalidStakeError(f"stake {value} exceeds maximum {max_stake}")
    return value
