# src/actionbet/__init__.py
"""
Live action-betting session package.

This module exposes the primary entry points for pausing the simulated
match clock, timing betting opportunities, and orchestrating the queue of
opportunities that arrive while one is being decided.
"""

from .config import (
    SessionConfig,
    TimingConfig,
    BandThresholds,
    load_session_config,
    parse_session_config,
)
from .countdown import CountdownBand, CountdownTimer, classify_band
from .pause_coordinator import PauseCoordinator, PausePhase, PauseState
from .opportunity import (
    Choice,
    Opportunity,
    EVENT_CLASSIFICATIONS,
    DEFAULT_PRIORITIES,
    is_betting_event,
    priority_for,
    opportunity_from_event,
)
from .modal_state import ModalState, OpportunityStateMachine
from .opportunity_queue import OpportunityQueue, DequeueResult, DiscardReason, should_replace
from .indicator import MinimizedIndicator, TextIndicator, FallbackIndicator
from .capabilities import NullPauseCoordinator, CapabilityStatus, CapabilityReport
from .bet_slip import ActionBetError, InvalidStakeError, InvalidChoiceError, BetSlip, validate_stake
from .orchestrator import BettingOrchestrator, SessionContext, EventOutcome, Resolution
from .match_clock import MatchClock

__all__ = [
    "SessionConfig",
    "TimingConfig",
    "BandThresholds",
    "load_session_config",
    "parse_session_config",
    "CountdownBand",
    "CountdownTimer",
    "classify_band",
    "PauseCoordinator",
    "PausePhase",
    "PauseState",
    "Choice",
    "Opportunity",
    "EVENT_CLASSIFICATIONS",
    "DEFAULT_PRIORITIES",
    "is_betting_event",
    "priority_for",
    "opportunity_from_event",
    "ModalState",
    "OpportunityStateMachine",
    "OpportunityQueue",
    "DequeueResult",
    "DiscardReason",
    "should_replace",
    "MinimizedIndicator",
    "TextIndicator",
    "FallbackIndicator",
    "NullPauseCoordinator",
    "CapabilityStatus",
    "CapabilityReport",
    "ActionBetError",
    "InvalidStakeError",
    "InvalidChoiceError",
    "BetSlip",
    "validate_stake",
    "BettingOrchestrator",
    "SessionContext",
    "EventOutcome",
    "Resolution",
    "MatchClock",
]
