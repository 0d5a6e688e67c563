"""Equity drawdown guard (equity trailing stop).

Tracks the running peak of account equity. Once equity has gained
`target_pct` percent over the baseline, a trailing close level is armed at

    peak - (peak - initial) * trailing_pct / 100

and equity touching that level means: close everything, stop trading for the
rest of the calendar day, and restart the baseline from the post-close equity.

Functions here are decision-only; the DailyScheduler performs the closes.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass
class EquityGuardState:
    initial_equity: float
    highest_equity: float
    protection_activated: bool = False
    protection_triggered: bool = False
    protection_date: Optional[date] = None


@dataclass(frozen=True)
class GuardDecision:
    close_all: bool
    close_level: Optional[float] = None
    reason: str = ""


def new_guard_state(equity: float) -> EquityGuardState:
    return EquityGuardState(initial_equity=float(equity), highest_equity=float(equity))


def trailing_close_level(state: EquityGuardState, trailing_pct: float) -> float:
    gain = state.highest_equity - state.initial_equity
    return state.highest_equity - gain * trailing_pct / 100.0


def gain_pct(state: EquityGuardState, equity: float) -> float:
    if state.initial_equity <= 0:
        return 0.0
    return (equity - state.initial_equity) / state.initial_equity * 100.0


def update_guard(state: EquityGuardState, equity: float, target_pct: float, trailing_pct: float) -> GuardDecision:
    """Feed the current equity; returns whether all positions must be closed."""
    if target_pct <= 0:
        return GuardDecision(False, reason="disabled")

    # Frozen for the day: nothing to arm until rollover
    if state.protection_triggered:
        return GuardDecision(False, reason="frozen")

    if equity > state.highest_equity:
        state.highest_equity = float(equity)

    if not state.protection_activated and gain_pct(state, state.highest_equity) >= target_pct:
        state.protection_activated = True

    if not state.protection_activated:
        return GuardDecision(False, reason="below_target")

    level = trailing_close_level(state, trailing_pct)
    if equity <= level:
        return GuardDecision(True, close_level=level, reason="equity_trailing_hit")
    return GuardDecision(False, close_level=level, reason="armed")


def mark_triggered(state: EquityGuardState, post_close_equity: float, today: date) -> None:
    """Freeze trading for today and restart the baseline from post-close equity"""
    state.protection_triggered = True
    state.protection_activated = False
    state.protection_date = today
    state.initial_equity = float(post_close_equity)
    state.highest_equity = float(post_close_equity)


def roll_day(state: EquityGuardState) -> bool:
    """Clear the daily freeze. Returns True if a freeze was lifted."""
    lifted = state.protection_triggered
    state.protection_triggered = False
    state.protection_date = None
    return lifted
