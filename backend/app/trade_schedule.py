"""Trade timing: trading window, slot grid and the daily position cap.

Slots sit on the grid `session_start + k * interval`. When a slot comes due
inside the trading window it is evaluated once (opened or skipped) and the
next slot becomes the first grid point after `now`.

State is an explicit ScheduleState passed in by the DailyScheduler; nothing
here talks to a broker.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Sequence

from utils import in_window, next_slot_after, profit_points, session_start


@dataclass
class ScheduleState:
    next_trade_time: Optional[datetime]
    last_trade_date: date
    daily_position_count: int = 0


@dataclass(frozen=True)
class SlotDecision:
    due: bool
    should_enter: bool = False
    reason: str = ""
    last_profit_points: Optional[float] = None


def new_schedule_state(now: datetime, settings) -> ScheduleState:
    start, end = settings.window
    return ScheduleState(
        next_trade_time=session_start(now, start, end),
        last_trade_date=now.date(),
    )


def roll_day(state: ScheduleState, today: date) -> bool:
    """Reset the daily counter on a calendar-day change. Returns True if it rolled."""
    if today == state.last_trade_date:
        return False
    state.last_trade_date = today
    state.daily_position_count = 0
    return True


def evaluate_slot(
    state: ScheduleState,
    settings,
    now: datetime,
    positions: Sequence,
    bid: float,
    ask: float,
    filter_allows: bool = True,
) -> SlotDecision:
    """Decide whether the current tick opens a new position.

    `positions` must be the symbol's open positions, oldest first; the last
    one is the position whose profit is checked against the threshold.
    """
    start, end = settings.window
    if not in_window(now, start, end):
        return SlotDecision(False, reason="outside_window")

    anchor = session_start(now, start, end)
    if state.next_trade_time is None or state.next_trade_time < anchor:
        # left over from an earlier session
        state.next_trade_time = anchor

    if now < state.next_trade_time:
        return SlotDecision(False, reason="waiting_for_slot")

    if state.daily_position_count >= settings.max_trades_per_day:
        return SlotDecision(True, reason="daily_limit")

    last_points = None
    if positions:
        last = positions[-1]
        last_points = profit_points(last.side, last.open_price, bid, ask, settings.point_size)
        if abs(last_points) < settings.profit_threshold_points:
            return SlotDecision(True, reason="below_threshold", last_profit_points=last_points)

    if not filter_allows:
        return SlotDecision(True, reason="entry_filter", last_profit_points=last_points)

    return SlotDecision(True, should_enter=True, reason="slot", last_profit_points=last_points)


def consume_slot(state: ScheduleState, settings, now: datetime) -> datetime:
    """Move next_trade_time to the first grid point after now"""
    start, end = settings.window
    anchor = session_start(now, start, end)
    interval = timedelta(minutes=settings.effective_interval_minutes)
    state.next_trade_time = next_slot_after(now, anchor, interval)
    return state.next_trade_time


def record_entry(state: ScheduleState) -> None:
    state.daily_position_count += 1
