"""Daily Scheduler Engine
Scheduled single-symbol entries with per-position exits and an equity
drawdown guard. Driven by one synchronous `on_tick` call per market event.
Uses structured logging with tags for easy troubleshooting.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from bot_state_machine import BotStateMachine
from broker import Position, Quote
from equity_guard import (
    EquityGuardState,
    mark_triggered,
    new_guard_state,
    roll_day as roll_guard_day,
    trailing_close_level,
    update_guard,
)
from strategies.direction import choose_direction
from strategies.exits import ExitRules, TrailState, decide_exit, update_trail
from strategies.filters import EntryFilter, build_entry_filter
from trade_schedule import (
    ScheduleState,
    consume_slot,
    evaluate_slot,
    new_schedule_state,
    record_entry,
    roll_day as roll_schedule_day,
)
from utils import in_window, profit_points

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    opened: list = field(default_factory=list)
    closed: list = field(default_factory=list)
    failed: list = field(default_factory=list)
    guard_triggered: bool = False
    day_rolled: bool = False
    skip_reason: str = ""


class DailyScheduler:
    """Trade timing, threshold gating, exits and equity guard for one symbol.

    `broker` is the execution capability: it must provide `equity()`,
    `positions(symbol)`, `open_position(side, lots, when)` and
    `close_position(ticket)`; order calls return dicts with a "status" key.
    """

    def __init__(
        self,
        settings,
        broker,
        now: datetime,
        rng: Optional[random.Random] = None,
        entry_filter: Optional[EntryFilter] = None,
        state_machine: Optional[BotStateMachine] = None,
    ):
        self.settings = settings
        self.broker = broker
        if rng is None:
            rng = random.Random(settings.random_seed) if settings.random_seed else random.Random()
        self.rng = rng
        self.exit_rules = ExitRules.from_settings(settings)
        self.entry_filter = entry_filter or build_entry_filter(settings)
        self.state_machine = state_machine or BotStateMachine()
        self.trading_enabled = True

        self.schedule: ScheduleState = new_schedule_state(now, settings)
        self.guard: EquityGuardState = new_guard_state(broker.equity())
        self._trails: dict = {}
        self._last_skip_reason = ""
        self.last_tick_time: Optional[datetime] = None

        logger.info(
            f"[SCHED] Initialized | Symbol: {settings.symbol} | Window: {settings.trading_window} | "
            f"Interval: {settings.effective_interval_minutes}m | Max/day: {settings.max_trades_per_day} | "
            f"Direction: {settings.direction_policy} | Equity: {self.guard.initial_equity:.2f}"
        )

    def update_settings(self, settings) -> None:
        """Swap in new settings between ticks; schedule and guard state are kept."""
        old = self.settings
        grid_changed = (
            (old.trading_window, old.effective_interval_minutes)
            != (settings.trading_window, settings.effective_interval_minutes)
        )
        filter_changed = (
            (old.entry_filter, old.adx_period, old.adx_threshold, old.candle_interval_seconds)
            != (settings.entry_filter, settings.adx_period, settings.adx_threshold, settings.candle_interval_seconds)
        )

        self.settings = settings
        self.exit_rules = ExitRules.from_settings(settings)
        if filter_changed:
            self.entry_filter = build_entry_filter(settings)
        if grid_changed and self.last_tick_time is not None:
            consume_slot(self.schedule, settings, self.last_tick_time)
        logger.info(
            f"[CONFIG] Scheduler settings updated | Window: {settings.trading_window} | "
            f"Interval: {settings.effective_interval_minutes}m | Next slot: {self.schedule.next_trade_time}"
        )

    def start(self, now: datetime) -> str:
        """Enter the running phases; a guard freeze carried from earlier today stays HALTED."""
        self.state_machine.start(in_window(now, self.settings.start_time, self.settings.end_time))
        if self.guard.protection_triggered and self.guard.protection_date == now.date():
            self.state_machine.halt()
            logger.warning(f"[GUARD] Restarted while halted for {now.date().isoformat()} — no new entries today")
        return self.state_machine.phase_name

    # ── main entry point ─────────────────────────────────────────────────────

    def on_tick(
        self,
        now: datetime,
        equity: float,
        positions: Sequence[Position],
        quote: Optional[Quote] = None,
    ) -> TickReport:
        """Guard check, then day rollover, then exits, then trade timing."""
        report = TickReport()
        self.last_tick_time = now
        positions = list(positions)

        positions = self._check_equity_guard(now, equity, positions, report)
        self._check_day_rollover(now, report)

        window_open = in_window(now, self.settings.start_time, self.settings.end_time)
        self.state_machine.sync_window(window_open)

        if not self._quote_usable(now, quote, report):
            return report

        positions = self._check_exits(positions, quote, report)
        self._check_trade_timing(now, positions, quote, report)
        return report

    # ── equity guard ─────────────────────────────────────────────────────────

    def _check_equity_guard(self, now: datetime, equity: float, positions: list, report: TickReport) -> list:
        s = self.settings

        if self.guard.protection_triggered:
            if positions:
                # a close failed when the guard fired; keep flattening
                logger.warning(f"[GUARD] {len(positions)} position(s) still open while halted — closing")
                self._close_all(positions, "Equity Guard", report)
                positions = self._refresh_positions()
            return positions

        was_armed = self.guard.protection_activated
        decision = update_guard(self.guard, equity, s.equity_target_pct, s.equity_trailing_pct)

        if self.guard.protection_activated and not was_armed:
            logger.info(
                f"[GUARD] Equity trailing armed | Initial: {self.guard.initial_equity:.2f} "
                f"Peak: {self.guard.highest_equity:.2f} Close level: {decision.close_level:.2f}"
            )

        if not decision.close_all:
            return positions

        logger.warning(
            f"[GUARD] Equity trailing hit | Equity: {equity:.2f} <= Level: {decision.close_level:.2f} "
            f"(Peak: {self.guard.highest_equity:.2f}) — closing {len(positions)} position(s)"
        )
        self._close_all(positions, "Equity Guard", report)
        post_close = float(self.broker.equity())
        mark_triggered(self.guard, post_close, now.date())
        self.state_machine.halt()
        report.guard_triggered = True
        logger.warning(f"[GUARD] Trading halted for {now.date().isoformat()} | New baseline equity: {post_close:.2f}")
        return self._refresh_positions()

    # ── day rollover ─────────────────────────────────────────────────────────

    def _check_day_rollover(self, now: datetime, report: TickReport) -> None:
        previous = self.schedule.last_trade_date
        if not roll_schedule_day(self.schedule, now.date()):
            return

        report.day_rolled = True
        lifted = roll_guard_day(self.guard)
        logger.info(f"[DAY] Rollover {previous.isoformat()} → {now.date().isoformat()} | Daily count reset")
        if lifted:
            window_open = in_window(now, self.settings.start_time, self.settings.end_time)
            self.state_machine.resume(window_open)
            logger.info("[GUARD] Protection cleared — trading resumes")

    # ── exits ────────────────────────────────────────────────────────────────

    def _check_exits(self, positions: list, quote: Quote, report: TickReport) -> list:
        live_tickets = {p.ticket for p in positions}
        for ticket in list(self._trails):
            if ticket not in live_tickets:
                del self._trails[ticket]

        rules = self.exit_rules
        if not (rules.take_profit_points or rules.stop_loss_points or rules.trailing_enabled):
            return positions

        closed_any = False
        for pos in positions:
            pts = profit_points(pos.side, pos.open_price, quote.bid, quote.ask, self.settings.point_size)
            trail = self._trails.setdefault(pos.ticket, TrailState())
            if update_trail(trail, rules, pts):
                logger.info(f"[SL] Trailing SL updated | Ticket: {pos.ticket} | Locked: {trail.stop_points:.1f} pts (Profit: {pts:.1f} pts)")

            decision = decide_exit(trail, rules, pts)
            if decision.should_exit:
                logger.info(f"[EXIT] {decision.reason} | Ticket: {pos.ticket} {pos.side.upper()} | Profit: {pts:.1f} pts")
                if self._close(pos, decision.reason, report):
                    closed_any = True

        return self._refresh_positions() if closed_any else positions

    # ── trade timing ─────────────────────────────────────────────────────────

    def _check_trade_timing(self, now: datetime, positions: list, quote: Quote, report: TickReport) -> None:
        if not self.state_machine.is_active:
            self._skip(report, f"phase_{self.state_machine.phase_name.lower()}")
            return
        if self.guard.protection_triggered:
            self._skip(report, "protection_triggered")
            return
        if not self.trading_enabled:
            self._skip(report, "trading_disabled")
            return

        decision = evaluate_slot(
            self.schedule,
            self.settings,
            now,
            positions,
            quote.bid,
            quote.ask,
            filter_allows=self.entry_filter.allows_entry(),
        )
        if not decision.due:
            self._skip(report, decision.reason)
            return

        next_time = consume_slot(self.schedule, self.settings, now)
        self._last_skip_reason = ""

        if not decision.should_enter:
            extra = ""
            if decision.last_profit_points is not None:
                extra = f" | Last position: {decision.last_profit_points:.1f} pts (threshold {self.settings.profit_threshold_points})"
            logger.info(f"[ENTRY_DECISION] NO | Reason={decision.reason}{extra} | Next slot: {next_time:%Y-%m-%d %H:%M}")
            report.skip_reason = decision.reason
            return

        side = choose_direction(self.settings.direction_policy, self.rng)
        lots = self.settings.lot_size
        logger.info(f"[ORDER] Placing {side.upper()} {lots} {self.settings.symbol} | Slot: {now:%H:%M} | Next slot: {next_time:%Y-%m-%d %H:%M}")

        result = self.broker.open_position(side, lots, now)
        if result.get('status') == 'success' and result.get('ticket') is not None:
            record_entry(self.schedule)
            report.opened.append(result['ticket'])
            logger.info(
                f"[ORDER] ✓ {side.upper()} opened | Ticket: {result['ticket']} @ {result.get('price')} | "
                f"Today: {self.schedule.daily_position_count}/{self.settings.max_trades_per_day}"
            )
        else:
            report.failed.append(side)
            report.skip_reason = "order_failed"
            logger.error(f"[ORDER] ✗ {side.upper()} order FAILED | Result: {result}")

    # ── helpers ──────────────────────────────────────────────────────────────

    def _quote_usable(self, now: datetime, quote: Optional[Quote], report: TickReport) -> bool:
        if quote is None or not quote.is_valid:
            self._skip(report, "no_price", level=logging.WARNING)
            return False
        age = quote.age_seconds(now)
        if age > self.settings.quote_max_age_seconds:
            self._skip(report, "stale_price", level=logging.WARNING, detail=f"age {age:.0f}s")
            return False
        return True

    def _skip(self, report: TickReport, reason: str, level: int = logging.DEBUG, detail: str = "") -> None:
        report.skip_reason = reason
        if reason != self._last_skip_reason:
            logger.log(level, f"[SCHED] Skipping evaluation | Reason={reason}" + (f" ({detail})" if detail else ""))
            self._last_skip_reason = reason

    def _refresh_positions(self) -> list:
        return list(self.broker.positions(self.settings.symbol))

    def _close(self, pos: Position, reason: str, report: TickReport) -> bool:
        result = self.broker.close_position(pos.ticket)
        if result.get('status') == 'success':
            report.closed.append(pos.ticket)
            self._trails.pop(pos.ticket, None)
            logger.info(f"[EXIT] ✓ Position closed | Ticket: {pos.ticket} | Reason: {reason} | PnL: {result.get('pnl', 0.0):.2f}")
            return True
        report.failed.append(pos.ticket)
        logger.error(f"[ORDER] ✗ EXIT order FAILED | Ticket: {pos.ticket} | Reason: {reason} | Result: {result}")
        return False

    def _close_all(self, positions: Sequence[Position], reason: str, report: TickReport) -> int:
        """Close every position; returns how many failed"""
        failed = 0
        for pos in positions:
            if not self._close(pos, reason, report):
                failed += 1
        return failed

    def squareoff(self) -> dict:
        """Force close all positions of the symbol"""
        positions = self._refresh_positions()
        if not positions:
            return {"status": "error", "message": "No open position"}
        report = TickReport()
        failed = self._close_all(positions, "Force Square-off", report)
        if failed:
            return {"status": "error", "message": f"{failed} position(s) could not be closed"}
        return {"status": "success", "message": f"Closed {len(report.closed)} position(s)"}

    def close_level(self) -> Optional[float]:
        if not self.guard.protection_activated:
            return None
        return trailing_close_level(self.guard, self.settings.equity_trailing_pct)

    def snapshot(self) -> dict:
        """Telemetry for bot_state / broadcasts"""
        next_time = self.schedule.next_trade_time
        return {
            **self.state_machine.to_dict(),
            "trading_day": self.schedule.last_trade_date.isoformat(),
            "daily_trades": self.schedule.daily_position_count,
            "next_trade_time": next_time.isoformat() if next_time else None,
            "initial_equity": self.guard.initial_equity,
            "highest_equity": self.guard.highest_equity,
            "equity_close_level": self.close_level(),
            "protection_activated": self.guard.protection_activated,
            "protection_triggered": self.guard.protection_triggered,
            "adx_value": self.entry_filter.value,
            "last_skip_reason": self._last_skip_reason,
        }
