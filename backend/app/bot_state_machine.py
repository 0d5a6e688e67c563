"""BotStateMachine: single source of truth for scheduler lifecycle state.

States:
    IDLE      - engine stopped
    WAITING   - engine running, outside the trading window
    SCANNING  - engine running, inside the trading window, slots are evaluated
    HALTED    - equity guard triggered, no new entries until the next day
    ERROR     - unrecoverable error, requires manual intervention

Legal transitions:
    IDLE      → WAITING / SCANNING (on start)
    WAITING   → SCANNING           (window opens)
    SCANNING  → WAITING            (window closes)
    WAITING   → HALTED             (equity guard hit)
    SCANNING  → HALTED             (equity guard hit)
    HALTED    → WAITING / SCANNING (day rollover)
    ANY       → IDLE               (engine stopped)
    ANY       → ERROR              (unhandled exception)
"""
from __future__ import annotations

import logging
from enum import Enum, auto
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


class BotPhase(Enum):
    IDLE     = auto()
    WAITING  = auto()
    SCANNING = auto()
    HALTED   = auto()
    ERROR    = auto()


# Which transitions are legal
_ALLOWED: dict[BotPhase, set[BotPhase]] = {
    BotPhase.IDLE:     {BotPhase.WAITING, BotPhase.SCANNING, BotPhase.ERROR},
    BotPhase.WAITING:  {BotPhase.SCANNING, BotPhase.HALTED, BotPhase.IDLE, BotPhase.ERROR},
    BotPhase.SCANNING: {BotPhase.WAITING, BotPhase.HALTED, BotPhase.IDLE, BotPhase.ERROR},
    BotPhase.HALTED:   {BotPhase.WAITING, BotPhase.SCANNING, BotPhase.IDLE, BotPhase.ERROR},
    BotPhase.ERROR:    {BotPhase.IDLE},
}


class BotStateMachine:
    """Governs scheduler phase transitions with logging and guard checks."""

    def __init__(self) -> None:
        self._phase = BotPhase.IDLE
        self._entered_at: Optional[datetime] = None
        self._previous: Optional[BotPhase] = None

    # ── read ──────────────────────────────────────────────────────────────────

    @property
    def phase(self) -> BotPhase:
        return self._phase

    @property
    def phase_name(self) -> str:
        return self._phase.name

    @property
    def is_active(self) -> bool:
        return self._phase not in (BotPhase.IDLE, BotPhase.ERROR)

    # ── transitions ──────────────────────────────────────────────────────────

    def transition(self, new_phase: BotPhase, reason: str = "") -> bool:
        """Attempt a phase transition. Returns True if allowed, False if blocked."""
        if new_phase == self._phase:
            return True

        allowed = _ALLOWED.get(self._phase, set())
        if new_phase not in allowed:
            logger.warning(
                f"[STATE] Blocked illegal transition {self._phase.name} → {new_phase.name}"
                + (f" ({reason})" if reason else "")
            )
            return False

        self._previous = self._phase
        self._phase = new_phase
        self._entered_at = datetime.now(timezone.utc)
        logger.info(
            f"[STATE] {self._previous.name} → {self._phase.name}"
            + (f" | {reason}" if reason else "")
        )
        return True

    def start(self, in_window: bool) -> bool:
        target = BotPhase.SCANNING if in_window else BotPhase.WAITING
        return self.transition(target, "engine started")

    def sync_window(self, in_window: bool, reason: str = "") -> bool:
        """Follow the trading window while running; IDLE, HALTED and ERROR stay put."""
        if self._phase in (BotPhase.IDLE, BotPhase.HALTED, BotPhase.ERROR):
            return False
        target = BotPhase.SCANNING if in_window else BotPhase.WAITING
        return self.transition(target, reason or ("window open" if in_window else "window closed"))

    def halt(self) -> bool:
        return self.transition(BotPhase.HALTED, "equity guard triggered")

    def resume(self, in_window: bool) -> bool:
        if self._phase != BotPhase.HALTED:
            return False
        target = BotPhase.SCANNING if in_window else BotPhase.WAITING
        return self.transition(target, "new trading day")

    def stop(self) -> bool:
        return self.transition(BotPhase.IDLE, "engine stopped")

    def error(self, reason: str = "") -> bool:
        return self.transition(BotPhase.ERROR, reason or "unhandled error")

    # ── serialisation for broadcast ──────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "phase": self._phase.name,
            "previous_phase": self._previous.name if self._previous else None,
            "entered_at": self._entered_at.isoformat() if self._entered_at else None,
        }
