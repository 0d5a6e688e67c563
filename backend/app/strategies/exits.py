from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ExitRules:
    stop_loss_points: float = 0.0
    take_profit_points: float = 0.0
    trail_start_points: float = 0.0
    trail_step_points: float = 0.0

    @classmethod
    def from_settings(cls, settings) -> "ExitRules":
        return cls(
            stop_loss_points=float(settings.stop_loss_points),
            take_profit_points=float(settings.take_profit_points),
            trail_start_points=float(settings.trail_start_points),
            trail_step_points=float(settings.trail_step_points),
        )

    @property
    def trailing_enabled(self) -> bool:
        return self.trail_start_points > 0 and self.trail_step_points > 0


@dataclass
class TrailState:
    highest_profit_points: float = 0.0
    stop_points: Optional[float] = None  # locked profit in points, only ever moves up


@dataclass(frozen=True)
class ExitDecision:
    should_exit: bool
    reason: str = ""


def update_trail(trail: TrailState, rules: ExitRules, profit_points: float) -> bool:
    """Step the trailing stop up from the best profit seen. Returns True if it moved."""
    if not rules.trailing_enabled:
        return False

    trail.highest_profit_points = max(trail.highest_profit_points, profit_points)
    if trail.highest_profit_points < rules.trail_start_points:
        return False

    start, step = rules.trail_start_points, rules.trail_step_points
    levels = int(math.floor((trail.highest_profit_points - start) / step))
    locked = max(0.0, (start - step) + levels * step)

    if trail.stop_points is None or locked > trail.stop_points:
        trail.stop_points = locked
        return True
    return False


def decide_exit(trail: TrailState, rules: ExitRules, profit_points: float) -> ExitDecision:
    """Target, then fixed stop, then trailing stop."""
    if rules.take_profit_points > 0 and profit_points >= rules.take_profit_points:
        return ExitDecision(True, "Target Hit")

    if rules.stop_loss_points > 0 and profit_points <= -rules.stop_loss_points:
        return ExitDecision(True, "Stop-loss Hit")

    if trail.stop_points is not None and profit_points <= trail.stop_points:
        return ExitDecision(True, "Trailing SL Hit")

    return ExitDecision(False)
