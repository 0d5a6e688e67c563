from __future__ import annotations

import random
from typing import Optional


def choose_direction(policy: str, rng: Optional[random.Random] = None) -> str:
    """Return 'buy' or 'sell' for the configured direction policy.

    'random' is a uniform 50/50 draw from `rng`; pass a seeded Random for
    reproducible runs.
    """
    policy = str(policy or "").strip().lower()
    if policy == "buy":
        return "buy"
    if policy == "sell":
        return "sell"
    if policy == "random":
        rng = rng or random.Random()
        return "buy" if rng.random() < 0.5 else "sell"
    raise ValueError(f"Unknown direction policy: {policy}")
