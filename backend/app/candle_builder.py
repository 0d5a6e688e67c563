"""candle_builder.py: OHLC candles from quote mid prices.

Feeds the ADX entry filter. Candle boundaries are on naive broker time; a
period closes when the first tick of a later period arrives, so an idle
market produces no empty candles.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

logger = logging.getLogger(__name__)


def bucket_start(ts: datetime, period_seconds: int) -> datetime:
    """Start of the candle period that contains `ts`, counted from midnight."""
    midnight = ts.replace(hour=0, minute=0, second=0, microsecond=0)
    elapsed = int((ts - midnight).total_seconds())
    return midnight + timedelta(seconds=elapsed - elapsed % period_seconds)


@dataclass(frozen=True)
class Candle:
    open_time: datetime
    open: float
    high: float
    low: float
    close: float
    ticks: int = 1

    @classmethod
    def first(cls, open_time: datetime, price: float) -> "Candle":
        return cls(open_time, price, price, price, price)

    def extend(self, price: float) -> "Candle":
        return replace(
            self,
            high=max(self.high, price),
            low=min(self.low, price),
            close=price,
            ticks=self.ticks + 1,
        )


class CandleBuilder:
    def __init__(self, symbol: str, period_seconds: int) -> None:
        self.symbol = symbol.upper()
        self.period_seconds = int(period_seconds)
        self.current: Optional[Candle] = None

    def on_tick(self, price: float, ts: datetime) -> Optional[Candle]:
        """Add a tick; returns the candle it closed, if any.

        Ticks stamped before the current period are folded into it.
        """
        period = bucket_start(ts, self.period_seconds)
        current = self.current

        if current is None:
            self.current = Candle.first(period, price)
            return None

        if period <= current.open_time:
            self.current = current.extend(price)
            return None

        self.current = Candle.first(period, price)
        logger.debug(
            f"[CANDLE] {self.symbol} {current.open_time:%H:%M:%S} closed | "
            f"O={current.open} H={current.high} L={current.low} C={current.close} ({current.ticks} ticks)"
        )
        return current
