from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from candle_builder import CandleBuilder
from indicators import ADX
from utils import format_timeframe

logger = logging.getLogger(__name__)


class EntryFilter:
    """Gate on new entries. The base filter always allows entry."""

    name = "none"

    def on_tick(self, price: float, ts: datetime) -> None:
        pass

    def allows_entry(self) -> bool:
        return True

    def reset(self) -> None:
        pass

    @property
    def value(self) -> Optional[float]:
        return None


class AdxEntryFilter(EntryFilter):
    """Allow entries only while the ADX of closed candles is at or above threshold."""

    name = "adx"

    def __init__(self, symbol: str, candle_interval_seconds: int, period: int, threshold: float) -> None:
        self.builder = CandleBuilder(symbol, candle_interval_seconds)
        self.adx = ADX(period=period, threshold=threshold)
        self.threshold = float(threshold)
        self._last_adx: Optional[float] = None
        logger.info(
            f"[FILTER] ADX entry filter | Candles: {format_timeframe(candle_interval_seconds)} | "
            f"Period: {period} | Threshold: {self.threshold}"
        )

    def on_tick(self, price: float, ts: datetime) -> None:
        closed = self.builder.on_tick(price, ts)
        if closed is None:
            return
        adx_val, _signal = self.adx.add_candle(closed.high, closed.low, closed.close)
        if adx_val is not None:
            self._last_adx = float(adx_val)
            logger.debug(f"[FILTER] ADX={self._last_adx:.2f} threshold={self.threshold}")

    def allows_entry(self) -> bool:
        return self._last_adx is not None and self._last_adx >= self.threshold

    def reset(self) -> None:
        self.adx.reset()
        self._last_adx = None

    @property
    def value(self) -> Optional[float]:
        return self._last_adx


def build_entry_filter(settings) -> EntryFilter:
    if settings.entry_filter == "adx":
        return AdxEntryFilter(
            symbol=settings.symbol,
            candle_interval_seconds=settings.candle_interval_seconds,
            period=settings.adx_period,
            threshold=settings.adx_threshold,
        )
    return EntryFilter()
