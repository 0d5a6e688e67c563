"""TickEngine: polls quotes, drives the DailyScheduler, broadcasts state.

Responsibilities (this file only):
  - Poll the quote service (or the synthetic feed) every `quote_poll_seconds`
  - Push each quote into the paper account and the entry filter
  - Call DailyScheduler.on_tick synchronously, once per quote
  - Mirror scheduler telemetry into bot_state and broadcast {"type": "state_update"}

What this does NOT do:
  - Any trading decision (that's DailyScheduler's job)
  - Store anything
"""
from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime
from typing import Awaitable, Callable, Optional

from broker import PaperBroker, Quote
from config import bot_state, config
from daily_scheduler import DailyScheduler, TickReport
from price_feed import SyntheticQuoteFeed, close_client, fetch_quote
from utils import get_broker_time, profit_points

logger = logging.getLogger(__name__)


class TickEngine:
    """Owns the paper account and the scheduler; one asyncio task feeds it ticks."""

    def __init__(self) -> None:
        self.broker: Optional[PaperBroker] = None
        self.scheduler: Optional[DailyScheduler] = None
        self.synthetic: Optional[SyntheticQuoteFeed] = None
        self.last_quote: Optional[Quote] = None
        self.tick_count: int = 0
        self.broadcast: Optional[Callable[[dict], Awaitable[None]]] = None
        self._task: Optional[asyncio.Task] = None

    # ── setup ────────────────────────────────────────────────────────────────

    def build(self, settings, now: Optional[datetime] = None) -> DailyScheduler:
        """Create (or keep) the paper account and its scheduler for `settings`.

        While the account is kept the scheduler is kept too, so a stop/start
        within the day carries the daily count and any guard freeze over.
        """
        now = now or get_broker_time()

        new_account = self.broker is None or self.broker.symbol != settings.symbol.upper()
        if new_account:
            self.broker = PaperBroker(
                symbol=settings.symbol,
                initial_balance=float(config.get('paper_initial_balance', 10000.0)),
                contract_size=settings.contract_size,
            )
            logger.info(f"[PAPER] Account opened | Symbol: {settings.symbol} | Balance: {self.broker.balance:.2f}")

        if not str(config.get('quote_base_url') or '').strip():
            if self.synthetic is None or self.synthetic.symbol != settings.symbol.upper():
                seed = settings.random_seed or None
                self.synthetic = SyntheticQuoteFeed(
                    symbol=settings.symbol,
                    start_price=float(config.get('paper_start_price', 1.1)),
                    point_size=settings.point_size,
                    spread_points=float(config.get('paper_spread_points', 10.0)),
                    volatility_points=float(config.get('paper_volatility_points', 5.0)),
                    rng=random.Random(seed),
                )
                logger.info("[FEED] No quote_base_url configured — using synthetic quotes")
        else:
            self.synthetic = None

        if new_account or self.scheduler is None:
            self.scheduler = DailyScheduler(settings, self.broker, now)
        else:
            self.scheduler.update_settings(settings)
            logger.info(
                f"[TICK] Reusing scheduler | Today: {self.scheduler.schedule.daily_position_count} trade(s) | "
                f"Guard halted: {self.scheduler.guard.protection_triggered}"
            )
        self.scheduler.trading_enabled = bool(config.get('trading_enabled', True))
        return self.scheduler

    # ── lifecycle ────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        if self.scheduler is None:
            raise RuntimeError("TickEngine.build() must be called before start()")
        self._task = asyncio.create_task(self._run(), name="tick_engine")
        logger.info("[TICK] TickEngine started")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await close_client()
        logger.info("[TICK] TickEngine stopped")

    # ── main loop ────────────────────────────────────────────────────────────

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[TICK] Loop error: {e}", exc_info=True)
                if self.scheduler is not None and self.scheduler.state_machine.error(f"tick loop: {e}"):
                    bot_state['phase'] = self.scheduler.state_machine.phase_name

            poll_s = float(config.get('quote_poll_seconds', 1.0) or 1.0)
            await asyncio.sleep(max(0.2, poll_s))

    async def _next_quote(self, now: datetime) -> Optional[Quote]:
        if self.synthetic is not None:
            return self.synthetic.next_quote(now)
        try:
            return await fetch_quote(
                base_url=str(config.get('quote_base_url') or ''),
                symbol=self.scheduler.settings.symbol,
                offset_hours=float(config.get('broker_utc_offset_hours', 0.0) or 0.0),
                received_at=now,
                api_key=str(config.get('quote_api_key') or ''),
            )
        except Exception as e:
            logger.warning(f"[FEED] Quote fetch failed: {e}")
            return None

    async def poll_once(self, now: Optional[datetime] = None) -> Optional[TickReport]:
        """One market event: fetch a quote and run the scheduler on it."""
        if self.scheduler is None or self.broker is None:
            return None

        now = now or get_broker_time()
        quote = await self._next_quote(now)
        if quote is not None:
            self.last_quote = quote
            self.broker.set_quote(quote)
            self.scheduler.entry_filter.on_tick((quote.bid + quote.ask) / 2.0, quote.time)

        report = self.process(now, self.last_quote)
        await self._broadcast_state()
        return report

    def process(self, now: datetime, quote: Optional[Quote]) -> TickReport:
        """Read account state and hand the tick to the scheduler."""
        symbol = self.scheduler.settings.symbol
        report = self.scheduler.on_tick(
            now,
            self.broker.equity(),
            self.broker.positions(symbol),
            quote,
        )
        self.tick_count += 1
        self._publish(quote)
        return report

    # ── telemetry ────────────────────────────────────────────────────────────

    def _publish(self, quote: Optional[Quote]) -> None:
        bot_state.update(self.scheduler.snapshot())
        bot_state['equity'] = self.broker.equity()
        bot_state['balance'] = self.broker.balance
        bot_state['open_positions'] = len(self.broker.positions(self.scheduler.settings.symbol))
        if quote is not None:
            bot_state['bid'] = quote.bid
            bot_state['ask'] = quote.ask
            bot_state['last_quote_time'] = quote.time.isoformat()

    def position_views(self) -> list:
        if self.broker is None:
            return []
        point = self.scheduler.settings.point_size if self.scheduler else float(config.get('point_size', 0.00001))
        q = self.broker.quote()
        out = []
        for p in self.broker.positions():
            out.append({
                "ticket": p.ticket,
                "symbol": p.symbol,
                "side": p.side,
                "lots": p.lots,
                "open_time": p.open_time.isoformat(),
                "open_price": p.open_price,
                "profit": p.profit,
                "profit_points": profit_points(p.side, p.open_price, q.bid, q.ask, point) if q else None,
            })
        return out

    async def _broadcast_state(self) -> None:
        """Broadcast complete bot state snapshot. Called every tick."""
        if self.broadcast is None:
            return
        try:
            await self.broadcast({
                "type": "state_update",
                "data": {**bot_state, "timestamp": get_broker_time().isoformat()},
            })
        except Exception as e:
            logger.debug(f"[TICK] broadcast_state error: {e}")


# Global singleton, imported by bot_service.py and server.py
tick_engine = TickEngine()
