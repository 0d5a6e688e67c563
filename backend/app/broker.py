"""Paper execution capability: simulated account for a single symbol.

Provides what the scheduler consumes from a trading platform:
  - current bid/ask (pushed in by the TickEngine)
  - account balance / equity (balance + floating profit)
  - position enumeration
  - order open / close

Order calls return dicts shaped like a broker API response:
    {"status": "success", "ticket": 7, "price": 1.1001}
    {"status": "error", "message": "...", "ticket": None}
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Quote:
    symbol: str
    bid: float
    ask: float
    time: datetime

    @property
    def is_valid(self) -> bool:
        return self.bid > 0 and self.ask > 0 and self.ask >= self.bid

    def age_seconds(self, now: datetime) -> float:
        return (now - self.time).total_seconds()


@dataclass(frozen=True)
class Position:
    ticket: int
    symbol: str
    open_time: datetime
    open_price: float
    side: str            # "buy" / "sell"
    lots: float
    profit: float = 0.0  # floating profit in account currency


class PaperBroker:
    """In-memory account that fills market orders at the current quote."""

    def __init__(self, symbol: str, initial_balance: float, contract_size: float) -> None:
        self.symbol = symbol.upper()
        self.contract_size = float(contract_size)
        self.balance = float(initial_balance)
        self._quote: Optional[Quote] = None
        self._positions: dict[int, Position] = {}
        self._next_ticket = 1
        self.reject_orders = False  # simulate a platform refusing orders

    # ── market data ──────────────────────────────────────────────────────────

    def set_quote(self, quote: Quote) -> None:
        if quote.symbol.upper() != self.symbol:
            logger.warning(f"[PAPER] Ignoring quote for {quote.symbol}, account trades {self.symbol}")
            return
        self._quote = quote

    def quote(self) -> Optional[Quote]:
        return self._quote

    # ── account ──────────────────────────────────────────────────────────────

    def _floating(self, pos: Position) -> float:
        if self._quote is None:
            return 0.0
        units = pos.lots * self.contract_size
        if pos.side == "buy":
            return (self._quote.bid - pos.open_price) * units
        return (pos.open_price - self._quote.ask) * units

    def equity(self) -> float:
        return self.balance + sum(self._floating(p) for p in self._positions.values())

    def positions(self, symbol: str = None) -> list[Position]:
        """Open positions (oldest first) with profit marked to the current quote"""
        out = []
        for pos in sorted(self._positions.values(), key=lambda p: (p.open_time, p.ticket)):
            if symbol and pos.symbol != symbol.upper():
                continue
            out.append(replace(pos, profit=round(self._floating(pos), 2)))
        return out

    # ── orders ───────────────────────────────────────────────────────────────

    def open_position(self, side: str, lots: float, when: datetime) -> dict:
        if self.reject_orders:
            return {"status": "error", "message": "order rejected by platform", "ticket": None}
        if side not in ("buy", "sell"):
            return {"status": "error", "message": f"invalid side '{side}'", "ticket": None}
        if lots <= 0:
            return {"status": "error", "message": f"invalid volume {lots}", "ticket": None}
        if self._quote is None or not self._quote.is_valid:
            return {"status": "error", "message": "no price", "ticket": None}

        price = self._quote.ask if side == "buy" else self._quote.bid
        ticket = self._next_ticket
        self._next_ticket += 1
        self._positions[ticket] = Position(
            ticket=ticket,
            symbol=self.symbol,
            open_time=when,
            open_price=price,
            side=side,
            lots=float(lots),
        )
        logger.info(f"[PAPER] Filled {side.upper()} {lots} {self.symbol} @ {price} | Ticket: {ticket}")
        return {"status": "success", "ticket": ticket, "price": price}

    def close_position(self, ticket: int) -> dict:
        if self.reject_orders:
            return {"status": "error", "message": "order rejected by platform", "ticket": ticket}
        pos = self._positions.get(ticket)
        if pos is None:
            return {"status": "error", "message": f"unknown ticket {ticket}", "ticket": ticket}
        if self._quote is None or not self._quote.is_valid:
            return {"status": "error", "message": "no price", "ticket": ticket}

        pnl = self._floating(pos)
        price = self._quote.bid if pos.side == "buy" else self._quote.ask
        del self._positions[ticket]
        self.balance += pnl
        logger.info(f"[PAPER] Closed ticket {ticket} @ {price} | PnL: {pnl:.2f} | Balance: {self.balance:.2f}")
        return {"status": "success", "ticket": ticket, "price": price, "pnl": pnl}
