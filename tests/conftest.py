import os
import sys

# Service modules import each other as top-level modules (`from config import config`)
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend', 'app'))

from datetime import datetime

import pytest

from broker import PaperBroker, Quote
from models import SchedulerSettings

SYMBOL = "EURUSD"

BASE_SETTINGS = {
    "symbol": SYMBOL,
    "point_size": 0.00001,
    "contract_size": 100000.0,
    "lot_size": 0.1,
    "trading_window": "06:00-18:00",
    "interval_minutes": 240,
    "max_trades_per_day": 3,
    "direction_policy": "buy",
    "profit_threshold_points": 42.0,
    "random_seed": 0,
    "equity_target_pct": 0.0,
    "equity_trailing_pct": 50.0,
}


def make_settings(**overrides) -> SchedulerSettings:
    return SchedulerSettings(**{**BASE_SETTINGS, **overrides})


def at(day: int, hour: int, minute: int = 0, second: int = 0) -> datetime:
    """Broker time on March `day`, 2024 (the 4th is a Monday)"""
    return datetime(2024, 3, day, hour, minute, second)


def make_quote(now: datetime, bid: float, spread: float = 0.00002) -> Quote:
    return Quote(symbol=SYMBOL, bid=bid, ask=round(bid + spread, 5), time=now)


def feed(scheduler, broker, now: datetime, bid: float, quote_time: datetime = None):
    """Push a quote into the paper account and run one scheduler tick."""
    quote = make_quote(quote_time or now, bid)
    broker.set_quote(quote)
    return scheduler.on_tick(now, broker.equity(), broker.positions(SYMBOL), quote)


@pytest.fixture
def broker():
    return PaperBroker(SYMBOL, initial_balance=10000.0, contract_size=100000.0)
