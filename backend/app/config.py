# Configuration and state management
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')


class ConfigError(ValueError):
    """Raised when the scheduler configuration cannot be used."""


# Global bot state (telemetry only; the scheduler owns its own state objects)
bot_state = {
    "is_running": False,
    "mode": "paper",
    "phase": "IDLE",
    "previous_phase": None,
    "entered_at": None,
    "bid": 0.0,
    "ask": 0.0,
    "last_quote_time": None,
    "equity": 0.0,
    "balance": 0.0,
    "open_positions": 0,
    "daily_trades": 0,
    "next_trade_time": None,
    "trading_day": None,
    "highest_equity": 0.0,
    "initial_equity": 0.0,
    "equity_close_level": None,
    "protection_activated": False,
    "protection_triggered": False,
    "adx_value": None,
    "last_skip_reason": "",
}


def _env_str(name: str, default: str) -> str:
    val = os.getenv(name)
    if val is None or str(val).strip() == "":
        return default
    return str(val).strip()


def _env_bool(name: str, default: bool) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int):
    val = os.getenv(name)
    if val is None or str(val).strip() == "":
        return default
    try:
        return int(val)
    except ValueError:
        # left as text so build_settings() rejects it
        return str(val).strip()


def _env_float(name: str, default: float):
    val = os.getenv(name)
    if val is None or str(val).strip() == "":
        return default
    try:
        return float(val)
    except ValueError:
        return str(val).strip()


# Configuration (can be updated from the API between ticks)
config = {
    # Instrument
    "symbol": _env_str("SYMBOL", "EURUSD"),
    "point_size": _env_float("POINT_SIZE", 0.00001),
    "contract_size": _env_float("CONTRACT_SIZE", 100000.0),
    "lot_size": _env_float("LOT_SIZE", 0.1),

    # Schedule
    "trading_window": _env_str("TRADING_WINDOW", "06:00-18:00"),  # HH:MM-HH:MM, wraps past midnight if start > end
    "interval_minutes": _env_int("INTERVAL_MINUTES", 240),  # 0 = derive from window / max_trades_per_day
    "max_trades_per_day": _env_int("MAX_TRADES_PER_DAY", 3),
    "direction_policy": _env_str("DIRECTION_POLICY", "random"),  # buy | sell | random
    "profit_threshold_points": _env_float("PROFIT_THRESHOLD_POINTS", 42.0),
    "random_seed": _env_int("RANDOM_SEED", 0),  # 0 = unseeded

    # Equity guard
    "equity_target_pct": _env_float("EQUITY_TARGET_PCT", 2.0),  # 0 = guard disabled
    "equity_trailing_pct": _env_float("EQUITY_TRAILING_PCT", 50.0),

    # Exits (points, 0 = disabled)
    "stop_loss_points": _env_float("STOP_LOSS_POINTS", 0.0),
    "take_profit_points": _env_float("TAKE_PROFIT_POINTS", 0.0),
    "trail_start_points": _env_float("TRAIL_START_POINTS", 0.0),
    "trail_step_points": _env_float("TRAIL_STEP_POINTS", 0.0),

    # Entry filter
    "entry_filter": _env_str("ENTRY_FILTER", "none"),  # none | adx
    "adx_period": _env_int("ADX_PERIOD", 14),
    "adx_threshold": _env_float("ADX_THRESHOLD", 25.0),
    "candle_interval_seconds": _env_int("CANDLE_INTERVAL_SECONDS", 60),

    # Clock & market data
    "broker_utc_offset_hours": _env_float("BROKER_UTC_OFFSET_HOURS", 0.0),
    "quote_base_url": _env_str("QUOTE_BASE_URL", ""),  # empty = synthetic random-walk feed
    "quote_api_key": _env_str("QUOTE_API_KEY", ""),
    "quote_poll_seconds": _env_float("QUOTE_POLL_SECONDS", 1.0),
    "quote_max_age_seconds": _env_float("QUOTE_MAX_AGE_SECONDS", 10.0),

    # Paper account
    "paper_initial_balance": _env_float("PAPER_INITIAL_BALANCE", 10000.0),
    "paper_start_price": _env_float("PAPER_START_PRICE", 1.10000),
    "paper_spread_points": _env_float("PAPER_SPREAD_POINTS", 10.0),
    "paper_volatility_points": _env_float("PAPER_VOLATILITY_POINTS", 5.0),

    # Trading control
    "trading_enabled": _env_bool("TRADING_ENABLED", True),  # If False: no new entries, exits and guard still run
    "auto_start_bot": _env_bool("AUTO_START_BOT", False),

    # API server
    "host": _env_str("HOST", "0.0.0.0"),
    "port": _env_int("PORT", 8001),
}


def build_settings(cfg: dict = None):
    """Validate a config dict into SchedulerSettings.

    Raises ConfigError with the first validation problem so callers can
    reject the configuration at startup (or on an API update).
    """
    from models import HostSettings, SchedulerSettings

    cfg = config if cfg is None else cfg
    try:
        HostSettings(**cfg)
        return SchedulerSettings(**cfg)
    except ValidationError as e:
        errors = e.errors()
        first = errors[0] if errors else {}
        where = ".".join(str(p) for p in first.get("loc", ())) or "config"
        raise ConfigError(f"{where}: {first.get('msg', str(e))}") from e


# Ensure directories exist
(ROOT_DIR / 'logs').mkdir(exist_ok=True)
