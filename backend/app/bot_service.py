# Bot Service - Interface layer between API routes and the TickEngine/DailyScheduler
import logging

from config import ConfigError, bot_state, build_settings, config
from tick_engine import tick_engine
from utils import get_broker_time, in_window, parse_trading_window

logger = logging.getLogger(__name__)

# Keys the API may change; everything else is environment-only
_UPDATABLE_KEYS = (
    "symbol", "point_size", "contract_size", "lot_size",
    "trading_window", "interval_minutes", "max_trades_per_day", "direction_policy",
    "profit_threshold_points", "equity_target_pct", "equity_trailing_pct",
    "stop_loss_points", "take_profit_points", "trail_start_points", "trail_step_points",
    "entry_filter", "adx_period", "adx_threshold", "candle_interval_seconds",
    "quote_max_age_seconds", "trading_enabled",
)


async def start_bot() -> dict:
    """Validate configuration, build the scheduler and start the engine"""
    if tick_engine.running:
        return {"status": "error", "message": "Bot already running"}

    try:
        settings = build_settings(config)
    except ConfigError as e:
        logger.error(f"[CONFIG] Invalid configuration, bot not started: {e}")
        return {"status": "error", "message": f"Invalid configuration: {e}"}

    now = get_broker_time()
    scheduler = tick_engine.build(settings, now)
    scheduler.start(now)
    await tick_engine.start()

    bot_state['is_running'] = True
    bot_state['phase'] = scheduler.state_machine.phase_name
    logger.info(
        f"[BOT] Started - Symbol: {settings.symbol}, Window: {settings.trading_window}, "
        f"Interval: {settings.effective_interval_minutes}m, Mode: {bot_state['mode']}"
    )
    return {"status": "success", "message": f"Bot started for {settings.symbol} ({settings.trading_window})"}


async def stop_bot() -> dict:
    """Stop the engine; open paper positions are left as they are"""
    await tick_engine.stop()
    if tick_engine.scheduler is not None:
        tick_engine.scheduler.state_machine.stop()
    bot_state['is_running'] = False
    bot_state['phase'] = "IDLE"
    logger.info("[BOT] Stopped")
    return {"status": "success", "message": "Bot stopped"}


async def squareoff_position() -> dict:
    """Force square off all positions"""
    if tick_engine.scheduler is None:
        return {"status": "error", "message": "No open position"}
    result = tick_engine.scheduler.squareoff()
    logger.info(f"[BOT] Squareoff requested: {result}")
    return result


def get_bot_status() -> dict:
    now = get_broker_time()
    window = str(config.get('trading_window', ''))
    try:
        start, end = parse_trading_window(window)
        window_open = in_window(now, start, end)
    except ValueError:
        window_open = False
    return {
        "is_running": bool(bot_state['is_running']),
        "mode": bot_state['mode'],
        "phase": bot_state.get('phase', 'IDLE'),
        "symbol": config['symbol'],
        "trading_window": window,
        "in_window": window_open,
        "broker_time": now.isoformat(),
        "trading_enabled": bool(config.get('trading_enabled', True)),
    }


def get_market_data() -> dict:
    return {
        "symbol": config['symbol'],
        "bid": bot_state.get('bid', 0.0),
        "ask": bot_state.get('ask', 0.0),
        "quote_time": bot_state.get('last_quote_time'),
        "adx_value": bot_state.get('adx_value'),
        "timestamp": get_broker_time().isoformat(),
    }


def get_position() -> dict:
    positions = tick_engine.position_views()
    return {"has_position": bool(positions), "positions": positions}


def get_daily_summary() -> dict:
    return {
        "trading_day": bot_state.get('trading_day'),
        "total_trades": int(bot_state.get('daily_trades', 0)),
        "max_trades_per_day": int(config.get('max_trades_per_day', 0)),
        "next_trade_time": bot_state.get('next_trade_time'),
        "equity": float(bot_state.get('equity', 0.0)),
        "initial_equity": float(bot_state.get('initial_equity', 0.0)),
        "highest_equity": float(bot_state.get('highest_equity', 0.0)),
        "equity_close_level": bot_state.get('equity_close_level'),
        "protection_activated": bool(bot_state.get('protection_activated', False)),
        "protection_triggered": bool(bot_state.get('protection_triggered', False)),
    }


def get_config() -> dict:
    out = {key: config.get(key) for key in _UPDATABLE_KEYS}
    out["mode"] = bot_state['mode']
    out["has_quote_feed"] = bool(str(config.get('quote_base_url') or '').strip())
    out["broker_utc_offset_hours"] = config.get('broker_utc_offset_hours', 0.0)
    try:
        out["effective_interval_minutes"] = build_settings(config).effective_interval_minutes
    except ConfigError:
        out["effective_interval_minutes"] = None
    return out


async def update_config_values(updates: dict) -> dict:
    """Validate and apply configuration updates.

    The candidate config is validated as a whole before anything is applied;
    an invalid update leaves the running configuration untouched.
    """
    logger.info(f"[CONFIG] Received updates: {list(updates.keys())}")
    unknown = [k for k in updates if k not in _UPDATABLE_KEYS]
    if unknown:
        return {"status": "error", "message": f"Unknown config keys: {', '.join(sorted(unknown))}"}

    candidate = {**config, **updates}
    try:
        settings = build_settings(candidate)
    except ConfigError as e:
        logger.warning(f"[CONFIG] Update rejected: {e}")
        return {"status": "error", "message": str(e)}

    scheduler = tick_engine.scheduler
    if tick_engine.running and settings.symbol.upper() != scheduler.settings.symbol.upper():
        return {"status": "error", "message": "Stop the bot before changing symbol"}

    config.update(updates)
    updated_fields = sorted(updates.keys())

    if scheduler is not None:
        scheduler.update_settings(settings)
        scheduler.trading_enabled = bool(config.get('trading_enabled', True))

    logger.info(f"[CONFIG] Updated: {updated_fields}")
    return {"status": "success", "message": "Configuration updated", "updated": updated_fields}
