# Utility functions
from datetime import datetime, time, timedelta, timezone

MINUTES_PER_DAY = 24 * 60


def get_broker_time(offset_hours: float = None) -> datetime:
    """Get current broker server time (naive, UTC + configured offset)"""
    if offset_hours is None:
        from config import config as _config
        offset_hours = float(_config.get('broker_utc_offset_hours', 0.0) or 0.0)
    utc_now = datetime.now(timezone.utc)
    return (utc_now + timedelta(hours=offset_hours)).replace(tzinfo=None)


def parse_hhmm(value: str) -> time:
    """Parse 'HH:MM' into a time. Raises ValueError on bad input."""
    text = str(value or '').strip()
    parts = text.split(':')
    if len(parts) != 2 or not all(p.isdigit() and 1 <= len(p) <= 2 for p in parts):
        raise ValueError(f"invalid time '{value}', expected HH:MM")
    hour, minute = int(parts[0]), int(parts[1])
    if hour > 23 or minute > 59:
        raise ValueError(f"invalid time '{value}', expected HH:MM")
    return time(hour, minute)


def parse_trading_window(value: str) -> tuple:
    """Parse 'HH:MM-HH:MM' into (start, end) times"""
    text = str(value or '').strip()
    if text.count('-') != 1:
        raise ValueError(f"invalid trading window '{value}', expected HH:MM-HH:MM")
    start_s, end_s = text.split('-')
    return parse_hhmm(start_s), parse_hhmm(end_s)


def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def session_length_minutes(start: time, end: time) -> int:
    """Length of the trading session; start == end is a full day"""
    length = (_minutes(end) - _minutes(start)) % MINUTES_PER_DAY
    return length or MINUTES_PER_DAY


def in_window(now: datetime, start: time, end: time) -> bool:
    """True if now falls in [start, end). Wraps past midnight when start > end."""
    if start == end:
        return True
    current = now.time()
    if start < end:
        return start <= current < end
    return current >= start or current < end


def session_start(now: datetime, start: time, end: time) -> datetime:
    """Start of the session containing `now`, or of the next session if outside."""
    today_start = datetime.combine(now.date(), start)
    if in_window(now, start, end):
        if now >= today_start:
            return today_start
        # wrapped session that began yesterday
        return today_start - timedelta(days=1)
    if now < today_start:
        return today_start
    return today_start + timedelta(days=1)


def next_slot_after(now: datetime, anchor: datetime, interval: timedelta) -> datetime:
    """First point of the grid anchor + k*interval strictly after now"""
    if now < anchor:
        return anchor
    elapsed = now - anchor
    steps = elapsed // interval + 1
    return anchor + steps * interval


def profit_points(side: str, open_price: float, bid: float, ask: float, point_size: float) -> float:
    """Floating profit of a position in points at the given quote"""
    if point_size <= 0:
        return 0.0
    if side == "buy":
        return (bid - open_price) / point_size
    return (open_price - ask) / point_size


def format_timeframe(seconds: int) -> str:
    """Format timeframe seconds to human readable string"""
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        minutes = seconds // 60
        return f"{minutes}m"
    else:
        hours = seconds // 3600
        return f"{hours}h"
