"""Quote sources for the TickEngine.

- `fetch_quote`: polls an external quote service over HTTP
  (`GET {base_url}/quote?symbol=S` → {"symbol", "bid", "ask", "ts"}).
- `SyntheticQuoteFeed`: random-walk bid/ask for paper runs without a feed.

Quote times are converted to broker time (UTC + offset, naive) so they can be
compared with the scheduler clock.
"""
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from broker import Quote

_client: httpx.AsyncClient | None = None
_last_bid: float | None = None
_last_bid_streak: int = 0

logger = logging.getLogger(__name__)


def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=httpx.Timeout(2.5, connect=2.0))
    return _client


async def close_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def _parse_ts(value: Any, offset_hours: float) -> datetime | None:
    """ISO-8601 string or epoch seconds (UTC) → naive broker time"""
    if value is None or value == "":
        return None
    try:
        if isinstance(value, (int, float)):
            utc = datetime.fromtimestamp(float(value), tz=timezone.utc)
        else:
            text = str(value).strip().replace("Z", "+00:00")
            utc = datetime.fromisoformat(text)
            if utc.tzinfo is None:
                utc = utc.replace(tzinfo=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None
    return (utc.astimezone(timezone.utc) + timedelta(hours=offset_hours)).replace(tzinfo=None)


def parse_quote_payload(payload: Any, symbol: str, offset_hours: float, received_at: datetime) -> Quote | None:
    """Build a Quote from a feed payload; None if it is unusable."""
    if not isinstance(payload, dict):
        return None
    try:
        bid = float(payload.get("bid"))
        ask = float(payload.get("ask"))
    except (TypeError, ValueError):
        return None
    if bid <= 0 or ask <= 0 or ask < bid:
        return None

    got_symbol = str(payload.get("symbol") or symbol).strip().upper()
    if got_symbol != symbol.strip().upper():
        logger.warning(f"[FEED] Symbol mismatch: asked {symbol}, got {got_symbol}")
        return None

    ts = _parse_ts(payload.get("ts"), offset_hours) or received_at
    return Quote(symbol=got_symbol, bid=bid, ask=ask, time=ts)


async def fetch_quote(
    *,
    base_url: str,
    symbol: str,
    offset_hours: float,
    received_at: datetime,
    api_key: str = "",
    client: httpx.AsyncClient | None = None,
) -> Quote | None:
    """Fetch the latest bid/ask for `symbol` from the quote service."""
    global _last_bid, _last_bid_streak

    if not base_url:
        return None

    url = base_url.rstrip("/") + "/quote"
    params = {"symbol": str(symbol or "").strip().upper()}
    headers = {"X-API-Key": api_key} if api_key else None

    client = client or _get_client()
    resp = await client.get(url, params=params, headers=headers)
    resp.raise_for_status()
    payload: dict[str, Any] = resp.json() if resp.content else {}

    quote = parse_quote_payload(payload, symbol, offset_hours, received_at)
    if quote is None:
        return None

    # Track repeated identical bids to detect a stalled feed
    if _last_bid is None or quote.bid != _last_bid:
        _last_bid = quote.bid
        _last_bid_streak = 1
    else:
        _last_bid_streak += 1
        if _last_bid_streak >= 10:
            logger.warning(f"[FEED] Bid repeated {_last_bid_streak} times: {quote.bid}")

    return quote


class SyntheticQuoteFeed:
    """Gaussian random walk around a start price with a fixed spread (paper mode)."""

    def __init__(
        self,
        symbol: str,
        start_price: float,
        point_size: float,
        spread_points: float,
        volatility_points: float,
        rng: random.Random | None = None,
    ) -> None:
        self.symbol = symbol.upper()
        self.point_size = float(point_size)
        self.spread = float(spread_points) * self.point_size
        self.volatility = float(volatility_points) * self.point_size
        self.rng = rng or random.Random()
        self._bid = float(start_price)

    def next_quote(self, now: datetime) -> Quote:
        step = self.rng.gauss(0.0, self.volatility)
        self._bid = max(self.point_size, self._bid + step)
        bid = round(self._bid, 10)
        return Quote(symbol=self.symbol, bid=bid, ask=round(bid + self.spread, 10), time=now)
