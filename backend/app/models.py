# Pydantic models for settings validation and API requests/responses
from datetime import time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from utils import parse_trading_window, session_length_minutes

DIRECTION_POLICIES = ("buy", "sell", "random")
ENTRY_FILTERS = ("none", "adx")


class SchedulerSettings(BaseModel):
    """Validated, immutable snapshot of the scheduler configuration."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    symbol: str = Field(min_length=1)
    point_size: float = Field(gt=0)
    contract_size: float = Field(gt=0)
    lot_size: float = Field(gt=0)

    trading_window: str
    interval_minutes: int = Field(ge=0)
    max_trades_per_day: int = Field(ge=1)
    direction_policy: str = "random"
    profit_threshold_points: float = Field(ge=0)
    random_seed: int = 0

    equity_target_pct: float = Field(ge=0)
    equity_trailing_pct: float = Field(ge=0, le=100)

    stop_loss_points: float = Field(default=0.0, ge=0)
    take_profit_points: float = Field(default=0.0, ge=0)
    trail_start_points: float = Field(default=0.0, ge=0)
    trail_step_points: float = Field(default=0.0, ge=0)

    entry_filter: str = "none"
    adx_period: int = Field(default=14, ge=2)
    adx_threshold: float = Field(default=25.0, ge=0, le=100)
    candle_interval_seconds: int = Field(default=60, ge=1)

    quote_max_age_seconds: float = Field(default=10.0, gt=0)

    @field_validator("trading_window")
    @classmethod
    def _check_window(cls, v: str) -> str:
        parse_trading_window(v)
        return v.strip()

    @field_validator("direction_policy")
    @classmethod
    def _check_direction(cls, v: str) -> str:
        v = str(v or "").strip().lower()
        if v not in DIRECTION_POLICIES:
            raise ValueError(f"must be one of {', '.join(DIRECTION_POLICIES)}")
        return v

    @field_validator("entry_filter")
    @classmethod
    def _check_filter(cls, v: str) -> str:
        v = str(v or "").strip().lower()
        if v not in ENTRY_FILTERS:
            raise ValueError(f"must be one of {', '.join(ENTRY_FILTERS)}")
        return v

    @model_validator(mode="after")
    def _check_interval(self):
        if self.interval_minutes == 0 and self.window_minutes // self.max_trades_per_day < 1:
            raise ValueError("trading window too short to derive an interval from max_trades_per_day")
        return self

    @property
    def window(self) -> tuple:
        return parse_trading_window(self.trading_window)

    @property
    def start_time(self) -> time:
        return self.window[0]

    @property
    def end_time(self) -> time:
        return self.window[1]

    @property
    def window_minutes(self) -> int:
        return session_length_minutes(*self.window)

    @property
    def effective_interval_minutes(self) -> int:
        """Configured interval, or the session split evenly across the daily trade count"""
        if self.interval_minutes > 0:
            return self.interval_minutes
        return self.window_minutes // self.max_trades_per_day


class HostSettings(BaseModel):
    """Engine, feed and paper-account values that live outside SchedulerSettings."""

    model_config = ConfigDict(extra="ignore")

    broker_utc_offset_hours: float = Field(default=0.0, ge=-24, le=24)
    quote_poll_seconds: float = Field(default=1.0, gt=0)
    paper_initial_balance: float = Field(default=10000.0, gt=0)
    paper_start_price: float = Field(default=1.1, gt=0)
    paper_spread_points: float = Field(default=10.0, ge=0)
    paper_volatility_points: float = Field(default=5.0, ge=0)
    port: int = Field(default=8001, ge=1, le=65535)


class ConfigUpdate(BaseModel):
    symbol: Optional[str] = None
    point_size: Optional[float] = None
    contract_size: Optional[float] = None
    lot_size: Optional[float] = None
    trading_window: Optional[str] = None  # HH:MM-HH:MM
    interval_minutes: Optional[int] = None  # 0 = derive from max_trades_per_day
    max_trades_per_day: Optional[int] = None
    direction_policy: Optional[str] = None  # buy | sell | random
    profit_threshold_points: Optional[float] = None
    equity_target_pct: Optional[float] = None
    equity_trailing_pct: Optional[float] = None

    # Exits
    stop_loss_points: Optional[float] = None
    take_profit_points: Optional[float] = None
    trail_start_points: Optional[float] = None
    trail_step_points: Optional[float] = None

    # Entry filter
    entry_filter: Optional[str] = None  # none | adx
    adx_period: Optional[int] = None
    adx_threshold: Optional[float] = None
    candle_interval_seconds: Optional[int] = None

    quote_max_age_seconds: Optional[float] = None
    trading_enabled: Optional[bool] = None  # If False: no new entries


class BotStatus(BaseModel):
    is_running: bool
    mode: str
    phase: str
    symbol: str
    trading_window: str
    in_window: bool
    broker_time: str
    trading_enabled: bool


class PositionView(BaseModel):
    ticket: int
    symbol: str
    side: str
    lots: float
    open_time: str
    open_price: float
    profit: float
    profit_points: Optional[float] = None


class PositionsResponse(BaseModel):
    has_position: bool
    positions: List[PositionView] = []


class DailySummary(BaseModel):
    trading_day: Optional[str] = None
    total_trades: int = 0
    max_trades_per_day: int = 0
    next_trade_time: Optional[str] = None
    equity: float = 0.0
    initial_equity: float = 0.0
    highest_equity: float = 0.0
    equity_close_level: Optional[float] = None
    protection_activated: bool = False
    protection_triggered: bool = False
