from datetime import datetime, timedelta

from candle_builder import Candle, CandleBuilder, bucket_start
from conftest import make_settings
from indicators import ADX
from strategies.filters import AdxEntryFilter, EntryFilter, build_entry_filter


def test_adx_warms_up_over_two_periods():
    adx = ADX(period=3, threshold=25)
    results = [adx.add_candle(10.0 + i, 9.0 + i, 9.5 + i) for i in range(6)]
    assert all(r == (None, None) for r in results[:5])
    value, signal = results[5]
    assert round(value, 6) == 100.0
    assert signal == "GREEN"


def test_adx_is_low_in_a_choppy_market():
    adx = ADX(period=5, threshold=25)
    value = None
    for i in range(40):
        # alternate up/down bars of equal size
        base = 100.0 + (1.0 if i % 2 else 0.0)
        value, signal = adx.add_candle(base + 1.0, base - 1.0, base)
    assert value is not None and value < 25
    assert signal == "RED"


def test_candle_builder_closes_on_period_rollover():
    builder = CandleBuilder("eurusd", 60)
    t0 = datetime(2024, 3, 4, 6, 0, 5)
    assert builder.on_tick(1.1000, t0) is None
    assert builder.on_tick(1.1010, t0 + timedelta(seconds=10)) is None
    assert builder.on_tick(1.0990, t0 + timedelta(seconds=20)) is None
    closed = builder.on_tick(1.1005, t0 + timedelta(seconds=60))
    assert closed is not None
    assert (closed.open, closed.high, closed.low, closed.close) == (1.1000, 1.1010, 1.0990, 1.0990)
    assert closed.open_time == datetime(2024, 3, 4, 6, 0)
    assert closed.ticks == 3
    assert isinstance(closed, Candle)
    assert builder.current == Candle(datetime(2024, 3, 4, 6, 1), 1.1005, 1.1005, 1.1005, 1.1005)


def test_candle_builder_folds_late_ticks_into_current_period():
    builder = CandleBuilder("EURUSD", 60)
    builder.on_tick(1.1000, datetime(2024, 3, 4, 6, 1, 10))
    assert builder.on_tick(1.0980, datetime(2024, 3, 4, 6, 0, 59)) is None
    assert builder.current.low == 1.0980
    assert builder.current.open_time == datetime(2024, 3, 4, 6, 1)


def test_bucket_start_counts_from_midnight():
    assert bucket_start(datetime(2024, 3, 4, 13, 47, 12), 900) == datetime(2024, 3, 4, 13, 45)
    assert bucket_start(datetime(2024, 3, 4, 0, 0, 4), 5) == datetime(2024, 3, 4, 0, 0)


def test_adx_filter_blocks_until_warm_and_trending():
    flt = AdxEntryFilter("EURUSD", candle_interval_seconds=60, period=3, threshold=25)
    t0 = datetime(2024, 3, 4, 6, 0)
    allowed = []
    for i in range(8):
        flt.on_tick(1.1000 + i * 0.0010, t0 + timedelta(minutes=i))
        allowed.append(flt.allows_entry())
    # 7 ticks close 6 candles, enough for a period-3 ADX
    assert allowed[:6] == [False] * 6
    assert allowed[6] and allowed[7]
    assert flt.value > 25

    flt.reset()
    assert not flt.allows_entry()


def test_build_entry_filter():
    assert isinstance(build_entry_filter(make_settings(entry_filter="adx")), AdxEntryFilter)
    plain = build_entry_filter(make_settings())
    assert type(plain) is EntryFilter
    assert plain.allows_entry()
