import logging
import random
from datetime import timedelta

import pytest

from conftest import SYMBOL, at, feed, make_settings
from daily_scheduler import DailyScheduler
from strategies.direction import choose_direction


def _scheduler(broker, start, **overrides):
    sched = DailyScheduler(make_settings(**overrides), broker, start, rng=random.Random(1))
    sched.start(start)
    return sched


def test_example_session_with_threshold(broker):
    sched = _scheduler(broker, at(4, 5), profit_threshold_points=42)

    assert feed(sched, broker, at(4, 5, 59), 1.10000).opened == []

    first = feed(sched, broker, at(4, 6), 1.10000)
    assert len(first.opened) == 1
    assert sched.schedule.next_trade_time == at(4, 10)

    assert feed(sched, broker, at(4, 7), 1.10010).opened == []

    # open at ask 1.10002, bid 1.10010 → 8 pts: slot skipped
    skipped = feed(sched, broker, at(4, 10), 1.10010)
    assert skipped.opened == []
    assert skipped.skip_reason == "below_threshold"
    assert sched.schedule.next_trade_time == at(4, 14)

    # 48 pts ≥ 42: next slot opens a second position
    second = feed(sched, broker, at(4, 14), 1.10050)
    assert len(second.opened) == 1
    assert sched.schedule.daily_position_count == 2
    assert len(broker.positions(SYMBOL)) == 2


def test_no_entries_outside_window(broker):
    sched = _scheduler(broker, at(4, 0), profit_threshold_points=0, interval_minutes=30)
    now = at(4, 0)
    while now < at(5, 0):
        report = feed(sched, broker, now, 1.10000)
        if report.opened:
            assert at(4, 6) <= now < at(4, 18)
        now += timedelta(minutes=15)
    assert sched.schedule.daily_position_count == 3


def test_daily_count_never_exceeds_maximum(broker):
    sched = _scheduler(broker, at(4, 5), max_trades_per_day=2, interval_minutes=60, profit_threshold_points=0)
    counts = []
    for hour in range(6, 18):
        feed(sched, broker, at(4, hour), 1.10000)
        counts.append(sched.schedule.daily_position_count)
    assert max(counts) == 2
    assert len(broker.positions(SYMBOL)) == 2

    # the counter resets on the next calendar day
    feed(sched, broker, at(5, 0, 1), 1.10000)
    assert sched.schedule.daily_position_count == 0
    assert feed(sched, broker, at(5, 6), 1.10000).opened


def test_equity_guard_closes_all_and_freezes_until_next_day(broker):
    sched = _scheduler(
        broker, at(4, 5),
        lot_size=1.0, equity_target_pct=1.0, equity_trailing_pct=50.0,
        profit_threshold_points=0, interval_minutes=60,
    )

    assert feed(sched, broker, at(4, 6), 1.10000).opened      # buy @ 1.10002
    feed(sched, broker, at(4, 6, 30), 1.10202)                 # equity 10200, armed
    assert sched.guard.protection_activated
    assert sched.close_level() == pytest.approx(10100.0)

    assert not feed(sched, broker, at(4, 6, 40), 1.10152).guard_triggered
    hit = feed(sched, broker, at(4, 6, 50), 1.10100)            # equity 10098 <= 10100
    assert hit.guard_triggered
    assert broker.positions(SYMBOL) == []
    assert sched.guard.protection_triggered
    assert sched.guard.initial_equity == pytest.approx(10098.0)
    assert sched.guard.highest_equity == pytest.approx(10098.0)
    assert sched.state_machine.phase_name == "HALTED"

    for hour in range(7, 18):
        report = feed(sched, broker, at(4, hour), 1.10100)
        assert report.opened == []
        assert report.skip_reason == "protection_triggered"

    rolled = feed(sched, broker, at(5, 0, 0, 1), 1.10100)
    assert rolled.day_rolled
    assert not sched.guard.protection_triggered
    assert sched.guard.protection_date is None
    assert feed(sched, broker, at(5, 6), 1.10100).opened


def test_guard_retries_close_while_halted(broker):
    sched = _scheduler(
        broker, at(4, 5),
        lot_size=1.0, equity_target_pct=1.0, equity_trailing_pct=50.0,
    )
    feed(sched, broker, at(4, 6), 1.10000)
    feed(sched, broker, at(4, 6, 30), 1.10202)

    broker.reject_orders = True
    hit = feed(sched, broker, at(4, 6, 50), 1.10100)
    assert hit.guard_triggered
    assert len(broker.positions(SYMBOL)) == 1

    broker.reject_orders = False
    retry = feed(sched, broker, at(4, 6, 51), 1.10100)
    assert len(retry.closed) == 1
    assert broker.positions(SYMBOL) == []


def test_failed_order_is_logged_and_slot_consumed(broker, caplog):
    sched = _scheduler(broker, at(4, 5))
    broker.reject_orders = True

    with caplog.at_level(logging.ERROR, logger="daily_scheduler"):
        report = feed(sched, broker, at(4, 6), 1.10000)
    assert report.opened == []
    assert report.skip_reason == "order_failed"
    assert "FAILED" in caplog.text
    assert sched.schedule.daily_position_count == 0
    assert sched.schedule.next_trade_time == at(4, 10)

    broker.reject_orders = False
    assert feed(sched, broker, at(4, 6, 1), 1.10000).opened == []


def test_stale_quote_skips_evaluation(broker):
    sched = _scheduler(broker, at(4, 5))
    stale = feed(sched, broker, at(4, 6), 1.10000, quote_time=at(4, 5, 59))
    assert stale.skip_reason == "stale_price"
    assert stale.opened == []

    fresh = feed(sched, broker, at(4, 6, 0, 30), 1.10000)
    assert len(fresh.opened) == 1


def test_missing_quote_skips_evaluation(broker):
    sched = _scheduler(broker, at(4, 5))
    report = sched.on_tick(at(4, 6), broker.equity(), [], None)
    assert report.skip_reason == "no_price"
    assert report.opened == []


def test_exits_close_position_at_target(broker):
    sched = _scheduler(broker, at(4, 5), take_profit_points=30)
    feed(sched, broker, at(4, 6), 1.10000)
    report = feed(sched, broker, at(4, 6, 5), 1.10040)
    assert len(report.closed) == 1
    assert broker.positions(SYMBOL) == []


def test_sell_policy(broker):
    sched = _scheduler(broker, at(4, 5), direction_policy="sell")
    feed(sched, broker, at(4, 6), 1.10000)
    assert broker.positions(SYMBOL)[0].side == "sell"


def test_trading_disabled_blocks_entries(broker):
    sched = _scheduler(broker, at(4, 5))
    sched.trading_enabled = False
    report = feed(sched, broker, at(4, 6), 1.10000)
    assert report.opened == []
    assert report.skip_reason == "trading_disabled"


def test_error_phase_blocks_entries_until_restart(broker):
    sched = _scheduler(broker, at(4, 5))
    assert sched.state_machine.error("tick loop: boom")

    report = feed(sched, broker, at(4, 6), 1.10000)
    assert report.opened == []
    assert report.skip_reason == "phase_error"
    assert sched.state_machine.phase_name == "ERROR"
    assert sched.snapshot()["previous_phase"] == "WAITING"


def test_scheduler_that_was_never_started_stays_idle(broker):
    sched = DailyScheduler(make_settings(), broker, at(4, 5), rng=random.Random(1))
    report = feed(sched, broker, at(4, 6), 1.10000)
    assert report.opened == []
    assert report.skip_reason == "phase_idle"
    assert sched.state_machine.phase_name == "IDLE"

    assert sched.start(at(4, 6, 1)) == "SCANNING"


def test_random_direction_is_reproducible_with_seed():
    rng_a, rng_b = random.Random(42), random.Random(42)
    seq_a = [choose_direction("random", rng_a) for _ in range(50)]
    seq_b = [choose_direction("random", rng_b) for _ in range(50)]
    assert seq_a == seq_b
    assert set(seq_a) == {"buy", "sell"}


def test_unknown_direction_policy():
    with pytest.raises(ValueError):
        choose_direction("hedge")


def test_update_settings_realigns_slot_grid(broker):
    sched = _scheduler(broker, at(4, 5))
    feed(sched, broker, at(4, 6), 1.10000)
    assert sched.schedule.next_trade_time == at(4, 10)
    sched.update_settings(make_settings(interval_minutes=60))
    assert sched.schedule.next_trade_time == at(4, 7)


def test_squareoff(broker):
    sched = _scheduler(broker, at(4, 5))
    assert sched.squareoff()["status"] == "error"
    feed(sched, broker, at(4, 6), 1.10000)
    assert sched.squareoff()["status"] == "success"
    assert broker.positions(SYMBOL) == []
