import asyncio
import copy

import pytest
from fastapi.testclient import TestClient

from config import bot_state, config
from conftest import at, make_quote, make_settings
from server import app
from tick_engine import TickEngine, tick_engine


@pytest.fixture
def restore_config():
    saved = copy.deepcopy(config)
    yield config
    config.clear()
    config.update(saved)


@pytest.fixture
def client(restore_config):
    with TestClient(app) as c:
        yield c


def test_health_and_status(client):
    assert client.get("/api/").json()["status"] == "running"
    status = client.get("/api/status").json()
    assert status["symbol"] == config["symbol"]
    assert status["is_running"] is False
    assert "in_window" in status


def test_invalid_config_update_is_rejected(client):
    before = config["trading_window"]
    resp = client.post("/api/config/update", json={"trading_window": "25:00-06:00"})
    assert resp.status_code == 400
    assert config["trading_window"] == before

    resp = client.post("/api/config/update", json={"equity_trailing_pct": 150})
    assert resp.status_code == 400


def test_valid_config_update(client):
    resp = client.post("/api/config/update", json={"max_trades_per_day": 5, "direction_policy": "sell"})
    assert resp.status_code == 200
    assert resp.json()["updated"] == ["direction_policy", "max_trades_per_day"]
    cfg = client.get("/api/config").json()
    assert cfg["max_trades_per_day"] == 5
    assert cfg["direction_policy"] == "sell"


def test_start_and_stop(client, restore_config):
    restore_config["quote_base_url"] = ""
    restore_config["quote_poll_seconds"] = 0.2
    assert client.post("/api/bot/start").json()["status"] == "success"
    assert client.post("/api/bot/start").json()["status"] == "error"
    assert client.get("/api/status").json()["is_running"] is True
    assert client.get("/api/summary").status_code == 200
    assert "positions" in client.get("/api/position").json()
    assert client.post("/api/bot/stop").json()["status"] == "success"
    assert client.get("/api/status").json()["is_running"] is False


def test_start_rejects_invalid_configuration(client, restore_config):
    restore_config["trading_window"] = "nonsense"
    resp = client.post("/api/bot/start")
    assert resp.status_code == 400


def test_engine_processes_synthetic_ticks(restore_config):
    restore_config["quote_base_url"] = ""
    engine = TickEngine()
    settings = make_settings(profit_threshold_points=0, interval_minutes=60)
    engine.build(settings, at(4, 5)).start(at(4, 5))

    opened = 0
    for hour in range(5, 9):
        report = asyncio.run(engine.poll_once(at(4, hour)))
        opened += len(report.opened)

    assert opened == 3
    assert engine.tick_count == 4
    assert bot_state["daily_trades"] == 3
    assert len(engine.position_views()) == 3


def _tick(engine, now, bid):
    quote = make_quote(now, bid)
    engine.broker.set_quote(quote)
    return engine.process(now, quote)


def _restart(engine, settings, now):
    engine.scheduler.state_machine.stop()
    return engine.build(settings, now).start(now)


def test_restart_keeps_daily_count(restore_config):
    restore_config["quote_base_url"] = ""
    engine = TickEngine()
    settings = make_settings(max_trades_per_day=1, profit_threshold_points=0, interval_minutes=60)
    first = engine.build(settings, at(4, 5))
    first.start(at(4, 5))
    assert _tick(engine, at(4, 6), 1.10000).opened

    assert _restart(engine, settings, at(4, 7)) == "SCANNING"
    assert engine.scheduler is first
    report = _tick(engine, at(4, 7), 1.10000)
    assert report.opened == []
    assert report.skip_reason == "daily_limit"
    assert len(engine.broker.positions()) == 1


def test_restart_keeps_equity_guard_freeze(restore_config):
    restore_config["quote_base_url"] = ""
    restore_config["paper_initial_balance"] = 10000.0
    engine = TickEngine()
    settings = make_settings(
        lot_size=1.0, equity_target_pct=1.0, equity_trailing_pct=50.0,
        profit_threshold_points=0, interval_minutes=60,
    )
    engine.build(settings, at(4, 5)).start(at(4, 5))
    assert _tick(engine, at(4, 6), 1.10000).opened
    _tick(engine, at(4, 6, 30), 1.10202)
    assert _tick(engine, at(4, 6, 50), 1.10100).guard_triggered

    assert _restart(engine, settings, at(4, 7)) == "HALTED"
    report = _tick(engine, at(4, 7), 1.10100)
    assert report.opened == []
    assert report.skip_reason == "protection_triggered"
    assert engine.scheduler.guard.protection_triggered
    assert engine.broker.positions() == []


def test_new_symbol_gets_a_fresh_scheduler(restore_config):
    restore_config["quote_base_url"] = ""
    engine = TickEngine()
    first = engine.build(make_settings(), at(4, 5))
    second = engine.build(make_settings(symbol="GBPUSD"), at(4, 5))
    assert second is not first
    assert engine.broker.symbol == "GBPUSD"


def test_position_views_use_scheduler_point_size(restore_config):
    restore_config["quote_base_url"] = ""
    restore_config["point_size"] = 0.00001
    engine = TickEngine()
    settings = make_settings(point_size=0.0001, profit_threshold_points=0, interval_minutes=60)
    engine.build(settings, at(4, 5)).start(at(4, 5))
    _tick(engine, at(4, 6), 1.10000)       # buy @ 1.10002
    _tick(engine, at(4, 6, 10), 1.10102)

    (view,) = engine.position_views()
    assert view["profit_points"] == pytest.approx(10.0)
