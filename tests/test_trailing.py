import pytest

from strategies.exits import ExitRules, TrailState, decide_exit, update_trail


def test_stepped_trailing_only_moves_up():
    rules = ExitRules(trail_start_points=10.0, trail_step_points=5.0)
    trail = TrailState()

    stops = []
    for profit in [0.0, 3.0, 6.0, 11.0, 16.0, 20.0, 14.0]:
        update_trail(trail, rules, profit)
        stops.append(trail.stop_points)

    assert stops == [None, None, None, 5.0, 10.0, 15.0, 15.0]
    assert trail.highest_profit_points == 20.0


def test_trailing_exit_when_profit_falls_to_locked_level():
    rules = ExitRules(trail_start_points=10.0, trail_step_points=5.0)
    trail = TrailState()
    update_trail(trail, rules, 16.0)
    assert not decide_exit(trail, rules, 12.0).should_exit
    decision = decide_exit(trail, rules, 10.0)
    assert decision.should_exit
    assert decision.reason == "Trailing SL Hit"


def test_trailing_never_locks_below_breakeven():
    # step larger than start: the raw formula would lock -15 pts
    rules = ExitRules(trail_start_points=5.0, trail_step_points=20.0)
    trail = TrailState()
    assert update_trail(trail, rules, 10.0)
    assert trail.stop_points == 0.0
    assert not decide_exit(trail, rules, 0.5).should_exit
    assert decide_exit(trail, rules, 0.0).should_exit


def test_trailing_disabled_without_step():
    rules = ExitRules(trail_start_points=10.0, trail_step_points=0.0)
    trail = TrailState()
    assert not update_trail(trail, rules, 50.0)
    assert trail.stop_points is None


@pytest.mark.parametrize("profit,expected", [
    (30.0, "Target Hit"),
    (-20.0, "Stop-loss Hit"),
    (5.0, ""),
])
def test_fixed_target_and_stop(profit, expected):
    rules = ExitRules(stop_loss_points=20.0, take_profit_points=30.0)
    decision = decide_exit(TrailState(), rules, profit)
    assert decision.reason == expected
    assert decision.should_exit == bool(expected)
