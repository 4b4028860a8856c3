import pytest

from clmm_replay.pool_state import PoolState
from clmm_replay.position_ledger import Position
from clmm_replay.strategies import (
    STRATEGIES,
    ClosePosition,
    NoRebalanceStrategy,
    OpenPosition,
    Rebalance,
    SimpleRebalanceStrategy,
    create_strategy,
    register_strategy,
)


def snapshot(tick, spacing=10):
    return PoolState.from_tick(tick, tick_spacing=spacing).snapshot()


def test_no_rebalance_opens_once():
    strategy = NoRebalanceStrategy(width=1000)
    first = strategy.decide(snapshot(123), [], 0, None)
    assert first == [OpenPosition(-380, 620, position_id="no_rebalance")]

    position = Position("no_rebalance", "strategy", -380, 620, liquidity=1)
    for ts in (60, 120, 180):
        assert strategy.decide(snapshot(5000), [position], ts, None) == []
    # closed or not, it never opens again
    assert strategy.decide(snapshot(5000), [], 240, None) == []


def test_no_rebalance_retries_a_rejected_open():
    strategy = NoRebalanceStrategy(lower_tick=-100, upper_tick=100)
    assert len(strategy.decide(snapshot(0), [], 0, None)) == 1
    # the first open never produced a position
    assert len(strategy.decide(snapshot(0), [], 60, None)) == 1
    assert not strategy.opened


def test_no_rebalance_reads_its_config_keys():
    strategy = NoRebalanceStrategy(lower_tick=-500, upper_tick=500)
    config = {
        "lower_tick": -100, "upper_tick": 100,
        "token_a_amount": "5", "token_b_amount": 7,
        "range": 40, "unrelated": True,
    }
    assert strategy.decide(snapshot(0), [], 0, config) == [
        OpenPosition(-100, 100, 5, 7, position_id="no_rebalance")
    ]

    centred = NoRebalanceStrategy().decide(snapshot(123), [], 0, {"width": 200})
    assert centred == [OpenPosition(20, 220, position_id="no_rebalance")]

    with pytest.raises(ValueError):
        NoRebalanceStrategy().decide(snapshot(0), [], 0, {"lower_tick": -100})


def test_no_rebalance_fixed_bounds_and_budget():
    strategy = NoRebalanceStrategy(lower_tick=-100, upper_tick=100, token_a_amount=5, token_b_amount=7)
    (action,) = strategy.decide(snapshot(0), [], 0, None)
    assert (action.lower_tick, action.upper_tick) == (-100, 100)
    assert (action.token0_amount, action.token1_amount) == (5, 7)


def test_no_rebalance_requires_both_bounds():
    with pytest.raises(ValueError):
        NoRebalanceStrategy(lower_tick=-100)


def test_no_rebalance_finalize():
    position = Position("no_rebalance", "strategy", -100, 100, liquidity=1)
    assert NoRebalanceStrategy().finalize(snapshot(0), [position], 0, None) == [ClosePosition("no_rebalance")]
    assert NoRebalanceStrategy(close_at_end=False).finalize(snapshot(0), [position], 0, None) == []
    assert NoRebalanceStrategy().finalize(snapshot(0), [position], 0, {"close_at_end": False}) == []


def test_simple_rebalance_decisions():
    strategy = SimpleRebalanceStrategy(range=200)

    (opening,) = strategy.decide(snapshot(0), [], 0, None)
    assert opening == OpenPosition(-100, 100, position_id="simple_rebalance")

    position = Position("simple_rebalance", "strategy", -100, 100, liquidity=1)
    assert strategy.decide(snapshot(50), [position], 60, None) == []

    (rebalance,) = strategy.decide(snapshot(250), [position], 120, None)
    assert rebalance == Rebalance("simple_rebalance", 150, 350)
    assert strategy.rebalance_count == 1


def test_simple_rebalance_rejects_bad_range():
    with pytest.raises(ValueError):
        SimpleRebalanceStrategy(range=0)
    with pytest.raises(ValueError):
        SimpleRebalanceStrategy().decide(snapshot(0), [], 0, {"range": -10})


def test_simple_rebalance_range_from_config():
    strategy = SimpleRebalanceStrategy(range=1000)
    assert strategy.decide(snapshot(0), [], 0, {"range": 200}) == [
        OpenPosition(-100, 100, position_id="simple_rebalance")
    ]
    assert strategy.decide(snapshot(0), [], 0, {}) == [
        OpenPosition(-500, 500, position_id="simple_rebalance")
    ]


def test_rebalance_expands_to_close_then_open():
    steps = Rebalance("a", -10, 10, token0_amount=3, new_position_id="b").expand()
    assert steps == [ClosePosition("a"), OpenPosition(-10, 10, 3, None, "b")]
    assert Rebalance("a", -10, 10).expand()[1].position_id == "a"


def test_centred_range_is_aligned_and_clamped():
    strategy = NoRebalanceStrategy()
    assert strategy.centred_range(123, 1000, 10) == (-380, 620)
    assert strategy.centred_range(0, 5, 10) == (-10, 10)
    lower, upper = strategy.centred_range(887000, 1000, 60)
    assert upper == 887220
    assert lower % 60 == 0 and lower < upper


def test_registry():
    assert set(STRATEGIES) >= {"no_rebalance", "simple_rebalance"}
    assert create_strategy("simple_rebalance", range=400).range == 400
    with pytest.raises(ValueError):
        create_strategy("martingale")


def test_register_strategy():
    register_strategy("custom_no_rebalance", lambda **kw: NoRebalanceStrategy(width=10, **kw))
    try:
        assert create_strategy("custom_no_rebalance").width == 10
    finally:
        del STRATEGIES["custom_no_rebalance"]
