import json

import pytest

from clmm_replay.config import BacktestConfig, DecisionPolicy, PoolConfig, load_config
from clmm_replay.tick_math import tick_to_sqrt_price


def test_defaults():
    config = BacktestConfig()
    assert config.strategy == "no_rebalance"
    assert config.decision_policy is DecisionPolicy.EVERY_N_EVENTS
    assert config.max_gap_seconds is None


def test_policy_from_string():
    config = BacktestConfig(decision_policy="time_interval")
    assert config.decision_policy is DecisionPolicy.TIME_INTERVAL
    assert config.to_dict()['decision_policy'] == "time_interval"


@pytest.mark.parametrize("kwargs", [
    {'record_every': 0},
    {'decision_every_n_events': 0},
    {'decision_interval_seconds': -1},
    {'initial_token0': -1},
    {'swap_slippage_pips': 1_000_000},
    {'decision_policy': 'whenever'},
])
def test_invalid_values(kwargs):
    with pytest.raises(ValueError):
        BacktestConfig(**kwargs)


def test_unknown_keys_rejected():
    with pytest.raises(ValueError):
        BacktestConfig.from_dict({'initial_capital': 10000})
    with pytest.raises(ValueError):
        PoolConfig.from_dict({'fee': 3000})


def test_pool_config_builds_pool():
    pool = PoolConfig(initial_tick=120, tick_spacing=60, fee_rate=500).build_pool()
    assert (pool.current_tick, pool.tick_spacing, pool.fee_rate) == (120, 60, 500)

    pool = PoolConfig.from_dict({'initial_sqrt_price': str(tick_to_sqrt_price(-30))}).build_pool()
    assert pool.current_tick == -30


def test_load_config(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "pool": {"initial_tick": 10, "tick_spacing": 10},
        "backtest": {
            "initial_token0": "1000000000000000000",
            "strategy": "simple_rebalance",
            "strategy_params": {"range": 400},
            "decision_policy": "liquidity_events",
        },
    }), encoding="utf-8")

    pool_config, backtest_config = load_config(str(path))
    assert pool_config.initial_tick == 10
    assert backtest_config.initial_token0 == 10 ** 18
    assert backtest_config.strategy_params == {"range": 400}
    assert backtest_config.decision_policy is DecisionPolicy.LIQUIDITY_EVENTS


def test_load_config_rejects_non_object(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(str(path))
