import json
import sys
from pathlib import Path

import pytest

# make the top-level package importable without installing it
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from clmm_replay.event_applicator import apply_event  # noqa: E402
from clmm_replay.events import AddLiquidityEvent  # noqa: E402
from clmm_replay.pool_state import PoolState  # noqa: E402
from clmm_replay.position_ledger import PositionLedger  # noqa: E402

BACKGROUND_LIQUIDITY = 10 ** 20


@pytest.fixture
def pool():
    return PoolState.from_tick(0, tick_spacing=10, fee_rate=3000)


@pytest.fixture
def ledger():
    return PositionLedger()


@pytest.fixture
def add_position(pool, ledger):
    """Add liquidity to the `pool` fixture through the applicator"""

    def _add(lower, upper, liquidity, owner="lp", position_id=""):
        return apply_event(pool, ledger, AddLiquidityEvent(
            lower_tick=lower,
            upper_tick=upper,
            liquidity_delta=liquidity,
            position_id=position_id,
            owner=owner,
        ))

    return _add


@pytest.fixture
def seeded_pool(pool, ledger, add_position):
    """Pool at tick 0 with one wide background position"""
    add_position(-6000, 6000, BACKGROUND_LIQUIDITY, owner="lp", position_id="background")
    return pool


@pytest.fixture
def events_file(tmp_path):
    records = [
        {"eventType": "Mint", "blockTimestamp": 1700000000, "logIndex": 0,
         "tickLower": -6000, "tickUpper": 6000, "liquidity": str(BACKGROUND_LIQUIDITY), "owner": "lp"},
        {"eventType": "Swap", "blockTimestamp": 1700000060, "logIndex": 1,
         "amountIn": "1000000000000000", "zeroForOne": True},
        {"eventType": "Swap", "blockTimestamp": 1700000120, "logIndex": 2,
         "amount0": "-900000000000000", "amount1": "1000000000000000"},
        {"eventType": "Swap", "blockTimestamp": 1700003720, "logIndex": 0,
         "amountIn": "2000000000000000", "direction": "zero_for_one", "amountOut": "1990000000000000"},
        {"eventType": "Collect", "blockTimestamp": 1700003780, "logIndex": 1,
         "positionId": "lp_-6000_6000"},
        {"eventType": "Burn", "blockTimestamp": 1700007380, "logIndex": 0,
         "positionId": "lp_-6000_6000", "liquidity": "1000"},
    ]
    path = tmp_path / "pool_events.jsonl"
    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record) + "\n")
        f.write("{not json\n")
        f.write(json.dumps({"eventType": "Flash", "blockTimestamp": 1700007400}) + "\n")
    return path
