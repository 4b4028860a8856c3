import pytest

from clmm_replay.event_applicator import apply_event
from clmm_replay.events import SwapDirection, SwapEvent
from clmm_replay.position_ledger import Position, fee_growth_inside

L = 10 ** 18


def test_positions_for_returns_copies(pool, ledger, add_position):
    add_position(-600, 600, L, owner="strategy", position_id="mine")
    add_position(-600, 600, L, owner="lp", position_id="theirs")

    mine = ledger.positions_for("strategy")
    assert [p.position_id for p in mine] == ["mine"]

    mine[0].liquidity = 0
    assert ledger.get("mine").liquidity == L


def test_position_amounts_and_total(pool, ledger, add_position):
    change = add_position(-600, 600, L, position_id="p")
    add_position(600, 1200, 2 * L, position_id="q")

    amount0, amount1 = ledger.position_amounts(pool, "p")
    # minted amounts round up, the removable amounts round down
    assert change.amount0 - 1 <= amount0 <= change.amount0
    assert change.amount1 - 1 <= amount1 <= change.amount1
    assert ledger.total_liquidity() == 3 * L
    assert len(ledger) == 2


def test_unknown_position_lookups(pool, ledger):
    assert ledger.get("ghost") is None
    with pytest.raises(KeyError):
        ledger.settle(pool, "ghost")
    with pytest.raises(KeyError):
        ledger.position_amounts(pool, "ghost")


def test_fee_growth_inside_below_and_above(pool, ledger, add_position):
    add_position(-600, 600, L)
    apply_event(pool, ledger, SwapEvent(10 ** 15, SwapDirection.ZERO_FOR_ONE))

    # a range entirely above the price has seen no growth
    assert fee_growth_inside(pool, 1200, 1800) == (0, 0)
    inside = fee_growth_inside(pool, -600, 600)
    assert inside == (pool.fee_growth_global_0, pool.fee_growth_global_1)


def test_position_helpers():
    position = Position("p", "lp", -10, 10)
    assert position.is_empty
    assert position.is_in_range(-10)
    assert not position.is_in_range(10)
    position.tokens_owed_1 = 1
    assert not position.is_empty


def test_ledger_copy_is_deep(pool, ledger, add_position):
    add_position(-600, 600, L, position_id="p")
    clone = ledger.copy()
    assert clone == ledger
    clone.get("p").liquidity = 1
    assert ledger.get("p").liquidity == L
    assert clone != ledger
