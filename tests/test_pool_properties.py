import random

from clmm_replay.event_applicator import apply_event
from clmm_replay.events import AddLiquidityEvent, RemoveLiquidityEvent, SwapDirection, SwapEvent
from clmm_replay.fixed_point import Q128
from clmm_replay.pool_state import PoolState
from clmm_replay.position_ledger import PositionLedger, fee_growth_inside

L = 10 ** 18


def unit_spacing_pool():
    return PoolState.from_tick(0, tick_spacing=1, fee_rate=3000), PositionLedger()


def add(pool, ledger, lower, upper, liquidity=L):
    return apply_event(pool, ledger, AddLiquidityEvent(lower, upper, liquidity, owner="lp"))


def test_single_swap_fee_growth_matches_fee_over_liquidity():
    pool, ledger = unit_spacing_pool()
    add(pool, ledger, -200, 200)

    result = apply_event(pool, ledger, SwapEvent(1_000_000, SwapDirection.ZERO_FOR_ONE))

    # 0.3% of 1_000_000, all of it on one active liquidity
    assert result.fee_paid == 3000
    assert result.ticks_crossed == 0
    assert pool.fee_growth_global_0 == 3000 * Q128 // L
    assert pool.fee_growth_global_1 == 0
    assert fee_growth_inside(pool, -200, 200) == (pool.fee_growth_global_0, 0)

    fee0, fee1 = ledger.accrued_fees(pool, "lp_-200_200")
    assert 2999 <= fee0 <= 3000
    assert fee1 == 0


def test_adjacent_positions_split_fees_at_the_shared_tick():
    pool, ledger = unit_spacing_pool()
    add(pool, ledger, -200, 0)
    add(pool, ledger, 0, 200)
    assert pool.liquidity == L
    assert pool.get_tick(0).liquidity_net == 0

    # token1 in: price rises inside [0, 200) only
    up = apply_event(pool, ledger, SwapEvent(10 ** 15, SwapDirection.ONE_FOR_ZERO))
    assert up.ticks_crossed == 0
    assert 0 < pool.current_tick < 200
    growth_1 = pool.fee_growth_global_1
    assert growth_1 > 0

    # token0 in: back through tick 0 and into [-200, 0)
    down = apply_event(pool, ledger, SwapEvent(2 * 10 ** 15, SwapDirection.ZERO_FOR_ONE))
    assert [c[0] for c in down.crossings] == [0]
    assert -200 < pool.current_tick < 0
    assert pool.liquidity == L
    pool.check_invariants()

    crossed_at_0 = down.crossings[0][1]
    assert 0 < crossed_at_0 < pool.fee_growth_global_0
    shared = pool.get_tick(0)
    assert shared.fee_growth_outside_0 == crossed_at_0
    assert shared.fee_growth_outside_1 == growth_1

    upper = ledger.accrued_fees(pool, "lp_0_200")
    lower = ledger.accrued_fees(pool, "lp_-200_0")
    # each side earns exactly what was paid while the price was in its range
    assert upper == (L * crossed_at_0 // Q128, L * growth_1 // Q128)
    assert lower == (L * (pool.fee_growth_global_0 - crossed_at_0) // Q128, 0)
    assert upper[0] > 0 and lower[0] > 0
    assert down.fee_paid - 2 <= upper[0] + lower[0] <= down.fee_paid
    assert up.fee_paid - 1 <= upper[1] <= up.fee_paid


def test_random_sequence_conserves_liquidity_and_fee_growth(seeded_pool, ledger):
    pool = seeded_pool
    rng = random.Random(20240601)
    growth = (pool.fee_growth_global_0, pool.fee_growth_global_1)

    for step in range(300):
        roll = rng.random()
        live = [
            p for p in ledger.positions.values()
            if p.liquidity > 0 and p.position_id != "background"
        ]
        if roll < 0.35:
            lower = rng.randrange(-150, 150) * 10
            upper = lower + rng.randrange(1, 60) * 10
            event = AddLiquidityEvent(lower, upper, rng.randrange(1, L), owner=f"lp{step}")
        elif roll < 0.6 and live:
            position = rng.choice(live)
            event = RemoveLiquidityEvent(position.position_id, rng.randint(1, position.liquidity))
        else:
            direction = rng.choice([SwapDirection.ZERO_FOR_ONE, SwapDirection.ONE_FOR_ZERO])
            event = SwapEvent(rng.randrange(1, L), direction)
        apply_event(pool, ledger, event)

        active = sum(
            p.liquidity for p in ledger.positions.values()
            if p.is_in_range(pool.current_tick)
        )
        assert pool.liquidity == active, f"step {step}: {event!r}"

        current = (pool.fee_growth_global_0, pool.fee_growth_global_1)
        assert current[0] >= growth[0] and current[1] >= growth[1]
        growth = current
        pool.check_invariants()

    assert growth[0] > 0 and growth[1] > 0
