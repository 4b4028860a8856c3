import pytest

from clmm_replay.errors import InvariantError
from clmm_replay.fixed_point import Q96
from clmm_replay.pool_state import PoolState, Tick
from clmm_replay.tick_math import tick_to_sqrt_price


def test_from_tick_and_from_sqrt_price_agree():
    a = PoolState.from_tick(120, tick_spacing=10)
    b = PoolState.from_sqrt_price(tick_to_sqrt_price(120), tick_spacing=10)
    assert a == b
    assert a.liquidity == 0
    assert a.snapshot().price > 1


def test_invalid_construction():
    with pytest.raises(ValueError):
        PoolState.from_tick(0, tick_spacing=0)
    with pytest.raises(ValueError):
        PoolState.from_tick(0, fee_rate=1_000_000)


def test_next_initialized_tick(pool):
    pool.update_tick(-10, 5, upper=False)
    pool.update_tick(10, 5, upper=True)

    assert pool.initialized_ticks() == [-10, 10]
    assert pool.next_initialized_tick(0, lte=True) == -10
    assert pool.next_initialized_tick(0, lte=False) == 10
    assert pool.next_initialized_tick(10, lte=True) == 10
    assert pool.next_initialized_tick(10, lte=False) is None
    assert pool.next_initialized_tick(-11, lte=True) is None
    assert pool.next_initialized_tick(-10, lte=False) == 10


def test_update_tick_flips_and_nets(pool):
    assert pool.update_tick(-10, 5, upper=False) is True
    assert pool.update_tick(-10, 3, upper=True) is False
    tick = pool.get_tick(-10)
    assert tick.liquidity_gross == 8
    assert tick.liquidity_net == 2

    with pytest.raises(InvariantError):
        pool.update_tick(-10, -9, upper=False)


def test_new_tick_outside_growth_depends_on_side(pool):
    pool.fee_growth_global_0 = 500
    pool.fee_growth_global_1 = 7
    pool.update_tick(-10, 1, upper=False)
    pool.update_tick(10, 1, upper=True)

    assert pool.get_tick(-10).fee_growth_outside_0 == 500
    assert pool.get_tick(-10).fee_growth_outside_1 == 7
    assert pool.get_tick(10).fee_growth_outside_0 == 0


def test_clear_tick(pool):
    pool.update_tick(-10, 5, upper=False)
    pool.clear_tick(-10)
    assert pool.initialized_ticks() == []
    assert pool.get_tick(-10) == Tick()
    assert pool.next_initialized_tick(0, lte=True) is None


def test_cross_tick(pool):
    pool.update_tick(-10, 5, upper=False)
    pool.fee_growth_global_0 = 100
    assert pool.cross_tick(-10, 100, 0) == 5
    assert pool.get_tick(-10).fee_growth_outside_0 == 100

    with pytest.raises(InvariantError):
        pool.cross_tick(20, 0, 0)


def test_copy_is_independent(pool, add_position):
    add_position(-100, 100, 10 ** 18)
    clone = pool.copy()
    assert clone == pool

    clone.update_tick(-100, 1, upper=False)
    clone.sqrt_price += 1
    assert clone != pool
    assert pool.get_tick(-100).liquidity_gross == 10 ** 18
    assert clone.initialized_ticks() == pool.initialized_ticks()


def test_check_invariants(pool, add_position):
    add_position(-100, 100, 10 ** 18)
    pool.check_invariants()

    pool.liquidity += 1
    with pytest.raises(InvariantError):
        pool.check_invariants()


def test_check_invariants_price_tick_mismatch(pool):
    pool.sqrt_price = Q96 * 2
    with pytest.raises(InvariantError):
        pool.check_invariants()


def test_snapshot_is_read_only(pool):
    snapshot = pool.snapshot()
    with pytest.raises(AttributeError):
        snapshot.current_tick = 5
    assert snapshot.tick_spacing == 10
