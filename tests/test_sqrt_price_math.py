import pytest

from clmm_replay.errors import FixedPointOverflowError, InvariantError
from clmm_replay.fixed_point import Q96, add_delta, div_rounding_up, mul_div, mul_div_rounding_up
from clmm_replay.sqrt_price_math import (
    amount0_for_liquidity,
    amount1_for_liquidity,
    amounts_for_liquidity,
    liquidity_for_amounts,
    next_sqrt_price_from_input,
)
from clmm_replay.tick_math import tick_to_sqrt_price

L = 10 ** 18


def test_fixed_point_rounding():
    assert mul_div(7, 3, 2) == 10
    assert mul_div_rounding_up(7, 3, 2) == 11
    assert div_rounding_up(6, 3) == 2
    assert div_rounding_up(7, 3) == 3
    with pytest.raises(ZeroDivisionError):
        mul_div(1, 1, 0)


def test_add_delta_refuses_underflow_and_overflow():
    assert add_delta(10, -10) == 0
    with pytest.raises(InvariantError):
        add_delta(10, -11)
    with pytest.raises(FixedPointOverflowError):
        add_delta(2 ** 128 - 1, 1)


def test_amounts_on_doubling_interval():
    assert amount1_for_liquidity(L, Q96, 2 * Q96) == L
    assert amount0_for_liquidity(L, Q96, 2 * Q96) == L // 2


def test_amounts_commutative():
    a, b = tick_to_sqrt_price(-600), tick_to_sqrt_price(600)
    assert amount0_for_liquidity(L, a, b) == amount0_for_liquidity(L, b, a)
    assert amount1_for_liquidity(L, a, b, round_up=True) == amount1_for_liquidity(L, b, a, round_up=True)


def test_round_up_never_below_floor():
    a, b = tick_to_sqrt_price(-601), tick_to_sqrt_price(599)
    for liquidity in (1, 12345, L + 7):
        assert amount0_for_liquidity(liquidity, a, b, round_up=True) >= amount0_for_liquidity(liquidity, a, b)
        assert amount1_for_liquidity(liquidity, a, b, round_up=True) >= amount1_for_liquidity(liquidity, a, b)


def test_amounts_for_liquidity_by_price_position():
    lower, upper = tick_to_sqrt_price(-600), tick_to_sqrt_price(600)

    below = amounts_for_liquidity(tick_to_sqrt_price(-1200), lower, upper, L)
    assert below[0] > 0 and below[1] == 0

    above = amounts_for_liquidity(tick_to_sqrt_price(1200), lower, upper, L)
    assert above[0] == 0 and above[1] > 0

    inside = amounts_for_liquidity(Q96, lower, upper, L)
    assert inside[0] > 0 and inside[1] > 0

    assert amounts_for_liquidity(Q96, lower, upper, 0) == (0, 0)


def test_liquidity_for_amounts_fits_budget():
    lower, upper = tick_to_sqrt_price(-600), tick_to_sqrt_price(600)
    for price in (tick_to_sqrt_price(-300), Q96, tick_to_sqrt_price(450)):
        budget0, budget1 = 10 ** 18, 3 * 10 ** 17
        liquidity = liquidity_for_amounts(price, lower, upper, budget0, budget1)
        assert liquidity > 0
        need0, need1 = amounts_for_liquidity(price, lower, upper, liquidity, round_up=True)
        assert need0 <= budget0
        assert need1 <= budget1


def test_liquidity_for_amounts_one_sided():
    lower, upper = tick_to_sqrt_price(-600), tick_to_sqrt_price(600)
    # below the range only token0 counts
    assert liquidity_for_amounts(tick_to_sqrt_price(-1000), lower, upper, 10 ** 18, 0) > 0
    assert liquidity_for_amounts(tick_to_sqrt_price(-1000), lower, upper, 0, 10 ** 18) == 0


def test_next_sqrt_price_direction():
    down = next_sqrt_price_from_input(Q96, L, 10 ** 15, zero_for_one=True)
    up = next_sqrt_price_from_input(Q96, L, 10 ** 15, zero_for_one=False)
    assert down < Q96 < up
    assert next_sqrt_price_from_input(Q96, L, 0, zero_for_one=True) == Q96
    with pytest.raises(ValueError):
        next_sqrt_price_from_input(Q96, 0, 1, zero_for_one=True)
