from decimal import Decimal, DefaultContext, getcontext

import pytest

from clmm_replay.fixed_point import Q96
from clmm_replay.tick_math import (
    MAX_SQRT_PRICE,
    MAX_TICK,
    MIN_SQRT_PRICE,
    MIN_TICK,
    align_tick,
    price_to_tick,
    sqrt_price_to_price,
    sqrt_price_to_tick,
    tick_to_price,
    tick_to_sqrt_price,
    usable_tick_bounds,
)

SAMPLE_TICKS = [MIN_TICK, -500000, -69082, -1, 0, 1, 60, 887, 69082, 500000, MAX_TICK - 1]


def test_tick_zero_is_q96():
    assert tick_to_sqrt_price(0) == Q96


def test_bounds_match_constants():
    assert tick_to_sqrt_price(MIN_TICK) == MIN_SQRT_PRICE
    assert tick_to_sqrt_price(MAX_TICK) == MAX_SQRT_PRICE


def test_tick_out_of_range():
    with pytest.raises(ValueError):
        tick_to_sqrt_price(MIN_TICK - 1)
    with pytest.raises(ValueError):
        tick_to_sqrt_price(MAX_TICK + 1)
    with pytest.raises(ValueError):
        sqrt_price_to_tick(MIN_SQRT_PRICE - 1)


def test_sqrt_price_strictly_increasing():
    prices = [tick_to_sqrt_price(t) for t in SAMPLE_TICKS]
    assert prices == sorted(prices)
    assert len(set(prices)) == len(prices)


@pytest.mark.parametrize("tick", SAMPLE_TICKS)
def test_round_trip_is_exact(tick):
    assert sqrt_price_to_tick(tick_to_sqrt_price(tick)) == tick


@pytest.mark.parametrize("tick", [-1000, -1, 0, 1, 1000])
def test_price_just_below_next_tick_floors(tick):
    assert sqrt_price_to_tick(tick_to_sqrt_price(tick + 1) - 1) == tick


def test_display_price():
    assert sqrt_price_to_price(Q96) == 1
    # 1 raw token0 with 8 decimals against token1 with 6 decimals
    assert sqrt_price_to_price(Q96, 8, 6) == 100
    assert tick_to_price(0) == 1
    assert abs(tick_to_price(10000) - Decimal('2.718145926')) < Decimal('0.000001')


def test_price_to_tick():
    assert price_to_tick(Decimal(1)) == 0
    assert price_to_tick(Decimal(100), 8, 6) == 0
    assert abs(price_to_tick(tick_to_price(12345)) - 12345) <= 1
    with pytest.raises(ValueError):
        price_to_tick(Decimal(0))


def test_display_helpers_keep_the_global_decimal_context():
    assert getcontext().prec == DefaultContext.prec
    price = sqrt_price_to_price(tick_to_sqrt_price(-887000))
    tick_to_price(250000, 18, 6)
    price_to_tick(Decimal('123.456'))
    assert getcontext().prec == DefaultContext.prec
    # the helpers still compute at full precision
    assert len(price.as_tuple().digits) > DefaultContext.prec


def test_align_tick_rounds_down():
    assert align_tick(15, 10) == 10
    assert align_tick(-5, 10) == -10
    assert align_tick(-10, 10) == -10


def test_usable_tick_bounds():
    assert usable_tick_bounds(1) == (MIN_TICK, MAX_TICK)
    assert usable_tick_bounds(60) == (-887220, 887220)
