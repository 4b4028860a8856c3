"""
Tick math

Key concepts:
- tick: discrete price index, price = 1.0001^tick
- sqrt price: sqrt(price) * 2^96 as an integer (Q64.96), the canonical state
- price is token1 per token0 in raw (smallest unit) amounts; a display price
  additionally scales by 10^(decimals0 - decimals1)

tick_to_sqrt_price is exact integer arithmetic, so replays never drift.
"""
import math
from decimal import Decimal, localcontext
from typing import Tuple

from .fixed_point import MAX_UINT256, Q96

# precision of the display price helpers; the global decimal context is left alone
DECIMAL_PRECISION = 78

MIN_TICK = -887272
MAX_TICK = 887272
MIN_SQRT_PRICE = 4295128739
MAX_SQRT_PRICE = 1461446703485210103287273052203988822378723970342

# 1 / sqrt(1.0001)^(2^i) in Q128
_RATIOS = (
    0xfffcb933bd6fad37aa2d162d1a594001,
    0xfff97272373d413259a46990580e213a,
    0xfff2e50f5f656932ef12357cf3c7fdcc,
    0xffe5caca7e10e4e61c3624eaa0941cd0,
    0xffcb9843d60f6159c9db58835c926644,
    0xff973b41fa98c081472e6896dfb254c0,
    0xff2ea16466c96a3843ec78b326b52861,
    0xfe5dee046a99a2a811c461f1969c3053,
    0xfcbe86c7900a88aedcffc83b479aa3a4,
    0xf987a7253ac413176f2b074cf7815e54,
    0xf3392b0822b70005940c7a398e4b70f3,
    0xe7159475a2c29b7443b29c7fa6e889d9,
    0xd097f3bdfd2022b8845ad8f792aa5825,
    0xa9f746462d870fdf8a65dc1f90e061e5,
    0x70d869a156d2a1b890bb3df62baf32f7,
    0x31be135f97d08fd981231505542fcfa6,
    0x9aa508b5b7a84e1c677de54f3e99bc9,
    0x5d6af8dedb81196699c329225ee604,
    0x2216e584f5fa1ea926041bedfe98,
    0x48a170391f7dc42444e8fa2,
)

_LOG_SQRT_BASE = math.log(1.0001) / 2.0


def tick_to_sqrt_price(tick: int) -> int:
    """
    Convert a tick to its Q64.96 sqrt price.

    Args:
        tick: Tick index in [MIN_TICK, MAX_TICK]

    Returns:
        sqrt(1.0001^tick) * 2^96, rounded up
    """
    if tick < MIN_TICK or tick > MAX_TICK:
        raise ValueError(f"Tick {tick} out of range [{MIN_TICK}, {MAX_TICK}]")

    abs_tick = -tick if tick < 0 else tick
    ratio = 1 << 128
    for i, factor in enumerate(_RATIOS):
        if abs_tick & (1 << i):
            ratio = (ratio * factor) >> 128

    if tick > 0:
        ratio = MAX_UINT256 // ratio

    # Q128.128 -> Q64.96, rounding up so that sqrt_price_to_tick stays consistent
    return (ratio >> 32) + (0 if ratio % (1 << 32) == 0 else 1)


def sqrt_price_to_tick(sqrt_price: int) -> int:
    """
    Convert a Q64.96 sqrt price to the greatest tick whose sqrt price is <= it.

    A float logarithm gives the estimate, exact comparisons settle it.
    """
    if sqrt_price < MIN_SQRT_PRICE or sqrt_price > MAX_SQRT_PRICE:
        raise ValueError(
            f"sqrt price {sqrt_price} out of range [{MIN_SQRT_PRICE}, {MAX_SQRT_PRICE}]"
        )

    estimate = math.floor(math.log(sqrt_price / Q96) / _LOG_SQRT_BASE)
    tick = max(MIN_TICK, min(MAX_TICK, estimate))

    while tick > MIN_TICK and tick_to_sqrt_price(tick) > sqrt_price:
        tick -= 1
    while tick < MAX_TICK and tick_to_sqrt_price(tick + 1) <= sqrt_price:
        tick += 1
    return tick


def sqrt_price_to_price(sqrt_price: int, decimals0: int = 0, decimals1: int = 0) -> Decimal:
    """
    Convert a Q64.96 sqrt price to a display price (token1 per token0).

    display_price = (sqrt_price / 2^96)^2 * 10^(decimals0 - decimals1)
    """
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        sqrt_dec = Decimal(sqrt_price) / Decimal(Q96)
        return sqrt_dec * sqrt_dec * (Decimal(10) ** (decimals0 - decimals1))


def tick_to_price(tick: int, decimals0: int = 0, decimals1: int = 0) -> Decimal:
    """Display price at a tick"""
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        price = Decimal('1.0001') ** Decimal(tick)
        return price * (Decimal(10) ** (decimals0 - decimals1))


def price_to_tick(price: Decimal, decimals0: int = 0, decimals1: int = 0) -> int:
    """
    Convert a display price to the tick at or below it.

    Args:
        price: Price of token0 in terms of token1 (human units)
        decimals0: Decimals of token0
        decimals1: Decimals of token1
    """
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        raw_price = Decimal(price) / (Decimal(10) ** (decimals0 - decimals1))
        if raw_price <= 0:
            raise ValueError(f"price must be positive: {price}")
        sqrt_price = int(raw_price.sqrt() * Decimal(Q96))

    sqrt_price = max(MIN_SQRT_PRICE, min(MAX_SQRT_PRICE, sqrt_price))
    return sqrt_price_to_tick(sqrt_price)


def align_tick(tick: int, tick_spacing: int) -> int:
    """Round a tick down to the nearest multiple of tick_spacing"""
    return (tick // tick_spacing) * tick_spacing


def usable_tick_bounds(tick_spacing: int) -> Tuple[int, int]:
    """Lowest and highest ticks a position boundary may use"""
    lowest = -((-MIN_TICK) // tick_spacing) * tick_spacing
    highest = (MAX_TICK // tick_spacing) * tick_spacing
    return lowest, highest
