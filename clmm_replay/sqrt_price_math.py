"""
Liquidity / amount / sqrt-price relations

Between two initialized ticks liquidity is constant, so token reserves follow
the virtual-reserve curve:

    amount0 = L * (sqrt_b - sqrt_a) / (sqrt_a * sqrt_b)
    amount1 = L * (sqrt_b - sqrt_a)

All inputs and outputs are integers; sqrt prices are Q64.96.
"""
from typing import Tuple

from .fixed_point import (
    Q96,
    RESOLUTION,
    check_uint128,
    check_uint160,
    div_rounding_up,
    mul_div,
    mul_div_rounding_up,
)


def _ordered(sqrt_a: int, sqrt_b: int) -> Tuple[int, int]:
    if sqrt_a > sqrt_b:
        sqrt_a, sqrt_b = sqrt_b, sqrt_a
    if sqrt_a <= 0:
        raise ValueError("sqrt price must be positive")
    return sqrt_a, sqrt_b


def amount0_for_liquidity(liquidity: int, sqrt_a: int, sqrt_b: int, round_up: bool = False) -> int:
    """
    Token0 covered by `liquidity` between two sqrt prices.

    Commutative in sqrt_a / sqrt_b.
    """
    sqrt_a, sqrt_b = _ordered(sqrt_a, sqrt_b)
    numerator1 = liquidity << RESOLUTION
    numerator2 = sqrt_b - sqrt_a

    if round_up:
        return div_rounding_up(mul_div_rounding_up(numerator1, numerator2, sqrt_b), sqrt_a)
    return mul_div(numerator1, numerator2, sqrt_b) // sqrt_a


def amount1_for_liquidity(liquidity: int, sqrt_a: int, sqrt_b: int, round_up: bool = False) -> int:
    """Token1 covered by `liquidity` between two sqrt prices"""
    sqrt_a, sqrt_b = _ordered(sqrt_a, sqrt_b)

    if round_up:
        return mul_div_rounding_up(liquidity, sqrt_b - sqrt_a, Q96)
    return mul_div(liquidity, sqrt_b - sqrt_a, Q96)


def amounts_for_liquidity(
    sqrt_price: int,
    sqrt_lower: int,
    sqrt_upper: int,
    liquidity: int,
    round_up: bool = False
) -> Tuple[int, int]:
    """
    Token composition of a range position at the given price.

    - price at or below the range: all token0
    - price at or above the range: all token1
    - inside: token0 above the price, token1 below it
    """
    if liquidity <= 0:
        return (0, 0)
    if sqrt_lower >= sqrt_upper:
        raise ValueError("lower sqrt price must be below upper sqrt price")

    if sqrt_price <= sqrt_lower:
        return (amount0_for_liquidity(liquidity, sqrt_lower, sqrt_upper, round_up), 0)
    if sqrt_price >= sqrt_upper:
        return (0, amount1_for_liquidity(liquidity, sqrt_lower, sqrt_upper, round_up))
    return (
        amount0_for_liquidity(liquidity, sqrt_price, sqrt_upper, round_up),
        amount1_for_liquidity(liquidity, sqrt_lower, sqrt_price, round_up),
    )


def liquidity_for_amount0(sqrt_a: int, sqrt_b: int, amount0: int) -> int:
    sqrt_a, sqrt_b = _ordered(sqrt_a, sqrt_b)
    intermediate = mul_div(sqrt_a, sqrt_b, Q96)
    return check_uint128(mul_div(amount0, intermediate, sqrt_b - sqrt_a))


def liquidity_for_amount1(sqrt_a: int, sqrt_b: int, amount1: int) -> int:
    sqrt_a, sqrt_b = _ordered(sqrt_a, sqrt_b)
    return check_uint128(mul_div(amount1, Q96, sqrt_b - sqrt_a))


def liquidity_for_amounts(
    sqrt_price: int,
    sqrt_lower: int,
    sqrt_upper: int,
    amount0: int,
    amount1: int
) -> int:
    """
    Largest liquidity the two amounts can fund in the range.

    Args:
        sqrt_price: Current Q64.96 sqrt price
        sqrt_lower: Range lower bound
        sqrt_upper: Range upper bound
        amount0: Available token0
        amount1: Available token1

    Returns:
        Liquidity (floored), the smaller of the per-token liquidities when the
        price is inside the range
    """
    if sqrt_lower >= sqrt_upper:
        raise ValueError("lower sqrt price must be below upper sqrt price")

    if sqrt_price <= sqrt_lower:
        return liquidity_for_amount0(sqrt_lower, sqrt_upper, amount0)
    if sqrt_price < sqrt_upper:
        liquidity0 = liquidity_for_amount0(sqrt_price, sqrt_upper, amount0)
        liquidity1 = liquidity_for_amount1(sqrt_lower, sqrt_price, amount1)
        return min(liquidity0, liquidity1)
    return liquidity_for_amount1(sqrt_lower, sqrt_upper, amount1)


def next_sqrt_price_from_amount0_rounding_up(sqrt_price: int, liquidity: int, amount: int) -> int:
    """sqrt_next = L * sqrt_p / (L + amount * sqrt_p), rounded up"""
    if amount == 0:
        return sqrt_price
    numerator1 = liquidity << RESOLUTION
    denominator = numerator1 + amount * sqrt_price
    return check_uint160(mul_div_rounding_up(numerator1, sqrt_price, denominator))


def next_sqrt_price_from_amount1_rounding_down(sqrt_price: int, liquidity: int, amount: int) -> int:
    """sqrt_next = sqrt_p + amount / L, rounded down"""
    return check_uint160(sqrt_price + (amount << RESOLUTION) // liquidity)


def next_sqrt_price_from_input(sqrt_price: int, liquidity: int, amount_in: int, zero_for_one: bool) -> int:
    """Sqrt price after adding `amount_in` of the input token to the virtual reserves"""
    if sqrt_price <= 0:
        raise ValueError("sqrt price must be positive")
    if liquidity <= 0:
        raise ValueError("liquidity must be positive")

    if zero_for_one:
        return next_sqrt_price_from_amount0_rounding_up(sqrt_price, liquidity, amount_in)
    return next_sqrt_price_from_amount1_rounding_down(sqrt_price, liquidity, amount_in)
