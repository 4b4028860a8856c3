"""
Exact-input swap simulation

A swap walks the price through consecutive ranges of constant liquidity. Each
step takes the fee from the input first, moves the price toward the next
initialized tick (or the price limit), and crosses the tick when it gets there.

simulate_swap never mutates the pool; commit_swap writes a simulated result
back. Replaying an event is simulate + commit, a quote is simulate only.
"""
import logging
from dataclasses import dataclass
from typing import NamedTuple, Optional, Tuple

from .errors import InvariantError
from .events import SwapDirection
from .fixed_point import Q128, add_delta, mul_div, mul_div_rounding_up
from .pool_state import FEE_RATE_DENOMINATOR, PoolState
from .sqrt_price_math import (
    amount0_for_liquidity,
    amount1_for_liquidity,
    next_sqrt_price_from_input,
)
from .tick_math import (
    MAX_SQRT_PRICE,
    MAX_TICK,
    MIN_SQRT_PRICE,
    MIN_TICK,
    sqrt_price_to_tick,
    tick_to_sqrt_price,
)

logger = logging.getLogger(__name__)


class SwapStep(NamedTuple):
    sqrt_price_next: int
    amount_in: int
    amount_out: int
    fee_amount: int


@dataclass(frozen=True)
class SwapResult:
    """
    Outcome of a simulated swap.

    amount_in_consumed = principal_in + fee_paid; amount_remaining is what the
    price limit left unfilled. crossings holds (tick, fee_growth_global_0,
    fee_growth_global_1) at the moment each tick was crossed.
    """
    direction: SwapDirection
    amount_in_consumed: int
    amount_out: int
    fee_paid: int
    final_sqrt_price: int
    final_tick: int
    ticks_crossed: int
    amount_remaining: int = 0
    principal_in: int = 0
    final_liquidity: int = 0
    fee_growth_global_0: int = 0
    fee_growth_global_1: int = 0
    start_sqrt_price: int = 0
    crossings: Tuple[Tuple[int, int, int], ...] = ()

    @property
    def fully_filled(self) -> bool:
        return self.amount_remaining == 0


def compute_swap_step(
    sqrt_price_current: int,
    sqrt_price_target: int,
    liquidity: int,
    amount_remaining: int,
    fee_rate: int
) -> SwapStep:
    """
    One step inside a single range of constant liquidity.

    Args:
        sqrt_price_current: Price at the start of the step
        sqrt_price_target: Price the step may not pass (next tick or limit)
        liquidity: Active liquidity over the step
        amount_remaining: Input still to be swapped, fee included
        fee_rate: Fee in pips

    Returns:
        SwapStep; with zero liquidity the price jumps to the target for free
    """
    zero_for_one = sqrt_price_current >= sqrt_price_target
    fee_complement = FEE_RATE_DENOMINATOR - fee_rate

    amount_remaining_less_fee = mul_div(amount_remaining, fee_complement, FEE_RATE_DENOMINATOR)
    if zero_for_one:
        amount_in = amount0_for_liquidity(liquidity, sqrt_price_target, sqrt_price_current, round_up=True)
    else:
        amount_in = amount1_for_liquidity(liquidity, sqrt_price_current, sqrt_price_target, round_up=True)

    if amount_remaining_less_fee >= amount_in:
        sqrt_price_next = sqrt_price_target
    else:
        sqrt_price_next = next_sqrt_price_from_input(
            sqrt_price_current, liquidity, amount_remaining_less_fee, zero_for_one
        )

    reached_target = sqrt_price_next == sqrt_price_target

    if zero_for_one:
        if not reached_target:
            amount_in = amount0_for_liquidity(liquidity, sqrt_price_next, sqrt_price_current, round_up=True)
        amount_out = amount1_for_liquidity(liquidity, sqrt_price_next, sqrt_price_current)
    else:
        if not reached_target:
            amount_in = amount1_for_liquidity(liquidity, sqrt_price_current, sqrt_price_next, round_up=True)
        amount_out = amount0_for_liquidity(liquidity, sqrt_price_current, sqrt_price_next)

    if not reached_target:
        # the whole remainder is spent, whatever the principal did not use is fee
        fee_amount = amount_remaining - amount_in
    else:
        fee_amount = mul_div_rounding_up(amount_in, fee_rate, fee_complement)

    return SwapStep(sqrt_price_next, amount_in, amount_out, fee_amount)


def _validate_limit(zero_for_one: bool, price_limit: Optional[int]) -> int:
    if price_limit is None:
        return MIN_SQRT_PRICE + 1 if zero_for_one else MAX_SQRT_PRICE - 1
    if price_limit <= MIN_SQRT_PRICE or price_limit >= MAX_SQRT_PRICE:
        raise ValueError(f"price limit {price_limit} outside the valid sqrt price range")
    return price_limit


def _empty_result(pool: PoolState, direction: SwapDirection, amount_in: int) -> SwapResult:
    return SwapResult(
        direction=direction,
        amount_in_consumed=0,
        amount_out=0,
        fee_paid=0,
        final_sqrt_price=pool.sqrt_price,
        final_tick=pool.current_tick,
        ticks_crossed=0,
        amount_remaining=amount_in,
        final_liquidity=pool.liquidity,
        fee_growth_global_0=pool.fee_growth_global_0,
        fee_growth_global_1=pool.fee_growth_global_1,
        start_sqrt_price=pool.sqrt_price,
    )


def simulate_swap(
    pool: PoolState,
    amount_in: int,
    direction: SwapDirection,
    price_limit: Optional[int] = None
) -> SwapResult:
    """
    Simulate an exact-input swap against the pool without mutating it.

    Args:
        pool: Pool to swap against
        amount_in: Input amount, fee included
        direction: ZERO_FOR_ONE sells token0, ONE_FOR_ZERO sells token1
        price_limit: Q64.96 sqrt price the swap may not pass

    Returns:
        SwapResult; commit it with commit_swap
    """
    if amount_in < 0:
        raise ValueError(f"amount_in must be non-negative: {amount_in}")

    zero_for_one = direction.zero_for_one
    limit = _validate_limit(zero_for_one, price_limit)

    if amount_in == 0:
        return _empty_result(pool, direction, 0)
    if zero_for_one and limit >= pool.sqrt_price:
        return _empty_result(pool, direction, amount_in)
    if not zero_for_one and limit <= pool.sqrt_price:
        return _empty_result(pool, direction, amount_in)

    amount_remaining = amount_in
    amount_out = 0
    fee_paid = 0
    principal_in = 0
    sqrt_price = pool.sqrt_price
    tick = pool.current_tick
    liquidity = pool.liquidity
    fee_growth_global_0 = pool.fee_growth_global_0
    fee_growth_global_1 = pool.fee_growth_global_1
    crossings = []

    while amount_remaining > 0 and sqrt_price != limit:
        step_start_price = sqrt_price
        next_tick = pool.next_initialized_tick(tick, lte=zero_for_one)
        initialized = next_tick is not None
        if not initialized:
            next_tick = MIN_TICK if zero_for_one else MAX_TICK
        sqrt_price_next_tick = tick_to_sqrt_price(next_tick)

        if zero_for_one:
            target = max(sqrt_price_next_tick, limit)
        else:
            target = min(sqrt_price_next_tick, limit)

        step = compute_swap_step(sqrt_price, target, liquidity, amount_remaining, pool.fee_rate)
        sqrt_price = step.sqrt_price_next
        amount_remaining -= step.amount_in + step.fee_amount
        principal_in += step.amount_in
        amount_out += step.amount_out
        fee_paid += step.fee_amount

        if liquidity > 0 and step.fee_amount > 0:
            growth = mul_div(step.fee_amount, Q128, liquidity)
            if zero_for_one:
                fee_growth_global_0 += growth
            else:
                fee_growth_global_1 += growth

        if sqrt_price == sqrt_price_next_tick:
            if initialized:
                liquidity_net = pool.get_tick(next_tick).liquidity_net
                if zero_for_one:
                    liquidity_net = -liquidity_net
                try:
                    liquidity = add_delta(liquidity, liquidity_net)
                except InvariantError as exc:
                    raise InvariantError(
                        f"active liquidity underflow crossing tick {next_tick}: {exc.message}"
                    ) from exc
                crossings.append((next_tick, fee_growth_global_0, fee_growth_global_1))
                logger.debug(
                    "crossed tick %d, active liquidity now %d", next_tick, liquidity
                )
            tick = next_tick - 1 if zero_for_one else next_tick
        elif sqrt_price != step_start_price:
            tick = sqrt_price_to_tick(sqrt_price)

    return SwapResult(
        direction=direction,
        amount_in_consumed=amount_in - amount_remaining,
        amount_out=amount_out,
        fee_paid=fee_paid,
        final_sqrt_price=sqrt_price,
        final_tick=tick,
        ticks_crossed=len(crossings),
        amount_remaining=amount_remaining,
        principal_in=principal_in,
        final_liquidity=liquidity,
        fee_growth_global_0=fee_growth_global_0,
        fee_growth_global_1=fee_growth_global_1,
        start_sqrt_price=pool.sqrt_price,
        crossings=tuple(crossings),
    )


def commit_swap(pool: PoolState, result: SwapResult) -> None:
    """Write a simulated swap into the pool; nothing is written if it cannot be applied"""
    if result.start_sqrt_price != pool.sqrt_price:
        raise InvariantError(
            "swap result is stale: pool price moved since it was simulated"
        )
    for index, _, _ in result.crossings:
        if not pool.get_tick(index).initialized:
            raise InvariantError(f"crossing uninitialized tick {index}")

    for index, fee_growth_0, fee_growth_1 in result.crossings:
        pool.cross_tick(index, fee_growth_0, fee_growth_1)

    pool.sqrt_price = result.final_sqrt_price
    pool.current_tick = result.final_tick
    pool.liquidity = result.final_liquidity
    pool.fee_growth_global_0 = result.fee_growth_global_0
    pool.fee_growth_global_1 = result.fee_growth_global_1
