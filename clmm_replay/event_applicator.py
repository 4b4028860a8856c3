"""
Apply one event to the pool and the ledger

Every event is validated before anything is written, so a rejected event
leaves both the pool and the ledger exactly as they were.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Union

from .errors import InvariantError
from .events import (
    AddLiquidityEvent,
    CollectFeesEvent,
    PoolEvent,
    RemoveLiquidityEvent,
    SwapEvent,
)
from .fixed_point import add_delta
from .pool_state import PoolState
from .position_ledger import PositionLedger
from .sqrt_price_math import amounts_for_liquidity
from .swap_simulator import SwapResult, commit_swap, simulate_swap
from .tick_math import MAX_TICK, MIN_TICK, tick_to_sqrt_price

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiquidityChange:
    """Liquidity added (amounts owed to the pool) or removed (amounts returned)"""
    position_id: str
    lower_tick: int
    upper_tick: int
    liquidity_delta: int  # negative for removals
    amount0: int
    amount1: int


@dataclass(frozen=True)
class CollectedFees:
    position_id: str
    amount0: int
    amount1: int


EventOutcome = Union[SwapResult, LiquidityChange, CollectedFees]


def range_error(pool: PoolState, lower_tick: int, upper_tick: int) -> Optional[str]:
    """Why [lower_tick, upper_tick) is not a valid position range, or None"""
    if lower_tick >= upper_tick:
        return f"lower tick {lower_tick} must be below upper tick {upper_tick}"
    if lower_tick < MIN_TICK or upper_tick > MAX_TICK:
        return f"range [{lower_tick}, {upper_tick}) outside [{MIN_TICK}, {MAX_TICK}]"
    if lower_tick % pool.tick_spacing or upper_tick % pool.tick_spacing:
        return f"range [{lower_tick}, {upper_tick}) not aligned to tick spacing {pool.tick_spacing}"
    return None


def apply_event(pool: PoolState, ledger: PositionLedger, event: PoolEvent) -> EventOutcome:
    """
    Apply an event, mutating pool and ledger.

    Raises:
        InvariantError: the event cannot be applied to a valid state; the error
            carries the event and a snapshot of the pool before it
    """
    before = pool.snapshot()
    try:
        if isinstance(event, SwapEvent):
            return _apply_swap(pool, event)
        if isinstance(event, AddLiquidityEvent):
            return _apply_add(pool, ledger, event)
        if isinstance(event, RemoveLiquidityEvent):
            return _apply_remove(pool, ledger, event)
        if isinstance(event, CollectFeesEvent):
            return _apply_collect(pool, ledger, event)
    except InvariantError as exc:
        raise exc.attach(event, before)
    raise TypeError(f"Unknown event type: {type(event).__name__}")


def _apply_swap(pool: PoolState, event: SwapEvent) -> SwapResult:
    result = simulate_swap(pool, event.amount_in, event.direction, event.price_limit)
    commit_swap(pool, result)
    if event.amount_out is not None and event.amount_out != result.amount_out:
        logger.debug(
            "swap at %d: recorded amount_out %d, simulated %d",
            event.timestamp, event.amount_out, result.amount_out
        )
    return result


def _apply_add(pool: PoolState, ledger: PositionLedger, event: AddLiquidityEvent) -> LiquidityChange:
    lower, upper, delta = event.lower_tick, event.upper_tick, event.liquidity_delta

    problem = range_error(pool, lower, upper)
    if problem:
        raise InvariantError(f"invalid add liquidity: {problem}")
    if delta <= 0:
        raise InvariantError(f"liquidity delta must be positive: {delta}")

    existing = ledger.get(event.position_id)
    if existing is not None and (existing.lower_tick, existing.upper_tick) != (lower, upper):
        raise InvariantError(
            f"position {event.position_id} exists with range "
            f"[{existing.lower_tick}, {existing.upper_tick})"
        )
    # width checks up front so that nothing is half-written
    add_delta(pool.get_tick(lower).liquidity_gross, delta)
    add_delta(pool.get_tick(upper).liquidity_gross, delta)
    in_range = pool.is_in_range(lower, upper)
    if in_range:
        add_delta(pool.liquidity, delta)

    pool.update_tick(lower, delta, upper=False)
    pool.update_tick(upper, delta, upper=True)
    position = ledger.open(pool, event.position_id, event.owner, lower, upper)
    ledger.settle(pool, event.position_id)
    position.liquidity = add_delta(position.liquidity, delta)
    if in_range:
        pool.liquidity = add_delta(pool.liquidity, delta)

    amount0, amount1 = amounts_for_liquidity(
        pool.sqrt_price, tick_to_sqrt_price(lower), tick_to_sqrt_price(upper), delta, round_up=True
    )
    return LiquidityChange(event.position_id, lower, upper, delta, amount0, amount1)


def _apply_remove(pool: PoolState, ledger: PositionLedger, event: RemoveLiquidityEvent) -> LiquidityChange:
    position = ledger.get(event.position_id)
    if position is None:
        raise InvariantError(f"remove liquidity from unknown position {event.position_id}")
    delta = event.liquidity_delta
    if delta < 0:
        raise InvariantError(f"liquidity delta must be non-negative: {delta}")
    if delta > position.liquidity:
        raise InvariantError(
            f"removing {delta} from position {event.position_id} "
            f"holding {position.liquidity}"
        )
    lower, upper = position.lower_tick, position.upper_tick
    for index in (lower, upper):
        if pool.get_tick(index).liquidity_gross < delta:
            raise InvariantError(f"tick {index} liquidity_gross would go negative")
    in_range = pool.is_in_range(lower, upper)
    if in_range and pool.liquidity < delta:
        raise InvariantError(f"active liquidity {pool.liquidity} below removal {delta}")

    ledger.settle(pool, event.position_id)
    if delta > 0:
        position.liquidity -= delta
        for index, is_upper in ((lower, False), (upper, True)):
            pool.update_tick(index, -delta, upper=is_upper)
            if pool.get_tick(index).liquidity_gross == 0:
                pool.clear_tick(index)
        if in_range:
            pool.liquidity = add_delta(pool.liquidity, -delta)

    amount0, amount1 = amounts_for_liquidity(
        pool.sqrt_price, tick_to_sqrt_price(lower), tick_to_sqrt_price(upper), delta
    )
    ledger.discard_if_empty(event.position_id)
    return LiquidityChange(event.position_id, lower, upper, -delta, amount0, amount1)


def _apply_collect(pool: PoolState, ledger: PositionLedger, event: CollectFeesEvent) -> CollectedFees:
    if event.position_id not in ledger:
        raise InvariantError(f"collect fees from unknown position {event.position_id}")

    position = ledger.settle(pool, event.position_id)
    amount0, amount1 = position.tokens_owed_0, position.tokens_owed_1
    position.tokens_owed_0 = 0
    position.tokens_owed_1 = 0
    ledger.discard_if_empty(event.position_id)
    return CollectedFees(event.position_id, amount0, amount1)
