"""
Pool reconstruction

Two ways to get a starting pool when the replay window does not begin at pool
creation:

- build_pool_from_positions: seed a pool from a snapshot of live positions
  and the price at snapshot time
- rewind: walk events newest to oldest applying the inverse of each, to move a
  known pool state back in time

Rewinding is approximate. A swap is undone by swapping its recorded output back
in the opposite direction, which restores the price only up to fees, and fee
growth accumulators keep growing instead of shrinking.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Tuple

from .errors import InvariantError
from .event_applicator import apply_event
from .events import (
    AddLiquidityEvent,
    CollectFeesEvent,
    PoolEvent,
    RemoveLiquidityEvent,
    SwapEvent,
)
from .pool_state import PoolState
from .position_ledger import PositionLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LivePosition:
    """A position as reported by a positions snapshot"""
    position_id: str
    owner: str
    lower_tick: int
    upper_tick: int
    liquidity: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LivePosition":
        lower = int(data.get('lower_tick', data.get('tickLower')))
        upper = int(data.get('upper_tick', data.get('tickUpper')))
        owner = str(data.get('owner', ''))
        position_id = data.get('position_id', data.get('positionId'))
        return cls(
            position_id=str(position_id) if position_id is not None else f"{owner}_{lower}_{upper}",
            owner=owner,
            lower_tick=lower,
            upper_tick=upper,
            liquidity=int(data['liquidity']),
        )


def build_pool_from_positions(
    positions: Iterable[LivePosition],
    sqrt_price: int,
    tick_spacing: int = 1,
    fee_rate: int = 3000
) -> Tuple[PoolState, PositionLedger]:
    """
    Pool and ledger holding the given positions at the given price.

    Positions with zero liquidity are skipped.
    """
    pool = PoolState.from_sqrt_price(sqrt_price, tick_spacing=tick_spacing, fee_rate=fee_rate)
    ledger = PositionLedger()
    count = 0
    for position in positions:
        if position.liquidity <= 0:
            continue
        apply_event(pool, ledger, AddLiquidityEvent(
            lower_tick=position.lower_tick,
            upper_tick=position.upper_tick,
            liquidity_delta=position.liquidity,
            position_id=position.position_id,
            owner=position.owner,
        ))
        count += 1

    logger.info(
        "Built pool from %d positions: tick=%d active liquidity=%d",
        count, pool.current_tick, pool.liquidity
    )
    return pool, ledger


def _range_for(ledger: PositionLedger, position_id: str) -> Tuple[str, int, int]:
    position = ledger.get(position_id)
    if position is not None:
        return position.owner, position.lower_tick, position.upper_tick

    # ids derived as owner_lower_upper
    parts = position_id.rsplit('_', 2)
    if len(parts) == 3:
        try:
            return parts[0], int(parts[1]), int(parts[2])
        except ValueError:
            pass
    raise InvariantError(f"cannot recover the range of removed position {position_id}")


def inverse_event(ledger: PositionLedger, event: PoolEvent) -> List[PoolEvent]:
    """Events that undo `event` (empty for events with no pool effect)"""
    if isinstance(event, SwapEvent):
        if event.amount_out is None:
            raise InvariantError("cannot rewind a swap without its recorded amount_out", event=event)
        return [SwapEvent(
            amount_in=event.amount_out,
            direction=event.direction.opposite(),
            timestamp=event.timestamp,
            sequence=event.sequence,
        )]
    if isinstance(event, AddLiquidityEvent):
        return [RemoveLiquidityEvent(
            position_id=event.position_id,
            liquidity_delta=event.liquidity_delta,
            timestamp=event.timestamp,
            sequence=event.sequence,
        )]
    if isinstance(event, RemoveLiquidityEvent):
        if event.liquidity_delta == 0:
            return []
        owner, lower, upper = _range_for(ledger, event.position_id)
        return [AddLiquidityEvent(
            lower_tick=lower,
            upper_tick=upper,
            liquidity_delta=event.liquidity_delta,
            position_id=event.position_id,
            owner=owner,
            timestamp=event.timestamp,
            sequence=event.sequence,
        )]
    if isinstance(event, CollectFeesEvent):
        return []
    raise TypeError(f"Unknown event type: {type(event).__name__}")


def rewind(pool: PoolState, ledger: PositionLedger, events: Iterable[PoolEvent]) -> int:
    """
    Undo events, newest first, mutating pool and ledger.

    Args:
        pool: State after the last of `events`
        ledger: Positions at that state
        events: Events in stream order (oldest first)

    Returns:
        Number of events undone
    """
    undone = 0
    for event in reversed(list(events)):
        for inverse in inverse_event(ledger, event):
            apply_event(pool, ledger, inverse)
        undone += 1

    logger.info("Rewound %d events: tick=%d active liquidity=%d", undone, pool.current_tick, pool.liquidity)
    return undone
