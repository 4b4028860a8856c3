"""
Position and fee ledger

Fees are never pushed to positions when a swap happens. A position stores the
fee growth inside its range at its last settlement; settling multiplies the
growth since then by its liquidity. The pool only ever updates two ticks and
two global accumulators per swap, regardless of how many positions exist.
"""
import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from .errors import InvariantError
from .fixed_point import Q128, mul_div
from .pool_state import PoolState
from .sqrt_price_math import amounts_for_liquidity
from .tick_math import tick_to_sqrt_price

logger = logging.getLogger(__name__)


@dataclass
class Position:
    """LP position"""
    position_id: str
    owner: str
    lower_tick: int
    upper_tick: int
    liquidity: int = 0
    # fee growth inside the range at the last settlement (Q128)
    fee_growth_inside_0_last: int = 0
    fee_growth_inside_1_last: int = 0
    # settled, not yet collected
    tokens_owed_0: int = 0
    tokens_owed_1: int = 0

    @property
    def is_empty(self) -> bool:
        return self.liquidity == 0 and self.tokens_owed_0 == 0 and self.tokens_owed_1 == 0

    def is_in_range(self, current_tick: int) -> bool:
        return self.lower_tick <= current_tick < self.upper_tick


def fee_growth_inside(pool: PoolState, lower_tick: int, upper_tick: int) -> Tuple[int, int]:
    """
    Fee growth per unit of liquidity accumulated inside [lower_tick, upper_tick).

    inside = global - below(lower) - above(upper), where the outside values are
    read relative to the current tick. Intermediate values can be negative;
    only differences between two readings are meaningful.
    """
    lower = pool.get_tick(lower_tick)
    upper = pool.get_tick(upper_tick)
    global_0 = pool.fee_growth_global_0
    global_1 = pool.fee_growth_global_1

    if pool.current_tick >= lower_tick:
        below_0 = lower.fee_growth_outside_0
        below_1 = lower.fee_growth_outside_1
    else:
        below_0 = global_0 - lower.fee_growth_outside_0
        below_1 = global_1 - lower.fee_growth_outside_1

    if pool.current_tick < upper_tick:
        above_0 = upper.fee_growth_outside_0
        above_1 = upper.fee_growth_outside_1
    else:
        above_0 = global_0 - upper.fee_growth_outside_0
        above_1 = global_1 - upper.fee_growth_outside_1

    return (global_0 - below_0 - above_0, global_1 - below_1 - above_1)


def _fees_since(position: Position, inside_0: int, inside_1: int) -> Tuple[int, int]:
    if position.liquidity == 0:
        # boundary ticks may have been cleared and re-seeded; nothing accrues anyway
        return (0, 0)
    delta_0 = inside_0 - position.fee_growth_inside_0_last
    delta_1 = inside_1 - position.fee_growth_inside_1_last
    if delta_0 < 0 or delta_1 < 0:
        raise InvariantError(
            f"fee growth inside decreased for position {position.position_id}: "
            f"({delta_0}, {delta_1})"
        )
    return (
        mul_div(position.liquidity, delta_0, Q128),
        mul_div(position.liquidity, delta_1, Q128),
    )


class PositionLedger:
    """All positions in the pool, historical and strategy-owned, keyed by id"""

    def __init__(self):
        self.positions: Dict[str, Position] = {}

    def __contains__(self, position_id: str) -> bool:
        return position_id in self.positions

    def __len__(self) -> int:
        return len(self.positions)

    def __eq__(self, other) -> bool:
        if not isinstance(other, PositionLedger):
            return NotImplemented
        return self.positions == other.positions

    def get(self, position_id: str) -> Optional[Position]:
        return self.positions.get(position_id)

    def open(self, pool: PoolState, position_id: str, owner: str, lower_tick: int, upper_tick: int) -> Position:
        """Get a position, creating it with the current fee growth inside as its baseline"""
        position = self.positions.get(position_id)
        if position is not None:
            if position.lower_tick != lower_tick or position.upper_tick != upper_tick:
                raise InvariantError(
                    f"position {position_id} exists with range "
                    f"[{position.lower_tick}, {position.upper_tick}), "
                    f"not [{lower_tick}, {upper_tick})"
                )
            return position

        inside_0, inside_1 = fee_growth_inside(pool, lower_tick, upper_tick)
        position = Position(
            position_id=position_id,
            owner=owner,
            lower_tick=lower_tick,
            upper_tick=upper_tick,
            fee_growth_inside_0_last=inside_0,
            fee_growth_inside_1_last=inside_1,
        )
        self.positions[position_id] = position
        return position

    def discard(self, position_id: str) -> None:
        self.positions.pop(position_id, None)

    def discard_if_empty(self, position_id: str) -> bool:
        position = self.positions.get(position_id)
        if position is not None and position.is_empty:
            del self.positions[position_id]
            return True
        return False

    def settle(self, pool: PoolState, position_id: str) -> Position:
        """
        Move fees earned since the last settlement into tokens_owed.

        Idempotent: a second call without an intervening swap adds nothing.
        """
        position = self.positions.get(position_id)
        if position is None:
            raise KeyError(position_id)

        inside_0, inside_1 = fee_growth_inside(pool, position.lower_tick, position.upper_tick)
        fee_0, fee_1 = _fees_since(position, inside_0, inside_1)
        position.tokens_owed_0 += fee_0
        position.tokens_owed_1 += fee_1
        position.fee_growth_inside_0_last = inside_0
        position.fee_growth_inside_1_last = inside_1
        return position

    def accrued_fees(self, pool: PoolState, position_id: str) -> Tuple[int, int]:
        """Owed plus unsettled fees, without mutating anything"""
        position = self.positions.get(position_id)
        if position is None:
            raise KeyError(position_id)
        inside_0, inside_1 = fee_growth_inside(pool, position.lower_tick, position.upper_tick)
        fee_0, fee_1 = _fees_since(position, inside_0, inside_1)
        return (position.tokens_owed_0 + fee_0, position.tokens_owed_1 + fee_1)

    def positions_for(self, owner: str) -> List[Position]:
        """Copies of the owner's positions; mutating them does not touch the ledger"""
        return [replace(p) for p in self.positions.values() if p.owner == owner]

    def position_amounts(self, pool: PoolState, position_id: str) -> Tuple[int, int]:
        """Principal (token0, token1) the position would return if fully removed now"""
        position = self.positions.get(position_id)
        if position is None:
            raise KeyError(position_id)
        return amounts_for_liquidity(
            pool.sqrt_price,
            tick_to_sqrt_price(position.lower_tick),
            tick_to_sqrt_price(position.upper_tick),
            position.liquidity,
        )

    def total_liquidity(self) -> int:
        return sum(p.liquidity for p in self.positions.values())

    def copy(self) -> "PositionLedger":
        ledger = PositionLedger()
        ledger.positions = {pid: replace(p) for pid, p in self.positions.items()}
        return ledger
