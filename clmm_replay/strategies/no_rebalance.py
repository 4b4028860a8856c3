"""
No-rebalance strategy

Provides liquidity once in a fixed range and holds it until the end of the
data. The baseline every other strategy is compared against.

Recognised config keys: lower_tick, upper_tick, token_a_amount,
token_b_amount, width, close_at_end. Constructor arguments are the defaults.
"""
from typing import Any, Dict, List, Optional

from ..pool_state import PoolSnapshot
from ..position_ledger import Position
from .base_strategy import Action, ClosePosition, OpenPosition, Strategy

POSITION_ID = "no_rebalance"


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


class NoRebalanceStrategy(Strategy):
    """Open one position and never open another once it exists"""

    def __init__(
        self,
        lower_tick: Optional[int] = None,
        upper_tick: Optional[int] = None,
        token_a_amount: Optional[int] = None,
        token_b_amount: Optional[int] = None,
        width: int = 1000,
        close_at_end: bool = True
    ):
        """
        Args:
            lower_tick: Fixed lower bound; centred on the first price when None
            upper_tick: Fixed upper bound; centred on the first price when None
            token_a_amount: Token0 to provide, None for the whole wallet
            token_b_amount: Token1 to provide, None for the whole wallet
            width: Range width in ticks when no bounds are given
            close_at_end: Close the position when the data runs out
        """
        if (lower_tick is None) != (upper_tick is None):
            raise ValueError("lower_tick and upper_tick must be given together")
        self.lower_tick = lower_tick
        self.upper_tick = upper_tick
        self.token_a_amount = token_a_amount
        self.token_b_amount = token_b_amount
        self.width = width
        self.close_at_end = close_at_end
        self.opened = False

    @property
    def name(self) -> str:
        return "No Rebalance"

    def decide(
        self,
        pool: PoolSnapshot,
        positions: List[Position],
        timestamp: int,
        config: Optional[Dict[str, Any]]
    ) -> List[Action]:
        # a rejected open is retried at the next decision point
        if any(p.position_id == POSITION_ID for p in positions):
            self.opened = True
        if self.opened:
            return []

        lower = _optional_int(self.param(config, 'lower_tick', self.lower_tick))
        upper = _optional_int(self.param(config, 'upper_tick', self.upper_tick))
        if (lower is None) != (upper is None):
            raise ValueError("lower_tick and upper_tick must be given together")
        if lower is None:
            width = int(self.param(config, 'width', self.width))
            lower, upper = self.centred_range(pool.current_tick, width, pool.tick_spacing)

        return [OpenPosition(
            lower_tick=lower,
            upper_tick=upper,
            token0_amount=_optional_int(self.param(config, 'token_a_amount', self.token_a_amount)),
            token1_amount=_optional_int(self.param(config, 'token_b_amount', self.token_b_amount)),
            position_id=POSITION_ID,
        )]

    def finalize(
        self,
        pool: PoolSnapshot,
        positions: List[Position],
        timestamp: int,
        config: Optional[Dict[str, Any]]
    ) -> List[Action]:
        if not self.param(config, 'close_at_end', self.close_at_end):
            return []
        return [ClosePosition(p.position_id) for p in positions if p.position_id == POSITION_ID]
