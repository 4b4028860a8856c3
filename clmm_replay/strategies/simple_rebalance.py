"""
Simple rebalance strategy

Keeps one position of a fixed width. Whenever the pool tick leaves the range,
the position is closed and reopened centred on the new tick.

Recognised config keys: range, close_at_end.
"""
from typing import Any, Dict, List, Optional

from ..pool_state import PoolSnapshot
from ..position_ledger import Position
from .base_strategy import Action, ClosePosition, OpenPosition, Rebalance, Strategy

POSITION_ID = "simple_rebalance"


class SimpleRebalanceStrategy(Strategy):
    """Re-centre the range each time the price exits it"""

    def __init__(self, range: int = 1000, close_at_end: bool = True):
        if range <= 0:
            raise ValueError(f"range must be positive: {range}")
        self.range = range
        self.close_at_end = close_at_end
        self.rebalance_count = 0

    @property
    def name(self) -> str:
        return "Simple Rebalance"

    def decide(
        self,
        pool: PoolSnapshot,
        positions: List[Position],
        timestamp: int,
        config: Optional[Dict[str, Any]]
    ) -> List[Action]:
        width = int(self.param(config, 'range', self.range))
        if width <= 0:
            raise ValueError(f"range must be positive: {width}")

        current = next((p for p in positions if p.position_id == POSITION_ID), None)
        lower, upper = self.centred_range(pool.current_tick, width, pool.tick_spacing)

        if current is None:
            return [OpenPosition(lower, upper, position_id=POSITION_ID)]

        if current.is_in_range(pool.current_tick):
            return []

        self.rebalance_count += 1
        return [Rebalance(POSITION_ID, lower, upper)]

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
