"""
Base Strategy Interface for CLMM Liquidity Provision Strategies

This module defines the abstract base class that all strategies must implement,
and the actions a strategy can return. The engine turns actions into synthetic
pool events; a strategy never touches the pool directly.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from ..pool_state import PoolSnapshot
from ..position_ledger import Position
from ..tick_math import align_tick, usable_tick_bounds


@dataclass(frozen=True)
class OpenPosition:
    """
    Open a new position funded from the wallet

    Attributes:
        lower_tick: Lower bound of the range (tick)
        upper_tick: Upper bound of the range (tick)
        token0_amount: Token0 budget, None for the whole free balance
        token1_amount: Token1 budget, None for the whole free balance
        position_id: Id to open under, derived from owner and range when None
    """
    lower_tick: int
    upper_tick: int
    token0_amount: Optional[int] = None
    token1_amount: Optional[int] = None
    position_id: Optional[str] = None


@dataclass(frozen=True)
class ClosePosition:
    """Remove all liquidity of a position and collect its fees into the wallet"""
    position_id: str


@dataclass(frozen=True)
class Rebalance:
    """
    Close a position and reopen the proceeds in a new range

    Attributes:
        position_id: Position to close
        lower_tick: New lower bound
        upper_tick: New upper bound
        token0_amount: Token0 budget for the new position, None for everything
        token1_amount: Token1 budget for the new position, None for everything
        new_position_id: Id of the new position, reuses position_id when None
    """
    position_id: str
    lower_tick: int
    upper_tick: int
    token0_amount: Optional[int] = None
    token1_amount: Optional[int] = None
    new_position_id: Optional[str] = None

    def expand(self) -> List[Union[ClosePosition, OpenPosition]]:
        """The equivalent close + open pair"""
        return [
            ClosePosition(self.position_id),
            OpenPosition(
                lower_tick=self.lower_tick,
                upper_tick=self.upper_tick,
                token0_amount=self.token0_amount,
                token1_amount=self.token1_amount,
                position_id=self.new_position_id or self.position_id,
            ),
        ]


Action = Union[OpenPosition, ClosePosition, Rebalance]


class Strategy(ABC):
    """
    Abstract base class for all liquidity provision strategies

    A strategy sees a read-only pool snapshot and copies of its own positions,
    and answers with a list of actions. Strategies may keep their own state
    between calls.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Strategy name for reporting"""
        pass

    @abstractmethod
    def decide(
        self,
        pool: PoolSnapshot,
        positions: List[Position],
        timestamp: int,
        config: Optional[Dict[str, Any]]
    ) -> List[Action]:
        """
        Decide what to do at a decision point

        Args:
            pool: Snapshot of the pool after the latest event
            positions: Copies of the positions this strategy owns
            timestamp: Timestamp of the latest event
            config: The strategy's own parameters (BacktestConfig.strategy_params);
                keys a strategy does not recognise are ignored

        Returns:
            Actions to execute, in order
        """
        pass

    def finalize(
        self,
        pool: PoolSnapshot,
        positions: List[Position],
        timestamp: int,
        config: Optional[Dict[str, Any]]
    ) -> List[Action]:
        """Called once after the last event; default does nothing"""
        return []

    @staticmethod
    def param(config: Optional[Dict[str, Any]], key: str, default: Any) -> Any:
        """Value of `key` in the config blob, `default` when it is missing or None"""
        if config and config.get(key) is not None:
            return config[key]
        return default

    def centred_range(self, tick: int, width: int, tick_spacing: int):
        """
        Range of roughly `width` ticks centred on `tick`, aligned to tick_spacing

        Returns:
            Tuple of (lower_tick, upper_tick)
        """
        half = max(width // 2 // tick_spacing, 1) * tick_spacing
        base = align_tick(tick, tick_spacing)
        lowest, highest = usable_tick_bounds(tick_spacing)
        lower = max(base - half, lowest)
        upper = min(base + half, highest)
        if lower >= upper:
            upper = lower + tick_spacing
        return lower, upper
