"""
CLMM pool state

Keeps the global pool state (sqrt price, tick, active liquidity, fee growth)
and the sparse map of initialized ticks. Positions live in the ledger; the pool
only knows the liquidity they contribute at each boundary.
"""
import bisect
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Dict, List, Optional

from .errors import InvariantError
from .fixed_point import add_delta
from .tick_math import (
    MAX_TICK,
    MIN_TICK,
    sqrt_price_to_price,
    sqrt_price_to_tick,
    tick_to_sqrt_price,
)

FEE_RATE_DENOMINATOR = 1_000_000  # fee_rate is in pips: 3000 = 0.3%


@dataclass
class Tick:
    """Per-boundary state"""
    liquidity_gross: int = 0
    liquidity_net: int = 0
    fee_growth_outside_0: int = 0
    fee_growth_outside_1: int = 0

    @property
    def initialized(self) -> bool:
        return self.liquidity_gross > 0


@dataclass(frozen=True)
class PoolSnapshot:
    """Read-only view of the pool handed to strategies and attached to errors"""
    sqrt_price: int
    current_tick: int
    liquidity: int
    fee_growth_global_0: int
    fee_growth_global_1: int
    tick_spacing: int
    fee_rate: int
    initialized_ticks: int = 0

    @property
    def price(self) -> Decimal:
        """Raw price, token1 per token0"""
        return sqrt_price_to_price(self.sqrt_price)


@dataclass
class PoolState:
    """
    Mutable pool state.

    Invariant: tick_to_sqrt_price(current_tick) <= sqrt_price, and
    sqrt_price < tick_to_sqrt_price(current_tick + 1) except directly after
    a downward crossing, where the price sits exactly on a boundary and the
    tick is one below it.
    """
    sqrt_price: int
    current_tick: int
    liquidity: int = 0
    fee_growth_global_0: int = 0
    fee_growth_global_1: int = 0
    tick_spacing: int = 1
    fee_rate: int = 3000
    ticks: Dict[int, Tick] = field(default_factory=dict)
    _sorted_ticks: List[int] = field(default_factory=list, init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.tick_spacing <= 0:
            raise ValueError(f"tick_spacing must be positive: {self.tick_spacing}")
        if not 0 <= self.fee_rate < FEE_RATE_DENOMINATOR:
            raise ValueError(f"fee_rate out of range: {self.fee_rate}")
        self._sorted_ticks = sorted(i for i, t in self.ticks.items() if t.initialized)

    @classmethod
    def from_sqrt_price(
        cls,
        sqrt_price: int,
        tick_spacing: int = 1,
        fee_rate: int = 3000
    ) -> "PoolState":
        return cls(
            sqrt_price=sqrt_price,
            current_tick=sqrt_price_to_tick(sqrt_price),
            tick_spacing=tick_spacing,
            fee_rate=fee_rate,
        )

    @classmethod
    def from_tick(cls, tick: int, tick_spacing: int = 1, fee_rate: int = 3000) -> "PoolState":
        return cls(
            sqrt_price=tick_to_sqrt_price(tick),
            current_tick=tick,
            tick_spacing=tick_spacing,
            fee_rate=fee_rate,
        )

    # ------------------------------------------------------------------
    # Tick index
    # ------------------------------------------------------------------

    def get_tick(self, index: int) -> Tick:
        """Tick at index; an uninitialized tick reads as all zeros"""
        return self.ticks.get(index) or Tick()

    def initialized_ticks(self) -> List[int]:
        return list(self._sorted_ticks)

    def next_initialized_tick(self, tick: int, lte: bool) -> Optional[int]:
        """
        Nearest initialized tick.

        Args:
            tick: Starting tick
            lte: Search at or below `tick` when True, strictly above when False

        Returns:
            The tick index, or None when there is none in that direction
        """
        if lte:
            i = bisect.bisect_right(self._sorted_ticks, tick)
            return self._sorted_ticks[i - 1] if i > 0 else None
        i = bisect.bisect_right(self._sorted_ticks, tick)
        return self._sorted_ticks[i] if i < len(self._sorted_ticks) else None

    def update_tick(self, index: int, liquidity_delta: int, upper: bool) -> bool:
        """
        Add a position boundary's liquidity to a tick.

        Returns True when the tick flipped between initialized and not.
        """
        if index < MIN_TICK or index > MAX_TICK:
            raise InvariantError(f"tick {index} out of range")

        info = self.ticks.get(index)
        if info is None:
            info = Tick()
        gross_before = info.liquidity_gross
        gross_after = gross_before + liquidity_delta
        if gross_after < 0:
            raise InvariantError(
                f"tick {index} liquidity_gross would go negative: "
                f"{gross_before} + ({liquidity_delta})"
            )
        info.liquidity_gross = add_delta(gross_before, liquidity_delta)

        if gross_before == 0 and gross_after > 0:
            # by convention all growth before initialization happened below the tick
            if index <= self.current_tick:
                info.fee_growth_outside_0 = self.fee_growth_global_0
                info.fee_growth_outside_1 = self.fee_growth_global_1
            else:
                info.fee_growth_outside_0 = 0
                info.fee_growth_outside_1 = 0

        if upper:
            info.liquidity_net -= liquidity_delta
        else:
            info.liquidity_net += liquidity_delta

        self.ticks[index] = info
        flipped = (gross_before == 0) != (gross_after == 0)
        if flipped and gross_after > 0:
            bisect.insort(self._sorted_ticks, index)
        return flipped

    def clear_tick(self, index: int) -> None:
        self.ticks.pop(index, None)
        i = bisect.bisect_left(self._sorted_ticks, index)
        if i < len(self._sorted_ticks) and self._sorted_ticks[i] == index:
            del self._sorted_ticks[i]

    def cross_tick(self, index: int, fee_growth_global_0: int, fee_growth_global_1: int) -> int:
        """Flip fee_growth_outside to the other side; returns liquidity_net"""
        info = self.ticks.get(index)
        if info is None or not info.initialized:
            raise InvariantError(f"crossing uninitialized tick {index}")
        info.fee_growth_outside_0 = fee_growth_global_0 - info.fee_growth_outside_0
        info.fee_growth_outside_1 = fee_growth_global_1 - info.fee_growth_outside_1
        return info.liquidity_net

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def snapshot(self) -> PoolSnapshot:
        return PoolSnapshot(
            sqrt_price=self.sqrt_price,
            current_tick=self.current_tick,
            liquidity=self.liquidity,
            fee_growth_global_0=self.fee_growth_global_0,
            fee_growth_global_1=self.fee_growth_global_1,
            tick_spacing=self.tick_spacing,
            fee_rate=self.fee_rate,
            initialized_ticks=len(self._sorted_ticks),
        )

    def copy(self) -> "PoolState":
        """Deep copy; tick objects are not shared"""
        return replace(
            self,
            ticks={i: replace(t) for i, t in self.ticks.items()},
        )

    def is_in_range(self, lower_tick: int, upper_tick: int) -> bool:
        return lower_tick <= self.current_tick < upper_tick

    def check_invariants(self) -> None:
        """Raise InvariantError if the state is not a valid CLMM state"""
        if self.liquidity < 0:
            raise InvariantError(f"negative active liquidity: {self.liquidity}")
        if not MIN_TICK <= self.current_tick <= MAX_TICK:
            raise InvariantError(f"current tick {self.current_tick} out of range")

        lower_price = tick_to_sqrt_price(self.current_tick)
        if self.current_tick < MAX_TICK:
            upper_price = tick_to_sqrt_price(self.current_tick + 1)
        else:
            upper_price = lower_price + 1
        if not lower_price <= self.sqrt_price <= upper_price:
            raise InvariantError(
                f"sqrt price {self.sqrt_price} inconsistent with tick {self.current_tick}"
            )

        running = 0
        for index in self._sorted_ticks:
            if index <= self.current_tick:
                running += self.ticks[index].liquidity_net
        if running != self.liquidity:
            raise InvariantError(
                f"active liquidity {self.liquidity} != sum of crossed liquidity_net {running}"
            )
