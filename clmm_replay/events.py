"""
Pool events

Historical events come from the event stream; synthetic ones are generated from
strategy actions and carry synthetic=True. Both go through the same applicator.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union


class SwapDirection(Enum):
    ZERO_FOR_ONE = "zero_for_one"  # token0 in, token1 out, price falls
    ONE_FOR_ZERO = "one_for_zero"  # token1 in, token0 out, price rises

    @property
    def zero_for_one(self) -> bool:
        return self is SwapDirection.ZERO_FOR_ONE

    def opposite(self) -> "SwapDirection":
        if self is SwapDirection.ZERO_FOR_ONE:
            return SwapDirection.ONE_FOR_ZERO
        return SwapDirection.ZERO_FOR_ONE


def make_position_id(owner: str, lower_tick: int, upper_tick: int) -> str:
    return f"{owner}_{lower_tick}_{upper_tick}"


@dataclass(frozen=True)
class SwapEvent:
    amount_in: int
    direction: SwapDirection
    price_limit: Optional[int] = None
    amount_out: Optional[int] = None  # as recorded on chain, if known
    timestamp: int = 0
    sequence: int = 0
    synthetic: bool = False

    @property
    def order_key(self) -> Tuple[int, int]:
        return (self.timestamp, self.sequence)


@dataclass(frozen=True)
class AddLiquidityEvent:
    lower_tick: int
    upper_tick: int
    liquidity_delta: int
    position_id: str = ""
    owner: str = ""
    timestamp: int = 0
    sequence: int = 0
    synthetic: bool = False

    def __post_init__(self):
        if not self.position_id:
            object.__setattr__(
                self, 'position_id',
                make_position_id(self.owner, self.lower_tick, self.upper_tick)
            )

    @property
    def order_key(self) -> Tuple[int, int]:
        return (self.timestamp, self.sequence)


@dataclass(frozen=True)
class RemoveLiquidityEvent:
    position_id: str
    liquidity_delta: int
    timestamp: int = 0
    sequence: int = 0
    synthetic: bool = False

    @property
    def order_key(self) -> Tuple[int, int]:
        return (self.timestamp, self.sequence)


@dataclass(frozen=True)
class CollectFeesEvent:
    position_id: str
    timestamp: int = 0
    sequence: int = 0
    synthetic: bool = False

    @property
    def order_key(self) -> Tuple[int, int]:
        return (self.timestamp, self.sequence)


PoolEvent = Union[SwapEvent, AddLiquidityEvent, RemoveLiquidityEvent, CollectFeesEvent]

LIQUIDITY_EVENT_TYPES = (AddLiquidityEvent, RemoveLiquidityEvent)
