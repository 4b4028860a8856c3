"""
Configuration

Two dataclasses: PoolConfig describes the pool the replay starts from,
BacktestConfig the strategy run. Both load from a JSON file of the form

    {"pool": {...}, "backtest": {...}}

CLI flags override values from the file.
"""
import json
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .pool_state import PoolState


class DecisionPolicy(Enum):
    """When the strategy is consulted between events"""
    EVERY_N_EVENTS = "every_n_events"
    TIME_INTERVAL = "time_interval"
    LIQUIDITY_EVENTS = "liquidity_events"


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    unknown = set(data) - names
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {', '.join(sorted(unknown))}")
    return dict(data)


@dataclass
class PoolConfig:
    """Starting pool"""
    initial_sqrt_price: Optional[int] = None
    initial_tick: Optional[int] = None
    tick_spacing: int = 1
    fee_rate: int = 3000  # pips
    token0_decimals: int = 0
    token1_decimals: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PoolConfig":
        values = _known_fields(cls, data)
        if values.get('initial_sqrt_price') is not None:
            values['initial_sqrt_price'] = int(values['initial_sqrt_price'])
        return cls(**values)

    def build_pool(self) -> PoolState:
        if self.initial_sqrt_price is not None:
            return PoolState.from_sqrt_price(
                self.initial_sqrt_price, tick_spacing=self.tick_spacing, fee_rate=self.fee_rate
            )
        return PoolState.from_tick(
            self.initial_tick or 0, tick_spacing=self.tick_spacing, fee_rate=self.fee_rate
        )


@dataclass
class BacktestConfig:
    """
    Strategy run settings.

    Attributes:
        initial_token0: Starting wallet balance of token0 (raw units)
        initial_token1: Starting wallet balance of token1 (raw units)
        strategy: Registry name of the strategy
        strategy_params: Parameter blob handed to the strategy at every
            decision point; each strategy reads the keys it recognises
        decision_policy: When the strategy is consulted
        decision_every_n_events: Interval for EVERY_N_EVENTS
        decision_interval_seconds: Interval for TIME_INTERVAL
        record_every: Record a portfolio snapshot every N events
        rebalance_tolerance: Skip the pre-open swap when the wallet's token0
            value share is within this distance of the target share
        swap_slippage_pips: Haircut applied to the output of pre-open swaps
        max_gap_seconds: Report a data gap when consecutive events are further
            apart than this; None disables the check
        owner: Owner tag of strategy positions
        token0_decimals: Decimals used for display values
        token1_decimals: Decimals used for display values
        token1_usd_price: USD price of token1 when no price lookup is given
    """
    initial_token0: int = 0
    initial_token1: int = 0
    strategy: str = "no_rebalance"
    strategy_params: Dict[str, Any] = field(default_factory=dict)
    decision_policy: DecisionPolicy = DecisionPolicy.EVERY_N_EVENTS
    decision_every_n_events: int = 1
    decision_interval_seconds: int = 3600
    record_every: int = 100
    rebalance_tolerance: float = 0.05
    swap_slippage_pips: int = 0
    max_gap_seconds: Optional[int] = None
    owner: str = "strategy"
    token0_decimals: int = 0
    token1_decimals: int = 0
    token1_usd_price: float = 1.0

    def __post_init__(self):
        if isinstance(self.decision_policy, str):
            self.decision_policy = DecisionPolicy(self.decision_policy)
        if self.decision_every_n_events <= 0:
            raise ValueError("decision_every_n_events must be positive")
        if self.decision_interval_seconds <= 0:
            raise ValueError("decision_interval_seconds must be positive")
        if self.record_every <= 0:
            raise ValueError("record_every must be positive")
        if self.initial_token0 < 0 or self.initial_token1 < 0:
            raise ValueError("initial balances must be non-negative")
        if not 0 <= self.swap_slippage_pips < 1_000_000:
            raise ValueError("swap_slippage_pips out of range")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BacktestConfig":
        values = _known_fields(cls, data)
        for key in ('initial_token0', 'initial_token1'):
            if key in values:
                values[key] = int(values[key])
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data['decision_policy'] = self.decision_policy.value
        return data


def load_config(path: str) -> Tuple[PoolConfig, BacktestConfig]:
    """Read both configs from a JSON file; missing sections use defaults"""
    with open(Path(path), 'r', encoding='utf-8') as f:
        raw = json.load(f)
    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be an object: {path}")
    return (
        PoolConfig.from_dict(raw.get('pool', {})),
        BacktestConfig.from_dict(raw.get('backtest', {})),
    )
