# CLMM pool replay and strategy backtester
from .backtest_engine import BacktestEngine, BacktestResult, EngineState, compare_strategies
from .config import BacktestConfig, DecisionPolicy, PoolConfig, load_config
from .errors import (
    BacktestError,
    DataGapWarning,
    FixedPointOverflowError,
    InvalidActionError,
    InvariantError,
)
from .event_applicator import apply_event
from .event_processor import EventProcessor, parse_event
from .events import (
    AddLiquidityEvent,
    CollectFeesEvent,
    RemoveLiquidityEvent,
    SwapDirection,
    SwapEvent,
)
from .pool_state import PoolState, Tick
from .position_ledger import Position, PositionLedger
from .swap_simulator import SwapResult, commit_swap, simulate_swap

__version__ = "0.1.0"
