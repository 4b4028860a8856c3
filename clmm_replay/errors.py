"""
Error taxonomy for the replay engine

Anything that means the simulated pool no longer matches a valid CLMM state is
fatal and halts the replay. Only strategy mistakes are recoverable.
"""
from typing import Any, Optional


class BacktestError(Exception):
    """Base class for all replay errors"""


class InvariantError(BacktestError):
    """
    Pool or ledger state diverged from a valid CLMM state.

    Attributes:
        event: The event being applied when the violation was detected
        pool_snapshot: Pool state right before that event
    """

    def __init__(self, message: str, event: Any = None, pool_snapshot: Any = None):
        super().__init__(message)
        self.message = message
        self.event = event
        self.pool_snapshot = pool_snapshot

    def attach(self, event: Any, pool_snapshot: Any) -> "InvariantError":
        """Fill in the diagnosis context if a lower layer did not"""
        if self.event is None:
            self.event = event
        if self.pool_snapshot is None:
            self.pool_snapshot = pool_snapshot
        return self

    def __str__(self) -> str:
        if self.event is None:
            return self.message
        return f"{self.message} (event: {self.event!r})"


class FixedPointOverflowError(BacktestError, OverflowError):
    """A fixed-point value left its declared bit width"""


class InvalidActionError(BacktestError):
    """A strategy action was rejected; the replay continues without it"""

    def __init__(self, message: str, action: Optional[Any] = None):
        super().__init__(message)
        self.action = action


class DataGapWarning(UserWarning):
    """
    The event stream has an ordering or timestamp gap.

    Recorded in the backtest result, never raised by the engine.
    """

    def __init__(self, message: str, timestamp: int = 0, previous_timestamp: int = 0):
        super().__init__(message)
        self.message = message
        self.timestamp = timestamp
        self.previous_timestamp = previous_timestamp

    def to_dict(self) -> dict:
        return {
            'message': self.message,
            'timestamp': self.timestamp,
            'previous_timestamp': self.previous_timestamp,
        }
