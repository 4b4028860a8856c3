"""
Backtest engine: replay pool events and run a strategy against them

The engine owns the pool, the ledger and the strategy wallet. Historical events
are applied in stream order; at decision points the strategy is consulted and
its actions are turned into synthetic events that go through the same
applicator as historical ones.

States:
    IDLE -> REPLAYING -> (DECISION_POINT <-> REPLAYING) -> FINISHED
    REPLAYING -> CANCELLED when cancel() was requested
"""
import logging
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from enum import Enum
from itertools import chain
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .config import BacktestConfig, DecisionPolicy
from .errors import BacktestError, DataGapWarning, InvalidActionError
from .event_applicator import LiquidityChange, apply_event, range_error
from .events import (
    LIQUIDITY_EVENT_TYPES,
    AddLiquidityEvent,
    CollectFeesEvent,
    PoolEvent,
    RemoveLiquidityEvent,
    SwapDirection,
    SwapEvent,
    make_position_id,
)
from .fixed_point import Q96
from .performance_analyzer import PerformanceAnalyzer
from .pool_state import FEE_RATE_DENOMINATOR, PoolState
from .position_ledger import PositionLedger
from .sqrt_price_math import amounts_for_liquidity, liquidity_for_amounts
from .strategies.base_strategy import Action, ClosePosition, OpenPosition, Rebalance, Strategy
from .swap_simulator import SwapResult, simulate_swap
from .tick_math import sqrt_price_to_price, tick_to_sqrt_price

logger = logging.getLogger(__name__)

# price_usd(token, timestamp) -> USD price of one human unit of the token
PriceLookup = Callable[[str, int], Decimal]

TOKEN0 = "token0"
TOKEN1 = "token1"


class EngineState(Enum):
    IDLE = "idle"
    REPLAYING = "replaying"
    DECISION_POINT = "decision_point"
    FINISHED = "finished"
    CANCELLED = "cancelled"


@dataclass
class Wallet:
    """Free strategy balances (raw units)"""
    token0: int = 0
    token1: int = 0
    fees_collected_0: int = 0
    fees_collected_1: int = 0

    def debit(self, amount0: int, amount1: int) -> None:
        if amount0 > self.token0 or amount1 > self.token1:
            raise InvalidActionError(
                f"insufficient balance: need ({amount0}, {amount1}), "
                f"have ({self.token0}, {self.token1})"
            )
        self.token0 -= amount0
        self.token1 -= amount1

    def credit(self, amount0: int, amount1: int) -> None:
        self.token0 += amount0
        self.token1 += amount1


@dataclass(frozen=True)
class PortfolioSnapshot:
    """
    Strategy holdings at one point in time.

    Balances are wallet plus position principal in raw units; fees_owed are
    uncollected fees. Values are in human units.
    """
    timestamp: int
    token0_balance: int
    token1_balance: int
    fees_owed_0: int
    fees_owed_1: int
    portfolio_value_usd: float
    portfolio_value_token1: float
    price: float
    current_tick: int
    in_range: bool = False


@dataclass
class SwapStats:
    """Historical swap flow, overall and while a strategy position was in range"""
    total_swaps: int = 0
    swaps_in_range: int = 0
    volume_token0: int = 0
    volume_token1: int = 0
    volume_in_range_token0: int = 0
    volume_in_range_token1: int = 0


@dataclass
class BacktestResult:
    """Everything a run produced"""
    strategy_name: str
    config: BacktestConfig
    complete: bool = False
    state: EngineState = EngineState.IDLE
    snapshots: List[PortfolioSnapshot] = field(default_factory=list)
    actions: List[Dict[str, Any]] = field(default_factory=list)
    rejected_actions: List[Dict[str, Any]] = field(default_factory=list)
    data_gaps: List[DataGapWarning] = field(default_factory=list)
    swap_stats: SwapStats = field(default_factory=SwapStats)
    wallet: Wallet = field(default_factory=Wallet)
    initial_price: float = 0.0
    final_price: float = 0.0
    initial_token1_usd: float = 0.0
    final_token1_usd: float = 0.0
    initial_token0_usd: float = 0.0
    final_token0_usd: float = 0.0
    start_timestamp: int = 0
    end_timestamp: int = 0
    events_processed: int = 0
    decision_points: int = 0
    event_counts: Dict[str, int] = field(default_factory=dict)
    metrics: Any = None

    @property
    def value_history(self) -> List[Tuple[int, float]]:
        return [(s.timestamp, s.portfolio_value_usd) for s in self.snapshots]


def target_token0_share(sqrt_price: int, sqrt_lower: int, sqrt_upper: int) -> float:
    """
    Share of a range position's value held in token0 at the given price.

    With L fixed, token0 is worth L*(sqrt_upper - sqrt_p)*sqrt_p/sqrt_upper and
    token1 L*(sqrt_p - sqrt_lower), both in token1 terms.
    """
    if sqrt_price <= sqrt_lower:
        return 1.0
    if sqrt_price >= sqrt_upper:
        return 0.0
    value0 = (sqrt_upper - sqrt_price) * sqrt_price / sqrt_upper
    value1 = sqrt_price - sqrt_lower
    return value0 / (value0 + value1)


class BacktestEngine:
    """Replay engine for one strategy on one pool"""

    def __init__(
        self,
        pool: PoolState,
        strategy: Strategy,
        config: BacktestConfig,
        ledger: Optional[PositionLedger] = None,
        price_usd: Optional[PriceLookup] = None
    ):
        self.pool = pool
        self.ledger = ledger if ledger is not None else PositionLedger()
        self.strategy = strategy
        self.config = config
        self.price_usd = price_usd

        self.state = EngineState.IDLE
        self.wallet = Wallet(config.initial_token0, config.initial_token1)
        self.result = BacktestResult(strategy_name=strategy.name, config=config, wallet=self.wallet)

        self._cancel_requested = False
        self._owned: List[str] = []
        self._synthetic_sequence = 0
        self._last_decision_ts: Optional[int] = None
        self._previous_key: Optional[Tuple[int, int]] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Stop the replay before the next event"""
        self._cancel_requested = True

    def run(self, events: Iterable[PoolEvent]) -> BacktestResult:
        """
        Replay events and return the result.

        Raises:
            InvariantError: the pool diverged from a valid state; fatal
        """
        if self.state is not EngineState.IDLE:
            raise BacktestError(f"engine already used (state {self.state.value})")

        self.state = EngineState.REPLAYING
        logger.info("Starting backtest: %s", self.strategy.name)

        iterator = iter(events)
        first = next(iterator, None)
        start_ts = first.timestamp if first is not None else 0
        self.result.start_timestamp = start_ts
        self.result.end_timestamp = start_ts
        self.result.initial_price = self._display_price()
        self.result.initial_token0_usd, self.result.initial_token1_usd = self._usd_prices(start_ts)

        self._decision_point(start_ts)

        if first is not None:
            for index, event in enumerate(chain([first], iterator), 1):
                if self._cancel_requested:
                    break
                self._process_event(event)
                self.result.end_timestamp = max(self.result.end_timestamp, event.timestamp)

                if index % self.config.record_every == 0:
                    self._record_snapshot(event.timestamp)

                if self._is_decision_point(event, index):
                    self._decision_point(event.timestamp)

        end_ts = self.result.end_timestamp
        if self._cancel_requested:
            self.state = EngineState.CANCELLED
            logger.info("Backtest cancelled after %d events", self.result.events_processed)
        else:
            self._finalize(end_ts)
            self.state = EngineState.FINISHED
            self.result.complete = True

        snapshots = self.result.snapshots
        if snapshots and snapshots[-1].timestamp == end_ts:
            # one point per timestamp; the final state wins
            snapshots.pop()
        self._record_snapshot(end_ts)
        self.result.state = self.state
        self.result.final_price = self._display_price()
        self.result.final_token0_usd, self.result.final_token1_usd = self._usd_prices(end_ts)

        self.result.metrics = PerformanceAnalyzer().analyze_result(self.result)

        logger.info(
            "Backtest finished: %d events, %d actions, %d rejected, %d data gaps",
            self.result.events_processed, len(self.result.actions),
            len(self.result.rejected_actions), len(self.result.data_gaps)
        )
        return self.result

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def _process_event(self, event: PoolEvent) -> None:
        self._check_gap(event)

        in_range = isinstance(event, SwapEvent) and self._any_in_range()
        outcome = apply_event(self.pool, self.ledger, event)
        self.result.events_processed += 1

        kind = type(event).__name__
        self.result.event_counts[kind] = self.result.event_counts.get(kind, 0) + 1

        if isinstance(event, SwapEvent):
            stats = self.result.swap_stats
            zero_for_one = event.direction.zero_for_one
            volume = outcome.amount_in_consumed
            stats.total_swaps += 1
            if zero_for_one:
                stats.volume_token0 += volume
            else:
                stats.volume_token1 += volume
            if in_range:
                stats.swaps_in_range += 1
                if zero_for_one:
                    stats.volume_in_range_token0 += volume
                else:
                    stats.volume_in_range_token1 += volume

    def _check_gap(self, event: PoolEvent) -> None:
        previous_key = self._previous_key
        key = event.order_key
        self._previous_key = key if previous_key is None else max(previous_key, key)
        if previous_key is None:
            return

        previous = previous_key[0]
        message = None
        if event.timestamp < previous:
            message = f"timestamp went backwards: {previous} -> {event.timestamp}"
        elif key < previous_key:
            message = (
                f"sequence went backwards at {event.timestamp}: "
                f"{previous_key[1]} -> {event.sequence}"
            )
        elif self.config.max_gap_seconds is not None and event.timestamp - previous > self.config.max_gap_seconds:
            message = f"no events for {event.timestamp - previous}s ({previous} -> {event.timestamp})"

        if message:
            gap = DataGapWarning(message, timestamp=event.timestamp, previous_timestamp=previous)
            self.result.data_gaps.append(gap)
            logger.warning("Data gap: %s", message)

    def _is_decision_point(self, event: PoolEvent, index: int) -> bool:
        policy = self.config.decision_policy
        if policy is DecisionPolicy.EVERY_N_EVENTS:
            return index % self.config.decision_every_n_events == 0
        if policy is DecisionPolicy.TIME_INTERVAL:
            if self._last_decision_ts is None:
                return True
            return event.timestamp - self._last_decision_ts >= self.config.decision_interval_seconds
        if policy is DecisionPolicy.LIQUIDITY_EVENTS:
            return isinstance(event, LIQUIDITY_EVENT_TYPES)
        return False

    def _decision_point(self, timestamp: int) -> None:
        self.state = EngineState.DECISION_POINT
        self._last_decision_ts = timestamp
        self.result.decision_points += 1

        actions = self.strategy.decide(
            self.pool.snapshot(), self.ledger.positions_for(self.config.owner), timestamp,
            self.config.strategy_params
        )
        self._execute_actions(actions or [], timestamp)
        self.state = EngineState.REPLAYING

    def _finalize(self, timestamp: int) -> None:
        self.state = EngineState.DECISION_POINT
        actions = self.strategy.finalize(
            self.pool.snapshot(), self.ledger.positions_for(self.config.owner), timestamp,
            self.config.strategy_params
        )
        self._execute_actions(actions or [], timestamp)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _execute_actions(self, actions: List[Action], timestamp: int) -> None:
        for action in actions:
            try:
                if isinstance(action, Rebalance):
                    for step in action.expand():
                        self._execute(step, timestamp)
                else:
                    self._execute(action, timestamp)
            except InvalidActionError as e:
                if e.action is None:
                    e.action = action
                logger.warning("Rejected action %r: %s", action, e)
                self.result.rejected_actions.append({
                    'timestamp': timestamp,
                    'action': type(action).__name__,
                    'details': asdict(action),
                    'reason': str(e),
                })

    def _execute(self, action: Action, timestamp: int) -> None:
        if isinstance(action, OpenPosition):
            self._open(action, timestamp)
        elif isinstance(action, ClosePosition):
            self._close(action, timestamp)
        else:
            raise InvalidActionError(f"unsupported action {type(action).__name__}", action)

    def _next_sequence(self) -> int:
        self._synthetic_sequence += 1
        return self._synthetic_sequence

    def _open(self, action: OpenPosition, timestamp: int) -> None:
        owner = self.config.owner
        lower, upper = action.lower_tick, action.upper_tick

        problem = range_error(self.pool, lower, upper)
        if problem:
            raise InvalidActionError(problem, action)

        position_id = action.position_id or make_position_id(owner, lower, upper)
        existing = self.ledger.get(position_id)
        if existing is not None:
            if existing.owner != owner:
                raise InvalidActionError(f"position {position_id} belongs to {existing.owner!r}", action)
            if (existing.lower_tick, existing.upper_tick) != (lower, upper):
                raise InvalidActionError(f"position {position_id} already open with another range", action)

        budget0 = self.wallet.token0 if action.token0_amount is None else action.token0_amount
        budget1 = self.wallet.token1 if action.token1_amount is None else action.token1_amount
        if budget0 < 0 or budget1 < 0:
            raise InvalidActionError("negative budget", action)
        if budget0 > self.wallet.token0 or budget1 > self.wallet.token1:
            raise InvalidActionError(
                f"budget ({budget0}, {budget1}) exceeds wallet "
                f"({self.wallet.token0}, {self.wallet.token1})", action
            )
        if budget0 == 0 and budget1 == 0:
            raise InvalidActionError("nothing to provide", action)

        sqrt_lower = tick_to_sqrt_price(lower)
        sqrt_upper = tick_to_sqrt_price(upper)

        # everything below is checked against the quoted post-swap state;
        # nothing is committed until the open is known to succeed
        sqrt_price = self.pool.sqrt_price
        wallet0, wallet1 = self.wallet.token0, self.wallet.token1
        quote = self._quote_ratio_swap(budget0, budget1, sqrt_lower, sqrt_upper)
        if quote is not None:
            spent, received = quote.amount_in_consumed, self._after_slippage(quote.amount_out)
            if quote.direction.zero_for_one:
                budget0, budget1 = budget0 - spent, budget1 + received
                wallet0, wallet1 = wallet0 - spent, wallet1 + received
            else:
                budget0, budget1 = budget0 + received, budget1 - spent
                wallet0, wallet1 = wallet0 + received, wallet1 - spent
            sqrt_price = quote.final_sqrt_price

        liquidity = liquidity_for_amounts(sqrt_price, sqrt_lower, sqrt_upper, budget0, budget1)
        if liquidity <= 0:
            raise InvalidActionError("budget too small to mint any liquidity", action)
        need0, need1 = amounts_for_liquidity(sqrt_price, sqrt_lower, sqrt_upper, liquidity, round_up=True)
        if need0 > wallet0 or need1 > wallet1:
            raise InvalidActionError("rounded amounts exceed wallet", action)

        if quote is not None:
            self._commit_ratio_swap(quote, timestamp)

        change = apply_event(self.pool, self.ledger, AddLiquidityEvent(
            lower_tick=lower,
            upper_tick=upper,
            liquidity_delta=liquidity,
            position_id=position_id,
            owner=owner,
            timestamp=timestamp,
            sequence=self._next_sequence(),
            synthetic=True,
        ))
        self.wallet.debit(change.amount0, change.amount1)
        if position_id not in self._owned:
            self._owned.append(position_id)

        logger.info(
            "Opened %s [%d, %d) liquidity=%d amounts=(%d, %d)",
            position_id, lower, upper, liquidity, change.amount0, change.amount1
        )
        self._log_action('open', timestamp, position_id, lower, upper, {
            'liquidity': liquidity,
            'amount0': change.amount0,
            'amount1': change.amount1,
        })

    def _close(self, action: ClosePosition, timestamp: int) -> None:
        position = self.ledger.get(action.position_id)
        if position is None or position.owner != self.config.owner:
            raise InvalidActionError(f"no open position {action.position_id}", action)

        liquidity = position.liquidity
        lower, upper = position.lower_tick, position.upper_tick
        collected = apply_event(self.pool, self.ledger, CollectFeesEvent(
            position_id=action.position_id,
            timestamp=timestamp,
            sequence=self._next_sequence(),
            synthetic=True,
        ))
        if liquidity > 0:
            removed = apply_event(self.pool, self.ledger, RemoveLiquidityEvent(
                position_id=action.position_id,
                liquidity_delta=liquidity,
                timestamp=timestamp,
                sequence=self._next_sequence(),
                synthetic=True,
            ))
        else:
            # collect already dropped the emptied position
            removed = LiquidityChange(action.position_id, lower, upper, 0, 0, 0)

        self.wallet.credit(removed.amount0 + collected.amount0, removed.amount1 + collected.amount1)
        self.wallet.fees_collected_0 += collected.amount0
        self.wallet.fees_collected_1 += collected.amount1
        if action.position_id in self._owned and action.position_id not in self.ledger:
            self._owned.remove(action.position_id)

        logger.info(
            "Closed %s amounts=(%d, %d) fees=(%d, %d)",
            action.position_id, removed.amount0, removed.amount1, collected.amount0, collected.amount1
        )
        self._log_action('close', timestamp, action.position_id, removed.lower_tick, removed.upper_tick, {
            'liquidity': -removed.liquidity_delta,
            'amount0': removed.amount0,
            'amount1': removed.amount1,
            'fees0': collected.amount0,
            'fees1': collected.amount1,
        })

    def _quote_ratio_swap(
        self,
        budget0: int,
        budget1: int,
        sqrt_lower: int,
        sqrt_upper: int
    ) -> Optional[SwapResult]:
        """
        Quote the swap that brings the budget's token0 value share to the range's.

        Returns None when no swap is needed or the pool cannot fill it.
        """
        sqrt_price = self.pool.sqrt_price
        price = (sqrt_price / Q96) ** 2  # raw token1 per raw token0
        value0 = budget0 * price
        total = value0 + budget1
        if total <= 0:
            return None

        target = target_token0_share(sqrt_price, sqrt_lower, sqrt_upper)
        current = value0 / total
        if abs(current - target) <= self.config.rebalance_tolerance:
            return None

        if current > target:
            amount_in = min(int((current - target) * total / price), budget0)
            direction = SwapDirection.ZERO_FOR_ONE
        else:
            amount_in = min(int((target - current) * total), budget1)
            direction = SwapDirection.ONE_FOR_ZERO
        if amount_in <= 0:
            return None

        quote = simulate_swap(self.pool, amount_in, direction)
        if quote.amount_in_consumed == 0 or quote.amount_remaining > 0:
            logger.warning(
                "Skipping pre-open swap of %d: pool cannot fill it (filled %d)",
                amount_in, quote.amount_in_consumed
            )
            return None
        return quote

    def _after_slippage(self, amount_out: int) -> int:
        haircut = FEE_RATE_DENOMINATOR - self.config.swap_slippage_pips
        return amount_out * haircut // FEE_RATE_DENOMINATOR

    def _commit_ratio_swap(self, quote: SwapResult, timestamp: int) -> None:
        direction = quote.direction
        result = apply_event(self.pool, self.ledger, SwapEvent(
            amount_in=quote.amount_in_consumed,
            direction=direction,
            timestamp=timestamp,
            sequence=self._next_sequence(),
            synthetic=True,
        ))
        received = self._after_slippage(result.amount_out)
        spent = result.amount_in_consumed

        if direction is SwapDirection.ZERO_FOR_ONE:
            self.wallet.debit(spent, 0)
            self.wallet.credit(0, received)
        else:
            self.wallet.debit(0, spent)
            self.wallet.credit(received, 0)

        logger.info(
            "Swapped %d %s for %d (fee %d) before opening",
            spent, 'token0' if direction.zero_for_one else 'token1', received, result.fee_paid
        )
        self.result.actions.append({
            'type': 'swap',
            'timestamp': timestamp,
            'direction': direction.value,
            'amount_in': spent,
            'amount_out': received,
            'fee_paid': result.fee_paid,
            'wallet_token0': self.wallet.token0,
            'wallet_token1': self.wallet.token1,
            'pool_tick': self.pool.current_tick,
            'pool_liquidity': self.pool.liquidity,
        })

    def _log_action(
        self,
        kind: str,
        timestamp: int,
        position_id: str,
        lower: int,
        upper: int,
        details: Dict[str, Any]
    ) -> None:
        entry = {
            'type': kind,
            'timestamp': timestamp,
            'position_id': position_id,
            'lower_tick': lower,
            'upper_tick': upper,
        }
        entry.update(details)
        entry.update({
            'wallet_token0': self.wallet.token0,
            'wallet_token1': self.wallet.token1,
            'pool_tick': self.pool.current_tick,
            'pool_liquidity': self.pool.liquidity,
        })
        self.result.actions.append(entry)

    # ------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------

    def _any_in_range(self) -> bool:
        tick = self.pool.current_tick
        for position_id in self._owned:
            position = self.ledger.get(position_id)
            if position is not None and position.liquidity > 0 and position.is_in_range(tick):
                return True
        return False

    def _display_price(self) -> float:
        return float(sqrt_price_to_price(
            self.pool.sqrt_price, self.config.token0_decimals, self.config.token1_decimals
        ))

    def _usd_prices(self, timestamp: int) -> Tuple[float, float]:
        if self.price_usd is not None:
            return float(self.price_usd(TOKEN0, timestamp)), float(self.price_usd(TOKEN1, timestamp))
        token1_usd = self.config.token1_usd_price
        return self._display_price() * token1_usd, token1_usd

    def _record_snapshot(self, timestamp: int) -> PortfolioSnapshot:
        token0, token1 = self.wallet.token0, self.wallet.token1
        owed0 = owed1 = 0
        for position_id in self._owned:
            if position_id not in self.ledger:
                continue
            amount0, amount1 = self.ledger.position_amounts(self.pool, position_id)
            fee0, fee1 = self.ledger.accrued_fees(self.pool, position_id)
            token0 += amount0
            token1 += amount1
            owed0 += fee0
            owed1 += fee1

        scale0 = 10 ** self.config.token0_decimals
        scale1 = 10 ** self.config.token1_decimals
        human0 = (token0 + owed0) / scale0
        human1 = (token1 + owed1) / scale1
        price = self._display_price()
        usd0, usd1 = self._usd_prices(timestamp)

        snapshot = PortfolioSnapshot(
            timestamp=timestamp,
            token0_balance=token0,
            token1_balance=token1,
            fees_owed_0=owed0,
            fees_owed_1=owed1,
            portfolio_value_usd=human0 * usd0 + human1 * usd1,
            portfolio_value_token1=human0 * price + human1,
            price=price,
            current_tick=self.pool.current_tick,
            in_range=self._any_in_range(),
        )
        self.result.snapshots.append(snapshot)
        return snapshot


def compare_strategies(
    pool: PoolState,
    events: Iterable[PoolEvent],
    strategies: List[Strategy],
    config: BacktestConfig,
    ledger: Optional[PositionLedger] = None,
    price_usd: Optional[PriceLookup] = None
) -> Dict[str, BacktestResult]:
    """
    Run several strategies over the same data.

    Every run gets its own copy of the pool and the ledger; nothing is shared
    between runs, so each result is the same as running that strategy alone.
    """
    events = list(events)
    results: Dict[str, BacktestResult] = {}
    for strategy in strategies:
        name = strategy.name
        suffix = 2
        while name in results:
            name = f"{strategy.name} ({suffix})"
            suffix += 1
        engine = BacktestEngine(
            pool.copy(),
            strategy,
            config,
            ledger=ledger.copy() if ledger is not None else None,
            price_usd=price_usd,
        )
        results[name] = engine.run(events)
    return results
