"""
Performance analyzer: backtest metrics

Value series come from the portfolio snapshots (USD). Impermanent loss and PnL
are measured against simply holding the initial wallet.
"""
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

import numpy as np

SECONDS_PER_DAY = 86400


@dataclass
class PerformanceMetrics:
    """Performance metrics"""
    # basic
    total_return: float = 0.0  # %
    annualized_return: float = 0.0  # %
    max_drawdown: float = 0.0  # %
    sharpe_ratio: float = 0.0
    volatility: float = 0.0  # %, annualized

    # LP specific
    total_fees_earned: float = 0.0  # USD
    fees_earned_token0: int = 0
    fees_earned_token1: int = 0
    impermanent_loss: float = 0.0  # % vs. holding
    fee_apr: float = 0.0  # %
    time_in_range: float = 0.0  # %

    # PnL (USD)
    initial_value: float = 0.0
    final_value: float = 0.0
    hodl_value: float = 0.0
    pnl_usd: float = 0.0
    hodl_pnl_usd: float = 0.0
    pnl_vs_hodl_usd: float = 0.0

    # time series
    value_history: List[Tuple[int, float]] = field(default_factory=list)
    return_history: List[float] = field(default_factory=list)

    # counts
    num_events: int = 0
    num_swaps: int = 0
    num_mints: int = 0
    num_burns: int = 0
    swaps_in_range: int = 0
    num_opens: int = 0
    num_closes: int = 0
    num_rejected_actions: int = 0
    num_data_gaps: int = 0
    days: float = 0.0


class PerformanceAnalyzer:
    """Performance analyzer"""

    def __init__(self):
        self.metrics = PerformanceMetrics()

    def calculate_returns(
        self,
        initial_value: float,
        final_value: float,
        days: float
    ) -> Tuple[float, float]:
        """Total and annualized return (%)"""
        if initial_value <= 0:
            return (0.0, 0.0)

        total_return = ((final_value - initial_value) / initial_value) * 100

        if days > 0 and final_value > 0:
            annualized_return = ((final_value / initial_value) ** (365 / days) - 1) * 100
        else:
            annualized_return = 0.0

        return (total_return, annualized_return)

    def calculate_period_returns(self, values: List[float]) -> np.ndarray:
        """Simple returns between consecutive values (%), skipping zero bases"""
        series = np.asarray(values, dtype=float)
        if series.size < 2:
            return np.array([])
        base = series[:-1]
        mask = base > 0
        return (series[1:][mask] - base[mask]) / base[mask] * 100

    def calculate_max_drawdown(self, values: List[float]) -> float:
        """Largest peak-to-trough fall (%)"""
        series = np.asarray(values, dtype=float)
        if series.size < 2:
            return 0.0
        peaks = np.maximum.accumulate(series)
        with np.errstate(divide='ignore', invalid='ignore'):
            drawdowns = np.where(peaks > 0, (peaks - series) / peaks * 100, 0.0)
        return float(drawdowns.max())

    def calculate_sharpe_ratio(
        self,
        returns: np.ndarray,
        risk_free_rate: float = 0.0
    ) -> float:
        """Sharpe ratio, annualized as if the returns were daily"""
        if len(returns) < 2:
            return 0.0
        std_return = float(np.std(returns, ddof=1))
        if std_return == 0:
            return 0.0
        return (float(np.mean(returns)) - risk_free_rate) / std_return * np.sqrt(365)

    def calculate_volatility(self, returns: np.ndarray) -> float:
        """Annualized volatility"""
        if len(returns) < 2:
            return 0.0
        return float(np.std(returns, ddof=1) * np.sqrt(365))

    def calculate_time_in_range(self, timestamps: List[int], in_range: List[bool]) -> float:
        """Share of elapsed time (%) during which a position was in range"""
        if len(timestamps) < 2:
            return 100.0 if in_range and in_range[0] else 0.0
        times = np.asarray(timestamps, dtype=float)
        durations = np.diff(times)
        flags = np.asarray(in_range[:-1], dtype=bool)
        total = durations.sum()
        if total <= 0:
            return float(np.mean(np.asarray(in_range, dtype=float)) * 100)
        return float(durations[flags].sum() / total * 100)

    def calculate_impermanent_loss(self, lp_value: float, hodl_value: float) -> float:
        """LP value (fees excluded) against holding (%), negative means a loss"""
        if hodl_value <= 0:
            return 0.0
        return (lp_value - hodl_value) / hodl_value * 100

    def analyze_performance(
        self,
        initial_value: float,
        final_value: float,
        value_history: List[Tuple[int, float]],
        start_timestamp: int,
        end_timestamp: int,
        total_fees_earned: float = 0.0,
        hodl_value: Optional[float] = None
    ) -> PerformanceMetrics:
        """Return, risk and fee metrics from a value series"""
        self.metrics = PerformanceMetrics()

        days = (end_timestamp - start_timestamp) / SECONDS_PER_DAY if end_timestamp > start_timestamp else 0.0
        self.metrics.days = days

        total_return, annualized_return = self.calculate_returns(initial_value, final_value, days)
        self.metrics.total_return = total_return
        self.metrics.annualized_return = annualized_return
        self.metrics.initial_value = initial_value
        self.metrics.final_value = final_value
        self.metrics.pnl_usd = final_value - initial_value

        values = [v for _, v in value_history]
        self.metrics.value_history = list(value_history)

        returns = self.calculate_period_returns(values)
        self.metrics.return_history = returns.tolist()
        self.metrics.max_drawdown = self.calculate_max_drawdown(values)
        self.metrics.sharpe_ratio = self.calculate_sharpe_ratio(returns)
        self.metrics.volatility = self.calculate_volatility(returns)

        self.metrics.total_fees_earned = total_fees_earned
        if initial_value > 0 and days > 0:
            self.metrics.fee_apr = total_fees_earned / initial_value * (365 / days) * 100

        if hodl_value is not None:
            self.metrics.hodl_value = hodl_value
            self.metrics.hodl_pnl_usd = hodl_value - initial_value
            self.metrics.pnl_vs_hodl_usd = final_value - hodl_value
            self.metrics.impermanent_loss = self.calculate_impermanent_loss(
                final_value - total_fees_earned, hodl_value
            )

        return self.metrics

    def analyze_result(self, result: Any) -> PerformanceMetrics:
        """Metrics for a BacktestResult"""
        config = result.config
        scale0 = 10 ** config.token0_decimals
        scale1 = 10 ** config.token1_decimals

        snapshots = result.snapshots
        value_history = [(s.timestamp, s.portfolio_value_usd) for s in snapshots]
        initial_value = (
            config.initial_token0 / scale0 * result.initial_token0_usd
            + config.initial_token1 / scale1 * result.initial_token1_usd
        )
        final_value = snapshots[-1].portfolio_value_usd if snapshots else initial_value
        hodl_value = (
            config.initial_token0 / scale0 * result.final_token0_usd
            + config.initial_token1 / scale1 * result.final_token1_usd
        )

        owed0 = snapshots[-1].fees_owed_0 if snapshots else 0
        owed1 = snapshots[-1].fees_owed_1 if snapshots else 0
        fees0 = result.wallet.fees_collected_0 + owed0
        fees1 = result.wallet.fees_collected_1 + owed1
        fees_usd = fees0 / scale0 * result.final_token0_usd + fees1 / scale1 * result.final_token1_usd

        metrics = self.analyze_performance(
            initial_value=initial_value,
            final_value=final_value,
            value_history=value_history,
            start_timestamp=result.start_timestamp,
            end_timestamp=result.end_timestamp,
            total_fees_earned=fees_usd,
            hodl_value=hodl_value,
        )
        metrics.fees_earned_token0 = fees0
        metrics.fees_earned_token1 = fees1
        metrics.time_in_range = self.calculate_time_in_range(
            [s.timestamp for s in snapshots], [s.in_range for s in snapshots]
        )

        counts = result.event_counts
        metrics.num_events = result.events_processed
        metrics.num_swaps = counts.get('SwapEvent', 0)
        metrics.num_mints = counts.get('AddLiquidityEvent', 0)
        metrics.num_burns = counts.get('RemoveLiquidityEvent', 0)
        metrics.swaps_in_range = result.swap_stats.swaps_in_range
        metrics.num_opens = sum(1 for a in result.actions if a['type'] == 'open')
        metrics.num_closes = sum(1 for a in result.actions if a['type'] == 'close')
        metrics.num_rejected_actions = len(result.rejected_actions)
        metrics.num_data_gaps = len(result.data_gaps)
        self.metrics = metrics
        return metrics

    def generate_report(self, metrics: PerformanceMetrics, title: str = "CLMM Backtest Report") -> str:
        """Plain-text performance report"""
        report = []
        report.append("=" * 60)
        report.append(title)
        report.append("=" * 60)
        report.append("")

        report.append("[Returns]")
        report.append(f"  Total return: {metrics.total_return:.2f}%")
        report.append(f"  Annualized return: {metrics.annualized_return:.2f}%")
        report.append(f"  Max drawdown: {metrics.max_drawdown:.2f}%")
        report.append(f"  Sharpe ratio: {metrics.sharpe_ratio:.2f}")
        report.append(f"  Volatility: {metrics.volatility:.2f}%")
        report.append("")

        report.append("[Liquidity provision]")
        report.append(f"  Fees earned: {metrics.total_fees_earned:.2f} USD")
        report.append(f"  Fee APR: {metrics.fee_apr:.2f}%")
        report.append(f"  Impermanent loss: {metrics.impermanent_loss:.2f}%")
        report.append(f"  Time in range: {metrics.time_in_range:.2f}%")
        report.append("")

        report.append("[PnL]")
        report.append(f"  Initial value: {metrics.initial_value:,.2f} USD")
        report.append(f"  Final value: {metrics.final_value:,.2f} USD")
        report.append(f"  Strategy PnL: {metrics.pnl_usd:,.2f} USD")
        report.append(f"  Hold PnL: {metrics.hodl_pnl_usd:,.2f} USD")
        report.append(f"  Strategy vs hold: {metrics.pnl_vs_hodl_usd:,.2f} USD")
        report.append("")

        report.append("[Activity]")
        report.append(f"  Events: {metrics.num_events:,}")
        report.append(f"  Swaps: {metrics.num_swaps:,} ({metrics.swaps_in_range:,} in range)")
        report.append(f"  Mints: {metrics.num_mints:,}")
        report.append(f"  Burns: {metrics.num_burns:,}")
        report.append(f"  Positions opened/closed: {metrics.num_opens}/{metrics.num_closes}")
        report.append(f"  Rejected actions: {metrics.num_rejected_actions}")
        report.append(f"  Data gaps: {metrics.num_data_gaps}")
        report.append("")

        return "\n".join(report)
