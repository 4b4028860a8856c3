"""
Output generator: CSV, JSON and chart files for a backtest result
"""
import csv
import json
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Tuple

from .performance_analyzer import PerformanceMetrics
from .tick_math import tick_to_price

logger = logging.getLogger(__name__)


def _format_ts(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime('%Y-%m-%d %H:%M:%S')


class OutputGenerator:
    """Writes result files into output_dir"""

    def __init__(self, output_dir: str = "output"):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def export_value_history_csv(
        self,
        value_history: List[Tuple[int, float]],
        filename: str = "value_history.csv"
    ) -> str:
        """Value series to CSV"""
        filepath = self.output_dir / filename

        with open(filepath, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(['timestamp', 'datetime', 'value_usd'])

            for timestamp, value in value_history:
                writer.writerow([timestamp, _format_ts(timestamp), f"{value:.2f}"])

        return str(filepath)

    def export_snapshots_csv(self, snapshots: List[Any], filename: str = "portfolio.csv") -> str:
        """Full portfolio time series to CSV"""
        filepath = self.output_dir / filename
        columns = [
            'timestamp', 'token0_balance', 'token1_balance', 'fees_owed_0', 'fees_owed_1',
            'portfolio_value_usd', 'portfolio_value_token1', 'price', 'current_tick', 'in_range',
        ]

        with open(filepath, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(['datetime'] + columns)
            for snapshot in snapshots:
                row = asdict(snapshot)
                writer.writerow([_format_ts(snapshot.timestamp)] + [row[c] for c in columns])

        return str(filepath)

    def export_metrics_csv(
        self,
        metrics: PerformanceMetrics,
        filename: str = "metrics.csv"
    ) -> str:
        """Metrics to CSV"""
        filepath = self.output_dir / filename

        with open(filepath, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)

            writer.writerow(['metric', 'value', 'unit'])
            writer.writerow(['total_return', f"{metrics.total_return:.2f}", '%'])
            writer.writerow(['annualized_return', f"{metrics.annualized_return:.2f}", '%'])
            writer.writerow(['max_drawdown', f"{metrics.max_drawdown:.2f}", '%'])
            writer.writerow(['sharpe_ratio', f"{metrics.sharpe_ratio:.2f}", ''])
            writer.writerow(['volatility', f"{metrics.volatility:.2f}", '%'])
            writer.writerow(['total_fees_earned', f"{metrics.total_fees_earned:.2f}", 'USD'])
            writer.writerow(['fee_apr', f"{metrics.fee_apr:.2f}", '%'])
            writer.writerow(['impermanent_loss', f"{metrics.impermanent_loss:.2f}", '%'])
            writer.writerow(['time_in_range', f"{metrics.time_in_range:.2f}", '%'])
            writer.writerow(['pnl_usd', f"{metrics.pnl_usd:.2f}", 'USD'])
            writer.writerow(['hodl_pnl_usd', f"{metrics.hodl_pnl_usd:.2f}", 'USD'])
            writer.writerow(['pnl_vs_hodl_usd', f"{metrics.pnl_vs_hodl_usd:.2f}", 'USD'])
            writer.writerow(['num_swaps', metrics.num_swaps, ''])
            writer.writerow(['num_mints', metrics.num_mints, ''])
            writer.writerow(['num_burns', metrics.num_burns, ''])

        return str(filepath)

    def export_metrics_json(
        self,
        metrics: PerformanceMetrics,
        filename: str = "metrics.json"
    ) -> str:
        """Metrics to JSON, time series left out"""
        filepath = self.output_dir / filename

        data = {
            'basic_metrics': {
                'total_return': metrics.total_return,
                'annualized_return': metrics.annualized_return,
                'max_drawdown': metrics.max_drawdown,
                'sharpe_ratio': float(metrics.sharpe_ratio),
                'volatility': metrics.volatility,
            },
            'lp_metrics': {
                'total_fees_earned': metrics.total_fees_earned,
                'fees_earned_token0': metrics.fees_earned_token0,
                'fees_earned_token1': metrics.fees_earned_token1,
                'fee_apr': metrics.fee_apr,
                'impermanent_loss': metrics.impermanent_loss,
                'time_in_range': metrics.time_in_range,
            },
            'pnl': {
                'initial_value': metrics.initial_value,
                'final_value': metrics.final_value,
                'hodl_value': metrics.hodl_value,
                'pnl_usd': metrics.pnl_usd,
                'hodl_pnl_usd': metrics.hodl_pnl_usd,
                'pnl_vs_hodl_usd': metrics.pnl_vs_hodl_usd,
            },
            'trading_stats': {
                'num_events': metrics.num_events,
                'num_swaps': metrics.num_swaps,
                'swaps_in_range': metrics.swaps_in_range,
                'num_mints': metrics.num_mints,
                'num_burns': metrics.num_burns,
                'num_opens': metrics.num_opens,
                'num_closes': metrics.num_closes,
                'num_rejected_actions': metrics.num_rejected_actions,
                'num_data_gaps': metrics.num_data_gaps,
            }
        }

        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)

        return str(filepath)

    def export_actions_json(self, result: Any, filename: str = "actions.json") -> str:
        """Executed and rejected actions plus data gaps"""
        filepath = self.output_dir / filename
        data = {
            'strategy': result.strategy_name,
            'complete': result.complete,
            'actions': result.actions,
            'rejected_actions': result.rejected_actions,
            'data_gaps': [gap.to_dict() for gap in result.data_gaps],
            'swap_stats': asdict(result.swap_stats),
        }
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, default=str)
        return str(filepath)

    def position_ranges(self, result: Any) -> List[Dict[str, Any]]:
        """Open intervals of each position from the action log, in display prices"""
        config = result.config
        open_ranges: Dict[str, Dict[str, Any]] = {}
        ranges = []
        for action in result.actions:
            if action['type'] == 'open':
                open_ranges[action['position_id']] = {
                    'start': action['timestamp'],
                    'end': result.end_timestamp,
                    'lower': float(tick_to_price(action['lower_tick'], config.token0_decimals, config.token1_decimals)),
                    'upper': float(tick_to_price(action['upper_tick'], config.token0_decimals, config.token1_decimals)),
                }
            elif action['type'] == 'close' and action['position_id'] in open_ranges:
                entry = open_ranges.pop(action['position_id'])
                entry['end'] = action['timestamp']
                ranges.append(entry)
        ranges.extend(open_ranges.values())
        return sorted(ranges, key=lambda r: r['start'])

    def export_plots(self, result: Any, prefix: str = "backtest") -> List[str]:
        """Value, price-with-range and return distribution charts"""
        import matplotlib
        matplotlib.use('Agg')  # non-interactive backend
        import matplotlib.dates as mdates
        import matplotlib.pyplot as plt

        filepaths = []
        snapshots = result.snapshots
        metrics = result.metrics

        # 1. portfolio value
        if snapshots:
            dates = [datetime.fromtimestamp(s.timestamp, tz=timezone.utc) for s in snapshots]
            values = [s.portfolio_value_usd for s in snapshots]

            fig, ax = plt.subplots(figsize=(12, 6))
            ax.plot(dates, values, linewidth=2, label='Portfolio Value')
            ax.axhline(y=values[0], color='r', linestyle='--', alpha=0.5, label='Initial Value')
            if metrics is not None and metrics.hodl_value:
                ax.axhline(y=metrics.hodl_value, color='gray', linestyle=':', alpha=0.7, label='Hold (final)')
            ax.set_xlabel('Date')
            ax.set_ylabel('Value (USD)')
            ax.set_title(f'{result.strategy_name}: Portfolio Value')
            ax.legend()
            ax.grid(True, alpha=0.3)
            ax.xaxis.set_major_formatter(mdates.DateFormatter('%Y-%m-%d'))
            plt.xticks(rotation=45)
            plt.tight_layout()

            filepath = self.output_dir / f"{prefix}_value_history.png"
            plt.savefig(filepath, dpi=150, bbox_inches='tight')
            plt.close(fig)
            filepaths.append(str(filepath))

        # 2. price with position ranges
        if snapshots:
            dates = [datetime.fromtimestamp(s.timestamp, tz=timezone.utc) for s in snapshots]
            prices = [s.price for s in snapshots]

            fig, ax = plt.subplots(figsize=(12, 6))
            for i, entry in enumerate(self.position_ranges(result)):
                span = [
                    datetime.fromtimestamp(entry['start'], tz=timezone.utc),
                    datetime.fromtimestamp(entry['end'], tz=timezone.utc),
                ]
                ax.fill_between(
                    span, [entry['lower']] * 2, [entry['upper']] * 2,
                    alpha=0.25, color='#9b87f5', label='Position Range' if i == 0 else None
                )
            ax.plot(dates, prices, linewidth=1.5, color='#3b82f6', label='Price')
            ax.set_xlabel('Date')
            ax.set_ylabel('Price (token1 per token0)')
            ax.set_title('Pool Price with Position Ranges')
            ax.legend(loc='upper left')
            ax.grid(True, alpha=0.3)
            ax.xaxis.set_major_formatter(mdates.DateFormatter('%Y-%m-%d'))
            plt.xticks(rotation=45)
            plt.tight_layout()

            filepath = self.output_dir / f"{prefix}_price_ranges.png"
            plt.savefig(filepath, dpi=150, bbox_inches='tight')
            plt.close(fig)
            filepaths.append(str(filepath))

        # 3. return distribution
        if metrics is not None and metrics.return_history:
            fig, ax = plt.subplots(figsize=(10, 6))
            ax.hist(metrics.return_history, bins=50, alpha=0.7, edgecolor='black')
            ax.axvline(x=0, color='r', linestyle='--', alpha=0.5)
            ax.set_xlabel('Return (%)')
            ax.set_ylabel('Frequency')
            ax.set_title('Return Distribution')
            ax.grid(True, alpha=0.3)
            plt.tight_layout()

            filepath = self.output_dir / f"{prefix}_return_distribution.png"
            plt.savefig(filepath, dpi=150, bbox_inches='tight')
            plt.close(fig)
            filepaths.append(str(filepath))

        logger.info("Wrote %d charts to %s", len(filepaths), self.output_dir)
        return filepaths

    def export_comparison_plot(self, results: Dict[str, Any], filename: str = "comparison.png") -> str:
        """Value series of several runs on one chart"""
        import matplotlib
        matplotlib.use('Agg')
        import matplotlib.pyplot as plt

        fig, ax = plt.subplots(figsize=(12, 6))
        for name, result in results.items():
            dates = [datetime.fromtimestamp(s.timestamp, tz=timezone.utc) for s in result.snapshots]
            ax.plot(dates, [s.portfolio_value_usd for s in result.snapshots], linewidth=1.5, label=name)
        ax.set_xlabel('Date')
        ax.set_ylabel('Value (USD)')
        ax.set_title('Strategy Comparison')
        ax.legend()
        ax.grid(True, alpha=0.3)
        plt.tight_layout()

        filepath = self.output_dir / filename
        plt.savefig(filepath, dpi=150, bbox_inches='tight')
        plt.close(fig)
        return str(filepath)
