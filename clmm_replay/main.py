"""
CLMM replay backtester, command line entry point
"""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .backtest_engine import BacktestEngine, compare_strategies
from .config import BacktestConfig, DecisionPolicy, PoolConfig, load_config
from .errors import InvariantError
from .event_processor import EventProcessor
from .output_generator import OutputGenerator
from .performance_analyzer import PerformanceAnalyzer
from .strategies import STRATEGIES, create_strategy
from .sync import LivePosition, build_pool_from_positions


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='CLMM pool replay backtester')
    parser.add_argument(
        '--data',
        type=str,
        default='data/pool_events.jsonl',
        help='JSONL event file'
    )
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='JSON config file with "pool" and "backtest" sections'
    )
    parser.add_argument(
        '--positions',
        type=str,
        default=None,
        help='JSON list of live positions to seed the pool with'
    )
    parser.add_argument(
        '--strategy',
        type=str,
        default=None,
        choices=sorted(STRATEGIES),
        help='Strategy to run (default from config, else no_rebalance)'
    )
    parser.add_argument(
        '--compare',
        action='store_true',
        help='Run every registered strategy on the same data'
    )
    parser.add_argument('--initial-tick', type=int, default=None, help='Starting pool tick')
    parser.add_argument('--initial-sqrt-price', type=int, default=None, help='Starting pool sqrt price (Q64.96)')
    parser.add_argument('--tick-spacing', type=int, default=None, help='Pool tick spacing')
    parser.add_argument('--fee-rate', type=int, default=None, help='Pool fee in pips (3000 = 0.3%%)')
    parser.add_argument('--token0-amount', type=int, default=None, help='Initial token0 balance (raw units)')
    parser.add_argument('--token1-amount', type=int, default=None, help='Initial token1 balance (raw units)')
    parser.add_argument(
        '--tick-lower',
        type=int,
        default=None,
        help='Lower tick for no_rebalance (centred on the start price if omitted)'
    )
    parser.add_argument(
        '--tick-upper',
        type=int,
        default=None,
        help='Upper tick for no_rebalance'
    )
    parser.add_argument('--range', type=int, default=None, help='Range width in ticks')
    parser.add_argument(
        '--decision-policy',
        type=str,
        default=None,
        choices=[p.value for p in DecisionPolicy],
        help='When the strategy is consulted'
    )
    parser.add_argument('--decision-every', type=int, default=None, help='N for every_n_events')
    parser.add_argument('--decision-interval', type=int, default=None, help='Seconds for time_interval')
    parser.add_argument('--record-every', type=int, default=None, help='Snapshot every N events')
    parser.add_argument('--max-gap', type=int, default=None, help='Report gaps longer than this (seconds)')
    parser.add_argument('--start-timestamp', type=int, default=None, help='Skip events before this time')
    parser.add_argument('--end-timestamp', type=int, default=None, help='Skip events after this time')
    parser.add_argument('--output', type=str, default=None, help='Write the text report to this file')
    parser.add_argument('--output-dir', type=str, default='output', help='Directory for CSV, JSON and charts')
    parser.add_argument('--no-csv', action='store_true', help='Do not export CSV files')
    parser.add_argument('--no-plots', action='store_true', help='Do not export charts')
    parser.add_argument('--export-json', action='store_true', default=False, help='Export JSON files')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return parser


def apply_overrides(pool_config: PoolConfig, backtest_config: BacktestConfig, args: argparse.Namespace) -> None:
    """CLI flags win over config file values"""
    pool_overrides = {
        'initial_tick': args.initial_tick,
        'initial_sqrt_price': args.initial_sqrt_price,
        'tick_spacing': args.tick_spacing,
        'fee_rate': args.fee_rate,
    }
    for key, value in pool_overrides.items():
        if value is not None:
            setattr(pool_config, key, value)

    backtest_overrides = {
        'initial_token0': args.token0_amount,
        'initial_token1': args.token1_amount,
        'strategy': args.strategy,
        'decision_every_n_events': args.decision_every,
        'decision_interval_seconds': args.decision_interval,
        'record_every': args.record_every,
        'max_gap_seconds': args.max_gap,
    }
    for key, value in backtest_overrides.items():
        if value is not None:
            setattr(backtest_config, key, value)
    if args.decision_policy is not None:
        backtest_config.decision_policy = DecisionPolicy(args.decision_policy)


def strategy_params(backtest_config: BacktestConfig, args: argparse.Namespace) -> Dict[str, Any]:
    """Config file strategy_params with flag overrides; every strategy reads its own keys"""
    params = dict(backtest_config.strategy_params)
    if args.tick_lower is not None:
        params['lower_tick'] = args.tick_lower
    if args.tick_upper is not None:
        params['upper_tick'] = args.tick_upper
    if args.range is not None:
        params['range'] = args.range
        params['width'] = args.range
    return params


def load_positions(path: str) -> List[LivePosition]:
    with open(path, 'r', encoding='utf-8') as f:
        records = json.load(f)
    return [LivePosition.from_dict(record) for record in records]


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    data_path = Path(args.data)
    if not data_path.exists():
        print(f"Error: data file not found: {args.data}")
        return 1

    if args.config:
        pool_config, backtest_config = load_config(args.config)
    else:
        pool_config, backtest_config = PoolConfig(), BacktestConfig()
    apply_overrides(pool_config, backtest_config, args)

    print("=" * 60)
    print("CLMM Replay Backtester")
    print("=" * 60)
    print(f"Data file: {args.data}")
    print(f"Initial wallet: {backtest_config.initial_token0:,} token0, {backtest_config.initial_token1:,} token1")
    print()

    if args.positions:
        if pool_config.initial_sqrt_price is not None:
            sqrt_price = pool_config.initial_sqrt_price
        else:
            sqrt_price = pool_config.build_pool().sqrt_price
        pool, ledger = build_pool_from_positions(
            load_positions(args.positions), sqrt_price, pool_config.tick_spacing, pool_config.fee_rate
        )
    else:
        pool, ledger = pool_config.build_pool(), None

    processor = EventProcessor(str(data_path))
    events = list(processor.get_events_in_range(args.start_timestamp, args.end_timestamp))
    if processor.skipped:
        print(f"Skipped {processor.skipped} unparseable records")

    backtest_config.strategy_params = strategy_params(backtest_config, args)
    analyzer = PerformanceAnalyzer()
    output_gen = OutputGenerator(output_dir=args.output_dir)

    try:
        if args.compare:
            strategies = [create_strategy(name) for name in sorted(STRATEGIES)]
            results = compare_strategies(pool, events, strategies, backtest_config, ledger=ledger)
        else:
            name = backtest_config.strategy
            strategy = create_strategy(name)
            engine = BacktestEngine(pool, strategy, backtest_config, ledger=ledger)
            results = {strategy.name: engine.run(events)}
    except InvariantError as e:
        print(f"Replay halted: {e}")
        if e.pool_snapshot is not None:
            print(f"Pool before the event: {e.pool_snapshot}")
        return 2

    reports = []
    for name, result in results.items():
        report = analyzer.generate_report(result.metrics, title=f"CLMM Backtest Report: {name}")
        reports.append(report)
        print(report)

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write("\n".join(reports))
        print(f"\nReport saved to: {args.output}")

    exported_files = []
    for name, result in results.items():
        prefix = name.lower().replace(' ', '_').replace('(', '').replace(')', '')
        if not args.no_csv:
            exported_files.append(output_gen.export_snapshots_csv(result.snapshots, f"{prefix}_portfolio.csv"))
            exported_files.append(output_gen.export_value_history_csv(result.value_history, f"{prefix}_value_history.csv"))
            exported_files.append(output_gen.export_metrics_csv(result.metrics, f"{prefix}_metrics.csv"))
        if args.export_json:
            exported_files.append(output_gen.export_metrics_json(result.metrics, f"{prefix}_metrics.json"))
            exported_files.append(output_gen.export_actions_json(result, f"{prefix}_actions.json"))
        if not args.no_plots:
            exported_files.extend(output_gen.export_plots(result, prefix=prefix))
    if args.compare and not args.no_plots:
        exported_files.append(output_gen.export_comparison_plot(results))

    if exported_files:
        print(f"\nExported {len(exported_files)} files to: {args.output_dir}/")
    return 0


if __name__ == '__main__':
    sys.exit(main())
