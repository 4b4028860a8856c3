import json

from clmm_replay.main import build_parser, main, strategy_params
from clmm_replay.config import BacktestConfig

ONE = str(10 ** 18)


def test_main_runs_and_exports(events_file, tmp_path, capsys):
    out_dir = tmp_path / "out"
    report = tmp_path / "report.txt"
    code = main([
        '--data', str(events_file),
        '--token0-amount', ONE,
        '--token1-amount', ONE,
        '--record-every', '1',
        '--output-dir', str(out_dir),
        '--output', str(report),
        '--export-json',
        '--no-plots',
    ])

    assert code == 0
    assert "CLMM Backtest Report: No Rebalance" in capsys.readouterr().out
    assert report.exists()
    for name in ('no_rebalance_portfolio.csv', 'no_rebalance_value_history.csv',
                 'no_rebalance_metrics.csv', 'no_rebalance_metrics.json', 'no_rebalance_actions.json'):
        assert (out_dir / name).exists()

    with open(out_dir / 'no_rebalance_actions.json', encoding='utf-8') as f:
        actions = json.load(f)
    assert [a['type'] for a in actions['actions']] == ['open', 'close']


def test_main_compare(events_file, tmp_path):
    out_dir = tmp_path / "out"
    code = main([
        '--data', str(events_file),
        '--token0-amount', ONE,
        '--token1-amount', ONE,
        '--compare',
        '--range', '200',
        '--output-dir', str(out_dir),
        '--no-plots',
    ])
    assert code == 0
    assert (out_dir / 'no_rebalance_metrics.csv').exists()
    assert (out_dir / 'simple_rebalance_metrics.csv').exists()


def test_main_missing_data(tmp_path):
    assert main(['--data', str(tmp_path / 'missing.jsonl'), '--no-plots']) == 1


def test_main_halts_on_invalid_event(tmp_path):
    path = tmp_path / "bad.jsonl"
    path.write_text(json.dumps({"eventType": "Burn", "positionId": "ghost", "liquidity": "5"}) + "\n",
                    encoding="utf-8")
    assert main(['--data', str(path), '--output-dir', str(tmp_path / 'out'), '--no-plots', '--no-csv']) == 2


def test_strategy_params_from_flags():
    args = build_parser().parse_args(['--tick-lower', '-60', '--tick-upper', '60', '--range', '300'])
    config = BacktestConfig(strategy_params={'close_at_end': False, 'range': 100})
    assert strategy_params(config, args) == {
        'close_at_end': False, 'lower_tick': -60, 'upper_tick': 60, 'range': 300, 'width': 300,
    }
    assert strategy_params(config, build_parser().parse_args([])) == {'close_at_end': False, 'range': 100}


def test_main_reads_strategy_params_from_config(events_file, tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({
        "backtest": {
            "initial_token0": ONE,
            "initial_token1": ONE,
            "strategy": "no_rebalance",
            "strategy_params": {"lower_tick": -200, "upper_tick": 200, "close_at_end": False},
        }
    }), encoding="utf-8")
    out_dir = tmp_path / "out"
    code = main([
        '--data', str(events_file),
        '--config', str(config_path),
        '--output-dir', str(out_dir),
        '--export-json',
        '--no-plots',
    ])
    assert code == 0
    with open(out_dir / 'no_rebalance_actions.json', encoding='utf-8') as f:
        actions = [a for a in json.load(f)['actions'] if a['type'] != 'swap']
    assert [(a['type'], a['lower_tick'], a['upper_tick']) for a in actions] == [('open', -200, 200)]
