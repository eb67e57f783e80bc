"""
Tests for walk-forward optimization and Monte Carlo resampling
==============================================================
"""

from datetime import datetime, timedelta, timezone

import pytest

from strategy_lab.domain.models.market_data import parse_bars
from strategy_lab.infrastructure.config.settings import BacktestSettings
from strategy_lab.trading.backtest_analysis import (
    run_monte_carlo,
    run_walk_forward,
    trade_returns,
)
from strategy_lab.trading.backtesting_engine import BacktestResult, run_parameter_sweep
from strategy_lab.trading.performance_tracker import ExitReason, PositionSide, TradeRecord

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)

THRESHOLD_VARIANTS = [
    {"threshold_1": {"threshold": 20.0}},
    {"threshold_1": {"threshold": 55.0}},
    {"threshold_1": {"threshold": 80.0}},
]


def _trade(entry_price, exit_price, quantity=1.0):
    return TradeRecord(
        side=PositionSide.LONG, quantity=quantity,
        entry_time=T0, entry_price=entry_price,
        exit_time=T0 + timedelta(hours=1), exit_price=exit_price,
        pnl=(exit_price - entry_price) * quantity, commission=0.0,
        exit_reason=ExitReason.SIGNAL,
    )


def _result(*trades, max_drawdown=0.0):
    return BacktestResult(
        strategy_id="strategy_mc",
        initial_capital=10000.0,
        max_drawdown=max_drawdown,
        total_trades=len(trades),
        trades=tuple(trades),
    )


class TestWalkForward:

    def test_window_layout(self, rsi_strategy, trending_bars):
        outcome = run_walk_forward(rsi_strategy, trending_bars, THRESHOLD_VARIANTS,
                                   training_window=30, testing_window=10, max_workers=2)
        series = parse_bars(trending_bars)

        assert len(outcome.windows) == 3
        first, _, last = outcome.windows
        assert first.train_start == series[0].time
        assert first.train_end == series[29].time
        assert first.test_start == series[30].time
        assert first.test_end == series[39].time
        assert last.test_end == series[59].time
        assert all(w.result.evaluated_timesteps == 10 for w in outcome.windows)

    def test_best_training_variant_is_tested(self, rsi_strategy, trending_bars):
        outcome = run_walk_forward(rsi_strategy, trending_bars, THRESHOLD_VARIANTS,
                                   training_window=30, testing_window=10)

        training = run_parameter_sweep(rsi_strategy, trending_bars[:30], THRESHOLD_VARIANTS)
        sharpes = [r.sharpe_ratio for r in training]
        first = outcome.windows[0]
        assert first.variant_index == sharpes.index(max(sharpes))
        assert first.training_sharpe == max(sharpes)

    def test_aggregate_metrics(self, rsi_strategy, trending_bars):
        outcome = run_walk_forward(rsi_strategy, trending_bars, THRESHOLD_VARIANTS,
                                   training_window=20, testing_window=10, step=15)
        returns = [w.result.total_return for w in outcome.windows]

        assert len(returns) == 3
        assert outcome.avg_return == pytest.approx(sum(returns) / len(returns))
        assert outcome.win_rate == sum(1 for r in returns if r > 0) / len(returns)
        assert returns[outcome.best_window] == max(returns)
        assert returns[outcome.worst_window] == min(returns)
        assert outcome.to_dict()["aggregateMetrics"]["avgReturn"] == outcome.avg_return

    def test_series_too_short(self, rsi_strategy, trending_bars):
        outcome = run_walk_forward(rsi_strategy, trending_bars[:35], THRESHOLD_VARIANTS,
                                   training_window=30, testing_window=10)
        assert outcome.windows == ()
        assert outcome.best_window is None
        assert outcome.avg_return == 0.0

    def test_bad_arguments(self, rsi_strategy, trending_bars):
        with pytest.raises(ValueError):
            run_walk_forward(rsi_strategy, trending_bars, [], training_window=30, testing_window=10)
        with pytest.raises(ValueError):
            run_walk_forward(rsi_strategy, trending_bars, THRESHOLD_VARIANTS,
                             training_window=0, testing_window=10)

    def test_base_strategy_untouched(self, rsi_strategy, trending_bars):
        run_walk_forward(rsi_strategy, trending_bars, THRESHOLD_VARIANTS,
                         training_window=30, testing_window=10)
        assert rsi_strategy.get_node("threshold_1").parameters["threshold"] == 30.0


class TestMonteCarlo:

    def test_trade_returns(self):
        result = _result(_trade(100.0, 110.0), _trade(50.0, 45.0, quantity=2.0))
        assert trade_returns(result) == pytest.approx([0.1, -0.1])

    def test_single_trade_is_deterministic(self):
        outcome = run_monte_carlo(_result(_trade(100.0, 90.0)), simulations=50, seed=1)

        assert outcome.total_return.lower == pytest.approx(-0.1)
        assert outcome.total_return.median == pytest.approx(-0.1)
        assert outcome.total_return.upper == pytest.approx(-0.1)
        assert outcome.max_drawdown.median == pytest.approx(0.1)
        assert outcome.sharpe_ratio.median == 0.0
        assert outcome.probability_of_loss == 1.0
        assert outcome.drawdown_exceeded == 1.0
        assert outcome.value_at_risk == pytest.approx(-0.1)

    def test_seeded_runs_repeat(self):
        result = _result(_trade(100.0, 110.0), _trade(100.0, 95.0), _trade(100.0, 102.0))
        first = run_monte_carlo(result, simulations=200, seed=7)
        second = run_monte_carlo(result, simulations=200, seed=7)
        assert first == second

    def test_interval_ordering(self):
        result = _result(_trade(100.0, 110.0), _trade(100.0, 95.0), _trade(100.0, 102.0))
        outcome = run_monte_carlo(result, simulations=500, confidence_level=0.9, seed=3)

        for interval in (outcome.total_return, outcome.sharpe_ratio, outcome.max_drawdown):
            assert interval.lower <= interval.median <= interval.upper
        assert 0.0 <= outcome.probability_of_loss <= 1.0
        assert outcome.conditional_var <= outcome.value_at_risk
        assert outcome.to_dict()["confidenceLevel"] == 0.9

    def test_settings_supply_defaults(self):
        settings = BacktestSettings(monte_carlo_simulations=25, monte_carlo_confidence=0.8)
        outcome = run_monte_carlo(_result(_trade(100.0, 105.0)), seed=0, settings=settings)
        assert outcome.simulations == 25
        assert outcome.confidence_level == 0.8

    def test_no_trades_rejected(self):
        with pytest.raises(ValueError):
            run_monte_carlo(_result())
