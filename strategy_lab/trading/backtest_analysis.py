"""
Backtest Robustness Analysis
============================
Walk-forward optimization and Monte Carlo resampling on top of the
backtesting engine.

Walk-forward: rolling training/testing windows over one bar series. Each
training window picks the variant with the best Sharpe ratio via a
parameter sweep; that variant is then backtested out of sample on the
following testing window.

Monte Carlo: per-trade returns of a finished backtest are resampled with
replacement and compounded from the initial capital, giving confidence
intervals for return, Sharpe ratio and drawdown.
"""

import random
import statistics
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from ..core.logger import get_logger
from ..domain.models.market_data import Bar, filter_bars, parse_bars
from ..infrastructure.config.settings import BacktestSettings
from ..strategy_graph.graph import StrategyGraph
from ..strategy_graph.serializer import StrategySerializer
from .backtesting_engine import (
    BacktestEngine,
    BacktestResult,
    ParameterVariant,
    apply_variant,
    run_parameter_sweep,
)
from .performance_tracker import conditional_var, max_drawdown, sharpe_ratio, value_at_risk

logger = get_logger(__name__)


# ============================================================================
# WALK-FORWARD
# ============================================================================

@dataclass(frozen=True)
class WalkForwardWindow:
    """One training/testing split and its out-of-sample result."""
    train_start: datetime
    train_end: datetime
    test_start: datetime
    test_end: datetime
    variant_index: int
    training_sharpe: float
    result: BacktestResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trainPeriod": {"start": self.train_start.isoformat(), "end": self.train_end.isoformat()},
            "testPeriod": {"start": self.test_start.isoformat(), "end": self.test_end.isoformat()},
            "variantIndex": self.variant_index,
            "trainingSharpe": self.training_sharpe,
            "totalReturn": self.result.total_return,
            "sharpeRatio": self.result.sharpe_ratio,
            "maxDrawdown": self.result.max_drawdown,
            "totalTrades": self.result.total_trades,
        }


@dataclass(frozen=True)
class WalkForwardResult:
    """Windows in chronological order plus their aggregate statistics."""
    strategy_id: str
    windows: tuple = ()
    avg_return: float = 0.0
    avg_sharpe: float = 0.0
    avg_drawdown: float = 0.0
    win_rate: float = 0.0
    consistency: float = 0.0
    best_window: Optional[int] = None
    worst_window: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategyId": self.strategy_id,
            "windows": [window.to_dict() for window in self.windows],
            "aggregateMetrics": {
                "avgReturn": self.avg_return,
                "avgSharpe": self.avg_sharpe,
                "avgDrawdown": self.avg_drawdown,
                "winRate": self.win_rate,
                "consistency": self.consistency,
                "bestWindow": self.best_window,
                "worstWindow": self.worst_window,
            },
        }


def _aggregate(strategy_id: str, windows: List[WalkForwardWindow]) -> WalkForwardResult:
    if not windows:
        return WalkForwardResult(strategy_id)

    returns = [w.result.total_return for w in windows]
    mean_return = statistics.fmean(returns)
    # 1 - dispersion relative to the mean; 0 when the mean return is 0
    consistency = 0.0 if mean_return == 0 else 1.0 - statistics.pstdev(returns) / abs(mean_return)

    return WalkForwardResult(
        strategy_id=strategy_id,
        windows=tuple(windows),
        avg_return=mean_return,
        avg_sharpe=statistics.fmean(w.result.sharpe_ratio for w in windows),
        avg_drawdown=statistics.fmean(w.result.max_drawdown for w in windows),
        win_rate=sum(1 for r in returns if r > 0) / len(returns),
        consistency=consistency,
        best_window=max(range(len(returns)), key=returns.__getitem__),
        worst_window=min(range(len(returns)), key=returns.__getitem__),
    )


def run_walk_forward(strategy: StrategyGraph, bars: Iterable[Union[Bar, dict]],
                     variants: Sequence[ParameterVariant],
                     training_window: int, testing_window: int,
                     step: Optional[int] = None,
                     max_workers: Optional[int] = None,
                     settings: Optional[BacktestSettings] = None) -> WalkForwardResult:
    """
    Rolling walk-forward optimization.

    Windows are measured in bars. The first training window starts at the
    first bar; each later split starts `step` bars after the previous one
    (default: testing_window). Only complete testing windows are run.
    Indicators start cold in every window.

    Args:
        strategy: Base strategy
        bars: Bar series, strictly ascending by time
        variants: Candidate {node_id: {parameter: value}} patches
        training_window: Bars per in-sample window
        testing_window: Bars per out-of-sample window
        step: Bars between consecutive splits
        max_workers: Thread pool size for the training sweeps

    Returns:
        WalkForwardResult (no windows when the series is too short)

    Raises:
        ValueError: empty variants or non-positive window sizes
    """
    step = step or testing_window
    if not variants:
        raise ValueError("At least one parameter variant is required")
    if training_window <= 0 or testing_window <= 0 or step <= 0:
        raise ValueError("Window sizes and step must be positive")

    settings = settings or BacktestSettings()
    series = parse_bars(bars)
    serializer = StrategySerializer()
    document = serializer.to_dict(strategy)

    logger.info("backtest.walk_forward_started", {
        "strategy_id": strategy.id,
        "bars": len(series),
        "variants": len(variants),
        "training_window": training_window,
        "testing_window": testing_window,
        "step": step,
    })

    windows: List[WalkForwardWindow] = []
    split = training_window
    while split + testing_window <= len(series):
        train_start, train_end = series[split - training_window].time, series[split - 1].time
        test_start, test_end = series[split].time, series[split + testing_window - 1].time

        training = run_parameter_sweep(
            strategy, filter_bars(series, train_start, train_end), variants, max_workers, settings
        )
        # First variant wins ties
        best = max(range(len(training)), key=lambda i: (training[i].sharpe_ratio, -i))

        graph = apply_variant(document, variants[best], serializer)
        result = BacktestEngine(settings, logger).run(graph, series, test_start, test_end)

        windows.append(WalkForwardWindow(
            train_start=train_start,
            train_end=train_end,
            test_start=test_start,
            test_end=test_end,
            variant_index=best,
            training_sharpe=training[best].sharpe_ratio,
            result=result,
        ))
        split += step

    outcome = _aggregate(strategy.id, windows)
    logger.info("backtest.walk_forward_completed", {
        "strategy_id": strategy.id,
        "windows": len(windows),
        "avg_return": outcome.avg_return,
        "avg_sharpe": outcome.avg_sharpe,
    })
    return outcome


# ============================================================================
# MONTE CARLO
# ============================================================================

@dataclass(frozen=True)
class ConfidenceInterval:
    lower: float
    median: float
    upper: float

    def to_dict(self) -> Dict[str, float]:
        return {"lower": self.lower, "median": self.median, "upper": self.upper}


@dataclass(frozen=True)
class MonteCarloResult:
    """Distribution of resampled outcomes for one backtest."""
    simulations: int
    confidence_level: float
    total_return: ConfidenceInterval
    sharpe_ratio: ConfidenceInterval
    max_drawdown: ConfidenceInterval
    probability_of_loss: float
    value_at_risk: float
    conditional_var: float
    drawdown_exceeded: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "simulations": self.simulations,
            "confidenceLevel": self.confidence_level,
            "confidenceIntervals": {
                "totalReturn": self.total_return.to_dict(),
                "sharpeRatio": self.sharpe_ratio.to_dict(),
                "maxDrawdown": self.max_drawdown.to_dict(),
            },
            "riskMetrics": {
                "probabilityOfLoss": self.probability_of_loss,
                "valueAtRisk": self.value_at_risk,
                "conditionalVaR": self.conditional_var,
                "maxDrawdownExceeded": self.drawdown_exceeded,
            },
        }


def _interval(values: List[float], alpha: float) -> ConfidenceInterval:
    ordered = sorted(values)
    n = len(ordered)
    return ConfidenceInterval(
        lower=ordered[int(alpha / 2 * n)],
        median=ordered[n // 2],
        upper=ordered[min(int((1 - alpha / 2) * n), n - 1)],
    )


def trade_returns(result: BacktestResult) -> List[float]:
    """Per-trade return on the notional at entry."""
    return [
        trade.pnl / (trade.quantity * trade.entry_price)
        for trade in result.trades
        if trade.quantity * trade.entry_price != 0
    ]


def run_monte_carlo(result: BacktestResult, simulations: Optional[int] = None,
                    confidence_level: Optional[float] = None,
                    seed: Optional[int] = None,
                    settings: Optional[BacktestSettings] = None) -> MonteCarloResult:
    """
    Resample the trade sequence of a backtest.

    Each simulation draws len(trades) per-trade returns with replacement and
    compounds them from the initial capital. The Sharpe ratio is per trade
    and not annualized. VaR and CVaR are taken over the simulated total
    returns at the configured tail level.

    Raises:
        ValueError: the backtest has no trades
    """
    settings = settings or BacktestSettings()
    simulations = simulations or settings.monte_carlo_simulations
    confidence_level = confidence_level or settings.monte_carlo_confidence

    returns = trade_returns(result)
    if not returns:
        raise ValueError("Monte Carlo simulation needs at least one closed trade")

    rng = random.Random(seed)
    totals: List[float] = []
    sharpes: List[float] = []
    drawdowns: List[float] = []

    for _ in range(simulations):
        equity = [result.initial_capital]
        for trade_return in rng.choices(returns, k=len(returns)):
            equity.append(equity[-1] * (1 + trade_return))
        totals.append(equity[-1] / result.initial_capital - 1.0)
        sharpes.append(sharpe_ratio(equity, 1))
        drawdowns.append(max_drawdown(equity))

    alpha = 1 - confidence_level
    outcome = MonteCarloResult(
        simulations=simulations,
        confidence_level=confidence_level,
        total_return=_interval(totals, alpha),
        sharpe_ratio=_interval(sharpes, alpha),
        max_drawdown=_interval(drawdowns, alpha),
        probability_of_loss=sum(1 for t in totals if t < 0) / simulations,
        value_at_risk=value_at_risk(totals, settings.var_alpha),
        conditional_var=conditional_var(totals, settings.var_alpha),
        drawdown_exceeded=sum(1 for d in drawdowns if d > result.max_drawdown) / simulations,
    )

    logger.info("backtest.monte_carlo_completed", {
        "strategy_id": result.strategy_id,
        "simulations": simulations,
        "probability_of_loss": outcome.probability_of_loss,
        "value_at_risk": outcome.value_at_risk,
    })
    return outcome
