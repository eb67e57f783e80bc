"""
Backtesting Execution Engine
============================
Executes strategy graphs against historical bars and simulates a single
portfolio with commission and slippage. Produces an immutable BacktestResult.

Per timestep, in order:
1. Risk exits (stop loss / take profit) for positions opened on an earlier bar
2. Signal fills at the close, adjusted for slippage
3. Mark-to-market equity at the close
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Any, Iterable, Mapping, Sequence, Tuple, Union
from datetime import datetime
from dataclasses import dataclass, field

from ..core.exceptions import BacktestCancelled, StrategyValidationFailed
from ..core.logger import StructuredLogger, get_logger
from ..domain.models.market_data import Bar, TimeLike, filter_bars, parse_bars
from ..domain.models.signals import OrderSide, RiskLevel, RiskRule, SignalEvent
from ..engine.graph_adapter import GraphAdapter
from ..engine.strategy_evaluator import CancellationToken, StrategyEvaluator
from ..infrastructure.config.settings import BacktestSettings
from ..strategy_graph.graph import StrategyGraph
from ..strategy_graph.serializer import StrategySerializer, build_report
from ..strategy_graph.validators import GraphValidator
from .performance_tracker import (
    AdvancedMetrics,
    EquityPoint,
    ExitReason,
    PerformanceTracker,
    PositionSide,
    TradeRecord,
)

ParameterVariant = Mapping[str, Mapping[str, Any]]


@dataclass(frozen=True)
class BacktestResult:
    """Results of a completed backtest"""
    strategy_id: str
    total_return: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    win_rate: float = 0.0
    total_trades: int = 0
    profit_factor: float = 0.0
    initial_capital: float = 0.0
    final_equity: float = 0.0
    equity_curve: Tuple[EquityPoint, ...] = ()
    trades: Tuple[TradeRecord, ...] = ()
    signals: int = 0
    evaluated_timesteps: int = 0
    skipped_timesteps: int = 0
    warnings: Tuple[str, ...] = field(default=())
    advanced: AdvancedMetrics = field(default_factory=AdvancedMetrics)

    def to_report(self) -> Dict[str, Any]:
        return build_report(self)


@dataclass
class Position:
    """Open position with signed quantity and average entry price."""
    quantity: float
    entry_price: float
    entry_time: datetime
    opened_at: int
    entry_commission: float = 0.0
    lowest: Optional[float] = None
    highest: Optional[float] = None

    def __post_init__(self):
        if self.lowest is None:
            self.lowest = self.entry_price
        if self.highest is None:
            self.highest = self.entry_price

    @property
    def is_long(self) -> bool:
        return self.quantity > 0

    @property
    def side(self) -> PositionSide:
        return PositionSide.LONG if self.is_long else PositionSide.SHORT

    def mark(self, low: float, high: float) -> None:
        """Extend the price range seen while the position is held."""
        self.lowest = min(self.lowest, low)
        self.highest = max(self.highest, high)

    def excursions(self, exit_price: float) -> Tuple[float, float]:
        """(adverse, favorable) moves up to the exit, as fractions of the entry price."""
        low = min(self.lowest, exit_price)
        high = max(self.highest, exit_price)
        if self.is_long:
            adverse, favorable = self.entry_price - low, high - self.entry_price
        else:
            adverse, favorable = high - self.entry_price, self.entry_price - low
        return max(adverse, 0.0) / self.entry_price, max(favorable, 0.0) / self.entry_price


class Portfolio:
    """Single-symbol cash + position accounting. No margin or cash constraint."""

    def __init__(self, initial_capital: float, commission: float, slippage: float,
                 tracker: PerformanceTracker):
        self.cash = initial_capital
        self.commission = commission
        self.slippage = slippage
        self.tracker = tracker
        self.position: Optional[Position] = None

    def signal_price(self, side: OrderSide, close: float) -> float:
        """Buys pay up, sells receive less."""
        if side == OrderSide.BUY:
            return close * (1 + self.slippage)
        return close * (1 - self.slippage)

    def equity(self, mark_price: float) -> float:
        if self.position is None:
            return self.cash
        return self.cash + self.position.quantity * mark_price

    def fill(self, side: OrderSide, quantity: float, price: float, time: datetime,
             bar_index: int, reason: ExitReason = ExitReason.SIGNAL) -> None:
        """
        Apply a fill. Same-direction fills add to the position at average cost;
        opposite fills reduce it, realize a trade, and may flip it.
        """
        signed = quantity if side == OrderSide.BUY else -quantity
        fee = self.commission * quantity * price
        self.cash -= signed * price + fee

        position = self.position
        if position is None or (position.quantity > 0) == (signed > 0):
            self._increase(signed, price, fee, time, bar_index)
            return

        closing = min(quantity, abs(position.quantity))
        exit_fee = fee * closing / quantity
        entry_fee = position.entry_commission * closing / abs(position.quantity)
        direction = 1.0 if position.is_long else -1.0
        gross = (price - position.entry_price) * closing * direction
        adverse, favorable = position.excursions(price)

        self.tracker.record_trade(TradeRecord(
            side=position.side,
            quantity=closing,
            entry_time=position.entry_time,
            entry_price=position.entry_price,
            exit_time=time,
            exit_price=price,
            pnl=gross - entry_fee - exit_fee,
            commission=entry_fee + exit_fee,
            exit_reason=reason,
            max_adverse_excursion=adverse,
            max_favorable_excursion=favorable,
        ))

        remaining = position.quantity + signed
        if abs(remaining) < 1e-12:
            self.position = None
        elif (remaining > 0) == position.is_long:
            position.quantity = remaining
            position.entry_commission -= entry_fee
        else:
            # Flipped: the rest of the fill opens a new position
            self.position = None
            self._increase(remaining, price, fee - exit_fee, time, bar_index)

    def _increase(self, signed: float, price: float, fee: float, time: datetime, bar_index: int) -> None:
        position = self.position
        if position is None:
            self.position = Position(signed, price, time, bar_index, fee)
            return
        total = abs(position.quantity) + abs(signed)
        position.entry_price = (abs(position.quantity) * position.entry_price + abs(signed) * price) / total
        position.quantity += signed
        position.entry_commission += fee

    def close(self, price: float, time: datetime, bar_index: int, reason: ExitReason) -> None:
        if self.position is None:
            return
        side = OrderSide.SELL if self.position.is_long else OrderSide.BUY
        self.fill(side, abs(self.position.quantity), price, time, bar_index, reason)


def _risk_exit(position: Position, bar: Bar,
               risk_levels: Sequence[RiskLevel]) -> Optional[Tuple[float, ExitReason]]:
    """Fill price and reason if a stop or target triggers on this bar; stop wins ties."""
    stops = [r for r in risk_levels if r.rule == RiskRule.STOP_LOSS]
    targets = [r for r in risk_levels if r.rule == RiskRule.TAKE_PROFIT]
    long = position.is_long

    if stops:
        # Tightest stop is the one closest to entry
        tightest = min(stops, key=lambda r: r.percentage)
        stop = tightest.price_for_entry(position.entry_price, long)
        if long and bar.low <= stop:
            return min(bar.open, stop), ExitReason.STOP_LOSS
        if not long and bar.high >= stop:
            return max(bar.open, stop), ExitReason.STOP_LOSS

    if targets:
        nearest = min(targets, key=lambda r: r.percentage)
        target = nearest.price_for_entry(position.entry_price, long)
        if long and bar.high >= target:
            return max(bar.open, target), ExitReason.TAKE_PROFIT
        if not long and bar.low <= target:
            return min(bar.open, target), ExitReason.TAKE_PROFIT

    return None


class BacktestEngine:
    """
    Executes strategy graphs against historical market data.

    Features:
    - Deterministic bar-by-bar replay through StrategyEvaluator
    - Stop loss / take profit handling from risk nodes
    - Commission and slippage modelling
    - Cooperative cancellation
    """

    def __init__(self, settings: Optional[BacktestSettings] = None,
                 logger: Optional[StructuredLogger] = None):
        self.settings = settings or BacktestSettings()
        self.logger = logger or get_logger(__name__)
        self.graph_adapter = GraphAdapter()

    def run(self, strategy: StrategyGraph, bars: Iterable[Union[Bar, dict]],
            start: Optional[TimeLike] = None, end: Optional[TimeLike] = None,
            cancel_token: Optional[CancellationToken] = None) -> BacktestResult:
        """
        Run one backtest.

        Args:
            strategy: Strategy graph (validated here)
            bars: Bar series, strictly ascending by time
            start: Inclusive range start (optional)
            end: Inclusive range end (optional)
            cancel_token: Optional cooperative cancellation token

        Returns:
            Immutable BacktestResult

        Raises:
            StrategyValidationFailed: graph has validation errors
            MarketDataError: malformed or unordered bars
            BacktestCancelled: the token was cancelled
        """
        errors, warnings = GraphValidator().validate(strategy)
        if errors:
            self.logger.warning("backtest.validation_failed", {
                "strategy_id": strategy.id,
                "errors": [e.to_dict() for e in errors],
            })
            raise StrategyValidationFailed(errors)

        plan = self.graph_adapter.build_plan(strategy, validate=False)
        series = filter_bars(parse_bars(bars), start, end)
        params = strategy.parameters

        tracker = PerformanceTracker(self.logger, params.initial_capital)
        portfolio = Portfolio(params.initial_capital, params.commission, params.slippage, tracker)
        evaluator = StrategyEvaluator(plan, params)

        self.logger.info("backtest.started", {
            "strategy_id": strategy.id,
            "bars": len(series),
            "symbol": params.symbol,
            "timeframe": params.timeframe,
        })

        try:
            for index, outcome in enumerate(evaluator.run(series, cancel_token)):
                self._process_timestep(portfolio, tracker, index, outcome.bar,
                                       outcome.signals, outcome.risk_levels)
        except BacktestCancelled as e:
            self.logger.warning("backtest.cancelled", {
                "strategy_id": strategy.id,
                "timesteps_processed": e.timesteps_processed,
            })
            raise

        if series and portfolio.position is not None and self.settings.close_positions_on_finish:
            last = series[-1]
            portfolio.close(last.close, last.time, len(series) - 1, ExitReason.END_OF_DATA)
            tracker.replace_last_equity(portfolio.equity(last.close))

        summary = evaluator.summary()
        metrics = tracker.calculate_metrics(params.periods_per_year)
        advanced = tracker.calculate_advanced_metrics(params.periods_per_year, self.settings.var_alpha)

        result = BacktestResult(
            strategy_id=strategy.id,
            total_return=metrics["total_return"],
            sharpe_ratio=metrics["sharpe_ratio"],
            max_drawdown=metrics["max_drawdown"],
            win_rate=metrics["win_rate"],
            total_trades=metrics["total_trades"],
            profit_factor=metrics["profit_factor"],
            initial_capital=params.initial_capital,
            final_equity=tracker.final_equity,
            equity_curve=tuple(tracker.equity_curve),
            trades=tuple(tracker.trades),
            signals=summary.signal_count,
            evaluated_timesteps=summary.timesteps,
            skipped_timesteps=summary.skipped_timesteps,
            warnings=tuple(w.message for w in warnings),
            advanced=advanced,
        )

        self.logger.info("backtest.completed", {
            "strategy_id": strategy.id,
            "total_trades": result.total_trades,
            "total_return": result.total_return,
            "max_drawdown": result.max_drawdown,
            "signals": result.signals,
            "skipped_timesteps": result.skipped_timesteps,
            "sortino_ratio": advanced.sortino_ratio,
        })
        return result

    @staticmethod
    def _process_timestep(portfolio: Portfolio, tracker: PerformanceTracker, index: int, bar: Bar,
                          signals: Sequence[SignalEvent], risk_levels: Sequence[RiskLevel]) -> None:
        position = portfolio.position
        if position is not None and position.opened_at < index:
            exit_fill = _risk_exit(position, bar, risk_levels)
            if exit_fill is not None:
                price, reason = exit_fill
                portfolio.close(price, bar.time, index, reason)
            else:
                position.mark(bar.low, bar.high)

        for signal in signals:
            price = portfolio.signal_price(signal.side, signal.price)
            portfolio.fill(signal.side, signal.quantity, price, bar.time, index)

        tracker.record_equity(bar.time, portfolio.equity(bar.close))


def run_backtest(strategy: Union[StrategyGraph, Dict[str, Any]], bars: Iterable[Union[Bar, dict]],
                 start: Optional[TimeLike] = None, end: Optional[TimeLike] = None,
                 cancel_token: Optional[CancellationToken] = None,
                 settings: Optional[BacktestSettings] = None) -> BacktestResult:
    """Convenience wrapper; accepts a graph or a serialized strategy document."""
    if not isinstance(strategy, StrategyGraph):
        strategy = StrategySerializer().from_dict(strategy)
    return BacktestEngine(settings).run(strategy, bars, start, end, cancel_token)


def apply_variant(document: Dict[str, Any], variant: ParameterVariant,
                  serializer: Optional[StrategySerializer] = None) -> StrategyGraph:
    """Load a fresh graph from a strategy document and apply one {node_id: patch} variant."""
    graph = (serializer or StrategySerializer()).from_dict(document)
    for node_id, patch in variant.items():
        graph.set_parameters(node_id, patch)
    return graph


def run_parameter_sweep(strategy: StrategyGraph, bars: Iterable[Union[Bar, dict]],
                        variants: Sequence[ParameterVariant],
                        max_workers: Optional[int] = None,
                        settings: Optional[BacktestSettings] = None) -> List[BacktestResult]:
    """
    Run independent backtests for parameter variants concurrently.

    Args:
        strategy: Base strategy
        bars: Shared bar series (parsed once, read-only)
        variants: One {node_id: {parameter: value}} patch per run
        max_workers: Thread pool size (defaults to settings.max_workers)

    Returns:
        Results in the same order as variants
    """
    settings = settings or BacktestSettings()
    serializer = StrategySerializer()
    document = serializer.to_dict(strategy)
    series = parse_bars(bars)
    logger = get_logger(__name__)

    def run_variant(variant: ParameterVariant) -> BacktestResult:
        # Each worker owns a fresh graph and evaluator
        graph = apply_variant(document, variant, serializer)
        return BacktestEngine(settings, logger).run(graph, series)

    workers = max_workers or settings.max_workers
    logger.info("backtest.sweep_started", {
        "strategy_id": strategy.id,
        "variants": len(variants),
        "max_workers": workers,
    })

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(run_variant, variant) for variant in variants]
        return [future.result() for future in futures]
