#!/usr/bin/env python3
"""
Strategy Evaluator
==================

Deterministic interpreter for execution plans. Walks the bar series in time
order and, per bar, visits nodes in topological order: indicators update
their rolling state, conditions compute booleans, actions emit order signals
and risk nodes derive price levels.

Per-node state lives only for the duration of one run.
"""

import operator
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Iterable, Iterator, Mapping, Tuple, Union
from dataclasses import dataclass, field

from ..core.exceptions import BacktestCancelled
from ..core.logger import get_logger
from ..domain.models.market_data import Bar, parse_bars
from ..domain.models.signals import OrderSide, OrderType, RiskLevel, RiskRule, SignalEvent
from ..domain.services.indicators import IncrementalIndicator, create_incremental_indicator
from ..strategy_graph.graph import StrategyParameters
from ..strategy_graph.node_catalog import ComponentKind
from .graph_adapter import ExecutionNode, ExecutionPlan, InputBinding, InputSource

logger = get_logger(__name__)


class CancellationToken:
    """Cooperative cancellation flag, polled once per timestep."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class TimestepOutcome:
    """Everything one bar produced."""
    bar: Bar
    signals: Tuple[SignalEvent, ...] = ()
    risk_levels: Tuple[RiskLevel, ...] = ()
    skipped_nodes: Tuple[str, ...] = ()
    node_outputs: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    @property
    def skipped(self) -> bool:
        return bool(self.skipped_nodes)


@dataclass(frozen=True)
class EvaluationSummary:
    timesteps: int
    skipped_timesteps: int
    node_skip_counts: Mapping[str, int]
    signal_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timesteps": self.timesteps,
            "skipped_timesteps": self.skipped_timesteps,
            "node_skip_counts": dict(self.node_skip_counts),
            "signal_count": self.signal_count,
        }


# ============================================================================
# NODE RUNTIMES - per-run behaviour of each component kind
# ============================================================================

class NodeRuntime(ABC):
    """Per-run state and behaviour of one plan node."""

    def __init__(self, node: ExecutionNode):
        self.node = node

    @abstractmethod
    def evaluate(self, inputs: Dict[str, Any], bar: Bar) -> Dict[str, Any]:
        """Compute output values from fully-defined inputs."""

    def on_skip(self) -> None:
        """Called when an input is undefined this timestep."""


class IndicatorRuntime(NodeRuntime):
    def __init__(self, node: ExecutionNode):
        super().__init__(node)
        self.indicator: IncrementalIndicator = create_incremental_indicator(
            node.kind, node.id, **node.parameters
        )

    def evaluate(self, inputs: Dict[str, Any], bar: Bar) -> Dict[str, Any]:
        self.indicator.update(float(inputs["price"]))
        return self.indicator.outputs()


_COMPARATORS = {
    "above": operator.gt,
    "below": operator.lt,
    "above_or_equal": operator.ge,
    "below_or_equal": operator.le,
    "equal": operator.eq,
}


class CrossoverRuntime(NodeRuntime):
    def evaluate(self, inputs, bar):
        threshold = self.node.parameters["threshold"]
        if self.node.parameters["direction"] == "above":
            spread = inputs["line1"] - inputs["line2"]
        else:
            spread = inputs["line2"] - inputs["line1"]
        return {"signal": spread > threshold}


class ThresholdRuntime(NodeRuntime):
    def evaluate(self, inputs, bar):
        compare = _COMPARATORS[self.node.parameters["operator"]]
        return {"signal": compare(inputs["value"], inputs["reference"])}


class GateRuntime(NodeRuntime):
    def evaluate(self, inputs, bar):
        if self.node.kind == "and_gate":
            return {"signal": bool(inputs["signal1"] and inputs["signal2"])}
        return {"signal": bool(inputs["signal1"] or inputs["signal2"])}


class ActionRuntime(NodeRuntime):
    """Emits a SignalEvent when its signal is true (level) or turns true (edge)."""

    def __init__(self, node: ExecutionNode, symbol: str):
        super().__init__(node)
        self.symbol = symbol
        self.side = OrderSide.BUY if node.kind == "buy_order" else OrderSide.SELL
        self.edge_triggered = node.parameters["trigger"] == "edge"
        self.previous = False
        self.emitted: Optional[SignalEvent] = None

    def evaluate(self, inputs, bar):
        active = bool(inputs["signal"])
        fire = active and not (self.edge_triggered and self.previous)
        self.previous = active

        self.emitted = None
        if fire:
            self.emitted = SignalEvent(
                timestamp=bar.time,
                symbol=self.symbol,
                side=self.side,
                quantity=self.node.parameters["quantity"],
                price=bar.close,
                order_type=OrderType(self.node.parameters["orderType"]),
                node_id=self.node.id,
            )
        return {}

    def on_skip(self) -> None:
        self.previous = False
        self.emitted = None


class RiskRuntime(NodeRuntime):
    def __init__(self, node: ExecutionNode):
        super().__init__(node)
        self.rule = RiskRule(node.kind)
        self.output_port = "stopPrice" if self.rule == RiskRule.STOP_LOSS else "targetPrice"
        self.level: Optional[RiskLevel] = None

    def evaluate(self, inputs, bar):
        percentage = self.node.parameters["percentage"]
        entry = inputs["entryPrice"]
        if self.rule == RiskRule.STOP_LOSS:
            price = entry * (1 - percentage / 100.0)
        else:
            price = entry * (1 + percentage / 100.0)
        self.level = RiskLevel(node_id=self.node.id, rule=self.rule, percentage=percentage, level=price)
        return {self.output_port: price}

    def on_skip(self) -> None:
        self.level = None


def create_runtime(node: ExecutionNode, parameters: StrategyParameters) -> NodeRuntime:
    if node.component_kind == ComponentKind.INDICATOR:
        return IndicatorRuntime(node)
    if node.component_kind == ComponentKind.ACTION:
        return ActionRuntime(node, parameters.symbol)
    if node.component_kind == ComponentKind.RISK:
        return RiskRuntime(node)
    if node.kind == "crossover":
        return CrossoverRuntime(node)
    if node.kind == "threshold":
        return ThresholdRuntime(node)
    return GateRuntime(node)


# ============================================================================
# EVALUATOR
# ============================================================================

class StrategyEvaluator:
    """
    Runs an execution plan over a bar series.

    One instance may be run repeatedly; every run starts from fresh node
    state and drops it when the run ends, including on cancellation or error.
    """

    def __init__(self, plan: ExecutionPlan, parameters: StrategyParameters):
        self.plan = plan
        self.parameters = parameters
        self._runtimes: Dict[str, NodeRuntime] = {}
        self._reset_counters()

    @property
    def has_state(self) -> bool:
        return bool(self._runtimes)

    def _reset_counters(self) -> None:
        self.timesteps = 0
        self.skipped_timesteps = 0
        self.signal_count = 0
        self.node_skip_counts: Dict[str, int] = {node_id: 0 for node_id in self.plan.execution_order}

    def run(self, bars: Iterable[Union[Bar, dict]],
            cancel_token: Optional[CancellationToken] = None) -> Iterator[TimestepOutcome]:
        """
        Evaluate the plan bar by bar.

        Args:
            bars: Bar series, strictly ascending by time
            cancel_token: Optional token checked before each timestep

        Yields:
            One TimestepOutcome per bar

        Raises:
            MarketDataError: malformed or unordered bars
            BacktestCancelled: the token was cancelled
        """
        series = parse_bars(bars)
        self._reset_counters()
        self._runtimes = {
            node.id: create_runtime(node, self.parameters) for node in self.plan.ordered_nodes()
        }
        completed = False

        try:
            for bar in series:
                if cancel_token is not None and cancel_token.cancelled:
                    raise BacktestCancelled(self.timesteps)
                yield self._step(bar)
            completed = True
        finally:
            self._runtimes = {}
            logger.info("strategy_evaluator.run_finished", {
                "strategy_id": self.plan.strategy_id,
                "completed": completed,
                "timesteps": self.timesteps,
                "skipped_timesteps": self.skipped_timesteps,
                "signals": self.signal_count,
            })

    def evaluate(self, bars: Iterable[Union[Bar, dict]],
                 cancel_token: Optional[CancellationToken] = None) -> Tuple[List[SignalEvent], EvaluationSummary]:
        """Run to completion and collect all signals plus a summary."""
        signals: List[SignalEvent] = []
        for outcome in self.run(bars, cancel_token):
            signals.extend(outcome.signals)
        return signals, self.summary()

    def summary(self) -> EvaluationSummary:
        return EvaluationSummary(
            timesteps=self.timesteps,
            skipped_timesteps=self.skipped_timesteps,
            node_skip_counts=dict(self.node_skip_counts),
            signal_count=self.signal_count,
        )

    def _step(self, bar: Bar) -> TimestepOutcome:
        outputs: Dict[str, Dict[str, Any]] = {}
        signals: List[SignalEvent] = []
        risk_levels: List[RiskLevel] = []
        skipped: List[str] = []

        for node_id in self.plan.execution_order:
            node = self.plan.nodes[node_id]
            runtime = self._runtimes[node_id]

            inputs = self._gather_inputs(node, bar, outputs)
            if inputs is None:
                runtime.on_skip()
                skipped.append(node_id)
                self.node_skip_counts[node_id] += 1
                continue

            outputs[node_id] = runtime.evaluate(inputs, bar)

            if isinstance(runtime, ActionRuntime) and runtime.emitted is not None:
                signals.append(runtime.emitted)
            elif isinstance(runtime, RiskRuntime) and runtime.level is not None:
                risk_levels.append(runtime.level)

        self.timesteps += 1
        self.signal_count += len(signals)
        if skipped:
            self.skipped_timesteps += 1

        return TimestepOutcome(
            bar=bar,
            signals=tuple(signals),
            risk_levels=tuple(risk_levels),
            skipped_nodes=tuple(skipped),
            node_outputs=outputs,
        )

    @staticmethod
    def _gather_inputs(node: ExecutionNode, bar: Bar,
                       outputs: Dict[str, Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Resolve input values; None when any input is undefined this timestep."""
        inputs = {}
        for port, binding in node.inputs.items():
            value = _resolve(binding, bar, outputs)
            if value is None:
                return None
            inputs[port] = value
        return inputs


def _resolve(binding: InputBinding, bar: Bar, outputs: Dict[str, Dict[str, Any]]) -> Any:
    if binding.source == InputSource.UPSTREAM:
        upstream = outputs.get(binding.source_node)
        return upstream.get(binding.source_port) if upstream is not None else None
    if binding.source == InputSource.MARKET_FIELD:
        return bar.get_field(binding.market_field)
    return binding.constant
