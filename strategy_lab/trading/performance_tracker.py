"""
Performance Tracker
===================

Trade and equity bookkeeping for backtests, plus the headline statistics
(total return, Sharpe ratio, max drawdown, win rate, profit factor), the
advanced risk statistics (Sortino, Calmar, historical VaR/CVaR, trade
excursions, streaks) and the helpers the report is built from.
"""

from __future__ import annotations

import hashlib
import json
import math
import statistics
from typing import Any, Dict, List, Optional, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from ..core.logger import StructuredLogger


class ExitReason(str, Enum):
    """Why a trade was closed."""
    SIGNAL = "signal"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    END_OF_DATA = "end_of_data"


class PositionSide(str, Enum):
    LONG = "long"
    SHORT = "short"


@dataclass(frozen=True)
class TradeRecord:
    """Record of a completed trade."""
    side: PositionSide
    quantity: float
    entry_time: datetime
    entry_price: float
    exit_time: datetime
    exit_price: float
    pnl: float
    commission: float
    exit_reason: ExitReason
    # Worst and best price move while open, as fractions of the entry price
    max_adverse_excursion: float = 0.0
    max_favorable_excursion: float = 0.0

    @property
    def duration(self) -> float:
        """Trade duration in hours."""
        return (self.exit_time - self.entry_time).total_seconds() / 3600

    def to_dict(self) -> Dict[str, Any]:
        return {
            "side": self.side.value,
            "quantity": self.quantity,
            "entryTime": self.entry_time.isoformat(),
            "entryPrice": self.entry_price,
            "exitTime": self.exit_time.isoformat(),
            "exitPrice": self.exit_price,
            "pnl": self.pnl,
            "commission": self.commission,
            "exitReason": self.exit_reason.value,
            "maxAdverseExcursion": self.max_adverse_excursion,
            "maxFavorableExcursion": self.max_favorable_excursion,
        }


@dataclass(frozen=True)
class EquityPoint:
    time: datetime
    equity: float


# ============================================================================
# METRICS
# ============================================================================

def total_return(initial_capital: float, final_equity: float) -> float:
    return final_equity / initial_capital - 1.0


def max_drawdown(equity: Sequence[float]) -> float:
    """Largest (peak - trough) / peak over the curve, as a positive fraction."""
    peak = None
    worst = 0.0
    for value in equity:
        if peak is None or value > peak:
            peak = value
        elif peak > 0:
            worst = max(worst, (peak - value) / peak)
    return worst


def period_returns(equity: Sequence[float]) -> List[float]:
    return [
        equity[i] / equity[i - 1] - 1.0
        for i in range(1, len(equity))
        if equity[i - 1] != 0
    ]


def sharpe_ratio(equity: Sequence[float], periods_per_year: int) -> float:
    """Mean / population stddev of per-period returns, annualized; 0 when flat."""
    returns = period_returns(equity)
    if not returns:
        return 0.0
    std_return = statistics.pstdev(returns)
    if std_return == 0:
        return 0.0
    return statistics.fmean(returns) / std_return * math.sqrt(periods_per_year)


def win_rate(trades: Sequence[TradeRecord]) -> float:
    if not trades:
        return 0.0
    return sum(1 for t in trades if t.pnl > 0) / len(trades)


def profit_factor(trades: Sequence[TradeRecord]) -> float:
    """Gross profit / gross loss; inf with profit but no loss, 0 with no trades."""
    gross_profit = sum(t.pnl for t in trades if t.pnl > 0)
    gross_loss = abs(sum(t.pnl for t in trades if t.pnl < 0))
    if gross_loss > 0:
        return gross_profit / gross_loss
    return float('inf') if gross_profit > 0 else 0.0


def sortino_ratio(equity: Sequence[float], periods_per_year: int, target_return: float = 0.0) -> float:
    """
    Mean excess return over the downside deviation, annualized.

    The downside deviation is the root mean square of the below-target
    periods only. inf when no period falls below the target but the mean
    excess is positive; 0 without returns.
    """
    returns = period_returns(equity)
    if not returns:
        return 0.0
    excess = [r - target_return for r in returns]
    downside = [r for r in excess if r < 0]
    mean_excess = statistics.fmean(excess)
    if not downside:
        return float('inf') if mean_excess > 0 else 0.0
    deviation = math.sqrt(statistics.fmean([r * r for r in downside]))
    return mean_excess / deviation * math.sqrt(periods_per_year)


def calmar_ratio(equity: Sequence[float], periods_per_year: int) -> float:
    """Annualized mean return over max drawdown; 0 without drawdown."""
    returns = period_returns(equity)
    drawdown = max_drawdown(equity)
    if not returns or drawdown == 0:
        return 0.0
    return statistics.fmean(returns) * periods_per_year / drawdown


def value_at_risk(returns: Sequence[float], alpha: float = 0.05) -> float:
    """Historical VaR: the alpha-quantile of the returns (losses are negative)."""
    if not returns:
        return 0.0
    ordered = sorted(returns)
    return ordered[int(alpha * len(ordered))]


def conditional_var(returns: Sequence[float], alpha: float = 0.05) -> float:
    """Expected shortfall: mean of the returns at or below the VaR."""
    if not returns:
        return 0.0
    threshold = value_at_risk(returns, alpha)
    return statistics.fmean([r for r in returns if r <= threshold])


def payoff_ratio(trades: Sequence[TradeRecord]) -> float:
    """Average win / average loss; 0 unless there are both."""
    wins = [t.pnl for t in trades if t.pnl > 0]
    losses = [-t.pnl for t in trades if t.pnl < 0]
    if not wins or not losses:
        return 0.0
    return statistics.fmean(wins) / statistics.fmean(losses)


def max_consecutive(trades: Sequence[TradeRecord], winning: bool) -> int:
    """Longest run of winning (or losing) trades; a breakeven trade ends both runs."""
    longest = current = 0
    for trade in trades:
        if (trade.pnl > 0) if winning else (trade.pnl < 0):
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


@dataclass(frozen=True)
class AdvancedMetrics:
    """Risk statistics reported next to the headline metrics."""
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    value_at_risk: float = 0.0
    conditional_var: float = 0.0
    max_adverse_excursion: float = 0.0
    max_favorable_excursion: float = 0.0
    payoff_ratio: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sortinoRatio": self.sortino_ratio,
            "calmarRatio": self.calmar_ratio,
            "valueAtRisk": self.value_at_risk,
            "conditionalVaR": self.conditional_var,
            "maxAdverseExcursion": self.max_adverse_excursion,
            "maxFavorableExcursion": self.max_favorable_excursion,
            "payoffRatio": self.payoff_ratio,
            "maxConsecutiveWins": self.max_consecutive_wins,
            "maxConsecutiveLosses": self.max_consecutive_losses,
        }


# ============================================================================
# TRACKER
# ============================================================================

class PerformanceTracker:
    """
    Collects the equity curve and closed trades of one backtest run and
    computes its statistics.
    """

    def __init__(self, logger: StructuredLogger, initial_capital: float = 10000.0):
        self.logger = logger
        self.initial_capital = initial_capital
        self.trades: List[TradeRecord] = []
        self.equity_curve: List[EquityPoint] = []

    def record_trade(self, trade: TradeRecord) -> None:
        self.trades.append(trade)
        self.logger.debug("performance_tracker.trade_closed", {
            "side": trade.side,
            "pnl": trade.pnl,
            "exit_reason": trade.exit_reason,
        })

    def record_equity(self, time: datetime, equity: float) -> None:
        self.equity_curve.append(EquityPoint(time, equity))

    def replace_last_equity(self, equity: float) -> None:
        """Overwrite the latest point (used after end-of-data liquidation)."""
        last = self.equity_curve[-1]
        self.equity_curve[-1] = EquityPoint(last.time, equity)

    @property
    def final_equity(self) -> float:
        return self.equity_curve[-1].equity if self.equity_curve else self.initial_capital

    def calculate_metrics(self, periods_per_year: int) -> Dict[str, float]:
        """Calculate headline performance metrics."""
        values = [point.equity for point in self.equity_curve]
        return {
            "total_return": total_return(self.initial_capital, self.final_equity),
            "sharpe_ratio": sharpe_ratio(values, periods_per_year),
            "max_drawdown": max_drawdown(values),
            "win_rate": win_rate(self.trades),
            "profit_factor": profit_factor(self.trades),
            "total_trades": len(self.trades),
        }

    def calculate_advanced_metrics(self, periods_per_year: int, alpha: float = 0.05) -> AdvancedMetrics:
        """Calculate the risk statistics; VaR and CVaR are per period at level alpha."""
        values = [point.equity for point in self.equity_curve]
        returns = period_returns(values)
        return AdvancedMetrics(
            sortino_ratio=sortino_ratio(values, periods_per_year),
            calmar_ratio=calmar_ratio(values, periods_per_year),
            value_at_risk=value_at_risk(returns, alpha),
            conditional_var=conditional_var(returns, alpha),
            max_adverse_excursion=max((t.max_adverse_excursion for t in self.trades), default=0.0),
            max_favorable_excursion=max((t.max_favorable_excursion for t in self.trades), default=0.0),
            payoff_ratio=payoff_ratio(self.trades),
            max_consecutive_wins=max_consecutive(self.trades, winning=True),
            max_consecutive_losses=max_consecutive(self.trades, winning=False),
        )


# ============================================================================
# REPORT HELPERS
# ============================================================================

def _rounded(value: Optional[float], digits: int = 8) -> Optional[float]:
    if value is None or math.isinf(value) or math.isnan(value):
        return None
    return round(value, digits)


def validation_hash(result) -> str:
    """SHA-256 over the rounded headline metrics, for reproducibility checks."""
    payload = {
        "totalReturn": _rounded(result.total_return),
        "sharpeRatio": _rounded(result.sharpe_ratio),
        "maxDrawdown": _rounded(result.max_drawdown),
        "winRate": _rounded(result.win_rate),
        "profitFactor": _rounded(result.profit_factor),
        "totalTrades": result.total_trades,
        "finalEquity": _rounded(result.final_equity),
    }
    encoded = json.dumps(payload, sort_keys=True).encode('utf-8')
    return hashlib.sha256(encoded).hexdigest()


def _marker(time: datetime, is_buy: bool, price: float) -> Dict[str, Any]:
    return {
        "time": int(time.timestamp()),
        "position": "belowBar" if is_buy else "aboveBar",
        "shape": "arrowUp" if is_buy else "arrowDown",
        "text": "BUY" if is_buy else "SELL",
        "price": price,
    }


def trade_markers(result) -> List[Dict[str, Any]]:
    """Chart markers (entry and exit of every trade), ordered by time."""
    markers = []
    for trade in result.trades:
        is_long = trade.side == PositionSide.LONG
        markers.append(_marker(trade.entry_time, is_long, trade.entry_price))
        markers.append(_marker(trade.exit_time, not is_long, trade.exit_price))
    markers.sort(key=lambda m: m["time"])
    return markers
