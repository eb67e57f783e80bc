"""
Signal Models - Evaluation output data structures
=================================================
Order signals emitted by action nodes and price levels emitted by risk nodes.
"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from enum import Enum


class OrderSide(str, Enum):
    """Order side"""
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    """Order types"""
    MARKET = "market"
    LIMIT = "limit"


class RiskRule(str, Enum):
    """Risk node rules"""
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"


class SignalEvent(BaseModel):
    """Order request emitted by an action node on one timestep"""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(..., description="Bar time the signal fired on")
    symbol: str = Field(..., description="Trading symbol")
    side: OrderSide = Field(..., description="Buy or sell")
    quantity: float = Field(..., gt=0, description="Order quantity in base units")
    price: float = Field(..., description="Reference price (bar close)")
    order_type: OrderType = Field(default=OrderType.MARKET)
    node_id: str = Field(..., description="Emitting action node")

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "symbol": self.symbol,
            "side": self.side.value,
            "quantity": self.quantity,
            "price": self.price,
            "orderType": self.order_type.value,
            "nodeId": self.node_id,
        }


class RiskLevel(BaseModel):
    """Price level computed by a risk node on one timestep"""

    model_config = ConfigDict(frozen=True)

    node_id: str
    rule: RiskRule
    percentage: float = Field(..., gt=0)
    level: float

    def price_for_entry(self, entry_price: float, is_long: bool = True) -> float:
        """Level re-anchored on a position's entry price (mirrored for shorts)"""
        offset = self.percentage / 100.0
        if self.rule == RiskRule.STOP_LOSS:
            return entry_price * (1 - offset) if is_long else entry_price * (1 + offset)
        return entry_price * (1 + offset) if is_long else entry_price * (1 - offset)
