"""
Strategy API Routes
===================
REST endpoints for the strategy builder: component catalog, graph
validation and synchronous backtests over caller-supplied bars.

Endpoints:
- GET /api/strategies/components - Component catalog grouped by kind
- POST /api/strategies/validate - Validate a strategy document
- POST /api/strategies/backtest - Run a backtest and return the report
"""

import asyncio
from typing import Dict, Any, List, Optional
from fastapi import APIRouter, FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from ..core.exceptions import StrategyEngineError, StrategyValidationFailed
from ..core.logger import get_logger
from ..infrastructure.config.settings import AppSettings
from ..strategy_graph.graph import StrategyParameters
from ..strategy_graph.node_catalog import catalog_as_dict
from ..strategy_graph.serializer import StrategySerializer
from ..strategy_graph.validators import GraphValidator
from ..trading.backtesting_engine import BacktestEngine

# =============================================================================
# Router Setup
# =============================================================================

router = APIRouter(prefix="/api/strategies", tags=["strategies"])

logger = get_logger(__name__)

_settings: Optional[AppSettings] = None


def initialize_strategy_dependencies(settings: Optional[AppSettings] = None) -> None:
    """Inject application settings (called from create_app)."""
    global _settings
    _settings = settings


def get_settings() -> AppSettings:
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


# =============================================================================
# Request Models
# =============================================================================

class ValidateRequest(BaseModel):
    strategy: Dict[str, Any] = Field(..., description="Serialized strategy document")


class BacktestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    strategy: Dict[str, Any] = Field(..., description="Serialized strategy document")
    bars: List[Dict[str, Any]] = Field(..., description="OHLCV bars, ascending by time")
    start_date: Optional[str] = Field(default=None, alias="startDate")
    end_date: Optional[str] = Field(default=None, alias="endDate")


def _serializer() -> StrategySerializer:
    return StrategySerializer(StrategyParameters.from_settings(get_settings().strategy_defaults))


def _bad_request(error: StrategyEngineError) -> HTTPException:
    return HTTPException(status_code=400, detail=error.to_dict())


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/components", response_model=Dict[str, Any])
async def list_components() -> Dict[str, Any]:
    """Component catalog grouped by kind (indicator, condition, action, risk)."""
    return {
        "status": "success",
        "data": catalog_as_dict(),
    }


@router.post("/validate", response_model=Dict[str, Any])
async def validate_strategy(request: ValidateRequest) -> Dict[str, Any]:
    """
    Validate a strategy document.

    Structural problems that stop the document from loading (unknown kinds,
    bad parameters, cycles) are returned as 400; graph-level findings are
    returned as a normal response.
    """
    try:
        graph = _serializer().from_dict(request.strategy)
    except StrategyEngineError as e:
        logger.warning("strategy_routes.validate_load_failed", {"error": e.to_dict()})
        raise _bad_request(e)

    errors, warnings = GraphValidator().validate(graph)
    return {
        "status": "success",
        "data": {
            "valid": not errors,
            "errors": [error.to_dict() for error in errors],
            "warnings": [warning.to_dict() for warning in warnings],
        },
    }


@router.post("/backtest", response_model=Dict[str, Any])
async def run_backtest(request: BacktestRequest) -> Dict[str, Any]:
    """
    Run a backtest synchronously and return the report.

    Returns:
        422 with the validation errors if the graph is invalid,
        400 for unreadable documents or market data
    """
    try:
        graph = _serializer().from_dict(request.strategy)
    except StrategyEngineError as e:
        raise _bad_request(e)

    engine = BacktestEngine(get_settings().backtest)
    try:
        result = await asyncio.to_thread(
            engine.run, graph, request.bars, request.start_date, request.end_date
        )
    except StrategyValidationFailed as e:
        raise HTTPException(status_code=422, detail={"errors": [error.to_dict() for error in e.errors]})
    except StrategyEngineError as e:
        raise _bad_request(e)

    logger.info("strategy_routes.backtest_completed", {
        "strategy_id": graph.id,
        "bars": len(request.bars),
        "total_trades": result.total_trades,
    })

    return {
        "status": "success",
        "data": result.to_report(),
    }


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Build the FastAPI application serving the strategy routes."""
    initialize_strategy_dependencies(settings)
    app = FastAPI(title="Strategy Lab API")
    app.include_router(router)
    return app
