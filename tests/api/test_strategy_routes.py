"""
Tests for the strategy REST endpoints
Covers catalog listing, validation and synchronous backtests.
"""

import pytest
from fastapi.testclient import TestClient

from strategy_lab.api.backtest_routes import create_app
from strategy_lab.infrastructure.config.settings import AppSettings


@pytest.fixture
def test_client():
    """Create test client for API testing"""
    app = create_app(AppSettings())
    return TestClient(app)


class TestComponentsEndpoint:

    def test_lists_catalog(self, test_client):
        response = test_client.get("/api/strategies/components")
        assert response.status_code == 200
        data = response.json()["data"]
        assert [c["name"] for c in data["action"]] == ["buy_order", "sell_order"]
        assert data["indicator"][2]["title"] == "RSI"


class TestValidateEndpoint:

    def test_valid_strategy(self, test_client, rsi_document):
        response = test_client.post("/api/strategies/validate", json={"strategy": rsi_document})
        assert response.status_code == 200
        assert response.json()["data"] == {"valid": True, "errors": [], "warnings": []}

    def test_invalid_strategy(self, test_client, rsi_document):
        rsi_document["connections"] = rsi_document["connections"][:1]
        response = test_client.post("/api/strategies/validate", json={"strategy": rsi_document})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["valid"] is False
        assert data["errors"][0]["type"] == "missing_input"
        assert data["errors"][0]["node_id"] == "buy_1"
        assert data["warnings"][0]["type"] == "unused_output"

    def test_unloadable_document(self, test_client, rsi_document):
        rsi_document["components"][0]["kind"] = "ichimoku"
        response = test_client.post("/api/strategies/validate", json={"strategy": rsi_document})
        assert response.status_code == 400
        assert response.json()["detail"]["type"] == "serialization_error"

    def test_malformed_version(self, test_client, rsi_document):
        rsi_document["version"] = {"major": 1}
        response = test_client.post("/api/strategies/validate", json={"strategy": rsi_document})
        assert response.status_code == 400
        assert response.json()["detail"]["type"] == "serialization_error"

    def test_legacy_document(self, test_client, legacy_document):
        response = test_client.post("/api/strategies/validate", json={"strategy": legacy_document})
        assert response.status_code == 200
        assert response.json()["data"]["valid"] is True


class TestBacktestEndpoint:

    def test_report_returned(self, test_client, rsi_document, oversold_bars):
        response = test_client.post("/api/strategies/backtest", json={
            "strategy": rsi_document,
            "bars": oversold_bars,
        })
        assert response.status_code == 200
        report = response.json()["data"]
        assert report["totalTrades"] == 1
        assert report["finalEquity"] == pytest.approx(10055.0)
        assert report["profitFactor"] is None
        assert len(report["markers"]) == 2

    def test_date_range(self, test_client, rsi_document, oversold_bars):
        response = test_client.post("/api/strategies/backtest", json={
            "strategy": rsi_document,
            "bars": oversold_bars,
            "startDate": oversold_bars[15]["time"],
        })
        assert response.status_code == 200
        report = response.json()["data"]
        assert report["evaluatedTimesteps"] == 10
        # ten bars are too few for RSI(14) to warm up
        assert report["totalTrades"] == 0

    def test_validation_errors_are_422(self, test_client, rsi_document, oversold_bars):
        rsi_document["connections"] = rsi_document["connections"][:1]
        response = test_client.post("/api/strategies/backtest", json={
            "strategy": rsi_document,
            "bars": oversold_bars,
        })
        assert response.status_code == 422
        errors = response.json()["detail"]["errors"]
        assert errors[0]["type"] == "missing_input"

    def test_bad_market_data_is_400(self, test_client, rsi_document, oversold_bars):
        response = test_client.post("/api/strategies/backtest", json={
            "strategy": rsi_document,
            "bars": list(reversed(oversold_bars)),
        })
        assert response.status_code == 400
        assert response.json()["detail"]["type"] == "market_data_error"

    def test_missing_bars_is_request_error(self, test_client, rsi_document):
        response = test_client.post("/api/strategies/backtest", json={"strategy": rsi_document})
        assert response.status_code == 422
