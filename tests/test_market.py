"""
Tests for market price quotes, trend analysis and demand/supply balance.
"""

import random
from datetime import datetime, timezone

import pytest

from agriadvisor.services.market import (
    MarketService,
    analyze_price_series,
    base_price,
    price_impact,
    supply_demand_balance,
)
from agriadvisor.utils.kv_store import KV_KEYS

NOW = datetime(2024, 6, 5, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def market(store):
    return MarketService(store, rng=random.Random(11), clock=lambda: NOW)


class TestTrendClassification:
    """Trend labels depend only on the first and last price."""

    @pytest.mark.parametrize("series, expected", [
        ([100, 80, 140, 106], "bullish"),
        ([100, 400, 5, 94], "bearish"),
        ([100, 300, 1, 105], "stable"),
        ([100, 100, 100, 95], "stable"),
        ([1000, 1000, 1051], "bullish"),
        ([1000, 1000, 949], "bearish"),
    ])
    def test_trend_from_endpoints(self, series, expected):
        assert analyze_price_series(series).trend == expected

    def test_volatility_reported_separately(self):
        analysis = analyze_price_series([100, 300, 1, 101])
        assert analysis.trend == "stable"
        assert analysis.volatility > 15

    def test_flat_series(self):
        analysis = analyze_price_series([50, 50, 50])
        assert analysis.trend == "stable"
        assert analysis.volatility == 0.0
        assert analysis.support == analysis.resistance == 50

    def test_insufficient_data(self):
        assert analyze_price_series([42]).trend == "insufficient_data"


class TestDemandSupply:
    """Test the supply/demand balance."""

    def test_surplus(self):
        balance = supply_demand_balance(1200, 1000)
        assert balance.status == "surplus"
        assert balance.surplus == 200
        assert price_impact(balance) == "downward_pressure"

    def test_deficit(self):
        balance = supply_demand_balance(800, 1000)
        assert balance.status == "deficit"
        assert balance.deficit == 200
        assert price_impact(balance) == "upward_pressure"

    def test_balanced(self):
        balance = supply_demand_balance(1000, 1050)
        assert balance.status == "balanced"
        assert price_impact(balance) == "neutral"

    def test_cotton_analysis(self, market):
        analysis = market.get_demand_supply_analysis("cotton")
        assert analysis.balance.status == "deficit"
        assert analysis.demand.total == 600000
        assert analysis.price_impact == "upward_pressure"
        assert analysis.recommendations[0] == "Increase production capacity"


class TestPrices:
    """Test price quotes and caching."""

    def test_quote_stays_in_volatility_band(self, market):
        sample = market.get_current_prices("tomatoes", "punjab")

        reference = base_price("tomatoes") * 1.05
        assert sample.previous_price == round(reference)
        assert abs(sample.current_price - reference) <= reference * 0.15 + 1
        assert sample.unit == "₹/kg"
        assert sample.source != "fallback_data"

    def test_quote_is_cached(self, market, store):
        first = market.get_current_prices("cotton")
        second = market.get_current_prices("cotton")

        assert first.current_price == second.current_price
        assert store.get(KV_KEYS["market_prices"]("cotton", "all")) is not None

    def test_computation_error_returns_fallback(self, market, monkeypatch):
        def broken_quote(crop, region):
            raise ZeroDivisionError("no reference price")

        monkeypatch.setattr(market, "_quote", broken_quote)

        sample = market.get_current_prices("wheat")
        assert sample.source == "fallback_data"
        assert sample.current_price == 2100

    def test_unknown_crop_uses_default_price(self, market):
        sample = market.get_current_prices("quinoa")
        assert sample.previous_price == 100
        assert sample.market_centers == ["Local Market"]


class TestTrends:
    """Test the synthesized trend report."""

    def test_trend_report(self, market):
        trends = market.get_market_trends("tomatoes", "7days")

        assert trends.timeframe == "7days"
        assert len(trends.historical_data) == 8
        assert trends.trend in ("bullish", "bearish", "stable")
        assert trends.support <= trends.current_price <= trends.resistance
        assert [f.days for f in trends.forecast.forecasts] == [7, 14, 30]

    def test_unknown_timeframe_defaults_to_30_days(self, market):
        trends = market.get_market_trends("cotton", "fortnight")
        assert trends.timeframe == "30days"
        assert len(trends.historical_data) == 31


class TestMarketEndpoints:
    """Test the market HTTP endpoints."""

    def test_prices_endpoint(self, client):
        response = client.get("/market/prices/tomatoes", params={"region": "karnataka"})
        assert response.status_code == 200
        data = response.json()
        assert data["crop"] == "tomatoes"
        assert data["previousPrice"] == round(45 * 0.95)

    def test_trends_endpoint(self, client):
        response = client.get("/market/trends/sugarcane", params={"timeframe": "90days"})
        assert response.status_code == 200
        assert len(response.json()["historicalData"]) == 91

    def test_demand_supply_endpoint(self, client):
        response = client.get("/market/demand-supply/tomatoes")
        assert response.status_code == 200
        assert response.json()["balance"]["status"] == "balanced"
