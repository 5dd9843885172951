"""Tests for the REST API routes."""

import httpx
import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

from fastapi import FastAPI

from app.api import router
from app.models import Direction, Instrument, MarketClass, PriorityTier, Signal, Timeframe
from app.services.position_monitor import DemoAccount, PositionMonitor
from app.services.signal_service import SignalService
from app.storage import price_cache
from app.storage.price_history import PriceHistoryRegistry

BTC = Instrument(symbol="BTCUSDT", market=MarketClass.CRYPTO, priority=PriorityTier.HIGH)


class PriceBoard:
    def __init__(self):
        self.prices: dict[str, Decimal] = {}

    async def __call__(self, symbol, market):
        return self.prices.get(symbol)


@pytest.fixture
def board():
    return PriceBoard()


@pytest.fixture
def app(board):
    app = FastAPI()
    app.include_router(router, prefix="/api")

    registry = PriceHistoryRegistry()
    account = DemoAccount(max_open_positions=2)
    app.state.registry = registry
    app.state.account = account
    app.state.signal_service = SignalService([BTC], registry, scorer=MagicMock())
    app.state.position_monitor = PositionMonitor(board, ledger=account, instruments=[BTC])

    gateway = MagicMock()
    gateway.get_status.return_value = {"binance": {"available": True, "failures": 0}}
    app.state.gateway = gateway
    return app


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def open_body(**overrides):
    body = {
        "symbol": "BTCUSDT",
        "direction": "BUY",
        "quantity": 2,
        "entry_price": 100,
        "target_price": 110,
        "stop_loss": 95,
    }
    body.update(overrides)
    return body


class TestSignalRoutes:
    @pytest.mark.asyncio
    async def test_active_signals_sorted_and_filtered(self, app, client):
        service = app.state.signal_service
        now = datetime.now(timezone.utc)
        for symbol, confidence in (("BTCUSDT", 65), ("EURUSD", 88)):
            service._active[symbol] = Signal(
                symbol=symbol,
                direction=Direction.BUY,
                confidence=confidence,
                entry_price=Decimal("100"),
                target_price=Decimal("106"),
                stop_loss=Decimal("97"),
                timeframe=Timeframe.H1,
                market=MarketClass.CRYPTO,
                created_at=now,
                expires_at=now + timedelta(hours=1),
            )

        response = await client.get("/api/signals/active")
        assert response.status_code == 200
        assert [s["confidence"] for s in response.json()] == [88, 65]

        response = await client.get("/api/signals/active", params={"symbol": "BTCUSDT"})
        assert [s["symbol"] for s in response.json()] == ["BTCUSDT"]

    @pytest.mark.asyncio
    async def test_service_missing(self, app, client):
        del app.state.signal_service
        response = await client.get("/api/signals/active")
        assert response.status_code == 503


class TestPositionRoutes:
    @pytest.mark.asyncio
    async def test_open_and_list(self, client):
        response = await client.post("/api/positions", json=open_body())
        assert response.status_code == 200
        position = response.json()
        assert position["status"] == "open"
        assert position["market"] == "crypto"

        listed = (await client.get("/api/positions")).json()
        assert [p["id"] for p in listed] == [position["id"]]

    @pytest.mark.asyncio
    async def test_open_rejects_bad_levels(self, client):
        response = await client.post("/api/positions", json=open_body(target_price=90))
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_open_unknown_symbol_needs_market(self, client):
        response = await client.post("/api/positions", json=open_body(symbol="DOGEUSDT"))
        assert response.status_code == 400

        response = await client.post("/api/positions", json=open_body(symbol="DOGEUSDT", market="crypto"))
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_open_limit_reached(self, client):
        for _ in range(2):
            assert (await client.post("/api/positions", json=open_body())).status_code == 200
        response = await client.post("/api/positions", json=open_body())
        assert response.status_code == 400
        assert "Maximum" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_manual_close(self, client, board):
        position = (await client.post("/api/positions", json=open_body())).json()
        board.prices["BTCUSDT"] = Decimal("104")

        response = await client.post(f"/api/positions/{position['id']}/close")
        assert response.status_code == 200
        closed = response.json()
        assert closed["status"] == "closed"
        assert closed["closure_reason"] == "manual"
        assert closed["realized_pnl"] == 8.0

        again = await client.post(f"/api/positions/{position['id']}/close")
        assert again.status_code == 409

        listed = (await client.get("/api/positions", params={"status": "closed"})).json()
        assert [p["id"] for p in listed] == [position["id"]]

    @pytest.mark.asyncio
    async def test_close_at_explicit_price(self, client):
        position = (await client.post("/api/positions", json=open_body())).json()
        response = await client.post(f"/api/positions/{position['id']}/close", json={"price": 97})
        assert response.json()["realized_pnl"] == -6.0

    @pytest.mark.asyncio
    async def test_close_unknown(self, client):
        response = await client.post("/api/positions/nope/close")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_bad_status_filter(self, client):
        response = await client.get("/api/positions", params={"status": "pending"})
        assert response.status_code == 400


class TestStatusRoutes:
    @pytest.mark.asyncio
    async def test_status(self, app, client):
        app.state.scheduler = SimpleNamespace(
            instruments=[BTC],
            consecutive_outages=0,
            last_stats={},
        )
        response = await client.get("/api/status")
        body = response.json()
        assert response.status_code == 200
        assert body["instruments"] == 1
        assert body["open_positions"] == 0
        assert body["account"]["max_open_positions"] == 2

    @pytest.mark.asyncio
    async def test_providers(self, client):
        response = await client.get("/api/providers")
        assert response.json()["binance"]["available"] is True

    @pytest.mark.asyncio
    async def test_prices(self, app, client):
        price_cache.clear()
        app.state.scheduler = SimpleNamespace(instruments=[BTC], consecutive_outages=0, last_stats={})
        await price_cache.update_price("BTCUSDT", 67000.5, source="binance")

        body = (await client.get("/api/prices")).json()

        assert body["BTCUSDT"]["price"] == 67000.5
        assert body["BTCUSDT"]["market"] == "crypto"
        assert body["BTCUSDT"]["fresh"] is True
        price_cache.clear()

    @pytest.mark.asyncio
    async def test_prices_without_ingestion(self, client):
        response = await client.get("/api/prices")
        assert response.status_code == 503
