"""End-to-end integration tests.

Tests the complete data flow with in-memory stores:
1. Ingestion → history → scoring → signal broadcast
2. Ingested prices → position check → closure broadcast
3. Graceful degradation: the pipeline runs without Redis or a database
"""

import orjson
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from app.api.websocket import ConnectionManager
from app.models import (
    Direction,
    EventType,
    Instrument,
    MarketClass,
    OpenPositionRequest,
    PriceQuote,
    PriorityTier,
)
from app.services.ingestion_scheduler import IngestionScheduler
from app.services.position_monitor import PositionMonitor
from app.services.signal_service import SignalService
from app.storage import price_cache
from app.storage.price_history import PriceHistoryRegistry
from core.indicators import IndicatorSnapshot
from core.signal_scorer import SignalScorer

START = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

BTC = Instrument(symbol="BTCUSDT", market=MarketClass.CRYPTO, priority=PriorityTier.HIGH)
EUR = Instrument(symbol="EURUSD", market=MarketClass.FOREX, priority=PriorityTier.MEDIUM)

BULLISH = IndicatorSnapshot(
    price=110.0,
    sma5=108.0,
    sma10=105.0,
    sma20=100.0,
    macd_line=1.0,
    macd_signal=0.5,
    macd_histogram=0.5,
    rsi=25.0,
    stochastic_k=10.0,
    momentum_pct=1.0,
    volatility=0.01,
)


class ScriptedGateway:
    """Serves a fixed price per symbol, advancing the clock on each fetch."""

    def __init__(self):
        self.prices = {"BTCUSDT": Decimal("100"), "EURUSD": Decimal("1.08")}
        self.fetches = 0
        self.fetch_with_retry = AsyncMock(side_effect=self._fetch)

    async def _fetch(self, instrument):
        self.fetches += 1
        return PriceQuote(
            symbol=instrument.symbol,
            price=self.prices[instrument.symbol],
            source="test",
            timestamp=START + timedelta(seconds=30 * self.fetches),
        )


def make_ws():
    ws = MagicMock()
    ws.accept = AsyncMock()
    ws.send_text = AsyncMock()
    return ws


def sent(ws):
    return [orjson.loads(c.args[0]) for c in ws.send_text.await_args_list]


@pytest.fixture(autouse=True)
def clean_price_cache():
    price_cache.clear()
    yield
    price_cache.clear()


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def registry():
    return PriceHistoryRegistry(max_size=50)


@pytest.fixture
def scheduler(gateway, registry):
    return IngestionScheduler([BTC, EUR], gateway, registry, inter_batch_delay=0)


@pytest.fixture
def manager():
    return ConnectionManager(send_timeout=0.5)


class TestSignalFlow:
    """Ingestion feeds scoring, scoring feeds subscribers."""

    @pytest.mark.asyncio
    async def test_no_signal_until_history_is_deep_enough(self, scheduler, registry):
        scorer = SignalScorer()
        scorer.calculator = MagicMock()
        scorer.calculator.snapshot.return_value = BULLISH
        service = SignalService([BTC, EUR], registry, scorer=scorer)

        for _ in range(10):
            await scheduler.run_long_cycle()

        assert await service.run_scoring_pass(now=START) == []

    @pytest.mark.asyncio
    async def test_signal_reaches_subscriber(self, scheduler, registry, manager):
        scorer = SignalScorer()
        scorer.calculator = MagicMock()
        scorer.calculator.snapshot.return_value = BULLISH
        service = SignalService([BTC, EUR], registry, scorer=scorer)
        service.on_signal(manager.send_signal)

        ws = make_ws()
        await manager.connect(ws)

        for _ in range(25):
            stats = await scheduler.run_long_cycle()
            assert stats.succeeded == 2

        now = START + timedelta(hours=1)
        emitted = await service.run_scoring_pass(now=now)

        assert {s.symbol for s in emitted} == {"BTCUSDT", "EURUSD"}
        assert all(s.direction == Direction.BUY for s in emitted)

        messages = [m for m in sent(ws) if m["type"] == "new_signal"]
        assert {m["data"]["symbol"] for m in messages} == {"BTCUSDT", "EURUSD"}

        # The forex multiplier lifts EURUSD above BTCUSDT
        active = await service.get_active_signals(now=now)
        assert [s.symbol for s in active] == ["EURUSD", "BTCUSDT"]

        # A repeat pass at equal confidence keeps the existing signals
        assert await service.run_scoring_pass(now=now) == []
        assert len([m for m in sent(ws) if m["type"] == "new_signal"]) == 2

    @pytest.mark.asyncio
    async def test_latest_prices_cached_without_redis(self, scheduler):
        await scheduler.run_long_cycle()

        data = price_cache.get_price_immediate("BTCUSDT")
        assert data["price"] == 100.0
        assert data["source"] == "test"


class TestPositionFlow:
    """Ingested prices drive demo position closures."""

    @pytest.mark.asyncio
    async def test_take_profit_broadcast(self, scheduler, registry, gateway, manager):
        async def lookup(symbol, market):
            point = registry.latest(symbol)
            return point.price if point else None

        monitor = PositionMonitor(lookup, instruments=[BTC, EUR])
        monitor.on_closure(manager.send_position_event)
        ws = make_ws()
        await manager.connect(ws)

        await scheduler.run_long_cycle()
        position = await monitor.open_position(OpenPositionRequest(
            symbol="BTCUSDT",
            direction=Direction.BUY,
            quantity=Decimal("2"),
            entry_price=Decimal("100"),
            target_price=Decimal("110"),
            stop_loss=Decimal("95"),
        ))

        gateway.prices["BTCUSDT"] = Decimal("105")
        await scheduler.run_long_cycle()
        assert await monitor.check_positions() == []
        assert position.unrealized_pnl == Decimal("10")

        gateway.prices["BTCUSDT"] = Decimal("111")
        await scheduler.run_long_cycle()
        closed = await monitor.check_positions()

        assert closed == [position]
        assert position.realized_pnl == Decimal("22")
        [event] = [m for m in sent(ws) if m["type"] == EventType.TAKE_PROFIT_HIT.value]
        assert event["data"]["id"] == position.id
        assert monitor.open_count == 0

        # Further checks never close it again
        assert await monitor.check_positions() == []
