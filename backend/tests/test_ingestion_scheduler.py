"""Tests for tiered price ingestion."""

import asyncio
import logging
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from app.models import (
    FailureKind,
    Instrument,
    MarketClass,
    PriceFailure,
    PricePoint,
    PriceQuote,
    PriorityTier,
)
from app.services.ingestion_scheduler import IngestionScheduler
from app.storage import price_cache
from app.storage.price_history import PriceHistoryRegistry

UNIVERSE = [
    Instrument(symbol="BTCUSDT", market=MarketClass.CRYPTO, priority=PriorityTier.HIGH),
    Instrument(symbol="ETHUSDT", market=MarketClass.CRYPTO, priority=PriorityTier.HIGH),
    Instrument(symbol="EURUSD", market=MarketClass.FOREX, priority=PriorityTier.HIGH),
    Instrument(symbol="AAPL", market=MarketClass.STOCKS, priority=PriorityTier.MEDIUM),
    Instrument(symbol="TSLA", market=MarketClass.STOCKS, priority=PriorityTier.MEDIUM),
    Instrument(symbol="GOLD", market=MarketClass.COMMODITIES, priority=PriorityTier.LOW),
]


def ok(instrument, price=100, source="test"):
    return PriceQuote(symbol=instrument.symbol, price=Decimal(str(price)), source=source)


class TestIngestionScheduler:
    """Tests for IngestionScheduler."""

    @pytest.fixture(autouse=True)
    def clean_price_cache(self):
        price_cache.clear()
        yield
        price_cache.clear()

    @pytest.fixture
    def gateway(self):
        gateway = MagicMock()
        gateway.fetch_with_retry = AsyncMock(side_effect=lambda i: ok(i))
        return gateway

    @pytest.fixture
    def registry(self):
        return PriceHistoryRegistry(max_size=50)

    @pytest.fixture
    def price_repo(self):
        repo = MagicMock()
        repo.save_batch = AsyncMock(return_value=0)
        repo.get_latest = AsyncMock(return_value=[])
        return repo

    @pytest.fixture
    def scheduler(self, gateway, registry, price_repo):
        return IngestionScheduler(
            UNIVERSE,
            gateway,
            registry,
            price_repo=price_repo,
            inter_batch_delay=0,
            escalation_cycles=2,
        )

    def test_partition_in_tier_order(self, scheduler):
        tiers = scheduler.partition()
        assert [tier for tier, _ in tiers] == [
            PriorityTier.HIGH,
            PriorityTier.MEDIUM,
            PriorityTier.LOW,
        ]
        assert [i.symbol for i in tiers[0][1]] == ["BTCUSDT", "ETHUSDT", "EURUSD"]

    @pytest.mark.asyncio
    async def test_short_cycle_high_tier_only(self, scheduler, gateway, registry):
        stats = await scheduler.run_short_cycle()

        fetched = {c.args[0].symbol for c in gateway.fetch_with_retry.await_args_list}
        assert fetched == {"BTCUSDT", "ETHUSDT", "EURUSD"}
        assert stats.attempted == 3
        assert stats.succeeded == 3
        assert set(registry.symbols()) == fetched

    @pytest.mark.asyncio
    async def test_long_cycle_covers_universe(self, scheduler, gateway, price_repo):
        stats = await scheduler.run_long_cycle()

        assert stats.attempted == len(UNIVERSE)
        assert gateway.fetch_with_retry.await_count == len(UNIVERSE)
        # One batched write per cycle
        price_repo.save_batch.assert_awaited_once()
        assert len(price_repo.save_batch.await_args.args[0]) == len(UNIVERSE)

    @pytest.mark.asyncio
    async def test_high_tier_fetched_first(self, scheduler, gateway):
        await scheduler.run_long_cycle()

        order = [c.args[0].priority for c in gateway.fetch_with_retry.await_args_list]
        assert order == sorted(order, key=lambda t: ["high", "medium", "low"].index(t.value))

    @pytest.mark.asyncio
    async def test_batches_bound_concurrency(self, gateway, registry):
        in_flight = 0
        peak = 0

        async def fetch(instrument):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1
            return ok(instrument)

        gateway.fetch_with_retry = AsyncMock(side_effect=fetch)
        scheduler = IngestionScheduler(
            UNIVERSE,
            gateway,
            registry,
            batch_sizes={PriorityTier.HIGH: 2},
            inter_batch_delay=0,
        )

        await scheduler.run_short_cycle()
        assert peak == 2

    @pytest.mark.asyncio
    async def test_failed_symbol_is_skipped(self, scheduler, gateway, registry):
        def fetch(instrument):
            if instrument.symbol == "ETHUSDT":
                return PriceFailure(symbol="ETHUSDT", kind=FailureKind.TIMEOUT)
            return ok(instrument)

        gateway.fetch_with_retry = AsyncMock(side_effect=fetch)
        stats = await scheduler.run_short_cycle()

        assert stats.succeeded == 2
        assert stats.failed == ["ETHUSDT"]
        assert registry.latest("ETHUSDT") is None
        assert registry.latest("BTCUSDT") is not None

    @pytest.mark.asyncio
    async def test_gateway_exception_does_not_sink_batch(self, scheduler, gateway, registry):
        def fetch(instrument):
            if instrument.symbol == "BTCUSDT":
                raise RuntimeError("unexpected")
            return ok(instrument)

        gateway.fetch_with_retry = AsyncMock(side_effect=fetch)
        stats = await scheduler.run_short_cycle()

        assert stats.failed == ["BTCUSDT"]
        assert stats.succeeded == 2

    @pytest.mark.asyncio
    async def test_synthetic_prices_counted(self, scheduler, gateway):
        gateway.fetch_with_retry = AsyncMock(
            side_effect=lambda i: ok(i, 2650, "fallback" if i.symbol == "GOLD" else "test")
        )
        stats = await scheduler.run_long_cycle()
        assert stats.synthetic == 1

    @pytest.mark.asyncio
    async def test_updates_latest_price_cache(self, scheduler):
        await scheduler.run_short_cycle()

        cached = price_cache.get_price_immediate("BTCUSDT")
        assert cached["price"] == 100.0
        assert cached["source"] == "test"

    @pytest.mark.asyncio
    async def test_persist_failure_is_logged(self, scheduler, price_repo, caplog):
        price_repo.save_batch.side_effect = ConnectionError("db down")

        with caplog.at_level(logging.WARNING):
            stats = await scheduler.run_short_cycle()

        assert stats.succeeded == 3
        assert "Failed to persist" in caplog.text

    @pytest.mark.asyncio
    async def test_outage_escalation(self, scheduler, gateway, caplog):
        gateway.fetch_with_retry = AsyncMock(
            side_effect=lambda i: PriceFailure(symbol=i.symbol)
        )

        with caplog.at_level(logging.ERROR):
            for _ in range(3):
                stats = await scheduler.run_short_cycle()

        assert stats.all_failed
        assert scheduler.consecutive_outages == 3
        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 1

        gateway.fetch_with_retry = AsyncMock(side_effect=lambda i: ok(i))
        await scheduler.run_short_cycle()
        assert scheduler.consecutive_outages == 0

    @pytest.mark.asyncio
    async def test_warm_up_from_store(self, scheduler, price_repo, registry):
        start = datetime(2024, 6, 1, tzinfo=timezone.utc)

        def latest(symbol, limit):
            return [
                PricePoint(
                    symbol=symbol,
                    price=Decimal(100 + i),
                    timestamp=start + timedelta(minutes=i),
                    source="binance",
                    market=MarketClass.CRYPTO,
                )
                for i in range(5)
            ] if symbol == "BTCUSDT" else []

        price_repo.get_latest = AsyncMock(side_effect=latest)
        loaded = await scheduler.warm_up()

        assert loaded == 5
        assert registry.latest("BTCUSDT").price == Decimal("104")
        price_repo.get_latest.assert_any_await("BTCUSDT", 50)

    @pytest.mark.asyncio
    async def test_runs_without_store(self, gateway, registry):
        scheduler = IngestionScheduler(UNIVERSE, gateway, registry, inter_batch_delay=0)

        stats = await scheduler.run_long_cycle()
        assert stats.succeeded == len(UNIVERSE)
        assert await scheduler.warm_up() == 0
