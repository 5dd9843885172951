"""Tests for the signal service replacement policy."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from app.models import (
    Direction,
    Instrument,
    MarketClass,
    PriorityTier,
    Signal,
    SignalStatus,
    Timeframe,
)
from app.services.signal_service import SignalService
from app.storage.price_history import PriceHistoryRegistry

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

BTC = Instrument(symbol="BTCUSDT", market=MarketClass.CRYPTO, priority=PriorityTier.HIGH)
EUR = Instrument(symbol="EURUSD", market=MarketClass.FOREX, priority=PriorityTier.HIGH)


def make_signal(symbol="BTCUSDT", confidence=70, created_at=NOW, ttl=timedelta(hours=1)):
    return Signal(
        symbol=symbol,
        direction=Direction.BUY,
        confidence=confidence,
        entry_price=Decimal("100"),
        target_price=Decimal("106"),
        stop_loss=Decimal("97"),
        timeframe=Timeframe.H1,
        market=MarketClass.CRYPTO,
        created_at=created_at,
        expires_at=created_at + ttl,
    )


class TestSignalService:
    """Tests for SignalService."""

    @pytest.fixture
    def mock_repo(self):
        repo = MagicMock()
        repo.save = AsyncMock()
        repo.delete_superseded = AsyncMock(return_value=0)
        repo.get_active = AsyncMock(return_value=[])
        repo.expire_stale = AsyncMock(return_value=0)
        return repo

    @pytest.fixture
    def scorer(self):
        return MagicMock()

    @pytest.fixture
    def service(self, scorer, mock_repo):
        return SignalService(
            [BTC, EUR],
            PriceHistoryRegistry(),
            scorer=scorer,
            signal_repo=mock_repo,
        )

    @pytest.mark.asyncio
    async def test_stored_signal_is_broadcast(self, service, scorer, mock_repo):
        signal = make_signal()
        scorer.score.side_effect = lambda i, points, now=None: signal if i is BTC else None
        callback = AsyncMock()
        service.on_signal(callback)

        emitted = await service.run_scoring_pass(now=NOW)

        assert emitted == [signal]
        mock_repo.save.assert_awaited_once_with(signal)
        mock_repo.delete_superseded.assert_awaited_once_with("BTCUSDT", 70, NOW)
        callback.assert_awaited_once_with(signal)

    @pytest.mark.asyncio
    async def test_store_failure_skips_broadcast(self, service, scorer, mock_repo):
        scorer.score.side_effect = lambda i, points, now=None: make_signal() if i is BTC else None
        mock_repo.save.side_effect = ConnectionError("db down")
        callback = AsyncMock()
        service.on_signal(callback)

        emitted = await service.run_scoring_pass(now=NOW)

        assert emitted == []
        callback.assert_not_awaited()
        assert service.active_count == 0

    @pytest.mark.asyncio
    async def test_weaker_signal_dropped(self, service, scorer, mock_repo):
        strong = make_signal(confidence=80)
        weak = make_signal(confidence=70, created_at=NOW + timedelta(minutes=5))

        scorer.score.side_effect = lambda i, points, now=None: strong if i is BTC else None
        await service.run_scoring_pass(now=NOW)

        scorer.score.side_effect = lambda i, points, now=None: weak if i is BTC else None
        emitted = await service.run_scoring_pass(now=NOW + timedelta(minutes=5))

        assert emitted == []
        assert mock_repo.save.await_count == 1
        active = await service.get_active_signals(now=NOW + timedelta(minutes=5))
        assert [s.id for s in active] == [strong.id]

    @pytest.mark.asyncio
    async def test_equal_confidence_keeps_existing(self, service, scorer):
        first = make_signal(confidence=75)
        second = make_signal(confidence=75, created_at=NOW + timedelta(minutes=1))

        scorer.score.side_effect = lambda i, points, now=None: first if i is BTC else None
        await service.run_scoring_pass(now=NOW)
        scorer.score.side_effect = lambda i, points, now=None: second if i is BTC else None
        emitted = await service.run_scoring_pass(now=NOW + timedelta(minutes=1))

        assert emitted == []

    @pytest.mark.asyncio
    async def test_stronger_signal_replaces(self, service, scorer, mock_repo):
        weak = make_signal(confidence=65)
        strong = make_signal(confidence=85, created_at=NOW + timedelta(minutes=5))
        later = NOW + timedelta(minutes=5)

        scorer.score.side_effect = lambda i, points, now=None: weak if i is BTC else None
        await service.run_scoring_pass(now=NOW)
        scorer.score.side_effect = lambda i, points, now=None: strong if i is BTC else None
        emitted = await service.run_scoring_pass(now=later)

        assert emitted == [strong]
        mock_repo.delete_superseded.assert_awaited_with("BTCUSDT", 85, later)
        active = await service.get_active_signals("BTCUSDT", now=later)
        # At most one live signal per symbol
        assert [s.id for s in active] == [strong.id]
        assert weak.status == SignalStatus.SUPERSEDED

    @pytest.mark.asyncio
    async def test_expired_signal_replaced_by_weaker(self, service, scorer):
        old = make_signal(confidence=90, ttl=timedelta(minutes=10))
        new = make_signal(confidence=65, created_at=NOW + timedelta(minutes=20))

        scorer.score.side_effect = lambda i, points, now=None: old if i is BTC else None
        await service.run_scoring_pass(now=NOW)
        scorer.score.side_effect = lambda i, points, now=None: new if i is BTC else None
        emitted = await service.run_scoring_pass(now=NOW + timedelta(minutes=20))

        assert emitted == [new]
        assert old.status == SignalStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_stored_live_signal_blocks_insert(self, service, scorer, mock_repo):
        # Another writer left a stronger signal in the store
        mock_repo.get_active.return_value = [make_signal(confidence=90, created_at=NOW - timedelta(minutes=1))]
        scorer.score.side_effect = lambda i, points, now=None: make_signal(confidence=70) if i is BTC else None

        emitted = await service.run_scoring_pass(now=NOW)

        assert emitted == []
        mock_repo.save.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_scoring_error_isolated(self, service, scorer):
        eur_signal = make_signal(symbol="EURUSD")

        def score(instrument, points, now=None):
            if instrument is BTC:
                raise ValueError("bad data")
            return eur_signal

        scorer.score.side_effect = score
        emitted = await service.run_scoring_pass(now=NOW)

        assert emitted == [eur_signal]

    @pytest.mark.asyncio
    async def test_callback_error_does_not_block_others(self, service, scorer):
        scorer.score.side_effect = lambda i, points, now=None: make_signal() if i is BTC else None
        failing = AsyncMock(side_effect=RuntimeError("subscriber broke"))
        healthy = AsyncMock()
        service.on_signal(failing)
        service.on_signal(healthy)

        await service.run_scoring_pass(now=NOW)

        healthy.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_expire_stale_each_pass(self, service, scorer, mock_repo):
        scorer.score.return_value = None
        await service.run_scoring_pass(now=NOW)
        mock_repo.expire_stale.assert_awaited_once_with(NOW)

    @pytest.mark.asyncio
    async def test_load_active_keeps_best_per_symbol(self, service, mock_repo):
        mock_repo.get_active.return_value = [
            make_signal(confidence=70),
            make_signal(confidence=85, created_at=NOW + timedelta(seconds=1)),
            make_signal(symbol="EURUSD", confidence=62),
        ]

        loaded = await service.load_active_signals()

        assert loaded == 2
        active = await service.get_active_signals(now=NOW)
        assert [(s.symbol, s.confidence) for s in active] == [("BTCUSDT", 85), ("EURUSD", 62)]

    @pytest.mark.asyncio
    async def test_works_without_store(self, scorer):
        service = SignalService([BTC], PriceHistoryRegistry(), scorer=scorer)
        signal = make_signal(created_at=datetime.now(timezone.utc))
        scorer.score.return_value = signal

        emitted = await service.run_scoring_pass()

        assert emitted == [signal]
        assert await service.get_active_signals() == [signal]
