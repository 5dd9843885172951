"""Tests for opening demo positions from signals."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

from app.models import Direction, Instrument, MarketClass, PriorityTier, Signal, Timeframe
from app.services.auto_trader import AutoTrader
from app.services.position_monitor import DemoAccount, PositionMonitor
from app.services.signal_service import SignalService
from app.storage.price_history import PriceHistoryRegistry

NOW = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)


async def no_price(symbol, market):
    return None


def make_signal(symbol="BTCUSDT", confidence=75, direction=Direction.BUY):
    return Signal(
        symbol=symbol,
        direction=direction,
        confidence=confidence,
        entry_price=Decimal("100"),
        target_price=Decimal("106") if direction == Direction.BUY else Decimal("94"),
        stop_loss=Decimal("97") if direction == Direction.BUY else Decimal("103"),
        timeframe=Timeframe.H1,
        market=MarketClass.CRYPTO,
        created_at=NOW,
    )


class TestAutoTrader:
    """Tests for AutoTrader."""

    @pytest.fixture
    def account(self):
        return DemoAccount(balance=Decimal("100000"), max_open_positions=2)

    @pytest.fixture
    def monitor(self, account):
        return PositionMonitor(no_price, ledger=account)

    @pytest.fixture
    def trader(self, monitor, account):
        return AutoTrader(monitor, account, min_confidence=70, position_size_pct=5, max_daily_trades=3)

    @pytest.mark.asyncio
    async def test_confident_signal_opens_position(self, trader, monitor):
        signal = make_signal(confidence=70)

        position = await trader.handle_signal(signal, now=NOW)

        assert position is not None
        assert position.signal_id == signal.id
        assert position.market == MarketClass.CRYPTO
        assert position.target_price == Decimal("106")
        assert position.stop_loss == Decimal("97")
        # 5% of 100000 at entry 100
        assert position.quantity == Decimal("50")
        assert monitor.open_count == 1
        assert trader.summary()["total_trades"] == 1

    @pytest.mark.asyncio
    async def test_weak_signal_ignored(self, trader, monitor):
        assert await trader.handle_signal(make_signal(confidence=69), now=NOW) is None
        assert monitor.open_count == 0
        assert trader.skipped == 1

    @pytest.mark.asyncio
    async def test_respects_open_position_limit(self, trader, monitor):
        for symbol in ("BTCUSDT", "ETHUSDT", "SOLUSDT"):
            await trader.handle_signal(make_signal(symbol=symbol, confidence=90), now=NOW)

        assert monitor.open_count == 2
        assert trader.total_trades == 2
        assert trader.skipped == 1

    @pytest.mark.asyncio
    async def test_ledger_refusal_is_not_raised(self, trader, monitor):
        trader.account = MagicMock(open_position_ids=set(), max_open_positions=5, balance=Decimal("1000"))
        await trader.handle_signal(make_signal(symbol="A"), now=NOW)
        await trader.handle_signal(make_signal(symbol="B"), now=NOW)

        # Guard passed, the real ledger refuses the third
        assert await trader.handle_signal(make_signal(symbol="C"), now=NOW) is None
        assert monitor.open_count == 2

    @pytest.mark.asyncio
    async def test_daily_trade_limit_resets_next_day(self, monitor, account):
        account.max_open_positions = 10
        trader = AutoTrader(monitor, account, max_daily_trades=1)

        assert await trader.handle_signal(make_signal(symbol="A"), now=NOW) is not None
        assert await trader.handle_signal(make_signal(symbol="B"), now=NOW) is None
        assert await trader.handle_signal(make_signal(symbol="B"), now=NOW + timedelta(days=1)) is not None
        assert trader.trades_today == 1
        assert trader.total_trades == 2

    @pytest.mark.asyncio
    async def test_sell_signal_opens_short(self, trader):
        position = await trader.handle_signal(make_signal(direction=Direction.SELL), now=NOW)
        assert position.direction == Direction.SELL
        assert position.target_price == Decimal("94")

    @pytest.mark.asyncio
    async def test_wired_to_signal_service(self, trader, monitor):
        btc = Instrument(symbol="BTCUSDT", market=MarketClass.CRYPTO, priority=PriorityTier.HIGH)
        scorer = MagicMock()
        service = SignalService([btc], PriceHistoryRegistry(), scorer=scorer)
        service.on_signal(trader.handle_signal)

        await service._notify(make_signal(confidence=82))

        assert monitor.open_count == 1
        assert monitor.get_open_positions()[0].symbol == "BTCUSDT"
