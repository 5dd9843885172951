"""Auto-trade: open demo positions from freshly stored signals.

Registered as a signal callback. A signal is traded when it is confident
enough, the account is under its open-position limit and today's trade
budget is not spent. Size is a fixed share of the current balance.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal

from app.models import OpenPositionRequest, Position, Signal
from app.services.position_monitor import DemoAccount, PositionMonitor

logger = logging.getLogger(__name__)


class AutoTrader:
    """Open a position for each qualifying signal."""

    def __init__(
        self,
        monitor: PositionMonitor,
        account: DemoAccount,
        min_confidence: int = 70,
        position_size_pct: float = 5.0,
        max_daily_trades: int = 10,
    ):
        self.monitor = monitor
        self.account = account
        self.min_confidence = min_confidence
        self.position_size_pct = Decimal(str(position_size_pct))
        self.max_daily_trades = max_daily_trades

        self.total_trades = 0
        self.skipped = 0
        self.trades_today = 0
        self._day: date | None = None

    def _skip_reason(self, signal: Signal, today: date) -> str | None:
        if signal.confidence < self.min_confidence:
            return f"confidence {signal.confidence} < {self.min_confidence}"
        if len(self.account.open_position_ids) >= self.account.max_open_positions:
            return "open position limit reached"
        if self._day == today and self.trades_today >= self.max_daily_trades:
            return "daily trade limit reached"
        return None

    async def handle_signal(self, signal: Signal, now: datetime | None = None) -> Position | None:
        """Open a position for ``signal`` if it qualifies."""
        today = (now or datetime.now(timezone.utc)).date()
        reason = self._skip_reason(signal, today)
        if reason is not None:
            self.skipped += 1
            logger.debug(f"Auto-trade skipped {signal.symbol}: {reason}")
            return None

        quantity = self.account.balance * self.position_size_pct / Decimal("100") / signal.entry_price
        request = OpenPositionRequest(
            symbol=signal.symbol,
            direction=signal.direction,
            quantity=quantity,
            entry_price=signal.entry_price,
            target_price=signal.target_price,
            stop_loss=signal.stop_loss,
            market=signal.market,
            signal_id=signal.id,
        )
        try:
            position = await self.monitor.open_position(request)
        except ValueError as e:
            # Lost a race for the last slot, or levels rejected
            self.skipped += 1
            logger.warning(f"Auto-trade could not open {signal.symbol}: {e}")
            return None

        if self._day != today:
            self._day = today
            self.trades_today = 0
        self.trades_today += 1
        self.total_trades += 1
        logger.info(
            f"Auto-trade opened {position.id} for signal {signal.id} "
            f"({signal.symbol} {signal.direction.value}, confidence={signal.confidence})"
        )
        return position

    def summary(self) -> dict:
        return {
            "min_confidence": self.min_confidence,
            "position_size_pct": float(self.position_size_pct),
            "max_daily_trades": self.max_daily_trades,
            "trades_today": self.trades_today,
            "total_trades": self.total_trades,
            "skipped": self.skipped,
        }
