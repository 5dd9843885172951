"""Position monitor for demo positions.

Marks every open position to the latest known price, and closes it when
the price crosses its target or stop. Explicit user closes go through the
same per-position lock, so a position can only ever be closed once.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Awaitable, Callable, Protocol

from app.models import (
    ClosureReason,
    EventType,
    Instrument,
    MarketClass,
    OpenPositionRequest,
    Position,
)
from app.storage.position_repo import PositionRepository

logger = logging.getLogger(__name__)

# Receives the closed position and the event type to publish
ClosureCallback = Callable[[Position, EventType], Awaitable[None]]
# Latest price for (symbol, market), or None if unknown
PriceLookup = Callable[[str, MarketClass], Awaitable[Decimal | None]]

CLOSURE_EVENTS = {
    ClosureReason.TAKE_PROFIT_HIT: EventType.TAKE_PROFIT_HIT,
    ClosureReason.STOP_LOSS_HIT: EventType.STOP_LOSS_HIT,
    ClosureReason.MANUAL: EventType.POSITION_CLOSED,
}

MAX_CLOSED_HISTORY = 500


class AccountLedger(Protocol):
    """The only way the monitor touches the account."""

    async def record_open(self, position: Position) -> None: ...

    async def record_close(self, position: Position) -> None: ...


class DemoAccount:
    """In-memory demo account: balance, open position ids and trade history."""

    def __init__(
        self,
        balance: Decimal = Decimal("100000"),
        max_open_positions: int = 5,
        history_limit: int = 500,
    ):
        self.initial_balance = balance
        self.balance = balance
        self.max_open_positions = max_open_positions
        self.history_limit = history_limit
        self.open_position_ids: set[str] = set()
        self.trade_history: list[Position] = []

    async def record_open(self, position: Position) -> None:
        if len(self.open_position_ids) >= self.max_open_positions:
            raise ValueError(
                f"Maximum of {self.max_open_positions} open positions reached"
            )
        self.open_position_ids.add(position.id)

    async def record_close(self, position: Position) -> None:
        self.open_position_ids.discard(position.id)
        self.balance += position.realized_pnl or Decimal("0")
        self.trade_history.append(position)
        if len(self.trade_history) > self.history_limit:
            self.trade_history = self.trade_history[-self.history_limit :]

    def summary(self) -> dict:
        closed = self.trade_history
        wins = sum(1 for p in closed if (p.realized_pnl or 0) > 0)
        return {
            "balance": self.balance,
            "initial_balance": self.initial_balance,
            "total_pnl": self.balance - self.initial_balance,
            "open_positions": len(self.open_position_ids),
            "max_open_positions": self.max_open_positions,
            "closed_trades": len(closed),
            "win_rate": wins / len(closed) if closed else 0.0,
        }


class PositionMonitor:
    """
    Track open demo positions and close them on target or stop.

    This service:
    1. Keeps the open set in memory (loaded from the store at startup)
    2. Refreshes each position's price and unrealized P&L every check
    3. Closes on take-profit / stop-loss crossing, or on explicit request
    4. Updates the account ledger and notifies closure callbacks
    """

    def __init__(
        self,
        price_lookup: PriceLookup,
        position_repo: PositionRepository | None = None,
        ledger: AccountLedger | None = None,
        instruments: list[Instrument] | None = None,
    ):
        """
        Args:
            price_lookup: Async callable returning the latest price for a symbol
            position_repo: Store for positions; None keeps positions in memory only
            ledger: Account to update on open/close
            instruments: Known instruments, used to infer a position's market
        """
        self.price_lookup = price_lookup
        self.position_repo = position_repo
        self.ledger = ledger or DemoAccount()
        self._markets = {i.symbol: i.market for i in instruments or []}

        self._open: dict[str, Position] = {}
        self._closed: list[Position] = []
        self._position_locks: dict[str, asyncio.Lock] = {}
        self._closure_callbacks: list[ClosureCallback] = []
        self._lock = asyncio.Lock()

    def on_closure(self, callback: ClosureCallback) -> None:
        """Register callback for closures. Duplicate callbacks are ignored."""
        if callback not in self._closure_callbacks:
            self._closure_callbacks.append(callback)

    def off_closure(self, callback: ClosureCallback) -> None:
        if callback in self._closure_callbacks:
            self._closure_callbacks.remove(callback)

    def _position_lock(self, position_id: str) -> asyncio.Lock:
        lock = self._position_locks.get(position_id)
        if lock is None:
            lock = asyncio.Lock()
            self._position_locks[position_id] = lock
        return lock

    def _drop_lock_if_closed(self, position: Position) -> None:
        lock = self._position_locks.get(position.id)
        if lock is not None and not position.is_open and not lock.locked():
            del self._position_locks[position.id]

    async def load_open_positions(self) -> int:
        """Load the open set from the store."""
        if self.position_repo is None:
            return 0

        positions = await self.position_repo.get_open()
        async with self._lock:
            for position in positions:
                self._open[position.id] = position
                try:
                    await self.ledger.record_open(position)
                except ValueError as e:
                    logger.warning(f"Ledger rejected stored position {position.id}: {e}")
        logger.info(f"Loaded {len(positions)} open positions")
        return len(positions)

    async def open_position(self, request: OpenPositionRequest) -> Position:
        """
        Open a demo position from an inbound trigger.

        Raises:
            ValueError: If the market is unknown or the account refuses
        """
        market = request.market or self._markets.get(request.symbol)
        if market is None:
            raise ValueError(f"Unknown symbol '{request.symbol}', market is required")

        position = Position(
            symbol=request.symbol,
            direction=request.direction,
            quantity=request.quantity,
            entry_price=request.entry_price,
            target_price=request.target_price,
            stop_loss=request.stop_loss,
            market=market,
            signal_id=request.signal_id,
        )

        async with self._lock:
            await self.ledger.record_open(position)
            self._open[position.id] = position

        await self._persist(position)
        logger.info(
            f"Opened position {position.id}: {position.symbol} {position.direction.value} "
            f"qty={position.quantity} entry={position.entry_price}"
        )
        return position

    async def check_positions(self) -> list[Position]:
        """
        Refresh every open position and close the ones that crossed.

        Returns:
            Positions closed during this check
        """
        async with self._lock:
            positions = list(self._open.values())

        closed: list[Position] = []
        marked: list[Position] = []

        for position in positions:
            if not position.is_open:
                continue
            price = await self._lookup(position)
            if price is None:
                logger.debug(f"No price for {position.symbol}, skipping {position.id}")
                continue

            async with self._position_lock(position.id):
                if position.is_open:
                    position.mark(price)
                    reason = position.check_crossing(price)
                    if reason is None:
                        marked.append(position)
                    else:
                        await self._close_locked(position, price, reason)
                        closed.append(position)
            # Closed elsewhere while we waited on the price
            self._drop_lock_if_closed(position)

        # Process closures OUTSIDE the position locks (DB and callbacks are slow)
        for position in closed:
            await self._handle_closure(position)

        for position in marked:
            await self._persist(position)

        return closed

    async def close_position(
        self,
        position_id: str,
        price: Decimal | None = None,
        reason: ClosureReason = ClosureReason.MANUAL,
    ) -> Position | None:
        """
        Close a position explicitly.

        Args:
            position_id: Position to close
            price: Exit price (defaults to the latest known price)
            reason: Closure reason recorded on the position

        Returns:
            The closed position, or None if it is unknown or already closed
        """
        position = self._open.get(position_id)
        if position is None:
            return None

        if price is None:
            price = await self._lookup(position) or position.current_price

        async with self._position_lock(position_id):
            closed_here = position.is_open
            if closed_here:
                await self._close_locked(position, price, reason)
        if not closed_here:
            self._drop_lock_if_closed(position)
            return None

        await self._handle_closure(position)
        return position

    async def close_all(self) -> list[Position]:
        """Manually close every open position."""
        async with self._lock:
            ids = list(self._open)

        closed = []
        for position_id in ids:
            position = await self.close_position(position_id)
            if position is not None:
                closed.append(position)
        return closed

    async def _close_locked(self, position: Position, price: Decimal, reason: ClosureReason) -> None:
        """Transition to closed. Caller holds the position lock."""
        position.close(price, reason)
        async with self._lock:
            self._open.pop(position.id, None)
            self._closed.append(position)
            if len(self._closed) > MAX_CLOSED_HISTORY:
                self._closed = self._closed[-MAX_CLOSED_HISTORY:]
            self._position_locks.pop(position.id, None)
        await self.ledger.record_close(position)

    async def _handle_closure(self, position: Position) -> None:
        logger.info(
            f"Position {position.id} closed ({position.closure_reason.value}): "
            f"{position.symbol} {position.direction.value} "
            f"entry={position.entry_price} exit={position.current_price} "
            f"pnl={position.realized_pnl}"
        )

        await self._persist(position)

        event_type = CLOSURE_EVENTS[position.closure_reason]
        for callback in self._closure_callbacks:
            try:
                await callback(position, event_type)
            except Exception as e:
                logger.error(f"Closure callback error: {e}")

    async def _lookup(self, position: Position) -> Decimal | None:
        try:
            return await self.price_lookup(position.symbol, position.market)
        except Exception as e:
            logger.warning(f"Price lookup failed for {position.symbol}: {e}")
            return None

    async def _persist(self, position: Position) -> None:
        if self.position_repo is None:
            return
        try:
            await self.position_repo.save(position)
        except Exception as e:
            logger.warning(f"Failed to persist position {position.id}: {e}")

    def get_open_positions(self) -> list[Position]:
        return list(self._open.values())

    def get_closed_positions(self) -> list[Position]:
        return list(self._closed)

    def get_position(self, position_id: str) -> Position | None:
        position = self._open.get(position_id)
        if position is not None:
            return position
        return next((p for p in self._closed if p.id == position_id), None)

    @property
    def open_count(self) -> int:
        return len(self._open)
