"""Signal service: scoring passes, persistence policy and hand-off.

For each instrument a pass takes a history snapshot, scores it, and if a
signal comes out, applies the replacement policy before storing it:
expired or strictly less confident signals for the symbol are deleted,
and the new signal is dropped if an equally or more confident one is
still live. Subscribers only hear about signals that were stored.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

from app.models import Instrument, Signal, SignalStatus
from app.storage.price_history import PriceHistoryRegistry
from app.storage.signal_repo import SignalRepository
from core.signal_scorer import SignalScorer

logger = logging.getLogger(__name__)

SignalCallback = Callable[[Signal], Awaitable[None]]


class SignalService:
    """Runs the scorer over the universe and owns the active signal set."""

    def __init__(
        self,
        instruments: list[Instrument],
        registry: PriceHistoryRegistry,
        scorer: SignalScorer | None = None,
        signal_repo: SignalRepository | None = None,
    ):
        self.instruments = list(instruments)
        self.registry = registry
        self.scorer = scorer or SignalScorer()
        self.signal_repo = signal_repo

        # Best live signal per symbol
        self._active: dict[str, Signal] = {}
        self._signal_callbacks: list[SignalCallback] = []
        self._lock = asyncio.Lock()

    def on_signal(self, callback: SignalCallback) -> None:
        """Register callback for stored signals. Duplicate callbacks are ignored."""
        if callback not in self._signal_callbacks:
            self._signal_callbacks.append(callback)

    def off_signal(self, callback: SignalCallback) -> None:
        if callback in self._signal_callbacks:
            self._signal_callbacks.remove(callback)

    async def load_active_signals(self) -> int:
        """Load live signals from the store at startup."""
        if self.signal_repo is None:
            return 0

        signals = await self.signal_repo.get_active()
        async with self._lock:
            self._active.clear()
            for signal in signals:
                best = self._active.get(signal.symbol)
                if best is None or signal.confidence > best.confidence:
                    self._active[signal.symbol] = signal
        logger.info(f"Loaded {len(self._active)} active signals")
        return len(self._active)

    async def run_scoring_pass(self, now: datetime | None = None) -> list[Signal]:
        """
        Score every instrument once.

        Returns:
            Signals that were stored and handed to subscribers
        """
        now = now or datetime.now(timezone.utc)
        await self._expire_stale(now)

        emitted: list[Signal] = []
        for instrument in self.instruments:
            points = await self.registry.snapshot(instrument.symbol)
            try:
                signal = self.scorer.score(instrument, points, now=now)
            except Exception as e:
                logger.error(f"Scoring failed for {instrument.symbol}: {e}")
                continue
            if signal is None:
                continue

            if await self._store(signal, now):
                emitted.append(signal)
                await self._notify(signal)

        if emitted:
            logger.info(
                f"Scoring pass: {len(emitted)} new signals "
                f"({', '.join(f'{s.symbol} {s.direction.value} {s.confidence}' for s in emitted)})"
            )
        else:
            logger.debug("Scoring pass: no new signals")
        return emitted

    async def _expire_stale(self, now: datetime) -> None:
        async with self._lock:
            for symbol in [s for s, sig in self._active.items() if sig.is_expired(now)]:
                self._active.pop(symbol).status = SignalStatus.EXPIRED

        if self.signal_repo is None:
            return
        try:
            expired = await self.signal_repo.expire_stale(now)
            if expired:
                logger.info(f"Expired {expired} stale signals")
        except Exception as e:
            logger.warning(f"Failed to expire stale signals: {e}")

    async def _store(self, signal: Signal, now: datetime) -> bool:
        """Apply the replacement policy and persist. Returns True if stored."""
        async with self._lock:
            current = self._active.get(signal.symbol)
            if (
                current is not None
                and not current.is_expired(now)
                and current.confidence >= signal.confidence
            ):
                logger.debug(
                    f"{signal.symbol}: keeping signal {current.id} "
                    f"({current.confidence} >= {signal.confidence})"
                )
                return False

            if self.signal_repo is not None:
                try:
                    await self.signal_repo.delete_superseded(signal.symbol, signal.confidence, now)
                    live = await self.signal_repo.get_active(signal.symbol, now)
                    if any(s.confidence >= signal.confidence for s in live):
                        return False
                    await self.signal_repo.save(signal)
                except Exception as e:
                    logger.warning(f"Failed to store signal for {signal.symbol}: {e}")
                    return False

            if current is not None:
                current.status = (
                    SignalStatus.EXPIRED if current.is_expired(now) else SignalStatus.SUPERSEDED
                )
            self._active[signal.symbol] = signal

        logger.info(
            f"New signal {signal.id}: {signal.symbol} {signal.direction.value} "
            f"confidence={signal.confidence} entry={signal.entry_price} "
            f"target={signal.target_price} stop={signal.stop_loss} ({signal.timeframe.value})"
        )
        return True

    async def _notify(self, signal: Signal) -> None:
        for callback in self._signal_callbacks:
            try:
                await callback(signal)
            except Exception as e:
                logger.error(f"Signal callback error: {e}")

    async def get_active_signals(
        self, symbol: str | None = None, now: datetime | None = None
    ) -> list[Signal]:
        """Live signals, most confident first."""
        now = now or datetime.now(timezone.utc)
        async with self._lock:
            signals = [
                s for s in self._active.values()
                if not s.is_expired(now) and (symbol is None or s.symbol == symbol)
            ]
        return sorted(signals, key=lambda s: s.confidence, reverse=True)

    @property
    def active_count(self) -> int:
        return len(self._active)
