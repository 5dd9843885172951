"""Signal data repository."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import delete, or_, select, update
from sqlalchemy.dialects.postgresql import insert

from app.models import (
    Direction,
    MarketClass,
    RiskTier,
    Signal,
    SignalStatus,
    Timeframe,
)
from app.storage.database import SignalTable, get_database


class SignalRepository:
    """Repository for signal data operations."""

    async def save(self, signal: Signal) -> None:
        """Insert a signal. Re-saving the same ID refreshes its status."""
        async with get_database().session() as session:
            stmt = insert(SignalTable).values(
                id=signal.id,
                symbol=signal.symbol,
                direction=signal.direction.value,
                confidence=signal.confidence,
                entry_price=signal.entry_price,
                target_price=signal.target_price,
                stop_loss=signal.stop_loss,
                timeframe=signal.timeframe.value,
                market=signal.market.value,
                status=signal.status.value,
                created_at=signal.created_at,
                expires_at=signal.expires_at,
                source=signal.source,
                risk=signal.risk.value,
                reasoning=signal.reasoning,
                indicators=signal.indicators,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["id"],
                set_={"status": stmt.excluded.status},
            )
            await session.execute(stmt)

    async def delete_superseded(self, symbol: str, confidence: int, now: datetime) -> int:
        """Delete signals for ``symbol`` that are expired or strictly less confident.

        Returns:
            Number of rows deleted
        """
        async with get_database().session() as session:
            stmt = delete(SignalTable).where(
                SignalTable.symbol == symbol,
                or_(
                    SignalTable.expires_at < now,
                    SignalTable.confidence < confidence,
                ),
            )
            result = await session.execute(stmt)
            return result.rowcount or 0

    async def expire_stale(self, now: datetime | None = None) -> int:
        """Mark active signals past their expiry as expired."""
        now = now or datetime.now(timezone.utc)
        async with get_database().session() as session:
            stmt = (
                update(SignalTable)
                .where(
                    SignalTable.status == SignalStatus.ACTIVE.value,
                    SignalTable.expires_at <= now,
                )
                .values(status=SignalStatus.EXPIRED.value)
            )
            result = await session.execute(stmt)
            return result.rowcount or 0

    async def get_active(
        self, symbol: str | None = None, now: datetime | None = None
    ) -> list[Signal]:
        """Active, unexpired signals, most confident first."""
        now = now or datetime.now(timezone.utc)
        async with get_database().session() as session:
            stmt = select(SignalTable).where(
                SignalTable.status == SignalStatus.ACTIVE.value,
                SignalTable.expires_at > now,
            )
            if symbol:
                stmt = stmt.where(SignalTable.symbol == symbol)
            stmt = stmt.order_by(SignalTable.confidence.desc(), SignalTable.created_at.desc())

            result = await session.execute(stmt)
            rows = result.scalars().all()

            return [self._row_to_signal(row) for row in rows]

    def _row_to_signal(self, row: SignalTable) -> Signal:
        """Convert database row to Signal."""
        return Signal(
            id=row.id,
            symbol=row.symbol,
            direction=Direction(row.direction),
            confidence=row.confidence,
            entry_price=Decimal(str(row.entry_price)),
            target_price=Decimal(str(row.target_price)),
            stop_loss=Decimal(str(row.stop_loss)),
            timeframe=Timeframe(row.timeframe),
            market=MarketClass(row.market),
            status=SignalStatus(row.status),
            created_at=row.created_at,
            expires_at=row.expires_at,
            source=row.source,
            risk=RiskTier(row.risk),
            reasoning=row.reasoning or "",
            indicators=row.indicators or {},
        )
