"""Demo position repository."""

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert

from app.models import (
    ClosureReason,
    Direction,
    MarketClass,
    Position,
    PositionStatus,
)
from app.storage.database import PositionTable, get_database


def _decimal(value) -> Decimal | None:
    return Decimal(str(value)) if value is not None else None


class PositionRepository:
    """Repository for demo positions."""

    async def save(self, position: Position) -> None:
        """Insert or update a position.

        An update only applies when the stored version is not newer,
        so a late write cannot undo a close.
        """
        async with get_database().session() as session:
            values = {
                "id": position.id,
                "symbol": position.symbol,
                "direction": position.direction.value,
                "quantity": position.quantity,
                "entry_price": position.entry_price,
                "current_price": position.current_price,
                "target_price": position.target_price,
                "stop_loss": position.stop_loss,
                "market": position.market.value,
                "signal_id": position.signal_id,
                "opened_at": position.opened_at,
                "status": position.status.value,
                "closure_reason": position.closure_reason.value if position.closure_reason else None,
                "closed_at": position.closed_at,
                "realized_pnl": position.realized_pnl,
                "unrealized_pnl": position.unrealized_pnl,
                "version": position.version,
            }
            stmt = insert(PositionTable).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["id"],
                set_={
                    key: getattr(stmt.excluded, key)
                    for key in (
                        "current_price",
                        "status",
                        "closure_reason",
                        "closed_at",
                        "realized_pnl",
                        "unrealized_pnl",
                        "version",
                    )
                },
                where=PositionTable.version <= stmt.excluded.version,
            )
            await session.execute(stmt)

    async def get_open(self) -> list[Position]:
        """Get all open positions."""
        return await self._get_by_status(PositionStatus.OPEN)

    async def get_closed(self, limit: int = 100) -> list[Position]:
        """Most recently closed positions."""
        return await self._get_by_status(PositionStatus.CLOSED, limit=limit)

    async def _get_by_status(self, status: PositionStatus, limit: int | None = None) -> list[Position]:
        async with get_database().session() as session:
            stmt = select(PositionTable).where(PositionTable.status == status.value)
            if status == PositionStatus.CLOSED:
                stmt = stmt.order_by(PositionTable.closed_at.desc())
            else:
                stmt = stmt.order_by(PositionTable.opened_at.asc())
            if limit:
                stmt = stmt.limit(limit)

            result = await session.execute(stmt)
            rows = result.scalars().all()

            return [self._row_to_position(row) for row in rows]

    def _row_to_position(self, row: PositionTable) -> Position:
        return Position(
            id=row.id,
            symbol=row.symbol,
            direction=Direction(row.direction),
            quantity=Decimal(str(row.quantity)),
            entry_price=Decimal(str(row.entry_price)),
            current_price=_decimal(row.current_price),
            target_price=_decimal(row.target_price),
            stop_loss=_decimal(row.stop_loss),
            market=MarketClass(row.market),
            signal_id=row.signal_id,
            opened_at=row.opened_at,
            status=PositionStatus(row.status),
            closure_reason=ClosureReason(row.closure_reason) if row.closure_reason else None,
            closed_at=row.closed_at,
            realized_pnl=_decimal(row.realized_pnl),
            unrealized_pnl=_decimal(row.unrealized_pnl) or Decimal("0"),
            version=row.version or 0,
        )
