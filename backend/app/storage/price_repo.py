"""Price point repository."""

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert

from app.models import MarketClass, PricePoint
from app.storage.database import PricePointTable, get_database


class PriceRepository:
    """Repository for observed prices."""

    async def save_batch(self, points: list[PricePoint]) -> int:
        """Save a batch of price points. Duplicates are ignored."""
        if not points:
            return 0

        async with get_database().session() as session:
            values = [
                {
                    "symbol": p.symbol,
                    "timestamp": p.timestamp,
                    "price": p.price,
                    "source": p.source,
                    "market": p.market.value,
                }
                for p in points
            ]
            stmt = insert(PricePointTable).values(values)
            stmt = stmt.on_conflict_do_nothing(index_elements=["symbol", "timestamp"])
            await session.execute(stmt)
            return len(points)

    async def get_latest(self, symbol: str, limit: int = 50) -> list[PricePoint]:
        """Most recent points for a symbol, returned oldest first."""
        async with get_database().session() as session:
            stmt = (
                select(PricePointTable)
                .where(PricePointTable.symbol == symbol)
                .order_by(PricePointTable.timestamp.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            rows = result.scalars().all()

            return [self._row_to_point(row) for row in reversed(rows)]

    def _row_to_point(self, row: PricePointTable) -> PricePoint:
        return PricePoint(
            symbol=row.symbol,
            price=Decimal(str(row.price)),
            timestamp=row.timestamp,
            source=row.source,
            market=MarketClass(row.market),
        )
