"""Database connection and table definitions."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from app.config import get_settings

Base = declarative_base()


class PricePointTable(Base):
    """Observed prices, one row per symbol and timestamp."""

    __tablename__ = "price_points"

    symbol = Column(String(20), primary_key=True)
    timestamp = Column(DateTime(timezone=True), primary_key=True)
    price = Column(Numeric(24, 8), nullable=False)
    source = Column(String(30), nullable=False)
    market = Column(String(20), nullable=False)

    __table_args__ = (
        Index("idx_price_points_symbol_time", "symbol", "timestamp"),
    )


class SignalTable(Base):
    """Scored trading signals."""

    __tablename__ = "signals"

    id = Column(String(36), primary_key=True)
    symbol = Column(String(20), nullable=False)
    direction = Column(String(4), nullable=False)  # BUY | SELL
    confidence = Column(Integer, nullable=False)
    entry_price = Column(Numeric(24, 8), nullable=False)
    target_price = Column(Numeric(24, 8), nullable=False)
    stop_loss = Column(Numeric(24, 8), nullable=False)
    timeframe = Column(String(4), nullable=False)
    market = Column(String(20), nullable=False)
    status = Column(String(12), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    source = Column(String(30), nullable=False, default="technical")
    risk = Column(String(8), nullable=False, default="medium")
    reasoning = Column(Text, default="")
    indicators = Column(JSON, default=dict)

    __table_args__ = (
        Index("idx_signals_symbol_status", "symbol", "status"),
        Index("idx_signals_expires_at", "expires_at"),
    )


class PositionTable(Base):
    """Demo positions, open and closed."""

    __tablename__ = "positions"

    id = Column(String(36), primary_key=True)
    symbol = Column(String(20), nullable=False)
    direction = Column(String(4), nullable=False)
    quantity = Column(Numeric(24, 8), nullable=False)
    entry_price = Column(Numeric(24, 8), nullable=False)
    current_price = Column(Numeric(24, 8), nullable=True)
    target_price = Column(Numeric(24, 8), nullable=True)
    stop_loss = Column(Numeric(24, 8), nullable=True)
    market = Column(String(20), nullable=False)
    signal_id = Column(String(36), nullable=True)
    opened_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(8), nullable=False, default="open")
    closure_reason = Column(String(20), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    realized_pnl = Column(Numeric(24, 8), nullable=True)
    unrealized_pnl = Column(Numeric(24, 8), default=0)
    version = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_positions_status", "status"),
        Index("idx_positions_symbol_status", "symbol", "status"),
    )


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None):
        settings = get_settings()
        url = database_url or settings.database_url

        # Convert postgresql:// to postgresql+asyncpg://
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

        self.engine = create_async_engine(
            url,
            echo=settings.debug,
            pool_size=10,
            max_overflow=10,
            pool_pre_ping=True,    # Validate before use
            pool_recycle=3600,     # Recycle every hour
            pool_timeout=30,
            connect_args={
                "timeout": 10,
                "command_timeout": 30,
            },
        )
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self) -> None:
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Close database connection."""
        await self.engine.dispose()


# Global database instance
_db: Database | None = None


def get_database() -> Database:
    """Get the global database instance."""
    global _db
    if _db is None:
        _db = Database()
    return _db


async def init_database() -> Database:
    """Initialize the database and create tables."""
    db = get_database()
    await db.create_tables()
    return db


async def close_database() -> None:
    global _db
    if _db is not None:
        await _db.close()
        _db = None
