"""Data storage layer."""

from app.storage.database import Database, close_database, get_database, init_database
from app.storage.position_repo import PositionRepository
from app.storage.price_history import PriceHistoryRegistry
from app.storage.price_repo import PriceRepository
from app.storage.signal_repo import SignalRepository
from app.storage import cache
from app.storage import price_cache

__all__ = [
    "Database",
    "get_database",
    "init_database",
    "close_database",
    "PositionRepository",
    "PriceHistoryRegistry",
    "PriceRepository",
    "SignalRepository",
    "cache",
    "price_cache",
]
