"""Business services."""

from app.services.price_gateway import PriceGateway, PriceUnavailable, ProviderHealth
from app.services.ingestion_scheduler import CycleStats, IngestionScheduler
from app.services.signal_service import SignalService
from app.services.position_monitor import AccountLedger, DemoAccount, PositionMonitor
from app.services.auto_trader import AutoTrader
from app.services.task_runner import PeriodicTask, TaskRunner

__all__ = [
    "PriceGateway",
    "PriceUnavailable",
    "ProviderHealth",
    "CycleStats",
    "IngestionScheduler",
    "SignalService",
    "AccountLedger",
    "DemoAccount",
    "PositionMonitor",
    "AutoTrader",
    "PeriodicTask",
    "TaskRunner",
]
