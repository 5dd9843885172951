"""Main application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager

# Configure logging FIRST, before any other imports
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)

# Reduce noise from third-party libraries (must be set before importing them)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine.Engine").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

# Try to use uvloop for better performance (Unix only)
try:
    import uvloop
    uvloop.install()
    _UVLOOP_ENABLED = True
except ImportError:
    _UVLOOP_ENABLED = False

from decimal import Decimal
from pathlib import Path

from app.api import router, manager, websocket_endpoint
from app.config import get_settings
from app.instruments import load_instruments_config
from app.models import MarketClass, PriceQuote, PriorityTier
from app.services import (
    AutoTrader,
    DemoAccount,
    IngestionScheduler,
    PositionMonitor,
    PriceGateway,
    SignalService,
    TaskRunner,
)
from app.storage import (
    PositionRepository,
    PriceHistoryRegistry,
    PriceRepository,
    SignalRepository,
    cache,
    close_database,
    init_database,
    price_cache,
)
from core.signal_scorer import SignalScorer

DB_INIT_TIMEOUT = 30
DB_INIT_ATTEMPTS = 3

logger = logging.getLogger(__name__)


async def _init_database_with_retry() -> bool:
    """Initialize the store. Returns False when it stays unreachable."""
    for attempt in range(1, DB_INIT_ATTEMPTS + 1):
        try:
            await asyncio.wait_for(init_database(), timeout=DB_INIT_TIMEOUT)
            logger.info("Database initialized")
            return True
        except asyncio.TimeoutError:
            logger.warning(
                f"Database initialization timed out after {DB_INIT_TIMEOUT}s "
                f"(attempt {attempt}/{DB_INIT_ATTEMPTS})"
            )
        except Exception as e:
            logger.warning(
                f"Database initialization failed (attempt {attempt}/{DB_INIT_ATTEMPTS}): {e}"
            )
        if attempt < DB_INIT_ATTEMPTS:
            await asyncio.sleep(2 ** attempt)
    return False


def _make_price_lookup(registry: PriceHistoryRegistry, gateway: PriceGateway):
    """Latest price for a position: rolling history first, providers second."""

    async def lookup(symbol: str, market: MarketClass) -> Decimal | None:
        point = registry.latest(symbol)
        if point is not None:
            return point.price
        result = await gateway.fetch_price(symbol, market)
        if isinstance(result, PriceQuote):
            return result.price
        return None

    return lookup


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting multi-market signal engine...")
    logger.info(f"Event loop: {'uvloop' if _UVLOOP_ENABLED else 'asyncio'}")

    settings = get_settings()

    # Malformed instrument config is fatal
    instruments_config = load_instruments_config(Path(settings.instruments_file))
    instruments = instruments_config.get_instruments()

    db_available = False
    if settings.database_url:
        db_available = await _init_database_with_retry()
    if not db_available:
        logger.warning("Database unavailable - running without persistence")

    try:
        await asyncio.wait_for(cache.init_cache(), timeout=10)
        if cache.is_cache_available():
            logger.info("Redis cache initialized")
        else:
            logger.warning("Redis cache unavailable - running without caching")
    except asyncio.TimeoutError:
        logger.warning("Redis cache initialization timed out - running without caching")

    price_repo = PriceRepository() if db_available else None
    signal_repo = SignalRepository() if db_available else None
    position_repo = PositionRepository() if db_available else None

    gateway = PriceGateway.from_settings(settings)
    registry = PriceHistoryRegistry(max_size=settings.history_size)
    scheduler = IngestionScheduler(
        instruments,
        gateway,
        registry,
        price_repo=price_repo,
        batch_sizes={
            PriorityTier.HIGH: settings.batch_size_high,
            PriorityTier.MEDIUM: settings.batch_size_medium,
            PriorityTier.LOW: settings.batch_size_low,
        },
        inter_batch_delay=settings.inter_batch_delay,
        escalation_cycles=settings.outage_escalation_cycles,
    )
    signal_service = SignalService(
        instruments,
        registry,
        scorer=SignalScorer(settings.scoring_config()),
        signal_repo=signal_repo,
    )
    account = DemoAccount(
        balance=Decimal(str(settings.demo_balance)),
        max_open_positions=settings.max_open_positions,
    )
    position_monitor = PositionMonitor(
        _make_price_lookup(registry, gateway),
        position_repo=position_repo,
        ledger=account,
        instruments=instruments,
    )

    # Startup state is best-effort: a store hiccup must not block the service
    try:
        await scheduler.warm_up()
        await signal_service.load_active_signals()
        await position_monitor.load_open_positions()
    except Exception as e:
        logger.warning(f"Failed to restore state from the store: {e}")

    # Events fan out to WebSocket subscribers
    signal_service.on_signal(manager.send_signal)
    position_monitor.on_closure(manager.send_position_event)
    manager.set_snapshot_provider(signal_service.get_active_signals)

    auto_trader = None
    if settings.auto_trade_enabled:
        auto_trader = AutoTrader(
            position_monitor,
            account,
            min_confidence=settings.auto_trade_min_confidence,
            position_size_pct=settings.auto_trade_position_size_pct,
            max_daily_trades=settings.auto_trade_max_daily_trades,
        )
        signal_service.on_signal(auto_trader.handle_signal)
        logger.info(f"Auto-trade enabled at confidence >= {settings.auto_trade_min_confidence}")

    runner = TaskRunner()
    runner.add("ingestion_short", scheduler.run_short_cycle, settings.short_cycle_seconds)
    runner.add("ingestion_long", scheduler.run_long_cycle, settings.long_cycle_seconds)
    runner.add(
        "scoring",
        signal_service.run_scoring_pass,
        settings.scoring_cycle_seconds,
        run_immediately=False,
    )
    runner.add("position_monitor", position_monitor.check_positions, settings.position_monitor_seconds)
    runner.add("price_flush", price_cache.flush_pending_prices, settings.price_flush_seconds)
    runner.start()

    # Expose services to API routes via app.state
    app.state.gateway = gateway
    app.state.registry = registry
    app.state.scheduler = scheduler
    app.state.signal_service = signal_service
    app.state.position_monitor = position_monitor
    app.state.account = account
    app.state.auto_trader = auto_trader
    app.state.task_runner = runner

    logger.info(f"Tracking {len(instruments)} instruments")

    yield

    # Shutdown
    logger.info("Shutting down...")

    # Stop producing first, then drain and close outward resources
    await runner.stop(settings.shutdown_grace_seconds)

    signal_service.off_signal(manager.send_signal)
    if auto_trader is not None:
        signal_service.off_signal(auto_trader.handle_signal)
    position_monitor.off_closure(manager.send_position_event)
    manager.set_snapshot_provider(None)

    try:
        await price_cache.flush_pending_prices()
    except Exception as e:
        logger.warning(f"Final price cache flush failed: {e}")

    await gateway.close()
    await cache.close_cache()

    if db_available:
        try:
            await close_database()
            logger.info("Database connections closed")
        except Exception as e:
            logger.warning(f"Error closing database: {e}")

    logger.info("Shutdown complete")


# Create FastAPI app with orjson for faster JSON serialization
app = FastAPI(
    title="Multi-Market Signal Engine",
    description="Technical signals for crypto, forex, stocks and commodities",
    version="0.1.0",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict this
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include REST routes
app.include_router(router, prefix="/api")

# WebSocket endpoint
app.websocket("/ws")(websocket_endpoint)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Multi-Market Signal Engine",
        "version": "0.1.0",
        "docs": "/docs",
        "event_loop": "uvloop" if _UVLOOP_ENABLED else "asyncio",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "cache": await cache.ping(),
        "subscribers": manager.connection_count,
    }


def main():
    """Run the application."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
