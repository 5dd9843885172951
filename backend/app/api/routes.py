"""REST API routes."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from app.models import Direction, MarketClass, OpenPositionRequest, Position, Signal
from app.services.position_monitor import PositionMonitor
from app.services.signal_service import SignalService
from app.storage import price_cache

logger = logging.getLogger(__name__)

router = APIRouter()


# Response models
class SignalResponse(BaseModel):
    """Signal response model."""

    id: str
    symbol: str
    market: str
    direction: str
    confidence: int
    entry_price: float
    target_price: float
    stop_loss: float
    timeframe: str
    risk: str
    reasoning: str
    created_at: datetime
    expires_at: Optional[datetime] = None

    @classmethod
    def from_signal(cls, s: Signal) -> "SignalResponse":
        return cls(
            id=s.id,
            symbol=s.symbol,
            market=s.market.value,
            direction=s.direction.value,
            confidence=s.confidence,
            entry_price=float(s.entry_price),
            target_price=float(s.target_price),
            stop_loss=float(s.stop_loss),
            timeframe=s.timeframe.value,
            risk=s.risk.value,
            reasoning=s.reasoning,
            created_at=s.created_at,
            expires_at=s.expires_at,
        )


class PositionResponse(BaseModel):
    """Demo position response."""

    id: str
    symbol: str
    market: str
    direction: str
    quantity: float
    entry_price: float
    current_price: float
    target_price: Optional[float] = None
    stop_loss: Optional[float] = None
    status: str
    unrealized_pnl: float
    realized_pnl: Optional[float] = None
    pnl_percentage: float
    closure_reason: Optional[str] = None
    opened_at: datetime
    closed_at: Optional[datetime] = None

    @classmethod
    def from_position(cls, p: Position) -> "PositionResponse":
        return cls(
            id=p.id,
            symbol=p.symbol,
            market=p.market.value,
            direction=p.direction.value,
            quantity=float(p.quantity),
            entry_price=float(p.entry_price),
            current_price=float(p.current_price),
            target_price=float(p.target_price) if p.target_price is not None else None,
            stop_loss=float(p.stop_loss) if p.stop_loss is not None else None,
            status=p.status.value,
            unrealized_pnl=float(p.unrealized_pnl),
            realized_pnl=float(p.realized_pnl) if p.realized_pnl is not None else None,
            pnl_percentage=float(p.pnl_percentage),
            closure_reason=p.closure_reason.value if p.closure_reason else None,
            opened_at=p.opened_at,
            closed_at=p.closed_at,
        )


class OpenPositionBody(BaseModel):
    """Open position request model."""

    symbol: str
    direction: Direction
    quantity: float
    entry_price: float
    target_price: Optional[float] = None
    stop_loss: Optional[float] = None
    market: Optional[MarketClass] = None
    signal_id: Optional[str] = None


class ClosePositionBody(BaseModel):
    price: Optional[float] = None


def _decimal(value: Optional[float]) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def _signal_service(request: Request) -> SignalService:
    service = getattr(request.app.state, "signal_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Signal service not running")
    return service


def _position_monitor(request: Request) -> PositionMonitor:
    monitor = getattr(request.app.state, "position_monitor", None)
    if monitor is None:
        raise HTTPException(status_code=503, detail="Position monitor not running")
    return monitor


@router.get("/status")
async def get_status(request: Request):
    """Get system status."""
    state = request.app.state
    scheduler = getattr(state, "scheduler", None)
    signal_service = getattr(state, "signal_service", None)
    monitor = getattr(state, "position_monitor", None)
    account = getattr(state, "account", None)
    runner = getattr(state, "task_runner", None)
    auto_trader = getattr(state, "auto_trader", None)

    last_cycles = {}
    if scheduler is not None:
        last_cycles = {
            name: {
                "attempted": stats.attempted,
                "succeeded": stats.succeeded,
                "failed": stats.failed,
                "synthetic": stats.synthetic,
                "duration": round(stats.duration, 2),
            }
            for name, stats in scheduler.last_stats.items()
        }

    return {
        "status": "running",
        "version": "0.1.0",
        "instruments": len(scheduler.instruments) if scheduler else 0,
        "history_sizes": state.registry.sizes() if getattr(state, "registry", None) else {},
        "consecutive_outages": scheduler.consecutive_outages if scheduler else 0,
        "last_cycles": last_cycles,
        "active_signals": signal_service.active_count if signal_service else 0,
        "open_positions": monitor.open_count if monitor else 0,
        "account": account.summary() if account else None,
        "auto_trade": auto_trader.summary() if auto_trader else None,
        "tasks": runner.get_status() if runner else {},
    }


@router.get("/signals/active", response_model=list[SignalResponse])
async def get_active_signals(
    request: Request,
    symbol: Optional[str] = Query(None, description="Filter by symbol"),
):
    """Get active signals, most confident first."""
    signals = await _signal_service(request).get_active_signals(symbol)
    return [SignalResponse.from_signal(s) for s in signals]


@router.get("/positions", response_model=list[PositionResponse])
async def get_positions(
    request: Request,
    status: str = Query("open", description="open or closed"),
):
    """List demo positions."""
    monitor = _position_monitor(request)
    if status == "open":
        positions = monitor.get_open_positions()
    elif status == "closed":
        positions = monitor.get_closed_positions()
    else:
        raise HTTPException(status_code=400, detail="status must be 'open' or 'closed'")
    return [PositionResponse.from_position(p) for p in positions]


@router.post("/positions", response_model=PositionResponse)
async def open_position(request: Request, body: OpenPositionBody):
    """Open a demo position."""
    monitor = _position_monitor(request)
    try:
        open_request = OpenPositionRequest(
            symbol=body.symbol,
            direction=body.direction,
            quantity=_decimal(body.quantity),
            entry_price=_decimal(body.entry_price),
            target_price=_decimal(body.target_price),
            stop_loss=_decimal(body.stop_loss),
            market=body.market,
            signal_id=body.signal_id,
        )
        position = await monitor.open_position(open_request)
    except ValueError as e:
        # pydantic.ValidationError is a ValueError
        raise HTTPException(status_code=400, detail=str(e))
    return PositionResponse.from_position(position)


@router.post("/positions/{position_id}/close", response_model=PositionResponse)
async def close_position(
    request: Request,
    position_id: str,
    body: Optional[ClosePositionBody] = None,
):
    """Close a demo position at the given price, or the latest known price."""
    monitor = _position_monitor(request)
    existing = monitor.get_position(position_id)
    if existing is None:
        raise HTTPException(status_code=404, detail="Position not found")

    price = _decimal(body.price) if body else None
    position = await monitor.close_position(position_id, price=price)
    if position is None:
        raise HTTPException(status_code=409, detail="Position already closed")
    return PositionResponse.from_position(position)


@router.get("/providers")
async def get_providers(request: Request):
    """Provider availability and cooldowns."""
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(status_code=503, detail="Price gateway not running")
    return gateway.get_status()


@router.get("/prices")
async def get_prices(request: Request):
    """Latest known price per instrument."""
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Ingestion not running")

    markets = {i.symbol: i.market.value for i in scheduler.instruments}
    prices = await price_cache.get_prices(list(markets))
    return {
        symbol: {
            "market": markets[symbol],
            "price": data["price"] if data else None,
            "source": data.get("source") if data else None,
            "timestamp": data.get("timestamp") if data else None,
            "fresh": price_cache.is_price_fresh(data),
        }
        for symbol, data in prices.items()
    }
