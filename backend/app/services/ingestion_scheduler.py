"""Priority-tiered price ingestion.

A cycle walks the instrument universe tier by tier (high, medium, low).
Within a tier, symbols are fetched in small concurrent batches with a
pause between batches, to stay inside provider rate limits. A symbol
whose fetch fails is skipped for the cycle; nothing in a cycle is fatal.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from app.models import (
    Instrument,
    PriceFailure,
    PricePoint,
    PriorityTier,
    TIER_ORDER,
)
from app.services.price_gateway import PriceGateway
from app.storage import price_cache
from app.storage.price_history import PriceHistoryRegistry
from app.storage.price_repo import PriceRepository

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZES = {
    PriorityTier.HIGH: 5,
    PriorityTier.MEDIUM: 3,
    PriorityTier.LOW: 2,
}


@dataclass
class CycleStats:
    """Result of one ingestion cycle."""

    name: str
    attempted: int = 0
    succeeded: int = 0
    failed: list[str] = field(default_factory=list)
    synthetic: int = 0
    duration: float = 0.0

    @property
    def all_failed(self) -> bool:
        return self.attempted > 0 and self.succeeded == 0


class IngestionScheduler:
    """Fetches prices for the universe and feeds the history registry."""

    def __init__(
        self,
        instruments: list[Instrument],
        gateway: PriceGateway,
        registry: PriceHistoryRegistry,
        price_repo: PriceRepository | None = None,
        batch_sizes: dict[PriorityTier, int] | None = None,
        inter_batch_delay: float = 1.0,
        escalation_cycles: int = 10,
    ):
        self.instruments = list(instruments)
        self.gateway = gateway
        self.registry = registry
        self.price_repo = price_repo
        self.batch_sizes = {**DEFAULT_BATCH_SIZES, **(batch_sizes or {})}
        self.inter_batch_delay = inter_batch_delay
        self.escalation_cycles = escalation_cycles

        self._consecutive_outages = 0
        self._escalated = False
        self.last_stats: dict[str, CycleStats] = {}

    def partition(self, tiers: tuple[PriorityTier, ...] = TIER_ORDER) -> list[tuple[PriorityTier, list[Instrument]]]:
        """Instruments grouped by tier, in tier priority order."""
        return [
            (tier, [i for i in self.instruments if i.priority == tier])
            for tier in TIER_ORDER
            if tier in tiers
        ]

    async def run_short_cycle(self) -> CycleStats:
        """High tier only."""
        return await self.run_cycle((PriorityTier.HIGH,), name="short")

    async def run_long_cycle(self) -> CycleStats:
        """Full universe."""
        return await self.run_cycle(TIER_ORDER, name="long")

    async def run_cycle(
        self,
        tiers: tuple[PriorityTier, ...] = TIER_ORDER,
        name: str = "cycle",
    ) -> CycleStats:
        """
        Fetch every instrument in ``tiers`` once.

        Returns:
            CycleStats for the cycle
        """
        stats = CycleStats(name=name)
        start = time.monotonic()
        points: list[PricePoint] = []
        first_batch = True

        for tier, instruments in self.partition(tiers):
            size = max(1, self.batch_sizes.get(tier, 1))
            for i in range(0, len(instruments), size):
                if not first_batch and self.inter_batch_delay > 0:
                    await asyncio.sleep(self.inter_batch_delay)
                first_batch = False

                batch = instruments[i : i + size]
                results = await asyncio.gather(
                    *(self._ingest(instrument) for instrument in batch)
                )
                for instrument, point in zip(batch, results):
                    stats.attempted += 1
                    if point is None:
                        stats.failed.append(instrument.symbol)
                        continue
                    stats.succeeded += 1
                    if point.is_synthetic:
                        stats.synthetic += 1
                    points.append(point)

        await self._persist(points)

        stats.duration = time.monotonic() - start
        self.last_stats[name] = stats
        self._track_outage(stats)

        summary = f"Ingestion {name} cycle: {stats.succeeded}/{stats.attempted} ok"
        if stats.synthetic:
            summary += f", {stats.synthetic} fallback"
        if stats.failed:
            summary += f", failed: {', '.join(stats.failed)}"
        logger.info(f"{summary} ({stats.duration:.1f}s)")
        return stats

    async def _ingest(self, instrument: Instrument) -> PricePoint | None:
        """Fetch one instrument and append it to its history."""
        try:
            result = await self.gateway.fetch_with_retry(instrument)
        except Exception as e:
            # The gateway never raises, but one bad symbol must not sink the batch
            logger.error(f"Unexpected error fetching {instrument.symbol}: {e}")
            return None

        if isinstance(result, PriceFailure):
            logger.warning(
                f"{instrument.symbol}: skipped this cycle ({result.kind.value})"
            )
            return None

        point = PricePoint(
            symbol=instrument.symbol,
            price=result.price,
            timestamp=result.timestamp or datetime.now(timezone.utc),
            source=result.source,
            market=instrument.market,
        )
        if not await self.registry.append(point):
            return None

        await price_cache.update_price(
            point.symbol,
            float(point.price),
            point.timestamp.timestamp(),
            point.source,
        )
        return point

    async def _persist(self, points: list[PricePoint]) -> None:
        if self.price_repo is None or not points:
            return
        try:
            await self.price_repo.save_batch(points)
        except Exception as e:
            logger.warning(f"Failed to persist {len(points)} price points: {e}")

    def _track_outage(self, stats: CycleStats) -> None:
        if not stats.all_failed:
            if self._escalated:
                logger.info("Price providers recovered")
            self._consecutive_outages = 0
            self._escalated = False
            return

        self._consecutive_outages += 1
        if self._consecutive_outages >= self.escalation_cycles and not self._escalated:
            self._escalated = True
            logger.error(
                f"No prices fetched for {self._consecutive_outages} consecutive cycles, "
                "all providers appear to be down"
            )

    async def warm_up(self, limit: int | None = None) -> int:
        """Seed the registry from the most recent stored points."""
        if self.price_repo is None:
            return 0

        limit = limit or self.registry.max_size
        loaded = 0
        for instrument in self.instruments:
            try:
                points = await self.price_repo.get_latest(instrument.symbol, limit)
            except Exception as e:
                logger.warning(f"History warm-up failed for {instrument.symbol}: {e}")
                continue
            loaded += await self.registry.load(instrument.symbol, points)
        logger.info(f"Warmed price history with {loaded} stored points")
        return loaded

    @property
    def consecutive_outages(self) -> int:
        return self._consecutive_outages
