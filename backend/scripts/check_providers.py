#!/usr/bin/env python3
"""
Provider check: fetch one price per instrument through every configured chain.

Usage:
    cd backend
    python scripts/check_providers.py
    python scripts/check_providers.py BTCUSDT EURUSD

Each line shows which provider answered, or why the symbol failed.
Exit status is 1 if any instrument got no price.
"""

import asyncio
import sys
import time
from pathlib import Path

sys.path.insert(0, ".")

from app.config import get_settings
from app.instruments import load_instruments_config
from app.models import PriceFailure
from app.services.price_gateway import FALLBACK_SOURCE, PriceGateway


async def check_providers(symbols: list[str]) -> int:
    settings = get_settings()
    instruments = load_instruments_config(Path(settings.instruments_file)).get_instruments()
    if symbols:
        instruments = [i for i in instruments if i.symbol in symbols]

    print("=" * 60)
    print(f"Provider check: {len(instruments)} instruments")
    print("=" * 60)

    gateway = PriceGateway.from_settings(settings)
    failures = 0
    try:
        for instrument in instruments:
            start = time.monotonic()
            result = await gateway.fetch_price(instrument.symbol, instrument.market)
            elapsed = time.monotonic() - start

            if isinstance(result, PriceFailure):
                failures += 1
                print(
                    f"  [FAIL] {instrument.symbol:<10} {instrument.market.value:<12} "
                    f"{result.kind.value} ({result.detail})"
                )
                continue

            tag = "WARN" if result.source == FALLBACK_SOURCE else "PASS"
            print(
                f"  [{tag}] {instrument.symbol:<10} {instrument.market.value:<12} "
                f"{result.price} from {result.source} ({elapsed:.2f}s)"
            )

        print()
        for name, status in gateway.get_status().items():
            state = "available" if status["available"] else f"cooling down {status['cooldown_remaining']}s"
            print(f"  {name:<14} {state}, {status['total_failures']} failures")
    finally:
        await gateway.close()

    print()
    print(f"{len(instruments) - failures}/{len(instruments)} instruments priced")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(check_providers(sys.argv[1:])))
