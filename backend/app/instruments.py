"""Instrument universe loaded from instruments.yaml.

Supports:
- Per-instrument market class and priority tier
- Disabling instruments without deleting them
- No YAML file = built-in default universe
"""

import logging
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, model_validator

from core.models import Instrument, MarketClass, PriorityTier

logger = logging.getLogger(__name__)


class InstrumentEntry(BaseModel):
    """A single instrument entry in the YAML config."""

    symbol: str
    market: MarketClass
    priority: PriorityTier = PriorityTier.MEDIUM
    enabled: bool = True

    def to_instrument(self) -> Instrument:
        return Instrument(symbol=self.symbol, market=self.market, priority=self.priority)


DEFAULT_UNIVERSE: list[InstrumentEntry] = [
    InstrumentEntry(symbol="BTCUSDT", market=MarketClass.CRYPTO, priority=PriorityTier.HIGH),
    InstrumentEntry(symbol="ETHUSDT", market=MarketClass.CRYPTO, priority=PriorityTier.HIGH),
    InstrumentEntry(symbol="SOLUSDT", market=MarketClass.CRYPTO, priority=PriorityTier.MEDIUM),
    InstrumentEntry(symbol="BNBUSDT", market=MarketClass.CRYPTO, priority=PriorityTier.MEDIUM),
    InstrumentEntry(symbol="EURUSD", market=MarketClass.FOREX, priority=PriorityTier.HIGH),
    InstrumentEntry(symbol="GBPUSD", market=MarketClass.FOREX, priority=PriorityTier.MEDIUM),
    InstrumentEntry(symbol="USDJPY", market=MarketClass.FOREX, priority=PriorityTier.MEDIUM),
    InstrumentEntry(symbol="AAPL", market=MarketClass.STOCKS, priority=PriorityTier.MEDIUM),
    InstrumentEntry(symbol="TSLA", market=MarketClass.STOCKS, priority=PriorityTier.MEDIUM),
    InstrumentEntry(symbol="GOOGL", market=MarketClass.STOCKS, priority=PriorityTier.LOW),
    InstrumentEntry(symbol="GOLD", market=MarketClass.COMMODITIES, priority=PriorityTier.LOW),
    InstrumentEntry(symbol="OIL", market=MarketClass.COMMODITIES, priority=PriorityTier.LOW),
    InstrumentEntry(symbol="SILVER", market=MarketClass.COMMODITIES, priority=PriorityTier.LOW),
]


class InstrumentsConfig(BaseModel):
    """Top-level instruments.yaml configuration."""

    instruments: list[InstrumentEntry] = DEFAULT_UNIVERSE

    @model_validator(mode="after")
    def _validate(self):
        if not self.instruments:
            raise ValueError("instruments must contain at least one entry")
        seen: set[str] = set()
        for entry in self.instruments:
            if not entry.symbol.strip():
                raise ValueError("instrument symbol must not be empty")
            if entry.symbol in seen:
                raise ValueError(f"duplicate instrument symbol '{entry.symbol}'")
            seen.add(entry.symbol)
        return self

    def get_instruments(self) -> list[Instrument]:
        """Enabled instruments, in configuration order."""
        return [e.to_instrument() for e in self.instruments if e.enabled]


_DEFAULT_PATH = Path(__file__).parent.parent / "instruments.yaml"


def load_instruments_config(path: Path | None = None) -> InstrumentsConfig:
    """Load the instrument universe from a YAML file.

    Falls back to the built-in universe if the file doesn't exist.
    A file that exists but is malformed raises ValueError.
    """
    config_path = path or _DEFAULT_PATH

    # Provider API keys live in .env next to the config
    env_path = config_path.parent / ".env"
    load_dotenv(env_path, override=False)

    if not config_path.exists():
        logger.info(
            "No instruments.yaml found at %s, using built-in universe",
            config_path,
        )
        return InstrumentsConfig()

    with open(config_path) as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ValueError(f"{config_path} must contain a mapping at the top level")

    config = InstrumentsConfig(**raw)
    instruments = config.get_instruments()
    logger.info(
        "Loaded instrument universe: %d instruments (%d high, %d medium, %d low)",
        len(instruments),
        sum(1 for i in instruments if i.priority == PriorityTier.HIGH),
        sum(1 for i in instruments if i.priority == PriorityTier.MEDIUM),
        sum(1 for i in instruments if i.priority == PriorityTier.LOW),
    )
    return config
