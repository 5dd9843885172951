"""Application configuration."""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.models.config import ScoringConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database (empty disables persistence)
    database_url: str = "postgresql://localhost/signal_engine"

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Provider API keys (a missing key removes that provider from the chain)
    alpha_vantage_api_key: str = ""
    twelve_data_api_key: str = ""

    # Instrument universe (YAML). Built-in defaults are used when absent.
    instruments_file: str = "instruments.yaml"

    # Provider gateway
    provider_timeout: float = Field(default=8.0, ge=5.0, le=10.0)
    retry_attempts: int = 3
    retry_base_delay: float = 2.0
    provider_max_failures: int = 3
    provider_cooldown_seconds: float = 300.0
    commodity_jitter: float = 0.005

    # Ingestion
    short_cycle_seconds: float = 30.0
    long_cycle_seconds: float = 120.0
    batch_size_high: int = 5
    batch_size_medium: int = 3
    batch_size_low: int = 2
    inter_batch_delay: float = 1.0
    history_size: int = Field(default=50, ge=30, le=50)
    outage_escalation_cycles: int = 10

    # Scoring
    scoring_cycle_seconds: float = 300.0
    confidence_threshold: int = 60
    min_signal_strength: float = 25.0
    min_history: int = 20
    signal_ttl_minutes: int = 60

    # Positions
    position_monitor_seconds: float = 60.0
    demo_balance: float = 100000.0
    max_open_positions: int = 5

    # Auto-trade: open demo positions from confident signals
    auto_trade_enabled: bool = False
    auto_trade_min_confidence: int = Field(default=70, ge=0, le=100)
    auto_trade_position_size_pct: float = Field(default=5.0, gt=0, le=100)
    auto_trade_max_daily_trades: int = 10

    # Latest-price cache flush
    price_flush_seconds: float = 1.0

    # Shutdown grace period for in-flight tasks
    shutdown_grace_seconds: float = 10.0

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    def scoring_config(self) -> ScoringConfig:
        """Scoring parameters with the thresholds overridden from settings."""
        return ScoringConfig(
            confidence_threshold=self.confidence_threshold,
            min_signal_strength=self.min_signal_strength,
            min_history=self.min_history,
            signal_ttl_minutes=self.signal_ttl_minutes,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
