"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
accumulation tracker, loading and validating environment variables at
startup. Detection thresholds are frozen into an immutable
``DetectionConfig`` that is passed explicitly to the aggregator and to
every detector call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from accumulation_tracker.errors import ConfigurationError

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


def _parse_address_list(v: object) -> tuple[str, ...]:
    if v is None:
        return ()
    if isinstance(v, str):
        return tuple(p.strip().lower() for p in v.split(",") if p.strip())
    if isinstance(v, (list, tuple, set, frozenset)):
        return tuple(str(x).strip().lower() for x in v if str(x).strip())
    raise TypeError("Address list must be a comma-separated string or a sequence")


def _parse_hours_list(v: object) -> tuple[float, ...]:
    if v is None:
        return ()
    if isinstance(v, str):
        parts: list[object] = [p for p in v.split(",") if p.strip()]
    elif isinstance(v, (list, tuple)):
        parts = list(v)
    else:
        raise TypeError("Hours list must be a comma-separated string or a sequence")
    hours = tuple(float(str(p).strip()) for p in parts)
    if any(h <= 0 for h in hours):
        raise ValueError("Window hours must be positive")
    return tuple(sorted(set(hours), reverse=True))


@dataclass(frozen=True)
class DetectionConfig:
    """Immutable threshold set read once per sweep.

    Amount thresholds are expressed in token units, matching the raw
    transfer amounts the detectors aggregate.
    """

    signal_threshold: float = 60.0
    max_signal_score: float = 95.0
    whale_inflow_threshold: float = 80.0
    concentrated_buys_threshold: float = 70.0
    whale_buy_threshold: Decimal = Decimal("100000")
    whale_sell_threshold: Decimal = Decimal("100000")
    exchange_deposit_threshold: Decimal = Decimal("50000")
    exchange_withdrawal_threshold: Decimal = Decimal("50000")
    lp_increase_threshold: Decimal = Decimal("50000")
    breakout_volume_threshold: float = 2.0
    breakout_price_change_threshold: float = 0.15
    concentration_min_buyers: int = 3
    concentration_min_volume: Decimal = Decimal("50000")
    concentration_cohort_fraction: float = 0.2
    holding_min_wallets: int = 3
    holding_min_fraction: float = 0.6
    holding_min_volume: Decimal = Decimal("10000")
    holding_min_repeat_buys: int = 2
    max_wallets_involved: int = 50

    def validate(self) -> DetectionConfig:
        """Check cross-field consistency.

        Returns:
            The same config, for chaining.

        Raises:
            ConfigurationError: If the threshold set cannot produce valid scores.
        """
        if not 0 <= self.signal_threshold < self.max_signal_score <= 100:
            raise ConfigurationError(
                "DETECTION_SIGNAL_THRESHOLD must be below DETECTION_MAX_SIGNAL_SCORE, both within [0, 100]"
            )
        for name in (
            "whale_buy_threshold",
            "whale_sell_threshold",
            "exchange_deposit_threshold",
            "exchange_withdrawal_threshold",
            "lp_increase_threshold",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name.upper()} must be > 0")
        if not 0 < self.concentration_cohort_fraction <= 1:
            raise ConfigurationError("CONCENTRATION_COHORT_FRACTION must be within (0, 1]")
        return self


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL connection string (sqlite+aiosqlite accepted for local runs)",
    )
    pool_size: int = Field(
        default=5,
        alias="DATABASE_POOL_SIZE",
        ge=1,
        le=100,
        description="Connection pool size",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )
    enabled: bool = Field(
        default=True,
        alias="REDIS_ENABLED",
        description="Use Redis for sweep locks, profile caching and alert streams",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class ThresholdSettings(BaseSettings):
    """Detection thresholds read at sweep time."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    signal_threshold: float = Field(
        default=60.0,
        alias="DETECTION_SIGNAL_THRESHOLD",
        ge=0.0,
        le=100.0,
        description="Minimum score for a signal to be persisted",
    )
    max_signal_score: float = Field(
        default=95.0,
        alias="DETECTION_MAX_SIGNAL_SCORE",
        ge=0.0,
        le=100.0,
        description="Upper bound of the detector score band",
    )
    whale_inflow_threshold: float = Field(
        default=80.0,
        alias="DETECTION_WHALE_THRESHOLD",
        ge=0.0,
        le=100.0,
        description="Composite score marking a high-conviction token sweep",
    )
    concentrated_buys_threshold: float = Field(
        default=70.0,
        alias="DETECTION_CONCENTRATED_THRESHOLD",
        ge=0.0,
        le=100.0,
        description="Minimum share (%) of buy volume held by the top buyer cohort",
    )
    whale_buy_threshold: Decimal = Field(
        default=Decimal("100000"),
        alias="WHALE_BUY_THRESHOLD",
        description="Whale buy volume threshold (token units)",
    )
    whale_sell_threshold: Decimal = Field(
        default=Decimal("100000"),
        alias="WHALE_SELL_THRESHOLD",
        description="Whale sell volume treated as distribution (token units)",
    )
    exchange_deposit_threshold: Decimal = Field(
        default=Decimal("50000"),
        alias="EXCHANGE_DEPOSIT_THRESHOLD",
        description="Exchange deposit volume offsetting withdrawals (token units)",
    )
    exchange_withdrawal_threshold: Decimal = Field(
        default=Decimal("50000"),
        alias="EXCHANGE_WITHDRAWAL_THRESHOLD",
        description="Exchange withdrawal volume threshold (token units)",
    )
    lp_increase_threshold: Decimal = Field(
        default=Decimal("50000"),
        alias="LP_INCREASE_THRESHOLD",
        description="Net liquidity-pool inflow threshold (token units)",
    )
    breakout_volume_threshold: float = Field(
        default=2.0,
        alias="BREAKOUT_VOLUME_THRESHOLD",
        ge=1.0,
        le=1000.0,
        description="24h volume multiple over the previous 24h marking a breakout",
    )
    breakout_price_change_threshold: float = Field(
        default=0.15,
        alias="BREAKOUT_PRICE_CHANGE_THRESHOLD",
        ge=0.0,
        le=100.0,
        description="Minimum 24h price change (fraction) for a breakout",
    )
    concentration_min_buyers: int = Field(
        default=3,
        alias="CONCENTRATION_MIN_BUYERS",
        ge=2,
        le=10_000,
        description="Minimum distinct buyers for concentration analysis",
    )
    concentration_min_volume: Decimal = Field(
        default=Decimal("50000"),
        alias="CONCENTRATION_MIN_VOLUME",
        description="Minimum window buy volume for concentration analysis",
    )
    concentration_cohort_fraction: float = Field(
        default=0.2,
        alias="CONCENTRATION_COHORT_FRACTION",
        gt=0.0,
        le=1.0,
        description="Fraction of buyers forming the top cohort",
    )
    holding_min_wallets: int = Field(
        default=3,
        alias="HOLDING_MIN_WALLETS",
        ge=1,
        le=10_000,
        description="Minimum wallets with buys and no sells",
    )
    holding_min_fraction: float = Field(
        default=0.6,
        alias="HOLDING_MIN_FRACTION",
        ge=0.0,
        le=1.0,
        description="Minimum fraction of buy volume never sold within the window",
    )
    holding_min_volume: Decimal = Field(
        default=Decimal("10000"),
        alias="HOLDING_MIN_VOLUME",
        description="Minimum held volume (token units)",
    )
    holding_min_repeat_buys: int = Field(
        default=2,
        alias="HOLDING_MIN_REPEAT_BUYS",
        ge=1,
        le=1000,
        description="Buys per wallet counted as persistent accumulation",
    )
    max_wallets_involved: int = Field(
        default=50,
        alias="DETECTION_MAX_WALLETS_INVOLVED",
        ge=1,
        le=10_000,
        description="Cap on wallets recorded per signal",
    )

    @field_validator(
        "whale_buy_threshold",
        "whale_sell_threshold",
        "exchange_deposit_threshold",
        "exchange_withdrawal_threshold",
        "lp_increase_threshold",
        "concentration_min_volume",
        "holding_min_volume",
    )
    @classmethod
    def validate_positive_amount(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Amount thresholds must be > 0")
        return v

    def to_detection_config(self) -> DetectionConfig:
        """Freeze these settings into a validated DetectionConfig."""
        return DetectionConfig(
            signal_threshold=self.signal_threshold,
            max_signal_score=self.max_signal_score,
            whale_inflow_threshold=self.whale_inflow_threshold,
            concentrated_buys_threshold=self.concentrated_buys_threshold,
            whale_buy_threshold=self.whale_buy_threshold,
            whale_sell_threshold=self.whale_sell_threshold,
            exchange_deposit_threshold=self.exchange_deposit_threshold,
            exchange_withdrawal_threshold=self.exchange_withdrawal_threshold,
            lp_increase_threshold=self.lp_increase_threshold,
            breakout_volume_threshold=self.breakout_volume_threshold,
            breakout_price_change_threshold=self.breakout_price_change_threshold,
            concentration_min_buyers=self.concentration_min_buyers,
            concentration_min_volume=self.concentration_min_volume,
            concentration_cohort_fraction=self.concentration_cohort_fraction,
            holding_min_wallets=self.holding_min_wallets,
            holding_min_fraction=self.holding_min_fraction,
            holding_min_volume=self.holding_min_volume,
            holding_min_repeat_buys=self.holding_min_repeat_buys,
            max_wallets_involved=self.max_wallets_involved,
        ).validate()


class SweepSettings(BaseSettings):
    """Periodic sweep scheduling and deduplication settings."""

    model_config = SettingsConfigDict(env_prefix="SWEEP_", extra="ignore")

    interval_seconds: int = Field(
        default=300,
        alias="SWEEP_INTERVAL_SECONDS",
        ge=5,
        le=86_400,
        description="Delay between sweeps",
    )
    lookback_hours: float = Field(
        default=24.0,
        alias="SWEEP_LOOKBACK_HOURS",
        gt=0.0,
        le=24 * 30,
        description="Window length looking back from now",
    )
    sub_window_hours: Annotated[tuple[float, ...], NoDecode] = Field(
        default=(6.0, 1.0),
        alias="SWEEP_SUB_WINDOW_HOURS",
        description="Shorter trailing windows also scored each sweep (comma-separated hours)",
    )
    cooldown_hours: float = Field(
        default=1.0,
        alias="SWEEP_COOLDOWN_HOURS",
        ge=0.0,
        le=24.0,
        description="Most recent data excluded from the window (still eligible for revision)",
    )
    window_align_seconds: int = Field(
        default=60,
        alias="SWEEP_WINDOW_ALIGN_SECONDS",
        ge=1,
        le=3600,
        description="Window bounds are floored to this granularity",
    )
    max_concurrency: int = Field(
        default=10,
        alias="SWEEP_MAX_CONCURRENCY",
        ge=1,
        le=500,
        description="Tokens swept in parallel",
    )
    token_timeout_seconds: float = Field(
        default=60.0,
        alias="SWEEP_TOKEN_TIMEOUT_SECONDS",
        gt=0.0,
        le=3600.0,
        description="Budget for a single token sweep before it is abandoned",
    )
    lock_ttl_seconds: int = Field(
        default=120,
        alias="SWEEP_LOCK_TTL_SECONDS",
        ge=1,
        le=3600,
        description="TTL of the distributed per-token lock",
    )
    dedup_wallet_overlap: float = Field(
        default=0.8,
        alias="SWEEP_DEDUP_WALLET_OVERLAP",
        ge=0.0,
        le=1.0,
        description="Jaccard overlap of wallet sets treated as the same accumulation",
    )
    dedup_volume_tolerance: float = Field(
        default=0.10,
        alias="SWEEP_DEDUP_VOLUME_TOLERANCE",
        ge=0.0,
        le=10.0,
        description="Relative volume difference treated as the same accumulation",
    )
    composite_weights: dict[str, float] | None = Field(
        default=None,
        alias="SWEEP_COMPOSITE_WEIGHTS",
        description="JSON object of per-signal-type weights for the composite score",
    )
    exchange_addresses: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        alias="EXCHANGE_ADDRESSES",
        description="Known exchange wallets (comma-separated)",
    )
    liquidity_pool_addresses: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        alias="LIQUIDITY_POOL_ADDRESSES",
        description="Known liquidity pool addresses (comma-separated)",
    )
    discovery_lookback_hours: float = Field(
        default=168.0,
        alias="SWEEP_DISCOVERY_LOOKBACK_HOURS",
        ge=0.0,
        le=24 * 90,
        description="Re-activate tokens with transfers this recent before each sweep (0 disables)",
    )

    @field_validator("exchange_addresses", "liquidity_pool_addresses", mode="before")
    @classmethod
    def _parse_addresses(cls, v: object) -> tuple[str, ...]:
        return _parse_address_list(v)

    @field_validator("sub_window_hours", mode="before")
    @classmethod
    def _parse_sub_windows(cls, v: object) -> tuple[float, ...]:
        return _parse_hours_list(v)


class AlertSettings(BaseSettings):
    """Alert eligibility and emission settings."""

    model_config = SettingsConfigDict(env_prefix="ALERT_", extra="ignore")

    min_score: float = Field(
        default=75.0,
        alias="ALERT_MIN_SCORE",
        ge=0.0,
        le=100.0,
        description="Minimum signal score eligible for alert creation",
    )
    eligible_plans: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("PRO",),
        alias="ALERT_ELIGIBLE_PLANS",
        description="Subscription plans that receive alerts (comma-separated)",
    )
    stream_name: str = Field(
        default="accumulation:alerts",
        alias="ALERT_STREAM_NAME",
        description="Redis stream receiving alert emissions",
    )
    stream_maxlen: int = Field(
        default=10_000,
        alias="ALERT_STREAM_MAXLEN",
        ge=100,
        le=10_000_000,
        description="Approximate cap on the alert stream length",
    )
    batch_size: int = Field(
        default=100,
        alias="ALERT_BATCH_SIZE",
        ge=1,
        le=10_000,
        description="Pending alerts processed per batch",
    )

    @field_validator("eligible_plans", mode="before")
    @classmethod
    def _parse_plans(cls, v: object) -> tuple[str, ...]:
        if isinstance(v, str):
            return tuple(p.strip().upper() for p in v.split(",") if p.strip())
        if isinstance(v, (list, tuple)):
            return tuple(str(p).strip().upper() for p in v)
        raise TypeError("Invalid ALERT_ELIGIBLE_PLANS type")


class ProfilerSettings(BaseSettings):
    """Wallet performance profiling settings."""

    model_config = SettingsConfigDict(env_prefix="PROFILER_", extra="ignore")

    history_limit: int = Field(
        default=5000,
        alias="WALLET_HISTORY_LIMIT",
        ge=1,
        le=1_000_000,
        description="Maximum transfers read for a wallet performance calculation",
    )
    cache_ttl_seconds: int = Field(
        default=300,
        alias="PROFILER_CACHE_TTL_SECONDS",
        ge=0,
        le=7 * 24 * 3600,
        description="Redis TTL for cached wallet performance",
    )
    smart_wallet_min_score: int = Field(
        default=70,
        alias="SMART_WALLET_MIN_SCORE",
        ge=0,
        le=100,
        description="Wallet score at or above which a wallet counts as smart money",
    )
    rescore_interval_seconds: int = Field(
        default=3600,
        alias="WALLET_RESCORE_INTERVAL_SECONDS",
        ge=0,
        le=30 * 24 * 3600,
        description="Tracked wallets are re-scored once their score is this old (0 disables)",
    )
    rescore_batch_size: int = Field(
        default=200,
        alias="WALLET_RESCORE_BATCH_SIZE",
        ge=1,
        le=10_000,
        description="Maximum stale tracked wallets re-scored after one sweep",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from accumulation_tracker.config import get_settings

        settings = get_settings()
        detection = settings.detection_config()
        print(detection.whale_buy_threshold)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    thresholds: ThresholdSettings = Field(
        default_factory=lambda: ThresholdSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    sweep: SweepSettings = Field(
        default_factory=lambda: SweepSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    alerts: AlertSettings = Field(
        default_factory=lambda: AlertSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    profiler: ProfilerSettings = Field(
        default_factory=lambda: ProfilerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Log alert emissions instead of publishing them",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def detection_config(self) -> DetectionConfig:
        """Build the immutable detection config for one sweep."""
        return self.thresholds.to_detection_config()

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "redis_enabled": str(self.redis.enabled),
            "thresholds": {
                "signal_threshold": str(self.thresholds.signal_threshold),
                "whale_inflow_threshold": str(self.thresholds.whale_inflow_threshold),
                "concentrated_buys_threshold": str(self.thresholds.concentrated_buys_threshold),
                "whale_buy_threshold": str(self.thresholds.whale_buy_threshold),
                "whale_sell_threshold": str(self.thresholds.whale_sell_threshold),
                "exchange_deposit_threshold": str(self.thresholds.exchange_deposit_threshold),
                "exchange_withdrawal_threshold": str(self.thresholds.exchange_withdrawal_threshold),
                "breakout_volume_threshold": str(self.thresholds.breakout_volume_threshold),
                "breakout_price_change_threshold": str(self.thresholds.breakout_price_change_threshold),
            },
            "sweep": {
                "interval_seconds": str(self.sweep.interval_seconds),
                "lookback_hours": str(self.sweep.lookback_hours),
                "sub_window_hours": ",".join(str(h) for h in self.sweep.sub_window_hours),
                "cooldown_hours": str(self.sweep.cooldown_hours),
                "max_concurrency": str(self.sweep.max_concurrency),
                "exchange_addresses": str(len(self.sweep.exchange_addresses)),
                "liquidity_pool_addresses": str(len(self.sweep.liquidity_pool_addresses)),
            },
            "alerts": {
                "min_score": str(self.alerts.min_score),
                "eligible_plans": ",".join(self.alerts.eligible_plans),
                "stream_name": self.alerts.stream_name,
            },
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(self, *, command: Literal["sweep", "screen", "wallet-score", "alerts"]) -> None:
        """Validate command-specific requirements.

        Detection must never run on an inconsistent threshold set, and alert
        publishing needs Redis unless running dry.

        Raises:
            ConfigurationError: If a required capability is not configured.
        """
        if command == "sweep":
            self.detection_config()
        if command in ("sweep", "alerts") and not self.dry_run and not self.redis.enabled:
            raise ConfigurationError("REDIS_ENABLED is required to publish alerts (or set DRY_RUN=true)")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ConfigurationError: If required environment variables are missing
            or have invalid values.
    """
    try:
        return Settings()
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e


def load_detection_config() -> DetectionConfig:
    """Read thresholds fresh from the environment (per-sweep hot reload).

    Raises:
        ConfigurationError: If a threshold is missing, malformed or inconsistent.
    """
    try:
        thresholds = ThresholdSettings(_env_file=_ENV_FILE, _env_file_encoding=_ENV_FILE_ENCODING)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e
    return thresholds.to_detection_config()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
