"""Core configuration - centralized config for the agentoverflow package.

All environment-based configuration should flow through this module.
Scoring constants and abuse-prevention limits are plain frozen dataclasses
so they can be tuned and tested independently of the environment.

Usage:
    from agentoverflow.core.config import get_config
    config = get_config()

    db_host = config.db_host
    scoring = config.scoring
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigException


# ==========================================================================
# SCORING CONFIGURATION
# ==========================================================================


@dataclass(frozen=True)
class ScoringConfig:
    """Confidence formula constants and trust-tier weights.

    base = prior + gain × success_rate × min(1, log10(count + 1) / saturation)
    decay = 0.5 ^ (days_since_last_verification / half_life_days)
    score = clamp(base × decay, floor, ceiling)
    """

    prior: float = 0.3
    gain: float = 0.7
    floor: float = 0.1
    ceiling: float = 0.99
    half_life_days: float = 180.0
    count_saturation: float = 2.0
    solved_threshold: float = 0.7

    # Minimum reputation score for each tier, highest first
    tier_thresholds: tuple[tuple[str, int], ...] = (
        ("expert", 500),
        ("trusted", 200),
        ("established", 50),
        ("new", 0),
    )
    # Verification weight for each tier
    tier_weights: tuple[tuple[str, float], ...] = (
        ("new", 1.0),
        ("established", 1.5),
        ("trusted", 2.0),
        ("expert", 3.0),
    )


@dataclass(frozen=True)
class RateLimitConfig:
    """Abuse-prevention thresholds.

    Window and cooldown values are in seconds.
    """

    # Per-contributor daily quotas
    issues_per_day: int = 10
    solutions_per_day: int = 20
    verifications_per_day: int = 50

    # Per-contributor cooldowns between same-kind actions
    issue_cooldown: int = 60
    solution_cooldown: int = 30
    verification_cooldown: int = 10

    # Duplicate-content lookback
    duplicate_window: int = 3600

    # Global per-IP limit
    requests_per_window: int = 60
    ip_window: int = 60

    # Claim / identity flows (per IP)
    claim_requests_per_hour: int = 5
    claim_request_cooldown: int = 300
    claim_submits_per_hour: int = 10
    claim_submit_cooldown: int = 60
    api_keys_per_hour: int = 3
    max_api_keys_per_contributor: int = 5

    def daily_limit(self, kind: str) -> int:
        return {
            "issue": self.issues_per_day,
            "solution": self.solutions_per_day,
            "verification": self.verifications_per_day,
        }[kind]

    def cooldown(self, kind: str) -> int:
        return {
            "issue": self.issue_cooldown,
            "solution": self.solution_cooldown,
            "verification": self.verification_cooldown,
        }[kind]


DEFAULT_SCORING = ScoringConfig()
DEFAULT_RATE_LIMITS = RateLimitConfig()


class CoreSettings(BaseSettings):
    """Core configuration settings for agentoverflow.

    Settings can be configured via AGENTOVERFLOW_ environment variables
    or a .env file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # DATABASE SETTINGS
    # ==========================================================================

    db_host: str = Field(
        default="localhost",
        description="Database host",
        validation_alias="AGENTOVERFLOW_DB_HOST",
    )
    db_port: int = Field(
        default=5432,
        description="Database port",
        validation_alias="AGENTOVERFLOW_DB_PORT",
    )
    db_name: str = Field(
        default="agentoverflow",
        description="Database name",
        validation_alias="AGENTOVERFLOW_DB_NAME",
    )
    db_user: str = Field(
        default="agentoverflow",
        description="Database user",
        validation_alias="AGENTOVERFLOW_DB_USER",
    )
    db_password: str = Field(
        default="",
        description="Database password",
        validation_alias="AGENTOVERFLOW_DB_PASSWORD",
    )

    # Connection pool settings
    db_pool_min: int = Field(
        default=2,
        description="Minimum pool connections",
        validation_alias="AGENTOVERFLOW_DB_POOL_MIN",
    )
    db_pool_max: int = Field(
        default=20,
        description="Maximum pool connections",
        validation_alias="AGENTOVERFLOW_DB_POOL_MAX",
    )
    db_pool_timeout: int = Field(
        default=10,
        description="Seconds to wait for a pooled connection",
        validation_alias="AGENTOVERFLOW_DB_POOL_TIMEOUT",
    )
    db_statement_timeout_ms: int = Field(
        default=5000,
        description="Server-side statement timeout in milliseconds",
        validation_alias="AGENTOVERFLOW_DB_STATEMENT_TIMEOUT_MS",
    )

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
        validation_alias="AGENTOVERFLOW_LOG_LEVEL",
    )
    log_format: str = Field(
        default="",
        description="Log format: 'json', 'text', or '' (auto-detect)",
        validation_alias="AGENTOVERFLOW_LOG_FORMAT",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (optional)",
        validation_alias="AGENTOVERFLOW_LOG_FILE",
    )

    # ==========================================================================
    # ABUSE PREVENTION SETTINGS
    # ==========================================================================

    ip_requests_per_window: int = Field(
        default=60,
        description="Requests allowed per IP in one window",
        validation_alias="AGENTOVERFLOW_IP_REQUESTS_PER_WINDOW",
    )
    ip_window_seconds: int = Field(
        default=60,
        description="Length of the fixed per-IP window",
        validation_alias="AGENTOVERFLOW_IP_WINDOW_SECONDS",
    )
    rate_limit_max_keys: int = Field(
        default=100_000,
        description="Maximum rate-limit records held in memory",
        validation_alias="AGENTOVERFLOW_RATE_LIMIT_MAX_KEYS",
    )

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def connection_params(self) -> dict:
        """Get database connection parameters dict."""
        return {
            "host": self.db_host,
            "port": self.db_port,
            "dbname": self.db_name,
            "user": self.db_user,
            "password": self.db_password,
        }

    @property
    def rate_limits(self) -> RateLimitConfig:
        """Abuse-prevention thresholds with environment overrides applied."""
        return RateLimitConfig(
            requests_per_window=self.ip_requests_per_window,
            ip_window=self.ip_window_seconds,
        )

    @property
    def scoring(self) -> ScoringConfig:
        return DEFAULT_SCORING


# ==========================================================================
# GLOBAL CONFIG INSTANCE (lazy loaded)
# ==========================================================================

_config: CoreSettings | None = None


def get_config() -> CoreSettings:
    """Get the global configuration instance.

    Returns:
        The singleton CoreSettings instance.

    Raises:
        ConfigException: If an AGENTOVERFLOW_* variable fails validation
    """
    global _config
    if _config is None:
        try:
            _config = CoreSettings()
        except ValidationError as e:
            variables = [str(error["loc"][0]) for error in e.errors() if error["loc"]]
            raise ConfigException(f"Invalid configuration: {e.error_count()} error(s)", variables) from e
    return _config


def clear_config_cache() -> None:
    """Clear the config cache. Useful for testing."""
    global _config
    _config = None
