"""Application settings and configuration.

This module defines all configuration options for the cap table sync service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Cap Table Sync", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./captable.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Ledger (JSON-RPC) connection
    ledger_enabled: bool = Field(default=False, alias="LEDGER_ENABLED")
    ledger_rpc_url: str | None = Field(default=None, alias="LEDGER_RPC_URL")
    ledger_http_timeout_seconds: float = Field(
        default=10.0,
        alias="LEDGER_HTTP_TIMEOUT_SECONDS",
    )
    ledger_reconnect_max_attempts: int = Field(
        default=5,
        alias="LEDGER_RECONNECT_MAX_ATTEMPTS",
    )
    ledger_reconnect_base_delay_seconds: float = Field(
        default=5.0,
        alias="LEDGER_RECONNECT_BASE_DELAY_SECONDS",
    )
    ledger_required_confirmations: int = Field(
        default=1,
        alias="LEDGER_REQUIRED_CONFIRMATIONS",
    )

    # Poll cycle tuning
    sync_poll_interval_seconds: float = Field(default=5.0, alias="SYNC_POLL_INTERVAL_SECONDS")
    sync_max_blocks: int = Field(default=1500, alias="SYNC_MAX_BLOCKS")
    sync_max_events: int = Field(default=250, alias="SYNC_MAX_EVENTS")
    sync_finalized_only: bool = Field(default=False, alias="SYNC_FINALIZED_ONLY")
    sync_concurrency: int = Field(default=1, alias="SYNC_CONCURRENCY")
    # Consecutive failed batches before an issuer is quarantined (0 disables).
    sync_max_batch_failures: int = Field(default=5, alias="SYNC_MAX_BATCH_FAILURES")

    # Cap table presentation
    captable_decimal_places: int = Field(default=4, alias="CAPTABLE_DECIMAL_PLACES")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()
