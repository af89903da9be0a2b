"""Application configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Application
    log_level: str = "INFO"
    debug: bool = False

    # CORS
    allowed_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Analysis
    default_display_currency: str = "USD"
    benchmark_symbol: str = "SPY"
    benchmark_currency: str = "USD"
    portfolio_rate_limit: str = "20/minute"

    # Reconciliation
    synthetic_capital_tolerance: float = 100.0
    gap_business_days_threshold: int = 2
    deposit_lag_ratio: float = 0.5
    annualization_min_days: int = 30

    # FX
    fx_lookback_days: int = 5

    # Allocation
    small_bucket_threshold: float = 0.001

    # Market data (Yahoo Finance)
    market_data_max_workers: int = 10
    market_data_retry_attempts: int = 3
    market_data_retry_base_delay: float = 0.5
    market_data_timeout: float = 60.0

    # IBKR Flex Web Service
    ibkr_flex_base_url: str = "https://gdcdyn.interactivebrokers.com/Universal/servlet"
    ibkr_flex_version: str = "3"
    ibkr_flex_poll_timeout: int = 60
    ibkr_flex_poll_interval: float = 2.0

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )


settings = Settings()
