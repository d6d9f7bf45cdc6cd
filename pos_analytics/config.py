"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Service
    service_name: str = "pos-analytics"
    log_level: str = "INFO"

    # Performance scoring
    target_revenue: float = 100_000.0
    revenue_weight: float = 0.4
    margin_weight: float = 0.35
    collection_weight: float = 0.25

    # Risk thresholds (outstanding / extended credit)
    high_risk_ratio: float = 0.5
    medium_risk_ratio: float = 0.2

    # Reports
    product_top_n: int = 10
    default_window_days: int = 30
    credit_sample_size: int = 5
    reconciliation_epsilon: float = 0.01  # Balances below this count as settled
    report_cache_ttl_seconds: float = 60.0


settings = Settings()
