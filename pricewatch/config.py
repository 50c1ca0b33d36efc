# pricewatch/config.py

from typing import Optional
from enum import Enum
from pydantic_settings import BaseSettings

class Environment(str, Enum):
    DEV = "development"
    PRODUCTION = "production"

class Settings(BaseSettings):
    # ==== Project Info ====
    PROJECT_NAME: str = "PriceWatch Crypto Price Monitor"
    VERSION: str = "1.0.0"
    ENVIRONMENT: Environment = Environment.DEV
    DEBUG: bool = False

    # ==== Logging & Metrics ====
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    METRICS_ENABLED: bool = False
    METRICS_PORT: int = 9108

    # ==== Database ====
    POSTGRES_USER: str = "pricewatch"
    POSTGRES_PASSWORD: str = "pricewatch"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_DB: str = "pricewatch"
    # Computed at runtime if not set
    DATABASE_URL: Optional[str] = None

    # ==== Exchanges ====
    BINANCE_BASE_URL: str = "https://api.binance.com/api/v3"
    OKX_BASE_URL: str = "https://www.okx.com/api/v5/market"
    EXCHANGE_HTTP_TIMEOUT_SECONDS: float = 60.0
    EXCHANGE_RETRY_ATTEMPTS: int = 3
    EXCHANGE_RETRY_WAIT_SECONDS: float = 1.0
    HTTP_PROXY_URL: Optional[str] = None

    # ==== Alerts (DingTalk-compatible webhook) ====
    NOTIFIER_WEBHOOK_URL: Optional[str] = None
    NOTIFIER_TIMEOUT_SECONDS: float = 5.0

    # ==== Price Monitor ====
    PRICE_MONITOR_DEFAULT_THRESHOLD: float = 0.20  # 20% below trailing average
    PRICE_MONITOR_TOP_N_SYMBOLS: int = 10
    PRICE_MONITOR_API_REQUEST_DELAY_MS: int = 200
    PRICE_MONITOR_TIMEOUT_SECONDS: float = 240.0
    PRICE_MONITOR_INTERVAL_SECONDS: float = 300.0

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    def model_post_init(self, __context):
        # Database URL Construction
        if not self.DATABASE_URL:
            self.DATABASE_URL = (
                f"postgresql+asyncpg://{self.POSTGRES_USER}:"
                f"{self.POSTGRES_PASSWORD}@"
                f"{self.POSTGRES_SERVER}/{self.POSTGRES_DB}"
            )

        if not 0 < self.PRICE_MONITOR_DEFAULT_THRESHOLD < 1:
            raise ValueError("PRICE_MONITOR_DEFAULT_THRESHOLD must be a fraction between 0 and 1")
        if self.PRICE_MONITOR_TOP_N_SYMBOLS < 1:
            raise ValueError("PRICE_MONITOR_TOP_N_SYMBOLS must be >= 1")
        if self.PRICE_MONITOR_API_REQUEST_DELAY_MS < 0:
            raise ValueError("PRICE_MONITOR_API_REQUEST_DELAY_MS must be >= 0")

        if self.ENVIRONMENT == Environment.PRODUCTION and not self.NOTIFIER_WEBHOOK_URL:
            raise RuntimeError("NOTIFIER_WEBHOOK_URL must be set in production mode")

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.DEBUG else self.LOG_LEVEL

    @property
    def api_request_delay_seconds(self) -> float:
        return self.PRICE_MONITOR_API_REQUEST_DELAY_MS / 1000.0

settings = Settings()
