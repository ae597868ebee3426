from pydantic_settings import BaseSettings
from pydantic import field_validator
from decimal import Decimal
from functools import lru_cache
from typing import List
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # Transient storage contention
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_BACKOFF_SECONDS: float = 0.2  # Doubled on every attempt

    # App Settings
    APP_NAME: str = "OrderCore Back Office"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Seller identity printed on every invoice
    SELLER_NAME: str = "Aroma Naturals"
    SELLER_ADDRESS: str = "Pune, Maharashtra"
    SELLER_STATE: str = "Maharashtra"
    SELLER_GSTIN: str = ""
    COMPANY_CODE: str = "ARN"  # Used in document numbers: INV/ARN/25-26/00001

    # GST
    DEFAULT_GST_RATE: Decimal = Decimal("18.00")
    TAX_ROUNDING_TOLERANCE: Decimal = Decimal("0.01")  # Per invoice line

    # Final invoice retry queue
    FINAL_INVOICE_MAX_RETRIES: int = 5
    FINAL_INVOICE_RETRY_INTERVAL_MINUTES: int = 5
    SCHEDULER_ENABLED: bool = True

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        return list(self.CORS_ORIGINS)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
