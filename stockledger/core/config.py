from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    # Application
    APP_NAME: str = "StockLedger"
    APP_PORT: int = 9210
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "stockledger"
    POSTGRES_PORT: int = 5432
    DATABASE_URL_OVERRIDE: Optional[str] = None  # e.g. sqlite:///./stockledger.db

    # Numeric precision
    COST_DECIMAL_PLACES: int = 2
    QUANTITY_DECIMAL_PLACES: int = 4

    # Locking
    LOCK_TIMEOUT_SECONDS: float = 10.0

    # Reconciliation
    RECONCILE_WARNING_PERCENT: float = 5
    RECONCILE_CRITICAL_PERCENT: float = 10
    RECONCILE_SCHEDULER_ENABLED: bool = False
    RECONCILE_INTERVAL_MINUTES: int = 60

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    class Config:
        env_file = ".env"
        extra = "ignore"

@lru_cache()
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
