"""Configuration for Payout Ledger service."""

from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional


class Settings(BaseSettings):
    """Payout Ledger configuration."""

    # Database - PostgreSQL in production, SQLite file for single-host setups
    database_url: str = Field(default="sqlite:///payout_ledger.db", alias="DATABASE_URL")
    db_pool_min: int = Field(default=1, alias="DB_POOL_MIN")
    db_pool_max: int = Field(default=10, alias="DB_POOL_MAX")
    db_ssl: bool = Field(default=False, alias="DB_SSL")
    sqlite_busy_timeout_seconds: float = Field(default=30.0, alias="SQLITE_BUSY_TIMEOUT_SECONDS")

    # Dispensing
    gen_cooldown_seconds: int = Field(default=300, alias="GEN_COOLDOWN_SECONDS")  # 5 minutes

    # Bulk import
    import_max_bytes: int = Field(default=5 * 1024 * 1024, alias="IMPORT_MAX_BYTES")
    import_timeout_seconds: float = Field(default=15.0, alias="IMPORT_TIMEOUT_SECONDS")

    # Shown with fa / xboxgp accounts
    full_access_guide_url: Optional[str] = Field(default=None, alias="FULL_ACCESS_GUIDE_URL")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
