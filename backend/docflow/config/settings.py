"""Application Settings - Central Configuration"""
from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "docflow_dev"
    # Multi-document transactions need a replica set; standalone dev servers can turn this off
    mongo_transactions: bool = True

    # Logging
    logs_path: str = "./logs"  # empty: console only
    log_level: str = "INFO"

    # CORS - set to "*" to allow all origins
    cors_origins: str = "*"

    # Routing conditions (document amount bands)
    high_value_threshold: str = "50000"
    low_value_threshold: str = "5000"

    # Definition management
    definition_manage_level: int = 60  # update, delete
    definition_owner_level: int = 100  # start permissions, besides the creator

    # Bulk operations
    bulk_max_tasks: int = 100

    # Audit
    audit_history_limit: int = 1000

    # Scheduler
    scheduler_interval_seconds: int = 60
    task_timeout_minutes: int = 0  # 0 disables the timeout sweep

    # Environment
    environment: str = "development"
    debug: bool = True

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string to list"""
        return [origin.strip() for origin in self.cors_origins.split(",")]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
