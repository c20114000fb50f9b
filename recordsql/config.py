"""
Configuration settings for recordsql.

Uses Pydantic Settings to load environment variables for database connections,
logging, and the engine knobs that decide how SQL is synthesized (row caps,
numeric null handling, server-side timestamp function).
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("recordsql", alias="DB_NAME")
    db_statement_timeout_ms: int = Field(0, alias="DB_STATEMENT_TIMEOUT_MS")
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(10, alias="DB_POOL_MAX_SIZE")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    sql_log_level: Optional[str] = Field(None, alias="SQL_LOG_LEVEL")

    # Engine
    max_rows_to_filter: int = Field(1000, alias="MAX_ROWS_TO_FILTER", gt=0)
    treat_null_as_zero: bool = Field(True, alias="TREAT_NULL_AS_ZERO")
    timestamp_function: str = Field("CURRENT_TIMESTAMP", alias="TIMESTAMP_FUNCTION")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
