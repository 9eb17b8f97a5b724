"""
Configuration settings for sqlupsert.

Uses Pydantic Settings to load environment variables for the database
connection, logging, and the default upsert options applied when the CLI does
not override them.
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
    db_name: str = Field("sqlupsert", alias="DB_NAME")
    db_dialect: str = Field("postgresql", alias="DB_DIALECT")
    db_dsn: Optional[str] = Field(None, alias="DB_DSN")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Upsert defaults
    upsert_batch_size: int = Field(0, alias="UPSERT_BATCH_SIZE")
    upsert_commit_mode: str = Field("profile", alias="UPSERT_COMMIT_MODE")
    upsert_schema_name: Optional[str] = Field(None, alias="UPSERT_SCHEMA_NAME")
    upsert_join_transaction: bool = Field(False, alias="UPSERT_JOIN_TRANSACTION")
    upsert_query_timeout_ms: int = Field(0, alias="UPSERT_QUERY_TIMEOUT_MS")
    upsert_log_parameters: bool = Field(False, alias="UPSERT_LOG_PARAMETERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
