"""Runtime configuration for perfwatch.

Settings come from environment variables, then ``.env.local``, then ``.env``
in the working directory. Most variables carry the ``PERFWATCH_`` prefix;
``DATABASE_URL`` and ``LOG_LEVEL`` keep their conventional names. Invalid
values fail at startup with a validation error naming the variable.
"""

import logging
from functools import lru_cache
from typing import Annotated

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_DATABASE_URL = 'sqlite+aiosqlite:///./perfwatch.db'
MIB = 1024 * 1024


class Settings(BaseSettings):
    """Application settings.

    Attributes:
        database_url: SQLAlchemy async database URL
        environment: Deployment environment ("development", "production", ...)
        log_level: Root log level name
        admin_roles: Role names granted access to admin-only endpoints
        query_timeout_seconds: Upper bound for a single aggregate read
        retention_days: Samples older than this are deleted by retention
        retention_enabled: Run the periodic retention task inside the app
        retention_interval_seconds: Delay between retention runs
        slow_request_ms: Response time above which a request counts as slow
        slow_query_ms: Statement duration above which a query counts as slow
        alert_response_time_ms: Mean response time alert threshold
        alert_error_rate_percent: Error rate alert threshold
        alert_memory_bytes: Mean memory usage alert threshold
        db_pool_size: Connection pool size (ignored for SQLite)
        db_max_overflow: Pool overflow connections (ignored for SQLite)
    """

    model_config = SettingsConfigDict(
        env_prefix='PERFWATCH_',
        env_file=('.env', '.env.local'),
        env_file_encoding='utf-8',
        env_ignore_empty=True,
        case_sensitive=False,
        populate_by_name=True,
        extra='ignore',
        frozen=True,
    )

    database_url: str = Field(
        DEFAULT_DATABASE_URL,
        validation_alias=AliasChoices('DATABASE_URL', 'PERFWATCH_DATABASE_URL'),
    )
    environment: str = Field('development', validation_alias=AliasChoices('PERFWATCH_ENV'))
    log_level: str = Field('INFO', validation_alias=AliasChoices('LOG_LEVEL', 'PERFWATCH_LOG_LEVEL'))
    admin_roles: Annotated[frozenset[str], NoDecode] = frozenset({'admin'})
    query_timeout_seconds: float = Field(10.0, gt=0)
    retention_days: int = Field(30, ge=1)
    retention_enabled: bool = True
    retention_interval_seconds: float = Field(3600.0, gt=0)
    slow_request_ms: float = Field(1000.0, ge=0)
    slow_query_ms: float = Field(1000.0, ge=0)
    alert_response_time_ms: float = Field(1000.0, gt=0)
    alert_error_rate_percent: float = Field(5.0, gt=0, le=100)
    alert_memory_bytes: float = Field(500 * MIB, gt=0)
    db_pool_size: int = Field(10, ge=1)
    db_max_overflow: int = Field(10, ge=0)

    @field_validator('admin_roles', mode='before')
    @classmethod
    def parse_admin_roles(cls, v):
        """Comma-separated list; compared case-insensitively."""
        if isinstance(v, str):
            v = v.split(',')
        roles = frozenset(str(role).strip().lower() for role in v if str(role).strip())
        if not roles:
            raise ValueError('at least one admin role is required')
        return roles

    @field_validator('log_level', mode='before')
    @classmethod
    def normalize_log_level(cls, v):
        level = str(v).strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f'unknown log level {v!r}')
        return level

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == 'production'


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings (cached after the first call).

    Tests that change the environment should call ``get_settings.cache_clear()``
    or pass an explicit ``Settings`` to ``create_app``.
    """
    return Settings()
