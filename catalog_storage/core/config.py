"""Environment-driven configuration with Pydantic v2."""

from typing import Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from catalog_storage.constants import (
    DEFAULT_EVENTS_INITIAL_DELAY,
    DEFAULT_LOCK_POLL_INTERVAL,
    SUPPORTED_DIALECTS,
)
from catalog_storage.core.exceptions import InvalidArgumentError


class Settings(BaseSettings):
    """Storage core settings driven entirely by environment variables."""

    # Database Configuration
    database_url: str = Field(default="sqlite+aiosqlite:///./data/catalog.db")
    database_dialect: Optional[Literal["mysql", "postgresql", "sqlite"]] = Field(default=None)
    database_echo: bool = Field(default=False)
    database_pool_size: int = Field(default=10, ge=1, le=100)
    database_max_overflow: int = Field(default=20, ge=0, le=100)
    database_create_tables: bool = Field(default=True)

    # Storable cache
    cache_max_size: int = Field(default=1000, gt=0)
    cache_expire_after_access: float = Field(default=300.0, ge=0)  # seconds

    # Polling row locks
    lock_poll_interval: float = Field(default=DEFAULT_LOCK_POLL_INTERVAL, gt=0)

    # Events processor
    events_processor_enabled: bool = Field(default=True)
    events_wait_between_processing: float = Field(default=10.0, gt=0)
    events_initial_delay: float = Field(default=DEFAULT_EVENTS_INITIAL_DELAY, ge=0)
    events_connect_with_topics: bool = Field(default=False)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    log_file: Optional[str] = Field(default=None)

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        """Ensure database directory exists for SQLite."""
        if v and v.startswith("sqlite") and ":///" in v:
            db_path = v.split("///")[1]
            if db_path and db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return v

    @property
    def dialect_name(self) -> str:
        """Dialect selector: explicit setting first, then the URL backend."""
        if self.database_dialect:
            return self.database_dialect
        backend = self.database_url.split(":", 1)[0].split("+", 1)[0].lower()
        if backend not in SUPPORTED_DIALECTS:
            raise InvalidArgumentError(
                f"Unsupported database backend '{backend}'",
                operation="configure",
                details={"database_url": self.database_url},
            )
        return backend

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "forbid",
        "env_parse_none_str": "none",
    }
