"""Form record store configuration.

SQLite through aiosqlite is the default store. Point ``DB_URL`` at any other
SQLAlchemy async URL (``postgresql+asyncpg://...``) to use a server instead.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """
    Settings for the form record store.

    Example environment variables:
        DB_SQLITE_PATH=data/form_records.db
        DB_URL=postgresql+asyncpg://forms:secret@db:5432/forms
        DB_ECHO_SQL=true
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    driver: str = Field(default="sqlite+aiosqlite", description="Async driver used for the SQLite file")
    url: Optional[str] = Field(default=None, description="Full async URL; overrides the SQLite file")
    sqlite_path: Path = Field(
        default=Path("data/form_records.db"),
        description="Form record SQLite file",
    )
    echo_sql: bool = Field(default=False, description="Echo SQL statements to the log")
    query_timeout: int = Field(default=30, ge=1, description="Lock / command timeout in seconds")

    @computed_field
    @property
    def is_sqlite(self) -> bool:
        target = self.url or self.driver
        return target.lower().startswith("sqlite")

    @computed_field
    @property
    def async_url(self) -> str:
        """URL handed to ``create_async_engine``. Creates the SQLite directory when needed."""
        if self.url:
            return self.url
        self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        return f"{self.driver}:///{self.sqlite_path.absolute()}"

    def get_connect_args(self) -> dict:
        """Driver connect arguments carrying the configured timeout."""
        if self.is_sqlite:
            # aiosqlite connections hop between threads
            return {"check_same_thread": False, "timeout": self.query_timeout}
        return {"command_timeout": self.query_timeout}


@lru_cache
def get_database_settings() -> DatabaseSettings:
    """Cached store settings loaded from the environment."""
    return DatabaseSettings()
