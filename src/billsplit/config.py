from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    database_url: str = Field("postgresql://localhost/billsplit", alias="DATABASE_URL")
    lock_timeout_ms: int = Field(2000, alias="LOCK_TIMEOUT_MS", gt=0)
    max_amount_cents: int = Field(99_999_999, alias="MAX_AMOUNT_CENTS", gt=0)
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    @property
    def lock_timeout_seconds(self) -> float:
        return self.lock_timeout_ms / 1000

    @property
    def sync_database_url(self) -> str:
        """DATABASE_URL for the psycopg2 driver alembic runs on."""
        url = make_url(self.database_url)
        if "+" in url.drivername:
            url = url.set(drivername=url.drivername.split("+", 1)[0])
        return url.render_as_string(hide_password=False)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
