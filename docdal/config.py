"""
Store configuration: Pydantic v2 Settings (env / .env)
======================================================

Values are read from ``DOCDAL_*`` environment variables, then from a
``.env`` file, then fall back to the defaults below. Unknown variables are
ignored.

Usage
-----
from docdal.config import StoreSettings

settings = StoreSettings(host="db.internal", username="app", password="secret",
                         query={"sslmode": "require"})
db = DB.from_settings(settings, "library")

Security
--------
- Never commit the ``.env`` file; prefer runtime environment variables.
- The password is a ``SecretStr`` and is hidden when the URL is logged.
"""

from typing import Any, Dict, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL, make_url

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5432
DEFAULT_DRIVER = "postgresql+psycopg2"
MEMORY_DRIVER = "memory"


class StoreSettings(BaseSettings):
    """
    Connection settings for the document store.
    The driver ``"memory"`` selects the in-process storage and ignores every
    network setting.
    """

    model_config = SettingsConfigDict(
        env_prefix="DOCDAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    driver: str = Field(DEFAULT_DRIVER, description="SQLAlchemy driver name, or `memory`.")
    host: str = Field(DEFAULT_HOST, description="Hostname or IP address of the store.")
    port: int = Field(DEFAULT_PORT, description="Port of the store.")
    username: Optional[str] = Field(None, description="Store username credential.")
    password: Optional[SecretStr] = Field(None, description="Store password credential.")
    query: Dict[str, str] = Field(default_factory=dict, description="Extra URL options (e.g. `sslmode`).")
    url: Optional[str] = Field(None, description="Full connection URL; overrides driver/host/port/credentials.")
    echo: bool = Field(False, description="Log every SQL statement.")
    pool_pre_ping: bool = Field(True, description="Check pooled connections before use.")

    @property
    def is_memory(self) -> bool:
        return self.driver == MEMORY_DRIVER and self.url is None

    def to_url(self, database: str) -> URL:
        """
        Connection URL for `database`.
        A database already named in the `url` override wins over the argument.
        """
        if self.url is not None:
            url = make_url(self.url)
            return url.set(database=database) if database and not url.database else url
        return URL.create(
            drivername=self.driver,
            username=self.username,
            password=self.password.get_secret_value() if self.password else None,
            host=self.host,
            port=self.port,
            database=database,
            query=self.query,
        )

    def engine_options(self) -> Dict[str, Any]:
        return {"echo": self.echo, "pool_pre_ping": self.pool_pre_ping}
