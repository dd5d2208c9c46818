import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from crosstool.version import __version__
from crosstool.core.constants import (
    DEFAULT_APP_DIR_NAME,
    DEFAULT_CLIENT_TOKEN,
    DEFAULT_DB_FILENAME,
    DEFAULT_SERVER_LOG_FILENAME,
    DEFAULT_SERVER_HOST,
    DEFAULT_SERVER_PORT,
    HEALTH_FRESHNESS_SECONDS,
    LAUNCH_ATTEMPTS,
    LAUNCH_BACKOFF_SECONDS,
    PROBE_TIMEOUT_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
    STARTUP_TIMEOUT_SECONDS,
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CROSSTOOL_",
        case_sensitive=True,
        extra="ignore"
    )

    # --- CORE ---
    VERSION: str = __version__
    APP_DIR: str = str(Path.home() / DEFAULT_APP_DIR_NAME)
    DB_FILENAME: str = DEFAULT_DB_FILENAME
    # "sqlite" persists to APP_DIR; "memory" is an explicit non-persistent backend.
    STORAGE_BACKEND: str = "sqlite"

    # --- SERVER ---
    HOST: str = DEFAULT_SERVER_HOST
    PORT: int = DEFAULT_SERVER_PORT
    SECURITY_TOKEN: Optional[str] = None
    CLIENT_TOKEN: str = DEFAULT_CLIENT_TOKEN

    # --- SUPERVISOR ---
    SERVER_BINARY: Optional[str] = None
    PROBE_TIMEOUT_SEC: float = PROBE_TIMEOUT_SECONDS
    REQUEST_TIMEOUT_SEC: float = REQUEST_TIMEOUT_SECONDS
    STARTUP_TIMEOUT_SEC: float = STARTUP_TIMEOUT_SECONDS
    HEALTH_FRESHNESS_SEC: float = HEALTH_FRESHNESS_SECONDS
    LAUNCH_ATTEMPTS: int = LAUNCH_ATTEMPTS
    LAUNCH_BACKOFF_SEC: float = LAUNCH_BACKOFF_SECONDS

    # --- LOGGING ---
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    @property
    def db_path(self) -> str:
        return str(Path(os.path.expanduser(self.APP_DIR)) / self.DB_FILENAME)

    @property
    def server_log_path(self) -> str:
        return str(Path(os.path.expanduser(self.APP_DIR)) / DEFAULT_SERVER_LOG_FILENAME)

    @property
    def allowed_tokens(self) -> set[str]:
        tokens = {self.CLIENT_TOKEN, DEFAULT_CLIENT_TOKEN}
        if self.SECURITY_TOKEN:
            tokens.add(self.SECURITY_TOKEN)
        return {t for t in tokens if t}


settings = Settings()
