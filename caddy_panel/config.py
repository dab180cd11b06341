from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from pathlib import Path


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "Caddy Panel"
    LISTEN_PORT: int = 8000
    DEBUG_MODE: bool = False
    LOG_LEVEL: str = "INFO"
    DATA_DIR: str = Field(default="data")
    SQLITE_PATH: str | None = None  # if None, will be data/app.db

    # Caddy control plane
    CADDY_API_URL: str = "http://localhost:2019"
    CADDY_ADMIN_LISTEN: str = "0.0.0.0:2019"
    CADDY_REQUEST_TIMEOUT: float = 30.0
    CADDY_STATUS_TIMEOUT: float = 5.0   # per status check

    # Publisher retry tuning
    CADDY_RETRY_MAX: int = 3
    CADDY_RETRY_INITIAL_DELAY: float = 1.0
    CADDY_RETRY_MAX_DELAY: float = 5.0

    # Full sync when the app boots
    RECONCILE_ON_STARTUP: bool = True
    STARTUP_RECONCILE_ATTEMPTS: int = 5
    STARTUP_RECONCILE_DELAY: float = 2.0

    CERT_BATCH_SIZE: int = 50

    def db_path(self) -> str:
        if self.SQLITE_PATH:
            return self.SQLITE_PATH
        d = Path(self.DATA_DIR)
        d.mkdir(parents=True, exist_ok=True)
        return str(d / "app.db")

settings = Settings()
