from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    APP_NAME: str = "SiPatrol"
    VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    # Console scripts (sipatrol-api, sipatrol-field)
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    FIELD_HOST: str = "127.0.0.1"
    FIELD_PORT: int = 8001

    DATABASE_URL: str = "sqlite:///./sipatrol.db"
    SEED_DEMO_DATA: bool = False

    # Identity provider (tokens are issued externally, only verified here)
    IDENTITY_JWT_SECRET: str = "change-me-in-production-use-strong-random-key"
    IDENTITY_JWT_ALGORITHM: str = "HS256"

    # Report photo storage
    REPORT_STORAGE_DIR: Optional[str] = None
    MAX_IMAGE_BYTES: int = 8 * 1024 * 1024

    # Field device: remote report API
    REPORT_API_URL: str = "http://localhost:8000/api/v1"
    REPORT_API_TOKEN: Optional[str] = None
    REPORT_API_TIMEOUT: float = 15.0

    # Field device: durable offline queue
    OFFLINE_QUEUE_URL: str = "sqlite:///./sipatrol_offline.db"
    OFFLINE_QUEUE_MAX_RECORDS: int = 500
    OFFLINE_QUEUE_MAX_BYTES: int = 200 * 1024 * 1024

    # Field device: sync engine
    SYNC_INTERVAL_SECONDS: float = 30.0
    SYNC_MAX_ATTEMPTS: int = 8  # after this the officer has to retry or discard by hand
    SYNC_BACKOFF_BASE_SECONDS: float = 5.0
    SYNC_BACKOFF_MAX_SECONDS: float = 900.0

    # Field device: connectivity probe against the report API /health
    CONNECTIVITY_PROBE_ENABLED: bool = True
    CONNECTIVITY_PROBE_INTERVAL_SECONDS: float = 15.0

    # Onboarding: wait for the profile row to appear
    PROFILE_WAIT_ATTEMPTS: int = 5
    PROFILE_WAIT_DELAY_SECONDS: float = 1.0

    class Config:
        env_file = ".env"


settings = Settings()
