# propertyhub/config.py
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Runtime ---
    app_env: str = "development"
    log_level: str = "INFO"
    log_json: bool = False

    # --- Database ---
    database_url: str = "sqlite:///./propertyhub_dev.db"
    # Local development convenience; deployments run the Alembic migrations instead.
    auto_create_tables: bool = True

    # --- Security / JWT ---
    jwt_secret: str = "dev-secret-please-change"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24  # 24 hours

    # --- CORS ---
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # --- File storage ---
    file_storage_backend: str = "local"
    uploads_dir: str = "uploads"
    uploads_public_path: str = "/api/uploads"
    legacy_upload_prefixes: List[str] = ["/uploads"]
    api_base_url: str = "http://localhost:8000"
    s3_bucket: Optional[str] = None
    s3_region: Optional[str] = None
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None
    s3_endpoint_url: Optional[str] = None
    max_image_upload_bytes: int = 10 * 1024 * 1024
    image_upload_rate_limit: int = 20
    image_upload_rate_window_seconds: int = 60

    # --- Cache ---
    redis_url: Optional[str] = None
    properties_cache_ttl_seconds: int = 60
    activity_cache_ttl_seconds: int = 300

    # --- Property images ---
    property_images_check_ttl_seconds: float = 30.0

    # --- Transactions ---
    transaction_max_wait_ms: int = 5000
    transaction_timeout_ms: int = 30000
    bulk_transaction_timeout_ms: int = 60000
    transaction_retry_attempts: int = 3

    @field_validator("uploads_public_path")
    @classmethod
    def _normalise_public_path(cls, value: str) -> str:
        trimmed = (value or "").strip()
        if not trimmed:
            return "/api/uploads"
        if trimmed.startswith("http://") or trimmed.startswith("https://"):
            return trimmed.rstrip("/")
        return "/" + trimmed.strip("/")

    @property
    def uploads_root_path(self) -> Path:
        return Path(self.uploads_dir).resolve()

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

# Ensure path directory exists (for SQLite)
if settings.database_url.startswith("sqlite:///"):
    db_path = Path(settings.database_url.replace("sqlite:///", ""))
    db_path.parent.mkdir(parents=True, exist_ok=True)

# --- SQLAlchemy setup ---
engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False}
    if settings.database_url.startswith("sqlite")
    else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
