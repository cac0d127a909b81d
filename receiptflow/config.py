"""
Application settings
"""
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database (receipts + credit ledger share one store)
    DATABASE_URL: str = "sqlite:///./data/receiptflow.db"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # File storage
    STORAGE_DIR: str = "./data/uploads"
    SIGNED_URL_TTL_SECONDS: int = 60
    RETRY_SIGNED_URL_TTL_SECONDS: int = 300
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024
    ALLOWED_UPLOAD_TYPES: List[str] = ["image/jpeg", "image/png", "image/webp", "image/gif", "application/pdf"]

    # Vision extractor
    LLM_API_KEY: str = ""
    LLM_MODEL: str = "gpt-4o"
    LLM_BASE_URL: Optional[str] = None
    LLM_TIMEOUT_SECONDS: float = 30.0
    LLM_MAX_TOKENS: int = 1500
    LLM_TEMPERATURE: float = 0.1

    # Processing
    LOW_CONFIDENCE_THRESHOLD: float = 0.7
    VALIDATION_CONFIDENCE_CAP: float = 0.6

    # Bulk processing
    BULK_MAX_ITEMS: int = 100
    BULK_REQUEST_INTERVAL_SECONDS: float = 1.0
    BULK_ITEM_BUDGET_SECONDS: float = 30.0
    BULK_TIMEOUT_BUFFER_SECONDS: float = 10.0

    # Stuck "processing" rows
    STALE_PROCESSING_TTL_SECONDS: int = 120
    STALE_SWEEP_ON_STARTUP: bool = False

    # Shared secrets (empty disables the route)
    WEBHOOK_SECRET: str = ""
    ADMIN_TOKEN: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
