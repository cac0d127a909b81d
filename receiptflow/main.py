"""
ReceiptFlow backend — FastAPI application entry-point.
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from receiptflow.config import settings
from receiptflow.database import Base, SessionLocal, engine
from receiptflow.errors import ProcessingError
from receiptflow.integrations.extractor import OpenAIVisionExtractor
from receiptflow.integrations.storage import LocalFileStorage

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(name)-30s  %(levelname)-5s  %(message)s",
)
logger = logging.getLogger(__name__)


def _ensure_sqlite_dir(url: str) -> None:
    prefix = "sqlite:///"
    if url.startswith(prefix) and ":memory:" not in url:
        directory = os.path.dirname(url[len(prefix):])
        if directory:
            os.makedirs(directory, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: ensure tables exist and build the external collaborators
    _ensure_sqlite_dir(settings.DATABASE_URL)
    # Import models so Base.metadata knows about them
    import receiptflow.billing.models  # noqa: F401
    import receiptflow.processing.models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready (%s)", settings.DATABASE_URL)

    app.state.extractor = OpenAIVisionExtractor.from_settings(settings)
    app.state.storage = LocalFileStorage(settings.STORAGE_DIR)

    if settings.STALE_SWEEP_ON_STARTUP:
        from receiptflow.processing.pipeline import ReceiptProcessor, RetryCoordinator

        db = SessionLocal()
        try:
            processor = ReceiptProcessor(db, app.state.extractor, app.state.storage)
            reset = RetryCoordinator(processor).reset_stale(settings.STALE_PROCESSING_TTL_SECONDS)
            logger.info("Startup sweep reset %d stuck receipt(s)", len(reset))
        finally:
            db.close()

    yield
    logger.info("Shutting down")


app = FastAPI(
    title="ReceiptFlow",
    description="Receipt upload → vision extraction → validation → metered credit ledger",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ProcessingError)
async def processing_error_handler(request: Request, exc: ProcessingError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/")
async def root():
    return {"service": "ReceiptFlow", "version": "0.1.0", "status": "running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


# ── Register API routers ─────────────────────────────────────────────────
from receiptflow.processing.routers.receipts import router as receipts_router  # noqa: E402
from receiptflow.billing.routers.credits import router as credits_router  # noqa: E402

app.include_router(receipts_router, prefix="/api", tags=["Receipts"])
app.include_router(credits_router, prefix="/api", tags=["Credits"])
