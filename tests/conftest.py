"""
Shared pytest fixtures: in-memory SQLite, fake collaborators, FastAPI TestClient.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")

import uuid  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from receiptflow.billing.ledger import CreditLedger  # noqa: E402
from receiptflow.billing.models import CreditTransactionModel, ProfileModel  # noqa: E402,F401
from receiptflow.database import Base, get_db  # noqa: E402
from receiptflow.dependencies import get_extractor, get_rate_limiter, get_storage  # noqa: E402
from receiptflow.main import app  # noqa: E402
from receiptflow.processing.models import PENDING, ReceiptModel  # noqa: E402
from receiptflow.processing.pipeline import TokenBucket  # noqa: E402
from tests.helpers import USER_ID, FakeClock, FakeExtractor, FakeStorage  # noqa: E402

# StaticPool ensures all connections share the same in-memory database
_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_Session = sessionmaker(autocommit=False, autoflush=False, bind=_ENGINE)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_tables():
    Base.metadata.create_all(bind=_ENGINE)
    yield
    Base.metadata.drop_all(bind=_ENGINE)


@pytest.fixture()
def db():
    session = _Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def storage():
    return FakeStorage()


@pytest.fixture()
def extractor():
    return FakeExtractor()


@pytest.fixture()
def fake_clock():
    return FakeClock()


@pytest.fixture()
def make_receipt(db):
    def _make(user_id=USER_ID, status=PENDING, **fields):
        receipt_id = fields.pop("id", None) or str(uuid.uuid4())
        record = ReceiptModel(
            id=receipt_id,
            user_id=user_id,
            file_name=fields.pop("file_name", f"{receipt_id}.jpg"),
            file_path=fields.pop("file_path", f"{user_id}/{receipt_id}.jpg"),
            file_type=fields.pop("file_type", "image/jpeg"),
            file_size=fields.pop("file_size", 2048),
            processing_status=status,
            **fields,
        )
        db.add(record)
        db.commit()
        return receipt_id

    return _make


@pytest.fixture()
def fund(db):
    def _fund(user_id=USER_ID, credits=5):
        return CreditLedger(db).credit(user_id, credits, "purchase", "Test credits")

    return _fund


@pytest.fixture()
def client(db, extractor, storage, fake_clock):
    def _override():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _override
    app.dependency_overrides[get_extractor] = lambda: extractor
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_rate_limiter] = lambda: TokenBucket(
        interval=1.0, clock=fake_clock, sleep=fake_clock.sleep
    )
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def file_sessions(tmp_path):
    """Session factory over a file-backed SQLite database, safe for one session per thread."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()
