"""Pytest configuration and fixtures."""

import os
import uuid
from unittest.mock import patch

import pytest

# Use test database - PostgreSQL in Docker, SQLite locally
if os.getenv("DATABASE_URL"):
    # Running in Docker - use PostgreSQL test database
    SQLALCHEMY_DATABASE_URL = os.getenv("DATABASE_URL").replace(
        "/receipt_tracker", "/receipt_tracker_test"
    )
else:
    # Running locally - use SQLite
    SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"

# The app's own engine (used at startup) must point at the test database too
os.environ["DATABASE_URL"] = SQLALCHEMY_DATABASE_URL

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from receipt_tracker.api.dependencies import get_storage  # noqa: E402
from receipt_tracker.database import Base, build_engine, get_db  # noqa: E402
from receipt_tracker.main import app  # noqa: E402
from receipt_tracker.models.enums import ReceiptStatus  # noqa: E402
from receipt_tracker.models.receipt import Receipt  # noqa: E402
from receipt_tracker.services.object_stage import FilesystemObjectStage  # noqa: E402

engine = build_engine(SQLALCHEMY_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

JPEG_BYTES = bytes([0xFF, 0xD8, 0xFF, 0xE0, 0x00, 0x10])
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 8
PDF_BYTES = b"%PDF-1.7\n%\xe2\xe3\xcf\xd3\n"


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create test database schema once at the start of the test session."""
    if "postgresql" in SQLALCHEMY_DATABASE_URL:
        # For PostgreSQL, create the test database
        from sqlalchemy_utils import create_database, database_exists

        # Create test database if it doesn't exist
        if not database_exists(SQLALCHEMY_DATABASE_URL):
            create_database(SQLALCHEMY_DATABASE_URL)

    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(scope="function", autouse=True)
def db():
    """Create a fresh database session for each test with cleanup."""
    session = TestingSessionLocal()

    yield session

    # Clean up all data after test
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.close()


@pytest.fixture
def storage(tmp_path):
    """Filesystem object stage rooted in a per-test temp directory."""
    return FilesystemObjectStage(root=tmp_path / "objects")


@pytest.fixture
def process_task():
    """Stand-in for queueing the processing task (no broker in tests)."""
    with patch("receipt_tracker.tasks.receipt_processing.process_staged_receipt.delay") as mock:
        yield mock


@pytest.fixture(scope="function")
def client(db, storage, process_task):
    """Create a test client with database and storage overrides."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def owner_headers():
    """Headers identifying the owner "u1"."""
    return {"X-User-Id": "u1"}


@pytest.fixture
def make_receipt(db):
    """Insert a receipt row directly, bypassing the upload endpoint."""

    def _make(owner_id: str = "u1", status: ReceiptStatus = ReceiptStatus.UPLOADED, **fields):
        receipt_id = fields.pop("id", None) or uuid.uuid4()
        blob_name = fields.pop("blob_name", None) or f"{owner_id}/{receipt_id}.jpg"
        receipt = Receipt(
            id=receipt_id,
            owner_id=owner_id,
            original_file_name="receipt.jpg",
            blob_name=blob_name,
            status=status.value,
            **fields,
        )
        db.add(receipt)
        db.commit()
        db.refresh(receipt)
        return receipt

    return _make
