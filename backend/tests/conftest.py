"""
Pytest configuration and shared test helpers for backend tests.
"""
import os
import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

# Skip MongoDB connection when running under pytest; services read these at import.
os.environ.setdefault("PYTEST_RUNNING", "1")
os.environ.setdefault("OTP_PEPPER", "test-pepper")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")

import pytest
from unittest.mock import AsyncMock, MagicMock

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Lifespan (DB connect) is not run."""
    return TestClient(app)


def make_cursor(docs):
    cursor = MagicMock()
    cursor.to_list = AsyncMock(return_value=list(docs))
    cursor.sort = MagicMock(return_value=cursor)
    cursor.limit = MagicMock(return_value=cursor)
    return cursor


@pytest.fixture
def mock_db():
    """MagicMock db whose collections have async CRUD methods and an empty audit log."""
    db = MagicMock()
    for name in ("deals", "contract_signatures", "contract_signature_history", "otp_challenges", "contract_versions", "audit_logs"):
        collection = getattr(db, name)
        collection.find_one = AsyncMock(return_value=None)
        collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id="x"))
        collection.update_one = AsyncMock(return_value=MagicMock(modified_count=1, upserted_id=None))
        collection.find_one_and_update = AsyncMock(return_value=None)
        collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
        collection.delete_many = AsyncMock(return_value=MagicMock(deleted_count=0))
        collection.count_documents = AsyncMock(return_value=0)
        collection.find = MagicMock(return_value=make_cursor([]))
    return db
