"""
Shared fixtures for server tests.

Each test gets its own SQLite database file (aiosqlite), so concurrent
sessions contend for real write locks the way PostgreSQL rows do.
"""

import os
import tempfile

# Configure settings before any app module reads them.
_TEST_DIR = tempfile.mkdtemp(prefix="checkin-tests-")
os.environ.setdefault("CB_DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DIR}/app.db")
os.environ.setdefault("CB_SECRET_KEY", "test-secret-key-for-jwt-signing-0123456789")
os.environ.setdefault("CB_PAYMENT_CALLBACK_SECRET", "gateway-secret")
os.environ.setdefault("CB_MAINTENANCE_SECRET", "maintenance-secret")
os.environ.setdefault("CB_LOG_FORMAT", "text")

import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.core.blobstore import get_blob_store
from app.core.database import get_session, init_db
from app.core.errors import UpstreamUnavailable
from app.core.geocoding import get_geocoder
from app.models.base import utcnow
from app.models.check_in_request import CheckInRequest
from app.models.document import Document


class InMemoryBlobStore:
    """Blob store double: fake presigned URLs, recorded deletes, injectable failures."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_keys: set[str] = set()

    def presign_put(self, key: str, content_type: str, expires_in: int) -> str:
        return f"https://blobs.test/{key}?op=put&type={content_type}&expires_in={expires_in}"

    def presign_get(self, key: str, expires_in: int, file_name: str | None = None) -> str:
        return f"https://blobs.test/{key}?op=get&expires_in={expires_in}"

    async def delete(self, key: str) -> None:
        if key in self.fail_keys:
            raise UpstreamUnavailable("Blob store rejected delete", key=key)
        self.objects.pop(key, None)
        self.deleted.append(key)


class StubGeocoder:
    """Geocoder double returning a fixed answer (or raising)."""

    def __init__(self, point=(52.3676, 4.9041), error: Exception | None = None):
        self.point = point
        self.error = error
        self.calls: list[str] = []

    async def geocode(self, address: str):
        self.calls.append(address)
        if self.error is not None:
            raise self.error
        return self.point


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path}/test.db",
        connect_args={"timeout": 30},
    )
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def geocoder():
    return StubGeocoder()


@pytest.fixture
def geocoder_factory():
    return StubGeocoder


@pytest.fixture
def make_request(session):
    """Insert a request directly, bypassing create-time validation."""

    async def _make(**overrides) -> CheckInRequest:
        now = utcnow()
        fields = dict(
            creator_id="creator-1",
            address="Damrak 1, Amsterdam",
            latitude=52.3676,
            longitude=4.9041,
            scheduled_at=now + timedelta(hours=4),
            party_size=2,
            fee=Decimal("20.00"),
            platform_fee_rate=Decimal("0.20"),
            status="pending",
            payment_status="succeeded",
        )
        fields.update(overrides)
        req = CheckInRequest(**fields)
        session.add(req)
        await session.commit()
        return req

    return _make


@pytest.fixture
def make_document(session):
    async def _make(request_id: uuid.UUID, **overrides) -> Document:
        now = utcnow()
        doc_id = overrides.pop("id", uuid.uuid4())
        fields = dict(
            id=doc_id,
            request_id=request_id,
            uploader_id="fulfiller-1",
            blob_key=f"requests/{request_id}/{doc_id}/photo.jpg",
            file_name="photo.jpg",
            mime_type="image/jpeg",
            created_at=now,
            expires_at=now + timedelta(hours=48),
        )
        fields.update(overrides)
        doc = Document(**fields)
        session.add(doc)
        await session.commit()
        return doc

    return _make


@pytest.fixture
async def client(session_factory, blob_store, geocoder):
    """API client wired to the per-test database and doubles; events are captured."""
    from app.main import app

    async def _get_session():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_geocoder] = lambda: geocoder

    published = AsyncMock(return_value=True)
    with patch("app.api.v1.requests.publish_event", published), patch(
        "app.api.v1.documents.publish_event", published
    ), patch("app.api.v1.payments.publish_event", published):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            ac.published = published
            yield ac

    app.dependency_overrides.clear()
