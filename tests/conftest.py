import base64
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event, select

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

_TEST_DIR = Path(tempfile.mkdtemp(prefix="site-request-queue-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR / 'test.db'}"
os.environ.setdefault("CLERK_JWT_ISSUER", "https://clerk.test")
os.environ.setdefault("CLERK_JWKS_URL", "https://clerk.test/.well-known/jwks.json")
os.environ["MEDIA_STORAGE_BACKEND"] = "local"
os.environ["MEDIA_STORAGE_LOCAL_ROOT"] = str(_TEST_DIR / "uploads")

from app.auth.dependencies import AuthContext, get_current_user  # noqa: E402
from app.db import models  # noqa: E402,F401
from app.db.base import Base, SessionLocal, engine  # noqa: E402
from app.db.deps import get_session  # noqa: E402
from app.db.enums import RequestStatusEnum, RequestTypeEnum  # noqa: E402
from app.db.models import SiteRequest, SiteSession, SiteSessionSection  # noqa: E402
from app.main import app  # noqa: E402
from app.services.errors import StorageFailure  # noqa: E402
from app.services.media_storage import MediaStorage, StorageScope, get_media_storage  # noqa: E402

ADMIN_ID = "admin-1"
OTHER_ADMIN_ID = "admin-2"
CUSTOMER_ID = "customer-1"

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()


@event.listens_for(engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, _record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class InMemoryMediaStorage(MediaStorage):
    """Keeps written objects in a dict; ``fail_writes`` makes every write raise."""

    def __init__(self, *, max_bytes: Optional[int] = None) -> None:
        super().__init__(max_bytes=max_bytes)
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.fail_writes = False
        self.fail_cleanup = False
        self.cleaned: list[str] = []

    @property
    def public_prefix(self) -> str:
        return "/uploads"

    def _write(self, *, key: str, data: bytes, content_type: str) -> None:
        if self.fail_writes:
            raise StorageFailure(f"Failed to write {key}: disk full")
        self.objects[key] = data
        self.content_types[key] = content_type

    def _delete_scope(self, scope: StorageScope) -> None:
        if self.fail_cleanup:
            raise StorageFailure(f"Failed to remove {scope.path}")
        prefix = scope.path + "/"
        for key in [key for key in self.objects if key.startswith(prefix)]:
            del self.objects[key]
            self.content_types.pop(key, None)
        self.cleaned.append(scope.path)


@pytest.fixture(scope="session", autouse=True)
def create_schema() -> None:
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture(autouse=True)
def clean_tables(create_schema):
    yield
    with engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture()
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def storage() -> InMemoryMediaStorage:
    return InMemoryMediaStorage()


@pytest.fixture()
def auth_context() -> AuthContext:
    return AuthContext(user_id=ADMIN_ID, role="admin")


@pytest.fixture()
def override_dependencies(db_session, auth_context, storage):
    def get_session_override():
        try:
            yield db_session
        finally:
            pass

    def get_user_override():
        return auth_context

    def get_storage_override():
        return storage

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_current_user] = get_user_override
    app.dependency_overrides[get_media_storage] = get_storage_override
    try:
        yield
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def api_client(override_dependencies):
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def site_session(db_session) -> SiteSession:
    site_session = SiteSession(customer_id=CUSTOMER_ID, site_name="Le Grand Gourmand", business_type="restaurant")
    db_session.add(site_session)
    db_session.commit()
    db_session.refresh(site_session)
    return site_session


@pytest.fixture()
def make_request(db_session):
    """Insert a request directly, in any lifecycle state."""

    def _make(
        *,
        status: RequestStatusEnum = RequestStatusEnum.pending,
        request_type: RequestTypeEnum = RequestTypeEnum.content,
        admin_id: Optional[str] = None,
        session_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        **fields,
    ) -> SiteRequest:
        now = datetime.now(timezone.utc)
        if admin_id is None and status in (
            RequestStatusEnum.assigned,
            RequestStatusEnum.processing,
            RequestStatusEnum.completed,
            RequestStatusEnum.rejected,
        ):
            admin_id = ADMIN_ID
        if status != RequestStatusEnum.pending and admin_id:
            fields.setdefault("assigned_at", now - timedelta(minutes=30))
        if status in (RequestStatusEnum.processing, RequestStatusEnum.completed):
            fields.setdefault("started_at", now - timedelta(minutes=20))
        request = SiteRequest(
            customer_id=fields.pop("customer_id", CUSTOMER_ID),
            request_type=request_type,
            business_type=fields.pop("business_type", "restaurant"),
            status=status,
            admin_id=admin_id,
            session_id=session_id,
            created_at=created_at or now,
            **fields,
        )
        db_session.add(request)
        db_session.commit()
        db_session.refresh(request)
        return request

    return _make


@pytest.fixture()
def read_section(db_session):
    def _read(session_id: str, section: str):
        db_session.expire_all()
        row = db_session.scalars(
            select(SiteSessionSection).where(
                SiteSessionSection.session_id == session_id,
                SiteSessionSection.section == section,
            )
        ).first()
        return row.data if row else None

    return _read
