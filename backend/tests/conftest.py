import asyncio
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

# CRITICAL: Set environment variables BEFORE any trackmystartup imports
# These must be set before trackmystartup.config.settings is loaded
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), "test_trackmystartup.db")
os.environ["SECRET_KEY"] = "test-secret-key-1234567890"
os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{_TEST_DB_PATH}"
os.environ["ENVIRONMENT"] = "test"
os.environ["API_V1_STR"] = "/api"  # Ensure /api prefix is used in tests
os.environ["STORAGE_DIR"] = os.path.join(tempfile.gettempdir(), "test_trackmystartup_storage")

import pytest
from sqlalchemy.orm import sessionmaker

# Now import app modules - they will use the test DATABASE_URL
from trackmystartup.database import Base, engine as app_engine, get_db
from trackmystartup.lifecycle.errors import RecordNotFoundError
from trackmystartup.lifecycle.gateway import UploadResult
from trackmystartup.lifecycle.records import Principal
from trackmystartup.lifecycle.status_model import EntityType, UserRole
from trackmystartup.main import app

TEST_ENGINE = app_engine

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=TEST_ENGINE, future=True)


def override_get_db():
    """Test database session that uses the test engine."""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(scope="function", autouse=True)
def setup_test_database():
    """
    Create all tables before each test and drop them after.
    Also restores dependency overrides to keep tests isolated.
    """
    original_overrides = dict(app.dependency_overrides)

    Base.metadata.drop_all(bind=TEST_ENGINE)
    Base.metadata.create_all(bind=TEST_ENGINE)

    yield

    app.dependency_overrides.clear()
    app.dependency_overrides.update(original_overrides)

    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeGateway:
    """In-memory mutation gateway recording every call.

    `error` makes the next calls raise; `conflict` makes guarded mutations
    report that nothing changed; `gate` holds calls until it is set.
    """

    def __init__(self) -> None:
        self.rows: dict[tuple[EntityType, str], dict[str, Any]] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.error: Optional[Exception] = None
        self.conflict = False
        self.gate: Optional[asyncio.Event] = None
        self.upload_ok = True
        self.insert_returns_row = True
        self.procedure_results: dict[str, Any] = {}

    def seed(self, entity: EntityType, row: Mapping[str, Any]) -> dict[str, Any]:
        self.rows[(entity, str(row["id"]))] = dict(row)
        return self.rows[(entity, str(row["id"]))]

    def mutation_calls(self) -> list[tuple[str, tuple]]:
        return [c for c in self.calls if c[0] not in {"fetch_record", "upload_file", "delete_file"}]

    async def _enter(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error

    async def update_status(self, entity, record_id, new_status, extra=None, *, expected=None):
        await self._enter("update_status", entity, record_id, new_status, dict(extra or {}), dict(expected or {}))
        if self.conflict:
            return None
        row = dict(self.rows.get((entity, record_id), {"id": record_id}))
        row.update(extra or {})
        row["status"] = new_status
        row["updated_at"] = datetime.now(timezone.utc)
        self.rows[(entity, record_id)] = row
        return row

    async def insert_record(self, entity, fields):
        await self._enter("insert_record", entity, dict(fields))
        if not self.insert_returns_row:
            return {}
        row = {"id": f"srv-{len(self.calls)}", **dict(fields)}
        self.rows[(entity, row["id"])] = row
        return row

    async def call_procedure(self, name, args):
        await self._enter("call_procedure", name, dict(args))
        if self.conflict:
            return None
        return self.procedure_results.get(name, {"success": True})

    async def fetch_record(self, entity, record_id):
        await self._enter("fetch_record", entity, record_id)
        try:
            return dict(self.rows[(entity, record_id)])
        except KeyError:
            raise RecordNotFoundError(entity=entity.value, record_id=record_id) from None

    async def delete_record(self, entity, record_id):
        await self._enter("delete_record", entity, record_id)
        self.rows.pop((entity, record_id), None)

    async def upload_file(self, bucket, path, blob):
        await self._enter("upload_file", bucket, path, len(blob))
        if not self.upload_ok:
            return UploadResult(success=False)
        return UploadResult(success=True, url=f"https://files.test/{bucket}/{path}")

    async def delete_file(self, bucket, path):
        await self._enter("delete_file", bucket, path)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def facilitator() -> Principal:
    return Principal(user_id="fac-1", role=UserRole.facilitator, facilitator_code="FAC-001")


@pytest.fixture
def startup_user() -> Principal:
    return Principal(user_id="founder-1", role=UserRole.startup, startup_ids=frozenset({"s-1"}))
