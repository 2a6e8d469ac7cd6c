"""Pytest fixtures — file-backed SQLite database per test so threads can share it."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from tramites.config import Settings
from tramites.database import Base, get_db
from tramites.dependencies import get_settings
from tramites.main import app
from tramites.models import Agency, ConsecutivoReservation, DocumentType, ReservationStatus
from tramites.services.consecutivo_allocator import ConsecutivoAllocator
from tramites.services.storage import LocalArtifactStorage
from tramites.services.tramite_service import TramiteStateMachine

YEAR = 2025


@pytest.fixture(scope="function")
def db_engine(tmp_path):
    """Create a fresh SQLite engine for each test."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    # WAL lets readers run while an allocation holds the write lock
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory):
    """Yield a database session, closed after the test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def test_settings(tmp_path):
    return Settings(
        DATABASE_URL="sqlite://",
        STORAGE_ROOT=str(tmp_path / "storage"),
        CONSECUTIVO_MAX_ATTEMPTS=6,
        CONSECUTIVO_RETRY_JITTER_MS=0,
    )


@pytest.fixture(scope="function")
def storage(test_settings):
    return LocalArtifactStorage(test_settings.STORAGE_ROOT)


@pytest.fixture(scope="function")
def allocator(session_factory, test_settings):
    return ConsecutivoAllocator(session_factory, test_settings)


@pytest.fixture(scope="function")
def machine(db, allocator, storage):
    return TramiteStateMachine(db, allocator, storage)


@pytest.fixture(scope="function")
def client(session_factory, test_settings):
    """FastAPI TestClient with the database and settings dependencies overridden."""

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
class FailingWriteStorage(LocalArtifactStorage):
    """Storage whose writes always fail; deletes are recorded."""

    def __init__(self, root):
        super().__init__(root)
        self.deleted = []

    def write(self, relative_path, data):
        raise OSError("disk full")

    def delete_if_exists(self, relative_path):
        self.deleted.append(relative_path)


def make_agency(db, code: str = "AUTOTROPICAL", name: str = "Autotropical - Toyota") -> Agency:
    agency = Agency(code=code, name=name)
    db.add(agency)
    db.commit()
    db.refresh(agency)
    return agency


def make_document_types(db) -> list[DocumentType]:
    """Seed the standard document catalog."""
    doc_types = [
        DocumentType(key="FACTURA", name="Factura", required=True),
        DocumentType(key="EVIDENCIA_PLACA", name="Evidencia placa"),
        DocumentType(key="RECIBO_TIMBRE", name="Recibo timbre"),
        DocumentType(key="OTRO", name="Otro", is_active=False),
    ]
    db.add_all(doc_types)
    db.commit()
    return doc_types


def reserved_numbers(db, agency_id: str, year: int = YEAR) -> list[int]:
    """RESERVED consecutivos for (agency, year), read fresh from the database."""
    db.expire_all()
    rows = (
        db.query(ConsecutivoReservation.consecutivo)
        .filter(
            ConsecutivoReservation.agency_id == agency_id,
            ConsecutivoReservation.year == year,
            ConsecutivoReservation.status == ReservationStatus.RESERVED,
        )
        .order_by(ConsecutivoReservation.consecutivo)
        .all()
    )
    return [r.consecutivo for r in rows]


def create_test_agency(client: TestClient, code: str = "AUTOTROPICAL", name: str = "Autotropical") -> dict:
    """Helper — POST /api/agencies and return response JSON."""
    resp = client.post("/api/agencies/", json={"code": code, "name": name})
    assert resp.status_code == 201, resp.text
    return resp.json()
