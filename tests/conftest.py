# FILE: tests/conftest.py
"""
Pytest configuration for the certificate service test suite.

Configures:
- pytest-asyncio for async test support
- a throw-away DATA_DIR / DATABASE_URL before the app modules are imported
- in-memory SQLite sessions and an in-process ledger per test
"""
import os
import sys
import tempfile
import time
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

_DATA_DIR = tempfile.mkdtemp(prefix="certificates-test-")
os.environ.setdefault("DATA_DIR", _DATA_DIR)
os.environ.setdefault("DATABASE_URL", "sqlite:///" + os.path.join(_DATA_DIR, "test.db"))

import pytest
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.core.config import settings
from app.db.base import Base
from app.schemas.certificate import Record
from app.services.batch_jobs import BatchJobProcessor
from app.services.issuance import IssuanceOrchestrator
from app.services.ledger import LedgerGateway
from app.services.ledger_memory import InMemoryLedgerClient
from app.services.verification import VerificationEngine

pytest_plugins = ["pytest_asyncio"]

ISSUER = "0x00000000000000000000000000000000000000a1"


class FakeClock:
    """Wall clock for the in-process ledger; tests move it forward."""

    def __init__(self):
        self.now = time.time()

    def __call__(self) -> float:
        return self.now

    def advance(self, days: int) -> None:
        self.now += days * 86400


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    """Source documents are only read from this folder."""
    path = tmp_path / "uploads"
    path.mkdir()
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(path))
    return path


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def ledger_clock():
    return FakeClock()


@pytest.fixture
def ledger(ledger_clock):
    client = InMemoryLedgerClient(now=ledger_clock)
    client.grant_role(settings.LEDGER_ISSUER_ROLE, ISSUER)
    return client


@pytest.fixture
def gateway(ledger):
    return LedgerGateway(ledger, retry_delay=0, call_timeout=5)


@pytest.fixture
def processor():
    return BatchJobProcessor(retry_delay=0)


@pytest.fixture
def orchestrator(db, gateway, processor):
    return IssuanceOrchestrator(db, gateway, processor=processor)


@pytest.fixture
def verifier(db, gateway, ledger_clock):
    return VerificationEngine(db, gateway, clock=lambda: datetime.fromtimestamp(ledger_clock(), timezone.utc))


@pytest.fixture
def make_record():
    def _make(number: str, **overrides) -> Record:
        data = {
            "document_id": number,
            "holder_name": f"Holder {number}",
            "title": "Blockchain Fundamentals",
            "grant_date": date.today() - timedelta(days=10),
            "expiration_date": date.today() + timedelta(days=365),
        }
        data.update(overrides)
        return Record(**data)
    return _make


@pytest.fixture
def make_pdf(upload_dir):
    """Writes a one-page certificate PDF into the upload folder and returns its path."""
    def _make(name: str) -> str:
        path = upload_dir / f"{name}.pdf"
        c = canvas.Canvas(str(path), pagesize=A4)
        c.setFont("Helvetica", 24)
        c.drawString(72, 720, f"Certificate {name}")
        c.showPage()
        c.save()
        return str(path)
    return _make


@pytest.fixture
def issue_batch(orchestrator, make_record, make_pdf):
    """Issues a batch with one generated PDF per record."""
    async def _issue(numbers, *, infinite=False):
        expiration_date = None if infinite else date.today() + timedelta(days=365)
        records = [make_record(n, expiration_date=expiration_date) for n in numbers]
        artifacts = {n: make_pdf(n) for n in numbers}
        return await orchestrator.issue_batch(ISSUER, records, artifacts, expiration_date=expiration_date)
    return _issue
