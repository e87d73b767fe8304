import os
import tempfile
from datetime import datetime, timezone
from itertools import count
from pathlib import Path

_DB_DIR = Path(tempfile.mkdtemp(prefix="leadflow-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{_DB_DIR / 'leadflow.db'}"
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-123")
os.environ.setdefault("UPS_WEBHOOK_CREDENTIAL", "test-carrier-credential")

import pytest
from fastapi.testclient import TestClient

from leadflow.core.security import create_access_token
from leadflow.core.settings import settings
from leadflow.db.session import SessionLocal, engine
from leadflow.main import app
from leadflow.models import Base, Lead, LeadStatus, LeadTestType, Vendor
from leadflow.schemas.actor import Role
from leadflow.services.side_effects import LeadSnapshot, get_notification_service


class RecordingNotifier:
    def __init__(self):
        self.sent: list[tuple[int, str]] = []

    def notify(self, lead: LeadSnapshot, event_kind: str) -> None:
        self.sent.append((lead.id, event_kind))


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def vendor(session) -> Vendor:
    vendor = Vendor(name="Acme Labs", code="ACME", is_active=True)
    session.add(vendor)
    session.commit()
    return vendor


@pytest.fixture
def make_lead(session, vendor):
    phones = count(2025550100)

    def _make(**overrides) -> Lead:
        data = {
            "first_name": "Pat",
            "last_name": "Doe",
            "phone": str(next(phones)),
            "test_type": LeadTestType.immune,
            "status": LeadStatus.submitted,
            "vendor_id": vendor.id,
            "vendor_code": vendor.code,
            "created_at": datetime.now(timezone.utc),
        }
        data.update(overrides)
        lead = Lead(**data)
        session.add(lead)
        session.commit()
        return lead

    return _make


@pytest.fixture
def notifier():
    recorder = RecordingNotifier()
    app.dependency_overrides[get_notification_service] = lambda: recorder
    return recorder


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def auth_headers():
    def _headers(role: Role = Role.admin, subject: str = "user-1", **extra) -> dict[str, str]:
        token = create_access_token(
            subject=subject,
            secret=settings.secret_key or settings.jwt_secret or "change-me",
            alg=settings.jwt_alg,
            expires_minutes=5,
            extra={"role": role.value, **extra},
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers
