"""
Fixtures for API tests.

The app runs against a temporary SQLite database, a stub provider and an
in-memory stream; startup hooks (Redis, realtime bridge) are not run.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from messaging_engine.auth import AuthContext, UserRole
from messaging_engine.ledger.store import LedgerStore
from messaging_engine.persistence.models import MessagingBase, Platform
from messaging_engine.persistence.repo import MessagingRepository
from messaging_engine.providers.stub import StubProvider
from messaging_engine.service.enforcement import CreditEnforcementService
from messaging_engine.streams.producer import StreamProducer
from relay_api.deps import get_enforcement, get_publisher, get_stream_producer
from relay_api.main import app
from relaycore.db import get_db
from relaycore.security import create_access_token
from relaycore.settings import get_settings
from relaycore.timeutil import utcnow


class StreamRecorder:
    """Collects XADD calls."""

    def __init__(self, error: Exception | None = None):
        self.added: list[tuple[str, dict]] = []
        self.error = error

    def xadd(self, stream, data, maxlen=None, approximate=True):
        if self.error:
            raise self.error
        self.added.append((stream, data))
        return f"{len(self.added)}-0"


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    monkeypatch.delenv("META_APP_SECRET", raising=False)
    monkeypatch.delenv("PAYMENT_WEBHOOK_SECRET", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'api.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    MessagingBase.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def stub_provider():
    return StubProvider(platform=Platform.WHATSAPP)


@pytest.fixture
def stream():
    return StreamRecorder()


@pytest.fixture
def client(session_factory, stub_provider, stream):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def override_enforcement(db: Session = Depends(get_db), publisher=Depends(get_publisher)):
        return CreditEnforcementService(
            db,
            publisher=publisher,
            provider_factory=lambda binding: stub_provider,
            encryption_key="",
            dispatch_timeout=1.0,
            timeout_policy="refund",
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_enforcement] = override_enforcement
    app.dependency_overrides[get_stream_producer] = lambda: StreamProducer(stream)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_id():
    return uuid4()


@pytest.fixture
def make_tenant(db, admin_id):
    def _make(name: str = "Acme", balance: str = "10.00"):
        tenant = MessagingRepository(db).create_tenant(name)
        db.flush()
        if Decimal(balance):
            LedgerStore(db).adjust_balance(tenant.id, Decimal(balance), actor_id=admin_id, reason="Opening credit")
        db.commit()
        return tenant

    return _make


@pytest.fixture
def tenant(make_tenant):
    return make_tenant()


@pytest.fixture
def binding(db, tenant):
    binding = MessagingRepository(db).create_binding(
        tenant_id=tenant.id,
        platform=Platform.WHATSAPP,
        external_id="PHONE-1",
        display_identifier="+15550001111",
        provider="stub",
    )
    db.commit()
    return binding


@pytest.fixture
def conversation(db, tenant, binding):
    conversation, _ = MessagingRepository(db).get_or_create_conversation(
        tenant.id, Platform.WHATSAPP, "+15559990000", "Priya"
    )
    conversation.last_inbound_at = utcnow() - timedelta(hours=1)
    db.commit()
    return conversation


def bearer(ctx: AuthContext) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(ctx.to_claims())}"}


@pytest.fixture
def user_headers(tenant):
    return bearer(AuthContext(tenant_id=tenant.id, user_id=uuid4()))


@pytest.fixture
def admin_headers(admin_id):
    def _headers(role: UserRole = UserRole.SUPER_ADMIN):
        return bearer(AuthContext(tenant_id=uuid4(), user_id=admin_id, role=role))

    return _headers


@pytest.fixture
def headers_for():
    return bearer
