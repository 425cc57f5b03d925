"""
Pytest fixtures for messaging engine tests.

Each test gets its own SQLite file database built from the engine models.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from messaging_engine.auth import AuthContext
from messaging_engine.ledger.store import LedgerStore
from messaging_engine.persistence.models import MessagingBase, Platform
from messaging_engine.persistence.repo import MessagingRepository
from messaging_engine.providers.stub import StubProvider
from messaging_engine.realtime.events import RealtimeEvent
from messaging_engine.realtime.publisher import EventPublisher
from messaging_engine.service.enforcement import CreditEnforcementService
from relaycore.timeutil import utcnow


class RecordingPublisher(EventPublisher):
    """Keeps every published event."""

    def __init__(self):
        self.events: list[RealtimeEvent] = []

    async def _deliver(self, event: RealtimeEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [event.type.value for event in self.events]


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'relay.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    MessagingBase.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def admin_id():
    return uuid4()


@pytest.fixture
def make_tenant(db, admin_id):
    """Create an ACTIVE tenant funded through the ledger."""

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
def ctx(tenant):
    return AuthContext(tenant_id=tenant.id, user_id=uuid4())


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
    """WhatsApp conversation whose contact wrote an hour ago (window open)."""
    conversation, _ = MessagingRepository(db).get_or_create_conversation(
        tenant_id=tenant.id,
        platform=Platform.WHATSAPP,
        contact_id="+15559990000",
        contact_name="Priya",
    )
    conversation.last_inbound_at = utcnow() - timedelta(hours=1)
    db.commit()
    return conversation


@pytest.fixture
def stub_provider():
    return StubProvider(platform=Platform.WHATSAPP)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def make_service(db, publisher, stub_provider, session_factory):
    def _make(**overrides):
        options = {
            "publisher": publisher,
            "provider_factory": lambda binding: stub_provider,
            "dispatch_timeout": 1.0,
            "timeout_policy": "refund",
            "session_factory": session_factory,
            "encryption_key": "",
        }
        options.update(overrides)
        return CreditEnforcementService(db, **options)

    return _make


@pytest.fixture
def service(make_service):
    return make_service()
