"""Shared fixtures: in-memory database, fake payment gateway, seed helpers, API client."""

from __future__ import annotations

import json
import logging

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from servicehub.config import PaymentsConfig
from servicehub.db import crud
from servicehub.db.capabilities import SchemaCapabilities, set_capabilities
from servicehub.errors import PaymentGatewayUnconfigured, PaymentNotFound
from servicehub.models import Base
from servicehub.services import email
from servicehub.services.lead_metadata import LeadEnvelope, PendingProposal, write_envelope
from servicehub.services.payments import PaymentIntent, StripeGateway

# Tables as they existed before the payout and review-link migrations
LEGACY_PROPOSALS_DDL = """
CREATE TABLE proposals (
    id VARCHAR(26) PRIMARY KEY,
    created_at DATETIME,
    updated_at DATETIME,
    service_request_id VARCHAR(26) REFERENCES service_requests(id),
    provider_id VARCHAR(26) REFERENCES provider_profiles(id),
    details TEXT,
    price FLOAT,
    status VARCHAR(20),
    payment_intent_id VARCHAR(255),
    payment_status VARCHAR(20),
    paid_at DATETIME,
    stale_intent_count INTEGER,
    rejection_reason VARCHAR(30),
    rejection_reason_other TEXT
)
"""

LEGACY_REVIEWS_DDL = """
CREATE TABLE reviews (
    id VARCHAR(26) PRIMARY KEY,
    created_at DATETIME,
    updated_at DATETIME,
    business_id VARCHAR(26) REFERENCES businesses(id),
    user_id VARCHAR(26) REFERENCES users(id),
    rating INTEGER,
    title VARCHAR(255),
    comment TEXT,
    metadata JSON
)
"""


class FakeGateway:
    """In-memory stand-in for ``StripeGateway``."""

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.intents: dict[str, PaymentIntent] = {}
        self.cancelled: list[str] = []
        self._seq = 0

    def add(self, amount: int, status: str = "succeeded", metadata: dict | None = None) -> PaymentIntent:
        self._seq += 1
        intent_id = f"pi_test_{self._seq}"
        intent = PaymentIntent(
            id=intent_id, amount=amount, status=status,
            client_secret=f"{intent_id}_secret_x",
            metadata={k: str(v) for k, v in (metadata or {}).items() if v is not None},
        )
        self.intents[intent_id] = intent
        return intent

    def succeed(self, payment_intent_id: str) -> PaymentIntent:
        intent = self.intents[payment_intent_id]
        intent.status = "succeeded"
        return intent

    async def create_intent(self, amount_cents: int, metadata: dict, description: str = "") -> PaymentIntent:
        if not self.configured:
            raise PaymentGatewayUnconfigured()
        return self.add(amount_cents, status="requires_payment_method", metadata=metadata)

    async def retrieve_intent(self, payment_intent_id: str) -> PaymentIntent:
        if not self.configured:
            raise PaymentGatewayUnconfigured()
        if payment_intent_id not in self.intents:
            raise PaymentNotFound(payment_intent_id)
        return self.intents[payment_intent_id]

    async def cancel_intent(self, payment_intent_id: str) -> PaymentIntent:
        intent = await self.retrieve_intent(payment_intent_id)
        intent.status = "canceled"
        self.cancelled.append(payment_intent_id)
        return intent

    def construct_event(self, payload: bytes, signature: str | None):
        return StripeGateway(PaymentsConfig()).construct_event(payload, signature)


def webhook_payload(event_type: str, intent: PaymentIntent) -> bytes:
    return json.dumps({
        "type": event_type,
        "data": {"object": {
            "object": "payment_intent",
            "id": intent.id,
            "amount": intent.amount,
            "status": intent.status,
            "metadata": intent.metadata,
        }},
    }).encode()


class Factory:
    """Seed helpers bound to one session."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    async def user(self, role: str = "customer", **kwargs):
        n = self._next()
        kwargs.setdefault("email", f"{role}{n}@example.com")
        kwargs.setdefault("display_name", f"{role.title()} {n}")
        kwargs.setdefault("phone", f"555-010{n % 10}")
        return await crud.create_user(self.db, role=role, **kwargs)

    async def provider(self, **kwargs):
        user = await self.user("provider", **kwargs)
        profile = await crud.get_or_create_provider_profile(self.db, user.id)
        return user, profile

    async def category(self, name: str | None = None):
        return await crud.create_category(self.db, name or f"Category {self._next()}")

    async def business(self, owner, category, zip_code: str = "94107", **kwargs):
        name = kwargs.pop("name", None) or f"Business {self._next()}"
        return await crud.create_business(
            self.db, name,
            owner_id=owner.id if owner else None,
            category_id=category.id if category else None,
            zip_code=zip_code,
            **kwargs,
        )

    async def service_request(self, customer, category, zip_code: str = "94107", **kwargs):
        kwargs.setdefault("project_title", "Fix the kitchen sink")
        kwargs.setdefault("project_description", "The trap under the sink leaks")
        return await crud.create_service_request(
            self.db, customer_id=customer.id, category_id=category.id, zip_code=zip_code, **kwargs,
        )

    async def lead(self, sr, provider_user, status: str = "submitted", pending: dict | None = None, **kwargs):
        envelope = LeadEnvelope(service_request_id=sr.id, project_title=sr.project_title)
        if pending is not None:
            envelope.pending_proposal = PendingProposal(**pending)
        envelope_extra = kwargs.pop("envelope", {})
        for key, value in envelope_extra.items():
            setattr(envelope, key, value)
        lead = await crud.add_lead(
            self.db,
            customer_id=sr.customer_id,
            provider_id=provider_user.id,
            category_id=sr.category_id,
            service_type="Plumbing",
            description=sr.project_description,
            location_postal_code=sr.zip_code,
            status=status,
            **kwargs,
        )
        write_envelope(lead, envelope)
        await self.db.commit()
        return lead

    async def proposal(self, sr, profile, price: float = 150.0, **kwargs):
        kwargs.setdefault("details", "Replace the trap and reseal")
        return await crud.create_proposal(
            self.db, service_request_id=sr.id, provider_id=profile.id, price=price, **kwargs,
        )


# ── Fixtures ─────────────────────────────────────────────

@pytest.fixture(autouse=True)
def default_capabilities():
    set_capabilities(SchemaCapabilities())
    yield
    set_capabilities(SchemaCapabilities())


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    """Record notifications instead of sending them."""
    sent = []

    def fake_dispatch(sender, *args):
        sent.append((sender.__name__, args))

    monkeypatch.setattr(email, "dispatch", fake_dispatch)
    return sent


@pytest.fixture
def events(caplog):
    caplog.set_level(logging.INFO, logger="servicehub.events")

    def names() -> list[str]:
        return [r.event for r in caplog.records if r.name == "servicehub.events"]

    return names


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def legacy_engine():
    """Database created before the payout and review-link migrations."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    legacy = {"proposals", "reviews"}
    async with engine.begin() as conn:
        await conn.run_sync(
            Base.metadata.create_all,
            tables=[t for t in Base.metadata.sorted_tables if t.name not in legacy],
        )
        await conn.exec_driver_sql(LEGACY_PROPOSALS_DDL)
        await conn.exec_driver_sql(LEGACY_REVIEWS_DDL)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Sessions on a file database, each with its own connection, for concurrent callers."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'servicehub.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest_asyncio.fixture
async def api(session_factory, gateway):
    """Build ASGI clients logged in as a given user (or anonymous)."""
    from servicehub.db.engine import get_db
    from servicehub.dependencies import get_gateway
    from servicehub.main import app
    from servicehub.services.auth import SESSION_COOKIE_NAME, create_session

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway

    clients = []

    async def client_for(user=None) -> AsyncClient:
        cookies = {}
        if user is not None:
            async with session_factory() as session:
                cookies[SESSION_COOKIE_NAME] = await create_session(user, session)
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test", cookies=cookies)
        clients.append(client)
        return client

    yield client_for

    for client in clients:
        await client.aclose()
    app.dependency_overrides.clear()
