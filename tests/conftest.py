import asyncio
import os
from datetime import datetime, timezone

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTH_DISABLED", "true")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models
from database import Base
from payments import ChargeResult, RefundResult
from pricing import PriceCalculator
from qr_codec import QRCodec
from signing import TicketSigner
from store import SqlTicketStore
from ticketing import TicketService
from validation import TicketValidator

SECRET = "test-signing-secret"
NOW_MS = 1_760_000_000_000
STORED_BIOMETRIC = "stored-face-hash"


def run(coro):
    return asyncio.run(coro)


class StubBiometric:
    def __init__(self, match=True, error=None):
        self.match = match
        self.error = error
        self.compared = []

    async def capture(self):
        return STORED_BIOMETRIC

    async def compare(self, stored_hash, captured):
        self.compared.append((stored_hash, captured))
        if self.error:
            raise self.error
        return self.match


class StubGateway:
    def __init__(self, charge_ok=True, refund_ok=True):
        self.charge_ok = charge_ok
        self.refund_ok = refund_ok
        self.charges = []
        self.refunds = []

    async def charge(self, amount, method):
        self.charges.append((amount, method))
        if not self.charge_ok:
            return ChargeResult(success=False, failure_reason="Insufficient funds")
        return ChargeResult(success=True, reference=f"pi_test_{len(self.charges)}")

    async def refund(self, amount, reference):
        self.refunds.append((amount, reference))
        return RefundResult(success=self.refund_ok, reference="re_test" if self.refund_ok else None)


@pytest.fixture
def db():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def event(db):
    event = models.Event(
        name="Friday Night Vibes",
        venue_name="Club Rouge",
        starts_at=datetime(2026, 10, 23, 22, 0, tzinfo=timezone.utc),
        base_price=20000,
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


@pytest.fixture
def signer():
    return TicketSigner(SECRET)


@pytest.fixture
def codec():
    return QRCodec()


@pytest.fixture
def biometric():
    return StubBiometric()


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def store(db):
    return SqlTicketStore(db)


@pytest.fixture
def service(signer, codec, store, biometric, gateway):
    return TicketService(
        signer=signer,
        codec=codec,
        pricing=PriceCalculator(),
        store=store,
        biometric=biometric,
        payments=gateway,
        clock=lambda: NOW_MS,
    )


@pytest.fixture
def validator(signer, codec, store, biometric):
    return TicketValidator(signer=signer, codec=codec, store=store, biometric=biometric, clock=lambda: NOW_MS + 60_000)


@pytest.fixture
def ticket(service, event):
    return run(service.purchase(event, buyer_id="user-1", buyer_name="Amina", buyer_email="amina@example.com"))
