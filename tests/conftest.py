from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace
import hashlib
import hmac
import json
import os
import sys
import tempfile

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-0123456789")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{tempfile.gettempdir()}/campusvote-test.sqlite3")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="campusvote-logs-"))
os.environ.setdefault("PAYMENT_SWEEP_INTERVAL_SECONDS", "0")

from app.config import settings
from app.database import Base, get_db
from app.core.exceptions import GatewayUnavailable, ReferenceNotFound
from app.core.security import create_access_token
from app.models.category import Category
from app.models.nominee import Nominee, NomineeStatus
from app.models.payment import PaymentStatus, PaymentTransaction, generate_reference
from app.models.reconciliation import ReconciliationCase  # noqa: F401 (register table)
from app.models.user import User, UserRole
from app.models.vote import VoteRecord
from app.services.paystack_service import InitializedPayment, PaystackClient, VerifiedPayment
from app.services.voting_service import VotingService

WEBHOOK_SECRET = "sk_test_webhook_secret"


class FakeGateway:
    """In-memory stand-in for PaystackClient"""

    def __init__(self):
        self.payments = {}
        self.initialized = []
        self.verify_calls = 0
        self.unavailable = 0  # upcoming verify calls that fail transiently
        self.initialize_unavailable = False
        self._signer = PaystackClient(secret_key=WEBHOOK_SECRET, base_url="https://paystack.test")

    async def initialize(self, amount, currency, payer_email, metadata, reference=None, callback_url=None):
        if self.initialize_unavailable:
            raise GatewayUnavailable()
        self.initialized.append({
            "amount": Decimal(amount),
            "currency": currency,
            "email": payer_email,
            "metadata": dict(metadata),
            "reference": reference,
        })
        self.register(reference, amount, currency, metadata)
        return InitializedPayment(
            reference=reference,
            redirect_url=f"https://checkout.paystack.test/{reference}",
            access_code=f"ac_{reference}"
        )

    async def verify(self, reference):
        self.verify_calls += 1
        if self.unavailable:
            self.unavailable -= 1
            raise GatewayUnavailable()
        payment = self.payments.get(reference)
        if payment is None:
            raise ReferenceNotFound()
        paid = payment["status"] == PaymentStatus.SUCCESS
        return VerifiedPayment(
            reference=reference,
            status=payment["status"],
            amount_paid=payment["paid"] if paid else Decimal("0"),
            currency=payment["currency"],
            metadata=payment["metadata"],
            channel="card",
            paid_at=datetime.now(timezone.utc) if paid else None,
            gateway_status=payment["status"].value,
            raw={"status": payment["status"].value, "gateway_response": "Declined" if not paid else "Approved"}
        )

    def verify_webhook_signature(self, raw_body, signature):
        return self._signer.verify_webhook_signature(raw_body, signature)

    # ===== test controls =====

    def register(self, reference, amount, currency="NGN", metadata=None):
        self.payments[reference] = {
            "status": PaymentStatus.PENDING,
            "amount": Decimal(amount),
            "paid": Decimal(amount),
            "currency": currency,
            "metadata": dict(metadata or {}),
        }

    def pay(self, reference, amount=None):
        payment = self.payments[reference]
        payment["status"] = PaymentStatus.SUCCESS
        if amount is not None:
            payment["paid"] = Decimal(amount)

    def decline(self, reference):
        self.payments[reference]["status"] = PaymentStatus.FAILED


def sign(body: bytes) -> str:
    return hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha512).hexdigest()


def webhook_body(event: str, reference: str) -> bytes:
    return json.dumps({"event": event, "data": {"reference": reference, "status": "success"}}).encode()


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(settings, "verify_backoff_min_seconds", 0)
    monkeypatch.setattr(settings, "verify_backoff_max_seconds", 0)
    monkeypatch.setattr(settings, "verify_max_attempts", 3)


@pytest.fixture()
async def engine(tmp_path: Path):
    db_file = tmp_path / "test.sqlite3"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_file}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
async def seed(db_session):
    """Users, an open category with two approved nominees and one pending, a closed category"""
    db_session.add_all([
        User(id="user-voter", email="voter@unilag.edu.ng", username="voter", role=UserRole.VOTER),
        User(id="user-voter2", email="voter2@unilag.edu.ng", username="voter2", role=UserRole.VOTER),
        User(id="user-student", email="ada@unilag.edu.ng", username="ada", role=UserRole.STUDENT),
        User(id="user-admin", email="admin@unilag.edu.ng", username="admin", role=UserRole.ADMIN),
        User(id="user-inactive", email="gone@unilag.edu.ng", username="gone", is_active=False),
    ])
    db_session.add_all([
        Category(
            id="cat-open", name="Most Influential", vote_price=Decimal("100.00"),
            voting_active=True, display_order=1
        ),
        Category(
            id="cat-closed", name="Best Dressed", vote_price=Decimal("100.00"),
            voting_active=False, display_order=2
        ),
    ])
    await db_session.flush()
    db_session.add_all([
        Nominee(
            id="nom-a", category_id="cat-open", student_id="user-student", display_name="Ada",
            status=NomineeStatus.APPROVED, display_order=1
        ),
        Nominee(
            id="nom-b", category_id="cat-open", display_name="Bola",
            status=NomineeStatus.APPROVED, display_order=2
        ),
        Nominee(
            id="nom-pending", category_id="cat-open", display_name="Chidi",
            status=NomineeStatus.PENDING, display_order=3
        ),
        Nominee(
            id="nom-closed", category_id="cat-closed", display_name="Dayo",
            status=NomineeStatus.APPROVED
        ),
    ])
    await db_session.commit()
    return SimpleNamespace(
        voter="user-voter",
        voter2="user-voter2",
        student="user-student",
        admin="user-admin",
        inactive="user-inactive",
        open_category="cat-open",
        closed_category="cat-closed",
        nominee_a="nom-a",
        nominee_b="nom-b",
        pending_nominee="nom-pending",
        closed_nominee="nom-closed",
    )


async def make_transaction(
    db,
    user_id,
    category_id,
    nominee_id,
    status=PaymentStatus.INITIALIZED,
    amount=Decimal("100.00"),
    expires_at=None
) -> PaymentTransaction:
    transaction = PaymentTransaction(
        reference=generate_reference(),
        user_id=user_id,
        category_id=category_id,
        nominee_id=nominee_id,
        amount=amount,
        currency="NGN",
        amount_paid=amount if status == PaymentStatus.SUCCESS else None,
        status=status,
        expires_at=expires_at or datetime.now(timezone.utc) + timedelta(minutes=30)
    )
    db.add(transaction)
    await db.commit()
    await db.refresh(transaction)
    return transaction


async def add_paid_vote(db, user_id, category_id, nominee_id, amount=Decimal("100.00")) -> VoteRecord:
    transaction = await make_transaction(
        db, user_id, category_id, nominee_id, status=PaymentStatus.SUCCESS, amount=amount
    )
    vote = VoteRecord(
        user_id=user_id,
        category_id=category_id,
        nominee_id=nominee_id,
        transaction_id=transaction.id,
        amount=amount
    )
    db.add(vote)
    await db.commit()
    await db.refresh(vote)
    return vote


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def voting(gateway):
    return VotingService(gateway=gateway)


@pytest.fixture()
async def client(session_factory, voting, seed):
    from main import app
    from app.api.deps import get_voting_service

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_voting_service] = lambda: voting

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
