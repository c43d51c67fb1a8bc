import os
import tempfile
from decimal import Decimal
from itertools import count
from typing import Any, Dict, List, Optional

# Ensure required environment variables are populated before importing the code under test.
os.environ.setdefault("SECRET_KEY", "unit-test-secret")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{tempfile.gettempdir()}/donation-settlement-tests.db")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "rzp_webhook_secret")
os.environ.setdefault("GATEWAY_BACKOFF_SECONDS", "0")
os.environ.setdefault("EMAIL_PROVIDER", "console")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import settings
from core.database import get_db, get_session_factory
from core.exceptions import GatewayError
from core.security import create_access_token
from core.signature import compute_signature
from main import app
from models import Base, Campaign, CampaignStatus, Donation, DonationStatus, User
from services.payment_gateway import PaymentGateway, get_payment_gateway

KEY_SECRET = os.environ["RAZORPAY_KEY_SECRET"]
WEBHOOK_SECRET = os.environ["RAZORPAY_WEBHOOK_SECRET"]


def payment_signature(order_id: str, payment_id: str, secret: str = KEY_SECRET) -> str:
    return compute_signature(secret, f"{order_id}|{payment_id}")


def webhook_signature(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_signature(secret, body)


class FakeGateway(PaymentGateway):
    """In-memory provider with real HMAC signatures.

    ``failures`` maps an operation name (``create_order``, ``fetch_payment``,
    ``fetch_order``) to exceptions raised on successive calls before the
    operation starts succeeding.
    """

    def __init__(self, key_secret: str = KEY_SECRET, webhook_secret: str = WEBHOOK_SECRET):
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.payments: Dict[str, Dict[str, Any]] = {}
        self.failures: Dict[str, List[BaseException]] = {}
        self.calls: Dict[str, int] = {}
        self._ids = count(1)

    def fail(self, operation: str, *errors: BaseException) -> None:
        self.failures.setdefault(operation, []).extend(errors)

    def _track(self, operation: str) -> None:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)

    def add_order(self, amount: int, order_id: Optional[str] = None) -> str:
        order_id = order_id or f"order_{next(self._ids):06d}"
        self.orders[order_id] = {"id": order_id, "amount": amount, "currency": "INR", "status": "created"}
        return order_id

    def capture(self, order_id: str, amount: Optional[int] = None, payment_id: Optional[str] = None) -> str:
        payment_id = payment_id or f"pay_{next(self._ids):06d}"
        self.payments[payment_id] = {
            "id": payment_id,
            "order_id": order_id,
            "amount": self.orders[order_id]["amount"] if amount is None else amount,
            "currency": "INR",
            "status": "captured",
        }
        return payment_id

    async def create_order(self, amount: int, receipt: str) -> Dict[str, Any]:
        self._track("create_order")
        order_id = self.add_order(amount)
        return {**self.orders[order_id], "receipt": receipt}

    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        self._track("fetch_payment")
        if payment_id not in self.payments:
            raise GatewayError("The id provided does not exist", status_code=400, code="BAD_REQUEST_ERROR")
        return self.payments[payment_id]

    async def fetch_order(self, order_id: str) -> Dict[str, Any]:
        self._track("fetch_order")
        if order_id not in self.orders:
            raise GatewayError("The id provided does not exist", status_code=400, code="BAD_REQUEST_ERROR")
        return self.orders[order_id]

    async def verify_payment_signature(self, order_id: str, payment_id: str, payment_signature: str) -> bool:
        self._track("verify_payment_signature")
        return compute_signature(self.key_secret, f"{order_id}|{payment_id}") == payment_signature

    def verify_webhook_signature(self, body: bytes, webhook_signature: Optional[str]) -> bool:
        return bool(webhook_signature) and compute_signature(self.webhook_secret, body) == webhook_signature


# ---------- storage ----------

@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(autouse=True)
def certificate_storage(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    monkeypatch.setattr(settings, "FILE_STORAGE_PATH", str(path))
    return path


@pytest.fixture
def gateway():
    return FakeGateway()


# ---------- records ----------

@pytest.fixture
async def user(session_factory):
    async with session_factory() as db:
        user = User(email="asha.donor@gmail.com", full_name="Asha Rao", phone="9876543210")
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user


@pytest.fixture
async def other_user(session_factory):
    async with session_factory() as db:
        user = User(email="vikram.donor@gmail.com", full_name="Vikram Shah")
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user


@pytest.fixture
async def campaign(session_factory, user):
    async with session_factory() as db:
        campaign = Campaign(
            organizer_id=user.id,
            title="Education for Every Child",
            description="School kits",
            organizer="Engala Trust",
            goal_amount=Decimal("100000.00"),
            status=CampaignStatus.APPROVED,
        )
        db.add(campaign)
        await db.commit()
        await db.refresh(campaign)
        return campaign


@pytest.fixture
def make_donation(session_factory, gateway, campaign, user):
    """Pending donation with a matching order on the fake provider."""

    async def _make(amount: str = "500.00", campaign_id: Optional[int] = None, **fields) -> Donation:
        amount = Decimal(amount)
        order_id = gateway.add_order(int(amount * 100))
        values = {
            "campaign_id": campaign_id or campaign.id,
            "donor_id": user.id,
            "amount": amount,
            "status": DonationStatus.PENDING,
            "provider_order_id": order_id,
            "donor_name": user.full_name,
            "donor_email": user.email,
        }
        values.update(fields)
        async with session_factory() as db:
            donation = Donation(**values)
            db.add(donation)
            await db.commit()
            await db.refresh(donation)
            return donation

    return _make


async def load(session_factory, model, ident):
    async with session_factory() as db:
        return await db.get(model, ident)


# ---------- HTTP ----------

@pytest.fixture
async def client(session_factory, gateway):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.uuid)}"}
