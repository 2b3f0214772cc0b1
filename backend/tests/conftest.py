import os
from datetime import date, timedelta
from itertools import count
import warnings

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

# Set environment variables BEFORE importing app modules
os.environ["ENVIRONMENT"] = "local"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["POSTGRES_DSN"] = "sqlite+aiosqlite:///./wishfund-test.db"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-32-chars-minimum!!"
os.environ["OTP_FIXED_CODE"] = "222222"
os.environ["SEED_DEFAULT_ADMIN"] = "false"
os.environ["PAYMENT_SECRET_KEY"] = ""
os.environ["SMTP_HOST"] = ""

warnings.filterwarnings("ignore", category=DeprecationWarning)

from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from wishfund.core.config import settings
from wishfund.db.session import Base, get_db
from wishfund.main import app
from wishfund.models.models import (
    Category,
    CuratedItem,
    GenderEnum,
    ItemTypeEnum,
    ReferralCode,
    RoleEnum,
    User,
    Wallet,
)

OTP = "222222"
PASSWORD = "SecurePass123"
ADMIN_CODE = "JOY-ADMIN"

_sequence = count(1)


def pytest_configure(config):
    warnings.filterwarnings("ignore", category=DeprecationWarning)


@pytest.fixture(autouse=True)
def sync_engine(tmp_path):
    """Fresh SQLite file per test; the app's get_db is pointed at it."""
    db_path = tmp_path / "wishfund-test.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)

    async_engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    async_session = async_sessionmaker(bind=async_engine, expire_on_commit=False, autoflush=False)

    async def override_get_db():
        async with async_session() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield engine
    app.dependency_overrides.clear()
    async_engine.sync_engine.dispose()
    engine.dispose()


@pytest.fixture
def db_session(sync_engine):
    with Session(sync_engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture
async def async_client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def admin_code(db_session) -> str:
    """The bootstrap admin with a reusable referral code, as seeded at startup."""
    admin = User(
        email=settings.default_admin_email,
        first_name="WishFund",
        last_name="Admin",
        username="admin",
        role=RoleEnum.ADMIN.value,
        is_registration_complete=True,
    )
    db_session.add(admin)
    db_session.flush()
    db_session.add(Wallet(user_id=admin.id, available_balance=0, pending_balance=0, total_received=0, total_withdrawn=0))
    db_session.add(ReferralCode(user_id=admin.id, referral_code=ADMIN_CODE, is_used=False))
    db_session.commit()
    return ADMIN_CODE


def sign_in_with_otp(client: TestClient, email: str) -> dict:
    res = client.post("/auth/sign-up", json={"email": email})
    assert res.status_code in (200, 201), res.text
    res = client.post("/auth/verify-otp", json={"email": email, "otp": OTP})
    assert res.status_code == 200, res.text
    return res.json()["user"]


@pytest.fixture
def make_user(admin_code):
    """Factory returning (client, profile) for a fully registered user."""

    def _make(
        email: str | None = None,
        gender: GenderEnum = GenderEnum.FEMALE,
        referral_code: str | None = None,
    ) -> tuple[TestClient, dict]:
        n = next(_sequence)
        email = email or f"user{n}@example.com"
        client = TestClient(app)
        sign_in_with_otp(client, email)
        res = client.patch(
            "/users/profile",
            json={
                "first_name": "Ada",
                "last_name": f"Tester{n}",
                "username": f"ada_{n}",
                "phone": f"+234800000{n:04d}",
                "dob": "1995-05-17",
                "gender": gender.value,
                "password": PASSWORD,
                "referral_code": referral_code or admin_code,
            },
        )
        assert res.status_code == 200, res.text
        return client, res.json()

    return _make


@pytest.fixture
def make_admin(make_user, db_session):
    def _make() -> tuple[TestClient, dict]:
        client, profile = make_user()
        db_session.execute(update(User).where(User.id == profile["id"]).values(role=RoleEnum.ADMIN.value))
        db_session.commit()
        return client, profile

    return _make


@pytest.fixture
def catalog(db_session) -> dict:
    """A category with three public global items."""
    category = Category(name="gadgets", is_active=True)
    db_session.add(category)
    db_session.flush()
    items = [
        CuratedItem(
            name=name,
            image_url=f"https://img.example.com/{n}.png",
            price=price,
            popularity=popularity,
            is_active=True,
            item_type=ItemTypeEnum.GLOBAL.value,
            gender=gender,
            is_public=True,
            category_id=category.id,
        )
        for n, (name, price, popularity, gender) in enumerate(
            [
                ("Headphones", 30000, 5, GenderEnum.PREFER_NOT_TO_SAY.value),
                ("Smart Watch", 50000, 9, GenderEnum.FEMALE.value),
                ("Shaving Kit", 20000, 1, GenderEnum.MALE.value),
            ]
        )
    ]
    db_session.add_all(items)
    db_session.commit()
    return {"category_id": category.id, "item_ids": [item.id for item in items]}


@pytest.fixture
def wishlist_payload(catalog):
    def _payload(**overrides) -> dict:
        body = {
            "name": "My Birthday",
            "celebration_event": "Birthday Party",
            "celebration_date": (date.today() + timedelta(days=30)).isoformat(),
            "items": [{"curated_item_id": item_id} for item_id in catalog["item_ids"][:2]],
        }
        body.update(overrides)
        return body

    return _payload


def contribute(client: TestClient, item_id: int, amount: float, settle: bool = True, **extra) -> dict:
    """Start a contribution to one item and, in the sandbox, confirm it via the callback."""
    body = {
        "wishlist_item_id": item_id,
        "contributor_name": "Kind Guest",
        "contributor_email": "guest@example.com",
        "amount": amount,
    }
    body.update(extra)
    res = client.post("/contributions/item", json=body)
    assert res.status_code == 201, res.text
    started = res.json()
    if settle:
        res = client.get("/payments/callback", params={"reference": started["payment_reference"]})
        assert res.status_code == 200, res.text
        assert res.json()["status"] == "completed"
    return started
