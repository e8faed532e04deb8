"""Pytest fixtures for the checkout service tests."""

import hashlib
import hmac
import os
import tempfile
from decimal import Decimal
from pathlib import Path

# The app creates its tables at import; keep that database out of the repo
os.environ.setdefault(
    "DATABASE_URL", f"sqlite:///{Path(tempfile.gettempdir()) / 'storefront-tests.db'}"
)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base, get_db
from models.product import Product
from models.users import User
from schemas.cart import CartLine
from schemas.gateway import GatewayOrder, PaymentLink
from utils.razorpay_client import GatewayError, RazorpayClient, get_gateway
from utils.tokenJWT import create_access_token

import models.cart  # noqa: F401
import models.log  # noqa: F401
import models.order  # noqa: F401

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"


class FakeGateway(RazorpayClient):
    """Gateway double: records requests and answers without the network.

    Signature checks are inherited, so they run against the test secrets.
    """

    def __init__(self):
        super().__init__(
            api_url="https://gateway.invalid",
            key_id="rzp_test_fake",
            key_secret=KEY_SECRET,
            webhook_secret=WEBHOOK_SECRET,
        )
        self.orders = []
        self.links = []
        self.fail = False

    async def create_order(self, request):
        if self.fail:
            raise GatewayError("Gateway returned 503", 503)
        self.orders.append(request)
        return GatewayOrder(
            entity="order",
            id=f"order_test{len(self.orders)}",
            amount=request.amount,
            currency=request.currency,
            status="created",
            receipt=request.receipt,
        )

    async def create_payment_link(self, request):
        if self.fail:
            raise GatewayError("Gateway unreachable")
        self.links.append(request)
        n = len(self.links)
        return PaymentLink(
            id=f"plink_test{n}",
            short_url=f"https://rzp.io/i/test{n}",
            status="created",
            amount=request.amount,
            reference_id=request.reference_id,
        )


def sign_payment(gateway_order_id: str, payment_id: str, secret: str = KEY_SECRET) -> str:
    message = f"{gateway_order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def sign_webhook(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


@pytest.fixture
def engine(tmp_path):
    """A fresh SQLite database file per test."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'checkout.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(session_factory, gateway):
    """Test client wired to the per-test database and the fake gateway."""
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def seller(db):
    user = User(email="seller@example.com", role="seller")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def shopper(db):
    user = User(email="shopper@example.com", role="customer")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def auth_headers(shopper):
    token = create_access_token({"sub": shopper.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_product(db, seller):
    """Factory for approved products owned by the seller fixture."""

    def _make(title="Cotton Kurta", price="250.00", stock=10, **kwargs):
        product = Product(
            title=title,
            selling_price=Decimal(price),
            stock_quantity=stock,
            seller_id=kwargs.pop("seller_id", seller.id),
            status=kwargs.pop("status", "approved"),
            **kwargs,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def delivery_address():
    return {
        "full_name": "Asha Rao",
        "phone": "9876543210",
        "address": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560001",
    }


def cart_line(product, quantity):
    return CartLine(
        product_id=product.id,
        title=product.title,
        unit_price=product.selling_price,
        quantity=quantity,
        max_stock=product.stock_quantity,
    )
