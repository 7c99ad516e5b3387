"""Pytest fixtures for storefront tests."""

import os

# settings are read at import time, so the environment goes first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["VNPAY_TMN_CODE"] = "TESTTMN1"
os.environ["VNPAY_HASH_SECRET"] = "TESTHASHSECRET"
os.environ["VNPAY_RETURN_URL"] = "http://testserver/api/vnpay/vnpay-return"
os.environ["FRONTEND_URL"] = "http://frontend.test"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"

from decimal import Decimal

import jwt
import pytest
from fastapi.testclient import TestClient

import storefront.data.models  # noqa: F401
from storefront.api.deps import get_lock_service
from storefront.data.database import Base, SessionLocal, engine
from storefront.data.models.product import ProductModel
from storefront.domain.schemas import CheckoutCreate, CheckoutItem, ShippingAddress
from storefront.repos.product_repo import ProductRepo
from storefront.services.payment_gateway import GatewayConfig, PaymentGateway


class InMemoryLockService:
    """Same interface as LockService, without Redis."""

    def __init__(self):
        self.locks = {}

    def acquire_merge_lock(self, guest_id, owner, ttl):
        if guest_id in self.locks:
            return False
        self.locks[guest_id] = owner
        return True

    def release_merge_lock(self, guest_id, owner):
        if self.locks.get(guest_id) == owner:
            del self.locks[guest_id]
            return True
        return False


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send_order_notification(self, user_id, order_id):
        self.sent.append((user_id, order_id))


def make_token(user_id: str, role: str = "customer") -> str:
    return jwt.encode({"user": {"id": user_id, "role": role}}, "test-secret", algorithm="HS256")


def auth(user_id: str = "user-1", role: str = "customer") -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


SHIPPING = {
    "address": "12 Lê Lợi",
    "city": "Hồ Chí Minh",
    "postal_code": "700000",
    "country": "Việt Nam",
}


def checkout_payload(items, payment_status="unpaid", total_price="300.00") -> CheckoutCreate:
    return CheckoutCreate(
        checkout_items=[CheckoutItem(**i) for i in items],
        shipping_address=ShippingAddress(**SHIPPING),
        payment_method="COD",
        payment_status=payment_status,
        total_price=Decimal(total_price),
    )


def line(product, quantity, size="M", color="Đen", discount_price=None) -> dict:
    return {
        "product_id": product.id,
        "name": product.name,
        "price": product.price,
        "discount_price": discount_price,
        "size": size,
        "color": color,
        "quantity": quantity,
    }


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def lock_service():
    return InMemoryLockService()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_product(db):
    def _make(**overrides) -> ProductModel:
        data = {
            "name": "Áo thun basic",
            "price": Decimal("100.00"),
            "discount_price": None,
            "count_in_stock": 5,
            "sizes": ["S", "M", "L"],
            "colors": ["Đen", "Trắng"],
        }
        data.update(overrides)
        return ProductRepo(db).create_product(ProductModel(**data))

    return _make


@pytest.fixture
def stock_of(db):
    def _stock(product_id: int) -> int:
        db.expire_all()
        return db.get(ProductModel, product_id).count_in_stock

    return _stock


@pytest.fixture
def gateway_config():
    return GatewayConfig(
        tmn_code="TESTTMN1",
        hash_secret="TESTHASHSECRET",
        return_url="http://testserver/api/vnpay/vnpay-return",
        payment_url="https://sandbox.vnpayment.vn/paymentv2/vpcpay.html",
        api_url="https://sandbox.vnpayment.vn/merchant_webapi/api/transaction",
        frontend_url="http://frontend.test",
        timeout=1.0,
    )


@pytest.fixture
def gateway(gateway_config):
    return PaymentGateway(gateway_config)


@pytest.fixture
def client(lock_service, gateway_config):
    from storefront.main import create_app

    app = create_app(gateway_config)
    app.dependency_overrides[get_lock_service] = lambda: lock_service
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
