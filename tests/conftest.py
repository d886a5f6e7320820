import os

os.environ["DATABASE_URL"] = "sqlite:///./test_app.db"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from reconciler import services
from reconciler.database import Base
from reconciler.models import Order, PaymentIntent
from reconciler.notifications import NotificationDispatcher
from reconciler.reconcile import Reconciler
from reconciler.status import CanonicalStatus, ProviderKind
from reconciler.store import IntentStore, OrderStore, utcnow
from reconciler.transitions import TransitionEngine

# Setup test database
SQLALCHEMY_DATABASE_URL = "sqlite:///./test_temp.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(autouse=True)
def provider_env(monkeypatch):
    monkeypatch.setenv("PUSHINPAY_API_KEY", "pp_test_key")
    monkeypatch.setenv("MERCADOPAGO_BRASIL_ACCESS_TOKEN", "APP_USR-br-test")
    monkeypatch.setenv("MERCADOPAGO_ACCESS_TOKEN", "APP_USR-uy-test")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://shop.example.com")
    monkeypatch.setenv("APP_URL", "https://store.example.com")
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    for name in ("MERCADOPAGO_WEBHOOK_SECRET", "RESEND_API_KEY", "RECONCILER_SERVER_POLLING"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def dispatcher(mocker):
    return mocker.Mock(spec=NotificationDispatcher)


@pytest.fixture
def reconciler(dispatcher):
    return Reconciler(TransitionEngine(TestingSessionLocal), OrderStore(TestingSessionLocal), dispatcher)


@pytest.fixture
def intents():
    return IntentStore(TestingSessionLocal)


@pytest.fixture
def client(monkeypatch, dispatcher):
    # Point the service wiring at the test database
    monkeypatch.setattr(services, "SessionLocal", TestingSessionLocal)
    monkeypatch.setattr(services, "build_dispatcher", lambda: dispatcher)
    from reconciler.main import app as fastapi_app
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


def add_order(order_id="O1", **fields):
    db = TestingSessionLocal()
    values = dict(
        id=order_id,
        order_number=f"N-{order_id}",
        total=1000,
        customer_name="Ana Souza",
        customer_email="ana@example.com",
        customer_phone="+5511999990000",
        delivery_address="Rua A, 10",
        payment_status=CanonicalStatus.PENDING.value,
    )
    values.update(fields)
    db.add(Order(**values))
    db.commit()
    db.close()


def add_intent(reference="pix_1", order_id="O1", kind=ProviderKind.QR_TRANSFER_DOMESTIC,
               status=CanonicalStatus.PENDING, amount=1000):
    db = TestingSessionLocal()
    db.add(PaymentIntent(
        order_id=order_id,
        provider_kind=ProviderKind(kind).value,
        provider_reference=reference,
        amount_minor_units=amount,
        canonical_status=CanonicalStatus(status).value,
        created_at=utcnow(),
    ))
    order = db.get(Order, order_id)
    if order is not None:
        order.payment_reference = reference
        order.payment_method = ProviderKind(kind).value
    db.commit()
    db.close()


def stored_intent(reference="pix_1"):
    db = TestingSessionLocal()
    intent = db.query(PaymentIntent).filter_by(provider_reference=reference).first()
    db.close()
    return intent


def stored_order(order_id="O1"):
    db = TestingSessionLocal()
    order = db.get(Order, order_id)
    db.close()
    return order


def provider_response(mocker, status_code=200, body=None):
    response = mocker.Mock()
    response.status_code = status_code
    response.content = b"{}" if body is not None else b""
    response.json.return_value = body
    return response
