"""
Shared fixtures: an app on in-memory SQLite, seeded users, a booking factory
and a recording stand-in for the Stripe gateway.
"""
import json

import pytest
import stripe

from app import create_app
from config import Config
from models import db
from models.booking import Booking
from models.service_offering import ServiceOffering
from models.user import User, Role
from security.password import hash_password
from services.errors import GatewayError
from services.stripe_gateway import RefundResult, TransferResult, VoidResult
from utils.auth_context import Actor

PASSWORD = "correct-horse-battery"


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    AUTO_CREATE_TABLES = True
    STRIPE_SECRET_KEY = "sk_test_dummy"
    STRIPE_WEBHOOK_SECRET = "whsec_test"
    PAYMENT_CURRENCY = "gbp"
    PLATFORM_COMMISSION_PERCENT = 10
    PROVIDER_RESPONSE_HOURS = 24
    LOG_LEVEL = "WARNING"


class FakeGateway:
    """
    Records every call; set fail_transfer / fail_refund / fail_void to a message
    to make calls fail. With ``reject`` set, failures look like Stripe refusing
    the request outright.
    """

    VALID_SIGNATURE = "t=1,v1=valid"

    def __init__(self):
        self.transfers = []
        self.refunds = []
        self.voided = []
        self.attempts = []
        self.fail_transfer = None
        self.fail_refund = None
        self.fail_void = None
        self.reject = False
        self.on_transfer = None

    def create_transfer(self, amount, destination_account, booking_id, description=None, attempt=0):
        self.attempts.append(("payout", booking_id, attempt))
        if self.fail_transfer:
            raise GatewayError(self.fail_transfer, rejected=self.reject)
        result = TransferResult(
            id=f"tr_test_{len(self.transfers) + 1}",
            amount=amount,
            currency="gbp",
            destination_account=destination_account,
        )
        self.transfers.append({"amount": amount, "destination": destination_account, "booking_id": booking_id})
        if self.on_transfer:
            self.on_transfer(booking_id, result)
        return result

    def create_refund(self, payment_intent_id, booking_id, reason="requested_by_customer", attempt=0):
        self.attempts.append(("refund", booking_id, attempt))
        if self.fail_refund:
            raise GatewayError(self.fail_refund, rejected=self.reject)
        result = RefundResult(id=f"re_test_{len(self.refunds) + 1}", amount=0, status="succeeded")
        self.refunds.append({"payment_intent": payment_intent_id, "booking_id": booking_id})
        return result

    def cancel_payment_intent(self, payment_intent_id, booking_id):
        if self.fail_void:
            raise GatewayError(self.fail_void, rejected=self.reject)
        self.voided.append(payment_intent_id)
        return VoidResult(id=payment_intent_id, status="canceled")

    def construct_event(self, payload, signature, secret):
        if signature != self.VALID_SIGNATURE:
            raise stripe.SignatureVerificationError("No signatures found matching the expected signature", signature)
        return json.loads(payload)


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def gateway(app):
    fake = FakeGateway()
    app.extensions["payment_gateway"] = fake
    return fake


def _make_user(email, role_names, **fields):
    user = User(email=email, password_hash=hash_password(PASSWORD, rounds=4), **fields)
    user.roles = Role.query.filter(Role.name.in_(role_names)).all()
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def customer(app):
    return _make_user("customer@example.com", ["CUSTOMER"], first_name="Cara", last_name="Customer")


@pytest.fixture
def provider(app):
    return _make_user(
        "provider@example.com",
        ["PROVIDER"],
        first_name="Pat",
        last_name="Plumber",
        stripe_account_id="acct_provider123",
    )


@pytest.fixture
def stranger(app):
    return _make_user("stranger@example.com", ["CUSTOMER"])


@pytest.fixture
def admin(app):
    return _make_user("admin@example.com", ["ADMIN"])


@pytest.fixture
def actor_for():
    return Actor.from_user


@pytest.fixture
def make_booking(customer, provider):
    service = ServiceOffering(provider_id=provider.id, title="Boiler service", base_price=10000)
    db.session.add(service)
    db.session.commit()

    def _make(**overrides):
        fields = {
            "customer_id": customer.id,
            "provider_id": provider.id,
            "service_id": service.id,
            "status": "confirmed",
            "payment_status": "funds_held_in_escrow",
            "total_amount": 10000,
            "currency": "gbp",
            "stripe_payment_intent_id": "pi_test_123",
        }
        fields.update(overrides)
        booking = Booking(**fields)
        db.session.add(booking)
        db.session.commit()
        return booking

    return _make


@pytest.fixture
def login(client):
    def _login(user):
        resp = client.post("/auth/login", json={"email": user.email, "password": PASSWORD})
        assert resp.status_code == 200
        return {"X-CSRF-Token": client.get_cookie("csrf_token").value}

    return _login
