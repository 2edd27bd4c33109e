from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app import create_app
from models import (
    BookingStatus,
    Payment,
    PaymentPurpose,
    PaymentStatus,
    Plan,
    RequestType,
    Role,
    Service,
    ServiceProvider,
    ServiceRequest,
    Subscription,
    SubscriptionStatus,
    User,
    db,
)
from security.rbac import CLIENT, SERVICE_PROVIDER
from security.tokens import issue_token
from services.gateway import PaymentDetails
from utils.errors import GatewayPaymentNotFoundError, GatewayUnavailableError


class FakeGateway:
    name = "STRIPE"

    def __init__(self):
        self.payments = {}
        self.preferences = []
        self.unavailable = False

    def create_preference(self, items, payer, urls, metadata=None, external_reference=None):
        if self.unavailable:
            raise GatewayUnavailableError("gateway timeout")
        pref_id = f"cs_test_{len(self.preferences) + 1}"
        self.preferences.append({
            "id": pref_id,
            "items": items,
            "payer": payer,
            "metadata": {k: str(v) for k, v in (metadata or {}).items() if v is not None},
            "external_reference": external_reference,
        })
        return {"id": pref_id, "checkout_url": f"https://checkout.test/{pref_id}"}

    def fetch_payment(self, payment_id):
        if self.unavailable:
            raise GatewayUnavailableError("gateway timeout")
        if payment_id not in self.payments:
            raise GatewayPaymentNotFoundError(f"Payment {payment_id} not found at gateway")
        return self.payments[payment_id]

    def put(self, payment_id, status, amount="4.90", external_reference=None, **metadata):
        self.payments[payment_id] = PaymentDetails(
            id=payment_id,
            status=status,
            amount=Decimal(amount),
            currency="BRL",
            metadata={k: str(v) for k, v in metadata.items()},
            external_reference=external_reference,
            payment_method="card",
        )
        return self.payments[payment_id]


class FakeSender:
    def __init__(self):
        self.calls = []
        self.outcomes = []

    def is_configured(self):
        return True

    def send(self, to, *content):
        self.calls.append((to,) + content)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return True


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def email_sender():
    return FakeSender()


@pytest.fixture
def whatsapp_sender():
    return FakeSender()


@pytest.fixture
def app(gateway, email_sender, whatsapp_sender):
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "STRIPE_WEBHOOK_SECRET": "whsec_test",
            "NOTIFY_ASYNC": False,
            "RETRY_WORKER_EMBEDDED": False,
            "LOG_LEVEL": "WARNING",
        },
        gateway=gateway,
        email_sender=email_sender,
        whatsapp_sender=whatsapp_sender,
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def fulfillment(app):
    return app.extensions["fulfillment"]


def make_user(email, role_name, name=None, phone="11987654321"):
    role = Role.query.filter_by(name=role_name).first()
    if role is None:
        role = Role(name=role_name)
        db.session.add(role)
    user = User(email=email, name=name or email.split("@")[0], phone=phone)
    user.roles.append(role)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def people(app):
    client_user = make_user("ana@example.com", CLIENT, name="Ana")
    provider_user = make_user("bruno@example.com", SERVICE_PROVIDER, name="Bruno")
    other_provider = make_user("carla@example.com", SERVICE_PROVIDER, name="Carla")
    profile = ServiceProvider(user_id=provider_user.id, business_name="Bruno Reformas")
    other_profile = ServiceProvider(user_id=other_provider.id, business_name="Carla Eletrica")
    service = Service(name="Electrical repair")
    db.session.add_all([profile, other_profile, service])
    db.session.commit()
    return SimpleNamespace(
        client=client_user,
        provider=provider_user,
        other_provider=other_provider,
        profile=profile,
        other_profile=other_profile,
        service=service,
    )


@pytest.fixture
def make_booking(people):
    def _make(status=BookingStatus.PENDING, request_type=RequestType.QUOTE, provider=None, **fields):
        booking = ServiceRequest(
            client_id=people.client.id,
            provider_id=(provider or people.provider).id,
            service_id=people.service.id,
            status=status,
            request_type=request_type,
            **fields,
        )
        db.session.add(booking)
        db.session.commit()
        return booking
    return _make


@pytest.fixture
def unlimited_plan(app):
    plan = Plan(name="Enterprise", price=Decimal("59.90"), unlimited_acceptance=True)
    db.session.add(plan)
    db.session.commit()
    return plan


def add_subscription(profile, plan, end_date, status=SubscriptionStatus.ACTIVE):
    subscription = Subscription(service_provider_id=profile.id, plan_id=plan.id, status=status, end_date=end_date)
    db.session.add(subscription)
    db.session.commit()
    return subscription


def add_payment(user, booking=None, status=PaymentStatus.APPROVED, purpose=PaymentPurpose.UNLOCK,
                amount="4.90", created_at=None, **fields):
    payment = Payment(
        user_id=user.id,
        service_request_id=booking.id if booking else None,
        purpose=purpose,
        amount=Decimal(amount),
        status=status,
        created_at=created_at or datetime.utcnow(),
        **fields,
    )
    db.session.add(payment)
    db.session.commit()
    return payment


def auth_headers(user):
    return {"Authorization": f"Bearer {issue_token(user.id)}"}
