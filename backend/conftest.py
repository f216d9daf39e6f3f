import json
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from accounts.models import AgencyMembership
from agencies.models import Agency
from bookings.repository import BookingRepository
from bookings.services.orchestrator import BookingRequest, PaymentOrchestrator
from payments.gateway import (
    MalformedWebhookError,
    OrderHandle,
    OrderState,
    OrderStatus,
    PaymentEvent,
    PaymentEventStatus,
    WebhookSignatureError,
    notification_from_event,
)
from tours.models import TourPackage

User = get_user_model()

VALID_SIGNATURE = "t=1,v1=valid"


class FakeGateway:
    """In-memory gateway; tests script payments per order id."""

    def __init__(self):
        self.orders = []
        self.payments = {}
        self.order_status = {}
        self.create_error = None
        self.fetch_error = None
        self.fetch_calls = 0

    def create_order(self, *, amount, correlation_hint, **kwargs):
        if self.create_error is not None:
            raise self.create_error
        self.orders.append({"amount": amount, "order_id": correlation_hint, **kwargs})
        return OrderHandle(
            order_id=correlation_hint,
            payment_session_id=f"cs_fake_{len(self.orders)}",
            redirect_url=f"https://pay.test/checkout/{correlation_hint}",
        )

    def fetch_order_status(self, order_id, *, session_id=None):
        if self.fetch_error is not None:
            raise self.fetch_error
        return OrderState(order_id=order_id, status=self.order_status.get(order_id, OrderStatus.ACTIVE))

    def fetch_payments(self, order_id, *, session_id=None):
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.payments.get(order_id, []))

    def parse_webhook(self, payload, signature):
        if signature != VALID_SIGNATURE:
            raise WebhookSignatureError()
        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise MalformedWebhookError() from exc
        return notification_from_event(event)

    def record_payment(
        self,
        order_id,
        status=PaymentEventStatus.SUCCESS,
        *,
        payment_id="ch_1",
        amount=None,
        failure_reason="",
        minutes=0,
    ):
        event = PaymentEvent(
            payment_id=payment_id,
            status=status,
            amount=amount,
            created_at=datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc) + timedelta(minutes=minutes),
            failure_reason=failure_reason,
        )
        self.payments.setdefault(order_id, []).append(event)
        return event


class RecordingDispatcher:
    def __init__(self, *, fail_invoice=False, fail_notify=False):
        self.fail_invoice = fail_invoice
        self.fail_notify = fail_notify
        self.invoices = []
        self.confirmations = []
        self.cancellations = []

    def generate_invoice(self, booking):
        if self.fail_invoice:
            raise RuntimeError("storage offline")
        self.invoices.append(booking.pk)
        return f"invoices/invoice_{booking.pk}.txt"

    def booking_confirmed(self, booking, payment_details=None):
        if self.fail_notify:
            raise RuntimeError("mail server down")
        self.confirmations.append((booking.pk, dict(payment_details or {})))

    def cancellation_requested(self, booking, reason):
        self.cancellations.append((booking.pk, reason))


def _webhook_body(order_id, *, event_id="evt_1", event_type="checkout.session.completed"):
    return json.dumps(
        {
            "id": event_id,
            "type": event_type,
            "data": {"object": {"id": "cs_fake_1", "client_reference_id": order_id}},
        }
    )


@pytest.fixture(autouse=True)
def local_settings(settings, tmp_path):
    settings.MEDIA_ROOT = tmp_path / "media"
    settings.STRIPE_USE_STUB = True
    settings.STRIPE_SECRET_KEY = ""
    settings.FRONTEND_URL = "https://app.test"
    settings.PLATFORM_FEE_PERCENT = "3"
    settings.PAYMENT_CURRENCY = "inr"
    return settings


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def repository():
    return BookingRepository()


@pytest.fixture
def orchestrator(gateway, repository):
    return PaymentOrchestrator(gateway=gateway, repository=repository)


@pytest.fixture
def agency(db):
    return Agency.objects.create(
        name="Himalaya Trails",
        slug="himalaya-trails",
        contact_email="bookings@himalaya.test",
    )


@pytest.fixture
def package(agency):
    return TourPackage.objects.create(
        agency=agency,
        title="Everest Base Camp",
        destination="Nepal",
        duration_days=5,
        price_per_person=Decimal("1000.00"),
        start_date=date(2030, 5, 1),
        end_date=date(2030, 5, 5),
        max_group_size=10,
    )


@pytest.fixture
def customer(db):
    return User.objects.create_user(
        username="casey@example.test",
        email="casey@example.test",
        password="examplepass",
        first_name="Casey",
        last_name="Customer",
    )


@pytest.fixture
def other_customer(db):
    return User.objects.create_user(
        username="riley@example.test",
        email="riley@example.test",
        password="examplepass",
    )


@pytest.fixture
def agency_staff(agency):
    user = User.objects.create_user(
        username="staff@himalaya.test",
        email="staff@himalaya.test",
        password="examplepass",
        role=User.AGENCY,
    )
    AgencyMembership.objects.create(user=user, agency=agency, role=AgencyMembership.STAFF)
    return user


@pytest.fixture
def admin_user(db):
    return User.objects.create_user(
        username="admin@tripdesk.test",
        email="admin@tripdesk.test",
        password="examplepass",
        role=User.ADMIN,
    )


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def make_booking(orchestrator, package, customer):
    def _make(*, payment_mode="FULL", people=2, **overrides):
        request = BookingRequest(
            package_id=package.pk,
            customer_id=customer.pk,
            number_of_people=people,
            payment_mode=payment_mode,
            **overrides,
        )
        return orchestrator.create_booking(request).booking

    return _make


@pytest.fixture
def webhook_body():
    return _webhook_body


@pytest.fixture
def valid_signature():
    return VALID_SIGNATURE
