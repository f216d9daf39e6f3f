from decimal import Decimal

import pytest

from bookings.models import Booking
from bookings.services.cancellation import CancellationWorkflow
from bookings.services.orchestrator import BookingRequest
from core.exceptions import GatewayUnavailableError
from payments.gateway import OrderStatus, PaymentEventStatus
from payments.models import Payment
from payments.services.reconciliation import (
    ReconciliationEngine,
    ReconciliationOutcome,
    select_authoritative,
)


@pytest.fixture
def engine(gateway, repository, dispatcher):
    return ReconciliationEngine(gateway=gateway, repository=repository, dispatcher=dispatcher)


@pytest.fixture
def booking(make_booking):
    return make_booking(payment_mode="FULL", people=2)


@pytest.mark.django_db
def test_success_confirms_booking_once(engine, gateway, dispatcher, booking):
    gateway.record_payment(booking.gateway_order_id, payment_id="ch_42", amount=Decimal("2000.00"))

    first = engine.reconcile_booking(booking.pk)
    second = engine.reconcile_order(booking.gateway_order_id)

    assert first.outcome == ReconciliationOutcome.CONFIRMED
    assert first.changed is True
    assert second.outcome == ReconciliationOutcome.CONFIRMED
    assert second.changed is False

    booking.refresh_from_db()
    assert booking.status == Booking.CONFIRMED
    assert booking.transaction_id == "ch_42"
    assert booking.agency_approval is True
    assert booking.invoice_document == f"invoices/invoice_{booking.pk}.txt"
    assert Payment.objects.filter(booking=booking).count() == 1

    assert dispatcher.invoices == [booking.pk]
    assert len(dispatcher.confirmations) == 1
    booking_id, details = dispatcher.confirmations[0]
    assert booking_id == booking.pk
    assert details["transaction_id"] == "ch_42"
    assert details["invoice_url"].endswith(f"invoices/invoice_{booking.pk}.txt")


@pytest.mark.django_db
def test_gateway_timeout_leaves_booking_untouched(engine, gateway, dispatcher, booking):
    gateway.fetch_error = GatewayUnavailableError()

    result = engine.reconcile_booking(booking.pk)

    assert result.outcome == ReconciliationOutcome.UNKNOWN
    assert result.changed is False
    assert "pending" in result.message.lower()
    assert Booking.objects.get(pk=booking.pk).status == Booking.PENDING_PAYMENT
    assert dispatcher.confirmations == []


@pytest.mark.django_db
def test_failed_payment_marks_booking_failed(engine, gateway, booking):
    gateway.record_payment(
        booking.gateway_order_id,
        PaymentEventStatus.FAILED,
        payment_id="ch_bad",
        failure_reason="Your card was declined.",
    )

    result = engine.reconcile_booking(booking.pk)

    assert result.outcome == ReconciliationOutcome.FAILED
    assert result.message == "Your card was declined."
    booking.refresh_from_db()
    assert booking.status == Booking.FAILED
    assert booking.payment_status == "FAILED"


@pytest.mark.django_db
def test_late_failure_does_not_downgrade_confirmation(engine, gateway, booking):
    gateway.record_payment(booking.gateway_order_id, payment_id="ch_ok")
    engine.reconcile_booking(booking.pk)

    gateway.payments[booking.gateway_order_id] = []
    gateway.record_payment(booking.gateway_order_id, PaymentEventStatus.FAILED, payment_id="ch_late", minutes=5)
    result = engine.reconcile_booking(booking.pk)

    assert result.changed is False
    assert result.outcome == ReconciliationOutcome.CONFIRMED
    assert Booking.objects.get(pk=booking.pk).status == Booking.CONFIRMED
    assert Payment.objects.filter(booking=booking).count() == 1


@pytest.mark.django_db
def test_success_wins_over_later_failed_attempt(engine, gateway, booking):
    gateway.record_payment(booking.gateway_order_id, payment_id="ch_ok", minutes=0)
    gateway.record_payment(booking.gateway_order_id, PaymentEventStatus.FAILED, payment_id="ch_retry", minutes=3)

    result = engine.reconcile_booking(booking.pk)

    assert result.outcome == ReconciliationOutcome.CONFIRMED
    assert result.booking.transaction_id == "ch_ok"


@pytest.mark.django_db
def test_pending_payment_changes_nothing(engine, gateway, booking):
    gateway.record_payment(booking.gateway_order_id, PaymentEventStatus.PENDING, payment_id="ch_slow")

    result = engine.reconcile_booking(booking.pk)

    assert result.outcome == ReconciliationOutcome.PENDING
    assert result.changed is False
    assert Booking.objects.get(pk=booking.pk).status == Booking.PENDING_PAYMENT


@pytest.mark.django_db
def test_expired_checkout_without_attempts_is_user_dropped(engine, gateway, booking):
    gateway.order_status[booking.gateway_order_id] = OrderStatus.EXPIRED

    result = engine.reconcile_booking(booking.pk)

    assert result.outcome == ReconciliationOutcome.FAILED
    booking.refresh_from_db()
    assert booking.status == Booking.FAILED
    assert booking.payment_status == "USER_DROPPED"
    assert not Payment.objects.filter(booking=booking).exists()


@pytest.mark.django_db
def test_active_checkout_without_attempts_stays_pending(engine, gateway, booking):
    result = engine.reconcile_booking(booking.pk)

    assert result.outcome == ReconciliationOutcome.PENDING
    assert Booking.objects.get(pk=booking.pk).status == Booking.PENDING_PAYMENT


@pytest.mark.django_db
def test_side_effect_failures_keep_confirmation(engine, gateway, dispatcher, booking):
    dispatcher.fail_invoice = True
    gateway.record_payment(booking.gateway_order_id, payment_id="ch_1")

    result = engine.reconcile_booking(booking.pk)

    assert result.outcome == ReconciliationOutcome.CONFIRMED
    booking.refresh_from_db()
    assert booking.status == Booking.CONFIRMED
    assert booking.invoice_document == ""
    assert len(dispatcher.confirmations) == 1
    assert "invoice_url" not in dispatcher.confirmations[0][1]


@pytest.mark.django_db
def test_booking_without_order_is_not_fetched(engine, gateway, orchestrator, package, customer):
    gateway.create_error = GatewayUnavailableError()
    with pytest.raises(GatewayUnavailableError) as excinfo:
        orchestrator.create_booking(BookingRequest(package_id=package.pk, customer_id=customer.pk, number_of_people=1))

    result = engine.reconcile_booking(excinfo.value.booking_id)

    assert result.outcome == ReconciliationOutcome.PENDING
    assert gateway.fetch_calls == 0


def test_select_authoritative_prefers_latest_success(gateway):
    early = gateway.record_payment("order_x", payment_id="ch_1", minutes=0)
    late_success = gateway.record_payment("order_x", payment_id="ch_2", minutes=5)
    gateway.record_payment("order_x", PaymentEventStatus.FAILED, payment_id="ch_3", minutes=9)

    assert select_authoritative(gateway.payments["order_x"]) == late_success
    assert select_authoritative([early]) == early
    assert select_authoritative([]) is None


def test_select_authoritative_takes_most_recent_without_success(gateway):
    gateway.record_payment("order_y", PaymentEventStatus.FAILED, payment_id="ch_1", minutes=5)
    dropped = gateway.record_payment("order_y", PaymentEventStatus.USER_DROPPED, payment_id="ch_2", minutes=1)
    pending = gateway.record_payment("order_y", PaymentEventStatus.PENDING, payment_id="ch_3", minutes=8)

    assert select_authoritative(gateway.payments["order_y"]) == pending
    assert select_authoritative([dropped]) == dropped


@pytest.mark.django_db
def test_capture_after_cancellation_is_kept_for_refund(engine, gateway, dispatcher, booking, customer):
    CancellationWorkflow().request_cancellation(booking.pk, customer, "Plans changed")
    gateway.record_payment(booking.gateway_order_id, payment_id="ch_captured", amount=Decimal("2000.00"))

    first = engine.reconcile_booking(booking.pk)
    second = engine.reconcile_order(booking.gateway_order_id)

    assert first.outcome == ReconciliationOutcome.CANCELLED
    assert first.changed is True
    assert second.outcome == ReconciliationOutcome.CANCELLED
    assert second.changed is False

    booking.refresh_from_db()
    assert booking.status == Booking.CANCELLED
    assert booking.transaction_id == "ch_captured"
    payment = Payment.objects.get(booking=booking)
    assert payment.gateway_payment_id == "ch_captured"
    assert payment.amount == Decimal("2000.00")
    assert dispatcher.invoices == []
    assert dispatcher.confirmations == []


@pytest.mark.django_db
def test_notification_failure_does_not_escape(engine, gateway, dispatcher, booking):
    dispatcher.fail_notify = True
    gateway.record_payment(booking.gateway_order_id, payment_id="ch_1")

    result = engine.reconcile_booking(booking.pk)

    assert result.outcome == ReconciliationOutcome.CONFIRMED
    assert result.changed is True
    assert dispatcher.invoices == [booking.pk]
    assert Booking.objects.get(pk=booking.pk).invoice_document == f"invoices/invoice_{booking.pk}.txt"
