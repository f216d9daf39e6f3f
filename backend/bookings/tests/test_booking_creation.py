from datetime import date
from decimal import Decimal

import pytest

from bookings.models import Booking, Traveler
from bookings.repository import TerminalOutcome
from bookings.services.orchestrator import BookingRequest
from core.exceptions import (
    GatewayRejectedError,
    GatewayUnavailableError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from payments.models import Payment


@pytest.mark.django_db
def test_full_booking_opens_order_for_total(orchestrator, gateway, package, customer):
    checkout = orchestrator.create_booking(
        BookingRequest(package_id=package.pk, customer_id=customer.pk, number_of_people=2)
    )

    booking = checkout.booking
    assert booking.status == Booking.PENDING_PAYMENT
    assert booking.total_price == Decimal("2000.00")
    assert booking.platform_fee == Decimal("60.00")
    assert booking.agency_payout_amount == Decimal("1940.00")
    assert booking.end_date == date(2030, 5, 5)
    assert booking.gateway_order_id.startswith("order_")
    assert checkout.payment_url == f"https://pay.test/checkout/{booking.gateway_order_id}"

    order = gateway.orders[0]
    assert order["amount"] == Decimal("2000.00")
    assert order["order_id"] == booking.gateway_order_id
    assert order["success_url"] == f"https://app.test/payment/success?booking={booking.pk}"
    assert order["customer_email"] == "casey@example.test"


@pytest.mark.django_db
def test_partial_booking_charges_deposit_and_awaits_approval(orchestrator, gateway, package, customer):
    checkout = orchestrator.create_booking(
        BookingRequest(
            package_id=package.pk,
            customer_id=customer.pk,
            number_of_people=2,
            payment_mode=Booking.PARTIAL,
        )
    )

    assert checkout.booking.status == Booking.PENDING_APPROVAL
    assert checkout.booking.amount_due_now == Decimal("60.00")
    assert gateway.orders[0]["amount"] == Decimal("60.00")


@pytest.mark.django_db
def test_offline_booking_charges_total_with_no_payout(orchestrator, gateway, package, customer, agency_staff):
    checkout = orchestrator.create_booking(
        BookingRequest(
            package_id=package.pk,
            customer_id=customer.pk,
            number_of_people=1,
            payment_mode=Booking.PARTIAL,
            channel=Booking.CHANNEL_AGENCY_OFFLINE,
            created_by_id=agency_staff.pk,
        )
    )

    booking = checkout.booking
    assert booking.status == Booking.PENDING_PAYMENT
    assert booking.platform_fee == booking.total_price == Decimal("1000.00")
    assert booking.agency_payout_amount == Decimal("0.00")
    assert gateway.orders[0]["amount"] == Decimal("1000.00")


@pytest.mark.django_db
def test_travelers_are_saved_with_documents(orchestrator, package, customer):
    checkout = orchestrator.create_booking(
        BookingRequest(
            package_id=package.pk,
            customer_id=customer.pk,
            travelers=[
                {
                    "full_name": " Casey Customer ",
                    "email": "Casey@Example.test",
                    "documents": [{"document_type": "PASSPORT", "document_number": "P123"}],
                },
                {"full_name": "Jordan Friend"},
            ],
        )
    )

    booking = checkout.booking
    assert booking.number_of_people == 2
    primary = Traveler.objects.get(booking=booking, is_primary=True)
    assert primary.full_name == "Casey Customer"
    assert primary.email == "casey@example.test"
    assert primary.documents.get().document_number == "P123"


@pytest.mark.django_db
def test_rejected_order_marks_booking_failed(orchestrator, gateway, package, customer):
    gateway.create_error = GatewayRejectedError("Order is not active.")

    with pytest.raises(GatewayRejectedError) as excinfo:
        orchestrator.create_booking(
            BookingRequest(package_id=package.pk, customer_id=customer.pk, number_of_people=2)
        )

    booking = Booking.objects.get(pk=excinfo.value.booking_id)
    assert booking.status == Booking.FAILED
    assert booking.gateway_order_id is None
    assert booking.failure_reason == "Order is not active."
    assert not Payment.objects.filter(booking=booking).exists()


@pytest.mark.django_db
def test_unavailable_gateway_leaves_booking_resumable(orchestrator, gateway, package, customer):
    gateway.create_error = GatewayUnavailableError()

    with pytest.raises(GatewayUnavailableError) as excinfo:
        orchestrator.create_booking(
            BookingRequest(package_id=package.pk, customer_id=customer.pk, number_of_people=2)
        )

    booking_id = excinfo.value.booking_id
    booking = Booking.objects.get(pk=booking_id)
    assert booking.status == Booking.PENDING_PAYMENT
    assert booking.gateway_order_id is None

    gateway.create_error = None
    checkout = orchestrator.resume_payment(booking_id)

    assert checkout.booking.pk == booking_id
    assert checkout.booking.gateway_order_id
    assert len(gateway.orders) == 1


@pytest.mark.django_db
def test_resume_returns_existing_order(orchestrator, gateway, make_booking):
    booking = make_booking()

    checkout = orchestrator.resume_payment(booking.pk)

    assert checkout.booking.gateway_order_id == booking.gateway_order_id
    assert len(gateway.orders) == 1


@pytest.mark.django_db
def test_resume_refused_for_cancelled_booking(orchestrator, repository, make_booking):
    booking = make_booking()
    repository.request_cancellation(booking.pk, reason="No longer travelling")

    with pytest.raises(InvalidStateError):
        orchestrator.resume_payment(booking.pk)


@pytest.mark.django_db
def test_invalid_requests_write_nothing(orchestrator, gateway, package, customer):
    with pytest.raises(NotFoundError):
        orchestrator.create_booking(BookingRequest(package_id=999999, customer_id=customer.pk, number_of_people=1))
    with pytest.raises(NotFoundError):
        orchestrator.create_booking(BookingRequest(package_id=package.pk, customer_id=999999, number_of_people=1))
    with pytest.raises(InvalidInputError):
        orchestrator.create_booking(BookingRequest(package_id=package.pk, customer_id=customer.pk, number_of_people=11))
    with pytest.raises(InvalidInputError):
        orchestrator.create_booking(
            BookingRequest(package_id=package.pk, customer_id=customer.pk, number_of_people=1, payment_mode="LATER")
        )

    assert not Booking.objects.exists()
    assert gateway.orders == []


@pytest.fixture
def api_gateway(monkeypatch, gateway):
    monkeypatch.setattr("bookings.api.build_gateway", lambda: gateway)
    return gateway


@pytest.mark.django_db
def test_create_booking_endpoint(api_client, api_gateway, package, customer):
    api_client.force_authenticate(customer)

    response = api_client.post(
        "/api/bookings/",
        {
            "tour_package": package.pk,
            "payment_mode": "PARTIAL",
            "travelers": [{"full_name": "Casey Customer"}, {"full_name": "Jordan Friend"}],
        },
        format="json",
    )

    assert response.status_code == 201
    body = response.json()
    assert body["booking"]["status"] == Booking.PENDING_APPROVAL
    assert body["booking"]["amount_due_now"] == "60.00"
    assert len(body["booking"]["travelers"]) == 2
    assert body["payment_url"].startswith("https://pay.test/checkout/order_")


@pytest.mark.django_db
def test_create_booking_endpoint_reports_booking_id_on_gateway_failure(api_client, api_gateway, package, customer):
    api_gateway.create_error = GatewayUnavailableError()
    api_client.force_authenticate(customer)

    response = api_client.post(
        "/api/bookings/",
        {"tour_package": package.pk, "number_of_people": 1},
        format="json",
    )

    assert response.status_code == 503
    body = response.json()
    assert body["code"] == "gateway_unavailable"
    assert Booking.objects.filter(pk=body["booking_id"], customer=customer).exists()


@pytest.mark.django_db
def test_customer_cannot_record_offline_booking(api_client, api_gateway, package, customer, other_customer):
    api_client.force_authenticate(customer)

    response = api_client.post(
        "/api/bookings/",
        {
            "tour_package": package.pk,
            "number_of_people": 1,
            "channel": "AGENCY_OFFLINE",
            "customer": other_customer.pk,
        },
        format="json",
    )

    assert response.status_code == 403
    assert not Booking.objects.exists()


@pytest.mark.django_db
def test_agency_staff_records_offline_booking(api_client, api_gateway, package, customer, agency_staff):
    api_client.force_authenticate(agency_staff)

    response = api_client.post(
        "/api/bookings/",
        {
            "tour_package": package.pk,
            "number_of_people": 1,
            "channel": "AGENCY_OFFLINE",
            "customer": customer.pk,
        },
        format="json",
    )

    assert response.status_code == 201
    booking = Booking.objects.get()
    assert booking.customer == customer
    assert booking.created_by == agency_staff


@pytest.mark.django_db
def test_booking_list_is_scoped(api_client, make_booking, customer, other_customer, agency_staff):
    booking = make_booking()

    api_client.force_authenticate(other_customer)
    assert api_client.get("/api/bookings/").json()["results"] == []
    assert api_client.get(f"/api/bookings/{booking.pk}/").status_code == 404

    api_client.force_authenticate(agency_staff)
    ids = [row["id"] for row in api_client.get("/api/bookings/").json()["results"]]
    assert ids == [booking.pk]

    api_client.force_authenticate(customer)
    response = api_client.get(f"/api/bookings/{booking.pk}/")
    assert response.status_code == 200
    assert response.json()["total_price"] == "2000.00"


@pytest.mark.django_db
def test_resume_payment_endpoint(api_client, api_gateway, make_booking, customer):
    booking = make_booking()
    api_client.force_authenticate(customer)

    response = api_client.post(f"/api/bookings/{booking.pk}/resume-payment/")

    assert response.status_code == 200
    assert response.json()["booking"]["gateway_order_id"] == booking.gateway_order_id


@pytest.mark.django_db
def test_agency_completes_booking_through_status_endpoint(api_client, make_booking, repository, agency_staff):
    booking = make_booking()
    repository.apply_terminal_outcome(booking.pk, TerminalOutcome.success(transaction_id="ch_1"))
    api_client.force_authenticate(agency_staff)

    response = api_client.post(f"/api/bookings/{booking.pk}/status/", {"status": "COMPLETED"}, format="json")

    assert response.status_code == 200
    assert response.json()["status"] == Booking.COMPLETED
    assert Booking.objects.get(pk=booking.pk).status == Booking.COMPLETED


@pytest.mark.django_db
def test_status_endpoint_rejects_illegal_and_reserved_targets(api_client, make_booking, agency_staff):
    booking = make_booking()
    api_client.force_authenticate(agency_staff)

    response = api_client.post(f"/api/bookings/{booking.pk}/status/", {"status": "COMPLETED"}, format="json")
    assert response.status_code == 409
    assert response.json()["code"] == "invalid_state"

    response = api_client.post(f"/api/bookings/{booking.pk}/status/", {"status": "CONFIRMED"}, format="json")
    assert response.status_code == 400

    assert Booking.objects.get(pk=booking.pk).status == Booking.PENDING_PAYMENT


@pytest.mark.django_db
def test_customer_cannot_change_booking_status(api_client, make_booking, customer):
    booking = make_booking(payment_mode="PARTIAL")
    api_client.force_authenticate(customer)

    response = api_client.post(f"/api/bookings/{booking.pk}/status/", {"status": "FAILED"}, format="json")

    assert response.status_code == 403
    assert Booking.objects.get(pk=booking.pk).status == Booking.PENDING_APPROVAL
