import pytest
from django.core.files.storage import default_storage

from bookings.models import Booking
from bookings.repository import TerminalOutcome
from bookings.services.dispatcher import EMAIL, SideEffectDispatcher
from bookings.services.invoices import generate_invoice


@pytest.fixture
def confirmed(make_booking, repository):
    booking = make_booking(payment_mode="PARTIAL", people=2)
    return repository.apply_terminal_outcome(booking.pk, TerminalOutcome.success(transaction_id="ch_9")).booking


@pytest.mark.django_db
def test_booking_confirmed_emails_customer_and_agency(confirmed, mailoutbox):
    SideEffectDispatcher().booking_confirmed(confirmed, {"transaction_id": "ch_9", "invoice_url": "/media/inv.txt"})

    assert [message.to for message in mailoutbox] == [["casey@example.test"], ["bookings@himalaya.test"]]
    message = mailoutbox[0]
    assert message.subject == "Everest Base Camp booking confirmed"
    assert "Deposit received: 60.00" in message.body
    assert "Balance due to Himalaya Trails: 1940.00" in message.body
    assert "Transaction reference: ch_9" in message.body
    assert "Himalaya Trails via TripDesk" in message.from_email


@pytest.mark.django_db
def test_cancellation_emails_use_audience_specific_wording(confirmed, mailoutbox):
    SideEffectDispatcher().cancellation_requested(confirmed, "Flight cancelled")

    subjects = [message.subject for message in mailoutbox]
    assert subjects == ["Cancellation request submitted", "New cancellation request"]
    assert all("Reason: Flight cancelled" in message.body for message in mailoutbox)


@pytest.mark.django_db
def test_sender_failures_are_logged_not_raised(confirmed):
    calls = []

    def broken_sender(**kwargs):
        calls.append(kwargs["recipient"])
        raise ConnectionError("smtp down")

    dispatcher = SideEffectDispatcher(senders={EMAIL: broken_sender})

    dispatcher.booking_confirmed(confirmed, {"transaction_id": "ch_9"})

    assert calls == ["casey@example.test", "bookings@himalaya.test"]


@pytest.mark.django_db
def test_notify_skips_missing_recipient_and_unknown_channel(confirmed):
    dispatcher = SideEffectDispatcher(senders={})

    assert dispatcher.notify(EMAIL, "", confirmed) is False
    assert dispatcher.notify("sms", "+910000000000", confirmed) is False


@pytest.mark.django_db
def test_invoice_is_written_to_storage(confirmed):
    name = generate_invoice(confirmed)

    assert name == f"invoices/invoice_{confirmed.pk}.txt"
    with default_storage.open(name) as handle:
        content = handle.read().decode("utf-8")
    assert f"INVOICE: Booking #{confirmed.pk}" in content
    assert "Total price: 2000.00" in content
    assert "Amount paid: 60.00" in content
    assert "Transaction reference: ch_9" in content

    # Regenerating replaces the previous file under the same name.
    assert generate_invoice(confirmed) == name


@pytest.mark.django_db
def test_invoice_endpoint_generates_missing_invoice(api_client, confirmed, customer):
    api_client.force_authenticate(customer)

    response = api_client.get(f"/api/bookings/{confirmed.pk}/invoice/")

    assert response.status_code == 200
    name = f"invoices/invoice_{confirmed.pk}.txt"
    assert response.json()["invoice_document"] == name
    assert response.json()["url"].endswith(name)
    assert default_storage.exists(name)
    assert Booking.objects.get(pk=confirmed.pk).invoice_document == name


@pytest.mark.django_db
def test_invoice_endpoint_regenerates_lost_file(api_client, confirmed, agency_staff):
    Booking.objects.filter(pk=confirmed.pk).update(invoice_document="invoices/removed.txt")
    api_client.force_authenticate(agency_staff)

    response = api_client.get(f"/api/bookings/{confirmed.pk}/invoice/")

    assert response.status_code == 200
    assert response.json()["invoice_document"] == f"invoices/invoice_{confirmed.pk}.txt"
    assert Booking.objects.get(pk=confirmed.pk).invoice_document == f"invoices/invoice_{confirmed.pk}.txt"


@pytest.mark.django_db
def test_invoice_endpoint_returns_stored_invoice(api_client, confirmed, customer):
    name = generate_invoice(confirmed)
    Booking.objects.filter(pk=confirmed.pk).update(invoice_document=name)
    api_client.force_authenticate(customer)

    response = api_client.get(f"/api/bookings/{confirmed.pk}/invoice/")

    assert response.status_code == 200
    assert response.json()["invoice_document"] == name


@pytest.mark.django_db
def test_invoice_endpoint_requires_payment_and_access(api_client, make_booking, confirmed, customer, other_customer):
    unpaid = make_booking()

    api_client.force_authenticate(customer)
    response = api_client.get(f"/api/bookings/{unpaid.pk}/invoice/")
    assert response.status_code == 409
    assert not default_storage.exists(f"invoices/invoice_{unpaid.pk}.txt")

    api_client.force_authenticate(other_customer)
    assert api_client.get(f"/api/bookings/{confirmed.pk}/invoice/").status_code == 404
