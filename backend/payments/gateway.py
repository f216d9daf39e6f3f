from __future__ import annotations

import json
import logging
import secrets
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

import stripe
from django.conf import settings

from core.exceptions import GatewayRejectedError, GatewayUnavailableError, InvalidInputError

logger = logging.getLogger(__name__)


class OrderStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAID = "PAID"
    EXPIRED = "EXPIRED"


class PaymentEventStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    USER_DROPPED = "USER_DROPPED"
    PENDING = "PENDING"
    NOT_ATTEMPTED = "NOT_ATTEMPTED"


FAILURE_STATUSES = frozenset({PaymentEventStatus.FAILED, PaymentEventStatus.USER_DROPPED})


@dataclass(frozen=True)
class OrderHandle:
    order_id: str
    payment_session_id: str
    redirect_url: str


@dataclass(frozen=True)
class OrderState:
    order_id: str
    status: OrderStatus
    amount: Optional[Decimal] = None


@dataclass(frozen=True)
class PaymentEvent:
    payment_id: str
    status: PaymentEventStatus
    amount: Optional[Decimal]
    created_at: datetime
    failure_reason: str = ""


@dataclass(frozen=True)
class WebhookNotification:
    event_id: str
    event_type: str
    order_id: str
    payload: Dict[str, Any]


class WebhookSignatureError(InvalidInputError):
    code = "invalid_signature"
    default_message = "Webhook signature verification failed."


class MalformedWebhookError(InvalidInputError):
    code = "malformed_webhook"
    default_message = "Webhook payload could not be parsed."


def new_order_id() -> str:
    """Mint a fresh correlation id; never reused across create-order calls."""
    return f"order_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value) -> Optional[Decimal]:
    if value is None:
        return None
    return (Decimal(int(value)) / 100).quantize(Decimal("0.01"))


def _field(obj, name: str, default=None):
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    try:
        return obj[name]
    except (KeyError, TypeError, AttributeError):
        return getattr(obj, name, default)


@contextmanager
def _translate_errors(operation: str):
    try:
        yield
    except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
        logger.warning("Payment gateway unavailable during %s: %s", operation, exc)
        raise GatewayUnavailableError() from exc
    except (
        stripe.InvalidRequestError,
        stripe.CardError,
        stripe.AuthenticationError,
        stripe.PermissionError,
    ) as exc:
        logger.warning("Payment gateway rejected %s: %s", operation, exc)
        raise GatewayRejectedError(getattr(exc, "user_message", None) or str(exc)) from exc
    except stripe.StripeError as exc:
        # Remaining SDK errors (5xx, idempotency, unexpected) leave the outcome unknown.
        logger.warning("Payment gateway error during %s: %s", operation, exc)
        raise GatewayUnavailableError() from exc


_INTENT_STATUS_MAP = {
    "succeeded": PaymentEventStatus.SUCCESS,
    "processing": PaymentEventStatus.PENDING,
    "requires_action": PaymentEventStatus.PENDING,
    "requires_confirmation": PaymentEventStatus.PENDING,
    "requires_capture": PaymentEventStatus.PENDING,
    "canceled": PaymentEventStatus.USER_DROPPED,
}


def payment_event_from_intent(intent) -> PaymentEvent:
    """Validate a PaymentIntent payload into a typed event."""
    intent_id = _field(intent, "id")
    raw_status = _field(intent, "status")
    if not intent_id or not isinstance(raw_status, str):
        raise GatewayUnavailableError("Payment provider returned an unreadable payment record.")

    failure_reason = ""
    last_error = _field(intent, "last_payment_error")
    if raw_status == "requires_payment_method":
        if last_error:
            status = PaymentEventStatus.FAILED
            failure_reason = _field(last_error, "message") or "Payment failed."
        else:
            status = PaymentEventStatus.NOT_ATTEMPTED
    elif raw_status in _INTENT_STATUS_MAP:
        status = _INTENT_STATUS_MAP[raw_status]
        if status == PaymentEventStatus.USER_DROPPED:
            failure_reason = _field(intent, "cancellation_reason") or "Payment was abandoned."
    else:
        logger.warning("Unrecognised payment status %r on %s", raw_status, intent_id)
        status = PaymentEventStatus.PENDING

    latest_charge = _field(intent, "latest_charge")
    if latest_charge is not None and not isinstance(latest_charge, str):
        latest_charge = _field(latest_charge, "id")

    amount = _field(intent, "amount_received") or _field(intent, "amount")
    created = _field(intent, "created") or 0
    return PaymentEvent(
        payment_id=latest_charge or intent_id,
        status=status,
        amount=from_minor_units(amount),
        created_at=datetime.fromtimestamp(int(created), tz=timezone.utc),
        failure_reason=failure_reason,
    )


class StripeGateway:
    """
    Payment gateway backed by Stripe Checkout.

    Credentials are passed on every request rather than set on the module, so
    several configured gateways can coexist in one process.
    """

    def __init__(
        self,
        *,
        api_key: str,
        api_version: str,
        currency: str = "inr",
        webhook_secret: str = "",
        stripe_account: Optional[str] = None,
    ):
        if not api_key:
            raise RuntimeError("Stripe secret key is not configured.")
        self.api_key = api_key
        self.api_version = api_version
        self.currency = currency
        self.webhook_secret = webhook_secret
        self.stripe_account = stripe_account

    def _options(self) -> Dict[str, Any]:
        options = {"api_key": self.api_key, "stripe_version": self.api_version}
        if self.stripe_account:
            options["stripe_account"] = self.stripe_account
        return options

    def create_order(
        self,
        *,
        amount: Decimal,
        correlation_hint: str,
        description: str,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> OrderHandle:
        order_metadata = {**(metadata or {}), "order_id": correlation_hint}
        params: Dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": self.currency,
                        "unit_amount": to_minor_units(amount),
                        "product_data": {"name": description},
                    },
                }
            ],
            "client_reference_id": correlation_hint,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": order_metadata,
            "payment_intent_data": {"metadata": order_metadata},
        }
        if customer_email:
            params["customer_email"] = customer_email

        started = time.monotonic()
        with _translate_errors("create order"):
            session = stripe.checkout.Session.create(**params, **self._options())
        logger.debug("Created checkout session %s in %.0f ms", session.id, (time.monotonic() - started) * 1000)
        return OrderHandle(
            order_id=correlation_hint,
            payment_session_id=session.id,
            redirect_url=getattr(session, "url", "") or "",
        )

    def fetch_order_status(self, order_id: str, *, session_id: Optional[str] = None) -> OrderState:
        if not session_id:
            events = self.fetch_payments(order_id)
            paid = any(event.status == PaymentEventStatus.SUCCESS for event in events)
            return OrderState(order_id=order_id, status=OrderStatus.PAID if paid else OrderStatus.ACTIVE)

        with _translate_errors("fetch order"):
            session = stripe.checkout.Session.retrieve(session_id, **self._options())

        session_status = _field(session, "status")
        if session_status == "expired":
            status = OrderStatus.EXPIRED
        elif session_status == "complete" and _field(session, "payment_status") == "paid":
            status = OrderStatus.PAID
        else:
            status = OrderStatus.ACTIVE
        return OrderState(order_id=order_id, status=status, amount=from_minor_units(_field(session, "amount_total")))

    def fetch_payments(self, order_id: str, *, session_id: Optional[str] = None) -> List[PaymentEvent]:
        started = time.monotonic()
        with _translate_errors("fetch payments"):
            if session_id:
                session = stripe.checkout.Session.retrieve(
                    session_id,
                    expand=["payment_intent"],
                    **self._options(),
                )
                intent = _field(session, "payment_intent")
                if isinstance(intent, str):
                    intent = stripe.PaymentIntent.retrieve(intent, **self._options())
                intents = [intent] if intent else []
            else:
                result = stripe.PaymentIntent.search(
                    query=f"metadata['order_id']:'{order_id}'",
                    **self._options(),
                )
                intents = list(_field(result, "data") or [])
        logger.debug(
            "Fetched %s payment(s) for %s in %.0f ms",
            len(intents),
            order_id,
            (time.monotonic() - started) * 1000,
        )
        return [payment_event_from_intent(intent) for intent in intents]

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookNotification:
        if not self.webhook_secret:
            raise RuntimeError("Stripe webhook secret is not configured.")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as exc:
            raise MalformedWebhookError() from exc
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureError() from exc
        return notification_from_event(event)


def notification_from_event(event) -> WebhookNotification:
    event_id = _field(event, "id")
    event_type = _field(event, "type")
    data_object = _field(_field(event, "data"), "object")
    if not event_id or not event_type or data_object is None:
        raise MalformedWebhookError("Webhook event is missing id, type or data.")

    order_id = _field(data_object, "client_reference_id") or _field(_field(data_object, "metadata"), "order_id") or ""
    payload = event if isinstance(event, dict) else {"id": event_id, "type": event_type}
    return WebhookNotification(event_id=event_id, event_type=event_type, order_id=order_id, payload=payload)


class StubGateway:
    """
    Stand-in gateway for local development.

    No provider is contacted: orders get predictable identifiers and a preview
    URL, payments are reported as not yet attempted, and webhooks are accepted
    without signature verification.
    """

    def __init__(self, *, frontend_url: str):
        self.frontend_url = frontend_url.rstrip("/")

    def create_order(self, *, amount: Decimal, correlation_hint: str, **kwargs) -> OrderHandle:
        session_id = f"cs_test_{uuid4().hex}"
        preview_url = (
            f"{self.frontend_url}/payments/preview?"
            f"order={correlation_hint}&amount={to_minor_units(amount)}&session={session_id}"
        )
        return OrderHandle(order_id=correlation_hint, payment_session_id=session_id, redirect_url=preview_url)

    def fetch_order_status(self, order_id: str, *, session_id: Optional[str] = None) -> OrderState:
        return OrderState(order_id=order_id, status=OrderStatus.ACTIVE)

    def fetch_payments(self, order_id: str, *, session_id: Optional[str] = None) -> List[PaymentEvent]:
        return []

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookNotification:
        logger.warning("Stub gateway accepting webhook without signature verification.")
        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise MalformedWebhookError() from exc
        return notification_from_event(event)


def _should_use_stub() -> bool:
    if getattr(settings, "STRIPE_USE_STUB", False):
        return True
    return not getattr(settings, "STRIPE_SECRET_KEY", "")


def build_gateway():
    """Construct the configured gateway client; called at each request/command entry point."""
    if _should_use_stub():
        return StubGateway(frontend_url=settings.FRONTEND_URL)
    return StripeGateway(
        api_key=settings.STRIPE_SECRET_KEY,
        api_version=settings.STRIPE_API_VERSION,
        currency=getattr(settings, "PAYMENT_CURRENCY", "inr"),
        webhook_secret=getattr(settings, "STRIPE_WEBHOOK_SECRET", ""),
    )
