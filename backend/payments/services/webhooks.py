from __future__ import annotations

import logging
from typing import Optional

from django.utils import timezone

from core.exceptions import NotFoundError
from payments.gateway import MalformedWebhookError, WebhookNotification
from payments.models import WebhookEvent
from payments.services.reconciliation import ReconciliationEngine, ReconciliationOutcome

logger = logging.getLogger(__name__)

HANDLED_EVENT_PREFIXES = ("checkout.session.", "payment_intent.")


def process_webhook(payload: bytes, signature: Optional[str], *, gateway, engine: ReconciliationEngine) -> Optional[WebhookEvent]:
    """
    Verify, record and reconcile one webhook delivery.

    Signature failures propagate so the view can reject the request. Anything
    else is acknowledged: malformed payloads are dropped, unmatched events are
    ignored, and processing errors park the event for `retry_parked_events`.
    """
    try:
        notification = gateway.parse_webhook(payload, signature)
    except MalformedWebhookError as exc:
        logger.warning("Dropping malformed webhook: %s", exc.message)
        return None

    event, created = WebhookEvent.objects.get_or_create(
        event_id=notification.event_id,
        defaults={
            "event_type": notification.event_type,
            "order_id": notification.order_id,
            "payload": _json_payload(notification),
        },
    )
    if not created and event.status in (WebhookEvent.PROCESSED, WebhookEvent.IGNORED):
        logger.info("Webhook event %s already %s", event.event_id, event.status.lower())
        return event

    return handle_event(event, engine)


def handle_event(event: WebhookEvent, engine: ReconciliationEngine) -> WebhookEvent:
    event.attempts += 1
    status, error = _reconcile(event, engine)
    event.status = status
    event.last_error = error[:500]
    event.processed_at = timezone.now() if status != WebhookEvent.PARKED else None
    event.save(update_fields=["status", "attempts", "last_error", "processed_at"])
    return event


def retry_parked_events(engine: ReconciliationEngine, *, limit: int = 100) -> int:
    processed = 0
    for event in WebhookEvent.objects.filter(status=WebhookEvent.PARKED).order_by("received_at")[:limit]:
        if handle_event(event, engine).status != WebhookEvent.PARKED:
            processed += 1
    return processed


def _reconcile(event: WebhookEvent, engine: ReconciliationEngine):
    if not event.event_type.startswith(HANDLED_EVENT_PREFIXES):
        return WebhookEvent.IGNORED, ""
    if not event.order_id:
        logger.info("Webhook event %s carries no order id", event.event_id)
        return WebhookEvent.IGNORED, ""

    try:
        result = engine.reconcile_order(event.order_id)
    except NotFoundError:
        logger.warning("Webhook event %s references unknown order %s", event.event_id, event.order_id)
        return WebhookEvent.IGNORED, ""
    except Exception as exc:
        logger.exception("Parking webhook event %s after processing error", event.event_id)
        return WebhookEvent.PARKED, f"{type(exc).__name__}: {exc}"

    if result.outcome == ReconciliationOutcome.UNKNOWN:
        logger.warning("Parking webhook event %s; payment status unknown", event.event_id)
        return WebhookEvent.PARKED, result.message or "Payment status unknown."
    return WebhookEvent.PROCESSED, ""


def _json_payload(notification: WebhookNotification) -> dict:
    payload = notification.payload
    if hasattr(payload, "to_dict_recursive"):
        return payload.to_dict_recursive()
    if hasattr(payload, "to_dict"):
        return payload.to_dict()
    return dict(payload)
