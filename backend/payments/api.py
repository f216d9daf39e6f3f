import logging

from rest_framework import permissions, status
from rest_framework.exceptions import PermissionDenied
from rest_framework.response import Response
from rest_framework.views import APIView

from agencies.permissions import user_can_manage_agency
from bookings.repository import BookingRepository
from bookings.serializers import BookingSerializer
from bookings.services.dispatcher import build_dispatcher
from core.exceptions import InvalidInputError
from payments.gateway import WebhookSignatureError, build_gateway
from payments.services.reconciliation import ReconciliationEngine
from payments.services.webhooks import process_webhook

logger = logging.getLogger(__name__)


class PaymentReturnView(APIView):
    """Reconcile a booking when the payer comes back from checkout."""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, *args, **kwargs):
        booking_id = request.query_params.get("booking_id", "").strip()
        if not booking_id:
            raise InvalidInputError("booking_id is required.")

        repository = BookingRepository()
        booking = repository.get(booking_id)
        user = request.user
        if not (
            booking.customer_id == user.pk
            or user.is_superuser
            or user.is_platform_admin
            or user_can_manage_agency(user, booking.agency_id)
        ):
            raise PermissionDenied("Not permitted.")

        engine = ReconciliationEngine(gateway=build_gateway(), repository=repository, dispatcher=build_dispatcher())
        result = engine.reconcile_booking(booking.pk)
        booking = repository.get(booking.pk)
        return Response(
            {
                "booking": BookingSerializer(booking).data,
                "outcome": result.outcome.value,
                "message": result.message,
            }
        )


class PaymentWebhookView(APIView):
    """Receive payment provider webhooks; always acknowledged once the signature checks out."""

    permission_classes: list = []
    authentication_classes: list = []

    def post(self, request, *args, **kwargs):
        payload = request.body
        signature = request.META.get("HTTP_STRIPE_SIGNATURE")
        gateway = build_gateway()
        engine = ReconciliationEngine(gateway=gateway, dispatcher=build_dispatcher())

        try:
            process_webhook(payload, signature, gateway=gateway, engine=engine)
        except WebhookSignatureError:
            logger.warning("Invalid payment webhook signature.")
            return Response(status=status.HTTP_400_BAD_REQUEST)
        except RuntimeError as exc:
            logger.error("Payment webhook not configured: %s", exc)
            return Response(status=status.HTTP_500_INTERNAL_SERVER_ERROR)
        except Exception:
            logger.exception("Unhandled error while processing payment webhook")
        return Response({"received": True}, status=status.HTTP_200_OK)
