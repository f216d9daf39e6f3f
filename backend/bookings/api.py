from django.core.files.storage import default_storage
from django.db.models import Q
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import PermissionDenied
from rest_framework.response import Response
from rest_framework.views import APIView

from agencies.permissions import IsPlatformAdmin, managed_agency_ids, user_can_manage_agency
from bookings.models import Booking
from bookings.repository import BookingRepository
from bookings.serializers import (
    BookingCreateSerializer,
    BookingSerializer,
    BookingStatusSerializer,
    CancellationSerializer,
    RefundRequestSerializer,
    RefundResolutionSerializer,
)
from bookings.services.cancellation import CancellationWorkflow
from bookings.services.dispatcher import build_dispatcher
from bookings.services.orchestrator import BookingRequest, PaymentOrchestrator
from core.exceptions import InvalidStateError
from payments.gateway import build_gateway
from tours.catalog import get_package


def _is_admin(user) -> bool:
    return user.is_superuser or user.is_platform_admin


class BookingViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    serializer_class = BookingSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["status", "payment_status", "payment_mode", "agency", "tour_package"]
    ordering_fields = ["created_at", "start_date", "total_price"]

    def get_queryset(self):
        user = self.request.user
        queryset = Booking.objects.select_related("tour_package", "agency", "customer").prefetch_related(
            "travelers__documents",
            "payments",
        )
        if _is_admin(user):
            return queryset
        return queryset.filter(Q(customer=user) | Q(agency_id__in=managed_agency_ids(user)))

    def get_serializer_class(self):
        if self.action == "create":
            return BookingCreateSerializer
        return super().get_serializer_class()

    def _checkout_response(self, checkout, orchestrator, *, status_code):
        booking = orchestrator.repository.get(checkout.booking.pk)
        return Response(
            {
                "booking": BookingSerializer(booking, context=self.get_serializer_context()).data,
                "payment_url": checkout.payment_url,
                "payment_session_id": checkout.payment_session_id,
            },
            status=status_code,
        )

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        user = request.user

        customer_id = user.pk
        if data["channel"] == Booking.CHANNEL_AGENCY_OFFLINE:
            quote = get_package(data["tour_package"])
            if not user_can_manage_agency(user, quote.agency_id):
                raise PermissionDenied("Only agency staff can record offline bookings.")
            customer_id = data["customer"]
        elif data.get("customer") and data["customer"] != user.pk:
            if not _is_admin(user):
                raise PermissionDenied("You can only book for yourself.")
            customer_id = data["customer"]

        orchestrator = PaymentOrchestrator(gateway=build_gateway())
        checkout = orchestrator.create_booking(
            BookingRequest(
                package_id=data["tour_package"],
                customer_id=customer_id,
                start_date=data.get("start_date"),
                number_of_people=data.get("number_of_people"),
                payment_mode=data["payment_mode"],
                channel=data["channel"],
                travelers=[dict(traveler) for traveler in data.get("travelers", [])],
                notes=data.get("notes", ""),
                created_by_id=user.pk,
            )
        )
        return self._checkout_response(checkout, orchestrator, status_code=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="resume-payment")
    def resume_payment(self, request, pk=None):
        booking = self.get_object()
        if booking.customer_id != request.user.pk and not user_can_manage_agency(request.user, booking.agency_id):
            raise PermissionDenied("Not permitted.")

        orchestrator = PaymentOrchestrator(gateway=build_gateway())
        checkout = orchestrator.resume_payment(booking.pk)
        return self._checkout_response(checkout, orchestrator, status_code=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        booking = self.get_object()
        if booking.customer_id != request.user.pk and not _is_admin(request.user):
            raise PermissionDenied("Only the customer can cancel this booking.")

        serializer = CancellationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        workflow = CancellationWorkflow(dispatcher=build_dispatcher())
        refund = workflow.request_cancellation(booking.pk, request.user, serializer.validated_data["reason"])
        return Response(RefundRequestSerializer(refund).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="status")
    def update_status(self, request, pk=None):
        booking = self.get_object()
        if not (_is_admin(request.user) or user_can_manage_agency(request.user, booking.agency_id)):
            raise PermissionDenied("Only agency staff can update the booking status.")

        serializer = BookingStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        repository = BookingRepository()
        repository.update_status(
            booking.pk,
            serializer.validated_data["status"],
            request.user,
            reason=serializer.validated_data["reason"],
        )
        booking = repository.get(booking.pk)
        return Response(BookingSerializer(booking, context=self.get_serializer_context()).data)

    @action(detail=True, methods=["get"], url_path="invoice")
    def invoice(self, request, pk=None):
        booking = self.get_object()
        if booking.payment_status != Booking.PAYMENT_SUCCESS:
            raise InvalidStateError("No invoice is available until the booking is paid.", booking_id=booking.pk)

        document_ref = booking.invoice_document
        if not document_ref or not default_storage.exists(document_ref):
            document_ref = build_dispatcher().generate_invoice(booking)
            BookingRepository().record_invoice(booking.pk, document_ref)
        return Response({"invoice_document": document_ref, "url": default_storage.url(document_ref)})


class RefundRequestResolveView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsPlatformAdmin]

    def post(self, request, pk):
        serializer = RefundResolutionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        workflow = CancellationWorkflow()
        refund = workflow.resolve_refund(
            pk,
            request.user,
            approve=serializer.validated_data["approve"],
            note=serializer.validated_data["note"],
        )
        return Response(RefundRequestSerializer(refund).data)
