from rest_framework import serializers

from bookings.models import Booking, RefundRequest, Traveler, TravelerDocument
from payments.models import Payment


class TravelerDocumentSerializer(serializers.ModelSerializer):
    class Meta:
        model = TravelerDocument
        fields = ["id", "document_type", "document_number", "file_url"]


class TravelerSerializer(serializers.ModelSerializer):
    documents = TravelerDocumentSerializer(many=True, read_only=True)

    class Meta:
        model = Traveler
        fields = [
            "id",
            "full_name",
            "age",
            "gender",
            "email",
            "phone_number",
            "is_primary",
            "documents",
        ]


class TravelerDocumentInputSerializer(serializers.Serializer):
    document_type = serializers.ChoiceField(choices=TravelerDocument.DOCUMENT_TYPES, required=False)
    document_number = serializers.CharField(max_length=100)
    file_url = serializers.URLField(required=False, allow_blank=True, max_length=1000)


class TravelerInputSerializer(serializers.Serializer):
    full_name = serializers.CharField(max_length=200)
    age = serializers.IntegerField(required=False, allow_null=True, min_value=0, max_value=120)
    gender = serializers.CharField(required=False, allow_blank=True, max_length=20)
    email = serializers.EmailField(required=False, allow_blank=True)
    phone_number = serializers.CharField(required=False, allow_blank=True, max_length=30)
    documents = TravelerDocumentInputSerializer(many=True, required=False)


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            "id",
            "amount",
            "currency",
            "status",
            "payment_type",
            "gateway_payment_id",
            "created_at",
        ]


class BookingSerializer(serializers.ModelSerializer):
    package_title = serializers.CharField(source="tour_package.title", read_only=True)
    agency_name = serializers.CharField(source="agency.name", read_only=True)
    amount_due_now = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    travelers = TravelerSerializer(many=True, read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)

    class Meta:
        model = Booking
        fields = [
            "id",
            "tour_package",
            "package_title",
            "agency",
            "agency_name",
            "customer",
            "channel",
            "start_date",
            "end_date",
            "number_of_people",
            "total_price",
            "platform_fee",
            "agency_payout_amount",
            "amount_due_now",
            "payment_mode",
            "status",
            "payment_status",
            "gateway_order_id",
            "transaction_id",
            "failure_reason",
            "agency_approval",
            "partial_amount_paid",
            "refund_requested",
            "refund_status",
            "invoice_document",
            "notes",
            "travelers",
            "payments",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class BookingCreateSerializer(serializers.Serializer):
    tour_package = serializers.IntegerField(min_value=1)
    start_date = serializers.DateField(required=False, allow_null=True)
    number_of_people = serializers.IntegerField(required=False, min_value=1)
    payment_mode = serializers.ChoiceField(choices=Booking.PAYMENT_MODES, default=Booking.FULL)
    channel = serializers.ChoiceField(choices=Booking.CHANNELS, default=Booking.CHANNEL_CUSTOMER)
    customer = serializers.IntegerField(required=False, min_value=1)
    travelers = TravelerInputSerializer(many=True, required=False, default=list)
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs):
        if not attrs.get("number_of_people") and not attrs.get("travelers"):
            raise serializers.ValidationError("Provide number_of_people or at least one traveler.")
        if attrs.get("channel") == Booking.CHANNEL_AGENCY_OFFLINE and not attrs.get("customer"):
            raise serializers.ValidationError({"customer": "Offline bookings must name the customer."})
        return attrs


class CancellationSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=2000)


class RefundRequestSerializer(serializers.ModelSerializer):
    class Meta:
        model = RefundRequest
        fields = [
            "id",
            "booking",
            "amount",
            "reason",
            "status",
            "requested_by",
            "resolved_by",
            "resolution_note",
            "resolved_at",
            "created_at",
        ]
        read_only_fields = fields


class RefundResolutionSerializer(serializers.Serializer):
    approve = serializers.BooleanField()
    note = serializers.CharField(required=False, allow_blank=True, default="")


class BookingStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Booking.STATUSES)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500, default="")
