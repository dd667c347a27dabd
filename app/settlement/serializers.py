"""
Serializers for the settlement API.

Request serializers validate input shape only; business rules (windows,
ceilings, state) are enforced by the services.
"""

from decimal import Decimal

from rest_framework import serializers

from settlement.ledger import Wallet, WalletService, WalletTransaction
from settlement.models import (
    Booking,
    Dispute,
    EscrowEvent,
    Payment,
    WithdrawalRequest,
    replay_escrow_events,
)
from settlement.state_machines import (
    AdminDecision,
    DisputeCategory,
    DisputeResponseAction,
    DisputeSubject,
    ProcessingMode,
)

MONEY = {"max_digits": 14, "decimal_places": 2}


# =============================================================================
# Requests
# =============================================================================


class QuoteRequestSerializer(serializers.Serializer):
    operator_id = serializers.UUIDField()
    nightly_rate = serializers.DecimalField(min_value=Decimal("0.01"), **MONEY)
    nights = serializers.IntegerField(min_value=1)
    cleaning_fee = serializers.DecimalField(min_value=Decimal("0"), default=Decimal("0"), **MONEY)
    security_deposit = serializers.DecimalField(min_value=Decimal("0"), default=Decimal("0"), **MONEY)
    platform_fee = serializers.DecimalField(min_value=Decimal("0"), default=Decimal("0"), **MONEY)
    processing_mode = serializers.ChoiceField(
        choices=ProcessingMode.choices, default=ProcessingMode.LOCAL
    )


class BookingCreateSerializer(serializers.Serializer):
    operator_id = serializers.UUIDField()
    property_id = serializers.UUIDField()
    check_in_date = serializers.DateField()
    check_out_date = serializers.DateField()
    nightly_rate = serializers.DecimalField(min_value=Decimal("0.01"), **MONEY)
    cleaning_fee = serializers.DecimalField(min_value=Decimal("0"), default=Decimal("0"), **MONEY)
    security_deposit = serializers.DecimalField(min_value=Decimal("0"), default=Decimal("0"), **MONEY)
    platform_fee = serializers.DecimalField(min_value=Decimal("0"), default=Decimal("0"), **MONEY)
    processing_mode = serializers.ChoiceField(
        choices=ProcessingMode.choices, default=ProcessingMode.LOCAL
    )
    gateway = serializers.CharField(required=False, allow_blank=False)
    currency = serializers.CharField(required=False, min_length=3, max_length=3)


class ConfirmPaymentSerializer(serializers.Serializer):
    provider_reference = serializers.CharField(max_length=255)


class CancelBookingSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class RetryReleaseSerializer(serializers.Serializer):
    component = serializers.ChoiceField(choices=[("room_fee", "Room fee"), ("deposit", "Security deposit")])


class OpenDisputeSerializer(serializers.Serializer):
    subject = serializers.ChoiceField(choices=DisputeSubject.choices)
    category = serializers.ChoiceField(choices=DisputeCategory.choices)
    claimed_amount = serializers.DecimalField(
        required=False, min_value=Decimal("0.01"), **MONEY
    )
    description = serializers.CharField(required=False, allow_blank=True, default="")
    attachments = serializers.ListField(
        child=serializers.CharField(max_length=500), required=False, default=list
    )


class RespondDisputeSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=DisputeResponseAction.choices)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class ResolveDisputeSerializer(serializers.Serializer):
    decision = serializers.ChoiceField(choices=AdminDecision.choices)
    amount = serializers.DecimalField(required=False, min_value=Decimal("0"), **MONEY)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    expected_version = serializers.IntegerField(required=False, min_value=1)


class WithdrawalCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(min_value=Decimal("0.01"), **MONEY)
    destination_account = serializers.CharField(max_length=255)
    gateway = serializers.CharField(required=False)
    currency = serializers.CharField(required=False, min_length=3, max_length=3)


# =============================================================================
# Responses
# =============================================================================


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            "id",
            "status",
            "amount_captured",
            "currency",
            "gateway",
            "provider_reference",
            "room_fee_in_escrow",
            "deposit_in_escrow",
            "cleaning_fee_released",
            "service_fee_collected",
            "room_fee_state",
            "room_fee_attempts",
            "room_fee_next_attempt_at",
            "deposit_state",
            "deposit_attempts",
            "deposit_next_attempt_at",
            "held_at",
            "settled_at",
            "refunded_at",
            "failed_at",
            "failure_reason",
        ]
        read_only_fields = fields


class EscrowEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = EscrowEvent
        fields = [
            "id",
            "event_type",
            "amount",
            "currency",
            "from_party",
            "to_party",
            "executed_at",
            "reference",
            "dispute",
        ]
        read_only_fields = fields


class BookingSerializer(serializers.ModelSerializer):
    payment = PaymentSerializer(read_only=True)

    class Meta:
        model = Booking
        fields = [
            "id",
            "status",
            "guest_id",
            "operator_id",
            "property_id",
            "check_in_date",
            "check_out_date",
            "scheduled_check_in_at",
            "scheduled_check_out_at",
            "nights",
            "nightly_rate",
            "currency",
            "room_fee",
            "cleaning_fee",
            "security_deposit",
            "service_fee",
            "platform_fee",
            "processing_fee",
            "processing_mode",
            "total_amount",
            "commission_base_rate",
            "commission_volume_reduction",
            "commission_effective_rate",
            "commission_amount",
            "operator_room_payout",
            "gateway",
            "paid_at",
            "checked_in_at",
            "check_in_confirmation",
            "room_fee_release_eligible_at",
            "checked_out_at",
            "check_out_confirmation",
            "deposit_release_eligible_at",
            "completed_at",
            "cancelled_at",
            "cancellation_reason",
            "version",
            "payment",
            "created_at",
        ]
        read_only_fields = fields


class BookingDetailSerializer(BookingSerializer):
    """Booking with its escrow log and the state folded from it."""

    escrow_events = EscrowEventSerializer(many=True, read_only=True)
    escrow_state = serializers.SerializerMethodField()

    class Meta(BookingSerializer.Meta):
        fields = [*BookingSerializer.Meta.fields, "pricing_snapshot", "escrow_events", "escrow_state"]
        read_only_fields = fields

    def get_escrow_state(self, obj) -> dict:
        return replay_escrow_events(obj.escrow_events.all()).as_dict()


class DisputeSerializer(serializers.ModelSerializer):
    class Meta:
        model = Dispute
        fields = [
            "id",
            "booking",
            "subject",
            "category",
            "status",
            "opened_by",
            "claimed_amount",
            "subject_amount",
            "max_refund_percent",
            "max_award_amount",
            "description",
            "attachments",
            "response_deadline_at",
            "response_action",
            "responded_at",
            "escalated_at",
            "admin_deadline_at",
            "admin_decision",
            "admin_amount",
            "final_outcome",
            "guest_refund_amount",
            "operator_payout_amount",
            "platform_fee_amount",
            "resolved_at",
            "executed_at",
            "auto_resolved",
            "cancelled_at",
            "version",
            "created_at",
        ]
        read_only_fields = fields


class WalletTransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = WalletTransaction
        fields = [
            "id",
            "type",
            "source",
            "status",
            "amount",
            "currency",
            "balance_after",
            "reference",
            "booking_id",
            "description",
            "created_at",
        ]
        read_only_fields = fields


class WalletSerializer(serializers.ModelSerializer):
    recent_transactions = serializers.SerializerMethodField()

    class Meta:
        model = Wallet
        fields = [
            "id",
            "owner_type",
            "owner_id",
            "currency",
            "balance_available",
            "balance_pending",
            "recent_transactions",
        ]
        read_only_fields = fields

    def get_recent_transactions(self, obj) -> list:
        limit = self.context.get("limit", 50)
        return WalletTransactionSerializer(
            WalletService.recent_transactions(obj.id, limit=limit), many=True
        ).data


class WithdrawalSerializer(serializers.ModelSerializer):
    class Meta:
        model = WithdrawalRequest
        fields = [
            "id",
            "operator_id",
            "status",
            "amount",
            "fee_amount",
            "net_amount",
            "currency",
            "gateway",
            "destination_account",
            "reference",
            "attempts",
            "provider_reference",
            "failure_reason",
            "completed_at",
            "failed_at",
            "created_at",
        ]
        read_only_fields = fields


class QuoteResponseSerializer(serializers.Serializer):
    """Shape of BookingQuote.to_snapshot(), for the schema."""

    nights = serializers.IntegerField()
    nightly_rate = serializers.CharField()
    room_fee = serializers.CharField()
    cleaning_fee = serializers.CharField()
    security_deposit = serializers.CharField()
    service_fee = serializers.CharField()
    platform_fee = serializers.CharField()
    processing_fee = serializers.CharField()
    processing_mode = serializers.CharField()
    total_payable = serializers.CharField()
    commission = serializers.DictField()
    volume_progress = serializers.DictField()
    service_fee_cap_applied = serializers.BooleanField()
    processing_fee_cap_applied = serializers.BooleanField()
    estimated_operator_payout = serializers.CharField()
    config_version = serializers.CharField()
