"""
Settlement admin configuration.

State changes go through the service layer; lifecycle fields are read-only
here. EscrowEvent and the wallet ledger are immutable audit trails.
"""

from django.contrib import admin

from settlement.ledger.admin import WalletAdmin, WalletTransactionAdmin
from settlement.models import (
    Booking,
    Dispute,
    EscrowEvent,
    JobLock,
    Payment,
    PlatformSetting,
    WithdrawalRequest,
)

__all__ = [
    "BookingAdmin",
    "DisputeAdmin",
    "EscrowEventAdmin",
    "JobLockAdmin",
    "PaymentAdmin",
    "PlatformSettingAdmin",
    "WalletAdmin",
    "WalletTransactionAdmin",
    "WithdrawalRequestAdmin",
]


class PaymentInline(admin.StackedInline):
    model = Payment
    extra = 0
    can_delete = False
    fields = [
        "status",
        "amount_captured",
        "room_fee_state",
        "room_fee_attempts",
        "room_fee_last_error",
        "deposit_state",
        "deposit_attempts",
        "deposit_last_error",
    ]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None) -> bool:
        return False


class EscrowEventInline(admin.TabularInline):
    model = EscrowEvent
    extra = 0
    can_delete = False
    fields = ["executed_at", "event_type", "amount", "from_party", "to_party", "reference"]
    readonly_fields = fields
    ordering = ["executed_at", "created_at"]

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    """Bookings with their fee breakdown, commission snapshot and escrow log."""

    list_display = [
        "id",
        "status",
        "operator_id",
        "guest_id",
        "check_in_date",
        "check_out_date",
        "total_amount",
        "currency",
        "created_at",
    ]
    list_filter = ["status", "currency", "gateway", "processing_mode"]
    search_fields = ["id", "guest_id", "operator_id", "property_id"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [PaymentInline, EscrowEventInline]
    readonly_fields = [
        "id",
        "status",
        "version",
        "pricing_snapshot",
        "commission_base_rate",
        "commission_volume_reduction",
        "commission_effective_rate",
        "commission_amount",
        "operator_room_payout",
        "paid_at",
        "checked_in_at",
        "room_fee_release_eligible_at",
        "checked_out_at",
        "deposit_release_eligible_at",
        "completed_at",
        "cancelled_at",
        "created_at",
        "updated_at",
    ]

    fieldsets = (
        (None, {"fields": ("id", "status", "guest_id", "operator_id", "property_id")}),
        (
            "Stay",
            {
                "fields": (
                    "check_in_date",
                    "check_out_date",
                    "scheduled_check_in_at",
                    "scheduled_check_out_at",
                    "nights",
                    "nightly_rate",
                ),
            },
        ),
        (
            "Fees",
            {
                "fields": (
                    "currency",
                    "room_fee",
                    "cleaning_fee",
                    "security_deposit",
                    "service_fee",
                    "platform_fee",
                    "processing_fee",
                    "processing_mode",
                    "total_amount",
                    "gateway",
                ),
            },
        ),
        (
            "Commission Snapshot",
            {
                "fields": (
                    "commission_base_rate",
                    "commission_volume_reduction",
                    "commission_effective_rate",
                    "commission_amount",
                    "operator_room_payout",
                    "pricing_snapshot",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Lifecycle",
            {
                "fields": (
                    "paid_at",
                    "checked_in_at",
                    "room_fee_release_eligible_at",
                    "checked_out_at",
                    "deposit_release_eligible_at",
                    "completed_at",
                    "cancelled_at",
                    "cancellation_reason",
                ),
            },
        ),
        ("Timestamps", {"fields": ("version", "created_at", "updated_at")}),
    )

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "booking",
        "status",
        "amount_captured",
        "room_fee_state",
        "deposit_state",
        "gateway",
        "created_at",
    ]
    list_filter = ["status", "room_fee_state", "deposit_state", "gateway"]
    search_fields = ["id", "booking__id", "provider_reference", "provider_transaction_id"]
    readonly_fields = [
        "id",
        "booking",
        "status",
        "amount_captured",
        "room_fee_state",
        "deposit_state",
        "held_at",
        "settled_at",
        "refunded_at",
        "failed_at",
        "version",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    """
    Disputes are resolved through the API (respond/resolve), not by editing
    status here.
    """

    list_display = [
        "id",
        "booking",
        "subject",
        "category",
        "status",
        "claimed_amount",
        "max_award_amount",
        "final_outcome",
        "auto_resolved",
        "created_at",
    ]
    list_filter = ["subject", "category", "status", "final_outcome", "auto_resolved"]
    search_fields = ["id", "booking__id", "opened_by"]
    readonly_fields = [
        "id",
        "booking",
        "status",
        "opened_by",
        "claimed_amount",
        "subject_amount",
        "max_refund_percent",
        "max_award_amount",
        "response_deadline_at",
        "escalated_at",
        "admin_deadline_at",
        "final_outcome",
        "guest_refund_amount",
        "operator_payout_amount",
        "platform_fee_amount",
        "resolved_at",
        "executed_at",
        "auto_resolved",
        "version",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(EscrowEvent)
class EscrowEventAdmin(admin.ModelAdmin):
    """Escrow events are an append-only log; no add, edit or delete."""

    list_display = [
        "executed_at",
        "booking",
        "event_type",
        "amount",
        "currency",
        "from_party",
        "to_party",
        "reference",
    ]
    list_filter = ["event_type", "from_party", "to_party", "currency"]
    search_fields = ["id", "booking__id", "reference", "provider_reference"]
    date_hierarchy = "executed_at"
    ordering = ["-executed_at"]

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(PlatformSetting)
class PlatformSettingAdmin(admin.ModelAdmin):
    """
    New versions are appended; existing versions are never edited so a
    booking's pricing snapshot can always be traced to its inputs.
    """

    list_display = ["key", "version", "is_active", "created_by", "created_at"]
    list_filter = ["key", "is_active"]
    search_fields = ["key", "description"]
    ordering = ["key", "-version"]

    def get_readonly_fields(self, request, obj=None):
        if obj is None:
            return ["created_at", "updated_at"]
        return ["key", "version", "value", "created_by", "created_at", "updated_at"]


@admin.register(JobLock)
class JobLockAdmin(admin.ModelAdmin):
    list_display = ["job_name", "locked_by", "locked_at", "expires_at"]
    readonly_fields = ["job_name", "locked_by", "locked_at", "expires_at", "booking_ids"]
    ordering = ["job_name"]

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(WithdrawalRequest)
class WithdrawalRequestAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "operator_id",
        "status",
        "amount",
        "fee_amount",
        "net_amount",
        "currency",
        "attempts",
        "created_at",
    ]
    list_filter = ["status", "currency", "gateway"]
    search_fields = ["id", "operator_id", "reference", "provider_reference"]
    readonly_fields = [
        "id",
        "wallet",
        "operator_id",
        "status",
        "amount",
        "fee_amount",
        "net_amount",
        "reference",
        "attempts",
        "next_attempt_at",
        "provider_reference",
        "failure_reason",
        "completed_at",
        "failed_at",
        "version",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
