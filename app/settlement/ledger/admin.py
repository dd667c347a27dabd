"""
Django admin configuration for wallet models.

WalletTransaction rows are immutable: no add, edit or delete. Corrections
are made with compensating transactions through WalletService.
"""

from django.contrib import admin

from .models import Wallet, WalletTransaction


@admin.register(Wallet)
class WalletAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "owner_type",
        "owner_id",
        "currency",
        "balance_available",
        "balance_pending",
        "is_active",
        "created_at",
    ]
    list_filter = ["owner_type", "currency", "is_active"]
    search_fields = ["id", "owner_id"]
    readonly_fields = [
        "id",
        "owner_type",
        "owner_id",
        "currency",
        "balance_available",
        "balance_pending",
        "version",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(WalletTransaction)
class WalletTransactionAdmin(admin.ModelAdmin):
    """
    Wallet transactions are append-only.

    Balances are derived from this log, so rows are never edited here.
    """

    list_display = [
        "id",
        "created_at",
        "wallet",
        "type",
        "source",
        "status",
        "amount",
        "currency",
        "balance_after",
        "booking_id",
    ]
    list_filter = ["type", "source", "status", "currency", "created_at"]
    search_fields = ["id", "reference", "booking_id", "description"]
    readonly_fields = [
        "id",
        "wallet",
        "type",
        "source",
        "status",
        "amount",
        "currency",
        "balance_after",
        "reference",
        "booking_id",
        "description",
        "metadata",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
