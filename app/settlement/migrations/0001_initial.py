import uuid
from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.db import migrations, models

BOOKING_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("paid", "Paid"),
    ("checked_in", "Checked In"),
    ("dispute_opened", "Dispute Opened"),
    ("checked_out", "Checked Out"),
    ("completed", "Completed"),
    ("cancelled", "Cancelled"),
]
PAYMENT_STATUS_CHOICES = [
    ("initiated", "Initiated"),
    ("held", "Held"),
    ("partially_released", "Partially Released"),
    ("settled", "Settled"),
    ("refunded", "Refunded"),
    ("failed", "Failed"),
]
COMPONENT_STATE_CHOICES = [
    ("not_held", "Not Held"),
    ("held", "Held"),
    ("settled", "Settled"),
    ("failed", "Failed"),
    ("admin_review", "Admin Review"),
]
CONFIRMATION_CHOICES = [
    ("guest", "Guest Confirmed"),
    ("operator", "Operator Confirmed"),
    ("auto_fallback", "Automatic Fallback"),
]
DISPUTE_CATEGORY_CHOICES = [
    ("SAFETY_UNINHABITABLE", "Safety / Uninhabitable"),
    ("MAJOR_MISREPRESENTATION", "Major Misrepresentation"),
    ("MISSING_AMENITIES_CLEANLINESS", "Missing Amenities / Cleanliness"),
    ("MINOR_INCONVENIENCE", "Minor Inconvenience"),
    ("PROPERTY_DAMAGE", "Property Damage"),
    ("MISSING_ITEMS", "Missing Items"),
    ("CLEANING_REQUIRED", "Cleaning Required"),
    ("OTHER_DEPOSIT_CLAIM", "Other Deposit Claim"),
]
DISPUTE_OUTCOME_CHOICES = [
    ("FULL_REFUND_EXECUTED", "Full Refund Executed"),
    ("PARTIAL_REFUND_EXECUTED", "Partial Refund Executed"),
    ("NO_REFUND_EXECUTED", "No Refund Executed"),
    ("DEPOSIT_RETURNED", "Deposit Returned"),
    ("DEPOSIT_PARTIAL", "Deposit Partially Returned"),
    ("DEPOSIT_FORFEITED", "Deposit Forfeited"),
]
ESCROW_EVENT_TYPE_CHOICES = [
    ("HOLD_ROOM_FEE", "Hold Room Fee"),
    ("HOLD_SECURITY_DEPOSIT", "Hold Security Deposit"),
    ("RELEASE_CLEANING_FEE", "Release Cleaning Fee"),
    ("COLLECT_SERVICE_FEE", "Collect Service Fee"),
    ("COLLECT_PLATFORM_FEE", "Collect Platform Fee"),
    ("RELEASE_ROOM_FEE_TO_OPERATOR", "Release Room Fee to Operator"),
    ("COLLECT_COMMISSION", "Collect Commission"),
    ("REFUND_ROOM_FEE_TO_GUEST", "Refund Room Fee to Guest"),
    ("RELEASE_DEPOSIT_TO_GUEST", "Release Deposit to Guest"),
    ("PAY_OPERATOR_FROM_DEPOSIT", "Pay Operator from Deposit"),
]
PARTY_CHOICES = [
    ("GUEST", "Guest"),
    ("ESCROW", "Escrow"),
    ("OPERATOR", "Operator"),
    ("PLATFORM", "Platform"),
]
TRANSACTION_SOURCE_CHOICES = [
    ("cleaning_fee", "Cleaning Fee"),
    ("service_fee", "Service Fee"),
    ("platform_fee", "Platform Fee"),
    ("room_fee", "Room Fee"),
    ("commission", "Commission"),
    ("deposit_deduction", "Deposit Deduction"),
    ("withdrawal", "Withdrawal"),
    ("withdrawal_fee", "Withdrawal Fee"),
    ("withdrawal_reversal", "Withdrawal Reversal"),
    ("withdrawal_fee_reversal", "Withdrawal Fee Reversal"),
]


def uuid_pk():
    return models.UUIDField(
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
        primary_key=True,
        serialize=False,
    )


def created_at():
    return models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this record was created",
    )


def updated_at():
    return models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when this record was last modified",
    )


def version():
    return models.PositiveIntegerField(
        default=1,
        help_text="Optimistic locking version, incremented on every save",
    )


def money(help_text, **kwargs):
    kwargs.setdefault("default", Decimal("0.00"))
    return models.DecimalField(decimal_places=2, help_text=help_text, max_digits=14, **kwargs)


def rate(help_text):
    return models.DecimalField(
        decimal_places=6, default=Decimal("0"), help_text=help_text, max_digits=7
    )


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        # =====================================================================
        # Wallet ledger
        # =====================================================================
        migrations.CreateModel(
            name="Wallet",
            fields=[
                ("version", version()),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                ("id", uuid_pk()),
                (
                    "owner_type",
                    models.CharField(
                        choices=[("operator", "Operator"), ("platform", "Platform")],
                        help_text="Kind of payee that owns this wallet",
                        max_length=20,
                    ),
                ),
                (
                    "owner_id",
                    models.UUIDField(
                        db_index=True,
                        help_text="UUID of the operator (or the platform owner id)",
                    ),
                ),
                (
                    "currency",
                    models.CharField(default="NGN", help_text="ISO 4217 currency code", max_length=3),
                ),
                (
                    "balance_available",
                    money("Sum of completed credits minus completed debits"),
                ),
                (
                    "balance_pending",
                    money("Withdrawal amounts in flight at the gateway"),
                ),
                (
                    "is_active",
                    models.BooleanField(
                        default=True,
                        help_text="Inactive wallets accept no new transactions",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("owner_type", "owner_id", "currency"),
                        name="unique_wallet_per_owner",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("balance_available__gte", 0)),
                        name="wallet_balance_available_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("balance_pending__gte", 0)),
                        name="wallet_balance_pending_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WalletTransaction",
            fields=[
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                ("id", uuid_pk()),
                (
                    "type",
                    models.CharField(
                        choices=[("credit", "Credit"), ("debit", "Debit")],
                        help_text="CREDIT increases the balance, DEBIT decreases it",
                        max_length=10,
                    ),
                ),
                (
                    "source",
                    models.CharField(
                        choices=TRANSACTION_SOURCE_CHOICES,
                        help_text="Business reason for the movement",
                        max_length=30,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("completed", "Completed")],
                        default="completed",
                        max_length=20,
                    ),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Always positive; direction comes from type",
                        max_digits=14,
                    ),
                ),
                ("currency", models.CharField(default="NGN", max_length=3)),
                (
                    "balance_after",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Wallet available balance right after this movement",
                        max_digits=14,
                    ),
                ),
                (
                    "reference",
                    models.CharField(
                        help_text="Idempotency key; one movement per reference",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "booking_id",
                    models.UUIDField(
                        blank=True,
                        db_index=True,
                        help_text="Booking this movement settles, if any",
                        null=True,
                    ),
                ),
                ("description", models.CharField(blank=True, default="", max_length=255)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "wallet",
                    models.ForeignKey(
                        help_text="Wallet whose balance moved",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="settlement.wallet",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["wallet", "created_at"], name="wallet_txn_wallet_created_idx"),
                    models.Index(fields=["source"], name="wallet_txn_source_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="wallet_transaction_amount_positive",
                    ),
                ],
            },
        ),
        # =====================================================================
        # Bookings
        # =====================================================================
        migrations.CreateModel(
            name="Booking",
            fields=[
                ("version", version()),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                ("id", uuid_pk()),
                ("guest_id", models.UUIDField(db_index=True, help_text="Guest user id")),
                (
                    "operator_id",
                    models.UUIDField(db_index=True, help_text="Property operator (payee) user id"),
                ),
                ("property_id", models.UUIDField(db_index=True, help_text="Listed property id")),
                ("check_in_date", models.DateField(help_text="Scheduled check-in date")),
                ("check_out_date", models.DateField(help_text="Scheduled check-out date")),
                (
                    "scheduled_check_in_at",
                    models.DateTimeField(
                        help_text="Scheduled check-in moment (date + property check-in time)"
                    ),
                ),
                (
                    "scheduled_check_out_at",
                    models.DateTimeField(
                        help_text="Scheduled checkout moment (date + property checkout time)"
                    ),
                ),
                ("nights", models.PositiveIntegerField(help_text="Number of nights")),
                ("nightly_rate", money("Price per night")),
                ("currency", models.CharField(default="NGN", max_length=3)),
                (
                    "room_fee",
                    money("nightly_rate x nights; held in escrow until check-in + window"),
                ),
                ("cleaning_fee", money("Paid to the operator immediately at capture")),
                ("security_deposit", money("Held in escrow until checkout + window")),
                ("service_fee", money("Guest-side platform service fee, collected at capture")),
                ("platform_fee", money("Additional guest-side platform surcharge")),
                ("processing_fee", money("Gateway processing fee absorbed by the platform")),
                (
                    "processing_mode",
                    models.CharField(
                        choices=[("local", "Local"), ("international", "International")],
                        default="local",
                        max_length=20,
                    ),
                ),
                ("total_amount", money("Total the guest must pay")),
                ("commission_base_rate", rate("Tier rate before volume discount")),
                ("commission_volume_reduction", rate("Volume discount applied to the tier rate")),
                ("commission_effective_rate", rate("Rate used for every room fee split")),
                ("commission_amount", money("Platform commission on the full room fee")),
                ("operator_room_payout", money("Room fee minus commission")),
                (
                    "pricing_snapshot",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Full quote and config version used to price this booking",
                    ),
                ),
                (
                    "gateway",
                    models.CharField(
                        help_text="Payment gateway name (key of settings.PAYMENT_GATEWAYS)",
                        max_length=30,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=BOOKING_STATUS_CHOICES,
                        db_index=True,
                        default="pending",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("checked_in_at", models.DateTimeField(blank=True, null=True)),
                (
                    "check_in_confirmation",
                    models.CharField(
                        blank=True, choices=CONFIRMATION_CHOICES, default="", max_length=20
                    ),
                ),
                (
                    "room_fee_release_eligible_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="Check-in + guest dispute window",
                        null=True,
                    ),
                ),
                ("checked_out_at", models.DateTimeField(blank=True, null=True)),
                (
                    "check_out_confirmation",
                    models.CharField(
                        blank=True, choices=CONFIRMATION_CHOICES, default="", max_length=20
                    ),
                ),
                (
                    "deposit_release_eligible_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="Checkout + operator dispute window",
                        null=True,
                    ),
                ),
                ("guest_dispute_opened", models.BooleanField(default=False)),
                ("operator_dispute_opened", models.BooleanField(default=False)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "cancellation_reason",
                    models.CharField(blank=True, default="", max_length=255),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "room_fee_release_eligible_at"],
                        name="booking_room_fee_release_idx",
                    ),
                    models.Index(
                        fields=["status", "deposit_release_eligible_at"],
                        name="booking_deposit_release_idx",
                    ),
                    models.Index(fields=["operator_id", "paid_at"], name="booking_operator_paid_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("room_fee__gt", 0)),
                        name="booking_room_fee_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("check_out_date__gt", models.F("check_in_date"))),
                        name="booking_checkout_after_checkin",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("version", version()),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                ("id", uuid_pk()),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=PAYMENT_STATUS_CHOICES,
                        db_index=True,
                        default="initiated",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("amount_captured", money("Amount verified at the gateway")),
                ("currency", models.CharField(default="NGN", max_length=3)),
                ("gateway", models.CharField(max_length=30)),
                (
                    "provider_reference",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Gateway payment reference supplied by the client",
                        max_length=255,
                    ),
                ),
                (
                    "provider_transaction_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Gateway transaction id returned by verification",
                        max_length=255,
                    ),
                ),
                ("room_fee_in_escrow", models.BooleanField(default=False)),
                ("deposit_in_escrow", models.BooleanField(default=False)),
                ("cleaning_fee_released", models.BooleanField(default=False)),
                ("service_fee_collected", models.BooleanField(default=False)),
                (
                    "room_fee_state",
                    models.CharField(
                        choices=COMPONENT_STATE_CHOICES,
                        db_index=True,
                        default="not_held",
                        max_length=20,
                    ),
                ),
                ("room_fee_attempts", models.PositiveIntegerField(default=0)),
                ("room_fee_next_attempt_at", models.DateTimeField(blank=True, null=True)),
                ("room_fee_last_error", models.TextField(blank=True, default="")),
                ("room_fee_released_at", models.DateTimeField(blank=True, null=True)),
                (
                    "deposit_state",
                    models.CharField(
                        choices=COMPONENT_STATE_CHOICES,
                        db_index=True,
                        default="not_held",
                        max_length=20,
                    ),
                ),
                ("deposit_attempts", models.PositiveIntegerField(default=0)),
                ("deposit_next_attempt_at", models.DateTimeField(blank=True, null=True)),
                ("deposit_last_error", models.TextField(blank=True, default="")),
                ("deposit_released_at", models.DateTimeField(blank=True, null=True)),
                ("held_at", models.DateTimeField(blank=True, null=True)),
                ("settled_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("failure_reason", models.TextField(blank=True, default="")),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "booking",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment",
                        to="settlement.booking",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_captured__gte", 0)),
                        name="payment_amount_captured_non_negative",
                    ),
                ],
            },
        ),
        # =====================================================================
        # Disputes & escrow log
        # =====================================================================
        migrations.CreateModel(
            name="Dispute",
            fields=[
                ("version", version()),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                ("id", uuid_pk()),
                (
                    "subject",
                    models.CharField(
                        choices=[("room_fee", "Room Fee"), ("security_deposit", "Security Deposit")],
                        max_length=20,
                    ),
                ),
                ("category", models.CharField(choices=DISPUTE_CATEGORY_CHOICES, max_length=40)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("open", "Open"),
                            ("awaiting_response", "Awaiting Response"),
                            ("escalated", "Escalated"),
                            ("resolved", "Resolved"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="open",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "opened_by",
                    models.UUIDField(help_text="Claimant (guest or operator) user id"),
                ),
                ("claimed_amount", money("Amount claimed, capped at the subject amount")),
                ("subject_amount", money("Escrowed amount under dispute")),
                (
                    "max_refund_percent",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0"),
                        help_text="Category ceiling as a percentage of the claimed amount",
                        max_digits=5,
                    ),
                ),
                ("max_award_amount", money("Largest award the category allows")),
                ("description", models.TextField(blank=True, default="")),
                ("attachments", models.JSONField(blank=True, default=list)),
                (
                    "response_deadline_at",
                    models.DateTimeField(blank=True, db_index=True, null=True),
                ),
                ("responded_by", models.UUIDField(blank=True, null=True)),
                (
                    "response_action",
                    models.CharField(
                        blank=True,
                        choices=[("accept", "Accept"), ("reject_escalate", "Reject and Escalate")],
                        default="",
                        max_length=20,
                    ),
                ),
                ("response_notes", models.TextField(blank=True, default="")),
                ("responded_at", models.DateTimeField(blank=True, null=True)),
                ("escalated_at", models.DateTimeField(blank=True, null=True)),
                ("admin_deadline_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("admin_id", models.UUIDField(blank=True, null=True)),
                (
                    "admin_decision",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("full_refund", "Full Refund"),
                            ("partial_refund", "Partial Refund"),
                            ("no_refund", "No Refund"),
                        ],
                        default="",
                        max_length=20,
                    ),
                ),
                (
                    "admin_amount",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True),
                ),
                ("admin_notes", models.TextField(blank=True, default="")),
                (
                    "final_outcome",
                    models.CharField(
                        blank=True, choices=DISPUTE_OUTCOME_CHOICES, default="", max_length=30
                    ),
                ),
                ("guest_refund_amount", money("Amount returned to the guest")),
                ("operator_payout_amount", money("Amount paid to the operator")),
                ("platform_fee_amount", money("Commission the platform keeps")),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                (
                    "executed_at",
                    models.DateTimeField(
                        blank=True, help_text="When escrow executed the resolution", null=True
                    ),
                ),
                ("auto_resolved", models.BooleanField(default=False)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="disputes",
                        to="settlement.booking",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(
                            ("status__in", ("open", "awaiting_response", "escalated"))
                        ),
                        fields=("booking", "subject"),
                        name="dispute_one_open_per_subject",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("claimed_amount__gte", 0)),
                        name="dispute_claimed_amount_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="EscrowEvent",
            fields=[
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                ("id", uuid_pk()),
                (
                    "event_type",
                    models.CharField(
                        choices=ESCROW_EVENT_TYPE_CHOICES, db_index=True, max_length=40
                    ),
                ),
                ("amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("currency", models.CharField(max_length=3)),
                ("from_party", models.CharField(choices=PARTY_CHOICES, max_length=10)),
                ("to_party", models.CharField(choices=PARTY_CHOICES, max_length=10)),
                ("executed_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("reference", models.CharField(max_length=255, unique=True)),
                (
                    "provider_reference",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Gateway transfer reference for movements to the guest",
                        max_length=255,
                    ),
                ),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrow_events",
                        to="settlement.booking",
                    ),
                ),
                (
                    "dispute",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrow_events",
                        to="settlement.dispute",
                    ),
                ),
            ],
            options={
                "ordering": ["executed_at", "created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="escrow_event_amount_positive",
                    ),
                ],
            },
        ),
        # =====================================================================
        # Scheduling & configuration
        # =====================================================================
        migrations.CreateModel(
            name="JobLock",
            fields=[
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                ("id", uuid_pk()),
                ("job_name", models.CharField(max_length=100, unique=True)),
                ("locked_by", models.CharField(max_length=255)),
                ("locked_at", models.DateTimeField()),
                ("expires_at", models.DateTimeField(db_index=True)),
                (
                    "booking_ids",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="Bookings queued by the sweep holding this lock",
                    ),
                ),
            ],
            options={"ordering": ["job_name"]},
        ),
        migrations.CreateModel(
            name="PlatformSetting",
            fields=[
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                ("id", uuid_pk()),
                ("key", models.CharField(db_index=True, max_length=120)),
                ("version", models.PositiveIntegerField(default=1)),
                ("value", models.JSONField()),
                ("description", models.TextField(blank=True, default="")),
                ("is_active", models.BooleanField(default=True)),
                ("created_by", models.UUIDField(blank=True, null=True)),
            ],
            options={
                "ordering": ["key", "-version"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("key", "version"),
                        name="platform_setting_unique_key_version",
                    ),
                ],
            },
        ),
        # =====================================================================
        # Withdrawals
        # =====================================================================
        migrations.CreateModel(
            name="WithdrawalRequest",
            fields=[
                ("version", version()),
                ("created_at", created_at()),
                ("updated_at", updated_at()),
                ("id", uuid_pk()),
                ("operator_id", models.UUIDField(db_index=True)),
                ("amount", money("Gross amount debited from the wallet")),
                ("fee_amount", money("Withdrawal fee credited to the platform")),
                ("net_amount", money("Amount transferred to the operator")),
                ("currency", models.CharField(max_length=3)),
                ("gateway", models.CharField(max_length=30)),
                (
                    "destination_account",
                    models.CharField(
                        help_text="Gateway recipient code / connected account id",
                        max_length=255,
                    ),
                ),
                ("reference", models.CharField(max_length=255, unique=True)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("next_attempt_at", models.DateTimeField(blank=True, null=True)),
                ("provider_reference", models.CharField(blank=True, default="", max_length=255)),
                ("failure_reason", models.TextField(blank=True, default="")),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "wallet",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="withdrawals",
                        to="settlement.wallet",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="withdrawal_amount_positive",
                    ),
                ],
            },
        ),
    ]
