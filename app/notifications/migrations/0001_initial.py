import uuid

from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Notification",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("recipient_id", models.UUIDField(db_index=True)),
                (
                    "event_type",
                    models.CharField(
                        choices=[
                            ("booking_paid", "Booking Paid"),
                            ("checked_in", "Checked In"),
                            ("checked_out", "Checked Out"),
                            ("booking_cancelled", "Booking Cancelled"),
                            ("dispute_opened", "Dispute Opened"),
                            ("dispute_escalated", "Dispute Escalated"),
                            ("dispute_resolved", "Dispute Resolved"),
                            ("payout_completed", "Payout Completed"),
                            ("refund_completed", "Refund Completed"),
                            ("release_needs_review", "Release Needs Review"),
                            ("withdrawal_completed", "Withdrawal Completed"),
                            ("withdrawal_failed", "Withdrawal Failed"),
                        ],
                        max_length=40,
                    ),
                ),
                ("title", models.CharField(max_length=500)),
                ("body", models.TextField(blank=True, default="")),
                ("data", models.JSONField(blank=True, default=dict)),
                ("booking_id", models.UUIDField(blank=True, db_index=True, null=True)),
                ("idempotency_key", models.CharField(blank=True, max_length=255, null=True)),
                ("is_read", models.BooleanField(db_index=True, default=False)),
                ("read_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["recipient_id", "is_read", "-created_at"],
                        name="notif_recipient_unread_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("idempotency_key__isnull", False)),
                        fields=("idempotency_key",),
                        name="notif_idempotency_key_unique",
                    ),
                ],
            },
        ),
    ]
