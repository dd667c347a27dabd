"""
Model mixins providing reusable behaviour for Django models.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key
    VersionedMixin: Optimistic locking through a version column
    AppendOnlyMixin: Insert-only rows (audit logs, ledger entries)

Usage:
    class Payment(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
        ...

    class EscrowEvent(UUIDPrimaryKeyMixin, AppendOnlyMixin, BaseModel):
        ...
"""

from __future__ import annotations

import uuid

from django.db import models
from django.db.models import F


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Ids are non-guessable and can be generated before the insert, which lets
    idempotency references be derived from them.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class VersionedMixin(models.Model):
    """
    Optimistic locking support.

    ``version`` is incremented atomically in the database on every update
    and refreshed afterwards, so concurrent writers can detect that a row
    changed underneath them (see settlement.locks.check_version).
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Optimistic locking version, incremented on every save",
    )

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        is_update = self.pk and not self._state.adding and not kwargs.get(
            "force_insert", False
        )
        if is_update:
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None:
                kwargs["update_fields"] = {*update_fields, "version", "updated_at"}

        super().save(*args, **kwargs)

        if is_update:
            self.refresh_from_db(fields=["version"])


class AppendOnlyMixin(models.Model):
    """
    Rows may be inserted but never updated or deleted.

    Bulk queryset updates bypass this; services never issue them for
    append-only models.
    """

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError(
                f"{self.__class__.__name__} records are immutable once written"
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError(f"{self.__class__.__name__} records cannot be deleted")
