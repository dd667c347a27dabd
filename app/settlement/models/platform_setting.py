"""
PlatformSetting: versioned keyed configuration.

Rows are appended with increasing versions and never edited by the
engine; readers use the highest active version per key.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any


class PlatformSetting(UUIDPrimaryKeyMixin, BaseModel):
    key = models.CharField(max_length=120, db_index=True)
    version = models.PositiveIntegerField(default=1)
    value = models.JSONField()
    description = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_by = models.UUIDField(null=True, blank=True)

    class Meta:
        ordering = ["key", "-version"]
        constraints = [
            models.UniqueConstraint(
                fields=["key", "version"],
                name="platform_setting_unique_key_version",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.key} v{self.version}"

    @classmethod
    def latest_values(cls, keys: Iterable[str]) -> dict[str, Any]:
        """Value of the highest active version for each key that has one."""
        values: dict[str, Any] = {}
        rows = (
            cls.objects.filter(key__in=list(keys), is_active=True)
            .order_by("key", "-version")
            .values_list("key", "value")
        )
        for key, value in rows:
            values.setdefault(key, value)
        return values

    @classmethod
    def latest_value(cls, key: str, default: Any = None) -> Any:
        return cls.latest_values([key]).get(key, default)

    @classmethod
    def publish(cls, key: str, value: Any, *, description: str = "", created_by=None):
        """Append a new version of ``key``."""
        current = (
            cls.objects.filter(key=key).order_by("-version").values_list("version", flat=True).first()
        )
        return cls.objects.create(
            key=key,
            version=(current or 0) + 1,
            value=value,
            description=description,
            created_by=created_by,
        )
