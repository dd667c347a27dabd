"""
JobLock: database lease that keeps a periodic sweep single-flight.

At most one non-expired lock exists per job name. An expired lock may be
taken over by any worker, which bounds how long a crashed sweep can block
the next cycle.

Usage:
    with JobLock.hold("sweep_room_fee_releases", ttl_seconds=300) as owner:
        if owner is None:
            return {"status": "skipped"}
        ...
        JobLock.update_booking_ids("sweep_room_fee_releases", owner, ids)
"""

from __future__ import annotations

import logging
import os
import socket
import uuid
from contextlib import contextmanager
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, models, transaction
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

if TYPE_CHECKING:
    from collections.abc import Generator, Iterable

logger = logging.getLogger(__name__)


def default_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class JobLock(UUIDPrimaryKeyMixin, BaseModel):
    job_name = models.CharField(max_length=100, unique=True)
    locked_by = models.CharField(max_length=255)
    locked_at = models.DateTimeField()
    expires_at = models.DateTimeField(db_index=True)
    booking_ids = models.JSONField(
        default=list,
        blank=True,
        help_text="Bookings queued by the sweep holding this lock",
    )

    class Meta:
        ordering = ["job_name"]

    def __str__(self) -> str:
        return f"JobLock({self.job_name}, {self.locked_by}, until {self.expires_at})"

    @property
    def is_expired(self) -> bool:
        return self.expires_at <= timezone.now()

    @classmethod
    def acquire(cls, job_name: str, owner: str, ttl_seconds: int | None = None) -> bool:
        """
        Take the lock for ``owner``.

        Returns False when another owner holds a non-expired lock.
        """
        ttl = ttl_seconds or settings.JOB_LOCK_TTL_SECONDS
        now = timezone.now()
        expires_at = now + timedelta(seconds=ttl)

        # Take over an expired lease in one conditional update
        taken = cls.objects.filter(job_name=job_name, expires_at__lte=now).update(
            locked_by=owner,
            locked_at=now,
            expires_at=expires_at,
            booking_ids=[],
            updated_at=now,
        )
        if taken:
            return True

        try:
            with transaction.atomic():
                cls.objects.create(
                    job_name=job_name,
                    locked_by=owner,
                    locked_at=now,
                    expires_at=expires_at,
                )
        except IntegrityError:
            return False
        return True

    @classmethod
    def release(cls, job_name: str, owner: str) -> bool:
        deleted, _ = cls.objects.filter(job_name=job_name, locked_by=owner).delete()
        return bool(deleted)

    @classmethod
    def extend(cls, job_name: str, owner: str, ttl_seconds: int | None = None) -> bool:
        ttl = ttl_seconds or settings.JOB_LOCK_TTL_SECONDS
        now = timezone.now()
        return bool(
            cls.objects.filter(job_name=job_name, locked_by=owner, expires_at__gt=now).update(
                expires_at=now + timedelta(seconds=ttl), updated_at=now
            )
        )

    @classmethod
    def update_booking_ids(cls, job_name: str, owner: str, booking_ids: Iterable) -> bool:
        return bool(
            cls.objects.filter(job_name=job_name, locked_by=owner).update(
                booking_ids=[str(booking_id) for booking_id in booking_ids],
                updated_at=timezone.now(),
            )
        )

    @classmethod
    def cleanup_expired(cls) -> int:
        deleted, _ = cls.objects.filter(expires_at__lte=timezone.now()).delete()
        return deleted

    @classmethod
    @contextmanager
    def hold(
        cls, job_name: str, ttl_seconds: int | None = None, owner: str | None = None
    ) -> Generator[str | None, None, None]:
        """
        Yield the owner token while holding the lock, or None if it is taken.

        The lock is released on exit even if the body raises.
        """
        owner = owner or default_owner()
        if not cls.acquire(job_name, owner, ttl_seconds):
            logger.info(
                "Job lock held elsewhere, skipping cycle",
                extra={"job_name": job_name},
            )
            yield None
            return
        try:
            yield owner
        finally:
            cls.release(job_name, owner)
