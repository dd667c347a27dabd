"""
Base service layer patterns for business logic encapsulation.

- ServiceResult: result wrapper for operations whose failure is an expected
  outcome (e.g. a sweep deciding a booking is not yet eligible)
- BaseService: logger and transaction helpers

Services raise core.exceptions for rejected operations and return plain
values (or ServiceResult) otherwise. Views handle HTTP concerns, models
handle data, services handle logic.

Usage:
    from core.services import BaseService

    class EscrowService(BaseService):
        @classmethod
        def hold_funds(cls, booking_id, captured_amount):
            with cls.atomic():
                ...
            cls.get_logger().info("Funds held", extra={"booking_id": booking_id})
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful
        error: Error message if failed
        error_code: Machine-readable error code
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def ok(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str, error_code: str | None = None) -> ServiceResult[T]:
        return cls(success=False, error=error, error_code=error_code)

    def to_response(self) -> dict[str, Any]:
        """Convert to API response format."""
        if self.success:
            return {"success": True, "data": self.data}

        response: dict[str, Any] = {"success": False, "error": self.error}
        if self.error_code:
            response["error_code"] = self.error_code
        return response

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Services are stateless: use @classmethod/@staticmethod only.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named after the service class for easy filtering."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        Thin wrapper around ``transaction.atomic()`` that keeps transaction
        boundaries explicit in service code. Nested use creates savepoints.
        """
        with transaction.atomic():
            yield
