"""
Gateway lookup by name.

``settings.PAYMENT_GATEWAYS`` maps a gateway name (stored on each Booking)
to the dotted path of its adapter class.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.utils.module_loading import import_string

from core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from settlement.gateways.base import PaymentGateway


def available_gateways() -> list[str]:
    return sorted(settings.PAYMENT_GATEWAYS)


def get_gateway(name: str | None = None) -> PaymentGateway:
    """Instantiate the adapter registered under ``name`` (default gateway if empty)."""
    name = name or settings.DEFAULT_PAYMENT_GATEWAY
    try:
        path = settings.PAYMENT_GATEWAYS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown payment gateway '{name}'",
            error_code="UNKNOWN_GATEWAY",
            details={"gateway": name, "available": available_gateways()},
        )
    return import_string(path)()
