"""
Settlement app configuration.

This app provides the escrow and settlement engine:
- Fee & commission pricing from versioned platform settings
- Escrow custody of room fees and security deposits
- Dispute resolution and timer-driven releases
- Operator wallets, ledger and withdrawals
"""

from django.apps import AppConfig


class SettlementConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "settlement"
    verbose_name = "Settlement"

    def ready(self) -> None:
        """Refuse to start with an unknown dispute fallback policy."""
        from django.core.exceptions import ImproperlyConfigured

        from core.exceptions import ConfigurationError
        from settlement.services.disputes import FallbackPolicy

        try:
            FallbackPolicy.configured()
        except ConfigurationError as e:
            raise ImproperlyConfigured(e.message) from e
