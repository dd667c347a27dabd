"""
URL configuration for the settlement engine.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (DB, cache, finance config)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/settlement/            - Settlement endpoints
        quotes/                    - Price a prospective booking
        bookings/                  - Reserve a booking
        bookings/{id}/             - Booking, payment and escrow state
        bookings/{id}/confirm-payment/ - Verify capture and hold funds
        bookings/{id}/check-in/    - Confirm check-in
        bookings/{id}/check-out/   - Confirm checkout
        bookings/{id}/cancel/      - Cancel before check-in
        bookings/{id}/disputes/    - Open a dispute
        disputes/{id}/respond/     - Accept or escalate a dispute
        disputes/{id}/resolve/     - Admin decision (staff only)
        disputes/{id}/cancel/      - Withdraw a dispute
        wallets/{type}/{owner}/    - Wallet balance and transactions
        withdrawals/               - Request an operator withdrawal
    /api/v1/notifications/         - In-app notification inbox

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
api_v1_patterns = [
    path("settlement/", include("settlement.urls")),
    path("notifications/", include("notifications.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Settlement Admin"
admin.site.site_title = "Settlement Portal"
admin.site.index_title = "Escrow & Settlement"
