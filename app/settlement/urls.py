"""
URL configuration for the settlement API.

Routes:
    quotes/                             - Price a prospective booking (POST)
    bookings/                           - Reserve a booking (POST)
    bookings/{id}/                      - Booking detail (GET)
    bookings/{id}/confirm-payment/      - Verify capture, hold funds (POST)
    bookings/{id}/check-in/             - Confirm check-in (POST)
    bookings/{id}/check-out/            - Confirm checkout (POST)
    bookings/{id}/cancel/               - Cancel booking (POST)
    bookings/{id}/retry-release/        - Re-run a release parked for review (POST, staff)
    bookings/{id}/disputes/             - Open dispute (POST)
    disputes/{id}/respond/              - Accept or escalate (POST)
    disputes/{id}/resolve/              - Admin decision (POST)
    disputes/{id}/cancel/               - Withdraw dispute (POST)
    wallets/{owner_type}/{owner_id}/    - Wallet detail (GET)
    withdrawals/                        - Request withdrawal (POST)
"""

from django.urls import path

from settlement import views

app_name = "settlement"

urlpatterns = [
    path("quotes/", views.QuoteView.as_view(), name="quote"),
    path("bookings/", views.BookingCreateView.as_view(), name="booking-create"),
    path("bookings/<uuid:booking_id>/", views.BookingDetailView.as_view(), name="booking-detail"),
    path(
        "bookings/<uuid:booking_id>/confirm-payment/",
        views.ConfirmPaymentView.as_view(),
        name="booking-confirm-payment",
    ),
    path("bookings/<uuid:booking_id>/check-in/", views.CheckInView.as_view(), name="booking-check-in"),
    path("bookings/<uuid:booking_id>/check-out/", views.CheckOutView.as_view(), name="booking-check-out"),
    path("bookings/<uuid:booking_id>/cancel/", views.CancelBookingView.as_view(), name="booking-cancel"),
    path(
        "bookings/<uuid:booking_id>/retry-release/",
        views.RetryReleaseView.as_view(),
        name="booking-retry-release",
    ),
    path("bookings/<uuid:booking_id>/disputes/", views.OpenDisputeView.as_view(), name="dispute-open"),
    path("disputes/<uuid:dispute_id>/respond/", views.RespondDisputeView.as_view(), name="dispute-respond"),
    path("disputes/<uuid:dispute_id>/resolve/", views.ResolveDisputeView.as_view(), name="dispute-resolve"),
    path("disputes/<uuid:dispute_id>/cancel/", views.CancelDisputeView.as_view(), name="dispute-cancel"),
    path(
        "wallets/<str:owner_type>/<uuid:owner_id>/",
        views.WalletDetailView.as_view(),
        name="wallet-detail",
    ),
    path("withdrawals/", views.WithdrawalCreateView.as_view(), name="withdrawal-create"),
]
