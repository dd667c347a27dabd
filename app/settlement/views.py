"""
API views for bookings, escrow, disputes, wallets and withdrawals.

Provides:
- QuoteView: Price a prospective stay
- BookingCreateView / BookingDetailView: Reserve and inspect bookings
- ConfirmPaymentView, CheckInView, CheckOutView, CancelBookingView: Stay lifecycle
- RetryReleaseView: Staff re-run of a release parked for review
- OpenDisputeView, RespondDisputeView, ResolveDisputeView, CancelDisputeView: Disputes
- WalletDetailView: Balance and recent ledger entries
- WithdrawalCreateView: Operator cash-out

The caller's identity comes from the JWT (``request.user.id``); guests and
operators are external users, so party checks compare that id against the
booking. Every service error is answered with its own ``to_dict()`` and
``http_status``.
"""

from __future__ import annotations

import uuid

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import BaseApplicationError, PermissionDeniedError, ValidationError
from settlement.ledger import WalletOwnerType, WalletService
from settlement.serializers import (
    BookingCreateSerializer,
    BookingDetailSerializer,
    BookingSerializer,
    CancelBookingSerializer,
    ConfirmPaymentSerializer,
    DisputeSerializer,
    OpenDisputeSerializer,
    QuoteRequestSerializer,
    QuoteResponseSerializer,
    ResolveDisputeSerializer,
    RespondDisputeSerializer,
    RetryReleaseSerializer,
    WalletSerializer,
    WithdrawalCreateSerializer,
    WithdrawalSerializer,
)
from settlement.services import (
    BookingService,
    CreateBookingParams,
    DisputeService,
    EscrowService,
    OpenDisputeParams,
    WithdrawalService,
)

ERROR_RESPONSES = {
    400: OpenApiResponse(description="Validation error"),
    401: OpenApiResponse(description="Authentication required"),
    403: OpenApiResponse(description="Caller is not a party to the booking"),
    404: OpenApiResponse(description="Not found"),
    409: OpenApiResponse(description="Not allowed in the current state"),
    502: OpenApiResponse(description="Payment gateway error"),
}


def actor_id(request) -> uuid.UUID:
    return uuid.UUID(str(request.user.id))


def is_staff(request) -> bool:
    return bool(getattr(request.user, "is_staff", False))


def ensure_party(booking, request) -> None:
    """Only the booking's guest, its operator or staff may see it."""
    if is_staff(request):
        return
    if actor_id(request) not in (booking.guest_id, booking.operator_id):
        raise PermissionDeniedError(
            "Not a party to this booking",
            error_code="NOT_BOOKING_PARTY",
            details={"booking_id": str(booking.id)},
        )


def error_response(e: BaseApplicationError) -> Response:
    return Response(e.to_dict(), status=e.http_status)


# =============================================================================
# Bookings
# =============================================================================


class QuoteView(APIView):
    """
    Price a prospective booking.

    POST /api/v1/settlement/quotes/

    Response:
        200 OK: Fee breakdown, commission and operator volume progress
        400 Bad Request: Validation error
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="quote_booking",
        summary="Quote a booking",
        description=(
            "Compute the guest total, service and processing fees and the "
            "operator commission for a stay without reserving it."
        ),
        request=QuoteRequestSerializer,
        responses={200: OpenApiResponse(response=QuoteResponseSerializer, description="Quote")},
        tags=["Settlement - Bookings"],
    )
    def post(self, request):
        serializer = QuoteRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            quote = BookingService.quote(**serializer.validated_data)
        except BaseApplicationError as e:
            return error_response(e)
        return Response(quote.to_snapshot())


class BookingCreateView(APIView):
    """
    Reserve a stay.

    POST /api/v1/settlement/bookings/

    The caller becomes the guest. The booking starts PENDING with an
    INITIATED payment; the client then pays at the gateway and calls
    confirm-payment with the gateway reference.

    Response:
        201 Created: Booking with its priced breakdown
        400 Bad Request: Validation error
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_booking",
        summary="Create booking",
        request=BookingCreateSerializer,
        responses={
            201: OpenApiResponse(response=BookingSerializer, description="Booking reserved"),
            **ERROR_RESPONSES,
        },
        tags=["Settlement - Bookings"],
    )
    def post(self, request):
        serializer = BookingCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        params = CreateBookingParams(guest_id=actor_id(request), **serializer.validated_data)
        try:
            booking = BookingService.create_booking(params)
        except BaseApplicationError as e:
            return error_response(e)
        return Response(BookingSerializer(booking).data, status=status.HTTP_201_CREATED)


class BookingDetailView(APIView):
    """
    Booking with payment, escrow log and replayed escrow position.

    GET /api/v1/settlement/bookings/{booking_id}/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_booking",
        summary="Get booking",
        responses={
            200: OpenApiResponse(response=BookingDetailSerializer, description="Booking details"),
            403: ERROR_RESPONSES[403],
            404: ERROR_RESPONSES[404],
        },
        tags=["Settlement - Bookings"],
    )
    def get(self, request, booking_id):
        try:
            booking = BookingService.get_booking(booking_id)
            ensure_party(booking, request)
        except BaseApplicationError as e:
            return error_response(e)
        return Response(BookingDetailSerializer(booking).data)


class ConfirmPaymentView(APIView):
    """
    Verify the capture at the gateway and hold the funds in escrow.

    POST /api/v1/settlement/bookings/{booking_id}/confirm-payment/

    Idempotent: repeating the call with the same reference returns the
    booking unchanged.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="confirm_booking_payment",
        summary="Confirm payment",
        request=ConfirmPaymentSerializer,
        responses={
            200: OpenApiResponse(response=BookingSerializer, description="Payment confirmed, funds held"),
            **ERROR_RESPONSES,
        },
        tags=["Settlement - Bookings"],
    )
    def post(self, request, booking_id):
        serializer = ConfirmPaymentSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            booking = BookingService.get_booking(booking_id)
            if booking.guest_id != actor_id(request) and not is_staff(request):
                raise PermissionDeniedError(
                    "Only the guest can confirm payment",
                    error_code="NOT_BOOKING_GUEST",
                    details={"booking_id": str(booking.id)},
                )
            booking = BookingService.confirm_payment(
                booking_id, serializer.validated_data["provider_reference"]
            )
        except BaseApplicationError as e:
            return error_response(e)
        return Response(BookingSerializer(booking).data)


class CheckInView(APIView):
    """
    Confirm check-in as the guest or the operator.

    POST /api/v1/settlement/bookings/{booking_id}/check-in/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="check_in_booking",
        summary="Confirm check-in",
        request=None,
        responses={
            200: OpenApiResponse(response=BookingSerializer, description="Checked in"),
            **ERROR_RESPONSES,
        },
        tags=["Settlement - Bookings"],
    )
    def post(self, request, booking_id):
        try:
            booking = BookingService.confirm_check_in(booking_id, actor_id(request))
        except BaseApplicationError as e:
            return error_response(e)
        return Response(BookingSerializer(booking).data)


class CheckOutView(APIView):
    """
    Confirm checkout as the guest or the operator.

    POST /api/v1/settlement/bookings/{booking_id}/check-out/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="check_out_booking",
        summary="Confirm checkout",
        request=None,
        responses={
            200: OpenApiResponse(response=BookingSerializer, description="Checked out"),
            **ERROR_RESPONSES,
        },
        tags=["Settlement - Bookings"],
    )
    def post(self, request, booking_id):
        try:
            booking = BookingService.confirm_check_out(booking_id, actor_id(request))
        except BaseApplicationError as e:
            return error_response(e)
        return Response(BookingSerializer(booking).data)


class CancelBookingView(APIView):
    """
    Cancel a booking before check-in.

    POST /api/v1/settlement/bookings/{booking_id}/cancel/

    A paid booking has its escrow divided under the cancellation policy;
    inside the notice period before check-in the request is refused.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="cancel_booking",
        summary="Cancel booking",
        request=CancelBookingSerializer,
        responses={
            200: OpenApiResponse(response=BookingSerializer, description="Booking cancelled"),
            **ERROR_RESPONSES,
        },
        tags=["Settlement - Bookings"],
    )
    def post(self, request, booking_id):
        serializer = CancelBookingSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            booking = BookingService.cancel_booking(
                booking_id,
                actor_id=actor_id(request),
                reason=serializer.validated_data["reason"],
                is_staff=is_staff(request),
            )
        except BaseApplicationError as e:
            return error_response(e)
        return Response(BookingSerializer(booking).data)


class RetryReleaseView(APIView):
    """
    Re-run an escrow release parked for admin review.

    POST /api/v1/settlement/bookings/{booking_id}/retry-release/

    Staff only. The component's attempt counter is reset before the release
    runs again; a failed retry answers 409 with the release's error code.
    """

    permission_classes = [IsAuthenticated, IsAdminUser]

    @extend_schema(
        operation_id="retry_release",
        summary="Retry escrow release (admin)",
        request=RetryReleaseSerializer,
        responses={
            200: OpenApiResponse(description="Release executed"),
            **ERROR_RESPONSES,
        },
        tags=["Settlement - Bookings"],
    )
    def post(self, request, booking_id):
        serializer = RetryReleaseSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            result = EscrowService.admin_retry(booking_id, serializer.validated_data["component"])
        except BaseApplicationError as e:
            return error_response(e)
        return Response(
            result.to_response(),
            status=status.HTTP_200_OK if result else status.HTTP_409_CONFLICT,
        )


# =============================================================================
# Disputes
# =============================================================================


class OpenDisputeView(APIView):
    """
    Open a dispute against the room fee (guest) or the deposit (operator).

    POST /api/v1/settlement/bookings/{booking_id}/disputes/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="open_dispute",
        summary="Open dispute",
        request=OpenDisputeSerializer,
        responses={
            201: OpenApiResponse(response=DisputeSerializer, description="Dispute opened"),
            **ERROR_RESPONSES,
        },
        tags=["Settlement - Disputes"],
    )
    def post(self, request, booking_id):
        serializer = OpenDisputeSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        params = OpenDisputeParams(
            booking_id=booking_id,
            actor_id=actor_id(request),
            **serializer.validated_data,
        )
        try:
            dispute = DisputeService.open_dispute(params)
        except BaseApplicationError as e:
            return error_response(e)
        return Response(DisputeSerializer(dispute).data, status=status.HTTP_201_CREATED)


class RespondDisputeView(APIView):
    """
    Accept a dispute or reject it and escalate to an admin.

    POST /api/v1/settlement/disputes/{dispute_id}/respond/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="respond_dispute",
        summary="Respond to dispute",
        request=RespondDisputeSerializer,
        responses={
            200: OpenApiResponse(response=DisputeSerializer, description="Response recorded"),
            **ERROR_RESPONSES,
        },
        tags=["Settlement - Disputes"],
    )
    def post(self, request, dispute_id):
        serializer = RespondDisputeSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            dispute = DisputeService.respond(
                dispute_id,
                actor_id(request),
                serializer.validated_data["action"],
                serializer.validated_data["notes"],
            )
        except BaseApplicationError as e:
            return error_response(e)
        return Response(DisputeSerializer(dispute).data)


class ResolveDisputeView(APIView):
    """
    Record the admin decision on an escalated dispute.

    POST /api/v1/settlement/disputes/{dispute_id}/resolve/

    Staff only. ``expected_version`` guards against two admins deciding
    the same dispute concurrently.
    """

    permission_classes = [IsAuthenticated, IsAdminUser]

    @extend_schema(
        operation_id="resolve_dispute",
        summary="Resolve dispute (admin)",
        request=ResolveDisputeSerializer,
        responses={
            200: OpenApiResponse(response=DisputeSerializer, description="Dispute resolved"),
            **ERROR_RESPONSES,
        },
        tags=["Settlement - Disputes"],
    )
    def post(self, request, dispute_id):
        serializer = ResolveDisputeSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        try:
            dispute = DisputeService.admin_resolve(
                dispute_id,
                actor_id(request),
                data["decision"],
                amount=data.get("amount"),
                notes=data["notes"],
                expected_version=data.get("expected_version"),
            )
        except BaseApplicationError as e:
            return error_response(e)
        return Response(DisputeSerializer(dispute).data)


class CancelDisputeView(APIView):
    """
    Withdraw a dispute before it is resolved.

    POST /api/v1/settlement/disputes/{dispute_id}/cancel/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="cancel_dispute",
        summary="Cancel dispute",
        request=None,
        responses={
            200: OpenApiResponse(response=DisputeSerializer, description="Dispute cancelled"),
            **ERROR_RESPONSES,
        },
        tags=["Settlement - Disputes"],
    )
    def post(self, request, dispute_id):
        try:
            dispute = DisputeService.cancel_dispute(
                dispute_id, actor_id=actor_id(request), is_staff=is_staff(request)
            )
        except BaseApplicationError as e:
            return error_response(e)
        return Response(DisputeSerializer(dispute).data)


# =============================================================================
# Wallets & Withdrawals
# =============================================================================


class WalletDetailView(APIView):
    """
    Wallet balances and the most recent ledger entries.

    GET /api/v1/settlement/wallets/{owner_type}/{owner_id}/

    Operators may read their own wallet; the platform wallet and other
    operators' wallets are staff only.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_wallet",
        summary="Get wallet",
        responses={
            200: OpenApiResponse(response=WalletSerializer, description="Wallet"),
            403: ERROR_RESPONSES[403],
            404: ERROR_RESPONSES[404],
        },
        tags=["Settlement - Wallets"],
    )
    def get(self, request, owner_type, owner_id):
        try:
            if owner_type not in WalletOwnerType.values:
                raise ValidationError(
                    "Unknown wallet owner type",
                    error_code="UNKNOWN_WALLET_OWNER",
                    details={"owner_type": owner_type},
                )
            own_wallet = owner_type == WalletOwnerType.OPERATOR and owner_id == actor_id(request)
            if not (own_wallet or is_staff(request)):
                raise PermissionDeniedError(
                    "Not allowed to view this wallet",
                    error_code="WALLET_ACCESS_DENIED",
                    details={"owner_type": owner_type, "owner_id": str(owner_id)},
                )
            wallet = WalletService.get_wallet(owner_type, owner_id)
        except BaseApplicationError as e:
            return error_response(e)
        return Response(WalletSerializer(wallet).data)


class WithdrawalCreateView(APIView):
    """
    Request a withdrawal from the caller's operator wallet.

    POST /api/v1/settlement/withdrawals/

    The wallet is debited immediately and the transfer runs in the
    background; a failed transfer is reversed back into the wallet.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_withdrawal",
        summary="Request withdrawal",
        request=WithdrawalCreateSerializer,
        responses={
            201: OpenApiResponse(response=WithdrawalSerializer, description="Withdrawal requested"),
            **ERROR_RESPONSES,
        },
        tags=["Settlement - Wallets"],
    )
    def post(self, request):
        serializer = WithdrawalCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            withdrawal = WithdrawalService.request_withdrawal(
                actor_id(request), **serializer.validated_data
            )
        except BaseApplicationError as e:
            return error_response(e)
        return Response(WithdrawalSerializer(withdrawal).data, status=status.HTTP_201_CREATED)
