"""
Pytest configuration for the app packages.

Auto-marks tests by filename so the suite can be split into fast unit runs
and database-backed integration runs:

    pytest -m unit
    pytest -m "not e2e"
"""

import uuid

import pytest


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full booking journeys)
    - test_views.py, test_tasks.py, service tests → integration
    - test_fees.py, test_locks.py, test_gateways.py, test_models.py → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_tasks.py",
        "test_services.py",
        "test_bookings.py",
        "test_escrow.py",
        "test_disputes.py",
        "test_withdrawals.py",
        "test_ledger.py",
    ]

    unit_patterns = [
        "test_fees.py",
        "test_locks.py",
        "test_gateways.py",
        "test_models.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
def api_client():
    """Unauthenticated API client."""
    from rest_framework.test import APIClient

    return APIClient()


@pytest.fixture
def client_for():
    """
    Factory for clients carrying a signed access token for a user id.

    Users live in the upstream identity service, so the token is minted
    directly with the claims the stateless authenticator reads.

    Usage:
        def test_example(client_for, checked_in_booking):
            client = client_for(checked_in_booking.guest_id)
            response = client.get(url)
    """

    from rest_framework.test import APIClient
    from rest_framework_simplejwt.tokens import AccessToken

    def _make_client(user_id=None, is_staff=False):
        token = AccessToken()
        token["user_id"] = str(user_id or uuid.uuid4())
        token["is_staff"] = is_staff
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
        return client

    return _make_client
