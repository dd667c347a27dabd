"""
Tests for the /health/ endpoint.
"""

import pytest
from django.urls import reverse


@pytest.fixture
def finance_health(mocker):
    return mocker.patch(
        "settlement.fees.config.finance_config_health",
        return_value={"state": "valid", "strict_mode": False, "errors": []},
    )


@pytest.mark.django_db
class TestHealthCheck:
    def test_healthy(self, client, finance_health, mocker):
        mocker.patch("core.views.cache")

        response = client.get(reverse("health_check"))

        assert response.status_code == 200
        assert response.json()["database"] == "connected"
        assert response.json()["finance_config"] == "valid"

    def test_cache_outage_is_not_fatal(self, client, finance_health, mocker):
        cache = mocker.patch("core.views.cache")
        cache.set.side_effect = ConnectionError("redis down")

        response = client.get(reverse("health_check"))

        assert response.status_code == 200
        assert response.json()["cache"] == "disconnected"

    def test_invalid_finance_config(self, client, finance_health, mocker):
        mocker.patch("core.views.cache")
        finance_health.return_value = {"state": "invalid", "strict_mode": True, "errors": ["bad tiers"]}

        response = client.get(reverse("health_check"))

        assert response.status_code == 503
        assert response.json()["finance_config_errors"] == ["bad tiers"]
