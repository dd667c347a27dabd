"""
Root pytest configuration for the Django project.

This module configures pytest-django and provides project-wide defaults.
App-specific fixtures are defined in each app's tests/conftest.py.

Environment defaults below only apply when the variable is not already set,
so a developer can still point the suite at PostgreSQL and a real Redis.
"""

import os

import django

# Must be set before pytest-django configures Django
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite://:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("SECURE_SSL_REDIRECT", "False")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "True")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_paystack")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_stripe")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()
