"""
Celery configuration for the settlement engine.

Celery runs the timer-driven side of settlement:
- Periodic sweeps (room fee releases, deposit releases, check-in fallbacks)
- Per-booking release tasks queued by those sweeps
- Withdrawal transfers and notification delivery

Periodic schedules live in the database (django-celery-beat) and are seeded
by the settlement data migrations.

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings should be prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Discover tasks.py in every installed app
app.autodiscover_tasks()
