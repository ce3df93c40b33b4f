"""Celery beat schedule configuration.

Pending Uzum payments have no push guarantee, so they are polled
periodically until the provider reports a final status.
"""
from __future__ import annotations

from core.config import settings

CELERY_BEAT_SCHEDULE = {
    "payments-poll-pending": {
        "task": "payments.poll_pending",
        "schedule": float(settings.PAYMENT_POLL_INTERVAL_SECONDS),
        "kwargs": {"method": "UZUM"},
    },
}
