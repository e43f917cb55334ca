"""Celery beat schedule configuration."""
from __future__ import annotations

CELERY_BEAT_SCHEDULE = {
    "payments-cleanup-expired": {
        "task": "payments.cleanup_expired",
        "schedule": 300,  # every 5 minutes
        "kwargs": {"dry_run": False},
    },
}
