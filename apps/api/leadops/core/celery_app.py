from celery import Celery
from celery.signals import setup_logging

from leadops.core.config import get_settings
from leadops.logging import configure_logging

configure_logging()
settings = get_settings()

celery_app = Celery("leadops_api", broker=settings.redis_url, backend=settings.redis_url, include=["leadops.tasks"])
celery_app.conf.beat_schedule = {
    "redistribute-overdue-leads": {
        "task": "leadops.tasks.redistribute_overdue_leads",
        "schedule": float(settings.sweep_interval_seconds),
    },
    "apply-due-seat-downgrades": {
        "task": "leadops.tasks.apply_due_seat_downgrades",
        "schedule": float(settings.sweep_interval_seconds),
    },
    "process-due-followups": {
        "task": "leadops.tasks.process_due_followups",
        "schedule": 60.0,
    },
}


@setup_logging.connect
def _use_json_logging(**kwargs: object) -> None:
    # keeps the worker from replacing the root handlers
    configure_logging()
