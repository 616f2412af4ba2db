"""
Celery application for the payment sweeps.

Run a worker and the beat scheduler with:
    celery -A confpay.workers.celery_app worker -Q payments
    celery -A confpay.workers.celery_app beat
"""

from celery import Celery
from celery.schedules import crontab

from confpay.config import settings

SWEEP_QUEUE = "payments"

celery_app = Celery(
    "confpay",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["confpay.workers.payment_sweep"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=3600,
    enable_utc=True,
    task_default_queue=SWEEP_QUEUE,
    task_routes={"confpay.workers.payment_sweep.*": {"queue": SWEEP_QUEUE}},
    # A sweep must not outlive its own schedule slot
    task_time_limit=int(settings.sweep_interval_minutes * 60),
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)


def _every(minutes: int, offset: int = 0) -> crontab:
    return crontab(minute=f"{offset}-59/{minutes}" if offset else f"*/{minutes}")


# The two sweeps are staggered so they never hit OnePay in the same minute
celery_app.conf.beat_schedule = {
    "retry-pending-finalizations": {
        "task": "confpay.workers.payment_sweep.retry_pending_finalizations",
        "schedule": _every(settings.sweep_interval_minutes),
    },
    "reconcile-stale-payments": {
        "task": "confpay.workers.payment_sweep.reconcile_stale_payments",
        "schedule": _every(settings.sweep_interval_minutes, offset=settings.sweep_interval_minutes // 2),
    },
}
