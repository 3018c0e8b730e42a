from __future__ import annotations

import json
import logging
import os
from datetime import datetime

from celery import Celery
from celery.signals import task_failure, task_retry

LEDGER_QUEUE = "ledger"
RECONCILE_TASK = "tryon.tasks.ledger_tasks.reconcile_wallets"

_observers_bound = False


def _env_url(*names: str, default: str) -> str:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return default


def _env_seconds(name: str, default: int, *, minimum: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else default
    except ValueError:
        value = default
    return max(minimum, value)


def _emit(flask_app, level: int, event: str, **fields) -> None:
    payload = {"event": event, "timestamp": datetime.utcnow().isoformat()}
    payload.update(fields)
    flask_app.logger.log(level, json.dumps(payload, default=str))


def _bind_task_observers(flask_app) -> None:
    """Log task failures and retries as JSON lines through the Flask logger."""
    global _observers_bound
    if _observers_bound:
        return

    @task_failure.connect(weak=False)
    def _on_failure(sender=None, task_id=None, exception=None, einfo=None, **_extra):
        _emit(
            flask_app,
            logging.ERROR,
            "celery_task_failure",
            task_name=getattr(sender, "name", "") or "",
            task_id=str(task_id or ""),
            exception=repr(exception) if exception is not None else "",
            einfo=str(einfo) if einfo is not None else None,
        )

    @task_retry.connect(weak=False)
    def _on_retry(request=None, reason=None, **_extra):
        _emit(
            flask_app,
            logging.WARNING,
            "celery_task_retry",
            task_name=str(getattr(request, "task", "") or ""),
            task_id=str(getattr(request, "id", "") or ""),
            retries=int(getattr(request, "retries", 0) or 0),
            reason=str(reason or ""),
        )

    _observers_bound = True


def create_celery_app(flask_app) -> Celery:
    broker = _env_url("CELERY_BROKER_URL", "REDIS_URL", default="redis://localhost:6379/0")
    backend = _env_url("CELERY_RESULT_BACKEND", "REDIS_URL", default=broker)
    interval = _env_seconds("RECONCILE_INTERVAL_SECONDS", 3600, minimum=60)

    celery = Celery(flask_app.import_name, broker=broker, backend=backend)
    celery.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        broker_connection_retry_on_startup=True,
        timezone="UTC",
        enable_utc=True,
        task_routes={RECONCILE_TASK: {"queue": LEDGER_QUEUE}},
        task_soft_time_limit=_env_seconds("RECONCILE_SOFT_TIME_LIMIT_SECONDS", 300, minimum=10),
        beat_schedule={
            "wallet-ledger-reconcile": {
                "task": RECONCILE_TASK,
                "schedule": float(interval),
                "kwargs": {"persist": True},
                "options": {"queue": LEDGER_QUEUE},
            },
        },
    )

    class FlaskContextTask(celery.Task):
        def __call__(self, *args, **kwargs):
            with flask_app.app_context():
                return self.run(*args, **kwargs)

    celery.Task = FlaskContextTask
    celery.autodiscover_tasks(["tryon.tasks"], related_name="ledger_tasks")
    _bind_task_observers(flask_app)
    flask_app.logger.info("celery_configured reconcile_interval=%s queue=%s", interval, LEDGER_QUEUE)
    return celery
