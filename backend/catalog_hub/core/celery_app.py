# Celery app: catalog sync worker + optional beat schedule

from celery import Celery
from kombu import Exchange, Queue
from catalog_hub.core.config import settings
from catalog_hub.core.logging import configure_logging

configure_logging()


'''
Celery application
   - Beat: at most one instance
   - Worker: the sync queue must run with concurrency=1, jobs are single-flight
'''
celery_app = Celery(
    "catalog_sync_hub",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "catalog_hub.orchestration.catalog_sync.catalog_sync_task",
    ],
)


celery_app.conf.update(
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_track_started=True,
    broker_connection_retry_on_startup=True,
    worker_prefetch_multiplier=1,    # one task per worker slot
    task_acks_late=True,             # redeliver if the worker dies mid-run
    broker_heartbeat=30,
    broker_pool_limit=10,
)


'''
Queues
   - catalog_sync: long-running marketplace I/O, serialized
   - default: everything else (price write-back)
'''
celery_app.conf.task_queues = (
    Queue("default", Exchange("default"), routing_key="default"),
    Queue("catalog_sync", Exchange("catalog_sync"), routing_key="catalog_sync"),
)

celery_app.conf.task_routes = {
    "catalog_hub.orchestration.catalog_sync.run_full_sync": {"queue": "catalog_sync"},
    "catalog_hub.orchestration.catalog_sync.push_prices": {"queue": "default"},
}


# optional periodic full sync
if settings.CRON_FULL_SYNC_SEC > 0:
    celery_app.conf.beat_schedule = {
        "catalog-full-sync": {
            "task": "catalog_hub.orchestration.catalog_sync.run_full_sync",
            "schedule": settings.CRON_FULL_SYNC_SEC,
            "kwargs": {"trigger": "beat"},
        },
    }
