"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend, plus the
beat schedule that keeps the sync queue draining while no UI is open.
"""

from celery import Celery
from celery.schedules import crontab

from gourmetflow.core.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    'gourmetflow_worker',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['gourmetflow.tasks']
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # A drain holds the device lock; one task at a time per worker
    worker_prefetch_multiplier=1,
    worker_concurrency=1,

    # Result settings
    result_expires=3600,  # Results expire after 1 hour

    # Task execution settings
    task_acks_late=True,  # Acknowledge task after completion
    task_reject_on_worker_lost=True,  # Requeue task if worker dies

    broker_connection_retry_on_startup=True,
)

celery_app.conf.beat_schedule = {
    'drain-sync-queue': {
        'task': 'gourmetflow.tasks.drain_sync_queue',
        'schedule': settings.sync_interval_seconds,
    },
    'refresh-menu-cache': {
        'task': 'gourmetflow.tasks.refresh_menu_cache',
        'schedule': settings.menu_cache_max_age_minutes * 60,
    },
    'prune-synced-data': {
        'task': 'gourmetflow.tasks.prune_synced_data',
        'schedule': crontab(hour=4, minute=0),
    },
}


if __name__ == '__main__':
    celery_app.start()
