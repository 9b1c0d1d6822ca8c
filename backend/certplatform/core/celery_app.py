from celery import Celery
from .config import settings
import warnings
import logging

warnings.filterwarnings("ignore", message=".*register_connect_callback.*")
logging.getLogger('celery.backends.redis').setLevel(logging.ERROR)

celery_app = Celery(
    "certplatform_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        'certplatform.tasks.maintenance',
        'certplatform.tasks.notifications',
    ]
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    task_routes={
        'certplatform.tasks.maintenance.*': {'queue': 'maintenance'},
        'certplatform.tasks.notifications.*': {'queue': 'notifications'},
    },

    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=1000,

    task_soft_time_limit=300,
    task_time_limit=600,

    result_expires=3600,
    broker_connection_retry_on_startup=True,

    task_default_retry_delay=60,
    task_max_retries=3,

    beat_schedule={
        'cleanup-expired-sessions': {
            'task': 'cleanup_expired_sessions',
            'schedule': settings.session_sweep_interval,
        },
        'health-check': {
            'task': 'health_check',
            'schedule': 600.0,
        },
    },
)

if __name__ == '__main__':
    celery_app.start()
