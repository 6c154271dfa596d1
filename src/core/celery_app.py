"""
Celery Application Configuration

Configures Celery as the bounded worker pool:
- Thread pool sized by WORKER_POOL_SIZE (bounds concurrent ffmpeg runs)
- No retries or redelivery; every failure is terminal for its request
- Separate queues for media pipelines and chat notifications
"""

from celery import Celery
from kombu import Queue

from src.core.config import settings

# Create Celery app
celery_app = Celery(
    "watermark_pipeline",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL,
    include=[
        "src.pipeline.tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task tracking
    task_track_started=True,

    # Result expiration
    result_expires=86400,  # 24 hours

    # Worker pool: stages block on network I/O and on the ffmpeg process,
    # so a fixed thread pool is the unit of concurrency
    worker_pool="threads",
    worker_concurrency=settings.WORKER_POOL_SIZE,
    worker_prefetch_multiplier=1,

    # Queue definitions
    task_queues=(
        Queue("default", routing_key="default"),
        Queue("media_queue", routing_key="media.#"),
        Queue("chat_queue", routing_key="chat.#"),
    ),
    task_default_queue="default",

    # Task routing
    task_routes={
        "src.pipeline.tasks.process_media": {"queue": "media_queue"},
        "src.pipeline.tasks.process_watermark_upload": {"queue": "media_queue"},
        "src.pipeline.tasks.process_watermark_reset": {"queue": "media_queue"},
        "src.pipeline.tasks.send_notification": {"queue": "chat_queue"},
    },

    # Early acknowledgment: a message lost with its worker is not redelivered
    task_acks_late=False,
)
