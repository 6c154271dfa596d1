"""
FastAPI Dependencies

Provides dependency injection for:
- Watermark store and usage ledger (process-wide singletons)
- Job queue (Celery-backed)
- Update dispatcher

Tests override these with app.dependency_overrides.
"""

from fastapi import Depends

from src.modules.usage.ledger import UsageLedger
from src.modules.watermark.store import WatermarkStore
from src.pipeline.dispatcher import JobQueue, UpdateDispatcher
from src.pipeline import services
from src.pipeline.tasks import CeleryJobQueue

_job_queue = CeleryJobQueue()


def get_watermark_store() -> WatermarkStore:
    return services.get_watermark_store()


def get_usage_ledger() -> UsageLedger:
    return services.get_usage_ledger()


def get_job_queue() -> JobQueue:
    return _job_queue


def get_dispatcher(
    watermarks: WatermarkStore = Depends(get_watermark_store),
    queue: JobQueue = Depends(get_job_queue)
) -> UpdateDispatcher:
    return UpdateDispatcher(watermarks, queue)
