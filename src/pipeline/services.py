"""
Process-wide service wiring.

The worker threads and the API share one instance of each service; they
are built lazily from settings on first use.
"""

from typing import Optional

from src.core.database import engine
from src.core.storage import get_workspace_manager
from src.modules.telegram.client import get_telegram_client
from src.modules.usage.ledger import UsageLedger
from src.modules.watermark.store import WatermarkStore
from src.pipeline.compositor import get_compositor
from src.pipeline.executor import MediaPipeline, WatermarkJobs

_watermark_store: Optional[WatermarkStore] = None
_usage_ledger: Optional[UsageLedger] = None
_media_pipeline: Optional[MediaPipeline] = None
_watermark_jobs: Optional[WatermarkJobs] = None


def get_watermark_store() -> WatermarkStore:
    global _watermark_store
    if _watermark_store is None:
        _watermark_store = WatermarkStore(engine, get_workspace_manager().layout)
    return _watermark_store


def get_usage_ledger() -> UsageLedger:
    global _usage_ledger
    if _usage_ledger is None:
        _usage_ledger = UsageLedger(engine)
    return _usage_ledger


def get_media_pipeline() -> MediaPipeline:
    global _media_pipeline
    if _media_pipeline is None:
        _media_pipeline = MediaPipeline(
            workspaces=get_workspace_manager(),
            watermarks=get_watermark_store(),
            transfer=get_telegram_client(),
            compositor=get_compositor(),
            ledger=get_usage_ledger(),
            job_engine=engine,
        )
    return _media_pipeline


def get_watermark_jobs() -> WatermarkJobs:
    global _watermark_jobs
    if _watermark_jobs is None:
        _watermark_jobs = WatermarkJobs(get_watermark_store(), get_telegram_client())
    return _watermark_jobs
