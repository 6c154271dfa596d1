"""
Celery Tasks for the Watermark Pipeline

Each task is one unit of work on the bounded thread pool. Tasks never
retry: a failed request is reported to the chat and recorded, and the
next message starts fresh.
"""

from typing import Any, Dict, Optional

from src.core.celery_app import celery_app
from src.core.logging import clear_request_context, get_logger, set_request_context
from src.modules.media.models import InboundMedia, ProcessingRequest
from src.modules.telegram.client import get_telegram_client
from src.pipeline.dispatcher import JobQueue
from src.pipeline.executor import notify
from src.pipeline.services import get_media_pipeline, get_watermark_jobs

logger = get_logger(__name__)


@celery_app.task(
    bind=True,
    name="src.pipeline.tasks.process_media",
    max_retries=0
)
def process_media(
    self,
    chat_id: int,
    media: Dict[str, Any],
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Run one photo or video through the pipeline.

    Args:
        chat_id: Chat the media came from and goes back to
        media: Serialized InboundMedia
        request_id: Defaults to the Celery task id

    Returns:
        The request's terminal result
    """
    request = ProcessingRequest(
        chat_id=chat_id,
        media=InboundMedia.model_validate(media),
        request_id=request_id or self.request.id
    )
    logger.info("task_media_received", request_id=request.request_id, chat_id=chat_id)
    get_media_pipeline().run(request)
    return request.to_result_dict()


@celery_app.task(
    bind=True,
    name="src.pipeline.tasks.process_watermark_upload",
    max_retries=0
)
def process_watermark_upload(self, chat_id: int, file_id: str, file_name: Optional[str] = None) -> Dict[str, Any]:
    set_request_context(self.request.id, chat_id)
    try:
        saved = get_watermark_jobs().upload(chat_id, file_id, file_name)
    finally:
        clear_request_context()
    return {"chat_id": chat_id, "action": "upload", "success": saved}


@celery_app.task(
    bind=True,
    name="src.pipeline.tasks.process_watermark_reset",
    max_retries=0
)
def process_watermark_reset(self, chat_id: int) -> Dict[str, Any]:
    set_request_context(self.request.id, chat_id)
    try:
        removed = get_watermark_jobs().reset(chat_id)
    finally:
        clear_request_context()
    return {"chat_id": chat_id, "action": "reset", "success": removed}


@celery_app.task(
    bind=True,
    name="src.pipeline.tasks.send_notification",
    max_retries=0
)
def send_notification(self, chat_id: int, text: str) -> Dict[str, Any]:
    sent = notify(get_telegram_client(), chat_id, text)
    return {"chat_id": chat_id, "sent": sent}


class CeleryJobQueue(JobQueue):
    """Hands dispatched work to the Celery worker pool."""

    def enqueue_media(self, chat_id: int, media: InboundMedia) -> Optional[str]:
        result = process_media.delay(chat_id, media.model_dump(mode="json"))
        return result.id

    def enqueue_watermark_upload(self, chat_id: int, file_id: str, file_name: Optional[str]) -> None:
        process_watermark_upload.delay(chat_id, file_id, file_name)

    def enqueue_watermark_reset(self, chat_id: int) -> None:
        process_watermark_reset.delay(chat_id)

    def notify(self, chat_id: int, text: str) -> None:
        send_notification.delay(chat_id, text)

