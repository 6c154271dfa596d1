"""
Update Dispatcher

Routes inbound chat events. Commands are answered inline; media and
watermark files are handed to a JobQueue so the caller never blocks on
downloads or ffmpeg.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from src.core.logging import get_logger
from src.modules.media.models import InboundMedia
from src.modules.telegram import messages
from src.modules.telegram.schemas import (
    InboundEvent,
    MediaSubmission,
    TelegramUpdate,
    TextCommand,
    WatermarkDocument,
    classify_update,
)
from src.modules.watermark.store import WatermarkStore

logger = get_logger(__name__)


class JobQueue(ABC):
    """Where the dispatcher sends work that must not run on the caller's thread."""

    @abstractmethod
    def enqueue_media(self, chat_id: int, media: InboundMedia) -> Optional[str]:
        pass

    @abstractmethod
    def enqueue_watermark_upload(self, chat_id: int, file_id: str, file_name: Optional[str]) -> None:
        pass

    @abstractmethod
    def enqueue_watermark_reset(self, chat_id: int) -> None:
        pass

    @abstractmethod
    def notify(self, chat_id: int, text: str) -> None:
        pass


class DispatchOutcome(str, Enum):
    IGNORED = "ignored"
    INSTRUCTIONS_SENT = "instructions_sent"
    RESET_QUEUED = "reset_queued"
    REJECTED_NO_WATERMARK = "rejected_no_watermark"
    MEDIA_QUEUED = "media_queued"
    WATERMARK_QUEUED = "watermark_queued"


class UpdateDispatcher:

    def __init__(self, watermarks: WatermarkStore, queue: JobQueue):
        self.watermarks = watermarks
        self.queue = queue

    def dispatch_update(self, update: TelegramUpdate) -> DispatchOutcome:
        event = classify_update(update)
        if event is None:
            logger.debug("update_ignored", update_id=update.update_id)
            return DispatchOutcome.IGNORED
        return self.dispatch(event)

    def dispatch(self, event: InboundEvent) -> DispatchOutcome:
        if isinstance(event, TextCommand):
            return self._on_text(event)
        if isinstance(event, MediaSubmission):
            return self._on_media(event)
        if isinstance(event, WatermarkDocument):
            return self._on_document(event)
        return DispatchOutcome.IGNORED

    def _on_text(self, event: TextCommand) -> DispatchOutcome:
        command = event.command
        if command == "/start":
            self.queue.notify(event.chat_id, messages.START_INSTRUCTIONS)
            return DispatchOutcome.INSTRUCTIONS_SENT
        if command == "/reset":
            self.queue.enqueue_watermark_reset(event.chat_id)
            logger.info("watermark_reset_queued", chat_id=event.chat_id)
            return DispatchOutcome.RESET_QUEUED
        return DispatchOutcome.IGNORED

    def _on_media(self, event: MediaSubmission) -> DispatchOutcome:
        # Checked up front so a chat without a watermark never gets a workspace
        if not self.watermarks.has_watermark(event.chat_id):
            logger.info("media_rejected_no_watermark", chat_id=event.chat_id, kind=event.media.kind.value)
            self.queue.notify(event.chat_id, messages.WATERMARK_NOT_SET)
            return DispatchOutcome.REJECTED_NO_WATERMARK

        task_id = self.queue.enqueue_media(event.chat_id, event.media)
        logger.info("media_queued", chat_id=event.chat_id, kind=event.media.kind.value, task_id=task_id)
        return DispatchOutcome.MEDIA_QUEUED

    def _on_document(self, event: WatermarkDocument) -> DispatchOutcome:
        self.queue.enqueue_watermark_upload(event.chat_id, event.file_id, event.file_name)
        logger.info("watermark_upload_queued", chat_id=event.chat_id, file_name=event.file_name)
        return DispatchOutcome.WATERMARK_QUEUED
