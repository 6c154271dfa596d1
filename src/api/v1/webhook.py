"""
Telegram Webhook Endpoint

POST /api/v1/telegram/webhook - Receive one Bot API update

The handler only classifies and routes the update; media and watermark
work is queued, so Telegram gets its 200 without waiting on ffmpeg.
"""

from fastapi import APIRouter, Depends

from src.api.dependencies import get_dispatcher
from src.core.logging import get_logger
from src.modules.telegram.schemas import TelegramUpdate
from src.pipeline.dispatcher import UpdateDispatcher

logger = get_logger(__name__)
router = APIRouter()


@router.post("/webhook")
def telegram_webhook(
    update: TelegramUpdate,
    dispatcher: UpdateDispatcher = Depends(get_dispatcher)
):
    outcome = dispatcher.dispatch_update(update)
    logger.debug("webhook_update_dispatched", update_id=update.update_id, outcome=outcome.value)
    return {"ok": True, "outcome": outcome.value}
