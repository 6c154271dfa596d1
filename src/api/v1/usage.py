"""
Usage Endpoint

GET /api/v1/usage/{chat_id} - Number of media items delivered to a chat
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.api.dependencies import get_usage_ledger, get_watermark_store
from src.modules.usage.ledger import UsageLedger
from src.modules.watermark.store import WatermarkStore

router = APIRouter()


class UsageResponse(BaseModel):
    chat_id: int
    count: int
    watermark_set: bool
    watermark_generation: int


@router.get("/{chat_id}", response_model=UsageResponse)
def get_usage(
    chat_id: int,
    ledger: UsageLedger = Depends(get_usage_ledger),
    watermarks: WatermarkStore = Depends(get_watermark_store)
):
    """Unknown chats report a count of zero."""
    return UsageResponse(
        chat_id=chat_id,
        count=ledger.get_count(chat_id),
        watermark_set=watermarks.has_watermark(chat_id),
        watermark_generation=watermarks.generation(chat_id)
    )
