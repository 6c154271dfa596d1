"""
API v1 Router Module - Watermark Bot

All v1 endpoints are prefixed with /api/v1/

- POST /api/v1/telegram/webhook - Bot API update intake
- GET /api/v1/usage/{chat_id} - Per-chat usage counter
- GET /api/v1/jobs/{request_id} - Pipeline outcome lookup
- GET /api/v1/metrics - Prometheus metrics
"""

from fastapi import APIRouter

from src.api.v1.webhook import router as webhook_router
from src.api.v1.usage import router as usage_router
from src.api.v1.jobs import router as jobs_router
from src.api.v1.metrics import router as metrics_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(webhook_router, prefix="/telegram", tags=["telegram"])
api_v1_router.include_router(usage_router, prefix="/usage", tags=["usage"])
api_v1_router.include_router(jobs_router, prefix="/jobs", tags=["jobs"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
