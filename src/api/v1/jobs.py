"""
Jobs Endpoint - Pipeline Outcome Lookup

GET /api/v1/jobs/{request_id} - Terminal record of one media request
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from src.core.database import get_session
from src.modules.media.models import MediaJob

router = APIRouter()


@router.get("/{request_id}")
def get_job(request_id: str, session: Session = Depends(get_session)):
    """
    Get the outcome of a processed request.

    Only terminal outcomes are recorded, so requests still on the pool
    return 404.
    """
    job = session.get(MediaJob, request_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job not found: {request_id}")
    return job.to_response_dict()
