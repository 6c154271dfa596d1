"""
Media Processing Models

- ProcessingRequest: in-memory state of one pipeline run
- MediaJob: persisted terminal outcome of a run, for status lookups
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field as PydanticField
from sqlalchemy import BigInteger, Column
from sqlmodel import SQLModel, Field


class MediaKind(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"


class PipelineState(str, Enum):
    """Pipeline states, in the order a request passes through them."""
    START = "start"
    WORKSPACE_READY = "workspace_ready"
    REMOTE_FILE_RESOLVED = "remote_file_resolved"
    DOWNLOADED = "downloaded"
    COMPOSITED = "composited"
    DELIVERED = "delivered"
    WORKSPACE_CLEANED = "workspace_cleaned"
    COUNTED = "counted"
    DONE = "done"
    FAILED = "failed"


PIPELINE_SEQUENCE: List[PipelineState] = [
    PipelineState.START,
    PipelineState.WORKSPACE_READY,
    PipelineState.REMOTE_FILE_RESOLVED,
    PipelineState.DOWNLOADED,
    PipelineState.COMPOSITED,
    PipelineState.DELIVERED,
    PipelineState.WORKSPACE_CLEANED,
    PipelineState.COUNTED,
    PipelineState.DONE,
]

TERMINAL_STATES = {PipelineState.DONE, PipelineState.FAILED}


class MediaVariant(BaseModel):
    """One downloadable rendition of an attachment."""
    file_id: str
    file_unique_id: Optional[str] = None
    file_size: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None


class InboundMedia(BaseModel):
    """A photo (one or more sizes) or a video, as received from the chat."""
    kind: MediaKind
    variants: List[MediaVariant] = PydanticField(..., min_length=1)

    def best_variant(self) -> MediaVariant:
        """The highest-resolution variant: largest file, then largest area."""
        return max(
            self.variants,
            key=lambda v: (v.file_size or 0, (v.width or 0) * (v.height or 0))
        )


@dataclass
class RemoteFile:
    """A file handle resolved from the Telegram Bot API."""
    file_id: str
    file_path: str
    file_size: Optional[int] = None

    @property
    def file_name(self) -> str:
        return Path(self.file_path).name


@dataclass
class ProcessingRequest:
    """One unit of pipeline work.

    Each stage records its own output instead of replacing a shared payload.
    """
    chat_id: int
    media: InboundMedia
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: PipelineState = PipelineState.START

    watermark_generation: Optional[int] = None
    watermark_path: Optional[Path] = None
    remote_file: Optional[RemoteFile] = None
    source_path: Optional[Path] = None
    processed_path: Optional[Path] = None

    failed_stage: Optional[PipelineState] = None
    error: Optional[Exception] = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    history: List[PipelineState] = field(default_factory=lambda: [PipelineState.START])

    @property
    def kind(self) -> MediaKind:
        return self.media.kind

    @property
    def succeeded(self) -> bool:
        return self.state == PipelineState.DONE

    @property
    def duration_ms(self) -> int:
        end = self.completed_at or datetime.utcnow()
        return int((end - self.started_at).total_seconds() * 1000)

    @property
    def next_state(self) -> Optional[PipelineState]:
        if self.state in TERMINAL_STATES:
            return None
        return PIPELINE_SEQUENCE[PIPELINE_SEQUENCE.index(self.state) + 1]

    def advance(self, state: PipelineState):
        """Move to the next state; states are never skipped or revisited."""
        expected = self.next_state
        if state != expected:
            raise ValueError(f"Invalid transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def fail(self, error: Exception):
        """Record the transition that could not be completed and stop."""
        self.failed_stage = self.next_state
        self.state = PipelineState.FAILED
        self.error = error
        self.history.append(PipelineState.FAILED)

    def to_result_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "chat_id": self.chat_id,
            "kind": self.kind.value,
            "status": self.state.value,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "error_type": type(self.error).__name__ if self.error else None,
            "error": str(self.error) if self.error else None,
            "duration_ms": self.duration_ms,
        }


class MediaJob(SQLModel, table=True):
    """Terminal record of a pipeline run."""
    __tablename__ = "media_jobs"

    request_id: str = Field(primary_key=True)
    chat_id: int = Field(sa_column=Column(BigInteger, index=True, nullable=False))
    media_kind: str
    status: str

    failed_stage: Optional[str] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    watermark_generation: Optional[int] = None

    duration_ms: int = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @classmethod
    def from_request(cls, request: ProcessingRequest) -> "MediaJob":
        return cls(
            request_id=request.request_id,
            chat_id=request.chat_id,
            media_kind=request.kind.value,
            status=request.state.value,
            failed_stage=request.failed_stage.value if request.failed_stage else None,
            error_type=type(request.error).__name__ if request.error else None,
            error_message=str(request.error) if request.error else None,
            watermark_generation=request.watermark_generation,
            duration_ms=request.duration_ms,
            created_at=request.started_at,
            completed_at=request.completed_at,
        )

    def to_response_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "chat_id": self.chat_id,
            "kind": self.media_kind,
            "status": self.status,
            "error": {
                "type": self.error_type,
                "message": self.error_message,
                "stage": self.failed_stage
            } if self.error_type else None,
            "watermark_generation": self.watermark_generation,
            "duration_ms": self.duration_ms,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
