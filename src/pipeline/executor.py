"""
Pipeline Executor

Runs one media request through its stages, strictly in order:

    START -> WORKSPACE_READY -> REMOTE_FILE_RESOLVED -> DOWNLOADED
          -> COMPOSITED -> DELIVERED -> WORKSPACE_CLEANED -> COUNTED -> DONE

Any failure moves the request to FAILED. The watermark is snapshotted once
before the workspace is allocated, so a concurrent upload or reset for the
same chat cannot change what an in-flight request overlays. The workspace
is released on every exit path.
"""

import time
import traceback
from datetime import datetime
from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session

from src.core.exceptions import (
    CompositingError,
    FilesystemError,
    PipelineStageError,
    ValidationError,
    WatermarkBotException,
)
from src.core.logging import LogContext, get_logger, with_logging
from src.core.metrics import record_job_completion, record_job_started, track_stage_latency
from src.core.storage import Workspace, WorkspaceManager
from src.modules.media.models import MediaJob, PipelineState, ProcessingRequest
from src.modules.telegram import messages
from src.modules.telegram.client import ITransferAdapter
from src.modules.usage.ledger import UsageLedger
from src.modules.watermark.store import WatermarkStore
from src.pipeline.compositor import FFmpegCompositor

logger = get_logger(__name__)


class MediaPipeline:
    """Executes ProcessingRequests against the injected collaborators."""

    def __init__(
        self,
        workspaces: WorkspaceManager,
        watermarks: WatermarkStore,
        transfer: ITransferAdapter,
        compositor: FFmpegCompositor,
        ledger: UsageLedger,
        job_engine: Optional[Engine] = None
    ):
        self.workspaces = workspaces
        self.watermarks = watermarks
        self.transfer = transfer
        self.compositor = compositor
        self.ledger = ledger
        self.job_engine = job_engine

    def run(self, request: ProcessingRequest) -> ProcessingRequest:
        """Drive `request` to DONE or FAILED. Never raises for stage failures."""
        with LogContext(request_id=request.request_id, chat_id=request.chat_id):
            start = time.time()
            record_job_started()
            logger.info("pipeline_started", kind=request.kind.value)

            try:
                self._execute(request)
            except WatermarkBotException as e:
                self._fail(request, e)
            except Exception as e:
                wrapped = PipelineStageError(
                    f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
                    stage=request.next_state.value if request.next_state else None,
                    request_id=request.request_id,
                    chat_id=request.chat_id,
                    details={"traceback": traceback.format_exc()}
                )
                wrapped.__cause__ = e
                self._fail(request, wrapped)

            request.completed_at = datetime.utcnow()
            duration = time.time() - start
            record_job_completion(
                kind=request.kind.value,
                status="completed" if request.succeeded else "failed",
                failure_stage=request.failed_stage.value if request.failed_stage else "none",
                duration_seconds=duration
            )
            self._record_job(request)

            if request.succeeded:
                logger.info("pipeline_completed", duration_ms=request.duration_ms)
            return request

    # =========================================================================
    # Stages
    # =========================================================================

    def _execute(self, request: ProcessingRequest):
        snapshot = self.watermarks.snapshot(request.chat_id)
        request.watermark_generation = snapshot.generation

        with self.workspaces.workspace(request.chat_id, request.request_id) as workspace:
            self._pin_watermark(request, workspace, snapshot.content, snapshot.suffix)
            request.advance(PipelineState.WORKSPACE_READY)

            with track_stage_latency(PipelineState.REMOTE_FILE_RESOLVED.value):
                variant = request.media.best_variant()
                request.remote_file = self.transfer.resolve(variant.file_id)
            request.advance(PipelineState.REMOTE_FILE_RESOLVED)

            with track_stage_latency(PipelineState.DOWNLOADED.value):
                file_name = request.remote_file.file_name
                request.source_path = self.transfer.download_to(
                    request.remote_file, workspace.source_dir / file_name
                )
            request.advance(PipelineState.DOWNLOADED)

            with track_stage_latency(PipelineState.COMPOSITED.value):
                destination = workspace.processed_dir / file_name
                exit_code = self.compositor.overlay(request.source_path, request.watermark_path, destination)
                if exit_code != 0:
                    raise CompositingError(
                        f"ffmpeg exited with code {exit_code}",
                        exit_code=exit_code,
                        stage=PipelineState.COMPOSITED.value
                    )
                request.processed_path = destination
            request.advance(PipelineState.COMPOSITED)

            with track_stage_latency(PipelineState.DELIVERED.value):
                self.transfer.upload(request.chat_id, request.kind, request.processed_path)
            request.advance(PipelineState.DELIVERED)

        request.advance(PipelineState.WORKSPACE_CLEANED)

        count = self.ledger.increment(request.chat_id)
        request.advance(PipelineState.COUNTED)
        logger.debug("usage_counted", count=count)

        request.advance(PipelineState.DONE)

    def _pin_watermark(self, request: ProcessingRequest, workspace: Workspace, content: bytes, suffix: str):
        path = workspace.source_dir / f".watermark-{request.watermark_generation}{suffix}"
        try:
            path.write_bytes(content)
        except OSError as e:
            raise FilesystemError(f"Failed to pin watermark: {e}", path=str(path)) from e
        request.watermark_path = path

    # =========================================================================
    # Failure handling
    # =========================================================================

    def _fail(self, request: ProcessingRequest, error: WatermarkBotException):
        delivered = request.state == PipelineState.DELIVERED
        request.fail(error)
        if error.stage is None:
            error.stage = request.failed_stage.value

        log_fields = error.to_log_dict()
        log_fields["kind"] = request.kind.value
        if isinstance(error, ValidationError):
            logger.warning("pipeline_rejected", **log_fields)
        else:
            logger.error("pipeline_failed", **log_fields)

        if delivered:
            # The chat already has its file
            logger.warning("workspace_cleanup_failed_after_delivery", request_id=request.request_id)
            return
        notify(self.transfer, request.chat_id, error.user_message)

    def _record_job(self, request: ProcessingRequest):
        if self.job_engine is None:
            return
        try:
            with Session(self.job_engine) as session:
                session.merge(MediaJob.from_request(request))
                session.commit()
        except Exception as e:
            logger.error("media_job_record_failed", error=str(e), error_type=type(e).__name__)


def notify(transfer: ITransferAdapter, chat_id: int, text: str) -> bool:
    """Send a chat message; a failed notification is logged, not raised."""
    try:
        transfer.send_message(chat_id, text)
        return True
    except WatermarkBotException as e:
        logger.error("notification_failed", text=text, **e.to_log_dict())
        return False


class WatermarkJobs:
    """Upload and reset flows for a chat's watermark."""

    def __init__(self, watermarks: WatermarkStore, transfer: ITransferAdapter):
        self.watermarks = watermarks
        self.transfer = transfer

    def upload(self, chat_id: int, file_id: str, declared_name: Optional[str] = None) -> bool:
        with LogContext(chat_id=chat_id):
            try:
                self._upload(chat_id, file_id, declared_name)
            except WatermarkBotException as e:
                self._report(chat_id, e)
                return False
            notify(self.transfer, chat_id, messages.WATERMARK_SAVED)
            return True

    @with_logging("watermark_upload")
    def _upload(self, chat_id: int, file_id: str, declared_name: Optional[str]):
        remote_file = self.transfer.resolve(file_id)
        file_name = remote_file.file_name
        logger.info("watermark_resolved", file_name=file_name, declared_name=declared_name)
        self.watermarks.validate_file_name(file_name)
        content = self.transfer.download_bytes(remote_file)
        self.watermarks.save(chat_id, file_name, content)

    def reset(self, chat_id: int) -> bool:
        with LogContext(chat_id=chat_id):
            try:
                self._reset(chat_id)
            except WatermarkBotException as e:
                self._report(chat_id, e)
                return False
            notify(self.transfer, chat_id, messages.WATERMARK_REMOVED)
            return True

    @with_logging("watermark_reset")
    def _reset(self, chat_id: int):
        self.watermarks.reset(chat_id)

    def _report(self, chat_id: int, error: WatermarkBotException):
        if isinstance(error, ValidationError):
            logger.warning("watermark_rejected", **error.to_log_dict())
        else:
            logger.error("watermark_job_failed", **error.to_log_dict())
        notify(self.transfer, chat_id, error.user_message)
