import threading

from sqlmodel import Session

from src.core.exceptions import CompositingError, FilesystemError, TransferError, WatermarkMissingError
from src.modules.media.models import (
    InboundMedia,
    MediaJob,
    MediaKind,
    MediaVariant,
    PIPELINE_SEQUENCE,
    PipelineState,
    ProcessingRequest,
)
from src.modules.telegram import messages


CHAT_ID = 4242
SOURCE_BYTES = b"\xff\xd8source-jpeg"


def _prepare(store, transfer, png_bytes, file_id="photo-large"):
    store.save(CHAT_ID, "logo.png", png_bytes)
    transfer.add_file(file_id, SOURCE_BYTES)


def test_successful_run_visits_every_state_in_order(pipeline, store, transfer, png_bytes, make_media):
    _prepare(store, transfer, png_bytes)
    request = ProcessingRequest(chat_id=CHAT_ID, media=make_media())

    pipeline.run(request)

    assert request.state == PipelineState.DONE
    assert request.history == PIPELINE_SEQUENCE
    assert request.failed_stage is None
    assert request.error is None


def test_successful_run_delivers_composited_file(pipeline, store, transfer, compositor, png_bytes, make_media):
    _prepare(store, transfer, png_bytes)

    request = pipeline.run(ProcessingRequest(chat_id=CHAT_ID, media=make_media()))

    assert len(transfer.uploads) == 1
    upload = transfer.uploads[0]
    assert upload["chat_id"] == CHAT_ID
    assert upload["kind"] == request.kind
    assert upload["path"].name == "photo-large.jpg"
    assert upload["content"] == SOURCE_BYTES + png_bytes
    assert compositor.calls[0]["watermark_bytes"] == png_bytes
    assert transfer.messages == []


def test_best_variant_is_downloaded(pipeline, store, transfer, compositor, png_bytes, make_media):
    _prepare(store, transfer, png_bytes)
    transfer.add_file("photo-small", b"tiny")

    pipeline.run(ProcessingRequest(chat_id=CHAT_ID, media=make_media()))

    assert compositor.calls[0]["source"].name == "photo-large.jpg"
    assert transfer.uploads[0]["content"].startswith(SOURCE_BYTES)


def test_workspace_is_removed_and_usage_counted(pipeline, workspaces, store, transfer, ledger, png_bytes, make_media):
    _prepare(store, transfer, png_bytes)
    request = ProcessingRequest(chat_id=CHAT_ID, media=make_media())

    pipeline.run(request)

    assert not workspaces.exists(CHAT_ID, request.request_id)
    assert ledger.get_count(CHAT_ID) == 1


def test_watermark_is_pinned_inside_the_request_workspace(pipeline, workspaces, store, transfer, compositor, png_bytes, make_media):
    _prepare(store, transfer, png_bytes)
    request = ProcessingRequest(chat_id=CHAT_ID, media=make_media())

    pipeline.run(request)

    pinned = compositor.calls[0]["watermark"]
    assert pinned.parent == workspaces.layout.source_dir(CHAT_ID, request.request_id)
    assert pinned.name == ".watermark-1.png"
    assert request.watermark_generation == 1


def test_missing_watermark_fails_without_workspace(pipeline, workspaces, transfer, ledger, make_media):
    transfer.add_file("photo-large", SOURCE_BYTES)
    request = ProcessingRequest(chat_id=CHAT_ID, media=make_media())

    pipeline.run(request)

    assert request.state == PipelineState.FAILED
    assert isinstance(request.error, WatermarkMissingError)
    assert not workspaces.layout.session_dir(CHAT_ID).exists()
    assert transfer.messages == [(CHAT_ID, messages.WATERMARK_NOT_SET)]
    assert transfer.uploads == []
    assert ledger.get_count(CHAT_ID) == 0


def test_compositor_failure_is_terminal(pipeline, workspaces, store, transfer, compositor, ledger, png_bytes, make_media):
    _prepare(store, transfer, png_bytes)
    compositor.exit_code = 1
    request = ProcessingRequest(chat_id=CHAT_ID, media=make_media())

    pipeline.run(request)

    assert request.state == PipelineState.FAILED
    assert request.failed_stage == PipelineState.COMPOSITED
    assert isinstance(request.error, CompositingError)
    assert request.error.exit_code == 1
    assert transfer.uploads == []
    assert transfer.messages == [(CHAT_ID, CompositingError.user_message)]
    assert ledger.get_count(CHAT_ID) == 0


def test_workspace_is_removed_after_failure(pipeline, workspaces, store, transfer, compositor, png_bytes, make_media):
    _prepare(store, transfer, png_bytes)
    compositor.exit_code = 1
    request = ProcessingRequest(chat_id=CHAT_ID, media=make_media())

    pipeline.run(request)

    assert not workspaces.exists(CHAT_ID, request.request_id)


def test_download_failure_notifies_user(pipeline, workspaces, store, transfer, png_bytes, make_media):
    _prepare(store, transfer, png_bytes)
    transfer.fail_methods.add("downloadFile")
    request = ProcessingRequest(chat_id=CHAT_ID, media=make_media())

    pipeline.run(request)

    assert request.state == PipelineState.FAILED
    assert request.failed_stage == PipelineState.DOWNLOADED
    assert isinstance(request.error, TransferError)
    assert transfer.messages == [(CHAT_ID, TransferError.user_message)]
    assert not workspaces.exists(CHAT_ID, request.request_id)


def test_upload_failure_does_not_count(pipeline, store, transfer, ledger, png_bytes, make_media):
    _prepare(store, transfer, png_bytes)
    transfer.fail_methods.add("sendPhoto")
    request = ProcessingRequest(chat_id=CHAT_ID, media=make_media())

    pipeline.run(request)

    assert request.failed_stage == PipelineState.DELIVERED
    assert ledger.get_count(CHAT_ID) == 0


def test_unexpected_error_is_wrapped(pipeline, store, transfer, compositor, png_bytes, make_media, monkeypatch):
    _prepare(store, transfer, png_bytes)

    def explode(*args, **kwargs):
        raise KeyError("surprise")

    monkeypatch.setattr(compositor, "overlay", explode)
    request = ProcessingRequest(chat_id=CHAT_ID, media=make_media())

    pipeline.run(request)

    assert request.state == PipelineState.FAILED
    assert request.error.stage == PipelineState.COMPOSITED.value
    assert isinstance(request.error.__cause__, KeyError)


def test_failed_notification_does_not_raise(pipeline, transfer, make_media):
    transfer.fail_methods.add("sendMessage")
    request = ProcessingRequest(chat_id=CHAT_ID, media=make_media())

    pipeline.run(request)

    assert request.state == PipelineState.FAILED


def test_terminal_outcome_is_recorded(pipeline, engine, store, transfer, compositor, png_bytes, make_media):
    _prepare(store, transfer, png_bytes)
    compositor.exit_code = 2
    request = ProcessingRequest(chat_id=CHAT_ID, media=make_media())

    pipeline.run(request)

    with Session(engine) as session:
        job = session.get(MediaJob, request.request_id)
    assert job.status == "failed"
    assert job.failed_stage == "composited"
    assert job.error_type == "CompositingError"
    assert job.watermark_generation == 1


def test_concurrent_requests_are_isolated(pipeline, workspaces, store, transfer, compositor, ledger, png_bytes, make_media):
    _prepare(store, transfer, png_bytes)
    n = 10
    requests = [ProcessingRequest(chat_id=CHAT_ID, media=make_media()) for _ in range(n)]
    barrier = threading.Barrier(n)

    def work(request):
        barrier.wait()
        pipeline.run(request)

    threads = [threading.Thread(target=work, args=(r,)) for r in requests]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert all(r.state == PipelineState.DONE for r in requests)
    assert len({r.request_id for r in requests}) == n
    assert len({call["source"].parent for call in compositor.calls}) == n
    assert len(transfer.uploads) == n
    assert ledger.get_count(CHAT_ID) == n
    assert not any(workspaces.exists(CHAT_ID, r.request_id) for r in requests)


def test_reset_during_flight_does_not_change_pinned_watermark(pipeline, store, transfer, compositor, png_bytes, make_media, monkeypatch):
    _prepare(store, transfer, png_bytes)
    original_overlay = compositor.overlay

    def reset_then_overlay(source, watermark, destination):
        store.reset(CHAT_ID)
        return original_overlay(source, watermark, destination)

    monkeypatch.setattr(compositor, "overlay", reset_then_overlay)
    request = ProcessingRequest(chat_id=CHAT_ID, media=make_media())

    pipeline.run(request)

    assert request.state == PipelineState.DONE
    assert compositor.calls[0]["watermark_bytes"] == png_bytes
    assert store.has_watermark(CHAT_ID) is False


def test_watermark_upload_job_saves_and_confirms(watermark_jobs, store, transfer, png_bytes):
    transfer.add_file("doc-1", png_bytes, file_path="documents/logo.png")

    assert watermark_jobs.upload(CHAT_ID, "doc-1", "logo.png") is True

    assert store.has_watermark(CHAT_ID)
    assert transfer.messages == [(CHAT_ID, messages.WATERMARK_SAVED)]


def test_watermark_upload_job_rejects_non_png(watermark_jobs, store, transfer, png_bytes, jpeg_bytes):
    store.save(CHAT_ID, "logo.png", png_bytes)
    transfer.add_file("doc-2", jpeg_bytes, file_path="documents/photo.jpg")

    assert watermark_jobs.upload(CHAT_ID, "doc-2", "photo.jpg") is False

    assert store.current(CHAT_ID).read_bytes() == png_bytes
    assert transfer.messages == [(CHAT_ID, "Watermark file must be a PNG image")]


def test_watermark_reset_job_confirms(watermark_jobs, store, transfer, png_bytes):
    store.save(CHAT_ID, "logo.png", png_bytes)

    assert watermark_jobs.reset(CHAT_ID) is True

    assert store.has_watermark(CHAT_ID) is False
    assert transfer.messages == [(CHAT_ID, messages.WATERMARK_REMOVED)]


def test_video_is_delivered_as_video(pipeline, store, transfer, compositor, png_bytes):
    store.save(CHAT_ID, "logo.png", png_bytes)
    transfer.add_file("video-1", b"mp4-bytes", file_path="videos/clip.mp4")
    media = InboundMedia(kind=MediaKind.VIDEO, variants=[MediaVariant(file_id="video-1", width=640, height=360)])
    request = ProcessingRequest(chat_id=CHAT_ID, media=media)

    pipeline.run(request)

    assert request.state == PipelineState.DONE
    assert transfer.uploads[0]["kind"] == MediaKind.VIDEO
    assert transfer.uploads[0]["path"].name == "clip.mp4"
    assert compositor.calls[0]["destination"].name == "clip.mp4"
    assert request.processed_path.name == "clip.mp4"


def test_cleanup_failure_after_delivery_is_not_reported_to_chat(pipeline, workspaces, store, transfer, png_bytes, make_media, monkeypatch):
    _prepare(store, transfer, png_bytes)

    def failing_release(chat_id, request_id):
        raise FilesystemError("cannot remove workspace")

    monkeypatch.setattr(workspaces, "release", failing_release)
    request = ProcessingRequest(chat_id=CHAT_ID, media=make_media())

    pipeline.run(request)

    assert request.state == PipelineState.FAILED
    assert request.failed_stage == PipelineState.WORKSPACE_CLEANED
    assert len(transfer.uploads) == 1
    assert transfer.messages == []


def test_document_without_extension_is_refused(watermark_jobs, store, layout, transfer, png_bytes):
    store.save(CHAT_ID, "logo.png", png_bytes)
    transfer.add_file("doc-3", png_bytes, file_path="documents/png")

    assert watermark_jobs.upload(CHAT_ID, "doc-3", "png") is False

    assert store.current(CHAT_ID).read_bytes() == png_bytes
    assert [f.name for f in layout.watermark_dir(CHAT_ID).iterdir()] == ["logo.png"]
    assert transfer.messages == [(CHAT_ID, "Watermark file must be a PNG image")]
