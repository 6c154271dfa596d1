import io
import os
import shutil
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import AsyncGenerator, Dict, List, Optional

# Settings are read at import time; point them at a scratch directory first
_TEST_ROOT = tempfile.mkdtemp(prefix="watermark-bot-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_ROOT}/app.db")
os.environ.setdefault("STORAGE_PATH", f"{_TEST_ROOT}/storage")
os.environ.setdefault("LOG_FORMAT_JSON", "false")

import pytest
from httpx import AsyncClient, ASGITransport
from PIL import Image
from sqlmodel import Session

from src.core.database import build_engine, create_db_and_tables
from src.core.exceptions import TransferError
from src.core.storage import StorageLayout, WorkspaceManager
from src.modules.media.models import InboundMedia, MediaKind, MediaVariant, RemoteFile
from src.modules.telegram.client import ITransferAdapter
from src.modules.usage.ledger import UsageLedger
from src.modules.watermark.store import WatermarkStore
from src.pipeline.dispatcher import JobQueue


def make_image_bytes(image_format: str = "PNG", size=(8, 8)) -> bytes:
    mode = "RGBA" if image_format == "PNG" else "RGB"
    buffer = io.BytesIO()
    Image.new(mode, size, (255, 0, 0, 128) if mode == "RGBA" else (255, 0, 0)).save(buffer, image_format)
    return buffer.getvalue()


def photo_media(file_id: str = "photo-large") -> InboundMedia:
    return InboundMedia(
        kind=MediaKind.PHOTO,
        variants=[
            MediaVariant(file_id="photo-small", file_size=100, width=90, height=60),
            MediaVariant(file_id=file_id, file_size=5000, width=1280, height=853),
        ]
    )


class FakeTransfer(ITransferAdapter):
    """In-memory Bot API: files are served from a dict, uploads and messages are recorded."""

    def __init__(self, files: Optional[Dict[str, bytes]] = None):
        self.files: Dict[str, bytes] = dict(files or {})
        self.paths: Dict[str, str] = {}
        self.uploads: List[dict] = []
        self.messages: List[tuple] = []
        self.fail_methods: set = set()
        self._lock = threading.Lock()

    def add_file(self, file_id: str, content: bytes, file_path: Optional[str] = None):
        self.files[file_id] = content
        self.paths[file_id] = file_path or f"photos/{file_id}.jpg"

    def _check(self, method: str):
        if method in self.fail_methods:
            raise TransferError(f"{method} unavailable", method=method, http_status=500)

    def resolve(self, file_id: str) -> RemoteFile:
        self._check("getFile")
        if file_id not in self.files:
            raise TransferError(f"Unknown file {file_id}", method="getFile", http_status=400)
        return RemoteFile(file_id=file_id, file_path=self.paths.get(file_id, f"photos/{file_id}.jpg"))

    @contextmanager
    def download(self, remote_file: RemoteFile):
        self._check("downloadFile")
        yield iter([self.files[remote_file.file_id]])

    def upload(self, chat_id: int, kind: MediaKind, path: Path) -> None:
        self._check("sendPhoto" if kind == MediaKind.PHOTO else "sendVideo")
        content = Path(path).read_bytes()
        with self._lock:
            self.uploads.append({"chat_id": chat_id, "kind": kind, "path": Path(path), "content": content})

    def send_message(self, chat_id: int, text: str) -> None:
        self._check("sendMessage")
        with self._lock:
            self.messages.append((chat_id, text))


class FakeCompositor:
    """Stands in for ffmpeg: concatenates watermark bytes onto the source."""

    def __init__(self, exit_code: int = 0):
        self.exit_code = exit_code
        self.calls: List[dict] = []
        self._lock = threading.Lock()

    def overlay(self, source, watermark, destination) -> int:
        watermark_bytes = Path(watermark).read_bytes()
        with self._lock:
            self.calls.append({
                "source": Path(source),
                "watermark": Path(watermark),
                "watermark_bytes": watermark_bytes,
                "destination": Path(destination),
            })
        if self.exit_code != 0:
            return self.exit_code
        Path(destination).write_bytes(Path(source).read_bytes() + watermark_bytes)
        return 0


class RecordingQueue(JobQueue):
    def __init__(self):
        self.media: List[tuple] = []
        self.uploads: List[tuple] = []
        self.resets: List[int] = []
        self.notifications: List[tuple] = []

    def enqueue_media(self, chat_id, media):
        self.media.append((chat_id, media))
        return f"task-{len(self.media)}"

    def enqueue_watermark_upload(self, chat_id, file_id, file_name):
        self.uploads.append((chat_id, file_id, file_name))

    def enqueue_watermark_reset(self, chat_id):
        self.resets.append(chat_id)

    def notify(self, chat_id, text):
        self.notifications.append((chat_id, text))


@pytest.fixture(scope="session", autouse=True)
def _cleanup_test_root():
    yield
    shutil.rmtree(_TEST_ROOT, ignore_errors=True)


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def layout(tmp_path) -> StorageLayout:
    return StorageLayout(tmp_path / "storage")


@pytest.fixture
def workspaces(layout) -> WorkspaceManager:
    return WorkspaceManager(layout)


@pytest.fixture
def store(engine, layout) -> WatermarkStore:
    return WatermarkStore(engine, layout)


@pytest.fixture
def ledger(engine) -> UsageLedger:
    return UsageLedger(engine)


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes("PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes("JPEG")


@pytest.fixture
def make_media():
    return photo_media


@pytest.fixture
def transfer() -> FakeTransfer:
    return FakeTransfer()


@pytest.fixture
def compositor() -> FakeCompositor:
    return FakeCompositor()


@pytest.fixture
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
async def client(engine, store, ledger, queue) -> AsyncGenerator[AsyncClient, None]:
    from src.main import app
    from src.api import dependencies
    from src.core.database import get_session

    def session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[dependencies.get_watermark_store] = lambda: store
    app.dependency_overrides[dependencies.get_usage_ledger] = lambda: ledger
    app.dependency_overrides[dependencies.get_job_queue] = lambda: queue
    app.dependency_overrides[get_session] = session_override

    # Trigger lifespan events (startup/shutdown)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def pipeline(workspaces, store, transfer, compositor, ledger, engine):
    from src.pipeline.executor import MediaPipeline
    return MediaPipeline(workspaces, store, transfer, compositor, ledger, job_engine=engine)


@pytest.fixture
def watermark_jobs(store, transfer):
    from src.pipeline.executor import WatermarkJobs
    return WatermarkJobs(store, transfer)
