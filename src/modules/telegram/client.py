"""
Telegram Bot API Client - The Transfer Adapter

The pipeline only depends on the ITransferAdapter interface:
- resolve(file_id) -> RemoteFile
- download(remote_file) -> stream of byte chunks
- upload(chat_id, kind, path)
- send_message(chat_id, text)

TelegramClient implements it over the Bot API with httpx. Every transport
error and every `ok: false` reply is raised as TransferError.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import httpx
from pydantic import ValidationError

from src.core.config import settings
from src.core.exceptions import FilesystemError, TransferError
from src.core.logging import get_logger
from src.core.metrics import record_telegram_call
from src.modules.media.models import MediaKind, RemoteFile
from src.modules.telegram.schemas import TelegramUpdate

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024

_UPLOAD_METHODS = {
    MediaKind.PHOTO: ("sendPhoto", "photo"),
    MediaKind.VIDEO: ("sendVideo", "video"),
}


class ITransferAdapter(ABC):
    """Interface for moving files between the chat service and local disk."""

    @abstractmethod
    def resolve(self, file_id: str) -> RemoteFile:
        """Look up the remote path of an attachment."""
        pass

    @abstractmethod
    def download(self, remote_file: RemoteFile):
        """Context manager yielding an iterator of byte chunks."""
        pass

    @abstractmethod
    def upload(self, chat_id: int, kind: MediaKind, path: Path) -> None:
        """Send a local file back to the chat as a photo or a video."""
        pass

    @abstractmethod
    def send_message(self, chat_id: int, text: str) -> None:
        pass

    def download_to(self, remote_file: RemoteFile, destination: Path) -> Path:
        """Stream a remote file to `destination`."""
        with self.download(remote_file) as chunks:
            try:
                with open(destination, "wb") as f:
                    for chunk in chunks:
                        f.write(chunk)
            except OSError as e:
                raise FilesystemError(f"Failed to write {destination}: {e}", path=str(destination)) from e
        return destination

    def download_bytes(self, remote_file: RemoteFile) -> bytes:
        with self.download(remote_file) as chunks:
            return b"".join(chunks)


class TelegramClient(ITransferAdapter):
    """Bot API client over a shared httpx.Client."""

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.telegram.org",
        timeout: float = 60.0,
        http_client: Optional[httpx.Client] = None
    ):
        self.token = token
        self.api_url = api_url.rstrip("/")
        self._client = http_client or httpx.Client(timeout=timeout)

    def close(self):
        self._client.close()

    def _method_url(self, method: str) -> str:
        return f"{self.api_url}/bot{self.token}/{method}"

    def _file_url(self, file_path: str) -> str:
        return f"{self.api_url}/file/bot{self.token}/{file_path}"

    def _call(
        self,
        method: str,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> Any:
        """POST a Bot API method and return its `result`."""
        try:
            if files:
                response = self._client.post(self._method_url(method), data=data, files=files)
            elif timeout is not None:
                response = self._client.post(self._method_url(method), json=data or {}, timeout=timeout)
            else:
                response = self._client.post(self._method_url(method), json=data or {})
        except httpx.HTTPError as e:
            record_telegram_call(method, "error")
            raise TransferError(
                f"Telegram {method} failed: {type(e).__name__}: {e}",
                method=method
            ) from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code != 200 or not payload.get("ok"):
            record_telegram_call(method, "error")
            description = payload.get("description") or response.text[:200]
            raise TransferError(
                f"Telegram {method} returned {response.status_code}: {description}",
                method=method,
                http_status=response.status_code
            )

        record_telegram_call(method, "success")
        return payload.get("result")

    # =========================================================================
    # ITransferAdapter
    # =========================================================================

    def resolve(self, file_id: str) -> RemoteFile:
        result = self._call("getFile", {"file_id": file_id})
        file_path = (result or {}).get("file_path")
        if not file_path:
            raise TransferError(f"getFile returned no file_path for {file_id}", method="getFile")
        return RemoteFile(
            file_id=result.get("file_id", file_id),
            file_path=file_path,
            file_size=result.get("file_size"),
        )

    @contextmanager
    def download(self, remote_file: RemoteFile) -> Iterator[Iterator[bytes]]:
        url = self._file_url(remote_file.file_path)
        try:
            with self._client.stream("GET", url) as response:
                if response.status_code != 200:
                    record_telegram_call("downloadFile", "error")
                    raise TransferError(
                        f"Download of {remote_file.file_path} returned {response.status_code}",
                        method="downloadFile",
                        http_status=response.status_code
                    )
                record_telegram_call("downloadFile", "success")
                yield response.iter_bytes(CHUNK_SIZE)
        except httpx.HTTPError as e:
            record_telegram_call("downloadFile", "error")
            raise TransferError(
                f"Download of {remote_file.file_path} failed: {type(e).__name__}: {e}",
                method="downloadFile"
            ) from e

    def upload(self, chat_id: int, kind: MediaKind, path: Path) -> None:
        method, field = _UPLOAD_METHODS[kind]
        path = Path(path)
        try:
            with open(path, "rb") as f:
                self._call(method, data={"chat_id": str(chat_id)}, files={field: (path.name, f)})
        except OSError as e:
            raise FilesystemError(f"Failed to read {path}: {e}", path=str(path)) from e
        logger.info("media_uploaded", chat_id=chat_id, kind=kind.value, file_name=path.name)

    def send_message(self, chat_id: int, text: str) -> None:
        self._call("sendMessage", {"chat_id": chat_id, "text": text})

    # =========================================================================
    # Long polling
    # =========================================================================

    def get_updates(self, offset: Optional[int] = None, timeout: int = 50) -> List[TelegramUpdate]:
        data: Dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            data["offset"] = offset
        # The HTTP timeout must outlast the server-side long poll
        result = self._call("getUpdates", data, timeout=timeout + 10)

        updates = []
        for raw in result or []:
            try:
                updates.append(TelegramUpdate.model_validate(raw))
            except ValidationError as e:
                update_id = raw.get("update_id") if isinstance(raw, dict) else None
                logger.warning("update_unparseable", update_id=update_id, error=str(e))
                # Keep the id so the offset still moves past it
                if isinstance(update_id, int):
                    updates.append(TelegramUpdate(update_id=update_id))
        return updates


_client: Optional[TelegramClient] = None


def get_telegram_client() -> TelegramClient:
    """Process-wide Bot API client."""
    global _client
    if _client is None:
        _client = TelegramClient(
            token=settings.TELEGRAM_BOT_TOKEN,
            api_url=settings.TELEGRAM_API_URL,
            timeout=settings.TELEGRAM_TIMEOUT_SECONDS,
        )
    return _client
