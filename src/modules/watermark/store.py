"""
Watermark Store

Keeps at most one active watermark per chat. Uploads, resets and snapshots
for a chat are serialised by a per-chat lock, so a reader always sees either
the old watermark or the new one, never a half-written directory.
"""

import hashlib
import io
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from PIL import Image, UnidentifiedImageError
from sqlalchemy.engine import Engine
from sqlmodel import Session

from src.core.exceptions import FilesystemError, ValidationError, WatermarkMissingError
from src.core.logging import get_logger
from src.core.metrics import record_watermark_update
from src.core.storage import StorageLayout, prepare_directory
from src.modules.watermark.models import Watermark, WatermarkSnapshot

logger = get_logger(__name__)

WATERMARK_EXTENSION = "png"
LOCK_STRIPES = 64


def file_extension(file_name: str) -> str:
    """Text after the last dot, or an empty string when there is none."""
    if "." not in file_name:
        return ""
    return file_name.rsplit(".", 1)[-1]


class WatermarkStore:
    """Per-chat watermark record plus its single file on disk."""

    # Chats share a fixed set of lock stripes
    _locks: List[threading.Lock] = [threading.Lock() for _ in range(LOCK_STRIPES)]

    def __init__(self, engine: Engine, layout: StorageLayout):
        self.engine = engine
        self.layout = layout

    def _lock_for(self, chat_id: int) -> threading.Lock:
        return self._locks[chat_id % LOCK_STRIPES]

    # =========================================================================
    # Validation
    # =========================================================================

    @staticmethod
    def validate_file_name(file_name: Optional[str]) -> str:
        if not file_name or file_extension(file_name).lower() != WATERMARK_EXTENSION:
            raise ValidationError(
                f"Watermark must be a .{WATERMARK_EXTENSION} file, got {file_name!r}",
                details={"file_name": file_name}
            )
        return file_name

    @staticmethod
    def validate_content(content: bytes) -> None:
        try:
            with Image.open(io.BytesIO(content)) as image:
                image_format = image.format
                image.verify()
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise ValidationError(f"Watermark content is not a readable image: {e}") from e
        if image_format != "PNG":
            raise ValidationError(
                f"Watermark content is {image_format}, expected PNG",
                details={"format": image_format}
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def _get_record(self, session: Session, chat_id: int) -> Optional[Watermark]:
        return session.get(Watermark, chat_id)

    def has_watermark(self, chat_id: int) -> bool:
        with Session(self.engine) as session:
            record = self._get_record(session, chat_id)
            return record is not None and record.is_active

    def current(self, chat_id: int) -> Optional[Path]:
        """Path of the active watermark file, or None."""
        with Session(self.engine) as session:
            record = self._get_record(session, chat_id)
            if record is None or not record.is_active:
                return None
            path = self.layout.watermark_dir(chat_id) / record.file_name
        return path if path.is_file() else None

    def generation(self, chat_id: int) -> int:
        with Session(self.engine) as session:
            record = self._get_record(session, chat_id)
            return record.generation if record else 0

    def snapshot(self, chat_id: int) -> WatermarkSnapshot:
        """Copy the active watermark out under the chat lock."""
        with self._lock_for(chat_id):
            with Session(self.engine) as session:
                record = self._get_record(session, chat_id)
                if record is None or not record.is_active:
                    raise WatermarkMissingError(chat_id=chat_id)
                path = self.layout.watermark_dir(chat_id) / record.file_name
                try:
                    content = path.read_bytes()
                except FileNotFoundError as e:
                    raise WatermarkMissingError(
                        f"Watermark record exists but {path.name} is missing",
                        chat_id=chat_id
                    ) from e
                except OSError as e:
                    raise FilesystemError(f"Failed to read watermark: {e}", path=str(path)) from e
                return WatermarkSnapshot(
                    chat_id=chat_id,
                    generation=record.generation,
                    file_name=record.file_name,
                    content=content,
                    content_sha256=record.content_sha256 or hashlib.sha256(content).hexdigest(),
                )

    # =========================================================================
    # Mutations
    # =========================================================================

    def save(self, chat_id: int, file_name: str, content: bytes) -> Path:
        """
        Replace the chat's watermark.

        Nothing is written unless both the name and the content are valid.
        """
        try:
            self.validate_file_name(file_name)
            self.validate_content(content)
        except ValidationError:
            record_watermark_update("rejected")
            raise

        name = Path(file_name).name
        digest = hashlib.sha256(content).hexdigest()

        with self._lock_for(chat_id):
            directory = prepare_directory(self.layout.watermark_dir(chat_id))
            path = directory / name
            try:
                path.write_bytes(content)
            except OSError as e:
                raise FilesystemError(f"Failed to write watermark: {e}", path=str(path)) from e

            with Session(self.engine) as session:
                record = self._get_record(session, chat_id) or Watermark(chat_id=chat_id)
                record.file_name = name
                record.content_sha256 = digest
                record.size_bytes = len(content)
                record.generation += 1
                record.updated_at = datetime.utcnow()
                session.add(record)
                session.commit()
                generation = record.generation

        record_watermark_update("uploaded")
        logger.info(
            "watermark_saved",
            chat_id=chat_id,
            file_name=name,
            size_bytes=len(content),
            generation=generation
        )
        return path

    def reset(self, chat_id: int) -> None:
        """Remove the chat's watermark, leaving its directory empty."""
        with self._lock_for(chat_id):
            prepare_directory(self.layout.watermark_dir(chat_id))

            with Session(self.engine) as session:
                record = self._get_record(session, chat_id)
                if record is not None:
                    record.file_name = None
                    record.content_sha256 = None
                    record.size_bytes = 0
                    record.generation += 1
                    record.updated_at = datetime.utcnow()
                    session.add(record)
                    session.commit()

        record_watermark_update("reset")
        logger.info("watermark_reset", chat_id=chat_id)
