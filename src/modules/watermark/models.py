"""
Watermark Record

One row per chat. The row is the source of truth for whether a watermark
is active; the file on disk is its content. `generation` increases on every
upload and reset so readers can tell which version they pinned.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Column
from sqlmodel import SQLModel, Field


class Watermark(SQLModel, table=True):
    __tablename__ = "watermarks"

    chat_id: int = Field(sa_column=Column(BigInteger, primary_key=True, autoincrement=False))

    # None after a reset
    file_name: Optional[str] = None
    content_sha256: Optional[str] = None
    size_bytes: int = Field(default=0)

    generation: int = Field(default=0)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_active(self) -> bool:
        return self.file_name is not None


@dataclass(frozen=True)
class WatermarkSnapshot:
    """An immutable copy of a chat's watermark taken at one generation."""
    chat_id: int
    generation: int
    file_name: str
    content: bytes
    content_sha256: str

    @property
    def suffix(self) -> str:
        return "." + self.file_name.rsplit(".", 1)[-1] if "." in self.file_name else ""
