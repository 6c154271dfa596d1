"""
Storage Layer - Per-Session Directory Layout and Request Workspaces

Layout under STORAGE_PATH:
    <chat_id>/watermark/<file>
    <chat_id>/source/<request_id>/<file>
    <chat_id>/processed/<request_id>/<file>

Every media request gets its own source/processed pair keyed by request id,
so concurrent requests for one chat never share a directory.
"""

import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Union

from src.core.config import settings
from src.core.exceptions import FilesystemError
from src.core.logging import get_logger

logger = get_logger(__name__)

PathLike = Union[str, Path]


def remove_tree(path: PathLike) -> None:
    """
    Delete a directory tree without recursion.

    Entries are collected breadth-first into a flat arena, so every directory
    appears before its children; deleting the arena back to front removes
    children first. Symlinks are unlinked and never followed.
    """
    root = Path(path)
    if not root.is_symlink() and not root.exists():
        return

    arena: List[Path] = [root]
    index = 0
    try:
        while index < len(arena):
            entry = arena[index]
            index += 1
            if entry.is_symlink() or not entry.is_dir():
                continue
            with os.scandir(entry) as children:
                for child in children:
                    arena.append(Path(child.path))

        for entry in reversed(arena):
            if entry.is_symlink() or not entry.is_dir():
                entry.unlink(missing_ok=True)
            else:
                entry.rmdir()
    except OSError as e:
        raise FilesystemError(f"Failed to remove {root}: {e}", path=str(root)) from e


def prepare_directory(path: PathLike) -> Path:
    """Wipe whatever is at `path` and recreate it as an empty directory."""
    directory = Path(path)
    remove_tree(directory)
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FilesystemError(f"Failed to create {directory}: {e}", path=str(directory)) from e
    return directory


class StorageLayout:
    """Resolves the per-session paths under the storage root."""

    def __init__(self, root: PathLike):
        self.root = Path(root)

    def session_dir(self, chat_id: int) -> Path:
        return self.root / str(chat_id)

    def watermark_dir(self, chat_id: int) -> Path:
        return self.session_dir(chat_id) / "watermark"

    def source_dir(self, chat_id: int, request_id: str) -> Path:
        return self.session_dir(chat_id) / "source" / request_id

    def processed_dir(self, chat_id: int, request_id: str) -> Path:
        return self.session_dir(chat_id) / "processed" / request_id


@dataclass(frozen=True)
class Workspace:
    """The isolated directories of one processing request."""
    chat_id: int
    request_id: str
    source_dir: Path
    processed_dir: Path


class WorkspaceManager:
    """Allocates and reclaims per-request workspaces."""

    def __init__(self, layout: StorageLayout):
        self.layout = layout

    def allocate(self, chat_id: int, request_id: str) -> Workspace:
        source_dir = prepare_directory(self.layout.source_dir(chat_id, request_id))
        processed_dir = prepare_directory(self.layout.processed_dir(chat_id, request_id))
        logger.debug("workspace_allocated", source_dir=str(source_dir), processed_dir=str(processed_dir))
        return Workspace(chat_id, request_id, source_dir, processed_dir)

    def release(self, chat_id: int, request_id: str) -> None:
        """Remove both request directories. Safe to call more than once."""
        remove_tree(self.layout.source_dir(chat_id, request_id))
        remove_tree(self.layout.processed_dir(chat_id, request_id))
        logger.debug("workspace_released")

    def exists(self, chat_id: int, request_id: str) -> bool:
        return (
            self.layout.source_dir(chat_id, request_id).exists()
            or self.layout.processed_dir(chat_id, request_id).exists()
        )

    @contextmanager
    def workspace(self, chat_id: int, request_id: str) -> Iterator[Workspace]:
        """
        Scoped workspace: allocated on entry, released on every exit path.

        If the body raised, a failing release is logged and the original
        error propagates unchanged.
        """
        workspace = self.allocate(chat_id, request_id)
        try:
            yield workspace
        except BaseException:
            try:
                self.release(chat_id, request_id)
            except FilesystemError as release_error:
                logger.error("workspace_release_failed", **release_error.to_log_dict())
            raise
        self.release(chat_id, request_id)


class StorageFactory:
    """Process-wide storage layout and workspace manager."""

    _manager: Optional[WorkspaceManager] = None

    @classmethod
    def get_workspace_manager(cls) -> WorkspaceManager:
        if cls._manager is None:
            cls._manager = WorkspaceManager(StorageLayout(settings.STORAGE_PATH))
        return cls._manager


def get_workspace_manager() -> WorkspaceManager:
    return StorageFactory.get_workspace_manager()
