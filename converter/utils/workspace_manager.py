"""
Per-request scratch directories.

Every conversion job writes its input and the converter's output into a
directory of its own. The directory name embeds a random UUID so concurrent
requests never collide, and it is removed recursively when the job ends,
whatever the outcome. Removal failures are logged and swallowed so they
never replace the job's own result or error.
"""

import shutil
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Union

from ..config import DEFAULT_TMP_DIR, WORKSPACE_ROOTS
from .logging_config import get_logger

logger = get_logger(__name__)


class WorkspaceError(Exception):
    """Raised when a workspace directory cannot be created."""
    pass


def remove_tree(path: Union[str, Path]) -> None:
    """Best-effort recursive delete. Never raises."""
    try:
        shutil.rmtree(path, ignore_errors=False)
        logger.debug(f"Removed workspace: {path}")
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove workspace {path}: {e}")


class WorkspaceManager:
    """
    Allocates uniquely named directories under one sub-root.

    Separate managers are used for whole-request jobs, per-sheet jobs and
    per-call converter profiles; each allocates and tears down on its own.
    """

    def __init__(self, base_dir: Union[str, Path] = DEFAULT_TMP_DIR, kind: str = "jobs"):
        """
        Args:
            base_dir: Scratch root shared by all managers
            kind: Sub-root name, one of WORKSPACE_ROOTS or any custom name
        """
        self.base_dir = Path(base_dir)
        self.kind = kind
        self.root = self.base_dir / WORKSPACE_ROOTS.get(kind, kind)

    def allocate(self) -> Path:
        """Create and return a fresh directory under this manager's root."""
        path = self.root / str(uuid.uuid4())
        try:
            path.mkdir(parents=True, exist_ok=False)
        except OSError as e:
            raise WorkspaceError(f"Failed to create workspace {path}: {e}") from e
        logger.debug(f"Created {self.kind} workspace: {path}")
        return path

    def release(self, path: Union[str, Path]) -> None:
        remove_tree(path)

    @asynccontextmanager
    async def workspace(self) -> AsyncIterator[Path]:
        """
        Async context manager yielding a fresh workspace directory.

        Usage:
            async with manager.workspace() as job_dir:
                (job_dir / "input.docx").write_bytes(data)
            # directory is gone here, on success or on error
        """
        path = self.allocate()
        try:
            yield path
        finally:
            self.release(path)

    def __repr__(self):
        return f"WorkspaceManager(root={self.root})"
