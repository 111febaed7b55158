"""Per-session workspace lifecycle management."""

import asyncio
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, Set

import structlog

from ...config import settings
from ...utils.request_helpers import short_id

logger = structlog.get_logger(__name__)


@dataclass
class WorkspaceInfo:
    """Directory exclusively owned by one session.

    Holds the submitted source, the compiled artifact and the runtime
    prefix directory.
    """

    session_id: str
    root: Path
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def source_path(self) -> Path:
        return self.root / settings.source_filename

    @property
    def artifact_path(self) -> Path:
        return self.root / settings.artifact_filename

    @property
    def prefix_dir(self) -> Path:
        return self.root / settings.runtime_prefix_dirname

    def exists(self) -> bool:
        return self.root.is_dir()


class WorkspaceManager:
    """Creates, fills and removes session workspaces.

    Blocking filesystem work (source writes, template copies, removal) is
    offloaded to a worker thread so the event loop never stalls.
    """

    def __init__(self, base_dir: Path = None):
        """Initialize the workspace manager.

        Args:
            base_dir: Root under which workspaces are created
                (defaults to settings)
        """
        self._base_dir = Path(base_dir) if base_dir else settings.get_workspace_base_dir()
        self._initialization_error: Optional[str] = None
        self._removal_tasks: Set[asyncio.Task] = set()

        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self._initialization_error = (
                f"Failed to create workspace base directory {self._base_dir}: {e}"
            )
            logger.error(
                "Workspace base directory creation failed",
                base_dir=str(self._base_dir),
                error=str(e),
            )

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def get_initialization_error(self) -> Optional[str]:
        return self._initialization_error

    def create_workspace(self, session_id: str) -> WorkspaceInfo:
        """Create the workspace directory for a session.

        Raises:
            RuntimeError: if the directory cannot be created
        """
        root = self._base_dir / session_id
        try:
            root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(
                "Failed to create workspace",
                session_id=short_id(session_id),
                error=str(e),
            )
            raise RuntimeError(f"Failed to create workspace: {e}")

        logger.debug("Created workspace", session_id=short_id(session_id), root=str(root))
        return WorkspaceInfo(session_id=session_id, root=root)

    async def write_source(self, workspace: WorkspaceInfo, code: str) -> Path:
        """Write (overwrite) the submitted source file."""
        path = workspace.source_path
        await asyncio.to_thread(path.write_text, code, encoding="utf-8")
        return path

    async def prepare_runtime_prefix(self, workspace: WorkspaceInfo) -> Path:
        """Materialize the runtime prefix directory.

        Copies the pre-baked template when one is configured and present,
        otherwise creates an empty directory. An existing prefix is reused.
        """
        prefix = workspace.prefix_dir
        if prefix.exists():
            return prefix

        template = settings.runtime_template_dir
        if template and Path(template).is_dir():
            logger.debug(
                "Copying runtime template",
                session_id=short_id(workspace.session_id),
                template=template,
            )
            await asyncio.to_thread(
                shutil.copytree, template, str(prefix), symlinks=True
            )
        else:
            await asyncio.to_thread(prefix.mkdir, parents=True, exist_ok=True)
        return prefix

    def remove_workspace(self, workspace: WorkspaceInfo) -> bool:
        """Remove a workspace directory tree immediately.

        Returns:
            True if successful, False otherwise
        """
        try:
            if workspace.root.exists():
                shutil.rmtree(str(workspace.root))
            logger.debug("Removed workspace", session_id=short_id(workspace.session_id))
            return True
        except Exception as e:
            logger.warning(
                "Failed to remove workspace",
                session_id=short_id(workspace.session_id),
                error=str(e),
            )
            return False

    def schedule_removal(
        self, workspace: Optional[WorkspaceInfo], delay: float = None
    ) -> Optional[asyncio.Task]:
        """Remove a workspace after ``delay`` seconds without blocking the caller."""
        if workspace is None:
            return None
        if delay is None:
            delay = settings.workspace_cleanup_delay_seconds

        task = asyncio.create_task(self._remove_later(workspace, delay))
        self._removal_tasks.add(task)
        task.add_done_callback(self._removal_tasks.discard)
        return task

    async def _remove_later(self, workspace: WorkspaceInfo, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        await asyncio.to_thread(self.remove_workspace, workspace)

    async def drain(self) -> None:
        """Wait for pending removals, used on shutdown."""
        if self._removal_tasks:
            await asyncio.gather(*list(self._removal_tasks), return_exceptions=True)
