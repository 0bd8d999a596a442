"""Workspace management for phase worktrees.

A workspace is a git worktree plus the branch it was created on. It is
exclusively owned by the active phase: created at phase start, destroyed at
phase end or when the phase is skipped.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from git.exc import GitCommandError

from .errors import SetupError
from .git_repo import GitRepo

logger = logging.getLogger(__name__)


@dataclass
class Workspace:
    """An isolated, branch-scoped working copy."""

    path: Path
    branch: str
    released: bool = False

    def open_repo(self, remote: str = "origin") -> GitRepo:
        return GitRepo(self.path, remote=remote)


class WorkspaceManager:
    """Creates and destroys phase workspaces from the trunk checkout."""

    def __init__(self, trunk: GitRepo):
        """Initialize workspace manager.

        Args:
            trunk: The trunk working copy that owns the worktrees.
        """
        self.trunk = trunk
        self._active: dict[str, Workspace] = {}

    @property
    def active(self) -> Optional[Workspace]:
        """The workspace currently in use, if any."""
        return next(iter(self._active.values()), None)

    def acquire(self, branch: str, path: Path) -> Workspace:
        """Remove leftovers from earlier runs, then create a fresh worktree.

        Args:
            branch: Branch to create from the trunk HEAD.
            path: Directory for the worktree.

        Returns:
            The new Workspace.

        Raises:
            SetupError: If the worktree or branch cannot be created.
        """
        if branch in self._active:
            raise SetupError(f"Workspace for {branch} is already active")

        path = Path(path)
        if path.exists():
            logger.info(f"Removing leftover worktree: {path}")
            self._best_effort("remove leftover directory", lambda: shutil.rmtree(path))
            self._best_effort("prune worktrees", self.trunk.prune_worktrees)

        if self.trunk.branch_exists(branch):
            logger.info(f"Removing leftover local branch: {branch}")
            self._best_effort("delete leftover branch", lambda: self.trunk.delete_branch(branch))

        if self.trunk.remote_branch_exists(branch):
            logger.info(f"Removing leftover remote branch: {branch}")
            self._best_effort(
                "delete leftover remote branch",
                lambda: self.trunk.delete_remote_branch(branch),
            )

        logger.info(f"Creating worktree at {path} ...")
        try:
            self.trunk.add_worktree(path, branch)
        except (GitCommandError, OSError) as exc:
            detail = exc.stderr.strip() if isinstance(exc, GitCommandError) and exc.stderr else str(exc)
            raise SetupError(f"Failed to create worktree: {detail}") from exc

        workspace = Workspace(path=path, branch=branch)
        self._active[branch] = workspace
        return workspace

    def release(self, workspace: Workspace) -> None:
        """Tear a workspace down. Never raises and is safe to call twice."""
        path, branch = workspace.path, workspace.branch

        if path.exists():
            self._best_effort("remove worktree directory", lambda: shutil.rmtree(path))
        self._best_effort("prune worktrees", self.trunk.prune_worktrees)
        if self.trunk.branch_exists(branch):
            self._best_effort("delete local branch", lambda: self.trunk.delete_branch(branch))
        if self.trunk.remote_branch_exists(branch):
            self._best_effort("delete remote branch", lambda: self.trunk.delete_remote_branch(branch))

        workspace.released = True
        self._active.pop(branch, None)

    @staticmethod
    def _best_effort(description: str, step: Callable[[], object]) -> bool:
        try:
            step()
        except Exception as exc:
            logger.warning(f"Cleanup step failed ({description}): {exc}")
            return False
        return True
