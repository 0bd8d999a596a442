"""Tests for workspace_manager.py against real temporary git repositories."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from git.exc import GitCommandError

from phaserunner.errors import SetupError
from phaserunner.git_repo import GitRepo
from phaserunner.workspace_manager import Workspace, WorkspaceManager

BRANCH = "ralph/phase2-formatting"


@pytest.fixture
def worktree_path(tmp_path: Path) -> Path:
    return tmp_path / "project-ralph-phase2-formatting"


class TestAcquire:
    """Tests for WorkspaceManager.acquire."""

    def test_creates_worktree_and_branch(self, trunk: GitRepo, worktree_path: Path) -> None:
        manager = WorkspaceManager(trunk)

        workspace = manager.acquire(BRANCH, worktree_path)

        assert workspace.path == worktree_path
        assert (worktree_path / "README.md").exists()
        assert trunk.branch_exists(BRANCH)
        assert workspace.open_repo().current_branch() == BRANCH
        assert manager.active is workspace

    def test_removes_leftovers(self, trunk: GitRepo, worktree_path: Path) -> None:
        # Simulate a crashed earlier run: stale directory, local and remote branch
        trunk.repo.git.branch(BRANCH)
        trunk.push(BRANCH)
        worktree_path.mkdir()
        (worktree_path / "junk.txt").write_text("stale")
        assert trunk.remote_branch_exists(BRANCH)

        workspace = WorkspaceManager(trunk).acquire(BRANCH, worktree_path)

        assert not (workspace.path / "junk.txt").exists()
        assert not trunk.remote_branch_exists(BRANCH)
        assert trunk.branch_exists(BRANCH)

    def test_second_acquire_of_active_branch_fails(self, trunk: GitRepo, worktree_path: Path) -> None:
        manager = WorkspaceManager(trunk)
        manager.acquire(BRANCH, worktree_path)

        with pytest.raises(SetupError, match="already active"):
            manager.acquire(BRANCH, worktree_path)

    def test_worktree_failure_is_setup_error(self, tmp_path: Path) -> None:
        trunk = MagicMock()
        trunk.branch_exists.return_value = False
        trunk.remote_branch_exists.return_value = False
        trunk.add_worktree.side_effect = GitCommandError("worktree", 128, stderr="fatal: invalid reference")

        with pytest.raises(SetupError, match="Failed to create worktree"):
            WorkspaceManager(trunk).acquire(BRANCH, tmp_path / "wt")


class TestRelease:
    """Tests for WorkspaceManager.release."""

    def test_removes_worktree_and_branches(self, trunk: GitRepo, worktree_path: Path) -> None:
        manager = WorkspaceManager(trunk)
        workspace = manager.acquire(BRANCH, worktree_path)
        repo = workspace.open_repo()
        repo.push(BRANCH, set_upstream=True)

        manager.release(workspace)

        assert workspace.released
        assert not worktree_path.exists()
        assert not trunk.branch_exists(BRANCH)
        assert not trunk.remote_branch_exists(BRANCH)
        assert manager.active is None

    def test_release_is_idempotent(self, trunk: GitRepo, worktree_path: Path) -> None:
        manager = WorkspaceManager(trunk)
        workspace = manager.acquire(BRANCH, worktree_path)

        manager.release(workspace)
        manager.release(workspace)

        assert not worktree_path.exists()

    def test_release_of_never_created_workspace(self, trunk: GitRepo, worktree_path: Path) -> None:
        manager = WorkspaceManager(trunk)

        manager.release(Workspace(path=worktree_path, branch=BRANCH))

        assert not trunk.branch_exists(BRANCH)

    def test_failing_step_does_not_stop_later_steps(self, tmp_path: Path) -> None:
        trunk = MagicMock()
        trunk.prune_worktrees.side_effect = GitCommandError("worktree", 1)
        trunk.branch_exists.return_value = True
        trunk.delete_branch.side_effect = GitCommandError("branch", 1)
        trunk.remote_branch_exists.return_value = True
        path = tmp_path / "wt"
        path.mkdir()

        WorkspaceManager(trunk).release(Workspace(path=path, branch=BRANCH))

        assert not path.exists()
        trunk.delete_remote_branch.assert_called_once_with(BRANCH)
