"""Git operations for the trunk checkout and phase worktrees, using GitPython.

Every operation is a discrete point-in-time git command. Commands that the
orchestrator treats as fallible return a bool (or a neutral value) and log
the git error; nothing here retries.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

import git
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .errors import FatalSetupError

logger = logging.getLogger(__name__)


class GitRepo:
    """Thin wrapper over a git.Repo working copy (trunk or worktree)."""

    def __init__(self, path: Path, remote: str = "origin"):
        """Open a git working copy.

        Args:
            path: Path of the working copy.
            remote: Name of the remote that hosts trunk and phase branches.

        Raises:
            FatalSetupError: If the directory is not a git repository.
        """
        self.path = Path(path)
        self.remote = remote
        try:
            self.repo = git.Repo(self.path)
        except (InvalidGitRepositoryError, NoSuchPathError) as exc:
            raise FatalSetupError(f"Not a git repository: {self.path}") from exc

    # -- worktrees ---------------------------------------------------------

    def add_worktree(self, path: Path, branch: str) -> None:
        """Create a worktree at path on a new branch from the current HEAD.

        Raises:
            GitCommandError: If git refuses to create the worktree or branch.
        """
        output = self.repo.git.worktree("add", str(path), "-b", branch)
        if output:
            logger.debug(output)

    def prune_worktrees(self) -> None:
        self.repo.git.worktree("prune")

    # -- branches ----------------------------------------------------------

    def branch_exists(self, branch: str) -> bool:
        return any(head.name == branch for head in self.repo.heads)

    def delete_branch(self, branch: str) -> None:
        self.repo.git.branch("-D", branch)

    def remote_branch_exists(self, branch: str) -> bool:
        """Check the remote for a branch head (network call)."""
        try:
            output = self.repo.git.ls_remote("--heads", self.remote, branch)
        except GitCommandError as exc:
            logger.debug(f"ls-remote failed for {branch}: {exc}")
            return False
        return any(line.endswith(f"refs/heads/{branch}") for line in output.splitlines())

    def delete_remote_branch(self, branch: str) -> None:
        self.repo.git.push(self.remote, "--delete", branch)

    def current_branch(self) -> str:
        return self.repo.active_branch.name

    # -- commits -----------------------------------------------------------

    def stage(self, paths: Iterable[str]) -> None:
        self.repo.git.add(*paths)

    def stage_tracked(self) -> None:
        """Stage modifications of tracked files only (git add -u)."""
        self.repo.git.add("-u")

    def commit(self, message: str, signoff: bool = True) -> bool:
        """Create a commit from the index.

        Returns:
            True if a commit was created.
        """
        args = ["-s", "-m", message] if signoff else ["-m", message]
        try:
            output = self.repo.git.commit(*args)
        except GitCommandError as exc:
            logger.error(f"Commit failed: {exc.stderr or exc}")
            return False
        first_line = output.splitlines()[0] if output else message
        logger.info(f"  {first_line}")
        return True

    def has_unstaged_changes(self) -> bool:
        """True when tracked files differ from the index (git diff --quiet fails)."""
        return self.repo.is_dirty(index=False, working_tree=True, untracked_files=False)

    def commit_count(self, base: str, head: str = "HEAD") -> int:
        """Number of commits reachable from head but not from base; 0 on error."""
        try:
            return int(self.repo.git.rev_list("--count", f"{base}..{head}").strip() or 0)
        except (GitCommandError, ValueError) as exc:
            logger.warning(f"Could not count commits {base}..{head}: {exc}")
            return 0

    def oneline_log(self, base: str, limit: int = 30) -> list[str]:
        """One-line summaries of base..HEAD, newest first, at most limit entries."""
        try:
            output = self.repo.git.log("--oneline", f"-{limit}", f"{base}..HEAD")
        except GitCommandError as exc:
            logger.warning(f"Could not read commit log: {exc}")
            return []
        return [line for line in output.splitlines() if line.strip()]

    def is_tracked(self, relative_path: str) -> bool:
        try:
            self.repo.git.ls_files("--error-unmatch", relative_path)
        except GitCommandError:
            return False
        return True

    # -- remote sync -------------------------------------------------------

    def push(self, branch: Optional[str] = None, set_upstream: bool = False) -> bool:
        """Push the current branch (or the given one) to the remote.

        Returns:
            True on success. Errors are logged, never raised.
        """
        args: list[str] = []
        if set_upstream:
            args.append("-u")
        if branch:
            args.extend([self.remote, branch])
        try:
            output = self.repo.git.push(*args)
        except GitCommandError as exc:
            logger.error(f"git push failed: {(exc.stderr or str(exc)).strip()}")
            return False
        if output:
            logger.info(f"  {output}")
        return True

    def pull(self) -> bool:
        try:
            output = self.repo.git.pull()
        except GitCommandError as exc:
            logger.error(f"git pull failed: {(exc.stderr or str(exc)).strip()}")
            return False
        if output:
            logger.info(f"  {output.splitlines()[0]}")
        return True

    def fetch(self, branch: str) -> None:
        self.repo.git.fetch(self.remote, branch)

    def reset_hard(self, ref: str) -> None:
        self.repo.git.reset("--hard", ref)
