"""Merge a phase pull request and bring the trunk checkout up to date."""

from __future__ import annotations

import logging

from git.exc import GitCommandError

from .conflicts import ConflictReconciler
from .errors import MergeError
from .git_repo import GitRepo
from .github import GitHubClient
from .review import ReviewHandle

logger = logging.getLogger(__name__)

MERGE_STRATEGIES = ("merge", "squash")


class MergeController:
    """Merges with a squash fallback, then mirrors the remote trunk locally."""

    def __init__(
        self,
        github: GitHubClient,
        trunk_repo: GitRepo,
        reconciler: ConflictReconciler,
        trunk: str = "main",
    ):
        self.github = github
        self.trunk_repo = trunk_repo
        self.reconciler = reconciler
        self.trunk = trunk

    def log_changed_files(self, handle: ReviewHandle) -> list[str]:
        files = self.github.changed_files(handle.number, cwd=self.trunk_repo.path)
        logger.info(f"Changed files in PR #{handle.number}:")
        for name in files:
            logger.info(f"  {name}")
        return files

    def merge(self, handle: ReviewHandle) -> str:
        """Merge the pull request, falling back to squash.

        Returns:
            The strategy that succeeded.

        Raises:
            MergeError: If every strategy failed. The PR is left open.
        """
        logger.info(f"Merging PR #{handle.number} ...")
        for strategy in MERGE_STRATEGIES:
            result = self.github.merge(handle.number, strategy, cwd=self.trunk_repo.path)
            if result.ok:
                logger.info(f"PR #{handle.number} merged!")
                return strategy
            logger.warning(f"Merge with --{strategy} failed: {result.output}")

        logger.error(f"ERROR: All merge strategies failed for PR #{handle.number}.")
        logger.error(f"  PR left open: {handle.url}")
        raise MergeError("Merge failed")

    def sync_trunk(self) -> None:
        """Pull trunk; on failure hard-reset it to the remote trunk."""
        self.reconciler.reconcile()
        if not self.trunk_repo.pull():
            logger.warning("WARNING: git pull failed. Trying fetch + reset ...")
            try:
                self.trunk_repo.fetch(self.trunk)
            except GitCommandError as exc:
                logger.warning(f"git fetch failed: {exc}")
            try:
                self.trunk_repo.reset_hard(f"{self.trunk_repo.remote}/{self.trunk}")
            except GitCommandError as exc:
                logger.warning(f"git reset failed: {exc}")
        logger.info("Main branch synced.")
