"""Remove untracked scratch files that would block a trunk pull."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

from .git_repo import GitRepo

logger = logging.getLogger(__name__)


class ConflictReconciler:
    """Deletes untracked copies of phase state files in the trunk checkout.

    Tracked files are never touched.
    """

    def __init__(self, trunk: GitRepo, paths: Iterable[str]):
        self.trunk = trunk
        self.paths = list(paths)

    def reconcile(self, paths: Optional[Iterable[str]] = None) -> list[Path]:
        """Delete each existing, untracked path.

        Returns:
            The files that were removed.
        """
        removed = []
        for relative in paths if paths is not None else self.paths:
            target = self.trunk.path / relative
            if not target.is_file():
                continue
            if self.trunk.is_tracked(relative):
                continue
            target.unlink()
            logger.info(f"  Removed untracked conflict: {relative}")
            removed.append(target)
        return removed
