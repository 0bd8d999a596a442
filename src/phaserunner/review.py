"""Push a phase branch and open its pull request."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .config import DEFAULT_TEST_PLAN, PhaseDefinition
from .errors import ReviewError
from .git_repo import GitRepo
from .github import GitHubClient, parse_pr_number
from .task_list import TaskList
from .workspace_manager import Workspace

logger = logging.getLogger(__name__)

TITLE_LIMIT = 70
COMMIT_LOG_LIMIT = 30


@dataclass(frozen=True)
class ReviewHandle:
    """An open pull request."""

    number: int
    url: str
    title: str


def format_title(description: str, limit: int = TITLE_LIMIT) -> str:
    """PR title for a phase, truncated with an ellipsis past the limit."""
    title = f"feat: {description}"
    if len(title) > limit:
        title = title[: limit - 3] + "..."
    return title


def format_body(
    description: str,
    tasks: TaskList,
    commits: list[str],
    test_plan: Optional[list[str]] = None,
) -> str:
    """Markdown PR description from commit history and task state."""
    commit_log = "\n".join(commits[:COMMIT_LOG_LIMIT]) if commits else "(unable to read)"
    plan = "\n".join(f"- [ ] {item}" for item in (test_plan if test_plan is not None else DEFAULT_TEST_PLAN))
    return (
        "## Summary\n\n"
        f"{description} - automated implementation by the Ralph agent.\n\n"
        f"**Progress: {tasks.completed} / {tasks.total} user stories completed.**\n\n"
        "### Commits\n\n"
        f"```\n{commit_log}\n```\n\n"
        "### User stories\n\n"
        f"{tasks.render_checklist()}\n\n"
        "## Test plan\n\n"
        f"{plan}\n"
    )


class ReviewGate:
    """Pushes the workspace branch and opens a pull request against trunk."""

    def __init__(
        self,
        github: GitHubClient,
        trunk: str = "main",
        test_plan: Optional[list[str]] = None,
        push_retry_delay: float = 10,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.github = github
        self.trunk = trunk
        self.test_plan = test_plan
        self.push_retry_delay = push_retry_delay
        self.sleep = sleep

    def push(self, repo: GitRepo, branch: str) -> None:
        """Push with one retry after a fixed backoff.

        Raises:
            ReviewError: If both attempts fail.
        """
        logger.info(f"Pushing {branch} to {repo.remote} ...")
        if repo.push(branch, set_upstream=True):
            return
        logger.warning(f"Push failed. Retrying in {self.push_retry_delay:g}s ...")
        self.sleep(self.push_retry_delay)
        if not repo.push(branch, set_upstream=True):
            raise ReviewError("Failed to push branch after retry")

    def open_review(
        self,
        repo: GitRepo,
        workspace: Workspace,
        phase: PhaseDefinition,
        tasks: TaskList,
    ) -> ReviewHandle:
        """Push the branch and create the pull request.

        Raises:
            ReviewError: If the push, the PR creation or PR number parsing fails.
        """
        self.push(repo, workspace.branch)

        title = format_title(phase.description)
        body = format_body(
            phase.description,
            tasks,
            repo.oneline_log(self.trunk, limit=COMMIT_LOG_LIMIT),
            self.test_plan,
        )

        logger.info("Creating PR ...")
        result = self.github.create_pr(title, body, self.trunk, cwd=workspace.path)
        if not result.ok:
            logger.error(f"ERROR: gh pr create failed: {result.output}")
            raise ReviewError("Failed to create PR")

        lines = [line.strip() for line in (result.stdout or result.output).splitlines() if line.strip()]
        url = lines[-1] if lines else ""
        number = parse_pr_number(url)
        if number is None:
            logger.error(f"ERROR: Could not extract PR number from: {url}")
            raise ReviewError("Failed to extract PR number")

        logger.info(f"Created PR #{number}: {url}")
        return ReviewHandle(number=number, url=url, title=title)
