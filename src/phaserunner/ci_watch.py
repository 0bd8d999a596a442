"""CI watch and auto-fix loop.

Each attempt moves through REGISTERING -> WATCHING -> {PASSED, FAILED,
TIMED_OUT}. The watch itself is a background ``gh pr checks --watch``
process supervised against a wall-clock deadline; on expiry it is terminated
and the whole loop ends. Known failure classes (formatting, lint) get an
automatic fix and a fresh attempt, except on the final attempt.

CI failure is advisory: the loop always returns a result and the caller
merges anyway.
"""

from __future__ import annotations

import logging
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .agent_runner import AgentRunner
from .config import CISettings
from .git_repo import GitRepo
from .github import CheckBucket, FailureClass, GitHubClient, classify, classify_checks
from .run_logger import log_command_output
from .workspace_manager import Workspace

logger = logging.getLogger(__name__)

REGISTERED_BUCKETS = (CheckBucket.PASS, CheckBucket.FAIL, CheckBucket.PENDING)
FORMAT_FIX_MESSAGE = "style: auto-fix formatting for CI"
TERMINATE_GRACE = 10


class CIState(str, Enum):
    """State of one CI attempt."""

    REGISTERING = "registering"
    WATCHING = "watching"
    TIMED_OUT = "timed_out"
    PASSED = "passed"
    FAILED = "failed"


@dataclass
class CIAttempt:
    """One traversal of the CI state machine."""

    number: int
    state: CIState = CIState.REGISTERING
    deadline: Optional[float] = None
    checks_registered: int = 0
    failures: set[FailureClass] = field(default_factory=set)
    remediated: bool = False


@dataclass
class CIResult:
    """Outcome of the whole CI loop for one pull request."""

    passed: bool = False
    timed_out: bool = False
    attempts: list[CIAttempt] = field(default_factory=list)

    @property
    def remediations(self) -> int:
        return sum(1 for a in self.attempts if a.remediated)


class CIWatcher:
    """Supervises a single background check watch under a deadline."""

    def __init__(
        self,
        github: GitHubClient,
        timeout: float = 1800,
        tick: float = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.github = github
        self.timeout = timeout
        self.tick = tick
        self.clock = clock
        self.process: Optional[subprocess.Popen] = None
        self.deadline: Optional[float] = None

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def watch(self, pr_number: int, cwd: Optional[Path] = None) -> CIState:
        """Run the watch until it exits or the deadline passes.

        Returns:
            PASSED on a clean exit, FAILED on a non-zero exit, TIMED_OUT when
            the deadline expired and the watcher was terminated.
        """
        with tempfile.TemporaryFile("w+", encoding="utf-8", errors="replace") as output:
            self.process = self.github.watch_checks(pr_number, output, cwd=cwd)
            self.deadline = self.clock() + self.timeout
            state = self._supervise(self.process, self.deadline)
            output.seek(0)
            log_command_output(output.read())
        self.process = None
        return state

    def _supervise(self, process: subprocess.Popen, deadline: float) -> CIState:
        while True:
            remaining = deadline - self.clock()
            if remaining <= 0:
                logger.error(f"CI watch timed out after {self.timeout / 60:g} minutes.")
                self.stop()
                return CIState.TIMED_OUT
            try:
                exit_code = process.wait(timeout=min(self.tick, remaining))
            except subprocess.TimeoutExpired:
                continue
            return CIState.PASSED if exit_code == 0 else CIState.FAILED

    def stop(self) -> None:
        """Terminate a live watcher and wait for it to exit."""
        process = self.process
        if process is None or process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=TERMINATE_GRACE)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
        logger.info("Killed background CI watch process.")


class CIWatchLoop:
    """Bounded watch / classify / auto-fix / retry loop for one pull request."""

    def __init__(
        self,
        github: GitHubClient,
        agent: AgentRunner,
        settings: Optional[CISettings] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.github = github
        self.agent = agent
        self.settings = settings or CISettings()
        self.sleep = sleep
        self.watcher = CIWatcher(
            github,
            timeout=self.settings.watch_timeout,
            tick=self.settings.watch_tick,
            clock=clock,
        )

    @property
    def active_watcher(self) -> Optional[subprocess.Popen]:
        return self.watcher.process if self.watcher.running else None

    def stop(self) -> None:
        self.watcher.stop()

    def run(self, pr_number: int, workspace: Workspace, repo: GitRepo) -> CIResult:
        """Watch CI for a pull request, fixing known failures between attempts."""
        settings = self.settings
        result = CIResult()

        for number in range(1, settings.max_attempts + 1):
            attempt = CIAttempt(number=number)
            result.attempts.append(attempt)

            logger.info(
                f"Waiting {settings.registration_grace:g}s for CI to register "
                f"(attempt {number}/{settings.max_attempts}) ..."
            )
            self.sleep(settings.registration_grace)
            attempt.checks_registered = self.wait_for_registration(pr_number, workspace.path)

            logger.info(
                f"Watching CI checks on PR #{pr_number} "
                f"({attempt.checks_registered} checks registered) ..."
            )
            attempt.state = CIState.WATCHING
            attempt.state = self.watcher.watch(pr_number, cwd=workspace.path)
            attempt.deadline = self.watcher.deadline

            if attempt.state is CIState.TIMED_OUT:
                logger.error(f"ERROR: CI timed out for PR #{pr_number}.")
                result.timed_out = True
                break

            if attempt.state is CIState.PASSED:
                result.passed = True
                break

            logger.warning(f"CI checks failed (attempt {number}). Checking what went wrong ...")
            attempt.failures = self.classify_failures(pr_number, workspace.path)

            if number < settings.max_attempts:
                if self.remediate(attempt.failures, workspace, repo):
                    logger.info("  Pushing fixes ...")
                    if self.push_fixes(repo):
                        attempt.remediated = True
                        continue
                    logger.warning("  Push still failing. Moving on.")
                else:
                    logger.info("  No auto-fix available for this failure.")

            logger.warning(f"CI attempt {number} failed for PR #{pr_number}.")

        return result

    def wait_for_registration(self, pr_number: int, cwd: Optional[Path] = None) -> int:
        """Poll until enough check runs are registered, or give up after the rounds.

        Returns:
            The number of registered check runs seen last.
        """
        count = 0
        for _ in range(self.settings.registration_rounds):
            checks = self.github.list_checks(pr_number, cwd=cwd)
            count = sum(1 for c in checks if c.bucket in REGISTERED_BUCKETS)
            if count >= self.settings.min_checks:
                break
            logger.info(f"  Only {count} checks registered, waiting {self.settings.registration_interval:g}s ...")
            self.sleep(self.settings.registration_interval)
        return count

    def classify_failures(self, pr_number: int, cwd: Optional[Path] = None) -> set[FailureClass]:
        """Log the check summary and return the auto-fixable failure classes."""
        text = self.github.checks_text(pr_number, cwd=cwd)
        log_command_output(text)
        checks = self.github.list_checks(pr_number, cwd=cwd)
        if checks:
            return classify_checks(checks)
        return classify(text)

    def remediate(self, failures: set[FailureClass], workspace: Workspace, repo: GitRepo) -> bool:
        """Apply automatic fixes for the given failure classes.

        Returns:
            True if anything was committed.
        """
        fixed = False
        if FailureClass.FORMAT in failures:
            logger.info(f"  Auto-fixing: running {' '.join(self.settings.format_command)} ...")
            fixed = self._fix_formatting(workspace, repo) or fixed
        if FailureClass.LINT in failures:
            logger.info("  Auto-fixing: running the coding agent to fix lint warnings ...")
            fixed = self.agent.fix_lint(workspace) or fixed
        return fixed

    def _fix_formatting(self, workspace: Workspace, repo: GitRepo) -> bool:
        try:
            result = subprocess.run(
                self.settings.format_command,
                cwd=workspace.path,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError:
            logger.error(f"Formatter not found: {self.settings.format_command[0]}")
            return False
        if result.returncode != 0:
            log_command_output(result.stderr)
            return False
        if not repo.has_unstaged_changes():
            return False
        repo.stage_tracked()
        return repo.commit(FORMAT_FIX_MESSAGE)

    def push_fixes(self, repo: GitRepo) -> bool:
        """Push remediation commits, retrying once."""
        if repo.push():
            return True
        logger.warning("  Push failed after auto-fix. Retrying push ...")
        self.sleep(self.settings.fix_push_retry_delay)
        return repo.push()
