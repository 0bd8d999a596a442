"""Phase orchestrator for the multi-phase build pipeline.

Phases run strictly in order. For each one the orchestrator coordinates:
- WorkspaceManager: fresh worktree and branch, torn down afterwards
- AgentRunner: the external coding loop
- ReviewGate: push and pull request
- CIWatchLoop: CI watch with bounded auto-fix retries
- MergeController: merge and trunk sync

A failure inside one phase (a PhaseSkipError or any other unexpected error)
skips that phase and the run continues with the next one. Only
FatalSetupError before the first phase, or an interrupt, stops the run.
"""

from __future__ import annotations

import logging
import shutil
import time
from typing import Callable, Optional

from git.exc import GitCommandError

from .agent_runner import AgentRunner
from .ci_watch import CIWatchLoop
from .config import PhaseDefinition, RunnerConfig
from .conflicts import ConflictReconciler
from .errors import FatalSetupError, PhaseSkipError, SetupError
from .git_repo import GitRepo
from .github import GitHubClient
from .merge import MergeController
from .review import ReviewGate
from .run_logger import PhaseOutcome, PhaseResult, RunLogger, RunSummary
from .task_list import TaskList, install_task_list, seed_progress_log
from .workspace_manager import Workspace, WorkspaceManager

logger = logging.getLogger(__name__)

ZERO_COMMITS_REASON = "zero implementation commits"
REQUIRED_TOOLS = ("git", "gh")


def preflight(config: RunnerConfig, github: Optional[GitHubClient] = None) -> None:
    """Check prerequisite tooling, authentication and the repository.

    Raises:
        FatalSetupError: If anything required for a run is missing.
    """
    tools = [*REQUIRED_TOOLS, config.agent.fix_cli]
    missing = [tool for tool in tools if shutil.which(tool) is None]
    if missing:
        raise FatalSetupError(f"Missing required tools: {' '.join(missing)}")

    github = github or GitHubClient()
    if not github.is_authenticated():
        raise FatalSetupError("GitHub CLI not authenticated. Run: gh auth login")

    GitRepo(config.repo_path, remote=config.remote)


class PhaseOrchestrator:
    """Drives every phase from a start index through to the run summary."""

    def __init__(
        self,
        config: RunnerConfig,
        trunk_repo: Optional[GitRepo] = None,
        github: Optional[GitHubClient] = None,
        workspaces: Optional[WorkspaceManager] = None,
        agent: Optional[AgentRunner] = None,
        review: Optional[ReviewGate] = None,
        ci_loop: Optional[CIWatchLoop] = None,
        merger: Optional[MergeController] = None,
        run_logger: Optional[RunLogger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the orchestrator.

        Collaborators default to real implementations built from config and
        can be injected for testing.

        Raises:
            FatalSetupError: If the project root is not a git repository.
        """
        self.config = config
        self.trunk_repo = trunk_repo or GitRepo(config.repo_path, remote=config.remote)
        self.github = github or GitHubClient()
        self.workspaces = workspaces or WorkspaceManager(self.trunk_repo)
        self.agent = agent or AgentRunner(config.agent)
        self.review = review or ReviewGate(
            self.github,
            trunk=config.trunk,
            test_plan=config.test_plan,
            push_retry_delay=config.ci.push_retry_delay,
            sleep=sleep,
        )
        self.ci_loop = ci_loop or CIWatchLoop(self.github, self.agent, config.ci, sleep=sleep)
        self.merger = merger or MergeController(
            self.github,
            self.trunk_repo,
            ConflictReconciler(self.trunk_repo, [config.task_file, config.progress_file]),
            trunk=config.trunk,
        )
        self.run_logger = run_logger or RunLogger(config.resolved_log_file)
        self.summary: Optional[RunSummary] = None

    def run(
        self,
        start_phase: Optional[str] = None,
        max_iterations: Optional[int] = None,
    ) -> RunSummary:
        """Run every phase from start_phase onward.

        Args:
            start_phase: Phase id to start from. Defaults to the first phase.
            max_iterations: Iteration budget overriding every phase's own.

        Returns:
            RunSummary with one result per visited phase.

        Raises:
            FatalSetupError: If start_phase is unknown. No work is done.
        """
        phases = self.config.phases
        start_id = start_phase or phases[0].id
        start_index = self.config.phase_index(start_id)

        self.summary = RunSummary(total_phases=len(phases))
        self.run_logger.banner(
            "Phase Runner",
            f"Project: {self.config.repo_path}",
            f"Starting from: {start_id}",
        )

        for phase in phases[start_index:]:
            self.summary.record(self.run_phase(phase, max_iterations))

        self.run_logger.log_summary(self.summary)
        return self.summary

    def run_phase(self, phase: PhaseDefinition, max_iterations: Optional[int] = None) -> PhaseResult:
        """Run one phase end to end. Only KeyboardInterrupt escapes."""
        iterations = max_iterations or phase.max_iterations
        path = self.config.worktree_path(phase)

        self.run_logger.banner(
            phase.description,
            f"Branch: {phase.branch}  |  Max iterations: {iterations}",
        )

        workspace: Optional[Workspace] = None
        tasks = TaskList()
        commit_count = 0
        pr_number: Optional[int] = None
        ci_passed = False

        try:
            workspace = self.workspaces.acquire(phase.branch, path)
            repo = self._open_workspace_repo(workspace)
            self.seed_phase(phase, workspace, repo)

            logger.info(f"Starting agent for {phase.id} ({iterations} iterations max) ...")
            self.agent.run(workspace, iterations)

            tasks = TaskList.load(workspace.path / self.config.task_file)
            self._log_progress(phase, tasks)

            commit_count = repo.commit_count(self.config.trunk)
            if commit_count <= 1:
                raise PhaseSkipError(ZERO_COMMITS_REASON)

            handle = self.review.open_review(repo, workspace, phase, tasks)
            pr_number = handle.number

            ci = self.ci_loop.run(handle.number, workspace, repo)
            ci_passed = ci.passed
            if ci_passed:
                logger.info(f"CI checks passed for PR #{handle.number}!")
            else:
                logger.warning(f"WARNING: CI did not pass for {phase.id}. Will attempt merge anyway ...")

            self.merger.log_changed_files(handle)
            self.merger.merge(handle)
            self.merger.sync_trunk()
        except Exception as exc:
            # KeyboardInterrupt is not an Exception and still reaches the CLI
            if isinstance(exc, PhaseSkipError):
                reason = str(exc)
            else:
                reason = f"{type(exc).__name__}: {exc}"
                logger.debug(f"Unexpected error in {phase.id}", exc_info=True)
            logger.error(f"SKIPPING {phase.id}: {reason}")
            self.workspaces.release(workspace or Workspace(path=path, branch=phase.branch))
            return PhaseResult(
                phase_id=phase.id,
                outcome=PhaseOutcome.SKIPPED,
                completed_tasks=tasks.completed,
                total_tasks=tasks.total,
                commit_count=commit_count,
                pr_number=pr_number,
                ci_passed=ci_passed,
                reason=reason,
            )

        logger.info("Cleaning up worktree and branch ...")
        self.workspaces.release(workspace)
        logger.info(f">>> {phase.id} DONE ({tasks.completed}/{tasks.total} stories) <<<")
        return PhaseResult(
            phase_id=phase.id,
            outcome=PhaseOutcome.COMPLETED,
            completed_tasks=tasks.completed,
            total_tasks=tasks.total,
            commit_count=commit_count,
            pr_number=pr_number,
            ci_passed=ci_passed,
        )

    def seed_phase(self, phase: PhaseDefinition, workspace: Workspace, repo: GitRepo) -> None:
        """Install the phase task list, reset the progress log and commit both.

        Raises:
            SetupError: If the files cannot be written or committed.
        """
        task_file = workspace.path / self.config.task_file
        progress_file = workspace.path / self.config.progress_file
        try:
            install_task_list(phase.task_list_path(self.config.repo_path), task_file)
            patterns = seed_progress_log(progress_file, phase.description)
            repo.stage([self.config.task_file, self.config.progress_file])
        except (OSError, GitCommandError) as exc:
            raise SetupError(f"Failed to set up phase files: {exc}") from exc
        if patterns:
            logger.info("Carried codebase patterns over to the new progress log")

        if not repo.commit(f"docs: set up {phase.id} user stories for Ralph"):
            raise SetupError("Failed to commit phase setup")

    def handle_interrupt(self) -> None:
        """Stop a live CI watch and log where manual recovery is needed.

        No further cleanup runs; the workspace is left in place on purpose.
        """
        logger.warning("Interrupted by user.")
        if self.ci_loop.active_watcher is not None:
            self.ci_loop.stop()
        workspace = self.workspaces.active
        if workspace is None:
            return
        logger.warning(f"Worktree may be left at: {workspace.path}")
        logger.warning(f"Branch may be left: {workspace.branch}")
        logger.warning("To clean up manually:")
        logger.warning(f"  rm -rf {workspace.path}")
        logger.warning("  git worktree prune")
        logger.warning(f"  git branch -D {workspace.branch}")

    def _open_workspace_repo(self, workspace: Workspace) -> GitRepo:
        try:
            return workspace.open_repo(self.config.remote)
        except FatalSetupError as exc:
            raise SetupError(str(exc)) from exc

    @staticmethod
    def _log_progress(phase: PhaseDefinition, tasks: TaskList) -> None:
        if tasks.remaining > 0:
            logger.warning(
                f"WARNING: {tasks.completed}/{tasks.total} stories complete "
                f"({tasks.remaining} remaining in {phase.id})"
            )
            logger.info("Proceeding with partial progress ...")
        else:
            logger.info(f"All {tasks.total} stories complete for {phase.id}!")
