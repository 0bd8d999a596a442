"""Configuration management for phase-runner."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from .errors import FatalSetupError


DEFAULT_LINT_FIX_PROMPT = (
    "Run 'cargo clippy --workspace --all-targets -- -D warnings 2>&1' and fix ALL "
    "clippy errors/warnings. Then run 'cargo fmt --all'. Then 'cargo test --workspace'. "
    "Commit all fixes with: git commit -s -m 'fix: resolve clippy warnings for CI'"
)

DEFAULT_TEST_PLAN = [
    "`cargo test --workspace` passes",
    "`cargo clippy --workspace -- -D warnings` passes",
    "`cargo fmt --all -- --check` passes",
    "CI checks pass on all platforms",
]


@dataclass(frozen=True)
class PhaseDefinition:
    """One unit of orchestrated work: a branch, a task list and an iteration budget."""

    id: str
    branch: str
    description: str
    max_iterations: int
    task_list: Optional[str] = None  # relative to the project root

    @classmethod
    def from_dict(cls, data: dict) -> PhaseDefinition:
        """Create PhaseDefinition from dictionary."""
        phase_id = str(data["id"])
        return cls(
            id=phase_id,
            branch=str(data.get("branch", f"ralph/{phase_id}")),
            description=str(data.get("description", phase_id)),
            max_iterations=int(data.get("max_iterations", 20)),
            task_list=data.get("task_list"),
        )

    def task_list_path(self, project_root: Path) -> Path:
        """Resolve the source task-list file for this phase."""
        if self.task_list:
            return project_root / self.task_list
        return project_root / "scripts" / "ralph" / "phases" / f"{self.id}.json"


DEFAULT_PHASES = [
    PhaseDefinition(
        id="phase2",
        branch="ralph/phase2-formatting",
        description="Phase 2: P1 Features - Formatting, Styles, Font Fallback",
        max_iterations=20,
    ),
    PhaseDefinition(
        id="phase3",
        branch="ralph/phase3-advanced",
        description="Phase 3: P2 Features - Hyperlinks, Footnotes, TOC, PDF/A, Batch",
        max_iterations=18,
    ),
    PhaseDefinition(
        id="phase4",
        branch="ralph/phase4-polish",
        description="Phase 4: P3 Features - Charts, Equations, SmartArt, Polish",
        max_iterations=15,
    ),
]


@dataclass
class CISettings:
    """Timing and remediation settings for the CI watch loop (seconds)."""

    registration_grace: float = 30
    registration_rounds: int = 6
    registration_interval: float = 10
    min_checks: int = 3
    watch_timeout: float = 1800
    watch_tick: float = 10
    max_attempts: int = 3
    push_retry_delay: float = 10
    fix_push_retry_delay: float = 5
    format_command: list[str] = field(default_factory=lambda: ["cargo", "fmt", "--all"])

    @classmethod
    def from_dict(cls, data: dict) -> CISettings:
        """Create CISettings from dictionary."""
        defaults = cls()
        format_command = data.get("format_command", defaults.format_command)
        if isinstance(format_command, str):
            format_command = format_command.split()
        return cls(
            registration_grace=float(data.get("registration_grace", defaults.registration_grace)),
            registration_rounds=int(data.get("registration_rounds", defaults.registration_rounds)),
            registration_interval=float(data.get("registration_interval", defaults.registration_interval)),
            min_checks=int(data.get("min_checks", defaults.min_checks)),
            watch_timeout=float(data.get("watch_timeout", defaults.watch_timeout)),
            watch_tick=float(data.get("watch_tick", defaults.watch_tick)),
            max_attempts=int(data.get("max_attempts", defaults.max_attempts)),
            push_retry_delay=float(data.get("push_retry_delay", defaults.push_retry_delay)),
            fix_push_retry_delay=float(data.get("fix_push_retry_delay", defaults.fix_push_retry_delay)),
            format_command=list(format_command),
        )


@dataclass
class AgentSettings:
    """Settings for the external coding agent."""

    command: str = "scripts/ralph/ralph.sh"  # relative to the workspace
    fix_cli: str = "claude"
    lint_fix_prompt: str = DEFAULT_LINT_FIX_PROMPT
    timeout: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> AgentSettings:
        """Create AgentSettings from dictionary."""
        timeout = data.get("timeout")
        return cls(
            command=data.get("command", "scripts/ralph/ralph.sh"),
            fix_cli=data.get("fix_cli", "claude"),
            lint_fix_prompt=data.get("lint_fix_prompt", DEFAULT_LINT_FIX_PROMPT),
            timeout=int(timeout) if timeout is not None else None,
        )


@dataclass
class RunnerConfig:
    """Configuration settings for a phase run."""

    # Paths
    repo_path: Path = field(default_factory=Path.cwd)
    config_file: Optional[Path] = None
    log_file: Optional[Path] = None

    # Git
    trunk: str = "main"
    remote: str = "origin"
    worktree_prefix: Optional[str] = None
    task_file: str = "scripts/ralph/prd.json"
    progress_file: str = "scripts/ralph/progress.txt"

    # Runtime
    log_level: str = "INFO"
    test_plan: list[str] = field(default_factory=lambda: list(DEFAULT_TEST_PLAN))

    phases: list[PhaseDefinition] = field(default_factory=lambda: list(DEFAULT_PHASES))
    ci: CISettings = field(default_factory=CISettings)
    agent: AgentSettings = field(default_factory=AgentSettings)

    @classmethod
    def from_dict(cls, data: dict, repo_path: Path) -> RunnerConfig:
        """Create RunnerConfig from a parsed phases.yaml mapping."""
        phases_data = data.get("phases")
        phases = (
            [PhaseDefinition.from_dict(p) for p in phases_data]
            if phases_data
            else list(DEFAULT_PHASES)
        )
        return cls(
            repo_path=repo_path,
            trunk=data.get("trunk", "main"),
            remote=data.get("remote", "origin"),
            worktree_prefix=data.get("worktree_prefix"),
            task_file=data.get("task_file", "scripts/ralph/prd.json"),
            progress_file=data.get("progress_file", "scripts/ralph/progress.txt"),
            test_plan=list(data.get("test_plan", DEFAULT_TEST_PLAN)),
            phases=phases,
            ci=CISettings.from_dict(data.get("ci") or {}),
            agent=AgentSettings.from_dict(data.get("agent") or {}),
        )

    @classmethod
    def load_from_file(cls, config_file: Path, repo_path: Path) -> RunnerConfig:
        """Load runner config from YAML file, falling back to defaults."""
        if config_file.exists():
            try:
                with open(config_file, encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise FatalSetupError(f"Invalid config file {config_file}: {exc}") from exc
            if not isinstance(data, dict):
                raise FatalSetupError(f"Invalid config file {config_file}: expected a mapping")
            config = cls.from_dict(data, repo_path)
        else:
            config = cls(repo_path=repo_path)
        config.config_file = config_file
        return config

    @classmethod
    def from_env(
        cls,
        repo_path: Optional[Path] = None,
        config_file: Optional[Path] = None,
    ) -> RunnerConfig:
        """Load configuration from the phases file and environment variables.

        Args:
            repo_path: Optional path to the project repository. Defaults to CWD.
            config_file: Optional phases file. Defaults to config/phases.yaml in the repo.

        Returns:
            RunnerConfig instance.

        Raises:
            FatalSetupError: If the phases file or an environment override is invalid.
        """
        load_dotenv()

        repo = Path(repo_path) if repo_path else Path.cwd()
        config = cls.load_from_file(config_file or repo / "config" / "phases.yaml", repo)

        log_file = os.getenv("PHASE_RUNNER_LOG_FILE")
        if log_file:
            config.log_file = Path(log_file)
        config.trunk = os.getenv("PHASE_RUNNER_TRUNK", config.trunk)
        config.agent.command = os.getenv("PHASE_RUNNER_AGENT_COMMAND", config.agent.command)
        timeout = os.getenv("PHASE_RUNNER_CI_TIMEOUT")
        if timeout:
            try:
                config.ci.watch_timeout = float(timeout)
            except ValueError as exc:
                raise FatalSetupError(f"Invalid PHASE_RUNNER_CI_TIMEOUT: {timeout!r}") from exc
        config.log_level = os.getenv("PHASE_RUNNER_LOG_LEVEL", config.log_level)
        return config

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors.

        Returns:
            List of validation error messages. Empty if valid.
        """
        errors = []

        if not self.repo_path.exists():
            errors.append(f"Repository path does not exist: {self.repo_path}")

        if not self.phases:
            errors.append("No phases configured")

        seen_ids: set[str] = set()
        seen_branches: set[str] = set()
        for phase in self.phases:
            if phase.id in seen_ids:
                errors.append(f"Duplicate phase id: {phase.id}")
            if phase.branch in seen_branches:
                errors.append(f"Duplicate phase branch: {phase.branch}")
            if phase.max_iterations < 1:
                errors.append(f"Phase {phase.id} needs at least one iteration")
            seen_ids.add(phase.id)
            seen_branches.add(phase.branch)

        if self.ci.max_attempts < 1:
            errors.append("ci.max_attempts must be at least 1")

        return errors

    def phase_index(self, phase_id: str) -> int:
        """Return the list position of a phase id.

        Raises:
            FatalSetupError: If the phase id is unknown.
        """
        for index, phase in enumerate(self.phases):
            if phase.id == phase_id:
                return index
        valid = ", ".join(p.id for p in self.phases)
        raise FatalSetupError(f"Unknown phase '{phase_id}'. Valid: {valid}")

    @property
    def resolved_log_file(self) -> Path:
        """Path to the run-wide append-only log."""
        return self.log_file or self.repo_path / "ralph.log"

    def worktree_path(self, phase: PhaseDefinition) -> Path:
        """Sibling directory used as the isolated workspace for a phase."""
        root = self.repo_path.resolve()
        prefix = self.worktree_prefix or root.name
        return root.parent / f"{prefix}-{phase.branch.replace('/', '-')}"
