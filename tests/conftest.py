"""Shared test fixtures for phase-runner tests."""

from __future__ import annotations

import json
from pathlib import Path

import git
import pytest

from phaserunner.config import CISettings, PhaseDefinition, RunnerConfig
from phaserunner.git_repo import GitRepo


def write_task_file(path: Path, passes: list[bool]) -> Path:
    """Write a task list with one story per entry of passes."""
    stories = [
        {"id": f"US-{i:03d}", "title": f"Story {i}", "priority": i, "passes": done}
        for i, done in enumerate(passes, start=1)
    ]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"userStories": stories}, indent=2))
    return path


@pytest.fixture(autouse=True)
def no_dotenv(monkeypatch):
    """Keep a developer's .env out of config tests."""
    monkeypatch.setattr("phaserunner.config.load_dotenv", lambda: None)
    for name in (
        "PHASE_RUNNER_LOG_FILE",
        "PHASE_RUNNER_TRUNK",
        "PHASE_RUNNER_AGENT_COMMAND",
        "PHASE_RUNNER_CI_TIMEOUT",
        "PHASE_RUNNER_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def origin_repo(tmp_path: Path) -> git.Repo:
    """Create a bare repository standing in for the hosted remote."""
    return git.Repo.init(tmp_path / "origin.git", bare=True)


@pytest.fixture
def git_repo(tmp_path: Path, origin_repo: git.Repo) -> git.Repo:
    """Create a project repository on main, pushed to a bare origin."""
    project = tmp_path / "project"
    project.mkdir(exist_ok=True)
    repo = git.Repo.init(project)

    # Configure git user for commits
    repo.config_writer().set_value("user", "name", "Test User").release()
    repo.config_writer().set_value("user", "email", "test@example.com").release()

    (project / "README.md").write_text("# Project\n")
    write_task_file(project / "scripts" / "ralph" / "phases" / "phase2.json", [False, False])
    repo.index.add(["README.md", "scripts/ralph/phases/phase2.json"])
    repo.index.commit("Initial commit")
    repo.git.branch("-M", "main")

    repo.create_remote("origin", origin_repo.working_dir)
    repo.git.push("-u", "origin", "main")
    return repo


@pytest.fixture
def trunk(git_repo: git.Repo) -> GitRepo:
    """GitRepo wrapper over the project checkout."""
    return GitRepo(Path(git_repo.working_dir))


@pytest.fixture
def phase() -> PhaseDefinition:
    return PhaseDefinition(
        id="phase2",
        branch="ralph/phase2-formatting",
        description="Phase 2: Formatting",
        max_iterations=5,
    )


@pytest.fixture
def runner_config(tmp_path: Path, phase: PhaseDefinition) -> RunnerConfig:
    """Config with three phases and zero CI waits."""
    project = tmp_path / "project"
    project.mkdir(exist_ok=True)
    return RunnerConfig(
        repo_path=project,
        log_file=tmp_path / "ralph.log",
        phases=[
            phase,
            PhaseDefinition(id="phase3", branch="ralph/phase3-advanced", description="Phase 3", max_iterations=4),
            PhaseDefinition(id="phase4", branch="ralph/phase4-polish", description="Phase 4", max_iterations=3),
        ],
        ci=CISettings(
            registration_grace=0,
            registration_rounds=2,
            registration_interval=0,
            watch_timeout=60,
            watch_tick=1,
            push_retry_delay=0,
            fix_push_retry_delay=0,
        ),
    )


@pytest.fixture
def write_tasks():
    """Task-file writer for tests that build their own task lists."""
    return write_task_file
