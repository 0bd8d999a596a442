"""Invocation of the external coding agent.

The agent is a black box: it consumes the workspace task list, edits files
and creates commits. Its exit code is informational only, so nothing in this
module raises on agent failure.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import AgentSettings
from .run_logger import log_command_output
from .workspace_manager import Workspace

logger = logging.getLogger(__name__)


@dataclass
class AgentOutcome:
    """Result of one agent invocation."""

    exit_code: int
    output: str = ""
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class AgentRunner:
    """Runs the coding loop and the narrowly scoped lint-fix agent."""

    def __init__(self, settings: Optional[AgentSettings] = None):
        """Initialize the agent runner.

        Args:
            settings: Agent command and remediation settings.
        """
        self.settings = settings or AgentSettings()

    def build_command(self, workspace: Workspace, max_iterations: int) -> list[str]:
        parts = shlex.split(self.settings.command)
        executable = Path(parts[0])
        if not executable.is_absolute() and (workspace.path / executable).exists():
            parts[0] = str(workspace.path / executable)
        return [*parts, str(max_iterations)]

    def run(self, workspace: Workspace, max_iterations: int) -> AgentOutcome:
        """Run the coding loop in the workspace, streaming its output to the log.

        Args:
            workspace: Workspace whose task list the agent works through.
            max_iterations: Iteration budget passed to the agent.

        Returns:
            AgentOutcome. A non-zero exit is logged, not raised.
        """
        command = self.build_command(workspace, max_iterations)
        logger.debug(f"Agent command: {' '.join(command)}")

        lines: list[str] = []
        try:
            process = subprocess.Popen(
                command,
                cwd=workspace.path,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                encoding="utf-8",
                errors="replace",
            )
        except (FileNotFoundError, PermissionError) as exc:
            logger.error(f"Agent could not be started: {exc}")
            return AgentOutcome(exit_code=-1, error=str(exc))

        # the context manager waits on the child even if streaming fails
        with process:
            for line in process.stdout or ():
                line = line.rstrip("\n")
                lines.append(line)
                if line.strip():
                    logger.info(line)
            exit_code = process.wait()

        if exit_code != 0:
            logger.warning(f"Agent exited with code {exit_code}; continuing with whatever it committed")
        return AgentOutcome(exit_code=exit_code, output="\n".join(lines))

    def fix_lint(self, workspace: Workspace) -> bool:
        """Ask the coding CLI to fix lint failures and commit the result.

        Returns:
            True if the CLI exited cleanly.
        """
        try:
            result = subprocess.run(
                [
                    self.settings.fix_cli,
                    "--dangerously-skip-permissions",
                    "--print",
                    "-p", self.settings.lint_fix_prompt,
                ],
                cwd=workspace.path,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.settings.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"Lint fix timed out after {self.settings.timeout} seconds")
            return False
        except FileNotFoundError:
            logger.error(f"{self.settings.fix_cli} not found in PATH")
            return False

        log_command_output(result.stdout + result.stderr)
        return result.returncode == 0
