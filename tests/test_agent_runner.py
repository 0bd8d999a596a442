"""Tests for the external coding agent runner."""

from __future__ import annotations

import io
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from phaserunner.agent_runner import AgentOutcome, AgentRunner
from phaserunner.config import AgentSettings
from phaserunner.workspace_manager import Workspace


def fake_process(lines: str, exit_code: int) -> MagicMock:
    process = MagicMock()
    process.stdout = io.StringIO(lines)
    process.wait.return_value = exit_code
    return process


class TestAgentOutcome:
    """Tests for AgentOutcome."""

    def test_success(self) -> None:
        assert AgentOutcome(exit_code=0).success
        assert not AgentOutcome(exit_code=2).success


class TestAgentRunner:
    """Tests for AgentRunner."""

    def test_build_command_resolves_workspace_script(self, tmp_path: Path) -> None:
        script = tmp_path / "scripts" / "ralph" / "ralph.sh"
        script.parent.mkdir(parents=True)
        script.write_text("#!/bin/sh\n")
        workspace = Workspace(path=tmp_path, branch="ralph/x")

        command = AgentRunner().build_command(workspace, 12)

        assert command == [str(script), "12"]

    def test_build_command_keeps_path_lookup(self, tmp_path: Path) -> None:
        runner = AgentRunner(AgentSettings(command="agent --quiet"))

        command = runner.build_command(Workspace(path=tmp_path, branch="b"), 3)

        assert command == ["agent", "--quiet", "3"]

    def test_run_streams_output(self, tmp_path: Path) -> None:
        workspace = Workspace(path=tmp_path, branch="b")
        with patch("subprocess.Popen", return_value=fake_process("iteration 1\n\niteration 2\n", 0)) as mock_popen:
            outcome = AgentRunner(AgentSettings(command="agent")).run(workspace, 5)

        assert outcome.success
        assert outcome.output == "iteration 1\n\niteration 2"
        assert mock_popen.call_args.kwargs["cwd"] == tmp_path

    def test_nonzero_exit_is_not_raised(self, tmp_path: Path) -> None:
        with patch("subprocess.Popen", return_value=fake_process("", 1)):
            outcome = AgentRunner(AgentSettings(command="agent")).run(Workspace(tmp_path, "b"), 5)

        assert outcome.exit_code == 1
        assert not outcome.success

    def test_invalid_utf8_output_is_replaced(self, tmp_path: Path) -> None:
        script = tmp_path / "agent.sh"
        script.write_text("#!/bin/sh\nprintf 'iteration 1\\n\\377\\376 binary junk\\n'\nexit 0\n")
        script.chmod(0o755)

        outcome = AgentRunner(AgentSettings(command=str(script))).run(Workspace(tmp_path, "b"), 5)

        assert outcome.success
        assert outcome.output.splitlines()[0] == "iteration 1"
        assert "\ufffd\ufffd binary junk" in outcome.output

    def test_process_is_reaped_when_streaming_fails(self, tmp_path: Path) -> None:
        process = MagicMock()
        process.stdout.__iter__.side_effect = UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")

        with patch("subprocess.Popen", return_value=process):
            with pytest.raises(UnicodeDecodeError):
                AgentRunner(AgentSettings(command="agent")).run(Workspace(tmp_path, "b"), 5)

        process.__exit__.assert_called_once()

    def test_missing_agent(self, tmp_path: Path) -> None:
        with patch("subprocess.Popen", side_effect=FileNotFoundError("agent")):
            outcome = AgentRunner(AgentSettings(command="agent")).run(Workspace(tmp_path, "b"), 5)

        assert outcome.exit_code == -1
        assert outcome.error


class TestFixLint:
    """Tests for AgentRunner.fix_lint."""

    def test_invokes_fix_cli_with_prompt(self, tmp_path: Path) -> None:
        settings = AgentSettings(fix_cli="claude", lint_fix_prompt="fix it")
        with patch("subprocess.run", return_value=MagicMock(returncode=0, stdout="done", stderr="")) as mock_run:
            assert AgentRunner(settings).fix_lint(Workspace(tmp_path, "b"))

        args = mock_run.call_args[0][0]
        assert args[0] == "claude"
        assert args[-2:] == ["-p", "fix it"]
        assert mock_run.call_args.kwargs["cwd"] == tmp_path

    def test_failure(self, tmp_path: Path) -> None:
        with patch("subprocess.run", return_value=MagicMock(returncode=1, stdout="", stderr="nope")):
            assert not AgentRunner().fix_lint(Workspace(tmp_path, "b"))

    def test_timeout(self, tmp_path: Path) -> None:
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired("claude", 5)):
            assert not AgentRunner(AgentSettings(timeout=5)).fix_lint(Workspace(tmp_path, "b"))

    def test_missing_cli(self, tmp_path: Path) -> None:
        with patch("subprocess.run", side_effect=FileNotFoundError):
            assert not AgentRunner().fix_lint(Workspace(tmp_path, "b"))
