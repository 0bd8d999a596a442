"""GitHub CLI (gh) integration for pull requests and check runs.

Check runs are read as structured JSON where gh supports it. The plain-text
output of ``gh pr checks`` is only parsed as a fallback, and failure
classification of that text lives in :func:`classify`.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO, Iterable, Optional

logger = logging.getLogger(__name__)


class CheckBucket(str, Enum):
    """Outcome bucket of a check run, as reported by gh."""

    PASS = "pass"
    FAIL = "fail"
    PENDING = "pending"
    SKIPPING = "skipping"
    CANCEL = "cancel"

    @classmethod
    def parse(cls, value: str) -> CheckBucket:
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.PENDING


class FailureClass(str, Enum):
    """CI failure classes that have an automatic remediation."""

    FORMAT = "format"
    LINT = "lint"


FAILURE_KEYWORDS = {
    FailureClass.FORMAT: ("format", "fmt"),
    FailureClass.LINT: ("clippy", "lint"),
}


@dataclass(frozen=True)
class CheckRun:
    """One named CI verification on a pull request."""

    name: str
    bucket: CheckBucket

    @property
    def failed(self) -> bool:
        return self.bucket in (CheckBucket.FAIL, CheckBucket.CANCEL)


@dataclass
class GhResult:
    """Result of a gh invocation."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


def classify_checks(checks: Iterable[CheckRun]) -> set[FailureClass]:
    """Map failing check runs to known auto-fixable failure classes."""
    classes: set[FailureClass] = set()
    for check in checks:
        if not check.failed:
            continue
        name = check.name.lower()
        for failure_class, keywords in FAILURE_KEYWORDS.items():
            if any(keyword in name for keyword in keywords):
                classes.add(failure_class)
    return classes


def classify(output: str) -> set[FailureClass]:
    """Classify plain ``gh pr checks`` text into known failure classes.

    A line counts when it names the class keyword and reports "fail".
    """
    classes: set[FailureClass] = set()
    for line in output.lower().splitlines():
        if "fail" not in line:
            continue
        for failure_class, keywords in FAILURE_KEYWORDS.items():
            if any(keyword in line for keyword in keywords):
                classes.add(failure_class)
    return classes


def parse_checks_text(output: str) -> list[CheckRun]:
    """Parse tab-separated ``gh pr checks`` output (name, status, ...)."""
    checks = []
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) < 2:
            continue
        status = parts[1].strip().lower()
        if status not in {b.value for b in CheckBucket}:
            continue
        checks.append(CheckRun(name=parts[0].strip(), bucket=CheckBucket.parse(status)))
    return checks


def parse_pr_number(output: str) -> Optional[int]:
    """Extract the pull request number from the URL printed by gh pr create."""
    for line in reversed(output.strip().splitlines()):
        match = re.search(r"(\d+)\s*$", line)
        if match:
            return int(match.group(1))
    return None


class GitHubClient:
    """Runs gh commands in a given working directory."""

    def __init__(self, gh: str = "gh", timeout: int = 120):
        """Initialize the client.

        Args:
            gh: gh executable.
            timeout: Timeout in seconds for non-watch commands.
        """
        self.gh = gh
        self.timeout = timeout

    def _run(self, args: list[str], cwd: Optional[Path] = None) -> GhResult:
        try:
            result = subprocess.run(
                [self.gh, *args],
                cwd=cwd,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return GhResult(returncode=-1, stderr=f"gh {' '.join(args[:2])} timed out")
        except FileNotFoundError:
            return GhResult(returncode=-1, stderr=f"{self.gh} not found in PATH")
        return GhResult(result.returncode, result.stdout or "", result.stderr or "")

    def is_authenticated(self) -> bool:
        return self._run(["auth", "status"]).ok

    def create_pr(self, title: str, body: str, base: str, cwd: Path) -> GhResult:
        """Open a pull request for the branch checked out in cwd."""
        with tempfile.NamedTemporaryFile("w", suffix=".md", delete=False, encoding="utf-8") as f:
            f.write(body)
            body_file = Path(f.name)
        try:
            return self._run(
                ["pr", "create", "--title", title, "--body-file", str(body_file), "--base", base],
                cwd=cwd,
            )
        finally:
            body_file.unlink(missing_ok=True)

    def checks_text(self, pr_number: int, cwd: Optional[Path] = None) -> str:
        """Plain-text check summary (gh exits non-zero while checks fail or pend)."""
        return self._run(["pr", "checks", str(pr_number)], cwd=cwd).output

    def list_checks(self, pr_number: int, cwd: Optional[Path] = None) -> list[CheckRun]:
        """Structured list of check runs registered on a pull request."""
        result = self._run(["pr", "checks", str(pr_number), "--json", "name,bucket"], cwd=cwd)
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError:
            return parse_checks_text(result.output)
        if not isinstance(data, list):
            return []
        return [
            CheckRun(name=str(item.get("name", "")), bucket=CheckBucket.parse(str(item.get("bucket", ""))))
            for item in data
            if isinstance(item, dict)
        ]

    def watch_checks(self, pr_number: int, output: IO[str], cwd: Optional[Path] = None) -> subprocess.Popen:
        """Start ``gh pr checks --watch`` in the background.

        The process exits 0 once every check passed and non-zero otherwise.
        """
        return subprocess.Popen(
            [self.gh, "pr", "checks", str(pr_number), "--watch"],
            cwd=cwd,
            stdout=output,
            stderr=subprocess.STDOUT,
            text=True,
        )

    def merge(self, pr_number: int, strategy: str, cwd: Optional[Path] = None) -> GhResult:
        return self._run(["pr", "merge", str(pr_number), f"--{strategy}"], cwd=cwd)

    def changed_files(self, pr_number: int, cwd: Optional[Path] = None) -> list[str]:
        result = self._run(["pr", "diff", str(pr_number), "--name-only"], cwd=cwd)
        if not result.ok:
            logger.warning(f"Could not list changed files: {result.output}")
            return []
        return [line for line in result.stdout.splitlines() if line.strip()]
