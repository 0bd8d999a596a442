"""Logging utilities for a phase run.

This module provides the run-wide append-only log file, the per-phase
result records, and the final run summary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "phaserunner"
LOG_FORMAT = "[%(asctime)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
BANNER = "=" * 60


class PhaseOutcome(str, Enum):
    """Terminal outcome of one phase."""

    COMPLETED = "completed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class PhaseResult:
    """Outcome record for one phase. Produced once, never mutated."""

    phase_id: str
    outcome: PhaseOutcome
    completed_tasks: int = 0
    total_tasks: int = 0
    commit_count: int = 0
    pr_number: Optional[int] = None
    ci_passed: bool = False
    reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.outcome is PhaseOutcome.SKIPPED


@dataclass
class RunSummary:
    """Ordered phase results for one run plus the failed-phase accumulator."""

    total_phases: int
    results: list[PhaseResult] = field(default_factory=list)
    failed_phases: list[str] = field(default_factory=list)
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None

    def record(self, result: PhaseResult) -> None:
        """Append a phase result; skipped phases also go to failed_phases."""
        self.results.append(result)
        if result.skipped:
            self.failed_phases.append(result.phase_id)

    @property
    def completed_count(self) -> int:
        return sum(1 for r in self.results if r.outcome is PhaseOutcome.COMPLETED)

    @property
    def exit_code(self) -> int:
        """0 if any phase completed or none failed, 1 if every attempted phase was skipped."""
        if self.completed_count > 0 or not self.failed_phases:
            return 0
        return 1

    @property
    def duration_seconds(self) -> float:
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds()


class RunLogger:
    """Mirrors every orchestration event into the run-wide log file."""

    def __init__(self, log_file: Path, resume_command: str = "phase-runner run"):
        """Initialize the run logger.

        Args:
            log_file: Append-only log file shared by the whole run.
            resume_command: Command shown in the summary for resuming a phase.
        """
        self.log_file = Path(log_file)
        self.resume_command = resume_command
        self._handler: Optional[logging.FileHandler] = None

    def attach(self) -> None:
        """Start appending package log records to the log file."""
        if self._handler is not None:
            return
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(self.log_file, mode="a", encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
        logging.getLogger(PACKAGE_LOGGER).addHandler(handler)
        self._handler = handler

    def detach(self) -> None:
        """Stop writing to the log file."""
        if self._handler is None:
            return
        logging.getLogger(PACKAGE_LOGGER).removeHandler(self._handler)
        self._handler.close()
        self._handler = None

    def __enter__(self) -> RunLogger:
        self.attach()
        return self

    def __exit__(self, *exc_info) -> None:
        self.detach()

    def banner(self, *lines: str) -> None:
        """Log a framed block of lines."""
        logger.info(BANNER)
        for line in lines:
            logger.info(f"  {line}")
        logger.info(BANNER)

    def log_summary(self, summary: RunSummary) -> None:
        """Log the final run summary."""
        summary.end_time = datetime.now()
        logger.info(BANNER)
        logger.info(f"  Completed phases: {summary.completed_count} / {summary.total_phases}")
        if summary.failed_phases:
            logger.info(f"  Failed phases: {' '.join(summary.failed_phases)}")
            logger.info(f"  To resume a failed phase: {self.resume_command} <phase>")
        else:
            logger.info("  All phases complete!")
        logger.info(f"  Duration: {summary.duration_seconds:.1f}s")
        logger.info(BANNER)


def log_command_output(output: str, log: Optional[logging.Logger] = None) -> None:
    """Echo captured subprocess output line by line into the run log."""
    target = log or logger
    for line in output.splitlines():
        if line.strip():
            target.info(f"  {line}")
