"""Task-list and progress-log files shared with the coding agent.

The agent owns these files while it runs; the runner only seeds them at
phase start and reads the task list back afterwards. The task file on disk
is the source of truth for completion counts, not the agent's exit code.
"""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

PATTERNS_HEADING = "## Codebase Patterns"
SECTION_END = "---"


@dataclass
class Task:
    """One user story in a phase task list."""

    id: str
    title: str
    priority: int = 0
    passes: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Task:
        priority = data.get("priority", 0)
        return cls(
            id=str(data.get("id", "")),
            title=str(data.get("title", "")),
            priority=int(priority) if isinstance(priority, (int, float)) else 0,
            passes=data.get("passes") is True,
        )

    def checklist_line(self) -> str:
        mark = "x" if self.passes else " "
        return f"- [{mark}] **{self.id}**: {self.title}"


@dataclass
class TaskList:
    """Ordered tasks loaded from a JSON task file ({"userStories": [...]})."""

    tasks: List[Task] = field(default_factory=list)
    path: Optional[Path] = None
    readable: bool = True

    @classmethod
    def load(cls, path: Path) -> TaskList:
        """Load a task file; a missing or corrupt file yields an empty, unreadable list."""
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
            stories = data.get("userStories", [])
            tasks = [Task.from_dict(s) for s in stories if isinstance(s, dict)]
        except (OSError, ValueError, AttributeError) as exc:
            logger.warning(f"Could not read task list {path}: {exc}")
            return cls(tasks=[], path=Path(path), readable=False)
        return cls(tasks=tasks, path=Path(path))

    @property
    def total(self) -> int:
        return len(self.tasks)

    @property
    def completed(self) -> int:
        return sum(1 for t in self.tasks if t.passes)

    @property
    def remaining(self) -> int:
        return self.total - self.completed

    def render_checklist(self) -> str:
        """Markdown checklist of tasks with completion markers."""
        if not self.readable:
            return "- (unable to read)"
        return "\n".join(t.checklist_line() for t in self.tasks)


def install_task_list(source: Path, destination: Path) -> None:
    """Copy a phase task list into the workspace task file.

    Raises:
        OSError: If the source cannot be copied.
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, destination)


def extract_patterns(text: str) -> str:
    """Return the reusable-patterns block, heading through the closing '---' line.

    Returns an empty string when the progress log has no patterns block.
    """
    lines = text.splitlines()
    block: list[str] = []
    in_block = False
    for line in lines:
        if not in_block and line.startswith(PATTERNS_HEADING):
            in_block = True
        if in_block:
            block.append(line)
            if len(block) > 1 and line == SECTION_END:
                break
    return "\n".join(block) + "\n" if block else ""


def seed_progress_log(path: Path, description: str, now: Optional[datetime] = None) -> str:
    """Start a fresh progress log, carrying the patterns block over verbatim.

    Returns:
        The patterns block that was preserved (empty if none).
    """
    previous = path.read_text(encoding="utf-8") if path.exists() else ""
    patterns = extract_patterns(previous)
    started = (now or datetime.now()).strftime("%a %b %d %H:%M:%S %Y")

    parts = []
    if patterns:
        parts.append(patterns)
        parts.append("\n")
    parts.append(f"# Ralph Progress Log - {description}\n")
    parts.append(f"Started: {started}\n")
    parts.append(f"{SECTION_END}\n")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(parts), encoding="utf-8")
    return patterns
