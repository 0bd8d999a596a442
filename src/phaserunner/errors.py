"""Error taxonomy for the phase runner.

Only FatalSetupError stops a run. Every PhaseSkipError is caught at the
phase boundary, logged, and turned into a skipped phase.
"""

from __future__ import annotations


class PhaseRunnerError(Exception):
    """Base exception for phase runner errors."""

    pass


class FatalSetupError(PhaseRunnerError):
    """Raised when the run cannot start (missing tools, bad repo, bad config)."""

    pass


class PhaseSkipError(PhaseRunnerError):
    """Raised when the current phase must be abandoned."""

    pass


class SetupError(PhaseSkipError):
    """Raised when a phase workspace cannot be created or seeded."""

    pass


class ReviewError(PhaseSkipError):
    """Raised when the branch cannot be pushed or the pull request opened."""

    pass


class MergeError(PhaseSkipError):
    """Raised when every merge strategy failed for a pull request."""

    pass
