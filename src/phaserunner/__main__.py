"""Main entry point for running phase-runner as a module.

Usage:
    python -m phaserunner --help
    python -m phaserunner run phase3
    python -m phaserunner run phase2 25
"""

from __future__ import annotations

from .cli import app

if __name__ == "__main__":
    app()
