"""Phase runner: drive a coding agent through ordered build phases."""

__version__ = "0.1.0"
