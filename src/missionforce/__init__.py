"""Missionforce - multi-agent mission control for the Codex CLI."""

__version__ = "0.1.0"
