"""Subprocess adapters for the external Codex executor."""

from missionforce.infrastructure.runner.codex_runner import COMPLETION_EVENTS, CodexRunner

__all__ = ["COMPLETION_EVENTS", "CodexRunner"]
