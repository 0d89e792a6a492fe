"""
Run Diagnostics

Pure helpers that inspect a RunResult: detecting execution errors hidden
behind a "continue" directive, and composing human-readable failure
reasons in a fixed priority order (stderr, error event, stdout).
"""

import json
import re
from typing import Any

from missionforce.core.domain.models import RunResult

SNIPPET_LENGTH = 200

FATAL_STDERR_MARKERS = (
    "error: enoent",
    "error: eacces",
    "permission denied",
    "error catch error",
)

_WHITESPACE = re.compile(r"\s+")


def snippet(text: str | None, length: int = SNIPPET_LENGTH) -> str | None:
    """Collapse whitespace and truncate; None for empty text."""
    if not text:
        return None
    collapsed = _WHITESPACE.sub(" ", text).strip()
    return collapsed[:length] or None


def _is_error_event(event: dict[str, Any]) -> bool:
    item = event.get("item")
    return (
        event.get("type") in ("error", "exception")
        or bool(event.get("error"))
        or (isinstance(item, dict) and bool(item.get("error")))
    )


def find_error_event(result: RunResult) -> dict[str, Any] | None:
    for event in result.events:
        if isinstance(event, dict) and _is_error_event(event):
            return event
    return None


def result_has_execution_errors(result: RunResult | None) -> bool:
    """
    Whether a run shows signs of failed execution.

    True for explicit error/exception events, completed items with a
    non-success status or an attached error, and stderr containing known
    fatal markers (case-insensitive).
    """
    if result is None:
        return False
    for event in result.events:
        if not isinstance(event, dict):
            continue
        if event.get("type") in ("error", "exception"):
            return True
        if event.get("type") == "item.completed":
            item = event.get("item") if isinstance(event.get("item"), dict) else {}
            status = event.get("status")
            item_status = item.get("status")
            if (
                (status and status != "success")
                or (item_status and item_status != "success")
                or event.get("error")
                or item.get("error")
            ):
                return True
    stderr = (result.stderr or "").lower()
    return any(marker in stderr for marker in FATAL_STDERR_MARKERS)


def compose_failure_reason(reason: str, result: RunResult | None) -> str:
    """
    Append the most useful diagnostic from a run to a failure reason.

    Priority: stderr snippet, then the first error event, then a stdout
    snippet. Returns `reason` unchanged when the run has none of these.
    """
    if result is None:
        return reason
    stderr_snippet = snippet(result.stderr)
    if stderr_snippet:
        return f"{reason}. stderr: {stderr_snippet}"
    error_event = find_error_event(result)
    if error_event is not None:
        return f"{reason}. Event error: {json.dumps(error_event)[:SNIPPET_LENGTH]}"
    stdout_snippet = snippet(result.stdout)
    if stdout_snippet:
        return f"{reason}. stdout: {stdout_snippet}"
    return reason


def describe_exit(result: RunResult) -> str:
    """Failure reason for a run that did not exit cleanly."""
    if result.timed_out:
        base = f"Codex timed out (exit code {result.exit_code})"
    elif result.aborted:
        base = f"Codex run aborted (exit code {result.exit_code})"
    else:
        base = f"Codex exited with code {result.exit_code}"
    if result.signal:
        base = f"{base}, signal {result.signal}"
    return compose_failure_reason(base, result)
