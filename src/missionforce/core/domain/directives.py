"""
Control Directive Parsing

Every agent reply must end with a machine-readable control line:

    CONTROL_JSON: {"action":"continue"}
    CONTROL_JSON: {"action":"request_iteration","target_agent":"...", ...}

This module locates the last marker in free text, parses the trailing JSON
tolerantly and classifies it. Parsing is pure: the same text always yields
the same directive.
"""

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

CONTROL_MARKER = "CONTROL_JSON:"

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*([\s\S]*?)```$", re.IGNORECASE)


def safe_json_parse(payload: Any) -> Any | None:
    """
    Parse JSON from model output, tolerating common wrappers.

    Tries, in order: the trimmed text, the body of a surrounding fenced code
    block, and the outermost `{...}` substring.

    Returns:
        The parsed value, or None when nothing parses.
    """
    if not isinstance(payload, str):
        return None
    trimmed = payload.strip()
    if not trimmed:
        return None
    fence = _FENCE_PATTERN.match(trimmed)
    candidate = fence.group(1).strip() if fence else trimmed
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(candidate[start : end + 1])
        except json.JSONDecodeError:
            return None
    return None


class DirectiveAction(str, Enum):
    """Classification of a parsed control directive."""

    CONTINUE = "continue"
    REQUEST_ITERATION = "request_iteration"
    UNSUPPORTED = "unsupported"


def _first_present(data: dict[str, Any], *keys: str) -> Any | None:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else json.dumps(value)


@dataclass(frozen=True)
class ControlDirective:
    """
    A classified control directive.

    Attributes:
        action: continue, request_iteration or unsupported
        raw_action: The action text as written (lowercased), empty if missing
        target_agent: Agent to repeat (request_iteration)
        instructions: Override instructions for the repeated agent
        reason: Why the iteration was requested
        next_agent: Agent that should follow up after the repeat
        next_agent_instructions: Override instructions for the follow-up
        payload: The parsed JSON object
    """

    action: DirectiveAction
    raw_action: str = ""
    target_agent: str | None = None
    instructions: str | None = None
    reason: str | None = None
    next_agent: str | None = None
    next_agent_instructions: str | None = None
    payload: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "ControlDirective":
        raw_action = str(_first_present(data, "action", "status") or "").strip().lower()
        if raw_action == DirectiveAction.CONTINUE.value:
            return cls(action=DirectiveAction.CONTINUE, raw_action=raw_action, payload=data)
        if raw_action == DirectiveAction.REQUEST_ITERATION.value:
            return cls(
                action=DirectiveAction.REQUEST_ITERATION,
                raw_action=raw_action,
                target_agent=_as_text(_first_present(data, "target_agent", "targetAgent", "target")),
                instructions=_as_text(
                    _first_present(data, "instructions", "updated_instructions", "details", "fix")
                ),
                reason=_as_text(_first_present(data, "reason", "summary")),
                next_agent=_as_text(_first_present(data, "next_agent", "follow_up_agent")),
                next_agent_instructions=_as_text(
                    _first_present(data, "next_agent_instructions", "follow_up_instructions")
                ),
                payload=data,
            )
        return cls(action=DirectiveAction.UNSUPPORTED, raw_action=raw_action, payload=data)

    @property
    def is_continue(self) -> bool:
        return self.action == DirectiveAction.CONTINUE

    @property
    def is_iteration_request(self) -> bool:
        return self.action == DirectiveAction.REQUEST_ITERATION


def parse_control_directive(message: str | None) -> ControlDirective | None:
    """
    Extract the trailing control directive from an agent reply.

    Args:
        message: Free-text agent output

    Returns:
        The classified directive, or None when no marker is present or the
        text after the last marker is not a JSON object.
    """
    if not message or not isinstance(message, str):
        return None
    marker_index = message.rfind(CONTROL_MARKER)
    if marker_index == -1:
        return None
    candidate = message[marker_index + len(CONTROL_MARKER) :].strip()
    if not candidate:
        return None
    parsed = safe_json_parse(candidate)
    if not isinstance(parsed, dict):
        return None
    return ControlDirective.from_payload(parsed)
