"""Shared fixtures for missionforce tests."""

import json
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from missionforce.core.domain.models import RunResult


def make_run(message=None, exit_code=0, **fields) -> RunResult:
    """Canned RunResult as the Codex runner would report it."""
    fields.setdefault("stdout", message or "")
    fields.setdefault("thread_id", f"thread-{uuid.uuid4().hex[:8]}")
    fields.setdefault("session_id", fields["thread_id"])
    fields.setdefault("completion", "turn.completed")
    return RunResult(
        invocation_id=str(uuid.uuid4()),
        command=["codex", "exec", "--json"],
        last_agent_message=message,
        exit_code=exit_code,
        **fields,
    )


def plan_run(*agents, summary="Deliver the feature") -> RunResult:
    return make_run(json.dumps({"mission_summary": summary, "agents": list(agents)}))


def agent_run(directive: dict, body: str = "Work done.", **fields) -> RunResult:
    return make_run(f"{body}\nCONTROL_JSON: {json.dumps(directive)}", **fields)


CONTINUE = {"action": "continue"}


@pytest.fixture
def mock_runner():
    """Runner double; tests set run_once.side_effect to a list of RunResults."""
    runner = MagicMock()
    runner.run_once = AsyncMock()
    runner.ensure_inactive = AsyncMock()
    return runner
