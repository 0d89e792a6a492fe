"""
Runner Protocol

Interface between the mission state machine and the process that executes
instructions. The production adapter is CodexRunner; tests substitute
AsyncMock doubles returning canned RunResults.
"""

import asyncio
from collections.abc import Sequence
from typing import Protocol

from missionforce.core.domain.models import RunResult


class RunnerProtocol(Protocol):
    """Executes one instruction at a time and reports a RunResult."""

    async def run_once(
        self,
        prompt: str | None = None,
        command: str | None = None,
        extra_args: Sequence[str] = (),
        session_id: str | None = None,
        resume_last: bool = False,
        timeout: float | None = None,
        env: dict[str, str] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RunResult:
        """
        Run the executor once.

        Raises:
            RunnerSpawnError: If the executor cannot be started
        """
        ...

    async def ensure_inactive(self) -> None:
        """Wait for (or force) termination of any still-active invocation."""
        ...
