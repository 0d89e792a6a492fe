"""
Core Domain Models

This module defines the mission data model driven by the orchestrator:

- Mission: one end-to-end run of a goal through planning and execution
- AgentBlueprint: immutable template produced by the planner
- Agent: one scheduled execution of a blueprint (possibly an iteration)
- RunResult: outcome of a single executor invocation

Missions and agents are mutated only by the orchestrator that owns them.
Readers (API, CLI) may inspect them at any time.
"""

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from missionforce.core.domain.errors import InvalidTransitionError

ITERATION_SUFFIX = re.compile(r"__iter\d+$")


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class MissionStatus(str, Enum):
    """Lifecycle states of a mission."""

    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class AgentStatus(str, Enum):
    """Lifecycle states of an agent instance."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# Missions only move forward; terminal states have no successors.
MISSION_TRANSITIONS: dict[MissionStatus, set[MissionStatus]] = {
    MissionStatus.PLANNING: {MissionStatus.EXECUTING, MissionStatus.FAILED},
    MissionStatus.EXECUTING: {MissionStatus.COMPLETED, MissionStatus.FAILED},
    MissionStatus.COMPLETED: set(),
    MissionStatus.FAILED: set(),
}


@dataclass
class RunResult:
    """
    Outcome of one executor invocation.

    Attributes:
        invocation_id: Unique id of this invocation
        session_id: Session the run resumed, or the thread id it produced
        command: Full argv used to spawn the executor
        events: Parsed JSON events in arrival order
        stdout: Raw standard output (one line per received line)
        stderr: Raw standard error
        exit_code: Effective exit code (None when killed by a signal)
        signal: Name of the terminating signal, if any
        thread_id: First thread id seen in the stream
        turn_id: Most recent turn id seen in the stream
        completion: Type of the first logical-completion event observed
        last_agent_message: Text of the last completed agent message
        usage: Token usage reported by the completed turn
        completion_stop: True when the runner terminated the process
            after observing logical completion
        timed_out: True when the run hit its timeout
        aborted: True when the run was cancelled externally
    """

    invocation_id: str
    session_id: str | None = None
    command: list[str] = field(default_factory=list)
    events: list[dict[str, Any]] = field(default_factory=list)
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    signal: str | None = None
    thread_id: str | None = None
    turn_id: str | None = None
    completion: str | None = None
    last_agent_message: str | None = None
    usage: dict[str, Any] | None = None
    completion_stop: bool = False
    timed_out: bool = False
    aborted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AgentBlueprint:
    """Immutable agent template emitted by the planner."""

    name: str
    role: str = "Specialist"
    expertise: str = ""
    objective: str = ""
    instructions: str = ""

    @classmethod
    def from_plan_entry(cls, entry: dict[str, Any], index: int) -> "AgentBlueprint":
        """
        Build a blueprint from one planner `agents` entry.

        Missing fields fall back to defaults; a list-valued expertise is
        joined into a single string.

        Args:
            entry: Raw agent object from the plan JSON
            index: Zero-based position in the plan, used for unnamed agents
        """
        expertise = entry.get("expertise") or ""
        if isinstance(expertise, list):
            expertise = ", ".join(str(item) for item in expertise)
        return cls(
            name=str(entry.get("name") or f"agent_{index + 1}"),
            role=str(entry.get("role") or "Specialist"),
            expertise=str(expertise),
            objective=str(entry.get("objective") or ""),
            instructions=str(entry.get("instructions") or ""),
        )


@dataclass
class AgentResult:
    """Structured outcome captured when an agent finishes."""

    summary: str | None = None
    usage: dict[str, Any] | None = None
    completion: str | None = None
    command: list[str] | None = None

    @classmethod
    def from_run(cls, run: RunResult) -> "AgentResult":
        return cls(
            summary=run.last_agent_message,
            usage=run.usage,
            completion=run.completion,
            command=list(run.command) if run.command else None,
        )


@dataclass
class Agent:
    """One scheduled execution of a blueprint."""

    id: str
    name: str
    base_name: str
    iteration: int
    role: str
    expertise: str
    objective: str
    instructions: str
    status: AgentStatus = AgentStatus.PENDING
    result: AgentResult | None = None
    session_id: str | None = None
    logs: list[dict[str, Any]] = field(default_factory=list)
    triggered_by: str | None = None
    iteration_reason: str | None = None
    started_at: str | None = None
    completed_at: str | None = None

    @classmethod
    def from_blueprint(
        cls,
        blueprint: AgentBlueprint,
        iteration: int,
        instructions: str | None = None,
        triggered_by: str | None = None,
        reason: str | None = None,
    ) -> "Agent":
        return cls(
            id=f"{blueprint.name}__iter{iteration}",
            name=blueprint.name,
            base_name=blueprint.name,
            iteration=iteration,
            role=blueprint.role,
            expertise=blueprint.expertise,
            objective=blueprint.objective,
            instructions=blueprint.instructions if instructions is None else instructions,
            triggered_by=triggered_by,
            iteration_reason=reason,
        )

    def add_log(self, entry_type: str, **fields: Any) -> None:
        self.logs.append({"type": entry_type, "at": utc_now(), **fields})

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class Mission:
    """
    A goal driven through planning and sequential agent execution.

    The agent list is an ordered work queue that may grow while it is being
    executed (iteration requests splice new agents in after the cursor).
    """

    id: str
    goal: str
    context: str | dict[str, Any] | None = None
    status: MissionStatus = MissionStatus.PLANNING
    summary: str | None = None
    agents: list[Agent] = field(default_factory=list)
    agent_blueprints: dict[str, AgentBlueprint] = field(default_factory=dict)
    logs: list[dict[str, Any]] = field(default_factory=list)
    results: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None
    plan_session_id: str | None = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def transition(self, target: MissionStatus) -> None:
        """
        Move the mission to a new status.

        Raises:
            InvalidTransitionError: If the move is not forward along
                planning -> executing -> {completed, failed}
        """
        if target not in MISSION_TRANSITIONS[self.status]:
            raise InvalidTransitionError("mission", self.status.value, target.value)
        self.status = target
        self.touch()

    def touch(self) -> None:
        self.updated_at = utc_now()

    def add_log(self, entry_type: str, **fields: Any) -> None:
        self.logs.append({"type": entry_type, "at": utc_now(), **fields})

    def register_blueprint(self, blueprint: AgentBlueprint) -> None:
        self.agent_blueprints[blueprint.name] = blueprint

    def resolve_blueprint(self, name: str | None) -> AgentBlueprint | None:
        """Look up a blueprint by base name, tolerating an `__iterN` suffix."""
        if not name:
            return None
        if name in self.agent_blueprints:
            return self.agent_blueprints[name]
        return self.agent_blueprints.get(ITERATION_SUFFIX.sub("", name))

    def next_iteration(self, base_name: str) -> int:
        """Iteration counter for the next instance of `base_name`."""
        return sum(1 for agent in self.agents if agent.base_name == base_name)

    def running_agents(self) -> list[Agent]:
        return [agent for agent in self.agents if agent.status == AgentStatus.RUNNING]

    def to_summary(self) -> dict[str, Any]:
        """Lightweight projection used by mission listings."""
        return {
            "id": self.id,
            "goal": self.goal,
            "status": self.status.value,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "agentCount": len(self.agents),
            "summary": self.summary,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "goal": self.goal,
            "context": self.context,
            "status": self.status.value,
            "summary": self.summary,
            "agents": [agent.to_dict() for agent in self.agents],
            "agent_blueprints": {
                name: asdict(blueprint) for name, blueprint in self.agent_blueprints.items()
            },
            "logs": list(self.logs),
            "results": list(self.results),
            "error": self.error,
            "plan_session_id": self.plan_session_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
