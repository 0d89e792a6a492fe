"""
Domain Errors

Exception hierarchy for mission execution. Attempt-level problems
(protocol anomalies, directive failures, execution-error signals) are not
exceptions: they are recorded as log entries and failure reasons and retried.
Only conditions that end an operation are raised.
"""


class MissionforceError(Exception):
    """Base class for all missionforce errors."""


class RunnerSpawnError(MissionforceError):
    """The external executor could not be started."""

    def __init__(self, binary: str, reason: str):
        self.binary = binary
        self.reason = reason
        super().__init__(f"Failed to spawn {binary}: {reason}")


class PlanningError(MissionforceError):
    """No planning attempt produced a structurally valid plan."""

    def __init__(self, message: str, attempts: int):
        self.attempts = attempts
        super().__init__(message)


class AgentExhaustedError(MissionforceError):
    """An agent used up its attempt budget; the mission cannot continue."""

    def __init__(self, agent_name: str, reason: str, agent_id: str | None = None):
        self.agent_name = agent_name
        self.agent_id = agent_id
        self.reason = reason
        super().__init__(f"Agent {agent_name} exhausted retries: {reason}")


class InvalidTransitionError(MissionforceError):
    """A mission or agent status change would move backwards."""

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Invalid {entity} status transition: {current} -> {target}")
