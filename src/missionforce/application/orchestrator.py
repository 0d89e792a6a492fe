"""
Application Layer - Mission Orchestrator

This module owns the mission lifecycle:

    planning -> executing -> completed | failed

The MissionOrchestrator:
- Delegates planning to the PlanResolver
- Executes agents strictly one after another through the mission's runner
- Gates every agent on its trailing CONTROL_JSON directive
- Splices iteration agents into the queue right after the requester
- Retries failed attempts with corrective instructions, up to a budget
- Keeps every mission in memory for listing and inspection
- Publishes lifecycle events on an EventBroadcaster
"""

import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any

import structlog

from missionforce.application.planner import PlanResolver
from missionforce.application.settings import MissionforceSettings
from missionforce.core.domain.diagnostics import describe_exit, result_has_execution_errors
from missionforce.core.domain.directives import ControlDirective, parse_control_directive
from missionforce.core.domain.errors import AgentExhaustedError, MissionforceError
from missionforce.core.domain.events import EventBroadcaster, EventType
from missionforce.core.domain.models import (
    Agent,
    AgentBlueprint,
    AgentResult,
    AgentStatus,
    Mission,
    MissionStatus,
    RunResult,
    utc_now,
)
from missionforce.core.interfaces.runner import RunnerProtocol
from missionforce.core.prompts.mission_prompts import build_agent_prompt
from missionforce.infrastructure.runner.codex_runner import CodexRunner

FOLLOW_UP_REASON = "follow_up_verification"
REFERENCE_SEPARATOR = "\n\n---\nReference instructions:\n"


@dataclass
class DirectiveOutcome:
    """Result of applying a control directive to the agent queue."""

    ok: bool
    reason: str | None = None
    inserted: list[Agent] = field(default_factory=list)


class MissionOrchestrator:
    """
    Drives missions from goal to completion.

    Agents of one mission execute strictly sequentially on that mission's
    runner. With a runner_factory every mission gets its own runner, so
    concurrent missions never touch each other's child processes. Missions
    are kept in memory for the lifetime of the process.
    """

    def __init__(
        self,
        runner: RunnerProtocol | None = None,
        planner: PlanResolver | None = None,
        events: EventBroadcaster | None = None,
        max_agent_attempts: int = 3,
        max_plan_attempts: int = 4,
        planning_header: str | None = None,
        debug: bool = False,
        runner_factory: Callable[[], RunnerProtocol] | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            runner: Executes instructions; shared by every mission
            planner: Plan resolver; built from the runner when omitted
            events: Broadcaster for lifecycle events
            max_agent_attempts: Attempt budget per agent
            max_plan_attempts: Attempt budget for planning
            planning_header: Planner persona header override
            debug: Log verbose orchestration traces
            runner_factory: Builds a fresh runner per mission (used instead of
                `runner` when given)

        Raises:
            ValueError: If neither runner nor runner_factory is given
        """
        if runner is None and runner_factory is None:
            raise ValueError("MissionOrchestrator needs a runner or a runner_factory")
        self.runner = runner
        self.runner_factory = runner_factory
        self.events = events or EventBroadcaster()
        self.planner = planner or PlanResolver(
            runner,
            max_attempts=max_plan_attempts,
            planning_header=planning_header,
            debug=debug,
        )
        self.max_agent_attempts = max_agent_attempts
        self.debug = debug
        self.missions: dict[str, Mission] = {}
        self.logger = structlog.get_logger().bind(component="mission_orchestrator")

    @classmethod
    def from_settings(
        cls, settings: MissionforceSettings, events: EventBroadcaster | None = None
    ) -> "MissionOrchestrator":
        """Wire an orchestrator that builds one CodexRunner per mission."""
        events = events or EventBroadcaster()

        def build_runner() -> CodexRunner:
            return CodexRunner(
                codex_bin=settings.codex_bin,
                working_directory=settings.resolved_working_directory,
                global_args=settings.global_args,
                exec_args=settings.exec_args,
                events=events,
                debug=settings.debug,
                default_timeout=settings.run_timeout,
                completion_grace=settings.completion_grace,
            )

        return cls(
            runner_factory=build_runner,
            events=events,
            max_agent_attempts=settings.max_agent_attempts,
            max_plan_attempts=settings.max_plan_attempts,
            planning_header=settings.planning_prompt,
            debug=settings.debug,
        )

    def list_missions(self) -> list[dict[str, Any]]:
        return [mission.to_summary() for mission in self.missions.values()]

    def get_mission(self, mission_id: str) -> Mission | None:
        return self.missions.get(mission_id)

    def _runner_for_mission(self) -> RunnerProtocol:
        if self.runner_factory is not None:
            return self.runner_factory()
        return self.runner

    async def create_mission(
        self, goal: str, context: str | dict[str, Any] | None = None
    ) -> Mission:
        """
        Plan and execute a mission to completion or failure.

        Args:
            goal: What the mission should achieve
            context: Optional additional context for the planner

        Returns:
            The finished Mission (status completed or failed)

        Raises:
            ValueError: If goal is missing or blank
        """
        if not isinstance(goal, str) or not goal.strip():
            raise ValueError("Goal is required")

        mission = Mission(id=str(uuid.uuid4()), goal=goal, context=context)
        self.missions[mission.id] = mission
        log = self.logger.bind(mission_id=mission.id)
        log.info("mission.created", goal=goal[:100])
        self._publish(EventType.MISSION_CREATED, mission.to_summary())

        runner = self._runner_for_mission()
        try:
            await self._plan_mission(mission, runner)
            await self._execute_mission(mission, runner)
        except MissionforceError as e:
            self._fail_mission(mission, str(e))
        except Exception as e:
            log.exception("mission.unexpected_error", error_type=type(e).__name__)
            self._fail_mission(mission, f"Unexpected orchestrator error: {e}")

        return mission

    async def _plan_mission(self, mission: Mission, runner: RunnerProtocol) -> None:
        self._publish(EventType.MISSION_PLANNING, {"missionId": mission.id})
        await self.planner.resolve(mission, runner=runner)
        self._publish(
            EventType.MISSION_PLANNED,
            {
                "missionId": mission.id,
                "summary": mission.summary,
                "agents": [agent.id for agent in mission.agents],
            },
        )

    async def _execute_mission(self, mission: Mission, runner: RunnerProtocol) -> None:
        await runner.ensure_inactive()
        mission.transition(MissionStatus.EXECUTING)
        self._publish(EventType.MISSION_EXECUTING, {"missionId": mission.id})

        # The queue can grow while we iterate, so re-read its length each step.
        index = 0
        while index < len(mission.agents):
            agent = mission.agents[index]
            if agent.status != AgentStatus.COMPLETED:
                await self._run_agent(mission, agent, index, runner)
            index += 1

        unfinished = [agent.id for agent in mission.agents if agent.status != AgentStatus.COMPLETED]
        if unfinished:
            raise MissionforceError(f"Mission ended with unfinished agents: {', '.join(unfinished)}")

        mission.transition(MissionStatus.COMPLETED)
        self.logger.info("mission.completed", mission_id=mission.id, agent_count=len(mission.agents))
        self._publish(EventType.MISSION_COMPLETED, mission.to_summary())

    async def _run_agent(
        self, mission: Mission, agent: Agent, index: int, runner: RunnerProtocol
    ) -> None:
        """
        Run one agent until it finishes or exhausts its attempt budget.

        Raises:
            AgentExhaustedError: If every attempt failed
        """
        agent.status = AgentStatus.RUNNING
        agent.started_at = agent.started_at or utc_now()
        mission.touch()
        log = self.logger.bind(mission_id=mission.id, agent_id=agent.id)
        log.info("agent.started")
        self._publish(EventType.AGENT_STARTED, {"missionId": mission.id, "agent": _agent_payload(agent)})

        failure_reason: str | None = None
        last_run: RunResult | None = None

        for attempt in range(self.max_agent_attempts):
            if attempt > 0:
                await runner.ensure_inactive()
                log.warning("agent.retry", attempt=attempt + 1, reason=failure_reason)

            prompt = build_agent_prompt(
                mission.summary, agent, attempt=attempt, failure_reason=failure_reason
            )
            if self.debug:
                log.debug("agent.prompt", attempt=attempt + 1, prompt_length=len(prompt))

            try:
                run = await runner.run_once(prompt=prompt)
            except Exception as e:
                failure_reason = f"Codex runner error: {e}"
                agent.add_log("interaction:error", attempt=attempt, data={"error": str(e)})
                continue

            last_run = run
            agent.add_log("interaction", attempt=attempt, data=run.to_dict())

            if run.exit_code != 0:
                failure_reason = describe_exit(run)
                continue

            directive = parse_control_directive(run.last_agent_message or run.stdout)
            if directive is None:
                failure_reason = "CONTROL_JSON directive missing or invalid"
                continue

            outcome = self._apply_directive(
                mission,
                agent,
                directive,
                index,
                had_execution_errors=result_has_execution_errors(run),
            )
            if not outcome.ok:
                failure_reason = outcome.reason
                continue

            self._finish_agent(mission, agent, run)
            return

        reason = failure_reason or "Unknown agent failure"
        self._fail_agent(mission, agent, reason, last_run)
        raise AgentExhaustedError(agent.name, reason, agent_id=agent.id)

    def _apply_directive(
        self,
        mission: Mission,
        agent: Agent,
        directive: ControlDirective,
        index: int,
        had_execution_errors: bool = False,
    ) -> DirectiveOutcome:
        if directive.is_continue:
            if had_execution_errors:
                return DirectiveOutcome(ok=False, reason="Execution errors detected; cannot continue")
            return DirectiveOutcome(ok=True)
        if directive.is_iteration_request:
            return self._enqueue_iteration(mission, agent, directive, index)
        if not directive.raw_action:
            return DirectiveOutcome(ok=False, reason="CONTROL_JSON missing action")
        return DirectiveOutcome(
            ok=False, reason=f"Unsupported CONTROL_JSON action: {directive.raw_action}"
        )

    def _enqueue_iteration(
        self, mission: Mission, requester: Agent, directive: ControlDirective, index: int
    ) -> DirectiveOutcome:
        """
        Clone the target (and optional follow-up) agent right after `index`.

        An unresolvable target fails the current attempt rather than
        silently inserting nothing.
        """
        target_name = directive.target_agent or requester.base_name
        target = mission.resolve_blueprint(target_name)
        if target is None:
            return DirectiveOutcome(
                ok=False,
                reason=f"Iteration request could not be fulfilled: unknown target agent {target_name}",
            )

        inserted = [
            self._clone_for_iteration(
                mission,
                target,
                override_instructions=directive.instructions,
                triggered_by=requester.id,
                reason=directive.reason,
            )
        ]

        follow_up_name = directive.next_agent or requester.base_name
        follow_up = mission.resolve_blueprint(follow_up_name)
        if follow_up is None:
            self.logger.warning(
                "iteration.follow_up_missing",
                mission_id=mission.id,
                follow_up=follow_up_name,
            )
        elif follow_up.name != target.name:
            inserted.append(
                self._clone_for_iteration(
                    mission,
                    follow_up,
                    override_instructions=directive.next_agent_instructions,
                    triggered_by=requester.id,
                    reason=FOLLOW_UP_REASON,
                )
            )

        mission.agents[index + 1 : index + 1] = inserted
        mission.add_log(
            "iteration:queued",
            requested_by=requester.id,
            directive=directive.payload,
            inserted_agents=[
                {
                    "id": agent.id,
                    "name": agent.name,
                    "base_name": agent.base_name,
                    "iteration": agent.iteration,
                }
                for agent in inserted
            ],
        )
        self.logger.info(
            "iteration.queued",
            mission_id=mission.id,
            requested_by=requester.id,
            inserted=[agent.id for agent in inserted],
        )
        return DirectiveOutcome(ok=True, inserted=inserted)

    def _clone_for_iteration(
        self,
        mission: Mission,
        blueprint: AgentBlueprint,
        override_instructions: str | None,
        triggered_by: str,
        reason: str | None,
    ) -> Agent:
        instructions = blueprint.instructions
        if override_instructions and override_instructions.strip():
            instructions = f"{override_instructions.strip()}{REFERENCE_SEPARATOR}{blueprint.instructions}"
        return Agent.from_blueprint(
            blueprint,
            iteration=mission.next_iteration(blueprint.name),
            instructions=instructions,
            triggered_by=triggered_by,
            reason=reason,
        )

    def _finish_agent(self, mission: Mission, agent: Agent, run: RunResult) -> None:
        agent.completed_at = utc_now()
        agent.session_id = run.session_id or run.thread_id
        agent.result = AgentResult.from_run(run)
        agent.status = AgentStatus.COMPLETED
        mission.results.append({"agent_id": agent.id, "output": asdict(agent.result)})
        mission.touch()
        self.logger.info("agent.finished", mission_id=mission.id, agent_id=agent.id)
        self._publish(EventType.AGENT_FINISHED, {"missionId": mission.id, "agent": _agent_payload(agent)})

    def _fail_agent(
        self, mission: Mission, agent: Agent, reason: str, last_run: RunResult | None
    ) -> None:
        agent.status = AgentStatus.FAILED
        agent.completed_at = utc_now()
        if agent.result is None and last_run is not None:
            agent.result = AgentResult.from_run(last_run)
        mission.add_log("agent:failure", agent=agent.name, agent_id=agent.id, reason=reason)
        mission.touch()
        self.logger.error("agent.exhausted", mission_id=mission.id, agent_id=agent.id, reason=reason)
        self._publish(EventType.AGENT_FINISHED, {"missionId": mission.id, "agent": _agent_payload(agent)})

    def _fail_mission(self, mission: Mission, error: str) -> None:
        mission.error = error
        if mission.status not in (MissionStatus.COMPLETED, MissionStatus.FAILED):
            mission.transition(MissionStatus.FAILED)
        self.logger.error("mission.failed", mission_id=mission.id, error=error)
        self._publish(EventType.MISSION_FAILED, {**mission.to_summary(), "error": error})

    def _publish(self, event_type: EventType, payload: dict[str, Any]) -> None:
        self.events.publish(event_type, payload)


def _agent_payload(agent: Agent) -> dict[str, Any]:
    return {
        "id": agent.id,
        "name": agent.name,
        "iteration": agent.iteration,
        "status": agent.status.value,
        "triggeredBy": agent.triggered_by,
        "result": asdict(agent.result) if agent.result else None,
    }
