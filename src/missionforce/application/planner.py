"""
Application Layer - Plan Resolver

Turns a mission goal into a summary and an ordered list of agent
blueprints by asking the Codex executor for a strict-JSON plan.

The resolver:
- Builds the planning instruction (with corrective emphasis on retries)
- Collects candidate texts from the run, most specific first
- Accepts the first candidate that parses to a plan with agents
- Records every attempt in the mission log for diagnosis
- Raises PlanningError once the attempt budget is exhausted
"""

from dataclasses import dataclass, field
from typing import Any

import structlog

from missionforce.core.domain.diagnostics import describe_exit, snippet
from missionforce.core.domain.directives import safe_json_parse
from missionforce.core.domain.errors import PlanningError
from missionforce.core.domain.models import Agent, AgentBlueprint, Mission, RunResult
from missionforce.core.interfaces.runner import RunnerProtocol
from missionforce.core.prompts.mission_prompts import DEFAULT_PLANNING_HEADER, build_plan_prompt

PREVIEW_LENGTH = 400
REASON_PREVIEW_LENGTH = 200


@dataclass
class PlanAttempt:
    """
    Outcome of one planning attempt.

    Attributes:
        label: Attempt label (initial, retry-1, ...)
        run: RunResult of the planner invocation
        plan: Parsed plan object, None if no candidate was usable
        candidates: Every candidate text considered
        preview: First 400 chars of the accepted or best candidate
    """

    label: str
    run: RunResult
    plan: dict[str, Any] | None = None
    candidates: list[str] = field(default_factory=list)
    preview: str | None = None


def collect_plan_candidates(run: RunResult) -> list[str]:
    """
    Gather candidate plan texts from a planner run.

    Order: extracted final message, every completed agent_message item
    (its text, then its joined text content blocks), then raw stdout.
    """
    candidates: list[str] = []

    def add(value: Any) -> None:
        if isinstance(value, str) and value.strip():
            candidates.append(value.strip())

    add(run.last_agent_message)
    for event in run.events:
        if not isinstance(event, dict):
            continue
        item = event.get("item")
        if event.get("type") != "item.completed" or not isinstance(item, dict):
            continue
        if item.get("type") != "agent_message":
            continue
        add(item.get("text"))
        content = item.get("content")
        if isinstance(content, list):
            blocks = [
                block["text"]
                for block in content
                if isinstance(block, dict)
                and block.get("type") == "text"
                and isinstance(block.get("text"), str)
            ]
            if blocks:
                add("\n".join(blocks))
    add(run.stdout)
    return candidates


def is_valid_plan(parsed: Any) -> bool:
    """A plan is an object with a non-empty `agents` list of objects."""
    if not isinstance(parsed, dict):
        return False
    agents = parsed.get("agents")
    return (
        isinstance(agents, list)
        and len(agents) > 0
        and all(isinstance(agent, dict) for agent in agents)
    )


def _truncate(text: str, length: int = PREVIEW_LENGTH) -> str:
    return f"{text[:length]}…" if len(text) > length else text


class PlanResolver:
    """Obtains a validated mission plan from the Codex executor."""

    def __init__(
        self,
        runner: RunnerProtocol | None = None,
        max_attempts: int = 4,
        planning_header: str | None = None,
        debug: bool = False,
    ):
        self.runner = runner
        self.max_attempts = max_attempts
        self.planning_header = planning_header or DEFAULT_PLANNING_HEADER
        self.debug = debug
        self.logger = structlog.get_logger().bind(component="plan_resolver")

    async def resolve(
        self, mission: Mission, runner: RunnerProtocol | None = None
    ) -> PlanAttempt:
        """
        Plan a mission and project the plan onto it.

        On success the mission gets its summary, blueprints and iteration-0
        agents (in planner order) and the accepted attempt is returned.
        `runner` overrides the resolver's own runner for this mission.

        Raises:
            PlanningError: If no attempt produced a usable plan
        """
        runner = runner or self.runner
        if runner is None:
            raise ValueError("PlanResolver needs a runner")
        failure_reason: str | None = None

        for attempt_index in range(self.max_attempts):
            label = "initial" if attempt_index == 0 else f"retry-{attempt_index}"
            if attempt_index > 0:
                await runner.ensure_inactive()

            prompt = build_plan_prompt(
                mission.goal,
                mission.context,
                failure_reason=failure_reason,
                retry=attempt_index > 0,
                header=self.planning_header,
            )
            try:
                attempt = await self._attempt(runner, mission, prompt, label)
            except Exception as e:
                failure_reason = f"Codex planner error: {e}"
                mission.add_log(f"plan:{label}:failure", reason=failure_reason)
                self.logger.warning("plan_attempt_error", label=label, error=str(e))
                continue

            if attempt.plan is not None:
                self.apply_plan(mission, attempt.plan, attempt.run)
                self.logger.info(
                    "plan_resolved",
                    mission_id=mission.id,
                    label=label,
                    agent_count=len(mission.agents),
                )
                return attempt

            failure_reason = self.describe_failure(attempt)
            mission.add_log(f"plan:{label}:failure", reason=failure_reason)
            self.logger.warning("plan_attempt_failed", label=label, reason=failure_reason)

        summary = failure_reason or "Unknown planner failure (no candidates produced after retries)."
        raise PlanningError(
            f"Failed to obtain mission plan after {self.max_attempts} attempts. "
            f"Last issue: {summary}",
            attempts=self.max_attempts,
        )

    async def _attempt(
        self, runner: RunnerProtocol, mission: Mission, prompt: str, label: str
    ) -> PlanAttempt:
        mission.add_log(f"plan:{label}:prompt", prompt=prompt)
        self._debug("plan_prompt", label=label, prompt=prompt[:PREVIEW_LENGTH])

        run = await runner.run_once(prompt=prompt)
        mission.add_log(f"plan:{label}:raw", data=run.to_dict())
        self._debug(
            "plan_raw_result",
            label=label,
            session_id=run.session_id or run.thread_id,
            exit_code=run.exit_code,
            completion=run.completion,
            stdout_preview=run.stdout[:PREVIEW_LENGTH],
        )

        attempt = PlanAttempt(label=label, run=run, candidates=collect_plan_candidates(run))
        for index, candidate in enumerate(attempt.candidates):
            preview = _truncate(candidate)
            mission.add_log(f"plan:{label}:candidate", index=index, preview=preview)
            self._debug("plan_candidate", label=label, index=index, preview=preview)

        for candidate in attempt.candidates:
            parsed = safe_json_parse(candidate)
            if is_valid_plan(parsed):
                attempt.plan = parsed
                attempt.preview = candidate[:PREVIEW_LENGTH]
                return attempt

        if attempt.candidates:
            attempt.preview = attempt.candidates[0][:PREVIEW_LENGTH]
        self._debug("plan_parse_failed", label=label, candidate_count=len(attempt.candidates))
        return attempt

    def describe_failure(self, attempt: PlanAttempt) -> str:
        """
        Deterministic diagnostic for a failed attempt.

        Non-zero exit first (with stderr / error event / stdout detail),
        then missing candidates, then unparsable candidate preview.
        """
        run = attempt.run
        if run.exit_code is not None and run.exit_code != 0:
            return describe_exit(run)
        if not attempt.preview:
            stdout_snippet = snippet(run.stdout) or "[no stdout]"
            return f"Planner response lacked valid JSON. Stdout snippet: {stdout_snippet}"
        return (
            "Planner response was not valid JSON. "
            f"Preview: {attempt.preview[:REASON_PREVIEW_LENGTH]}"
        )

    def apply_plan(self, mission: Mission, plan: dict[str, Any], run: RunResult) -> None:
        """Register blueprints and build the initial agent queue."""
        mission.summary = plan.get("mission_summary") or plan.get("summary")
        agents: list[Agent] = []
        for index, entry in enumerate(plan["agents"]):
            blueprint = AgentBlueprint.from_plan_entry(entry, index)
            mission.register_blueprint(blueprint)
            iteration = sum(1 for agent in agents if agent.base_name == blueprint.name)
            agents.append(Agent.from_blueprint(blueprint, iteration))
        mission.agents = agents
        mission.plan_session_id = run.session_id or run.thread_id
        mission.touch()

    def _debug(self, event: str, **fields: Any) -> None:
        if self.debug:
            self.logger.debug(event, **fields)
