"""
Mission Prompts - Planner and Agent Instructions

This module builds the two instruction payloads sent to the Codex executor:
- build_plan_prompt: asks the planner for a strict-JSON mission plan
- build_agent_prompt: tells one agent what to do and how to end its reply

Both payloads are sanitized (line breaks collapsed to spaces) so they pass
through argument and stdin boundaries unambiguously.

Usage:
    from missionforce.core.prompts.mission_prompts import build_agent_prompt

    prompt = build_agent_prompt(mission.summary, agent, attempt=1, failure_reason=reason)
"""

import json
import platform
import re
from typing import Any

from missionforce.core.domain.models import Agent

DEFAULT_PLANNING_HEADER = (
    "You are Codex Mission Control. Return a JSON plan with keys \"mission_summary\" "
    "and \"agents\". Do not output any other text. NEVER output code."
)

PLAN_SCHEMA_BLOCK = """Agent schema (must include every field):
- name: snake_case identifier
- role: one sentence description
- expertise: short bullet-style string list
- objective: concrete outcome for this agent
- instructions: detailed step-by-step guidance

Directives:
1. Mission details are complete. DO NOT ask clarifying questions.
2. Output STRICT JSON only (no prose, no code fences).
3. Provide 2-6 highly specialized agents tailored to the mission.
4. Agents must be complementary and cover the full delivery loop (planning/design, implementation, testing/QA, validation/documentation) unless the mission explicitly omits a phase.
5. Do not assign multiple agents to the same task; instead, create sequential hand-offs that mirror a real engineering team.
6. Every agent must describe only actions they genuinely perform (commands run, files touched, tests executed). Fabricated or purely hypothetical work is forbidden; agents must verify artifacts before reporting success.
7. The planner MUST NOT write code, shell commands, or pseudo-implementations. Its sole responsibility is to emit JSON that describes the mission summary and agent plan, with no Markdown, code blocks, or instructions beyond the schema.

JSON schema sample:
{"mission_summary":"...","agents":[{"name":"...","role":"...","expertise":"...","objective":"...","instructions":"..."}]}"""

PLAN_RETRY_EMPHASIS = (
    "IMPORTANT: Your previous response violated the format. Return ONLY JSON matching "
    "the schema above. Do not apologize or ask questions."
)

PLAN_CLOSING_LINE = (
    "Return ONLY JSON. DO NOT include explanations, natural-language responses, or Markdown."
)

REALITY_CHECK_BLOCK = """Reality-check requirement:
- Only describe actions you actually performed during this turn (commands executed, files created/edited, tests run). Do NOT speculate or invent results.
- After each modification, cite the exact command used (e.g., `ls`, `cat file`, `pytest --timeout 60`) and summarize the observed output, or explicitly state why the action could not be performed.
- If a requested artifact does not exist or you lack permissions/resources, declare the blocker and request an iteration instead of fabricating work.

"""

TESTING_SAFETY_BLOCK = """Testing safety requirement:
- Every command, script, or test you run MUST include an explicit, realistic timeout. Choose a duration appropriate for the workload (typically 30-180 seconds). If the tool lacks a timeout flag, wrap it with a timeout utility (e.g., PowerShell Start-Process with -Wait -Timeout, bash "timeout" command, or equivalent).
- Never run commands without timeouts; if a tool cannot be wrapped, describe the limitation and request guidance before proceeding.

"""

ITERATION_PROTOCOL_BLOCK = """Iteration protocol:
- If additional work is required before the mission can proceed (e.g., tests failed, missing docs), end your response with a single line exactly like:
  CONTROL_JSON: {"action":"request_iteration","target_agent":"AGENT_TO_REPEAT","instructions":"SUCCINCT_FIXES_NEEDED","next_agent":"AGENT_WHO_SHOULD_FOLLOW_UP"}
- If everything is complete and the mission should continue, end with:
  CONTROL_JSON: {"action":"continue"}
- The CONTROL_JSON line must be the final line of your response with no surrounding Markdown or prose."""

TIMEOUT_DIRECTIVE_PATTERN = re.compile(
    r"\b(test|qa|quality assurance|verification|validate|validation|validator|compliance|review)\b",
    re.IGNORECASE,
)

_LINE_BREAK = re.compile(r"\r?\n")


def sanitize_prompt(text: Any) -> Any:
    """Collapse every line break to a single space; non-strings pass through."""
    if not isinstance(text, str):
        return text
    return _LINE_BREAK.sub(" ", text)


def needs_timeout_directive(agent: Agent) -> bool:
    """
    Whether an agent does testing-type work and must time-box commands.

    Matches whole words such as test, QA, verification, validation,
    compliance or review across the agent's role, objective, instructions
    and name.
    """
    combined = " ".join(
        [agent.role or "", agent.objective or "", agent.instructions or "", agent.name or ""]
    )
    return TIMEOUT_DIRECTIVE_PATTERN.search(combined) is not None


def _host_os_hint() -> str:
    system = platform.system()
    if system == "Windows":
        return "Windows (use PowerShell commands)"
    return f"{system.lower() or 'unknown'} (use Bash commands)"


def build_plan_prompt(
    goal: str,
    context: str | dict[str, Any] | None = None,
    failure_reason: str | None = None,
    retry: bool = False,
    header: str = DEFAULT_PLANNING_HEADER,
) -> str:
    """
    Build the planning instruction.

    Args:
        goal: Mission goal
        context: Optional extra context; non-strings are embedded as JSON
        failure_reason: Diagnostic from the previous failed attempt
        retry: Add the format-violation emphasis block
        header: Planner persona line

    Returns:
        Sanitized single-line prompt
    """
    lines = [header, "", "Mission:", goal]
    if context:
        rendered = context if isinstance(context, str) else json.dumps(context, indent=2)
        lines += ["", "Additional context:", rendered]
    if failure_reason:
        lines += [
            "",
            "Previous attempt failed because:",
            failure_reason,
            "Correct the issue explicitly before returning the plan.",
        ]
    lines += ["", f"Host OS: {_host_os_hint()}. Emit shell commands using the native syntax."]
    lines += ["", PLAN_SCHEMA_BLOCK]
    if retry:
        lines += ["", PLAN_RETRY_EMPHASIS]
    lines += ["", PLAN_CLOSING_LINE]
    return sanitize_prompt("\n".join(lines))


def build_agent_prompt(
    mission_summary: str | None,
    agent: Agent,
    attempt: int = 0,
    failure_reason: str | None = None,
) -> str:
    """
    Build the instruction for one agent attempt.

    The corrective block appears only when a previous attempt failed; the
    testing-safety block only for agents matched by needs_timeout_directive.
    """
    retry_block = ""
    if failure_reason and failure_reason.strip():
        retry_block = (
            f"Attempt {attempt + 1} corrective directives:\n"
            f"- Previous attempt failed because: {failure_reason}\n"
            "- Resolve this issue explicitly before proceeding.\n"
            "- Show evidence (command outputs, file diffs, test logs) proving the fix.\n\n"
        )
    timeout_block = TESTING_SAFETY_BLOCK if needs_timeout_directive(agent) else ""
    raw_prompt = (
        f"You are {agent.name}, {agent.role}.\n"
        f"Mission summary: {mission_summary}\n"
        f"Your objective: {agent.objective}\n"
        f"Core expertise: {agent.expertise}\n\n"
        f"Instructions:\n{agent.instructions}\n\n"
        f"{retry_block}{REALITY_CHECK_BLOCK}{timeout_block}"
        "Deliver a comprehensive result in Markdown. Include reasoning, key decisions, "
        "and final outputs.\n\n"
        f"{ITERATION_PROTOCOL_BLOCK}"
    )
    return sanitize_prompt(raw_prompt)
