"""
Unit Tests for CodexRunner

build_args is tested directly; the protocol tests spawn a small Python
script standing in for the Codex CLI, selected per test through the
FAKE_CODEX_MODE environment variable.
"""

import asyncio
import json
import sys
import textwrap

import pytest

from missionforce.core.domain.errors import RunnerSpawnError
from missionforce.core.domain.events import EventBroadcaster, EventType
from missionforce.infrastructure.runner.codex_runner import CodexRunner

FAKE_CODEX = textwrap.dedent(
    """
    import json
    import os
    import signal
    import sys
    import time

    mode = os.environ.get("FAKE_CODEX_MODE", "complete_and_hang")
    prompt = sys.stdin.read()

    def emit(event):
        print(json.dumps(event), flush=True)

    if mode == "complete_and_hang":
        emit({"type": "thread.started", "thread_id": "thread-123"})
        print("warming up (not json)", flush=True)
        emit({"type": "turn.started", "turn_id": "turn-1"})
        emit({
            "type": "item.completed",
            "item": {
                "type": "agent_message",
                "text": json.dumps({"argv": sys.argv[1:], "stdin": prompt}),
            },
        })
        emit({"type": "turn.completed", "usage": {"input_tokens": 10, "output_tokens": 5}})
        time.sleep(30)
    elif mode == "exit_code":
        sys.stderr.write("fatal: config missing\\n")
        sys.stderr.flush()
        emit({"type": "thread.started", "thread_id": "thread-9"})
        sys.exit(3)
    elif mode == "slow_success":
        time.sleep(0.8)
        emit({"type": "item.completed", "item": {"type": "agent_message", "text": "finished late"}})
    elif mode == "ignore_sigterm":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        emit({"type": "turn.completed"})
        sys.stdout.write('{"type": "item.comp')
        sys.stdout.flush()
        time.sleep(30)
    elif mode == "hang":
        time.sleep(30)
    """
)

pytestmark = [
    pytest.mark.slow,
    pytest.mark.skipif(sys.platform == "win32", reason="relies on POSIX signals"),
]


@pytest.fixture
def fake_codex(tmp_path):
    script = tmp_path / "fake_codex.py"
    script.write_text(FAKE_CODEX)
    return script


@pytest.fixture
def events():
    return EventBroadcaster()


@pytest.fixture
def runner(fake_codex, events, tmp_path):
    return CodexRunner(
        codex_bin=sys.executable,
        subcommand=str(fake_codex),
        exec_args=[],
        working_directory=str(tmp_path),
        events=events,
        debug=True,
        completion_grace=0.05,
    )


class TestBuildArgs:
    def test_default_layout(self):
        runner = CodexRunner(global_args=["--profile", "p"])
        assert runner.build_args(extra_args=["--foo"]) == [
            "exec",
            "--json",
            "--skip-git-repo-check",
            "--profile",
            "p",
            "--foo",
            "-",
        ]

    def test_resume_session_precedes_prompt_marker(self):
        args = CodexRunner().build_args(session_id="abc", resume_last=True, command="status")
        assert args[-4:] == ["resume", "abc", "-", "status"]

    def test_resume_last_without_prompt(self):
        args = CodexRunner(subcommand=None, exec_args=[]).build_args(
            resume_last=True, has_prompt=False
        )
        assert args == ["resume", "--last"]


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_completion_stop_normalizes_exit_code(self, runner, events):
        seen = []
        events.subscribe(seen.append)

        result = await runner.run_once(
            prompt="line one\nline two", env={"FAKE_CODEX_MODE": "complete_and_hang"}
        )

        assert result.exit_code == 0
        assert result.completion == "turn.completed"
        assert result.completion_stop is True
        assert not result.timed_out and not result.aborted
        assert result.thread_id == "thread-123"
        assert result.session_id == "thread-123"
        assert result.turn_id == "turn-1"
        assert result.usage == {"input_tokens": 10, "output_tokens": 5}
        assert [e["type"] for e in result.events] == [
            "thread.started",
            "turn.started",
            "item.completed",
            "turn.completed",
        ]
        assert "warming up (not json)\n" in result.stdout
        echoed = json.loads(result.last_agent_message)
        assert echoed["stdin"] == "line one line two"
        assert echoed["argv"] == ["-"]
        assert result.command[0] == sys.executable

        types = [event.type for event in seen]
        assert types[0] == EventType.CODEX_SPAWN
        assert EventType.CODEX_PARSE_ERROR in types
        assert types.count(EventType.CODEX_EVENT) == 4
        assert types[-1] == EventType.CODEX_EXIT
        assert not runner.is_active

    @pytest.mark.asyncio
    async def test_nonzero_exit_without_completion(self, runner):
        result = await runner.run_once(prompt="go", env={"FAKE_CODEX_MODE": "exit_code"})

        assert result.exit_code == 3
        assert result.completion is None
        assert result.completion_stop is False
        assert "fatal: config missing" in result.stderr
        assert result.session_id == "thread-9"

    @pytest.mark.asyncio
    async def test_timeout_terminates_process(self, runner, events):
        seen = []
        events.subscribe(seen.append)

        result = await runner.run_once(
            prompt="go", timeout=0.5, env={"FAKE_CODEX_MODE": "hang"}
        )

        assert result.timed_out is True
        assert result.exit_code is None
        assert result.signal in ("SIGTERM", "SIGKILL")
        assert EventType.CODEX_TIMEOUT in [event.type for event in seen]

    @pytest.mark.asyncio
    async def test_cancel_event_aborts_run(self, runner):
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.3, cancel.set)

        result = await runner.run_once(
            prompt="go", env={"FAKE_CODEX_MODE": "hang"}, cancel_event=cancel
        )

        assert result.aborted is True
        assert result.timed_out is False
        assert result.exit_code is None

    @pytest.mark.asyncio
    async def test_spawn_failure(self, tmp_path):
        runner = CodexRunner(codex_bin=str(tmp_path / "missing-codex"))

        with pytest.raises(RunnerSpawnError) as exc_info:
            await runner.run_once(prompt="go")

        assert exc_info.value.binary.endswith("missing-codex")

    @pytest.mark.asyncio
    async def test_runs_are_serialized(self, runner):
        env = {"FAKE_CODEX_MODE": "complete_and_hang"}

        first, second = await asyncio.gather(
            runner.run_once(prompt="a", env=env), runner.run_once(prompt="b", env=env)
        )

        assert first.exit_code == 0 and second.exit_code == 0
        assert first.invocation_id != second.invocation_id

    @pytest.mark.asyncio
    async def test_ensure_inactive_without_process(self, runner):
        await runner.ensure_inactive()
        assert not runner.is_active

    @pytest.mark.asyncio
    async def test_ensure_inactive_waits_for_in_flight_run(self, runner):
        """A concurrent ensure_inactive must not terminate a run that is still working."""
        in_flight = asyncio.create_task(
            runner.run_once(prompt="first mission", env={"FAKE_CODEX_MODE": "slow_success"})
        )
        await asyncio.sleep(0.3)

        await runner.ensure_inactive()
        result = await in_flight

        assert result.exit_code == 0
        assert result.signal is None
        assert result.last_agent_message == "finished late"
        assert not runner.is_active


class TestForcedTermination:
    @pytest.mark.asyncio
    async def test_sigkill_after_ignored_sigterm_and_partial_line(
        self, fake_codex, events, tmp_path
    ):
        seen = []
        events.subscribe(seen.append)
        runner = CodexRunner(
            codex_bin=sys.executable,
            subcommand=str(fake_codex),
            exec_args=[],
            working_directory=str(tmp_path),
            events=events,
            completion_grace=0.05,
            completion_kill_after=0.3,
        )

        result = await runner.run_once(prompt="go", env={"FAKE_CODEX_MODE": "ignore_sigterm"})

        assert result.signal == "SIGKILL"
        assert result.exit_code == 0
        assert result.completion_stop is True
        assert len(result.events) == 1
        assert '{"type": "item.comp' in result.stdout
        assert EventType.CODEX_PARSE_ERROR not in [event.type for event in seen]
