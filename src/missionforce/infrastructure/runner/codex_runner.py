"""
Codex Runner - Subprocess Protocol Engine

Spawns the Codex CLI, feeds it an instruction on stdin and consumes its
stdout as newline-delimited JSON events while the process runs.

Key behaviors:
- Lines are parsed as they arrive; non-JSON lines are logged and skipped
- The first logical-completion event schedules a graceful stop, because
  the executor does not always exit promptly after finishing its turn
- Timeouts and external cancellation use the same SIGTERM -> SIGKILL
  escalation and are reported on the RunResult
- A process stopped by the runner after logical completion reports exit
  code 0: the completion event is the authoritative success signal
- One invocation at a time per runner instance
"""

import asyncio
import json
import os
import signal
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from missionforce.core.domain.errors import RunnerSpawnError
from missionforce.core.domain.events import EventBroadcaster, EventType
from missionforce.core.domain.models import RunResult
from missionforce.core.prompts.mission_prompts import sanitize_prompt

COMPLETION_EVENTS = frozenset(
    {
        "turn.completed",
        "thread.completed",
        "thread.failed",
        "thread.aborted",
        "thread.errored",
    }
)

# Agent messages arrive as single JSON lines and can be large.
STREAM_LIMIT = 16 * 1024 * 1024
STDERR_CHUNK_SIZE = 4096
PREVIEW_LENGTH = 200


@dataclass
class _Invocation:
    """Mutable bookkeeping for one in-flight run."""

    process: asyncio.subprocess.Process
    result: RunResult
    stdout_lines: list[str] = field(default_factory=list)
    stderr_chunks: list[str] = field(default_factory=list)
    completion_task: asyncio.Task | None = None
    terminated_on_completion: bool = False


class CodexRunner:
    """
    Runs the Codex CLI once per call and returns a structured RunResult.

    The argv layout is `<codex_bin> <subcommand> <exec_args> <global_args>
    <extra_args> [resume <id> | resume --last] [-] [command]`; flags must
    precede `resume`.
    """

    def __init__(
        self,
        codex_bin: str = "codex",
        working_directory: str | None = None,
        global_args: Sequence[str] = (),
        exec_args: Sequence[str] = ("--json", "--skip-git-repo-check"),
        subcommand: str | None = "exec",
        events: EventBroadcaster | None = None,
        debug: bool = False,
        default_timeout: float | None = 300.0,
        completion_grace: float = 0.2,
        completion_kill_after: float = 1.0,
        timeout_kill_after: float = 1.5,
    ):
        """
        Initialize the runner.

        Args:
            codex_bin: Executable to spawn
            working_directory: Working directory for the child process
            global_args: Global CLI flags (profile, sandbox policy)
            exec_args: Flags for the exec subcommand (JSON output)
            subcommand: Subcommand placed right after the binary, if any
            events: Broadcaster receiving codex:* protocol events
            debug: Log per-event protocol traces
            default_timeout: Timeout in seconds when a call passes none
            completion_grace: Delay between logical completion and SIGTERM
            completion_kill_after: SIGKILL window after a completion stop
            timeout_kill_after: SIGKILL window after a timeout or abort
        """
        self.codex_bin = codex_bin
        self.working_directory = working_directory
        self.global_args = list(global_args)
        self.exec_args = list(exec_args)
        self.subcommand = subcommand
        self.events = events
        self.debug = debug
        self.default_timeout = default_timeout
        self.completion_grace = completion_grace
        self.completion_kill_after = completion_kill_after
        self.timeout_kill_after = timeout_kill_after
        self.logger = structlog.get_logger().bind(component="codex_runner")
        self._lock = asyncio.Lock()
        self._active: asyncio.subprocess.Process | None = None

    @property
    def is_active(self) -> bool:
        return self._active is not None and self._active.returncode is None

    def build_args(
        self,
        extra_args: Sequence[str] = (),
        session_id: str | None = None,
        resume_last: bool = False,
        has_prompt: bool = True,
        command: str | None = None,
    ) -> list[str]:
        """Assemble the argv (without the binary) for one invocation."""
        args = [self.subcommand] if self.subcommand else []
        args += [*self.exec_args, *self.global_args, *extra_args]
        if session_id:
            args += ["resume", session_id]
        elif resume_last:
            args += ["resume", "--last"]
        if has_prompt:
            args.append("-")
        if command:
            args.append(command)
        return args

    async def ensure_inactive(self) -> None:
        """
        Terminate any child left over from a previous invocation.

        Waits for an in-flight run_once to finish first, so only a child
        that outlived its own invocation is ever reaped.
        """
        async with self._lock:
            await self._reap_stale()

    async def _reap_stale(self) -> None:
        process = self._active
        if process is None:
            return
        if process.returncode is None:
            self.logger.info("terminating_stale_process", pid=process.pid)
            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), timeout=0.2)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                try:
                    process.kill()
                    await asyncio.wait_for(process.wait(), timeout=0.8)
                except ProcessLookupError:
                    pass
                except asyncio.TimeoutError:
                    self.logger.warning("stale_process_still_running", pid=process.pid)
        if self._active is process:
            self._active = None

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
        Run the executor once and collect its event stream.

        Args:
            prompt: Instruction text, sanitized and written to stdin
            command: Optional trailing positional argument
            extra_args: Additional flags for this invocation only
            session_id: Thread to resume
            resume_last: Resume the most recent thread (ignored with session_id)
            timeout: Seconds before the run is terminated (default_timeout if None)
            env: Environment overrides merged over os.environ
            cancel_event: Setting this event aborts the run

        Returns:
            RunResult for the finished (or terminated) process

        Raises:
            RunnerSpawnError: If the executor cannot be started
        """
        async with self._lock:
            await self._reap_stale()
            return await self._run(
                prompt=prompt,
                command=command,
                extra_args=extra_args,
                session_id=session_id,
                resume_last=resume_last,
                timeout=self.default_timeout if timeout is None else timeout,
                env=env,
                cancel_event=cancel_event,
            )

    async def _run(
        self,
        prompt: str | None,
        command: str | None,
        extra_args: Sequence[str],
        session_id: str | None,
        resume_last: bool,
        timeout: float | None,
        env: dict[str, str] | None,
        cancel_event: asyncio.Event | None,
    ) -> RunResult:
        invocation_id = str(uuid.uuid4())
        payload = sanitize_prompt(prompt) if prompt else None
        args = self.build_args(
            extra_args=extra_args,
            session_id=session_id,
            resume_last=resume_last,
            has_prompt=payload is not None,
            command=command,
        )
        result = RunResult(
            invocation_id=invocation_id,
            session_id=session_id,
            command=[self.codex_bin, *args],
        )

        self._publish(
            EventType.CODEX_SPAWN,
            {"invocationId": invocation_id, "args": args, "sessionId": session_id},
        )
        self._debug(
            "codex.spawn",
            invocation_id=invocation_id,
            args=args,
            cwd=self.working_directory,
            prompt_length=len(payload) if payload else 0,
        )

        try:
            process = await asyncio.create_subprocess_exec(
                self.codex_bin,
                *args,
                cwd=self.working_directory,
                env={**os.environ, **(env or {})},
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            self.logger.error(
                "codex.spawn_failed",
                invocation_id=invocation_id,
                binary=self.codex_bin,
                error=str(e),
            )
            raise RunnerSpawnError(self.codex_bin, str(e)) from e

        self._active = process
        invocation = _Invocation(process=process, result=result)

        helpers = [
            asyncio.create_task(self._feed_stdin(process, payload)),
            asyncio.create_task(self._read_stderr(invocation)),
        ]
        if timeout:
            helpers.append(asyncio.create_task(self._enforce_timeout(invocation, timeout)))
        if cancel_event is not None:
            helpers.append(asyncio.create_task(self._watch_cancel(invocation, cancel_event)))

        try:
            await self._read_stdout(invocation)
            await helpers[1]
            await process.wait()
        finally:
            pending = [task for task in helpers if not task.done()]
            if invocation.completion_task is not None and not invocation.completion_task.done():
                pending.append(invocation.completion_task)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
            if self._active is process:
                self._active = None

        self._finalize(invocation)
        return result

    async def _feed_stdin(self, process: asyncio.subprocess.Process, payload: str | None) -> None:
        if process.stdin is None:
            return
        try:
            if payload is not None:
                process.stdin.write(payload.encode("utf-8"))
                await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            self.logger.warning("codex.stdin_closed", error=str(e))
        finally:
            process.stdin.close()

    async def _read_stdout(self, invocation: _Invocation) -> None:
        stream = invocation.process.stdout
        while True:
            try:
                raw = await stream.readline()
            except ValueError as e:
                # Line longer than STREAM_LIMIT; the stream skips past it.
                self.logger.warning(
                    "codex.line_too_long",
                    invocation_id=invocation.result.invocation_id,
                    error=str(e),
                )
                continue
            if not raw:
                break
            text = raw.decode("utf-8", errors="replace")
            terminated = text.endswith("\n")
            line = text.rstrip("\r\n")
            invocation.stdout_lines.append(line)
            trimmed = line.strip()
            if not trimmed:
                continue
            try:
                event = json.loads(trimmed)
            except json.JSONDecodeError as e:
                if not terminated:
                    self._debug(
                        "codex.partial_line_discarded",
                        invocation_id=invocation.result.invocation_id,
                    )
                    continue
                self._protocol_anomaly(invocation, trimmed, str(e))
                continue
            if not isinstance(event, dict):
                self._protocol_anomaly(invocation, trimmed, "event is not a JSON object")
                continue
            self._apply_event(invocation, event)

    def _protocol_anomaly(self, invocation: _Invocation, line: str, error: str) -> None:
        invocation_id = invocation.result.invocation_id
        self.logger.warning(
            "codex.parse_error",
            invocation_id=invocation_id,
            error=error,
            line=line[:PREVIEW_LENGTH],
        )
        self._publish(
            EventType.CODEX_PARSE_ERROR,
            {"invocationId": invocation_id, "error": error, "line": line[:PREVIEW_LENGTH]},
        )

    def _apply_event(self, invocation: _Invocation, event: dict[str, Any]) -> None:
        result = invocation.result
        result.events.append(event)
        event_type = event.get("type")
        self._publish(
            EventType.CODEX_EVENT, {"invocationId": result.invocation_id, "event": event}
        )
        self._debug("codex.event", invocation_id=result.invocation_id, type=event_type)

        if event.get("thread_id") and not result.thread_id:
            result.thread_id = event["thread_id"]
        if event.get("turn_id"):
            result.turn_id = event["turn_id"]

        item = event.get("item")
        if (
            event_type == "item.completed"
            and isinstance(item, dict)
            and item.get("type") == "agent_message"
            and isinstance(item.get("text"), str)
        ):
            result.last_agent_message = item["text"]

        if event_type == "turn.completed" and event.get("usage"):
            result.usage = event["usage"]

        if event_type in COMPLETION_EVENTS:
            result.completion = event_type
            if invocation.completion_task is None:
                self._debug(
                    "codex.completion_detected",
                    invocation_id=result.invocation_id,
                    completion=event_type,
                )
                invocation.completion_task = asyncio.create_task(
                    self._stop_after_completion(invocation)
                )

    async def _read_stderr(self, invocation: _Invocation) -> None:
        stream = invocation.process.stderr
        while True:
            data = await stream.read(STDERR_CHUNK_SIZE)
            if not data:
                break
            chunk = data.decode("utf-8", errors="replace")
            invocation.stderr_chunks.append(chunk)
            self._publish(
                EventType.CODEX_STDERR,
                {"invocationId": invocation.result.invocation_id, "chunk": chunk},
            )
            self._debug(
                "codex.stderr",
                invocation_id=invocation.result.invocation_id,
                chunk=chunk[:PREVIEW_LENGTH],
            )

    async def _stop_after_completion(self, invocation: _Invocation) -> None:
        await asyncio.sleep(self.completion_grace)
        if invocation.process.returncode is None:
            invocation.terminated_on_completion = True
            await self._terminate(invocation.process, self.completion_kill_after)

    async def _enforce_timeout(self, invocation: _Invocation, timeout: float) -> None:
        await asyncio.sleep(timeout)
        if invocation.process.returncode is not None:
            return
        invocation.result.timed_out = True
        self.logger.warning(
            "codex.timeout", invocation_id=invocation.result.invocation_id, timeout=timeout
        )
        self._publish(
            EventType.CODEX_TIMEOUT,
            {"invocationId": invocation.result.invocation_id, "timeout": timeout},
        )
        await self._terminate(invocation.process, self.timeout_kill_after)

    async def _watch_cancel(self, invocation: _Invocation, cancel_event: asyncio.Event) -> None:
        await cancel_event.wait()
        if invocation.process.returncode is not None:
            return
        invocation.result.aborted = True
        self.logger.info("codex.aborted", invocation_id=invocation.result.invocation_id)
        await self._terminate(invocation.process, self.timeout_kill_after)

    async def _terminate(self, process: asyncio.subprocess.Process, kill_after: float) -> None:
        """SIGTERM, then SIGKILL if the process outlives `kill_after` seconds."""
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=kill_after)
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                pass

    def _finalize(self, invocation: _Invocation) -> None:
        result = invocation.result
        returncode = invocation.process.returncode
        if returncode is not None and returncode < 0:
            try:
                result.signal = signal.Signals(-returncode).name
            except ValueError:
                result.signal = str(-returncode)
            result.exit_code = None
        else:
            result.exit_code = returncode

        result.completion_stop = invocation.terminated_on_completion
        if (
            invocation.terminated_on_completion
            and result.completion
            and not result.timed_out
            and not result.aborted
        ):
            result.exit_code = 0

        result.stdout = "".join(f"{line}\n" for line in invocation.stdout_lines)
        result.stderr = "".join(invocation.stderr_chunks)

        if not result.thread_id:
            result.thread_id = next(
                (event["thread_id"] for event in result.events if event.get("thread_id")), None
            )
        if not result.session_id and result.thread_id:
            result.session_id = result.thread_id

        self._publish(
            EventType.CODEX_EXIT,
            {
                "invocationId": result.invocation_id,
                "exitCode": result.exit_code,
                "signal": result.signal,
                "sessionId": result.session_id,
                "completion": result.completion,
                "timedOut": result.timed_out,
                "aborted": result.aborted,
            },
        )
        self._debug(
            "codex.exit",
            invocation_id=result.invocation_id,
            exit_code=result.exit_code,
            signal=result.signal,
            session_id=result.session_id,
            completion=result.completion,
            stdout_preview=result.stdout[:PREVIEW_LENGTH],
            stderr_preview=result.stderr[:PREVIEW_LENGTH],
        )

    def _publish(self, event_type: EventType, payload: dict[str, Any]) -> None:
        if self.events is not None:
            self.events.publish(event_type, payload)

    def _debug(self, event: str, **fields: Any) -> None:
        if self.debug:
            self.logger.debug(event, **fields)
