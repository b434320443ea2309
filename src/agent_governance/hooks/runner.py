"""Hook runner: executes command hooks as subprocesses."""

import asyncio
import json
import os
import signal
import time
from typing import Any

import structlog

from ..domain.hook_models import (
    DEFAULT_HOOK_TIMEOUT_MS,
    HookConfig,
    HookEventName,
    HookExecutionResult,
    HookInput,
)

EXIT_CODE_SUCCESS = 0
EXIT_CODE_NON_BLOCKING_ERROR = 1
EXIT_CODE_BLOCKING_ERROR = 2

PROJECT_DIR_ENV_VARS = ("GOVERNANCE_PROJECT_DIR", "CLAUDE_PROJECT_DIR")

KILL_GRACE_SECONDS = 5.0
PIPE_DRAIN_SECONDS = 1.0
READ_CHUNK_SIZE = 64 * 1024


class HookRunner:
    """Runs hook commands with the JSON input on stdin.

    Exit code 0 is success, 2 is a blocking error, anything else is a
    non-blocking error. A hook that outlives its timeout receives SIGTERM,
    then SIGKILL after a grace period.
    """

    def __init__(self, kill_grace_seconds: float = KILL_GRACE_SECONDS):
        self.kill_grace_seconds = kill_grace_seconds
        self.logger = structlog.get_logger(__name__)

    async def execute_hook(
        self,
        hook_config: HookConfig,
        event_name: HookEventName,
        hook_input: HookInput,
    ) -> HookExecutionResult:
        """Run one hook. Never raises; failures are reported in the result."""
        start_time = time.perf_counter()
        try:
            return await self._execute_command_hook(
                hook_config, event_name, hook_input, start_time
            )
        except Exception as e:
            self.logger.warning(
                "Hook execution failed",
                event_name=event_name.value,
                command=hook_config.command,
                error=str(e),
                error_type=type(e).__name__,
            )
            return HookExecutionResult(
                hook_config=hook_config,
                event_name=event_name,
                success=False,
                error=e,
                duration=_elapsed_ms(start_time),
            )

    async def execute_hooks_parallel(
        self,
        hook_configs: list[HookConfig],
        event_name: HookEventName,
        hook_input: HookInput,
    ) -> list[HookExecutionResult]:
        """Run every hook concurrently on the same input and wait for all."""
        return list(
            await asyncio.gather(
                *(
                    self.execute_hook(config, event_name, hook_input)
                    for config in hook_configs
                )
            )
        )

    async def execute_hooks_sequential(
        self,
        hook_configs: list[HookConfig],
        event_name: HookEventName,
        hook_input: HookInput,
    ) -> list[HookExecutionResult]:
        """Run hooks one by one, feeding each successful output forward."""
        results: list[HookExecutionResult] = []
        current_input = hook_input
        for config in hook_configs:
            result = await self.execute_hook(config, event_name, current_input)
            results.append(result)
            if result.success and result.output:
                current_input = self._apply_hook_output_to_input(
                    current_input, result.output, event_name
                )
        return results

    @staticmethod
    def _apply_hook_output_to_input(
        hook_input: HookInput, output: dict[str, Any], event_name: HookEventName
    ) -> HookInput:
        specific = output.get("hookSpecificOutput")
        if not isinstance(specific, dict):
            return hook_input

        if event_name == HookEventName.BEFORE_AGENT:
            additional_context = specific.get("additionalContext")
            prompt = getattr(hook_input, "prompt", None)
            if isinstance(additional_context, str) and isinstance(prompt, str):
                return hook_input.model_copy(
                    update={"prompt": prompt + "\n\n" + additional_context}
                )

        elif event_name == HookEventName.BEFORE_MODEL:
            partial_request = specific.get("llm_request")
            current_request = getattr(hook_input, "llm_request", None)
            if isinstance(partial_request, dict) and isinstance(current_request, dict):
                return hook_input.model_copy(
                    update={"llm_request": {**current_request, **partial_request}}
                )

        return hook_input

    async def _execute_command_hook(
        self,
        hook_config: HookConfig,
        event_name: HookEventName,
        hook_input: HookInput,
        start_time: float,
    ) -> HookExecutionResult:
        timeout_ms = hook_config.timeout or DEFAULT_HOOK_TIMEOUT_MS
        command = self._expand_command(hook_config.command, hook_input.cwd)
        env = {**os.environ, **{name: hook_input.cwd for name in PROJECT_DIR_ENV_VARS}}
        payload = json.dumps(hook_input.to_payload()).encode("utf-8")

        proc = await asyncio.create_subprocess_shell(
            command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=hook_input.cwd,
            env=env,
            start_new_session=True,
        )

        stdout_buffer = bytearray()
        stderr_buffer = bytearray()
        completion = asyncio.gather(
            self._feed_stdin(proc.stdin, payload),
            self._drain(proc.stdout, stdout_buffer),
            self._drain(proc.stderr, stderr_buffer),
            proc.wait(),
        )

        timed_out = False
        try:
            await asyncio.wait_for(asyncio.shield(completion), timeout_ms / 1000)
        except TimeoutError:
            # a shell that already exited left children holding its pipes
            timed_out = proc.returncode is None
            self.logger.warning(
                "Hook timed out, terminating"
                if timed_out
                else "Hook left background processes, terminating",
                event_name=event_name.value,
                command=hook_config.command,
                timeout_ms=timeout_ms,
            )
            await self._terminate(proc, completion)
            try:
                await asyncio.wait_for(completion, PIPE_DRAIN_SECONDS)
            except TimeoutError:
                pass
            await proc.wait()

        stdout = stdout_buffer.decode("utf-8", errors="replace")
        stderr = stderr_buffer.decode("utf-8", errors="replace")
        duration = _elapsed_ms(start_time)

        if timed_out:
            return HookExecutionResult(
                hook_config=hook_config,
                event_name=event_name,
                success=False,
                error=TimeoutError(f"Hook timed out after {timeout_ms}ms"),
                stdout=stdout,
                stderr=stderr,
                exit_code=proc.returncode,
                duration=duration,
            )

        exit_code = proc.returncode if proc.returncode is not None else EXIT_CODE_SUCCESS
        output = self._parse_output(exit_code, stdout, stderr)

        self.logger.debug(
            "Hook finished",
            event_name=event_name.value,
            command=hook_config.command,
            exit_code=exit_code,
            duration_ms=duration,
        )
        return HookExecutionResult(
            hook_config=hook_config,
            event_name=event_name,
            success=exit_code == EXIT_CODE_SUCCESS,
            output=output,
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            duration=duration,
        )

    async def _feed_stdin(
        self, stdin: asyncio.StreamWriter | None, payload: bytes
    ) -> None:
        if stdin is None:
            return
        try:
            stdin.write(payload)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # the hook exited without reading its input
            pass
        except OSError as e:
            self.logger.warning("Hook stdin error", error=str(e))
        finally:
            try:
                stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                pass

    @staticmethod
    async def _drain(stream: asyncio.StreamReader | None, buffer: bytearray) -> None:
        if stream is None:
            return
        while chunk := await stream.read(READ_CHUNK_SIZE):
            buffer.extend(chunk)

    async def _terminate(
        self, proc: asyncio.subprocess.Process, completion: asyncio.Future
    ) -> None:
        """SIGTERM the hook's process group, SIGKILL it after the grace period.

        The group is signalled even when the hook's shell has already exited,
        since background children may still hold its output pipes open.
        """
        self._signal(proc, signal.SIGTERM)
        try:
            await asyncio.wait_for(asyncio.shield(completion), self.kill_grace_seconds)
        except TimeoutError:
            self._signal(proc, getattr(signal, "SIGKILL", signal.SIGTERM))

    def _signal(self, proc: asyncio.subprocess.Process, sig: int) -> None:
        if hasattr(os, "killpg"):
            try:
                os.killpg(proc.pid, sig)
                return
            except ProcessLookupError:
                return
            except PermissionError:
                pass
        if proc.returncode is None:
            try:
                proc.send_signal(sig)
            except ProcessLookupError:
                pass

    @staticmethod
    def _expand_command(command: str, cwd: str) -> str:
        for name in PROJECT_DIR_ENV_VARS:
            command = command.replace(f"${name}", cwd)
        return command

    def _parse_output(
        self, exit_code: int, stdout: str, stderr: str
    ) -> dict[str, Any] | None:
        if exit_code == EXIT_CODE_SUCCESS and stdout.strip():
            text = stdout.strip()
            try:
                parsed = json.loads(text)
                if isinstance(parsed, str):
                    parsed = json.loads(parsed)
            except ValueError:
                return self._convert_plain_text_to_output(text, exit_code)
            if isinstance(parsed, dict):
                return parsed
            if parsed:
                return self._convert_plain_text_to_output(text, exit_code)
            return None

        if exit_code != EXIT_CODE_SUCCESS and stderr.strip():
            return self._convert_plain_text_to_output(
                stderr.strip(), exit_code or EXIT_CODE_NON_BLOCKING_ERROR
            )
        return None

    @staticmethod
    def _convert_plain_text_to_output(text: str, exit_code: int) -> dict[str, Any]:
        if exit_code == EXIT_CODE_SUCCESS:
            return {"decision": "allow", "systemMessage": text}
        if exit_code == EXIT_CODE_BLOCKING_ERROR:
            return {"decision": "deny", "reason": text}
        return {"decision": "allow", "systemMessage": f"Warning: {text}"}


def _elapsed_ms(start_time: float) -> float:
    return (time.perf_counter() - start_time) * 1000
