"""Safety checker runner: in-process checkers and external checker commands."""

import asyncio
import json
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from ..domain.models import (
    CheckerError,
    FunctionCall,
    InProcessCheckerName,
    SafetyCheckerConfig,
)
from ..domain.safety import CheckerRunner, SafetyCheckDecision, SafetyCheckResult

# Argument names containing one of these are treated as paths
PATH_ARG_HINTS = ("path", "file", "dir")


class DefaultCheckerRunner(CheckerRunner):
    """Runs the built-in ``allowed-path`` checker and external checker commands.

    External checkers receive ``{"tool_call", "config", "context"}`` as JSON on
    stdin and answer ``{"decision", "reason"}`` on stdout.
    """

    def __init__(
        self,
        workspace_dirs: list[str | Path],
        external_checkers: dict[str, str] | None = None,
        timeout: float = 30.0,
    ):
        """Initialize the runner.

        Args:
            workspace_dirs: Directories the allowed-path checker accepts
            external_checkers: External checker name -> shell command
            timeout: Seconds an external checker may run
        """
        self.workspace_dirs = [Path(d).expanduser().resolve() for d in workspace_dirs]
        self.external_checkers = dict(external_checkers or {})
        self.timeout = timeout
        self.logger = structlog.get_logger(__name__)

    async def run_checker(
        self, call: FunctionCall, checker: SafetyCheckerConfig
    ) -> SafetyCheckResult:
        if checker.type == "in-process":
            return self._run_in_process(call, checker)
        return await self._run_external(call, checker)

    def _run_in_process(
        self, call: FunctionCall, checker: SafetyCheckerConfig
    ) -> SafetyCheckResult:
        try:
            name = InProcessCheckerName(checker.name)
        except ValueError:
            raise CheckerError(
                f"Unknown in-process checker: {checker.name}",
                {"checker": checker.name},
            ) from None

        if name == InProcessCheckerName.ALLOWED_PATH:
            return self._check_allowed_path(call, checker.config or {})
        raise CheckerError(f"Unhandled in-process checker: {checker.name}")

    def _check_allowed_path(
        self, call: FunctionCall, config: Mapping[str, Any]
    ) -> SafetyCheckResult:
        if not self.workspace_dirs:
            raise CheckerError("allowed-path checker has no workspace directories")

        included = set(config.get("included_args") or [])
        excluded = set(config.get("excluded_args") or [])
        for arg_name, value in self._path_arguments(call.args or {}, included, excluded):
            if not self._is_within_workspace(value):
                return SafetyCheckResult(
                    decision=SafetyCheckDecision.DENY,
                    reason=f"Path '{value}' in argument '{arg_name}' is outside the allowed workspace",
                )
        return SafetyCheckResult(decision=SafetyCheckDecision.ALLOW)

    @staticmethod
    def _path_arguments(
        args: Mapping[str, Any], included: set[str], excluded: set[str]
    ) -> Iterator[tuple[str, str]]:
        """Yield (dotted name, value) for every path-like string argument."""
        pending: list[tuple[str, Mapping[str, Any]]] = [("", args)]
        while pending:
            prefix, mapping = pending.pop()
            for key, value in mapping.items():
                name = f"{prefix}{key}"
                if name in excluded or key in excluded:
                    continue
                if isinstance(value, Mapping):
                    pending.append((f"{name}.", value))
                    continue
                looks_like_path = name in included or key in included or any(
                    hint in str(key).lower() for hint in PATH_ARG_HINTS
                )
                if not looks_like_path:
                    continue
                values = value if isinstance(value, list) else [value]
                for item in values:
                    if isinstance(item, str) and item:
                        yield name, item

    def _is_within_workspace(self, value: str) -> bool:
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = self.workspace_dirs[0] / path
        resolved = path.resolve()
        return any(resolved.is_relative_to(root) for root in self.workspace_dirs)

    async def _run_external(
        self, call: FunctionCall, checker: SafetyCheckerConfig
    ) -> SafetyCheckResult:
        command = self.external_checkers.get(checker.name)
        if not command:
            raise CheckerError(
                f"No command registered for external checker: {checker.name}",
                {"checker": checker.name},
            )

        payload = json.dumps(
            {
                "tool_call": call.model_dump(),
                "config": checker.config or {},
                "context": {
                    "workspace_dirs": [str(d) for d in self.workspace_dirs],
                    "required_context": checker.required_context or [],
                },
            }
        ).encode("utf-8")

        proc = await asyncio.create_subprocess_shell(
            command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(input=payload), timeout=self.timeout
            )
        except TimeoutError:
            proc.kill()
            await proc.wait()
            raise CheckerError(
                f"Checker {checker.name} timed out after {self.timeout}s",
                {"checker": checker.name},
            ) from None

        if proc.returncode != 0:
            error_msg = stderr.decode("utf-8", errors="ignore").strip()
            raise CheckerError(
                f"Checker {checker.name} exited with {proc.returncode}: {error_msg}",
                {"checker": checker.name, "exit_code": proc.returncode},
            )

        try:
            result = SafetyCheckResult.model_validate_json(stdout)
        except ValidationError as e:
            raise CheckerError(
                f"Checker {checker.name} returned invalid output: {e}",
                {"checker": checker.name},
            ) from e

        self.logger.debug(
            "External checker finished",
            checker=checker.name,
            tool_name=call.name,
            decision=result.decision.value,
        )
        return result
