"""
Pydantic V2 models for lifecycle hooks.

This module defines the event names, the per-event input payloads written to
hook subprocesses, the output objects parsed from them, and the result and
plan records that flow through the hook pipeline.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, StrictStr, ValidationError, field_validator

from .models import HookInputValidationError, UnsupportedHookEventError

DEFAULT_HOOK_TIMEOUT_MS = 60_000


class HookEventName(str, Enum):
    """Supported lifecycle hook events."""

    BEFORE_TOOL = "BeforeTool"
    AFTER_TOOL = "AfterTool"
    BEFORE_AGENT = "BeforeAgent"
    NOTIFICATION = "Notification"
    AFTER_AGENT = "AfterAgent"
    SESSION_START = "SessionStart"
    SESSION_END = "SessionEnd"
    PRE_COMPRESS = "PreCompress"
    BEFORE_MODEL = "BeforeModel"
    AFTER_MODEL = "AfterModel"
    BEFORE_TOOL_SELECTION = "BeforeToolSelection"

    @classmethod
    def parse(cls, value: Any) -> "HookEventName":
        """Parse an event name, raising UnsupportedHookEventError if unknown."""
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedHookEventError(str(value)) from None


class NotificationType(str, Enum):
    """Kinds of notifications that fire the Notification event."""

    TOOL_PERMISSION = "ToolPermission"


class SessionStartSource(str, Enum):
    """Why a session started."""

    STARTUP = "startup"
    RESUME = "resume"
    CLEAR = "clear"
    COMPRESS = "compress"


class SessionEndReason(str, Enum):
    """Why a session ended."""

    EXIT = "exit"
    CLEAR = "clear"
    LOGOUT = "logout"
    PROMPT_INPUT_EXIT = "prompt_input_exit"
    OTHER = "other"


class PreCompressTrigger(str, Enum):
    """What triggered a context compression."""

    MANUAL = "manual"
    AUTO = "auto"


class ConfigSource(str, Enum):
    """Configuration sources hooks are read from, in precedence order."""

    PROJECT = "project"
    USER = "user"
    SYSTEM = "system"
    EXTENSIONS = "extensions"

    @property
    def precedence(self) -> int:
        return _SOURCE_PRECEDENCE[self]


_SOURCE_PRECEDENCE = {
    ConfigSource.PROJECT: 1,
    ConfigSource.USER: 2,
    ConfigSource.SYSTEM: 3,
    ConfigSource.EXTENSIONS: 4,
}


# Configuration models


class HookConfig(BaseModel):
    """One command hook."""

    type: Literal["command"] = "command"
    command: str = Field(..., min_length=1)
    timeout: int | None = Field(
        default=None, gt=0, description="Timeout in milliseconds"
    )

    model_config = {"frozen": True}


class HookDefinition(BaseModel):
    """A group of hooks sharing a matcher."""

    matcher: str | None = None
    sequential: bool | None = None
    hooks: list[HookConfig]


class HookRegistryEntry(BaseModel):
    """A registered hook with its origin and enabled state."""

    event_name: HookEventName
    config: HookConfig
    matcher: str | None = None
    sequential: bool | None = None
    source: ConfigSource
    enabled: bool = True


class HookExecutionPlan(BaseModel):
    """Hooks selected for one event occurrence and how to run them."""

    event_name: HookEventName
    hook_configs: list[HookConfig]
    sequential: bool = False


# Input models


class HookInput(BaseModel):
    """Fields common to every hook input."""

    session_id: StrictStr
    transcript_path: StrictStr = ""
    cwd: StrictStr
    hook_event_name: StrictStr
    timestamp: StrictStr

    model_config = {"extra": "allow"}

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready dict written to the hook's stdin."""
        return self.model_dump(mode="json")


class BeforeToolInput(HookInput):
    tool_name: StrictStr
    tool_input: dict[str, Any]


class AfterToolInput(HookInput):
    tool_name: StrictStr
    tool_input: dict[str, Any]
    tool_response: dict[str, Any]


class BeforeAgentInput(HookInput):
    prompt: StrictStr


class AfterAgentInput(HookInput):
    prompt: StrictStr
    prompt_response: StrictStr
    stop_hook_active: bool = False

    @field_validator("stop_hook_active", mode="before")
    @classmethod
    def default_non_boolean(cls, v: Any) -> bool:
        """Anything but a real boolean means the stop hook is not active."""
        return v if isinstance(v, bool) else False


class NotificationInput(HookInput):
    notification_type: NotificationType
    message: StrictStr
    details: dict[str, Any]


class SessionStartInput(HookInput):
    source: SessionStartSource


class SessionEndInput(HookInput):
    reason: SessionEndReason


class PreCompressInput(HookInput):
    trigger: PreCompressTrigger


class BeforeModelInput(HookInput):
    llm_request: dict[str, Any]


class AfterModelInput(HookInput):
    llm_request: dict[str, Any]
    llm_response: dict[str, Any]


class BeforeToolSelectionInput(HookInput):
    llm_request: dict[str, Any]


INPUT_MODELS: dict[HookEventName, type[HookInput]] = {
    HookEventName.BEFORE_TOOL: BeforeToolInput,
    HookEventName.AFTER_TOOL: AfterToolInput,
    HookEventName.BEFORE_AGENT: BeforeAgentInput,
    HookEventName.AFTER_AGENT: AfterAgentInput,
    HookEventName.NOTIFICATION: NotificationInput,
    HookEventName.SESSION_START: SessionStartInput,
    HookEventName.SESSION_END: SessionEndInput,
    HookEventName.PRE_COMPRESS: PreCompressInput,
    HookEventName.BEFORE_MODEL: BeforeModelInput,
    HookEventName.AFTER_MODEL: AfterModelInput,
    HookEventName.BEFORE_TOOL_SELECTION: BeforeToolSelectionInput,
}


_ERROR_DESCRIPTIONS = {
    "missing": "is required",
    "string_type": "must be a string",
    "dict_type": "must be an object",
    "bool_type": "must be a boolean",
}


def validate_hook_input(event_name: str, data: Any) -> HookInput:
    """
    Validate an untyped payload into the input model for ``event_name``.

    Args:
        event_name: Name of the hook event
        data: Raw input payload

    Returns:
        Parsed and validated hook input model

    Raises:
        UnsupportedHookEventError: If the event name is unknown
        HookInputValidationError: If a field is missing or of the wrong kind
    """
    event = HookEventName.parse(event_name)
    if not isinstance(data, dict):
        raise HookInputValidationError(
            f"Invalid input for {event.value} hook event: input must be an object"
        )

    try:
        return INPUT_MODELS[event].model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "input"
        description = _ERROR_DESCRIPTIONS.get(first["type"])
        detail = f"{field} {description}" if description else f"{field}: {first['msg']}"
        raise HookInputValidationError(
            f"Invalid input for {event.value} hook event: {detail}",
            {"event_name": event.value, "errors": e.errors(include_url=False)},
        ) from e


# Output models


class DefaultHookOutput(BaseModel):
    """Structured output of a hook, as parsed from its stdout."""

    continue_: bool | None = Field(default=None, alias="continue")
    stop_reason: str | None = Field(default=None, alias="stopReason")
    suppress_output: bool | None = Field(default=None, alias="suppressOutput")
    system_message: str | None = Field(default=None, alias="systemMessage")
    decision: str | None = None
    reason: str | None = None
    hook_specific_output: dict[str, Any] | None = Field(
        default=None, alias="hookSpecificOutput"
    )

    model_config = {"populate_by_name": True, "extra": "allow"}

    def is_blocking_decision(self) -> bool:
        return self.decision in ("block", "deny")

    def should_stop_execution(self) -> bool:
        return self.continue_ is False

    def get_effective_reason(self) -> str:
        return self.reason or self.stop_reason or "No reason provided"

    def get_additional_context(self) -> str | None:
        if self.hook_specific_output:
            context = self.hook_specific_output.get("additionalContext")
            if isinstance(context, str):
                return context
        return None

    def get_blocking_error(self) -> dict[str, Any]:
        """Blocked flag and reason for callers that surface a block."""
        if self.is_blocking_decision():
            return {"blocked": True, "reason": self.get_effective_reason()}
        return {"blocked": False, "reason": ""}

    def to_dict(self) -> dict[str, Any]:
        """Wire-format dict (camelCase keys, unset fields dropped)."""
        return self.model_dump(by_alias=True, exclude_none=True)


class BeforeToolHookOutput(DefaultHookOutput):
    """BeforeTool output, also honouring permissionDecision fields."""

    def get_effective_reason(self) -> str:
        if self.hook_specific_output:
            compat_reason = self.hook_specific_output.get("permissionDecisionReason")
            if isinstance(compat_reason, str):
                return compat_reason
        return super().get_effective_reason()

    def is_blocking_decision(self) -> bool:
        if self.hook_specific_output:
            compat_decision = self.hook_specific_output.get("permissionDecision")
            if compat_decision in ("block", "deny"):
                return True
        return super().is_blocking_decision()


class BeforeModelHookOutput(DefaultHookOutput):
    """BeforeModel output carrying a request patch or a synthetic response."""

    def get_synthetic_response(self) -> dict[str, Any] | None:
        if self.hook_specific_output:
            response = self.hook_specific_output.get("llm_response")
            if isinstance(response, dict) and response:
                return response
        return None

    def apply_llm_request_modifications(
        self, target: dict[str, Any]
    ) -> dict[str, Any]:
        if self.hook_specific_output:
            request = self.hook_specific_output.get("llm_request")
            if isinstance(request, dict) and request:
                return {**target, **request}
        return target


class AfterModelHookOutput(DefaultHookOutput):
    """AfterModel output carrying a replacement response."""

    def get_modified_response(self) -> dict[str, Any] | None:
        if self.hook_specific_output:
            response = self.hook_specific_output.get("llm_response")
            if isinstance(response, dict):
                candidates = response.get("candidates") or []
                if candidates and isinstance(candidates[0], dict) and (
                    candidates[0].get("content")
                ):
                    return response

        if self.should_stop_execution():
            return {
                "candidates": [
                    {
                        "content": {
                            "role": "model",
                            "parts": [self.get_effective_reason()],
                        },
                        "finishReason": "STOP",
                    }
                ]
            }
        return None


class BeforeToolSelectionHookOutput(DefaultHookOutput):
    """BeforeToolSelection output carrying a tool config."""

    def apply_tool_config_modifications(
        self, target: dict[str, Any]
    ) -> dict[str, Any]:
        if self.hook_specific_output:
            tool_config = self.hook_specific_output.get("toolConfig")
            if isinstance(tool_config, dict) and tool_config:
                return {
                    **target,
                    "tools": target.get("tools") or [],
                    "toolConfig": tool_config,
                }
        return target


_OUTPUT_CLASSES: dict[str, type[DefaultHookOutput]] = {
    HookEventName.BEFORE_TOOL.value: BeforeToolHookOutput,
    HookEventName.BEFORE_MODEL.value: BeforeModelHookOutput,
    HookEventName.AFTER_MODEL.value: AfterModelHookOutput,
    HookEventName.BEFORE_TOOL_SELECTION.value: BeforeToolSelectionHookOutput,
}


def create_hook_output(
    event_name: str | HookEventName, data: dict[str, Any] | None = None
) -> DefaultHookOutput:
    """
    Create the output class matching ``event_name`` from raw output data.

    Args:
        event_name: Hook event the output belongs to
        data: Raw output dict (wire-format keys)

    Returns:
        A DefaultHookOutput, or an event-specific subclass
    """
    key = event_name.value if isinstance(event_name, HookEventName) else event_name
    output_class = _OUTPUT_CLASSES.get(key, DefaultHookOutput)
    return output_class.model_validate(_coerce_output(data or {}))


def _coerce_output(data: dict[str, Any]) -> dict[str, Any]:
    """Drop well-known fields whose value has the wrong kind."""
    expected: dict[str, type | tuple[type, ...]] = {
        "continue": bool,
        "stopReason": str,
        "suppressOutput": bool,
        "systemMessage": str,
        "decision": str,
        "reason": str,
        "hookSpecificOutput": dict,
    }
    return {
        key: value
        for key, value in data.items()
        if key not in expected or value is None or isinstance(value, expected[key])
    }


# Result models


class HookExecutionResult(BaseModel):
    """Outcome of one hook subprocess. Always returned, never raised."""

    hook_config: HookConfig
    event_name: HookEventName
    success: bool
    output: dict[str, Any] | None = None
    stdout: str | None = None
    stderr: str | None = None
    exit_code: int | None = None
    duration: float = Field(default=0, description="Duration in milliseconds")
    error: Exception | None = None

    model_config = {"arbitrary_types_allowed": True}


class AggregatedHookResult(BaseModel):
    """Event-level verdict folded from every hook that ran."""

    success: bool
    all_outputs: list[DefaultHookOutput] = Field(default_factory=list)
    errors: list[Exception] = Field(default_factory=list)
    total_duration: float = 0
    final_output: DefaultHookOutput | None = None

    model_config = {"arbitrary_types_allowed": True}
