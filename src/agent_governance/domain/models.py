"""Domain models for the agent governance core."""

import re
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class PolicyDecision(str, Enum):
    """Outcomes of a policy evaluation."""

    ALLOW = "allow"
    DENY = "deny"
    ASK_USER = "ask_user"


class ApprovalMode(str, Enum):
    """Approval modes a policy rule can be scoped to."""

    DEFAULT = "default"
    AUTO_EDIT = "autoEdit"
    YOLO = "yolo"


class HookSource(str, Enum):
    """Configuration source a hook was declared in, as seen by policy."""

    PROJECT = "project"
    USER = "user"
    SYSTEM = "system"
    EXTENSION = "extension"

    @classmethod
    def from_value(cls, value: Any) -> "HookSource":
        """Parse an untyped source value, defaulting to PROJECT."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.PROJECT


class ErrorCode(str, Enum):
    """Error codes for structured error handling."""

    POLICY_EVALUATION_FAILED = "POLICY_EVAL_001"
    SAFETY_CHECK_FAILED = "SAFETY_001"
    INVALID_CONFIGURATION = "CONFIG_001"
    INVALID_HOOK_INPUT = "HOOK_INPUT_001"
    HOOK_EXECUTION_FAILED = "HOOK_EXEC_001"
    HOOK_SYSTEM_STATE = "HOOK_STATE_001"
    INTERNAL_ERROR = "INTERNAL_001"


class GovernanceError(Exception):
    """Base exception with user-friendly messages."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        user_message: str,
        context: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.user_message = user_message
        self.context = context or {}
        super().__init__(message)


class HookSystemError(GovernanceError):
    """Programming error in the use of the hook pipeline.

    These are raised rather than folded into hook results.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(
            ErrorCode.HOOK_SYSTEM_STATE,
            message,
            "The hook system was used incorrectly",
            context,
        )


class HookRegistryNotInitializedError(HookSystemError):
    """Hook registry queried before initialize()."""

    def __init__(self) -> None:
        super().__init__("Hook registry not initialized")


class HookSystemNotInitializedError(HookSystemError):
    """Hook system used before initialize()."""

    def __init__(self) -> None:
        super().__init__("Hook system not initialized")


class UnsupportedHookEventError(HookSystemError):
    """An event name with no handler."""

    def __init__(self, event_name: str):
        super().__init__(
            f"Unsupported hook event: {event_name}", {"event_name": event_name}
        )
        self.event_name = event_name


class HookInputValidationError(GovernanceError, ValueError):
    """Untyped hook payload failed validation for its event."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(
            ErrorCode.INVALID_HOOK_INPUT,
            message,
            "Hook request payload is invalid",
            context,
        )


class CheckerError(GovernanceError):
    """A safety checker could not produce a verdict."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(
            ErrorCode.SAFETY_CHECK_FAILED,
            message,
            "Safety check failed",
            context,
        )


class FunctionCall(BaseModel):
    """A proposed tool invocation."""

    name: str
    args: dict[str, Any] | None = None


class PolicyRule(BaseModel):
    """Immutable rule mapping a tool (and optional argument pattern) to a decision.

    ``tool_name`` is an exact tool name, a ``server__*`` wildcard, or None to
    match every tool. ``args_pattern`` is searched in the stably serialized
    call arguments.
    """

    tool_name: str | None = None
    args_pattern: re.Pattern[str] | None = None
    decision: PolicyDecision
    priority: float = 0

    model_config = {"frozen": True}


class InProcessCheckerName(str, Enum):
    """Checkers implemented inside the host process."""

    ALLOWED_PATH = "allowed-path"


class SafetyCheckerConfig(BaseModel):
    """Which checker to run and how to configure it."""

    type: Literal["external", "in-process"]
    name: str
    config: dict[str, Any] | None = None
    required_context: list[str] | None = None

    model_config = {"frozen": True}


class SafetyCheckerRule(BaseModel):
    """Safety checker scoped by tool name and argument pattern."""

    tool_name: str | None = None
    args_pattern: re.Pattern[str] | None = None
    checker: SafetyCheckerConfig
    priority: float = 0

    model_config = {"frozen": True}


class HookCheckerRule(BaseModel):
    """Safety checker scoped by hook event and hook source."""

    event_name: str | None = None
    hook_source: HookSource | None = None
    checker: SafetyCheckerConfig
    priority: float = 0

    model_config = {"frozen": True}


class HookExecutionContext(BaseModel):
    """What check_hook() needs to know about a hook about to run."""

    event_name: str
    hook_source: HookSource | None = None
    trusted_folder: bool | None = None


class PolicyEngineConfig(BaseModel):
    """Initial rule sets and behaviour switches of a PolicyEngine."""

    rules: list[PolicyRule] = Field(default_factory=list)
    checkers: list[SafetyCheckerRule] = Field(default_factory=list)
    hook_checkers: list[HookCheckerRule] = Field(default_factory=list)
    default_decision: PolicyDecision = PolicyDecision.ASK_USER
    non_interactive: bool = False
    allow_hooks: bool = True


class PolicyCheckResult(BaseModel):
    """Decision together with the rule that produced it."""

    decision: PolicyDecision
    rule: PolicyRule | None = None

    model_config = {"frozen": True}
