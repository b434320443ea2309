"""Domain models and business logic for the governance core.

Policy decisions, the policy engine, hook events with their inputs and
outputs, and the stable argument serializer.
"""

from .hook_models import (
    AggregatedHookResult,
    ConfigSource,
    DefaultHookOutput,
    HookConfig,
    HookEventName,
    HookExecutionPlan,
    HookExecutionResult,
    HookInput,
    HookRegistryEntry,
    create_hook_output,
    validate_hook_input,
)
from .models import (
    ApprovalMode,
    CheckerError,
    ErrorCode,
    FunctionCall,
    GovernanceError,
    HookExecutionContext,
    HookInputValidationError,
    HookSource,
    HookSystemError,
    PolicyDecision,
    PolicyEngineConfig,
    PolicyRule,
    SafetyCheckerConfig,
    SafetyCheckerRule,
    UnsupportedHookEventError,
)
from .policy_engine import PolicyEngine
from .safety import CheckerRunner, SafetyCheckDecision, SafetyCheckResult
from .stable_serializer import stable_stringify

__all__ = [
    "ApprovalMode",
    "CheckerError",
    "ErrorCode",
    "FunctionCall",
    "GovernanceError",
    "HookExecutionContext",
    "HookInputValidationError",
    "HookSource",
    "HookSystemError",
    "PolicyDecision",
    "PolicyEngineConfig",
    "PolicyRule",
    "SafetyCheckerConfig",
    "SafetyCheckerRule",
    "UnsupportedHookEventError",
    "PolicyEngine",
    "CheckerRunner",
    "SafetyCheckDecision",
    "SafetyCheckResult",
    "stable_stringify",
    # Hook events
    "AggregatedHookResult",
    "ConfigSource",
    "DefaultHookOutput",
    "HookConfig",
    "HookEventName",
    "HookExecutionPlan",
    "HookExecutionResult",
    "HookInput",
    "HookRegistryEntry",
    "create_hook_output",
    "validate_hook_input",
]
