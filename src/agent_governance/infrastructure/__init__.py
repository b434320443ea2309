"""Infrastructure layer: configuration, policy files, subprocess checkers,
the message bus, logging and telemetry.
"""

from .checker_runner import DefaultCheckerRunner
from .config import ConfigManager, GovernanceConfig, PolicySettings
from .logging_config import configure_logging, configure_stderr_logging
from .message_bus import (
    HookExecutionRequest,
    HookExecutionResponse,
    MessageBus,
    MessageBusType,
    UpdatePolicy,
)
from .policy_config import (
    create_policy_engine,
    create_policy_engine_config,
    create_policy_updater,
)
from .policy_loader import PolicyFileError, PolicyLoadResult, load_policies
from .telemetry import HookCallEvent, HookTelemetry

__all__ = [
    "DefaultCheckerRunner",
    "ConfigManager",
    "GovernanceConfig",
    "PolicySettings",
    "configure_logging",
    "configure_stderr_logging",
    "HookExecutionRequest",
    "HookExecutionResponse",
    "MessageBus",
    "MessageBusType",
    "UpdatePolicy",
    "create_policy_engine",
    "create_policy_engine_config",
    "create_policy_updater",
    "PolicyFileError",
    "PolicyLoadResult",
    "load_policies",
    "HookCallEvent",
    "HookTelemetry",
]
