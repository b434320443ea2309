"""Agent governance core.

Decides whether an AI agent's tool calls may run (the policy engine) and runs
user-configured lifecycle hooks around the agent loop (the hook pipeline).
"""

__version__ = "0.1.0"

from .domain.models import (
    ApprovalMode,
    ErrorCode,
    FunctionCall,
    GovernanceError,
    PolicyDecision,
    PolicyRule,
)
from .domain.policy_engine import PolicyEngine
from .hooks.system import HookSystem
from .infrastructure.config import ConfigManager, GovernanceConfig
from .infrastructure.message_bus import MessageBus
from .infrastructure.policy_config import create_policy_engine

__all__ = [
    "__version__",
    "ApprovalMode",
    "ErrorCode",
    "FunctionCall",
    "GovernanceError",
    "PolicyDecision",
    "PolicyRule",
    "PolicyEngine",
    "HookSystem",
    "ConfigManager",
    "GovernanceConfig",
    "MessageBus",
    "create_policy_engine",
]
