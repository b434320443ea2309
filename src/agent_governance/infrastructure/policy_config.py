"""Build a PolicyEngineConfig from settings and tiered policy files."""

from pathlib import Path

import structlog

from ..domain.models import (
    ApprovalMode,
    PolicyDecision,
    PolicyEngineConfig,
    PolicyRule,
)
from ..domain.policy_engine import PolicyEngine
from .checker_runner import DefaultCheckerRunner
from .config import GovernanceConfig, PolicyPathsConfig, PolicySettings
from .message_bus import MessageBus, MessageBusType, UpdatePolicy
from .policy_loader import (
    ADMIN_POLICY_TIER,
    DEFAULT_POLICY_TIER,
    USER_POLICY_TIER,
    PolicyFileError,
    load_policies,
)

logger = structlog.get_logger(__name__)

# Priorities of rules derived from settings, all in the user tier
EXCLUDED_MCP_SERVER_PRIORITY = 2.9
EXCLUDED_TOOL_PRIORITY = 2.4
ALLOWED_TOOL_PRIORITY = 2.3
TRUSTED_MCP_SERVER_PRIORITY = 2.2
ALLOWED_MCP_SERVER_PRIORITY = 2.1
ALWAYS_ALLOW_PRIORITY = 2.95


def get_policy_directories(paths: PolicyPathsConfig) -> list[str]:
    """Policy directories, most trusted first."""
    return [paths.admin_dir, paths.user_dir, paths.default_dir]


def get_policy_tier(directory: str, paths: PolicyPathsConfig) -> int:
    """Tier of ``directory``; unknown directories get the default tier."""
    resolved = Path(directory).expanduser().resolve()
    if resolved == Path(paths.admin_dir).expanduser().resolve():
        return ADMIN_POLICY_TIER
    if resolved == Path(paths.user_dir).expanduser().resolve():
        return USER_POLICY_TIER
    return DEFAULT_POLICY_TIER


def format_policy_error(error: PolicyFileError) -> str:
    """Human-readable rendering of a policy file error."""
    message = f"[{error.tier.upper()}] Policy file error in {error.file_name}:\n"
    message += f"  {error.message}"
    if error.details:
        message += f"\n{error.details}"
    if error.suggestion:
        message += f"\n  Suggestion: {error.suggestion}"
    return message


def settings_rules(settings: PolicySettings) -> list[PolicyRule]:
    """User-tier rules implied by tool and MCP server settings."""
    rules: list[PolicyRule] = []

    for server_name in settings.mcp.excluded:
        rules.append(
            PolicyRule(
                tool_name=f"{server_name}__*",
                decision=PolicyDecision.DENY,
                priority=EXCLUDED_MCP_SERVER_PRIORITY,
            )
        )
    for tool in settings.tools.exclude:
        rules.append(
            PolicyRule(
                tool_name=tool,
                decision=PolicyDecision.DENY,
                priority=EXCLUDED_TOOL_PRIORITY,
            )
        )
    for tool in settings.tools.allowed:
        rules.append(
            PolicyRule(
                tool_name=tool,
                decision=PolicyDecision.ALLOW,
                priority=ALLOWED_TOOL_PRIORITY,
            )
        )
    for server_name, server_settings in settings.mcp_servers.items():
        if server_settings.trust:
            rules.append(
                PolicyRule(
                    tool_name=f"{server_name}__*",
                    decision=PolicyDecision.ALLOW,
                    priority=TRUSTED_MCP_SERVER_PRIORITY,
                )
            )
    for server_name in settings.mcp.allowed:
        rules.append(
            PolicyRule(
                tool_name=f"{server_name}__*",
                decision=PolicyDecision.ALLOW,
                priority=ALLOWED_MCP_SERVER_PRIORITY,
            )
        )
    return rules


def create_policy_engine_config(
    settings: PolicySettings,
    approval_mode: ApprovalMode,
    paths: PolicyPathsConfig | None = None,
    non_interactive: bool = False,
    allow_hooks: bool = True,
) -> PolicyEngineConfig:
    """Load tiered policy files and merge in settings-derived rules.

    Policy file errors are logged and skipped.
    """
    paths = paths or PolicyPathsConfig()
    result = load_policies(
        approval_mode,
        get_policy_directories(paths),
        lambda directory: get_policy_tier(directory, paths),
    )
    for error in result.errors:
        logger.error(
            format_policy_error(error),
            file_path=error.file_path,
            error_type=error.error_type,
        )

    return PolicyEngineConfig(
        rules=[*result.rules, *settings_rules(settings)],
        default_decision=PolicyDecision.ASK_USER,
        non_interactive=non_interactive,
        allow_hooks=allow_hooks,
    )


def create_policy_updater(policy_engine: PolicyEngine, message_bus: MessageBus) -> None:
    """Add an always-allow rule whenever an UPDATE_POLICY message arrives."""

    def on_update_policy(message: UpdatePolicy) -> None:
        policy_engine.add_rule(
            PolicyRule(
                tool_name=message.tool_name,
                decision=PolicyDecision.ALLOW,
                priority=ALWAYS_ALLOW_PRIORITY,
            )
        )
        logger.info("Tool always allowed", tool_name=message.tool_name)

    message_bus.subscribe(MessageBusType.UPDATE_POLICY, on_update_policy)


def create_policy_engine(
    config: GovernanceConfig, message_bus: MessageBus | None = None
) -> PolicyEngine:
    """Build the session's PolicyEngine from a GovernanceConfig.

    Checkers run through a DefaultCheckerRunner rooted at the configured
    workspace directories (the working directory when none are listed). When
    a message bus is given, always-allow updates are wired to the engine.
    """
    engine_config = create_policy_engine_config(
        config.policy,
        config.approval_mode,
        paths=config.policy_paths,
        non_interactive=config.non_interactive,
        allow_hooks=config.hooks.enabled,
    )
    checker_runner = DefaultCheckerRunner(
        config.checkers.workspace_dirs or [config.working_dir],
        external_checkers=config.checkers.external,
        timeout=config.checkers.timeout_seconds,
    )
    engine = PolicyEngine(engine_config, checker_runner)
    if message_bus is not None:
        create_policy_updater(engine, message_bus)
    return engine
