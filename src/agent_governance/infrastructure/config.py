"""Configuration management for the agent governance core."""

import os
import uuid
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from ..domain.hook_models import ConfigSource
from ..domain.models import ApprovalMode

CONFIG_ENV_VAR = "AGENT_GOVERNANCE_CONFIG"
DEFAULT_CONFIG_FILE = "config/governance.yaml"

DEFAULT_POLICIES_DIR = Path(__file__).resolve().parent.parent / "policies"
USER_POLICIES_DIR = Path.home() / ".agent-governance" / "policies"
ADMIN_POLICIES_DIR = Path("/etc/agent-governance/policies")


class ToolsSettings(BaseModel):
    """Tool allow/exclude lists from user settings."""

    allowed: list[str] = Field(
        default_factory=list, description="Tools that never need confirmation"
    )
    exclude: list[str] = Field(
        default_factory=list, description="Tools that are always denied"
    )


class McpSettings(BaseModel):
    """MCP server allow/exclude lists from user settings."""

    allowed: list[str] = Field(default_factory=list, description="Allowed servers")
    excluded: list[str] = Field(default_factory=list, description="Blocked servers")


class McpServerSettings(BaseModel):
    """Per-server MCP settings; only trust matters for policy."""

    trust: bool = Field(default=False, description="Allow all tools of the server")

    model_config = {"extra": "allow"}


class PolicySettings(BaseModel):
    """Settings that are turned into user-tier policy rules."""

    tools: ToolsSettings = Field(default_factory=ToolsSettings)
    mcp: McpSettings = Field(default_factory=McpSettings)
    mcp_servers: dict[str, McpServerSettings] = Field(default_factory=dict)


class PolicyPathsConfig(BaseModel):
    """Directories holding YAML policy files, one per tier."""

    default_dir: str = Field(
        default=str(DEFAULT_POLICIES_DIR), description="Built-in default policies"
    )
    user_dir: str = Field(
        default=str(USER_POLICIES_DIR), description="User policy directory"
    )
    admin_dir: str = Field(
        default=str(ADMIN_POLICIES_DIR), description="Administrator policy directory"
    )


class HooksConfig(BaseModel):
    """Hook maps per configuration source.

    Maps are event name -> list of hook definitions. They are kept untyped so
    the registry can skip malformed entries instead of failing validation.
    """

    enabled: bool = Field(default=True, description="Allow hooks to run at all")
    project: dict[str, Any] = Field(default_factory=dict)
    user: dict[str, Any] = Field(default_factory=dict)
    system: dict[str, Any] = Field(default_factory=dict)


class ExtensionConfig(BaseModel):
    """An installed extension contributing hooks."""

    name: str
    is_active: bool = True
    hooks: dict[str, Any] = Field(default_factory=dict)


class CheckerConfig(BaseModel):
    """Safety checker runner configuration."""

    external: dict[str, str] = Field(
        default_factory=dict, description="External checker name -> command"
    )
    timeout_seconds: float = Field(
        default=30.0, description="Timeout for an external checker run"
    )
    workspace_dirs: list[str] = Field(
        default_factory=list,
        description="Directories the allowed-path checker accepts (default: working_dir)",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    json_logs: bool = Field(default=False, description="Emit JSON log lines")


class GovernanceConfig(BaseModel):
    """Complete configuration for one agent session."""

    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    working_dir: str = Field(default_factory=os.getcwd)
    trusted_folder: bool | None = Field(
        default=None, description="Whether working_dir is a trusted folder"
    )
    approval_mode: ApprovalMode = ApprovalMode.DEFAULT
    non_interactive: bool = False

    hooks: HooksConfig = Field(default_factory=HooksConfig)
    extensions: list[ExtensionConfig] = Field(default_factory=list)

    policy: PolicySettings = Field(default_factory=PolicySettings)
    policy_paths: PolicyPathsConfig = Field(default_factory=PolicyPathsConfig)
    checkers: CheckerConfig = Field(default_factory=CheckerConfig)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def get_hooks(self, source: ConfigSource) -> dict[str, Any]:
        """Hook map declared directly in the given (non-extension) source."""
        if source == ConfigSource.PROJECT:
            return self.hooks.project
        if source == ConfigSource.USER:
            return self.hooks.user
        if source == ConfigSource.SYSTEM:
            return self.hooks.system
        return {}

    def get_active_extensions(self) -> list[ExtensionConfig]:
        return [extension for extension in self.extensions if extension.is_active]


class ConfigManager:
    """Manager for loading and managing governance configuration."""

    def __init__(self, config_file: str | None = None):
        """Initialize the config manager.

        Args:
            config_file: Optional path to configuration file. Falls back to
                $AGENT_GOVERNANCE_CONFIG, then config/governance.yaml.
        """
        self.config_file = (
            config_file or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILE
        )
        self._config: GovernanceConfig | None = None

    def load_config(self) -> GovernanceConfig:
        """Load configuration from file.

        Returns:
            GovernanceConfig instance with loaded configuration
        """
        config_data: dict[str, Any] = {}

        config_path = Path(self.config_file)
        if config_path.exists():
            with open(config_path, encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}

        self._config = GovernanceConfig(**config_data)
        return self._config

    def get_config(self) -> GovernanceConfig:
        """Get the current configuration, loading it on first use."""
        if self._config is None:
            return self.load_config()
        return self._config

    def reload_config(self) -> GovernanceConfig:
        return self.load_config()

    def save_default_config(self) -> None:
        """Save a default configuration file."""
        config_path = Path(self.config_file)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        config_data = GovernanceConfig().model_dump(
            mode="json", exclude={"session_id", "working_dir"}
        )

        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, indent=2)
