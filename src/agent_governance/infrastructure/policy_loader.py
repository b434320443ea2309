"""Load tiered policy rules from YAML files.

A policy file holds a ``rule`` list::

    rule:
      - tool_name: run_shell_command
        command_prefix: ["git status", "git diff"]
        decision: allow
        priority: 100
        modes: [default, autoEdit]

Loading never aborts: every problem is collected as a PolicyFileError and
the offending file or rule is skipped.
"""

import re
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any, Literal

import structlog
import yaml
from pydantic import BaseModel, Field, StrictInt, ValidationError

from ..domain.models import ApprovalMode, PolicyDecision, PolicyRule

logger = structlog.get_logger(__name__)

DEFAULT_POLICY_TIER = 1
USER_POLICY_TIER = 2
ADMIN_POLICY_TIER = 3

SHELL_TOOL_NAME = "run_shell_command"
POLICY_FILE_SUFFIXES = (".yaml", ".yml")

TierName = Literal["default", "user", "admin"]
PolicyFileErrorType = Literal[
    "file_read",
    "yaml_parse",
    "schema_validation",
    "rule_validation",
    "regex_compilation",
]


class PolicyFileRule(BaseModel):
    """One rule as written in a policy file."""

    tool_name: str | list[str] | None = None
    mcp_name: str | None = None
    args_pattern: str | None = None
    command_prefix: str | list[str] | None = None
    command_regex: str | None = None
    decision: PolicyDecision
    priority: StrictInt = Field(
        ...,
        ge=0,
        le=999,
        description="Raw priority; values >= 1000 would overflow into the next tier",
    )
    modes: list[ApprovalMode] | None = None

    model_config = {"extra": "forbid"}


class PolicyFile(BaseModel):
    """Top-level shape of a policy file."""

    rule: list[PolicyFileRule]


class PolicyFileError(BaseModel):
    """A problem found while loading policy files."""

    file_path: str
    file_name: str
    tier: TierName
    rule_index: int | None = None
    error_type: PolicyFileErrorType
    message: str
    details: str | None = None
    suggestion: str | None = None


class PolicyLoadResult(BaseModel):
    """Rules loaded from every directory plus the errors encountered."""

    rules: list[PolicyRule] = Field(default_factory=list)
    errors: list[PolicyFileError] = Field(default_factory=list)


def get_tier_name(tier: int) -> TierName:
    if tier == USER_POLICY_TIER:
        return "user"
    if tier == ADMIN_POLICY_TIER:
        return "admin"
    return "default"


def transform_priority(priority: int, tier: int) -> float:
    """Map a raw 0-999 priority into its tier band."""
    return tier + priority / 1000


def validate_shell_command_syntax(rule: PolicyFileRule, rule_index: int) -> str | None:
    """Check command_prefix/command_regex usage, returning a message on error."""
    has_command_prefix = rule.command_prefix is not None
    has_command_regex = rule.command_regex is not None
    if not (has_command_prefix or has_command_regex):
        return None

    number = rule_index + 1
    if rule.tool_name != SHELL_TOOL_NAME:
        return (
            f"Rule #{number}: command_prefix and command_regex can only be used "
            f'with tool_name = "{SHELL_TOOL_NAME}"\n'
            f"  Found: tool_name = {rule.tool_name!r}\n"
            f'  Fix: Set tool_name = "{SHELL_TOOL_NAME}" (not a list)'
        )
    if rule.args_pattern is not None:
        return (
            f"Rule #{number}: cannot use both command_prefix/command_regex and args_pattern\n"
            "  These fields are mutually exclusive\n"
            "  Fix: Use either command_prefix/command_regex OR args_pattern, not both"
        )
    if has_command_prefix and has_command_regex:
        return (
            f"Rule #{number}: cannot use both command_prefix and command_regex\n"
            "  These fields are mutually exclusive\n"
            "  Fix: Use either command_prefix OR command_regex, not both"
        )
    return None


def _format_schema_error(error: ValidationError) -> str:
    first_loc = error.errors()[0]["loc"]
    rule_index = first_loc[1] if len(first_loc) > 1 and first_loc[0] == "rule" else 0
    issues = "\n".join(
        f'  - Field "{".".join(str(part) for part in issue["loc"])}": {issue["msg"]}'
        for issue in error.errors()
    )
    return f"Invalid policy rule (rule #{int(rule_index) + 1}):\n{issues}"


def _as_list(value: str | list[str] | None) -> list[str | None]:
    if value is None:
        return [None]
    return [value] if isinstance(value, str) else list(value)


def _args_patterns(rule: PolicyFileRule) -> list[str | None]:
    if rule.command_prefix is not None:
        return [
            f'"command":"{re.escape(prefix)}'
            for prefix in _as_list(rule.command_prefix)
            if prefix is not None
        ]
    if rule.command_regex is not None:
        return [f'"command":"{rule.command_regex}']
    return [rule.args_pattern]


def _effective_tool_name(mcp_name: str | None, tool_name: str | None) -> str | None:
    if mcp_name and tool_name:
        return f"{mcp_name}__{tool_name}"
    if mcp_name:
        return f"{mcp_name}__*"
    return tool_name


class _FileLoader:
    """Loads the rules of a single file, recording errors."""

    def __init__(self, file_path: Path, tier: int, errors: list[PolicyFileError]):
        self.file_path = file_path
        self.tier = tier
        self.errors = errors

    def error(self, error_type: PolicyFileErrorType, message: str, **kwargs: Any) -> None:
        self.errors.append(
            PolicyFileError(
                file_path=str(self.file_path),
                file_name=self.file_path.name,
                tier=get_tier_name(self.tier),
                error_type=error_type,
                message=message,
                **kwargs,
            )
        )

    def load(self, approval_mode: ApprovalMode) -> list[PolicyRule]:
        try:
            content = self.file_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as e:
            self.error("file_read", "Failed to read policy file", details=str(e))
            return []

        try:
            parsed = yaml.safe_load(content)
        except yaml.YAMLError as e:
            self.error(
                "yaml_parse",
                "YAML parsing failed",
                details=str(e),
                suggestion="Check for syntax errors like bad indentation or unclosed quotes",
            )
            return []

        try:
            policy_file = PolicyFile.model_validate(parsed)
        except ValidationError as e:
            self.error(
                "schema_validation",
                "Schema validation failed",
                details=_format_schema_error(e),
                suggestion="Ensure all required fields (decision, priority) are present with correct types",
            )
            return []

        rules: list[PolicyRule] = []
        for index, file_rule in enumerate(policy_file.rule):
            validation_error = validate_shell_command_syntax(file_rule, index)
            if validation_error:
                self.error(
                    "rule_validation",
                    "Invalid shell command syntax",
                    rule_index=index,
                    details=validation_error,
                )
                continue
            if file_rule.modes and approval_mode not in file_rule.modes:
                continue
            rules.extend(self._transform(file_rule, index))
        return rules

    def _transform(self, file_rule: PolicyFileRule, index: int) -> list[PolicyRule]:
        rules: list[PolicyRule] = []
        priority = transform_priority(file_rule.priority, self.tier)
        for pattern in _args_patterns(file_rule):
            compiled: re.Pattern[str] | None = None
            if pattern:
                try:
                    compiled = re.compile(pattern)
                except re.error as e:
                    self.error(
                        "regex_compilation",
                        "Invalid regex pattern",
                        rule_index=index,
                        details=f"Pattern: {pattern}\nError: {e}",
                        suggestion="Check regex syntax for errors like unmatched brackets or invalid escape sequences",
                    )
                    continue
            for tool_name in _as_list(file_rule.tool_name):
                rules.append(
                    PolicyRule(
                        tool_name=_effective_tool_name(file_rule.mcp_name, tool_name),
                        args_pattern=compiled,
                        decision=file_rule.decision,
                        priority=priority,
                    )
                )
        return rules


def load_policies(
    approval_mode: ApprovalMode,
    policy_dirs: Iterable[str | Path],
    get_policy_tier: Callable[[str], int],
) -> PolicyLoadResult:
    """Load every policy file in ``policy_dirs``.

    Args:
        approval_mode: Current approval mode; rules scoped to other modes are skipped
        policy_dirs: Directories to scan for *.yaml / *.yml files
        get_policy_tier: Maps a directory to its tier (1 default, 2 user, 3 admin)

    Returns:
        PolicyLoadResult with the loaded rules and any errors
    """
    result = PolicyLoadResult()

    for policy_dir in policy_dirs:
        directory = Path(policy_dir)
        tier = get_policy_tier(str(policy_dir))
        try:
            files = sorted(
                entry
                for entry in directory.iterdir()
                if entry.is_file() and entry.suffix in POLICY_FILE_SUFFIXES
            )
        except FileNotFoundError:
            continue
        except OSError as e:
            result.errors.append(
                PolicyFileError(
                    file_path=str(directory),
                    file_name=directory.name,
                    tier=get_tier_name(tier),
                    error_type="file_read",
                    message="Failed to read policy directory",
                    details=str(e),
                )
            )
            continue

        for file_path in files:
            result.rules.extend(
                _FileLoader(file_path, tier, result.errors).load(approval_mode)
            )

    logger.debug(
        "Loaded policy files",
        rule_count=len(result.rules),
        error_count=len(result.errors),
    )
    return result
