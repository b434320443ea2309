"""Policy engine for tiered, priority-ordered tool call authorization."""

import re
from collections.abc import Mapping
from typing import Any

import structlog

from .models import (
    FunctionCall,
    HookCheckerRule,
    HookExecutionContext,
    HookSource,
    PolicyCheckResult,
    PolicyDecision,
    PolicyEngineConfig,
    PolicyRule,
    SafetyCheckerConfig,
    SafetyCheckerRule,
)
from .safety import CheckerRunner, SafetyCheckDecision
from .stable_serializer import stable_stringify

WILDCARD_SUFFIX = "__*"


def _tool_matches(tool_name: str | None, call_name: str, server_name: str | None) -> bool:
    """Match a rule's tool name against a call.

    ``server__*`` requires the call name to start with ``server__`` and, when
    the caller knows which server exposes the tool, that server to be exactly
    ``server``. A tool from server ``server__other`` therefore never matches.
    """
    if tool_name is None:
        return True
    if tool_name.endswith(WILDCARD_SUFFIX):
        server = tool_name[: -len(WILDCARD_SUFFIX)]
        if server_name is not None and server_name != server:
            return False
        return call_name.startswith(server + "__")
    return call_name == tool_name


def _args_match(
    pattern: re.Pattern[str] | None,
    call: FunctionCall,
    serialized_args: str | None,
) -> bool:
    if pattern is None:
        return True
    if call.args is None or serialized_args is None:
        return False
    return pattern.search(serialized_args) is not None


class PolicyEngine:
    """Classifies tool calls and hook executions as allow, deny or ask_user.

    Rules, safety checkers and hook checkers are each kept sorted by
    descending priority; the first matching rule decides. The engine fails
    closed: checker errors and evaluation errors produce DENY.
    """

    def __init__(
        self,
        config: PolicyEngineConfig | None = None,
        checker_runner: CheckerRunner | None = None,
    ):
        config = config or PolicyEngineConfig()
        self._rules: list[PolicyRule] = self._sorted(config.rules)
        self._checkers: list[SafetyCheckerRule] = self._sorted(config.checkers)
        self._hook_checkers: list[HookCheckerRule] = self._sorted(
            config.hook_checkers
        )
        self.default_decision = config.default_decision
        self.non_interactive = config.non_interactive
        self.allow_hooks = config.allow_hooks
        self.checker_runner = checker_runner
        self.logger = structlog.get_logger(__name__)

    @staticmethod
    def _sorted(items: list[Any]) -> list[Any]:
        # sorted() is stable: equal priorities keep insertion order
        return sorted(items, key=lambda item: item.priority, reverse=True)

    def _apply_non_interactive(self, decision: PolicyDecision) -> PolicyDecision:
        if self.non_interactive and decision == PolicyDecision.ASK_USER:
            return PolicyDecision.DENY
        return decision

    async def check(
        self,
        call: FunctionCall | Mapping[str, Any],
        server_name: str | None = None,
    ) -> PolicyCheckResult:
        """Decide whether a tool call may proceed.

        Args:
            call: The proposed call (name and optional args)
            server_name: Name of the MCP server exposing the tool, if any

        Returns:
            PolicyCheckResult with the decision and the rule that produced it
        """
        if not isinstance(call, FunctionCall):
            call = FunctionCall.model_validate(call)

        try:
            serialized_args = (
                stable_stringify(call.args) if call.args is not None else None
            )

            matched_rule: PolicyRule | None = None
            for rule in self._rules:
                if _tool_matches(rule.tool_name, call.name, server_name) and (
                    _args_match(rule.args_pattern, call, serialized_args)
                ):
                    matched_rule = rule
                    break

            decision = (
                matched_rule.decision if matched_rule else self.default_decision
            )
            decision = self._apply_non_interactive(decision)

            if decision != PolicyDecision.DENY and self.checker_runner:
                checkers = [
                    checker_rule.checker
                    for checker_rule in self._checkers
                    if _tool_matches(checker_rule.tool_name, call.name, server_name)
                    and _args_match(checker_rule.args_pattern, call, serialized_args)
                ]
                decision = await self._run_checkers(call, checkers, decision)
        except Exception as e:
            self.logger.error(
                "Policy evaluation failed, denying",
                tool_name=call.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return PolicyCheckResult(decision=PolicyDecision.DENY)

        self.logger.debug(
            "Policy decision",
            tool_name=call.name,
            server_name=server_name,
            decision=decision.value,
            rule_tool_name=matched_rule.tool_name if matched_rule else None,
            rule_priority=matched_rule.priority if matched_rule else None,
        )
        return PolicyCheckResult(decision=decision, rule=matched_rule)

    async def check_hook(self, context: Any) -> PolicyDecision:
        """Decide whether hooks from a given source may run.

        Args:
            context: A HookExecutionContext, or a hook execution request whose
                ``input`` carries ``hook_source`` and ``trusted_folder``

        Returns:
            The policy decision for the hook
        """
        if not isinstance(context, HookExecutionContext):
            context = self._context_from_request(context)

        if not self.allow_hooks:
            return PolicyDecision.DENY

        source = context.hook_source or HookSource.PROJECT
        if source == HookSource.PROJECT and context.trusted_folder is False:
            self.logger.debug(
                "Project hook denied in untrusted folder",
                event_name=context.event_name,
            )
            return PolicyDecision.DENY

        decision = PolicyDecision.ALLOW
        if self.checker_runner:
            checkers = [
                rule.checker
                for rule in self._hook_checkers
                if (rule.event_name is None or rule.event_name == context.event_name)
                and (rule.hook_source is None or rule.hook_source == source)
            ]
            if checkers:
                synthetic_call = FunctionCall(
                    name=f"hook:{context.event_name}",
                    args={
                        "hookSource": source.value,
                        "trustedFolder": context.trusted_folder,
                    },
                )
                decision = await self._run_checkers(synthetic_call, checkers, decision)
        return decision

    @staticmethod
    def _context_from_request(request: Any) -> HookExecutionContext:
        payload = getattr(request, "input", None) or {}
        trusted = payload.get("trusted_folder")
        return HookExecutionContext(
            event_name=str(getattr(request, "event_name", "")),
            hook_source=HookSource.from_value(payload.get("hook_source")),
            trusted_folder=trusted if isinstance(trusted, bool) else None,
        )

    async def _run_checkers(
        self,
        call: FunctionCall,
        checkers: list[SafetyCheckerConfig],
        decision: PolicyDecision,
    ) -> PolicyDecision:
        """Run checkers in priority order, stopping at the first objection."""
        if self.checker_runner is None:
            return decision
        for checker in checkers:
            try:
                result = await self.checker_runner.run_checker(call, checker)
            except Exception as e:
                self.logger.warning(
                    "Safety checker failed, denying",
                    checker=checker.name,
                    tool_name=call.name,
                    error=str(e),
                )
                return PolicyDecision.DENY

            if result.decision == SafetyCheckDecision.DENY:
                self.logger.info(
                    "Safety checker denied call",
                    checker=checker.name,
                    tool_name=call.name,
                    reason=result.reason,
                )
                return PolicyDecision.DENY
            if result.decision == SafetyCheckDecision.ASK_USER:
                return self._apply_non_interactive(PolicyDecision.ASK_USER)
        return decision

    def add_rule(self, rule: PolicyRule) -> None:
        """Add a rule and restore priority order."""
        self._rules.append(rule)
        self._rules = self._sorted(self._rules)

    def remove_rules_for_tool(self, tool_name: str) -> None:
        """Remove every rule whose tool name is exactly ``tool_name``."""
        self._rules = [rule for rule in self._rules if rule.tool_name != tool_name]

    def add_checker(self, checker: SafetyCheckerRule) -> None:
        self._checkers.append(checker)
        self._checkers = self._sorted(self._checkers)

    def add_hook_checker(self, checker: HookCheckerRule) -> None:
        self._hook_checkers.append(checker)
        self._hook_checkers = self._sorted(self._hook_checkers)

    def get_rules(self) -> tuple[PolicyRule, ...]:
        return tuple(self._rules)

    def get_checkers(self) -> tuple[SafetyCheckerRule, ...]:
        return tuple(self._checkers)

    def get_hook_checkers(self) -> tuple[HookCheckerRule, ...]:
        return tuple(self._hook_checkers)
