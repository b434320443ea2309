"""Tests for the PolicyEngine implementation."""

import re
from unittest.mock import AsyncMock

import pytest

from agent_governance.domain.models import (
    CheckerError,
    FunctionCall,
    HookCheckerRule,
    HookExecutionContext,
    HookSource,
    PolicyDecision,
    PolicyEngineConfig,
    PolicyRule,
    SafetyCheckerConfig,
    SafetyCheckerRule,
)
from agent_governance.domain.policy_engine import PolicyEngine
from agent_governance.domain.safety import (
    CheckerRunner,
    SafetyCheckDecision,
    SafetyCheckResult,
)
from agent_governance.infrastructure.message_bus import HookExecutionRequest


def make_runner(*results):
    """CheckerRunner mock returning (or raising) the given results in order."""
    runner = AsyncMock(spec=CheckerRunner)
    runner.run_checker.side_effect = list(results)
    return runner


def checker(name: str = "test-checker") -> SafetyCheckerConfig:
    return SafetyCheckerConfig(type="external", name=name)


class TestRuleMatching:
    """Rule ordering and tool/argument matching."""

    @pytest.mark.asyncio
    async def test_default_decision_when_no_rule_matches(self):
        engine = PolicyEngine()
        result = await engine.check(FunctionCall(name="anything"))
        assert result.decision == PolicyDecision.ASK_USER
        assert result.rule is None

    @pytest.mark.asyncio
    async def test_highest_priority_wins(self):
        """{shell, DENY, 1} + {shell, ALLOW, 10} allows the call."""
        engine = PolicyEngine(
            PolicyEngineConfig(
                rules=[
                    PolicyRule(tool_name="shell", decision=PolicyDecision.DENY, priority=1),
                    PolicyRule(tool_name="shell", decision=PolicyDecision.ALLOW, priority=10),
                ]
            )
        )
        result = await engine.check({"name": "shell", "args": {"command": "ls"}})
        assert result.decision == PolicyDecision.ALLOW
        assert result.rule is not None and result.rule.priority == 10

    @pytest.mark.asyncio
    async def test_priority_independent_of_insertion_order(self):
        low = PolicyRule(tool_name="shell", decision=PolicyDecision.DENY, priority=1)
        high = PolicyRule(tool_name="shell", decision=PolicyDecision.ALLOW, priority=10)

        for rules in ([low, high], [high, low]):
            engine = PolicyEngine(PolicyEngineConfig(rules=rules))
            result = await engine.check(FunctionCall(name="shell"))
            assert result.decision == PolicyDecision.ALLOW

        engine = PolicyEngine()
        engine.add_rule(low)
        engine.add_rule(high)
        assert engine.get_rules() == (high, low)

    @pytest.mark.asyncio
    async def test_equal_priorities_keep_insertion_order(self):
        first = PolicyRule(tool_name="t", decision=PolicyDecision.DENY, priority=5)
        second = PolicyRule(tool_name="t", decision=PolicyDecision.ALLOW, priority=5)
        engine = PolicyEngine(PolicyEngineConfig(rules=[first, second]))
        result = await engine.check(FunctionCall(name="t"))
        assert result.decision == PolicyDecision.DENY

    @pytest.mark.asyncio
    async def test_rule_without_tool_name_matches_everything(self):
        engine = PolicyEngine(
            PolicyEngineConfig(rules=[PolicyRule(decision=PolicyDecision.ALLOW)])
        )
        result = await engine.check(FunctionCall(name="whatever"))
        assert result.decision == PolicyDecision.ALLOW

    @pytest.mark.asyncio
    async def test_args_pattern_matches_serialized_args(self):
        engine = PolicyEngine(
            PolicyEngineConfig(
                rules=[
                    PolicyRule(
                        tool_name="run_shell_command",
                        args_pattern=re.compile(r'"command":"git status'),
                        decision=PolicyDecision.ALLOW,
                    )
                ]
            )
        )
        allowed = await engine.check(
            FunctionCall(name="run_shell_command", args={"command": "git status -s"})
        )
        other = await engine.check(
            FunctionCall(name="run_shell_command", args={"command": "rm -rf /"})
        )
        assert allowed.decision == PolicyDecision.ALLOW
        assert other.decision == PolicyDecision.ASK_USER

    @pytest.mark.asyncio
    async def test_args_pattern_never_matches_call_without_args(self):
        engine = PolicyEngine(
            PolicyEngineConfig(
                rules=[
                    PolicyRule(
                        tool_name="t",
                        args_pattern=re.compile(".*"),
                        decision=PolicyDecision.DENY,
                    )
                ]
            )
        )
        result = await engine.check(FunctionCall(name="t"))
        assert result.decision == PolicyDecision.ASK_USER

    @pytest.mark.asyncio
    async def test_args_pattern_is_key_order_independent(self):
        engine = PolicyEngine(
            PolicyEngineConfig(
                rules=[
                    PolicyRule(
                        tool_name="t",
                        args_pattern=re.compile(r'\{"a":1,"b":2\}'),
                        decision=PolicyDecision.ALLOW,
                    )
                ]
            )
        )
        result = await engine.check(FunctionCall(name="t", args={"b": 2, "a": 1}))
        assert result.decision == PolicyDecision.ALLOW

    @pytest.mark.asyncio
    async def test_args_pattern_with_non_ascii_literal(self):
        engine = PolicyEngine(
            PolicyEngineConfig(
                rules=[
                    PolicyRule(
                        tool_name="write_file",
                        args_pattern=re.compile('"path":"/tmp/café'),
                        decision=PolicyDecision.DENY,
                        priority=5,
                    ),
                    PolicyRule(
                        tool_name="write_file", decision=PolicyDecision.ALLOW, priority=1
                    ),
                ]
            )
        )
        result = await engine.check(
            FunctionCall(name="write_file", args={"path": "/tmp/café/x"})
        )
        assert result.decision == PolicyDecision.DENY

    def test_remove_rules_for_tool(self):
        engine = PolicyEngine(
            PolicyEngineConfig(
                rules=[
                    PolicyRule(tool_name="a", decision=PolicyDecision.ALLOW),
                    PolicyRule(tool_name="b", decision=PolicyDecision.ALLOW),
                    PolicyRule(tool_name="a", decision=PolicyDecision.DENY, priority=3),
                ]
            )
        )
        engine.remove_rules_for_tool("a")
        assert [rule.tool_name for rule in engine.get_rules()] == ["b"]


class TestServerWildcards:
    """``server__*`` rules and spoofed server names."""

    def make_engine(self) -> PolicyEngine:
        return PolicyEngine(
            PolicyEngineConfig(
                rules=[
                    PolicyRule(
                        tool_name="safe_server__*",
                        decision=PolicyDecision.ALLOW,
                        priority=2.2,
                    )
                ]
            )
        )

    @pytest.mark.asyncio
    async def test_wildcard_matches_tools_of_server(self):
        result = await self.make_engine().check(
            FunctionCall(name="safe_server__tool"), server_name="safe_server"
        )
        assert result.decision == PolicyDecision.ALLOW

    @pytest.mark.asyncio
    async def test_wildcard_rejects_spoofed_server(self):
        """safe_server__* must not allow a tool from server safe_server__malicious."""
        result = await self.make_engine().check(
            FunctionCall(name="safe_server__malicious__tool"),
            server_name="safe_server__malicious",
        )
        assert result.decision == PolicyDecision.ASK_USER

    @pytest.mark.asyncio
    async def test_wildcard_without_server_name_uses_prefix(self):
        engine = self.make_engine()
        matched = await engine.check(FunctionCall(name="safe_server__tool"))
        unmatched = await engine.check(FunctionCall(name="other__tool"))
        assert matched.decision == PolicyDecision.ALLOW
        assert unmatched.decision == PolicyDecision.ASK_USER


class TestNonInteractive:
    """ASK_USER becomes DENY in non-interactive mode."""

    @pytest.mark.asyncio
    async def test_default_ask_user_becomes_deny(self):
        engine = PolicyEngine(PolicyEngineConfig(non_interactive=True))
        result = await engine.check(FunctionCall(name="tool"))
        assert result.decision == PolicyDecision.DENY

    @pytest.mark.asyncio
    async def test_rule_ask_user_becomes_deny(self):
        engine = PolicyEngine(
            PolicyEngineConfig(
                rules=[PolicyRule(tool_name="tool", decision=PolicyDecision.ASK_USER)],
                non_interactive=True,
            )
        )
        result = await engine.check(FunctionCall(name="tool"))
        assert result.decision == PolicyDecision.DENY

    @pytest.mark.asyncio
    async def test_checker_ask_user_becomes_deny(self):
        runner = make_runner(SafetyCheckResult(decision=SafetyCheckDecision.ASK_USER))
        engine = PolicyEngine(
            PolicyEngineConfig(
                rules=[PolicyRule(tool_name="tool", decision=PolicyDecision.ALLOW)],
                checkers=[SafetyCheckerRule(tool_name="tool", checker=checker())],
                non_interactive=True,
            ),
            runner,
        )
        result = await engine.check(FunctionCall(name="tool"))
        assert result.decision == PolicyDecision.DENY


class TestSafetyCheckers:
    """Checkers can only tighten a decision; failures deny."""

    def make_engine(self, runner, *checkers, decision=PolicyDecision.ALLOW):
        return PolicyEngine(
            PolicyEngineConfig(
                rules=[PolicyRule(tool_name="tool", decision=decision)],
                checkers=list(checkers),
            ),
            runner,
        )

    @pytest.mark.asyncio
    async def test_checker_deny_overrides_allow(self):
        runner = make_runner(
            SafetyCheckResult(decision=SafetyCheckDecision.DENY, reason="nope")
        )
        engine = self.make_engine(
            runner, SafetyCheckerRule(tool_name="tool", checker=checker())
        )
        result = await engine.check(FunctionCall(name="tool"))
        assert result.decision == PolicyDecision.DENY

    @pytest.mark.asyncio
    async def test_checker_ask_user_downgrades_allow(self):
        runner = make_runner(SafetyCheckResult(decision=SafetyCheckDecision.ASK_USER))
        engine = self.make_engine(runner, SafetyCheckerRule(checker=checker()))
        result = await engine.check(FunctionCall(name="tool"))
        assert result.decision == PolicyDecision.ASK_USER

    @pytest.mark.asyncio
    async def test_checker_error_denies(self):
        runner = make_runner(CheckerError("checker crashed"))
        engine = self.make_engine(runner, SafetyCheckerRule(checker=checker()))
        result = await engine.check(FunctionCall(name="tool"))
        assert result.decision == PolicyDecision.DENY

    @pytest.mark.asyncio
    async def test_checkers_run_in_priority_order_until_objection(self):
        runner = make_runner(
            SafetyCheckResult(decision=SafetyCheckDecision.ALLOW),
            SafetyCheckResult(decision=SafetyCheckDecision.DENY),
            SafetyCheckResult(decision=SafetyCheckDecision.ALLOW),
        )
        engine = self.make_engine(
            runner,
            SafetyCheckerRule(checker=checker("low"), priority=1),
            SafetyCheckerRule(checker=checker("high"), priority=3),
            SafetyCheckerRule(checker=checker("mid"), priority=2),
        )
        result = await engine.check(FunctionCall(name="tool"))

        assert result.decision == PolicyDecision.DENY
        called = [call.args[1].name for call in runner.run_checker.await_args_list]
        assert called == ["high", "mid"]

    @pytest.mark.asyncio
    async def test_checkers_skipped_when_rule_denies(self):
        runner = make_runner()
        engine = self.make_engine(
            runner,
            SafetyCheckerRule(checker=checker()),
            decision=PolicyDecision.DENY,
        )
        result = await engine.check(FunctionCall(name="tool"))
        assert result.decision == PolicyDecision.DENY
        runner.run_checker.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_checker_scoped_by_tool_and_args(self):
        runner = make_runner(SafetyCheckResult(decision=SafetyCheckDecision.DENY))
        engine = self.make_engine(
            runner,
            SafetyCheckerRule(
                tool_name="tool",
                args_pattern=re.compile(r'"path":"/etc'),
                checker=checker(),
            ),
        )
        safe = await engine.check(FunctionCall(name="tool", args={"path": "/home/x"}))
        unsafe = await engine.check(FunctionCall(name="tool", args={"path": "/etc/passwd"}))

        assert safe.decision == PolicyDecision.ALLOW
        assert unsafe.decision == PolicyDecision.DENY
        assert runner.run_checker.await_count == 1

    @pytest.mark.asyncio
    async def test_add_checker_keeps_priority_order(self):
        engine = PolicyEngine()
        engine.add_checker(SafetyCheckerRule(checker=checker("a"), priority=1))
        engine.add_checker(SafetyCheckerRule(checker=checker("b"), priority=5))
        assert [rule.checker.name for rule in engine.get_checkers()] == ["b", "a"]


class TestCheckHook:
    """Hook execution authorization."""

    @pytest.mark.asyncio
    async def test_hooks_allowed_by_default(self):
        engine = PolicyEngine()
        decision = await engine.check_hook(
            HookExecutionContext(event_name="BeforeTool", hook_source=HookSource.USER)
        )
        assert decision == PolicyDecision.ALLOW

    @pytest.mark.asyncio
    async def test_hooks_disabled(self):
        engine = PolicyEngine(PolicyEngineConfig(allow_hooks=False))
        decision = await engine.check_hook(
            HookExecutionContext(event_name="BeforeTool", hook_source=HookSource.SYSTEM)
        )
        assert decision == PolicyDecision.DENY

    @pytest.mark.asyncio
    async def test_project_hook_in_untrusted_folder_denied(self):
        engine = PolicyEngine()
        project = await engine.check_hook(
            HookExecutionContext(
                event_name="BeforeTool",
                hook_source=HookSource.PROJECT,
                trusted_folder=False,
            )
        )
        user = await engine.check_hook(
            HookExecutionContext(
                event_name="BeforeTool",
                hook_source=HookSource.USER,
                trusted_folder=False,
            )
        )
        assert project == PolicyDecision.DENY
        assert user == PolicyDecision.ALLOW

    @pytest.mark.asyncio
    async def test_hook_checker_sees_synthetic_call(self):
        runner = make_runner(SafetyCheckResult(decision=SafetyCheckDecision.DENY))
        engine = PolicyEngine(
            PolicyEngineConfig(
                hook_checkers=[
                    HookCheckerRule(
                        event_name="BeforeTool",
                        hook_source=HookSource.USER,
                        checker=checker(),
                    )
                ]
            ),
            runner,
        )
        decision = await engine.check_hook(
            HookExecutionContext(
                event_name="BeforeTool",
                hook_source=HookSource.USER,
                trusted_folder=True,
            )
        )
        skipped = await engine.check_hook(
            HookExecutionContext(event_name="AfterTool", hook_source=HookSource.USER)
        )

        assert decision == PolicyDecision.DENY
        assert skipped == PolicyDecision.ALLOW
        call = runner.run_checker.await_args.args[0]
        assert call.name == "hook:BeforeTool"
        assert call.args == {"hookSource": "user", "trustedFolder": True}

    @pytest.mark.asyncio
    async def test_check_hook_accepts_bus_request(self):
        engine = PolicyEngine()
        request = HookExecutionRequest(
            event_name="BeforeTool",
            input={"hook_source": "project", "trusted_folder": False},
        )
        assert await engine.check_hook(request) == PolicyDecision.DENY

    @pytest.mark.asyncio
    async def test_unknown_hook_source_treated_as_project(self):
        engine = PolicyEngine()
        request = HookExecutionRequest(
            event_name="BeforeTool",
            input={"hook_source": "bogus", "trusted_folder": False},
        )
        assert await engine.check_hook(request) == PolicyDecision.DENY
