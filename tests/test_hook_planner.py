"""Tests for HookPlanner matching, deduplication and ordering."""

import pytest

from agent_governance.domain.hook_models import ConfigSource, HookEventName
from agent_governance.hooks.planner import HookPlanner
from agent_governance.hooks.registry import HookRegistry
from agent_governance.infrastructure.config import GovernanceConfig, HooksConfig


def command_hook(command: str) -> dict:
    return {"type": "command", "command": command}


async def make_planner(**hooks_by_source) -> HookPlanner:
    registry = HookRegistry(GovernanceConfig(hooks=HooksConfig(**hooks_by_source)))
    await registry.initialize()
    return HookPlanner(registry)


class TestHookPlanner:
    """Execution plan construction."""

    @pytest.mark.asyncio
    async def test_no_hooks_returns_none(self):
        planner = await make_planner()
        assert planner.create_execution_plan(HookEventName.BEFORE_TOOL) is None

    @pytest.mark.asyncio
    async def test_tool_name_matcher_is_regex(self):
        planner = await make_planner(
            project={
                "BeforeTool": [
                    {"matcher": "write_.*|replace", "hooks": [command_hook("edit.sh")]},
                    {"matcher": "run_shell_command", "hooks": [command_hook("shell.sh")]},
                    {"hooks": [command_hook("all.sh")]},
                    {"matcher": "*", "hooks": [command_hook("star.sh")]},
                ]
            }
        )

        plan = planner.create_execution_plan(
            HookEventName.BEFORE_TOOL, {"tool_name": "write_file"}
        )
        assert [hook.command for hook in plan.hook_configs] == [
            "edit.sh",
            "all.sh",
            "star.sh",
        ]

        plan = planner.create_execution_plan(
            HookEventName.BEFORE_TOOL, {"tool_name": "run_shell_command"}
        )
        assert [hook.command for hook in plan.hook_configs] == [
            "shell.sh",
            "all.sh",
            "star.sh",
        ]

    @pytest.mark.asyncio
    async def test_invalid_regex_falls_back_to_equality(self):
        planner = await make_planner(
            user={"BeforeTool": [{"matcher": "tool[", "hooks": [command_hook("a.sh")]}]}
        )
        assert planner.create_execution_plan(
            HookEventName.BEFORE_TOOL, {"tool_name": "tool["}
        ) is not None
        assert planner.create_execution_plan(
            HookEventName.BEFORE_TOOL, {"tool_name": "tool"}
        ) is None

    @pytest.mark.asyncio
    async def test_trigger_matcher_is_exact(self):
        planner = await make_planner(
            project={
                "SessionStart": [
                    {"matcher": "startup", "hooks": [command_hook("boot.sh")]},
                    {"matcher": "start", "hooks": [command_hook("partial.sh")]},
                ]
            }
        )
        plan = planner.create_execution_plan(
            HookEventName.SESSION_START, {"trigger": "startup"}
        )
        assert [hook.command for hook in plan.hook_configs] == ["boot.sh"]

    @pytest.mark.asyncio
    async def test_no_context_matches_everything(self):
        planner = await make_planner(
            project={"PreCompress": [{"matcher": "auto", "hooks": [command_hook("a.sh")]}]}
        )
        plan = planner.create_execution_plan(HookEventName.PRE_COMPRESS)
        assert plan is not None and len(plan.hook_configs) == 1

    @pytest.mark.asyncio
    async def test_duplicate_commands_kept_once(self):
        """The first occurrence (highest precedence source) wins."""
        planner = await make_planner(
            project={"AfterTool": [{"hooks": [command_hook("dup.sh")]}]},
            user={"AfterTool": [{"hooks": [command_hook("dup.sh"), command_hook("u.sh")]}]},
        )
        plan = planner.create_execution_plan(HookEventName.AFTER_TOOL, {"tool_name": "t"})
        assert [hook.command for hook in plan.hook_configs] == ["dup.sh", "u.sh"]

    @pytest.mark.asyncio
    async def test_sequential_if_any_entry_sequential(self):
        planner = await make_planner(
            project={
                "BeforeAgent": [
                    {"hooks": [command_hook("a.sh")]},
                    {"sequential": True, "hooks": [command_hook("b.sh")]},
                ]
            }
        )
        plan = planner.create_execution_plan(HookEventName.BEFORE_AGENT)
        assert plan.sequential is True

        planner = await make_planner(
            project={"BeforeAgent": [{"hooks": [command_hook("a.sh")]}]}
        )
        assert planner.create_execution_plan(HookEventName.BEFORE_AGENT).sequential is False

    @pytest.mark.asyncio
    async def test_allowed_sources_filter(self):
        planner = await make_planner(
            project={"BeforeTool": [{"hooks": [command_hook("p.sh")]}]},
            user={"BeforeTool": [{"hooks": [command_hook("u.sh")]}]},
        )
        plan = planner.create_execution_plan(
            HookEventName.BEFORE_TOOL,
            {"tool_name": "t"},
            allowed_sources={ConfigSource.USER},
        )
        assert [hook.command for hook in plan.hook_configs] == ["u.sh"]

        assert planner.create_execution_plan(
            HookEventName.BEFORE_TOOL, allowed_sources=set()
        ) is None
