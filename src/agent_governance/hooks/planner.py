"""Hook planner: selects which hooks run for an event and how."""

import re
from collections.abc import Collection
from functools import lru_cache

import structlog

from ..domain.hook_models import (
    ConfigSource,
    HookConfig,
    HookEventName,
    HookExecutionPlan,
    HookRegistryEntry,
)
from .registry import HookRegistry


@lru_cache(maxsize=256)
def _compile_matcher(matcher: str) -> re.Pattern[str] | None:
    try:
        return re.compile(matcher)
    except re.error:
        return None


class HookPlanner:
    """Builds execution plans from registry entries."""

    def __init__(self, registry: HookRegistry):
        self.registry = registry
        self.logger = structlog.get_logger(__name__)

    def create_execution_plan(
        self,
        event_name: HookEventName,
        context: dict[str, str] | None = None,
        allowed_sources: Collection[ConfigSource] | None = None,
    ) -> HookExecutionPlan | None:
        """Plan the hooks for one occurrence of ``event_name``.

        Args:
            event_name: Event being fired
            context: Optional ``tool_name`` or ``trigger`` the matchers see
            allowed_sources: Restrict to hooks from these sources

        Returns:
            The plan, or None when no hook applies
        """
        entries = self.registry.get_hooks_for_event(event_name)
        matching = [
            entry
            for entry in entries
            if (allowed_sources is None or entry.source in allowed_sources)
            and self._matches_context(entry, context)
        ]

        if not matching:
            return None

        plan = HookExecutionPlan(
            event_name=event_name,
            hook_configs=self._deduplicate(matching),
            sequential=any(entry.sequential for entry in matching),
        )
        self.logger.debug(
            "Created hook execution plan",
            event_name=event_name.value,
            hook_count=len(plan.hook_configs),
            sequential=plan.sequential,
        )
        return plan

    def _matches_context(
        self, entry: HookRegistryEntry, context: dict[str, str] | None
    ) -> bool:
        matcher = (entry.matcher or "").strip()
        if not matcher or matcher == "*" or not context:
            return True

        tool_name = context.get("tool_name")
        if tool_name is not None:
            return self._matches_tool_name(matcher, tool_name)

        trigger = context.get("trigger")
        if trigger is not None:
            return matcher == trigger

        return True

    @staticmethod
    def _matches_tool_name(matcher: str, tool_name: str) -> bool:
        pattern = _compile_matcher(matcher)
        if pattern is None:
            return matcher == tool_name
        return pattern.search(tool_name) is not None

    @staticmethod
    def _deduplicate(entries: list[HookRegistryEntry]) -> list[HookConfig]:
        seen: set[str] = set()
        configs: list[HookConfig] = []
        for entry in entries:
            if entry.config.command in seen:
                continue
            seen.add(entry.config.command)
            configs.append(entry.config)
        return configs
