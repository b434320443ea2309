"""Hook system: wires registry, planner, runner, aggregator and handler."""

from typing import Any

import structlog

from ..domain.hook_models import HookRegistryEntry
from ..domain.models import HookSystemNotInitializedError
from ..domain.policy_engine import PolicyEngine
from ..infrastructure.config import GovernanceConfig
from ..infrastructure.message_bus import MessageBus
from ..infrastructure.telemetry import HookTelemetry
from .aggregator import HookAggregator
from .event_handler import HookEventHandler
from .planner import HookPlanner
from .registry import HookRegistry
from .runner import HookRunner


class HookSystem:
    """Owns the hook pipeline for one session."""

    def __init__(
        self,
        config: GovernanceConfig,
        message_bus: MessageBus | None = None,
        policy_engine: PolicyEngine | None = None,
        telemetry: HookTelemetry | None = None,
    ):
        self.config = config
        self.registry = HookRegistry(config)
        self.runner = HookRunner()
        self.aggregator = HookAggregator()
        self.planner = HookPlanner(self.registry)
        self.event_handler = HookEventHandler(
            config,
            self.planner,
            self.runner,
            self.aggregator,
            message_bus=message_bus,
            policy_engine=policy_engine,
            telemetry=telemetry,
        )
        self._initialized = False
        self.logger = structlog.get_logger(__name__)

    async def initialize(self) -> None:
        if self._initialized:
            return
        await self.registry.initialize()
        self._initialized = True
        self.logger.debug("Hook system initialized")

    def get_event_handler(self) -> HookEventHandler:
        """
        Raises:
            HookSystemNotInitializedError: If called before initialize()
        """
        if not self._initialized:
            raise HookSystemNotInitializedError()
        return self.event_handler

    def get_registry(self) -> HookRegistry:
        return self.registry

    def set_hook_enabled(self, hook_name: str, enabled: bool) -> None:
        self.registry.set_hook_enabled(hook_name, enabled)

    def get_all_hooks(self) -> list[HookRegistryEntry]:
        return self.registry.get_all_hooks()

    def get_status(self) -> dict[str, Any]:
        """Initialization state and hook counts for monitoring."""
        if not self._initialized:
            return {"initialized": False, "total_hooks": 0}
        hooks = self.registry.get_all_hooks()
        return {
            "initialized": True,
            "total_hooks": len(hooks),
            "enabled_hooks": sum(1 for hook in hooks if hook.enabled),
            "telemetry": self.event_handler.telemetry.get_stats(),
        }
