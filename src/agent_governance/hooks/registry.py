"""Hook registry: loads hook definitions from every configuration source."""

from typing import Any

import structlog
from pydantic import ValidationError

from ..domain.hook_models import (
    ConfigSource,
    HookConfig,
    HookEventName,
    HookRegistryEntry,
)
from ..domain.models import HookRegistryNotInitializedError
from ..infrastructure.config import GovernanceConfig

SUPPORTED_HOOK_TYPES = ("command",)


class HookRegistry:
    """Registered hooks with their source and enabled state.

    Malformed configuration never fails initialization: offending entries
    are logged and skipped.
    """

    def __init__(self, config: GovernanceConfig):
        self.config = config
        self._entries: list[HookRegistryEntry] = []
        self._initialized = False
        self.logger = structlog.get_logger(__name__)

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Read hooks from project, user, system and extension sources."""
        if self._initialized:
            return

        self._entries = []
        for source in (ConfigSource.PROJECT, ConfigSource.USER, ConfigSource.SYSTEM):
            hooks = self.config.get_hooks(source)
            if hooks:
                self._process_hooks_configuration(hooks, source)

        for extension in self.config.get_active_extensions():
            if extension.hooks:
                self._process_hooks_configuration(
                    extension.hooks, ConfigSource.EXTENSIONS
                )

        self._initialized = True
        self.logger.debug("Hook registry initialized", entries=len(self._entries))

    def get_hooks_for_event(self, event_name: HookEventName) -> list[HookRegistryEntry]:
        """Enabled entries for ``event_name``, ordered by source precedence.

        Raises:
            HookRegistryNotInitializedError: If called before initialize()
        """
        if not self._initialized:
            raise HookRegistryNotInitializedError()
        # sorted() is stable: declaration order is kept within a source
        return sorted(
            (
                entry
                for entry in self._entries
                if entry.event_name == event_name and entry.enabled
            ),
            key=lambda entry: entry.source.precedence,
        )

    def get_all_hooks(self) -> list[HookRegistryEntry]:
        if not self._initialized:
            raise HookRegistryNotInitializedError()
        return list(self._entries)

    def set_hook_enabled(self, hook_name: str, enabled: bool) -> None:
        """Enable or disable every hook whose command is ``hook_name``."""
        updated = 0
        for entry in self._entries:
            if entry.config.command == hook_name:
                entry.enabled = enabled
                updated += 1

        if updated:
            self.logger.info(
                "Hook state changed",
                hook_name=hook_name,
                enabled=enabled,
                count=updated,
            )
        else:
            self.logger.warning("No hooks found matching name", hook_name=hook_name)

    def _process_hooks_configuration(
        self, hooks_config: Any, source: ConfigSource
    ) -> None:
        if not isinstance(hooks_config, dict):
            self.logger.warning(
                "Hook configuration is not a mapping, skipping", source=source.value
            )
            return

        for event_name, definitions in hooks_config.items():
            try:
                event = HookEventName(event_name)
            except ValueError:
                self.logger.warning(
                    "Invalid hook event name", event_name=event_name, source=source.value
                )
                continue

            if not isinstance(definitions, list):
                self.logger.warning(
                    "Hook definitions are not a list, skipping",
                    event_name=event_name,
                    source=source.value,
                )
                continue

            for definition in definitions:
                self._process_hook_definition(definition, event, source)

    def _process_hook_definition(
        self, definition: Any, event: HookEventName, source: ConfigSource
    ) -> None:
        if not isinstance(definition, dict) or not isinstance(
            definition.get("hooks"), list
        ):
            self.logger.warning(
                "Discarding invalid hook definition",
                event_name=event.value,
                source=source.value,
                definition=definition,
            )
            return

        matcher = definition.get("matcher")
        sequential = definition.get("sequential")
        for raw_config in definition["hooks"]:
            hook_config = self._validate_hook_config(raw_config, event, source)
            if hook_config is None:
                continue
            self._entries.append(
                HookRegistryEntry(
                    event_name=event,
                    config=hook_config,
                    matcher=matcher if isinstance(matcher, str) else None,
                    sequential=sequential if isinstance(sequential, bool) else None,
                    source=source,
                    enabled=True,
                )
            )

    def _validate_hook_config(
        self, raw_config: Any, event: HookEventName, source: ConfigSource
    ) -> HookConfig | None:
        if not isinstance(raw_config, dict):
            self.logger.warning(
                "Discarding invalid hook configuration",
                event_name=event.value,
                source=source.value,
                hook_config=raw_config,
            )
            return None

        hook_type = raw_config.get("type")
        if hook_type not in SUPPORTED_HOOK_TYPES:
            self.logger.warning(
                "Invalid hook type",
                event_name=event.value,
                source=source.value,
                hook_type=hook_type,
            )
            return None

        if not raw_config.get("command"):
            self.logger.warning(
                "Command hook missing command field",
                event_name=event.value,
                source=source.value,
            )
            return None

        try:
            return HookConfig.model_validate(raw_config)
        except ValidationError as e:
            self.logger.warning(
                "Discarding invalid hook configuration",
                event_name=event.value,
                source=source.value,
                error=str(e),
            )
            return None
