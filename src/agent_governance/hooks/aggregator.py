"""Hook aggregator: folds per-hook results into one event-level outcome."""

from typing import Any

import structlog

from ..domain.hook_models import (
    AggregatedHookResult,
    DefaultHookOutput,
    HookEventName,
    HookExecutionResult,
    create_hook_output,
)

# Events where any block wins and messages accumulate
OR_MERGE_EVENTS = frozenset(
    {
        HookEventName.BEFORE_TOOL,
        HookEventName.AFTER_TOOL,
        HookEventName.BEFORE_AGENT,
        HookEventName.AFTER_AGENT,
        HookEventName.SESSION_START,
    }
)

# Events where later hooks replace fields set by earlier ones
FIELD_REPLACEMENT_EVENTS = frozenset(
    {HookEventName.BEFORE_MODEL, HookEventName.AFTER_MODEL}
)

# Most restrictive first
TOOL_CONFIG_MODE_ORDER = ("NONE", "ANY", "AUTO")

ALLOW_DECISIONS = ("allow", "approve")


class HookAggregator:
    """Merges hook outputs.

    Success means no hook emitted a blocking decision: a hook that merely
    failed does not block when a sibling allows. An explicit deny or block
    always wins over an explicit allow.
    """

    def __init__(self) -> None:
        self.logger = structlog.get_logger(__name__)

    def aggregate_results(
        self, results: list[HookExecutionResult], event_name: HookEventName
    ) -> AggregatedHookResult:
        errors: list[Exception] = []
        outputs: list[DefaultHookOutput] = []
        total_duration = 0.0

        for result in results:
            total_duration += result.duration
            if result.error is not None:
                errors.append(result.error)
            if result.output is not None:
                outputs.append(create_hook_output(event_name, result.output))

        final_output = self._merge_outputs(outputs, event_name) if outputs else None
        success = final_output is None or not final_output.is_blocking_decision()
        self.logger.debug(
            "Aggregated hook results",
            event_name=event_name.value,
            hook_count=len(results),
            error_count=len(errors),
            success=success,
        )

        return AggregatedHookResult(
            success=success,
            all_outputs=outputs,
            errors=errors,
            total_duration=total_duration,
            final_output=final_output,
        )

    def _merge_outputs(
        self, outputs: list[DefaultHookOutput], event_name: HookEventName
    ) -> DefaultHookOutput:
        if len(outputs) == 1:
            return outputs[0]

        if event_name in OR_MERGE_EVENTS:
            merged = self._merge_with_or_decision(outputs)
        elif event_name in FIELD_REPLACEMENT_EVENTS:
            merged = self._merge_with_field_replacement(outputs)
        elif event_name == HookEventName.BEFORE_TOOL_SELECTION:
            merged = self._merge_tool_selection(outputs)
        else:
            merged = self._merge_simple(outputs)

        self._apply_blocking_precedence(merged, outputs)
        return create_hook_output(event_name, merged)

    @staticmethod
    def _merge_with_or_decision(outputs: list[DefaultHookOutput]) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        system_messages: list[str] = []
        contexts: list[str] = []
        allow_reasons: list[str] = []
        specific: dict[str, Any] = {}

        for output in outputs:
            if output.system_message:
                system_messages.append(output.system_message)
            context = output.get_additional_context()
            if context:
                contexts.append(context)
            if output.suppress_output:
                merged["suppressOutput"] = True
            if output.should_stop_execution() and "continue" not in merged:
                merged["continue"] = False
                if output.stop_reason:
                    merged["stopReason"] = output.stop_reason
            if output.decision in ALLOW_DECISIONS and output.reason:
                allow_reasons.append(output.reason)
            if output.hook_specific_output:
                specific.update(output.hook_specific_output)

        decisions = [output.decision for output in outputs if output.decision]
        if any(decision in ALLOW_DECISIONS for decision in decisions):
            merged["decision"] = "allow"
            if allow_reasons:
                merged["reason"] = "\n".join(allow_reasons)
        elif decisions:
            merged["decision"] = decisions[0]

        if system_messages:
            merged["systemMessage"] = "\n".join(system_messages)
        if contexts:
            specific["additionalContext"] = "\n".join(contexts)
        if specific:
            merged["hookSpecificOutput"] = specific
        return merged

    @staticmethod
    def _merge_with_field_replacement(
        outputs: list[DefaultHookOutput],
    ) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for output in outputs:
            data = output.to_dict()
            specific = data.pop("hookSpecificOutput", None)
            merged.update(data)
            if specific:
                merged["hookSpecificOutput"] = {
                    **merged.get("hookSpecificOutput", {}),
                    **specific,
                }
        return merged

    def _merge_tool_selection(self, outputs: list[DefaultHookOutput]) -> dict[str, Any]:
        merged = self._merge_simple(outputs)
        modes: list[str] = []
        function_names: list[str] = []
        has_names = False

        for output in outputs:
            specific = output.hook_specific_output or {}
            config = specific.get("toolConfig")
            if not isinstance(config, dict):
                continue
            mode = config.get("mode")
            if isinstance(mode, str):
                modes.append(mode.upper())
            names = config.get("allowedFunctionNames")
            if isinstance(names, list):
                has_names = True
                for name in names:
                    if isinstance(name, str) and name not in function_names:
                        function_names.append(name)

        tool_config: dict[str, Any] = {}
        known_modes = [mode for mode in TOOL_CONFIG_MODE_ORDER if mode in modes]
        if known_modes:
            tool_config["mode"] = known_modes[0]
        if has_names:
            tool_config["allowedFunctionNames"] = (
                [] if tool_config.get("mode") == "NONE" else function_names
            )
        if tool_config:
            merged.setdefault("hookSpecificOutput", {})["toolConfig"] = tool_config
        return merged

    @staticmethod
    def _merge_simple(outputs: list[DefaultHookOutput]) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for output in outputs:
            merged.update(output.to_dict())
        return merged

    @staticmethod
    def _apply_blocking_precedence(
        merged: dict[str, Any], outputs: list[DefaultHookOutput]
    ) -> None:
        blocking = [output for output in outputs if output.is_blocking_decision()]
        if not blocking:
            return
        merged["decision"] = blocking[0].decision or "deny"
        merged["reason"] = "\n".join(
            output.get_effective_reason() for output in blocking
        )
        specific = merged.get("hookSpecificOutput")
        if isinstance(specific, dict) and "permissionDecision" in specific:
            specific["permissionDecision"] = "deny"
            specific["permissionDecisionReason"] = merged["reason"]
