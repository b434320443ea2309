"""Tests for HookAggregator merge strategies."""

from agent_governance.domain.hook_models import (
    AfterModelHookOutput,
    BeforeToolHookOutput,
    HookConfig,
    HookEventName,
    HookExecutionResult,
)
from agent_governance.hooks.aggregator import HookAggregator


def result(
    event: HookEventName,
    output: dict | None = None,
    success: bool = True,
    error: Exception | None = None,
    duration: float = 10.0,
) -> HookExecutionResult:
    return HookExecutionResult(
        hook_config=HookConfig(command="hook.sh"),
        event_name=event,
        success=success,
        output=output,
        error=error,
        duration=duration,
    )


class TestOrMerge:
    """BeforeTool / AfterTool / BeforeAgent / AfterAgent / SessionStart."""

    def setup_method(self):
        self.aggregator = HookAggregator()

    def test_no_outputs_is_success(self):
        aggregated = self.aggregator.aggregate_results([], HookEventName.BEFORE_TOOL)
        assert aggregated.success is True
        assert aggregated.final_output is None
        assert aggregated.total_duration == 0

    def test_block_wins_over_sibling_allow(self):
        event = HookEventName.AFTER_TOOL
        aggregated = self.aggregator.aggregate_results(
            [
                result(event, {"decision": "allow", "reason": "fine"}),
                result(event, {"decision": "block", "reason": "X"}),
            ],
            event,
        )
        assert aggregated.success is False
        assert aggregated.final_output.decision == "block"
        assert aggregated.final_output.get_effective_reason() == "X"

    def test_multiple_block_reasons_joined(self):
        event = HookEventName.BEFORE_AGENT
        aggregated = self.aggregator.aggregate_results(
            [
                result(event, {"decision": "block", "reason": "first"}),
                result(event, {"decision": "deny", "reason": "second"}),
            ],
            event,
        )
        assert aggregated.final_output.decision == "block"
        assert aggregated.final_output.reason == "first\nsecond"

    def test_failed_hook_does_not_block_when_sibling_allows(self):
        """An exit-1 hook reports a warning, not a block."""
        event = HookEventName.BEFORE_TOOL
        error = RuntimeError("exit 1")
        aggregated = self.aggregator.aggregate_results(
            [
                result(event, {"decision": "allow"}),
                result(
                    event,
                    {"decision": "allow", "systemMessage": "Warning: oops"},
                    success=False,
                    error=error,
                ),
            ],
            event,
        )
        assert aggregated.success is True
        assert aggregated.errors == [error]
        assert aggregated.final_output.decision == "allow"
        assert aggregated.final_output.system_message == "Warning: oops"

    def test_messages_and_context_concatenated_in_order(self):
        event = HookEventName.BEFORE_AGENT
        aggregated = self.aggregator.aggregate_results(
            [
                result(
                    event,
                    {
                        "systemMessage": "one",
                        "hookSpecificOutput": {"additionalContext": "ctx1"},
                    },
                ),
                result(
                    event,
                    {
                        "systemMessage": "two",
                        "hookSpecificOutput": {"additionalContext": "ctx2"},
                    },
                ),
            ],
            event,
        )
        final = aggregated.final_output
        assert final.system_message == "one\ntwo"
        assert final.get_additional_context() == "ctx1\nctx2"
        assert aggregated.total_duration == 20.0

    def test_stop_and_suppress_flags(self):
        event = HookEventName.AFTER_AGENT
        aggregated = self.aggregator.aggregate_results(
            [
                result(event, {"suppressOutput": True}),
                result(event, {"continue": False, "stopReason": "enough"}),
                result(event, {"continue": False, "stopReason": "later"}),
            ],
            event,
        )
        final = aggregated.final_output
        assert final.suppress_output is True
        assert final.should_stop_execution()
        assert final.stop_reason == "enough"
        assert aggregated.success is True

    def test_before_tool_permission_decision_block(self):
        event = HookEventName.BEFORE_TOOL
        aggregated = self.aggregator.aggregate_results(
            [
                result(event, {"decision": "approve"}),
                result(
                    event,
                    {
                        "hookSpecificOutput": {
                            "hookEventName": "BeforeTool",
                            "permissionDecision": "deny",
                            "permissionDecisionReason": "secrets",
                        }
                    },
                ),
            ],
            event,
        )
        final = aggregated.final_output
        assert isinstance(final, BeforeToolHookOutput)
        assert aggregated.success is False
        assert final.decision == "deny"
        assert final.get_effective_reason() == "secrets"
        assert final.hook_specific_output["permissionDecision"] == "deny"

    def test_single_output_passed_through(self):
        event = HookEventName.SESSION_START
        aggregated = self.aggregator.aggregate_results(
            [result(event, {"systemMessage": "welcome"})], event
        )
        assert aggregated.final_output.system_message == "welcome"
        assert len(aggregated.all_outputs) == 1


class TestFieldReplacement:
    """BeforeModel / AfterModel: later hooks win field by field."""

    def test_later_fields_replace_earlier(self):
        aggregator = HookAggregator()
        event = HookEventName.AFTER_MODEL
        aggregated = aggregator.aggregate_results(
            [
                result(
                    event,
                    {
                        "systemMessage": "first",
                        "hookSpecificOutput": {"llm_response": {"candidates": []}},
                    },
                ),
                result(
                    event,
                    {
                        "systemMessage": "second",
                        "hookSpecificOutput": {"hookEventName": "AfterModel"},
                    },
                ),
            ],
            event,
        )
        final = aggregated.final_output
        assert isinstance(final, AfterModelHookOutput)
        assert final.system_message == "second"
        assert final.hook_specific_output == {
            "llm_response": {"candidates": []},
            "hookEventName": "AfterModel",
        }

    def test_block_still_wins(self):
        aggregator = HookAggregator()
        event = HookEventName.BEFORE_MODEL
        aggregated = aggregator.aggregate_results(
            [
                result(event, {"decision": "block", "reason": "quota"}),
                result(event, {"decision": "allow"}),
            ],
            event,
        )
        assert aggregated.success is False
        assert aggregated.final_output.decision == "block"


class TestToolSelectionUnion:
    """BeforeToolSelection merges tool configs."""

    def config_output(self, mode=None, names=None) -> dict:
        tool_config = {}
        if mode:
            tool_config["mode"] = mode
        if names is not None:
            tool_config["allowedFunctionNames"] = names
        return {"hookSpecificOutput": {"toolConfig": tool_config}}

    def test_function_names_unioned(self):
        event = HookEventName.BEFORE_TOOL_SELECTION
        aggregated = HookAggregator().aggregate_results(
            [
                result(event, self.config_output("AUTO", ["read_file", "glob"])),
                result(event, self.config_output("ANY", ["glob", "write_file"])),
            ],
            event,
        )
        tool_config = aggregated.final_output.hook_specific_output["toolConfig"]
        assert tool_config == {
            "mode": "ANY",
            "allowedFunctionNames": ["read_file", "glob", "write_file"],
        }

    def test_none_mode_is_most_restrictive(self):
        event = HookEventName.BEFORE_TOOL_SELECTION
        aggregated = HookAggregator().aggregate_results(
            [
                result(event, self.config_output("ANY", ["glob"])),
                result(event, self.config_output("none")),
            ],
            event,
        )
        tool_config = aggregated.final_output.hook_specific_output["toolConfig"]
        assert tool_config == {"mode": "NONE", "allowedFunctionNames": []}


class TestSimpleMerge:
    def test_last_value_wins(self):
        event = HookEventName.SESSION_END
        aggregated = HookAggregator().aggregate_results(
            [
                result(event, {"systemMessage": "a", "suppressOutput": True}),
                result(event, {"systemMessage": "b"}),
            ],
            event,
        )
        assert aggregated.final_output.system_message == "b"
        assert aggregated.final_output.suppress_output is True
