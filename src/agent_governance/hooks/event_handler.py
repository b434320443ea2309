"""Hook event handler: the entry point callers use to fire lifecycle events."""

from datetime import UTC, datetime
from typing import Any

import structlog

from ..domain.hook_models import (
    AfterAgentInput,
    AfterModelInput,
    AfterToolInput,
    AggregatedHookResult,
    BeforeAgentInput,
    BeforeModelInput,
    BeforeToolInput,
    BeforeToolSelectionInput,
    ConfigSource,
    HookEventName,
    HookExecutionResult,
    HookInput,
    NotificationInput,
    NotificationType,
    PreCompressInput,
    PreCompressTrigger,
    SessionEndInput,
    SessionEndReason,
    SessionStartInput,
    SessionStartSource,
    validate_hook_input,
)
from ..domain.models import (
    HookExecutionContext,
    HookSource,
    HookSystemError,
    PolicyDecision,
    UnsupportedHookEventError,
)
from ..domain.policy_engine import PolicyEngine
from ..infrastructure.config import GovernanceConfig
from ..infrastructure.message_bus import (
    HookExecutionRequest,
    HookExecutionResponse,
    MessageBus,
    MessageBusType,
)
from ..infrastructure.telemetry import HookCallEvent, HookTelemetry
from .aggregator import HookAggregator
from .planner import HookPlanner
from .runner import HookRunner

# Registry sources as the policy engine names them
POLICY_SOURCES = {
    ConfigSource.PROJECT: HookSource.PROJECT,
    ConfigSource.USER: HookSource.USER,
    ConfigSource.SYSTEM: HookSource.SYSTEM,
    ConfigSource.EXTENSIONS: HookSource.EXTENSION,
}


class HookEventHandler:
    """Builds hook inputs and drives planner, runner and aggregator.

    Failures while planning or running hooks are returned as a failed
    AggregatedHookResult. Misuse of the pipeline (HookSystemError) raises.
    """

    def __init__(
        self,
        config: GovernanceConfig,
        planner: HookPlanner,
        runner: HookRunner,
        aggregator: HookAggregator,
        message_bus: MessageBus | None = None,
        policy_engine: PolicyEngine | None = None,
        telemetry: HookTelemetry | None = None,
    ):
        self.config = config
        self.planner = planner
        self.runner = runner
        self.aggregator = aggregator
        self.message_bus = message_bus
        self.policy_engine = policy_engine
        self.telemetry = telemetry or HookTelemetry()
        self.logger = structlog.get_logger(__name__)

        if self.message_bus:
            self.message_bus.subscribe(
                MessageBusType.HOOK_EXECUTION_REQUEST,
                self.handle_hook_execution_request,
            )

    async def fire_before_tool_event(
        self, tool_name: str, tool_input: dict[str, Any]
    ) -> AggregatedHookResult:
        hook_input = BeforeToolInput(
            **self._create_base_input(HookEventName.BEFORE_TOOL),
            tool_name=tool_name,
            tool_input=tool_input,
        )
        return await self._execute_hooks(
            HookEventName.BEFORE_TOOL, hook_input, {"tool_name": tool_name}
        )

    async def fire_after_tool_event(
        self,
        tool_name: str,
        tool_input: dict[str, Any],
        tool_response: dict[str, Any],
    ) -> AggregatedHookResult:
        hook_input = AfterToolInput(
            **self._create_base_input(HookEventName.AFTER_TOOL),
            tool_name=tool_name,
            tool_input=tool_input,
            tool_response=tool_response,
        )
        return await self._execute_hooks(
            HookEventName.AFTER_TOOL, hook_input, {"tool_name": tool_name}
        )

    async def fire_before_agent_event(self, prompt: str) -> AggregatedHookResult:
        hook_input = BeforeAgentInput(
            **self._create_base_input(HookEventName.BEFORE_AGENT), prompt=prompt
        )
        return await self._execute_hooks(HookEventName.BEFORE_AGENT, hook_input)

    async def fire_after_agent_event(
        self, prompt: str, prompt_response: str, stop_hook_active: bool = False
    ) -> AggregatedHookResult:
        hook_input = AfterAgentInput(
            **self._create_base_input(HookEventName.AFTER_AGENT),
            prompt=prompt,
            prompt_response=prompt_response,
            stop_hook_active=stop_hook_active,
        )
        return await self._execute_hooks(HookEventName.AFTER_AGENT, hook_input)

    async def fire_notification_event(
        self,
        notification_type: NotificationType,
        message: str,
        details: dict[str, Any],
    ) -> AggregatedHookResult:
        hook_input = NotificationInput(
            **self._create_base_input(HookEventName.NOTIFICATION),
            notification_type=notification_type,
            message=message,
            details=details,
        )
        return await self._execute_hooks(
            HookEventName.NOTIFICATION,
            hook_input,
            {"trigger": NotificationType(notification_type).value},
        )

    async def fire_session_start_event(
        self, source: SessionStartSource
    ) -> AggregatedHookResult:
        hook_input = SessionStartInput(
            **self._create_base_input(HookEventName.SESSION_START), source=source
        )
        return await self._execute_hooks(
            HookEventName.SESSION_START,
            hook_input,
            {"trigger": SessionStartSource(source).value},
        )

    async def fire_session_end_event(
        self, reason: SessionEndReason
    ) -> AggregatedHookResult:
        hook_input = SessionEndInput(
            **self._create_base_input(HookEventName.SESSION_END), reason=reason
        )
        return await self._execute_hooks(
            HookEventName.SESSION_END,
            hook_input,
            {"trigger": SessionEndReason(reason).value},
        )

    async def fire_pre_compress_event(
        self, trigger: PreCompressTrigger
    ) -> AggregatedHookResult:
        hook_input = PreCompressInput(
            **self._create_base_input(HookEventName.PRE_COMPRESS), trigger=trigger
        )
        return await self._execute_hooks(
            HookEventName.PRE_COMPRESS,
            hook_input,
            {"trigger": PreCompressTrigger(trigger).value},
        )

    async def fire_before_model_event(
        self, llm_request: dict[str, Any]
    ) -> AggregatedHookResult:
        hook_input = BeforeModelInput(
            **self._create_base_input(HookEventName.BEFORE_MODEL),
            llm_request=llm_request,
        )
        return await self._execute_hooks(HookEventName.BEFORE_MODEL, hook_input)

    async def fire_after_model_event(
        self, llm_request: dict[str, Any], llm_response: dict[str, Any]
    ) -> AggregatedHookResult:
        hook_input = AfterModelInput(
            **self._create_base_input(HookEventName.AFTER_MODEL),
            llm_request=llm_request,
            llm_response=llm_response,
        )
        return await self._execute_hooks(HookEventName.AFTER_MODEL, hook_input)

    async def fire_before_tool_selection_event(
        self, llm_request: dict[str, Any]
    ) -> AggregatedHookResult:
        hook_input = BeforeToolSelectionInput(
            **self._create_base_input(HookEventName.BEFORE_TOOL_SELECTION),
            llm_request=llm_request,
        )
        return await self._execute_hooks(
            HookEventName.BEFORE_TOOL_SELECTION, hook_input
        )

    async def handle_hook_execution_request(
        self, request: HookExecutionRequest
    ) -> None:
        """Validate a bus request, fire the event and publish one response."""
        try:
            event = HookEventName.parse(request.event_name)
            enriched = {**self._create_base_input(event), **request.input}
            result = await self._route(event, validate_hook_input(event, enriched))
            response = HookExecutionResponse(
                correlation_id=request.correlation_id,
                success=result.success,
                output=result.final_output.to_dict() if result.final_output else None,
            )
        except Exception as e:
            self.logger.warning(
                "Hook execution request failed",
                event_name=request.event_name,
                correlation_id=request.correlation_id,
                error=str(e),
            )
            response = HookExecutionResponse(
                correlation_id=request.correlation_id,
                success=False,
                error=str(e),
            )

        if self.message_bus:
            await self.message_bus.publish(response)

    async def _route(
        self, event: HookEventName, hook_input: HookInput
    ) -> AggregatedHookResult:
        data = hook_input.model_dump()
        if event == HookEventName.BEFORE_TOOL:
            return await self.fire_before_tool_event(data["tool_name"], data["tool_input"])
        if event == HookEventName.AFTER_TOOL:
            return await self.fire_after_tool_event(
                data["tool_name"], data["tool_input"], data["tool_response"]
            )
        if event == HookEventName.BEFORE_AGENT:
            return await self.fire_before_agent_event(data["prompt"])
        if event == HookEventName.AFTER_AGENT:
            return await self.fire_after_agent_event(
                data["prompt"], data["prompt_response"], data["stop_hook_active"]
            )
        if event == HookEventName.NOTIFICATION:
            return await self.fire_notification_event(
                data["notification_type"], data["message"], data["details"]
            )
        if event == HookEventName.SESSION_START:
            return await self.fire_session_start_event(data["source"])
        if event == HookEventName.SESSION_END:
            return await self.fire_session_end_event(data["reason"])
        if event == HookEventName.PRE_COMPRESS:
            return await self.fire_pre_compress_event(data["trigger"])
        if event == HookEventName.BEFORE_MODEL:
            return await self.fire_before_model_event(data["llm_request"])
        if event == HookEventName.AFTER_MODEL:
            return await self.fire_after_model_event(
                data["llm_request"], data["llm_response"]
            )
        if event == HookEventName.BEFORE_TOOL_SELECTION:
            return await self.fire_before_tool_selection_event(data["llm_request"])
        raise UnsupportedHookEventError(event.value)

    def _create_base_input(self, event: HookEventName) -> dict[str, Any]:
        return {
            "session_id": self.config.session_id,
            "transcript_path": "",
            "cwd": self.config.working_dir,
            "hook_event_name": event.value,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    async def _allowed_sources(self, event: HookEventName) -> set[ConfigSource] | None:
        """Sources the policy engine lets run for ``event``, or None for all."""
        if self.policy_engine is None:
            return None
        allowed: set[ConfigSource] = set()
        for config_source, hook_source in POLICY_SOURCES.items():
            decision = await self.policy_engine.check_hook(
                HookExecutionContext(
                    event_name=event.value,
                    hook_source=hook_source,
                    trusted_folder=self.config.trusted_folder,
                )
            )
            if decision == PolicyDecision.ALLOW:
                allowed.add(config_source)
        return allowed

    async def _execute_hooks(
        self,
        event: HookEventName,
        hook_input: HookInput,
        context: dict[str, str] | None = None,
    ) -> AggregatedHookResult:
        try:
            allowed_sources = await self._allowed_sources(event)
            plan = self.planner.create_execution_plan(event, context, allowed_sources)
            if plan is None or not plan.hook_configs:
                return AggregatedHookResult(success=True, total_duration=0)

            if plan.sequential:
                results = await self.runner.execute_hooks_sequential(
                    plan.hook_configs, event, hook_input
                )
            else:
                results = await self.runner.execute_hooks_parallel(
                    plan.hook_configs, event, hook_input
                )

            aggregated = self.aggregator.aggregate_results(results, event)
            self._process_common_hook_output_fields(aggregated)
            self._log_hook_execution(event, hook_input, results, aggregated)
            return aggregated
        except HookSystemError:
            raise
        except Exception as e:
            self.logger.error(
                "Hook execution failed",
                event_name=event.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return AggregatedHookResult(success=False, errors=[e], total_duration=0)

    def _process_common_hook_output_fields(
        self, aggregated: AggregatedHookResult
    ) -> None:
        final_output = aggregated.final_output
        if final_output is None:
            return

        if final_output.system_message and not final_output.suppress_output:
            self.logger.warning(
                "Hook system message", system_message=final_output.system_message
            )

        # stopping is left to the caller
        if final_output.should_stop_execution():
            self.logger.info(
                "Hook requested to stop execution",
                reason=final_output.get_effective_reason(),
            )

    def _log_hook_execution(
        self,
        event: HookEventName,
        hook_input: HookInput,
        results: list[HookExecutionResult],
        aggregated: AggregatedHookResult,
    ) -> None:
        payload = hook_input.to_payload()
        for result in results:
            self.telemetry.log_hook_call(
                HookCallEvent(
                    event_name=event.value,
                    hook_type=result.hook_config.type,
                    hook_name=result.hook_config.command,
                    hook_input=payload,
                    duration_ms=result.duration,
                    success=result.success,
                    output=result.output,
                    exit_code=result.exit_code,
                    stdout=result.stdout,
                    stderr=result.stderr,
                    error=str(result.error) if result.error else None,
                )
            )

        succeeded = sum(1 for result in results if result.success)
        failed = len(results) - succeeded
        log = self.logger.warning if failed else self.logger.debug
        log(
            "Hook execution summary",
            event_name=event.value,
            succeeded=succeeded,
            failed=failed,
            total_duration_ms=round(aggregated.total_duration, 2),
        )
        for error in aggregated.errors:
            self.logger.error("Hook execution error", event_name=event.value, error=str(error))
