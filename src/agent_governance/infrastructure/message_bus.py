"""Typed publish/subscribe bus with correlated hook execution requests."""

import asyncio
import inspect
import uuid
from collections import defaultdict
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field

from ..domain.models import PolicyDecision
from ..domain.policy_engine import PolicyEngine

NO_HANDLER_ERROR = "No handler registered for hook execution requests"


class MessageBusType(str, Enum):
    """Message types carried by the bus."""

    HOOK_EXECUTION_REQUEST = "hook-execution-request"
    HOOK_EXECUTION_RESPONSE = "hook-execution-response"
    UPDATE_POLICY = "update-policy"


class HookExecutionRequest(BaseModel):
    """Ask the hook pipeline to fire an event with an untyped input."""

    type: Literal[MessageBusType.HOOK_EXECUTION_REQUEST] = (
        MessageBusType.HOOK_EXECUTION_REQUEST
    )
    event_name: str
    input: dict[str, Any] = Field(default_factory=dict)
    correlation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))


class HookExecutionResponse(BaseModel):
    """Exactly one of these answers each HookExecutionRequest."""

    type: Literal[MessageBusType.HOOK_EXECUTION_RESPONSE] = (
        MessageBusType.HOOK_EXECUTION_RESPONSE
    )
    correlation_id: str
    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None


class UpdatePolicy(BaseModel):
    """Request to always allow a tool from now on."""

    type: Literal[MessageBusType.UPDATE_POLICY] = MessageBusType.UPDATE_POLICY
    tool_name: str


BusMessage = HookExecutionRequest | HookExecutionResponse | UpdatePolicy
Handler = Callable[[Any], Awaitable[None] | None]


class MessageBus:
    """In-process pub/sub channel.

    Hook execution requests are optionally gated by a policy engine; a denied
    request is answered immediately with a failed response.
    """

    def __init__(self, policy_engine: PolicyEngine | None = None):
        self.policy_engine = policy_engine
        self._handlers: dict[MessageBusType, list[Handler]] = defaultdict(list)
        self._pending: dict[str, asyncio.Future[HookExecutionResponse]] = {}
        self.logger = structlog.get_logger(__name__)

    def subscribe(self, message_type: MessageBusType, handler: Handler) -> None:
        self._handlers[message_type].append(handler)

    def unsubscribe(self, message_type: MessageBusType, handler: Handler) -> None:
        handlers = self._handlers.get(message_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, message_type: MessageBusType) -> int:
        return len(self._handlers.get(message_type, []))

    async def publish(self, message: BusMessage) -> None:
        """Deliver ``message`` to its subscribers.

        Handler exceptions are logged and do not stop delivery to the others.
        """
        if isinstance(message, HookExecutionRequest) and self.policy_engine:
            decision = await self.policy_engine.check_hook(message)
            if decision == PolicyDecision.DENY:
                self.logger.info(
                    "Hook execution denied by policy",
                    event_name=message.event_name,
                    correlation_id=message.correlation_id,
                )
                await self.publish(
                    HookExecutionResponse(
                        correlation_id=message.correlation_id,
                        success=False,
                        error="Hook execution denied by policy",
                    )
                )
                return

        if isinstance(message, HookExecutionResponse):
            self._resolve_pending(message)

        for handler in list(self._handlers.get(message.type, [])):
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.error(
                    "Message handler failed",
                    message_type=message.type.value,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                )

    async def request_hook_execution(
        self,
        event_name: str,
        hook_input: dict[str, Any],
        timeout: float | None = None,
    ) -> HookExecutionResponse:
        """Publish a hook execution request and wait for its response.

        Raises:
            TimeoutError: If no response arrives within ``timeout`` seconds
        """
        request = HookExecutionRequest(event_name=event_name, input=hook_input)
        future: asyncio.Future[HookExecutionResponse] = (
            asyncio.get_running_loop().create_future()
        )
        self._pending[request.correlation_id] = future
        try:
            if self.subscriber_count(MessageBusType.HOOK_EXECUTION_REQUEST):
                await self.publish(request)
            else:
                self.logger.warning(
                    "No handler for hook execution request",
                    event_name=event_name,
                    correlation_id=request.correlation_id,
                )
                await self.publish(
                    HookExecutionResponse(
                        correlation_id=request.correlation_id,
                        success=False,
                        error=NO_HANDLER_ERROR,
                    )
                )
            return await asyncio.wait_for(future, timeout)
        finally:
            self._pending.pop(request.correlation_id, None)

    def _resolve_pending(self, response: HookExecutionResponse) -> None:
        future = self._pending.get(response.correlation_id)
        if future is None:
            if not self.subscriber_count(MessageBusType.HOOK_EXECUTION_RESPONSE):
                self.logger.warning(
                    "Dropping hook response with no pending request",
                    correlation_id=response.correlation_id,
                )
            return
        if future.done():
            self.logger.warning(
                "Dropping duplicate hook response",
                correlation_id=response.correlation_id,
            )
            return
        future.set_result(response)
