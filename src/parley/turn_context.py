"""Per-turn context: inbound activity, turn state and outbound interception."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Self

from loguru import logger

from parley.errors import ClosedContextError, EmptyBatchError, MissingActivityError
from parley.schema import (
    Activity,
    ActivityTypes,
    ConversationReference,
    DeliveryModes,
    ResourceResponse,
    message_activity,
    trace_activity,
)
from parley.turn_state import TurnState

if TYPE_CHECKING:
    from parley.adapter import BotAdapter
    from parley.types import DeleteActivityHandler, SendActivitiesHandler, UpdateActivityHandler


class TurnContext:
    """Everything one turn needs; created by the adapter and closed at turn end."""

    def __init__(self, adapter: BotAdapter, activity: Activity) -> None:
        if adapter is None:
            raise ValueError("turn context requires an adapter")
        if activity is None:
            raise MissingActivityError()
        self.adapter = adapter
        self._activity = activity
        self.turn_state = TurnState()
        self.buffered_reply_activities: list[Activity] = []
        self._responded = False
        self._closed = False
        self._on_send_activities: list[SendActivitiesHandler] = []
        self._on_update_activity: list[UpdateActivityHandler] = []
        self._on_delete_activity: list[DeleteActivityHandler] = []

    @property
    def activity(self) -> Activity:
        return self._activity

    @property
    def responded(self) -> bool:
        """True once a non-trace activity was delivered or buffered in this turn."""

        return self._responded

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def locale(self) -> str | None:
        return self.turn_state.locale or self._activity.locale

    @locale.setter
    def locale(self, value: str | None) -> None:
        self.turn_state.locale = value

    def on_send_activities(self, handler: SendActivitiesHandler) -> Self:
        self._ensure_open("register a send handler")
        self._on_send_activities.append(handler)
        return self

    def on_update_activity(self, handler: UpdateActivityHandler) -> Self:
        self._ensure_open("register an update handler")
        self._on_update_activity.append(handler)
        return self

    def on_delete_activity(self, handler: DeleteActivityHandler) -> Self:
        self._ensure_open("register a delete handler")
        self._on_delete_activity.append(handler)
        return self

    async def send_activity(
        self,
        activity_or_text: Activity | str,
        speak: str | None = None,
        input_hint: str | None = None,
    ) -> ResourceResponse | None:
        """Send one activity; ``None`` means an interceptor suppressed delivery."""

        if isinstance(activity_or_text, str):
            activity = message_activity(activity_or_text, speak=speak, input_hint=input_hint)
        else:
            activity = activity_or_text
        responses = await self.send_activities([activity])
        return responses[0] if responses else None

    async def send_trace_activity(
        self,
        name: str,
        value: Any = None,
        value_type: str | None = None,
        label: str | None = None,
    ) -> ResourceResponse | None:
        return await self.send_activity(trace_activity(name, value, value_type, label))

    async def send_activities(self, activities: Sequence[Activity]) -> list[ResourceResponse]:
        self._ensure_open("send activities")
        if not activities:
            raise EmptyBatchError()
        if any(activity is None for activity in activities):
            raise MissingActivityError("send batch")

        reference = self._activity.get_conversation_reference()
        output = [activity.model_copy().apply_conversation_reference(reference) for activity in activities]
        handlers = list(self._on_send_activities)

        async def run(index: int) -> list[ResourceResponse]:
            if index == len(handlers):
                return await self._deliver(output)
            return await handlers[index](self, output, lambda: run(index + 1))

        responses = await run(0)
        for activity, response in zip(activities, responses, strict=False):
            if response is not None and response.id:
                activity.id = response.id
        return responses

    async def update_activity(self, activity: Activity) -> ResourceResponse | None:
        self._ensure_open("update an activity")
        if activity is None:
            raise MissingActivityError("update")
        reference = self._activity.get_conversation_reference()
        updated = activity.model_copy().apply_conversation_reference(reference)
        handlers = list(self._on_update_activity)

        async def run(index: int) -> ResourceResponse | None:
            if index == len(handlers):
                return await self.adapter.update_activity(self, updated)
            result = await handlers[index](self, updated, lambda: run(index + 1))
            if result is not None and result.id:
                updated.id = result.id
            return result

        return await run(0)

    async def delete_activity(self, id_or_reference: str | ConversationReference) -> None:
        self._ensure_open("delete an activity")
        if isinstance(id_or_reference, str):
            if not id_or_reference.strip():
                raise ValueError("activity id must not be empty")
            reference = self._activity.get_conversation_reference()
            reference.activity_id = id_or_reference
        else:
            reference = id_or_reference
        handlers = list(self._on_delete_activity)

        async def run(index: int) -> None:
            if index == len(handlers):
                await self.adapter.delete_activity(self, reference)
                return
            await handlers[index](self, reference, lambda: run(index + 1))

        await run(0)

    async def _deliver(self, output: list[Activity]) -> list[ResourceResponse]:
        sent_non_trace = any(activity.type != ActivityTypes.TRACE for activity in output)

        if self._activity.delivery_mode == DeliveryModes.EXPECT_REPLIES:
            responses: list[ResourceResponse] = []
            for activity in output:
                self.buffered_reply_activities.append(activity)
                # Invoke responses never reach the adapter in this mode, so capture them here too.
                if activity.type == ActivityTypes.INVOKE_RESPONSE:
                    self.turn_state.invoke_response = activity
                responses.append(ResourceResponse())
            if sent_non_trace:
                self._responded = True
            logger.debug("turn.send.buffered count={}", len(output))
            return responses

        responses = await self.adapter.send_activities(self, output)
        for activity, response in zip(output, responses, strict=False):
            if response is not None and response.id:
                activity.id = response.id
        if sent_non_trace:
            self._responded = True
        return responses

    def get_conversation_reference(self) -> ConversationReference:
        return self._activity.get_conversation_reference()

    @staticmethod
    def get_reply_conversation_reference(activity: Activity, reply: ResourceResponse) -> ConversationReference:
        """Reference addressing a reply the bot just sent, e.g. to update it later."""

        reference = activity.get_conversation_reference()
        reference.activity_id = reply.id
        return reference

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.turn_state.clear()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _ensure_open(self, operation: str) -> None:
        if self._closed:
            raise ClosedContextError(operation)
