"""
Real-time fan-out over the Channels channel layer.

Publishing (sync, used by services after commit):
    publish_message(message, event="created")
    publish_typing(state)
    publish_presence(state)

Subscribing (async, used by consumers and any other async reader):
    async with subscribe(conversation_id) as messages:
        async for payload in messages:
            ...

    async with watch_typing(conversation_id, user_id) as typing:
        async for is_typing in typing:
            ...

    async with watch_presence(user_id) as presence:
        async for state in presence:
            ...

Groups:
    chat_<conversation_id>  message and typing events for one conversation
    presence_<user_id>      presence events for one user

Design Decisions:
    - The message pipeline is the only publisher of message events, and it
      publishes after the transaction commits. Payloads carry sequence and
      subscribe() yields new messages in sequence order.
    - Publishing is best effort. A channel layer outage is logged and never
      fails the write that triggered it.
    - Typing and presence watches turn stored expiry times into events:
      when the indicator expires without a refresh the stream yields the
      expired value by itself.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from asgiref.sync import async_to_sync, sync_to_async
from channels.layers import get_channel_layer
from django.utils import timezone

from chat.constants import MESSAGE_CONFIG, PRESENCE_CONFIG
from chat.types import PresenceState, TypingState

if TYPE_CHECKING:
    from chat.models import Message

logger = logging.getLogger(__name__)

# Channel layer event types; consumers handle them as chat_message etc.
MESSAGE_EVENT = "chat.message"
TYPING_EVENT = "chat.typing"
PRESENCE_EVENT = "presence.update"


def conversation_group(conversation_id: str) -> str:
    return f"chat_{conversation_id}"


def presence_group(user_id) -> str:
    return f"presence_{user_id}"


# =============================================================================
# Publishing
# =============================================================================


def publish(group: str, event: dict[str, Any]) -> bool:
    """
    Send an event to a channel layer group.

    Returns:
        True if the event was handed to the channel layer
    """
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.debug("No channel layer configured, dropping %s", event.get("type"))
        return False
    try:
        async_to_sync(channel_layer.group_send)(group, event)
    except Exception:
        logger.exception("Failed to publish %s to %s", event.get("type"), group)
        return False
    return True


def serialize_message(message: Message) -> dict[str, Any]:
    from chat.serializers import MessageSerializer

    return dict(MessageSerializer(message).data)


def publish_message(message: Message, event: str = "created") -> bool:
    """Publish a message snapshot to its conversation's subscribers."""
    return publish(
        conversation_group(message.conversation_id),
        {
            "type": MESSAGE_EVENT,
            "event": event,
            "message": serialize_message(message),
        },
    )


def publish_typing(state: TypingState) -> bool:
    return publish(
        conversation_group(state.conversation_id),
        {"type": TYPING_EVENT, "typing": state.to_dict()},
    )


def publish_presence(state: PresenceState) -> bool:
    return publish(
        presence_group(state.user_id),
        {"type": PRESENCE_EVENT, "presence": state.to_dict()},
    )


# =============================================================================
# Subscribing
# =============================================================================


class _Skip(Exception):
    """Raised by transform() for events the stream does not surface."""


class GroupSubscription:
    """
    Async iterator over the events of one channel layer group.

    Joins the group on entry (or on first iteration) and leaves it on exit.
    Subclasses override transform() to filter and convert events, and
    next_timeout()/on_timeout() to emit values when nothing arrives.
    """

    def __init__(self, group: str, channel_layer=None):
        self.group = group
        self.channel_layer = channel_layer
        self.channel: str | None = None
        self._pending: list[Any] = []

    async def open(self) -> GroupSubscription:
        if self.channel is None:
            self.channel_layer = self.channel_layer or get_channel_layer()
            self.channel = await self.channel_layer.new_channel()
            await self.channel_layer.group_add(self.group, self.channel)
            self._pending.extend(await self.initial())
        return self

    async def close(self) -> None:
        if self.channel is not None:
            await self.channel_layer.group_discard(self.group, self.channel)
            self.channel = None

    async def __aenter__(self):
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def __aiter__(self):
        return self

    async def __anext__(self):
        await self.open()
        while True:
            if self._pending:
                return self._pending.pop(0)
            timeout = self.next_timeout()
            try:
                event = await asyncio.wait_for(
                    self.channel_layer.receive(self.channel), timeout
                )
            except asyncio.TimeoutError:
                try:
                    return self.on_timeout()
                except _Skip:
                    continue
            try:
                return self.transform(event)
            except _Skip:
                continue

    async def initial(self) -> list[Any]:
        """Values to yield before any event arrives."""
        return []

    def next_timeout(self) -> float | None:
        return None

    def on_timeout(self):
        raise _Skip

    def transform(self, event: dict[str, Any]):
        return event


class MessageSubscription(GroupSubscription):
    """
    Yields serialized messages (created or updated) of one conversation.

    Messages come out in sequence order. Each send publishes from its own
    after-commit callback, so a later sequence can reach the channel layer
    first; such a message is held until the earlier ones arrive. If a gap
    stays open for MESSAGE_CONFIG.REORDER_WINDOW_SECONDS (a publish was
    lost) the held messages are released in order and the gap is skipped.
    Updates to messages already yielded pass straight through.
    """

    def __init__(self, conversation_id: str, channel_layer=None):
        super().__init__(conversation_group(conversation_id), channel_layer)
        self.conversation_id = conversation_id
        self.next_sequence = 1
        self._held: dict[int, dict[str, Any]] = {}
        self._held_since: float | None = None

    async def initial(self):
        from chat.services import ConversationService

        last_sequence = await sync_to_async(ConversationService.get_last_sequence)(
            self.conversation_id
        )
        self.next_sequence = last_sequence + 1
        return []

    def next_timeout(self):
        if not self._held:
            return None
        elapsed = time.monotonic() - self._held_since
        return max(MESSAGE_CONFIG.REORDER_WINDOW_SECONDS - elapsed, 0.0)

    def on_timeout(self):
        if not self._held:
            raise _Skip
        first_held = min(self._held)
        logger.warning(
            "Sequences %s-%s of %s never arrived, skipping",
            self.next_sequence,
            first_held - 1,
            self.conversation_id,
        )
        self.next_sequence = first_held
        return self._release()

    def transform(self, event):
        if event.get("type") != MESSAGE_EVENT:
            raise _Skip
        message = event["message"]
        sequence = message.get("sequence")
        if sequence is None or sequence < self.next_sequence:
            return message

        # A held snapshot is only replaced by a newer one
        if sequence not in self._held or event.get("event") != "created":
            self._held[sequence] = message
        if self._held_since is None:
            self._held_since = time.monotonic()
        if self.next_sequence not in self._held:
            raise _Skip
        return self._release()

    def _release(self):
        released = []
        while self.next_sequence in self._held:
            released.append(self._held.pop(self.next_sequence))
            self.next_sequence += 1
        self._held_since = time.monotonic() if self._held else None
        self._pending.extend(released[1:])
        return released[0]


class TypingWatch(GroupSubscription):
    """
    Yields whether a user is typing in a conversation.

    Emits the current value first, then every change. A True is followed
    by a False once its expiry passes without a refresh.
    """

    def __init__(self, conversation_id: str, user_id, channel_layer=None):
        super().__init__(conversation_group(conversation_id), channel_layer)
        self.conversation_id = conversation_id
        self.user_id = user_id
        self.state: TypingState | None = None
        self.last_value: bool | None = None

    async def initial(self):
        from chat.services import TypingService

        self.state = await sync_to_async(TypingService.get_typing)(
            self.conversation_id, self.user_id
        )
        return [self._emit()]

    def _emit(self) -> bool:
        value = self.state.is_active() if self.state else False
        self.last_value = value
        return value

    def next_timeout(self):
        if self.last_value and self.state is not None:
            return max(self.state.seconds_remaining(), 0.0)
        return None

    def on_timeout(self):
        if self.last_value is False:
            raise _Skip
        value = self._emit()
        if value:
            raise _Skip
        return value

    def transform(self, event):
        if event.get("type") != TYPING_EVENT:
            raise _Skip
        state = TypingState.from_dict(event["typing"])
        if str(state.user_id) != str(self.user_id):
            raise _Skip
        self.state = state
        previous = self.last_value
        value = self._emit()
        if value == previous:
            raise _Skip
        return value


class PresenceWatch(GroupSubscription):
    """
    Yields PresenceState updates for one user.

    Emits the current state first. An online state is followed by an
    offline one if no heartbeat arrives within the freshness window.
    """

    def __init__(self, user_id, channel_layer=None):
        super().__init__(presence_group(user_id), channel_layer)
        self.user_id = user_id
        self.state: PresenceState | None = None

    async def initial(self):
        from chat.services import PresenceService

        result = await sync_to_async(PresenceService.get_presence)(self.user_id)
        self.state = result.data if result else PresenceState.offline(self.user_id)
        return [self.state]

    def next_timeout(self):
        if self.state is None or not self.state.is_active():
            return None
        expires = self.state.last_seen + timedelta(
            seconds=PRESENCE_CONFIG.PRESENCE_TTL_SECONDS
        )
        return max((expires - timezone.now()).total_seconds(), 0.0)

    def on_timeout(self):
        if self.state is None or self.state.is_active():
            raise _Skip
        self.state = self.state.as_of()
        return self.state

    def transform(self, event):
        if event.get("type") != PRESENCE_EVENT:
            raise _Skip
        self.state = PresenceState.from_dict(event["presence"]).as_of()
        return self.state


def subscribe(conversation_id: str, channel_layer=None) -> MessageSubscription:
    """Stream of message snapshots published to a conversation."""
    return MessageSubscription(conversation_id, channel_layer)


def watch_typing(conversation_id: str, user_id, channel_layer=None) -> TypingWatch:
    """Stream of booleans: is user_id typing in conversation_id."""
    return TypingWatch(conversation_id, user_id, channel_layer)


def watch_presence(user_id, channel_layer=None) -> PresenceWatch:
    """Stream of PresenceState updates for user_id."""
    return PresenceWatch(user_id, channel_layer)
