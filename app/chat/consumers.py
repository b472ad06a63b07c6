"""
WebSocket consumers for the chat application.

This module implements the WebSocket consumers for real-time chat,
handling connection management and delegating every write to the chat
service layer.

Consumers:
    ChatConsumer: One conversation (messages, typing, receipts, reactions)
    PresenceConsumer: One user's presence

Authentication:
    Users are authenticated via JWT token passed as query parameter or
    subprotocol. chat.middleware.JWTAuthMiddleware attaches the user to
    self.scope["user"].

Channel Groups:
    chat_<conversation_id>: message and typing events (chat.broadcast)
    presence_<user_id>: presence events

Message Types (from client, ChatConsumer):
    - message: Send a new message to the conversation
    - typing: Start or stop the typing indicator
    - read: Mark one message, or the whole conversation, as read
    - delivered: Acknowledge delivery of a message
    - reaction: Set, switch or remove a reaction
    - heartbeat: Refresh presence

Message Types (to client):
    - message: Message created or updated (carries event and sequence)
    - typing: The other participant's typing indicator
    - presence: Presence update (PresenceConsumer)
    - ack: Result of a client request that produced no broadcast
    - error: Error response

Close Codes:
    4001: Not authenticated
    4003: Not a participant
"""

from __future__ import annotations

import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.contrib.auth.models import AnonymousUser

from chat.broadcast import conversation_group, presence_group
from chat.exceptions import MessageNotFoundError, MessageValidationError
from chat.middleware import JWT_SUBPROTOCOL
from chat.serializers import (
    HeartbeatSerializer,
    MessageCreateSerializer,
    MessageReferenceSerializer,
    PresenceSerializer,
    ReactionInputSerializer,
)
from chat.services import (
    ConversationService,
    MessageService,
    PresenceService,
    ReactionService,
    TypingService,
)
from core.exceptions import BaseApplicationError

logger = logging.getLogger(__name__)


class AuthenticatedJsonConsumer(AsyncJsonWebsocketConsumer):
    """Shared connection handling for chat consumers."""

    group_name: str | None = None

    @property
    def user(self):
        return self.scope.get("user")

    def is_authenticated(self) -> bool:
        return bool(self.user) and not isinstance(self.user, AnonymousUser)

    async def join(self, group_name: str) -> None:
        self.group_name = group_name
        await self.channel_layer.group_add(group_name, self.channel_name)

        if JWT_SUBPROTOCOL in self.scope.get("subprotocols", []):
            await self.accept(subprotocol=JWT_SUBPROTOCOL)
        else:
            await self.accept()

    async def disconnect(self, close_code):
        if self.group_name:
            await self.channel_layer.group_discard(self.group_name, self.channel_name)
            user_id = self.user.pk if self.is_authenticated() else "anonymous"
            logger.info(f"User {user_id} left {self.group_name} ({close_code})")

    async def send_error(self, error: BaseApplicationError | dict) -> None:
        payload = error.to_dict() if isinstance(error, BaseApplicationError) else error
        await self.send_json({"type": "error", **payload})


class ChatConsumer(AuthenticatedJsonConsumer):
    """
    WebSocket consumer for one conversation.

    Handles:
        - Connection authentication and authorization
        - Joining/leaving the conversation channel group
        - Sending messages, receipts, reactions and typing through services
        - Relaying message and typing events to the client

    Messages are never broadcast from here: the service layer publishes
    after commit and the event comes back through chat_message.

    Attributes:
        conversation_id: Pair id of the connected conversation
        receiver_id: The other participant's id
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.conversation_id: str | None = None
        self.receiver_id: str | None = None

    async def connect(self):
        """
        Handle WebSocket connection.

        Validates:
            1. User is authenticated
            2. User is one of the two users the conversation id names

        The conversation row does not need to exist yet.
        """
        self.conversation_id = self.scope["url_route"]["kwargs"]["conversation_id"]

        if not self.is_authenticated():
            logger.warning(
                f"Rejected unauthenticated connection to conversation {self.conversation_id}"
            )
            await self.close(code=4001)
            return

        if not ConversationService.is_participant(self.conversation_id, self.user):
            logger.warning(
                f"User {self.user.pk} is not a participant in "
                f"conversation {self.conversation_id}"
            )
            await self.close(code=4003)
            return

        self.receiver_id = next(
            user_id
            for user_id in ConversationService.participant_ids(self.conversation_id)
            if user_id != str(self.user.pk)
        )

        await self.join(conversation_group(self.conversation_id))
        await database_sync_to_async(PresenceService.heartbeat)(
            self.user.pk, conversation_id=self.conversation_id
        )
        logger.info(f"User {self.user.pk} connected to conversation {self.conversation_id}")

    async def receive_json(self, content, **kwargs):
        """
        Handle incoming WebSocket messages.

        Expected message format:
            {"type": "message", "content": "Hello!", "client_id": "c-1"}
            {"type": "message", "message_type": "sticker", "sticker_url": "https://..."}
            {"type": "typing", "is_typing": true}
            {"type": "read", "message_id": 42}
            {"type": "read"}
            {"type": "delivered", "message_id": 42}
            {"type": "reaction", "message_id": 42, "reaction_type": "love"}
            {"type": "reaction", "message_id": 42, "reaction_type": null}
            {"type": "heartbeat"}
        """
        handlers = {
            "message": self._handle_message,
            "typing": self._handle_typing,
            "read": self._handle_read,
            "delivered": self._handle_delivered,
            "reaction": self._handle_reaction,
            "heartbeat": self._handle_heartbeat,
        }
        message_type = content.get("type")
        handler = handlers.get(message_type)
        if handler is None:
            await self.send_error(
                {
                    "error": f"Unknown message type: {message_type}",
                    "error_code": "UNKNOWN_TYPE",
                }
            )
            return

        try:
            await handler(content)
        except BaseApplicationError as e:
            logger.info(
                f"Request {message_type} from user {self.user.pk} in "
                f"{self.conversation_id} failed: {e.error_code}"
            )
            await self.send_error(e)

    async def _handle_message(self, content):
        serializer = MessageCreateSerializer(data=content)
        if not serializer.is_valid():
            await self.send_error(
                {
                    "error": "Invalid message",
                    "error_code": "MESSAGE_VALIDATION_ERROR",
                    "details": serializer.errors,
                }
            )
            return

        draft = serializer.to_draft(self.user.pk, self.receiver_id, self.conversation_id)
        message = await database_sync_to_async(MessageService.send_message)(draft)
        await self.send_json(
            {
                "type": "ack",
                "action": "message",
                "message_id": message.pk,
                "sequence": message.sequence,
                "client_id": message.client_id,
            }
        )

    async def _handle_typing(self, content):
        result = await database_sync_to_async(TypingService.set_typing)(
            self.conversation_id,
            self.user.pk,
            bool(content.get("is_typing", False)),
        )
        if not result.success:
            await self.send_error({"error": result.error, "error_code": result.error_code})

    async def _handle_read(self, content):
        message_id = content.get("message_id")
        if message_id is None:
            changed = await database_sync_to_async(MessageService.mark_conversation_read)(
                self.conversation_id, self.user
            )
            await self.send_json({"type": "ack", "action": "read", "marked_read": changed})
            return

        message_id = await self._check_message(content)
        await database_sync_to_async(MessageService.mark_read)(message_id, user=self.user)

    async def _handle_delivered(self, content):
        message_id = await self._check_message(content)
        await database_sync_to_async(MessageService.mark_delivered)(message_id, user=self.user)

    async def _handle_reaction(self, content):
        message_id = await self._check_message(content)

        if content.get("reaction_type") is None:
            await database_sync_to_async(ReactionService.remove_reaction)(message_id, self.user)
            return

        serializer = ReactionInputSerializer(data=content)
        if not serializer.is_valid():
            await self.send_error(
                {
                    "error": "Invalid reaction",
                    "error_code": "INVALID_REACTION",
                    "details": serializer.errors,
                }
            )
            return
        await database_sync_to_async(ReactionService.add_reaction)(
            message_id, self.user, serializer.validated_data["reaction_type"]
        )

    async def _handle_heartbeat(self, content):
        await database_sync_to_async(PresenceService.heartbeat)(
            self.user.pk, conversation_id=self.conversation_id
        )

    async def _check_message(self, content) -> int:
        """
        Return the frame's message_id once it names a message in this conversation.

        Raises:
            MessageValidationError: message_id missing or not a positive integer
            MessageNotFoundError: No such message in this conversation
        """
        serializer = MessageReferenceSerializer(data=content)
        if not serializer.is_valid():
            raise MessageValidationError(
                "Invalid message id",
                details=serializer.errors,
            )
        message_id = serializer.validated_data["message_id"]
        conversation_id = await database_sync_to_async(self._conversation_of)(message_id)
        if conversation_id != self.conversation_id:
            raise MessageNotFoundError(
                "Message not found",
                details={"message_id": message_id},
            )
        return message_id

    @staticmethod
    def _conversation_of(message_id: int) -> str:
        return MessageService.get_message(message_id).conversation_id

    async def chat_message(self, event):
        """Relay chat.message events published by the message pipeline."""
        await self.send_json(
            {
                "type": "message",
                "event": event["event"],
                "message": event["message"],
            }
        )

    async def chat_typing(self, event):
        """Relay the other participant's chat.typing events."""
        typing = event["typing"]
        if str(typing["user_id"]) == str(self.user.pk):
            return
        await self.send_json({"type": "typing", **typing})


class PresenceConsumer(AuthenticatedJsonConsumer):
    """
    WebSocket consumer for watching one user's presence.

    Sends the current state on connect, then every presence.update event.
    Clients may also send {"type": "heartbeat"} to refresh their own
    presence over the same socket.
    """

    async def connect(self):
        if not self.is_authenticated():
            await self.close(code=4001)
            return

        self.watched_user_id = self.scope["url_route"]["kwargs"]["user_id"]
        await self.join(presence_group(self.watched_user_id))

        result = await database_sync_to_async(PresenceService.get_presence)(self.watched_user_id)
        if result.success:
            await self.send_json({"type": "presence", **PresenceSerializer(result.data).data})

    async def receive_json(self, content, **kwargs):
        if content.get("type") != "heartbeat":
            await self.send_error(
                {
                    "error": f"Unknown message type: {content.get('type')}",
                    "error_code": "UNKNOWN_TYPE",
                }
            )
            return

        serializer = HeartbeatSerializer(data=content)
        if not serializer.is_valid():
            await self.send_error(
                {
                    "error": "Invalid heartbeat",
                    "error_code": "INVALID_HEARTBEAT",
                    "details": serializer.errors,
                }
            )
            return
        await database_sync_to_async(PresenceService.heartbeat)(
            self.user.pk,
            is_online=serializer.validated_data["is_online"],
            conversation_id=serializer.validated_data["conversation_id"],
        )

    async def presence_update(self, event):
        await self.send_json({"type": "presence", **event["presence"]})
