"""
Permission classes for chat API.

This module provides DRF permission classes for the chat system:
- IsConversationParticipant: User is one of the two participants
- IsMessageAuthor: User sent the message (edit, delete)
- IsMessageReceiver: User received the message (delivered, read receipts)

Design Decisions:
    - Participation is decided from the conversation id itself, so a user
      can address a conversation before its first message exists
    - Object permissions work on Conversation and Message instances
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import permissions

from chat.models import Conversation, Message
from chat.services import ConversationService

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView


class IsConversationParticipant(permissions.BasePermission):
    """
    Allows access only to the two participants of the conversation.

    View-level check uses the conversation_pk URL kwarg when present
    (nested message routes); object-level check uses the object.
    """

    message = "You are not a participant in this conversation."

    def has_permission(self, request: Request, view: APIView) -> bool:
        if not request.user.is_authenticated:
            return False
        conversation_id = view.kwargs.get("conversation_pk")
        if conversation_id is None:
            return True
        return ConversationService.is_participant(conversation_id, request.user)

    def has_object_permission(
        self, request: Request, view: APIView, obj: Conversation | Message
    ) -> bool:
        if isinstance(obj, Message):
            return request.user.pk in (obj.sender_id, obj.receiver_id)
        return obj.has_participant(request.user)


class IsMessageAuthor(permissions.BasePermission):
    """Allows changes only to the sender of the message."""

    message = "You can only change your own messages."

    def has_object_permission(self, request: Request, view: APIView, obj: Message) -> bool:
        return obj.sender_id == request.user.pk


class IsMessageReceiver(permissions.BasePermission):
    """Allows delivery and read acknowledgements only from the receiver."""

    message = "Only the receiver can acknowledge this message."

    def has_object_permission(self, request: Request, view: APIView, obj: Message) -> bool:
        return obj.receiver_id == request.user.pk
