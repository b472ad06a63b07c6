"""
Serializers for chat API and real-time payloads.

Serializer Hierarchy:
    MessageSerializer: Message with soft-delete handling (also the
        WebSocket/channel layer payload, see chat.broadcast)
    MessageCreateSerializer: Send new message (JSON or multipart)
    MessageEditSerializer: Replace text content
    ReactionSerializer / ReactionInputSerializer: Reactions

    ConversationListSerializer: Directory entry with preview and unread count
    ConversationResolveSerializer: Pair -> conversation id

    TypingSerializer, HeartbeatSerializer, PresenceSerializer,
    BulkPresenceSerializer: Ephemeral state

Design Decisions:
    - Read and write serializers are separate for clarity
    - Soft-deleted messages keep identity fields but lose content and
      attachment URLs in every representation
    - is_crisis is never serialized; it is for moderation only
"""

from __future__ import annotations

from rest_framework import serializers

from authentication.serializers import UserSerializer
from chat.constants import ATTACHMENT_CONFIG, MESSAGE_CONFIG
from chat.models import Conversation, Message, MessageReaction, MessageType, ReactionType
from chat.types import MessageDraft

_PAYLOAD_FIELDS = (
    "audio_url",
    "duration",
    "image_url",
    "file_url",
    "file_name",
    "file_size",
    "sticker_url",
)


# =============================================================================
# Message Serializers
# =============================================================================


class ReactionSerializer(serializers.ModelSerializer):
    """A single user's reaction."""

    user_id = serializers.IntegerField(read_only=True)
    timestamp = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = MessageReaction
        fields = ["user_id", "reaction_type", "timestamp"]
        read_only_fields = fields


class ReplySnapshotSerializer(serializers.Serializer):
    message_id = serializers.IntegerField()
    content = serializers.CharField()
    sender_name = serializers.CharField()
    type = serializers.CharField()


class MessageSerializer(serializers.ModelSerializer):
    """
    Full message representation.

    Handles soft-deleted message content replacement: content becomes the
    deleted placeholder and attachment fields are blanked.
    """

    conversation_id = serializers.CharField(read_only=True)
    sender_id = serializers.IntegerField(read_only=True)
    receiver_id = serializers.IntegerField(read_only=True)
    sender_name = serializers.SerializerMethodField()
    content = serializers.CharField(source="get_display_content", read_only=True)
    timestamp = serializers.DateTimeField(source="created_at", read_only=True)
    reply_to = serializers.SerializerMethodField()
    reactions = ReactionSerializer(many=True, read_only=True)

    class Meta:
        model = Message
        fields = [
            "id",
            "conversation_id",
            "sequence",
            "sender_id",
            "sender_name",
            "receiver_id",
            "message_type",
            "content",
            *_PAYLOAD_FIELDS,
            "timestamp",
            "status",
            "is_read",
            "delivered_at",
            "read_at",
            "is_edited",
            "edited_at",
            "is_deleted",
            "deleted_at",
            "reply_to",
            "reactions",
            "client_id",
        ]
        read_only_fields = fields

    def get_sender_name(self, obj: Message) -> str:
        return obj.sender.get_full_name()

    def get_reply_to(self, obj: Message) -> dict | None:
        snapshot = obj.get_reply_snapshot()
        if snapshot is None:
            return None
        return ReplySnapshotSerializer(snapshot).data

    def to_representation(self, instance: Message) -> dict:
        data = super().to_representation(instance)
        if instance.is_deleted:
            for field in _PAYLOAD_FIELDS:
                data[field] = None if field == "file_size" else ""
        return data


class MessageCreateSerializer(serializers.Serializer):
    """
    Input for sending a message.

    Attachments arrive either as a URL the client already uploaded to, or
    as a multipart "file" the server uploads.
    """

    message_type = serializers.ChoiceField(choices=MessageType.choices, default=MessageType.TEXT)
    content = serializers.CharField(
        required=False,
        allow_blank=True,
        default="",
        trim_whitespace=False,
        max_length=MESSAGE_CONFIG.MAX_CONTENT_LENGTH,
    )
    audio_url = serializers.URLField(required=False, allow_blank=True, default="")
    duration = serializers.CharField(required=False, allow_blank=True, default="", max_length=16)
    image_url = serializers.URLField(required=False, allow_blank=True, default="")
    file_url = serializers.URLField(required=False, allow_blank=True, default="")
    file_name = serializers.CharField(
        required=False,
        allow_blank=True,
        default="",
        max_length=ATTACHMENT_CONFIG.MAX_FILE_NAME_LENGTH,
    )
    file_size = serializers.IntegerField(required=False, allow_null=True, default=None, min_value=0)
    sticker_url = serializers.URLField(required=False, allow_blank=True, default="")
    file = serializers.FileField(required=False, allow_null=True, default=None)
    reply_to_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    client_id = serializers.CharField(
        required=False,
        allow_blank=True,
        default="",
        max_length=MESSAGE_CONFIG.MAX_CLIENT_ID_LENGTH,
    )

    def to_draft(self, sender_id, receiver_id, conversation_id: str | None = None) -> MessageDraft:
        data = dict(self.validated_data)
        blob = data.pop("file", None)
        return MessageDraft(
            sender_id=sender_id,
            receiver_id=receiver_id,
            conversation_id=conversation_id,
            blob=blob,
            **data,
        )


class MessageEditSerializer(serializers.Serializer):
    content = serializers.CharField(max_length=MESSAGE_CONFIG.MAX_CONTENT_LENGTH)


class ReactionInputSerializer(serializers.Serializer):
    reaction_type = serializers.ChoiceField(choices=ReactionType.choices)


class MessageReferenceSerializer(serializers.Serializer):
    """Message id carried by WebSocket receipt and reaction frames."""

    message_id = serializers.IntegerField(min_value=1)


class ReactionSummarySerializer(serializers.Serializer):
    reaction_type = serializers.CharField()
    count = serializers.IntegerField()
    user_ids = serializers.ListField(child=serializers.IntegerField())


# =============================================================================
# Conversation Serializers
# =============================================================================


class ConversationListSerializer(serializers.ModelSerializer):
    """
    Directory entry for the requesting user.

    Expects the queryset from ConversationService.list_conversations
    (unread_count annotation) and the request in context.
    """

    other_participant = serializers.SerializerMethodField()
    last_message = serializers.SerializerMethodField()
    unread_count = serializers.IntegerField(read_only=True, default=0)

    class Meta:
        model = Conversation
        fields = [
            "id",
            "other_participant",
            "last_message",
            "unread_count",
            "last_message_at",
            "created_at",
        ]
        read_only_fields = fields

    def get_other_participant(self, obj: Conversation) -> dict:
        user = self.context["request"].user
        return UserSerializer(obj.other_participant(user)).data

    def get_last_message(self, obj: Conversation) -> dict | None:
        if obj.last_message_id is None:
            return None
        return {
            "id": obj.last_message_id,
            "content": obj.last_message_content,
            "message_type": obj.last_message_type,
            "sender_id": obj.last_message_sender_id,
            "timestamp": serializers.DateTimeField().to_representation(obj.last_message_at),
        }


class ConversationResolveSerializer(serializers.Serializer):
    user_id = serializers.IntegerField()


# =============================================================================
# Presence & Typing Serializers
# =============================================================================


class TypingSerializer(serializers.Serializer):
    is_typing = serializers.BooleanField()


class TypingStateSerializer(serializers.Serializer):
    conversation_id = serializers.CharField()
    user_id = serializers.IntegerField()
    is_typing = serializers.BooleanField()
    expires_at = serializers.DateTimeField(allow_null=True)


class HeartbeatSerializer(serializers.Serializer):
    is_online = serializers.BooleanField(default=True)
    conversation_id = serializers.CharField(required=False, allow_null=True, default=None, max_length=64)


class PresenceSerializer(serializers.Serializer):
    user_id = serializers.IntegerField()
    is_online = serializers.BooleanField()
    last_seen = serializers.DateTimeField(allow_null=True)
    current_conversation_id = serializers.CharField(allow_null=True)


class BulkPresenceSerializer(serializers.Serializer):
    user_ids = serializers.ListField(
        child=serializers.IntegerField(),
        allow_empty=False,
        max_length=100,
    )
