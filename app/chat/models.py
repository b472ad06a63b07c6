"""
Direct messaging models.

This module defines the persisted state of two-party conversations:
- Conversation: the pair container with its last-message snapshot
- Message: an entry in a conversation's append-only log
- MessageReaction: at most one reaction per user per message

Presence and typing state are ephemeral and live in the cache; see
chat.types.

Design Decisions:
    - Conversation ids are deterministic ("<lower>_<higher>" of the two
      user ids sorted as strings), so either participant can address the
      conversation before it exists. It is created by the first send.
    - Messages are never removed. Soft deletion keeps id, sender, timestamp
      and sequence so ordering and unread counts stay stable.
    - Delivery status only moves forward (sent < delivered < read). Updates
      are compare-and-swap UPDATEs in the service layer.
    - Reply targets are copied into the reply, not referenced by FK. Editing
      or deleting the parent does not rewrite existing replies.
    - sequence is assigned under a lock on the conversation row and is the
      order subscribers receive messages in.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import Q

from chat.constants import ATTACHMENT_CONFIG, MESSAGE_CONFIG
from core.model_mixins import SoftDeleteMixin
from core.models import BaseModel

if TYPE_CHECKING:
    from authentication.models import User


class MessageType(models.TextChoices):
    """
    Type of message content.

    TEXT: Free text, the only editable type and the only one crisis-scanned
    STICKER: Reference to a sticker asset
    AUDIO: Voice note with a display duration
    IMAGE: Uploaded image
    FILE: Arbitrary uploaded file with its original name and size
    """

    TEXT = "text", "Text"
    STICKER = "sticker", "Sticker"
    AUDIO = "audio", "Voice Message"
    IMAGE = "image", "Image"
    FILE = "file", "File"


class MessageStatus(models.TextChoices):
    """
    Delivery state of a message as seen by its receiver.

    Pending and failed states exist only on the sending client; a row in
    the database has always been sent.
    """

    SENT = "sent", "Sent"
    DELIVERED = "delivered", "Delivered"
    READ = "read", "Read"


# Forward-only ordering of MessageStatus values
STATUS_RANK = {
    MessageStatus.SENT: 0,
    MessageStatus.DELIVERED: 1,
    MessageStatus.READ: 2,
}


def statuses_before(status: str) -> list[str]:
    """Return the statuses a message may move forward from to reach status."""
    rank = STATUS_RANK[MessageStatus(status)]
    return [value for value, value_rank in STATUS_RANK.items() if value_rank < rank]


class ReactionType(models.TextChoices):
    """Reaction vocabulary offered by the clients."""

    LIKE = "like", "Like"
    LOVE = "love", "Love"
    CARE = "care", "Care"
    SUPPORT = "support", "Support"
    SAD = "sad", "Sad"
    ANGRY = "angry", "Angry"


def build_conversation_id(user_a_id, user_b_id) -> str:
    """
    Derive the conversation id for a pair of users.

    Order-independent: both participants compute the same id.
    Ids are compared as strings, so "12" sorts before "7".
    """
    return "_".join(sorted([str(user_a_id), str(user_b_id)]))


def parse_conversation_id(conversation_id: str) -> tuple[str, str] | None:
    """
    Split a conversation id into its two participant ids.

    Returns None when the id is not a well-formed canonical pair.
    """
    parts = str(conversation_id).split("_")
    if len(parts) != 2 or not all(parts) or parts[0] == parts[1]:
        return None
    if build_conversation_id(*parts) != conversation_id:
        return None
    return parts[0], parts[1]


class Conversation(BaseModel):
    """
    A two-party direct conversation.

    Fields:
        id: Deterministic pair id, see build_conversation_id()
        user_lower: Participant whose id sorts first
        user_higher: Participant whose id sorts second
        last_message_*: Snapshot of the latest message for list previews,
            rewritten on every mutation of that message
        last_sequence: Highest sequence assigned so far

    Relationships:
        messages: The conversation's log
    """

    id = models.CharField(
        primary_key=True,
        max_length=64,
        editable=False,
        help_text="Deterministic id derived from the two participant ids",
    )

    user_lower = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="conversations_as_lower",
        help_text="Participant whose id sorts first",
    )
    user_higher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="conversations_as_higher",
        help_text="Participant whose id sorts second",
    )

    last_message_id = models.BigIntegerField(
        null=True,
        blank=True,
        help_text="Id of the message the snapshot was taken from",
    )
    last_message_content = models.TextField(
        blank=True,
        default="",
        help_text="Display text of the latest message",
    )
    last_message_type = models.CharField(
        max_length=10,
        choices=MessageType.choices,
        blank=True,
        default="",
    )
    last_message_sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    last_message_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Timestamp of most recent message (for sorting conversation lists)",
    )

    last_sequence = models.PositiveBigIntegerField(
        default=0,
        help_text="Highest message sequence assigned in this conversation",
    )

    class Meta:
        db_table = "chat_conversation"
        ordering = ["-last_message_at", "-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["user_lower", "user_higher"],
                name="chat_conv_unique_pair",
            ),
        ]
        indexes = [
            models.Index(
                fields=["user_lower", "-last_message_at"],
                name="chat_conv_lower_recent_idx",
            ),
            models.Index(
                fields=["user_higher", "-last_message_at"],
                name="chat_conv_higher_recent_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"Direct({self.pk})"

    @property
    def participant_ids(self) -> tuple[int, int]:
        return (self.user_lower_id, self.user_higher_id)

    def has_participant(self, user: User | int) -> bool:
        user_id = getattr(user, "pk", user)
        return user_id in self.participant_ids

    def other_participant(self, user: User | int) -> User:
        """Return the participant who is not user."""
        user_id = getattr(user, "pk", user)
        if user_id == self.user_lower_id:
            return self.user_higher
        return self.user_lower

    def apply_snapshot(self, message: Message) -> None:
        """Copy message into the last-message snapshot fields (unsaved)."""
        self.last_message_id = message.pk
        self.last_message_content = message.get_display_content()
        self.last_message_type = message.message_type
        self.last_message_sender_id = message.sender_id
        self.last_message_at = message.created_at


class Message(SoftDeleteMixin, BaseModel):
    """
    A message within a direct conversation.

    created_at is the message timestamp and never changes after insert.

    Soft Delete Behavior:
        When is_deleted=True:
        - Content is preserved in database for audit
        - API returns sender info but replaces content with
          MESSAGE_CONFIG.DELETED_PLACEHOLDER
        - Message still counts toward unread count
        - Message is excluded from search

    Status vs flags:
        status tracks delivery (sent, delivered, read) and only moves
        forward. is_edited and is_deleted are independent of it.

    Fields:
        conversation: Conversation this message belongs to
        sender / receiver: The two participants, in send direction
        sequence: Position in the conversation log (1-based)
        message_type: See MessageType
        content: Text, or the display label for non-text types
        audio_url, duration, image_url, file_url, file_name, file_size,
        sticker_url: Type-specific payload
        reply_to_*: Snapshot of the message being replied to
        is_crisis: Set at creation when the crisis scanner matched
        client_id: Optional sender-generated token for dedupe/reconciliation
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Conversation this message belongs to",
    )
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="sent_direct_messages",
    )
    receiver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="received_direct_messages",
    )

    sequence = models.PositiveBigIntegerField(
        help_text="Assignment order within the conversation",
    )

    message_type = models.CharField(
        max_length=10,
        choices=MessageType.choices,
        default=MessageType.TEXT,
        db_index=True,
    )
    content = models.TextField(
        blank=True,
        default="",
        help_text="Message text, or a display label for attachments and stickers",
    )

    # Type-specific payload
    audio_url = models.URLField(max_length=1024, blank=True, default="")
    duration = models.CharField(
        max_length=16,
        blank=True,
        default="",
        help_text='Voice note length as displayed, e.g. "0:45"',
    )
    image_url = models.URLField(max_length=1024, blank=True, default="")
    file_url = models.URLField(max_length=1024, blank=True, default="")
    file_name = models.CharField(
        max_length=ATTACHMENT_CONFIG.MAX_FILE_NAME_LENGTH, blank=True, default=""
    )
    file_size = models.PositiveBigIntegerField(null=True, blank=True)
    sticker_url = models.URLField(max_length=1024, blank=True, default="")

    # Delivery tracking
    status = models.CharField(
        max_length=10,
        choices=MessageStatus.choices,
        default=MessageStatus.SENT,
        db_index=True,
    )
    is_read = models.BooleanField(default=False)
    delivered_at = models.DateTimeField(null=True, blank=True)
    read_at = models.DateTimeField(null=True, blank=True)

    is_edited = models.BooleanField(default=False)
    edited_at = models.DateTimeField(null=True, blank=True)

    # Reply snapshot
    reply_to_message_id = models.BigIntegerField(null=True, blank=True)
    reply_to_content = models.TextField(blank=True, default="")
    reply_to_sender_name = models.CharField(max_length=150, blank=True, default="")
    reply_to_type = models.CharField(
        max_length=10, choices=MessageType.choices, blank=True, default=""
    )

    is_crisis = models.BooleanField(default=False, db_index=True)

    client_id = models.CharField(
        max_length=MESSAGE_CONFIG.MAX_CLIENT_ID_LENGTH,
        blank=True,
        default="",
        help_text="Sender-generated token echoed back to reconcile optimistic state",
    )

    class Meta:
        db_table = "chat_message"
        ordering = ["sequence"]
        constraints = [
            models.UniqueConstraint(
                fields=["conversation", "sequence"],
                name="chat_msg_unique_sequence",
            ),
            models.UniqueConstraint(
                fields=["sender", "client_id"],
                condition=~Q(client_id=""),
                name="chat_msg_unique_client_id",
            ),
        ]
        indexes = [
            # Unread counts per receiver
            models.Index(
                fields=["receiver", "is_read"],
                name="chat_msg_receiver_unread_idx",
            ),
            # User's messages
            models.Index(
                fields=["sender", "-created_at"],
                name="chat_msg_sender_idx",
            ),
        ]

    def __str__(self) -> str:
        content_preview = (
            self.content[:50] + "..." if len(self.content) > 50 else self.content
        )
        deleted_str = " [deleted]" if self.is_deleted else ""
        return f"User {self.sender_id}: {content_preview}{deleted_str}"

    @property
    def timestamp(self):
        return self.created_at

    @property
    def is_text_message(self) -> bool:
        return self.message_type == MessageType.TEXT

    @property
    def is_reply(self) -> bool:
        return self.reply_to_message_id is not None

    def get_display_content(self) -> str:
        """
        Get content suitable for display.

        Returns:
            - The deleted placeholder if soft deleted
            - Original content otherwise
        """
        if self.is_deleted:
            return MESSAGE_CONFIG.DELETED_PLACEHOLDER
        return self.content

    def get_reply_snapshot(self) -> dict | None:
        if not self.is_reply:
            return None
        return {
            "message_id": self.reply_to_message_id,
            "content": self.reply_to_content,
            "sender_name": self.reply_to_sender_name,
            "type": self.reply_to_type,
        }


class MessageReaction(BaseModel):
    """
    A user's reaction to a message.

    A user holds at most one reaction per message; choosing another type
    replaces it.
    """

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="reactions",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="message_reactions",
    )
    reaction_type = models.CharField(
        max_length=10,
        choices=ReactionType.choices,
    )

    class Meta:
        db_table = "chat_message_reaction"
        ordering = ["created_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["message", "user"],
                name="chat_reaction_one_per_user",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.user_id} {self.reaction_type} on {self.message_id}"
