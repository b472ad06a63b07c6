"""
Direct messaging service layer.

This module provides the business logic for two-party conversations,
encapsulating every write to the message log and every read of derived
state.

Services:
    ConversationService: Conversation directory (ids, listing, unread counts)
    MessageService: Message pipeline (send, edit, delete, delivery status)
    ReactionService: One reaction per user per message
    MessageSearchService: Substring search within a conversation
    PresenceService: Heartbeat-based online presence (cache only)
    TypingService: Expiring typing indicators (cache only)

Design Principles:
    - Services are stateless (use class methods)
    - Message pipeline failures raise chat.exceptions; nothing is persisted
      when a send fails
    - Presence and typing are best effort: they return ServiceResult and
      never raise on backend failures
    - Real-time events are published after the transaction commits
    - Crisis alerts are detected here and handed to chat.tasks; grading
      and triage happen elsewhere

Usage:
    from chat.services import MessageService
    from chat.types import MessageDraft

    message = MessageService.send_message(
        MessageDraft(sender_id=student.id, receiver_id=psychologist.id, content="Hi")
    )
    MessageService.mark_delivered(message.id)
    MessageService.mark_read(message.id)
"""

from __future__ import annotations

import logging
import math
import re
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import Count, DateTimeField, F, Q, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from chat import broadcast
from chat.constants import (
    ATTACHMENT_CONFIG,
    CRISIS_CONFIG,
    MESSAGE_CONFIG,
    PRESENCE_CONFIG,
    REACTION_CONFIG,
    TYPING_CONFIG,
)
from chat.exceptions import (
    ConcurrencyConflict,
    ConversationNotFoundError,
    ImmutableMessageError,
    MessageNotFoundError,
    MessageValidationError,
)
from chat.models import (
    Conversation,
    Message,
    MessageReaction,
    MessageStatus,
    MessageType,
    ReactionType,
    build_conversation_id,
    parse_conversation_id,
    statuses_before,
)
from chat.scanner import NO_MATCH, CrisisScanResult, scan
from chat.signals import crisis_detected
from chat.tasks import dispatch_crisis_alert
from chat.types import CrisisAlert, MessageDraft, PresenceState, TypingState
from chat.uploader import AttachmentUploader, as_file
from core.exceptions import PermissionDeniedError
from core.services import BaseService, ServiceResult

if TYPE_CHECKING:
    from django.db.models import QuerySet

    from authentication.models import User

logger = logging.getLogger(__name__)


# =============================================================================
# Conversation Directory
# =============================================================================


class ConversationService(BaseService):
    """
    Service for the conversation directory.

    Methods:
        resolve_conversation_id: Deterministic id for a pair of users
        get_or_create_direct: Conversation for a pair, created on demand
        get_conversation: Lookup by id
        list_conversations: A user's conversations with unread counts
        get_messages: A conversation's log in sequence order
        is_participant: Whether a user belongs to a conversation id
        participant_ids: The two user ids encoded in a conversation id
    """

    @staticmethod
    def resolve_conversation_id(user_a_id, user_b_id) -> str:
        """
        Return the conversation id for two users.

        Pure and order-independent; does not touch the database.

        Raises:
            MessageValidationError: Both ids are the same user
        """
        if str(user_a_id) == str(user_b_id):
            raise MessageValidationError(
                "A conversation needs two different users",
                error_code="SAME_USER",
                details={"user_id": str(user_a_id)},
            )
        return build_conversation_id(user_a_id, user_b_id)

    @classmethod
    def get_or_create_direct(cls, user_a: User, user_b: User) -> Conversation:
        """Return the conversation between two users, creating it if needed."""
        conversation_id = cls.resolve_conversation_id(user_a.pk, user_b.pk)
        lower, higher = sorted([user_a, user_b], key=lambda user: str(user.pk))

        conversation, created = Conversation.objects.get_or_create(
            id=conversation_id,
            defaults={"user_lower": lower, "user_higher": higher},
        )
        if created:
            cls.get_logger().info(f"Created conversation {conversation_id}")
        return conversation

    @classmethod
    def get_conversation(cls, conversation_id: str) -> Conversation:
        try:
            return Conversation.objects.select_related(
                "user_lower", "user_higher", "last_message_sender"
            ).get(pk=conversation_id)
        except Conversation.DoesNotExist:
            raise ConversationNotFoundError(
                "Conversation not found",
                details={"conversation_id": conversation_id},
            ) from None

    @staticmethod
    def get_last_sequence(conversation_id: str) -> int:
        """Highest sequence assigned in a conversation, 0 before its first message."""
        last = (
            Conversation.objects.filter(pk=conversation_id)
            .values_list("last_sequence", flat=True)
            .first()
        )
        return last or 0

    @classmethod
    def list_conversations(cls, user: User) -> QuerySet[Conversation]:
        """
        List a user's conversations, most recently active first.

        Each conversation is annotated with unread_count: messages received
        by user that user has not read. Deleted messages still count.
        The other participant is Conversation.other_participant(user).
        """
        return (
            Conversation.objects.filter(Q(user_lower=user) | Q(user_higher=user))
            .select_related("user_lower", "user_higher", "last_message_sender")
            .annotate(
                unread_count=Count(
                    "messages",
                    filter=Q(messages__receiver=user, messages__is_read=False),
                )
            )
            .order_by(F("last_message_at").desc(nulls_last=True), "-created_at")
        )

    @classmethod
    def get_messages(cls, conversation_id: str) -> QuerySet[Message]:
        """Return the full log of a conversation, deleted messages included."""
        conversation = cls.get_conversation(conversation_id)
        return (
            conversation.messages.select_related("sender")
            .prefetch_related("reactions")
            .order_by("sequence")
        )

    @staticmethod
    def is_participant(conversation_id: str, user: User) -> bool:
        """Check membership from the id alone (the conversation may not exist yet)."""
        pair = parse_conversation_id(conversation_id)
        return pair is not None and str(user.pk) in pair

    @staticmethod
    def participant_ids(conversation_id: str) -> tuple[str, str]:
        """
        Return the two participant ids encoded in a conversation id.

        Raises:
            ConversationNotFoundError: Malformed id
        """
        pair = parse_conversation_id(conversation_id)
        if pair is None:
            raise ConversationNotFoundError(
                "Conversation not found",
                details={"conversation_id": conversation_id},
            )
        return pair


# =============================================================================
# Message Pipeline
# =============================================================================


_DURATION_RE = re.compile(ATTACHMENT_CONFIG.DURATION_PATTERN)

# Payload URL field per uploadable message type
_URL_FIELDS = {
    MessageType.AUDIO: "audio_url",
    MessageType.IMAGE: "image_url",
    MessageType.FILE: "file_url",
}

_DEFAULT_LABELS = {
    MessageType.AUDIO: ATTACHMENT_CONFIG.AUDIO_LABEL,
    MessageType.IMAGE: ATTACHMENT_CONFIG.IMAGE_LABEL,
    MessageType.STICKER: ATTACHMENT_CONFIG.STICKER_LABEL,
}


class MessageService(BaseService):
    """
    Service for the message pipeline.

    Methods:
        send_message: Validate, upload, scan, persist and publish a draft
        edit_message: Replace the content of a text message
        delete_message: Soft delete (idempotent)
        mark_delivered / mark_read: Forward-only delivery status
        mark_conversation_read: Read everything received in a conversation
        get_message: Lookup by id
        search: Delegates to MessageSearchService
    """

    uploader_class = AttachmentUploader

    @classmethod
    def send_message(
        cls,
        draft: MessageDraft,
        uploader: AttachmentUploader | None = None,
    ) -> Message:
        """
        Send a message.

        Steps, in order: validate the draft, resolve participants and the
        reply target, upload the attachment if a blob was given, scan text
        for crisis language, then persist under a lock on the conversation
        row. Publishing and crisis alerting happen after commit.

        A draft whose client_id was already used by the same sender returns
        the message created the first time.

        Raises:
            MessageValidationError: Malformed draft (nothing uploaded)
            MessageNotFoundError: Unknown user or reply target
            UploadError: Blob store failure (nothing persisted)
        """
        if draft.client_id:
            existing = cls._find_by_client_id(draft.sender_id, draft.client_id)
            if existing is not None:
                return existing

        fields = cls._validate_draft(draft)
        sender, receiver = cls._get_participants(draft.sender_id, draft.receiver_id)
        conversation_id = build_conversation_id(sender.pk, receiver.pk)
        reply_fields = cls._build_reply_snapshot(conversation_id, draft.reply_to_id)

        message_type = fields["message_type"]
        url_field = _URL_FIELDS.get(message_type)
        if draft.blob is not None and url_field and not fields[url_field]:
            fields[url_field] = (uploader or cls.uploader_class()).upload(
                sender.pk,
                draft.blob,
                message_type,
                file_name=fields["file_name"] or None,
            )

        scan_result = scan(fields["content"]) if message_type == MessageType.TEXT else NO_MATCH

        try:
            with cls.atomic():
                conversation = cls._lock_conversation(sender, receiver)
                conversation.last_sequence += 1
                message = Message.objects.create(
                    conversation=conversation,
                    sender=sender,
                    receiver=receiver,
                    sequence=conversation.last_sequence,
                    is_crisis=scan_result.matched,
                    client_id=draft.client_id,
                    **fields,
                    **reply_fields,
                )
                conversation.apply_snapshot(message)
                conversation.save(
                    update_fields=[
                        "last_sequence",
                        "last_message_id",
                        "last_message_content",
                        "last_message_type",
                        "last_message_sender",
                        "last_message_at",
                        "updated_at",
                    ]
                )

                transaction.on_commit(
                    lambda: broadcast.publish_message(message, "created"), robust=True
                )
                if scan_result:
                    transaction.on_commit(
                        lambda: cls._emit_crisis_alert(message, scan_result), robust=True
                    )
        except IntegrityError:
            # Concurrent retry with the same client_id won the insert
            if draft.client_id:
                existing = cls._find_by_client_id(draft.sender_id, draft.client_id)
                if existing is not None:
                    return existing
            raise

        cls.get_logger().info(
            f"User {sender.pk} sent {message_type} message {message.pk} "
            f"(seq {message.sequence}) to conversation {conversation.pk}"
        )
        return message

    @classmethod
    def edit_message(
        cls,
        message_id: int,
        new_content: str,
        user: User | None = None,
    ) -> Message:
        """
        Replace the content of a text message.

        Timestamp, status and reactions are untouched. Edited text is
        scanned again; a match flags the message (flags are never cleared).

        Raises:
            MessageValidationError: Empty or oversized content
            MessageNotFoundError: Unknown message
            PermissionDeniedError: user given and not the author
            ImmutableMessageError: Not a text message, or deleted
        """
        content = cls._clean_text(new_content)
        scan_result = scan(content)

        with cls.atomic():
            message = cls._get_for_update(message_id)
            cls._check_author(message, user)

            if message.is_deleted:
                raise ImmutableMessageError(
                    "Cannot edit a deleted message",
                    error_code="MESSAGE_DELETED",
                    details={"message_id": message.pk},
                )
            if not message.is_text_message:
                raise ImmutableMessageError(
                    "Only text messages can be edited",
                    error_code="NOT_TEXT_MESSAGE",
                    details={"message_id": message.pk, "message_type": message.message_type},
                )

            newly_flagged = bool(scan_result) and not message.is_crisis
            message.content = content
            message.is_edited = True
            message.edited_at = timezone.now()
            update_fields = ["content", "is_edited", "edited_at", "updated_at"]
            if newly_flagged:
                message.is_crisis = True
                update_fields.append("is_crisis")
            message.save(update_fields=update_fields)
            cls._refresh_snapshot(message)

            transaction.on_commit(
                lambda: broadcast.publish_message(message, "updated"), robust=True
            )
            if newly_flagged:
                transaction.on_commit(
                    lambda: cls._emit_crisis_alert(message, scan_result), robust=True
                )

        cls.get_logger().info(f"Message {message.pk} edited")
        return message

    @classmethod
    def delete_message(cls, message_id: int, user: User | None = None) -> Message:
        """
        Soft delete a message.

        Deleting twice is a no-op. The message keeps its place in the log
        and renders as the deleted placeholder.

        Raises:
            MessageNotFoundError: Unknown message
            PermissionDeniedError: user given and not the author
        """
        with cls.atomic():
            message = cls._get_for_update(message_id)
            cls._check_author(message, user)

            if message.is_deleted:
                return message

            message.soft_delete()
            cls._refresh_snapshot(message)
            transaction.on_commit(
                lambda: broadcast.publish_message(message, "updated"), robust=True
            )

        cls.get_logger().info(f"Message {message.pk} deleted")
        return message

    @classmethod
    def mark_delivered(cls, message_id: int, user: User | None = None) -> bool:
        """
        Move a message to delivered.

        Returns:
            True if the status changed, False if it was already delivered
            or read (status never moves backwards)
        """
        return cls._advance_status(message_id, MessageStatus.DELIVERED, user)

    @classmethod
    def mark_read(cls, message_id: int, user: User | None = None) -> bool:
        """
        Move a message to read and set is_read. Allowed straight from sent.

        Returns:
            True if the status changed
        """
        return cls._advance_status(message_id, MessageStatus.READ, user)

    @classmethod
    def mark_conversation_read(cls, conversation_id: str, user: User) -> int:
        """
        Mark every unread message user received in a conversation as read.

        Returns:
            Number of messages that changed
        """
        now = timezone.now()
        unread = Message.objects.filter(
            conversation_id=conversation_id,
            receiver=user,
            is_read=False,
            status__in=statuses_before(MessageStatus.READ),
        )
        message_ids = list(unread.values_list("pk", flat=True))
        if not message_ids:
            return 0

        with cls.atomic():
            changed = Message.objects.filter(
                pk__in=message_ids,
                status__in=statuses_before(MessageStatus.READ),
            ).update(**cls._status_updates(MessageStatus.READ, now))
            transaction.on_commit(lambda: cls._publish_ids(message_ids), robust=True)

        cls.get_logger().debug(
            f"User {user.pk} read {changed} messages in conversation {conversation_id}"
        )
        return changed

    @classmethod
    def get_message(cls, message_id: int) -> Message:
        try:
            return Message.objects.select_related("sender").get(pk=message_id)
        except Message.DoesNotExist:
            raise MessageNotFoundError(
                "Message not found",
                details={"message_id": message_id},
            ) from None

    @classmethod
    def search(cls, conversation_id: str, query: str) -> QuerySet[Message]:
        return MessageSearchService.search(conversation_id, query)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @classmethod
    def _clean_text(cls, content: str | None) -> str:
        content = (content or "").strip()
        if not content:
            raise MessageValidationError(
                "Message content cannot be empty",
                error_code="EMPTY_CONTENT",
            )
        if len(content) > MESSAGE_CONFIG.MAX_CONTENT_LENGTH:
            raise MessageValidationError(
                f"Message content exceeds {MESSAGE_CONFIG.MAX_CONTENT_LENGTH} characters",
                error_code="CONTENT_TOO_LONG",
                details={"max_length": MESSAGE_CONFIG.MAX_CONTENT_LENGTH},
            )
        return content

    @classmethod
    def _validate_draft(cls, draft: MessageDraft) -> dict:
        """
        Check a draft and return the Message payload fields it maps to.

        Raises:
            MessageValidationError: On the first problem found
        """
        if draft.sender_id is None or draft.receiver_id is None:
            raise MessageValidationError(
                "Sender and receiver are required",
                error_code="MISSING_PARTICIPANT",
            )
        conversation_id = ConversationService.resolve_conversation_id(
            draft.sender_id, draft.receiver_id
        )
        if draft.conversation_id and draft.conversation_id != conversation_id:
            raise MessageValidationError(
                "Conversation does not match sender and receiver",
                error_code="CONVERSATION_MISMATCH",
                details={"conversation_id": draft.conversation_id, "expected": conversation_id},
            )
        if draft.message_type not in MessageType.values:
            raise MessageValidationError(
                f"Unknown message type '{draft.message_type}'",
                error_code="INVALID_MESSAGE_TYPE",
                details={"allowed": list(MessageType.values)},
            )
        if len(draft.client_id or "") > MESSAGE_CONFIG.MAX_CLIENT_ID_LENGTH:
            raise MessageValidationError(
                "client_id is too long",
                error_code="INVALID_CLIENT_ID",
            )

        message_type = MessageType(draft.message_type)
        fields = {
            "message_type": message_type,
            "content": "",
            "audio_url": "",
            "duration": "",
            "image_url": "",
            "file_url": "",
            "file_name": "",
            "file_size": None,
            "sticker_url": "",
        }

        if message_type == MessageType.TEXT:
            if draft.blob is not None:
                raise MessageValidationError(
                    "Text messages cannot carry attachments",
                    error_code="UNEXPECTED_ATTACHMENT",
                )
            fields["content"] = cls._clean_text(draft.content)
            return fields

        if message_type == MessageType.STICKER:
            if draft.blob is not None:
                raise MessageValidationError(
                    "Stickers are referenced by URL, not uploaded",
                    error_code="UNEXPECTED_ATTACHMENT",
                )
            if not draft.sticker_url:
                raise MessageValidationError(
                    "Sticker messages need a sticker_url",
                    error_code="MISSING_ATTACHMENT",
                )
            fields["sticker_url"] = draft.sticker_url
        else:
            url_field = _URL_FIELDS[message_type]
            url = getattr(draft, url_field)
            if not url and draft.blob is None:
                raise MessageValidationError(
                    f"{message_type.label} messages need an uploaded blob or {url_field}",
                    error_code="MISSING_ATTACHMENT",
                )
            fields[url_field] = url or ""

        if message_type == MessageType.AUDIO and draft.duration:
            if not _DURATION_RE.match(draft.duration):
                raise MessageValidationError(
                    "Duration must look like 0:45",
                    error_code="INVALID_DURATION",
                )
            fields["duration"] = draft.duration

        if message_type == MessageType.FILE:
            file_name = draft.file_name or getattr(draft.blob, "name", "") or ""
            file_name = file_name.rsplit("/", 1)[-1]
            if not file_name:
                raise MessageValidationError(
                    "File messages need a file name",
                    error_code="MISSING_FILE_NAME",
                )
            if len(file_name) > ATTACHMENT_CONFIG.MAX_FILE_NAME_LENGTH:
                raise MessageValidationError(
                    "File name is too long",
                    error_code="FILE_NAME_TOO_LONG",
                )
            fields["file_name"] = file_name
            if draft.file_size is not None:
                fields["file_size"] = draft.file_size
            elif draft.blob is not None:
                fields["file_size"] = as_file(draft.blob, name=file_name).size

        content = (draft.content or "").strip()
        if len(content) > MESSAGE_CONFIG.MAX_CONTENT_LENGTH:
            raise MessageValidationError(
                "Message content is too long",
                error_code="CONTENT_TOO_LONG",
            )
        fields["content"] = content or _DEFAULT_LABELS.get(message_type) or fields["file_name"]
        return fields

    @classmethod
    def _get_participants(cls, sender_id, receiver_id) -> tuple[User, User]:
        User = get_user_model()
        users = {str(user.pk): user for user in User.objects.filter(pk__in=[sender_id, receiver_id])}
        missing = [user_id for user_id in (sender_id, receiver_id) if str(user_id) not in users]
        if missing:
            raise MessageNotFoundError(
                "User not found",
                error_code="USER_NOT_FOUND",
                details={"user_ids": [str(user_id) for user_id in missing]},
            )
        return users[str(sender_id)], users[str(receiver_id)]

    @classmethod
    def _build_reply_snapshot(cls, conversation_id: str, reply_to_id) -> dict:
        """Copy the parent message into reply_to_* fields."""
        if reply_to_id is None:
            return {}
        parent = (
            Message.objects.select_related("sender")
            .filter(pk=reply_to_id, conversation_id=conversation_id)
            .first()
        )
        if parent is None:
            raise MessageNotFoundError(
                "Reply target not found in this conversation",
                error_code="REPLY_TARGET_NOT_FOUND",
                details={"reply_to_id": reply_to_id},
            )
        return {
            "reply_to_message_id": parent.pk,
            "reply_to_content": parent.get_display_content()[
                : MESSAGE_CONFIG.REPLY_SNAPSHOT_MAX_LENGTH
            ],
            "reply_to_sender_name": parent.sender.get_full_name(),
            "reply_to_type": parent.message_type,
        }

    @classmethod
    def _lock_conversation(cls, sender: User, receiver: User) -> Conversation:
        """Create the conversation if needed and lock its row. Call inside atomic()."""
        conversation = ConversationService.get_or_create_direct(sender, receiver)
        return Conversation.objects.select_for_update().get(pk=conversation.pk)

    @classmethod
    def _find_by_client_id(cls, sender_id, client_id: str) -> Message | None:
        return Message.objects.filter(sender_id=sender_id, client_id=client_id).first()

    @classmethod
    def _get_for_update(cls, message_id: int) -> Message:
        try:
            return Message.objects.select_for_update().get(pk=message_id)
        except Message.DoesNotExist:
            raise MessageNotFoundError(
                "Message not found",
                details={"message_id": message_id},
            ) from None

    @staticmethod
    def _check_author(message: Message, user: User | None) -> None:
        if user is not None and message.sender_id != user.pk:
            raise PermissionDeniedError(
                "Only the author can change this message",
                error_code="NOT_MESSAGE_AUTHOR",
                details={"message_id": message.pk},
            )

    @staticmethod
    def _refresh_snapshot(message: Message) -> None:
        """Rewrite the conversation preview if it was taken from message."""
        Conversation.objects.filter(
            pk=message.conversation_id,
            last_message_id=message.pk,
        ).update(
            last_message_content=message.get_display_content(),
            updated_at=timezone.now(),
        )

    @staticmethod
    def _status_updates(target: str, now) -> dict:
        updates = {"status": target, "updated_at": now}
        delivered_at = Coalesce(F("delivered_at"), Value(now, output_field=DateTimeField()))
        updates["delivered_at"] = delivered_at
        if target == MessageStatus.READ:
            updates["is_read"] = True
            updates["read_at"] = now
        return updates

    @classmethod
    def _advance_status(cls, message_id: int, target: str, user: User | None) -> bool:
        """
        Compare-and-swap the status of a message forward to target.

        The UPDATE only matches rows whose status is still earlier than
        target, so concurrent or late requests can never move it back.
        """
        if user is not None:
            receiver_id = (
                Message.objects.filter(pk=message_id)
                .values_list("receiver_id", flat=True)
                .first()
            )
            if receiver_id is None:
                raise MessageNotFoundError(
                    "Message not found",
                    details={"message_id": message_id},
                )
            if receiver_id != user.pk:
                raise PermissionDeniedError(
                    "Only the receiver can acknowledge this message",
                    error_code="NOT_MESSAGE_RECEIVER",
                    details={"message_id": message_id},
                )

        changed = Message.objects.filter(
            pk=message_id,
            status__in=statuses_before(target),
        ).update(**cls._status_updates(target, timezone.now()))

        if not changed:
            if not Message.objects.filter(pk=message_id).exists():
                raise MessageNotFoundError(
                    "Message not found",
                    details={"message_id": message_id},
                )
            return False

        transaction.on_commit(
            lambda: cls._publish_ids([message_id]), robust=True
        )
        cls.get_logger().debug(f"Message {message_id} is now {target}")
        return True

    @staticmethod
    def _publish_ids(message_ids: list[int]) -> None:
        messages = Message.objects.filter(pk__in=message_ids).prefetch_related("reactions")
        for message in messages:
            broadcast.publish_message(message, "updated")

    @classmethod
    def _emit_crisis_alert(cls, message: Message, result: CrisisScanResult) -> None:
        """Hand a crisis match to in-process listeners and the alert task."""
        alert = CrisisAlert(
            user_id=message.sender_id,
            snippet=message.content[: CRISIS_CONFIG.SNIPPET_LENGTH],
            conversation_id=message.conversation_id,
            message_id=message.pk,
            timestamp=message.created_at,
            category=result.category,
            keyword=result.keyword,
        )
        cls.get_logger().warning(
            f"Crisis language ({result.category}) detected in message {message.pk} "
            f"from user {message.sender_id}"
        )
        # The alert task is queued before any listener runs
        try:
            dispatch_crisis_alert.delay(alert.to_dict())
        except Exception:
            # The message is already stored and flagged; the flag can be swept later
            cls.get_logger().exception(
                f"Failed to enqueue crisis alert for message {message.pk}"
            )

        responses = crisis_detected.send_robust(sender=Message, alert=alert, message=message)
        for receiver, response in responses:
            if isinstance(response, Exception):
                cls.get_logger().error(
                    f"crisis_detected receiver {receiver!r} failed for message "
                    f"{message.pk}: {response!r}"
                )


# =============================================================================
# Reactions
# =============================================================================


class ReactionService(BaseService):
    """
    Service for message reactions.

    A user holds at most one reaction per message. Writes lock the message
    row and rely on the (message, user) unique constraint; a lost race is
    retried a bounded number of times.

    Methods:
        add_reaction: Set (or replace) the user's reaction
        remove_reaction: Remove the user's reaction, whatever its type
        toggle_reaction: Same type removes, another type replaces
        get_message_reactions: Counts per type and who reacted
    """

    @classmethod
    def add_reaction(cls, message_id: int, user: User, reaction_type: str) -> MessageReaction:
        """
        Set user's reaction on a message, replacing any previous one.

        Raises:
            MessageValidationError: Unknown reaction type
            MessageNotFoundError: Unknown message
            PermissionDeniedError: user is not in the conversation
            ImmutableMessageError: Message is deleted
            ConcurrencyConflict: Retries exhausted
        """
        if reaction_type not in ReactionType.values:
            raise MessageValidationError(
                f"Unknown reaction '{reaction_type}'",
                error_code="INVALID_REACTION",
                details={"allowed": list(REACTION_CONFIG.REACTION_TYPES)},
            )

        attempts = REACTION_CONFIG.MAX_CONFLICT_RETRIES
        attempt = 1
        while True:
            try:
                return cls._set_reaction(message_id, user, reaction_type)
            except ConcurrencyConflict:
                if attempt >= attempts:
                    raise
                cls.get_logger().debug(
                    f"Reaction conflict on message {message_id} "
                    f"(attempt {attempt}/{attempts}), retrying"
                )
                attempt += 1

    @classmethod
    def remove_reaction(cls, message_id: int, user: User) -> bool:
        """
        Remove user's reaction from a message.

        Returns:
            True if a reaction was removed, False if the user had none
        """
        with cls.atomic():
            message = cls._lock_message(message_id, user)
            deleted, _ = MessageReaction.objects.filter(message=message, user=user).delete()
            if deleted:
                transaction.on_commit(
                    lambda: broadcast.publish_message(message, "updated"), robust=True
                )
        return bool(deleted)

    @classmethod
    def toggle_reaction(
        cls, message_id: int, user: User, reaction_type: str
    ) -> MessageReaction | None:
        """
        Apply a tap on a reaction button.

        Returns:
            The reaction now held, or None if it was removed
        """
        current = (
            MessageReaction.objects.filter(message_id=message_id, user=user)
            .values_list("reaction_type", flat=True)
            .first()
        )
        if current == reaction_type:
            cls.remove_reaction(message_id, user)
            return None
        return cls.add_reaction(message_id, user, reaction_type)

    @classmethod
    def get_message_reactions(cls, message_id: int) -> list[dict]:
        """
        Summarise reactions on a message.

        Returns:
            [{"reaction_type": "love", "count": 2, "user_ids": [...]}, ...]
            in reaction vocabulary order, types with no reactions omitted
        """
        if not Message.objects.filter(pk=message_id).exists():
            raise MessageNotFoundError(
                "Message not found",
                details={"message_id": message_id},
            )
        grouped: dict[str, list] = {}
        for reaction_type, user_id in MessageReaction.objects.filter(
            message_id=message_id
        ).values_list("reaction_type", "user_id"):
            grouped.setdefault(reaction_type, []).append(user_id)

        return [
            {"reaction_type": reaction_type, "count": len(grouped[reaction_type]), "user_ids": grouped[reaction_type]}
            for reaction_type in REACTION_CONFIG.REACTION_TYPES
            if reaction_type in grouped
        ]

    @classmethod
    def _set_reaction(cls, message_id: int, user: User, reaction_type: str) -> MessageReaction:
        try:
            with cls.atomic():
                message = cls._lock_message(message_id, user)
                if message.is_deleted:
                    raise ImmutableMessageError(
                        "Cannot react to a deleted message",
                        error_code="MESSAGE_DELETED",
                        details={"message_id": message.pk},
                    )
                reaction, _ = MessageReaction.objects.update_or_create(
                    message=message,
                    user=user,
                    defaults={"reaction_type": reaction_type},
                )
                transaction.on_commit(
                    lambda: broadcast.publish_message(message, "updated"), robust=True
                )
        except IntegrityError as e:
            raise ConcurrencyConflict(
                "Reaction was changed concurrently",
                details={"message_id": message_id},
            ) from e
        return reaction

    @staticmethod
    def _lock_message(message_id: int, user: User) -> Message:
        try:
            message = Message.objects.select_for_update().get(pk=message_id)
        except Message.DoesNotExist:
            raise MessageNotFoundError(
                "Message not found",
                details={"message_id": message_id},
            ) from None
        if user.pk not in (message.sender_id, message.receiver_id):
            raise PermissionDeniedError(
                "You are not a participant in this conversation",
                error_code="NOT_PARTICIPANT",
            )
        return message


# =============================================================================
# Search Index
# =============================================================================


class MessageSearchService(BaseService):
    """
    Substring search over a conversation's messages.

    Results are a lazy QuerySet: nothing runs until it is iterated, and
    iterating it again re-runs the query against the current log.
    """

    @classmethod
    def search(cls, conversation_id: str, query: str) -> QuerySet[Message]:
        """
        Find messages whose content contains query, case-insensitively.

        Most recent first. Deleted messages are never returned.

        Raises:
            MessageValidationError: Blank or oversized query
            ConversationNotFoundError: Unknown conversation
        """
        query = (query or "").strip()
        if not query:
            raise MessageValidationError(
                "Search query cannot be empty",
                error_code="EMPTY_QUERY",
            )
        if len(query) > MESSAGE_CONFIG.SEARCH_MAX_QUERY_LENGTH:
            raise MessageValidationError(
                "Search query is too long",
                error_code="QUERY_TOO_LONG",
                details={"max_length": MESSAGE_CONFIG.SEARCH_MAX_QUERY_LENGTH},
            )
        if not Conversation.objects.filter(pk=conversation_id).exists():
            raise ConversationNotFoundError(
                "Conversation not found",
                details={"conversation_id": conversation_id},
            )

        return (
            Message.objects.filter(
                conversation_id=conversation_id,
                is_deleted=False,
                content__icontains=query,
            )
            .select_related("sender")
            .prefetch_related("reactions")
            .order_by("-sequence")
        )


# =============================================================================
# Presence Tracker
# =============================================================================


class PresenceService(BaseService):
    """
    Heartbeat-based presence tracking.

    Each user has one cache record, overwritten on every heartbeat. A
    record whose last_seen is older than PRESENCE_TTL_SECONDS reads as
    offline, so a client that disappears without saying goodbye goes
    offline on its own.

    Design Decisions:
        - Cache-only storage (Redis in production, no database rows)
        - Records are kept for RECORD_RETENTION_SECONDS so last_seen can be
          shown after the user goes offline
        - Backend failures are logged and returned as ServiceResult
          failures, never raised

    Usage:
        PresenceService.heartbeat(user.id, conversation_id="3_8")
        result = PresenceService.get_presence(other_user.id)
        if result and result.data.is_online:
            ...
    """

    @staticmethod
    def _get_cache():
        from django.core.cache import cache

        return cache

    @staticmethod
    def _user_presence_key(user_id) -> str:
        return f"{PRESENCE_CONFIG.KEY_PREFIX_USER_PRESENCE}:{user_id}"

    @classmethod
    def heartbeat(
        cls,
        user_id,
        is_online: bool = True,
        conversation_id: str | None = None,
    ) -> ServiceResult[PresenceState]:
        """
        Record a heartbeat and publish it to the user's presence group.

        Args:
            user_id: User sending the heartbeat
            is_online: False when the client is going away
            conversation_id: Conversation currently open, if any
        """
        state = PresenceState(
            user_id=user_id,
            is_online=is_online,
            last_seen=timezone.now(),
            current_conversation_id=conversation_id if is_online else None,
        )
        try:
            cls._get_cache().set(
                cls._user_presence_key(user_id),
                state.to_dict(),
                timeout=PRESENCE_CONFIG.RECORD_RETENTION_SECONDS,
            )
        except Exception as e:
            logger.exception(f"Error recording presence for user {user_id}: {e}")
            return ServiceResult.failure(
                error="Failed to update presence",
                error_code="PRESENCE_ERROR",
            )

        broadcast.publish_presence(state)
        return ServiceResult.success(state)

    @classmethod
    def set_offline(cls, user_id) -> ServiceResult[PresenceState]:
        return cls.heartbeat(user_id, is_online=False)

    @classmethod
    def get_presence(cls, user_id) -> ServiceResult[PresenceState]:
        """
        Get a user's presence as of now.

        Users with no record, or whose last heartbeat is stale, are offline.
        """
        try:
            record = cls._get_cache().get(cls._user_presence_key(user_id))
        except Exception as e:
            logger.exception(f"Error getting presence for user {user_id}: {e}")
            return ServiceResult.failure(
                error="Failed to get presence",
                error_code="PRESENCE_ERROR",
            )

        if not record:
            return ServiceResult.success(PresenceState.offline(user_id))
        return ServiceResult.success(PresenceState.from_dict(record).as_of())

    @classmethod
    def get_bulk_presence(cls, user_ids: list) -> ServiceResult[list[PresenceState]]:
        """Get presence for several users in one cache round trip."""
        if not user_ids:
            return ServiceResult.success([])

        keys = {cls._user_presence_key(user_id): user_id for user_id in user_ids}
        try:
            records = cls._get_cache().get_many(list(keys))
        except Exception as e:
            logger.exception(f"Error getting bulk presence: {e}")
            return ServiceResult.failure(
                error="Failed to get bulk presence",
                error_code="PRESENCE_ERROR",
            )

        now = timezone.now()
        return ServiceResult.success(
            [
                PresenceState.from_dict(records[key]).as_of(now)
                if records.get(key)
                else PresenceState.offline(user_id)
                for key, user_id in keys.items()
            ]
        )

    @classmethod
    def clear_presence(cls, user_id) -> ServiceResult[None]:
        """Forget a user's presence record entirely."""
        try:
            cls._get_cache().delete(cls._user_presence_key(user_id))
        except Exception as e:
            logger.exception(f"Error clearing presence for user {user_id}: {e}")
            return ServiceResult.failure(
                error="Failed to clear presence",
                error_code="PRESENCE_ERROR",
            )
        return ServiceResult.success(None)


# =============================================================================
# Typing Signal
# =============================================================================


def get_typing_timeout() -> float:
    return getattr(
        settings, "CHAT_TYPING_TIMEOUT_SECONDS", TYPING_CONFIG.TYPING_TIMEOUT_SECONDS
    )


class TypingService(BaseService):
    """
    Expiring typing indicators.

    set_typing(True) stores an expiry of now + TYPING_TIMEOUT_SECONDS and
    must be repeated while the user keeps typing. Readers compare the
    expiry with the current time; no timer clears the record.
    """

    @staticmethod
    def _get_cache():
        from django.core.cache import cache

        return cache

    @staticmethod
    def _typing_key(conversation_id: str, user_id) -> str:
        return f"{TYPING_CONFIG.KEY_PREFIX_TYPING}:{conversation_id}:{user_id}"

    @classmethod
    def set_typing(
        cls,
        conversation_id: str,
        user_id,
        is_typing: bool,
    ) -> ServiceResult[TypingState]:
        """Start, refresh or stop a typing indicator and publish it."""
        timeout = get_typing_timeout()
        key = cls._typing_key(conversation_id, user_id)
        if is_typing:
            state = TypingState(
                conversation_id=conversation_id,
                user_id=user_id,
                is_typing=True,
                expires_at=timezone.now() + timedelta(seconds=timeout),
            )
        else:
            state = TypingState(conversation_id=conversation_id, user_id=user_id, is_typing=False)

        try:
            if is_typing:
                # Cache expiry is only housekeeping; expires_at is authoritative
                cls._get_cache().set(key, state.to_dict(), timeout=math.ceil(timeout) + 1)
            else:
                cls._get_cache().delete(key)
        except Exception as e:
            logger.exception(f"Error setting typing for user {user_id} in {conversation_id}: {e}")
            return ServiceResult.failure(
                error="Failed to update typing status",
                error_code="TYPING_ERROR",
            )

        broadcast.publish_typing(state)
        return ServiceResult.success(state)

    @classmethod
    def get_typing(cls, conversation_id: str, user_id) -> TypingState | None:
        """Return the stored typing record, or None (also on backend errors)."""
        try:
            record = cls._get_cache().get(cls._typing_key(conversation_id, user_id))
        except Exception as e:
            logger.exception(f"Error reading typing for user {user_id} in {conversation_id}: {e}")
            return None
        return TypingState.from_dict(record) if record else None

    @classmethod
    def is_typing(cls, conversation_id: str, user_id, now=None) -> bool:
        state = cls.get_typing(conversation_id, user_id)
        return state.is_active(now) if state else False
