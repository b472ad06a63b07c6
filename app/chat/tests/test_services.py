"""
Tests for the chat service layer.

This module covers:
- ConversationService: Pair ids, directory listing, unread counts
- MessageService: Send, edit, delete, delivery and read status
- Crisis detection on send and edit

Test Organization:
    - Each service method has its own test class
    - Tests use descriptive names following: test_<scenario>_<expected_outcome>

Testing Philosophy:
    Tests focus on observable behavior:
    - Database state after the call
    - Exceptions and their error codes
    - Events published after commit
"""

import logging
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from django.core.files.base import ContentFile
from django.utils import timezone
from freezegun import freeze_time

from authentication.tests.factories import UserFactory
from chat.constants import MESSAGE_CONFIG
from chat.exceptions import (
    ConversationNotFoundError,
    ImmutableMessageError,
    MessageNotFoundError,
    MessageValidationError,
    UploadError,
)
from chat.models import Conversation, Message, MessageStatus, MessageType
from chat.services import ConversationService, MessageService
from chat.signals import crisis_detected
from chat.tests.factories import MessageFactory
from chat.types import MessageDraft
from chat.uploader import AttachmentUploader
from core.exceptions import PermissionDeniedError


# =============================================================================
# ConversationService
# =============================================================================


class TestResolveConversationId:
    def test_same_id_for_both_orders(self):
        assert ConversationService.resolve_conversation_id(3, 8) == "3_8"
        assert ConversationService.resolve_conversation_id(8, 3) == "3_8"

    def test_same_user_is_rejected(self):
        with pytest.raises(MessageValidationError) as exc_info:
            ConversationService.resolve_conversation_id(5, 5)

        assert exc_info.value.error_code == "SAME_USER"

    def test_participant_ids(self):
        assert ConversationService.participant_ids("12_7") == ("12", "7")

    def test_participant_ids_for_malformed_id(self):
        with pytest.raises(ConversationNotFoundError):
            ConversationService.participant_ids("not-a-pair")

    def test_is_participant_needs_no_row(self, db, student, psychologist, outsider):
        """
        Membership comes from the id, before any message exists.

        Why it matters: the first message creates the conversation, so
        clients must be allowed to open it before that.
        """
        conversation_id = ConversationService.resolve_conversation_id(student.pk, psychologist.pk)

        assert not Conversation.objects.filter(pk=conversation_id).exists()
        assert ConversationService.is_participant(conversation_id, student)
        assert ConversationService.is_participant(conversation_id, psychologist)
        assert not ConversationService.is_participant(conversation_id, outsider)


class TestGetOrCreateDirect:
    def test_creates_once(self, student, psychologist):
        first = ConversationService.get_or_create_direct(student, psychologist)
        second = ConversationService.get_or_create_direct(psychologist, student)

        assert first.pk == second.pk
        assert Conversation.objects.count() == 1

    def test_get_conversation_not_found(self, db):
        with pytest.raises(ConversationNotFoundError):
            ConversationService.get_conversation("1_2")


class TestListConversations:
    """
    Tests for ConversationService.list_conversations().

    Verifies:
    - Only conversations the user is in
    - Most recent activity first
    - unread_count counts received, unread messages (deleted included)
    """

    def test_lists_only_own_conversations(self, student, psychologist, outsider, send):
        send("hello")
        send("unrelated", sender=outsider, receiver=psychologist)

        conversations = list(ConversationService.list_conversations(student))

        assert [c.pk for c in conversations] == [
            ConversationService.resolve_conversation_id(student.pk, psychologist.pk)
        ]

    def test_most_recent_first(self, student, psychologist, send):
        other_psychologist = UserFactory()
        with freeze_time("2024-05-01 10:00"):
            send("first", receiver=other_psychologist)
        with freeze_time("2024-05-01 11:00"):
            send("second")

        conversations = list(ConversationService.list_conversations(student))

        assert conversations[0].other_participant(student) == psychologist
        assert conversations[1].other_participant(student) == other_psychologist

    def test_unread_count(self, student, psychologist, send):
        send("one")
        send("two")
        deleted = send("three")
        MessageService.delete_message(deleted.pk)
        send("reply", sender=psychologist)

        [for_psychologist] = ConversationService.list_conversations(psychologist)
        [for_student] = ConversationService.list_conversations(student)

        assert for_psychologist.unread_count == 3
        assert for_student.unread_count == 1

    def test_unread_count_drops_after_reading(self, student, psychologist, send):
        message = send("hello")
        MessageService.mark_read(message.pk)

        [conversation] = ConversationService.list_conversations(psychologist)

        assert conversation.unread_count == 0

    def test_get_messages_in_sequence_order(self, student, psychologist, send):
        send("a")
        send("b", sender=psychologist)
        send("c")
        conversation_id = ConversationService.resolve_conversation_id(student.pk, psychologist.pk)

        contents = [m.content for m in ConversationService.get_messages(conversation_id)]

        assert contents == ["a", "b", "c"]


# =============================================================================
# MessageService.send_message
# =============================================================================


class TestSendMessage:
    """
    Tests for MessageService.send_message().

    Verifies:
    - Conversation created by the first message
    - Sequence numbers are gapless per conversation
    - Validation failures persist nothing
    - Events are published after commit
    """

    def test_first_message_creates_conversation(self, student, psychologist, send):
        message = send("Hi, I booked a session")

        conversation = Conversation.objects.get(pk=message.conversation_id)
        assert conversation.has_participant(student)
        assert conversation.has_participant(psychologist)
        assert message.sender == student
        assert message.receiver == psychologist
        assert message.status == MessageStatus.SENT
        assert message.is_read is False

    def test_sequence_increments_per_conversation(self, student, psychologist, send):
        other = UserFactory()

        first = send("one")
        second = send("two", sender=psychologist)
        elsewhere = send("three", receiver=other)

        assert (first.sequence, second.sequence) == (1, 2)
        assert elsewhere.sequence == 1
        conversation = Conversation.objects.get(pk=first.conversation_id)
        assert conversation.last_sequence == 2

    def test_updates_conversation_snapshot(self, send):
        message = send("Latest news")

        conversation = Conversation.objects.get(pk=message.conversation_id)
        assert conversation.last_message_id == message.pk
        assert conversation.last_message_content == "Latest news"
        assert conversation.last_message_type == MessageType.TEXT
        assert conversation.last_message_at == message.created_at

    def test_content_is_trimmed(self, send):
        assert send("  hello  ").content == "hello"

    @pytest.mark.parametrize("content", ["", "   ", "\n\t"])
    def test_empty_text_is_rejected(self, send, content):
        with pytest.raises(MessageValidationError) as exc_info:
            send(content)

        assert exc_info.value.error_code == "EMPTY_CONTENT"
        assert Message.objects.count() == 0

    def test_too_long_text_is_rejected(self, send):
        with pytest.raises(MessageValidationError):
            send("x" * (MESSAGE_CONFIG.MAX_CONTENT_LENGTH + 1))

        assert Message.objects.count() == 0

    def test_message_to_self_is_rejected(self, student, send):
        with pytest.raises(MessageValidationError) as exc_info:
            send("hello me", sender=student, receiver=student)

        assert exc_info.value.error_code == "SAME_USER"

    def test_conversation_mismatch_is_rejected(self, send):
        with pytest.raises(MessageValidationError) as exc_info:
            send("hello", conversation_id="0_999999")

        assert exc_info.value.error_code == "CONVERSATION_MISMATCH"

    def test_unknown_receiver(self, student):
        with pytest.raises(MessageNotFoundError) as exc_info:
            MessageService.send_message(
                MessageDraft(sender_id=student.pk, receiver_id=999999, content="hello")
            )

        assert exc_info.value.error_code == "USER_NOT_FOUND"

    def test_unknown_message_type(self, send):
        with pytest.raises(MessageValidationError) as exc_info:
            send("hello", message_type="video")

        assert exc_info.value.error_code == "INVALID_MESSAGE_TYPE"

    def test_publishes_after_commit(self, send, django_capture_on_commit_callbacks):
        with patch("chat.broadcast.publish_message") as mock_publish:
            with django_capture_on_commit_callbacks(execute=True) as callbacks:
                message = send("hello")

        assert len(callbacks) == 1
        mock_publish.assert_called_once_with(message, "created")

    def test_nothing_published_without_commit(self, send, django_capture_on_commit_callbacks):
        with patch("chat.broadcast.publish_message") as mock_publish:
            with django_capture_on_commit_callbacks(execute=False):
                send("hello")

        mock_publish.assert_not_called()


class TestSendNonTextMessages:
    def test_sticker(self, send):
        message = send("", message_type="sticker", sticker_url="https://cdn.example.com/s/1.png")

        assert message.message_type == MessageType.STICKER
        assert message.content == "Sticker"
        assert message.sticker_url == "https://cdn.example.com/s/1.png"

    def test_sticker_without_url_is_rejected(self, send):
        with pytest.raises(MessageValidationError) as exc_info:
            send("", message_type="sticker")

        assert exc_info.value.error_code == "MISSING_ATTACHMENT"

    def test_audio_with_url(self, send):
        message = send(
            "",
            message_type="audio",
            audio_url="https://files.example.com/a.webm",
            duration="0:45",
        )

        assert message.content == "Voice Message"
        assert message.duration == "0:45"

    def test_invalid_duration_is_rejected(self, send):
        with pytest.raises(MessageValidationError) as exc_info:
            send("", message_type="audio", audio_url="https://files.example.com/a.webm", duration="45s")

        assert exc_info.value.error_code == "INVALID_DURATION"

    def test_image_without_url_or_blob_is_rejected(self, send):
        with pytest.raises(MessageValidationError):
            send("", message_type="image")

    def test_image_blob_is_uploaded(self, send, student):
        message = send("", message_type="image", blob=ContentFile(b"\x89PNG", name="me.png"))

        assert message.image_url.startswith(f"https://files.example.com/images/{student.pk}/")
        assert message.content == "Image"

    def test_file_blob_records_name_and_size(self, send):
        message = send(
            "",
            message_type="file",
            blob=ContentFile(b"%PDF-1.7 content", name="homework.pdf"),
        )

        assert message.file_name == "homework.pdf"
        assert message.file_size == len(b"%PDF-1.7 content")
        assert message.file_url.endswith("_homework.pdf")
        assert message.content == "homework.pdf"

    def test_url_wins_over_blob(self, student, psychologist):
        uploader = MagicMock(spec=AttachmentUploader)

        message = MessageService.send_message(
            MessageDraft(
                sender_id=student.pk,
                receiver_id=psychologist.pk,
                message_type="image",
                image_url="https://files.example.com/existing.png",
                blob=b"ignored",
            ),
            uploader=uploader,
        )

        uploader.upload.assert_not_called()
        assert message.image_url == "https://files.example.com/existing.png"

    def test_upload_failure_persists_nothing(self, student, psychologist):
        uploader = MagicMock(spec=AttachmentUploader)
        uploader.upload.side_effect = UploadError("Attachment upload failed")

        with pytest.raises(UploadError):
            MessageService.send_message(
                MessageDraft(
                    sender_id=student.pk,
                    receiver_id=psychologist.pk,
                    message_type="audio",
                    blob=b"voice",
                ),
                uploader=uploader,
            )

        assert Message.objects.count() == 0
        assert Conversation.objects.count() == 0

    def test_text_with_blob_is_rejected(self, send):
        with pytest.raises(MessageValidationError) as exc_info:
            send("hello", blob=b"data")

        assert exc_info.value.error_code == "UNEXPECTED_ATTACHMENT"


class TestReplies:
    def test_reply_snapshots_parent(self, send, psychologist):
        parent = send("How do I handle exam stress?")

        reply = send("Let's talk about it", sender=psychologist, reply_to_id=parent.pk)

        assert reply.get_reply_snapshot() == {
            "message_id": parent.pk,
            "content": "How do I handle exam stress?",
            "sender_name": "Sam Student",
            "type": "text",
        }

    def test_snapshot_survives_parent_edit(self, send, psychologist):
        parent = send("original")
        reply = send("reply", sender=psychologist, reply_to_id=parent.pk)

        MessageService.edit_message(parent.pk, "changed")
        reply.refresh_from_db()

        assert reply.reply_to_content == "original"

    def test_reply_target_must_be_in_same_conversation(self, send, student):
        elsewhere = send("hi", receiver=UserFactory())

        with pytest.raises(MessageNotFoundError) as exc_info:
            send("reply", reply_to_id=elsewhere.pk)

        assert exc_info.value.error_code == "REPLY_TARGET_NOT_FOUND"


class TestClientIdDeduplication:
    def test_retry_returns_original_message(self, send):
        first = send("hello", client_id="local-1")
        retry = send("hello", client_id="local-1")

        assert retry.pk == first.pk
        assert Message.objects.count() == 1

    def test_different_client_ids_are_separate(self, send):
        send("hello", client_id="local-1")
        send("hello", client_id="local-2")

        assert Message.objects.count() == 2

    def test_client_id_too_long(self, send):
        with pytest.raises(MessageValidationError) as exc_info:
            send("hello", client_id="x" * (MESSAGE_CONFIG.MAX_CLIENT_ID_LENGTH + 1))

        assert exc_info.value.error_code == "INVALID_CLIENT_ID"


# =============================================================================
# Crisis detection
# =============================================================================


class TestCrisisDetection:
    """
    Crisis language flags the message and raises an alert after commit.

    Verifies:
    - is_crisis set on the stored message
    - Alert task enqueued with the alert payload
    - crisis_detected signal sent
    - Enqueue failures never fail the send
    """

    def test_flags_message_and_dispatches_alert(
        self, send, student, django_capture_on_commit_callbacks
    ):
        with patch("chat.services.dispatch_crisis_alert") as mock_task:
            with django_capture_on_commit_callbacks(execute=True):
                message = send("Some days I want to die")

        assert message.is_crisis is True
        mock_task.delay.assert_called_once()
        alert = mock_task.delay.call_args.args[0]
        assert alert["user_id"] == student.pk
        assert alert["message_id"] == message.pk
        assert alert["conversation_id"] == message.conversation_id
        assert alert["snippet"] == "Some days I want to die"
        assert alert["category"] == "suicide"

    def test_ordinary_message_is_not_flagged(self, send, django_capture_on_commit_callbacks):
        with patch("chat.services.dispatch_crisis_alert") as mock_task:
            with django_capture_on_commit_callbacks(execute=True):
                message = send("See you on Monday")

        assert message.is_crisis is False
        mock_task.delay.assert_not_called()

    def test_sends_signal(self, send, django_capture_on_commit_callbacks):
        calls = []

        def receiver(sender, **kwargs):
            calls.append(kwargs)

        crisis_detected.connect(receiver, weak=False, dispatch_uid="test-crisis-receiver")
        try:
            with django_capture_on_commit_callbacks(execute=True):
                message = send("thinking about suicide")
        finally:
            crisis_detected.disconnect(dispatch_uid="test-crisis-receiver")

        assert len(calls) == 1
        assert calls[0]["message"] == message
        assert calls[0]["alert"].category == "suicide"

    def test_failing_listener_does_not_fail_send(
        self, send, caplog, django_capture_on_commit_callbacks
    ):
        def broken_receiver(sender, **kwargs):
            raise RuntimeError("pager offline")

        crisis_detected.connect(broken_receiver, weak=False, dispatch_uid="test-broken-receiver")
        try:
            with patch("chat.services.dispatch_crisis_alert") as mock_task:
                with caplog.at_level(logging.ERROR, logger="chat.services"):
                    with django_capture_on_commit_callbacks(execute=True):
                        message = send("I want to end my life")
        finally:
            crisis_detected.disconnect(dispatch_uid="test-broken-receiver")

        assert Message.objects.filter(pk=message.pk, is_crisis=True).count() == 1
        mock_task.delay.assert_called_once()
        assert mock_task.delay.call_args.args[0]["message_id"] == message.pk
        assert "pager offline" in caplog.text

    def test_broker_outage_does_not_fail_send(self, send, django_capture_on_commit_callbacks):
        with patch("chat.services.dispatch_crisis_alert") as mock_task:
            mock_task.delay.side_effect = ConnectionError("broker down")
            with django_capture_on_commit_callbacks(execute=True):
                message = send("I want to die")

        assert Message.objects.filter(pk=message.pk, is_crisis=True).exists()

    def test_snippet_is_truncated(self, send, django_capture_on_commit_callbacks):
        with patch("chat.services.dispatch_crisis_alert") as mock_task:
            with django_capture_on_commit_callbacks(execute=True):
                send("I want to die " + "x" * 500)

        assert len(mock_task.delay.call_args.args[0]["snippet"]) == 200

    def test_edit_into_crisis_flags_message(self, send, django_capture_on_commit_callbacks):
        message = send("I am fine")

        with patch("chat.services.dispatch_crisis_alert") as mock_task:
            with django_capture_on_commit_callbacks(execute=True):
                edited = MessageService.edit_message(message.pk, "actually I want to die")

        assert edited.is_crisis is True
        mock_task.delay.assert_called_once()

    def test_edit_never_clears_flag(self, send):
        message = send("I want to die")

        edited = MessageService.edit_message(message.pk, "never mind, all good")

        assert edited.is_crisis is True


# =============================================================================
# MessageService.edit_message / delete_message
# =============================================================================


class TestEditMessage:
    def test_edit_replaces_content_only(self, send, student):
        message = send("Se you tomorrow")
        MessageService.mark_delivered(message.pk)

        edited = MessageService.edit_message(message.pk, "See you tomorrow", user=student)
        edited.refresh_from_db()

        assert edited.content == "See you tomorrow"
        assert edited.is_edited is True
        assert edited.edited_at is not None
        assert edited.created_at == message.created_at
        assert edited.sequence == message.sequence
        assert edited.status == MessageStatus.DELIVERED

    def test_edit_updates_conversation_snapshot(self, send):
        message = send("typo")

        MessageService.edit_message(message.pk, "fixed")

        conversation = Conversation.objects.get(pk=message.conversation_id)
        assert conversation.last_message_content == "fixed"

    def test_edit_of_older_message_keeps_snapshot(self, send):
        older = send("older")
        send("newer")

        MessageService.edit_message(older.pk, "older, edited")

        conversation = Conversation.objects.get(pk=older.conversation_id)
        assert conversation.last_message_content == "newer"

    def test_only_author_can_edit(self, send, psychologist):
        message = send("mine")

        with pytest.raises(PermissionDeniedError):
            MessageService.edit_message(message.pk, "theirs", user=psychologist)

    def test_cannot_edit_deleted_message(self, send):
        message = send("oops")
        MessageService.delete_message(message.pk)

        with pytest.raises(ImmutableMessageError) as exc_info:
            MessageService.edit_message(message.pk, "revived")

        assert exc_info.value.error_code == "MESSAGE_DELETED"

    def test_cannot_edit_non_text_message(self, send):
        message = send("", message_type="sticker", sticker_url="https://cdn.example.com/s.png")

        with pytest.raises(ImmutableMessageError) as exc_info:
            MessageService.edit_message(message.pk, "text now")

        assert exc_info.value.error_code == "NOT_TEXT_MESSAGE"

    def test_empty_edit_is_rejected(self, send):
        message = send("hello")

        with pytest.raises(MessageValidationError):
            MessageService.edit_message(message.pk, "   ")

    def test_unknown_message(self, db):
        with pytest.raises(MessageNotFoundError):
            MessageService.edit_message(424242, "hello")

    def test_edit_publishes_update(self, send, django_capture_on_commit_callbacks):
        message = send("hello")

        with patch("chat.broadcast.publish_message") as mock_publish:
            with django_capture_on_commit_callbacks(execute=True):
                MessageService.edit_message(message.pk, "hello again")

        mock_publish.assert_called_once()
        assert mock_publish.call_args.args[1] == "updated"


class TestDeleteMessage:
    def test_soft_deletes(self, send, student):
        message = send("secret")

        deleted = MessageService.delete_message(message.pk, user=student)

        assert deleted.is_deleted is True
        assert deleted.deleted_at is not None
        assert Message.objects.filter(pk=message.pk).exists()

    def test_delete_is_idempotent(self, send):
        message = send("secret")
        first = MessageService.delete_message(message.pk)

        second = MessageService.delete_message(message.pk)

        assert second.deleted_at == first.deleted_at

    def test_snapshot_shows_placeholder(self, send):
        message = send("secret")

        MessageService.delete_message(message.pk)

        conversation = Conversation.objects.get(pk=message.conversation_id)
        assert conversation.last_message_content == MESSAGE_CONFIG.DELETED_PLACEHOLDER

    def test_only_author_can_delete(self, send, psychologist):
        message = send("mine")

        with pytest.raises(PermissionDeniedError):
            MessageService.delete_message(message.pk, user=psychologist)

    def test_deleted_message_keeps_its_place(self, send):
        send("one")
        middle = send("two")
        send("three")

        MessageService.delete_message(middle.pk)

        sequences = list(
            Message.objects.filter(conversation_id=middle.conversation_id)
            .order_by("sequence")
            .values_list("sequence", "is_deleted")
        )
        assert sequences == [(1, False), (2, True), (3, False)]


# =============================================================================
# Delivery status
# =============================================================================


class TestDeliveryStatus:
    """
    Status only moves forward: sent -> delivered -> read.

    Verifies:
    - Each transition sets its timestamp
    - Late or repeated acknowledgements are no-ops
    - Only the receiver may acknowledge
    """

    def test_mark_delivered(self, send, psychologist):
        message = send("hello")

        assert MessageService.mark_delivered(message.pk, user=psychologist) is True
        message.refresh_from_db()

        assert message.status == MessageStatus.DELIVERED
        assert message.delivered_at is not None
        assert message.is_read is False

    def test_mark_read_sets_read_fields(self, send, psychologist):
        message = send("hello")

        assert MessageService.mark_read(message.pk, user=psychologist) is True
        message.refresh_from_db()

        assert message.status == MessageStatus.READ
        assert message.is_read is True
        assert message.read_at is not None
        assert message.delivered_at is not None

    def test_read_keeps_earlier_delivered_at(self, send):
        message = send("hello")
        with freeze_time(timezone.now() + timedelta(minutes=1)):
            MessageService.mark_delivered(message.pk)
        message.refresh_from_db()
        delivered_at = message.delivered_at

        with freeze_time(timezone.now() + timedelta(minutes=5)):
            MessageService.mark_read(message.pk)
        message.refresh_from_db()

        assert message.delivered_at == delivered_at
        assert message.read_at > delivered_at

    def test_delivered_after_read_is_noop(self, send):
        message = send("hello")
        MessageService.mark_read(message.pk)

        assert MessageService.mark_delivered(message.pk) is False
        message.refresh_from_db()
        assert message.status == MessageStatus.READ

    def test_repeated_read_is_noop(self, send):
        message = send("hello")
        MessageService.mark_read(message.pk)

        assert MessageService.mark_read(message.pk) is False

    def test_sender_cannot_acknowledge(self, send, student):
        message = send("hello")

        with pytest.raises(PermissionDeniedError):
            MessageService.mark_read(message.pk, user=student)

    def test_unknown_message(self, db):
        with pytest.raises(MessageNotFoundError):
            MessageService.mark_delivered(424242)

    def test_deleted_message_can_still_be_read(self, send):
        message = send("hello")
        MessageService.delete_message(message.pk)

        assert MessageService.mark_read(message.pk) is True


class TestMarkConversationRead:
    def test_marks_only_received_messages(self, send, student, psychologist):
        received = [send("one"), send("two")]
        sent_by_psychologist = send("three", sender=psychologist)

        changed = MessageService.mark_conversation_read(received[0].conversation_id, psychologist)

        assert changed == 2
        assert all(
            m.is_read for m in Message.objects.filter(pk__in=[r.pk for r in received])
        )
        sent_by_psychologist.refresh_from_db()
        assert sent_by_psychologist.is_read is False

    def test_nothing_to_read(self, send, psychologist):
        message = send("one")
        MessageService.mark_read(message.pk)

        assert MessageService.mark_conversation_read(message.conversation_id, psychologist) == 0

    def test_publishes_each_changed_message(
        self, send, psychologist, django_capture_on_commit_callbacks
    ):
        first = send("one")
        send("two")

        with patch("chat.broadcast.publish_message") as mock_publish:
            with django_capture_on_commit_callbacks(execute=True):
                MessageService.mark_conversation_read(first.conversation_id, psychologist)

        assert mock_publish.call_count == 2


class TestGetMessage:
    def test_get_message(self, db):
        message = MessageFactory()

        assert MessageService.get_message(message.pk) == message

    def test_get_unknown_message(self, db):
        with pytest.raises(MessageNotFoundError):
            MessageService.get_message(424242)
