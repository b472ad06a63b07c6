"""
Tests for chat model constraints and computed properties.

This module covers:
- Conversation ids: deterministic pair ids and their parsing
- Conversation: participant helpers and the last-message snapshot
- Message: sequence and client_id uniqueness, display content, replies
- MessageReaction: one reaction per user per message
- Status ordering helpers

Test Organization:
    - Each model has its own test class
    - Tests use descriptive names following: test_<scenario>_<expected_outcome>
"""

import pytest
from django.db import IntegrityError, transaction

from authentication.tests.factories import UserFactory
from chat.constants import MESSAGE_CONFIG
from chat.models import (
    MessageStatus,
    ReactionType,
    build_conversation_id,
    parse_conversation_id,
    statuses_before,
)
from chat.tests.factories import (
    ConversationFactory,
    MessageFactory,
    MessageReactionFactory,
)


# =============================================================================
# Conversation ids
# =============================================================================


class TestConversationIds:
    """
    Tests for build_conversation_id() and parse_conversation_id().

    Verifies:
    - Order independence
    - String ordering of ids (not numeric)
    - Rejection of malformed ids
    """

    def test_id_is_order_independent(self):
        assert build_conversation_id(3, 8) == build_conversation_id(8, 3) == "3_8"

    def test_ids_are_compared_as_strings(self):
        """
        "12" sorts before "7" as a string.

        Why it matters: every client must derive the same id, and string
        comparison is the one every client can do.
        """
        assert build_conversation_id(7, 12) == "12_7"

    def test_parse_returns_both_participants(self):
        assert parse_conversation_id("12_7") == ("12", "7")

    @pytest.mark.parametrize(
        "conversation_id",
        ["", "7", "7_", "_7", "7_7", "7_12", "1_2_3"],
    )
    def test_parse_rejects_malformed_ids(self, conversation_id):
        assert parse_conversation_id(conversation_id) is None


# =============================================================================
# Conversation
# =============================================================================


class TestConversation:
    def test_factory_orders_users_and_derives_id(self, db):
        first = UserFactory()
        second = UserFactory()

        conversation = ConversationFactory(user_lower=second, user_higher=first)

        assert conversation.pk == build_conversation_id(first.pk, second.pk)
        assert str(conversation.user_lower_id) <= str(conversation.user_higher_id)

    def test_other_participant(self, db, student, psychologist):
        conversation = ConversationFactory(user_lower=student, user_higher=psychologist)

        assert conversation.other_participant(student) == psychologist
        assert conversation.other_participant(psychologist.pk) == student

    def test_has_participant(self, db, student, psychologist, outsider):
        conversation = ConversationFactory(user_lower=student, user_higher=psychologist)

        assert conversation.has_participant(student)
        assert conversation.has_participant(psychologist.pk)
        assert not conversation.has_participant(outsider)

    def test_unique_pair_constraint(self, db, student, psychologist):
        conversation = ConversationFactory(user_lower=student, user_higher=psychologist)

        with pytest.raises(IntegrityError), transaction.atomic():
            conversation.__class__.objects.create(
                id="duplicate",
                user_lower=conversation.user_lower,
                user_higher=conversation.user_higher,
            )

    def test_apply_snapshot_copies_latest_message(self, db):
        message = MessageFactory(content="See you Thursday")
        conversation = message.conversation
        conversation.refresh_from_db()

        assert conversation.last_message_id == message.pk
        assert conversation.last_message_content == "See you Thursday"
        assert conversation.last_message_sender_id == message.sender_id
        assert conversation.last_message_at == message.created_at


# =============================================================================
# Message
# =============================================================================


class TestMessage:
    """
    Tests for Message constraints and helpers.

    Verifies:
    - Sequence is unique within a conversation
    - client_id is unique per sender, but blank client_ids never collide
    - Deleted messages display the placeholder
    """

    def test_sequence_unique_within_conversation(self, db):
        message = MessageFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            MessageFactory(conversation=message.conversation, sequence=message.sequence)

    def test_same_sequence_allowed_in_other_conversation(self, db):
        first = MessageFactory()
        second = MessageFactory()

        assert first.sequence == second.sequence == 1

    def test_client_id_unique_per_sender(self, db):
        message = MessageFactory(client_id="c-1")

        with pytest.raises(IntegrityError), transaction.atomic():
            MessageFactory(
                conversation=message.conversation,
                sender=message.sender,
                client_id="c-1",
            )

    def test_blank_client_ids_do_not_collide(self, db):
        message = MessageFactory()
        MessageFactory(conversation=message.conversation, sender=message.sender)

        assert message.conversation.messages.count() == 2

    def test_display_content_for_deleted_message(self, db):
        message = MessageFactory(content="Private thought")
        message.soft_delete()

        assert message.get_display_content() == MESSAGE_CONFIG.DELETED_PLACEHOLDER
        assert message.content == "Private thought"

    def test_reply_snapshot(self, db):
        message = MessageFactory(
            reply_to_message_id=41,
            reply_to_content="How are you?",
            reply_to_sender_name="Dr. Lee",
            reply_to_type="text",
        )

        assert message.is_reply
        assert message.get_reply_snapshot() == {
            "message_id": 41,
            "content": "How are you?",
            "sender_name": "Dr. Lee",
            "type": "text",
        }

    def test_no_reply_snapshot_without_reply(self, db):
        assert MessageFactory().get_reply_snapshot() is None

    def test_soft_delete_keeps_first_timestamp(self, db):
        message = MessageFactory()
        message.soft_delete()
        deleted_at = message.deleted_at

        message.soft_delete()

        assert message.deleted_at == deleted_at


# =============================================================================
# MessageReaction
# =============================================================================


class TestMessageReaction:
    def test_one_reaction_per_user_per_message(self, db):
        reaction = MessageReactionFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            MessageReactionFactory(
                message=reaction.message,
                user=reaction.user,
                reaction_type=ReactionType.SAD,
            )


# =============================================================================
# Status ordering
# =============================================================================


class TestStatusOrdering:
    def test_statuses_before(self):
        assert statuses_before(MessageStatus.SENT) == []
        assert statuses_before(MessageStatus.DELIVERED) == [MessageStatus.SENT]
        assert set(statuses_before(MessageStatus.READ)) == {
            MessageStatus.SENT,
            MessageStatus.DELIVERED,
        }
