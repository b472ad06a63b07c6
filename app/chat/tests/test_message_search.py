"""
Tests for message search.

Search is a case-insensitive substring match over one conversation,
most recent first, never returning deleted messages.
"""

import pytest

from chat.constants import MESSAGE_CONFIG
from chat.exceptions import ConversationNotFoundError, MessageValidationError
from chat.services import MessageSearchService, MessageService


class TestMessageSearch:
    """
    Tests for MessageSearchService.search().

    Verifies:
    - Case-insensitive substring match
    - Most recent first
    - Scoped to one conversation
    - Deleted messages excluded
    - Blank and oversized queries rejected
    """

    def test_case_insensitive_substring(self, send, psychologist):
        first = send("I feel Anxious before exams")
        send("Anxiety is common", sender=psychologist)
        send("See you Monday")

        results = MessageSearchService.search(first.conversation_id, "anxi")

        assert [m.content for m in results] == ["Anxiety is common", "I feel Anxious before exams"]

    def test_most_recent_first(self, send):
        first = send("exam on monday")
        second = send("exam moved to tuesday")

        results = list(MessageSearchService.search(first.conversation_id, "exam"))

        assert [m.pk for m in results] == [second.pk, first.pk]

    def test_scoped_to_conversation(self, send, outsider, psychologist):
        mine = send("homework help")
        send("homework help", sender=outsider, receiver=psychologist)

        results = list(MessageSearchService.search(mine.conversation_id, "homework"))

        assert [m.pk for m in results] == [mine.pk]

    def test_deleted_messages_excluded(self, send):
        kept = send("private note kept")
        deleted = send("private note removed")
        MessageService.delete_message(deleted.pk)

        results = list(MessageSearchService.search(kept.conversation_id, "private"))

        assert [m.pk for m in results] == [kept.pk]

    def test_edited_content_is_searched(self, send):
        message = send("first draft")
        MessageService.edit_message(message.pk, "final version")

        assert not MessageSearchService.search(message.conversation_id, "draft").exists()
        assert MessageSearchService.search(message.conversation_id, "final").exists()

    def test_results_are_lazy(self, send):
        """
        Results reflect the log at iteration time.

        Why it matters: paginated search re-runs the query per page.
        """
        first = send("sleep schedule")
        results = MessageSearchService.search(first.conversation_id, "sleep")

        send("sleep is better now")

        assert results.count() == 2

    def test_no_matches(self, send):
        message = send("hello")

        assert list(MessageSearchService.search(message.conversation_id, "goodbye")) == []

    @pytest.mark.parametrize("query", ["", "   ", None])
    def test_blank_query_rejected(self, send, query):
        message = send("hello")

        with pytest.raises(MessageValidationError) as exc_info:
            MessageSearchService.search(message.conversation_id, query)

        assert exc_info.value.error_code == "EMPTY_QUERY"

    def test_oversized_query_rejected(self, send):
        message = send("hello")

        with pytest.raises(MessageValidationError) as exc_info:
            MessageSearchService.search(
                message.conversation_id, "x" * (MESSAGE_CONFIG.SEARCH_MAX_QUERY_LENGTH + 1)
            )

        assert exc_info.value.error_code == "QUERY_TOO_LONG"

    def test_unknown_conversation(self, db):
        with pytest.raises(ConversationNotFoundError):
            MessageSearchService.search("1_2", "hello")

    def test_message_service_delegates(self, send):
        message = send("coping strategies")

        results = MessageService.search(message.conversation_id, "coping")

        assert [m.pk for m in results] == [message.pk]
