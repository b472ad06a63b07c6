"""
Pagination classes for chat API.

This module provides cursor-based pagination for the chat system:
- MessageCursorPagination: Conversation history (oldest first)
- MessageSearchCursorPagination: Search results (most recent first)
- ConversationCursorPagination: Directory listing (most recent first)

Design Decisions:
    - Message cursors use sequence, which is unique within a conversation
      and never changes, so pages stay stable while new messages arrive
    - Conversations ordered by most recent activity
"""

from rest_framework.pagination import CursorPagination

from chat.constants import MESSAGE_CONFIG


class MessageCursorPagination(CursorPagination):
    """
    Cursor pagination for message history.

    Query parameters:
        cursor: Encoded cursor for position
        page_size: Number of messages (optional override)
    """

    page_size = MESSAGE_CONFIG.HISTORY_PAGE_SIZE
    max_page_size = MESSAGE_CONFIG.HISTORY_MAX_PAGE_SIZE
    page_size_query_param = "page_size"
    ordering = ("sequence",)
    cursor_query_param = "cursor"


class MessageSearchCursorPagination(CursorPagination):
    """Cursor pagination for search results, newest match first."""

    page_size = MESSAGE_CONFIG.SEARCH_DEFAULT_PAGE_SIZE
    max_page_size = MESSAGE_CONFIG.HISTORY_MAX_PAGE_SIZE
    page_size_query_param = "page_size"
    ordering = ("-sequence",)
    cursor_query_param = "cursor"


class ConversationCursorPagination(CursorPagination):
    """
    Cursor pagination for conversation lists.

    Default: 20 conversations per page
    Maximum: 50 conversations per page
    """

    page_size = 20
    max_page_size = 50
    page_size_query_param = "page_size"
    ordering = ("-last_message_at", "-created_at")
    cursor_query_param = "cursor"
