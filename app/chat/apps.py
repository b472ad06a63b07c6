"""
Chat application configuration.

This app provides two-party direct messaging with:
- Deterministic conversation ids and unread counts
- Forward-only delivery status, edits, soft deletion and reactions
- Crisis keyword scanning with alert dispatch
- Presence and typing indicators over WebSockets
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Configuration for the chat application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Chat"
