"""
Django admin configuration for chat models.

Provides admin interfaces for:
- Conversation browsing
- Message moderation (crisis flags, soft deletion)
- Reaction viewing
"""

from django.contrib import admin

from chat.models import Conversation, Message, MessageReaction


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    """Admin interface for Conversation model."""

    list_display = [
        "id",
        "user_lower",
        "user_higher",
        "last_sequence",
        "last_message_at",
        "created_at",
    ]
    search_fields = ["id", "user_lower__email", "user_higher__email"]
    readonly_fields = [
        "id",
        "last_message_id",
        "last_message_content",
        "last_message_type",
        "last_message_sender",
        "last_message_at",
        "last_sequence",
        "created_at",
        "updated_at",
    ]
    raw_id_fields = ["user_lower", "user_higher"]
    ordering = ["-last_message_at"]


class MessageReactionInline(admin.TabularInline):
    """Inline display of reactions in message admin."""

    model = MessageReaction
    extra = 0
    readonly_fields = ["user", "reaction_type", "created_at"]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    """Admin interface for Message model."""

    list_display = [
        "id",
        "conversation",
        "sequence",
        "sender",
        "message_type",
        "content_preview",
        "status",
        "is_crisis",
        "is_deleted",
        "created_at",
    ]
    list_filter = ["message_type", "status", "is_crisis", "is_deleted", "created_at"]
    search_fields = ["content", "sender__email", "conversation__id"]
    readonly_fields = [
        "sequence",
        "status",
        "delivered_at",
        "read_at",
        "edited_at",
        "created_at",
        "updated_at",
        "deleted_at",
    ]
    raw_id_fields = ["conversation", "sender", "receiver"]
    inlines = [MessageReactionInline]
    ordering = ["-created_at"]

    @admin.display(description="Content Preview")
    def content_preview(self, obj: Message) -> str:
        """Return truncated content for list display."""
        max_length = 50
        if len(obj.content) > max_length:
            return obj.content[:max_length] + "..."
        return obj.content
