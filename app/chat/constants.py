"""
Constants and configuration for direct messaging.

This module centralizes configuration values for:
- Message operations (content limits, search, pagination)
- Attachments (kinds, labels, upload limits, storage key layout)
- Reactions (the fixed reaction vocabulary, conflict retries)
- Presence and typing (freshness windows, cache keys)
- Crisis keyword scanning

Values marked as overridable can be replaced via CHAT_* Django settings.
Import example:
    from chat.constants import MESSAGE_CONFIG, TYPING_CONFIG
"""

from typing import Final


# =============================================================================
# Message Configuration
# =============================================================================


class MESSAGE_CONFIG:
    """Configuration for message operations."""

    # Content limits
    MAX_CONTENT_LENGTH: Final[int] = 10000  # Characters

    # Rendered in place of the content of soft-deleted messages
    DELETED_PLACEHOLDER: Final[str] = "This message was deleted"

    # Reply snapshots keep a preview, not the whole parent message
    REPLY_SNAPSHOT_MAX_LENGTH: Final[int] = 500

    # client_id is an opaque token generated by the sending client
    MAX_CLIENT_ID_LENGTH: Final[int] = 64

    # Search settings
    SEARCH_MAX_QUERY_LENGTH: Final[int] = 200
    SEARCH_DEFAULT_PAGE_SIZE: Final[int] = 20

    # History paging
    HISTORY_PAGE_SIZE: Final[int] = 50
    HISTORY_MAX_PAGE_SIZE: Final[int] = 100

    # How long subscribe() holds a message back waiting for an earlier sequence
    REORDER_WINDOW_SECONDS: Final[float] = 2.0


# =============================================================================
# Attachment Configuration
# =============================================================================


class ATTACHMENT_CONFIG:
    """
    Configuration for message attachments.

    Blobs go to the Django storage alias named by CHAT_ATTACHMENT_STORAGE
    (overridable). Keys are laid out per kind and owner so a bucket policy
    can scope access by prefix.
    """

    # Default content label per message type
    AUDIO_LABEL: Final[str] = "Voice Message"
    IMAGE_LABEL: Final[str] = "Image"
    STICKER_LABEL: Final[str] = "Sticker"

    # Storage key prefixes
    AUDIO_PREFIX: Final[str] = "audio_messages"
    IMAGE_PREFIX: Final[str] = "images"
    FILE_PREFIX: Final[str] = "files"

    AUDIO_EXTENSION: Final[str] = "webm"
    DEFAULT_IMAGE_EXTENSION: Final[str] = "jpg"

    MAX_UPLOAD_BYTES: Final[int] = 25 * 1024 * 1024  # 25 MB
    MAX_FILE_NAME_LENGTH: Final[int] = 255

    # Voice note duration as shown to users, e.g. "0:45" or "1:02:10"
    DURATION_PATTERN: Final[str] = r"^\d{1,2}(:\d{2}){1,2}$"

    DEFAULT_STORAGE_ALIAS: Final[str] = "default"


# =============================================================================
# Reaction Configuration
# =============================================================================


class REACTION_CONFIG:
    """Configuration for message reactions."""

    # Fixed vocabulary shown in the reaction picker
    REACTION_TYPES: Final[tuple] = ("like", "love", "care", "support", "sad", "angry")

    # Lost races on the (message, user) unique constraint are retried this
    # many times before giving up
    MAX_CONFLICT_RETRIES: Final[int] = 3


# =============================================================================
# Presence Configuration
# =============================================================================


class PRESENCE_CONFIG:
    """Configuration for online presence tracking."""

    # A heartbeat older than this is treated as offline
    PRESENCE_TTL_SECONDS: Final[int] = 60

    # Expected client heartbeat cadence
    HEARTBEAT_INTERVAL_SECONDS: Final[int] = 30

    # Cache retention for the last known record ("last seen" survives going
    # offline for this long)
    RECORD_RETENTION_SECONDS: Final[int] = 7 * 24 * 60 * 60

    KEY_PREFIX_USER_PRESENCE: Final[str] = "presence:user"


# =============================================================================
# Typing Configuration
# =============================================================================


class TYPING_CONFIG:
    """Configuration for typing indicators."""

    # A typing signal is only honoured until now + this timeout
    TYPING_TIMEOUT_SECONDS: Final[float] = 3.0

    KEY_PREFIX_TYPING: Final[str] = "typing"


# =============================================================================
# Crisis Scanner Configuration
# =============================================================================


class CRISIS_CONFIG:
    """
    Configuration for the crisis keyword scanner.

    DEFAULT_KEYWORDS maps an alert category to the phrases that trigger it.
    Replace the whole mapping with the CHAT_CRISIS_KEYWORDS setting.
    The list is tuned to never miss, not to avoid false positives.
    """

    DEFAULT_KEYWORDS: Final[dict] = {
        "suicide": (
            "suicide",
            "kill myself",
            "end my life",
            "want to die",
            "no reason to live",
        ),
        "self-harm": (
            "harm myself",
            "self-harm",
            "cutting",
            "overdose",
        ),
        "crisis": (
            "hanging",
            "jumping",
        ),
    }

    # Characters of message content forwarded with an alert
    SNIPPET_LENGTH: Final[int] = 200

    DEFAULT_ALERT_HANDLER: Final[str] = "chat.tasks.log_crisis_alert"
