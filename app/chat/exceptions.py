"""
Messaging-specific exceptions.

Exception Hierarchy:
    MessageValidationError - Malformed draft, query or argument (ValidationError)
    ConversationNotFoundError - Unknown conversation (NotFoundError)
    MessageNotFoundError - Unknown message or reply target (NotFoundError)
    ImmutableMessageError - Edit/react on a non-editable or deleted message (ConflictError)
    ConcurrencyConflict - Lost race on a reaction row, retried internally (ConflictError)
    UploadError - Blob store failure during send (ExternalServiceError)

Usage:
    from chat.exceptions import MessageNotFoundError, ImmutableMessageError

    if message.is_deleted:
        raise ImmutableMessageError(
            "Cannot edit a deleted message",
            details={"message_id": message.id},
        )

All classes carry the HTTP status of their core base, so views let them
propagate to core.views.api_exception_handler.
"""

from core.exceptions import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)


class MessageValidationError(ValidationError):
    """
    Raised when a draft or request is malformed.

    Nothing has been persisted or uploaded when this is raised.
    """

    default_error_code: str = "MESSAGE_VALIDATION_ERROR"


class ConversationNotFoundError(NotFoundError):
    """Raised when a conversation id does not resolve to a conversation."""

    default_error_code: str = "CONVERSATION_NOT_FOUND"


class MessageNotFoundError(NotFoundError):
    """Raised when a message id (or a reply target) does not exist."""

    default_error_code: str = "MESSAGE_NOT_FOUND"


class ImmutableMessageError(ConflictError):
    """
    Raised when a message cannot be changed in the requested way.

    Use for:
    - Editing a non-text message
    - Editing or reacting to a deleted message
    """

    default_error_code: str = "MESSAGE_IMMUTABLE"


class ConcurrencyConflict(ConflictError):
    """
    Raised when a concurrent writer won a race on the same row.

    Reaction updates catch this and retry; it only escapes when the retry
    budget is exhausted.
    """

    default_error_code: str = "CONCURRENCY_CONFLICT"


class UploadError(ExternalServiceError):
    """
    Raised when the attachment blob store rejects or fails an upload.

    The message is not persisted. Callers may retry the whole send.
    """

    default_error_code: str = "ATTACHMENT_UPLOAD_FAILED"
