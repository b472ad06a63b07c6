"""
Value objects passed between messaging services, consumers and streams.

- MessageDraft: what a sender submits to MessageService.send_message()
- PresenceState: last known presence of a user (cache record)
- TypingState: a typing indicator with its expiry (cache record)
- CrisisAlert: payload handed to the crisis alert side-channel

Presence and typing records are stored and published as plain dicts
(to_dict/from_dict) so they survive the cache pickler and the channel
layer's msgpack encoding alike.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from django.utils import timezone
from django.utils.dateparse import parse_datetime

from chat.constants import PRESENCE_CONFIG

if TYPE_CHECKING:
    from django.core.files import File


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _from_iso(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return parse_datetime(value)


@dataclass
class MessageDraft:
    """
    A message as submitted by its sender, before validation.

    Exactly one payload group is expected for non-text types: either the
    final URL (already hosted) or a blob for the Attachment Uploader.

    Attributes:
        sender_id / receiver_id: The two participants
        message_type: A chat.models.MessageType value
        content: Text for text messages; optional label otherwise
        conversation_id: Optional, must match the pair when given
        blob: Django File (or raw bytes) to upload for audio/image/file
        reply_to_id: Message being replied to, in the same conversation
        client_id: Sender-generated token for reconciliation and dedupe
    """

    sender_id: int
    receiver_id: int
    message_type: str = "text"
    content: str = ""
    conversation_id: str | None = None
    audio_url: str = ""
    duration: str = ""
    image_url: str = ""
    file_url: str = ""
    file_name: str = ""
    file_size: int | None = None
    sticker_url: str = ""
    blob: File | bytes | None = None
    reply_to_id: int | None = None
    client_id: str = ""


@dataclass
class PresenceState:
    """
    Last known presence of a user.

    is_online reflects what the last heartbeat said; readers should use
    is_active() (or PresenceService.get_presence, which applies it) to
    account for heartbeats that stopped arriving.
    """

    user_id: int
    is_online: bool
    last_seen: datetime | None = None
    current_conversation_id: str | None = None

    @classmethod
    def offline(cls, user_id: int) -> PresenceState:
        return cls(user_id=user_id, is_online=False)

    def is_active(self, now: datetime | None = None) -> bool:
        if not self.is_online or self.last_seen is None:
            return False
        now = now or timezone.now()
        return now - self.last_seen <= timedelta(
            seconds=PRESENCE_CONFIG.PRESENCE_TTL_SECONDS
        )

    def as_of(self, now: datetime | None = None) -> PresenceState:
        """Return this state with is_online cleared if the heartbeat is stale."""
        if self.is_online and not self.is_active(now):
            return PresenceState(
                user_id=self.user_id,
                is_online=False,
                last_seen=self.last_seen,
                current_conversation_id=None,
            )
        return self

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_seen"] = _to_iso(self.last_seen)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PresenceState:
        return cls(
            user_id=data["user_id"],
            is_online=bool(data.get("is_online")),
            last_seen=_from_iso(data.get("last_seen")),
            current_conversation_id=data.get("current_conversation_id"),
        )


@dataclass
class TypingState:
    """
    A typing indicator for one user in one conversation.

    The indicator is only true while now < expires_at; nobody has to clear
    it when the typist goes quiet.
    """

    conversation_id: str
    user_id: int
    is_typing: bool
    expires_at: datetime | None = None

    def is_active(self, now: datetime | None = None) -> bool:
        if not self.is_typing or self.expires_at is None:
            return False
        return (now or timezone.now()) < self.expires_at

    def seconds_remaining(self, now: datetime | None = None) -> float:
        if not self.is_active(now):
            return 0.0
        return (self.expires_at - (now or timezone.now())).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["expires_at"] = _to_iso(self.expires_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TypingState:
        return cls(
            conversation_id=data["conversation_id"],
            user_id=data["user_id"],
            is_typing=bool(data.get("is_typing")),
            expires_at=_from_iso(data.get("expires_at")),
        )


@dataclass
class CrisisAlert:
    """Payload emitted when a text message matches the crisis scanner."""

    user_id: int
    snippet: str
    conversation_id: str
    message_id: int
    timestamp: datetime
    category: str | None = None
    keyword: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = _to_iso(self.timestamp)
        return data
