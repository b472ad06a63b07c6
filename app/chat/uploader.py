"""
Attachment uploader for voice notes, images and files.

Pushes a blob to the configured Django storage backend and returns its
public URL. The backend is whatever settings.STORAGES maps the
CHAT_ATTACHMENT_STORAGE alias to: S3 through django-storages in
production, the local filesystem in development, memory in tests.

Usage:
    from chat.uploader import AttachmentUploader

    url = AttachmentUploader().upload(user.id, request.FILES["file"], "file")

Key layout:
    audio_messages/<owner>/<millis>.webm
    images/<owner>/<millis>.<ext>
    files/<owner>/<millis>_<sanitized name>

Failures:
    - Oversized, empty or unknown-kind uploads raise MessageValidationError
      before anything is sent to the backend.
    - Any backend failure raises UploadError. The caller persists nothing.
"""

from __future__ import annotations

import logging
import os
import re
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.files import File
from django.core.files.base import ContentFile
from django.core.files.storage import storages
from django.utils import timezone

from chat.constants import ATTACHMENT_CONFIG
from chat.exceptions import MessageValidationError, UploadError
from chat.models import MessageType

if TYPE_CHECKING:
    from django.core.files.storage import Storage

logger = logging.getLogger(__name__)

UPLOADABLE_KINDS = (MessageType.AUDIO, MessageType.IMAGE, MessageType.FILE)

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_file_name(name: str) -> str:
    """Replace everything but ASCII letters, digits, dots and hyphens."""
    base = os.path.basename(name or "") or "file"
    return _UNSAFE_NAME_CHARS.sub("_", base)


def as_file(blob: File | bytes, name: str | None = None) -> File:
    """Wrap raw bytes in a ContentFile; pass Django files through."""
    if isinstance(blob, (bytes, bytearray)):
        return ContentFile(bytes(blob), name=name or "upload")
    if isinstance(blob, File):
        return blob
    raise MessageValidationError(
        "Attachment must be a file or bytes",
        details={"type": type(blob).__name__},
    )


class AttachmentUploader:
    """
    Stores message attachments and returns their URLs.

    Stateless apart from the storage handle, so one instance can be shared.
    """

    def __init__(self, storage: Storage | None = None):
        self._storage = storage

    @property
    def storage(self) -> Storage:
        if self._storage is None:
            alias = getattr(
                settings,
                "CHAT_ATTACHMENT_STORAGE",
                ATTACHMENT_CONFIG.DEFAULT_STORAGE_ALIAS,
            )
            self._storage = storages[alias]
        return self._storage

    def build_key(self, owner_id, kind: str, file_name: str | None = None) -> str:
        """Return the storage key for a new upload of the given kind."""
        millis = int(timezone.now().timestamp() * 1000)

        if kind == MessageType.AUDIO:
            return (
                f"{ATTACHMENT_CONFIG.AUDIO_PREFIX}/{owner_id}/"
                f"{millis}.{ATTACHMENT_CONFIG.AUDIO_EXTENSION}"
            )
        if kind == MessageType.IMAGE:
            ext = os.path.splitext(file_name or "")[1].lstrip(".").lower()
            if not ext or not ext.isalnum():
                ext = ATTACHMENT_CONFIG.DEFAULT_IMAGE_EXTENSION
            return f"{ATTACHMENT_CONFIG.IMAGE_PREFIX}/{owner_id}/{millis}.{ext}"
        return (
            f"{ATTACHMENT_CONFIG.FILE_PREFIX}/{owner_id}/"
            f"{millis}_{sanitize_file_name(file_name)}"
        )

    def upload(
        self,
        owner_id,
        blob: File | bytes,
        kind: str,
        file_name: str | None = None,
    ) -> str:
        """
        Upload a blob and return its URL.

        Args:
            owner_id: Id of the uploading user (part of the key)
            blob: Django File/UploadedFile or raw bytes
            kind: "audio", "image" or "file"
            file_name: Original file name (defaults to the blob's name)

        Raises:
            MessageValidationError: Unknown kind, empty or oversized blob
            UploadError: The storage backend failed
        """
        if kind not in UPLOADABLE_KINDS:
            raise MessageValidationError(
                f"Cannot upload attachments of type '{kind}'",
                details={"kind": kind, "allowed": [str(k) for k in UPLOADABLE_KINDS]},
            )

        content = as_file(blob, name=file_name)
        file_name = file_name or content.name
        size = content.size or 0

        if size <= 0:
            raise MessageValidationError("Attachment is empty", details={"kind": kind})
        if size > ATTACHMENT_CONFIG.MAX_UPLOAD_BYTES:
            raise MessageValidationError(
                "Attachment is too large",
                details={"size": size, "max_size": ATTACHMENT_CONFIG.MAX_UPLOAD_BYTES},
            )

        key = self.build_key(owner_id, kind, file_name)
        try:
            stored_name = self.storage.save(key, content)
            url = self.storage.url(stored_name)
        except Exception as e:
            logger.exception(
                "Attachment upload failed for user %s (%s, %d bytes)", owner_id, kind, size
            )
            raise UploadError(
                "Attachment upload failed",
                details={"kind": kind},
            ) from e

        logger.info("Uploaded %s attachment for user %s to %s", kind, owner_id, stored_name)
        return url
