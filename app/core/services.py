"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with common service utilities

Service Layer Philosophy:
    Services encapsulate business logic separate from views and models.
    Views and consumers handle transport concerns, models handle data,
    services handle logic.

Pattern Comparison:
    - ServiceResult: Use for expected or tolerated failures (presence and
      typing updates, which are best effort)
    - Exceptions: Use for failures the caller must act on (core.exceptions)

Usage:
    from core.services import BaseService, ServiceResult

    class PresenceService(BaseService):
        @classmethod
        def heartbeat(cls, user_id: int) -> ServiceResult[PresenceState]:
            try:
                state = ...
            except Exception as e:
                cls.get_logger().exception(f"Heartbeat failed: {e}")
                return ServiceResult.failure("Failed to update presence", error_code="PRESENCE_ERROR")
            return ServiceResult.success(state)

    # In view
    result = PresenceService.heartbeat(request.user.id)
    if result.success:
        return Response(PresenceSerializer(result.data).data)
    return Response({"error": result.error, "error_code": result.error_code}, status=503)

Related:
    - core.exceptions: For errors the caller must handle
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator

# Generic type for ServiceResult data
T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures

    Usage:
        result = PresenceService.get_presence(user_id)
        if result:
            state = result.data
        else:
            logger.debug("Presence unavailable: %s", result.error_code)
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """Create a successful result."""
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
        )

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Database transaction management

    Design Notes:
        - Use @classmethod (no instance state)
        - Use ServiceResult for tolerated failures
        - Raise core.exceptions for failures the caller must handle
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get a logger named after the service class."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        Thin wrapper around Django's transaction.atomic() that makes
        transaction boundaries explicit in service code.
        """
        with transaction.atomic():
            yield
