"""
Test configuration and fixtures for chat tests.

This module provides:
- A student and a psychologist who talk to each other, plus an outsider
- Their conversation id and (when needed) the persisted conversation
- A send() helper that goes through the real message pipeline
- API client helpers for authenticated requests

Usage:
    def test_example(conversation_id, student_client):
        response = student_client.get(f"/api/v1/chat/conversations/{conversation_id}/messages/")
        assert response.status_code == 200
"""

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.models import User
from authentication.tests.factories import UserFactory
from chat.models import build_conversation_id
from chat.services import ConversationService, MessageService
from chat.types import MessageDraft


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def student(db):
    """A student seeking counseling."""
    return UserFactory(role=User.Role.STUDENT, display_name="Sam Student")


@pytest.fixture
def psychologist(db):
    """The student's psychologist."""
    return UserFactory(role=User.Role.PSYCHOLOGIST, display_name="Dr. Lee")


@pytest.fixture
def outsider(db):
    """A user who is not part of the student/psychologist conversation."""
    return UserFactory()


# =============================================================================
# Conversation Fixtures
# =============================================================================


@pytest.fixture
def conversation_id(student, psychologist):
    return build_conversation_id(student.pk, psychologist.pk)


@pytest.fixture
def conversation(student, psychologist):
    """The persisted conversation, before any message is sent."""
    return ConversationService.get_or_create_direct(student, psychologist)


@pytest.fixture
def send(student, psychologist):
    """
    Send a message through MessageService.

    Defaults to a text message from the student to the psychologist:
        message = send("hello")
        reply = send("hi", sender=psychologist)
    """

    def _send(content="Hello", sender=None, receiver=None, **fields):
        sender = sender or student
        if receiver is None:
            receiver = psychologist if sender.pk == student.pk else student
        return MessageService.send_message(
            MessageDraft(
                sender_id=sender.pk,
                receiver_id=receiver.pk,
                content=content,
                **fields,
            )
        )

    return _send


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
def api_client():
    """Unauthenticated API client."""
    return APIClient()


@pytest.fixture
def authenticated_client_factory(db):
    """
    Factory for API clients authenticated with a JWT access token.

    Usage:
        def test_example(authenticated_client_factory, some_user):
            client = authenticated_client_factory(some_user)
    """

    def _make_client(user):
        client = APIClient()
        refresh = RefreshToken.for_user(user)
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
        return client

    return _make_client


@pytest.fixture
def student_client(authenticated_client_factory, student):
    return authenticated_client_factory(student)


@pytest.fixture
def psychologist_client(authenticated_client_factory, psychologist):
    return authenticated_client_factory(psychologist)


@pytest.fixture
def outsider_client(authenticated_client_factory, outsider):
    return authenticated_client_factory(outsider)
