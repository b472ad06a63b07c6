"""
Tests for the WebSocket consumers.

Consumers are driven through channels' WebsocketCommunicator behind the
JWT middleware, exactly as config.asgi wires them. Database writes made
by the consumers must commit for events to be published, so these tests
use transactional database access.
"""

import pytest
from asgiref.sync import async_to_sync
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from rest_framework_simplejwt.tokens import AccessToken

from chat.middleware import JWTAuthMiddleware
from chat.models import Message
from chat.routing import websocket_urlpatterns

pytestmark = pytest.mark.django_db(transaction=True)

TIMEOUT = 2

application = JWTAuthMiddleware(URLRouter(websocket_urlpatterns))


def chat_path(conversation_id, user=None):
    path = f"/ws/chat/{conversation_id}/"
    if user is not None:
        path += f"?token={AccessToken.for_user(user)}"
    return path


def presence_path(user_id, viewer):
    return f"/ws/presence/{user_id}/?token={AccessToken.for_user(viewer)}"


async def receive_until(communicator, message_type):
    """Return the next frame of the given type, skipping others."""
    while True:
        frame = await communicator.receive_json_from(timeout=TIMEOUT)
        if frame["type"] == message_type:
            return frame


# =============================================================================
# Connection
# =============================================================================


class TestChatConnection:
    def test_rejects_anonymous(self, conversation_id):
        async def scenario():
            communicator = WebsocketCommunicator(application, chat_path(conversation_id))
            result = await communicator.connect()
            await communicator.disconnect()
            return result

        connected, code = async_to_sync(scenario)()

        assert connected is False
        assert code == 4001

    def test_rejects_invalid_token(self, conversation_id):
        async def scenario():
            communicator = WebsocketCommunicator(
                application, f"/ws/chat/{conversation_id}/?token=not-a-jwt"
            )
            result = await communicator.connect()
            await communicator.disconnect()
            return result

        connected, code = async_to_sync(scenario)()

        assert connected is False
        assert code == 4001

    def test_rejects_outsider(self, conversation_id, outsider):
        path = chat_path(conversation_id, outsider)

        async def scenario():
            communicator = WebsocketCommunicator(application, path)
            result = await communicator.connect()
            await communicator.disconnect()
            return result

        connected, code = async_to_sync(scenario)()

        assert connected is False
        assert code == 4003

    def test_participant_connects_before_first_message(self, conversation_id, student):
        path = chat_path(conversation_id, student)

        async def scenario():
            communicator = WebsocketCommunicator(application, path)
            connected, _ = await communicator.connect()
            await communicator.disconnect()
            return connected

        assert async_to_sync(scenario)() is True

    def test_token_via_subprotocol(self, conversation_id, student):
        token = str(AccessToken.for_user(student))

        async def scenario():
            communicator = WebsocketCommunicator(
                application,
                f"/ws/chat/{conversation_id}/",
                subprotocols=["jwt", token],
            )
            result = await communicator.connect()
            await communicator.disconnect()
            return result

        connected, subprotocol = async_to_sync(scenario)()

        assert connected is True
        assert subprotocol == "jwt"


# =============================================================================
# Messaging
# =============================================================================


class TestChatMessaging:
    """
    Tests for ChatConsumer requests and relayed events.

    Verifies:
    - Sent messages are acknowledged and reach both participants
    - Typing reaches only the other participant
    - Read receipts and errors
    """

    def test_send_message_reaches_both(self, conversation_id, student, psychologist):
        student_path = chat_path(conversation_id, student)
        psychologist_path = chat_path(conversation_id, psychologist)

        async def scenario():
            sender = WebsocketCommunicator(application, student_path)
            receiver = WebsocketCommunicator(application, psychologist_path)
            await sender.connect()
            await receiver.connect()

            await sender.send_json_to(
                {"type": "message", "content": "Are you free later?", "client_id": "c-1"}
            )
            ack = await receive_until(sender, "ack")
            echoed = await receive_until(sender, "message")
            delivered = await receive_until(receiver, "message")

            await sender.disconnect()
            await receiver.disconnect()
            return ack, echoed, delivered

        ack, echoed, delivered = async_to_sync(scenario)()

        assert ack["action"] == "message"
        assert ack["client_id"] == "c-1"
        assert ack["sequence"] == 1
        assert echoed["event"] == "created"
        assert delivered["message"]["id"] == ack["message_id"]
        assert delivered["message"]["content"] == "Are you free later?"
        assert Message.objects.filter(pk=ack["message_id"]).exists()

    def test_invalid_message_returns_error(self, conversation_id, student):
        path = chat_path(conversation_id, student)

        async def scenario():
            communicator = WebsocketCommunicator(application, path)
            await communicator.connect()
            await communicator.send_json_to({"type": "message", "content": "   "})
            error = await receive_until(communicator, "error")
            await communicator.disconnect()
            return error

        error = async_to_sync(scenario)()

        assert error["error_code"] == "EMPTY_CONTENT"
        assert Message.objects.count() == 0

    def test_unknown_type(self, conversation_id, student):
        path = chat_path(conversation_id, student)

        async def scenario():
            communicator = WebsocketCommunicator(application, path)
            await communicator.connect()
            await communicator.send_json_to({"type": "shout"})
            error = await receive_until(communicator, "error")
            await communicator.disconnect()
            return error

        assert async_to_sync(scenario)()["error_code"] == "UNKNOWN_TYPE"

    def test_typing_reaches_other_participant(self, conversation_id, student, psychologist):
        student_path = chat_path(conversation_id, student)
        psychologist_path = chat_path(conversation_id, psychologist)

        async def scenario():
            typist = WebsocketCommunicator(application, student_path)
            watcher = WebsocketCommunicator(application, psychologist_path)
            await typist.connect()
            await watcher.connect()

            await typist.send_json_to({"type": "typing", "is_typing": True})
            typing = await receive_until(watcher, "typing")
            typist_saw_nothing = await typist.receive_nothing(timeout=0.2)

            await typist.disconnect()
            await watcher.disconnect()
            return typing, typist_saw_nothing

        typing, typist_saw_nothing = async_to_sync(scenario)()

        assert typing["user_id"] == student.pk
        assert typing["is_typing"] is True
        assert typist_saw_nothing is True

    def test_read_all(self, send, conversation_id, psychologist):
        send("one")
        send("two")
        path = chat_path(conversation_id, psychologist)

        async def scenario():
            communicator = WebsocketCommunicator(application, path)
            await communicator.connect()
            await communicator.send_json_to({"type": "read"})
            ack = await receive_until(communicator, "ack")
            await communicator.disconnect()
            return ack

        ack = async_to_sync(scenario)()

        assert ack == {"type": "ack", "action": "read", "marked_read": 2}
        assert not Message.objects.filter(is_read=False).exists()

    def test_message_from_other_conversation_is_not_found(
        self, send, conversation_id, student, outsider
    ):
        elsewhere = send("elsewhere", receiver=outsider)
        path = chat_path(conversation_id, student)

        async def scenario():
            communicator = WebsocketCommunicator(application, path)
            await communicator.connect()
            await communicator.send_json_to(
                {"type": "reaction", "message_id": elsewhere.pk, "reaction_type": "love"}
            )
            error = await receive_until(communicator, "error")
            await communicator.disconnect()
            return error

        assert async_to_sync(scenario)()["error_code"] == "MESSAGE_NOT_FOUND"

    @pytest.mark.parametrize(
        "frame",
        [
            {"type": "read", "message_id": "abc"},
            {"type": "delivered", "message_id": "abc"},
            {"type": "delivered"},
            {"type": "reaction", "message_id": -3, "reaction_type": "love"},
        ],
    )
    def test_malformed_message_id_returns_error(self, frame, conversation_id, student):
        path = chat_path(conversation_id, student)

        async def scenario():
            communicator = WebsocketCommunicator(application, path)
            await communicator.connect()
            await communicator.send_json_to(frame)
            error = await receive_until(communicator, "error")
            # The socket stays usable after the error
            await communicator.send_json_to({"type": "shout"})
            follow_up = await receive_until(communicator, "error")
            await communicator.disconnect()
            return error, follow_up

        error, follow_up = async_to_sync(scenario)()

        assert error["error_code"] == "MESSAGE_VALIDATION_ERROR"
        assert "message_id" in error["details"]
        assert follow_up["error_code"] == "UNKNOWN_TYPE"


# =============================================================================
# Presence
# =============================================================================


class TestPresenceConsumer:
    def test_initial_state_and_updates(self, conversation_id, student, psychologist):
        watch_path = presence_path(student.pk, psychologist)
        chat = chat_path(conversation_id, student)

        async def scenario():
            watcher = WebsocketCommunicator(application, watch_path)
            await watcher.connect()
            initial = await receive_until(watcher, "presence")

            student_socket = WebsocketCommunicator(application, chat)
            await student_socket.connect()
            update = await receive_until(watcher, "presence")

            await student_socket.disconnect()
            await watcher.disconnect()
            return initial, update

        initial, update = async_to_sync(scenario)()

        assert initial["is_online"] is False
        assert update["user_id"] == student.pk
        assert update["is_online"] is True

    def test_invalid_heartbeat(self, student):
        path = presence_path(student.pk, student)

        async def scenario():
            communicator = WebsocketCommunicator(application, path)
            await communicator.connect()
            await communicator.send_json_to({"type": "heartbeat", "is_online": "maybe"})
            error = await receive_until(communicator, "error")
            await communicator.disconnect()
            return error

        assert async_to_sync(scenario)()["error_code"] == "INVALID_HEARTBEAT"
