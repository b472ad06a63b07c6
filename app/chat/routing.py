"""
WebSocket URL routing for the chat application.

This module defines the URL patterns for WebSocket connections,
mapping paths to their corresponding consumers.

URL Patterns:
    ws/chat/<conversation_id>/ - Connect to a specific conversation
    ws/presence/<user_id>/ - Watch one user's presence

Authentication:
    JWT token should be passed as query parameter: ?token=<jwt_access_token>
    (or as the "jwt" subprotocol). JWTAuthMiddleware validates the token and
    attaches the user to the consumer's scope.
"""

from django.urls import path

from chat import consumers

websocket_urlpatterns = [
    path(
        "ws/chat/<str:conversation_id>/",
        consumers.ChatConsumer.as_asgi(),
    ),
    path(
        "ws/presence/<int:user_id>/",
        consumers.PresenceConsumer.as_asgi(),
    ),
]
