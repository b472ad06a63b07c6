"""
URL configuration for chat API.

URL Structure:
    Conversations:
        /conversations/                          GET
        /conversations/resolve/                  POST
        /conversations/{id}/                     GET
        /conversations/{id}/read/                POST
        /conversations/{id}/typing/              GET, POST
        /conversations/{id}/search/?q=           GET

    Messages:
        /conversations/{id}/messages/                      GET, POST
        /conversations/{id}/messages/{pk}/                 GET, DELETE
        /conversations/{id}/messages/{pk}/edit/            PATCH
        /conversations/{id}/messages/{pk}/read/            POST
        /conversations/{id}/messages/{pk}/delivered/       POST

    Reactions:
        /conversations/{id}/messages/{pk}/reactions/        GET, POST, DELETE
        /conversations/{id}/messages/{pk}/reactions/toggle/ POST

    Presence:
        /presence/heartbeat/                     POST
        /presence/bulk/                          POST
        /presence/{user_id}/                     GET

Conversation ids are "<lower>_<higher>" user id pairs, so nested routes
capture them as strings.

All URLs are prefixed with /api/v1/chat/ in the main URL configuration.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from chat.views import (
    BulkPresenceView,
    ConversationViewSet,
    HeartbeatView,
    MessageViewSet,
    UserPresenceView,
)

# Main router for conversations
router = DefaultRouter()
router.register(r"conversations", ConversationViewSet, basename="conversation")

app_name = "chat"

urlpatterns = [
    path("", include(router.urls)),
    # Presence endpoints
    path("presence/heartbeat/", HeartbeatView.as_view(), name="presence-heartbeat"),
    path("presence/bulk/", BulkPresenceView.as_view(), name="presence-bulk"),
    path("presence/<int:user_id>/", UserPresenceView.as_view(), name="presence-user"),
    # Nested routes for messages
    path(
        "conversations/<str:conversation_pk>/messages/",
        MessageViewSet.as_view({"get": "list", "post": "create"}),
        name="conversation-message-list",
    ),
    path(
        "conversations/<str:conversation_pk>/messages/<int:pk>/",
        MessageViewSet.as_view({"get": "retrieve", "delete": "destroy"}),
        name="conversation-message-detail",
    ),
    path(
        "conversations/<str:conversation_pk>/messages/<int:pk>/edit/",
        MessageViewSet.as_view({"patch": "edit"}),
        name="conversation-message-edit",
    ),
    path(
        "conversations/<str:conversation_pk>/messages/<int:pk>/read/",
        MessageViewSet.as_view({"post": "read"}),
        name="conversation-message-read",
    ),
    path(
        "conversations/<str:conversation_pk>/messages/<int:pk>/delivered/",
        MessageViewSet.as_view({"post": "delivered"}),
        name="conversation-message-delivered",
    ),
    # Reaction routes
    path(
        "conversations/<str:conversation_pk>/messages/<int:pk>/reactions/",
        MessageViewSet.as_view(
            {"get": "reactions", "post": "reactions", "delete": "reactions"}
        ),
        name="conversation-message-reactions",
    ),
    path(
        "conversations/<str:conversation_pk>/messages/<int:pk>/reactions/toggle/",
        MessageViewSet.as_view({"post": "toggle_reaction"}),
        name="conversation-message-reaction-toggle",
    ),
]
