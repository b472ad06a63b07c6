"""
REST API views for chat.

ViewSets:
    ConversationViewSet: Directory, id resolution, read-all, typing, search
    MessageViewSet: Message log and every pipeline operation on a message

Views:
    HeartbeatView: Record the current user's heartbeat
    UserPresenceView: Presence of one user
    BulkPresenceView: Presence of several users

URL Structure:
    /api/v1/chat/conversations/
    /api/v1/chat/conversations/{id}/
    /api/v1/chat/conversations/resolve/
    /api/v1/chat/conversations/{id}/read/
    /api/v1/chat/conversations/{id}/typing/
    /api/v1/chat/conversations/{id}/search/
    /api/v1/chat/conversations/{conversation_id}/messages/
    /api/v1/chat/conversations/{conversation_id}/messages/{id}/
    /api/v1/chat/conversations/{conversation_id}/messages/{id}/edit/
    /api/v1/chat/conversations/{conversation_id}/messages/{id}/read/
    /api/v1/chat/conversations/{conversation_id}/messages/{id}/delivered/
    /api/v1/chat/conversations/{conversation_id}/messages/{id}/reactions/
    /api/v1/chat/conversations/{conversation_id}/messages/{id}/reactions/toggle/
    /api/v1/chat/presence/heartbeat/
    /api/v1/chat/presence/bulk/
    /api/v1/chat/presence/{user_id}/

Errors raised by chat.services propagate to
core.views.api_exception_handler; views only translate ServiceResult
failures from the presence and typing services.
"""

from __future__ import annotations

import logging

from django.contrib.auth import get_user_model
from django.shortcuts import get_object_or_404
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
    extend_schema_view,
    inline_serializer,
)
from rest_framework import serializers, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from chat.models import Conversation, Message
from chat.pagination import (
    ConversationCursorPagination,
    MessageCursorPagination,
    MessageSearchCursorPagination,
)
from chat.permissions import IsConversationParticipant, IsMessageAuthor, IsMessageReceiver
from chat.serializers import (
    BulkPresenceSerializer,
    ConversationListSerializer,
    ConversationResolveSerializer,
    HeartbeatSerializer,
    MessageCreateSerializer,
    MessageEditSerializer,
    MessageSerializer,
    PresenceSerializer,
    ReactionInputSerializer,
    ReactionSerializer,
    ReactionSummarySerializer,
    TypingSerializer,
    TypingStateSerializer,
)
from chat.services import (
    ConversationService,
    MessageSearchService,
    MessageService,
    PresenceService,
    ReactionService,
    TypingService,
)

logger = logging.getLogger(__name__)

User = get_user_model()


def _failure_response(result, http_status=status.HTTP_503_SERVICE_UNAVAILABLE):
    return Response(
        {"error": result.error, "error_code": result.error_code},
        status=http_status,
    )


# =============================================================================
# Conversation ViewSet
# =============================================================================


@extend_schema_view(
    list=extend_schema(
        operation_id="list_conversations",
        summary="List conversations",
        description=(
            "List the current user's conversations, most recently active first. "
            "Each entry carries the other participant, a preview of the last "
            "message and the number of unread messages."
        ),
        tags=["Chat - Conversations"],
    ),
    retrieve=extend_schema(
        operation_id="get_conversation",
        summary="Get conversation",
        description="Get a single conversation entry with preview and unread count.",
        tags=["Chat - Conversations"],
    ),
)
class ConversationViewSet(viewsets.ReadOnlyModelViewSet):
    """
    ViewSet for the conversation directory.

    list:
        Conversations of the current user with unread counts.

    retrieve:
        One conversation the user participates in.

    resolve:
        Conversation id for the current user and another user.

    read:
        Mark everything received in the conversation as read.

    typing:
        Set (POST) or read (GET) typing indicators.

    search:
        Substring search over the conversation's messages.
    """

    permission_classes = [IsAuthenticated]
    pagination_class = ConversationCursorPagination
    serializer_class = ConversationListSerializer
    lookup_value_regex = r"[^/]+"

    def get_queryset(self):
        if not self.request.user.is_authenticated:
            return Conversation.objects.none()
        return ConversationService.list_conversations(self.request.user)

    def get_permissions(self):
        if self.action in ("retrieve", "read", "typing", "search"):
            return [IsAuthenticated(), IsConversationParticipant()]
        return [IsAuthenticated()]

    def _check_participant(self, conversation_id: str) -> None:
        if not ConversationService.is_participant(conversation_id, self.request.user):
            self.permission_denied(
                self.request,
                message=IsConversationParticipant.message,
            )

    @extend_schema(
        operation_id="resolve_conversation",
        summary="Resolve conversation id",
        description=(
            "Return the deterministic conversation id shared by the current user "
            "and another user. The conversation itself is created with its first message."
        ),
        request=ConversationResolveSerializer,
        responses={
            200: inline_serializer(
                name="ConversationResolveResponse",
                fields={"conversation_id": serializers.CharField()},
            ),
            400: OpenApiResponse(description="Same user on both sides"),
            404: OpenApiResponse(description="User not found"),
        },
        tags=["Chat - Conversations"],
    )
    @action(detail=False, methods=["post"])
    def resolve(self, request):
        """
        POST /api/v1/chat/conversations/resolve/
        """
        serializer = ConversationResolveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        other_user = get_object_or_404(User, pk=serializer.validated_data["user_id"], is_active=True)
        conversation_id = ConversationService.resolve_conversation_id(request.user.pk, other_user.pk)
        return Response({"conversation_id": conversation_id})

    @extend_schema(
        operation_id="mark_conversation_read",
        summary="Mark conversation as read",
        description="Mark every unread message the current user received in the conversation as read.",
        request=None,
        responses={
            200: inline_serializer(
                name="MarkConversationReadResponse",
                fields={"marked_read": serializers.IntegerField()},
            ),
            403: OpenApiResponse(description="Not a participant"),
        },
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"])
    def read(self, request, pk=None):
        """
        POST /api/v1/chat/conversations/{id}/read/
        """
        self._check_participant(pk)
        changed = MessageService.mark_conversation_read(pk, request.user)
        return Response({"marked_read": changed})

    @extend_schema(
        operation_id="conversation_typing",
        summary="Typing indicator",
        description=(
            "POST sets or clears the current user's typing indicator. "
            "GET returns the other participant's indicator as of now."
        ),
        request=TypingSerializer,
        responses={
            200: OpenApiResponse(response=TypingStateSerializer),
            403: OpenApiResponse(description="Not a participant"),
            503: OpenApiResponse(description="Typing backend unavailable"),
        },
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["get", "post"])
    def typing(self, request, pk=None):
        """
        GET/POST /api/v1/chat/conversations/{id}/typing/
        """
        self._check_participant(pk)

        if request.method == "POST":
            serializer = TypingSerializer(data=request.data)
            serializer.is_valid(raise_exception=True)
            result = TypingService.set_typing(
                pk, request.user.pk, serializer.validated_data["is_typing"]
            )
            if not result.success:
                return _failure_response(result)
            return Response(TypingStateSerializer(result.data).data)

        other_user_id = next(
            user_id
            for user_id in ConversationService.participant_ids(pk)
            if user_id != str(request.user.pk)
        )
        state = TypingService.get_typing(pk, other_user_id)
        return Response(
            {
                "conversation_id": pk,
                "user_id": int(other_user_id),
                "is_typing": state.is_active() if state else False,
                "expires_at": state.expires_at if state and state.is_active() else None,
            }
        )

    @extend_schema(
        operation_id="search_messages",
        summary="Search messages",
        description=(
            "Case-insensitive substring search over message content in the "
            "conversation, most recent first. Deleted messages are never returned."
        ),
        parameters=[
            OpenApiParameter(
                name="q",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                required=True,
                description="Text to search for",
            ),
        ],
        responses={
            200: OpenApiResponse(response=MessageSerializer(many=True)),
            400: OpenApiResponse(description="Empty or too long query"),
            403: OpenApiResponse(description="Not a participant"),
            404: OpenApiResponse(description="Conversation not found"),
        },
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["get"])
    def search(self, request, pk=None):
        """
        GET /api/v1/chat/conversations/{id}/search/?q=...
        """
        self._check_participant(pk)
        queryset = MessageSearchService.search(pk, request.query_params.get("q", ""))

        paginator = MessageSearchCursorPagination()
        page = paginator.paginate_queryset(queryset, request, view=self)
        return paginator.get_paginated_response(MessageSerializer(page, many=True).data)


# =============================================================================
# Message ViewSet
# =============================================================================


@extend_schema_view(
    list=extend_schema(
        operation_id="list_messages",
        summary="List messages",
        description=(
            "Get the conversation's messages in sequence order, oldest first. "
            "Deleted messages are included with their content replaced."
        ),
        tags=["Chat - Messages"],
    ),
    retrieve=extend_schema(
        operation_id="get_message",
        summary="Get message",
        tags=["Chat - Messages"],
    ),
    create=extend_schema(
        operation_id="send_message",
        summary="Send message",
        description=(
            "Send a text, sticker, audio, image or file message to the other "
            "participant. Attachments can be given as a URL or uploaded as a "
            "multipart 'file'. Resending with the same client_id returns the "
            "original message."
        ),
        request=MessageCreateSerializer,
        responses={
            201: OpenApiResponse(response=MessageSerializer, description="Message sent"),
            400: OpenApiResponse(description="Malformed message"),
            403: OpenApiResponse(description="Not a participant"),
            404: OpenApiResponse(description="Reply target not found"),
            502: OpenApiResponse(description="Attachment upload failed"),
        },
        tags=["Chat - Messages"],
    ),
    destroy=extend_schema(
        operation_id="delete_message",
        summary="Delete message",
        description="Soft delete a message you sent. Deleting twice is a no-op.",
        tags=["Chat - Messages"],
    ),
)
class MessageViewSet(viewsets.GenericViewSet):
    """
    ViewSet for message operations within a conversation.

    list:
        Conversation log in sequence order.

    create:
        Send a message to the other participant.

    destroy:
        Soft delete a message. Only the sender can delete.
    """

    permission_classes = [IsAuthenticated, IsConversationParticipant]
    pagination_class = MessageCursorPagination
    serializer_class = MessageSerializer

    def get_queryset(self):
        return (
            Message.objects.filter(conversation_id=self.kwargs.get("conversation_pk"))
            .select_related("sender")
            .prefetch_related("reactions")
            .order_by("sequence")
        )

    def get_serializer_class(self):
        if self.action == "create":
            return MessageCreateSerializer
        return MessageSerializer

    def get_permissions(self):
        if self.action in ("destroy", "edit"):
            return [IsAuthenticated(), IsConversationParticipant(), IsMessageAuthor()]
        if self.action in ("read", "delivered"):
            return [IsAuthenticated(), IsConversationParticipant(), IsMessageReceiver()]
        return [IsAuthenticated(), IsConversationParticipant()]

    def _reload(self, message_id: int) -> Message:
        return self.get_queryset().get(pk=message_id)

    def list(self, request, conversation_pk=None):
        queryset = self.get_queryset()
        page = self.paginate_queryset(queryset)
        if page is not None:
            return self.get_paginated_response(MessageSerializer(page, many=True).data)
        return Response(MessageSerializer(queryset, many=True).data)

    def retrieve(self, request, conversation_pk=None, pk=None):
        return Response(MessageSerializer(self.get_object()).data)

    def create(self, request, conversation_pk=None):
        serializer = MessageCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        receiver_id = next(
            user_id
            for user_id in ConversationService.participant_ids(conversation_pk)
            if user_id != str(request.user.pk)
        )
        message = MessageService.send_message(
            serializer.to_draft(request.user.pk, receiver_id, conversation_pk)
        )
        return Response(
            MessageSerializer(self._reload(message.pk)).data,
            status=status.HTTP_201_CREATED,
        )

    def destroy(self, request, conversation_pk=None, pk=None):
        message = self.get_object()
        MessageService.delete_message(message.pk, user=request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="edit_message",
        summary="Edit message",
        description=(
            "Replace the content of a text message you sent. The timestamp and "
            "delivery status are kept and the message is marked as edited."
        ),
        request=MessageEditSerializer,
        responses={
            200: OpenApiResponse(response=MessageSerializer, description="Message edited"),
            400: OpenApiResponse(description="Empty or too long content"),
            403: OpenApiResponse(description="Cannot edit messages from other users"),
            404: OpenApiResponse(description="Message not found"),
            409: OpenApiResponse(description="Message is deleted or not a text message"),
        },
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["patch"])
    def edit(self, request, conversation_pk=None, pk=None):
        """
        PATCH /api/v1/chat/conversations/{conversation_id}/messages/{id}/edit/
        """
        message = self.get_object()

        serializer = MessageEditSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        MessageService.edit_message(
            message.pk,
            serializer.validated_data["content"],
            user=request.user,
        )
        return Response(MessageSerializer(self._reload(message.pk)).data)

    @extend_schema(
        operation_id="mark_message_read",
        summary="Mark message as read",
        description="Acknowledge a received message as read. Status never moves backwards.",
        request=None,
        responses={
            200: OpenApiResponse(response=MessageSerializer),
            403: OpenApiResponse(description="Only the receiver can acknowledge"),
        },
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["post"])
    def read(self, request, conversation_pk=None, pk=None):
        """
        POST /api/v1/chat/conversations/{conversation_id}/messages/{id}/read/
        """
        message = self.get_object()
        MessageService.mark_read(message.pk, user=request.user)
        return Response(MessageSerializer(self._reload(message.pk)).data)

    @extend_schema(
        operation_id="mark_message_delivered",
        summary="Mark message as delivered",
        description="Acknowledge delivery of a received message. No-op once read.",
        request=None,
        responses={
            200: OpenApiResponse(response=MessageSerializer),
            403: OpenApiResponse(description="Only the receiver can acknowledge"),
        },
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["post"])
    def delivered(self, request, conversation_pk=None, pk=None):
        """
        POST /api/v1/chat/conversations/{conversation_id}/messages/{id}/delivered/
        """
        message = self.get_object()
        MessageService.mark_delivered(message.pk, user=request.user)
        return Response(MessageSerializer(self._reload(message.pk)).data)

    @extend_schema(
        operation_id="message_reactions",
        summary="Message reactions",
        description=(
            "GET summarises reactions by type. POST sets the current user's "
            "reaction, replacing any previous one. DELETE removes it."
        ),
        request=ReactionInputSerializer,
        responses={
            200: OpenApiResponse(response=ReactionSummarySerializer(many=True)),
            201: OpenApiResponse(response=ReactionSerializer),
            204: OpenApiResponse(description="Reaction removed"),
            404: OpenApiResponse(description="Message or reaction not found"),
            409: OpenApiResponse(description="Message is deleted"),
        },
        tags=["Chat - Reactions"],
    )
    @action(detail=True, methods=["get", "post", "delete"])
    def reactions(self, request, conversation_pk=None, pk=None):
        """
        GET/POST/DELETE /api/v1/chat/conversations/{conversation_id}/messages/{id}/reactions/
        """
        message = self.get_object()

        if request.method == "GET":
            summary = ReactionService.get_message_reactions(message.pk)
            return Response(ReactionSummarySerializer(summary, many=True).data)

        if request.method == "DELETE":
            if not ReactionService.remove_reaction(message.pk, request.user):
                return Response(
                    {"error": "No reaction to remove", "error_code": "REACTION_NOT_FOUND"},
                    status=status.HTTP_404_NOT_FOUND,
                )
            return Response(status=status.HTTP_204_NO_CONTENT)

        serializer = ReactionInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        reaction = ReactionService.add_reaction(
            message.pk, request.user, serializer.validated_data["reaction_type"]
        )
        return Response(ReactionSerializer(reaction).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="toggle_reaction",
        summary="Toggle reaction",
        description=(
            "Tap a reaction button: adds the reaction, switches to it, or "
            "removes it when it is already the current user's reaction."
        ),
        request=ReactionInputSerializer,
        responses={
            200: inline_serializer(
                name="ToggleReactionResponse",
                fields={
                    "action": serializers.ChoiceField(choices=["added", "removed"]),
                    "reaction": ReactionSerializer(allow_null=True),
                },
            ),
        },
        tags=["Chat - Reactions"],
    )
    @action(detail=True, methods=["post"], url_path="reactions/toggle")
    def toggle_reaction(self, request, conversation_pk=None, pk=None):
        """
        POST /api/v1/chat/conversations/{conversation_id}/messages/{id}/reactions/toggle/
        """
        message = self.get_object()

        serializer = ReactionInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        reaction = ReactionService.toggle_reaction(
            message.pk, request.user, serializer.validated_data["reaction_type"]
        )
        if reaction is None:
            return Response({"action": "removed", "reaction": None})
        return Response({"action": "added", "reaction": ReactionSerializer(reaction).data})


# =============================================================================
# Presence Views
# =============================================================================


class HeartbeatView(APIView):
    """
    Record the current user's heartbeat.

    POST /api/v1/chat/presence/heartbeat/

    Payload:
        is_online: false when the client is going away (default true)
        conversation_id: Conversation currently open, if any
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="presence_heartbeat",
        summary="Send heartbeat",
        description=(
            "Record a heartbeat for the current user. Users without a heartbeat "
            "in the last 60 seconds are reported offline."
        ),
        request=HeartbeatSerializer,
        responses={
            200: OpenApiResponse(response=PresenceSerializer),
            503: OpenApiResponse(description="Presence backend unavailable"),
        },
        tags=["Chat - Presence"],
    )
    def post(self, request):
        serializer = HeartbeatSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = PresenceService.heartbeat(
            request.user.pk,
            is_online=serializer.validated_data["is_online"],
            conversation_id=serializer.validated_data.get("conversation_id"),
        )
        if not result.success:
            return _failure_response(result)
        return Response(PresenceSerializer(result.data).data)


class UserPresenceView(APIView):
    """
    Get presence status for a specific user.

    GET /api/v1/chat/presence/{user_id}/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_user_presence",
        summary="Get user presence",
        responses={
            200: OpenApiResponse(response=PresenceSerializer),
            503: OpenApiResponse(description="Presence backend unavailable"),
        },
        tags=["Chat - Presence"],
    )
    def get(self, request, user_id):
        result = PresenceService.get_presence(user_id)
        if not result.success:
            return _failure_response(result)
        return Response(PresenceSerializer(result.data).data)


class BulkPresenceView(APIView):
    """
    Get presence status for multiple users.

    POST /api/v1/chat/presence/bulk/

    Payload:
        user_ids: [1, 2, 3]
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_bulk_presence",
        summary="Get presence for several users",
        request=BulkPresenceSerializer,
        responses={
            200: OpenApiResponse(response=PresenceSerializer(many=True)),
            503: OpenApiResponse(description="Presence backend unavailable"),
        },
        tags=["Chat - Presence"],
    )
    def post(self, request):
        serializer = BulkPresenceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = PresenceService.get_bulk_presence(serializer.validated_data["user_ids"])
        if not result.success:
            return _failure_response(result)
        return Response(PresenceSerializer(result.data, many=True).data)
