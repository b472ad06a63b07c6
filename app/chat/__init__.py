"""
Chat app for two-party real-time messaging.

This app handles:
- Conversations between a student and a psychologist (or any two users)
- Message sending, editing, soft deletion and history
- Delivery and read status, reactions and replies
- Crisis keyword detection on message text
- WebSocket real-time updates, presence and typing indicators

Related apps:
    - authentication: User model for participants

WebSocket Support:
    Uses Django Channels for real-time communication.
    See consumers.py for WebSocket handlers.
    See routing.py for WebSocket URL patterns.
    See broadcast.py for publishing and async subscriptions.

Usage:
    from chat.services import MessageService
    from chat.types import MessageDraft

    message = MessageService.send_message(
        MessageDraft(sender_id=user.id, receiver_id=other_user.id, content="Hello!")
    )
"""
