"""
Signals sent by the chat app.

crisis_detected:
    Sent after commit when a text message matches the crisis scanner.
    Keyword arguments: alert (chat.types.CrisisAlert), message (Message).

Usage:
    from django.dispatch import receiver
    from chat.signals import crisis_detected

    @receiver(crisis_detected)
    def notify_on_call(sender, alert, **kwargs):
        ...
"""

from django.dispatch import Signal

crisis_detected = Signal()
