"""
Celery tasks for the chat app.

This module defines async tasks for:
- Crisis alert dispatch to the alert triage subsystem

The triage subsystem is pluggable: CHAT_CRISIS_ALERT_HANDLER names a
callable taking the alert dict. The default only logs, which keeps
development and test setups self-contained.

Usage:
    from chat.tasks import dispatch_crisis_alert

    dispatch_crisis_alert.delay(alert.to_dict())
"""

import logging

from celery import shared_task
from django.conf import settings
from django.utils.module_loading import import_string

from chat.constants import CRISIS_CONFIG

logger = logging.getLogger(__name__)


def log_crisis_alert(alert: dict) -> None:
    """Default crisis alert handler: record the alert in the logs."""
    logger.warning(
        f"Crisis alert for user {alert['user_id']} in conversation "
        f"{alert['conversation_id']} (message {alert['message_id']}, "
        f"category {alert.get('category')})"
    )


def get_crisis_alert_handler():
    path = getattr(settings, "CHAT_CRISIS_ALERT_HANDLER", None) or CRISIS_CONFIG.DEFAULT_ALERT_HANDLER
    return import_string(path)


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 5},
)
def dispatch_crisis_alert(self, alert: dict) -> None:
    """
    Deliver a crisis alert to the configured handler.

    Retried with backoff when the handler fails, since a lost alert is
    worse than a late one.

    Args:
        alert: CrisisAlert.to_dict() payload (user_id, snippet,
            conversation_id, message_id, timestamp, category, keyword)
    """
    handler = get_crisis_alert_handler()
    handler(alert)
    logger.info(
        f"Crisis alert for message {alert['message_id']} dispatched "
        f"(attempt {self.request.retries + 1})"
    )
