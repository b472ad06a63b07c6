"""
Celery configuration for the Django application.

Celery runs work that must not block a request or a WebSocket frame:
- Crisis alert dispatch to the triage subsystem (chat.tasks)

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all registered Django apps. Crisis alerts are
routed to their own queue (see CELERY_TASK_ROUTES in settings), so run a
worker for it:

    celery -A config worker -Q celery,alerts -l info

Usage:
    from chat.tasks import dispatch_crisis_alert

    dispatch_crisis_alert.delay(alert.to_dict())

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Looks for a tasks.py module in each installed app
app.autodiscover_tasks()
