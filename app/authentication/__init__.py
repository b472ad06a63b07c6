"""
Authentication application.

Holds the platform identity that messaging builds on: an email-keyed User
with a display name and a role (student or psychologist). Clients exchange
credentials for simplejwt tokens here and present them to both the REST
API and the WebSocket endpoints.

Usage:
    from authentication.models import User
"""
