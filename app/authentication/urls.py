"""
URL configuration for authentication app.

Identity is issued elsewhere on the platform; this service only exchanges
credentials for JWTs (consumed by both REST and WebSocket clients) and
reports the current user.

URL structure:
    /api/v1/auth/token/           - Obtain access/refresh pair (POST)
    /api/v1/auth/token/refresh/   - Refresh access token (POST)
    /api/v1/auth/me/              - Current user (GET)
"""

from django.urls import path
from rest_framework import permissions
from rest_framework.generics import RetrieveAPIView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from authentication.serializers import UserSerializer

app_name = "authentication"


class CurrentUserView(RetrieveAPIView):
    """Return the authenticated user."""

    serializer_class = UserSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_object(self):
        return self.request.user


urlpatterns = [
    path("token/", TokenObtainPairView.as_view(), name="token-obtain"),
    path("token/refresh/", TokenRefreshView.as_view(), name="token-refresh"),
    path("me/", CurrentUserView.as_view(), name="me"),
]
