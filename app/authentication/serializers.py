"""
Serializers for authentication models.

This module provides DRF serializers for:
- User model (read operations, used for "me" and participant payloads)

Security:
    - No password or permission fields are ever exposed
"""

from rest_framework import serializers

from authentication.models import User


class UserSerializer(serializers.ModelSerializer):
    """
    Serializer for User model (read operations).

    Used for the /api/v1/auth/me/ endpoint and embedded as the
    "other participant" in conversation listings.
    """

    display_name = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            "id",
            "email",
            "display_name",
            "role",
        ]
        read_only_fields = fields

    def get_display_name(self, obj):
        return obj.get_full_name()
