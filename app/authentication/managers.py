"""
User manager for email-based accounts with a platform role.
"""

from django.contrib.auth.models import BaseUserManager


class UserManager(BaseUserManager):
    """
    Creates users keyed by email.

    Every account carries a role (student or psychologist). Staff accounts
    used for moderation are created with create_superuser and default to
    the psychologist role.

    Usage:
        User.objects.create_user(
            email="psychologist@example.com",
            password="securepassword",
            role=User.Role.PSYCHOLOGIST,
        )
    """

    def _check_role(self, extra_fields):
        role = extra_fields.get("role")
        if role is not None and role not in self.model.Role.values:
            raise ValueError(f"Unknown role: {role!r}")

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError("An email address is required")
        self._check_role(extra_fields)

        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)
        user = self.model(email=self.normalize_email(email), **extra_fields)

        # Accounts provisioned without a password can only use issued tokens
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()

        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("role", self.model.Role.PSYCHOLOGIST)

        for flag in ("is_staff", "is_superuser"):
            if extra_fields[flag] is not True:
                raise ValueError(f"Superuser must have {flag}=True.")

        return self.create_user(email, password, **extra_fields)
