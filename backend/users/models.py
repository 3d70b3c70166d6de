from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Marketplace user; capability flags map onto occupant/provider/admin roles."""

    class Role(models.TextChoices):
        OCUPANTE = "OCUPANTE", "Occupant"
        PRESTADOR = "PRESTADOR", "Provider"
        ADMIN = "ADMIN", "Admin"

    phone = models.CharField(
        max_length=32,
        unique=True,
        null=True,
        blank=True,
        help_text="Optional E.164 formatted phone number.",
    )
    can_rent = models.BooleanField(default=True, help_text="May book spaces (occupant).")
    can_list = models.BooleanField(default=False, help_text="May offer spaces (provider).")

    def is_occupant(self) -> bool:
        return bool(self.can_rent)

    def is_provider(self) -> bool:
        return bool(self.can_list)

    def has_role(self, role: str) -> bool:
        """Return True when the user holds ``role``; staff hold every role."""
        if self.is_staff:
            return True
        if role == self.Role.OCUPANTE:
            return self.is_occupant()
        if role == self.Role.PRESTADOR:
            return self.is_provider()
        return False

    @property
    def roles(self) -> list[str]:
        roles = []
        if self.can_rent:
            roles.append(self.Role.OCUPANTE.value)
        if self.can_list:
            roles.append(self.Role.PRESTADOR.value)
        if self.is_staff:
            roles.append(self.Role.ADMIN.value)
        return roles
