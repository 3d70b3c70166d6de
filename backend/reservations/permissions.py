from __future__ import annotations

from rest_framework import permissions

from users.models import User


class HasRole(permissions.BasePermission):
    """Allow users holding ``role``; staff pass every role check."""

    role: str = ""

    def has_permission(self, request, view) -> bool:
        user = request.user
        return bool(user and user.is_authenticated and user.has_role(self.role))


class IsOccupant(HasRole):
    role = User.Role.OCUPANTE
    message = "Occupant role required."


class IsProvider(HasRole):
    role = User.Role.PRESTADOR
    message = "Provider role required."
