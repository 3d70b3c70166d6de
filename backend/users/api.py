from __future__ import annotations

from rest_framework import permissions
from rest_framework.response import Response
from rest_framework.views import APIView


class MeView(APIView):
    """Return the authenticated user's identity and roles."""

    permission_classes = (permissions.IsAuthenticated,)

    def get(self, request):
        user = request.user
        return Response(
            {
                "id": user.id,
                "username": user.username,
                "email": user.email,
                "roles": user.roles,
            }
        )
