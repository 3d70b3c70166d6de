from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Register the chat app and its realtime handlers."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"

    def ready(self) -> None:
        """Register socket event handlers with the realtime gateway."""
        from chat import realtime  # noqa: F401
