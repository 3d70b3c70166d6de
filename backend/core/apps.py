from django.apps import AppConfig


class CoreConfig(AppConfig):
    """Register shared realtime and error plumbing."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "core"
