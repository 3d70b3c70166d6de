from django.apps import AppConfig


class SpacesConfig(AppConfig):
    """Register the spaces app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "spaces"
