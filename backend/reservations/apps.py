"""App configuration for the reservations domain."""

from django.apps import AppConfig


class ReservationsConfig(AppConfig):
    """Register the reservations app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "reservations"
