"""Parking spaces and occupant vehicles referenced by reservations."""

from __future__ import annotations

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

MAX_SPACE_CAPACITY = 50


class VehicleType(models.TextChoices):
    COCHE = "COCHE", "Car"
    CAMIONETA = "CAMIONETA", "Pickup / SUV"
    MOTO = "MOTO", "Motorcycle"
    URBAN = "URBAN", "Van"
    REDILA = "REDILA", "Stake truck"


class Space(models.Model):
    """A parking space offered by a provider."""

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="spaces",
        on_delete=models.CASCADE,
    )
    title = models.CharField(max_length=160)
    address = models.CharField(max_length=255, blank=True, default="")
    price_per_hour = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    price_per_day = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    capacity = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1), MaxValueValidator(MAX_SPACE_CAPACITY)],
        help_text="How many vehicles may hold the space over the same interval.",
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["owner", "is_active"], name="space_owner_active_idx"),
        ]

    def __str__(self) -> str:
        return f"Space #{self.pk} {self.title}"

    def allowed_vehicle_type_values(self) -> set[str]:
        return set(self.allowed_vehicle_types.values_list("vehicle_type", flat=True))

    def accepts_vehicle_type(self, vehicle_type: str) -> bool:
        """An empty allow-list accepts every vehicle type."""
        allowed = self.allowed_vehicle_type_values()
        return not allowed or vehicle_type in allowed


class SpaceAllowedVehicleType(models.Model):
    space = models.ForeignKey(
        Space,
        related_name="allowed_vehicle_types",
        on_delete=models.CASCADE,
    )
    vehicle_type = models.CharField(max_length=16, choices=VehicleType.choices)

    class Meta:
        unique_together = ("space", "vehicle_type")

    def __str__(self) -> str:  # pragma: no cover - simple repr
        return f"{self.space_id}:{self.vehicle_type}"


class Vehicle(models.Model):
    """A vehicle registered by an occupant."""

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="vehicles",
        on_delete=models.CASCADE,
    )
    type = models.CharField(max_length=16, choices=VehicleType.choices, default=VehicleType.COCHE)
    plate = models.CharField(max_length=20, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Vehicle #{self.pk} {self.type} {self.plate}".strip()
