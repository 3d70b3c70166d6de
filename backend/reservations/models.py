"""Database models for parking space reservations."""

from __future__ import annotations

from django.conf import settings
from django.db import models

from spaces.models import Space, Vehicle


class Reservation(models.Model):
    """A request by an occupant to hold a provider's space over a time span."""

    class Status(models.TextChoices):
        PENDIENTE = "PENDIENTE", "Pending"
        ACEPTADA = "ACEPTADA", "Accepted"
        RECHAZADA = "RECHAZADA", "Rejected"
        CANCELADA = "CANCELADA", "Cancelled"
        CHECKIN_SOLICITADO = "CHECKIN_SOLICITADO", "Check-in requested"
        EN_CURSO = "EN_CURSO", "In progress"
        FINALIZADA = "FINALIZADA", "Finished"
        EXPIRADA = "EXPIRADA", "Expired"

    class BillingMode(models.TextChoices):
        HORA = "HORA", "Hourly"
        DIA = "DIA", "Daily"

    space = models.ForeignKey(
        Space,
        related_name="reservations",
        on_delete=models.CASCADE,
    )
    occupant = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="reservations_as_occupant",
        on_delete=models.CASCADE,
    )
    provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="reservations_as_provider",
        on_delete=models.CASCADE,
    )
    vehicle = models.ForeignKey(
        Vehicle,
        related_name="reservations",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    start_at = models.DateTimeField()
    end_at = models.DateTimeField(help_text="Requested end, must be after start_at.")
    started_at = models.DateTimeField(null=True, blank=True)
    ended_at = models.DateTimeField(null=True, blank=True)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDIENTE,
    )
    check_in_at = models.DateTimeField(null=True, blank=True)
    check_in_deadline = models.DateTimeField(null=True, blank=True)
    billing_mode = models.CharField(
        max_length=4,
        choices=BillingMode.choices,
        default=BillingMode.HORA,
    )
    total_price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    reject_reason = models.TextField(blank=True, default="")
    cancelled_reason = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["space", "status", "start_at", "end_at"], name="resv_space_status_span_idx"),
            models.Index(fields=["occupant", "status"], name="resv_occupant_status_idx"),
            models.Index(fields=["provider", "status"], name="resv_provider_status_idx"),
            models.Index(fields=["status", "check_in_deadline"], name="resv_status_deadline_idx"),
        ]

    def __str__(self) -> str:
        return f"Reservation #{self.pk} for space {self.space_id} ({self.status})"

    def participant_ids(self) -> tuple[int, int]:
        return (self.occupant_id, self.provider_id)

    def is_participant(self, user_id: int | None) -> bool:
        return user_id is not None and user_id in self.participant_ids()

    def is_terminal(self) -> bool:
        return self.status in {
            self.Status.RECHAZADA,
            self.Status.CANCELADA,
            self.Status.FINALIZADA,
            self.Status.EXPIRADA,
        }

    def deadline_passed(self, now) -> bool:
        """Return True once the check-in tolerance window is over."""
        return self.check_in_deadline is not None and now > self.check_in_deadline
