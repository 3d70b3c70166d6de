"""Per-reservation chat messages and read cursors."""

from __future__ import annotations

from django.conf import settings
from django.db import models


class ChatMessage(models.Model):
    """Immutable message posted by a participant; ordered by id."""

    class Type(models.TextChoices):
        TEXT = "TEXT", "Text"

    reservation = models.ForeignKey(
        "reservations.Reservation",
        on_delete=models.CASCADE,
        related_name="chat_messages",
    )
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_messages",
    )
    body = models.TextField()
    type = models.CharField(max_length=8, choices=Type.choices, default=Type.TEXT)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]
        indexes = [
            models.Index(fields=["reservation", "id"], name="chat_msg_reservation_id_idx"),
        ]

    def __str__(self) -> str:
        return f"ChatMessage(r={self.reservation_id}, sender={self.sender_id}, id={self.pk})"

    def as_payload(self) -> dict:
        return {
            "id": self.pk,
            "reservation_id": self.reservation_id,
            "sender_id": self.sender_id,
            "body": self.body,
            "type": self.type,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ChatReadState(models.Model):
    """Track the last read message per user in a reservation chat."""

    reservation = models.ForeignKey(
        "reservations.Reservation",
        on_delete=models.CASCADE,
        related_name="chat_read_states",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_read_states",
    )
    last_read_message = models.ForeignKey(
        ChatMessage,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )
    last_read_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        unique_together = ("reservation", "user")

    def __str__(self) -> str:  # pragma: no cover - simple repr
        return f"ReadState(r={self.reservation_id}, user={self.user_id})"
