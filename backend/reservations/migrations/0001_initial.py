import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("spaces", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Reservation",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("start_at", models.DateTimeField()),
                (
                    "end_at",
                    models.DateTimeField(help_text="Requested end, must be after start_at."),
                ),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("ended_at", models.DateTimeField(blank=True, null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDIENTE", "Pending"),
                            ("ACEPTADA", "Accepted"),
                            ("RECHAZADA", "Rejected"),
                            ("CANCELADA", "Cancelled"),
                            ("CHECKIN_SOLICITADO", "Check-in requested"),
                            ("EN_CURSO", "In progress"),
                            ("FINALIZADA", "Finished"),
                            ("EXPIRADA", "Expired"),
                        ],
                        default="PENDIENTE",
                        max_length=20,
                    ),
                ),
                ("check_in_at", models.DateTimeField(blank=True, null=True)),
                ("check_in_deadline", models.DateTimeField(blank=True, null=True)),
                (
                    "billing_mode",
                    models.CharField(
                        choices=[("HORA", "Hourly"), ("DIA", "Daily")],
                        default="HORA",
                        max_length=4,
                    ),
                ),
                (
                    "total_price",
                    models.DecimalField(decimal_places=2, default=0, max_digits=12),
                ),
                ("reject_reason", models.TextField(blank=True, default="")),
                ("cancelled_reason", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "occupant",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="reservations_as_occupant",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "provider",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="reservations_as_provider",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "space",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="reservations",
                        to="spaces.space",
                    ),
                ),
                (
                    "vehicle",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="reservations",
                        to="spaces.vehicle",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["space", "status", "start_at", "end_at"],
                        name="resv_space_status_span_idx",
                    ),
                    models.Index(fields=["occupant", "status"], name="resv_occupant_status_idx"),
                    models.Index(fields=["provider", "status"], name="resv_provider_status_idx"),
                    models.Index(
                        fields=["status", "check_in_deadline"],
                        name="resv_status_deadline_idx",
                    ),
                ],
            },
        ),
    ]
