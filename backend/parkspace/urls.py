from django.conf import settings
from django.contrib import admin
from django.urls import include, path

from views_events import events_stream

urlpatterns = [
    path("api/events/stream/", events_stream, name="events_stream"),
    path("api/users/", include("users.urls")),
    path("api/spaces/", include("spaces.urls")),
    path("api/", include("chat.urls")),
    path(
        "api/reservations/",
        include(("reservations.urls", "reservations"), namespace="reservations"),
    ),
]

if settings.ENABLE_DJANGO_ADMIN:
    urlpatterns.insert(0, path("admin/", admin.site.urls))
