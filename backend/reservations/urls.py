"""URL routing for the reservations API."""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .api import ReservationViewSet

app_name = "reservations"

router = DefaultRouter()
router.register("", ReservationViewSet, basename="reservation")

urlpatterns = [
    path("", include(router.urls)),
]
