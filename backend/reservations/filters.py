import django_filters as filters

from .models import Reservation


class ReservationFilter(filters.FilterSet):
    status = filters.ChoiceFilter(field_name="status", choices=Reservation.Status.choices)

    class Meta:
        model = Reservation
        fields = ["status"]
