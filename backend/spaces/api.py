"""Public quote endpoint for spaces."""

from __future__ import annotations

from django.conf import settings
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from core.errors import DomainNotFound, error_response
from reservations.pricing import compute_cheapest_quote

from .models import Space
from .serializers import QuoteQuerySerializer


@api_view(["GET"])
@permission_classes([AllowAny])
def space_quote(request, pk: int):
    """Quote a span at the cheaper of hourly and daily billing."""
    query = QuoteQuerySerializer(data=request.query_params)
    query.is_valid(raise_exception=True)
    start_at = query.validated_data["start_at"]
    end_at = query.validated_data["end_at"]

    space = Space.objects.filter(pk=pk, is_active=True).first()
    if space is None:
        return error_response(DomainNotFound("Space is not available.", code="SPACE_NOT_FOUND"))

    quote = compute_cheapest_quote(
        price_per_hour=space.price_per_hour,
        price_per_day=space.price_per_day,
        start_at=start_at,
        end_at=end_at,
    )
    return Response(
        {
            "quote": {
                "space_id": space.id,
                "total_price": str(quote.total),
                "currency": settings.PRICING_CURRENCY,
                "start_at": start_at.isoformat(),
                "end_at": end_at.isoformat(),
                "billing_mode": quote.billing_mode,
                "hours": int(quote.hours),
                "days": quote.days,
            }
        },
        status=status.HTTP_200_OK,
    )
