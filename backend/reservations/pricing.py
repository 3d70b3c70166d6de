"""Pricing strategies for reservations and pre-booking quotes."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

BILLING_HOURLY = "HORA"
BILLING_DAILY = "DIA"
BILLING_AUTO = "AUTO"
BILLING_MODES = (BILLING_HOURLY, BILLING_DAILY, BILLING_AUTO)

# AUTO switches to daily billing once a stay reaches this many hours.
AUTO_DAILY_THRESHOLD_HOURS = Decimal("8")

_CENT = Decimal("0.01")
_HOUR = Decimal(3600)


def q2(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def _to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class PriceQuote:
    """Result of a pricing strategy: the total plus the mode and counts used."""

    total: Decimal
    billing_mode: str
    hours: Decimal
    days: int


def compute_stay_price(
    *,
    price_per_hour,
    price_per_day,
    start_at: datetime,
    end_at: datetime,
    billing_mode: str = BILLING_AUTO,
) -> PriceQuote:
    """
    Price ``[start_at, end_at)`` by elapsed hours or elapsed days.

    Hours are fractional; days are at least one and rounded up. ``AUTO``
    resolves to daily billing at eight hours or more, hourly otherwise.
    """
    if billing_mode not in BILLING_MODES:
        raise ValueError(f"Unknown billing mode: {billing_mode}")

    seconds = Decimal((end_at - start_at) // timedelta(microseconds=1)) / Decimal(1_000_000)
    hours = max(seconds / _HOUR, Decimal("0"))
    days = max(1, math.ceil(hours / 24))

    if billing_mode == BILLING_AUTO:
        billing_mode = BILLING_DAILY if hours >= AUTO_DAILY_THRESHOLD_HOURS else BILLING_HOURLY

    if billing_mode == BILLING_DAILY:
        total = Decimal(days) * _to_decimal(price_per_day)
    else:
        total = hours * _to_decimal(price_per_hour)
    return PriceQuote(total=q2(total), billing_mode=billing_mode, hours=hours, days=days)


def compute_cheapest_quote(
    *,
    price_per_hour,
    price_per_day,
    start_at: datetime,
    end_at: datetime,
) -> PriceQuote:
    """
    Quote the cheaper of whole-hour and whole-day billing.

    Minutes, hours and days are each rounded up from the previous unit. A
    daily rate of zero means the space cannot be billed by the day.
    """
    micros = max((end_at - start_at) // timedelta(microseconds=1), 0)
    minutes = -(-micros // 60_000_000)
    hours = -(-minutes // 60)
    days = -(-hours // 24)

    by_hour = Decimal(hours) * _to_decimal(price_per_hour)
    day_rate = _to_decimal(price_per_day)
    by_day: Optional[Decimal] = Decimal(days) * day_rate if day_rate > 0 else None

    if by_day is not None and by_day < by_hour:
        return PriceQuote(total=q2(by_day), billing_mode=BILLING_DAILY, hours=Decimal(hours), days=days)
    return PriceQuote(total=q2(by_hour), billing_mode=BILLING_HOURLY, hours=Decimal(hours), days=days)
