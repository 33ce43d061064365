"""
Domain Expiry Evaluation Module

Computes how many days remain before a registration (or certificate) expires.
Everything is compared as UTC calendar dates so a sweep running at 00:05 and
one running at 23:55 agree on the count for the same day.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Union

from models import ExpiryUrgency

WARNING_DAYS = 30

DateLike = Union[date, datetime, str]


@dataclass(frozen=True)
class ExpiryEvaluation:
    days_remaining: int
    urgency: ExpiryUrgency

    @property
    def is_expired(self) -> bool:
        return self.urgency == ExpiryUrgency.EXPIRED


def to_utc_date(value: DateLike) -> date:
    """
    Calendar date in UTC; naive datetimes are taken to be UTC already

    Strings are parsed as ISO dates and raise ValueError when malformed.
    """
    if isinstance(value, str):
        return date.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def days_remaining(target: DateLike, now: DateLike) -> int:
    """
    Days from now until target, on UTC calendar dates

    Zero means the target date is today; negative means it has passed.
    """
    return (to_utc_date(target) - to_utc_date(now)).days


def evaluate_expiry(target: DateLike, now: DateLike, warning_days: int = WARNING_DAYS) -> ExpiryEvaluation:
    """Days remaining plus ok / expiring_soon / expired classification"""
    days = days_remaining(target, now)

    if days <= 0:
        urgency = ExpiryUrgency.EXPIRED
    elif days <= warning_days:
        urgency = ExpiryUrgency.EXPIRING_SOON
    else:
        urgency = ExpiryUrgency.OK

    return ExpiryEvaluation(days_remaining=days, urgency=urgency)
