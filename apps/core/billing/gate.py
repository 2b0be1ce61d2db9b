"""
Usage billing gate.

Maps a school's student and paid-seat counts to an ACTIVE/BLOCKED status.
The result is advisory for rendering; views that change school data re-check
it through ``billing_active_required``.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from django.conf import settings
from django.db import models
from django.utils import timezone


class BillingStatus(models.TextChoices):
    ACTIVE = 'active', 'Active'
    BLOCKED = 'blocked', 'Blocked'


def _to_decimal(value) -> Decimal:
    return Decimal(str(value or '0'))


def _quantize(value) -> Decimal:
    return _to_decimal(value).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def _count(value) -> int:
    return max(0, int(value or 0))


@dataclass(frozen=True)
class BillingPolicy:
    unpaid_student_threshold: int = 50
    grace_period_hours: int = 48
    price_per_student: Decimal = Decimal('2000.00')

    @classmethod
    def from_settings(cls):
        return cls(
            unpaid_student_threshold=int(getattr(settings, 'EDUIT_BILLING_UNPAID_THRESHOLD', 50)),
            grace_period_hours=int(getattr(settings, 'EDUIT_BILLING_GRACE_HOURS', 48)),
            price_per_student=_quantize(getattr(settings, 'EDUIT_BILLING_PRICE_PER_STUDENT', '2000.00')),
        )


@dataclass(frozen=True)
class BillingSnapshot:
    status: str
    total_students: int
    paid_students: int
    unpaid_students: int
    amount_due: Decimal
    hours_remaining: Optional[int] = None
    last_activity: Optional[datetime] = None

    @property
    def is_blocked(self):
        return self.status == BillingStatus.BLOCKED

    def as_dict(self):
        return {
            'status': str(self.status),
            'total_students': self.total_students,
            'paid_students': self.paid_students,
            'unpaid_students': self.unpaid_students,
            'amount_due': str(self.amount_due),
            'hours_remaining': self.hours_remaining,
            'last_activity': self.last_activity.isoformat() if self.last_activity else None,
        }


def evaluate_billing(
    total_students,
    paid_students,
    *,
    last_activity: Optional[datetime] = None,
    policy: Optional[BillingPolicy] = None,
    now: Optional[datetime] = None,
) -> BillingSnapshot:
    policy = policy or BillingPolicy.from_settings()
    now = now or timezone.now()

    total = _count(total_students)
    paid = _count(paid_students)
    unpaid = max(0, total - paid)

    grace_deadline = None
    if unpaid > 0 and last_activity is not None:
        grace_deadline = last_activity + timedelta(hours=policy.grace_period_hours)

    blocked = unpaid > policy.unpaid_student_threshold
    if not blocked and grace_deadline is not None and now >= grace_deadline:
        blocked = True

    hours_remaining = None
    if not blocked and grace_deadline is not None:
        hours_remaining = math.ceil((grace_deadline - now).total_seconds() / 3600)

    return BillingSnapshot(
        status=BillingStatus.BLOCKED if blocked else BillingStatus.ACTIVE,
        total_students=total,
        paid_students=paid,
        unpaid_students=unpaid,
        amount_due=_quantize(unpaid * policy.price_per_student),
        hours_remaining=hours_remaining,
        last_activity=last_activity,
    )
