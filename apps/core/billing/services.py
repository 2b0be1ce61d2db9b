from __future__ import annotations

import hashlib
import hmac
import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from apps.core.schools.models import School
from apps.core.users.permissions import Role

from .gate import BillingSnapshot, BillingStatus, evaluate_billing
from .models import UsagePayment


logger = logging.getLogger(__name__)

USAGE_BILLING_TYPE = 'USAGE_BILLING'
TRANSACTION_SUCCESSFUL = 'transaction_successful'


def _quantize(value) -> Decimal:
    return Decimal(str(value or '0')).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def count_students(school) -> int:
    return school.users.filter(role=Role.STUDENT, is_active=True).count()


def get_billing_snapshot(*, school: School, now=None, policy=None) -> BillingSnapshot:
    return evaluate_billing(
        count_students(school),
        school.paid_student_count,
        last_activity=school.last_onboarding_activity,
        policy=policy,
        now=now,
    )


def check_and_enforce_billing(*, school: School, now=None) -> BillingSnapshot:
    snapshot = get_billing_snapshot(school=school, now=now)

    if school.billing_status != snapshot.status:
        previous_status = school.billing_status
        school.billing_status = snapshot.status
        school.save(update_fields=['billing_status'])
        logger.info(
            'School %s billing status %s -> %s (unpaid=%s, due=%s)',
            school.code,
            previous_status,
            snapshot.status,
            snapshot.unpaid_students,
            snapshot.amount_due,
        )

    return snapshot


def update_onboarding_activity(*, school: School, now=None) -> BillingSnapshot:
    school.last_onboarding_activity = now or timezone.now()
    school.save(update_fields=['last_onboarding_activity'])
    return check_and_enforce_billing(school=school, now=now)


def usage_payment_quote(*, school: School, now=None) -> dict:
    snapshot = get_billing_snapshot(school=school, now=now)
    return {
        'school_id': school.id,
        'student_count': snapshot.unpaid_students,
        'amount': snapshot.amount_due,
        'type': USAGE_BILLING_TYPE,
    }


def _locked_payment(reference):
    return UsagePayment.objects.select_for_update().filter(reference=reference).first()


def record_usage_payment(*, school: School, student_count, amount, reference) -> UsagePayment:
    reference = reference.strip() if isinstance(reference, str) else ''
    if not reference:
        raise ValidationError('Payment reference is required.')

    try:
        student_count = int(student_count)
        amount = _quantize(amount)
    except (TypeError, ValueError, InvalidOperation):
        raise ValidationError('Student count and amount must be numeric.')

    if student_count <= 0:
        raise ValidationError('Student count must be greater than zero.')
    if amount <= Decimal('0'):
        raise ValidationError('Payment amount must be greater than zero.')

    with transaction.atomic():
        existing = _locked_payment(reference)
        if existing and existing.status == UsagePayment.STATUS_SUCCESS:
            logger.info('Usage payment %s already recorded; skipping', reference)
            return existing

        if existing:
            existing.school = school
            existing.amount = amount
            existing.student_count = student_count
            existing.status = UsagePayment.STATUS_SUCCESS
            existing.paid_at = timezone.now()
            existing.save()
            payment = existing
        else:
            try:
                with transaction.atomic():
                    payment = UsagePayment.objects.create(
                        school=school,
                        amount=amount,
                        student_count=student_count,
                        reference=reference,
                        status=UsagePayment.STATUS_SUCCESS,
                        paid_at=timezone.now(),
                    )
            except IntegrityError:
                # A concurrent delivery inserted this reference first.
                logger.info('Usage payment %s recorded concurrently; skipping', reference)
                return UsagePayment.objects.get(reference=reference)

        School.objects.filter(pk=school.pk).update(
            paid_student_count=F('paid_student_count') + student_count,
            billing_status=BillingStatus.ACTIVE,
        )

    school.refresh_from_db(fields=['paid_student_count', 'billing_status'])
    logger.info(
        'Recorded usage payment %s for school %s: %s seats, %s',
        reference,
        school.code,
        student_count,
        amount,
    )
    return payment


def set_billing_status(*, school: School, status) -> School:
    if status not in BillingStatus.values:
        raise ValidationError(f'Unknown billing status: {status}')

    if school.billing_status != status:
        school.billing_status = status
        school.save(update_fields=['billing_status'])
        logger.info('School %s billing status manually set to %s', school.code, status)
    return school


def verify_webhook_signature(payload: bytes, signature, secret=None) -> bool:
    secret = secret if secret is not None else getattr(settings, 'EDUIT_PAYMENT_WEBHOOK_SECRET', '')
    if not secret or not signature:
        return False

    expected = hmac.new(secret.encode('utf-8'), payload, hashlib.sha512).hexdigest().upper()
    return hmac.compare_digest(expected, signature.strip().upper())


def handle_payment_event(event) -> UsagePayment | None:
    """
    Process a payment provider event.

    Only successful usage-billing transactions are handled; amounts arrive in
    minor units (kobo). Everything else is ignored and returns None.
    """
    if not isinstance(event, dict) or event.get('event') != TRANSACTION_SUCCESSFUL:
        return None

    data = event.get('data') or {}
    if not isinstance(data, dict):
        raise ValidationError('Payment event data must be an object.')
    metadata = data.get('metadata') or {}
    if not isinstance(metadata, dict):
        raise ValidationError('Payment event metadata must be an object.')
    if metadata.get('type') != USAGE_BILLING_TYPE:
        return None

    school_id = metadata.get('schoolId') or metadata.get('school_id')
    student_count = metadata.get('studentCount') or metadata.get('student_count')
    reference = data.get('transaction_ref')
    if not school_id or not student_count or not reference:
        raise ValidationError('Usage payment event is missing metadata.')

    try:
        school = School.objects.filter(pk=school_id).first()
    except (TypeError, ValueError):
        school = None
    if school is None:
        raise ValidationError(f'Unknown school in payment event: {school_id}')

    try:
        amount = _quantize(data.get('amount')) / 100
    except InvalidOperation:
        raise ValidationError('Payment amount must be numeric.')

    return record_usage_payment(
        school=school,
        student_count=student_count,
        amount=amount,
        reference=reference,
    )
