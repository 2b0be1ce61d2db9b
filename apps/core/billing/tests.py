import hashlib
import hmac
import json
from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from django.utils import timezone

from apps.core.schools.models import School
from apps.core.users.permissions import Role

from .gate import BillingPolicy, BillingStatus, evaluate_billing
from .models import UsagePayment
from .services import (
    check_and_enforce_billing,
    count_students,
    get_billing_snapshot,
    handle_payment_event,
    record_usage_payment,
    set_billing_status,
    update_onboarding_activity,
    usage_payment_quote,
    verify_webhook_signature,
)


WEBHOOK_SECRET = 'test-webhook-secret'


def _sign(body, secret=WEBHOOK_SECRET):
    return hmac.new(secret.encode('utf-8'), body, hashlib.sha512).hexdigest().upper()


class BillingGateTests(SimpleTestCase):
    def setUp(self):
        self.now = timezone.now()
        self.policy = BillingPolicy(
            unpaid_student_threshold=5,
            grace_period_hours=48,
            price_per_student=Decimal('2000.00'),
        )

    def test_fully_paid_school_is_active(self):
        snapshot = evaluate_billing(10, 10, policy=self.policy, now=self.now)
        self.assertEqual(snapshot.status, BillingStatus.ACTIVE)
        self.assertEqual(snapshot.unpaid_students, 0)
        self.assertEqual(snapshot.amount_due, Decimal('0.00'))
        self.assertIsNone(snapshot.hours_remaining)

    def test_unpaid_above_threshold_blocks(self):
        snapshot = evaluate_billing(10, 4, policy=self.policy, now=self.now)
        self.assertEqual(snapshot.unpaid_students, 6)
        self.assertEqual(snapshot.status, BillingStatus.BLOCKED)
        self.assertTrue(snapshot.is_blocked)
        self.assertEqual(snapshot.amount_due, Decimal('12000.00'))
        self.assertIsNone(snapshot.hours_remaining)

    def test_unpaid_within_threshold_stays_active_with_amount_due(self):
        policy = BillingPolicy(unpaid_student_threshold=6, price_per_student=Decimal('2000.00'))
        snapshot = evaluate_billing(10, 4, policy=policy, now=self.now)
        self.assertEqual(snapshot.status, BillingStatus.ACTIVE)
        self.assertEqual(snapshot.amount_due, Decimal('12000.00'))

    def test_unpaid_never_negative(self):
        snapshot = evaluate_billing(3, 8, policy=self.policy, now=self.now)
        self.assertEqual(snapshot.unpaid_students, 0)
        self.assertEqual(snapshot.status, BillingStatus.ACTIVE)

    def test_missing_counts_are_zero(self):
        snapshot = evaluate_billing(None, None, policy=self.policy, now=self.now)
        self.assertEqual(snapshot.total_students, 0)
        self.assertEqual(snapshot.paid_students, 0)
        self.assertEqual(snapshot.status, BillingStatus.ACTIVE)

    def test_running_grace_period_reports_hours_remaining(self):
        snapshot = evaluate_billing(
            3, 1,
            last_activity=self.now - timedelta(hours=10, minutes=30),
            policy=self.policy,
            now=self.now,
        )
        self.assertEqual(snapshot.status, BillingStatus.ACTIVE)
        self.assertEqual(snapshot.hours_remaining, 38)

    def test_expired_grace_period_blocks(self):
        snapshot = evaluate_billing(
            3, 1,
            last_activity=self.now - timedelta(hours=48),
            policy=self.policy,
            now=self.now,
        )
        self.assertEqual(snapshot.status, BillingStatus.BLOCKED)
        self.assertIsNone(snapshot.hours_remaining)

    def test_no_grace_period_without_unpaid_students(self):
        snapshot = evaluate_billing(
            3, 3,
            last_activity=self.now - timedelta(hours=100),
            policy=self.policy,
            now=self.now,
        )
        self.assertEqual(snapshot.status, BillingStatus.ACTIVE)
        self.assertIsNone(snapshot.hours_remaining)

    @override_settings(
        EDUIT_BILLING_UNPAID_THRESHOLD=1,
        EDUIT_BILLING_GRACE_HOURS=12,
        EDUIT_BILLING_PRICE_PER_STUDENT=Decimal('150.5'),
    )
    def test_policy_is_read_from_settings(self):
        policy = BillingPolicy.from_settings()
        self.assertEqual(policy.unpaid_student_threshold, 1)
        self.assertEqual(policy.grace_period_hours, 12)
        self.assertEqual(policy.price_per_student, Decimal('150.50'))

        snapshot = evaluate_billing(2, 0, now=self.now)
        self.assertEqual(snapshot.status, BillingStatus.BLOCKED)
        self.assertEqual(snapshot.amount_due, Decimal('301.00'))

    def test_snapshot_serializes_for_json(self):
        data = evaluate_billing(4, 1, policy=self.policy, now=self.now).as_dict()
        self.assertEqual(data['status'], 'active')
        self.assertEqual(data['amount_due'], '6000.00')
        self.assertIsNone(data['last_activity'])


class BillingBaseTestCase(TestCase):
    def setUp(self):
        self.user_model = get_user_model()
        self.school = School.objects.create(name='Billing School', code='billing_school')
        self.admin = self.user_model.objects.create_user(
            username='billing_admin',
            password='pass12345',
            role=Role.SCHOOL_ADMIN,
            school=self.school,
        )

    def add_students(self, count, prefix='student'):
        for index in range(count):
            self.user_model.objects.create_user(
                username=f'{prefix}{index}',
                password='pass12345',
                role=Role.STUDENT,
                school=self.school,
            )
        self.school.refresh_from_db()


@override_settings(
    EDUIT_BILLING_UNPAID_THRESHOLD=3,
    EDUIT_BILLING_GRACE_HOURS=48,
    EDUIT_BILLING_PRICE_PER_STUDENT=Decimal('2000.00'),
)
class BillingServiceTests(BillingBaseTestCase):
    def test_counts_only_active_students(self):
        self.add_students(3)
        self.user_model.objects.filter(username='student0').update(is_active=False)
        self.assertEqual(count_students(self.school), 2)

    def test_student_creation_starts_grace_period(self):
        self.add_students(2)
        self.assertIsNotNone(self.school.last_onboarding_activity)
        snapshot = get_billing_snapshot(school=self.school)
        self.assertEqual(snapshot.status, BillingStatus.ACTIVE)
        self.assertEqual(snapshot.unpaid_students, 2)
        self.assertIn(snapshot.hours_remaining, (47, 48))

    def test_exceeding_threshold_blocks_school(self):
        self.add_students(4)
        self.assertEqual(self.school.billing_status, School.BILLING_BLOCKED)

    def test_enforcement_blocks_after_grace_period(self):
        self.add_students(1)
        later = self.school.last_onboarding_activity + timedelta(hours=49)

        snapshot = check_and_enforce_billing(school=self.school, now=later)

        self.assertTrue(snapshot.is_blocked)
        self.school.refresh_from_db()
        self.assertEqual(self.school.billing_status, School.BILLING_BLOCKED)

    def test_onboarding_activity_restarts_grace_period(self):
        self.add_students(1)
        later = self.school.last_onboarding_activity + timedelta(hours=47)

        snapshot = update_onboarding_activity(school=self.school, now=later)

        self.assertEqual(snapshot.status, BillingStatus.ACTIVE)
        self.assertEqual(snapshot.hours_remaining, 48)
        self.school.refresh_from_db()
        self.assertEqual(self.school.last_onboarding_activity, later)

    def test_record_usage_payment_unblocks_and_counts_seats(self):
        self.add_students(4)
        self.assertTrue(self.school.is_billing_blocked)

        payment = record_usage_payment(
            school=self.school,
            student_count=4,
            amount='8000',
            reference='REF-001',
        )

        self.assertEqual(payment.status, UsagePayment.STATUS_SUCCESS)
        self.assertEqual(payment.amount, Decimal('8000.00'))
        self.assertEqual(self.school.paid_student_count, 4)
        self.assertEqual(self.school.billing_status, School.BILLING_ACTIVE)
        self.assertEqual(get_billing_snapshot(school=self.school).unpaid_students, 0)

    def test_record_usage_payment_is_idempotent_per_reference(self):
        record_usage_payment(school=self.school, student_count=2, amount='4000', reference='REF-DUP')
        record_usage_payment(school=self.school, student_count=2, amount='4000', reference='REF-DUP')

        self.school.refresh_from_db()
        self.assertEqual(self.school.paid_student_count, 2)
        self.assertEqual(UsagePayment.objects.filter(reference='REF-DUP').count(), 1)

    def test_record_usage_payment_rejects_invalid_input(self):
        invalid = (
            {'student_count': 0, 'amount': '100', 'reference': 'REF-A'},
            {'student_count': 2, 'amount': '0', 'reference': 'REF-B'},
            {'student_count': 2, 'amount': '100', 'reference': '  '},
            {'student_count': 'many', 'amount': '100', 'reference': 'REF-C'},
            {'student_count': 2, 'amount': '100', 'reference': 12345},
        )
        for kwargs in invalid:
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(ValidationError):
                    record_usage_payment(school=self.school, **kwargs)
        self.assertFalse(UsagePayment.objects.exists())

    def test_concurrent_insert_of_same_reference_credits_seats_once(self):
        first = record_usage_payment(school=self.school, student_count=2, amount='4000', reference='REF-RACE')

        # The row exists but the lock query missed it, as when two deliveries arrive together.
        with mock.patch('apps.core.billing.services._locked_payment', return_value=None):
            second = record_usage_payment(
                school=self.school, student_count=2, amount='4000', reference='REF-RACE',
            )

        self.assertEqual(second.pk, first.pk)
        self.school.refresh_from_db()
        self.assertEqual(self.school.paid_student_count, 2)
        self.assertEqual(UsagePayment.objects.filter(reference='REF-RACE').count(), 1)

    def test_quote_covers_unpaid_seats(self):
        self.add_students(2)
        quote = usage_payment_quote(school=self.school)
        self.assertEqual(quote['student_count'], 2)
        self.assertEqual(quote['amount'], Decimal('4000.00'))
        self.assertEqual(quote['type'], 'USAGE_BILLING')

    def test_manual_status_override(self):
        set_billing_status(school=self.school, status=BillingStatus.BLOCKED)
        self.school.refresh_from_db()
        self.assertTrue(self.school.is_billing_blocked)

        with self.assertRaises(ValidationError):
            set_billing_status(school=self.school, status='suspended')


@override_settings(EDUIT_PAYMENT_WEBHOOK_SECRET=WEBHOOK_SECRET)
class PaymentEventTests(BillingBaseTestCase):
    def usage_event(self, **metadata_overrides):
        metadata = {'type': 'USAGE_BILLING', 'schoolId': self.school.id, 'studentCount': 3}
        metadata.update(metadata_overrides)
        return {
            'event': 'transaction_successful',
            'data': {'transaction_ref': 'SQ-123', 'amount': 600000, 'metadata': metadata},
        }

    def test_signature_verification(self):
        body = b'{"event": "transaction_successful"}'
        self.assertTrue(verify_webhook_signature(body, _sign(body)))
        self.assertTrue(verify_webhook_signature(body, _sign(body).lower()))
        self.assertFalse(verify_webhook_signature(body, _sign(body, 'other-secret')))
        self.assertFalse(verify_webhook_signature(body, ''))
        self.assertFalse(verify_webhook_signature(body, _sign(body), secret=''))

    def test_usage_event_records_payment_in_major_units(self):
        payment = handle_payment_event(self.usage_event())
        self.assertEqual(payment.amount, Decimal('6000.00'))
        self.assertEqual(payment.student_count, 3)
        self.school.refresh_from_db()
        self.assertEqual(self.school.paid_student_count, 3)

    def test_other_events_are_ignored(self):
        self.assertIsNone(handle_payment_event({'event': 'transaction_failed'}))
        self.assertIsNone(handle_payment_event(self.usage_event(type='FEE_PAYMENT')))
        self.assertIsNone(handle_payment_event(['not', 'a', 'dict']))

    def test_missing_metadata_is_rejected(self):
        with self.assertRaises(ValidationError):
            handle_payment_event(self.usage_event(schoolId=None))
        with self.assertRaises(ValidationError):
            handle_payment_event(self.usage_event(schoolId=999999))

    def test_malformed_event_shapes_are_rejected(self):
        event = self.usage_event()
        event['data']['metadata'] = 'USAGE_BILLING'
        with self.assertRaises(ValidationError):
            handle_payment_event(event)

        with self.assertRaises(ValidationError):
            handle_payment_event({'event': 'transaction_successful', 'data': ['SQ-123']})
        self.assertFalse(UsagePayment.objects.exists())

    def test_webhook_endpoint_requires_valid_signature(self):
        body = json.dumps(self.usage_event()).encode('utf-8')
        url = reverse('payment_webhook')

        missing = self.client.post(url, body, content_type='application/json')
        self.assertEqual(missing.status_code, 400)

        forged = self.client.post(
            url, body, content_type='application/json', HTTP_X_SQUAD_SIGNATURE='ABC',
        )
        self.assertEqual(forged.status_code, 401)
        self.assertFalse(UsagePayment.objects.exists())

    def test_webhook_endpoint_records_usage_payment(self):
        body = json.dumps(self.usage_event()).encode('utf-8')
        response = self.client.post(
            reverse('payment_webhook'),
            body,
            content_type='application/json',
            HTTP_X_SQUAD_SIGNATURE=_sign(body),
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'success')
        self.assertTrue(UsagePayment.objects.filter(reference='SQ-123', school=self.school).exists())

    def test_webhook_endpoint_rejects_incomplete_event(self):
        body = json.dumps(self.usage_event(studentCount=None)).encode('utf-8')
        response = self.client.post(
            reverse('payment_webhook'),
            body,
            content_type='application/json',
            HTTP_X_SQUAD_SIGNATURE=_sign(body),
        )
        self.assertEqual(response.status_code, 400)

    def test_webhook_endpoint_rejects_non_object_data(self):
        body = json.dumps({'event': 'transaction_successful', 'data': 'oops'}).encode('utf-8')
        response = self.client.post(
            reverse('payment_webhook'),
            body,
            content_type='application/json',
            HTTP_X_SQUAD_SIGNATURE=_sign(body),
        )
        self.assertEqual(response.status_code, 400)


@override_settings(EDUIT_BILLING_UNPAID_THRESHOLD=2)
class BillingAccessTests(BillingBaseTestCase):
    def setUp(self):
        super().setUp()
        self.teacher = self.user_model.objects.create_user(
            username='billing_teacher',
            password='pass12345',
            role=Role.TEACHER,
            school=self.school,
        )
        self.registrar = self.user_model.objects.create_user(
            username='billing_registrar',
            password='pass12345',
            role=Role.SCHOOL_ADMIN,
            school=self.school,
            permissions=['view_students'],
        )
        self.superadmin = self.user_model.objects.create_user(
            username='billing_root',
            password='pass12345',
            role=Role.SUPER_ADMIN,
        )

    def test_school_admin_sees_billing_status_json(self):
        self.add_students(1)
        self.client.login(username='billing_admin', password='pass12345')
        response = self.client.get(reverse('billing_status'), {'format': 'json'})
        self.assertEqual(response.status_code, 200)
        billing = response.json()['billing']
        self.assertEqual(billing['status'], 'active')
        self.assertEqual(billing['unpaid_students'], 1)
        self.assertIsNotNone(billing['hours_remaining'])

    def test_billing_page_requires_finance_permission(self):
        self.client.login(username='billing_registrar', password='pass12345')
        response = self.client.get(reverse('billing_status'))
        self.assertEqual(response.status_code, 403)

    def test_quote_requires_unpaid_students(self):
        self.client.login(username='billing_admin', password='pass12345')
        response = self.client.get(reverse('billing_quote'))
        self.assertEqual(response.status_code, 400)

        self.add_students(1)
        response = self.client.get(reverse('billing_quote'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['amount'], '2000.00')

    def test_blocked_school_members_are_sent_to_paywall(self):
        self.add_students(3)
        self.assertTrue(self.school.is_billing_blocked)

        self.client.login(username='billing_teacher', password='pass12345')
        response = self.client.get(reverse('dashboard'))
        self.assertRedirects(response, reverse('billing_locked'))

        locked = self.client.get(reverse('billing_locked'))
        self.assertContains(locked, 'Access Restricted')

    def test_blocked_school_admin_can_still_reach_billing(self):
        self.add_students(3)
        self.client.login(username='billing_admin', password='pass12345')
        response = self.client.get(reverse('billing_status'))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, 'BLOCKED')

    def test_locked_page_redirects_active_schools(self):
        self.client.login(username='billing_teacher', password='pass12345')
        response = self.client.get(reverse('billing_locked'))
        self.assertRedirects(response, reverse('role_redirect'), fetch_redirect_response=False)

    def test_stale_active_status_is_rechecked_before_mutation(self):
        self.add_students(1)
        School.objects.filter(pk=self.school.pk).update(
            last_onboarding_activity=timezone.now() - timedelta(hours=72),
        )

        self.client.login(username='billing_admin', password='pass12345')
        response = self.client.post(
            reverse('admin_permissions', args=[self.registrar.id]),
            {'permissions': ['view_fees']},
            HTTP_ACCEPT='application/json',
        )

        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.json()['billing']['status'], 'blocked')
        self.registrar.refresh_from_db()
        self.assertEqual(self.registrar.permissions, ['view_students'])

    def test_super_admin_can_toggle_billing_status(self):
        self.client.login(username='billing_root', password='pass12345')
        response = self.client.post(reverse('toggle_billing_status', args=[self.school.id]))
        self.assertRedirects(response, reverse('school_list'))
        self.school.refresh_from_db()
        self.assertTrue(self.school.is_billing_blocked)

        self.client.post(reverse('toggle_billing_status', args=[self.school.id]))
        self.school.refresh_from_db()
        self.assertFalse(self.school.is_billing_blocked)

    def test_school_admin_cannot_toggle_billing_status(self):
        self.client.login(username='billing_admin', password='pass12345')
        response = self.client.post(reverse('toggle_billing_status', args=[self.school.id]))
        self.assertEqual(response.status_code, 403)
