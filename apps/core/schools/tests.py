from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.test import RequestFactory, TestCase, override_settings
from django.urls import reverse

from apps.core.schools.middleware import CurrentSchoolMiddleware
from apps.core.schools.models import School, SchoolDomain
from apps.core.schools.services import normalize_host, resolve_school_by_host
from apps.core.users.access import Actor
from apps.core.users.models import AuditLog
from apps.core.users.permissions import Role


class SchoolOnboardingTests(TestCase):
    def setUp(self):
        self.user_model = get_user_model()
        self.superadmin = self.user_model.objects.create_user(
            username='superadmin1',
            password='pass12345',
            role=Role.SUPER_ADMIN,
        )

    def onboarding_payload(self, **overrides):
        payload = {
            'school_name': 'Beta School',
            'school_code': 'beta_main',
            'school_subdomain': 'beta',
            'school_domain': 'portal.beta-school.edu',
            'school_address': 'Main Road',
            'school_phone': '1234567890',
            'school_email': 'beta@example.com',
            'admin_username': 'beta_admin',
            'admin_email': 'beta_admin@example.com',
            'admin_password': 'pass12345',
        }
        payload.update(overrides)
        return payload

    def test_superadmin_can_onboard_school_with_primary_admin_and_domain(self):
        self.client.login(username='superadmin1', password='pass12345')
        response = self.client.post(reverse('school_onboard'), self.onboarding_payload())

        self.assertEqual(response.status_code, 302)
        school = School.objects.get(name='Beta School')
        school_admin = self.user_model.objects.get(username='beta_admin')

        self.assertEqual(school.code, 'beta_main')
        self.assertEqual(school.subdomain, 'beta')
        self.assertEqual(school.billing_status, School.BILLING_ACTIVE)
        self.assertEqual(school.paid_student_count, 0)
        self.assertEqual(school_admin.role, Role.SCHOOL_ADMIN)
        self.assertEqual(school_admin.school_id, school.id)
        self.assertIsNone(school_admin.permissions)
        self.assertTrue(Actor.from_user(school_admin).is_primary_admin)
        self.assertTrue(
            SchoolDomain.objects.filter(
                school=school,
                domain='portal.beta-school.edu',
                is_primary=True,
                is_active=True,
            ).exists()
        )
        self.assertTrue(
            AuditLog.objects.filter(action='school.onboarded', school=school).exists()
        )

    def test_reserved_subdomain_is_rejected(self):
        self.client.login(username='superadmin1', password='pass12345')
        response = self.client.post(reverse('school_onboard'), self.onboarding_payload(school_subdomain='admin'))

        self.assertEqual(response.status_code, 200)
        self.assertIn('school_subdomain', response.context['form'].errors)
        self.assertFalse(School.objects.filter(name='Beta School').exists())

    def test_school_admin_cannot_onboard(self):
        school = School.objects.create(name='Alpha School')
        self.user_model.objects.create_user(
            username='alpha_admin',
            password='pass12345',
            role=Role.SCHOOL_ADMIN,
            school=school,
        )
        self.client.login(username='alpha_admin', password='pass12345')
        response = self.client.get(reverse('school_onboard'))
        self.assertEqual(response.status_code, 403)


class SchoolListTests(TestCase):
    def setUp(self):
        self.user_model = get_user_model()
        self.user_model.objects.create_user(username='root', password='pass12345', role=Role.SUPER_ADMIN)
        self.school = School.objects.create(name='Listed School', paid_student_count=1)
        for index in range(2):
            self.user_model.objects.create_user(
                username=f'listed_student{index}',
                password='pass12345',
                role=Role.STUDENT,
                school=self.school,
            )
        School.objects.create(name='Blocked School', billing_status=School.BILLING_BLOCKED)

    def test_school_list_shows_billing_state(self):
        self.client.login(username='root', password='pass12345')
        response = self.client.get(reverse('school_list'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.context['blocked_count'], 1)

        listed = next(school for school in response.context['schools'] if school.id == self.school.id)
        self.assertEqual(listed.total_students, 2)
        self.assertContains(response, 'Blocked Schools: 1')


class SchoolResolutionTests(TestCase):
    def setUp(self):
        self.school = School.objects.create(
            name='Resolve School',
            code='resolve_school',
            subdomain='resolve',
        )
        SchoolDomain.objects.create(
            school=self.school,
            domain='portal.resolve.edu',
            is_primary=True,
            is_active=True,
        )

    def test_normalize_host_strips_port_and_www(self):
        self.assertEqual(normalize_host('WWW.Portal.Resolve.edu:443'), 'portal.resolve.edu')
        self.assertEqual(normalize_host(None), '')

    def test_resolve_school_by_custom_domain(self):
        resolved = resolve_school_by_host('portal.resolve.edu:443')
        self.assertIsNotNone(resolved)
        self.assertEqual(resolved.id, self.school.id)

    def test_resolve_school_by_subdomain(self):
        resolved = resolve_school_by_host('resolve.localhost:8000')
        self.assertIsNotNone(resolved)
        self.assertEqual(resolved.id, self.school.id)

    def test_reserved_subdomain_never_resolves(self):
        School.objects.create(name='Api School', subdomain='api')
        self.assertIsNone(resolve_school_by_host('api.eduit.app'))

    def test_inactive_school_does_not_resolve(self):
        self.school.is_active = False
        self.school.save(update_fields=['is_active'])
        self.assertIsNone(resolve_school_by_host('portal.resolve.edu'))
        self.assertIsNone(resolve_school_by_host('resolve.eduit.app'))


@override_settings(ALLOWED_HOSTS=['.localhost', 'localhost'])
class CurrentSchoolMiddlewareTests(TestCase):
    def setUp(self):
        self.factory = RequestFactory()
        self.school = School.objects.create(name='Middleware School', subdomain='middleware')
        self.middleware = CurrentSchoolMiddleware(lambda request: request)

    def test_anonymous_request_resolves_school_from_host_and_anonymous_actor(self):
        request = self.factory.get('/', HTTP_HOST='middleware.localhost')
        request.user = AnonymousUser()

        processed = self.middleware(request)

        self.assertEqual(processed.current_school, self.school)
        self.assertFalse(processed.actor.is_authenticated)

    def test_authenticated_request_uses_user_school_and_builds_actor(self):
        user = get_user_model().objects.create_user(
            username='mw_admin',
            password='pass12345',
            role=Role.SCHOOL_ADMIN,
            school=self.school,
            permissions={'view_fees': True},
        )
        request = self.factory.get('/', HTTP_HOST='localhost')
        request.user = user

        processed = self.middleware(request)

        self.assertEqual(processed.current_school, self.school)
        self.assertEqual(processed.actor.role, Role.SCHOOL_ADMIN)
        self.assertFalse(processed.actor.has_full_access)
        self.assertTrue(processed.actor.can('view_fees'))
