import json

from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse

from apps.core.schools.models import School
from apps.core.users.access import Actor, dashboard_capabilities, has_full_access, has_permission
from apps.core.users.models import AuditLog
from apps.core.users.permissions import (
    PERMISSION_GROUPS,
    Permission,
    Role,
    normalize_permissions,
    permission_choices,
    serialize_permissions,
)


class PermissionCatalogTests(SimpleTestCase):
    def test_every_permission_belongs_to_exactly_one_group(self):
        grouped = [entry.key for group in PERMISSION_GROUPS for entry in group.entries]
        self.assertEqual(len(grouped), len(set(grouped)))
        self.assertEqual(set(grouped), set(Permission))

    def test_choices_are_grouped_for_widgets(self):
        choices = dict(permission_choices())
        self.assertIn(('manage_admins', 'Manage Admins'), choices['System'])
        self.assertEqual(
            [name for name, _ in permission_choices()],
            ['Finance', 'People', 'Academics', 'Examinations', 'Engagement', 'System'],
        )


class NormalizePermissionsTests(SimpleTestCase):
    def test_unset_blobs_normalize_to_none(self):
        for raw in (None, '', '   ', 'null', '{}', '[]', {}, [], b''):
            with self.subTest(raw=raw):
                self.assertIsNone(normalize_permissions(raw))

    def test_list_of_keys_drops_unknown_entries(self):
        self.assertEqual(
            normalize_permissions(['view_students', 'bogus', 7]),
            frozenset({Permission.VIEW_STUDENTS}),
        )

    def test_mapping_keeps_only_true_grants(self):
        self.assertEqual(
            normalize_permissions({'view_students': True, 'manage_fees': False, 'view_fees': 'yes'}),
            frozenset({Permission.VIEW_STUDENTS}),
        )

    def test_json_strings_and_bytes_are_decoded(self):
        self.assertEqual(
            normalize_permissions('{"manage_admins": true}'),
            frozenset({Permission.MANAGE_ADMINS}),
        )
        self.assertEqual(
            normalize_permissions(b'["view_fees"]'),
            frozenset({Permission.VIEW_FEES}),
        )

    def test_malformed_blobs_are_configured_with_no_grants(self):
        for raw in ('{not json', '"view_students"', '42', 42, 3.5, object()):
            with self.subTest(raw=raw):
                self.assertEqual(normalize_permissions(raw), frozenset())

    def test_deeply_nested_blob_is_configured_with_no_grants(self):
        nested = '[' * 100000 + ']' * 100000
        self.assertEqual(normalize_permissions(nested), frozenset())
        self.assertFalse(has_permission(nested, Permission.VIEW_STUDENTS))

    def test_serialize_writes_every_key(self):
        stored = serialize_permissions({Permission.VIEW_FEES})
        self.assertEqual(set(stored), {permission.value for permission in Permission})
        self.assertTrue(stored['view_fees'])
        self.assertFalse(stored['manage_fees'])
        self.assertIsNone(serialize_permissions(None))

    def test_serialized_empty_set_stays_configured(self):
        self.assertEqual(normalize_permissions(serialize_permissions(frozenset())), frozenset())


class HasPermissionTests(SimpleTestCase):
    def test_invalid_json_denies_every_key(self):
        for permission in Permission:
            self.assertFalse(has_permission('{"view_students": tru', permission))

    def test_unknown_key_is_denied(self):
        self.assertFalse(has_permission(['view_students'], 'delete_everything'))
        self.assertFalse(has_permission(['view_students'], None))

    def test_absent_permissions_deny(self):
        self.assertFalse(has_permission(None, Permission.VIEW_STUDENTS))
        self.assertFalse(has_permission({}, 'view_students'))

    def test_accepts_string_and_enum_keys(self):
        self.assertTrue(has_permission(['view_students'], 'view_students'))
        self.assertTrue(has_permission(['view_students'], Permission.VIEW_STUDENTS))

    def test_super_admin_role_short_circuits(self):
        self.assertTrue(has_permission(None, Permission.MANAGE_SETTINGS, Role.SUPER_ADMIN))
        self.assertTrue(has_permission(None, 'manage_settings', 'superadmin'))
        self.assertFalse(has_permission(None, Permission.MANAGE_SETTINGS, Role.SCHOOL_ADMIN))

    def test_repeated_calls_give_identical_results(self):
        blob = '{"view_results": true, "enter_results": false}'
        first = [has_permission(blob, permission) for permission in Permission]
        second = [has_permission(blob, permission) for permission in Permission]
        self.assertEqual(first, second)

    def test_every_encoding_of_a_grant_set_agrees(self):
        granted = {Permission.VIEW_RESULTS, Permission.MANAGE_FEES, Permission.MANAGE_ADMINS}
        as_list = sorted(key.value for key in granted)
        as_mapping = {key.value: True for key in granted}
        encodings = [
            as_list,
            as_mapping,
            json.dumps(as_list),
            json.dumps(as_mapping),
            serialize_permissions(granted),
            json.dumps(serialize_permissions(granted)).encode('utf-8'),
            frozenset(granted),
        ]
        for permission in Permission:
            expected = permission in granted
            for encoded in encodings:
                with self.subTest(permission=permission, encoded=encoded):
                    self.assertEqual(has_permission(encoded, permission), expected)

    def test_plain_string_sets_are_normalized(self):
        self.assertTrue(has_permission(frozenset({'view_students'}), Permission.VIEW_STUDENTS))


class FullAccessTests(SimpleTestCase):
    def test_super_admin_always_has_full_access(self):
        for permissions in (None, frozenset(), frozenset({Permission.VIEW_FEES})):
            actor = Actor(role=Role.SUPER_ADMIN, permissions=permissions)
            self.assertTrue(has_full_access(actor))

    def test_unconfigured_school_admin_has_full_access(self):
        for raw in (None, '', '{}', '[]', {}, []):
            with self.subTest(raw=raw):
                actor = Actor(role=Role.SCHOOL_ADMIN, permissions=normalize_permissions(raw))
                self.assertTrue(has_full_access(actor))
                self.assertTrue(actor.is_primary_admin)

    def test_raw_unset_blobs_on_school_admin_grant_full_access(self):
        for raw in ({}, [], '{}', '', 'null', b'[]'):
            with self.subTest(raw=raw):
                actor = Actor(role=Role.SCHOOL_ADMIN, permissions=raw)
                self.assertIsNone(actor.permissions)
                self.assertTrue(has_full_access(actor))
                self.assertTrue(actor.is_primary_admin)

    def test_raw_configured_blob_is_normalized_on_actor(self):
        actor = Actor(role=Role.SCHOOL_ADMIN, permissions='{"view_fees": true}')
        self.assertEqual(actor.permissions, frozenset({Permission.VIEW_FEES}))
        self.assertFalse(has_full_access(actor))
        self.assertTrue(actor.can('view_fees'))

    def test_configured_school_admin_is_restricted(self):
        actor = Actor(role=Role.SCHOOL_ADMIN, permissions=normalize_permissions({'view_students': True}))
        self.assertFalse(has_full_access(actor))
        self.assertTrue(actor.can(Permission.VIEW_STUDENTS))
        self.assertFalse(actor.can(Permission.MANAGE_ADMINS))

    def test_malformed_school_admin_blob_does_not_fail_open(self):
        actor = Actor(role=Role.SCHOOL_ADMIN, permissions=normalize_permissions('{broken'))
        self.assertFalse(has_full_access(actor))
        self.assertFalse(actor.can(*Permission))

    def test_other_roles_never_have_full_access(self):
        for role in (Role.TEACHER, Role.STUDENT, Role.PARENT, None):
            self.assertFalse(has_full_access(Actor(role=role, permissions=None)))

    @override_settings(EDUIT_PRIMARY_ADMIN_FULL_ACCESS=False)
    def test_primary_admin_rule_can_be_disabled(self):
        actor = Actor(role=Role.SCHOOL_ADMIN, permissions=None)
        self.assertFalse(has_full_access(actor))
        self.assertFalse(actor.can(Permission.MANAGE_ADMINS))

    def test_anonymous_actor_has_nothing(self):
        actor = Actor.from_user(AnonymousUser())
        self.assertFalse(actor.is_authenticated)
        self.assertFalse(actor.can(Permission.VIEW_STUDENTS))
        self.assertFalse(any(actor.capabilities().values()))


class DashboardCapabilitiesTests(SimpleTestCase):
    def test_full_access_sees_every_stat(self):
        capabilities = dashboard_capabilities(Actor(role=Role.SUPER_ADMIN))
        self.assertTrue(all(capabilities.values()))

    def test_restricted_admin_sees_only_granted_stats(self):
        actor = Actor(
            role=Role.SCHOOL_ADMIN,
            permissions=frozenset({Permission.VIEW_STUDENTS, Permission.VIEW_WALLET}),
        )
        capabilities = dashboard_capabilities(actor)
        self.assertTrue(capabilities['students'])
        self.assertTrue(capabilities['finance'])
        self.assertFalse(capabilities['teachers'])
        self.assertFalse(capabilities['results'])


class ActorFromUserTests(TestCase):
    def setUp(self):
        self.school = School.objects.create(name='Actor School')

    def test_actor_normalizes_stored_blob_once(self):
        user = get_user_model().objects.create_user(
            username='bursar',
            password='pass12345',
            role=Role.SCHOOL_ADMIN,
            school=self.school,
            permissions=['manage_fees', 'unknown'],
        )
        actor = Actor.from_user(user)
        self.assertEqual(actor.permissions, frozenset({Permission.MANAGE_FEES}))
        self.assertEqual(actor.school_id, self.school.id)
        self.assertEqual(actor.user_id, user.id)
        self.assertFalse(actor.has_full_access)

    def test_user_with_empty_stored_blob_is_primary_admin(self):
        user = get_user_model().objects.create_user(
            username='first_admin',
            password='pass12345',
            role=Role.SCHOOL_ADMIN,
            school=self.school,
            permissions={},
        )
        self.assertTrue(has_full_access(user))
        self.assertTrue(Actor.from_user(user).is_primary_admin)

    def test_superuser_is_forced_to_super_admin_without_school(self):
        user = get_user_model().objects.create_superuser('root', 'root@example.com', 'pass12345')
        self.assertEqual(user.role, Role.SUPER_ADMIN)
        self.assertIsNone(user.school_id)
        self.assertTrue(Actor.from_user(user).has_full_access)

    def test_school_user_requires_school(self):
        with self.assertRaises(ValueError):
            get_user_model().objects.create_user(username='orphan', password='pass12345', role=Role.TEACHER)


class AdminPermissionViewsTests(TestCase):
    def setUp(self):
        user_model = get_user_model()
        self.school = School.objects.create(name='Alpha School')
        self.other_school = School.objects.create(name='Beta School')

        self.primary_admin = user_model.objects.create_user(
            username='primary_admin',
            password='pass12345',
            role=Role.SCHOOL_ADMIN,
            school=self.school,
        )
        self.bursar = user_model.objects.create_user(
            username='bursar_admin',
            password='pass12345',
            role=Role.SCHOOL_ADMIN,
            school=self.school,
            permissions={'view_fees': True, 'view_students': True},
        )
        self.teacher = user_model.objects.create_user(
            username='teacher1',
            password='pass12345',
            role=Role.TEACHER,
            school=self.school,
        )
        self.foreign_admin = user_model.objects.create_user(
            username='beta_admin',
            password='pass12345',
            role=Role.SCHOOL_ADMIN,
            school=self.other_school,
        )

    def test_login_audit_records_access_mode(self):
        self.client.post(reverse('login'), {'username': 'primary_admin', 'password': 'pass12345'})
        self.client.post(reverse('login'), {'username': 'bursar_admin', 'password': 'pass12345'})

        primary_entry = AuditLog.objects.get(action='user.login', target_id=str(self.primary_admin.pk))
        bursar_entry = AuditLog.objects.get(action='user.login', target_id=str(self.bursar.pk))
        self.assertEqual(primary_entry.details, 'Role=schooladmin; Access=primary')
        self.assertEqual(bursar_entry.details, 'Role=schooladmin; Access=restricted; Permissions=2')
        self.assertEqual(primary_entry.school, self.school)

    def test_primary_admin_can_list_admins(self):
        self.client.login(username='primary_admin', password='pass12345')
        response = self.client.get(reverse('admin_list'))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, 'bursar_admin')
        self.assertContains(response, 'Full Access')
        self.assertNotContains(response, 'beta_admin')

    def test_restricted_admin_without_manage_admins_is_forbidden(self):
        self.client.login(username='bursar_admin', password='pass12345')
        response = self.client.get(reverse('admin_list'))
        self.assertEqual(response.status_code, 403)

    def test_teacher_is_forbidden(self):
        self.client.login(username='teacher1', password='pass12345')
        response = self.client.get(reverse('admin_list'))
        self.assertEqual(response.status_code, 403)

    def test_anonymous_user_is_redirected_to_login(self):
        response = self.client.get(reverse('admin_list'))
        self.assertEqual(response.status_code, 302)

    def test_primary_admin_can_restrict_another_admin(self):
        self.client.login(username='primary_admin', password='pass12345')
        response = self.client.post(
            reverse('admin_permissions', args=[self.bursar.id]),
            {'permissions': ['manage_fees', 'view_results']},
        )
        self.assertEqual(response.status_code, 302)

        self.bursar.refresh_from_db()
        self.assertEqual(
            self.bursar.granted_permissions,
            frozenset({Permission.MANAGE_FEES, Permission.VIEW_RESULTS}),
        )
        self.assertTrue(
            AuditLog.objects.filter(action='user.permissions_updated', target_id=str(self.bursar.id)).exists()
        )

    def test_clearing_every_permission_keeps_admin_restricted(self):
        self.client.login(username='primary_admin', password='pass12345')
        self.client.post(reverse('admin_permissions', args=[self.bursar.id]), {})

        self.bursar.refresh_from_db()
        self.assertEqual(self.bursar.granted_permissions, frozenset())
        self.assertFalse(Actor.from_user(self.bursar).has_full_access)

    def test_marking_admin_unrestricted_clears_stored_permissions(self):
        self.client.login(username='primary_admin', password='pass12345')
        self.client.post(reverse('admin_permissions', args=[self.bursar.id]), {'unrestricted': 'on'})

        self.bursar.refresh_from_db()
        self.assertIsNone(self.bursar.permissions)
        self.assertTrue(Actor.from_user(self.bursar).has_full_access)

    def test_unrestricted_with_explicit_permissions_is_rejected(self):
        self.client.login(username='primary_admin', password='pass12345')
        response = self.client.post(
            reverse('admin_permissions', args=[self.bursar.id]),
            {'unrestricted': 'on', 'permissions': ['view_fees']},
        )
        self.assertEqual(response.status_code, 200)
        self.bursar.refresh_from_db()
        self.assertEqual(self.bursar.granted_permissions, frozenset({Permission.VIEW_FEES, Permission.VIEW_STUDENTS}))

    def test_admin_cannot_remove_own_admin_management(self):
        self.client.login(username='primary_admin', password='pass12345')
        self.client.post(
            reverse('admin_permissions', args=[self.primary_admin.id]),
            {'permissions': ['view_fees']},
        )
        self.primary_admin.refresh_from_db()
        self.assertIsNone(self.primary_admin.permissions)

    def test_admin_of_another_school_is_not_found(self):
        self.client.login(username='primary_admin', password='pass12345')
        response = self.client.get(reverse('admin_permissions', args=[self.foreign_admin.id]))
        self.assertEqual(response.status_code, 404)


class DashboardTests(TestCase):
    def setUp(self):
        user_model = get_user_model()
        self.school = School.objects.create(name='Dashboard School')
        user_model.objects.create_user(
            username='dash_primary',
            password='pass12345',
            role=Role.SCHOOL_ADMIN,
            school=self.school,
        )
        user_model.objects.create_user(
            username='dash_registrar',
            password='pass12345',
            role=Role.SCHOOL_ADMIN,
            school=self.school,
            permissions=['view_students'],
        )
        user_model.objects.create_user(
            username='dash_teacher',
            password='pass12345',
            role=Role.TEACHER,
            school=self.school,
        )
        user_model.objects.create_user(
            username='dash_student',
            password='pass12345',
            role=Role.STUDENT,
            school=self.school,
        )
        user_model.objects.create_user(username='dash_root', password='pass12345', role=Role.SUPER_ADMIN)

    def test_role_redirect_sends_super_admin_to_school_list(self):
        self.client.login(username='dash_root', password='pass12345')
        response = self.client.get(reverse('role_redirect'))
        self.assertRedirects(response, reverse('school_list'))

    def test_role_redirect_sends_school_members_to_dashboard(self):
        self.client.login(username='dash_teacher', password='pass12345')
        response = self.client.get(reverse('role_redirect'))
        self.assertRedirects(response, reverse('dashboard'))

    def test_primary_admin_sees_every_stat(self):
        self.client.login(username='dash_primary', password='pass12345')
        response = self.client.get(reverse('dashboard'))
        self.assertEqual(response.status_code, 200)
        titles = [card['title'] for card in response.context['stat_cards']]
        self.assertEqual(titles, ['Students', 'Teachers', 'Parents', 'Paid Seats'])

    def test_restricted_admin_sees_only_granted_stats(self):
        self.client.login(username='dash_registrar', password='pass12345')
        response = self.client.get(reverse('dashboard'))
        self.assertEqual(response.context['stat_cards'], [{'title': 'Students', 'value': 1}])
        self.assertIsNone(response.context['billing'])

    def test_teacher_without_permissions_sees_welcome(self):
        self.client.login(username='dash_teacher', password='pass12345')
        response = self.client.get(reverse('dashboard'))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, 'School Portal ready')
