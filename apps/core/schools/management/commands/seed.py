from django.core.management.base import BaseCommand
from django.db import transaction
from faker import Faker

from apps.core.billing.services import check_and_enforce_billing
from apps.core.schools.models import School
from apps.core.users.models import User
from apps.core.users.permissions import Permission, Role


class Command(BaseCommand):
    help = 'Seeds the database with a demo school, staff, students and parents.'

    def add_arguments(self, parser):
        parser.add_argument('--students', type=int, default=20)
        parser.add_argument('--paid', type=int, default=10, help='Seats already paid for.')
        parser.add_argument('--password', default='password')

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write('Seeding database...')

        fake = Faker()
        password = options['password']

        school, created = School.objects.get_or_create(
            subdomain='demo',
            defaults={
                'name': fake.company() + " School",
                'address': fake.address(),
                'phone': fake.phone_number()[:20],
                'email': fake.email(),
                'paid_student_count': max(0, options['paid']),
            }
        )
        if created:
            self.stdout.write(self.style.SUCCESS(f'Successfully created school: {school.name}'))

        if not User.objects.filter(username='superadmin').exists():
            User.objects.create_superuser('superadmin', 'superadmin@example.com', password)
            self.stdout.write(self.style.SUCCESS('Successfully created superadmin user.'))

        # Primary admin (no stored permissions) and a restricted bursar.
        self._get_or_create_user('schooladmin', Role.SCHOOL_ADMIN, school, password)
        bursar = self._get_or_create_user('bursar', Role.SCHOOL_ADMIN, school, password)
        if bursar.permissions is None:
            bursar.set_permissions({Permission.VIEW_FEES, Permission.MANAGE_FEES, Permission.VIEW_STUDENTS})
            bursar.save(update_fields=['permissions'])

        for index in range(1, 4):
            self._get_or_create_user(f'teacher{index}', Role.TEACHER, school, password, fake)

        for index in range(1, options['students'] + 1):
            self._get_or_create_user(f'student{index}', Role.STUDENT, school, password, fake)
            if index % 2 == 0:
                self._get_or_create_user(f'parent{index}', Role.PARENT, school, password, fake)

        snapshot = check_and_enforce_billing(school=school)
        self.stdout.write(self.style.SUCCESS(
            f'Billing: {snapshot.status} ({snapshot.unpaid_students} unpaid, due {snapshot.amount_due})'
        ))
        self.stdout.write(self.style.SUCCESS('Database seeded successfully.'))

    def _get_or_create_user(self, username, role, school, password, fake=None):
        defaults = {'role': role, 'school': school}
        if fake is not None:
            defaults.update({
                'first_name': fake.first_name(),
                'last_name': fake.last_name(),
                'email': fake.email(),
            })

        user, created = User.objects.get_or_create(username=username, defaults=defaults)
        if created:
            user.set_password(password)
            user.save(update_fields=['password'])
            self.stdout.write(self.style.SUCCESS(f'Successfully created {role} user: {username}'))
        return user
