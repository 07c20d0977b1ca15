"""
Management command to seed the role groups.

Creates one auth Group per role (ADMIN, USER, TECNICO, READ_ONLY) and can
assign a role to a user. This command is idempotent and safe to re-run.
"""
from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from apps.rbac.catalog import Role, coerce_role


class Command(BaseCommand):
    help = 'Seed role groups and optionally assign a role to a user (idempotent)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--assign',
            nargs=2,
            metavar=('EMAIL', 'ROLE'),
            help='Make ROLE the only role of the user with EMAIL',
        )

    def handle(self, *args, **options):
        created_count = 0
        for role in Role:
            _, created = Group.objects.get_or_create(name=role.value)
            if created:
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f'✓ Created: {role.value}'))
            else:
                self.stdout.write(self.style.HTTP_INFO(f'  Exists: {role.value}'))

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {created_count} created, '
                f'{len(Role) - created_count} unchanged'
            )
        )

        if options.get('assign'):
            email, role_name = options['assign']
            self._assign(email, role_name)

    @transaction.atomic
    def _assign(self, email, role_name):
        role = coerce_role(role_name.upper())
        if role is None:
            raise CommandError(f"Unknown role {role_name!r}. Choose one of: {', '.join(Role.values)}")

        User = get_user_model()
        user = User.objects.filter(email__iexact=email).first()
        if user is None:
            raise CommandError(f'No user with email {email}')

        # A user holds exactly one role; drop any other role group first
        user.groups.remove(*Group.objects.filter(name__in=Role.values).exclude(name=role.value))
        user.groups.add(Group.objects.get(name=role.value))
        self.stdout.write(self.style.SUCCESS(f'✓ {email} is now {role.value}'))
