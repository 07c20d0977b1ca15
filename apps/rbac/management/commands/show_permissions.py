"""
Management command to display the permission catalog.

Prints the (resource, action) -> roles matrix, or with --role the
permission map of a single role. Optionally lists registered operations.
"""
from django.core.management.base import BaseCommand, CommandError

from apps.rbac.catalog import Role, coerce_role, default_catalog
from apps.rbac.evaluator import default_evaluator
from apps.rbac.policies import registry


class Command(BaseCommand):
    help = 'Show the permission catalog, or the permissions of one role'

    def add_arguments(self, parser):
        parser.add_argument(
            '--role',
            type=str,
            help=f"Only show what this role may do ({', '.join(Role.values)})",
        )
        parser.add_argument(
            '--operations',
            action='store_true',
            help='Also list registered operations and their guard/throttle',
        )

    def handle(self, *args, **options):
        role_name = options.get('role')
        if role_name:
            role = coerce_role(role_name.upper())
            if role is None:
                raise CommandError(
                    f"Unknown role {role_name!r}. Choose one of: {', '.join(Role.values)}"
                )
            self._show_role(role)
        else:
            self._show_matrix()

        if options.get('operations'):
            self._show_operations()

    def _show_matrix(self):
        roles = list(Role)
        width = max(len(rule.code) for rule in default_catalog.rules())

        self.stdout.write('=' * 70)
        self.stdout.write('Permission Catalog:')
        self.stdout.write('=' * 70)
        self.stdout.write(
            'permission'.ljust(width) + '  ' + '  '.join(r.value.ljust(9) for r in roles)
        )
        for rule in default_catalog.rules():
            marks = '  '.join(('✓' if r in rule.roles else '·').ljust(9) for r in roles)
            self.stdout.write(f'{rule.code.ljust(width)}  {marks}')

        self.stdout.write(
            self.style.SUCCESS(f'\n{len(default_catalog)} permissions, {len(roles)} roles')
        )

    def _show_role(self, role):
        permission_map = default_evaluator.permission_map(role)
        granted = [code for code, allowed in permission_map.items() if allowed]

        self.stdout.write(f'\n{role.value}' + (' (admin)' if default_evaluator.is_admin(role) else '') + ':')
        for code, allowed in permission_map.items():
            if allowed:
                self.stdout.write(self.style.SUCCESS(f'  ✓ {code}'))
            else:
                self.stdout.write(self.style.HTTP_INFO(f'  · {code}'))

        self.stdout.write(f'\n{len(granted)} of {len(permission_map)} permissions granted')

    def _show_operations(self):
        self.stdout.write('\n' + '=' * 70)
        self.stdout.write('Registered Operations:')
        self.stdout.write('=' * 70)
        for policy in sorted(registry, key=lambda p: p.operation):
            parts = []
            if policy.guard is not None:
                mode = 'ALL' if policy.guard.require_all else 'ANY'
                if policy.guard.admin_only:
                    parts.append('guard=ADMIN')
                else:
                    parts.append(f"guard={mode}({', '.join(policy.guard.codes)})")
            if policy.throttle is not None:
                parts.append(f'throttle={policy.throttle}')
            self.stdout.write(f"  {policy.operation}: {' '.join(parts)}")
