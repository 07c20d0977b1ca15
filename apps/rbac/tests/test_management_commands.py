"""
Tests for the show_permissions and seed_roles management commands.
"""
from io import StringIO

import pytest
from django.contrib.auth.models import Group
from django.core.management import call_command
from django.core.management.base import CommandError

from apps.rbac.catalog import Role, default_catalog
from apps.rbac.context import role_for_user


def run(*args):
    out = StringIO()
    call_command(*args, stdout=out)
    return out.getvalue()


class TestShowPermissions:

    def test_matrix_lists_every_rule(self):
        output = run('show_permissions')
        for r in default_catalog.rules():
            assert r.code in output
        assert f'{len(default_catalog)} permissions, {len(Role)} roles' in output

    def test_single_role(self):
        output = run('show_permissions', '--role', 'read_only')
        assert 'READ_ONLY:' in output
        assert '✓ pagos:read' in output
        assert '· clientes:read' in output
        assert '2 of' in output

    def test_admin_marked(self):
        assert 'ADMIN (admin):' in run('show_permissions', '--role', 'ADMIN')

    def test_unknown_role(self):
        with pytest.raises(CommandError):
            run('show_permissions', '--role', 'superuser')

    def test_operations(self):
        output = run('show_permissions', '--operations')
        assert 'auth.login: throttle=login' in output
        assert 'rbac.catalog: guard=ADMIN' in output
        assert 'clientes.update: guard=ALL(clientes:read, clientes:update)' in output


@pytest.mark.django_db
class TestSeedRoles:

    def test_creates_groups_idempotently(self):
        run('seed_roles')
        output = run('seed_roles')
        assert set(Group.objects.values_list('name', flat=True)) >= set(Role.values)
        assert '0 created' in output

    def test_assign_replaces_previous_role(self, make_user):
        user = make_user('USER', email='person@example.com')

        run('seed_roles', '--assign', 'person@example.com', 'tecnico')

        user.refresh_from_db()
        assert role_for_user(user) is Role.TECNICO
        assert user.groups.filter(name='USER').count() == 0

    def test_assign_unknown_user(self):
        with pytest.raises(CommandError):
            run('seed_roles', '--assign', 'ghost@example.com', 'ADMIN')

    def test_assign_unknown_role(self, make_user):
        make_user(None, email='person@example.com')
        with pytest.raises(CommandError):
            run('seed_roles', '--assign', 'person@example.com', 'OWNER')
