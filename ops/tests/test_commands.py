import pytest
from django.core.management import call_command

from ops.models import Team, User

pytestmark = pytest.mark.django_db


def test_ensure_test_users_is_idempotent():
    call_command('ensure_test_users', '--password', 'S3cret!x')
    call_command('ensure_test_users', '--password', 'S3cret!x')

    assert User.objects.filter(username__in=['md1', 'bd1', 'finance1', 'admin1']).count() == 4
    team = Team.objects.get(name='Test Team')
    assert team.sales_head.username == 'saleshead1'
    bd = User.objects.get(username='bd1')
    assert bd.role == User.ROLE_BD and bd.team_id == team.id
    assert User.objects.get(username='md1').team_id is None
    assert bd.check_password('S3cret!x')


def test_ensure_test_users_resets_role():
    call_command('ensure_test_users')
    User.objects.filter(username='bd1').update(role=User.ROLE_USER, is_active=False)
    call_command('ensure_test_users')
    bd = User.objects.get(username='bd1')
    assert bd.role == User.ROLE_BD and bd.is_active
