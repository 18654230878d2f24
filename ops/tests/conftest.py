import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from ops.models import Team, User

TEAM_ROLES = {User.ROLE_BD, User.ROLE_TEAM_LEAD, User.ROLE_SALES_HEAD}


@pytest.fixture(autouse=True)
def clear_cache():
    # throttle counters live in the locmem cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def team(db):
    return Team.objects.create(name='North')


@pytest.fixture
def make_user(db, team):
    seq = {'n': 0}

    def make(role, **kwargs):
        seq['n'] += 1
        kwargs.setdefault('team', team if role in TEAM_ROLES else None)
        return User.objects.create_user(
            username=f'{role.lower()}{seq["n"]}', password='P@ssw0rd1', role=role, **kwargs
        )
    return make


@pytest.fixture
def bd(make_user):
    return make_user(User.ROLE_BD)


@pytest.fixture
def other_bd(make_user):
    return make_user(User.ROLE_BD, team=None)


@pytest.fixture
def insurance(make_user):
    return make_user(User.ROLE_INSURANCE_HEAD)


@pytest.fixture
def md(make_user):
    return make_user(User.ROLE_MD)


@pytest.fixture
def finance(make_user):
    return make_user(User.ROLE_FINANCE_HEAD)


@pytest.fixture
def admin_user(make_user):
    return make_user(User.ROLE_ADMIN)


@pytest.fixture
def client_for():
    def make(user=None):
        client = APIClient()
        if user is not None:
            client.force_authenticate(user=user)
        return client
    return make
