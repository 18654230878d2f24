import pytest
from rest_framework.test import APIClient

from ops.models import AuditEvent, User

pytestmark = pytest.mark.django_db

PASSWORD = 'P@ssw0rd1'


def login(client, username, password=PASSWORD, **extra):
    return client.post('/api/auth/login', {'username': username, 'password': password, **extra}, format='json')


def test_anonymous_request_is_unauthorized():
    resp = APIClient().get('/api/leads')
    assert resp.status_code == 401
    assert resp.data['ok'] is False
    assert resp.data['code'] == 'unauthorized'


def test_healthz_is_public():
    resp = APIClient().get('/healthz')
    assert resp.status_code == 200
    assert resp.json()['ok'] is True


def test_login_issues_token_and_jwt_pair(bd):
    resp = login(APIClient(), bd.username)
    assert resp.status_code == 200
    body = resp.data
    assert body['token'] and body['jwt_access'] and body['jwt_refresh']
    assert body['user']['role'] == User.ROLE_BD
    assert 'leads:write' in body['user']['capabilities']
    assert AuditEvent.objects.filter(action='login', user=bd).exists()


def test_bad_password_is_rejected(bd):
    resp = login(APIClient(), bd.username, password='wrong')
    assert resp.status_code == 401
    assert resp.data['code'] == 'unauthorized'


def test_role_in_login_body_is_ignored(bd):
    resp = login(APIClient(), bd.username, role='ADMIN')
    assert resp.status_code == 200
    assert resp.data['role'] == User.ROLE_BD
    bd.refresh_from_db()
    assert bd.role == User.ROLE_BD


def test_token_and_bearer_headers_authenticate(bd):
    body = login(APIClient(), bd.username).data

    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f"Token {body['token']}")
    resp = client.get('/api/auth/me')
    assert resp.status_code == 200
    assert resp.data['data']['id'] == bd.id

    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {body['jwt_access']}")
    resp = client.get('/api/auth/me')
    assert resp.status_code == 200
    assert resp.data['data']['username'] == bd.username


def test_refresh_rotates_and_logout_blacklists(bd):
    body = login(APIClient(), bd.username).data
    client = APIClient()

    resp = client.post('/api/auth/refresh', {'refresh': body['jwt_refresh']}, format='json')
    assert resp.status_code == 200
    assert resp.data['jwt_access']
    rotated = resp.data['jwt_refresh']

    # the rotated-out token is blacklisted
    resp = client.post('/api/auth/refresh', {'refresh': body['jwt_refresh']}, format='json')
    assert resp.status_code == 401

    client.credentials(HTTP_AUTHORIZATION=f"Bearer {body['jwt_access']}")
    resp = client.post('/api/auth/logout', {'refresh': rotated}, format='json')
    assert resp.status_code == 200
    assert resp.data['blacklisted'] == 1

    resp = APIClient().post('/api/auth/refresh', {'refresh': rotated}, format='json')
    assert resp.status_code == 401
    assert resp.data['code'] == 'unauthorized'


def test_logout_revokes_drf_token(bd):
    body = login(APIClient(), bd.username).data
    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f"Token {body['token']}")
    assert client.post('/api/auth/logout', {}, format='json').status_code == 200
    assert client.get('/api/auth/me').status_code == 401


def test_user_without_capabilities_is_forbidden(make_user, client_for):
    plain = make_user(User.ROLE_USER)
    resp = client_for(plain).get('/api/finance/ledger')
    assert resp.status_code == 403
    assert resp.data['code'] == 'forbidden'
    resp = client_for(plain).post('/api/leads', {'patientName': 'X'}, format='json')
    assert resp.status_code == 403
