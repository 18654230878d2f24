import pytest

from ops.models import Notification
from ops.services.notifications import create_notification, create_notifications

pytestmark = pytest.mark.django_db


def notify(user, n=1, type='INFO'):
    return [create_notification(user.id, type=type, title=f'Title {i}', message=f'Message {i}') for i in range(n)]


def test_list_is_scoped_to_caller(bd, insurance, client_for):
    notify(bd, 2)
    notify(insurance, 3)
    resp = client_for(bd).get('/api/notifications')
    assert resp.status_code == 200
    assert resp.data['pagination']['total'] == 2
    assert resp.data['unreadCount'] == 2
    assert {n['title'] for n in resp.data['data']} == {'Title 0', 'Title 1'}


def test_unread_filter_and_count(bd, client_for):
    first, second = notify(bd, 2)
    client = client_for(bd)
    resp = client.post(f'/api/notifications/{first.id}/read')
    assert resp.status_code == 200
    assert resp.data['data']['isRead'] is True

    resp = client.get('/api/notifications', {'unread': 'true'})
    assert [n['id'] for n in resp.data['data']] == [second.id]
    assert client.get('/api/notifications/unread-count').data['data'] == {'count': 1}


def test_cannot_read_someone_elses_notification(bd, insurance, client_for):
    (theirs,) = notify(insurance)
    resp = client_for(bd).post(f'/api/notifications/{theirs.id}/read')
    assert resp.status_code == 404
    assert resp.data['code'] == 'not_found'
    theirs.refresh_from_db()
    assert theirs.is_read is False


def test_read_all(bd, insurance, client_for):
    notify(bd, 3)
    notify(insurance, 1)
    resp = client_for(bd).post('/api/notifications/read-all')
    assert resp.data['data'] == {'updated': 3}
    assert Notification.objects.filter(user=insurance, is_read=False).count() == 1


def test_fan_out_skips_duplicates_and_blanks(bd, insurance):
    rows = create_notifications([bd.id, None, bd.id, insurance.id], type='INFO', title='t', message='m')
    assert [n.user_id for n in rows] == [bd.id, insurance.id]
    assert create_notification(None, type='INFO', title='t', message='m') is None
