import json

from asgiref.sync import async_to_sync
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser

from ops.realtime.chat_consumers import _parse_send
from ops.realtime.consumers import NotificationConsumer


def test_parse_send_accepts_trimmed_content():
    assert _parse_send(json.dumps({'type': 'send', 'content': '  hello  '})) == ('hello', None)


def test_parse_send_error_codes(settings):
    settings.CHAT_MAX_LENGTH = 5
    assert _parse_send('{not json')[1] == (4000, 'invalid_json')
    assert _parse_send('[]')[1] == (4001, 'invalid_payload')
    assert _parse_send(json.dumps({'type': 'typing'}))[1] == (4002, 'unsupported_type')
    assert _parse_send(json.dumps({'type': 'send', 'content': 7}))[1] == (4003, 'invalid_content_type')
    assert _parse_send(json.dumps({'type': 'send', 'content': '   '}))[1] == (4004, 'empty_message')
    assert _parse_send(json.dumps({'type': 'send', 'content': 'too long'}))[1] == (4005, 'message_too_long')


def test_notification_socket_rejects_anonymous():
    async def attempt():
        communicator = WebsocketCommunicator(NotificationConsumer.as_asgi(), '/ws/notifications/')
        communicator.scope['user'] = AnonymousUser()
        connected, code = await communicator.connect()
        return connected, code

    connected, code = async_to_sync(attempt)()
    assert connected is False
    assert code == 4001
