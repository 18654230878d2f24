from rest_framework import serializers
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ops.exceptions import NotFound
from ops.models import Notification
from ops.services import notifications as svc


class NotificationListQuerySerializer(serializers.Serializer):
    unread = serializers.BooleanField(required=False, default=False)
    page = serializers.IntegerField(min_value=1, required=False)
    pageSize = serializers.IntegerField(min_value=1, max_value=100, required=False)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def notifications(request):
    q = NotificationListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    page = q.validated_data.get('page', 1)
    page_size = q.validated_data.get('pageSize', 20)
    qs = Notification.objects.filter(user=request.user)
    if q.validated_data['unread']:
        qs = qs.filter(is_read=False)
    total = qs.count()
    start = (page - 1) * page_size
    items = [svc.notification_to_dict(n) for n in qs[start:start + page_size]]
    return Response({
        'ok': True,
        'data': items,
        'unreadCount': svc.unread_count(request.user),
        'pagination': {'total': total, 'page': page, 'pageSize': page_size},
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def unread_count(request):
    return Response({'ok': True, 'data': {'count': svc.unread_count(request.user)}})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def mark_read(request, notification_id: int):
    n = svc.mark_read(request.user, notification_id)
    if n is None:
        raise NotFound('Notification not found')
    return Response({'ok': True, 'data': svc.notification_to_dict(n)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def mark_all_read(request):
    updated = svc.mark_all_read(request.user)
    return Response({'ok': True, 'data': {'updated': updated}})
