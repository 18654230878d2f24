from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ops.serializers.leads import FollowUpSerializer, PreAuthDetailsSerializer, ReasonSerializer
from ops.services import pipeline


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def add_details(request, kyp_id: int):
    s = PreAuthDetailsSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    preauth = pipeline.add_preauth_details(
        kyp_id, request.user, s.validated_data['hospitalSuggestions'], s.validated_data.get('roomTypes'),
    )
    return Response({'ok': True, 'data': pipeline.preauth_to_dict(preauth), 'message': 'Pre-auth details added'})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def approve(request, kyp_id: int):
    preauth = pipeline.approve_preauth(kyp_id, request.user)
    return Response({'ok': True, 'data': pipeline.preauth_to_dict(preauth), 'message': 'Pre-authorization approved'})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def reject(request, kyp_id: int):
    s = ReasonSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    preauth = pipeline.reject_preauth(kyp_id, request.user, s.validated_data['reason'])
    return Response({'ok': True, 'data': pipeline.preauth_to_dict(preauth), 'message': 'Pre-authorization rejected'})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def mark_new_hospital_raised(request, kyp_id: int):
    preauth, changed = pipeline.mark_new_hospital_preauth_raised(kyp_id, request.user)
    message = 'Marked as raised' if changed else 'Already marked as raised'
    return Response({'ok': True, 'data': pipeline.preauth_to_dict(preauth), 'message': message})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def follow_up(request, kyp_id: int):
    s = FollowUpSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    record = pipeline.submit_follow_up(kyp_id, request.user, s.to_service())
    return Response({'ok': True, 'data': pipeline.follow_up_to_dict(record), 'message': 'Follow-up saved'},
                    status=status.HTTP_201_CREATED)
