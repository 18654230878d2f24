"""
Lead and case-pipeline endpoints.

Handlers validate the request body with a serializer, hand the acting
user to the pipeline service and wrap the result in the standard
``{'ok': True, 'data': ...}`` envelope. Domain errors raised by the
service are rendered by ``ops.exceptions.api_exception_handler``.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ops.serializers.leads import (
    ChatSendSerializer, DischargeSheetSerializer, InitiateAdmissionSerializer, IpdMarkSerializer,
    KYPSubmitSerializer, LeadCreateSerializer, LeadListQuerySerializer, MarkLostSerializer,
    PageQuerySerializer, RaisePreAuthSerializer,
)
from ops.services import pipeline
from ops.services.notifications import chat_payload


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def leads(request):
    if request.method == 'POST':
        s = LeadCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        v = s.validated_data
        lead = pipeline.create_lead(request.user, {
            'patient_name': v['patientName'],
            'phone': v.get('phone'),
            'city': v.get('city'),
            'disease': v.get('disease'),
            'bd_id': v.get('bdId'),
        })
        return Response({'ok': True, 'data': pipeline.lead_to_dict(lead), 'message': 'Lead created'},
                        status=status.HTTP_201_CREATED)

    q = LeadListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    page = q.validated_data.get('page', 1)
    page_size = q.validated_data.get('pageSize', 20)
    data, total = pipeline.list_leads(
        request.user,
        case_stage=q.validated_data.get('caseStage'),
        pipeline_stage=q.validated_data.get('pipelineStage'),
        q=q.validated_data.get('q'),
        page=page,
        page_size=page_size,
    )
    return Response({'ok': True, 'data': data, 'pagination': {'total': total, 'page': page, 'pageSize': page_size}})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def lead_detail(request, lead_id: int):
    lead = pipeline.get_lead(lead_id, request.user)
    return Response({'ok': True, 'data': pipeline.lead_to_dict(lead, detail=True)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def submit_kyp(request, lead_id: int):
    s = KYPSubmitSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    kyp = pipeline.submit_kyp(lead_id, request.user, s.to_service())
    return Response({'ok': True, 'data': pipeline.kyp_to_dict(kyp), 'message': 'KYP submitted'},
                    status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def raise_preauth(request, lead_id: int):
    s = RaisePreAuthSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    preauth = pipeline.raise_preauth(lead_id, request.user, s.to_service())
    return Response({'ok': True, 'data': pipeline.preauth_to_dict(preauth), 'message': 'Pre-auth raised'})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def initiate(request, lead_id: int):
    s = InitiateAdmissionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    admission = pipeline.initiate_admission(lead_id, request.user, s.to_service())
    return Response({'ok': True, 'data': pipeline.admission_to_dict(admission), 'message': 'Admission initiated'},
                    status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def ipd_mark(request, lead_id: int):
    s = IpdMarkSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    admission = pipeline.mark_ipd_status(
        lead_id, request.user, v['status'],
        reason=v.get('reason', ''),
        new_surgery_date=v.get('newSurgeryDate'),
        discharge_date=v.get('dischargeDate'),
        notes=v.get('notes', ''),
    )
    return Response({'ok': True, 'data': pipeline.admission_to_dict(admission), 'message': 'IPD status updated'})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def discharge(request, lead_id: int):
    lead = pipeline.mark_discharge(lead_id, request.user)
    return Response({'ok': True, 'data': pipeline.lead_to_dict(lead), 'message': 'Patient discharged'})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def mark_lost(request, lead_id: int):
    s = MarkLostSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    lead = pipeline.mark_lost(lead_id, request.user, s.validated_data['reason'], s.validated_data.get('detail'))
    return Response({'ok': True, 'data': pipeline.lead_to_dict(lead), 'message': 'Lead marked lost'})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def discharge_sheet(request, lead_id: int):
    s = DischargeSheetSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    sheet = pipeline.create_discharge_sheet(lead_id, request.user, s.to_service())
    return Response({'ok': True, 'data': pipeline.discharge_sheet_to_dict(sheet), 'message': 'Discharge sheet created'},
                    status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def close(request, lead_id: int):
    lead = pipeline.close_case(lead_id, request.user)
    return Response({'ok': True, 'data': pipeline.lead_to_dict(lead), 'message': 'Case completed'})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def stage_history(request, lead_id: int):
    return Response({'ok': True, 'data': pipeline.stage_history(lead_id, request.user)})


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def chat(request, lead_id: int):
    if request.method == 'POST':
        s = ChatSendSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        msg = pipeline.post_user_message(lead_id, request.user, s.validated_data['content'])
        return Response({'ok': True, 'data': chat_payload(msg)}, status=status.HTTP_201_CREATED)

    q = PageQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    page = q.validated_data.get('page', 1)
    page_size = q.validated_data.get('pageSize', 50)
    items, total = pipeline.list_messages(lead_id, request.user, page=page, page_size=page_size)
    return Response({'ok': True, 'data': items, 'pagination': {'total': total, 'page': page, 'pageSize': page_size}})
