"""
Finance ledger endpoints.

Money values leave the API as decimal strings. Capability checks live
in :mod:`ops.services.ledger`; the views only translate camelCase input
into service arguments.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ops.permissions import HasCapability
from ops.serializers.ledger import (
    BulkDecisionSerializer, DecisionSerializer, EditRequestSerializer, LedgerEntryCreateSerializer,
    LedgerListQuerySerializer, ReasonSerializer,
)
from ops.services import ledger

FinanceReader = HasCapability.of('finance:read')


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, FinanceReader])
def entries(request):
    if request.method == 'POST':
        s = LedgerEntryCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        entry = ledger.create_entry(request.user, s.to_service())
        return Response({'ok': True, 'data': ledger.entry_to_dict(entry), 'message': 'Entry created'},
                        status=status.HTTP_201_CREATED)

    q = LedgerListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    v = q.validated_data
    page = v.get('page', 1)
    limit = v.get('limit', 50)
    items, total = ledger.list_entries(
        request.user,
        transaction_type=v.get('transactionType'),
        status=v.get('status'),
        edit_status=v.get('editRequestStatus'),
        payment_mode_id=v.get('paymentModeId'),
        date_from=v.get('startDate'),
        date_to=v.get('endDate'),
        search=v.get('search'),
        include_deleted=v['includeDeleted'],
        page=page,
        limit=limit,
    )
    return Response({'ok': True, 'data': items, 'pagination': {'total': total, 'page': page, 'pageSize': limit}})


@api_view(['GET'])
@permission_classes([IsAuthenticated, FinanceReader])
def entry_detail(request, entry_id: int):
    entry = ledger.get_entry(entry_id, request.user)
    data = ledger.entry_to_dict(entry)
    data['auditTrail'] = ledger.audit_trail(entry_id, request.user)
    return Response({'ok': True, 'data': data})


@api_view(['POST'])
@permission_classes([IsAuthenticated, FinanceReader])
def decide(request, entry_id: int):
    s = DecisionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    action = s.validated_data['action']
    entry = ledger.decide_entry(entry_id, request.user, action, s.validated_data.get('rejectionReason'))
    message = 'Entry approved' if action == ledger.ACTION_APPROVE else 'Entry rejected'
    return Response({'ok': True, 'data': ledger.entry_to_dict(entry), 'message': message})


@api_view(['POST'])
@permission_classes([IsAuthenticated, FinanceReader])
def bulk_decide(request):
    s = BulkDecisionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = ledger.bulk_decide(
        s.validated_data['ids'], request.user, s.validated_data['action'], s.validated_data.get('rejectionReason'),
    )
    count = result['approved'] + result['rejected']
    return Response({'ok': True, 'data': result, 'message': f'{count} entries processed'})


@api_view(['POST'])
@permission_classes([IsAuthenticated, FinanceReader])
def request_edit(request, entry_id: int):
    s = EditRequestSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    entry = ledger.request_edit(entry_id, request.user, s.validated_data['reason'], s.validated_data['changes'])
    return Response({'ok': True, 'data': ledger.entry_to_dict(entry), 'message': 'Edit request submitted'})


@api_view(['POST'])
@permission_classes([IsAuthenticated, FinanceReader])
def approve_edit(request, entry_id: int):
    s = ReasonSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    entry = ledger.approve_edit(entry_id, request.user, s.validated_data['reason'])
    return Response({'ok': True, 'data': ledger.entry_to_dict(entry), 'message': 'Edit approved'})


@api_view(['POST'])
@permission_classes([IsAuthenticated, FinanceReader])
def reject_edit(request, entry_id: int):
    s = ReasonSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    entry = ledger.reject_edit_request(entry_id, request.user, s.validated_data['reason'])
    return Response({'ok': True, 'data': ledger.entry_to_dict(entry), 'message': 'Edit request rejected'})


@api_view(['POST'])
@permission_classes([IsAuthenticated, FinanceReader])
def delete(request, entry_id: int):
    s = ReasonSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    entry = ledger.soft_delete_entry(entry_id, request.user, s.validated_data['reason'])
    return Response({'ok': True, 'data': ledger.entry_to_dict(entry), 'message': 'Entry deleted'})


@api_view(['POST'])
@permission_classes([IsAuthenticated, FinanceReader])
def undo(request, entry_id: int):
    entry, message = ledger.undo_decision(entry_id, request.user)
    return Response({'ok': True, 'data': ledger.entry_to_dict(entry), 'message': message})
