from rest_framework import serializers, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ops.permissions import HasCapability
from ops.serializers.ledger import PaymentModeCreateSerializer, PaymentModeUpdateSerializer
from ops.services import ledger

FinanceReader = HasCapability.of('finance:read')


class _ModeListQuery(serializers.Serializer):
    includeInactive = serializers.BooleanField(required=False, default=False)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, FinanceReader])
def payment_modes(request):
    if request.method == 'POST':
        s = PaymentModeCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        mode = ledger.create_payment_mode(
            request.user,
            s.validated_data['name'],
            s.validated_data.get('description', ''),
            s.validated_data.get('openingBalance'),
        )
        return Response({'ok': True, 'data': ledger.payment_mode_to_dict(mode), 'message': 'Payment mode created'},
                        status=status.HTTP_201_CREATED)

    q = _ModeListQuery(data=request.query_params)
    q.is_valid(raise_exception=True)
    return Response({'ok': True, 'data': ledger.list_payment_modes(request.user, q.validated_data['includeInactive'])})


@api_view(['GET', 'PATCH'])
@permission_classes([IsAuthenticated, FinanceReader])
def payment_mode_detail(request, mode_id: int):
    if request.method == 'PATCH':
        s = PaymentModeUpdateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        mode = ledger.update_payment_mode(mode_id, request.user, s.to_service())
        return Response({'ok': True, 'data': ledger.payment_mode_to_dict(mode), 'message': 'Payment mode updated'})

    return Response({'ok': True, 'data': ledger.payment_mode_detail(mode_id, request.user)})
