from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ops.serializers.leads import InsuranceCaseListQuerySerializer, InsuranceCaseUpdateSerializer
from ops.services import pipeline


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def cases(request):
    q = InsuranceCaseListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    page = q.validated_data.get('page', 1)
    page_size = q.validated_data.get('pageSize', 20)
    items, total = pipeline.list_insurance_cases(
        request.user, status=q.validated_data.get('status'), page=page, page_size=page_size,
    )
    return Response({'ok': True, 'data': items, 'pagination': {'total': total, 'page': page, 'pageSize': page_size}})


@api_view(['PATCH'])
@permission_classes([IsAuthenticated])
def case_detail(request, case_id: int):
    s = InsuranceCaseUpdateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    case = pipeline.update_insurance_case(
        case_id, request.user, v['caseStatus'],
        approval_amount=v.get('approvalAmount'),
        tpa_remarks=v.get('tpaRemarks'),
    )
    return Response({'ok': True, 'data': pipeline.insurance_case_to_dict(case), 'message': 'Insurance case updated'})
