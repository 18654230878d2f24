import copy

from rest_framework import serializers

from ops.models import LedgerEntry

_MONEY = dict(max_digits=15, decimal_places=2, required=False, allow_null=True)

# camelCase request keys -> LedgerEntry attribute names
CHANGE_KEYS = {
    'description': 'description',
    'transactionDate': 'transaction_date',
    'partyName': 'party_name',
    'headName': 'head_name',
    'paymentAmount': 'payment_amount',
    'componentA': 'component_a',
    'componentB': 'component_b',
    'receivedAmount': 'received_amount',
    'transferAmount': 'transfer_amount',
    'paymentModeId': 'payment_mode_id',
    'fromPaymentModeId': 'from_payment_mode_id',
    'toPaymentModeId': 'to_payment_mode_id',
}


class LedgerEntryCreateSerializer(serializers.Serializer):
    transactionType = serializers.ChoiceField(choices=[c for c, _ in LedgerEntry.TYPE_CHOICES])
    transactionDate = serializers.DateField(required=False, allow_null=True)
    description = serializers.CharField()
    partyName = serializers.CharField(max_length=255, required=False, allow_blank=True)
    headName = serializers.CharField(max_length=255, required=False, allow_blank=True)
    paymentAmount = serializers.DecimalField(**_MONEY)
    componentA = serializers.DecimalField(**_MONEY)
    componentB = serializers.DecimalField(**_MONEY)
    receivedAmount = serializers.DecimalField(**_MONEY)
    transferAmount = serializers.DecimalField(**_MONEY)
    paymentModeId = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    fromPaymentModeId = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    toPaymentModeId = serializers.IntegerField(min_value=1, required=False, allow_null=True)

    def to_service(self) -> dict:
        v = self.validated_data
        data = {'transaction_type': v['transactionType']}
        for key, attr in CHANGE_KEYS.items():
            if key in v:
                data[attr] = v[key]
        return data


class LedgerListQuerySerializer(serializers.Serializer):
    transactionType = serializers.ChoiceField(choices=[c for c, _ in LedgerEntry.TYPE_CHOICES], required=False)
    status = serializers.ChoiceField(choices=[c for c, _ in LedgerEntry.STATUS_CHOICES], required=False)
    editRequestStatus = serializers.ChoiceField(choices=[c for c, _ in LedgerEntry.STATUS_CHOICES], required=False)
    paymentModeId = serializers.IntegerField(min_value=1, required=False)
    startDate = serializers.DateField(required=False)
    endDate = serializers.DateField(required=False)
    search = serializers.CharField(max_length=64, required=False)
    includeDeleted = serializers.BooleanField(required=False, default=False)
    page = serializers.IntegerField(min_value=1, required=False)
    limit = serializers.IntegerField(min_value=1, max_value=200, required=False)


class DecisionSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=['approve', 'reject'])
    rejectionReason = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class BulkDecisionSerializer(DecisionSerializer):
    ids = serializers.ListField(child=serializers.IntegerField(min_value=1), allow_empty=False, max_length=500)


class EditRequestSerializer(serializers.Serializer):
    reason = serializers.CharField()
    changes = serializers.DictField()

    # changed values obey the same field rules as on create
    FIELD_RULES = {
        key: LedgerEntryCreateSerializer._declared_fields[key]
        for key in CHANGE_KEYS
    }

    def validate_changes(self, value):
        unknown = sorted(set(value) - set(CHANGE_KEYS))
        if unknown:
            raise serializers.ValidationError(f'Cannot edit fields: {", ".join(unknown)}')
        if not value:
            raise serializers.ValidationError('changes must not be empty')
        cleaned, errors = {}, {}
        for key, raw in value.items():
            field = copy.deepcopy(self.FIELD_RULES[key])
            try:
                cleaned[CHANGE_KEYS[key]] = field.run_validation(raw)
            except serializers.ValidationError as exc:
                errors[key] = exc.detail
        if errors:
            raise serializers.ValidationError(errors)
        return cleaned


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField()


class PaymentModeCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=120)
    description = serializers.CharField(required=False, allow_blank=True)
    openingBalance = serializers.DecimalField(max_digits=15, decimal_places=2, required=False, default=0)


class PaymentModeUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=120, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    isActive = serializers.BooleanField(required=False)

    def validate(self, attrs):
        locked = {'openingBalance', 'currentBalance'} & set(self.initial_data)
        if locked:
            raise serializers.ValidationError('Balances cannot be edited directly')
        return attrs

    def to_service(self) -> dict:
        v = self.validated_data
        data = {}
        if 'name' in v:
            data['name'] = v['name']
        if 'description' in v:
            data['description'] = v['description']
        if 'isActive' in v:
            data['is_active'] = v['isActive']
        return data
