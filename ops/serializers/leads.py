from rest_framework import serializers

from ops.models import AdmissionRecord, InsuranceCase, Lead
from ops.services.pipeline import LOST_REASONS


class LeadCreateSerializer(serializers.Serializer):
    patientName = serializers.CharField(max_length=255)
    phone = serializers.CharField(max_length=20, required=False, allow_blank=True)
    city = serializers.CharField(max_length=120, required=False, allow_blank=True)
    disease = serializers.CharField(max_length=255, required=False, allow_blank=True)
    bdId = serializers.IntegerField(min_value=1, required=False, allow_null=True)


class LeadListQuerySerializer(serializers.Serializer):
    caseStage = serializers.ChoiceField(choices=[c for c, _ in Lead.STAGE_CHOICES], required=False)
    pipelineStage = serializers.ChoiceField(choices=[c for c, _ in Lead.PIPELINE_CHOICES], required=False)
    q = serializers.CharField(max_length=64, required=False)
    page = serializers.IntegerField(min_value=1, required=False)
    pageSize = serializers.IntegerField(min_value=1, max_value=100, required=False)


class KYPSubmitSerializer(serializers.Serializer):
    insuranceCard = serializers.CharField(max_length=255, required=False, allow_blank=True)
    insuranceName = serializers.CharField(max_length=255, required=False, allow_blank=True)
    aadhar = serializers.CharField(max_length=32, required=False, allow_blank=True)
    pan = serializers.CharField(max_length=32, required=False, allow_blank=True)
    disease = serializers.CharField(max_length=255, required=False, allow_blank=True)
    location = serializers.CharField(max_length=255, required=False, allow_blank=True)
    remark = serializers.CharField(required=False, allow_blank=True)

    def to_service(self) -> dict:
        v = self.validated_data
        return {
            'insurance_card': v.get('insuranceCard'),
            'insurance_name': v.get('insuranceName'),
            'aadhar': v.get('aadhar'),
            'pan': v.get('pan'),
            'disease': v.get('disease'),
            'location': v.get('location'),
            'remark': v.get('remark'),
        }


class PreAuthDetailsSerializer(serializers.Serializer):
    hospitalSuggestions = serializers.ListField(child=serializers.CharField(max_length=255), allow_empty=False)
    roomTypes = serializers.ListField(child=serializers.CharField(max_length=64), required=False)


class RaisePreAuthSerializer(serializers.Serializer):
    requestedHospitalName = serializers.CharField(max_length=255)
    requestedRoomType = serializers.CharField(max_length=64, required=False, allow_blank=True)
    diseaseDescription = serializers.CharField(required=False, allow_blank=True)
    expectedAdmissionDate = serializers.DateField(required=False, allow_null=True)
    isNewHospitalRequest = serializers.BooleanField(required=False, default=False)

    def to_service(self) -> dict:
        v = self.validated_data
        return {
            'requested_hospital_name': v['requestedHospitalName'],
            'requested_room_type': v.get('requestedRoomType'),
            'disease_description': v.get('diseaseDescription'),
            'expected_admission_date': v.get('expectedAdmissionDate'),
            'is_new_hospital_request': v.get('isNewHospitalRequest', False),
        }


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=2000)


class InitiateAdmissionSerializer(serializers.Serializer):
    admissionDate = serializers.DateField()
    admissionTime = serializers.CharField(max_length=16)
    admittingHospital = serializers.CharField(max_length=255)
    hospitalAddress = serializers.CharField(max_length=500)
    surgeryDate = serializers.DateField()
    surgeryTime = serializers.CharField(max_length=16)
    tpa = serializers.CharField(max_length=255)
    notes = serializers.CharField(required=False, allow_blank=True)

    def to_service(self) -> dict:
        v = self.validated_data
        return {
            'admission_date': v['admissionDate'],
            'admission_time': v['admissionTime'],
            'admitting_hospital': v['admittingHospital'],
            'hospital_address': v['hospitalAddress'],
            'surgery_date': v['surgeryDate'],
            'surgery_time': v['surgeryTime'],
            'tpa': v['tpa'],
            'notes': v.get('notes', ''),
        }


class IpdMarkSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[c for c, _ in AdmissionRecord.IPD_CHOICES])
    reason = serializers.CharField(required=False, allow_blank=True)
    newSurgeryDate = serializers.DateField(required=False, allow_null=True)
    dischargeDate = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class MarkLostSerializer(serializers.Serializer):
    reason = serializers.ChoiceField(choices=list(LOST_REASONS))
    detail = serializers.CharField(max_length=400, required=False, allow_blank=True, allow_null=True)


class InsuranceCaseUpdateSerializer(serializers.Serializer):
    caseStatus = serializers.ChoiceField(choices=[c for c, _ in InsuranceCase.STATUS_CHOICES])
    approvalAmount = serializers.DecimalField(max_digits=15, decimal_places=2, required=False, allow_null=True)
    tpaRemarks = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class InsuranceCaseListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[c for c, _ in InsuranceCase.STATUS_CHOICES], required=False)
    page = serializers.IntegerField(min_value=1, required=False)
    pageSize = serializers.IntegerField(min_value=1, max_value=100, required=False)


class ChatSendSerializer(serializers.Serializer):
    content = serializers.CharField(max_length=2000)


class PageQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(min_value=1, required=False)
    pageSize = serializers.IntegerField(min_value=1, max_value=200, required=False)


class FollowUpSerializer(serializers.Serializer):
    admissionDate = serializers.DateField(required=False, allow_null=True)
    surgeryDate = serializers.DateField(required=False, allow_null=True)
    prescription = serializers.CharField(required=False, allow_blank=True)
    report = serializers.CharField(required=False, allow_blank=True)
    hospitalName = serializers.CharField(max_length=255, required=False, allow_blank=True)
    doctorName = serializers.CharField(max_length=255, required=False, allow_blank=True)
    prescriptionFileUrl = serializers.URLField(max_length=500, required=False, allow_blank=True)
    reportFileUrl = serializers.URLField(max_length=500, required=False, allow_blank=True)

    def to_service(self) -> dict:
        v = self.validated_data
        return {
            'admission_date': v.get('admissionDate'),
            'surgery_date': v.get('surgeryDate'),
            'prescription': v.get('prescription'),
            'report': v.get('report'),
            'hospital_name': v.get('hospitalName'),
            'doctor_name': v.get('doctorName'),
            'prescription_file_url': v.get('prescriptionFileUrl'),
            'report_file_url': v.get('reportFileUrl'),
        }


class DischargeSheetSerializer(serializers.Serializer):
    dischargeDate = serializers.DateField()
    totalFinalBill = serializers.DecimalField(max_digits=15, decimal_places=2, min_value=0)
    finalApprovedAmount = serializers.DecimalField(max_digits=15, decimal_places=2, min_value=0,
                                                   required=False, allow_null=True)
    deductionAmount = serializers.DecimalField(max_digits=15, decimal_places=2, min_value=0,
                                               required=False, allow_null=True)
    hospitalShareAmount = serializers.DecimalField(max_digits=15, decimal_places=2, min_value=0,
                                                   required=False, allow_null=True)
    netProfit = serializers.DecimalField(max_digits=15, decimal_places=2, required=False, allow_null=True)
    remarks = serializers.CharField(required=False, allow_blank=True)

    def to_service(self) -> dict:
        v = self.validated_data
        return {
            'discharge_date': v['dischargeDate'],
            'total_final_bill': v['totalFinalBill'],
            'final_approved_amount': v.get('finalApprovedAmount'),
            'deduction_amount': v.get('deductionAmount'),
            'hospital_share_amount': v.get('hospitalShareAmount'),
            'net_profit': v.get('netProfit'),
            'remarks': v.get('remarks'),
        }
