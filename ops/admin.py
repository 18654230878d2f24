"""
Django admin registrations for the ops models.

History and audit rows are append-only, so their admins are read-only.
Payment-mode balances are shown but never editable here.
"""

from django.contrib import admin

from .models import (
    Team,
    User,
    Lead,
    CaseStageHistory,
    LeadStageEvent,
    KYPSubmission,
    PreAuthorization,
    AdmissionRecord,
    InsuranceCase,
    PatientFollowUp,
    DischargeSheet,
    CaseChatMessage,
    Notification,
    PaymentMode,
    LedgerEntry,
    LedgerAuditLog,
    AuditEvent,
)


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Team)
class TeamAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'sales_head', 'created_at')
    search_fields = ('name',)


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'role', 'team', 'is_staff', 'is_superuser')
    list_filter = ('role', 'team')
    search_fields = ('username', 'first_name', 'last_name')


@admin.register(Lead)
class LeadAdmin(admin.ModelAdmin):
    list_display = ('lead_ref', 'patient_name', 'case_stage', 'pipeline_stage', 'bd', 'updated_at')
    list_filter = ('case_stage', 'pipeline_stage', 'team')
    search_fields = ('lead_ref', 'patient_name', 'phone')
    # stages only move through the pipeline service
    readonly_fields = ('case_stage', 'pipeline_stage', 'lost_reason', 'lost_at')


@admin.register(CaseStageHistory)
class CaseStageHistoryAdmin(ReadOnlyAdmin):
    list_display = ('lead', 'from_stage', 'to_stage', 'changed_by', 'changed_at')
    list_filter = ('to_stage',)


@admin.register(LeadStageEvent)
class LeadStageEventAdmin(ReadOnlyAdmin):
    list_display = ('lead', 'from_stage', 'to_stage', 'changed_by', 'created_at')


@admin.register(KYPSubmission)
class KYPSubmissionAdmin(admin.ModelAdmin):
    list_display = ('lead', 'status', 'submitted_by', 'created_at')
    list_filter = ('status',)


@admin.register(PreAuthorization)
class PreAuthorizationAdmin(admin.ModelAdmin):
    list_display = ('kyp', 'requested_hospital_name', 'approval_status', 'is_new_hospital_request', 'handled_at')
    list_filter = ('approval_status', 'is_new_hospital_request')


@admin.register(AdmissionRecord)
class AdmissionRecordAdmin(admin.ModelAdmin):
    list_display = ('lead', 'admitting_hospital', 'admission_date', 'surgery_date', 'ipd_status')
    list_filter = ('ipd_status',)


@admin.register(InsuranceCase)
class InsuranceCaseAdmin(admin.ModelAdmin):
    list_display = ('lead', 'case_status', 'approval_amount', 'handled_by', 'updated_at')
    list_filter = ('case_status',)


@admin.register(PatientFollowUp)
class PatientFollowUpAdmin(admin.ModelAdmin):
    list_display = ('kyp', 'hospital_name', 'doctor_name', 'surgery_date', 'updated_at')
    search_fields = ('hospital_name', 'doctor_name')


@admin.register(DischargeSheet)
class DischargeSheetAdmin(admin.ModelAdmin):
    list_display = ('lead', 'discharge_date', 'total_final_bill', 'final_approved_amount', 'closed_at')
    readonly_fields = ('closed_by', 'closed_at')


@admin.register(CaseChatMessage)
class CaseChatMessageAdmin(admin.ModelAdmin):
    list_display = ('lead', 'type', 'sender', 'created_at')
    list_filter = ('type',)


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('user', 'type', 'title', 'is_read', 'created_at')
    list_filter = ('type', 'is_read')


@admin.register(PaymentMode)
class PaymentModeAdmin(admin.ModelAdmin):
    list_display = ('name', 'opening_balance', 'current_balance', 'is_active')
    readonly_fields = ('opening_balance', 'current_balance')


@admin.register(LedgerEntry)
class LedgerEntryAdmin(ReadOnlyAdmin):
    list_display = ('serial_number', 'transaction_type', 'transaction_date', 'status', 'is_deleted', 'edit_request_status')
    list_filter = ('transaction_type', 'status', 'is_deleted')
    search_fields = ('serial_number', 'description', 'party_name')


@admin.register(LedgerAuditLog)
class LedgerAuditLogAdmin(ReadOnlyAdmin):
    list_display = ('entry', 'action', 'performed_by', 'created_at')
    list_filter = ('action',)


@admin.register(AuditEvent)
class AuditEventAdmin(ReadOnlyAdmin):
    list_display = ('action', 'user', 'object_type', 'object_id', 'created_at')
    list_filter = ('action', 'object_type')
