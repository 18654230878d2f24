"""
Database models for the medops backend.

Two workflows live here. The case pipeline follows a patient lead from
intake through KYP, insurance pre-authorization, admission and
discharge. The finance ledger records money movements against named
payment-mode accounts. History and audit tables are append-only.
"""
from __future__ import annotations

from decimal import Decimal

from django.contrib.auth.models import AbstractUser
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models


MONEY = dict(max_digits=15, decimal_places=2)
ZERO = Decimal('0.00')


class AppendOnlyModel(models.Model):
    """Base for history/audit rows that must never change once written."""

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if self.pk is not None and not self._state.adding:
            raise RuntimeError(f'{type(self).__name__} rows are append-only')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise RuntimeError(f'{type(self).__name__} rows are append-only')


class Team(models.Model):
    name = models.CharField(max_length=120, unique=True)
    sales_head = models.ForeignKey(
        'User', null=True, blank=True, on_delete=models.SET_NULL, related_name='headed_teams'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return self.name


class User(AbstractUser):
    """Staff user with a single business role and optional team."""
    ROLE_MD = 'MD'
    ROLE_SALES_HEAD = 'SALES_HEAD'
    ROLE_TEAM_LEAD = 'TEAM_LEAD'
    ROLE_BD = 'BD'
    ROLE_INSURANCE_HEAD = 'INSURANCE_HEAD'
    ROLE_PL_HEAD = 'PL_HEAD'
    ROLE_HR_HEAD = 'HR_HEAD'
    ROLE_FINANCE_HEAD = 'FINANCE_HEAD'
    ROLE_ADMIN = 'ADMIN'
    ROLE_USER = 'USER'
    ROLE_CHOICES = [
        (ROLE_MD, 'Managing Director'),
        (ROLE_SALES_HEAD, 'Sales Head'),
        (ROLE_TEAM_LEAD, 'Team Lead'),
        (ROLE_BD, 'Business Development'),
        (ROLE_INSURANCE_HEAD, 'Insurance Head'),
        (ROLE_PL_HEAD, 'P&L Head'),
        (ROLE_HR_HEAD, 'HR Head'),
        (ROLE_FINANCE_HEAD, 'Finance Head'),
        (ROLE_ADMIN, 'Administrator'),
        (ROLE_USER, 'User'),
    ]
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_USER, db_index=True)
    team = models.ForeignKey(
        Team, null=True, blank=True, on_delete=models.SET_NULL, related_name='members'
    )

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


# ---------------------------------------------------------------------------
# Case pipeline
# ---------------------------------------------------------------------------
class Lead(models.Model):
    """One patient engagement tracked through the sales and case funnels."""
    # --- Sales funnel ---
    PIPELINE_SALES = 'SALES'
    PIPELINE_INSURANCE = 'INSURANCE'
    PIPELINE_PL = 'PL'
    PIPELINE_COMPLETED = 'COMPLETED'
    PIPELINE_LOST = 'LOST'
    PIPELINE_CHOICES = (
        (PIPELINE_SALES, 'Sales'),
        (PIPELINE_INSURANCE, 'Insurance'),
        (PIPELINE_PL, 'P&L'),
        (PIPELINE_COMPLETED, 'Completed'),
        (PIPELINE_LOST, 'Lost'),
    )

    # --- Clinical/admin funnel ---
    STAGE_NEW_LEAD = 'NEW_LEAD'
    STAGE_KYP_PENDING = 'KYP_PENDING'
    STAGE_KYP_COMPLETE = 'KYP_COMPLETE'
    STAGE_PREAUTH_RAISED = 'PREAUTH_RAISED'
    STAGE_PREAUTH_COMPLETE = 'PREAUTH_COMPLETE'
    STAGE_INITIATED = 'INITIATED'
    STAGE_ADMITTED = 'ADMITTED'
    STAGE_DISCHARGED = 'DISCHARGED'
    STAGE_CHOICES = (
        (STAGE_NEW_LEAD, 'New lead'),
        (STAGE_KYP_PENDING, 'KYP pending'),
        (STAGE_KYP_COMPLETE, 'KYP complete'),
        (STAGE_PREAUTH_RAISED, 'Pre-auth raised'),
        (STAGE_PREAUTH_COMPLETE, 'Pre-auth complete'),
        (STAGE_INITIATED, 'Initiated'),
        (STAGE_ADMITTED, 'Admitted'),
        (STAGE_DISCHARGED, 'Discharged'),
    )

    lead_ref = models.CharField(max_length=32, unique=True)
    patient_name = models.CharField(max_length=255)
    phone = models.CharField(max_length=20, blank=True)
    city = models.CharField(max_length=120, blank=True)
    disease = models.CharField(max_length=255, blank=True)

    pipeline_stage = models.CharField(max_length=16, choices=PIPELINE_CHOICES, default=PIPELINE_SALES, db_index=True)
    case_stage = models.CharField(max_length=20, choices=STAGE_CHOICES, default=STAGE_NEW_LEAD, db_index=True)

    bd = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='leads')
    team = models.ForeignKey(Team, null=True, blank=True, on_delete=models.SET_NULL, related_name='leads')

    hospital_name = models.CharField(max_length=255, blank=True)
    ipd_admission_date = models.DateField(null=True, blank=True)

    lost_reason = models.CharField(max_length=500, blank=True)
    lost_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    updated_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )

    class Meta:
        indexes = [
            models.Index(fields=['bd', 'case_stage'], name='ops_lead_bd_stage_idx'),
            models.Index(fields=['pipeline_stage', 'updated_at'], name='ops_lead_pipeline_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.lead_ref} {self.patient_name}"


class CaseStageHistory(AppendOnlyModel):
    lead = models.ForeignKey(Lead, on_delete=models.CASCADE, related_name='stage_history')
    from_stage = models.CharField(max_length=20, blank=True)
    to_stage = models.CharField(max_length=20, choices=Lead.STAGE_CHOICES)
    changed_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    note = models.TextField(blank=True)
    changed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['changed_at', 'id']
        indexes = [models.Index(fields=['lead', 'changed_at'], name='ops_history_lead_idx')]


class LeadStageEvent(AppendOnlyModel):
    """Pipeline (sales funnel) movement of a lead."""
    lead = models.ForeignKey(Lead, on_delete=models.CASCADE, related_name='pipeline_events')
    from_stage = models.CharField(max_length=16, blank=True)
    to_stage = models.CharField(max_length=16, choices=Lead.PIPELINE_CHOICES)
    changed_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    note = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']


class KYPSubmission(models.Model):
    STATUS_PENDING = 'PENDING'
    STATUS_KYP_DETAILS_ADDED = 'KYP_DETAILS_ADDED'
    STATUS_PRE_AUTH_COMPLETE = 'PRE_AUTH_COMPLETE'
    STATUS_FOLLOW_UP_COMPLETE = 'FOLLOW_UP_COMPLETE'
    STATUS_COMPLETED = 'COMPLETED'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'Pending'),
        (STATUS_KYP_DETAILS_ADDED, 'KYP details added'),
        (STATUS_PRE_AUTH_COMPLETE, 'Pre-auth complete'),
        (STATUS_FOLLOW_UP_COMPLETE, 'Follow-up complete'),
        (STATUS_COMPLETED, 'Completed'),
    )

    lead = models.OneToOneField(Lead, on_delete=models.CASCADE, related_name='kyp')
    insurance_card = models.CharField(max_length=255, blank=True)
    insurance_name = models.CharField(max_length=255, blank=True)
    aadhar = models.CharField(max_length=32, blank=True)
    pan = models.CharField(max_length=32, blank=True)
    disease = models.CharField(max_length=255, blank=True)
    location = models.CharField(max_length=255, blank=True)
    remark = models.TextField(blank=True)
    status = models.CharField(max_length=24, choices=STATUS_CHOICES, default=STATUS_PENDING)
    submitted_by = models.ForeignKey(User, null=True, on_delete=models.SET_NULL, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"KYP for {self.lead_id} ({self.status})"


class PreAuthorization(models.Model):
    STATUS_PENDING = 'PENDING'
    STATUS_APPROVED = 'APPROVED'
    STATUS_REJECTED = 'REJECTED'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
    )

    kyp = models.OneToOneField(KYPSubmission, on_delete=models.CASCADE, related_name='preauth')
    hospital_suggestions = models.JSONField(default=list, blank=True)
    room_types = models.JSONField(default=list, blank=True)

    requested_hospital_name = models.CharField(max_length=255, blank=True)
    requested_room_type = models.CharField(max_length=64, blank=True)
    disease_description = models.TextField(blank=True)
    expected_admission_date = models.DateField(null=True, blank=True)
    pre_auth_raised_at = models.DateTimeField(null=True, blank=True)
    pre_auth_raised_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')

    is_new_hospital_request = models.BooleanField(default=False)
    new_hospital_pre_auth_raised = models.BooleanField(default=False)

    approval_status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_PENDING)
    rejection_reason = models.TextField(blank=True)
    handled_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    handled_at = models.DateTimeField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)

    @property
    def is_finalized(self) -> bool:
        return self.approval_status in (self.STATUS_APPROVED, self.STATUS_REJECTED)


class AdmissionRecord(models.Model):
    IPD_ADMITTED_DONE = 'ADMITTED_DONE'
    IPD_POSTPONED = 'POSTPONED'
    IPD_CANCELLED = 'CANCELLED'
    IPD_DISCHARGED = 'DISCHARGED'
    IPD_CHOICES = (
        (IPD_ADMITTED_DONE, 'Surgery done'),
        (IPD_POSTPONED, 'Postponed'),
        (IPD_CANCELLED, 'Cancelled'),
        (IPD_DISCHARGED, 'Discharged'),
    )

    lead = models.OneToOneField(Lead, on_delete=models.CASCADE, related_name='admission')
    admission_date = models.DateField()
    admission_time = models.CharField(max_length=16)
    admitting_hospital = models.CharField(max_length=255)
    hospital_address = models.CharField(max_length=500)
    surgery_date = models.DateField()
    surgery_time = models.CharField(max_length=16)
    tpa = models.CharField(max_length=255)
    notes = models.TextField(blank=True)
    initiated_by = models.ForeignKey(User, null=True, on_delete=models.SET_NULL, related_name='+')

    ipd_status = models.CharField(max_length=16, choices=IPD_CHOICES, blank=True)
    ipd_status_reason = models.TextField(blank=True)
    ipd_status_notes = models.TextField(blank=True)
    ipd_status_updated_at = models.DateTimeField(null=True, blank=True)
    new_surgery_date = models.DateField(null=True, blank=True)
    discharge_date = models.DateField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)


class InsuranceCase(models.Model):
    STATUS_PENDING = 'PENDING'
    STATUS_UNDER_REVIEW = 'UNDER_REVIEW'
    STATUS_APPROVED = 'APPROVED'
    STATUS_REJECTED = 'REJECTED'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'Pending'),
        (STATUS_UNDER_REVIEW, 'Under review'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
    )

    lead = models.OneToOneField(Lead, on_delete=models.CASCADE, related_name='insurance_case')
    case_status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    approval_amount = models.DecimalField(null=True, blank=True, **MONEY)
    tpa_remarks = models.TextField(blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    handled_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)


class PatientFollowUp(models.Model):
    """Follow-up the BD records once pre-auth is complete."""
    kyp = models.OneToOneField(KYPSubmission, on_delete=models.CASCADE, related_name='follow_up')
    admission_date = models.DateField(null=True, blank=True)
    surgery_date = models.DateField(null=True, blank=True)
    prescription = models.TextField(blank=True)
    report = models.TextField(blank=True)
    hospital_name = models.CharField(max_length=255, blank=True)
    doctor_name = models.CharField(max_length=255, blank=True)
    prescription_file_url = models.CharField(max_length=500, blank=True)
    report_file_url = models.CharField(max_length=500, blank=True)
    updated_by = models.ForeignKey(User, null=True, on_delete=models.SET_NULL, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)


class DischargeSheet(models.Model):
    """Final bill and settlement for a discharged case; one per lead."""
    lead = models.OneToOneField(Lead, on_delete=models.CASCADE, related_name='discharge_sheet')
    discharge_date = models.DateField()
    total_final_bill = models.DecimalField(**MONEY)
    final_approved_amount = models.DecimalField(null=True, blank=True, **MONEY)
    deduction_amount = models.DecimalField(default=ZERO, **MONEY)
    hospital_share_amount = models.DecimalField(null=True, blank=True, **MONEY)
    net_profit = models.DecimalField(null=True, blank=True, **MONEY)
    remarks = models.TextField(blank=True)
    created_by = models.ForeignKey(User, null=True, on_delete=models.SET_NULL, related_name='+')
    closed_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    closed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)


class CaseChatMessage(models.Model):
    TYPE_USER = 'USER'
    TYPE_SYSTEM = 'SYSTEM'
    TYPE_CHOICES = ((TYPE_USER, 'user'), (TYPE_SYSTEM, 'system'))

    lead = models.ForeignKey(Lead, on_delete=models.CASCADE, related_name='chat_messages')
    type = models.CharField(max_length=8, choices=TYPE_CHOICES, default=TYPE_USER)
    sender = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    content = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']
        indexes = [models.Index(fields=['lead', 'created_at'], name='ops_chat_lead_idx')]


class Notification(models.Model):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='notifications')
    type = models.CharField(max_length=32)
    title = models.CharField(max_length=255)
    message = models.TextField()
    link = models.CharField(max_length=255, blank=True)
    related_id = models.CharField(max_length=64, blank=True)
    is_read = models.BooleanField(default=False)
    read_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [models.Index(fields=['user', 'is_read', 'created_at'], name='ops_notif_user_read_idx')]


# ---------------------------------------------------------------------------
# Finance ledger
# ---------------------------------------------------------------------------
class PaymentMode(models.Model):
    """A named account; ``current_balance`` is only moved by the balance engine."""
    name = models.CharField(max_length=120, unique=True)
    description = models.TextField(blank=True)
    opening_balance = models.DecimalField(default=ZERO, **MONEY)
    current_balance = models.DecimalField(default=ZERO, **MONEY)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return self.name


class LedgerEntry(models.Model):
    TYPE_CREDIT = 'CREDIT'
    TYPE_DEBIT = 'DEBIT'
    TYPE_SELF_TRANSFER = 'SELF_TRANSFER'
    TYPE_CHOICES = (
        (TYPE_CREDIT, 'Credit'),
        (TYPE_DEBIT, 'Debit'),
        (TYPE_SELF_TRANSFER, 'Self transfer'),
    )

    STATUS_PENDING = 'PENDING'
    STATUS_APPROVED = 'APPROVED'
    STATUS_REJECTED = 'REJECTED'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
    )

    serial_number = models.CharField(max_length=20, unique=True)
    transaction_type = models.CharField(max_length=16, choices=TYPE_CHOICES, db_index=True)
    transaction_date = models.DateField()
    description = models.TextField()
    party_name = models.CharField(max_length=255, blank=True)
    head_name = models.CharField(max_length=255, blank=True)

    payment_amount = models.DecimalField(null=True, blank=True, **MONEY)
    component_a = models.DecimalField(null=True, blank=True, **MONEY)
    component_b = models.DecimalField(null=True, blank=True, **MONEY)
    received_amount = models.DecimalField(null=True, blank=True, **MONEY)
    transfer_amount = models.DecimalField(null=True, blank=True, **MONEY)

    payment_mode = models.ForeignKey(
        PaymentMode, null=True, blank=True, on_delete=models.PROTECT, related_name='entries'
    )
    from_payment_mode = models.ForeignKey(
        PaymentMode, null=True, blank=True, on_delete=models.PROTECT, related_name='transfers_out'
    )
    to_payment_mode = models.ForeignKey(
        PaymentMode, null=True, blank=True, on_delete=models.PROTECT, related_name='transfers_in'
    )

    opening_balance = models.DecimalField(default=ZERO, **MONEY)
    current_balance = models.DecimalField(default=ZERO, **MONEY)

    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    rejection_reason = models.TextField(blank=True)
    created_by = models.ForeignKey(User, null=True, on_delete=models.SET_NULL, related_name='+')
    approved_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    approved_at = models.DateTimeField(null=True, blank=True)

    is_deleted = models.BooleanField(default=False, db_index=True)
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    deleted_reason = models.TextField(blank=True)

    edit_request_status = models.CharField(max_length=10, choices=STATUS_CHOICES, blank=True, db_index=True)
    edit_request_reason = models.TextField(blank=True)
    edit_request_data = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    edit_previous_data = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    edit_requested_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    edit_requested_at = models.DateTimeField(null=True, blank=True)
    edit_approval_reason = models.TextField(blank=True)
    edit_approved_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    edit_approved_at = models.DateTimeField(null=True, blank=True)
    edit_count = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = 'ledger entries'
        indexes = [
            models.Index(fields=['transaction_type', 'status'], name='ops_ledger_type_status_idx'),
            models.Index(fields=['payment_mode', 'status'], name='ops_ledger_mode_status_idx'),
            models.Index(fields=['transaction_date'], name='ops_ledger_date_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.serial_number} {self.transaction_type} {self.amount}"

    @property
    def amount(self) -> Decimal:
        """The amount that moves balances for this entry's type."""
        if self.transaction_type == self.TYPE_CREDIT:
            value = self.received_amount
        elif self.transaction_type == self.TYPE_SELF_TRANSFER:
            value = self.transfer_amount
        else:
            value = self.payment_amount
        return value if value is not None else ZERO


class LedgerAuditLog(AppendOnlyModel):
    ACTION_CREATED = 'CREATED'
    ACTION_APPROVED = 'APPROVED'
    ACTION_REJECTED = 'REJECTED'
    ACTION_UPDATED = 'UPDATED'
    ACTION_DELETED = 'DELETED'
    ACTION_EDIT_REQUESTED = 'EDIT_REQUESTED'
    ACTION_EDIT_APPROVED = 'EDIT_APPROVED'
    ACTION_EDIT_REJECTED = 'EDIT_REJECTED'
    ACTION_CHOICES = tuple((a, a.replace('_', ' ').title()) for a in (
        ACTION_CREATED, ACTION_APPROVED, ACTION_REJECTED, ACTION_UPDATED,
        ACTION_DELETED, ACTION_EDIT_REQUESTED, ACTION_EDIT_APPROVED, ACTION_EDIT_REJECTED,
    ))

    entry = models.ForeignKey(LedgerEntry, on_delete=models.PROTECT, related_name='audit_logs')
    action = models.CharField(max_length=16, choices=ACTION_CHOICES)
    previous_data = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    new_data = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    reason = models.TextField(blank=True)
    performed_by = models.ForeignKey(User, null=True, on_delete=models.SET_NULL, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']
        indexes = [models.Index(fields=['entry', 'action'], name='ops_ledger_audit_idx')]


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.IntegerField(blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='ops_audit_action_idx'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='ops_audit_object_idx'),
        ]
