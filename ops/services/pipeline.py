"""
Case pipeline engine.

A lead moves along two funnels. ``case_stage`` is the clinical/admin
funnel and every change to it writes exactly one ``CaseStageHistory``
row. ``pipeline_stage`` is the sales funnel and every change to it
writes one ``LeadStageEvent`` row.

Each operation takes the acting user explicitly and follows the same
order: capability check, lock the lead (and KYP/pre-auth rows) with
``select_for_update``, validate against that locked state, mutate,
write history, then queue notifications and chat posts on a
:class:`SideEffects` list that only runs after commit.
"""
from __future__ import annotations

import datetime
import logging
import uuid
from typing import Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import Q
from django.utils import timezone
from django.utils.dateparse import parse_date

from ops.exceptions import (
    AlreadyFinalized, Forbidden, Internal, InvalidRequest, InvalidStateTransition,
    NotFound, ValidationError,
)
from ops.models import (
    AdmissionRecord, CaseChatMessage, CaseStageHistory, DischargeSheet, InsuranceCase,
    KYPSubmission, Lead, LeadStageEvent, PatientFollowUp, PreAuthorization, User,
)
from ops.permissions import (
    LEAD_WIDE_ROLES, can_access_lead, can_manage_team, require_actor, require_capability,
)
from ops.services.balances import money
from ops.services.effects import SideEffects
from ops.services.notifications import (
    broadcast_chat, chat_payload, create_notification, notify_role, post_system_message,
)
from ops.services.text import clean_text

logger = logging.getLogger(__name__)

CASE_TRANSITIONS = {
    Lead.STAGE_NEW_LEAD: {Lead.STAGE_KYP_PENDING},
    Lead.STAGE_KYP_PENDING: {Lead.STAGE_KYP_COMPLETE},
    Lead.STAGE_KYP_COMPLETE: {Lead.STAGE_PREAUTH_RAISED},
    # rejection annotates PREAUTH_RAISED without advancing
    Lead.STAGE_PREAUTH_RAISED: {Lead.STAGE_PREAUTH_COMPLETE, Lead.STAGE_PREAUTH_RAISED},
    Lead.STAGE_PREAUTH_COMPLETE: {Lead.STAGE_INITIATED},
    Lead.STAGE_INITIATED: {Lead.STAGE_ADMITTED, Lead.STAGE_DISCHARGED},
    Lead.STAGE_ADMITTED: {Lead.STAGE_DISCHARGED},
    Lead.STAGE_DISCHARGED: set(),
}

LOST_REASONS = ('Patient Declined', 'Ghosted', 'Financial Issue', 'Other')


def can_transition(from_stage: str, to_stage: str) -> bool:
    return to_stage in CASE_TRANSITIONS.get(from_stage, set())


# ---------------------------------------------------------------------------
# serialisation
# ---------------------------------------------------------------------------
def _iso(value):
    return value.isoformat() if value else None


def lead_to_dict(lead: Lead, detail: bool = False) -> dict:
    data = {
        'id': lead.id,
        'leadRef': lead.lead_ref,
        'patientName': lead.patient_name,
        'phone': lead.phone,
        'city': lead.city,
        'disease': lead.disease,
        'pipelineStage': lead.pipeline_stage,
        'caseStage': lead.case_stage,
        'bdId': lead.bd_id,
        'teamId': lead.team_id,
        'hospitalName': lead.hospital_name,
        'ipdAdmissionDate': _iso(lead.ipd_admission_date),
        'lostReason': lead.lost_reason or None,
        'lostAt': _iso(lead.lost_at),
        'createdAt': _iso(lead.created_at),
        'updatedAt': _iso(lead.updated_at),
    }
    if not detail:
        return data
    kyp = KYPSubmission.objects.filter(lead=lead).first()
    preauth = PreAuthorization.objects.filter(kyp=kyp).first() if kyp else None
    admission = AdmissionRecord.objects.filter(lead=lead).first()
    insurance = InsuranceCase.objects.filter(lead=lead).first()
    follow_up = PatientFollowUp.objects.filter(kyp=kyp).first() if kyp else None
    sheet = DischargeSheet.objects.filter(lead=lead).first()
    data['kyp'] = kyp_to_dict(kyp) if kyp else None
    data['preAuth'] = preauth_to_dict(preauth) if preauth else None
    data['admission'] = admission_to_dict(admission) if admission else None
    data['insuranceCase'] = insurance_case_to_dict(insurance) if insurance else None
    data['followUp'] = follow_up_to_dict(follow_up) if follow_up else None
    data['dischargeSheet'] = discharge_sheet_to_dict(sheet) if sheet else None
    return data


def kyp_to_dict(k: KYPSubmission) -> dict:
    return {
        'id': k.id,
        'leadId': k.lead_id,
        'insuranceCard': k.insurance_card,
        'insuranceName': k.insurance_name,
        'aadhar': k.aadhar,
        'pan': k.pan,
        'disease': k.disease,
        'location': k.location,
        'remark': k.remark,
        'status': k.status,
        'submittedById': k.submitted_by_id,
        'createdAt': _iso(k.created_at),
    }


def preauth_to_dict(p: PreAuthorization) -> dict:
    return {
        'id': p.id,
        'kypSubmissionId': p.kyp_id,
        'hospitalSuggestions': p.hospital_suggestions,
        'roomTypes': p.room_types,
        'requestedHospitalName': p.requested_hospital_name,
        'requestedRoomType': p.requested_room_type,
        'diseaseDescription': p.disease_description,
        'expectedAdmissionDate': _iso(p.expected_admission_date),
        'preAuthRaisedAt': _iso(p.pre_auth_raised_at),
        'isNewHospitalRequest': p.is_new_hospital_request,
        'newHospitalPreAuthRaised': p.new_hospital_pre_auth_raised,
        'approvalStatus': p.approval_status,
        'rejectionReason': p.rejection_reason or None,
        'handledById': p.handled_by_id,
        'handledAt': _iso(p.handled_at),
        'approvedAt': _iso(p.approved_at),
        'rejectedAt': _iso(p.rejected_at),
    }


def admission_to_dict(a: AdmissionRecord) -> dict:
    return {
        'id': a.id,
        'leadId': a.lead_id,
        'admissionDate': _iso(a.admission_date),
        'admissionTime': a.admission_time,
        'admittingHospital': a.admitting_hospital,
        'hospitalAddress': a.hospital_address,
        'surgeryDate': _iso(a.surgery_date),
        'surgeryTime': a.surgery_time,
        'tpa': a.tpa,
        'notes': a.notes,
        'ipdStatus': a.ipd_status or None,
        'ipdStatusReason': a.ipd_status_reason,
        'ipdStatusNotes': a.ipd_status_notes,
        'ipdStatusUpdatedAt': _iso(a.ipd_status_updated_at),
        'newSurgeryDate': _iso(a.new_surgery_date),
        'dischargeDate': _iso(a.discharge_date),
    }


def insurance_case_to_dict(c: InsuranceCase) -> dict:
    return {
        'id': c.id,
        'leadId': c.lead_id,
        'caseStatus': c.case_status,
        'approvalAmount': None if c.approval_amount is None else str(c.approval_amount),
        'tpaRemarks': c.tpa_remarks,
        'approvedAt': _iso(c.approved_at),
        'handledById': c.handled_by_id,
        'updatedAt': _iso(c.updated_at),
    }


def follow_up_to_dict(f: PatientFollowUp) -> dict:
    return {
        'id': f.id,
        'kypSubmissionId': f.kyp_id,
        'admissionDate': _iso(f.admission_date),
        'surgeryDate': _iso(f.surgery_date),
        'prescription': f.prescription,
        'report': f.report,
        'hospitalName': f.hospital_name,
        'doctorName': f.doctor_name,
        'prescriptionFileUrl': f.prescription_file_url or None,
        'reportFileUrl': f.report_file_url or None,
        'updatedById': f.updated_by_id,
        'updatedAt': _iso(f.updated_at),
    }


def _amount(value):
    return None if value is None else str(value)


def discharge_sheet_to_dict(s: DischargeSheet) -> dict:
    return {
        'id': s.id,
        'leadId': s.lead_id,
        'dischargeDate': _iso(s.discharge_date),
        'totalFinalBill': _amount(s.total_final_bill),
        'finalApprovedAmount': _amount(s.final_approved_amount),
        'deductionAmount': _amount(s.deduction_amount),
        'hospitalShareAmount': _amount(s.hospital_share_amount),
        'netProfit': _amount(s.net_profit),
        'remarks': s.remarks,
        'createdById': s.created_by_id,
        'closedById': s.closed_by_id,
        'closedAt': _iso(s.closed_at),
        'createdAt': _iso(s.created_at),
    }


def history_to_dict(h: CaseStageHistory) -> dict:
    return {
        'id': h.id,
        'fromStage': h.from_stage or None,
        'toStage': h.to_stage,
        'changedById': h.changed_by_id,
        'note': h.note,
        'changedAt': _iso(h.changed_at),
    }


def event_to_dict(e: LeadStageEvent) -> dict:
    return {
        'id': e.id,
        'fromStage': e.from_stage or None,
        'toStage': e.to_stage,
        'changedById': e.changed_by_id,
        'note': e.note,
        'createdAt': _iso(e.created_at),
    }


# ---------------------------------------------------------------------------
# internals
# ---------------------------------------------------------------------------
def _locked_lead(lead_id: int) -> Lead:
    lead = Lead.objects.select_for_update().filter(pk=lead_id).first()
    if lead is None:
        raise NotFound('Lead not found')
    return lead


def _locked_kyp(kyp_id: int) -> tuple[Lead, KYPSubmission, Optional[PreAuthorization]]:
    """Lock lead, KYP and pre-auth in that order."""
    lead_id = KYPSubmission.objects.filter(pk=kyp_id).values_list('lead_id', flat=True).first()
    if lead_id is None:
        raise NotFound('KYP submission not found')
    lead = _locked_lead(lead_id)
    kyp = KYPSubmission.objects.select_for_update().get(pk=kyp_id)
    preauth = PreAuthorization.objects.select_for_update().filter(kyp=kyp).first()
    return lead, kyp, preauth


def _require_operator(actor: User, lead: Lead) -> None:
    """BD actions: the assigned BD, or an admin."""
    if actor.role == User.ROLE_ADMIN:
        return
    if lead.bd_id != actor.id:
        raise Forbidden('Only the assigned BD can perform this action')


def _set_stage(lead: Lead, to_stage: str, actor: User, note: str) -> CaseStageHistory:
    from_stage = lead.case_stage
    if not can_transition(from_stage, to_stage):
        raise InvalidStateTransition(f'Cannot move case from {from_stage} to {to_stage}')
    lead.case_stage = to_stage
    lead.updated_by = actor
    lead.save()
    row = CaseStageHistory.objects.create(
        lead=lead, from_stage=from_stage, to_stage=to_stage, changed_by=actor, note=note,
    )
    logger.info('lead %s case_stage %s -> %s by=%s', lead.id, from_stage, to_stage, actor.id)
    return row


def _set_pipeline(lead: Lead, to_stage: str, actor: User, note: str = '') -> Optional[LeadStageEvent]:
    from_stage = lead.pipeline_stage
    if from_stage == to_stage:
        return None
    lead.pipeline_stage = to_stage
    lead.updated_by = actor
    lead.save()
    event = LeadStageEvent.objects.create(
        lead=lead, from_stage=from_stage, to_stage=to_stage, changed_by=actor, note=note,
    )
    logger.info('lead %s pipeline %s -> %s by=%s', lead.id, from_stage, to_stage, actor.id)
    return event


def _require_stage(lead: Lead, *stages: str) -> None:
    if lead.case_stage not in stages:
        raise InvalidStateTransition(
            f'Case must be in {" or ".join(stages)} (currently {lead.case_stage})'
        )


def _notify_bd(effects: SideEffects, lead: Lead, *, type: str, title: str, message: str, link: str = '') -> None:
    if lead.bd_id:
        effects.add('notify_bd', create_notification, lead.bd_id, type=type, title=title,
                    message=message, link=link or f'/leads/{lead.id}', related_id=lead.id)


def _notify_insurance(effects: SideEffects, lead: Lead, *, type: str, title: str, message: str, link: str = '') -> None:
    effects.add('notify_insurance', notify_role, User.ROLE_INSURANCE_HEAD, type=type, title=title,
                message=message, link=link or f'/leads/{lead.id}', related_id=lead.id)


def _chat(effects: SideEffects, lead: Lead, text: str) -> None:
    effects.add('chat', post_system_message, lead.id, text)


def _date(value, field: str, required: bool = True) -> Optional[datetime.date]:
    if value in (None, ''):
        if required:
            raise ValidationError(f'{field} is required')
        return None
    if isinstance(value, datetime.date):
        return value
    parsed = parse_date(str(value))
    if parsed is None:
        raise ValidationError(f'{field} must be YYYY-MM-DD')
    return parsed


# ---------------------------------------------------------------------------
# leads
# ---------------------------------------------------------------------------
def _new_ref() -> str:
    return f'LD-{timezone.localdate():%y%m%d}-{uuid.uuid4().hex[:6].upper()}'


def _assignable_bd(actor: User, bd_id) -> User:
    """The BD a manager creates a lead for; the actor must manage that BD's team."""
    require_capability(actor, 'leads:assign')
    bd = User.objects.filter(pk=bd_id, role=User.ROLE_BD, is_active=True).select_related('team').first()
    if bd is None:
        raise ValidationError('bd_id does not reference an active BD')
    if actor.role == User.ROLE_TEAM_LEAD:
        allowed = bd.team_id is not None and bd.team_id == actor.team_id
    else:
        allowed = can_manage_team(actor, bd.team.sales_head_id if bd.team_id else None)
    if not allowed:
        raise Forbidden('You cannot assign leads to this BD')
    return bd


def create_lead(actor: User, data: dict) -> Lead:
    require_capability(actor, 'leads:write')
    patient_name = clean_text(data.get('patient_name'), field='patient_name', max_length=255)
    bd = actor if actor.role == User.ROLE_BD else None
    if bd is None and data.get('bd_id'):
        bd = _assignable_bd(actor, data['bd_id'])
    with transaction.atomic():
        lead = Lead.objects.create(
            lead_ref=_new_ref(),
            patient_name=patient_name,
            phone=clean_text(data.get('phone'), field='phone', required=False, max_length=20),
            city=clean_text(data.get('city'), field='city', required=False, max_length=120),
            disease=clean_text(data.get('disease'), field='disease', required=False, max_length=255),
            bd=bd,
            team_id=bd.team_id if bd else actor.team_id,
            updated_by=actor,
        )
        CaseStageHistory.objects.create(
            lead=lead, from_stage='', to_stage=Lead.STAGE_NEW_LEAD, changed_by=actor, note='Lead created',
        )
        LeadStageEvent.objects.create(
            lead=lead, from_stage='', to_stage=Lead.PIPELINE_SALES, changed_by=actor, note='Lead created',
        )
    logger.info('lead %s created ref=%s bd=%s by=%s', lead.id, lead.lead_ref, lead.bd_id, actor.id)
    return lead


def _visible_leads(actor: User):
    qs = Lead.objects.all()
    if actor.role in LEAD_WIDE_ROLES:
        return qs
    if actor.role == User.ROLE_TEAM_LEAD and actor.team_id:
        return qs.filter(team_id=actor.team_id)
    if actor.role == User.ROLE_BD:
        return qs.filter(bd_id=actor.id)
    return qs.none()


def list_leads(actor: User, *, case_stage=None, pipeline_stage=None, q=None, page: int = 1, page_size: int = 20):
    require_capability(actor, 'leads:read')
    qs = _visible_leads(actor)
    if case_stage:
        qs = qs.filter(case_stage=case_stage)
    if pipeline_stage:
        qs = qs.filter(pipeline_stage=pipeline_stage)
    if q:
        qs = qs.filter(Q(patient_name__icontains=q) | Q(lead_ref__icontains=q) | Q(phone__icontains=q))
    total = qs.count()
    page = max(1, int(page or 1))
    page_size = min(100, max(1, int(page_size or 20)))
    start = (page - 1) * page_size
    items = qs.order_by('-updated_at', '-id')[start:start + page_size]
    return [lead_to_dict(lead) for lead in items], total


def get_lead(lead_id: int, actor: User) -> Lead:
    require_actor(actor)
    lead = Lead.objects.filter(pk=lead_id).first()
    if lead is None:
        raise NotFound('Lead not found')
    if not can_access_lead(actor, lead.bd_id, lead.team_id):
        raise Forbidden('You do not have access to this lead')
    return lead


def stage_history(lead_id: int, actor: User) -> dict:
    lead = get_lead(lead_id, actor)
    return {
        'leadId': lead.id,
        'caseStage': lead.case_stage,
        'pipelineStage': lead.pipeline_stage,
        'caseStages': [history_to_dict(h) for h in lead.stage_history.order_by('changed_at', 'id')],
        'pipelineEvents': [event_to_dict(e) for e in lead.pipeline_events.order_by('created_at', 'id')],
    }


# ---------------------------------------------------------------------------
# KYP and pre-authorization
# ---------------------------------------------------------------------------
KYP_FIELDS = ('insurance_card', 'insurance_name', 'aadhar', 'pan', 'disease', 'location', 'remark')


def submit_kyp(lead_id: int, actor: User, data: dict) -> KYPSubmission:
    require_capability(actor, 'leads:write')
    values = {f: clean_text(data.get(f), field=f, required=False) for f in KYP_FIELDS}
    if not any(values[f] for f in ('insurance_card', 'aadhar', 'pan', 'disease', 'location', 'remark')):
        raise ValidationError('At least one KYP field must be filled')
    effects = SideEffects(f'kyp.submit:{lead_id}')
    with transaction.atomic():
        lead = _locked_lead(lead_id)
        if lead.bd_id != actor.id and actor.role not in (User.ROLE_ADMIN, User.ROLE_SALES_HEAD):
            raise Forbidden('You do not have permission to submit KYP for this lead')
        if KYPSubmission.objects.filter(lead=lead).exists():
            raise InvalidStateTransition('KYP submission already exists for this lead')
        _require_stage(lead, Lead.STAGE_NEW_LEAD)
        kyp = KYPSubmission.objects.create(lead=lead, submitted_by=actor, **values)
        _set_stage(lead, Lead.STAGE_KYP_PENDING, actor, 'KYP submitted')
        _chat(effects, lead, 'BD submitted KYP. Waiting for Insurance to add pre-auth details.')
        _notify_insurance(effects, lead, type='KYP_SUBMITTED', title='New KYP submission',
                          message=f'KYP submitted for {lead.patient_name} ({lead.lead_ref}).',
                          link=f'/insurance/kyp/{kyp.id}')
        effects.commit()
    return kyp


def add_preauth_details(kyp_id: int, actor: User, hospital_suggestions, room_types=None) -> PreAuthorization:
    require_capability(actor, 'insurance:write')
    hospitals = [clean_text(h, field='hospital', max_length=255) for h in (hospital_suggestions or [])]
    if not hospitals:
        raise ValidationError('At least one hospital suggestion is required')
    rooms = [clean_text(r, field='room_type', max_length=64) for r in (room_types or [])]
    effects = SideEffects(f'preauth.details:{kyp_id}')
    with transaction.atomic():
        lead, kyp, preauth = _locked_kyp(kyp_id)
        _require_stage(lead, Lead.STAGE_KYP_PENDING)
        if preauth is None:
            preauth = PreAuthorization(kyp=kyp)
        preauth.hospital_suggestions = hospitals
        preauth.room_types = rooms
        preauth.approval_status = PreAuthorization.STATUS_PENDING
        preauth.handled_by = actor
        preauth.handled_at = timezone.now()
        preauth.save()
        kyp.status = KYPSubmission.STATUS_KYP_DETAILS_ADDED
        kyp.save(update_fields=['status', 'updated_at'])
        _set_stage(lead, Lead.STAGE_KYP_COMPLETE, actor, 'Insurance added pre-auth details')
        _chat(effects, lead, 'Insurance added hospital suggestions. BD can now raise pre-auth.')
        _notify_bd(effects, lead, type='KYP_DETAILS_ADDED', title='Pre-auth details added',
                   message=f'Insurance suggested {len(hospitals)} hospital(s) for {lead.patient_name}.')
        effects.commit()
    return preauth


def raise_preauth(lead_id: int, actor: User, data: dict) -> PreAuthorization:
    require_capability(actor, 'case:operate')
    hospital = clean_text(data.get('requested_hospital_name'), field='requested_hospital_name', max_length=255)
    room_type = clean_text(data.get('requested_room_type'), field='requested_room_type', required=False, max_length=64)
    is_new = bool(data.get('is_new_hospital_request'))
    effects = SideEffects(f'preauth.raise:{lead_id}')
    with transaction.atomic():
        lead = _locked_lead(lead_id)
        _require_operator(actor, lead)
        _require_stage(lead, Lead.STAGE_KYP_COMPLETE)
        preauth = PreAuthorization.objects.select_for_update().filter(kyp__lead=lead).first()
        if preauth is None:
            raise InvalidStateTransition('Insurance has not added pre-auth details yet')
        if preauth.pre_auth_raised_at is not None:
            raise InvalidStateTransition('Pre-auth already raised')
        if not is_new:
            if preauth.hospital_suggestions and hospital not in preauth.hospital_suggestions:
                raise ValidationError('Hospital must be one of the suggested hospitals')
            if not room_type:
                raise ValidationError('requested_room_type is required')
        preauth.requested_hospital_name = hospital
        preauth.requested_room_type = room_type
        preauth.disease_description = clean_text(data.get('disease_description'), field='disease_description', required=False)
        preauth.expected_admission_date = _date(data.get('expected_admission_date'), 'expected_admission_date', required=False)
        preauth.is_new_hospital_request = is_new
        preauth.new_hospital_pre_auth_raised = False
        preauth.pre_auth_raised_at = timezone.now()
        preauth.pre_auth_raised_by = actor
        preauth.save()
        _set_stage(lead, Lead.STAGE_PREAUTH_RAISED, actor, f'Pre-auth raised by BD. Hospital: {hospital}')
        _chat(effects, lead, f'BD raised pre-auth for {hospital}.')
        _notify_insurance(effects, lead, type='PREAUTH_RAISED', title='Pre-auth raised',
                          message=f'Pre-auth raised for {lead.patient_name} at {hospital}.',
                          link=f'/insurance/pre-auth/{preauth.kyp_id}')
        effects.commit()
    return preauth


def _check_decision(lead: Lead, preauth: Optional[PreAuthorization]) -> PreAuthorization:
    _require_stage(lead, Lead.STAGE_PREAUTH_RAISED)
    if preauth is None:
        raise NotFound('Pre-authorization not found')
    if preauth.is_finalized:
        raise AlreadyFinalized(f'Pre-authorization already {preauth.approval_status.lower()}')
    if preauth.is_new_hospital_request and not preauth.new_hospital_pre_auth_raised:
        raise InvalidStateTransition('Mark the new-hospital pre-auth as raised first')
    return preauth


def approve_preauth(kyp_id: int, actor: User) -> PreAuthorization:
    require_capability(actor, 'insurance:write')
    effects = SideEffects(f'preauth.approve:{kyp_id}')
    with transaction.atomic():
        lead, kyp, preauth = _locked_kyp(kyp_id)
        preauth = _check_decision(lead, preauth)
        now = timezone.now()
        preauth.approval_status = PreAuthorization.STATUS_APPROVED
        preauth.approved_at = now
        preauth.handled_by = actor
        preauth.handled_at = now
        preauth.save()
        kyp.status = KYPSubmission.STATUS_PRE_AUTH_COMPLETE
        kyp.save(update_fields=['status', 'updated_at'])
        _set_stage(lead, Lead.STAGE_PREAUTH_COMPLETE, actor, 'Pre-authorization approved by Insurance')
        _chat(effects, lead, 'Insurance approved pre-auth.')
        _notify_bd(effects, lead, type='PREAUTH_APPROVED', title='Pre-auth approved',
                   message=f'Pre-auth for {lead.patient_name} was approved.')
        effects.commit()
    return preauth


def reject_preauth(kyp_id: int, actor: User, reason: str) -> PreAuthorization:
    require_capability(actor, 'insurance:write')
    reason = clean_text(reason, field='reason')
    effects = SideEffects(f'preauth.reject:{kyp_id}')
    with transaction.atomic():
        lead, kyp, preauth = _locked_kyp(kyp_id)
        preauth = _check_decision(lead, preauth)
        now = timezone.now()
        preauth.approval_status = PreAuthorization.STATUS_REJECTED
        preauth.rejection_reason = reason
        preauth.rejected_at = now
        preauth.handled_by = actor
        preauth.handled_at = now
        preauth.save()
        _set_stage(lead, Lead.STAGE_PREAUTH_RAISED, actor,
                   f'Pre-authorization rejected by Insurance. Reason: {reason}')
        _chat(effects, lead, f'Insurance rejected pre-auth. Reason: {reason}')
        _notify_bd(effects, lead, type='PREAUTH_REJECTED', title='Pre-auth rejected',
                   message=f'Pre-auth for {lead.patient_name} was rejected: {reason}',
                   link=f'/patient/{lead.id}/pre-auth')
        effects.commit()
    return preauth


def mark_new_hospital_preauth_raised(kyp_id: int, actor: User) -> tuple[PreAuthorization, bool]:
    """Returns ``(preauth, changed)``; a repeat call changes nothing."""
    require_capability(actor, 'insurance:write')
    effects = SideEffects(f'preauth.new_hospital:{kyp_id}')
    with transaction.atomic():
        lead, kyp, preauth = _locked_kyp(kyp_id)
        if preauth is None or not preauth.is_new_hospital_request:
            raise InvalidRequest('This pre-auth is not a new hospital request')
        if preauth.new_hospital_pre_auth_raised:
            return preauth, False
        preauth.new_hospital_pre_auth_raised = True
        preauth.handled_by = actor
        preauth.handled_at = timezone.now()
        preauth.save()
        _chat(effects, lead, 'Insurance marked pre-auth raised for the new hospital. Proceeding to approve/reject.')
        effects.commit()
    logger.info('new-hospital pre-auth raised kyp=%s by=%s', kyp_id, actor.id)
    return preauth, True


# ---------------------------------------------------------------------------
# admission and discharge
# ---------------------------------------------------------------------------
ADMISSION_TEXT_FIELDS = ('admission_time', 'admitting_hospital', 'hospital_address', 'surgery_time', 'tpa')


def initiate_admission(lead_id: int, actor: User, data: dict) -> AdmissionRecord:
    require_capability(actor, 'case:operate')
    values = {f: clean_text(data.get(f), field=f, max_length=500) for f in ADMISSION_TEXT_FIELDS}
    admission_date = _date(data.get('admission_date'), 'admission_date')
    surgery_date = _date(data.get('surgery_date'), 'surgery_date')
    effects = SideEffects(f'admission.initiate:{lead_id}')
    with transaction.atomic():
        lead = _locked_lead(lead_id)
        _require_operator(actor, lead)
        _require_stage(lead, Lead.STAGE_PREAUTH_COMPLETE)
        if AdmissionRecord.objects.filter(lead=lead).exists():
            raise InvalidStateTransition('Admission already initiated for this lead')
        admission = AdmissionRecord.objects.create(
            lead=lead,
            admission_date=admission_date,
            surgery_date=surgery_date,
            notes=clean_text(data.get('notes'), field='notes', required=False),
            initiated_by=actor,
            **values,
        )
        hospital = values['admitting_hospital']
        lead.hospital_name = hospital
        lead.ipd_admission_date = admission_date
        _set_stage(lead, Lead.STAGE_INITIATED, actor, f'Patient admitted at {hospital}')
        InsuranceCase.objects.get_or_create(lead=lead)
        if lead.pipeline_stage == Lead.PIPELINE_SALES:
            _set_pipeline(lead, Lead.PIPELINE_INSURANCE, actor, 'Admission initiated')
        _chat(effects, lead, f'BD initiated admission at {hospital} on {admission_date.isoformat()}.')
        _notify_insurance(effects, lead, type='INITIATED', title='Admission initiated',
                          message=f'{lead.patient_name} admission initiated at {hospital}.')
        effects.commit()
    return admission


def mark_ipd_status(lead_id: int, actor: User, status: str, reason: str = '', new_surgery_date=None,
                    discharge_date=None, notes: str = '') -> AdmissionRecord:
    require_capability(actor, 'case:operate')
    if status not in dict(AdmissionRecord.IPD_CHOICES):
        raise ValidationError('status must be ADMITTED_DONE, POSTPONED, CANCELLED or DISCHARGED')
    reason = clean_text(reason, field='reason', required=status in (AdmissionRecord.IPD_POSTPONED, AdmissionRecord.IPD_CANCELLED))
    new_surgery_date = _date(new_surgery_date, 'new_surgery_date', required=status == AdmissionRecord.IPD_POSTPONED)
    discharge_date = _date(discharge_date, 'discharge_date', required=status == AdmissionRecord.IPD_DISCHARGED)
    notes = clean_text(notes, field='notes', required=False)
    effects = SideEffects(f'admission.ipd:{lead_id}')
    with transaction.atomic():
        lead = _locked_lead(lead_id)
        _require_operator(actor, lead)
        _require_stage(lead, Lead.STAGE_INITIATED, Lead.STAGE_ADMITTED)
        admission = AdmissionRecord.objects.select_for_update().filter(lead=lead).first()
        if admission is None:
            raise InvalidStateTransition('Admission has not been initiated')
        admission.ipd_status = status
        admission.ipd_status_reason = reason
        admission.ipd_status_notes = notes
        admission.ipd_status_updated_at = timezone.now()
        if new_surgery_date:
            admission.new_surgery_date = new_surgery_date
        if discharge_date:
            admission.discharge_date = discharge_date
        admission.save()

        if status == AdmissionRecord.IPD_ADMITTED_DONE and lead.case_stage == Lead.STAGE_INITIATED:
            _set_stage(lead, Lead.STAGE_ADMITTED, actor, 'IPD marked: admitted, surgery done')
        elif status == AdmissionRecord.IPD_DISCHARGED:
            _set_stage(lead, Lead.STAGE_DISCHARGED, actor, 'IPD marked: discharged')

        label = dict(AdmissionRecord.IPD_CHOICES)[status]
        _chat(effects, lead, f'BD marked IPD status: {label}.' + (f' Reason: {reason}' if reason else ''))
        _notify_insurance(effects, lead, type='IPD_MARKED', title='IPD status updated',
                          message=f'{lead.patient_name}: {label}.')
        effects.commit()
    return admission


def mark_discharge(lead_id: int, actor: User) -> Lead:
    require_capability(actor, 'case:operate')
    effects = SideEffects(f'lead.discharge:{lead_id}')
    with transaction.atomic():
        lead = _locked_lead(lead_id)
        _require_operator(actor, lead)
        _require_stage(lead, Lead.STAGE_INITIATED, Lead.STAGE_ADMITTED)
        _set_stage(lead, Lead.STAGE_DISCHARGED, actor, 'Patient discharged')
        admission = AdmissionRecord.objects.select_for_update().filter(lead=lead).first()
        if admission is not None:
            admission.ipd_status = AdmissionRecord.IPD_DISCHARGED
            admission.ipd_status_updated_at = timezone.now()
            admission.discharge_date = admission.discharge_date or timezone.localdate()
            admission.save()
        _notify_insurance(effects, lead, type='DISCHARGED', title='Patient discharged',
                          message=f'{lead.patient_name} ({lead.lead_ref}) has been discharged.',
                          link=f'/patient/{lead.id}/discharge')
        effects.commit()
    return lead


def mark_lost(lead_id: int, actor: User, reason: str, detail: Optional[str] = None) -> Lead:
    require_actor(actor)
    if reason not in LOST_REASONS:
        raise ValidationError(f'reason must be one of: {", ".join(LOST_REASONS)}')
    detail = clean_text(detail, field='detail', required=False, max_length=400)
    full_reason = f'{reason}: {detail}' if detail else reason
    effects = SideEffects(f'lead.lost:{lead_id}')
    with transaction.atomic():
        lead = _locked_lead(lead_id)
        _require_operator(actor, lead)
        if lead.pipeline_stage == Lead.PIPELINE_LOST:
            raise InvalidStateTransition('Lead is already marked lost')
        if lead.pipeline_stage == Lead.PIPELINE_COMPLETED:
            raise InvalidStateTransition('Completed cases cannot be marked lost')
        lead.lost_reason = full_reason
        lead.lost_at = timezone.now()
        _set_pipeline(lead, Lead.PIPELINE_LOST, actor, full_reason)
        _chat(effects, lead, f'BD marked case lost — {full_reason}')
        effects.commit()
    return lead


# ---------------------------------------------------------------------------
# follow-up, discharge sheet and closing
# ---------------------------------------------------------------------------
FOLLOW_UP_TEXT_FIELDS = {
    'prescription': None,
    'report': None,
    'hospital_name': 255,
    'doctor_name': 255,
    'prescription_file_url': 500,
    'report_file_url': 500,
}


def submit_follow_up(kyp_id: int, actor: User, data: dict) -> PatientFollowUp:
    """Record (or update) the follow-up for a case whose pre-auth is approved."""
    require_capability(actor, 'leads:write')
    values = {f: clean_text(data.get(f), field=f, required=False, max_length=n)
              for f, n in FOLLOW_UP_TEXT_FIELDS.items()}
    values['admission_date'] = _date(data.get('admission_date'), 'admission_date', required=False)
    values['surgery_date'] = _date(data.get('surgery_date'), 'surgery_date', required=False)
    if not any(values.values()):
        raise ValidationError('At least one follow-up field must be filled')
    effects = SideEffects(f'kyp.follow_up:{kyp_id}')
    with transaction.atomic():
        lead, kyp, _ = _locked_kyp(kyp_id)
        if lead.bd_id != actor.id and actor.role not in (User.ROLE_ADMIN, User.ROLE_SALES_HEAD):
            raise Forbidden('You do not have permission to add follow-up for this lead')
        if kyp.status not in (KYPSubmission.STATUS_PRE_AUTH_COMPLETE, KYPSubmission.STATUS_FOLLOW_UP_COMPLETE):
            raise InvalidStateTransition('Pre-auth must be complete before adding follow-up details')
        follow_up, created = PatientFollowUp.objects.update_or_create(
            kyp=kyp, defaults={**values, 'updated_by': actor},
        )
        if kyp.status != KYPSubmission.STATUS_FOLLOW_UP_COMPLETE:
            kyp.status = KYPSubmission.STATUS_FOLLOW_UP_COMPLETE
            kyp.save(update_fields=['status', 'updated_at'])
        message = f'Follow-up details added for {lead.patient_name} ({lead.lead_ref})'
        if kyp.submitted_by_id and kyp.submitted_by_id != actor.id:
            effects.add('notify_submitter', create_notification, kyp.submitted_by_id,
                        type='FOLLOW_UP_COMPLETE', title='Follow-Up Complete', message=message,
                        link=f'/bd/kyp?kyp={kyp.id}', related_id=kyp.id)
        _notify_insurance(effects, lead, type='FOLLOW_UP_COMPLETE', title='Follow-Up Complete',
                          message=message, link=f'/insurance/kyp/{kyp.id}')
        _chat(effects, lead, 'BD added follow-up details.' if created else 'BD updated follow-up details.')
        effects.commit()
    logger.info('follow-up %s kyp=%s by=%s', 'created' if created else 'updated', kyp_id, actor.id)
    return follow_up


def _settlement(data: dict, field: str, required: bool = False):
    value = money(data.get(field), field=field, allow_none=not required)
    if value is not None and value < 0:
        raise ValidationError(f'{field} cannot be negative')
    return value


def create_discharge_sheet(lead_id: int, actor: User, data: dict) -> DischargeSheet:
    """Record the final bill of a discharged case and hand it to P&L."""
    require_capability(actor, 'insurance:write')
    values = {
        'discharge_date': _date(data.get('discharge_date'), 'discharge_date'),
        'total_final_bill': _settlement(data, 'total_final_bill', required=True),
        'final_approved_amount': _settlement(data, 'final_approved_amount'),
        'deduction_amount': _settlement(data, 'deduction_amount') or money(0),
        'hospital_share_amount': _settlement(data, 'hospital_share_amount'),
        'net_profit': money(data.get('net_profit'), field='net_profit', allow_none=True),
        'remarks': clean_text(data.get('remarks'), field='remarks', required=False),
    }
    if values['final_approved_amount'] is not None and values['final_approved_amount'] > values['total_final_bill']:
        raise ValidationError('final_approved_amount cannot exceed total_final_bill')
    effects = SideEffects(f'discharge_sheet.create:{lead_id}')
    with transaction.atomic():
        lead = _locked_lead(lead_id)
        _require_stage(lead, Lead.STAGE_DISCHARGED)
        if lead.pipeline_stage in (Lead.PIPELINE_LOST, Lead.PIPELINE_COMPLETED):
            raise InvalidStateTransition(f'Lead is {lead.pipeline_stage.lower()}')
        if DischargeSheet.objects.filter(lead=lead).exists():
            raise InvalidStateTransition('Discharge sheet already exists for this lead')
        sheet = DischargeSheet.objects.create(lead=lead, created_by=actor, **values)
        _set_pipeline(lead, Lead.PIPELINE_PL, actor, 'Discharge sheet created')
        message = f'Discharge sheet created for {lead.patient_name} ({lead.lead_ref})'
        link = f'/patient/{lead.id}/discharge'
        for role in (User.ROLE_PL_HEAD, User.ROLE_ADMIN):
            effects.add(f'notify_{role.lower()}', notify_role, role, type='DISCHARGE_SHEET_CREATED',
                        title='New Discharge Sheet Created', message=message, link=link, related_id=lead.id)
        _chat(effects, lead, 'Insurance created the discharge sheet. Case moved to P&L.')
        effects.commit()
    logger.info('discharge sheet %s lead=%s by=%s', sheet.id, lead_id, actor.id)
    return sheet


def close_case(lead_id: int, actor: User) -> Lead:
    """P&L sign-off: moves the lead to COMPLETED and closes its KYP."""
    require_capability(actor, 'pl:write')
    effects = SideEffects(f'lead.close:{lead_id}')
    with transaction.atomic():
        lead = _locked_lead(lead_id)
        if lead.pipeline_stage != Lead.PIPELINE_PL:
            raise InvalidStateTransition(f'Lead must be in PL to close (currently {lead.pipeline_stage})')
        sheet = DischargeSheet.objects.select_for_update().filter(lead=lead).first()
        if sheet is None:
            raise InvalidStateTransition('Discharge sheet is required before closing the case')
        sheet.closed_by = actor
        sheet.closed_at = timezone.now()
        sheet.save(update_fields=['closed_by', 'closed_at', 'updated_at'])
        KYPSubmission.objects.filter(lead=lead).update(
            status=KYPSubmission.STATUS_COMPLETED, updated_at=timezone.now(),
        )
        _set_pipeline(lead, Lead.PIPELINE_COMPLETED, actor, 'P&L closed')
        _chat(effects, lead, 'P&L closed. Case completed.')
        _notify_bd(effects, lead, type='CASE_COMPLETED', title='Case completed',
                   message=f'{lead.patient_name} ({lead.lead_ref}) has been closed by P&L.')
        effects.commit()
    return lead


# ---------------------------------------------------------------------------
# insurance cases
# ---------------------------------------------------------------------------
def _locked_case(case_id: int) -> tuple[InsuranceCase, Lead]:
    lead_id = InsuranceCase.objects.filter(pk=case_id).values_list('lead_id', flat=True).first()
    if lead_id is None:
        raise NotFound('Insurance case not found')
    lead = _locked_lead(lead_id)
    case = InsuranceCase.objects.select_for_update().get(pk=case_id)
    return case, lead


def approve_insurance_case(case_id: int, actor: User, approval_amount=None, tpa_remarks: Optional[str] = None) -> InsuranceCase:
    """Approve the claim and advance the lead to PL in one transaction."""
    require_capability(actor, 'insurance:write')
    amount = money(approval_amount, field='approval_amount', allow_none=True)
    remarks = clean_text(tpa_remarks, field='tpa_remarks', required=False) if tpa_remarks is not None else None
    effects = SideEffects(f'insurance.approve:{case_id}')
    lead_id = None
    try:
        with transaction.atomic():
            case, lead = _locked_case(case_id)
            lead_id = lead.id
            if lead.pipeline_stage == Lead.PIPELINE_LOST:
                raise InvalidStateTransition('Lead is marked lost')
            case.case_status = InsuranceCase.STATUS_APPROVED
            case.approved_at = case.approved_at or timezone.now()
            if amount is not None:
                case.approval_amount = amount
            if remarks is not None:
                case.tpa_remarks = remarks
            case.handled_by = actor
            case.save()
            if lead.pipeline_stage in (Lead.PIPELINE_SALES, Lead.PIPELINE_INSURANCE):
                _set_pipeline(lead, Lead.PIPELINE_PL, actor, 'Insurance case approved')
            _chat(effects, lead, 'Insurance approved the claim. Case moved to P&L.')
            _notify_bd(effects, lead, type='INSURANCE_APPROVED', title='Insurance approved',
                       message=f'Insurance case for {lead.patient_name} was approved.')
            effects.commit()
    except DatabaseError as exc:
        raise Internal('Insurance approval could not be completed; retry', context={
            'insurance_case_id': case_id, 'lead_id': lead_id, 'error': str(exc),
        }) from exc
    logger.info('insurance case %s approved lead=%s by=%s', case_id, lead_id, actor.id)
    return case


def update_insurance_case(case_id: int, actor: User, case_status: str, approval_amount=None,
                          tpa_remarks: Optional[str] = None) -> InsuranceCase:
    require_capability(actor, 'insurance:write')
    if case_status not in dict(InsuranceCase.STATUS_CHOICES):
        raise ValidationError('Invalid case_status')
    if case_status == InsuranceCase.STATUS_APPROVED:
        return approve_insurance_case(case_id, actor, approval_amount, tpa_remarks)
    amount = money(approval_amount, field='approval_amount', allow_none=True)
    with transaction.atomic():
        case, lead = _locked_case(case_id)
        if case.case_status == InsuranceCase.STATUS_APPROVED:
            raise AlreadyFinalized('Insurance case is already approved')
        case.case_status = case_status
        if amount is not None:
            case.approval_amount = amount
        if tpa_remarks is not None:
            case.tpa_remarks = clean_text(tpa_remarks, field='tpa_remarks', required=False)
        case.handled_by = actor
        case.save()
    logger.info('insurance case %s -> %s by=%s', case_id, case_status, actor.id)
    return case


def list_insurance_cases(actor: User, *, status=None, page: int = 1, page_size: int = 20):
    require_capability(actor, 'insurance:read')
    qs = InsuranceCase.objects.select_related('lead')
    if status:
        qs = qs.filter(case_status=status)
    total = qs.count()
    page = max(1, int(page or 1))
    page_size = min(100, max(1, int(page_size or 20)))
    start = (page - 1) * page_size
    items = []
    for c in qs.order_by('-updated_at', '-id')[start:start + page_size]:
        row = insurance_case_to_dict(c)
        row['leadRef'] = c.lead.lead_ref
        row['patientName'] = c.lead.patient_name
        items.append(row)
    return items, total


# ---------------------------------------------------------------------------
# case chat
# ---------------------------------------------------------------------------
def post_user_message(lead_id: int, actor: User, content: str) -> CaseChatMessage:
    lead = get_lead(lead_id, actor)
    content = clean_text(content, field='content', max_length=settings.CHAT_MAX_LENGTH)
    effects = SideEffects(f'chat.post:{lead_id}')
    with transaction.atomic():
        msg = CaseChatMessage.objects.create(
            lead=lead, type=CaseChatMessage.TYPE_USER, sender=actor, content=content,
        )
        effects.add('broadcast', broadcast_chat, msg)
        effects.commit()
    return msg


def list_messages(lead_id: int, actor: User, page: int = 1, page_size: int = 50):
    lead = get_lead(lead_id, actor)
    page = max(1, int(page or 1))
    page_size = min(200, max(1, int(page_size or 50)))
    start = (page - 1) * page_size
    qs = CaseChatMessage.objects.filter(lead=lead).select_related('sender')
    msgs = qs.order_by('-created_at', '-id')[start:start + page_size]
    return [chat_payload(m) for m in reversed(list(msgs))], qs.count()
