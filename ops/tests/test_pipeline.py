import datetime
from decimal import Decimal

import pytest

from ops.exceptions import (
    AlreadyFinalized, Forbidden, InvalidRequest, InvalidStateTransition, NotFound, ValidationError,
)
from ops.models import (
    CaseChatMessage, CaseStageHistory, DischargeSheet, InsuranceCase, KYPSubmission, Lead,
    LeadStageEvent, Notification, PatientFollowUp, PreAuthorization, User,
)
from ops.services import pipeline

pytestmark = pytest.mark.django_db

ADMISSION = {
    'admission_date': '2026-03-01',
    'admission_time': '10:00',
    'admitting_hospital': 'City Hospital',
    'hospital_address': '1 Main Road',
    'surgery_date': '2026-03-02',
    'surgery_time': '09:30',
    'tpa': 'MediAssist',
}


def new_lead(bd, name='Asha Rao'):
    return pipeline.create_lead(bd, {'patient_name': name, 'phone': '9000000001', 'city': 'Pune'})


def to_kyp_complete(bd, insurance):
    lead = new_lead(bd)
    kyp = pipeline.submit_kyp(lead.id, bd, {'insurance_card': 'CARD-1', 'disease': 'Hernia'})
    pipeline.add_preauth_details(kyp.id, insurance, ['City Hospital', 'Lake Clinic'], ['General', 'Private'])
    return lead, kyp


def to_preauth_raised(bd, insurance, **overrides):
    lead, kyp = to_kyp_complete(bd, insurance)
    data = {'requested_hospital_name': 'City Hospital', 'requested_room_type': 'Private'}
    data.update(overrides)
    pipeline.raise_preauth(lead.id, bd, data)
    return lead, kyp


def to_initiated(bd, insurance):
    lead, kyp = to_preauth_raised(bd, insurance)
    pipeline.approve_preauth(kyp.id, insurance)
    pipeline.initiate_admission(lead.id, bd, ADMISSION)
    return lead, kyp


def stages(lead):
    return list(CaseStageHistory.objects.filter(lead=lead).order_by('changed_at', 'id').values_list('to_stage', flat=True))


def test_transition_table():
    assert pipeline.can_transition(Lead.STAGE_NEW_LEAD, Lead.STAGE_KYP_PENDING)
    assert pipeline.can_transition(Lead.STAGE_INITIATED, Lead.STAGE_DISCHARGED)
    assert not pipeline.can_transition(Lead.STAGE_NEW_LEAD, Lead.STAGE_PREAUTH_RAISED)
    assert not pipeline.can_transition(Lead.STAGE_DISCHARGED, Lead.STAGE_NEW_LEAD)


def test_create_lead_writes_initial_history(bd):
    lead = new_lead(bd)
    assert lead.case_stage == Lead.STAGE_NEW_LEAD
    assert lead.pipeline_stage == Lead.PIPELINE_SALES
    assert lead.bd_id == bd.id and lead.team_id == bd.team_id
    assert lead.lead_ref.startswith('LD-')
    h = CaseStageHistory.objects.get(lead=lead)
    assert (h.from_stage, h.to_stage) == ('', Lead.STAGE_NEW_LEAD)
    assert LeadStageEvent.objects.filter(lead=lead, to_stage=Lead.PIPELINE_SALES).count() == 1


def test_create_lead_requires_capability(insurance):
    with pytest.raises(Forbidden):
        pipeline.create_lead(insurance, {'patient_name': 'X'})


def test_full_case_journey(bd, insurance):
    lead, kyp = to_initiated(bd, insurance)
    pipeline.mark_ipd_status(lead.id, bd, 'ADMITTED_DONE')
    pipeline.mark_discharge(lead.id, bd)

    lead.refresh_from_db()
    assert lead.case_stage == Lead.STAGE_DISCHARGED
    assert lead.pipeline_stage == Lead.PIPELINE_INSURANCE
    assert lead.hospital_name == 'City Hospital'
    assert lead.ipd_admission_date == datetime.date(2026, 3, 1)
    assert stages(lead) == [
        'NEW_LEAD', 'KYP_PENDING', 'KYP_COMPLETE', 'PREAUTH_RAISED',
        'PREAUTH_COMPLETE', 'INITIATED', 'ADMITTED', 'DISCHARGED',
    ]
    kyp.refresh_from_db()
    assert kyp.status == KYPSubmission.STATUS_PRE_AUTH_COMPLETE
    assert InsuranceCase.objects.filter(lead=lead).exists()
    assert lead.admission.ipd_status == 'DISCHARGED'
    assert lead.admission.discharge_date is not None


def test_history_is_append_only(bd):
    lead = new_lead(bd)
    h = CaseStageHistory.objects.get(lead=lead)
    h.note = 'changed'
    with pytest.raises(RuntimeError):
        h.save()
    with pytest.raises(RuntimeError):
        h.delete()


def test_kyp_requires_a_field(bd):
    lead = new_lead(bd)
    with pytest.raises(ValidationError):
        pipeline.submit_kyp(lead.id, bd, {'insurance_name': 'Star'})
    lead.refresh_from_db()
    assert lead.case_stage == Lead.STAGE_NEW_LEAD


def test_kyp_only_once(bd):
    lead = new_lead(bd)
    pipeline.submit_kyp(lead.id, bd, {'pan': 'ABCDE1234F'})
    with pytest.raises(InvalidStateTransition):
        pipeline.submit_kyp(lead.id, bd, {'pan': 'ABCDE1234F'})
    assert stages(lead) == ['NEW_LEAD', 'KYP_PENDING']


def test_kyp_by_other_bd_forbidden(bd, other_bd):
    lead = new_lead(bd)
    with pytest.raises(Forbidden):
        pipeline.submit_kyp(lead.id, other_bd, {'pan': 'ABCDE1234F'})


def test_missing_lead_is_not_found(bd):
    with pytest.raises(NotFound):
        pipeline.submit_kyp(999999, bd, {'pan': 'X1'})


def test_raise_preauth_needs_suggested_hospital(bd, insurance):
    lead, kyp = to_kyp_complete(bd, insurance)
    with pytest.raises(ValidationError):
        pipeline.raise_preauth(lead.id, bd, {'requested_hospital_name': 'Elsewhere', 'requested_room_type': 'General'})
    with pytest.raises(ValidationError):
        pipeline.raise_preauth(lead.id, bd, {'requested_hospital_name': 'City Hospital'})
    lead.refresh_from_db()
    assert lead.case_stage == Lead.STAGE_KYP_COMPLETE


def test_raise_preauth_needs_case_operator(bd, insurance):
    lead, kyp = to_kyp_complete(bd, insurance)
    with pytest.raises(Forbidden):
        pipeline.raise_preauth(lead.id, insurance, {'requested_hospital_name': 'City Hospital', 'requested_room_type': 'General'})


def test_reject_keeps_stage_and_records_reason(bd, insurance):
    lead, kyp = to_preauth_raised(bd, insurance)
    preauth = pipeline.reject_preauth(kyp.id, insurance, 'Policy lapsed')
    assert preauth.approval_status == PreAuthorization.STATUS_REJECTED
    lead.refresh_from_db()
    assert lead.case_stage == Lead.STAGE_PREAUTH_RAISED
    last = CaseStageHistory.objects.filter(lead=lead).order_by('-id').first()
    assert (last.from_stage, last.to_stage) == (Lead.STAGE_PREAUTH_RAISED, Lead.STAGE_PREAUTH_RAISED)
    assert last.note == 'Pre-authorization rejected by Insurance. Reason: Policy lapsed'

    with pytest.raises(AlreadyFinalized):
        pipeline.approve_preauth(kyp.id, insurance)


def test_decision_requires_raised_stage(bd, insurance):
    lead, kyp = to_kyp_complete(bd, insurance)
    with pytest.raises(InvalidStateTransition):
        pipeline.approve_preauth(kyp.id, insurance)


def test_new_hospital_request_must_be_marked_raised(bd, insurance):
    lead, kyp = to_preauth_raised(bd, insurance, requested_hospital_name='Hill View', requested_room_type='',
                                  is_new_hospital_request=True)
    with pytest.raises(InvalidStateTransition):
        pipeline.approve_preauth(kyp.id, insurance)

    preauth, changed = pipeline.mark_new_hospital_preauth_raised(kyp.id, insurance)
    assert changed and preauth.new_hospital_pre_auth_raised
    _, changed = pipeline.mark_new_hospital_preauth_raised(kyp.id, insurance)
    assert not changed

    pipeline.approve_preauth(kyp.id, insurance)
    lead.refresh_from_db()
    assert lead.case_stage == Lead.STAGE_PREAUTH_COMPLETE


def test_mark_new_hospital_rejects_normal_request(bd, insurance):
    lead, kyp = to_preauth_raised(bd, insurance)
    with pytest.raises(InvalidRequest):
        pipeline.mark_new_hospital_preauth_raised(kyp.id, insurance)


def test_postponed_needs_reason_and_date(bd, insurance):
    lead, _ = to_initiated(bd, insurance)
    with pytest.raises(ValidationError):
        pipeline.mark_ipd_status(lead.id, bd, 'POSTPONED', new_surgery_date='2026-03-09')
    with pytest.raises(ValidationError):
        pipeline.mark_ipd_status(lead.id, bd, 'POSTPONED', reason='Fever')
    admission = pipeline.mark_ipd_status(lead.id, bd, 'POSTPONED', reason='Fever', new_surgery_date='2026-03-09')
    assert admission.new_surgery_date == datetime.date(2026, 3, 9)
    lead.refresh_from_db()
    assert lead.case_stage == Lead.STAGE_INITIATED


def test_discharge_before_admission_is_rejected(bd, insurance):
    lead, _ = to_preauth_raised(bd, insurance)
    with pytest.raises(InvalidStateTransition):
        pipeline.mark_discharge(lead.id, bd)


def test_mark_lost(bd):
    lead = new_lead(bd)
    with pytest.raises(ValidationError):
        pipeline.mark_lost(lead.id, bd, 'Bored')
    lead = pipeline.mark_lost(lead.id, bd, 'Financial Issue', 'Cannot pay deposit')
    assert lead.pipeline_stage == Lead.PIPELINE_LOST
    assert lead.lost_reason == 'Financial Issue: Cannot pay deposit'
    assert lead.case_stage == Lead.STAGE_NEW_LEAD
    assert LeadStageEvent.objects.filter(lead=lead, to_stage=Lead.PIPELINE_LOST).count() == 1
    with pytest.raises(InvalidStateTransition):
        pipeline.mark_lost(lead.id, bd, 'Ghosted')


def test_insurance_approval_moves_lead_to_pl(bd, insurance):
    lead, _ = to_initiated(bd, insurance)
    case = InsuranceCase.objects.get(lead=lead)
    case = pipeline.update_insurance_case(case.id, insurance, 'APPROVED', approval_amount='50000')
    assert case.case_status == InsuranceCase.STATUS_APPROVED
    assert str(case.approval_amount) == '50000.00'
    lead.refresh_from_db()
    assert lead.pipeline_stage == Lead.PIPELINE_PL
    events = list(LeadStageEvent.objects.filter(lead=lead).order_by('id').values_list('to_stage', flat=True))
    assert events == ['SALES', 'INSURANCE', 'PL']

    with pytest.raises(AlreadyFinalized):
        pipeline.update_insurance_case(case.id, insurance, 'UNDER_REVIEW')


def test_insurance_approval_refused_for_lost_lead(bd, insurance):
    lead, _ = to_initiated(bd, insurance)
    pipeline.mark_lost(lead.id, bd, 'Ghosted')
    case = InsuranceCase.objects.get(lead=lead)
    with pytest.raises(InvalidStateTransition):
        pipeline.approve_insurance_case(case.id, insurance)
    case.refresh_from_db()
    assert case.case_status == InsuranceCase.STATUS_PENDING


def test_side_effects_run_after_commit(bd, insurance, django_capture_on_commit_callbacks):
    lead = new_lead(bd)
    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        pipeline.submit_kyp(lead.id, bd, {'aadhar': '1234'})
    assert len(callbacks) == 1
    n = Notification.objects.get(user=insurance)
    assert n.type == 'KYP_SUBMITTED'
    assert n.link.startswith('/insurance/kyp/')
    msg = CaseChatMessage.objects.get(lead=lead)
    assert msg.type == CaseChatMessage.TYPE_SYSTEM


def test_failed_transition_has_no_side_effects(bd, insurance, django_capture_on_commit_callbacks):
    lead = new_lead(bd)
    pipeline.submit_kyp(lead.id, bd, {'aadhar': '1234'})
    with django_capture_on_commit_callbacks(execute=True):
        with pytest.raises(InvalidStateTransition):
            pipeline.submit_kyp(lead.id, bd, {'aadhar': '1234'})
    assert not Notification.objects.filter(user=insurance).exists()


def test_lead_visibility(bd, other_bd, md, make_user):
    lead = new_lead(bd)
    new_lead(other_bd, name='Other Patient')
    team_lead = make_user('TEAM_LEAD')

    items, total = pipeline.list_leads(bd)
    assert total == 1 and items[0]['id'] == lead.id
    assert pipeline.list_leads(md)[1] == 2
    assert pipeline.list_leads(team_lead)[1] == 1

    with pytest.raises(Forbidden):
        pipeline.get_lead(lead.id, other_bd)
    assert pipeline.get_lead(lead.id, team_lead).id == lead.id


def test_stage_history_view(bd, insurance):
    lead, _ = to_kyp_complete(bd, insurance)
    data = pipeline.stage_history(lead.id, bd)
    assert data['caseStage'] == 'KYP_COMPLETE'
    assert [h['toStage'] for h in data['caseStages']] == ['NEW_LEAD', 'KYP_PENDING', 'KYP_COMPLETE']
    assert data['caseStages'][0]['fromStage'] is None
    assert [e['toStage'] for e in data['pipelineEvents']] == ['SALES']


def test_chat_message_is_sanitised(bd):
    lead = new_lead(bd)
    msg = pipeline.post_user_message(lead.id, bd, '<b>hello</b> <script>x</script>')
    assert '<' not in msg.content
    items, total = pipeline.list_messages(lead.id, bd)
    assert total == 1 and items[0]['senderId'] == bd.id
    with pytest.raises(ValidationError):
        pipeline.post_user_message(lead.id, bd, '   ')


def to_discharged(bd, insurance):
    lead, kyp = to_initiated(bd, insurance)
    pipeline.mark_discharge(lead.id, bd)
    return lead, kyp


SHEET = {
    'discharge_date': '2026-03-05',
    'total_final_bill': '85000',
    'final_approved_amount': '80000',
    'deduction_amount': '5000',
    'hospital_share_amount': '60000',
    'net_profit': '20000',
}


def pipeline_events(lead):
    return list(LeadStageEvent.objects.filter(lead=lead).order_by('id').values_list('to_stage', flat=True))


def test_discharge_notifies_every_insurance_head(bd, insurance, make_user, django_capture_on_commit_callbacks):
    second = make_user(User.ROLE_INSURANCE_HEAD)
    lead, _ = to_initiated(bd, insurance)
    with django_capture_on_commit_callbacks(execute=True):
        pipeline.mark_discharge(lead.id, bd)
    rows = Notification.objects.filter(type='DISCHARGED')
    assert sorted(rows.values_list('user_id', flat=True)) == sorted([insurance.id, second.id])
    assert {n.link for n in rows} == {f'/patient/{lead.id}/discharge'}


def test_reject_preauth_notifies_bd(bd, insurance, django_capture_on_commit_callbacks):
    lead, kyp = to_preauth_raised(bd, insurance)
    with django_capture_on_commit_callbacks(execute=True):
        pipeline.reject_preauth(kyp.id, insurance, 'Policy lapsed')
    n = Notification.objects.get(user=bd, type='PREAUTH_REJECTED')
    assert n.link == f'/patient/{lead.id}/pre-auth'
    assert 'Policy lapsed' in n.message


def test_mark_lost_posts_one_system_message(bd, django_capture_on_commit_callbacks):
    lead = new_lead(bd)
    with django_capture_on_commit_callbacks(execute=True):
        pipeline.mark_lost(lead.id, bd, 'Patient Declined')
    with django_capture_on_commit_callbacks(execute=True):
        with pytest.raises(InvalidStateTransition):
            pipeline.mark_lost(lead.id, bd, 'Ghosted')
    msgs = CaseChatMessage.objects.filter(lead=lead)
    assert msgs.count() == 1
    assert msgs.get().type == CaseChatMessage.TYPE_SYSTEM
    assert 'Patient Declined' in msgs.get().content


def test_mark_lost_by_other_bd_is_forbidden(bd, other_bd):
    lead = new_lead(bd)
    with pytest.raises(Forbidden):
        pipeline.mark_lost(lead.id, other_bd, 'Ghosted')
    pipeline.mark_lost(lead.id, bd, 'Ghosted')
    # ownership is checked before the lost state
    with pytest.raises(Forbidden):
        pipeline.mark_lost(lead.id, other_bd, 'Ghosted')
    assert LeadStageEvent.objects.filter(lead=lead, to_stage=Lead.PIPELINE_LOST).count() == 1


def test_follow_up_after_preauth(bd, insurance, django_capture_on_commit_callbacks):
    lead, kyp = to_preauth_raised(bd, insurance)
    with pytest.raises(InvalidStateTransition):
        pipeline.submit_follow_up(kyp.id, bd, {'doctor_name': 'Dr. Mehta'})

    pipeline.approve_preauth(kyp.id, insurance)
    with pytest.raises(ValidationError):
        pipeline.submit_follow_up(kyp.id, bd, {})
    with django_capture_on_commit_callbacks(execute=True):
        record = pipeline.submit_follow_up(kyp.id, bd, {
            'doctor_name': 'Dr. Mehta', 'surgery_date': '2026-03-02', 'prescription': '<i>Rest</i>',
        })
    assert record.surgery_date == datetime.date(2026, 3, 2)
    assert record.prescription == 'Rest'
    kyp.refresh_from_db()
    assert kyp.status == KYPSubmission.STATUS_FOLLOW_UP_COMPLETE
    n = Notification.objects.get(user=insurance, type='FOLLOW_UP_COMPLETE')
    assert n.message == f'Follow-up details added for {lead.patient_name} ({lead.lead_ref})'

    record = pipeline.submit_follow_up(kyp.id, bd, {'report': 'Normal'})
    assert PatientFollowUp.objects.filter(kyp=kyp).count() == 1
    assert record.report == 'Normal'


def test_follow_up_by_other_bd_is_forbidden(bd, other_bd, insurance):
    lead, kyp = to_preauth_raised(bd, insurance)
    pipeline.approve_preauth(kyp.id, insurance)
    with pytest.raises(Forbidden):
        pipeline.submit_follow_up(kyp.id, other_bd, {'doctor_name': 'Dr. Mehta'})
    with pytest.raises(Forbidden):
        pipeline.submit_follow_up(kyp.id, insurance, {'doctor_name': 'Dr. Mehta'})


def test_discharge_sheet_moves_lead_to_pl(bd, insurance, make_user, django_capture_on_commit_callbacks):
    pl_head = make_user(User.ROLE_PL_HEAD)
    lead, _ = to_initiated(bd, insurance)
    with pytest.raises(InvalidStateTransition):
        pipeline.create_discharge_sheet(lead.id, insurance, SHEET)

    pipeline.mark_discharge(lead.id, bd)
    with pytest.raises(Forbidden):
        pipeline.create_discharge_sheet(lead.id, bd, SHEET)
    with pytest.raises(ValidationError):
        pipeline.create_discharge_sheet(lead.id, insurance, {**SHEET, 'final_approved_amount': '90000'})

    with django_capture_on_commit_callbacks(execute=True):
        sheet = pipeline.create_discharge_sheet(lead.id, insurance, SHEET)
    assert sheet.total_final_bill == Decimal('85000.00')
    lead.refresh_from_db()
    assert lead.pipeline_stage == Lead.PIPELINE_PL
    assert pipeline_events(lead) == ['SALES', 'INSURANCE', 'PL']
    n = Notification.objects.get(user=pl_head, type='DISCHARGE_SHEET_CREATED')
    assert n.link == f'/patient/{lead.id}/discharge'

    with pytest.raises(InvalidStateTransition):
        pipeline.create_discharge_sheet(lead.id, insurance, SHEET)
    assert DischargeSheet.objects.filter(lead=lead).count() == 1


def test_close_case_completes_lead_and_kyp(bd, insurance, make_user, django_capture_on_commit_callbacks):
    pl_head = make_user(User.ROLE_PL_HEAD)
    lead, kyp = to_discharged(bd, insurance)
    pipeline.submit_follow_up(kyp.id, bd, {'doctor_name': 'Dr. Mehta'})
    with pytest.raises(InvalidStateTransition):
        pipeline.close_case(lead.id, pl_head)

    pipeline.create_discharge_sheet(lead.id, insurance, SHEET)
    with pytest.raises(Forbidden):
        pipeline.close_case(lead.id, insurance)
    with django_capture_on_commit_callbacks(execute=True):
        lead = pipeline.close_case(lead.id, pl_head)

    assert lead.pipeline_stage == Lead.PIPELINE_COMPLETED
    assert pipeline_events(lead) == ['SALES', 'INSURANCE', 'PL', 'COMPLETED']
    kyp.refresh_from_db()
    assert kyp.status == KYPSubmission.STATUS_COMPLETED
    sheet = DischargeSheet.objects.get(lead=lead)
    assert sheet.closed_by_id == pl_head.id and sheet.closed_at is not None
    assert Notification.objects.filter(user=bd, type='CASE_COMPLETED').count() == 1

    with pytest.raises(InvalidStateTransition):
        pipeline.close_case(lead.id, pl_head)
    with pytest.raises(InvalidStateTransition):
        pipeline.mark_lost(lead.id, bd, 'Ghosted')
