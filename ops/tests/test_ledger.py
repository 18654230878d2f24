import datetime
from decimal import Decimal

import pytest
from django.conf import settings
from django.core.management import call_command
from django.core.management.base import CommandError
from django.utils import timezone

from ops.exceptions import (
    AlreadyDeleted, Forbidden, InvalidStateTransition, NoPendingEdit, ValidationError,
)
from ops.models import LedgerAuditLog, LedgerEntry, Notification, PaymentMode
from ops.services import balances, ledger

pytestmark = pytest.mark.django_db


@pytest.fixture
def cash(finance):
    return ledger.create_payment_mode(finance, 'Cash', opening_balance='5000')


@pytest.fixture
def bank(finance):
    return ledger.create_payment_mode(finance, 'Bank', opening_balance='200')


def balance(mode):
    mode.refresh_from_db()
    return mode.current_balance


def credit(actor, mode, amount='1000'):
    return ledger.create_entry(actor, {
        'transaction_type': 'CREDIT', 'description': 'Consultation fee',
        'received_amount': amount, 'payment_mode_id': mode.id,
    })


def debit(actor, mode, a='300', b='200', **extra):
    data = {
        'transaction_type': 'DEBIT', 'description': 'Supplies',
        'component_a': a, 'component_b': b, 'payment_mode_id': mode.id,
    }
    data.update(extra)
    return ledger.create_entry(actor, data)


def actions(entry):
    return list(LedgerAuditLog.objects.filter(entry=entry).order_by('id').values_list('action', flat=True))


def test_credit_posts_immediately_and_delete_reverses(finance, md, cash):
    entry = credit(finance, cash)
    assert entry.status == LedgerEntry.STATUS_APPROVED
    assert entry.serial_number == 'CR-0001'
    assert entry.opening_balance == Decimal('5000.00')
    assert entry.current_balance == Decimal('6000.00')
    assert balance(cash) == Decimal('6000.00')

    ledger.soft_delete_entry(entry.id, md, 'Duplicate')
    assert balance(cash) == Decimal('5000.00')
    assert actions(entry) == ['CREATED', 'DELETED']
    deleted = LedgerAuditLog.objects.get(entry=entry, action='DELETED')
    assert deleted.previous_data['status'] == 'APPROVED'
    assert deleted.reason == 'Duplicate'

    with pytest.raises(AlreadyDeleted):
        ledger.soft_delete_entry(entry.id, md, 'Again')
    assert balance(cash) == Decimal('5000.00')


def test_serial_numbers_per_type(finance, cash):
    assert credit(finance, cash).serial_number == 'CR-0001'
    assert credit(finance, cash).serial_number == 'CR-0002'
    assert debit(finance, cash).serial_number == 'DR-0001'


def test_debit_waits_for_approval(finance, md, cash):
    entry = debit(finance, cash)
    assert entry.status == LedgerEntry.STATUS_PENDING
    assert entry.payment_amount == Decimal('500.00')
    assert balance(cash) == Decimal('5000.00')

    with pytest.raises(Forbidden):
        ledger.decide_entry(entry.id, finance, 'approve')

    entry = ledger.decide_entry(entry.id, md, 'approve')
    assert entry.status == LedgerEntry.STATUS_APPROVED
    assert entry.approved_by_id == md.id
    assert entry.current_balance == Decimal('4500.00')
    assert balance(cash) == Decimal('4500.00')

    with pytest.raises(InvalidStateTransition):
        ledger.decide_entry(entry.id, md, 'approve')
    assert balance(cash) == Decimal('4500.00')


def test_debit_amount_must_match_components(finance, cash):
    with pytest.raises(ValidationError):
        debit(finance, cash, payment_amount='400')
    with pytest.raises(ValidationError):
        debit(finance, cash, a='0', b='0')
    assert not LedgerEntry.objects.exists()


def test_reject_needs_reason(finance, md, cash):
    entry = debit(finance, cash)
    with pytest.raises(ValidationError):
        ledger.decide_entry(entry.id, md, 'reject')
    entry = ledger.decide_entry(entry.id, md, 'reject', 'No invoice')
    assert entry.status == LedgerEntry.STATUS_REJECTED
    assert entry.rejection_reason == 'No invoice'
    assert balance(cash) == Decimal('5000.00')


def test_self_transfer_moves_both_sides(finance, md):
    x = ledger.create_payment_mode(finance, 'X', opening_balance='1000')
    y = ledger.create_payment_mode(finance, 'Y', opening_balance='200')
    entry = ledger.create_entry(finance, {
        'transaction_type': 'SELF_TRANSFER', 'description': 'Float',
        'transfer_amount': '500', 'from_payment_mode_id': x.id, 'to_payment_mode_id': y.id,
    })
    assert entry.serial_number == 'ST-0001'
    assert entry.payment_mode_id == x.id
    assert (balance(x), balance(y)) == (Decimal('500.00'), Decimal('700.00'))

    ledger.soft_delete_entry(entry.id, md, 'Wrong account')
    assert (balance(x), balance(y)) == (Decimal('1000.00'), Decimal('200.00'))


def test_self_transfer_needs_two_modes(finance, cash):
    with pytest.raises(ValidationError):
        ledger.create_entry(finance, {
            'transaction_type': 'SELF_TRANSFER', 'description': 'Loop',
            'transfer_amount': '10', 'from_payment_mode_id': cash.id, 'to_payment_mode_id': cash.id,
        })


def test_inactive_mode_is_refused(finance, cash):
    ledger.update_payment_mode(cash.id, finance, {'is_active': False})
    with pytest.raises(ValidationError):
        credit(finance, cash)


def test_undo_approval_within_window(finance, md, cash):
    entry = debit(finance, cash)
    ledger.decide_entry(entry.id, md, 'approve')
    entry, message = ledger.undo_decision(entry.id, md)
    assert entry.status == LedgerEntry.STATUS_PENDING
    assert entry.approved_by_id is None
    assert 'pending' in message
    assert balance(cash) == Decimal('5000.00')
    assert actions(entry)[-1] == 'UPDATED'

    with pytest.raises(InvalidStateTransition):
        ledger.undo_decision(entry.id, md)


def test_undo_after_window_is_refused(finance, md, cash):
    entry = debit(finance, cash)
    ledger.decide_entry(entry.id, md, 'approve')
    late = timezone.now() - datetime.timedelta(seconds=settings.LEDGER_UNDO_WINDOW_SECONDS + 1)
    LedgerEntry.objects.filter(pk=entry.id).update(approved_at=late)
    with pytest.raises(InvalidStateTransition):
        ledger.undo_decision(entry.id, md)
    assert balance(cash) == Decimal('4500.00')


def test_undo_only_own_decision(finance, md, admin_user, cash):
    entry = debit(finance, cash)
    ledger.decide_entry(entry.id, md, 'approve')
    with pytest.raises(InvalidStateTransition):
        ledger.undo_decision(entry.id, admin_user)


def test_edit_request_and_approval_reapplies_amount(finance, md, cash):
    entry = credit(finance, cash)
    entry = ledger.request_edit(entry.id, finance, 'Typo', {'received_amount': '1500'})
    assert entry.edit_request_status == LedgerEntry.STATUS_PENDING
    assert entry.edit_request_data == {'received_amount': '1500.00'}
    assert balance(cash) == Decimal('6000.00')

    with pytest.raises(InvalidStateTransition):
        ledger.request_edit(entry.id, finance, 'Again', {'received_amount': '1600'})

    entry = ledger.approve_edit(entry.id, md, 'Verified')
    assert entry.edit_request_status == LedgerEntry.STATUS_APPROVED
    assert entry.edit_count == 1
    assert entry.received_amount == Decimal('1500.00')
    assert balance(cash) == Decimal('6500.00')
    assert ledger.get_entry(entry.id, md).edit_previous_data['received_amount'] == '1000.00'

    with pytest.raises(NoPendingEdit):
        ledger.approve_edit(entry.id, md, 'Twice')


def test_undo_edit_approval_restores_previous_values(finance, md, cash):
    entry = credit(finance, cash)
    ledger.request_edit(entry.id, finance, 'Typo', {'received_amount': '1500', 'party_name': 'Acme'})
    ledger.approve_edit(entry.id, md, 'Verified')
    entry, _ = ledger.undo_decision(entry.id, md)
    assert entry.received_amount == Decimal('1000.00')
    assert entry.party_name == ''
    assert entry.edit_request_status == LedgerEntry.STATUS_PENDING
    assert entry.edit_count == 0
    assert balance(cash) == Decimal('6000.00')


def test_reject_edit_leaves_balance(finance, md, cash):
    entry = credit(finance, cash)
    ledger.request_edit(entry.id, finance, 'Typo', {'received_amount': '10'})
    entry = ledger.reject_edit_request(entry.id, md, 'Not supported')
    assert entry.edit_request_status == LedgerEntry.STATUS_REJECTED
    assert entry.received_amount == Decimal('1000.00')
    assert balance(cash) == Decimal('6000.00')


def test_edit_rules(finance, cash):
    pending = debit(finance, cash)
    with pytest.raises(InvalidStateTransition):
        ledger.request_edit(pending.id, finance, 'Early', {'component_a': '10'})

    entry = credit(finance, cash)
    with pytest.raises(ValidationError):
        ledger.request_edit(entry.id, finance, 'Bad', {'status': 'REJECTED'})
    with pytest.raises(ValidationError):
        ledger.request_edit(entry.id, finance, 'Bad', {'received_amount': '0'})

    LedgerEntry.objects.filter(pk=entry.id).update(edit_count=settings.LEDGER_MAX_EDITS)
    with pytest.raises(InvalidStateTransition):
        ledger.request_edit(entry.id, finance, 'Limit', {'description': 'x'})


def test_edit_request_notifies_md(finance, md, cash, django_capture_on_commit_callbacks):
    entry = credit(finance, cash)
    with django_capture_on_commit_callbacks(execute=True):
        ledger.request_edit(entry.id, finance, 'Typo', {'description': 'Consultation fee (OPD)'})
    n = Notification.objects.get(user=md)
    assert n.type == 'LEDGER_EDIT_REQUESTED'
    assert n.related_id == str(entry.id)


def test_bulk_decide_is_all_or_nothing(finance, md, cash):
    first = debit(finance, cash, a='100', b='0')
    second = debit(finance, cash, a='50', b='25')
    posted = credit(finance, cash, '10')

    with pytest.raises(ValidationError):
        ledger.bulk_decide([first.id, posted.id], md, 'approve')
    first.refresh_from_db()
    assert first.status == LedgerEntry.STATUS_PENDING

    result = ledger.bulk_decide([first.id, second.id], md, 'approve')
    assert result == {'approved': 2, 'rejected': 0}
    assert balance(cash) == Decimal('4835.00')


def test_payment_mode_rules(finance, md, cash):
    with pytest.raises(ValidationError):
        ledger.create_payment_mode(finance, 'cash')
    with pytest.raises(ValidationError):
        ledger.update_payment_mode(cash.id, finance, {'current_balance': '1'})
    with pytest.raises(Forbidden):
        ledger.create_payment_mode(md, 'Card')

    mode = ledger.update_payment_mode(cash.id, finance, {'name': 'Petty cash', 'description': 'Front desk'})
    assert mode.name == 'Petty cash'
    assert [m['name'] for m in ledger.list_payment_modes(md)] == ['Petty cash']


def test_totals_and_integrity(finance, md, cash, bank):
    credit(finance, cash, '1000')
    d = debit(finance, cash, a='400', b='0')
    ledger.decide_entry(d.id, md, 'approve')
    ledger.create_entry(finance, {
        'transaction_type': 'SELF_TRANSFER', 'description': 'Deposit',
        'transfer_amount': '100', 'from_payment_mode_id': cash.id, 'to_payment_mode_id': bank.id,
    })

    totals = balances.payment_mode_totals(cash.id)
    assert totals['totalCredits'] == Decimal('1000.00')
    assert totals['totalDebits'] == Decimal('400.00')
    assert totals['transfersOut'] == Decimal('100.00')
    assert totals['netChange'] == Decimal('500.00')
    assert balances.verify_balance_integrity(cash.id)['isValid']
    assert balances.verify_balance_integrity(bank.id)['isValid']

    detail = ledger.payment_mode_detail(cash.id, md)
    assert detail['currentBalance'] == '5500.00'
    assert detail['integrity']['isValid']

    PaymentMode.objects.filter(pk=cash.id).update(current_balance=Decimal('1.00'))
    report = balances.verify_balance_integrity(cash.id)
    assert not report['isValid']
    assert report['discrepancy'] == Decimal('-5499.00')


def test_verify_balances_command(finance, cash):
    credit(finance, cash)
    call_command('verify_balances')
    PaymentMode.objects.filter(pk=cash.id).update(current_balance=Decimal('0.00'))
    with pytest.raises(CommandError):
        call_command('verify_balances')


def test_list_filters(finance, md, cash):
    credit(finance, cash)
    d = debit(finance, cash)
    deleted = credit(finance, cash, '5')
    ledger.soft_delete_entry(deleted.id, md, 'Mistake')

    items, total = ledger.list_entries(md)
    assert total == 2
    items, total = ledger.list_entries(md, status='PENDING')
    assert [i['id'] for i in items] == [d.id]
    assert ledger.list_entries(md, include_deleted=True)[1] == 3
    assert ledger.list_entries(md, search='DR-0001')[1] == 1


def test_delete_pending_entry_leaves_balance(finance, md, cash):
    entry = debit(finance, cash)
    entry = ledger.soft_delete_entry(entry.id, md, 'Raised in error')
    assert entry.is_deleted and entry.deleted_by_id == md.id
    assert balance(cash) == Decimal('5000.00')
    assert actions(entry) == ['CREATED', 'DELETED']
    deleted = LedgerAuditLog.objects.get(entry=entry, action='DELETED')
    assert deleted.previous_data['status'] == 'PENDING'
    assert deleted.new_data['deletedReason'] == 'Raised in error'


def test_reject_edit_without_pending_request(finance, md, cash):
    entry = credit(finance, cash)
    with pytest.raises(NoPendingEdit):
        ledger.reject_edit_request(entry.id, md, 'Nothing asked')

    ledger.request_edit(entry.id, finance, 'Typo', {'received_amount': '1100'})
    ledger.soft_delete_entry(entry.id, md, 'Duplicate')
    with pytest.raises(AlreadyDeleted):
        ledger.reject_edit_request(entry.id, md, 'Too late')
    entry.refresh_from_db()
    assert entry.edit_request_status == LedgerEntry.STATUS_PENDING
    assert actions(entry) == ['CREATED', 'EDIT_REQUESTED', 'DELETED']


def test_debit_edit_payment_amount_must_match_components(finance, md, cash):
    entry = debit(finance, cash)
    ledger.decide_entry(entry.id, md, 'approve')
    with pytest.raises(ValidationError):
        ledger.request_edit(entry.id, finance, 'Wrong total', {'payment_amount': '900'})
    entry.refresh_from_db()
    assert entry.edit_request_status == ''

    ledger.request_edit(entry.id, finance, 'Wrong split', {'component_a': '400', 'payment_amount': '600'})
    entry = ledger.approve_edit(entry.id, md, 'Invoice checked')
    assert entry.payment_amount == Decimal('600.00')
    assert entry.component_a == Decimal('400.00')
    assert balance(cash) == Decimal('4400.00')


def test_edit_refuses_fields_of_other_types(finance, md, cash):
    spent = debit(finance, cash)
    ledger.decide_entry(spent.id, md, 'approve')
    with pytest.raises(ValidationError):
        ledger.request_edit(spent.id, finance, 'Typo', {'received_amount': '900'})

    received = credit(finance, cash)
    with pytest.raises(ValidationError):
        ledger.request_edit(received.id, finance, 'Typo', {'component_a': '10'})
    with pytest.raises(ValidationError):
        ledger.request_edit(received.id, finance, 'Typo', {'transfer_amount': '10'})
    assert LedgerEntry.objects.filter(edit_request_status=LedgerEntry.STATUS_PENDING).count() == 0


def test_edit_amount_out_of_range(finance, cash):
    entry = credit(finance, cash)
    for value in ('1e30', '10000000000000'):
        with pytest.raises(ValidationError):
            ledger.request_edit(entry.id, finance, 'Typo', {'received_amount': value})
    assert balance(cash) == Decimal('6000.00')
