"""
Finance ledger workflow: entry creation, approval, edit requests,
soft delete and undo, plus payment-mode masters.

Every mutating function takes the acting user explicitly, checks the
capability before reading domain state, then locks the entry row with
``select_for_update`` inside ``transaction.atomic()``. Balance changes
go through :mod:`ops.services.balances` so apply and reverse stay exact
inverses.
"""
from __future__ import annotations

import datetime
import json
import logging
from typing import Iterable, Optional

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from django.utils.dateparse import parse_date

from ops.exceptions import (
    AlreadyDeleted, InvalidStateTransition, NoPendingEdit, NotFound, ValidationError,
)
from ops.models import LedgerAuditLog, LedgerEntry, PaymentMode, User, ZERO
from ops.permissions import require_capability
from ops.services import balances
from ops.services.audit import log_ledger
from ops.services.effects import SideEffects
from ops.services.notifications import create_notification, notify_role
from ops.services.text import clean_text

logger = logging.getLogger(__name__)

SERIAL_PREFIX = {
    LedgerEntry.TYPE_CREDIT: 'CR',
    LedgerEntry.TYPE_DEBIT: 'DR',
    LedgerEntry.TYPE_SELF_TRANSFER: 'ST',
}

MONEY_FIELDS = ('payment_amount', 'component_a', 'component_b', 'received_amount', 'transfer_amount')
MODE_FIELDS = ('payment_mode_id', 'from_payment_mode_id', 'to_payment_mode_id')
COMMON_FIELDS = ('description', 'transaction_date', 'party_name', 'head_name')
EDITABLE_FIELDS = COMMON_FIELDS + MONEY_FIELDS + MODE_FIELDS
# amount and mode fields each transaction type reads
TYPE_FIELDS = {
    LedgerEntry.TYPE_CREDIT: ('received_amount', 'payment_mode_id'),
    LedgerEntry.TYPE_DEBIT: ('component_a', 'component_b', 'payment_amount', 'payment_mode_id'),
    LedgerEntry.TYPE_SELF_TRANSFER: ('transfer_amount', 'from_payment_mode_id', 'to_payment_mode_id'),
}

ACTION_APPROVE = 'approve'
ACTION_REJECT = 'reject'


def _m(value):
    return None if value is None else str(value)


def _iso(value):
    return value.isoformat() if value else None


def entry_to_dict(e: LedgerEntry) -> dict:
    return {
        'id': e.id,
        'serialNumber': e.serial_number,
        'transactionType': e.transaction_type,
        'transactionDate': _iso(e.transaction_date),
        'description': e.description,
        'partyName': e.party_name,
        'headName': e.head_name,
        'paymentAmount': _m(e.payment_amount),
        'componentA': _m(e.component_a),
        'componentB': _m(e.component_b),
        'receivedAmount': _m(e.received_amount),
        'transferAmount': _m(e.transfer_amount),
        'amount': _m(e.amount),
        'paymentModeId': e.payment_mode_id,
        'fromPaymentModeId': e.from_payment_mode_id,
        'toPaymentModeId': e.to_payment_mode_id,
        'openingBalance': _m(e.opening_balance),
        'currentBalance': _m(e.current_balance),
        'status': e.status,
        'rejectionReason': e.rejection_reason,
        'createdById': e.created_by_id,
        'approvedById': e.approved_by_id,
        'approvedAt': _iso(e.approved_at),
        'isDeleted': e.is_deleted,
        'deletedAt': _iso(e.deleted_at),
        'deletedById': e.deleted_by_id,
        'deletedReason': e.deleted_reason,
        'editRequestStatus': e.edit_request_status or None,
        'editRequestReason': e.edit_request_reason,
        'editRequestData': e.edit_request_data or None,
        'editPreviousData': e.edit_previous_data or None,
        'editRequestedById': e.edit_requested_by_id,
        'editRequestedAt': _iso(e.edit_requested_at),
        'editApprovalReason': e.edit_approval_reason,
        'editApprovedById': e.edit_approved_by_id,
        'editApprovedAt': _iso(e.edit_approved_at),
        'editCount': e.edit_count,
        'createdAt': _iso(e.created_at),
        'updatedAt': _iso(e.updated_at),
    }


def audit_to_dict(a: LedgerAuditLog) -> dict:
    return {
        'id': a.id,
        'entryId': a.entry_id,
        'action': a.action,
        'previousData': a.previous_data,
        'newData': a.new_data,
        'reason': a.reason,
        'performedById': a.performed_by_id,
        'createdAt': _iso(a.created_at),
    }


def payment_mode_to_dict(m: PaymentMode) -> dict:
    return {
        'id': m.id,
        'name': m.name,
        'description': m.description,
        'openingBalance': _m(m.opening_balance),
        'currentBalance': _m(m.current_balance),
        'isActive': m.is_active,
        'createdAt': _iso(m.created_at),
        'updatedAt': _iso(m.updated_at),
    }


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------
def next_serial(transaction_type: str) -> str:
    prefix = SERIAL_PREFIX[transaction_type]
    last = (LedgerEntry.objects.select_for_update()
            .filter(serial_number__startswith=f'{prefix}-')
            .order_by('-id')
            .values_list('serial_number', flat=True)
            .first())
    n = int(last.split('-', 1)[1]) + 1 if last else 1
    return f'{prefix}-{n:0{settings.LEDGER_SERIAL_PAD}d}'


def _locked_entry(entry_id: int) -> LedgerEntry:
    entry = LedgerEntry.objects.select_for_update().filter(pk=entry_id).first()
    if entry is None:
        raise NotFound('Ledger entry not found')
    return entry


def _active_mode(mode_id, field: str) -> int:
    if not mode_id:
        raise ValidationError(f'{field} is required')
    try:
        mode_id = int(mode_id)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an id')
    if not PaymentMode.objects.filter(pk=mode_id, is_active=True).exists():
        raise ValidationError(f'{field} does not reference an active payment mode')
    return mode_id


def _coerce(field: str, value, *, trusted: bool = False):
    """Normalise one editable field value. ``trusted`` values were cleaned when first stored."""
    if field in MONEY_FIELDS:
        return balances.money(value, field=field, allow_none=True)
    if field in MODE_FIELDS:
        if value in (None, ''):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(f'{field} must be an id')
    if field == 'transaction_date':
        if isinstance(value, datetime.date):
            return value
        parsed = parse_date(str(value or ''))
        if parsed is None:
            raise ValidationError('transaction_date must be YYYY-MM-DD')
        return parsed
    if trusted:
        return str(value or '')
    if field == 'description':
        return clean_text(value, field='description')
    return clean_text(value, field=field, required=False)


def _check_amounts(entry: LedgerEntry) -> None:
    """Type specific amount rules; normalises DEBIT ``payment_amount``."""
    t = entry.transaction_type
    if t == LedgerEntry.TYPE_CREDIT:
        if entry.received_amount is None or entry.received_amount <= ZERO:
            raise ValidationError('received_amount must be greater than 0 for a credit')
    elif t == LedgerEntry.TYPE_DEBIT:
        a = entry.component_a if entry.component_a is not None else ZERO
        b = entry.component_b if entry.component_b is not None else ZERO
        if a < ZERO or b < ZERO:
            raise ValidationError('debit components cannot be negative')
        if a + b <= ZERO:
            raise ValidationError('debit amount must be greater than 0')
        entry.component_a, entry.component_b, entry.payment_amount = a, b, a + b
    else:
        if entry.from_payment_mode_id == entry.to_payment_mode_id:
            raise ValidationError('transfer needs two different payment modes')
        if entry.transfer_amount is None or entry.transfer_amount <= ZERO:
            raise ValidationError('transfer_amount must be greater than 0')
        entry.payment_mode_id = entry.from_payment_mode_id


def _validate_modes(entry: LedgerEntry) -> None:
    if entry.transaction_type == LedgerEntry.TYPE_SELF_TRANSFER:
        _active_mode(entry.from_payment_mode_id, 'from_payment_mode_id')
        _active_mode(entry.to_payment_mode_id, 'to_payment_mode_id')
    else:
        _active_mode(entry.payment_mode_id, 'payment_mode_id')


def _primary_mode_id(entry: LedgerEntry) -> int:
    if entry.transaction_type == LedgerEntry.TYPE_SELF_TRANSFER:
        return entry.from_payment_mode_id
    return entry.payment_mode_id


def _snapshot(entry: LedgerEntry) -> dict:
    return {f: getattr(entry, f) for f in EDITABLE_FIELDS}


def _restore(entry: LedgerEntry, data: dict) -> None:
    for field, value in data.items():
        setattr(entry, field, _coerce(field, value, trusted=True))


def _jsonable(data: dict) -> dict:
    return json.loads(json.dumps(data, cls=DjangoJSONEncoder))


def _reapply(entry: LedgerEntry, changes: dict) -> None:
    """Reverse the live effect, apply ``changes``, then apply the new effect."""
    was_live = entry.status == LedgerEntry.STATUS_APPROVED
    if was_live:
        balances.reverse_entry_effect(entry)
    _restore(entry, changes)
    _check_amounts(entry)
    _validate_modes(entry)
    if was_live:
        entry.opening_balance = balances.get_balance(_primary_mode_id(entry))
        entry.current_balance = balances.apply_entry_effect(entry)


def _notify_creator(effects: SideEffects, entry: LedgerEntry, *, type: str, title: str, message: str) -> None:
    if entry.created_by_id:
        effects.add('notify_creator', create_notification, entry.created_by_id,
                    type=type, title=title, message=message,
                    link=f'/finance/ledger/{entry.id}', related_id=entry.id)


# ---------------------------------------------------------------------------
# entries
# ---------------------------------------------------------------------------
def create_entry(actor: User, data: dict) -> LedgerEntry:
    """Record a transaction. Credits and transfers post immediately; debits wait for approval."""
    require_capability(actor, 'finance:write')
    t = data.get('transaction_type')
    if t not in SERIAL_PREFIX:
        raise ValidationError('transaction_type must be CREDIT, DEBIT or SELF_TRANSFER')

    entry = LedgerEntry(transaction_type=t, created_by=actor)
    declared = None
    entry.transaction_date = _coerce('transaction_date', data.get('transaction_date') or timezone.localdate())
    entry.description = _coerce('description', data.get('description'))
    entry.party_name = _coerce('party_name', data.get('party_name'))
    entry.head_name = _coerce('head_name', data.get('head_name'))
    if t == LedgerEntry.TYPE_CREDIT:
        entry.received_amount = _coerce('received_amount', data.get('received_amount'))
        entry.payment_mode_id = _coerce('payment_mode_id', data.get('payment_mode_id'))
    elif t == LedgerEntry.TYPE_DEBIT:
        entry.component_a = _coerce('component_a', data.get('component_a'))
        entry.component_b = _coerce('component_b', data.get('component_b'))
        entry.payment_mode_id = _coerce('payment_mode_id', data.get('payment_mode_id'))
        declared = _coerce('payment_amount', data.get('payment_amount'))
    else:
        entry.transfer_amount = _coerce('transfer_amount', data.get('transfer_amount'))
        entry.from_payment_mode_id = _coerce('from_payment_mode_id', data.get('from_payment_mode_id'))
        entry.to_payment_mode_id = _coerce('to_payment_mode_id', data.get('to_payment_mode_id'))

    _check_amounts(entry)
    if t == LedgerEntry.TYPE_DEBIT and declared is not None and declared != entry.payment_amount:
        raise ValidationError('payment_amount must equal component_a + component_b')
    _validate_modes(entry)

    with transaction.atomic():
        entry.serial_number = next_serial(t)
        entry.opening_balance = balances.get_balance(_primary_mode_id(entry))
        if t == LedgerEntry.TYPE_DEBIT:
            entry.status = LedgerEntry.STATUS_PENDING
            entry.current_balance = entry.opening_balance
        else:
            entry.status = LedgerEntry.STATUS_APPROVED
            entry.approved_by = actor
            entry.approved_at = timezone.now()
            entry.current_balance = balances.apply_entry_effect(entry)
        entry.save()
        log_ledger(entry, LedgerAuditLog.ACTION_CREATED, user=actor, new={
            'serialNumber': entry.serial_number,
            'transactionType': t,
            'amount': entry.amount,
            'status': entry.status,
        })
    logger.info('ledger entry %s created type=%s status=%s by=%s', entry.serial_number, t, entry.status, actor.id)
    return entry


def _approve_debit(entry: LedgerEntry, actor: User) -> None:
    before = balances.get_balance(entry.payment_mode_id)
    entry.opening_balance = before
    entry.current_balance = balances.apply_entry_effect(entry)
    entry.status = LedgerEntry.STATUS_APPROVED
    entry.rejection_reason = ''
    entry.approved_by = actor
    entry.approved_at = timezone.now()
    entry.save()
    log_ledger(entry, LedgerAuditLog.ACTION_APPROVED, user=actor,
               previous={'status': LedgerEntry.STATUS_PENDING, 'balance': before},
               new={'status': LedgerEntry.STATUS_APPROVED, 'balance': entry.current_balance})


def _reject_debit(entry: LedgerEntry, actor: User, reason: str) -> None:
    entry.status = LedgerEntry.STATUS_REJECTED
    entry.rejection_reason = reason
    entry.approved_by = actor
    entry.approved_at = timezone.now()
    entry.save()
    log_ledger(entry, LedgerAuditLog.ACTION_REJECTED, user=actor, reason=reason,
               previous={'status': LedgerEntry.STATUS_PENDING},
               new={'status': LedgerEntry.STATUS_REJECTED, 'rejectionReason': reason})


_DECISION_NOTICE = {
    ACTION_APPROVE: ('LEDGER_APPROVED', 'Debit approved', 'approved'),
    ACTION_REJECT: ('LEDGER_REJECTED', 'Debit rejected', 'rejected'),
}


def _notify_decision(effects: SideEffects, entry: LedgerEntry, action: str) -> None:
    type_, title, verb = _DECISION_NOTICE[action]
    _notify_creator(effects, entry, type=type_, title=title, message=f'{entry.serial_number} was {verb}.')


def _check_decidable(entry: LedgerEntry) -> None:
    if entry.is_deleted:
        raise AlreadyDeleted()
    if entry.transaction_type != LedgerEntry.TYPE_DEBIT:
        raise InvalidStateTransition('Only debit entries need approval')
    if entry.status != LedgerEntry.STATUS_PENDING:
        raise InvalidStateTransition(f'Entry is already {entry.status.lower()}')


def _decision_args(action: str, rejection_reason) -> str:
    if action not in (ACTION_APPROVE, ACTION_REJECT):
        raise ValidationError("action must be 'approve' or 'reject'")
    if action == ACTION_REJECT:
        return clean_text(rejection_reason, field='rejection_reason')
    return ''


def decide_entry(entry_id: int, actor: User, action: str, rejection_reason: Optional[str] = None) -> LedgerEntry:
    require_capability(actor, 'finance:approve')
    reason = _decision_args(action, rejection_reason)
    effects = SideEffects(f'ledger.decide:{entry_id}')
    with transaction.atomic():
        entry = _locked_entry(entry_id)
        _check_decidable(entry)
        if action == ACTION_APPROVE:
            _approve_debit(entry, actor)
        else:
            _reject_debit(entry, actor, reason)
        _notify_decision(effects, entry, action)
        effects.commit()
    logger.info('ledger entry %s decision=%s by=%s', entry.serial_number, action, actor.id)
    return entry


def bulk_decide(ids: Iterable[int], actor: User, action: str, rejection_reason: Optional[str] = None) -> dict:
    require_capability(actor, 'finance:approve')
    reason = _decision_args(action, rejection_reason)
    ids = list(dict.fromkeys(int(i) for i in ids or []))
    if not ids:
        raise ValidationError('ids must be a non-empty list')
    effects = SideEffects('ledger.bulk_decide')
    with transaction.atomic():
        entries = list(LedgerEntry.objects.select_for_update().filter(pk__in=ids).order_by('pk'))
        missing = set(ids) - {e.pk for e in entries}
        if missing:
            raise ValidationError(f'Unknown entries: {sorted(missing)}')
        bad = [e.serial_number for e in entries
               if e.is_deleted or e.transaction_type != LedgerEntry.TYPE_DEBIT or e.status != LedgerEntry.STATUS_PENDING]
        if bad:
            raise ValidationError(f'Only pending debit entries can be decided: {", ".join(bad)}')
        for entry in entries:
            if action == ACTION_APPROVE:
                _approve_debit(entry, actor)
            else:
                _reject_debit(entry, actor, reason)
            type_, title, verb = _DECISION_NOTICE[action]
            _notify_creator(effects, entry, type=type_, title=title,
                            message=f'{entry.serial_number} was {verb} in a batch.')
        effects.commit()
    count = len(entries)
    logger.info('bulk %s of %d entries by=%s', action, count, actor.id)
    return {
        'approved': count if action == ACTION_APPROVE else 0,
        'rejected': count if action == ACTION_REJECT else 0,
    }


def _validated_changes(entry: LedgerEntry, changes: dict) -> dict:
    if not isinstance(changes, dict) or not changes:
        raise ValidationError('changes must be a non-empty object')
    unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f'Cannot edit fields: {", ".join(unknown)}')
    foreign = sorted(set(changes) - set(COMMON_FIELDS) - set(TYPE_FIELDS[entry.transaction_type]))
    if foreign:
        raise ValidationError(f'Fields not used by a {entry.transaction_type} entry: {", ".join(foreign)}')
    coerced = {f: _coerce(f, v) for f, v in changes.items()}
    for field in MODE_FIELDS:
        if coerced.get(field) is not None:
            _active_mode(coerced[field], field)
    # dry run the amount rules on an unsaved copy
    preview = LedgerEntry(**{f: getattr(entry, f) for f in EDITABLE_FIELDS},
                          transaction_type=entry.transaction_type)
    _restore(preview, coerced)
    _check_amounts(preview)
    if 'payment_amount' in coerced and coerced['payment_amount'] != preview.payment_amount:
        raise ValidationError('payment_amount must equal component_a + component_b')
    return coerced


def request_edit(entry_id: int, actor: User, reason: str, changes: dict) -> LedgerEntry:
    require_capability(actor, 'finance:write')
    reason = clean_text(reason, field='reason')
    effects = SideEffects(f'ledger.request_edit:{entry_id}')
    with transaction.atomic():
        entry = _locked_entry(entry_id)
        if entry.is_deleted:
            raise AlreadyDeleted()
        if entry.edit_request_status == LedgerEntry.STATUS_PENDING:
            raise InvalidStateTransition('An edit request is already pending')
        if entry.status != LedgerEntry.STATUS_APPROVED:
            raise InvalidStateTransition('Only approved entries can be edited')
        if entry.edit_count >= settings.LEDGER_MAX_EDITS:
            raise InvalidStateTransition(f'Edit limit of {settings.LEDGER_MAX_EDITS} reached')
        coerced = _validated_changes(entry, changes)

        entry.edit_request_status = LedgerEntry.STATUS_PENDING
        entry.edit_request_reason = reason
        entry.edit_request_data = _jsonable(coerced)
        entry.edit_requested_by = actor
        entry.edit_requested_at = timezone.now()
        entry.edit_approval_reason = ''
        entry.edit_approved_by = None
        entry.edit_approved_at = None
        entry.save()
        log_ledger(entry, LedgerAuditLog.ACTION_EDIT_REQUESTED, user=actor, reason=reason,
                   previous={f: getattr(entry, f) for f in coerced}, new=coerced)
        effects.add('notify_md', _notify_approvers, entry)
        effects.commit()
    logger.info('edit requested on %s by=%s fields=%s', entry.serial_number, actor.id, sorted(coerced))
    return entry


def _notify_approvers(entry: LedgerEntry) -> None:
    notify_role(User.ROLE_MD, type='LEDGER_EDIT_REQUESTED', title='Ledger edit requested',
                message=f'Edit requested on {entry.serial_number}.',
                link=f'/finance/ledger/{entry.id}', related_id=entry.id)


def approve_edit(entry_id: int, actor: User, reason: str) -> LedgerEntry:
    require_capability(actor, 'finance:approve')
    reason = clean_text(reason, field='reason')
    effects = SideEffects(f'ledger.approve_edit:{entry_id}')
    with transaction.atomic():
        entry = _locked_entry(entry_id)
        if entry.is_deleted:
            raise AlreadyDeleted()
        if entry.edit_request_status != LedgerEntry.STATUS_PENDING:
            raise NoPendingEdit()
        previous = _snapshot(entry)
        changes = dict(entry.edit_request_data or {})
        _reapply(entry, changes)

        entry.edit_previous_data = _jsonable(previous)
        entry.edit_count += 1
        entry.edit_request_status = LedgerEntry.STATUS_APPROVED
        entry.edit_approval_reason = reason
        entry.edit_approved_by = actor
        entry.edit_approved_at = timezone.now()
        entry.save()
        log_ledger(entry, LedgerAuditLog.ACTION_EDIT_APPROVED, user=actor, reason=reason,
                   previous=previous, new=changes)
        if entry.edit_requested_by_id:
            effects.add('notify_requester', create_notification, entry.edit_requested_by_id,
                        type='LEDGER_EDIT_APPROVED', title='Edit approved',
                        message=f'Your edit on {entry.serial_number} was approved.',
                        link=f'/finance/ledger/{entry.id}', related_id=entry.id)
        effects.commit()
    logger.info('edit approved on %s by=%s edit_count=%s', entry.serial_number, actor.id, entry.edit_count)
    return entry


def reject_edit_request(entry_id: int, actor: User, reason: str) -> LedgerEntry:
    require_capability(actor, 'finance:approve')
    reason = clean_text(reason, field='reason')
    with transaction.atomic():
        entry = _locked_entry(entry_id)
        if entry.is_deleted:
            raise AlreadyDeleted()
        if entry.edit_request_status != LedgerEntry.STATUS_PENDING:
            raise NoPendingEdit()
        entry.edit_request_status = LedgerEntry.STATUS_REJECTED
        entry.edit_approval_reason = reason
        entry.edit_approved_by = actor
        entry.edit_approved_at = timezone.now()
        entry.save()
        log_ledger(entry, LedgerAuditLog.ACTION_EDIT_REJECTED, user=actor, reason=reason,
                   previous={'editRequestStatus': LedgerEntry.STATUS_PENDING},
                   new={'editRequestStatus': LedgerEntry.STATUS_REJECTED, 'editApprovalReason': reason})
    logger.info('edit rejected on %s by=%s', entry.serial_number, actor.id)
    return entry


def soft_delete_entry(entry_id: int, actor: User, reason: str) -> LedgerEntry:
    """Mark deleted; an approved entry has its balance effect reversed in the same transaction."""
    require_capability(actor, 'finance:approve')
    reason = clean_text(reason, field='reason')
    with transaction.atomic():
        entry = _locked_entry(entry_id)
        if entry.is_deleted:
            raise AlreadyDeleted()
        previous = {'isDeleted': False, 'status': entry.status, 'serialNumber': entry.serial_number}
        if entry.status == LedgerEntry.STATUS_APPROVED:
            balances.reverse_entry_effect(entry)
        entry.is_deleted = True
        entry.deleted_at = timezone.now()
        entry.deleted_by = actor
        entry.deleted_reason = reason
        entry.save()
        log_ledger(entry, LedgerAuditLog.ACTION_DELETED, user=actor, reason=reason, previous=previous, new={
            'isDeleted': True,
            'deletedAt': entry.deleted_at,
            'deletedById': actor.id,
            'deletedReason': reason,
        })
    logger.info('ledger entry %s deleted by=%s (was %s)', entry.serial_number, actor.id, previous['status'])
    return entry


def _undo_candidate(entry: LedgerEntry, actor: User):
    """The caller's most recent undoable decision on ``entry`` as ``(kind, at)``."""
    found = []
    if (entry.transaction_type == LedgerEntry.TYPE_DEBIT
            and entry.status in (LedgerEntry.STATUS_APPROVED, LedgerEntry.STATUS_REJECTED)
            and entry.approved_by_id == actor.id and entry.approved_at):
        found.append(('decision', entry.approved_at))
    if (entry.edit_request_status in (LedgerEntry.STATUS_APPROVED, LedgerEntry.STATUS_REJECTED)
            and entry.edit_approved_by_id == actor.id and entry.edit_approved_at):
        found.append(('edit', entry.edit_approved_at))
    if not found:
        return None
    return max(found, key=lambda c: c[1])


def undo_decision(entry_id: int, actor: User) -> tuple[LedgerEntry, str]:
    require_capability(actor, 'finance:approve')
    with transaction.atomic():
        entry = _locked_entry(entry_id)
        if entry.is_deleted:
            raise AlreadyDeleted('Cannot undo a deleted entry')
        candidate = _undo_candidate(entry, actor)
        if candidate is None:
            raise InvalidStateTransition('Nothing to undo')
        kind, at = candidate
        window = settings.LEDGER_UNDO_WINDOW_SECONDS
        if (timezone.now() - at).total_seconds() > window:
            raise InvalidStateTransition(f'Undo window expired. You can only undo within {window} seconds.')

        if kind == 'decision':
            previous = {'status': entry.status}
            if entry.status == LedgerEntry.STATUS_APPROVED:
                balances.reverse_entry_effect(entry)
                entry.current_balance = entry.opening_balance
                message = 'Approval undone. Entry is back to pending.'
            else:
                message = 'Rejection undone. Entry is back to pending.'
            entry.status = LedgerEntry.STATUS_PENDING
            entry.rejection_reason = ''
            entry.approved_by = None
            entry.approved_at = None
            new = {'status': LedgerEntry.STATUS_PENDING}
        else:
            previous = {'editRequestStatus': entry.edit_request_status}
            if entry.edit_request_status == LedgerEntry.STATUS_APPROVED:
                _reapply(entry, dict(entry.edit_previous_data or {}))
                entry.edit_previous_data = {}
                entry.edit_count = max(0, entry.edit_count - 1)
            entry.edit_request_status = LedgerEntry.STATUS_PENDING
            entry.edit_approval_reason = ''
            entry.edit_approved_by = None
            entry.edit_approved_at = None
            new = {'editRequestStatus': LedgerEntry.STATUS_PENDING}
            message = 'Edit decision undone. Request is back to pending.'
        entry.save()
        log_ledger(entry, LedgerAuditLog.ACTION_UPDATED, user=actor, reason=message,
                   previous=previous, new=new)
    logger.info('undo %s on %s by=%s', kind, entry.serial_number, actor.id)
    return entry, message


# ---------------------------------------------------------------------------
# reads
# ---------------------------------------------------------------------------
def get_entry(entry_id: int, actor: User) -> LedgerEntry:
    require_capability(actor, 'finance:read')
    entry = LedgerEntry.objects.filter(pk=entry_id).first()
    if entry is None:
        raise NotFound('Ledger entry not found')
    return entry


def audit_trail(entry_id: int, actor: User) -> list[dict]:
    entry = get_entry(entry_id, actor)
    return [audit_to_dict(a) for a in entry.audit_logs.order_by('created_at', 'id')]


def list_entries(actor: User, *, transaction_type=None, status=None, edit_status=None,
                 payment_mode_id=None, date_from=None, date_to=None, search=None,
                 include_deleted: bool = False, page: int = 1, limit: int = 50):
    require_capability(actor, 'finance:read')
    qs = LedgerEntry.objects.all()
    if not include_deleted:
        qs = qs.filter(is_deleted=False)
    if transaction_type:
        qs = qs.filter(transaction_type=transaction_type)
    if status:
        qs = qs.filter(status=status)
    if edit_status:
        qs = qs.filter(edit_request_status=edit_status)
    if payment_mode_id:
        qs = qs.filter(Q(payment_mode_id=payment_mode_id) | Q(from_payment_mode_id=payment_mode_id)
                       | Q(to_payment_mode_id=payment_mode_id))
    if date_from:
        qs = qs.filter(transaction_date__gte=date_from)
    if date_to:
        qs = qs.filter(transaction_date__lte=date_to)
    if search:
        qs = qs.filter(Q(serial_number__icontains=search) | Q(description__icontains=search)
                       | Q(party_name__icontains=search) | Q(head_name__icontains=search))

    total = qs.count()
    page = max(1, int(page or 1))
    limit = min(200, max(1, int(limit or 50)))
    start = (page - 1) * limit
    items = qs.order_by('-transaction_date', '-id')[start:start + limit]
    return [entry_to_dict(e) for e in items], total


# ---------------------------------------------------------------------------
# payment modes
# ---------------------------------------------------------------------------
def _unique_name(name: str, exclude_id=None) -> str:
    name = clean_text(name, field='name', max_length=120)
    qs = PaymentMode.objects.filter(name__iexact=name)
    if exclude_id is not None:
        qs = qs.exclude(pk=exclude_id)
    if qs.exists():
        raise ValidationError('A payment mode with this name already exists')
    return name


def create_payment_mode(actor: User, name: str, description: str = '', opening_balance=ZERO) -> PaymentMode:
    require_capability(actor, 'finance:masters:write')
    opening = balances.money(opening_balance if opening_balance is not None else ZERO, field='opening_balance')
    if opening < ZERO:
        raise ValidationError('opening_balance cannot be negative')
    with transaction.atomic():
        mode = PaymentMode.objects.create(
            name=_unique_name(name),
            description=clean_text(description, field='description', required=False),
            opening_balance=opening,
            current_balance=opening,
        )
    logger.info('payment mode %s created opening=%s by=%s', mode.pk, opening, actor.id)
    return mode


def update_payment_mode(mode_id: int, actor: User, data: dict) -> PaymentMode:
    require_capability(actor, 'finance:masters:write')
    locked = {'opening_balance', 'current_balance'} & set(data)
    if locked:
        raise ValidationError('Balances cannot be edited directly')
    unknown = set(data) - {'name', 'description', 'is_active'}
    if unknown:
        raise ValidationError(f'Cannot update fields: {", ".join(sorted(unknown))}')
    with transaction.atomic():
        mode = PaymentMode.objects.select_for_update().filter(pk=mode_id).first()
        if mode is None:
            raise NotFound('Payment mode not found')
        if 'name' in data:
            mode.name = _unique_name(data['name'], exclude_id=mode.pk)
        if 'description' in data:
            mode.description = clean_text(data['description'], field='description', required=False)
        if 'is_active' in data:
            mode.is_active = bool(data['is_active'])
        mode.save(update_fields=['name', 'description', 'is_active', 'updated_at'])
    return mode


def list_payment_modes(actor: User, include_inactive: bool = False) -> list[dict]:
    require_capability(actor, 'finance:read')
    qs = PaymentMode.objects.all() if include_inactive else PaymentMode.objects.filter(is_active=True)
    return [payment_mode_to_dict(m) for m in qs.order_by('name')]


def payment_mode_detail(mode_id: int, actor: User) -> dict:
    require_capability(actor, 'finance:read')
    mode = PaymentMode.objects.filter(pk=mode_id).first()
    if mode is None:
        raise NotFound('Payment mode not found')
    data = payment_mode_to_dict(mode)
    data['totals'] = {k: _m(v) for k, v in balances.payment_mode_totals(mode.pk).items()}
    integrity = balances.verify_balance_integrity(mode.pk)
    data['integrity'] = {
        'isValid': integrity['isValid'],
        'expectedBalance': _m(integrity['expectedBalance']),
        'discrepancy': _m(integrity['discrepancy']),
    }
    return data
