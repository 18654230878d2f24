"""
Payment-mode balance primitives.

``current_balance`` on a :class:`PaymentMode` moves only through the
functions in this module. Every change locks the payment-mode row with
``select_for_update`` and does the arithmetic in ``Decimal`` so that
applying and then reversing an entry restores the prior balance
exactly. Callers run these inside their own ``transaction.atomic()``
block; a missing payment mode raises :class:`Internal` so the caller's
transaction rolls back instead of recording a half-applied change.
"""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Iterable

from django.db import transaction
from django.db.models import Sum

from ops.exceptions import Internal, NotFound, ValidationError
from ops.models import LedgerEntry, PaymentMode, ZERO

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
# MONEY columns hold 15 digits, two of them after the point
MONEY_LIMIT = Decimal('1e13')

_DIRECTION = {
    LedgerEntry.TYPE_CREDIT: 1,
    LedgerEntry.TYPE_DEBIT: -1,
}


def money(value, *, field: str = 'amount', allow_none: bool = False) -> Decimal | None:
    """Parse ``value`` into a 2dp ``Decimal``; floats go through ``str`` first."""
    if value is None or value == '':
        if allow_none:
            return None
        raise ValidationError(f'{field} is required')
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be a number')
    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value))
        if not d.is_finite():
            raise ValidationError(f'{field} must be a number')
        d = d.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a number')
    if abs(d) >= MONEY_LIMIT:
        raise ValidationError(f'{field} is out of range')
    return d


def _delta(transaction_type: str, amount: Decimal) -> Decimal:
    try:
        direction = _DIRECTION[transaction_type]
    except KeyError:
        raise ValueError(f'single-sided balance update needs CREDIT or DEBIT, got {transaction_type!r}')
    return amount if direction > 0 else -amount


def _lock_modes(mode_ids: Iterable[int]) -> Dict[int, PaymentMode]:
    ids = sorted({m for m in mode_ids if m is not None})
    # consistent lock order so two transfers over the same pair cannot deadlock
    locked = {m.pk: m for m in PaymentMode.objects.select_for_update().filter(pk__in=ids).order_by('pk')}
    missing = [m for m in ids if m not in locked]
    if missing:
        raise Internal('Payment mode row missing during balance update', context={'payment_mode_ids': missing})
    return locked


def _shift(mode: PaymentMode, delta: Decimal) -> Decimal:
    mode.current_balance = (mode.current_balance + delta).quantize(CENT)
    mode.save(update_fields=['current_balance', 'updated_at'])
    return mode.current_balance


def get_balance(payment_mode_id: int) -> Decimal:
    value = PaymentMode.objects.filter(pk=payment_mode_id).values_list('current_balance', flat=True).first()
    return value if value is not None else ZERO


def apply_balance_update(payment_mode_id: int, transaction_type: str, amount) -> Decimal:
    """CREDIT increases the balance by ``amount``; DEBIT decreases it."""
    amount = money(amount)
    with transaction.atomic():
        mode = _lock_modes([payment_mode_id])[payment_mode_id]
        new_balance = _shift(mode, _delta(transaction_type, amount))
    logger.info('balance apply mode=%s %s %s -> %s', payment_mode_id, transaction_type, amount, new_balance)
    return new_balance


def reverse_balance_update(payment_mode_id: int, transaction_type: str, amount) -> Decimal:
    """Exact inverse of :func:`apply_balance_update`."""
    amount = money(amount)
    with transaction.atomic():
        mode = _lock_modes([payment_mode_id])[payment_mode_id]
        new_balance = _shift(mode, -_delta(transaction_type, amount))
    logger.info('balance reverse mode=%s %s %s -> %s', payment_mode_id, transaction_type, amount, new_balance)
    return new_balance


def apply_transfer(from_mode_id: int, to_mode_id: int, amount) -> tuple[Decimal, Decimal]:
    amount = money(amount)
    with transaction.atomic():
        modes = _lock_modes([from_mode_id, to_mode_id])
        from_balance = _shift(modes[from_mode_id], _delta(LedgerEntry.TYPE_DEBIT, amount))
        to_balance = _shift(modes[to_mode_id], _delta(LedgerEntry.TYPE_CREDIT, amount))
    logger.info('transfer apply %s -> %s amount=%s', from_mode_id, to_mode_id, amount)
    return from_balance, to_balance


def reverse_transfer(from_mode_id: int, to_mode_id: int, amount) -> tuple[Decimal, Decimal]:
    """Undo both legs: the source gets its debit back, the target loses its credit."""
    amount = money(amount)
    with transaction.atomic():
        modes = _lock_modes([from_mode_id, to_mode_id])
        from_balance = _shift(modes[from_mode_id], -_delta(LedgerEntry.TYPE_DEBIT, amount))
        to_balance = _shift(modes[to_mode_id], -_delta(LedgerEntry.TYPE_CREDIT, amount))
    logger.info('transfer reverse %s -> %s amount=%s', from_mode_id, to_mode_id, amount)
    return from_balance, to_balance


def _require_modes(entry: LedgerEntry) -> None:
    if entry.transaction_type == LedgerEntry.TYPE_SELF_TRANSFER:
        if not entry.from_payment_mode_id or not entry.to_payment_mode_id:
            raise Internal('Transfer entry has no payment modes', context={'entry_id': entry.pk})
    elif not entry.payment_mode_id:
        raise Internal('Entry has no payment mode', context={'entry_id': entry.pk})


def apply_entry_effect(entry: LedgerEntry) -> Decimal:
    """Apply ``entry`` to its account(s); returns the (source) balance after."""
    _require_modes(entry)
    if entry.transaction_type == LedgerEntry.TYPE_SELF_TRANSFER:
        return apply_transfer(entry.from_payment_mode_id, entry.to_payment_mode_id, entry.amount)[0]
    return apply_balance_update(entry.payment_mode_id, entry.transaction_type, entry.amount)


def reverse_entry_effect(entry: LedgerEntry) -> Decimal:
    _require_modes(entry)
    if entry.transaction_type == LedgerEntry.TYPE_SELF_TRANSFER:
        return reverse_transfer(entry.from_payment_mode_id, entry.to_payment_mode_id, entry.amount)[0]
    return reverse_balance_update(entry.payment_mode_id, entry.transaction_type, entry.amount)


def payment_mode_totals(payment_mode_id: int) -> dict:
    live = LedgerEntry.objects.filter(status=LedgerEntry.STATUS_APPROVED, is_deleted=False)

    def total(qs, field):
        return qs.aggregate(s=Sum(field))['s'] or ZERO

    credits = total(live.filter(payment_mode_id=payment_mode_id, transaction_type=LedgerEntry.TYPE_CREDIT), 'received_amount')
    debits = total(live.filter(payment_mode_id=payment_mode_id, transaction_type=LedgerEntry.TYPE_DEBIT), 'payment_amount')
    transfers = live.filter(transaction_type=LedgerEntry.TYPE_SELF_TRANSFER)
    transfers_out = total(transfers.filter(from_payment_mode_id=payment_mode_id), 'transfer_amount')
    transfers_in = total(transfers.filter(to_payment_mode_id=payment_mode_id), 'transfer_amount')
    net = (credits - debits - transfers_out + transfers_in).quantize(CENT)
    return {
        'totalCredits': credits.quantize(CENT),
        'totalDebits': debits.quantize(CENT),
        'transfersIn': transfers_in.quantize(CENT),
        'transfersOut': transfers_out.quantize(CENT),
        'netChange': net,
    }


def verify_balance_integrity(payment_mode_id: int) -> dict:
    mode = PaymentMode.objects.filter(pk=payment_mode_id).first()
    if mode is None:
        raise NotFound('Payment mode not found')
    totals = payment_mode_totals(payment_mode_id)
    expected = (mode.opening_balance + totals['netChange']).quantize(CENT)
    discrepancy = (mode.current_balance - expected).quantize(CENT)
    return {
        'paymentModeId': mode.pk,
        'isValid': discrepancy == ZERO,
        'currentBalance': mode.current_balance,
        'expectedBalance': expected,
        'discrepancy': discrepancy,
    }
