from typing import Optional, Any, Dict
from django.contrib.auth import get_user_model
from ops.models import AuditEvent, LedgerAuditLog, LedgerEntry

User = get_user_model()


def log_action(*, user: Optional[User], action: str, object_type: Optional[str]=None, object_id: Optional[int]=None, detail: Optional[Dict[str, Any]]=None) -> AuditEvent:
    return AuditEvent.objects.create(
        user=user if getattr(user, 'pk', None) else None,
        action=action,
        object_type=object_type, object_id=object_id,
        detail=detail or {},
    )


def log_ledger(entry: LedgerEntry, action: str, *, user: Optional[User], previous: Optional[Dict[str, Any]]=None, new: Optional[Dict[str, Any]]=None, reason: str='') -> LedgerAuditLog:
    return LedgerAuditLog.objects.create(
        entry=entry,
        action=action,
        previous_data=previous,
        new_data=new,
        reason=reason or '',
        performed_by=user if getattr(user, 'pk', None) else None,
    )
