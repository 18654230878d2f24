"""
Role based access control.

``ROLE_CAPABILITIES`` is the single policy table. Services call the
plain predicates (``has_permission``, ``can_access_lead``,
``can_manage_team``); views may use the DRF ``HasCapability`` class.
"""
from rest_framework.permissions import BasePermission

ALL_CAPABILITIES = frozenset({
    'leads:read', 'leads:write', 'leads:assign',
    'targets:read', 'targets:write',
    'analytics:read', 'reports:export',
    'users:read', 'users:write',
    'insurance:read', 'insurance:write',
    'pl:read', 'pl:write',
    'case:operate',
    'finance:read', 'finance:write', 'finance:approve', 'finance:masters:write',
})

ROLE_CAPABILITIES = {
    'MD': frozenset({
        'leads:read', 'analytics:read', 'reports:export', 'users:read',
        'insurance:read', 'pl:read', 'finance:read', 'finance:approve',
    }),
    'SALES_HEAD': frozenset({
        'leads:read', 'leads:write', 'leads:assign', 'targets:read',
        'targets:write', 'analytics:read', 'reports:export',
    }),
    'TEAM_LEAD': frozenset({
        'leads:read', 'leads:write', 'leads:assign', 'targets:read', 'analytics:read',
    }),
    'BD': frozenset({
        'leads:read', 'leads:write', 'targets:read', 'analytics:read', 'case:operate',
    }),
    'INSURANCE_HEAD': frozenset({
        'leads:read', 'insurance:read', 'insurance:write', 'analytics:read',
    }),
    'PL_HEAD': frozenset({'leads:read', 'pl:read', 'pl:write', 'analytics:read'}),
    'HR_HEAD': frozenset({'users:read', 'users:write', 'analytics:read'}),
    'FINANCE_HEAD': frozenset({'finance:read', 'finance:write', 'finance:masters:write'}),
    'ADMIN': ALL_CAPABILITIES,
    'USER': frozenset(),
}

# Roles that see every lead regardless of owner
LEAD_WIDE_ROLES = {'MD', 'SALES_HEAD', 'INSURANCE_HEAD', 'PL_HEAD', 'ADMIN'}


def is_authenticated(user) -> bool:
    return bool(user is not None and getattr(user, 'is_authenticated', False))


def has_permission(user, capability: str) -> bool:
    if not is_authenticated(user):
        return False
    return capability in ROLE_CAPABILITIES.get(getattr(user, 'role', None), frozenset())


def can_access_lead(user, bd_id, team_id=None) -> bool:
    if not is_authenticated(user):
        return False
    role = getattr(user, 'role', None)
    if role in LEAD_WIDE_ROLES:
        return True
    if role == 'TEAM_LEAD' and team_id is not None and user.team_id == team_id:
        return True
    if role == 'BD' and bd_id is not None and user.id == bd_id:
        return True
    return False


def can_manage_team(user, sales_head_id=None) -> bool:
    if not is_authenticated(user):
        return False
    role = getattr(user, 'role', None)
    if role in ('MD', 'ADMIN'):
        return True
    return role == 'SALES_HEAD' and sales_head_id is not None and sales_head_id == user.id


class HasCapability(BasePermission):
    """DRF permission bound to one capability: ``HasCapability.of('finance:read')``."""
    capability: str = ''

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return has_permission(getattr(request, 'user', None), self.capability)

    @classmethod
    def of(cls, capability: str):
        if capability not in ALL_CAPABILITIES:
            raise ValueError(f'unknown capability {capability!r}')
        return type(f'Has_{capability.replace(":", "_")}', (cls,), {'capability': capability})


def require_actor(user) -> None:
    from ops.exceptions import Unauthorized
    if not is_authenticated(user):
        raise Unauthorized('Authentication required')


def require_capability(user, capability: str) -> None:
    """Raise ``Unauthorized``/``Forbidden`` unless ``user`` holds ``capability``."""
    from ops.exceptions import Forbidden
    require_actor(user)
    if not has_permission(user, capability):
        raise Forbidden(f'Missing permission {capability}')
