"""
URL mappings for the operations API.

Trailing slashes are omitted on every API path.
"""
from django.urls import path, include

from .views import health
from .views import insurance
from .views import leads
from .views import ledger
from .views import notifications
from .views import payment_modes
from .views import preauth

from .auth_views import login_view, jwt_refresh_view, jwt_logout_view, me_view


urlpatterns = [
    path('', include('django_prometheus.urls')),
    path('healthz', health.healthz),

    path('api/auth/login', login_view),
    path('api/auth/refresh', jwt_refresh_view),
    path('api/auth/logout', jwt_logout_view),
    path('api/auth/me', me_view),

    # case pipeline
    path('api/leads', leads.leads),
    path('api/leads/<int:lead_id>', leads.lead_detail),
    path('api/leads/<int:lead_id>/kyp', leads.submit_kyp),
    path('api/leads/<int:lead_id>/raise-preauth', leads.raise_preauth),
    path('api/leads/<int:lead_id>/initiate', leads.initiate),
    path('api/leads/<int:lead_id>/ipd-mark', leads.ipd_mark),
    path('api/leads/<int:lead_id>/discharge', leads.discharge),
    path('api/leads/<int:lead_id>/mark-lost', leads.mark_lost),
    path('api/leads/<int:lead_id>/discharge-sheet', leads.discharge_sheet),
    path('api/leads/<int:lead_id>/close', leads.close),
    path('api/leads/<int:lead_id>/stage-history', leads.stage_history),
    path('api/leads/<int:lead_id>/chat', leads.chat),

    path('api/pre-auth/<int:kyp_id>/details', preauth.add_details),
    path('api/pre-auth/<int:kyp_id>/approve', preauth.approve),
    path('api/pre-auth/<int:kyp_id>/reject', preauth.reject),
    path('api/pre-auth/<int:kyp_id>/mark-new-hospital-raised', preauth.mark_new_hospital_raised),
    path('api/kyp/<int:kyp_id>/follow-up', preauth.follow_up),

    path('api/insurance/cases', insurance.cases),
    path('api/insurance/cases/<int:case_id>', insurance.case_detail),

    path('api/notifications', notifications.notifications),
    path('api/notifications/unread-count', notifications.unread_count),
    path('api/notifications/read-all', notifications.mark_all_read),
    path('api/notifications/<int:notification_id>/read', notifications.mark_read),

    # finance
    path('api/finance/ledger', ledger.entries),
    path('api/finance/ledger/bulk-approve', ledger.bulk_decide),
    path('api/finance/ledger/<int:entry_id>', ledger.entry_detail),
    path('api/finance/ledger/<int:entry_id>/approve', ledger.decide),
    path('api/finance/ledger/<int:entry_id>/request-edit', ledger.request_edit),
    path('api/finance/ledger/<int:entry_id>/approve-edit', ledger.approve_edit),
    path('api/finance/ledger/<int:entry_id>/reject-edit', ledger.reject_edit),
    path('api/finance/ledger/<int:entry_id>/delete', ledger.delete),
    path('api/finance/ledger/<int:entry_id>/undo', ledger.undo),
    path('api/finance/payment-modes', payment_modes.payment_modes),
    path('api/finance/payment-modes/<int:mode_id>', payment_modes.payment_mode_detail),
]
