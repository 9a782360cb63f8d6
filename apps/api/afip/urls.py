# ===============================================================================
# AFIP API URLS - CAE AUTHORIZATION ENDPOINTS 🧾
# ===============================================================================

from django.urls import path

from . import views

app_name = "api_afip"

urlpatterns = [
    # Voucher endpoints
    path("vouchers/", views.issue_voucher_api, name="issue_voucher"),
    path("vouchers/resync-cae/", views.resync_cae_api, name="resync_cae"),
    path("vouchers/<uuid:voucher_id>/retry-cae/", views.retry_cae_api, name="retry_cae"),
    # Connection endpoints
    path("connections/<uuid:connection_id>/test/", views.test_connection_api, name="test_connection"),
    path(
        "connections/<uuid:connection_id>/invalidate-ticket/",
        views.invalidate_ticket_api,
        name="invalidate_ticket",
    ),
    path("connections/<uuid:connection_id>/server-status/", views.server_status_api, name="server_status"),
]
