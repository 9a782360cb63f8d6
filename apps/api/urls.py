# ===============================================================================
# API MAIN URLS 🚀
# ===============================================================================
#
# URL Structure:
#   /api/afip/  → AFIP CAE authorization (operators)
#

from django.urls import include, path

app_name = "api"

urlpatterns = [
    path("afip/", include("apps.api.afip.urls")),
]
