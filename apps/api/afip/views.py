# ===============================================================================
# AFIP API VIEWS - CAE AUTHORIZATION OPERATIONS 🧾
# ===============================================================================

import logging
from typing import Any

from django.http import HttpRequest
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response

from apps.billing.afip.errors import AfipErrorKind, SequenceConflict
from apps.billing.afip.models import AfipConnection, FiscalVoucher
from apps.billing.afip.service import VoucherAuthorizationService

from .serializers import FiscalVoucherSerializer, ResyncSerializer, VoucherIssueSerializer

logger = logging.getLogger(__name__)

FAILURE_STATUS = {
    AfipErrorKind.CONFIGURATION_MISSING: status.HTTP_422_UNPROCESSABLE_ENTITY,
    AfipErrorKind.INVALID_VOUCHER: status.HTTP_400_BAD_REQUEST,
    AfipErrorKind.BUSINESS_REJECTION: status.HTTP_409_CONFLICT,
    AfipErrorKind.SEQUENCE_CONFLICT: status.HTTP_409_CONFLICT,
    AfipErrorKind.SERVICE_UNREACHABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    AfipErrorKind.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
}


def _error_response(error: Any) -> Response:
    http_status = FAILURE_STATUS.get(error.kind, status.HTTP_502_BAD_GATEWAY)
    return Response({"success": False, "error": error.to_dict()}, status=http_status)


def _service() -> VoucherAuthorizationService:
    return VoucherAuthorizationService()


# ===============================================================================
# FISCAL VOUCHERS 📄
# ===============================================================================


@api_view(["POST"])
@permission_classes([IsAdminUser])
def issue_voucher_api(request: HttpRequest) -> Response:
    """
    🧾 Issue a fiscal voucher and request its CAE

    POST /api/afip/vouchers/

    A sequence conflict answers 409 with AFIP's last number and the local
    next number; resend with "force_without_cae": true to save the voucher
    without authorization.
    """
    serializer = VoucherIssueSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = _service().issue(
        serializer.to_request(),
        force_without_cae=serializer.validated_data["force_without_cae"],
    )
    if result.is_err():
        error = result.unwrap_err()
        if isinstance(error, SequenceConflict):
            logger.warning(f"⚠️ [AFIP API] {error.message}")
        return _error_response(error)

    outcome = result.unwrap()
    return Response(
        {
            "success": True,
            "voucher": FiscalVoucherSerializer(outcome.voucher).data,
            "sync_state": outcome.sync.state.value if outcome.sync else None,
            "error": outcome.failure.to_dict() if outcome.failure else None,
        },
        status=status.HTTP_201_CREATED,
    )


@api_view(["POST"])
@permission_classes([IsAdminUser])
def retry_cae_api(request: HttpRequest, voucher_id: str) -> Response:
    """
    🔁 Retry the CAE request of a voucher, keeping its number

    POST /api/afip/vouchers/<voucher_id>/retry-cae/
    """
    voucher = get_object_or_404(FiscalVoucher.objects.select_related("sequence__afip_connection"), pk=voucher_id)

    result = _service().retry_authorization(voucher)
    if result.is_err():
        return _error_response(result.unwrap_err())

    outcome = result.unwrap()
    return Response(
        {
            "success": outcome.authorized,
            "voucher": FiscalVoucherSerializer(outcome.voucher).data,
            "error": outcome.failure.to_dict() if outcome.failure else None,
        }
    )


@api_view(["POST"])
@permission_classes([IsAdminUser])
def resync_cae_api(request: HttpRequest) -> Response:
    """
    🔄 Retry every voucher left pending or in error

    POST /api/afip/vouchers/resync-cae/
    """
    serializer = ResyncSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    summary = _service().resync_pending(
        tenant_id=serializer.validated_data["tenant_id"],
        limit=serializer.validated_data["limit"],
    )
    return Response({"success": True, **summary.to_dict()})


# ===============================================================================
# CONNECTIONS 🔌
# ===============================================================================


@api_view(["POST"])
@permission_classes([IsAdminUser])
def test_connection_api(request: HttpRequest, connection_id: str) -> Response:
    """
    🩺 Test credentials, WSAA login and WSFEv1 status of a connection

    POST /api/afip/connections/<connection_id>/test/
    """
    get_object_or_404(AfipConnection, pk=connection_id)

    result = _service().test_connection(connection_id)
    if result.is_err():
        return _error_response(result.unwrap_err())
    return Response(result.unwrap().to_dict())


@api_view(["POST"])
@permission_classes([IsAdminUser])
def invalidate_ticket_api(request: HttpRequest, connection_id: str) -> Response:
    """
    🧹 Drop the cached access ticket of a connection

    POST /api/afip/connections/<connection_id>/invalidate-ticket/
    """
    get_object_or_404(AfipConnection, pk=connection_id)
    _service().invalidate_ticket(connection_id)
    return Response({"success": True})


@api_view(["GET"])
@permission_classes([IsAdminUser])
def server_status_api(request: HttpRequest, connection_id: str) -> Response:
    """
    📡 WSFEv1 infrastructure status (FEDummy)

    GET /api/afip/connections/<connection_id>/server-status/
    """
    get_object_or_404(AfipConnection, pk=connection_id)

    result = _service().server_status(connection_id)
    if result.is_err():
        return _error_response(result.unwrap_err())

    server_status = result.unwrap()
    return Response({"success": server_status.is_healthy, **server_status.to_dict()})
