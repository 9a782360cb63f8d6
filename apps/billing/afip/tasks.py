"""
Async tasks for AFIP CAE authorization.

These tasks are designed for use with Django-Q2:
- retry_cae_task: Retry the CAE request of one voucher
- resync_pending_cae_task: Retry every voucher left pending or in error

Usage:
        async_task('apps.billing.afip.tasks.retry_cae_task', voucher_id)
"""

from __future__ import annotations

import logging
from typing import Any

from django_q.models import Schedule

from .models import FiscalVoucher
from .service import VoucherAuthorizationService
from .settings import afip_settings

logger = logging.getLogger(__name__)


def retry_cae_task(voucher_id: str) -> dict[str, Any]:
    """
    Retry the CAE request for a single voucher.

    Args:
        voucher_id: UUID of the FiscalVoucher

    Returns:
        Dict with result status and details
    """
    logger.info(f"[AFIP Task] Retrying CAE for voucher {voucher_id}")

    try:
        voucher = FiscalVoucher.objects.select_related("sequence__afip_connection").get(pk=voucher_id)
    except FiscalVoucher.DoesNotExist:
        logger.error(f"[AFIP Task] Voucher {voucher_id} not found")
        return {"success": False, "error": "Voucher not found", "voucher_id": voucher_id}

    result = VoucherAuthorizationService().retry_authorization(voucher)
    if result.is_err():
        failure = result.unwrap_err()
        logger.warning(f"[AFIP Task] Voucher {voucher.number} not retried: {failure.message}")
        return {"success": False, "voucher_id": voucher_id, "number": voucher.number, "error": failure.to_dict()}

    outcome = result.unwrap()
    if outcome.authorized:
        return {"success": True, "voucher_id": voucher_id, "number": voucher.number, "cae": outcome.voucher.cae}

    return {
        "success": False,
        "voucher_id": voucher_id,
        "number": voucher.number,
        "error": outcome.failure.to_dict() if outcome.failure else None,
    }


def resync_pending_cae_task(tenant_id: str | None = None, limit: int | None = None) -> dict[str, Any]:
    """Retry CAE requests for vouchers left pending or in error."""
    summary = VoucherAuthorizationService().resync_pending(tenant_id=tenant_id, limit=limit)
    return {"success": summary.failed == 0, **summary.to_dict()}


# --- Task Scheduling Helpers ---


def schedule_afip_tasks() -> None:
    """Register the periodic CAE resync with Django-Q."""
    Schedule.objects.update_or_create(
        name="afip_resync_pending_cae",
        defaults={
            "func": "apps.billing.afip.tasks.resync_pending_cae_task",
            "schedule_type": Schedule.MINUTES,
            "minutes": afip_settings.resync_interval_minutes,
        },
    )
    logger.info("AFIP scheduled tasks configured")

