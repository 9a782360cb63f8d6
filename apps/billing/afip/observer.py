"""
Structured observation hooks for the AFIP components.

Components call the observer at their boundaries instead of logging inline.
The default observer writes structured log records and updates metrics.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .metrics import AfipMetrics, get_metrics

if TYPE_CHECKING:
    from .errors import AfipError
    from .models import AfipConnection
    from .reconciler import SyncCheck
    from .wsaa import AccessTicket
    from .wsfe import CAEAuthorization, VoucherDetails

logger = logging.getLogger("apps.billing.afip")


class AfipObserver:
    """Logs and measures ticket, CAE and numbering events."""

    def __init__(self, metrics: AfipMetrics | None = None):
        self._metrics = metrics

    @property
    def metrics(self) -> AfipMetrics:
        if self._metrics is None:
            self._metrics = get_metrics()
        return self._metrics

    # ===============================================================================
    # TICKETS
    # ===============================================================================

    def ticket_cached(self, connection: AfipConnection, ticket: AccessTicket) -> None:
        self.metrics.ticket_cache_hits_total.labels(environment=connection.environment).inc()
        logger.debug(
            f"🎫 [AFIP WSAA] Reusing cached ticket for {connection.cuit} until {ticket.expires_at.isoformat()}",
            extra={"connection_id": str(connection.pk), "expires_at": ticket.expires_at.isoformat()},
        )

    def ticket_issued(self, connection: AfipConnection, ticket: AccessTicket) -> None:
        self.metrics.ticket_requests_total.labels(outcome="success", environment=connection.environment).inc()
        logger.info(
            f"✅ [AFIP WSAA] New access ticket for {connection.cuit}, expires {ticket.expires_at.isoformat()}",
            extra={"connection_id": str(connection.pk), "expires_at": ticket.expires_at.isoformat()},
        )

    def ticket_failed(self, connection: AfipConnection, error: AfipError) -> None:
        self.metrics.ticket_requests_total.labels(outcome=error.kind.value, environment=connection.environment).inc()
        logger.error(
            f"🔥 [AFIP WSAA] Ticket request failed for {connection.cuit}: {error}",
            extra={"connection_id": str(connection.pk), "error_kind": error.kind.value, "raw": error.raw_message},
        )

    def ticket_invalidated(self, connection_id: Any) -> None:
        logger.info(
            f"🧹 [AFIP WSAA] Cached ticket invalidated for connection {connection_id}",
            extra={"connection_id": str(connection_id)},
        )

    # ===============================================================================
    # CAE REQUESTS
    # ===============================================================================

    def cae_authorized(self, connection: AfipConnection, details: VoucherDetails, result: CAEAuthorization) -> None:
        self.metrics.cae_requests_total.labels(outcome="authorized", environment=connection.environment).inc()
        logger.info(
            f"✅ [AFIP WSFE] CAE {result.cae} for voucher {details.formatted_number} (type {details.voucher_type_code})",
            extra={
                "connection_id": str(connection.pk),
                "voucher_number": details.formatted_number,
                "cae": result.cae,
                "observations": result.observations,
            },
        )

    def cae_failed(self, connection: AfipConnection, details: VoucherDetails, error: AfipError) -> None:
        self.metrics.cae_requests_total.labels(outcome=error.kind.value, environment=connection.environment).inc()
        logger.warning(
            f"⚠️ [AFIP WSFE] CAE request failed for voucher {details.formatted_number}: {error}",
            extra={
                "connection_id": str(connection.pk),
                "voucher_number": details.formatted_number,
                "error_kind": error.kind.value,
                "error_code": error.code,
                "raw": error.raw_message,
            },
        )

    def call_completed(self, operation: str, seconds: float) -> None:
        self.metrics.call_duration_seconds.labels(operation=operation).observe(seconds)

    # ===============================================================================
    # NUMBERING
    # ===============================================================================

    def number_allocated(self, tenant_id: str, sales_point: int, number: str) -> None:
        logger.debug(
            f"🔢 [AFIP Sequence] Allocated {number} for tenant {tenant_id}",
            extra={"tenant_id": tenant_id, "sales_point": sales_point, "voucher_number": number},
        )

    def sequence_checked(self, check: SyncCheck) -> None:
        self.metrics.sequence_checks_total.labels(state=check.state.value).inc()
        extra = {
            "sales_point": check.sales_point,
            "voucher_type_code": check.voucher_type_code,
            "authority_last": check.authority_last,
            "local_next": check.local_next,
            "state": check.state.value,
        }
        if check.failure is not None:
            logger.warning(
                f"⚠️ [AFIP Sequence] Could not read AFIP's last number: {check.failure.message}",
                extra={**extra, "error_kind": check.failure.kind.value},
            )
        elif check.is_out_of_sync:
            logger.warning(
                f"⚠️ [AFIP Sequence] Out of sync: AFIP last {check.authority_last}, local next {check.local_next}",
                extra=extra,
            )
        else:
            logger.debug(f"🔢 [AFIP Sequence] In sync at {check.local_next}", extra=extra)
